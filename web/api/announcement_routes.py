"""Tournament announcements API."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from puckdrop.models import User, async_session_factory
from puckdrop.services import announcements
from web.auth import get_current_user, require_user

router = APIRouter(prefix="/api/tournaments/{tournament_id}/announcements", tags=["announcements"])


class AnnouncementCreate(BaseModel):
    title: str
    body: str
    target: Optional[str] = None  # All, Captains, Admins
    target_team_ids: Optional[list[int]] = None


class AnnouncementUpdate(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None
    target: Optional[str] = None
    target_team_ids: Optional[list[int]] = None


class AnnouncementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    title: str
    body: str
    target: Optional[str] = None
    target_team_ids: Optional[list[int]] = None
    created_by_user_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@router.get("", response_model=list[AnnouncementResponse])
async def list_announcements(tournament_id: int, user: Optional[User] = Depends(get_current_user)):
    """Announcements visible to the caller. Anonymous callers see only those for everyone."""
    async with async_session_factory() as session:
        return await announcements.list_announcements(session, tournament_id, user.id if user else None)


@router.post("", response_model=AnnouncementResponse, status_code=201)
async def create_announcement(tournament_id: int, body: AnnouncementCreate, user: User = Depends(require_user)):
    async with async_session_factory() as session:
        return await announcements.create_announcement(
            session,
            tournament_id,
            body.title,
            body.body,
            user.id,
            target=body.target,
            target_team_ids=body.target_team_ids,
        )


@router.patch("/{announcement_id}", response_model=AnnouncementResponse)
async def update_announcement(
    tournament_id: int, announcement_id: int, body: AnnouncementUpdate, user: User = Depends(require_user)
):
    async with async_session_factory() as session:
        return await announcements.update_announcement(
            session,
            tournament_id,
            announcement_id,
            user.id,
            title=body.title,
            body=body.body,
            target=body.target,
            target_team_ids=body.target_team_ids,
        )


@router.delete("/{announcement_id}")
async def delete_announcement(tournament_id: int, announcement_id: int, user: User = Depends(require_user)):
    async with async_session_factory() as session:
        await announcements.delete_announcement(session, tournament_id, announcement_id, user.id)
        return {"ok": True}
