"""Tournament staff API: Owner, Admins and Scorekeepers."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from puckdrop.models import User, async_session_factory
from puckdrop.services import admins
from web.auth import require_user

router = APIRouter(prefix="/api/tournaments/{tournament_id}/admins", tags=["admins"])


class AdminCreate(BaseModel):
    user_id: int
    role: str = "Scorekeeper"  # Admin, Scorekeeper


class AdminUpdate(BaseModel):
    role: str


class TransferOwnershipRequest(BaseModel):
    new_owner_user_id: int


class AdminResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    user_id: int
    role: str
    added_by_user_id: Optional[int] = None
    added_at: Optional[datetime] = None


@router.get("", response_model=list[AdminResponse])
async def list_admins(tournament_id: int, user: User = Depends(require_user)):
    async with async_session_factory() as session:
        return await admins.list_members(session, tournament_id, user.id)


@router.post("", response_model=AdminResponse, status_code=201)
async def add_admin(tournament_id: int, body: AdminCreate, user: User = Depends(require_user)):
    """Add an Admin (Owner only) or Scorekeeper (Admin or Owner)."""
    async with async_session_factory() as session:
        return await admins.add_member(session, tournament_id, body.user_id, body.role, user.id)


@router.patch("/{user_id}", response_model=AdminResponse)
async def update_admin(tournament_id: int, user_id: int, body: AdminUpdate, user: User = Depends(require_user)):
    async with async_session_factory() as session:
        return await admins.update_member_role(session, tournament_id, user_id, body.role, user.id)


@router.delete("/{user_id}")
async def remove_admin(tournament_id: int, user_id: int, user: User = Depends(require_user)):
    async with async_session_factory() as session:
        await admins.remove_member(session, tournament_id, user_id, user.id)
        return {"ok": True}


@router.post("/transfer-ownership", response_model=AdminResponse)
async def transfer_ownership(tournament_id: int, body: TransferOwnershipRequest, user: User = Depends(require_user)):
    """Make an existing Admin the Owner. The caller becomes an Admin."""
    async with async_session_factory() as session:
        return await admins.transfer_ownership(session, tournament_id, body.new_owner_user_id, user.id)
