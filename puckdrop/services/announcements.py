"""Tournament announcements posted by staff.

Staff see every announcement. Team captains see those for everyone, those
for captains and those aimed at their own teams. Everyone else, including
anonymous readers, sees only announcements for everyone.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from puckdrop.exceptions import NotFoundError, ValidationError
from puckdrop.models import Announcement, AnnouncementTarget, Team
from puckdrop.services import audit
from puckdrop.services.authorization import Action, get_role, require_role
from puckdrop.services.bracket_gen import get_tournament

logger = logging.getLogger("puckdrop.announcements")


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


async def _resolve_target(
    session: AsyncSession,
    tournament_id: int,
    target: Optional[str],
    target_team_ids: Optional[List[int]],
) -> tuple[Optional[str], Optional[List[int]]]:
    if target_team_ids:
        if target is not None:
            raise ValidationError("Give either a target or target teams, not both")
        ids = sorted(set(target_team_ids))
        found = await session.scalars(
            select(Team.id).where(Team.tournament_id == tournament_id, Team.id.in_(ids))
        )
        missing = set(ids) - set(found.all())
        if missing:
            raise ValidationError(f"Teams not in this tournament: {sorted(missing)}")
        return None, ids
    target = target or AnnouncementTarget.ALL
    if target not in AnnouncementTarget.ALL_TARGETS:
        raise ValidationError(f"Target must be one of: {', '.join(AnnouncementTarget.ALL_TARGETS)}")
    return target, None


async def _get_announcement(session: AsyncSession, tournament_id: int, announcement_id: int) -> Announcement:
    announcement = await session.get(Announcement, announcement_id, populate_existing=True)
    if (
        announcement is None
        or announcement.tournament_id != tournament_id
        or announcement.deleted_at is not None
    ):
        raise NotFoundError("Announcement not found")
    return announcement


def _visible(announcement: Announcement, is_captain: bool, captain_team_ids: set[int]) -> bool:
    if announcement.target == AnnouncementTarget.ALL:
        return True
    if announcement.target == AnnouncementTarget.CAPTAINS:
        return is_captain
    if announcement.target_team_ids:
        return bool(captain_team_ids.intersection(announcement.target_team_ids))
    return False


async def list_announcements(
    session: AsyncSession, tournament_id: int, requester_id: Optional[int] = None
) -> List[Announcement]:
    """Announcements the requester may see, newest first."""
    await get_tournament(session, tournament_id)
    result = await session.execute(
        select(Announcement)
        .where(Announcement.tournament_id == tournament_id, Announcement.deleted_at.is_(None))
        .order_by(Announcement.created_at.desc(), Announcement.id.desc())
    )
    announcements = list(result.scalars().all())
    if requester_id is None:
        return [a for a in announcements if a.target == AnnouncementTarget.ALL]
    if await get_role(session, tournament_id, requester_id) is not None:
        return announcements

    captain_of = await session.scalars(
        select(Team.id).where(Team.tournament_id == tournament_id, Team.captain_user_id == requester_id)
    )
    team_ids = set(captain_of.all())
    return [a for a in announcements if _visible(a, bool(team_ids), team_ids)]


async def create_announcement(
    session: AsyncSession,
    tournament_id: int,
    title: str,
    body: str,
    actor_id: int,
    target: Optional[str] = None,
    target_team_ids: Optional[List[int]] = None,
) -> Announcement:
    try:
        await get_tournament(session, tournament_id)
        await require_role(session, tournament_id, actor_id, Action.MANAGE_ANNOUNCEMENTS)
        target, team_ids = await _resolve_target(session, tournament_id, target, target_team_ids)
        announcement = Announcement(
            tournament_id=tournament_id,
            title=_require_text(title, "Title"),
            body=_require_text(body, "Body"),
            target=target,
            target_team_ids=team_ids,
            created_by_user_id=actor_id,
            created_at=datetime.utcnow(),
        )
        session.add(announcement)
        await session.flush()
        audit.record(
            session,
            tournament_id,
            actor_id,
            "CreateAnnouncement",
            entity_type="Announcement",
            entity_id=announcement.id,
            details={"title": announcement.title, "target": target, "target_team_ids": team_ids},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Announcement %s posted to tournament %s", announcement.id, tournament_id)
    return announcement


async def update_announcement(
    session: AsyncSession,
    tournament_id: int,
    announcement_id: int,
    actor_id: int,
    title: Optional[str] = None,
    body: Optional[str] = None,
    target: Optional[str] = None,
    target_team_ids: Optional[List[int]] = None,
) -> Announcement:
    """Change only the fields given. Passing a target or target teams replaces both."""
    try:
        await get_tournament(session, tournament_id)
        await require_role(session, tournament_id, actor_id, Action.MANAGE_ANNOUNCEMENTS)
        announcement = await _get_announcement(session, tournament_id, announcement_id)
        if title is not None:
            announcement.title = _require_text(title, "Title")
        if body is not None:
            announcement.body = _require_text(body, "Body")
        if target is not None or target_team_ids is not None:
            announcement.target, announcement.target_team_ids = await _resolve_target(
                session, tournament_id, target, target_team_ids
            )
        announcement.updated_at = datetime.utcnow()
        audit.record(
            session,
            tournament_id,
            actor_id,
            "UpdateAnnouncement",
            entity_type="Announcement",
            entity_id=announcement.id,
            details={"target": announcement.target, "target_team_ids": announcement.target_team_ids},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return announcement


async def delete_announcement(
    session: AsyncSession, tournament_id: int, announcement_id: int, actor_id: int
) -> None:
    try:
        await get_tournament(session, tournament_id)
        await require_role(session, tournament_id, actor_id, Action.MANAGE_ANNOUNCEMENTS)
        announcement = await _get_announcement(session, tournament_id, announcement_id)
        announcement.deleted_at = datetime.utcnow()
        audit.record(
            session,
            tournament_id,
            actor_id,
            "DeleteAnnouncement",
            entity_type="Announcement",
            entity_id=announcement.id,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Announcement %s deleted from tournament %s", announcement_id, tournament_id)
