"""Tournament staff management: Owner, Admins and Scorekeepers."""
from __future__ import annotations

import logging
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from puckdrop.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from puckdrop.models import TournamentAdmin, User
from puckdrop.services import audit
from puckdrop.services.authorization import Action, Role, require_role
from puckdrop.services.bracket_gen import get_tournament

logger = logging.getLogger("puckdrop.admins")


def _parse_role(value: str) -> Role:
    try:
        role = Role.parse(value)
    except ValueError as e:
        raise ValidationError(str(e)) from None
    if role == Role.OWNER:
        raise ValidationError("Cannot assign Owner role. Use transfer ownership instead.")
    return role


def _managing_action(role: Role) -> Action:
    """Scorekeepers are managed by Admins, everyone else only by the Owner."""
    return Action.MANAGE_SCOREKEEPERS if role == Role.SCOREKEEPER else Action.MANAGE_ADMINS


async def _get_member(session: AsyncSession, tournament_id: int, user_id: int) -> TournamentAdmin:
    result = await session.execute(
        select(TournamentAdmin).where(
            TournamentAdmin.tournament_id == tournament_id,
            TournamentAdmin.user_id == user_id,
        )
    )
    member = result.scalar_one_or_none()
    if not member:
        raise NotFoundError("User is not a tournament admin")
    return member


async def _ensure_one_owner(session: AsyncSession, tournament_id: int) -> None:
    await session.flush()
    owners = await session.scalar(
        select(func.count(TournamentAdmin.id)).where(
            TournamentAdmin.tournament_id == tournament_id,
            TournamentAdmin.role == Role.OWNER.label,
        )
    )
    if owners != 1:
        raise StateError("A tournament must have exactly one Owner")


async def list_members(session: AsyncSession, tournament_id: int, actor_id: int) -> List[TournamentAdmin]:
    await get_tournament(session, tournament_id)
    await require_role(session, tournament_id, actor_id, Action.VIEW_STAFF)
    result = await session.execute(
        select(TournamentAdmin)
        .where(TournamentAdmin.tournament_id == tournament_id)
        .order_by(TournamentAdmin.added_at, TournamentAdmin.id)
    )
    members = list(result.scalars().all())
    # Owner first, then by rank
    return sorted(members, key=lambda m: -Role.parse(m.role))


async def add_member(
    session: AsyncSession, tournament_id: int, user_id: int, role: str, actor_id: int
) -> TournamentAdmin:
    """Give a user a staff role. Admins may only add Scorekeepers."""
    try:
        await get_tournament(session, tournament_id)
        new_role = _parse_role(role)
        await require_role(session, tournament_id, actor_id, _managing_action(new_role))
        if not await session.get(User, user_id):
            raise NotFoundError("User not found")
        existing = await session.scalar(
            select(TournamentAdmin.id).where(
                TournamentAdmin.tournament_id == tournament_id,
                TournamentAdmin.user_id == user_id,
            )
        )
        if existing:
            raise ConflictError("User is already a tournament admin")

        member = TournamentAdmin(
            tournament_id=tournament_id,
            user_id=user_id,
            role=new_role.label,
            added_by_user_id=actor_id,
        )
        session.add(member)
        await session.flush()
        audit.record(
            session,
            tournament_id,
            actor_id,
            "AddAdmin",
            entity_type="TournamentAdmin",
            entity_id=member.id,
            details={"user_id": user_id, "role": new_role.label},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("User %s added as %s to tournament %s", user_id, new_role.label, tournament_id)
    return member


async def update_member_role(
    session: AsyncSession, tournament_id: int, user_id: int, role: str, actor_id: int
) -> TournamentAdmin:
    """Change a staff member's role. Never to or from Owner."""
    try:
        await get_tournament(session, tournament_id)
        new_role = _parse_role(role)
        member = await _get_member(session, tournament_id, user_id)
        current = Role.parse(member.role)
        if current == Role.OWNER:
            raise StateError("Cannot change the Owner's role. Transfer ownership first.")
        await require_role(session, tournament_id, actor_id, _managing_action(max(current, new_role)))
        if current == new_role:
            return member

        member.role = new_role.label
        audit.record(
            session,
            tournament_id,
            actor_id,
            "UpdateAdminRole",
            entity_type="TournamentAdmin",
            entity_id=member.id,
            details={"user_id": user_id, "from_role": current.label, "to_role": new_role.label},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("User %s role changed %s -> %s in tournament %s", user_id, current.label, new_role.label, tournament_id)
    return member


async def remove_member(session: AsyncSession, tournament_id: int, user_id: int, actor_id: int) -> None:
    """Take a user's staff role away. The Owner cannot be removed."""
    try:
        await get_tournament(session, tournament_id)
        member = await _get_member(session, tournament_id, user_id)
        current = Role.parse(member.role)
        if current == Role.OWNER:
            raise StateError("Cannot remove the tournament Owner. Transfer ownership first.")
        await require_role(session, tournament_id, actor_id, _managing_action(current))

        member_id = member.id
        await session.delete(member)
        await _ensure_one_owner(session, tournament_id)
        audit.record(
            session,
            tournament_id,
            actor_id,
            "RemoveAdmin",
            entity_type="TournamentAdmin",
            entity_id=member_id,
            details={"user_id": user_id, "role": current.label},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("User %s removed from tournament %s", user_id, tournament_id)


async def transfer_ownership(
    session: AsyncSession, tournament_id: int, new_owner_user_id: int, actor_id: int
) -> TournamentAdmin:
    """Hand ownership to an existing Admin. The old Owner becomes an Admin."""
    try:
        await get_tournament(session, tournament_id)
        await require_role(session, tournament_id, actor_id, Action.TRANSFER_OWNERSHIP)
        if new_owner_user_id == actor_id:
            raise ValidationError("You already own this tournament")
        result = await session.execute(
            select(TournamentAdmin).where(
                TournamentAdmin.tournament_id == tournament_id,
                TournamentAdmin.user_id == new_owner_user_id,
            )
        )
        target = result.scalar_one_or_none()
        if target is None or Role.parse(target.role) != Role.ADMIN:
            raise ValidationError("New owner must already be an Admin of this tournament")
        owner = await _get_member(session, tournament_id, actor_id)

        owner.role = Role.ADMIN.label
        target.role = Role.OWNER.label
        await _ensure_one_owner(session, tournament_id)
        audit.record(
            session,
            tournament_id,
            actor_id,
            "TransferOwnership",
            entity_type="TournamentAdmin",
            entity_id=target.id,
            details={"from_user_id": actor_id, "to_user_id": new_owner_user_id},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Tournament %s ownership transferred %s -> %s", tournament_id, actor_id, new_owner_user_id)
    return target
