"""Tournament lifecycle: creation, team entry and status transitions."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from puckdrop.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from puckdrop.models import Match, Team, Tournament, TournamentAdmin, TournamentFormat, TournamentStatus, User
from puckdrop.services import audit
from puckdrop.services.authorization import Action, Role, require_role
from puckdrop.services.bracket_gen import get_tournament
from puckdrop.services.standings import TIEBREAKERS

logger = logging.getLogger("puckdrop.lifecycle")

# action -> (allowed from, to)
TRANSITIONS: Dict[str, Tuple[frozenset, str]] = {
    "Publish": (frozenset({TournamentStatus.DRAFT}), TournamentStatus.OPEN),
    "CloseRegistration": (frozenset({TournamentStatus.OPEN}), TournamentStatus.REGISTRATION_CLOSED),
    "Start": (frozenset({TournamentStatus.REGISTRATION_CLOSED}), TournamentStatus.IN_PROGRESS),
    "Complete": (frozenset({TournamentStatus.IN_PROGRESS}), TournamentStatus.COMPLETED),
    "Cancel": (
        frozenset({
            TournamentStatus.DRAFT,
            TournamentStatus.OPEN,
            TournamentStatus.REGISTRATION_CLOSED,
            TournamentStatus.IN_PROGRESS,
        }),
        TournamentStatus.CANCELLED,
    ),
}


def _validate_tiebreakers(order: Optional[List[str]]) -> Optional[List[str]]:
    if order is None:
        return None
    unknown = [t for t in order if t not in TIEBREAKERS]
    if unknown:
        raise ValidationError(f"Unknown tiebreakers: {', '.join(unknown)}")
    if len(set(order)) != len(order):
        raise ValidationError("Tiebreakers may not repeat")
    return list(order)


async def create_tournament(
    session: AsyncSession,
    name: str,
    bracket_format: str,
    creator_id: int,
    tiebreaker_order: Optional[List[str]] = None,
    venue: Optional[str] = None,
) -> Tournament:
    """Create a Draft tournament owned by its creator."""
    try:
        if not name or not name.strip():
            raise ValidationError("Tournament name is required")
        if bracket_format not in TournamentFormat.ALL:
            raise ValidationError(f"Format must be one of: {', '.join(TournamentFormat.ALL)}")
        if not await session.get(User, creator_id):
            raise NotFoundError("User not found")

        t = Tournament(
            name=name.strip(),
            format=bracket_format,
            status=TournamentStatus.DRAFT,
            tiebreaker_order=_validate_tiebreakers(tiebreaker_order),
            venue=venue,
        )
        session.add(t)
        await session.flush()
        session.add(TournamentAdmin(
            tournament_id=t.id,
            user_id=creator_id,
            role=Role.OWNER.label,
            added_by_user_id=creator_id,
        ))
        audit.record(
            session,
            t.id,
            creator_id,
            "CreateTournament",
            to_status=t.status,
            entity_type="Tournament",
            entity_id=t.id,
            details={"name": t.name, "format": t.format},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Tournament %s '%s' created by user %s", t.id, t.name, creator_id)
    return t


async def add_team(
    session: AsyncSession,
    tournament_id: int,
    name: str,
    seed: Optional[int],
    actor_id: int,
    captain_user_id: Optional[int] = None,
) -> Team:
    """Enter a team. Teams are fixed once the bracket exists."""
    try:
        t = await get_tournament(session, tournament_id)
        await require_role(session, tournament_id, actor_id, Action.MANAGE_TEAMS)
        if t.status not in TournamentStatus.PRE_START:
            raise StateError(f"Cannot add teams when tournament is in '{t.status}' status")
        has_matches = await session.scalar(
            select(func.count(Match.id)).where(Match.tournament_id == tournament_id)
        )
        if has_matches:
            raise StateError("Cannot add teams after the bracket is generated. Clear the bracket first.")
        if not name or not name.strip():
            raise ValidationError("Team name is required")
        if seed is not None:
            if isinstance(seed, bool) or not isinstance(seed, int) or seed < 1:
                raise ValidationError("Seed must be a positive integer")
            taken = await session.scalar(
                select(Team.id).where(Team.tournament_id == tournament_id, Team.seed == seed)
            )
            if taken:
                raise ConflictError(f"Seed {seed} is already taken")
        if captain_user_id is not None and not await session.get(User, captain_user_id):
            raise NotFoundError("Captain user not found")

        team = Team(tournament_id=tournament_id, name=name.strip(), seed=seed, captain_user_id=captain_user_id)
        session.add(team)
        await session.flush()
        audit.record(
            session,
            tournament_id,
            actor_id,
            "AddTeam",
            entity_type="Team",
            entity_id=team.id,
            details={"name": team.name, "seed": seed},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Team %s '%s' (seed %s) added to tournament %s", team.id, team.name, seed, tournament_id)
    return team


async def list_teams(session: AsyncSession, tournament_id: int) -> List[Team]:
    await get_tournament(session, tournament_id)
    result = await session.execute(
        select(Team).where(Team.tournament_id == tournament_id).order_by(Team.seed, Team.id)
    )
    return list(result.scalars().all())


async def transition(session: AsyncSession, tournament_id: int, action: str, actor_id: int) -> Tournament:
    """Apply a lifecycle action (Publish, CloseRegistration, Start, Complete, Cancel)."""
    if action not in TRANSITIONS:
        raise ValidationError(f"Unknown action: {action}. Valid: {', '.join(TRANSITIONS)}")
    allowed_from, to_status = TRANSITIONS[action]
    try:
        t = await get_tournament(session, tournament_id)
        await require_role(session, tournament_id, actor_id, Action.CHANGE_STATUS)
        from_status = t.status
        if from_status not in allowed_from:
            raise StateError(f"Cannot {action} a tournament in '{from_status}' status")
        if action == "Start":
            has_matches = await session.scalar(
                select(func.count(Match.id)).where(Match.tournament_id == tournament_id)
            )
            if not has_matches:
                raise StateError("Generate the bracket before starting the tournament")

        now = datetime.utcnow()
        t.status = to_status
        if to_status == TournamentStatus.IN_PROGRESS:
            t.started_at = now
        elif to_status == TournamentStatus.COMPLETED:
            t.completed_at = now
        elif to_status == TournamentStatus.CANCELLED:
            t.cancelled_at = now
        audit.record(
            session,
            tournament_id,
            actor_id,
            action,
            from_status=from_status,
            to_status=to_status,
            entity_type="Tournament",
            entity_id=tournament_id,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Tournament %s: %s (%s -> %s)", tournament_id, action, from_status, to_status)
    return t
