"""Result recording and bracket advancement.

Every submission runs the same way: take the match lock, re-read the match
row FOR UPDATE, check it can still accept a result, apply it, push winner and
loser forward, record the audit entry and commit. Anything that breaks the
bracket's expected shape while pushing forward rolls the whole submission
back and marks the tournament inconsistent.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from puckdrop.exceptions import (
    BracketConsistencyError,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from puckdrop.models import BracketType, Match, MatchStatus, Slot, Tournament, TournamentStatus
from puckdrop.services import audit
from puckdrop.services.authorization import Action, require_role
from puckdrop.services.locks import match_lock

logger = logging.getLogger("puckdrop.advancement")

Apply = Callable[[AsyncSession, Match, Tournament, Dict[str, Any]], Awaitable[None]]


async def _tournament_of(session: AsyncSession, match_id: int) -> int:
    tournament_id = await session.scalar(select(Match.tournament_id).where(Match.id == match_id))
    if tournament_id is None:
        raise NotFoundError("Match not found")
    return tournament_id


def _check_tournament_live(t: Tournament) -> None:
    if t.is_inconsistent:
        raise StateError("Bracket is inconsistent. Clear and regenerate it before recording results.")
    if t.status != TournamentStatus.IN_PROGRESS:
        raise StateError(f"Cannot record results when tournament is in '{t.status}' status")


def _check_open(match: Match, verb: str) -> None:
    """Byes and decided matches reject every submission, whatever the tournament status."""
    if match.is_bye:
        raise ValidationError(f"Bye matches cannot be {verb}")
    if match.is_terminal:
        raise ConflictError(f"Match {match.bracket_position} is already {match.status}")


def _check_playable(match: Match) -> None:
    """Shared precondition chain for anything that puts a result on a match."""
    if match.status == MatchStatus.CANCELLED:
        raise StateError("Match has been cancelled")
    if match.home_team_id is None or match.away_team_id is None:
        raise StateError("Both teams must be determined before recording a result (TBD)")
    if not match.is_active:
        raise StateError("Bracket reset match is not active")


async def _submit(
    session: AsyncSession,
    match_id: int,
    actor_id: int,
    action: Action,
    audit_action: str,
    apply: Apply,
    verb: str = "played",
) -> Match:
    tournament_id = await _tournament_of(session, match_id)
    async with match_lock(tournament_id, match_id):
        try:
            match = await session.get(Match, match_id, with_for_update=True, populate_existing=True)
            if match is None:
                raise NotFoundError("Match not found")
            await require_role(session, tournament_id, actor_id, action)
            _check_open(match, verb)
            tournament = await session.get(Tournament, tournament_id, populate_existing=True)
            _check_tournament_live(tournament)

            from_status = match.status
            details: Dict[str, Any] = {}
            await apply(session, match, tournament, details)
            audit.record(
                session,
                tournament_id,
                actor_id,
                audit_action,
                from_status=from_status,
                to_status=match.status,
                entity_type="Match",
                entity_id=match.id,
                details=details,
            )
            await session.commit()
        except BracketConsistencyError as e:
            await session.rollback()
            await _flag_inconsistent(session, tournament_id, match_id, e)
            raise
        except Exception:
            await session.rollback()
            raise
    return match


async def _flag_inconsistent(
    session: AsyncSession, tournament_id: int, match_id: int, error: BracketConsistencyError
) -> None:
    await session.execute(
        update(Tournament).where(Tournament.id == tournament_id).values(is_inconsistent=True)
    )
    await session.commit()
    logger.error(
        "Tournament %s flagged inconsistent while advancing match %s: %s",
        tournament_id, match_id, error.message,
    )


async def _requires_next(session: AsyncSession, match: Match, tournament: Tournament) -> bool:
    """Whether the winner of `match` must have somewhere to go."""
    if tournament.is_double_elimination:
        return match.bracket_type != BracketType.GRAND_FINAL
    later = await session.scalar(
        select(Match.id).where(
            Match.tournament_id == match.tournament_id,
            Match.bracket_type == BracketType.WINNERS,
            Match.round > match.round,
        ).limit(1)
    )
    return later is not None


async def _place(
    session: AsyncSession, source: Match, target_id: int, slot: str, team_id: int, details: Dict[str, Any]
) -> None:
    target = await session.get(Match, target_id, with_for_update=True, populate_existing=True)
    if target is None or target.tournament_id != source.tournament_id:
        raise BracketConsistencyError(
            f"Match {source.bracket_position} points to missing match {target_id}"
        )
    if target.team_in_slot(slot) is not None:
        raise BracketConsistencyError(
            f"Slot {slot} of match {target.bracket_position} is already occupied"
        )
    target.set_team_in_slot(slot, team_id)
    details.setdefault("destinations", []).append(
        {"match_id": target.id, "position": target.bracket_position, "slot": slot, "team_id": team_id}
    )
    await session.flush()

    if target.is_bye and target.status == MatchStatus.SCHEDULED:
        # Only one team can ever reach this match: it goes straight through
        target.status = MatchStatus.COMPLETED
        target.winner_team_id = team_id
        details.setdefault("auto_completed", []).append(target.id)
        await session.flush()
        await _forward_winner(session, target, details)


async def _forward_winner(session: AsyncSession, match: Match, details: Dict[str, Any]) -> None:
    if match.next_match_id is None:
        raise BracketConsistencyError(f"Match {match.bracket_position} has no next match")
    await _place(session, match, match.next_match_id, match.next_match_slot, match.winner_team_id, details)


async def _activate_bracket_reset(session: AsyncSession, gf1: Match, details: Dict[str, Any]) -> None:
    gf2 = await session.scalar(
        select(Match)
        .where(
            Match.tournament_id == gf1.tournament_id,
            Match.bracket_type == BracketType.GRAND_FINAL,
            Match.round == 2,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if gf2 is None:
        raise BracketConsistencyError("Bracket reset match is missing")
    if gf2.is_active or gf2.home_team_id is not None or gf2.away_team_id is not None:
        raise BracketConsistencyError("Bracket reset match was already activated")
    gf2.home_team_id = gf1.home_team_id
    gf2.away_team_id = gf1.away_team_id
    gf2.is_active = True
    gf2.status = MatchStatus.SCHEDULED
    details["bracket_reset_activated"] = True
    details["bracket_reset_match_id"] = gf2.id
    logger.info("Bracket reset activated for tournament %s (match %s)", gf1.tournament_id, gf2.id)


async def advance(session: AsyncSession, match: Match, tournament: Tournament, details: Dict[str, Any]) -> None:
    """Push the result of a just-finished match through the bracket."""
    winner = match.winner_team_id
    loser = match.loser_team_id
    details["winner_team_id"] = winner
    details["loser_team_id"] = loser

    if match.bracket_type == BracketType.GRAND_FINAL:
        if match.round == 1 and winner == match.away_team_id:
            await _activate_bracket_reset(session, match, details)
        else:
            details["bracket_reset_activated"] = False
            details["champion_team_id"] = winner
            logger.info("Tournament %s decided: team %s wins", match.tournament_id, winner)
        return

    if match.next_match_id is not None:
        await _forward_winner(session, match, details)
    elif await _requires_next(session, match, tournament):
        raise BracketConsistencyError(f"Match {match.bracket_position} has no next match")
    else:
        details["champion_team_id"] = winner

    if match.bracket_type == BracketType.WINNERS and tournament.is_double_elimination:
        if match.loser_next_match_id is None:
            raise BracketConsistencyError(
                f"Winners match {match.bracket_position} has no Losers bracket destination"
            )
        await _place(session, match, match.loser_next_match_id, match.loser_next_match_slot, loser, details)
    else:
        details["eliminated_team_id"] = loser


def _validate_score(value: Any, side: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{side} score must be an integer")
    if value < 0:
        raise ValidationError(f"{side} score cannot be negative")
    return value


async def enter_score(
    session: AsyncSession, match_id: int, home_score: int, away_score: int, actor_id: int
) -> Match:
    """Record a final score. Hockey has no draws: tied scores are rejected."""

    async def apply(session: AsyncSession, match: Match, tournament: Tournament, details: Dict[str, Any]) -> None:
        _check_playable(match)
        home = _validate_score(home_score, "Home")
        away = _validate_score(away_score, "Away")
        if home == away:
            raise ValidationError("Scores cannot be tied. Hockey matches must have a winner.")
        match.home_score = home
        match.away_score = away
        match.winner_team_id = match.home_team_id if home > away else match.away_team_id
        match.status = MatchStatus.COMPLETED
        details["home_score"] = home
        details["away_score"] = away
        await session.flush()
        await advance(session, match, tournament, details)

    match = await _submit(session, match_id, actor_id, Action.ENTER_SCORE, "EnterScore", apply)
    logger.info(
        "Score entered for match %s: %s-%s, winner %s",
        match.id, match.home_score, match.away_score, match.winner_team_id,
    )
    return match


async def forfeit_match(
    session: AsyncSession,
    match_id: int,
    forfeiting_team_id: int,
    actor_id: int,
    reason: Optional[str] = None,
) -> Match:
    """Award the match to the opponent of forfeiting_team_id. No goals are recorded."""

    async def apply(session: AsyncSession, match: Match, tournament: Tournament, details: Dict[str, Any]) -> None:
        _check_playable(match)
        if not match.has_team(forfeiting_team_id):
            raise ValidationError("Forfeiting team must be a participant in this match")
        match.winner_team_id = (
            match.away_team_id if forfeiting_team_id == match.home_team_id else match.home_team_id
        )
        match.home_score = None
        match.away_score = None
        match.forfeit_reason = reason
        match.status = MatchStatus.FORFEIT
        details["forfeiting_team_id"] = forfeiting_team_id
        details["reason"] = reason
        await session.flush()
        await advance(session, match, tournament, details)

    match = await _submit(session, match_id, actor_id, Action.FORFEIT_MATCH, "ForfeitMatch", apply)
    logger.info("Match %s forfeited by team %s", match.id, forfeiting_team_id)
    return match


async def start_match(session: AsyncSession, match_id: int, actor_id: int) -> Match:
    """Mark a ready match as being played."""

    async def apply(session: AsyncSession, match: Match, tournament: Tournament, details: Dict[str, Any]) -> None:
        _check_playable(match)
        if match.status != MatchStatus.SCHEDULED:
            raise StateError(f"Cannot start match in '{match.status}' status")
        match.status = MatchStatus.IN_PROGRESS

    return await _submit(session, match_id, actor_id, Action.START_MATCH, "StartMatch", apply)


async def cancel_match(session: AsyncSession, match_id: int, actor_id: int) -> Match:
    """Cancel a match that has not finished. Nothing is pushed forward."""

    async def apply(session: AsyncSession, match: Match, tournament: Tournament, details: Dict[str, Any]) -> None:
        if match.status == MatchStatus.CANCELLED:
            raise StateError("Match is already cancelled")
        match.status = MatchStatus.CANCELLED

    match = await _submit(session, match_id, actor_id, Action.CANCEL_MATCH, "CancelMatch", apply, verb="cancelled")
    logger.warning("Match %s cancelled by user %s", match.id, actor_id)
    return match
