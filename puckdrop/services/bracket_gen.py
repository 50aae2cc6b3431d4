"""Bracket generation service."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from puckdrop.exceptions import BracketConsistencyError, NotFoundError, StateError, ValidationError
from puckdrop.models import (
    BracketType,
    Match,
    MatchStatus,
    Slot,
    Team,
    Tournament,
    TournamentFormat,
    TournamentStatus,
)
from puckdrop.services import audit
from puckdrop.services.authorization import Action, require_role
from puckdrop.services.locks import bracket_write_lock, drop_match_locks

logger = logging.getLogger("puckdrop.bracket")

WINNER = "winner"
LOSER = "loser"


def next_power_of_2(n: int) -> int:
    """Round up to next power of 2."""
    p = 1
    while p < n:
        p *= 2
    return p


def seed_positions(size: int) -> List[int]:
    """Seed at each round-1 slot, top to bottom. Slots 2i and 2i+1 meet.

    For 8: [1, 8, 4, 5, 2, 7, 3, 6]. Seed p always meets seed size + 1 - p,
    and seeds 1 and 2 sit in opposite halves so they can only meet in the final.
    """
    positions = [1]
    while len(positions) < size:
        total = len(positions) * 2 + 1
        positions = [s for p in positions for s in (p, total - p)]
    return positions


def losers_round_sizes(size: int) -> List[int]:
    """Matches per Losers round for a Winners bracket of `size` slots.

    Two Losers rounds absorb each Winners round: a round that pairs off
    survivors, then one where Winners losers drop in. For 8: [2, 2, 1, 1].
    """
    winners_rounds = size.bit_length() - 1
    sizes = []
    for j in range(1, winners_rounds):
        sizes.extend([size >> (j + 1)] * 2)
    return sizes


def validate_seeding(teams: Sequence[Team]) -> None:
    """Seeds must be present, unique and contiguous from 1."""
    missing = [t for t in teams if t.seed is None]
    if missing:
        raise ValidationError(
            f"All teams must have a seed assigned. {len(missing)} team(s) are missing seeds."
        )
    seeds = sorted(t.seed for t in teams)
    duplicates = sorted({s for s in seeds if seeds.count(s) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate seeds found: {', '.join(str(s) for s in duplicates)}")
    for expected, seed in enumerate(seeds, start=1):
        if seed != expected:
            raise ValidationError(f"Seeds must be contiguous starting from 1. Missing seed: {expected}")


def _single_elim_label(round_num: int, total_rounds: int, match_num: int, team_count: int) -> str:
    rounds_from_end = total_rounds - round_num
    if rounds_from_end == 0:
        return "Final"
    if rounds_from_end == 1 and team_count >= 4:
        return f"SF{match_num}"
    if rounds_from_end == 2 and team_count >= 8:
        return f"QF{match_num}"
    return f"R{round_num}-M{match_num}"


@dataclass
class BracketPlan:
    """Unsaved matches plus the forward links to write once they have ids."""

    tournament_id: int
    venue: Optional[str] = None
    matches: List[Match] = field(default_factory=list)
    links: List[Tuple[Match, Match, str, str]] = field(default_factory=list)  # (source, target, slot, kind)

    def new_match(self, bracket_type: str, round_num: int, match_num: int, label: str) -> Match:
        m = Match(
            tournament_id=self.tournament_id,
            bracket_type=bracket_type,
            round=round_num,
            match_number=match_num,
            bracket_position=label,
            status=MatchStatus.SCHEDULED,
            is_bye=False,
            is_active=True,
            venue=self.venue,
        )
        self.matches.append(m)
        return m

    def link(self, source: Match, target: Match, slot: str, kind: str = WINNER) -> None:
        self.links.append((source, target, slot, kind))

    def incoming(self, target: Match) -> List[Tuple[Match, str]]:
        return [(src, kind) for src, tgt, _, kind in self.links if tgt is target]

    def outgoing(self, source: Match, kind: str) -> Optional[Tuple[Match, str]]:
        for src, tgt, slot, k in self.links:
            if src is source and k == kind:
                return tgt, slot
        return None

    def apply_links(self) -> None:
        """Write forward pointers. Matches must already be flushed."""
        for source, target, slot, kind in self.links:
            if kind == WINNER:
                source.next_match_id = target.id
                source.next_match_slot = slot
            else:
                source.loser_next_match_id = target.id
                source.loser_next_match_slot = slot


def plan_bracket(
    tournament_id: int,
    teams: Sequence[Team],
    bracket_format: str,
    venue: Optional[str] = None,
) -> BracketPlan:
    """Lay out every match of the bracket for seeded teams. No database access."""
    n = len(teams)
    size = next_power_of_2(n)
    winners_rounds = size.bit_length() - 1
    double = bracket_format == TournamentFormat.DOUBLE_ELIMINATION
    by_seed: Dict[int, Team] = {t.seed: t for t in teams}
    plan = BracketPlan(tournament_id=tournament_id, venue=venue)

    # Winners bracket, all rounds up front
    winners: List[List[Match]] = []
    for r in range(1, winners_rounds + 1):
        count = size >> r
        round_matches = []
        for i in range(1, count + 1):
            label = f"W-R{r}-M{i}" if double else _single_elim_label(r, winners_rounds, i, n)
            round_matches.append(plan.new_match(BracketType.WINNERS, r, i, label))
        winners.append(round_matches)

    positions = seed_positions(size)
    for i, m in enumerate(winners[0]):
        home = by_seed.get(positions[2 * i])
        away = by_seed.get(positions[2 * i + 1])
        if home is not None and away is not None:
            m.home_team_id = home.id
            m.away_team_id = away.id
        else:
            # Bye: top seed advances without playing
            present = home or away
            m.home_team_id = present.id
            m.is_bye = True
            m.status = MatchStatus.COMPLETED
            m.winner_team_id = present.id

    for r in range(winners_rounds - 1):
        for i, m in enumerate(winners[r]):
            plan.link(m, winners[r + 1][i // 2], Slot.HOME if i % 2 == 0 else Slot.AWAY)

    if double:
        _plan_losers_and_grand_final(plan, winners, size)

    # Bye winners take their next-round slot as part of generation
    for m in winners[0]:
        if m.is_bye:
            out = plan.outgoing(m, WINNER)
            if out:
                target, slot = out
                target.set_team_in_slot(slot, m.winner_team_id)

    return plan


def _plan_losers_and_grand_final(plan: BracketPlan, winners: List[List[Match]], size: int) -> None:
    winners_rounds = len(winners)
    gf1 = plan.new_match(BracketType.GRAND_FINAL, 1, 1, "GF1")
    gf2 = plan.new_match(BracketType.GRAND_FINAL, 2, 1, "GF2")
    gf2.is_active = False
    winners_final = winners[-1][0]

    if winners_rounds == 1:
        # Two teams: the final's loser is the Losers-bracket representative
        plan.link(winners_final, gf1, Slot.HOME)
        plan.link(winners_final, gf1, Slot.AWAY, LOSER)
        return

    losers: List[List[Match]] = []
    for r, count in enumerate(losers_round_sizes(size), start=1):
        losers.append([
            plan.new_match(BracketType.LOSERS, r, i, f"L-R{r}-M{i}") for i in range(1, count + 1)
        ])

    # Losers round 1: Winners round-1 losers pair off
    for i, m in enumerate(winners[0]):
        plan.link(m, losers[0][i // 2], Slot.HOME if i % 2 == 0 else Slot.AWAY, LOSER)

    for j in range(1, winners_rounds):
        major = losers[2 * j - 1]
        for i, m in enumerate(losers[2 * j - 2]):
            plan.link(m, major[i], Slot.HOME)
        # Losers of Winners round j+1 drop in; reversed on alternate rounds to delay rematches
        dropping = winners[j]
        if j % 2 == 1:
            dropping = list(reversed(dropping))
        for i, m in enumerate(dropping):
            plan.link(m, major[i], Slot.AWAY, LOSER)
        if 2 * j < len(losers):
            for i, m in enumerate(major):
                plan.link(m, losers[2 * j][i // 2], Slot.HOME if i % 2 == 0 else Slot.AWAY)

    plan.link(winners_final, gf1, Slot.HOME)
    plan.link(losers[-1][0], gf1, Slot.AWAY)

    _mark_losers_byes(plan, losers)


def _mark_losers_byes(plan: BracketPlan, losers: List[List[Match]]) -> None:
    """Flag Losers matches that can never host two teams.

    A feeder is dead if it is the loser of a round-1 bye or the winner of a
    match nobody will reach. One live feeder: the match passes its team straight
    through when it arrives. None: the match is cancelled outright.
    """
    dead_winner = set()
    for round_matches in losers:
        for m in round_matches:
            live = 0
            for src, kind in plan.incoming(m):
                if kind == LOSER:
                    live += 0 if src.is_bye else 1
                else:
                    live += 0 if id(src) in dead_winner else 1
            if live == 2:
                continue
            m.is_bye = True
            if live == 0:
                m.status = MatchStatus.CANCELLED
                dead_winner.add(id(m))


def check_forward_only(matches: Sequence[Match]) -> None:
    """Every pointer must go to a match later in (stage, round, number) order."""
    by_id = {m.id: m for m in matches}
    for m in matches:
        for target_id in (m.next_match_id, m.loser_next_match_id):
            if target_id is None:
                continue
            target = by_id.get(target_id)
            if target is None:
                raise BracketConsistencyError(
                    f"Match {m.bracket_position} points to match {target_id} outside the bracket"
                )
            if target.graph_order <= m.graph_order:
                raise BracketConsistencyError(
                    f"Match {m.bracket_position} points backwards to {target.bracket_position}"
                )


async def get_tournament(session: AsyncSession, tournament_id: int) -> Tournament:
    t = await session.get(Tournament, tournament_id)
    if not t:
        raise NotFoundError("Tournament not found")
    return t


async def _count_matches(session: AsyncSession, tournament_id: int) -> int:
    return await session.scalar(
        select(func.count(Match.id)).where(Match.tournament_id == tournament_id)
    ) or 0


async def generate_bracket(session: AsyncSession, tournament_id: int, actor_id: int) -> List[Match]:
    """Build and persist the complete match graph for a tournament's seeded teams."""
    async with bracket_write_lock(tournament_id):
        try:
            t = await get_tournament(session, tournament_id)
            await require_role(session, tournament_id, actor_id, Action.GENERATE_BRACKET)
            if t.status not in TournamentStatus.PRE_START and not t.is_inconsistent:
                raise StateError(
                    f"Cannot generate bracket when tournament is in '{t.status}' status. "
                    f"Bracket generation is only allowed in: Draft, Open, RegistrationClosed"
                )
            if await _count_matches(session, tournament_id) > 0:
                raise StateError("Tournament already has matches. Clear the bracket first to regenerate.")

            result = await session.execute(
                select(Team).where(Team.tournament_id == tournament_id).order_by(Team.seed, Team.id)
            )
            teams = list(result.scalars().all())
            if len(teams) < 2:
                raise StateError("Tournament must have at least 2 teams to generate bracket")
            validate_seeding(teams)

            plan = plan_bracket(tournament_id, teams, t.format, venue=t.venue)
            session.add_all(plan.matches)
            await session.flush()
            plan.apply_links()
            check_forward_only(plan.matches)
            await session.flush()

            size = next_power_of_2(len(teams))
            t.is_inconsistent = False
            audit.record(
                session,
                tournament_id,
                actor_id,
                "GenerateBracket",
                details={
                    "format": t.format,
                    "team_count": len(teams),
                    "bracket_size": size,
                    "byes": size - len(teams),
                    "match_count": len(plan.matches),
                },
            )
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    logger.info(
        "Generated %s bracket for tournament %s: %d teams, %d matches",
        t.format, tournament_id, len(teams), len(plan.matches),
    )
    return sorted(plan.matches, key=lambda m: m.graph_order)


async def clear_bracket(session: AsyncSession, tournament_id: int, actor_id: int) -> None:
    """Delete every match of the tournament so the bracket can be regenerated."""
    async with bracket_write_lock(tournament_id):
        try:
            t = await get_tournament(session, tournament_id)
            await require_role(session, tournament_id, actor_id, Action.CLEAR_BRACKET)
            if t.status not in TournamentStatus.PRE_START and not t.is_inconsistent:
                raise StateError(
                    f"Cannot clear bracket when tournament is in '{t.status}' status"
                )
            match_ids = list(
                (await session.scalars(select(Match.id).where(Match.tournament_id == tournament_id))).all()
            )
            deleted = len(match_ids)
            await session.execute(delete(Match).where(Match.tournament_id == tournament_id))
            await session.execute(
                update(Team).where(Team.tournament_id == tournament_id).values(manual_tie_rank=None)
            )
            audit.record(
                session,
                tournament_id,
                actor_id,
                "ClearBracket",
                details={"deleted_matches": deleted, "was_inconsistent": t.is_inconsistent},
            )
            await session.commit()
            drop_match_locks(match_ids)
        except Exception:
            await session.rollback()
            raise
    logger.info("Cleared bracket for tournament %s (%d matches)", tournament_id, deleted)


async def get_matches(
    session: AsyncSession, tournament_id: int, include_inactive: bool = False
) -> List[Match]:
    """All matches in bracket order. The inert bracket-reset match is hidden unless asked for."""
    await get_tournament(session, tournament_id)
    query = select(Match).where(Match.tournament_id == tournament_id)
    if not include_inactive:
        query = query.where(Match.is_active.is_(True))
    result = await session.execute(
        query.order_by(Match.round, Match.match_number).execution_options(populate_existing=True)
    )
    return sorted(result.scalars().all(), key=lambda m: m.graph_order)


async def get_match(session: AsyncSession, match_id: int, tournament_id: Optional[int] = None) -> Match:
    match = await session.get(Match, match_id, populate_existing=True)
    if not match or (tournament_id is not None and match.tournament_id != tournament_id):
        raise NotFoundError("Match not found")
    return match
