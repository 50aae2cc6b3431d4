"""Standings: rank teams by how far they got, then split ties."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import config
from puckdrop.exceptions import ValidationError
from puckdrop.models import BracketType, Match, MatchStatus, Team, Tournament
from puckdrop.services import audit
from puckdrop.services.authorization import Action, require_role
from puckdrop.services.bracket_gen import get_tournament

logger = logging.getLogger("puckdrop.standings")

CHAMPION = "champion"
ACTIVE = "active"
ELIMINATED = "eliminated"

HEAD_TO_HEAD = "HeadToHead"
GOAL_DIFFERENTIAL = "GoalDifferential"
GOALS_SCORED = "GoalsScored"
TIEBREAKERS = (HEAD_TO_HEAD, GOAL_DIFFERENTIAL, GOALS_SCORED)


@dataclass
class RankedTeam:
    team_id: int
    name: str
    seed: Optional[int]
    status: str = ACTIVE
    rank: Optional[int] = None
    wins: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    eliminated_in: Optional[str] = None  # bracket position of the eliminating match
    manual_tie_rank: Optional[int] = None
    depth: Tuple[int, int] = (0, 0)

    @property
    def goal_differential(self) -> int:
        return self.goals_for - self.goals_against


@dataclass
class Standings:
    tournament_id: int
    teams: List[RankedTeam] = field(default_factory=list)
    tied_groups: List[List[int]] = field(default_factory=list)
    champion_team_id: Optional[int] = None


HeadToHead = Dict[Tuple[int, int], int]
Criterion = Callable[[Sequence[RankedTeam]], Callable[[RankedTeam], float]]


def _head_to_head(h2h: HeadToHead) -> Criterion:
    # Wins against the other teams still tied, recomputed for every subgroup
    def criterion(group: Sequence[RankedTeam]) -> Callable[[RankedTeam], float]:
        ids = [t.team_id for t in group]
        return lambda t: sum(h2h.get((t.team_id, other), 0) for other in ids if other != t.team_id)
    return criterion


def _manual(group: Sequence[RankedTeam]) -> Callable[[RankedTeam], float]:
    return lambda t: -t.manual_tie_rank if t.manual_tie_rank is not None else float("-inf")


STAT_CRITERIA: Dict[str, Criterion] = {
    GOAL_DIFFERENTIAL: lambda group: (lambda t: t.goal_differential),
    GOALS_SCORED: lambda group: (lambda t: t.goals_for),
}


def _partition(group: Sequence[RankedTeam], criterion: Criterion) -> List[List[RankedTeam]]:
    """Split group into classes by criterion, best first. Higher key is better."""
    key = criterion(group)
    ordered = sorted(group, key=key, reverse=True)
    classes: List[List[RankedTeam]] = []
    last = None
    for team in ordered:
        value = key(team)
        if classes and value == last:
            classes[-1].append(team)
        else:
            classes.append([team])
        last = value
    return classes


def split_ties(
    group: Sequence[RankedTeam], tiebreaker_order: Sequence[str], h2h: HeadToHead
) -> List[List[RankedTeam]]:
    """Order teams eliminated at the same depth. Returns classes of still-tied teams."""
    criteria: List[Criterion] = [_head_to_head(h2h)]
    for name in tiebreaker_order:
        if name == HEAD_TO_HEAD:
            continue
        if name not in STAT_CRITERIA:
            logger.warning("Ignoring unknown tiebreaker %s", name)
            continue
        criteria.append(STAT_CRITERIA[name])
    criteria.append(_manual)

    classes = [sorted(group, key=lambda t: (t.seed is None, t.seed or 0))]
    for criterion in criteria:
        refined: List[List[RankedTeam]] = []
        for cls in classes:
            if len(cls) == 1:
                refined.append(cls)
            else:
                refined.extend(_partition(cls, criterion))
        classes = refined
    return classes


def _find_champion(matches: Sequence[Match], double: bool) -> Optional[int]:
    if double:
        grand_finals = {m.round: m for m in matches if m.bracket_type == BracketType.GRAND_FINAL}
        gf1, gf2 = grand_finals.get(1), grand_finals.get(2)
        if gf2 is not None and gf2.is_active and gf2.is_terminal:
            return gf2.winner_team_id
        if gf1 is not None and gf1.is_terminal and gf1.winner_team_id == gf1.home_team_id:
            return gf1.winner_team_id
        return None
    winners = [m for m in matches if m.bracket_type == BracketType.WINNERS]
    if not winners:
        return None
    final = max(winners, key=lambda m: m.round)
    return final.winner_team_id if final.is_terminal else None


def compute_standings(tournament: Tournament, teams: Sequence[Team], matches: Sequence[Match]) -> Standings:
    """Pure standings computation over a loaded bracket."""
    double = tournament.is_double_elimination
    losses_to_eliminate = 2 if double else 1
    rows = {
        t.id: RankedTeam(team_id=t.id, name=t.name, seed=t.seed, manual_tie_rank=t.manual_tie_rank)
        for t in teams
    }
    h2h: HeadToHead = defaultdict(int)

    for m in sorted(matches, key=lambda m: m.graph_order):
        if not m.is_terminal or m.is_bye:
            continue
        winner, loser = m.winner_team_id, m.loser_team_id
        if winner not in rows or loser not in rows:
            continue
        rows[winner].wins += 1
        rows[loser].losses += 1
        h2h[(winner, loser)] += 1
        if m.status == MatchStatus.COMPLETED:
            winner_goals = m.home_score if winner == m.home_team_id else m.away_score
            loser_goals = m.away_score if winner == m.home_team_id else m.home_score
            rows[winner].goals_for += winner_goals or 0
            rows[winner].goals_against += loser_goals or 0
            rows[loser].goals_for += loser_goals or 0
            rows[loser].goals_against += winner_goals or 0
        if rows[loser].losses == losses_to_eliminate:
            rows[loser].status = ELIMINATED
            rows[loser].depth = (BracketType.STAGE[m.bracket_type], m.round)
            rows[loser].eliminated_in = m.bracket_position

    standings = Standings(tournament_id=tournament.id)
    champion_id = _find_champion(matches, double)
    ordered: List[RankedTeam] = []
    if champion_id in rows:
        champion = rows[champion_id]
        champion.status = CHAMPION
        champion.rank = 1
        standings.champion_team_id = champion_id
        ordered.append(champion)

    active = [r for r in rows.values() if r.status == ACTIVE]
    ordered.extend(sorted(active, key=lambda t: (t.seed is None, t.seed or 0)))

    by_depth: Dict[Tuple[int, int], List[RankedTeam]] = defaultdict(list)
    for r in rows.values():
        if r.status == ELIMINATED:
            by_depth[r.depth].append(r)

    tiebreaker_order = tournament.tiebreaker_order or config.DEFAULT_TIEBREAKER_ORDER
    position = len(ordered) + 1
    for depth in sorted(by_depth, reverse=True):
        for cls in split_ties(by_depth[depth], tiebreaker_order, h2h):
            for team in cls:
                team.rank = position
            if len(cls) > 1:
                standings.tied_groups.append([t.team_id for t in cls])
            ordered.extend(cls)
            position += len(cls)

    standings.teams = ordered
    return standings


async def get_standings(session: AsyncSession, tournament_id: int) -> Standings:
    """Current standings. Works on an unfinished bracket: undecided teams are active."""
    tournament = await get_tournament(session, tournament_id)
    teams = (await session.execute(select(Team).where(Team.tournament_id == tournament_id))).scalars().all()
    matches = (await session.execute(select(Match).where(Match.tournament_id == tournament_id))).scalars().all()
    return compute_standings(tournament, teams, matches)


async def resolve_ties(
    session: AsyncSession, tournament_id: int, manual_order: List[int], actor_id: int
) -> None:
    """Record an Admin's ordering for teams the automatic tiebreakers cannot separate."""
    try:
        await get_tournament(session, tournament_id)
        await require_role(session, tournament_id, actor_id, Action.RESOLVE_TIES)
        if len(manual_order) < 2:
            raise ValidationError("At least two teams are required to resolve a tie")
        if len(set(manual_order)) != len(manual_order):
            raise ValidationError("Each team may appear only once in the manual order")

        result = await session.execute(
            select(Team).where(Team.tournament_id == tournament_id, Team.id.in_(manual_order))
        )
        teams = {t.id: t for t in result.scalars().all()}
        unknown = [tid for tid in manual_order if tid not in teams]
        if unknown:
            raise ValidationError(
                f"Teams not in this tournament: {', '.join(str(tid) for tid in unknown)}"
            )
        for rank, team_id in enumerate(manual_order, start=1):
            teams[team_id].manual_tie_rank = rank

        audit.record(
            session,
            tournament_id,
            actor_id,
            "ResolveTies",
            entity_type="Tournament",
            entity_id=tournament_id,
            details={"manual_order": list(manual_order)},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Ties resolved for tournament %s: %s", tournament_id, manual_order)
