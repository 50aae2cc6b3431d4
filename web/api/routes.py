"""API routes for tournaments, teams, brackets, matches, standings and the audit log."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from puckdrop.models import User, async_session_factory
from puckdrop.services import advancement, audit, bracket_gen, lifecycle, standings
from web.auth import require_user

router = APIRouter(prefix="/api", tags=["tournaments"])


# --- Pydantic schemas ---


class TournamentCreate(BaseModel):
    name: str
    format: str = "DoubleElimination"
    tiebreaker_order: Optional[list[str]] = None
    venue: Optional[str] = None


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    format: str
    status: str
    tiebreaker_order: Optional[list[str]] = None
    venue: Optional[str] = None
    is_inconsistent: bool
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class TransitionRequest(BaseModel):
    action: str  # Publish, CloseRegistration, Start, Complete, Cancel


class TeamCreate(BaseModel):
    name: str
    seed: Optional[int] = None
    captain_user_id: Optional[int] = None


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    name: str
    seed: Optional[int]
    captain_user_id: Optional[int] = None
    manual_tie_rank: Optional[int] = None


class MatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    bracket_type: str
    round: int
    match_number: int
    bracket_position: Optional[str]
    home_team_id: Optional[int]
    away_team_id: Optional[int]
    home_score: Optional[int]
    away_score: Optional[int]
    winner_team_id: Optional[int]
    status: str
    is_bye: bool
    is_active: bool
    forfeit_reason: Optional[str] = None
    next_match_id: Optional[int]
    next_match_slot: Optional[str]
    loser_next_match_id: Optional[int]
    loser_next_match_slot: Optional[str]
    scheduled_time: Optional[datetime] = None
    venue: Optional[str] = None


class ScoreRequest(BaseModel):
    home_score: int
    away_score: int


class ForfeitRequest(BaseModel):
    forfeiting_team_id: int
    reason: Optional[str] = None


class RankedTeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    team_id: int
    name: str
    seed: Optional[int]
    rank: Optional[int]
    status: str  # champion | active | eliminated
    wins: int
    losses: int
    goals_for: int
    goals_against: int
    goal_differential: int
    eliminated_in: Optional[str] = None


class StandingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tournament_id: int
    champion_team_id: Optional[int]
    teams: list[RankedTeamResponse]
    tied_groups: list[list[int]]


class ResolveTiesRequest(BaseModel):
    manual_order: list[int]


class AuditRecordResponse(BaseModel):
    id: int
    action: str
    description: str
    user_id: int
    from_status: Optional[str]
    to_status: Optional[str]
    entity_type: Optional[str]
    entity_id: Optional[int]
    details: Optional[dict[str, Any]]
    timestamp: datetime


class AuditLogResponse(BaseModel):
    records: list[AuditRecordResponse]
    total_count: int
    offset: int
    limit: int
    has_more: bool


# --- Tournaments ---


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
async def create_tournament(body: TournamentCreate, user: User = Depends(require_user)):
    """Create a Draft tournament. The caller becomes its Owner."""
    async with async_session_factory() as session:
        return await lifecycle.create_tournament(
            session,
            body.name,
            body.format,
            user.id,
            tiebreaker_order=body.tiebreaker_order,
            venue=body.venue,
        )


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
async def get_tournament(tournament_id: int):
    async with async_session_factory() as session:
        return await bracket_gen.get_tournament(session, tournament_id)


@router.post("/tournaments/{tournament_id}/transition", response_model=TournamentResponse)
async def transition_tournament(tournament_id: int, body: TransitionRequest, user: User = Depends(require_user)):
    """Move the tournament through its lifecycle."""
    async with async_session_factory() as session:
        return await lifecycle.transition(session, tournament_id, body.action, user.id)


# --- Teams ---


@router.get("/tournaments/{tournament_id}/teams", response_model=list[TeamResponse])
async def list_teams(tournament_id: int):
    async with async_session_factory() as session:
        return await lifecycle.list_teams(session, tournament_id)


@router.post("/tournaments/{tournament_id}/teams", response_model=TeamResponse, status_code=201)
async def add_team(tournament_id: int, body: TeamCreate, user: User = Depends(require_user)):
    async with async_session_factory() as session:
        return await lifecycle.add_team(
            session, tournament_id, body.name, body.seed, user.id, captain_user_id=body.captain_user_id
        )


# --- Bracket ---


@router.post("/tournaments/{tournament_id}/bracket/generate", response_model=list[MatchResponse], status_code=201)
async def generate_bracket(tournament_id: int, user: User = Depends(require_user)):
    """Generate the full match graph from the seeded teams."""
    async with async_session_factory() as session:
        return await bracket_gen.generate_bracket(session, tournament_id, user.id)


@router.post("/tournaments/{tournament_id}/bracket/clear")
async def clear_bracket(tournament_id: int, user: User = Depends(require_user)):
    """Delete every match so the bracket can be regenerated."""
    async with async_session_factory() as session:
        await bracket_gen.clear_bracket(session, tournament_id, user.id)
        return {"ok": True}


@router.get("/tournaments/{tournament_id}/matches", response_model=list[MatchResponse])
async def get_matches(tournament_id: int, include_inactive: bool = False):
    async with async_session_factory() as session:
        return await bracket_gen.get_matches(session, tournament_id, include_inactive=include_inactive)


# --- Matches ---


@router.get("/tournaments/{tournament_id}/matches/{match_id}", response_model=MatchResponse)
async def get_match(tournament_id: int, match_id: int):
    async with async_session_factory() as session:
        return await bracket_gen.get_match(session, match_id, tournament_id=tournament_id)


@router.post("/tournaments/{tournament_id}/matches/{match_id}/start", response_model=MatchResponse)
async def start_match(tournament_id: int, match_id: int, user: User = Depends(require_user)):
    async with async_session_factory() as session:
        await bracket_gen.get_match(session, match_id, tournament_id=tournament_id)
        return await advancement.start_match(session, match_id, user.id)


@router.post("/tournaments/{tournament_id}/matches/{match_id}/score", response_model=MatchResponse)
async def enter_score(tournament_id: int, match_id: int, body: ScoreRequest, user: User = Depends(require_user)):
    """Record a final score and advance both teams."""
    async with async_session_factory() as session:
        await bracket_gen.get_match(session, match_id, tournament_id=tournament_id)
        return await advancement.enter_score(session, match_id, body.home_score, body.away_score, user.id)


@router.post("/tournaments/{tournament_id}/matches/{match_id}/forfeit", response_model=MatchResponse)
async def forfeit_match(tournament_id: int, match_id: int, body: ForfeitRequest, user: User = Depends(require_user)):
    async with async_session_factory() as session:
        await bracket_gen.get_match(session, match_id, tournament_id=tournament_id)
        return await advancement.forfeit_match(
            session, match_id, body.forfeiting_team_id, user.id, reason=body.reason
        )


@router.post("/tournaments/{tournament_id}/matches/{match_id}/cancel", response_model=MatchResponse)
async def cancel_match(tournament_id: int, match_id: int, user: User = Depends(require_user)):
    async with async_session_factory() as session:
        await bracket_gen.get_match(session, match_id, tournament_id=tournament_id)
        return await advancement.cancel_match(session, match_id, user.id)


# --- Standings ---


@router.get("/tournaments/{tournament_id}/standings", response_model=StandingsResponse)
async def get_standings(tournament_id: int):
    async with async_session_factory() as session:
        return await standings.get_standings(session, tournament_id)


@router.post("/tournaments/{tournament_id}/standings/resolve-ties")
async def resolve_ties(tournament_id: int, body: ResolveTiesRequest, user: User = Depends(require_user)):
    """Record a manual order for teams the tiebreakers cannot separate."""
    async with async_session_factory() as session:
        await standings.resolve_ties(session, tournament_id, body.manual_order, user.id)
        return {"ok": True}


# --- Audit log ---


@router.get("/tournaments/{tournament_id}/audit-log", response_model=AuditLogResponse)
async def get_audit_log(
    tournament_id: int,
    offset: int = 0,
    limit: Optional[int] = None,
    action: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    user: User = Depends(require_user),
):
    async with async_session_factory() as session:
        await bracket_gen.get_tournament(session, tournament_id)
        page = await audit.get_audit_log(
            session,
            tournament_id,
            user.id,
            offset=offset,
            limit=limit,
            action=action,
            from_date=datetime.combine(from_date, time.min) if from_date else None,
            to_date=datetime.combine(to_date, time.min) if to_date else None,
        )
        records = [
            AuditRecordResponse(
                id=r.id,
                action=r.action,
                description=audit.describe(r),
                user_id=r.user_id,
                from_status=r.from_status,
                to_status=r.to_status,
                entity_type=r.entity_type,
                entity_id=r.entity_id,
                details=r.details,
                timestamp=r.timestamp,
            )
            for r in page.records
        ]
        return AuditLogResponse(
            records=records,
            total_count=page.total_count,
            offset=page.offset,
            limit=page.limit,
            has_more=page.has_more,
        )
