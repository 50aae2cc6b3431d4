"""Bracket match model: matches and their forward links."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from puckdrop.models.base import Base


class BracketType:
    WINNERS = "Winners"
    LOSERS = "Losers"
    GRAND_FINAL = "GrandFinal"

    # Stage order of the forward-only graph
    STAGE = {WINNERS: 0, LOSERS: 1, GRAND_FINAL: 2}


class MatchStatus:
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FORFEIT = "Forfeit"
    CANCELLED = "Cancelled"

    TERMINAL = frozenset({COMPLETED, FORFEIT})


class Slot:
    HOME = "home"
    AWAY = "away"


class Match(Base):
    """Single match in a tournament bracket.

    Links are forward-only: next_match_id carries the winner, loser_next_match_id
    the loser of a Winners match. Which match feeds a given match is answered by
    querying on those columns, never stored.
    """

    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False, index=True)
    bracket_type: Mapped[str] = mapped_column(String(16), nullable=False, default=BracketType.WINNERS)
    round: Mapped[int] = mapped_column(Integer, nullable=False)
    match_number: Mapped[int] = mapped_column(Integer, nullable=False)
    bracket_position: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)  # W-R1-M1, L-R2-M1, GF1, SF1 ...
    home_team_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teams.id"), nullable=True)
    away_team_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teams.id"), nullable=True)
    home_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    away_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    winner_team_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teams.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MatchStatus.SCHEDULED)
    is_bye: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)  # False only for the inert GF2
    forfeit_reason: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    next_match_id: Mapped[Optional[int]] = mapped_column(ForeignKey("matches.id"), nullable=True, index=True)
    next_match_slot: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)  # home | away
    loser_next_match_id: Mapped[Optional[int]] = mapped_column(ForeignKey("matches.id"), nullable=True, index=True)
    loser_next_match_slot: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    scheduled_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    venue: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in MatchStatus.TERMINAL

    @property
    def graph_order(self) -> tuple[int, int, int]:
        """(stage, round, match_number) - every forward link points to a larger key."""
        return (BracketType.STAGE[self.bracket_type], self.round, self.match_number)

    @property
    def loser_team_id(self) -> Optional[int]:
        if self.winner_team_id is None or self.home_team_id is None or self.away_team_id is None:
            return None
        return self.away_team_id if self.winner_team_id == self.home_team_id else self.home_team_id

    def team_in_slot(self, slot: str) -> Optional[int]:
        return self.home_team_id if slot == Slot.HOME else self.away_team_id

    def set_team_in_slot(self, slot: str, team_id: Optional[int]) -> None:
        if slot == Slot.HOME:
            self.home_team_id = team_id
        else:
            self.away_team_id = team_id

    def has_team(self, team_id: int) -> bool:
        return team_id is not None and team_id in (self.home_team_id, self.away_team_id)
