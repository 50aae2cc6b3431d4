"""Tournament model."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from puckdrop.models.base import Base


class TournamentFormat:
    SINGLE_ELIMINATION = "SingleElimination"
    DOUBLE_ELIMINATION = "DoubleElimination"

    ALL = (SINGLE_ELIMINATION, DOUBLE_ELIMINATION)


class TournamentStatus:
    DRAFT = "Draft"
    OPEN = "Open"
    REGISTRATION_CLOSED = "RegistrationClosed"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    # Statuses in which the bracket may still be generated or cleared
    PRE_START = frozenset({DRAFT, OPEN, REGISTRATION_CLOSED})


class Tournament(Base):
    """Tournament with format, lifecycle status and tiebreaker configuration."""

    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    format: Mapped[str] = mapped_column(String(32), nullable=False, default=TournamentFormat.SINGLE_ELIMINATION)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=TournamentStatus.DRAFT)
    tiebreaker_order: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)  # ["HeadToHead", "GoalDifferential", "GoalsScored"]
    venue: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    # Set when advancement hits a broken bracket; cleared by regeneration
    is_inconsistent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    teams = relationship(
        "Team", back_populates="tournament", cascade="all, delete-orphan"
    )
    admins = relationship(
        "TournamentAdmin", back_populates="tournament", cascade="all, delete-orphan"
    )

    @property
    def is_double_elimination(self) -> bool:
        return self.format == TournamentFormat.DOUBLE_ELIMINATION
