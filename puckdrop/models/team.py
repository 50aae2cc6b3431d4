"""Team model."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from puckdrop.models.base import Base


class Team(Base):
    """Seeded team entered in a tournament."""

    __tablename__ = "teams"
    __table_args__ = (UniqueConstraint("tournament_id", "seed", name="uq_teams_tournament_seed"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    seed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    captain_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    manual_tie_rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # set by resolve_ties
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    tournament: Mapped["Tournament"] = relationship("Tournament", back_populates="teams")
