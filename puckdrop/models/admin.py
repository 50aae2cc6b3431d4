"""Tournament staff roles."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from puckdrop.models.base import Base


class TournamentAdmin(Base):
    """User holding Owner, Admin or Scorekeeper role on a tournament."""

    __tablename__ = "tournament_admins"
    __table_args__ = (UniqueConstraint("tournament_id", "user_id", name="uq_tournament_admins_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="Admin")  # Owner, Admin, Scorekeeper
    added_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    tournament: Mapped["Tournament"] = relationship("Tournament", back_populates="admins")
    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])
