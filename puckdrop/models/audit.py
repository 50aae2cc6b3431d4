"""Append-only audit trail."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from puckdrop.exceptions import StateError
from puckdrop.models.base import Base


class AuditLog(Base):
    """One accepted mutation: who did what, when, and the status change if any."""

    __tablename__ = "tournament_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # GenerateBracket, EnterScore, ...
    from_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # Match, Team, TournamentAdmin
    entity_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    user: Mapped["User"] = relationship("User")


@event.listens_for(AuditLog, "before_update")
def _reject_update(mapper, connection, target) -> None:
    raise StateError("Audit records are immutable")


@event.listens_for(AuditLog, "before_delete")
def _reject_delete(mapper, connection, target) -> None:
    raise StateError("Audit records cannot be deleted")
