"""Tournament announcements."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from puckdrop.models.base import Base


class AnnouncementTarget:
    ALL = "All"
    CAPTAINS = "Captains"
    ADMINS = "Admins"

    ALL_TARGETS = (ALL, CAPTAINS, ADMINS)


class Announcement(Base):
    """Message posted by tournament staff. Deleting only sets deleted_at."""

    __tablename__ = "announcements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    # None when target_team_ids is set
    target: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, default=AnnouncementTarget.ALL)
    target_team_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
