"""Database models."""
from puckdrop.models.base import Base, async_session_factory, init_db
from puckdrop.models.user import User
from puckdrop.models.tournament import Tournament, TournamentFormat, TournamentStatus
from puckdrop.models.team import Team
from puckdrop.models.match import BracketType, Match, MatchStatus, Slot
from puckdrop.models.admin import TournamentAdmin
from puckdrop.models.announcement import Announcement, AnnouncementTarget
from puckdrop.models.audit import AuditLog  # noqa: F401 - for metadata

__all__ = [
    "Base",
    "User",
    "Tournament",
    "TournamentFormat",
    "TournamentStatus",
    "Team",
    "Match",
    "BracketType",
    "MatchStatus",
    "Slot",
    "TournamentAdmin",
    "AuditLog",
    "Announcement",
    "AnnouncementTarget",
    "async_session_factory",
    "init_db",
]
