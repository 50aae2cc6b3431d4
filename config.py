"""Configuration for Puckdrop."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(__file__).parent / 'puckdrop.db'}",
)

# Web auth (bearer JWT issued by the auth subsystem)
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-use-long-random-string")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

# API server
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def _parse_list(value: str) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


# Audit log paging
AUDIT_LOG_DEFAULT_LIMIT = int(os.getenv("AUDIT_LOG_DEFAULT_LIMIT", "20"))
AUDIT_LOG_MAX_LIMIT = int(os.getenv("AUDIT_LOG_MAX_LIMIT", "50"))

# Tiebreakers applied after head-to-head when a tournament has none configured.
# Known values: HeadToHead, GoalDifferential, GoalsScored
DEFAULT_TIEBREAKER_ORDER = _parse_list(
    os.getenv("DEFAULT_TIEBREAKER_ORDER", "HeadToHead,GoalDifferential,GoalsScored")
)
