"""Tournament role checks.

Roles are ranked: Owner > Admin > Scorekeeper. Each action declares the
lowest role allowed to perform it and a caller passes when its rank is at
least that high.
"""
from __future__ import annotations

import enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from puckdrop.exceptions import AuthorizationError
from puckdrop.models import TournamentAdmin


class Role(enum.IntEnum):
    SCOREKEEPER = 1
    ADMIN = 2
    OWNER = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Role from its stored label ("Owner", "admin", ...)."""
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown role: {value}") from None


class Action(str, enum.Enum):
    ENTER_SCORE = "enter_score"
    FORFEIT_MATCH = "forfeit_match"
    START_MATCH = "start_match"
    VIEW_AUDIT_LOG = "view_audit_log"
    VIEW_STAFF = "view_staff"
    GENERATE_BRACKET = "generate_bracket"
    CLEAR_BRACKET = "clear_bracket"
    CANCEL_MATCH = "cancel_match"
    RESOLVE_TIES = "resolve_ties"
    MANAGE_TEAMS = "manage_teams"
    CHANGE_STATUS = "change_status"
    MANAGE_SCOREKEEPERS = "manage_scorekeepers"
    MANAGE_ANNOUNCEMENTS = "manage_announcements"
    MANAGE_ADMINS = "manage_admins"
    TRANSFER_OWNERSHIP = "transfer_ownership"


MINIMUM_ROLE: dict[Action, Role] = {
    Action.ENTER_SCORE: Role.SCOREKEEPER,
    Action.FORFEIT_MATCH: Role.SCOREKEEPER,
    Action.START_MATCH: Role.SCOREKEEPER,
    Action.VIEW_AUDIT_LOG: Role.SCOREKEEPER,
    Action.VIEW_STAFF: Role.SCOREKEEPER,
    Action.GENERATE_BRACKET: Role.ADMIN,
    Action.CLEAR_BRACKET: Role.ADMIN,
    Action.CANCEL_MATCH: Role.ADMIN,
    Action.RESOLVE_TIES: Role.ADMIN,
    Action.MANAGE_TEAMS: Role.ADMIN,
    Action.CHANGE_STATUS: Role.ADMIN,
    Action.MANAGE_SCOREKEEPERS: Role.ADMIN,
    Action.MANAGE_ANNOUNCEMENTS: Role.ADMIN,
    Action.MANAGE_ADMINS: Role.OWNER,
    Action.TRANSFER_OWNERSHIP: Role.OWNER,
}


def is_allowed(role: Optional[Role], action: Action) -> bool:
    """True if role meets the action's minimum. No role never passes."""
    return role is not None and role >= MINIMUM_ROLE[action]


def authorize(role: Optional[Role], action: Action) -> Role:
    """Return role if it may perform action, else raise AuthorizationError."""
    if not is_allowed(role, action):
        required = MINIMUM_ROLE[action].label
        held = role.label if role is not None else "no role"
        raise AuthorizationError(
            f"{action.value} requires {required} or above (caller has {held})"
        )
    return role


async def get_role(session: AsyncSession, tournament_id: int, user_id: int) -> Optional[Role]:
    """Caller's role on the tournament, or None."""
    result = await session.execute(
        select(TournamentAdmin.role).where(
            TournamentAdmin.tournament_id == tournament_id,
            TournamentAdmin.user_id == user_id,
        )
    )
    label = result.scalar_one_or_none()
    return Role.parse(label) if label else None


async def require_role(
    session: AsyncSession, tournament_id: int, user_id: int, action: Action
) -> Role:
    """Look up the caller's role and authorize it for action."""
    role = await get_role(session, tournament_id, user_id)
    return authorize(role, action)
