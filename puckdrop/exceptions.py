"""Exceptions raised by the tournament engine.

Every error carries a caller-facing reason. None of them are retried: they
describe a caller mistake or a lost race, not a transient fault.
"""


class PuckdropError(Exception):
    """Base exception for all engine errors."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PuckdropError):
    """Malformed input: bad score, tied score, scoring a bye, unknown id."""

    kind = "validation"


class NotFoundError(ValidationError):
    """Referenced tournament, match, team or user does not exist."""

    kind = "not_found"


class ConflictError(PuckdropError):
    """Match already terminal, or a concurrent submission won the race."""

    kind = "conflict"


class AuthorizationError(PuckdropError):
    """Caller's tournament role is below the action's minimum."""

    kind = "authorization"


class StateError(PuckdropError):
    """Action not valid for the current tournament or bracket state."""

    kind = "state"


class BracketConsistencyError(PuckdropError):
    """Match graph does not have the shape advancement expects.

    The tournament is flagged inconsistent until an Owner or Admin clears and
    regenerates the bracket.
    """

    kind = "inconsistent"
