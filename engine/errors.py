"""Exceptions raised when an operation violates combat state invariants.

Ordinary rule outcomes (a miss, a failed save, an unreachable square) are
returned as typed values. These exceptions are for requests that cannot be
carried out at all: acting twice, moving a combatant that doesn't exist,
casting with no slots left.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable codes for rejected operations."""
    INVALID_OPERATION = "INVALID_OPERATION"
    NOT_FOUND = "NOT_FOUND"
    INVALID_PHASE = "INVALID_PHASE"
    REACTION_PENDING = "REACTION_PENDING"
    OUT_OF_RANGE = "OUT_OF_RANGE"
    NO_LINE_OF_SIGHT = "NO_LINE_OF_SIGHT"
    NO_RESOURCE_REMAINING = "NO_RESOURCE_REMAINING"
    DESTINATION_BLOCKED = "DESTINATION_BLOCKED"
    PATH_NOT_FOUND = "PATH_NOT_FOUND"
    ALREADY_ACTED = "ALREADY_ACTED"


class InvalidOperationError(ValueError):
    """Base class for every rejected combat operation."""

    code = ErrorCode.INVALID_OPERATION
    http_status = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSON response."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
            }
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value}, message={self.message!r})"


class CombatantNotFoundError(InvalidOperationError):
    """No combatant with the given id is on the roster."""

    code = ErrorCode.NOT_FOUND
    http_status = 404

    def __init__(self, combatant_id: str):
        super().__init__(
            f"Combatant '{combatant_id}' not found",
            details={"combatant_id": combatant_id},
        )


class InvalidPhaseError(InvalidOperationError):
    """The operation isn't allowed in the current combat phase."""

    code = ErrorCode.INVALID_PHASE
    http_status = 409


class ReactionPendingError(InvalidPhaseError):
    """Combat is paused until a pending reaction is resolved or skipped."""

    code = ErrorCode.REACTION_PENDING


class OutOfRangeError(InvalidOperationError):
    code = ErrorCode.OUT_OF_RANGE


class NoLineOfSightError(InvalidOperationError):
    code = ErrorCode.NO_LINE_OF_SIGHT


class NoResourceRemainingError(InvalidOperationError):
    """Spell slot, feature use or attack count is exhausted."""

    code = ErrorCode.NO_RESOURCE_REMAINING


class DestinationBlockedError(InvalidOperationError):
    code = ErrorCode.DESTINATION_BLOCKED


class PathNotFoundError(InvalidOperationError):
    code = ErrorCode.PATH_NOT_FOUND


class AlreadyActedError(InvalidOperationError):
    """The action (or bonus action, or reaction) was already spent this turn."""

    code = ErrorCode.ALREADY_ACTED
