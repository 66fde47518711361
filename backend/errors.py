"""
Error kinds and action results.

Expected outcomes (not enough money, a locked upgrade, an unreadable save)
are returned to the caller as ActionResult values. Only snapshot decoding
raises, and the Simulation facade converts that into a result.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NOT_ELIGIBLE = "not_eligible"
    CORRUPT_DATA = "corrupt_data"
    CONFIGURATION_WARNING = "configuration_warning"


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a player action or a load."""

    ok: bool
    error: Optional[ErrorKind] = None
    detail: str = ""

    @classmethod
    def success(cls, detail: str = "") -> "ActionResult":
        return cls(ok=True, detail=detail)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str = "") -> "ActionResult":
        return cls(ok=False, error=error, detail=detail)


class CorruptSnapshotError(ValueError):
    """Raised when a snapshot cannot be decoded or migrated."""
