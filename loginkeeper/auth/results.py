"""
Operation Results
=================
Structured return values for every exposed operation.

``Outcome.SECOND_FACTOR_REQUIRED`` is an ordinary result, not an error:
it carries the session id the caller needs to resume.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .errors import ErrorKind, LoginError


class Outcome(str, Enum):
    SUCCESS = "success"
    SECOND_FACTOR_REQUIRED = "second_factor_required"
    STILL_PENDING = "still_pending"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    CLOSED = "closed"
    NOT_FOUND = "not_found"


@dataclass
class OperationResult:
    """Result of a login, resume, or housekeeping operation."""

    outcome: Outcome
    detail: str = ""
    session_id: Optional[str] = None
    dialect: Optional[str] = None
    error: Optional[ErrorKind] = None
    mode: Optional[str] = None
    used_saved_data: bool = False
    attempts: Dict[str, str] = field(default_factory=dict)
    files_deleted: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.SUCCESS, Outcome.CANCELLED, Outcome.CLOSED)

    @classmethod
    def failure(
        cls,
        detail: str,
        error: ErrorKind = ErrorKind.UNEXPECTED,
        **extra: Any,
    ) -> "OperationResult":
        return cls(outcome=Outcome.FAILURE, detail=detail, error=error, **extra)

    @classmethod
    def from_error(cls, exc: Exception, **extra: Any) -> "OperationResult":
        """Convert an exception, preserving its message verbatim."""
        kind = exc.kind if isinstance(exc, LoginError) else ErrorKind.UNEXPECTED
        return cls.failure(str(exc) or type(exc).__name__, kind, **extra)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON export."""
        return {
            "outcome": self.outcome.value,
            "detail": self.detail,
            "session_id": self.session_id,
            "dialect": self.dialect,
            "error": self.error.value if self.error else None,
            "mode": self.mode,
            "used_saved_data": self.used_saved_data,
            "attempts": dict(self.attempts),
            "files_deleted": self.files_deleted,
        }


@dataclass
class SessionSummary:
    session_id: str
    identity: str
    dialect: str
    mode: str
    created_at: datetime
    uptime_s: float
    state: str

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "identity": self.identity,
            "dialect": self.dialect,
            "mode": self.mode,
            "created_at": self.created_at.isoformat(),
            "uptime_s": round(self.uptime_s, 1),
            "state": self.state,
        }


@dataclass
class PendingSummary:
    session_id: str
    identity: str
    dialect: str
    suspended_at: datetime

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "identity": self.identity,
            "dialect": self.dialect,
            "suspended_at": self.suspended_at.isoformat(),
        }
