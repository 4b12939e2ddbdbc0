"""
Authentication Module
=====================
Login orchestration and session bookkeeping.

Architecture:
    - ``LoginService``     exposed operations, never raise
    - ``LoginPolicy``      dialect order and fallback
    - ``LoginSession``     one login attempt (state machine)
    - ``SessionRegistry``  live sessions + pending second-factor waits
    - ``ArtifactStore``    cookies / storage snapshots / browser cache on disk
"""

from .artifact_store import ArtifactBundle, ArtifactStore
from .errors import (
    ElementNotFound,
    ErrorKind,
    InvalidRequest,
    LoginError,
    SecondFactorTimeout,
    SessionNotFound,
)
from .login_session import LoginMode, LoginSession, LoginStep
from .policy import LoginPolicy
from .registry import PendingSecondFactor, SessionRecord, SessionRegistry, SessionState
from .results import OperationResult, Outcome, PendingSummary, SessionSummary
from .service import LoginService

__all__ = [
    "ArtifactBundle",
    "ArtifactStore",
    "ElementNotFound",
    "ErrorKind",
    "InvalidRequest",
    "LoginError",
    "SecondFactorTimeout",
    "SessionNotFound",
    "LoginMode",
    "LoginSession",
    "LoginStep",
    "LoginPolicy",
    "PendingSecondFactor",
    "SessionRecord",
    "SessionRegistry",
    "SessionState",
    "OperationResult",
    "Outcome",
    "PendingSummary",
    "SessionSummary",
    "LoginService",
]
