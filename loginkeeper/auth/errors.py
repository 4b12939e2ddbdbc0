"""
Login Error Taxonomy
====================
Typed errors raised inside a login attempt.

They never cross the service boundary: ``LoginSession`` and
``LoginService`` convert them into ``OperationResult`` objects carrying
the same ``ErrorKind`` and the original message.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NO_ARTIFACTS = "NO_ARTIFACTS"
    QUICK_LOGIN_FAILED = "QUICK_LOGIN_FAILED"
    ELEMENT_NOT_FOUND = "ELEMENT_NOT_FOUND"
    SECOND_FACTOR_REQUIRED = "SECOND_FACTOR_REQUIRED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    BOTH_VERSIONS_FAILED = "BOTH_VERSIONS_FAILED"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNEXPECTED = "UNEXPECTED"


class LoginError(Exception):
    """Base class; ``kind`` selects the caller-visible error code."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, kind: ErrorKind = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def message(self) -> str:
        return str(self)


class ElementNotFound(LoginError):
    """A required control was not visible within its probing budget."""

    kind = ErrorKind.ELEMENT_NOT_FOUND


class SessionNotFound(LoginError):
    kind = ErrorKind.SESSION_NOT_FOUND


class SecondFactorTimeout(LoginError):
    kind = ErrorKind.TIMEOUT


class InvalidRequest(LoginError):
    kind = ErrorKind.INVALID_REQUEST
