"""
Orchestration Policy
====================
Decides which dialects to try and when to stop.

    mobile  -> [mobile]
    desktop -> [desktop]
    auto    -> [mobile, desktop]

Rules, applied after each attempt:
    SUCCESS                   stop, return it
    SECOND_FACTOR_REQUIRED    stop, return it (never a failure)
    NO_ARTIFACTS (quick)      stop, the other dialect has no artifacts either
    anything else             next dialect

Quick mode never falls through to a credential login.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List

from ..browser.dialects import Dialect
from .errors import ErrorKind, InvalidRequest
from .results import Outcome, OperationResult

logger = logging.getLogger(__name__)

AUTO = "auto"

AttemptFn = Callable[[Dialect], Awaitable[OperationResult]]


class LoginPolicy:
    """Dialect ordering and fallback for login and quick-login requests."""

    @staticmethod
    def attempt_order(choice: str = AUTO) -> List[Dialect]:
        choice = (choice or AUTO).strip().lower()
        if choice == AUTO:
            return [Dialect.MOBILE, Dialect.DESKTOP]
        try:
            return [Dialect(choice)]
        except ValueError:
            raise InvalidRequest(
                f"Unknown dialect {choice!r} (expected mobile, desktop or auto)"
            ) from None

    async def run(
        self, order: List[Dialect], attempt: AttemptFn, mode: str = "full"
    ) -> OperationResult:
        attempts: Dict[str, str] = {}
        last: OperationResult = None

        for dialect in order:
            logger.info(f"[POLICY] {mode} login: trying {dialect.value}")
            result = await attempt(dialect)
            last = result

            if result.outcome in (Outcome.SUCCESS, Outcome.SECOND_FACTOR_REQUIRED):
                if attempts:
                    result.attempts = dict(attempts)
                return result
            if mode == "quick" and result.error == ErrorKind.NO_ARTIFACTS:
                return result

            attempts[dialect.value] = result.detail
            logger.warning(f"[POLICY] {dialect.value} failed: {result.detail}")

        if len(order) == 1:
            return last

        detail = "Login failed on both versions. " + " | ".join(
            f"{name}: {message}" for name, message in attempts.items()
        )
        return OperationResult.failure(
            detail,
            ErrorKind.BOTH_VERSIONS_FAILED,
            mode=mode,
            attempts=attempts,
        )
