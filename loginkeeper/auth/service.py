"""
Login Service
=============
The exposed operations.  Every method returns a structured result and
never raises; transport layers (CLI, HTTP) only translate results.

Typical flow::

    service = LoginService(KeeperConfig())
    result = await service.login("user@example.com", secret)
    if result.outcome is Outcome.SECOND_FACTOR_REQUIRED:
        result = await service.submit_second_factor(result.session_id, code)

A second-factor wait expires after ``second_factor_timeout_s``: a
watchdog task claims the pending record and closes the browser.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from ..browser.dialects import DEFAULT_MARKERS, DIALECT_PROFILES, Dialect, PageMarkers
from ..browser.diagnostics import DebugSnapshotter
from ..browser.driver import BrowserDriver
from ..browser.outcome import OutcomeClassifier
from ..browser.playwright_driver import PlaywrightDriver
from ..run_config import KeeperConfig
from ..utils import Pacer, utc_now
from .artifact_store import ArtifactStore
from .errors import ErrorKind, InvalidRequest, SecondFactorTimeout, SessionNotFound
from .login_session import LoginMode, LoginSession
from .policy import AUTO, LoginPolicy
from .registry import PendingSecondFactor, SessionRegistry
from .results import Outcome, OperationResult, PendingSummary, SessionSummary

logger = logging.getLogger(__name__)


class LoginService:
    """Facade over policy, state machine, registry and artifact store."""

    def __init__(
        self,
        config: Optional[KeeperConfig] = None,
        *,
        driver: Optional[BrowserDriver] = None,
        store: Optional[ArtifactStore] = None,
        registry: Optional[SessionRegistry] = None,
        markers: PageMarkers = DEFAULT_MARKERS,
        profiles=DIALECT_PROFILES,
    ):
        self.config = config or KeeperConfig()
        cfg = self.config
        self.driver = driver or PlaywrightDriver.from_config(cfg)
        self.store = store or ArtifactStore(
            cfg.artifacts_dir, cfg.cache_dir, retention_hours=cfg.retention_hours
        )
        self.registry = registry or SessionRegistry(self.driver, self.store)
        self.policy = LoginPolicy()
        self.classifier = OutcomeClassifier(
            self.driver, markers, cfg.classifier_probe_timeout_ms
        )
        self.pacer = Pacer(
            humanized=cfg.humanized_delay,
            step_range_s=cfg.step_delay_range_s,
            keystroke_range_ms=cfg.keystroke_delay_range_ms,
        )
        self.snapshots = DebugSnapshotter(cfg.debug_dir, cfg.debug_snapshots)
        self.profiles = profiles

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def start(self) -> OperationResult:
        """Purge artifacts older than the retention window."""
        return await self.purge_expired_artifacts(self.config.retention_hours)

    async def shutdown(self) -> int:
        """Close every live session (saving completed ones) and stop the driver."""
        for pending in self.registry.list_pending():
            pending.disarm()
        closed = await self.registry.close_all()
        try:
            await self.driver.stop()
        except Exception as e:
            logger.warning(f"[SERVICE] Driver shutdown error: {e}")
        logger.info(f"[SERVICE] Shutdown complete ({closed} sessions closed)")
        return closed

    # -----------------------------------------------------------------------
    # Login
    # -----------------------------------------------------------------------

    async def login(
        self, identity: str, secret: str, dialect_choice: str = AUTO
    ) -> OperationResult:
        """Full credential login; may stop at ``SECOND_FACTOR_REQUIRED``."""
        if not identity or not secret:
            return OperationResult.failure(
                "Identity and password are required",
                ErrorKind.INVALID_REQUEST,
                mode=LoginMode.FULL.value,
            )
        return await self._run(identity, secret, dialect_choice, LoginMode.FULL)

    async def quick_login(self, identity: str, dialect_choice: str = AUTO) -> OperationResult:
        """Login from saved artifacts only."""
        if not identity:
            return OperationResult.failure(
                "Identity is required",
                ErrorKind.INVALID_REQUEST,
                mode=LoginMode.QUICK.value,
            )
        return await self._run(identity, None, dialect_choice, LoginMode.QUICK)

    async def _run(
        self, identity: str, secret: Optional[str], dialect_choice: str, mode: LoginMode
    ) -> OperationResult:
        try:
            order = self.policy.attempt_order(dialect_choice)
        except InvalidRequest as e:
            return OperationResult.from_error(e, mode=mode.value)

        async def attempt(dialect: Dialect) -> OperationResult:
            session = LoginSession(
                identity, dialect, mode,
                config=self.config,
                driver=self.driver,
                store=self.store,
                registry=self.registry,
                classifier=self.classifier,
                pacer=self.pacer,
                secret=secret,
                snapshots=self.snapshots,
                profiles=self.profiles,
            )
            return await session.run()

        try:
            result = await self.policy.run(order, attempt, mode.value)
        except Exception as e:
            logger.error(f"[SERVICE] {mode.value} login for {identity} crashed: {e}")
            return OperationResult.from_error(e, mode=mode.value)

        if result.outcome is Outcome.SECOND_FACTOR_REQUIRED:
            pending = self.registry.get_pending(result.session_id)
            if pending is not None:
                self._arm_expiry(pending)
        return result

    # -----------------------------------------------------------------------
    # Second factor
    # -----------------------------------------------------------------------

    async def submit_second_factor(self, session_id: str, code: str) -> OperationResult:
        if not code or not code.strip():
            return OperationResult.failure(
                "A second-factor code is required",
                ErrorKind.INVALID_REQUEST,
                session_id=session_id,
            )

        pending = self.registry.take_pending(session_id)
        if pending is None:
            return OperationResult.from_error(
                SessionNotFound(f"No pending second factor for session {session_id}"),
                session_id=session_id,
            )

        result = await pending.continuation(code.strip())

        if result.outcome is Outcome.STILL_PENDING:
            if self._expired(pending):
                pending.disarm()
                await self.registry.terminate(session_id, persist=False)
                return OperationResult.from_error(
                    SecondFactorTimeout(
                        f"Second factor for session {session_id} timed out"
                    ),
                    session_id=session_id,
                    dialect=pending.dialect,
                )
            self.registry.restore_pending(pending)
            return result

        pending.disarm()
        return result

    async def cancel_second_factor(self, session_id: str) -> OperationResult:
        pending = self.registry.take_pending(session_id)
        if pending is None:
            return OperationResult(
                outcome=Outcome.NOT_FOUND,
                detail=f"No pending second factor for session {session_id}",
                session_id=session_id,
                error=ErrorKind.SESSION_NOT_FOUND,
            )
        pending.disarm()
        await self.registry.terminate(session_id, persist=False)
        logger.info(f"[2FA] Cancelled {session_id}")
        return OperationResult(
            outcome=Outcome.CANCELLED,
            detail="Second factor cancelled and browser closed",
            session_id=session_id,
            dialect=pending.dialect,
        )

    def _arm_expiry(self, pending: PendingSecondFactor) -> None:
        pending.expiry_task = asyncio.create_task(
            self._expire(pending.session_id, self._remaining(pending))
        )

    async def _expire(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        pending = self.registry.take_pending(session_id)
        if pending is None:
            return
        logger.warning(f"[2FA] Session {session_id} timed out waiting for a code")
        await self.registry.terminate(session_id, persist=False)

    def _remaining(self, pending: PendingSecondFactor) -> float:
        waited = (utc_now() - pending.suspended_at).total_seconds()
        return max(0.0, self.config.second_factor_timeout_s - waited)

    def _expired(self, pending: PendingSecondFactor) -> bool:
        return self._remaining(pending) <= 0

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    async def close_session(self, session_id: str) -> OperationResult:
        pending = self.registry.take_pending(session_id)
        if pending is not None:
            pending.disarm()
        if not await self.registry.terminate(session_id, persist=True):
            return OperationResult(
                outcome=Outcome.NOT_FOUND,
                detail=f"Session {session_id} not found",
                session_id=session_id,
                error=ErrorKind.SESSION_NOT_FOUND,
            )
        return OperationResult(
            outcome=Outcome.CLOSED,
            detail=f"Session {session_id} closed",
            session_id=session_id,
        )

    def list_sessions(self) -> List[SessionSummary]:
        return [record.summary() for record in self.registry.list_all()]

    def list_pending_second_factor(self) -> List[PendingSummary]:
        return [pending.summary() for pending in self.registry.list_pending()]

    # -----------------------------------------------------------------------
    # Saved data
    # -----------------------------------------------------------------------

    async def delete_account_data(self, identity: str) -> OperationResult:
        if not identity:
            return OperationResult.failure("Identity is required", ErrorKind.INVALID_REQUEST)
        try:
            deleted = self.store.delete(identity)
        except ValueError as e:
            return OperationResult.from_error(InvalidRequest(str(e)))
        except OSError as e:
            return OperationResult.from_error(e)
        return OperationResult(
            outcome=Outcome.SUCCESS,
            detail=f"Deleted {deleted} items for {identity}",
            files_deleted=deleted,
        )

    async def purge_expired_artifacts(
        self, max_age_hours: Optional[float] = None
    ) -> OperationResult:
        hours = self.config.retention_hours if max_age_hours is None else max_age_hours
        try:
            removed = self.store.purge_older_than(hours)
        except OSError as e:
            return OperationResult.from_error(e)
        return OperationResult(
            outcome=Outcome.SUCCESS,
            detail=f"Purged {removed} files older than {hours:g}h",
            files_deleted=removed,
        )

    def list_saved_accounts(self) -> List[dict]:
        return self.store.list_accounts()

    def cache_usage(self) -> dict:
        return self.store.cache_usage()
