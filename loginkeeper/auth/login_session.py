"""
Login Session State Machine
===========================
One login attempt for one (identity, dialect, mode).

Steps::

    init -> navigate -> quick_attempt | credential_attempt -> await_outcome
         -> success | second_factor_pending | failure

Quick mode restores saved artifacts into a persistent browser and never
types credentials.  Full mode launches a fresh browser, types identity
and secret, submits, and classifies the result.

A second-factor page is a normal result: the session registers a
``PendingSecondFactor`` whose continuation is ``self.resume`` and returns
``Outcome.SECOND_FACTOR_REQUIRED``.  Browser and record stay alive until
the code is submitted, the wait is cancelled, or it times out.

Every other terminal path closes the browser and removes the record.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Sequence

from ..browser.dialects import DIALECT_PROFILES, Dialect, detect_dialect
from ..browser.diagnostics import DebugSnapshotter
from ..browser.driver import BrowserDriver, BrowserHandle, locate_first_visible
from ..browser.outcome import LoginCheck, OutcomeClassifier
from ..run_config import KeeperConfig
from ..utils import Pacer
from .artifact_store import ArtifactStore
from .errors import ElementNotFound, ErrorKind, LoginError
from .registry import (
    PendingSecondFactor,
    SessionRecord,
    SessionRegistry,
    SessionState,
    capture_bundle,
)
from .results import Outcome, OperationResult

logger = logging.getLogger(__name__)


class LoginMode(str, Enum):
    FULL = "full"
    QUICK = "quick"


class LoginStep(str, Enum):
    INIT = "init"
    NAVIGATE = "navigate"
    QUICK_ATTEMPT = "quick_attempt"
    CREDENTIAL_ATTEMPT = "credential_attempt"
    AWAIT_OUTCOME = "await_outcome"
    SECOND_FACTOR_PENDING = "second_factor_pending"
    SUBMIT_CODE = "submit_code"
    SUCCESS = "success"
    FAILURE = "failure"


class LoginSession:
    """State machine for a single dialect attempt."""

    def __init__(
        self,
        identity: str,
        dialect: Dialect,
        mode: LoginMode,
        *,
        config: KeeperConfig,
        driver: BrowserDriver,
        store: ArtifactStore,
        registry: SessionRegistry,
        classifier: OutcomeClassifier,
        pacer: Pacer,
        secret: Optional[str] = None,
        snapshots: Optional[DebugSnapshotter] = None,
        profiles=DIALECT_PROFILES,
    ):
        self.identity = identity
        self.dialect = Dialect(dialect)
        self.mode = LoginMode(mode)
        self.config = config
        self.driver = driver
        self.store = store
        self.registry = registry
        self.classifier = classifier
        self.pacer = pacer
        self.snapshots = snapshots or DebugSnapshotter(enabled=False)
        self.profiles = profiles
        self.profile = profiles[self.dialect]
        self._secret = secret

        self.step = LoginStep.INIT
        self.session_id: Optional[str] = None
        self.handle: Optional[BrowserHandle] = None
        self.page: Any = None
        self._registered = False

    def __repr__(self) -> str:
        return (
            f"LoginSession({self.identity!r}, {self.dialect.value}, "
            f"{self.mode.value}, step={self.step.value})"
        )

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    async def run(self) -> OperationResult:
        """Run the attempt to a result.  Never raises."""
        self.session_id = self.registry.new_session_id(
            self.identity, self.dialect.value, self.mode.value
        )
        logger.info(
            f"[SESSION] {self.session_id}: {self.mode.value} login for "
            f"{self.identity} ({self.dialect.value})"
        )
        try:
            if self.mode == LoginMode.QUICK:
                return await self._run_quick()
            return await self._run_full()
        except Exception as e:
            logger.error(f"[SESSION] {self.session_id} failed at {self.step.value}: {e}")
            await self._snap("error")
            await self._teardown()
            return OperationResult.from_error(e, **self._result_fields())

    # -----------------------------------------------------------------------
    # Quick mode
    # -----------------------------------------------------------------------

    async def _run_quick(self) -> OperationResult:
        bundle = self.store.read(self.identity)
        if bundle is None:
            self._set_step(LoginStep.FAILURE)
            return OperationResult.failure(
                f"No saved session data for {self.identity}",
                ErrorKind.NO_ARTIFACTS,
                **self._result_fields(),
            )

        self._set_step(LoginStep.QUICK_ATTEMPT)
        cache_dir = self.store.cache_dir(self.identity, self.dialect.value)
        self.handle = await self.driver.launch_persistent(
            cache_dir, self.profile, bundle.cookies
        )
        self.page = await self.driver.new_page(self.handle)
        self._register(cache_dir)

        self._set_step(LoginStep.NAVIGATE)
        await self.driver.goto(self.page, self.profile.target_url)
        if bundle.local_storage or bundle.session_storage:
            await self.driver.restore_storage(
                self.page, bundle.local_storage, bundle.session_storage
            )
        await self.driver.wait_for_settle(self.page, self.config.settle_timeout_ms)
        await self.pacer.step()

        self._set_step(LoginStep.AWAIT_OUTCOME)
        check = await self.classifier.login_succeeded(self.page)
        if check.needs_dismissal:
            await self.classifier.dismiss_interstitial(self.page, check)

        if check.is_success:
            return await self._complete(used_saved_data=True)

        await self._snap("login_failed")
        await self._teardown()
        return OperationResult.failure(
            f"Saved session for {self.identity} is no longer valid",
            ErrorKind.QUICK_LOGIN_FAILED,
            **self._result_fields(),
        )

    # -----------------------------------------------------------------------
    # Full mode
    # -----------------------------------------------------------------------

    async def _run_full(self) -> OperationResult:
        self.handle = await self.driver.launch(self.profile)
        self.page = await self.driver.new_page(self.handle)
        self._register(None)

        # ── Navigate ─────────────────────────────────────────────
        self._set_step(LoginStep.NAVIGATE)
        await self.driver.goto(self.page, self.profile.target_url)
        await self.driver.wait_for_settle(self.page, self.config.settle_timeout_ms)
        await self.pacer.step()
        await self._snap("initial_page")
        await self.classifier.recover_loading_page(self.page, self.config.settle_timeout_ms)

        detected = await detect_dialect(
            self.driver, self.page, self.profiles, self.config.dialect_probe_timeout_ms
        )
        if detected != self.dialect:
            logger.info(
                f"[LOGIN] Asked for {self.dialect.value} but page is {detected.value}; "
                f"using {detected.value} selectors"
            )
        tables = self.profiles[detected]

        # ── Credentials ──────────────────────────────────────────
        self._set_step(LoginStep.CREDENTIAL_ATTEMPT)
        identity_field = await self._require(tables.identity_selectors, "identity field")
        await self.pacer.type_text(self.driver, identity_field, self.identity)
        logger.info("[LOGIN] Identity entered")
        await self.pacer.step()

        secret_field = await self._require(tables.secret_selectors, "password field")
        await self.pacer.type_text(self.driver, secret_field, self._secret or "")
        logger.info("[LOGIN] Password entered")
        await self.pacer.step()

        submit = await self._wait_for_submit(tables)
        await self.driver.click(submit, force=True)
        logger.info("[LOGIN] Credentials submitted")

        # ── Outcome ──────────────────────────────────────────────
        self._set_step(LoginStep.AWAIT_OUTCOME)
        await asyncio.sleep(self.config.post_submit_settle_s)
        await self.driver.wait_for_settle(self.page, self.config.settle_timeout_ms)

        if await self._second_factor_ladder():
            return await self._suspend()

        check = await self.classifier.login_succeeded(self.page)
        if check.needs_dismissal:
            await self.classifier.dismiss_interstitial(self.page, check)
        if check.is_success:
            return await self._complete()

        await self._snap("login_failed")
        await self._teardown()
        return OperationResult.failure(
            f"Login not confirmed for {self.identity} "
            f"(still at {self.driver.current_url(self.page)})",
            ErrorKind.UNEXPECTED,
            **self._result_fields(),
        )

    async def _second_factor_ladder(self) -> bool:
        """Check for a code page at each offset of ``outcome_retry_delays``."""
        elapsed = 0.0
        for offset in self.config.outcome_retry_delays:
            wait = offset - elapsed
            if wait > 0:
                await asyncio.sleep(wait)
            elapsed = max(elapsed, offset)
            if await self.classifier.requires_second_factor(self.page):
                return True
        return False

    async def _wait_for_submit(self, tables) -> Any:
        """Poll for a non-busy submit control, then fall back to any visible one."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.submit_ready_timeout_s
        while True:
            found = await locate_first_visible(
                self.driver, self.page, tables.submit_ready_selectors,
                self.config.probe_timeout_ms, require_enabled=True,
                label="submit button",
            )
            if found:
                return found[1]
            if loop.time() >= deadline:
                break
            await asyncio.sleep(self.config.submit_poll_interval_s)

        logger.warning("[LOGIN] Submit button never became ready, trying fallback selectors")
        found = await locate_first_visible(
            self.driver, self.page, tables.submit_selectors,
            self.config.probe_timeout_ms, label="submit button (fallback)",
        )
        if found:
            return found[1]
        await self._snap("no_submit_button")
        raise ElementNotFound(
            f"Submit button not found on {self.dialect.value} login page"
        )

    # -----------------------------------------------------------------------
    # Second factor
    # -----------------------------------------------------------------------

    async def _suspend(self) -> OperationResult:
        self._set_step(LoginStep.SECOND_FACTOR_PENDING)
        await self._snap("2fa_detected")
        self.registry.add_pending(PendingSecondFactor(
            session_id=self.session_id,
            identity=self.identity,
            dialect=self.dialect.value,
            page=self.page,
            continuation=self.resume,
        ))
        self._set_state(SessionState.AWAITING_SECOND_FACTOR)
        return OperationResult(
            outcome=Outcome.SECOND_FACTOR_REQUIRED,
            detail="Second factor code required",
            error=ErrorKind.SECOND_FACTOR_REQUIRED,
            **self._result_fields(),
        )

    async def resume(self, code: str) -> OperationResult:
        """Enter *code* on the suspended second-factor page.

        Returns ``STILL_PENDING`` (wrong code, session kept), ``SUCCESS``
        or ``FAILURE`` (session torn down).  Never raises.
        """
        self._set_step(LoginStep.SUBMIT_CODE)
        self._set_state(SessionState.RUNNING)
        m = self.classifier.markers
        try:
            field = await self._require(
                m.code_input_selectors, "2FA code field", stage="2fa_field_not_found"
            )
            await self.driver.click(field)
            await self.driver.fill(field, "")
            await self.pacer.type_text(self.driver, field, code)
            logger.info(f"[2FA] Code entered for {self.session_id}")
            await self.pacer.step()

            found = await locate_first_visible(
                self.driver, self.page, m.code_submit_selectors,
                self.config.probe_timeout_ms, require_enabled=True,
                label="2FA submit button",
            )
            if not found:
                raise ElementNotFound("2FA submit button not found")
            await self.driver.click(found[1])

            self._set_step(LoginStep.AWAIT_OUTCOME)
            await asyncio.sleep(self.config.post_submit_settle_s)
            await self.driver.wait_for_settle(self.page, self.config.settle_timeout_ms)

            if await self.classifier.requires_second_factor(self.page):
                logger.info(f"[2FA] Code rejected for {self.session_id}, still waiting")
                self._set_step(LoginStep.SECOND_FACTOR_PENDING)
                self._set_state(SessionState.AWAITING_SECOND_FACTOR)
                return OperationResult(
                    outcome=Outcome.STILL_PENDING,
                    detail="Code not accepted, second factor still required",
                    **self._result_fields(),
                )

            check = await self.classifier.login_succeeded(self.page)
            if check.needs_dismissal:
                await self.classifier.dismiss_interstitial(self.page, check)
            if check.is_success:
                return await self._complete()

            raise LoginError(
                f"Unrecognised page after code submission "
                f"({self.driver.current_url(self.page)})"
            )
        except Exception as e:
            logger.error(f"[2FA] {self.session_id} failed: {e}")
            await self._snap("error")
            await self._teardown()
            return OperationResult.from_error(e, **self._result_fields())

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    async def _require(
        self, selectors: Sequence[str], label: str, stage: Optional[str] = None
    ) -> Any:
        found = await locate_first_visible(
            self.driver, self.page, selectors, self.config.probe_timeout_ms, label=label
        )
        if not found:
            if stage:
                await self._snap(stage)
            raise ElementNotFound(f"{label} not found ({self.dialect.value})")
        return found[1]

    async def _complete(self, used_saved_data: bool = False) -> OperationResult:
        self._set_step(LoginStep.SUCCESS)
        bundle = await capture_bundle(self.driver, self.handle, self.page, self.identity)
        bundle.user_agent = self.profile.user_agent
        self.store.write(bundle)
        if self.mode == LoginMode.FULL:
            # Profile directory a later quick login launches from
            self.store.cache_dir(self.identity, self.dialect.value)
        self._set_state(SessionState.COMPLETED)
        await self._snap("post_login")
        logger.info(f"[SESSION] {self.session_id}: logged in as {self.identity}")
        return OperationResult(
            outcome=Outcome.SUCCESS,
            detail=f"Logged in as {self.identity}",
            used_saved_data=used_saved_data,
            **self._result_fields(),
        )

    def _register(self, cache_dir) -> None:
        self.registry.register(SessionRecord(
            session_id=self.session_id,
            identity=self.identity,
            dialect=self.dialect.value,
            mode=self.mode.value,
            handle=self.handle,
            page=self.page,
            cache_dir=cache_dir,
        ))
        self._registered = True

    def _set_step(self, step: LoginStep) -> None:
        self.step = step
        logger.debug(f"[SESSION] {self.session_id} -> {step.value}")

    def _set_state(self, state: SessionState) -> None:
        record = self.registry.get(self.session_id) if self._registered else None
        if record is not None:
            record.state = state

    async def _teardown(self) -> None:
        """Close the browser and drop the record."""
        self._set_step(LoginStep.FAILURE)
        self._set_state(SessionState.FAILED)
        if self._registered:
            await self.registry.terminate(self.session_id, persist=False)
            return
        if self.handle is not None:
            try:
                await self.driver.close(self.handle)
            except Exception as e:
                logger.warning(f"[SESSION] Error closing browser: {e}")

    async def _snap(self, stage: str) -> None:
        await self.snapshots.capture(self.driver, self.page, f"{self.dialect.value}_{stage}")

    def _result_fields(self) -> dict:
        return {
            "session_id": self.session_id,
            "dialect": self.dialect.value,
            "mode": self.mode.value,
        }
