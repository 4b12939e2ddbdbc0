"""
Session Registry
================
Owns every live login session and every suspended second-factor wait.

One registry per ``LoginService``; there is no module-level state, so
several independent registries can coexist (the test-suite relies on it).

Two tables:
    sessions  session_id -> SessionRecord       (running / awaiting / completed)
    pending   session_id -> PendingSecondFactor (suspended continuations)

``take_pending`` is the only way to claim a suspended session.  It has no
await point, so when a cancel and a code submission race on one session
id exactly one of them gets the record.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..browser.driver import BrowserDriver, BrowserHandle
from ..utils import epoch_ms, sanitize_identity, utc_now
from .artifact_store import ArtifactBundle, ArtifactStore
from .results import OperationResult, PendingSummary, SessionSummary

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    RUNNING = "running"
    AWAITING_SECOND_FACTOR = "awaiting_second_factor"
    COMPLETED = "completed"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class SessionRecord:
    """A live browser session tracked by the registry."""

    session_id: str
    identity: str
    dialect: str
    mode: str
    handle: BrowserHandle
    page: Any
    cache_dir: Optional[Path] = None
    created_at: datetime = field(default_factory=utc_now)
    state: SessionState = SessionState.RUNNING

    @property
    def uptime(self) -> float:
        """Seconds since the session was registered."""
        return (utc_now() - self.created_at).total_seconds()

    def summary(self) -> SessionSummary:
        return SessionSummary(
            session_id=self.session_id,
            identity=self.identity,
            dialect=self.dialect,
            mode=self.mode,
            created_at=self.created_at,
            uptime_s=self.uptime,
            state=self.state.value,
        )


@dataclass
class PendingSecondFactor:
    """A login suspended on the second-factor page.

    ``continuation`` resumes the suspended machine with a code.
    ``suspended_at`` is kept when the record is restored after a wrong
    code, so the timeout always counts from the first suspension.
    """

    session_id: str
    identity: str
    dialect: str
    page: Any
    continuation: Callable[[str], Awaitable[OperationResult]]
    suspended_at: datetime = field(default_factory=utc_now)
    expiry_task: Optional[asyncio.Task] = None

    def summary(self) -> PendingSummary:
        return PendingSummary(
            session_id=self.session_id,
            identity=self.identity,
            dialect=self.dialect,
            suspended_at=self.suspended_at,
        )

    def disarm(self) -> None:
        """Cancel the expiry watchdog unless it is the caller."""
        task = self.expiry_task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()


async def capture_bundle(
    driver: BrowserDriver, handle: BrowserHandle, page: Any, identity: str
) -> ArtifactBundle:
    """Snapshot cookies + storage from a live, authenticated page."""
    cookies = await driver.cookies(handle)
    local, session = await driver.storage_snapshot(page)
    return ArtifactBundle(
        identity=identity,
        cookies=cookies,
        local_storage=local,
        session_storage=session,
        url=driver.current_url(page),
        title=await driver.title(page),
    )


class SessionRegistry:
    """Injectable owner of session records and pending second-factor waits."""

    def __init__(self, driver: BrowserDriver, store: ArtifactStore):
        self.driver = driver
        self.store = store
        self._sessions: Dict[str, SessionRecord] = {}
        self._pending: Dict[str, PendingSecondFactor] = {}
        self._last_stamp: Optional[int] = None
        self._stamp_ids: Set[str] = set()

    # ── Ids ───────────────────────────────────────────────────────

    def new_session_id(self, identity: str, dialect: str, mode: str = "full") -> str:
        """``[quick-]<key>-<dialect>-<epoch ms>``, suffixed ``-n`` on collision."""
        prefix = "quick-" if mode == "quick" else ""
        stamp = epoch_ms()
        if stamp != self._last_stamp:
            self._last_stamp = stamp
            self._stamp_ids = set()
        base = f"{prefix}{sanitize_identity(identity)}-{dialect}-{stamp}"
        session_id = base
        n = 1
        while self._id_taken(session_id):
            session_id = f"{base}-{n}"
            n += 1
        self._stamp_ids.add(session_id)
        return session_id

    def _id_taken(self, session_id: str) -> bool:
        return (
            session_id in self._stamp_ids
            or session_id in self._sessions
            or session_id in self._pending
        )

    # ── Sessions ──────────────────────────────────────────────────

    def register(self, record: SessionRecord) -> None:
        if record.session_id in self._sessions:
            raise ValueError(f"Session {record.session_id} is already registered")
        self._sessions[record.session_id] = record
        logger.info(
            f"[REGISTRY] Registered {record.session_id} "
            f"({len(self._sessions)} active)"
        )

    def get(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(session_id)

    def list_all(self) -> List[SessionRecord]:
        return list(self._sessions.values())

    def remove(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def terminate(self, session_id: str, persist: bool = True) -> bool:
        """Close the browser of *session_id* and forget it.

        Artifacts are saved first (best-effort) only when *persist* is set
        and the session reached ``completed``.

        Returns:
            False if no such session was registered.
        """
        record = self._sessions.pop(session_id, None)
        pending = self._pending.pop(session_id, None)
        if pending is not None:
            pending.disarm()
        if record is None:
            return False

        if persist and record.state == SessionState.COMPLETED:
            try:
                bundle = await capture_bundle(
                    self.driver, record.handle, record.page, record.identity
                )
                self.store.write(bundle)
            except Exception as e:
                logger.warning(f"[REGISTRY] Could not save artifacts for {session_id}: {e}")

        record.state = SessionState.CLOSED
        try:
            await self.driver.close(record.handle)
        except Exception as e:
            logger.warning(f"[REGISTRY] Error closing browser for {session_id}: {e}")

        logger.info(f"[REGISTRY] Terminated {session_id} ({len(self._sessions)} active)")
        return True

    async def close_all(self) -> int:
        closed = 0
        for session_id in list(self._sessions):
            if await self.terminate(session_id, persist=True):
                closed += 1
        return closed

    # ── Pending second factor ─────────────────────────────────────

    def add_pending(self, pending: PendingSecondFactor) -> None:
        self._pending[pending.session_id] = pending
        logger.info(f"[2FA] Session {pending.session_id} waiting for a code")

    def get_pending(self, session_id: str) -> Optional[PendingSecondFactor]:
        return self._pending.get(session_id)

    def take_pending(self, session_id: str) -> Optional[PendingSecondFactor]:
        """Atomically remove and return the pending record, or None."""
        return self._pending.pop(session_id, None)

    def restore_pending(self, pending: PendingSecondFactor) -> None:
        """Put back a record taken by ``take_pending`` (wrong code)."""
        self._pending[pending.session_id] = pending

    def list_pending(self) -> List[PendingSecondFactor]:
        return list(self._pending.values())
