"""
Browser Driver Facade (Abstract)
================================
Defines the browser capability that the login state machine consumes.

The state machine never imports Playwright directly.  It talks to a
``BrowserDriver``; ``PlaywrightDriver`` is the production implementation
and the test-suite ships a simulated one.

Design principles:
    - Pages and elements are opaque handles owned by the driver
    - Every method that touches the browser is a coroutine (await point)
    - ``locate`` is lazy: it never waits, visibility is checked separately
    - ``locate_first_visible`` is the ONE probing loop used everywhere
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Handles
# ---------------------------------------------------------------------------

@dataclass
class BrowserHandle:
    """A launched browser: context plus (for non-persistent launches) browser."""

    context: Any
    browser: Any = None
    persistent: bool = False
    cache_dir: Optional[Path] = None


# ---------------------------------------------------------------------------
# Abstract driver
# ---------------------------------------------------------------------------

class BrowserDriver(ABC):
    """Browser automation capability.

    ``profile`` arguments are ``DialectProfile`` objects; the driver reads
    user agent, viewport, and headers from them.
    """

    # ── Lifecycle ─────────────────────────────────────────────────

    @abstractmethod
    async def launch(self, profile) -> BrowserHandle:
        """Launch a fresh browser with an empty, non-persistent context."""
        ...

    @abstractmethod
    async def launch_persistent(
        self, cache_dir: Path, profile, cookies: Optional[List[dict]] = None
    ) -> BrowserHandle:
        """Launch a browser bound to *cache_dir*, pre-loaded with *cookies*."""
        ...

    @abstractmethod
    async def new_page(self, handle: BrowserHandle) -> Any:
        ...

    @abstractmethod
    async def close(self, handle: BrowserHandle) -> None:
        """Terminate the browser process behind *handle*."""
        ...

    # ── Navigation ────────────────────────────────────────────────

    @abstractmethod
    async def goto(self, page: Any, url: str, wait_until: str = "domcontentloaded") -> None:
        ...

    @abstractmethod
    async def wait_for_settle(self, page: Any, timeout_ms: int) -> None:
        """Wait (bounded) for network activity to quiet down.  Never raises."""
        ...

    @abstractmethod
    def current_url(self, page: Any) -> str:
        ...

    @abstractmethod
    async def title(self, page: Any) -> str:
        ...

    @abstractmethod
    async def content(self, page: Any) -> str:
        """Raw HTML of the current document."""
        ...

    # ── Elements ──────────────────────────────────────────────────

    @abstractmethod
    def locate(self, page: Any, selector: str) -> Any:
        """Return a lazy element handle for the first visible match of *selector*."""
        ...

    @abstractmethod
    async def is_visible(self, element: Any, timeout_ms: int = 0) -> bool:
        """True if *element* becomes visible within *timeout_ms*.  Never raises."""
        ...

    @abstractmethod
    async def is_enabled(self, element: Any) -> bool:
        """False for disabled, ``aria-disabled`` or ``aria-busy`` controls."""
        ...

    @abstractmethod
    async def click(self, element: Any, force: bool = False) -> None:
        ...

    @abstractmethod
    async def fill(self, element: Any, value: str) -> None:
        ...

    @abstractmethod
    async def type(self, element: Any, text: str, delay_ms: int = 0) -> None:
        ...

    # ── State capture ─────────────────────────────────────────────

    @abstractmethod
    async def screenshot(self, page: Any, path: Optional[Path] = None) -> bytes:
        ...

    @abstractmethod
    async def cookies(self, handle: BrowserHandle) -> List[dict]:
        ...

    @abstractmethod
    async def storage_snapshot(self, page: Any) -> Tuple[Dict[str, str], Dict[str, str]]:
        """Return ``(localStorage, sessionStorage)`` of the current origin."""
        ...

    @abstractmethod
    async def restore_storage(
        self, page: Any, local: Dict[str, str], session: Dict[str, str]
    ) -> None:
        ...

    @abstractmethod
    async def describe_controls(self, page: Any) -> Dict[str, list]:
        """Inputs and buttons on the page (for debug snapshots)."""
        ...

    async def stop(self) -> None:
        """Release driver-wide resources.  Optional override."""
        return None


# ---------------------------------------------------------------------------
# Probing utility
# ---------------------------------------------------------------------------

async def locate_first_visible(
    driver: BrowserDriver,
    page: Any,
    selectors: Sequence[str],
    per_probe_timeout_ms: int,
    *,
    require_enabled: bool = False,
    label: str = "element",
) -> Optional[Tuple[str, Any]]:
    """Try *selectors* in order; return ``(selector, element)`` for the first visible one.

    A single slow or broken selector costs at most *per_probe_timeout_ms*.
    With *require_enabled*, visible-but-disabled controls are skipped.

    Returns:
        The matching selector and element handle, or None.
    """
    for selector in selectors:
        try:
            element = driver.locate(page, selector)
            if not await driver.is_visible(element, per_probe_timeout_ms):
                continue
            if require_enabled and not await driver.is_enabled(element):
                logger.debug(f"[DRIVER] {label} visible but busy: {selector}")
                continue
        except Exception as exc:
            logger.debug(f"[DRIVER] Probe error for {label} ({selector}): {exc}")
            continue
        logger.debug(f"[DRIVER] Found {label}: {selector}")
        return selector, element

    logger.debug(f"[DRIVER] No visible {label} among {len(selectors)} selectors")
    return None
