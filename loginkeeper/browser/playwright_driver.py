"""
Playwright Driver
=================
Production ``BrowserDriver`` backed by ``playwright.async_api``.

One Playwright instance is started lazily and shared by every session
launched through this driver; each session gets its own browser process
(or persistent context).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from playwright.async_api import Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .driver import BrowserDriver, BrowserHandle

logger = logging.getLogger(__name__)


_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
]

_PERSISTENT_ARGS = _LAUNCH_ARGS + [
    "--disk-cache-size=100000000",
    "--media-cache-size=50000000",
]

_STORAGE_DUMP_JS = """
() => {
    const dump = (store) => {
        const out = {};
        for (let i = 0; i < store.length; i++) {
            const key = store.key(i);
            out[key] = store.getItem(key);
        }
        return out;
    };
    return [dump(window.localStorage), dump(window.sessionStorage)];
}
"""

_STORAGE_RESTORE_JS = """
([local, session]) => {
    for (const [k, v] of Object.entries(local || {})) window.localStorage.setItem(k, v);
    for (const [k, v] of Object.entries(session || {})) window.sessionStorage.setItem(k, v);
}
"""

_CONTROLS_JS = """
() => ({
    inputs: Array.from(document.querySelectorAll('input')).map((el, index) => ({
        index,
        type: el.type,
        name: el.name,
        id: el.id,
        ariaLabel: el.getAttribute('aria-label'),
        visible: el.offsetParent !== null,
    })),
    buttons: Array.from(document.querySelectorAll('button, div[role="button"]')).map((el, index) => ({
        index,
        tagName: el.tagName,
        ariaLabel: el.getAttribute('aria-label'),
        text: (el.textContent || '').trim().slice(0, 80),
        visible: el.offsetParent !== null,
    })),
})
"""


class PlaywrightDriver(BrowserDriver):
    """Chromium via Playwright (async API)."""

    def __init__(
        self,
        *,
        headless: bool = True,
        slow_mo_ms: int = 0,
        navigation_timeout_ms: int = 30_000,
    ):
        self.headless = headless
        self.slow_mo_ms = slow_mo_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self._pw: Optional[Playwright] = None

    @classmethod
    def from_config(cls, config) -> "PlaywrightDriver":
        return cls(
            headless=config.headless,
            slow_mo_ms=config.slow_mo_ms,
            navigation_timeout_ms=config.navigation_timeout_ms,
        )

    async def _playwright(self) -> Playwright:
        if self._pw is None:
            self._pw = await async_playwright().start()
        return self._pw

    @staticmethod
    def _context_options(profile) -> dict:
        return {
            "user_agent": profile.user_agent,
            "viewport": dict(profile.viewport),
            "device_scale_factor": profile.device_scale_factor,
            "is_mobile": profile.is_mobile,
            "has_touch": profile.has_touch,
            "extra_http_headers": dict(profile.extra_headers),
            "locale": profile.locale,
        }

    # ── Lifecycle ─────────────────────────────────────────────────

    async def launch(self, profile) -> BrowserHandle:
        pw = await self._playwright()
        browser = await pw.chromium.launch(
            headless=self.headless,
            slow_mo=self.slow_mo_ms,
            args=_LAUNCH_ARGS,
        )
        context = await browser.new_context(**self._context_options(profile))
        context.set_default_navigation_timeout(self.navigation_timeout_ms)
        logger.info(f"[DRIVER] Launched fresh {profile.dialect.value} browser")
        return BrowserHandle(context=context, browser=browser)

    async def launch_persistent(
        self, cache_dir: Path, profile, cookies: Optional[List[dict]] = None
    ) -> BrowserHandle:
        pw = await self._playwright()
        context = await pw.chromium.launch_persistent_context(
            str(cache_dir),
            headless=self.headless,
            slow_mo=self.slow_mo_ms,
            args=_PERSISTENT_ARGS,
            **self._context_options(profile),
        )
        context.set_default_navigation_timeout(self.navigation_timeout_ms)
        if cookies:
            await context.add_cookies(cookies)
        logger.info(
            f"[DRIVER] Launched persistent {profile.dialect.value} browser "
            f"(cache: {cache_dir})"
        )
        return BrowserHandle(
            context=context, browser=context.browser, persistent=True, cache_dir=cache_dir
        )

    async def new_page(self, handle: BrowserHandle) -> Any:
        return await handle.context.new_page()

    async def close(self, handle: BrowserHandle) -> None:
        try:
            await handle.context.close()
        except PlaywrightError as exc:
            logger.debug(f"[DRIVER] Context close: {exc}")
        if handle.browser is not None and not handle.persistent:
            try:
                await handle.browser.close()
            except PlaywrightError as exc:
                logger.debug(f"[DRIVER] Browser close: {exc}")

    async def stop(self) -> None:
        if self._pw is not None:
            await self._pw.stop()
            self._pw = None

    # ── Navigation ────────────────────────────────────────────────

    async def goto(self, page: Any, url: str, wait_until: str = "domcontentloaded") -> None:
        await page.goto(url, wait_until=wait_until)

    async def wait_for_settle(self, page: Any, timeout_ms: int) -> None:
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightTimeout:
            pass
        except PlaywrightError as exc:
            logger.debug(f"[DRIVER] Settle wait interrupted: {exc}")

    def current_url(self, page: Any) -> str:
        return page.url

    async def title(self, page: Any) -> str:
        try:
            return await page.title()
        except PlaywrightError:
            return "<unknown>"

    async def content(self, page: Any) -> str:
        return await page.content()

    # ── Elements ──────────────────────────────────────────────────

    def locate(self, page: Any, selector: str) -> Any:
        return page.locator(selector).locator("visible=true").first

    async def is_visible(self, element: Any, timeout_ms: int = 0) -> bool:
        try:
            if await element.is_visible():
                return True
            if timeout_ms <= 0:
                return False
            await element.wait_for(state="visible", timeout=timeout_ms)
            return True
        except (PlaywrightTimeout, PlaywrightError):
            return False

    async def is_enabled(self, element: Any) -> bool:
        try:
            if not await element.is_enabled():
                return False
            if await element.get_attribute("aria-disabled") == "true":
                return False
            if await element.get_attribute("aria-busy") == "true":
                return False
        except PlaywrightError:
            return False
        return True

    async def click(self, element: Any, force: bool = False) -> None:
        await element.click(force=force, no_wait_after=True)

    async def fill(self, element: Any, value: str) -> None:
        await element.fill(value)

    async def type(self, element: Any, text: str, delay_ms: int = 0) -> None:
        await element.press_sequentially(text, delay=delay_ms)

    # ── State capture ─────────────────────────────────────────────

    async def screenshot(self, page: Any, path: Optional[Path] = None) -> bytes:
        return await page.screenshot(path=str(path) if path else None, full_page=True)

    async def cookies(self, handle: BrowserHandle) -> List[dict]:
        return await handle.context.cookies()

    async def storage_snapshot(self, page: Any) -> Tuple[Dict[str, str], Dict[str, str]]:
        local, session = await page.evaluate(_STORAGE_DUMP_JS)
        return dict(local or {}), dict(session or {})

    async def restore_storage(
        self, page: Any, local: Dict[str, str], session: Dict[str, str]
    ) -> None:
        await page.evaluate(_STORAGE_RESTORE_JS, [local, session])

    async def describe_controls(self, page: Any) -> Dict[str, list]:
        return await page.evaluate(_CONTROLS_JS)
