"""
Outcome Classifier
==================
Inspects the page after a credential or code submission.

Two independent, read-only checks:

    requires_second_factor(page) -> bool
    login_succeeded(page)        -> LoginCheck

``login_succeeded`` always re-runs the second-factor check first: a code
page has no password field and would otherwise pass the loose
"no credential fields" heuristic.

Every element probe is bounded by ``probe_timeout_ms``; the checks can be
repeated any number of times.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable

from bs4 import BeautifulSoup

from .dialects import DEFAULT_MARKERS, PageMarkers
from .driver import BrowserDriver, locate_first_visible

logger = logging.getLogger(__name__)

_BS_PARSER = "html.parser"


class LoginCheck(str, Enum):
    NOT_LOGGED_IN = "not_logged_in"
    SUCCESS = "success"
    SAVE_LOGIN_PROMPT = "save_login_prompt"
    TRUST_DEVICE_PROMPT = "trust_device_prompt"

    @property
    def is_success(self) -> bool:
        return self is not LoginCheck.NOT_LOGGED_IN

    @property
    def needs_dismissal(self) -> bool:
        return self in (LoginCheck.SAVE_LOGIN_PROMPT, LoginCheck.TRUST_DEVICE_PROMPT)


def _contains_any(haystack: str, needles: Iterable[str]) -> str:
    """Return the first needle found in *haystack* (case-insensitive), else ''."""
    lowered = haystack.lower()
    for needle in needles:
        if needle.lower() in lowered:
            return needle
    return ""


class OutcomeClassifier:
    """Heuristic page classifier driven by a ``PageMarkers`` table."""

    def __init__(
        self,
        driver: BrowserDriver,
        markers: PageMarkers = DEFAULT_MARKERS,
        probe_timeout_ms: int = 1000,
    ):
        self.driver = driver
        self.markers = markers
        self.probe_timeout_ms = probe_timeout_ms

    # ── Page text ─────────────────────────────────────────────────

    async def _page_text(self, page: Any):
        """Return ``(visible_text, raw_html)``; empty strings if unreadable."""
        try:
            html = await self.driver.content(page)
        except Exception as exc:
            logger.debug(f"[OUTCOME] Could not read page content: {exc}")
            return "", ""
        soup = BeautifulSoup(html, _BS_PARSER)
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        return soup.get_text(separator=" ", strip=True), html

    def _url(self, page: Any) -> str:
        try:
            return self.driver.current_url(page)
        except Exception:
            return ""

    # ── Second factor ─────────────────────────────────────────────

    async def requires_second_factor(self, page: Any) -> bool:
        """True if a code field, a code-page phrase, or a checkpoint URL is present."""
        m = self.markers

        found = await locate_first_visible(
            self.driver, page, m.second_factor_inputs, self.probe_timeout_ms,
            label="2FA input",
        )
        if found:
            logger.info(f"[OUTCOME] 2FA detected by input: {found[0]}")
            return True

        text, html = await self._page_text(page)
        phrase = _contains_any(text, m.second_factor_phrases) or _contains_any(
            html, m.second_factor_phrases
        )
        if phrase:
            logger.info(f"[OUTCOME] 2FA detected by text: {phrase!r}")
            return True

        url = self._url(page)
        fragment = _contains_any(url, m.second_factor_url_fragments)
        if fragment:
            logger.info(f"[OUTCOME] 2FA detected by URL: {fragment}")
            return True

        return False

    # ── Success ───────────────────────────────────────────────────

    async def login_succeeded(self, page: Any) -> LoginCheck:
        m = self.markers

        if await self.requires_second_factor(page):
            return LoginCheck.NOT_LOGGED_IN

        url = self._url(page)
        text, html = await self._page_text(page)

        if _contains_any(text, m.save_login_phrases) or _contains_any(
            url, m.save_login_url_fragments
        ):
            logger.info("[OUTCOME] Save-login interstitial")
            return LoginCheck.SAVE_LOGIN_PROMPT

        if _contains_any(text, m.trust_device_phrases) or _contains_any(
            url, m.trust_device_url_fragments
        ):
            logger.info("[OUTCOME] Trust-device interstitial")
            return LoginCheck.TRUST_DEVICE_PROMPT

        fragment = _contains_any(url, m.success_url_fragments)
        if fragment:
            logger.info(f"[OUTCOME] Logged in (URL matches {fragment})")
            return LoginCheck.SUCCESS

        credential_field = await locate_first_visible(
            self.driver, page, m.credential_field_selectors, self.probe_timeout_ms,
            label="credential field",
        )
        if credential_field is None:
            logger.info("[OUTCOME] Logged in (no credential fields left)")
            return LoginCheck.SUCCESS

        chrome = await locate_first_visible(
            self.driver, page, m.logged_in_selectors, self.probe_timeout_ms,
            label="logged-in marker",
        )
        if chrome:
            logger.info(f"[OUTCOME] Logged in (marker {chrome[0]})")
            return LoginCheck.SUCCESS

        logger.info(f"[OUTCOME] Not logged in (url: {url})")
        return LoginCheck.NOT_LOGGED_IN

    # ── Follow-up actions ─────────────────────────────────────────

    async def dismiss_interstitial(self, page: Any, check: LoginCheck) -> bool:
        """Click the dismiss control of a save-login / trust-device dialog.

        Best-effort: a missing control is logged, never raised.
        """
        if not check.needs_dismissal:
            return False
        found = await locate_first_visible(
            self.driver, page, self.markers.dismiss_selectors, self.probe_timeout_ms,
            label="dismiss button",
        )
        if not found:
            logger.info(f"[OUTCOME] No dismiss control for {check.value}")
            return False
        try:
            await self.driver.click(found[1])
        except Exception as exc:
            logger.warning(f"[OUTCOME] Dismiss click failed: {exc}")
            return False
        logger.info(f"[OUTCOME] Dismissed {check.value} via {found[0]}")
        return True

    async def recover_loading_page(self, page: Any, settle_timeout_ms: int) -> bool:
        """Click "Try Again" when the site shows its loading/error page.

        Returns True if a retry control was clicked.
        """
        text, html = await self._page_text(page)
        marker = _contains_any(text, self.markers.loading_phrases) or _contains_any(
            html, self.markers.loading_phrases
        )
        if not marker:
            return False

        logger.info(f"[OUTCOME] Loading page detected ({marker!r}), retrying")
        found = await locate_first_visible(
            self.driver, page, self.markers.retry_selectors, self.probe_timeout_ms,
            label="retry control",
        )
        if not found:
            logger.warning("[OUTCOME] Loading page without a retry control")
            return False
        await self.driver.click(found[1])
        await self.driver.wait_for_settle(page, settle_timeout_ms)
        return True
