"""
Dialects & Page Marker Tables
=============================
Declarative selector and phrase tables for the two login UI dialects,
plus the variant detector.

Everything the state machine and the outcome classifier probe for lives
here as data.  Tables are ordered: probing stops at the first match, so
the most specific selectors come first.

Dialects:
    mobile   lightweight touch UI on ``m.<site>``  (tried first in auto mode)
    desktop  full UI on ``www.<site>``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Tuple

from .driver import BrowserDriver, locate_first_visible

logger = logging.getLogger(__name__)


class Dialect(str, Enum):
    MOBILE = "mobile"
    DESKTOP = "desktop"


# ---------------------------------------------------------------------------
# Per-dialect profiles
# ---------------------------------------------------------------------------

_MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 14; moto e14 Build/ULB34.66-116) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/137.0.7151.61 Mobile Safari/537.36"
)

_DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/137.0.7151.61 Safari/537.36"
)

_BASE_HEADERS = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "es-VE,es;q=0.9,en;q=0.8",
}


@dataclass(frozen=True)
class DialectProfile:
    """Browser fingerprint + element tables for one dialect."""

    dialect: Dialect
    target_url: str
    user_agent: str
    viewport: Mapping[str, int]
    device_scale_factor: float
    is_mobile: bool
    has_touch: bool
    extra_headers: Mapping[str, str]
    locale: str = "es-VE"

    # Detection
    url_markers: Tuple[str, ...] = ()
    marker_selectors: Tuple[str, ...] = ()

    # Credential form
    identity_selectors: Tuple[str, ...] = ()
    secret_selectors: Tuple[str, ...] = ()
    submit_ready_selectors: Tuple[str, ...] = ()
    submit_selectors: Tuple[str, ...] = ()


MOBILE_PROFILE = DialectProfile(
    dialect=Dialect.MOBILE,
    target_url="https://m.facebook.com/",
    user_agent=_MOBILE_USER_AGENT,
    viewport={"width": 412, "height": 915},
    device_scale_factor=2,
    is_mobile=True,
    has_touch=True,
    extra_headers={
        **_BASE_HEADERS,
        "Sec-CH-UA-Mobile": "?1",
        "Sec-CH-UA-Platform": '"Android"',
    },
    url_markers=("m.facebook.com",),
    marker_selectors=('input[id="m_login_email"]',),
    identity_selectors=(
        'input[name="email"]',
        'input[type="email"]',
        'input[type="text"]:first-of-type',
        'input[id="m_login_email"]',
    ),
    secret_selectors=(
        'input[name="pass"]',
        'input[type="password"]',
        'input[id="m_login_password"]',
    ),
    # The mobile submit control shows a spinner while the form is busy.
    submit_ready_selectors=(
        'div[role="button"][aria-label="Iniciar sesión"]:not(:has-text("Spinner"))',
        'div[role="button"]:has-text("Iniciar sesión"):not(:has-text("Spinner"))',
        'div[role="button"][aria-label="Log in"]:not(:has-text("Spinner"))',
        'div[role="button"]:has-text("Log in"):not(:has-text("Spinner"))',
        'button[name="login"]',
        'button[type="submit"]',
    ),
    submit_selectors=(
        'button[name="login"]',
        'button[type="submit"]',
        'div[role="button"]:has-text("Iniciar sesión")',
        'div[role="button"]:has-text("Log in")',
    ),
)

DESKTOP_PROFILE = DialectProfile(
    dialect=Dialect.DESKTOP,
    target_url="https://www.facebook.com/",
    user_agent=_DESKTOP_USER_AGENT,
    viewport={"width": 1366, "height": 768},
    device_scale_factor=1,
    is_mobile=False,
    has_touch=False,
    extra_headers={
        **_BASE_HEADERS,
        "Sec-CH-UA-Mobile": "?0",
        "Sec-CH-UA-Platform": '"Windows"',
    },
    url_markers=("www.facebook.com", "facebook.com"),
    marker_selectors=('input[data-testid="royal_email"]',),
    identity_selectors=(
        'input[name="email"]',
        'input[type="email"]',
        'input[data-testid="royal_email"]',
        'input[id="email"]',
    ),
    secret_selectors=(
        'input[name="pass"]',
        'input[type="password"]',
        'input[data-testid="royal_pass"]',
        'input[id="pass"]',
    ),
    submit_ready_selectors=(
        'button[name="login"]',
        'button[type="submit"]',
        'button[data-testid="royal_login_button"]',
    ),
    submit_selectors=(
        'button[name="login"]',
        'button[type="submit"]',
        'button[data-testid="royal_login_button"]',
        'div[role="button"]:has-text("Iniciar sesión")',
        'div[role="button"]:has-text("Log in")',
        'input[type="submit"][value="Log In"]',
        'input[type="submit"][value="Iniciar sesión"]',
    ),
)

# Detection order matters: "m.facebook.com" also contains "facebook.com".
DIALECT_PROFILES: Dict[Dialect, DialectProfile] = {
    Dialect.MOBILE: MOBILE_PROFILE,
    Dialect.DESKTOP: DESKTOP_PROFILE,
}


# ---------------------------------------------------------------------------
# Page markers (outcome classification)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PageMarkers:
    """Dialect-independent markers used by ``OutcomeClassifier``.

    Phrases are matched case-insensitively against both the visible text
    and the raw markup.  URL fragments are plain substrings.
    """

    # ── Second factor ──
    second_factor_inputs: Tuple[str, ...] = (
        'input[name="approvals_code"]',
        'input[id="approvals_code"]',
        'input[data-testid="2fa_code"]',
        'input[autocomplete="one-time-code"]',
        'input[placeholder*="código" i]',
        'input[placeholder*="code" i]',
        'input[aria-label*="código" i]',
        'input[inputmode="numeric"]',
        'input[type="text"][maxlength="6"]',
    )
    second_factor_phrases: Tuple[str, ...] = (
        "Ve a tu app de autenticación",
        "Ingresa el código de 6 dígitos",
        "app de autenticación",
        "autenticación en dos pasos",
        "código de verificación",
        "Revisa tu dispositivo de autenticación",
        "Confía en este dispositivo y omite este paso",
        "Go to your authentication app",
        "Enter the 6-digit code",
        "Check your authentication device",
        "Two-Factor Authentication",
        "authentication code",
        "Duo Mobile",
        "Google Authenticator",
    )
    second_factor_url_fragments: Tuple[str, ...] = (
        "checkpoint",
        "two_factor",
        "two_step_verification",
        "approvals",
        "auth-app",
        "/mfa",
    )

    # ── Success ──
    success_url_fragments: Tuple[str, ...] = (
        "home.php",
        "/feed",
        "/home",
        "/?sk=h_chr",
        "/?ref=tn_tnmn",
    )
    credential_field_selectors: Tuple[str, ...] = (
        'input[name="email"]',
        'input[type="password"]',
    )
    logged_in_selectors: Tuple[str, ...] = (
        '[data-testid="search"]',
        '[data-testid="blue_bar"]',
        '[aria-label="Facebook"]',
        'div[role="main"]',
    )

    # ── Interstitials (count as success, need dismissal) ──
    save_login_phrases: Tuple[str, ...] = (
        "Guardar tu información de inicio de sesión",
        "¿Guardar la información de inicio de sesión?",
        "Save your login info",
        "Save login info?",
    )
    save_login_url_fragments: Tuple[str, ...] = (
        "/login/save-device",
        "save-device",
    )
    trust_device_phrases: Tuple[str, ...] = (
        "¿Confiar en este dispositivo?",
        "Trust this device?",
    )
    trust_device_url_fragments: Tuple[str, ...] = (
        "trust_device",
        "trust-device",
    )
    # "Not now" is preferred: it leaves no device state behind.
    dismiss_selectors: Tuple[str, ...] = (
        'div[role="button"]:has-text("Ahora no")',
        'div[role="button"]:has-text("Not now")',
        'button:has-text("Ahora no")',
        'button:has-text("Not now")',
        'div[aria-label="Not Now"]',
        'div[aria-label="Ahora no"]',
        'div[role="button"]:has-text("Guardar")',
        'div[role="button"]:has-text("Save")',
        'button:has-text("Guardar")',
        'button:has-text("Save")',
        'button[data-testid="save_device_checkbox"]',
    )

    # ── Second-factor form ──
    code_input_selectors: Tuple[str, ...] = (
        'input[placeholder="Código"]',
        'input[placeholder*="código" i]',
        'input[placeholder*="code" i]',
        'input[name="approvals_code"]',
        'input[id="approvals_code"]',
        'input[data-testid="2fa_code"]',
        'input[inputmode="numeric"]',
        'input[type="text"][maxlength="6"]',
        'input[autocomplete="one-time-code"]',
        'input[aria-label*="código" i]',
        'input[aria-label*="code" i]',
        'input[type="text"]:not([name="email"]):not([name="pass"])',
    )
    code_submit_selectors: Tuple[str, ...] = (
        'div[role="button"]:has-text("Continuar")',
        'button:has-text("Continuar")',
        'div[role="button"]:has-text("Continue")',
        'button:has-text("Continue")',
        'div[role="button"][aria-label*="Continuar"]',
        'button[type="submit"]',
        'div[role="button"]:has-text("Enviar")',
        'div[role="button"]:has-text("Submit")',
        'button:has-text("Enviar")',
        'button:has-text("Submit")',
        '[data-testid="2fa_submit_button"]',
    )

    # ── Loading page ──
    loading_phrases: Tuple[str, ...] = (
        "FacebookLoading",
        "Try Again",
        "Intentar de nuevo",
    )
    retry_selectors: Tuple[str, ...] = (
        'a:has-text("Try Again")',
        'button:has-text("Try Again")',
        'a:has-text("Reintentar")',
        'button:has-text("Reintentar")',
        'a:has-text("Intentar de nuevo")',
        'button:has-text("Intentar de nuevo")',
    )


DEFAULT_MARKERS = PageMarkers()


# ---------------------------------------------------------------------------
# Variant detector
# ---------------------------------------------------------------------------

async def detect_dialect(
    driver: BrowserDriver,
    page: Any,
    profiles: Mapping[Dialect, DialectProfile] = DIALECT_PROFILES,
    probe_timeout_ms: int = 1000,
) -> Dialect:
    """Classify the loaded page as one of *profiles*' dialects.

    Order: URL substring, then dialect marker element, then ``mobile``.
    Never raises.
    """
    try:
        url = driver.current_url(page)
    except Exception as exc:
        logger.warning(f"[DIALECT] Could not read URL: {exc}")
        url = ""

    for dialect, profile in profiles.items():
        if any(marker in url for marker in profile.url_markers):
            logger.info(f"[DIALECT] {dialect.value} (by URL)")
            return dialect

    for dialect, profile in profiles.items():
        if not profile.marker_selectors:
            continue
        found = await locate_first_visible(
            driver, page, profile.marker_selectors, probe_timeout_ms,
            label=f"{dialect.value} marker",
        )
        if found:
            logger.info(f"[DIALECT] {dialect.value} (by marker {found[0]})")
            return dialect

    logger.info(f"[DIALECT] Undetermined, defaulting to {Dialect.MOBILE.value}")
    return Dialect.MOBILE
