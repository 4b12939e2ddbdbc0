"""
Utility Functions
Identity sanitizing, timestamps, and human-paced delays.
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Optional, Tuple
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Identity <-> filesystem key
# ---------------------------------------------------------------------------

# '@' is kept literal so keys stay readable ("user@example.com").
_IDENTITY_SAFE_CHARS = "@"


def sanitize_identity(identity: str) -> str:
    """Map an account identity to a filesystem-safe key.

    Percent-encodes everything except unreserved characters and ``@``.
    A leading ``.`` is encoded too, so no key is ``.``, ``..`` or hidden.
    The transform is reversible via ``restore_identity``.
    """
    if not identity:
        raise ValueError("identity must be a non-empty string")
    key = quote(identity, safe=_IDENTITY_SAFE_CHARS)
    if key.startswith("."):
        key = "%2E" + key[1:]
    return key


def restore_identity(key: str) -> str:
    """Inverse of ``sanitize_identity``."""
    return unquote(key)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are treated as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def file_timestamp() -> str:
    """Timestamp suitable for file names (``2026-10-18_14-03-22``)."""
    return time.strftime("%Y-%m-%d_%H-%M-%S")


def epoch_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------

class Pacer:
    """
    Inserts randomized delays between browser steps and keystrokes.

    Every delay is an await point: other sessions run while one session
    waits. With ``humanized=False`` step and keystroke delays collapse to
    zero (``--no-pacing``). Outcome waits after a submit are not pacing
    and live in ``LoginSession``.
    """

    def __init__(
        self,
        humanized: bool = True,
        step_range_s: Tuple[float, float] = (1.0, 1.5),
        keystroke_range_ms: Tuple[int, int] = (80, 180),
    ):
        """
        Args:
            humanized: Enable randomized pacing.
            step_range_s: (min, max) seconds between coarse steps.
            keystroke_range_ms: (min, max) milliseconds per typed character.
        """
        self.humanized = humanized
        self.step_range_s = step_range_s
        self.keystroke_range_ms = keystroke_range_ms

    async def step(self, low: Optional[float] = None, high: Optional[float] = None) -> None:
        """Pause between two coarse steps (navigation, field, click)."""
        if not self.humanized:
            await asyncio.sleep(0)
            return
        lo = self.step_range_s[0] if low is None else low
        hi = self.step_range_s[1] if high is None else high
        await asyncio.sleep(random.uniform(lo, hi))

    def keystroke_delay_ms(self) -> int:
        if not self.humanized:
            return 0
        lo, hi = self.keystroke_range_ms
        return random.randint(lo, hi)

    async def type_text(self, driver: Any, element: Any, text: str) -> None:
        """Click into *element* and type *text* one character at a time."""
        await driver.click(element)
        await self.step(0.2, 0.4)
        for char in text:
            await driver.type(element, char, delay_ms=self.keystroke_delay_ms())
