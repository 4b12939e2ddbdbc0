"""
Unified Run Configuration
=========================
Single source of truth for ALL loginkeeper defaults and runtime limits.

Every module (CLI, login service, state machine, classifier) reads from
this object.  Environment variables and CLI flags populate it; nothing
else should carry its own magic numbers.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults: the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "artifacts_dir": "cookies",
    "cache_dir": "cache",
    "debug_dir": "debug",
    "retention_hours": 168.0,            # 7 days
    "second_factor_timeout_s": 1800.0,   # 30 minutes
    "headless": True,
    "slow_mo_ms": 0,
    "navigation_timeout_ms": 30_000,
    "settle_timeout_ms": 10_000,
    "probe_timeout_ms": 2000,            # per-selector wait while locating fields
    "classifier_probe_timeout_ms": 1000,
    "dialect_probe_timeout_ms": 1000,
    "submit_ready_timeout_s": 15.0,
    "submit_poll_interval_s": 1.0,
    "post_submit_settle_s": 3.0,
    "outcome_retry_delays": (0.0, 1.0, 2.0),
    "humanized_delay": True,
    "step_delay_range_s": (1.0, 1.5),
    "keystroke_delay_range_ms": (80, 180),
    "debug_snapshots": False,
}

_ENV_PREFIX = "LOGINKEEPER_"


@dataclass
class KeeperConfig:
    """
    Unified configuration consumed by every loginkeeper subsystem.

    Populate via:
      - ``KeeperConfig()``                   → all defaults
      - ``KeeperConfig(headless=False)``     → override one value
      - ``KeeperConfig.from_env()``          → LOGINKEEPER_* variables
      - ``KeeperConfig.from_cli_args(ns)``   → argparse Namespace on top of env
    """

    # ---- Persistence ----
    artifacts_dir: str = _DEFAULTS["artifacts_dir"]
    cache_dir: str = _DEFAULTS["cache_dir"]
    debug_dir: str = _DEFAULTS["debug_dir"]
    retention_hours: float = _DEFAULTS["retention_hours"]

    # ---- Second factor ----
    second_factor_timeout_s: float = _DEFAULTS["second_factor_timeout_s"]

    # ---- Browser ----
    headless: bool = _DEFAULTS["headless"]
    slow_mo_ms: int = _DEFAULTS["slow_mo_ms"]
    navigation_timeout_ms: int = _DEFAULTS["navigation_timeout_ms"]
    settle_timeout_ms: int = _DEFAULTS["settle_timeout_ms"]

    # ---- Probing budgets ----
    probe_timeout_ms: int = _DEFAULTS["probe_timeout_ms"]
    classifier_probe_timeout_ms: int = _DEFAULTS["classifier_probe_timeout_ms"]
    dialect_probe_timeout_ms: int = _DEFAULTS["dialect_probe_timeout_ms"]
    submit_ready_timeout_s: float = _DEFAULTS["submit_ready_timeout_s"]
    submit_poll_interval_s: float = _DEFAULTS["submit_poll_interval_s"]

    # ---- Outcome detection ----
    post_submit_settle_s: float = _DEFAULTS["post_submit_settle_s"]
    outcome_retry_delays: Tuple[float, ...] = field(
        default_factory=lambda: tuple(_DEFAULTS["outcome_retry_delays"])
    )

    # ---- Pacing ----
    humanized_delay: bool = _DEFAULTS["humanized_delay"]
    step_delay_range_s: Tuple[float, float] = field(
        default_factory=lambda: tuple(_DEFAULTS["step_delay_range_s"])
    )
    keystroke_delay_range_ms: Tuple[int, int] = field(
        default_factory=lambda: tuple(_DEFAULTS["keystroke_delay_range_ms"])
    )

    # ---- Diagnostics ----
    debug_snapshots: bool = _DEFAULTS["debug_snapshots"]

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "KeeperConfig":
        """Build config from ``LOGINKEEPER_<FIELD>`` environment variables.

        Tuple fields take comma-separated values
        (``LOGINKEEPER_OUTCOME_RETRY_DELAYS=0,1,2``).
        """
        env = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                overrides[f.name] = _coerce(f.name, raw)
            except ValueError:
                logger.warning(
                    f"[CONFIG] Ignoring invalid {_ENV_PREFIX}{f.name.upper()}={raw!r}"
                )
        return cls(**overrides)

    @classmethod
    def from_cli_args(cls, args) -> "KeeperConfig":
        """Build config from env, then apply argparse overrides (``__main__.py``)."""
        cfg = cls.from_env()
        if getattr(args, "headed", False):
            cfg.headless = False
        if getattr(args, "artifacts_dir", None):
            cfg.artifacts_dir = args.artifacts_dir
        if getattr(args, "cache_dir", None):
            cfg.cache_dir = args.cache_dir
        if getattr(args, "debug", False):
            cfg.debug_snapshots = True
        if getattr(args, "no_pacing", False):
            cfg.humanized_delay = False
        if getattr(args, "slow_mo", None) is not None:
            cfg.slow_mo_ms = args.slow_mo
        return cfg

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("LOGINKEEPER RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  Artifacts:        {self.artifacts_dir}")
        logger.info(f"  Browser cache:    {self.cache_dir}")
        logger.info(f"  Retention:        {self.retention_hours:g}h")
        logger.info(f"  2FA timeout:      {self.second_factor_timeout_s:g}s")
        logger.info(f"  Headless:         {self.headless}")
        logger.info(f"  Humanized delay:  {self.humanized_delay}")
        if self.debug_snapshots:
            logger.info(f"  Debug snapshots:  {self.debug_dir}")
        logger.info("=" * 60)


_BOOL_TRUE = {"1", "true", "yes", "on"}
_BOOL_FALSE = {"0", "false", "no", "off"}


def _coerce(name: str, raw: str):
    """Convert an env string to the type of the default for *name*."""
    default = _DEFAULTS[name]
    raw = raw.strip()
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in _BOOL_TRUE:
            return True
        if lowered in _BOOL_FALSE:
            return False
        raise ValueError(raw)
    if isinstance(default, tuple):
        item_type = type(default[0])
        return tuple(item_type(part) for part in raw.split(",") if part.strip())
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw
