"""
Browser layer: driver facade, dialect tables, outcome classification.
"""

from .dialects import DIALECT_PROFILES, DEFAULT_MARKERS, Dialect, DialectProfile, PageMarkers, detect_dialect
from .diagnostics import DebugSnapshotter
from .driver import BrowserDriver, BrowserHandle, locate_first_visible
from .outcome import LoginCheck, OutcomeClassifier
from .playwright_driver import PlaywrightDriver

__all__ = [
    "DIALECT_PROFILES",
    "DEFAULT_MARKERS",
    "Dialect",
    "DialectProfile",
    "PageMarkers",
    "detect_dialect",
    "DebugSnapshotter",
    "BrowserDriver",
    "BrowserHandle",
    "locate_first_visible",
    "LoginCheck",
    "OutcomeClassifier",
    "PlaywrightDriver",
]
