"""
loginkeeper
Browser login automation with persisted per-account sessions.

Drives a site's login form through Playwright, falls back between the
mobile and desktop UI, pauses for second-factor codes, and keeps
cookies, storage and browser cache per account for quick re-login.

CLI Usage:
    python -m loginkeeper login --identity user@example.com
    python -m loginkeeper quick-login --identity user@example.com
    python -m loginkeeper accounts
    python -m loginkeeper purge --max-age-hours 168
"""

from .run_config import KeeperConfig
from .auth.service import LoginService
from .auth.results import Outcome, OperationResult
from .auth.errors import ErrorKind
from .browser.dialects import Dialect

__all__ = [
    'KeeperConfig',
    'LoginService',
    'Outcome',
    'OperationResult',
    'ErrorKind',
    'Dialect',
]

__version__ = '1.0.0'
