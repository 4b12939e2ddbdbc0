#!/usr/bin/env python3
"""
Operator CLI for loginkeeper
============================
Run a login from the terminal, answer second-factor prompts, and manage
saved account data.

Commands:
    login          credential login (prompts for a 2FA code when needed)
    quick-login    login from saved cookies / storage only
    accounts       list saved accounts
    cache          show browser cache usage
    delete         delete everything saved for one account
    purge          delete artifacts older than N hours

Credentials come from ``--identity`` / ``--secret``, then the
``LOGINKEEPER_IDENTITY`` / ``LOGINKEEPER_SECRET`` environment variables
(a ``.env`` file is loaded first), then an interactive prompt.

Run with: python -m loginkeeper <command> [options]
"""

import argparse
import asyncio
import getpass
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env (credentials, LOGINKEEPER_* settings) before reading config
_env_path = Path(__file__).resolve().parent.parent / '.env'
if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()

from .auth.results import Outcome, OperationResult
from .auth.service import LoginService
from .run_config import KeeperConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Prompt helpers
# ---------------------------------------------------------------------------

def get_user_input(prompt: str, default: str = None) -> str:
    """Get user input with optional default value."""
    if default:
        full_prompt = f"{prompt} [{default}]: "
    else:
        full_prompt = f"{prompt}: "
    response = input(full_prompt).strip()
    return response if response else default


def resolve_credentials(args, need_secret: bool = True):
    """Identity/secret from flags, then env, then an interactive prompt."""
    identity = args.identity or os.environ.get("LOGINKEEPER_IDENTITY", "")
    if not identity:
        identity = get_user_input("  Account (email or phone)") or ""

    secret = None
    if need_secret:
        secret = args.secret or os.environ.get("LOGINKEEPER_SECRET", "")
        if not secret:
            secret = getpass.getpass("  Password: ")
    return identity.strip(), secret


async def _ask(prompt: str) -> str:
    """``input()`` in a worker thread so live browser sessions keep running."""
    loop = asyncio.get_running_loop()
    try:
        answer = await loop.run_in_executor(None, input, prompt)
    except EOFError:
        return ""
    return answer.strip()


def print_result(result: OperationResult) -> None:
    icon = {
        Outcome.SUCCESS: "✅",
        Outcome.CANCELLED: "⏹",
        Outcome.CLOSED: "⏹",
        Outcome.SECOND_FACTOR_REQUIRED: "🔐",
        Outcome.STILL_PENDING: "🔐",
    }.get(result.outcome, "❌")
    print(f"\n  {icon} {result.outcome.value}: {result.detail}")
    if result.session_id:
        print(f"     Session:  {result.session_id}")
    if result.dialect:
        print(f"     Version:  {result.dialect}")
    if result.error and result.outcome is Outcome.FAILURE:
        print(f"     Error:    {result.error.value}")
    for dialect, message in result.attempts.items():
        print(f"     {dialect:<8}  {message}")
    print()


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size} B"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def run_login(service: LoginService, identity: str, secret, dialect: str,
                    quick: bool = False) -> bool:
    """Run one login, answering 2FA prompts until success, failure, or cancel."""
    await service.start()
    try:
        if quick:
            result = await service.quick_login(identity, dialect)
        else:
            result = await service.login(identity, secret, dialect)

        while result.outcome in (Outcome.SECOND_FACTOR_REQUIRED, Outcome.STILL_PENDING):
            print_result(result)
            session_id = result.session_id
            code = await _ask("  Enter the 2FA code (empty to cancel) → ")
            if not code:
                result = await service.cancel_second_factor(session_id)
                break
            result = await service.submit_second_factor(session_id, code)

        print_result(result)
        if result.outcome is Outcome.SUCCESS:
            await _ask("  Logged in. Press ENTER to save and close the browser → ")
        return result.outcome is Outcome.SUCCESS
    finally:
        await service.shutdown()


def cmd_accounts(service: LoginService) -> int:
    accounts = service.list_saved_accounts()
    if not accounts:
        print("\n  No saved accounts.\n")
        return 0
    print(f"\n  {len(accounts)} saved account(s):\n")
    for acc in accounts:
        print(
            f"  {acc['identity']:<32} {_format_size(acc['total_size']):>10}  "
            f"{acc['age_hours']:6.1f}h old  ({acc['file_count']} files)"
        )
    print()
    return 0


def cmd_cache(service: LoginService) -> int:
    usage = service.cache_usage()
    print(f"\n  Browser caches: {usage['count']}  "
          f"({_format_size(usage['total_size'])}, {usage['total_files']} files)\n")
    for cache in usage["caches"]:
        print(
            f"  {cache['identity']:<32} {_format_size(cache['size']):>10}  "
            f"{', '.join(cache['dialects']) or '-'}"
        )
    print()
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loginkeeper",
        description="Browser login automation with saved per-account sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m loginkeeper login --identity user@example.com
  python -m loginkeeper login --dialect desktop --headed
  python -m loginkeeper quick-login --identity user@example.com
  python -m loginkeeper delete user@example.com
  python -m loginkeeper purge --max-age-hours 24
        """
    )
    parser.add_argument('--artifacts-dir', type=str, help='Directory for cookie/session files')
    parser.add_argument('--cache-dir', type=str, help='Directory for browser profiles')
    parser.add_argument('--headed', action='store_true', help='Show the browser window')
    parser.add_argument('--slow-mo', type=int, help='Slow down browser actions (ms)')
    parser.add_argument('--no-pacing', action='store_true', help='Disable human-like delays')
    parser.add_argument('--debug', action='store_true', help='Save debug screenshots')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    sub = parser.add_subparsers(dest='command', required=True)

    for name, help_text in (('login', 'Log in with identity and password'),
                            ('quick-login', 'Log in with saved cookies only')):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('--identity', '-u', type=str, help='Account email or phone')
        if name == 'login':
            p.add_argument('--secret', '-p', type=str, help='Account password')
        p.add_argument(
            '--dialect', choices=['auto', 'mobile', 'desktop'], default='auto',
            help='Site version to use (default: auto = mobile, then desktop)'
        )

    sub.add_parser('accounts', help='List saved accounts')
    sub.add_parser('cache', help='Show browser cache usage')

    p = sub.add_parser('delete', help='Delete saved data for one account')
    p.add_argument('identity', type=str, help='Account email or phone')

    p = sub.add_parser('purge', help='Delete old cookie/session files')
    p.add_argument('--max-age-hours', type=float, help='Age threshold (default: retention window)')

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )

    cfg = KeeperConfig.from_cli_args(args)
    cfg.log_summary()
    service = LoginService(cfg)

    try:
        if args.command in ('login', 'quick-login'):
            quick = args.command == 'quick-login'
            identity, secret = resolve_credentials(args, need_secret=not quick)
            ok = asyncio.run(run_login(service, identity, secret, args.dialect, quick=quick))
            return 0 if ok else 1

        if args.command == 'accounts':
            return cmd_accounts(service)

        if args.command == 'cache':
            return cmd_cache(service)

        if args.command == 'delete':
            result = asyncio.run(service.delete_account_data(args.identity))
        else:
            result = asyncio.run(service.purge_expired_artifacts(args.max_age_hours))
        print_result(result)
        return 0 if result.ok else 1

    except KeyboardInterrupt:
        print("\n\n  Cancelled by user.")
        return 130


if __name__ == '__main__':
    sys.exit(main())
