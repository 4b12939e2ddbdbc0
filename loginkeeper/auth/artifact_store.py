"""
Artifact Store
==============
Persists per-account authentication artifacts between login runs.

Responsibilities:
    1. Save cookies + local/session storage after a successful login
    2. Load them for quick (artifact-only) login
    3. Treat artifacts older than the retention window as absent
    4. Purge old artifacts and delete everything kept for one account

Layout (``key`` = ``sanitize_identity(identity)``)::

    <artifacts_dir>/<key>_cookies.json     cookie set
    <artifacts_dir>/<key>_session.json     storage snapshot
    <cache_dir>/<key>/<dialect>/           persistent browser profile

Sessions never touch these files directly; everything goes through
``ArtifactStore``.  Concurrent writes for the same identity are
last-writer-wins.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..utils import parse_timestamp, restore_identity, sanitize_identity, utc_now

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings
# ---------------------------------------------------------------------------

_COOKIES_SUFFIX = "_cookies.json"
_SESSION_SUFFIX = "_session.json"
_DEFAULT_RETENTION_HOURS = 168


@dataclass
class ArtifactBundle:
    """Cookies + storage snapshot captured from an authenticated page."""

    identity: str
    captured_at: datetime = field(default_factory=utc_now)
    cookies: List[dict] = field(default_factory=list)
    local_storage: Dict[str, str] = field(default_factory=dict)
    session_storage: Dict[str, str] = field(default_factory=dict)
    url: str = ""
    title: str = ""
    user_agent: str = ""

    @property
    def age_hours(self) -> float:
        return (utc_now() - self.captured_at).total_seconds() / 3600

    @property
    def is_empty(self) -> bool:
        return not (self.cookies or self.local_storage or self.session_storage)


class ArtifactStore:
    """Reads and writes artifact bundles with age-based expiry."""

    def __init__(
        self,
        artifacts_dir: str = "cookies",
        cache_dir: str = "cache",
        *,
        retention_hours: float = _DEFAULT_RETENTION_HOURS,
    ):
        """
        Args:
            artifacts_dir:   Directory holding cookie/session JSON files.
            cache_dir:       Root for persistent browser profiles.
            retention_hours: Bundles older than this are ignored by ``read``.
        """
        self.artifacts_dir = Path(artifacts_dir)
        self.cache_root = Path(cache_dir)
        self.retention_hours = retention_hours

    # ── Paths ─────────────────────────────────────────────────────

    def cookies_path(self, identity: str) -> Path:
        return self.artifacts_dir / f"{sanitize_identity(identity)}{_COOKIES_SUFFIX}"

    def session_path(self, identity: str) -> Path:
        return self.artifacts_dir / f"{sanitize_identity(identity)}{_SESSION_SUFFIX}"

    def account_cache_dir(self, identity: str) -> Path:
        return self._inside_cache_root(self.cache_root / sanitize_identity(identity))

    def cache_dir(self, identity: str, dialect: str, *, create: bool = True) -> Path:
        """Persistent browser profile directory for (identity, dialect)."""
        path = self._inside_cache_root(self.account_cache_dir(identity) / dialect)
        if create:
            path.mkdir(parents=True, exist_ok=True)
        return path

    def _inside_cache_root(self, path: Path) -> Path:
        root = self.cache_root.resolve()
        resolved = path.resolve()
        if resolved == root or root not in resolved.parents:
            raise ValueError(f"Cache path {path} escapes {self.cache_root}")
        return path

    # ── Read / write ──────────────────────────────────────────────

    def read(self, identity: str) -> Optional[ArtifactBundle]:
        """Load the bundle for *identity*, or None if absent, corrupt, or expired.

        Expired bundles are left on disk; only ``purge_older_than`` and
        ``delete`` remove files.
        """
        path = self.cookies_path(identity)
        if not path.exists():
            logger.info(f"[ARTIFACTS] No saved cookies for {identity}")
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning(f"[ARTIFACTS] Corrupt cookie file {path.name}: {exc}")
            return None

        captured_at = parse_timestamp(data.get("timestamp", ""))
        if captured_at is None:
            captured_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)

        bundle = ArtifactBundle(
            identity=data.get("identity", identity),
            captured_at=captured_at,
            cookies=list(data.get("cookies", [])),
            user_agent=data.get("user_agent", ""),
        )

        if bundle.age_hours > self.retention_hours:
            logger.info(
                f"[ARTIFACTS] Cookies for {identity} are {bundle.age_hours:.1f}h old "
                f"(expired, max {self.retention_hours:g}h)"
            )
            return None

        self._load_storage(identity, bundle)
        logger.info(
            f"[ARTIFACTS] Loaded {len(bundle.cookies)} cookies for {identity} "
            f"({bundle.age_hours:.0f}h old)"
        )
        return bundle

    def _load_storage(self, identity: str, bundle: ArtifactBundle) -> None:
        path = self.session_path(identity)
        if not path.exists():
            return
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning(f"[ARTIFACTS] Corrupt storage snapshot {path.name}: {exc}")
            return
        bundle.local_storage = dict(data.get("local_storage") or {})
        bundle.session_storage = dict(data.get("session_storage") or {})
        bundle.url = data.get("url", "")
        bundle.title = data.get("title", "")

    def write(self, bundle: ArtifactBundle) -> None:
        """Persist *bundle*, replacing any previous artifacts for its identity."""
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)
        stamp = bundle.captured_at.isoformat()

        _write_json(self.cookies_path(bundle.identity), {
            "identity": bundle.identity,
            "timestamp": stamp,
            "cookies": bundle.cookies,
            "user_agent": bundle.user_agent,
        })
        _write_json(self.session_path(bundle.identity), {
            "identity": bundle.identity,
            "timestamp": stamp,
            "url": bundle.url,
            "title": bundle.title,
            "local_storage": bundle.local_storage,
            "session_storage": bundle.session_storage,
        })
        logger.info(
            f"[ARTIFACTS] Saved {len(bundle.cookies)} cookies + storage for "
            f"{bundle.identity}"
        )

    # ── Housekeeping ──────────────────────────────────────────────

    def purge_older_than(self, max_age_hours: float) -> int:
        """Delete artifact files last modified more than *max_age_hours* ago.

        Returns:
            Number of files removed (0 when nothing is old enough).
        """
        if not self.artifacts_dir.exists():
            return 0

        cutoff = time.time() - max_age_hours * 3600
        removed = 0
        for path in sorted(self.artifacts_dir.iterdir()):
            if not _is_artifact_file(path):
                continue
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
                    logger.info(f"[ARTIFACTS] Purged old file: {path.name}")
            except FileNotFoundError:
                continue

        if removed:
            logger.info(f"[ARTIFACTS] Purge complete: {removed} files removed")
        return removed

    def delete(self, identity: str) -> int:
        """Remove cookies, storage snapshot, and browser cache for *identity*.

        Returns:
            Count of removed items, 0 to 3.
        """
        cache = self.account_cache_dir(identity)
        deleted = 0
        for path in (self.cookies_path(identity), self.session_path(identity)):
            if path.exists():
                path.unlink()
                deleted += 1

        if cache.exists():
            shutil.rmtree(cache)
            deleted += 1

        logger.info(f"[ARTIFACTS] Deleted {deleted} items for {identity}")
        return deleted

    # ── Inspection ────────────────────────────────────────────────

    def list_accounts(self) -> List[dict]:
        """Summarize saved artifacts per account, newest first."""
        if not self.artifacts_dir.exists():
            return []

        groups: Dict[str, dict] = {}
        for path in self.artifacts_dir.iterdir():
            if not _is_artifact_file(path):
                continue
            kind = "cookies" if path.name.endswith(_COOKIES_SUFFIX) else "session"
            key = path.name[: -len(_COOKIES_SUFFIX if kind == "cookies" else _SESSION_SUFFIX)]
            groups.setdefault(key, {})[kind] = _describe_file(path)

        accounts = []
        for key, files in groups.items():
            identity = next(
                (f["identity"] for f in files.values() if f.get("identity")),
                restore_identity(key),
            )
            accounts.append({
                "identity": identity,
                "total_size": sum(f["size"] for f in files.values()),
                "age_hours": max(f["age_hours"] for f in files.values()),
                "last_modified": max(f["last_modified"] for f in files.values()),
                "files": {
                    "cookies": files.get("cookies"),
                    "session": files.get("session"),
                },
                "file_count": len(files),
            })
        accounts.sort(key=lambda a: a["last_modified"], reverse=True)
        return accounts

    def cache_usage(self) -> dict:
        """Size and file count of every per-account browser cache directory."""
        caches = []
        if self.cache_root.exists():
            for entry in self.cache_root.iterdir():
                if not entry.is_dir():
                    continue
                size, count = _dir_size(entry)
                mtime = entry.stat().st_mtime
                caches.append({
                    "identity": restore_identity(entry.name),
                    "directory": entry.name,
                    "path": str(entry),
                    "dialects": sorted(p.name for p in entry.iterdir() if p.is_dir()),
                    "size": size,
                    "file_count": count,
                    "age_hours": (time.time() - mtime) / 3600,
                    "last_modified": datetime.fromtimestamp(mtime).isoformat(),
                })
        caches.sort(key=lambda c: c["last_modified"], reverse=True)
        return {
            "count": len(caches),
            "total_size": sum(c["size"] for c in caches),
            "total_files": sum(c["file_count"] for c in caches),
            "caches": caches,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_artifact_file(path: Path) -> bool:
    return path.is_file() and (
        path.name.endswith(_COOKIES_SUFFIX) or path.name.endswith(_SESSION_SUFFIX)
    )


def _write_json(path: Path, payload: dict) -> None:
    """Write via a temp file so a crash never leaves half a JSON document."""
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, path)


def _describe_file(path: Path) -> dict:
    stat = path.stat()
    info = {
        "filename": path.name,
        "size": stat.st_size,
        "last_modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
        "age_hours": (time.time() - stat.st_mtime) / 3600,
        "identity": None,
        "created": None,
    }
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        info["identity"] = data.get("identity")
        info["created"] = data.get("timestamp")
    except (json.JSONDecodeError, OSError):
        pass
    return info


def _dir_size(root: Path):
    total = 0
    count = 0
    for path in root.rglob("*"):
        if path.is_file():
            try:
                total += path.stat().st_size
                count += 1
            except OSError:
                continue
    return total, count
