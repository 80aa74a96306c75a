"""Local SQLite cache of API responses and JSON snapshots of findings."""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from ghfindings.models import ZERO_TIME

log = logging.getLogger(__name__)

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    etag TEXT,
    data BLOB,
    expires_at DATETIME,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_expires_at ON cache_entries(expires_at);
"""


class CacheUnavailableError(RuntimeError):
    """Raised when the cache database is not open."""


@dataclass
class CacheEntry:
    """A cached API response."""

    key: str
    etag: str
    data: bytes
    expires_at: datetime
    created_at: datetime


def _parse_time(text: Any) -> datetime:
    try:
        return datetime.strptime(str(text), _TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return ZERO_TIME


def generate_key(*components: str) -> str:
    """Build a cache key: the MD5 hex digest of the components joined with ``:``."""
    combined = "".join(f"{component}:" for component in components)
    return hashlib.md5(combined.encode("utf-8")).hexdigest()


class Cache:
    """An SQLite-backed cache stored as ``cache.db`` in ``cache_dir``."""

    def __init__(self, cache_dir: str | Path) -> None:
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        db = sqlite3.connect(str(self.cache_dir / "cache.db"), check_same_thread=False)
        try:
            db.executescript(_SCHEMA)
        except sqlite3.Error:
            db.close()
            raise
        self._db: sqlite3.Connection | None = db

    def _require_db(self) -> sqlite3.Connection:
        if self._db is None:
            raise CacheUnavailableError("cache database not available")
        return self._db

    def get(self, key: str) -> CacheEntry | None:
        """Return the unexpired entry for ``key``, or None."""
        if self._db is None:
            return None
        query = (
            "SELECT key, etag, data, expires_at, created_at FROM cache_entries "
            "WHERE key = ? AND expires_at > datetime('now')"
        )
        with self._lock:
            try:
                row = self._db.execute(query, (key,)).fetchone()
            except sqlite3.Error as exc:
                log.debug("Cache get error: %s", exc)
                return None
        if row is None:
            return None
        return CacheEntry(
            key=row[0],
            etag=row[1] or "",
            data=bytes(row[2] or b""),
            expires_at=_parse_time(row[3]),
            created_at=_parse_time(row[4]),
        )

    def set(self, key: str, etag: str, data: bytes, ttl: timedelta | float) -> None:
        """Store ``data`` under ``key`` for ``ttl`` (a timedelta or seconds)."""
        db = self._require_db()
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)
        expires_at = (datetime.now(timezone.utc) + ttl).strftime(_TIME_FORMAT)
        with self._lock:
            db.execute(
                "INSERT OR REPLACE INTO cache_entries (key, etag, data, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (key, etag, bytes(data), expires_at),
            )
            db.commit()

    def get_etag(self, key: str) -> str | None:
        """Return only the ETag of the unexpired entry for ``key``, or None."""
        if self._db is None:
            return None
        with self._lock:
            try:
                row = self._db.execute(
                    "SELECT etag FROM cache_entries WHERE key = ? AND expires_at > datetime('now')",
                    (key,),
                ).fetchone()
            except sqlite3.Error:
                return None
        if row is None or row[0] is None:
            return None
        return row[0]

    def delete(self, key: str) -> None:
        """Remove the entry for ``key``."""
        db = self._require_db()
        with self._lock:
            db.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            db.commit()

    def clean_expired(self) -> None:
        """Remove all expired entries."""
        db = self._require_db()
        with self._lock:
            db.execute("DELETE FROM cache_entries WHERE expires_at <= datetime('now')")
            db.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            with self._lock:
                self._db.close()
                self._db = None

    def __enter__(self) -> Cache:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def cache_findings(self, org: str, data: Any) -> Path:
        """Write ``data`` as indented JSON to a timestamped file and return its path."""
        if hasattr(data, "to_dict"):
            data = data.to_dict()
        path = self.cache_dir / f"findings_{org}_{int(time.time())}.json"
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    def load_cached_findings(self, path: str | Path) -> Any:
        """Read a JSON file written by :meth:`cache_findings`."""
        return json.loads(Path(path).read_text(encoding="utf-8"))


def open_cache(cache_dir: str | Path) -> Cache | None:
    """Open a cache, or log a warning and return None if that fails."""
    try:
        return Cache(cache_dir)
    except (OSError, sqlite3.Error) as exc:
        log.warning("Failed to open cache in %s: %s", cache_dir, exc)
        return None