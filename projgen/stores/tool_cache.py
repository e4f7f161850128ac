"""Persistent cache of tool availability probes."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

from ..logging import get_logger
from ..models import CachedTool


CACHE_FILENAME = "tool_cache.json"
DEFAULT_TTL = timedelta(minutes=5)
DEFAULT_SAVE_INTERVAL = timedelta(seconds=30)


def default_cache_dir() -> Path:
    """Return the per-user cache directory used when none is configured."""
    base = os.environ.get("XDG_CACHE_HOME")
    root = Path(base) if base else Path.home() / ".cache"
    return root / "projgen"


@dataclass
class ToolCacheConfig:
    """Construction parameters for :class:`ToolCache`."""

    cache_dir: Path
    ttl: timedelta = DEFAULT_TTL
    save_interval: timedelta = DEFAULT_SAVE_INTERVAL
    offline_mode: bool = False
    refresh_when_online: bool = False


class ToolCache:
    """Stores tool availability and version answers with a TTL.

    Entries live in memory and are persisted as JSON under
    ``<cache_dir>/tool_cache.json``. While offline mode is enabled expired
    entries are still served through :meth:`get_with_offline_support`.
    """

    def __init__(self, config: ToolCacheConfig, logger: logging.Logger | None = None) -> None:
        self._config = config
        self._logger = logger or get_logger("stores.tool_cache")
        self._path = Path(config.cache_dir) / CACHE_FILENAME
        self._entries: Dict[str, CachedTool] = {}
        self._ttl = config.ttl
        self._offline = config.offline_mode
        self._last_save: Optional[datetime] = None
        self._lock = threading.RLock()
        self._save_lock = threading.Lock()
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def ttl(self) -> timedelta:
        with self._lock:
            return self._ttl

    def get(self, tool: str) -> Optional[CachedTool]:
        with self._lock:
            entry = self._entries.get(tool)
            if entry is None or entry.is_expired():
                return None
            return _copy(entry)

    def get_with_offline_support(self, tool: str) -> Optional[CachedTool]:
        with self._lock:
            if not self._offline:
                return self.get(tool)
            entry = self._entries.get(tool)
            return _copy(entry) if entry is not None else None

    def set(self, tool: str, available: bool, version: str = "") -> None:
        now = datetime.now(UTC)
        with self._lock:
            self._entries[tool] = CachedTool(
                available=available, version=version, cached_at=now, ttl=self._ttl
            )
            due = self._last_save is None or now - self._last_save > self._config.save_interval
            if due:
                # Claim the slot so concurrent writers do not all spawn savers.
                self._last_save = now
        if due:
            thread = threading.Thread(target=self._background_save, name="projgen-cache-save", daemon=True)
            thread.start()

    def save(self) -> None:
        """Write the cache atomically; raises ``OSError`` on failure."""
        with self._save_lock:
            with self._lock:
                payload = {name: entry_to_dict(entry) for name, entry in self._entries.items()}
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".tool_cache-", suffix=".tmp", dir=str(self._path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, indent=2, sort_keys=True)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        with self._lock:
            self._last_save = datetime.now(UTC)

    def load(self) -> None:
        """Replace in-memory state with the file contents; best effort."""
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError) as exc:
            self._logger.debug("Ignoring unreadable tool cache %s: %s", self._path, exc)
            return
        if not isinstance(data, dict):
            return
        loaded: Dict[str, CachedTool] = {}
        for name, raw in data.items():
            entry = entry_from_dict(raw)
            if isinstance(name, str) and entry is not None:
                loaded[name] = entry
        with self._lock:
            self._entries = loaded

    def clear_expired(self) -> int:
        now = datetime.now(UTC)
        with self._lock:
            expired = [name for name, entry in self._entries.items() if entry.is_expired(now)]
            for name in expired:
                del self._entries[name]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def set_ttl(self, ttl: timedelta) -> None:
        with self._lock:
            self._ttl = ttl

    def set_offline_mode(self, offline: bool) -> None:
        with self._lock:
            was_offline = self._offline
            self._offline = offline
            if was_offline and not offline and self._config.refresh_when_online:
                dropped = self.clear_expired()
                if dropped:
                    self._logger.debug("Dropped %d stale cache entries after going online", dropped)

    def is_offline_mode(self) -> bool:
        with self._lock:
            return self._offline

    def entries(self) -> Dict[str, CachedTool]:
        with self._lock:
            return {name: _copy(entry) for name, entry in self._entries.items()}

    def replace_entries(self, entries: Mapping[str, CachedTool]) -> None:
        with self._lock:
            self._entries = {name: _copy(entry) for name, entry in entries.items()}

    def get_stats(self) -> Dict[str, object]:
        now = datetime.now(UTC)
        with self._lock:
            available = sum(1 for entry in self._entries.values() if entry.available)
            expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
            return {
                "total": len(self._entries),
                "available": available,
                "unavailable": len(self._entries) - available,
                "expired": expired,
                "ttl_seconds": self._ttl.total_seconds(),
                "offline_mode": self._offline,
                "cache_file": str(self._path),
                "last_save": format_time(self._last_save) if self._last_save else None,
            }

    # ------------------------------------------------------------------
    # Internal helpers

    def _background_save(self) -> None:
        try:
            self.save()
        except OSError as exc:
            self._logger.warning("Failed to save tool cache to %s: %s", self._path, exc)


def _copy(entry: CachedTool) -> CachedTool:
    return CachedTool(
        available=entry.available,
        version=entry.version,
        cached_at=entry.cached_at,
        ttl=entry.ttl,
    )


def format_time(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_time(value: object) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp written by :func:`format_time`."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def entry_to_dict(entry: CachedTool) -> Dict[str, object]:
    return {
        "available": entry.available,
        "version": entry.version,
        "cached_at": format_time(entry.cached_at),
        "ttl": entry.ttl.total_seconds(),
    }


def entry_from_dict(payload: object) -> Optional[CachedTool]:
    if not isinstance(payload, dict):
        return None
    available = payload.get("available")
    version = payload.get("version", "")
    cached_at = parse_time(payload.get("cached_at"))
    ttl = payload.get("ttl")
    if not isinstance(available, bool) or not isinstance(version, str):
        return None
    if cached_at is None or isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        return None
    return CachedTool(
        available=available,
        version=version,
        cached_at=cached_at,
        ttl=timedelta(seconds=float(ttl)),
    )


__all__ = [
    "CACHE_FILENAME",
    "ToolCache",
    "ToolCacheConfig",
    "default_cache_dir",
    "entry_from_dict",
    "entry_to_dict",
    "format_time",
    "parse_time",
]
