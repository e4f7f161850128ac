"""Maintenance operations over a :class:`ToolCache`: stats, validation, export/import."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from ..errors import GenerationError
from ..logging import get_logger
from ..models import CachedTool
from .tool_cache import ToolCache, entry_from_dict, entry_to_dict, format_time, parse_time

if TYPE_CHECKING:  # pragma: no cover
    from ..discovery import ToolDiscovery


EXPORT_VERSION = "1.0"
MAX_TTL = timedelta(hours=24)
CLOCK_SKEW = timedelta(minutes=1)
_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass
class CacheStats:
    total_entries: int = 0
    available_tools: int = 0
    unavailable_tools: int = 0
    expired_entries: int = 0
    ttl: timedelta = timedelta(0)
    offline_mode: bool = False
    cache_file: str = ""


@dataclass
class ValidationReport:
    valid: bool = True
    total_entries: int = 0
    corrupted_entries: List[str] = field(default_factory=list)
    expired_entries: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ExportStats:
    version: str
    exported_at: Optional[datetime]
    platform: str
    total_entries: int
    available_tools: int


class CacheValidator:
    """Sanity checks for individual cache entries."""

    def validate_entry(self, name: str, entry: Optional[CachedTool]) -> None:
        if entry is None:
            raise ValueError(f"cache entry '{name}' is empty")
        if entry.cached_at > datetime.now(UTC) + CLOCK_SKEW:
            raise ValueError(f"cache entry '{name}' has a timestamp in the future")
        if entry.ttl < timedelta(0):
            raise ValueError(f"cache entry '{name}' has a negative TTL")
        if entry.ttl > MAX_TTL:
            raise ValueError(f"cache entry '{name}' has a TTL longer than 24 hours")

    def check_expired(self, cache: ToolCache) -> List[str]:
        now = datetime.now(UTC)
        return sorted(name for name, entry in cache.entries().items() if entry.is_expired(now))


class CacheExporter:
    """Writes and reads portable cache snapshots."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or get_logger("stores.manager")

    def export(self, cache: ToolCache, path: Path) -> int:
        entries = cache.entries()
        payload = {
            "version": EXPORT_VERSION,
            "exported_at": format_time(datetime.now(UTC)),
            "platform": sys.platform,
            "entries": {name: entry_to_dict(entry) for name, entry in sorted(entries.items())},
        }
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return len(entries)

    def import_(self, cache: ToolCache, path: Path) -> int:
        """Replace ``cache`` contents with the snapshot at ``path``.

        The whole file is validated before anything is replaced; a rejected
        file leaves the cache untouched.
        """
        data = _read_export(Path(path))
        version = data.get("version")
        if not version:
            raise ValueError("export file is missing a version")
        if version != EXPORT_VERSION:
            raise ValueError(f"unsupported export version: {version}")
        if parse_time(data.get("exported_at")) is None:
            raise ValueError("export file is missing exported_at")
        raw_entries = data.get("entries")
        if not isinstance(raw_entries, dict):
            raise ValueError("export file is missing entries")

        platform = data.get("platform")
        if platform and platform != sys.platform:
            self._logger.warning(
                "Importing cache exported on %s into %s; availability may differ", platform, sys.platform
            )

        imported: Dict[str, CachedTool] = {}
        for name, raw in raw_entries.items():
            if raw is None:
                raise ValueError(f"entry '{name}' is null")
            if isinstance(raw, dict):
                ttl = raw.get("ttl")
                if isinstance(ttl, (int, float)) and not isinstance(ttl, bool) and ttl < 0:
                    raise ValueError(f"entry '{name}' has a negative TTL")
                cached_at = parse_time(raw.get("cached_at"))
                if cached_at is None:
                    raise ValueError(f"entry '{name}' has no timestamp")
                if cached_at <= _UNIX_EPOCH:
                    raise ValueError(f"entry '{name}' has a zero timestamp")
            entry = entry_from_dict(raw)
            if entry is None:
                raise ValueError(f"entry '{name}' is malformed")
            imported[name] = entry

        cache.replace_entries(imported)
        return len(imported)

    def get_export_stats(self, path: Path) -> ExportStats:
        data = _read_export(Path(path))
        raw_entries = data.get("entries")
        entries = raw_entries if isinstance(raw_entries, dict) else {}
        available = sum(1 for raw in entries.values() if isinstance(raw, dict) and raw.get("available") is True)
        return ExportStats(
            version=str(data.get("version", "")),
            exported_at=parse_time(data.get("exported_at")),
            platform=str(data.get("platform", "")),
            total_entries=len(entries),
            available_tools=available,
        )


class CacheManager:
    """Facade used by the ``projgen cache`` commands."""

    def __init__(self, cache: ToolCache, logger: logging.Logger | None = None) -> None:
        self._cache = cache
        self._logger = logger or get_logger("stores.manager")
        self._validator = CacheValidator()
        self._exporter = CacheExporter(self._logger)

    @property
    def cache(self) -> ToolCache:
        return self._cache

    def get_stats(self) -> CacheStats:
        stats = self._cache.get_stats()
        return CacheStats(
            total_entries=int(stats["total"]),
            available_tools=int(stats["available"]),
            unavailable_tools=int(stats["unavailable"]),
            expired_entries=int(stats["expired"]),
            ttl=self._cache.ttl,
            offline_mode=bool(stats["offline_mode"]),
            cache_file=str(stats["cache_file"]),
        )

    def validate(self) -> ValidationReport:
        report = ValidationReport()
        path = self._cache.path
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                report.valid = False
                report.warnings.append(f"cache file {path} is unreadable: {exc}")
            else:
                if not isinstance(data, dict):
                    report.valid = False
                    report.warnings.append(f"cache file {path} does not contain an object")
                else:
                    for name, raw in data.items():
                        if entry_from_dict(raw) is None:
                            report.corrupted_entries.append(name)

        entries = self._cache.entries()
        report.total_entries = len(entries)
        for name, entry in sorted(entries.items()):
            try:
                self._validator.validate_entry(name, entry)
            except ValueError as exc:
                report.corrupted_entries.append(name)
                report.warnings.append(str(exc))
        report.expired_entries = self._validator.check_expired(self._cache)
        if report.corrupted_entries:
            report.valid = False
            report.corrupted_entries = sorted(set(report.corrupted_entries))
        return report

    def clear(self) -> None:
        self._cache.clear()
        self._cache.save()

    def clean_expired(self) -> int:
        removed = self._cache.clear_expired()
        self._cache.save()
        return removed

    def refresh(self, discovery: "ToolDiscovery") -> Dict[str, bool]:
        """Drop every entry and re-probe all registered tools."""
        self._cache.clear()
        results: Dict[str, bool] = {}
        for name in discovery.list_registered_tools():
            results[name] = discovery.is_available(name)
            if results[name]:
                try:
                    discovery.get_version(name)
                except GenerationError as exc:
                    self._logger.debug("Version probe for %s failed: %s", name, exc)
        self._cache.save()
        return results

    def export(self, path: Path) -> int:
        return self._exporter.export(self._cache, path)

    def import_(self, path: Path) -> int:
        count = self._exporter.import_(self._cache, path)
        self._cache.save()
        return count

    def get_export_stats(self, path: Path) -> ExportStats:
        return self._exporter.get_export_stats(path)


def _read_export(path: Path) -> Dict[str, object]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"export file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"export file {path} does not contain an object")
    return data


__all__ = [
    "CacheExporter",
    "CacheManager",
    "CacheStats",
    "CacheValidator",
    "EXPORT_VERSION",
    "ExportStats",
    "ValidationReport",
]
