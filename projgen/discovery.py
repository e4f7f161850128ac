"""Discovery of the external bootstrap tools each component type needs."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import sys
import threading
from datetime import UTC, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import (
    GenerationError,
    timeout_error,
    tool_execution_error,
    tool_not_found_error,
)
from .logging import get_logger
from .models import Tool, ToolCheckResult, ToolMetadata
from .stores.tool_cache import ToolCache


VERSION_TIMEOUT = 10.0

DEFAULT_MIN_VERSIONS: Dict[str, str] = {
    "go": "1.21",
    "gradle": "8.0",
    "xcodebuild": "15.0",
    "terraform": "1.5",
}


_VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")

Runner = Callable[..., subprocess.CompletedProcess]


def known_tools() -> List[ToolMetadata]:
    """Return the built-in tool registrations."""
    return [
        ToolMetadata(
            name="npx",
            command="npx",
            version_flag="--version",
            component_types=("nextjs",),
            install_docs={
                "linux": "https://nodejs.org/en/download/package-manager",
                "darwin": "https://nodejs.org/en/download/package-manager",
                "windows": "https://nodejs.org/en/download",
            },
        ),
        ToolMetadata(
            name="go",
            command="go",
            version_flag="version",
            min_version=DEFAULT_MIN_VERSIONS["go"],
            component_types=("go-backend",),
            install_docs={
                "linux": "https://go.dev/doc/install",
                "darwin": "https://go.dev/doc/install",
                "windows": "https://go.dev/doc/install",
            },
        ),
        ToolMetadata(
            name="gradle",
            command="gradle",
            version_flag="--version",
            min_version=DEFAULT_MIN_VERSIONS["gradle"],
            fallback_available=True,
            component_types=("android",),
            install_docs={
                "linux": "https://gradle.org/install/",
                "darwin": "https://gradle.org/install/",
                "windows": "https://gradle.org/install/",
            },
        ),
        ToolMetadata(
            name="xcodebuild",
            command="xcodebuild",
            version_flag="-version",
            min_version=DEFAULT_MIN_VERSIONS["xcodebuild"],
            fallback_available=True,
            component_types=("ios",),
            install_docs={"darwin": "https://developer.apple.com/xcode/"},
        ),
        ToolMetadata(
            name="docker",
            command="docker",
            version_flag="--version",
            component_types=("docker",),
            install_docs={
                "linux": "https://docs.docker.com/engine/install/",
                "darwin": "https://docs.docker.com/desktop/install/mac-install/",
                "windows": "https://docs.docker.com/desktop/install/windows-install/",
            },
        ),
        ToolMetadata(
            name="terraform",
            command="terraform",
            version_flag="version",
            min_version=DEFAULT_MIN_VERSIONS["terraform"],
            component_types=("terraform",),
            install_docs={
                "linux": "https://developer.hashicorp.com/terraform/install",
                "darwin": "https://developer.hashicorp.com/terraform/install",
                "windows": "https://developer.hashicorp.com/terraform/install",
            },
        ),
    ]


_QUICK_INSTALL: Dict[str, Dict[str, str]] = {
    "darwin": {
        "npx": "brew install node",
        "go": "brew install go",
        "gradle": "brew install gradle",
        "docker": "brew install --cask docker",
        "terraform": "brew install terraform",
    },
    "linux": {
        "npx": "sudo apt-get install nodejs npm (Debian/Ubuntu)",
        "go": "sudo apt-get install golang (Debian/Ubuntu)",
        "gradle": "sudo apt-get install gradle (Debian/Ubuntu)",
        "docker": "curl -fsSL https://get.docker.com | sh",
        "terraform": "sudo apt-get install terraform (with HashiCorp repo)",
    },
    "windows": {
        "npx": "Download from nodejs.org or use 'choco install nodejs'",
        "go": "Download from go.dev or use 'choco install golang'",
        "gradle": "choco install gradle",
        "docker": "Download Docker Desktop from docker.com",
        "terraform": "choco install terraform",
    },
}


def normalize_os(name: str) -> str:
    """Map user-supplied OS names onto ``darwin``, ``linux`` or ``windows``."""
    key = name.strip().lower()
    if key in {"darwin", "macos", "osx", "mac"}:
        return "darwin"
    if key in {"linux", "unix"}:
        return "linux"
    if key in {"windows", "win"}:
        return "windows"
    if not key:
        return _current_os()
    return key


def _current_os() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


def parse_version(text: str) -> Optional[Tuple[int, int, int]]:
    match = _VERSION_PATTERN.search(text or "")
    if not match:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch or 0)


def is_version_older(installed: str, minimum: str) -> bool:
    """Return True when ``installed`` is parseable and below ``minimum``."""
    have = parse_version(installed)
    want = parse_version(minimum)
    if have is None or want is None:
        return False
    return have < want


class ToolDiscovery:
    """Answers availability, version and fallback questions about tools."""

    def __init__(
        self,
        cache: ToolCache | None = None,
        *,
        logger: logging.Logger | None = None,
        tools: Sequence[ToolMetadata] | None = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        runner: Runner = subprocess.run,
    ) -> None:
        self._cache = cache
        self._logger = logger or get_logger("discovery")
        self._which = which
        self._runner = runner
        self._lock = threading.RLock()
        self._offline = cache.is_offline_mode() if cache is not None else False
        self._tools: Dict[str, ToolMetadata] = {}
        for metadata in tools if tools is not None else known_tools():
            self._tools[metadata.name] = metadata
        # In-memory answers when no cache is configured.
        self._memo: Dict[str, Tuple[bool, str]] = {}

    # ------------------------------------------------------------------
    # Registry

    def register_tool(self, metadata: ToolMetadata) -> None:
        with self._lock:
            self._tools[metadata.name] = metadata

    def get_tool_metadata(self, tool: str) -> ToolMetadata:
        with self._lock:
            metadata = self._tools.get(tool)
        if metadata is None:
            raise tool_not_found_error(tool)
        return metadata

    def list_registered_tools(self) -> List[str]:
        with self._lock:
            return sorted(self._tools)

    def get_tools_for_component(self, component_type: str) -> List[str]:
        with self._lock:
            return sorted(
                name for name, metadata in self._tools.items() if component_type in metadata.component_types
            )

    def has_fallback(self, component_type: str) -> bool:
        with self._lock:
            return any(
                metadata.fallback_available
                for metadata in self._tools.values()
                if component_type in metadata.component_types
            )

    # ------------------------------------------------------------------
    # Probing

    def is_available(self, tool: str) -> bool:
        cached = self._cached(tool)
        if cached is not None:
            return cached[0]
        if self.is_offline_mode():
            self._logger.debug("Offline and no cached answer for %s; treating as unavailable", tool)
            return False
        with self._lock:
            metadata = self._tools.get(tool)
        command = metadata.command if metadata else tool
        available = self._which(command) is not None
        self._remember(tool, available, "")
        self._logger.debug("Tool %s available=%s", tool, available)
        return available

    def get_version(self, tool: str) -> str:
        cached = self._cached(tool)
        if cached is not None and cached[0] and cached[1]:
            return cached[1]
        with self._lock:
            metadata = self._tools.get(tool)
        if metadata is None or not self.is_available(tool):
            raise tool_not_found_error(tool)
        if self.is_offline_mode():
            return cached[1] if cached else ""
        command = [metadata.command, metadata.version_flag]
        try:
            completed = self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=VERSION_TIMEOUT,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise timeout_error(f"{tool} {metadata.version_flag}") from exc
        except OSError as exc:
            raise tool_execution_error(tool, cause=exc) from exc
        if completed.returncode != 0:
            raise tool_execution_error(
                tool,
                cause=subprocess.CalledProcessError(completed.returncode, command, completed.stdout, completed.stderr),
            )
        version = f"{completed.stdout or ''}{completed.stderr or ''}".strip()
        self._remember(tool, True, version)
        return version

    def check_requirements(self, tools: Sequence[str]) -> ToolCheckResult:
        result = ToolCheckResult(checked_at=datetime.now(UTC))
        for name in tools:
            with self._lock:
                metadata = self._tools.get(name)
            if metadata is None:
                result.all_available = False
                result.missing.append(name)
                continue
            record = Tool(
                name=name,
                command=metadata.command,
                version_command=f"{metadata.command} {metadata.version_flag}",
                min_version=metadata.min_version,
                install_instructions=dict(metadata.install_docs),
                last_checked=result.checked_at,
            )
            record.available = self.is_available(name)
            if record.available:
                try:
                    record.installed_version = self.get_version(name)
                except GenerationError as exc:
                    self._logger.debug("Could not read %s version: %s", name, exc)
                if metadata.min_version and is_version_older(record.installed_version, metadata.min_version):
                    result.outdated.append(name)
                    self._logger.warning(
                        "%s %s is older than the recommended %s",
                        name,
                        record.installed_version,
                        metadata.min_version,
                    )
            else:
                result.all_available = False
                result.missing.append(name)
            result.tools[name] = record
        return result

    def should_use_fallback(self, component_type: str) -> Tuple[bool, str]:
        """Decide between bootstrap and fallback for ``component_type``.

        Raises ``GenerationError(TOOL_NOT_FOUND)`` when a required tool is
        missing and no fallback exists for it.
        """
        if self.is_offline_mode():
            return True, "offline mode is enabled"
        names = self.get_tools_for_component(component_type)
        if not names:
            return True, f"no bootstrap tool registered for {component_type}"
        for name in names:
            if self.is_available(name):
                continue
            metadata = self.get_tool_metadata(name)
            if metadata.fallback_available:
                return True, f"required tool '{name}' is not available"
            raise tool_not_found_error(name, component_type)
        return False, ""

    # ------------------------------------------------------------------
    # Offline mode and cache plumbing

    def set_offline_mode(self, offline: bool) -> None:
        with self._lock:
            self._offline = offline
        if self._cache is not None:
            self._cache.set_offline_mode(offline)

    def is_offline_mode(self) -> bool:
        with self._lock:
            return self._offline

    def clear_cache(self) -> None:
        with self._lock:
            self._memo.clear()
        if self._cache is not None:
            self._cache.clear()

    def save_cache(self) -> None:
        if self._cache is not None:
            self._cache.save()

    def set_cache_ttl(self, ttl: timedelta) -> None:
        if self._cache is not None:
            self._cache.set_ttl(ttl)

    def get_cache_stats(self) -> Dict[str, object]:
        if self._cache is None:
            with self._lock:
                return {"total": len(self._memo), "cache_file": None}
        return self._cache.get_stats()

    def get_install_instructions(self, tool: str, os_name: str = "") -> str:
        normalized = normalize_os(os_name)
        with self._lock:
            metadata = self._tools.get(tool)
        if metadata is None:
            return f"Tool '{tool}' is not registered. Please check the tool name."
        url = metadata.install_docs.get(normalized)
        if url is None:
            if tool == "xcodebuild":
                return "xcodebuild is only available on macOS. Install Xcode from the App Store."
            return (
                f"Installation instructions for '{tool}' on '{os_name or normalized}' are not available. "
                "Please visit the official documentation."
            )
        lines = [
            f"Installation instructions for '{tool}' on {normalized}:",
            f"  Documentation: {url}",
        ]
        quick = _QUICK_INSTALL.get(normalized, {}).get(tool)
        if quick:
            lines.append(f"  Quick install: {quick}")
        if metadata.fallback_available:
            lines.append("")
            lines.append("  Note: Fallback generation is available if this tool cannot be installed.")
        return "\n".join(lines) + "\n"

    def _cached(self, tool: str) -> Optional[Tuple[bool, str]]:
        if self._cache is not None:
            entry = self._cache.get_with_offline_support(tool)
            return (entry.available, entry.version) if entry is not None else None
        with self._lock:
            return self._memo.get(tool)

    def _remember(self, tool: str, available: bool, version: str) -> None:
        if self._cache is not None:
            self._cache.set(tool, available, version)
            return
        with self._lock:
            self._memo[tool] = (available, version)


__all__ = [
    "DEFAULT_MIN_VERSIONS",
    "ToolDiscovery",
    "VERSION_TIMEOUT",
    "is_version_older",
    "known_tools",
    "normalize_os",
    "parse_version",
]
