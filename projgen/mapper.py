"""Maps generated components into the final project layout and checks the result."""

from __future__ import annotations

import logging
import shutil
import threading
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional

from .errors import file_system_error, validation_error
from .logging import get_logger

DEFAULT_MAPPINGS: Dict[str, str] = {
    "nextjs": "App",
    "go-backend": "CommonServer",
    "android": "Mobile/android",
    "ios": "Mobile/ios",
    "docker": "Deploy/docker",
    "kubernetes": "Deploy/k8s",
    "terraform": "Deploy/terraform",
}


def _check_nextjs(path: Path) -> Optional[str]:
    if not (path / "package.json").is_file():
        return "missing package.json"
    return None


def _check_go(path: Path) -> Optional[str]:
    if not (path / "go.mod").is_file():
        return "missing go.mod file"
    return None


def _check_android(path: Path) -> Optional[str]:
    if not ((path / "settings.gradle").is_file() or (path / "settings.gradle.kts").is_file()):
        return "missing settings.gradle or settings.gradle.kts"
    return None


def _check_ios(path: Path) -> Optional[str]:
    if (path / "Package.swift").is_file() or any(path.glob("*.xcodeproj")):
        return None
    return "missing .xcodeproj or Package.swift"


_MARKER_CHECKS: Dict[str, Callable[[Path], Optional[str]]] = {
    "nextjs": _check_nextjs,
    "go-backend": _check_go,
    "android": _check_android,
    "ios": _check_ios,
}


class StructureMapper:
    """Knows where each component type lives inside the generated project."""

    def __init__(
        self,
        mappings: Dict[str, str] | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._mappings = dict(DEFAULT_MAPPINGS if mappings is None else mappings)
        self._logger = logger or get_logger("mapper")
        self._lock = threading.Lock()

    def register_mapping(self, component_type: str, target: str) -> None:
        relative = PurePosixPath(target.strip("/"))
        if not target.strip("/") or relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"invalid target path for {component_type}: {target!r}")
        with self._lock:
            self._mappings[component_type] = str(relative)

    def known_types(self) -> List[str]:
        with self._lock:
            return sorted(self._mappings)

    def list_mappings(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._mappings)

    def get_target_path(self, component_type: str) -> str:
        with self._lock:
            target = self._mappings.get(component_type)
        if target is None:
            raise KeyError(component_type)
        return target

    def target_dir(self, output_dir: Path, component_type: str) -> Path:
        return Path(output_dir) / self.get_target_path(component_type)

    def map(self, source: Path, output_dir: Path, component_type: str) -> Path:
        """Copy ``source`` into the component's target directory, replacing it."""
        target = self.target_dir(output_dir, component_type)
        try:
            if target.exists():
                shutil.rmtree(target)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, target, symlinks=True)
        except OSError as exc:
            raise file_system_error("map", target, exc) from exc
        self._logger.debug("Mapped %s -> %s", source, target)
        return target

    def validate_structure(self, output_dir: Path, component_types: Iterable[str]) -> None:
        """Raise ``GenerationError(VALIDATION)`` listing every structural problem."""
        problems: List[str] = []
        for component_type in dict.fromkeys(component_types):
            try:
                target = self.target_dir(output_dir, component_type)
            except KeyError:
                problems.append(f"{component_type}: no target directory mapping")
                continue
            if not target.is_dir():
                problems.append(f"{component_type}: directory {target} does not exist")
                continue
            check = _MARKER_CHECKS.get(component_type)
            problem = check(target) if check else None
            if problem:
                problems.append(f"{component_type}: {problem}")
        if problems:
            raise validation_error(
                "generated project structure is invalid:\n" + "\n".join(f"  - {item}" for item in problems)
            )


__all__ = ["DEFAULT_MAPPINGS", "StructureMapper"]
