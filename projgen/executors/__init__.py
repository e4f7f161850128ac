"""Executor registry, built-in executors and entry-point discovery."""

from __future__ import annotations

import threading
from importlib import metadata
from typing import Callable, Dict, Iterable, List

from .base import CommandExecutor, Executor
from .toolchains import GoExecutor, GradleExecutor, NextJSExecutor


_ENTRY_POINT_GROUP = "projgen.executors"

_BUILTIN_FACTORIES: dict[str, Callable[[], Executor]] = {
    "go-backend": GoExecutor,
    "nextjs": NextJSExecutor,
    "android": GradleExecutor,
}


class ExecutorNotFoundError(KeyError):
    """Raised when no executor is registered for a component type."""

    def __init__(self, component_type: str) -> None:
        super().__init__(component_type)
        self.component_type = component_type

    def __str__(self) -> str:
        return f"no executor registered for component type '{self.component_type}'"


class ExecutorRegistry:
    """Thread-safe mapping from component type to executor."""

    def __init__(self) -> None:
        self._executors: Dict[str, Executor] = {}
        self._lock = threading.RLock()

    def register(self, component_type: str, executor: Executor) -> None:
        if not isinstance(executor, Executor):
            raise TypeError(f"Executor for '{component_type}' must be an Executor instance")
        with self._lock:
            self._executors[component_type] = executor

    def get(self, component_type: str) -> Executor:
        with self._lock:
            executor = self._executors.get(component_type)
        if executor is None:
            raise ExecutorNotFoundError(component_type)
        return executor

    def has(self, component_type: str) -> bool:
        with self._lock:
            return component_type in self._executors

    def get_default_flags(self, component_type: str) -> List[str]:
        with self._lock:
            executor = self._executors.get(component_type)
        if executor is None:
            return []
        return list(executor.get_default_flags(component_type))

    def get_supported_types(self) -> List[str]:
        with self._lock:
            return sorted(self._executors)


def default_registry(*, include_entry_points: bool = True) -> ExecutorRegistry:
    """Return a registry with the built-in executors and any installed plugins."""
    registry = ExecutorRegistry()
    for component_type, factory in _BUILTIN_FACTORIES.items():
        registry.register(component_type, factory())

    if include_entry_points:
        for entry in _iter_entry_points():
            try:
                loaded = entry.load()
            except Exception as exc:  # pragma: no cover - defensive guard
                raise RuntimeError(f"Failed to load executor entry point '{entry.name}': {exc}") from exc
            registry.register(entry.name, _coerce_executor(loaded))

    return registry


def _coerce_executor(obj: object) -> Executor:
    if isinstance(obj, Executor):
        return obj
    if isinstance(obj, type) and issubclass(obj, Executor):
        return obj()
    if callable(obj):
        instance = obj()
        if isinstance(instance, Executor):
            return instance
    raise TypeError("Executor entry point must be an Executor subclass or factory")


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    return metadata.entry_points().select(group=_ENTRY_POINT_GROUP)


__all__ = [
    "CommandExecutor",
    "Executor",
    "ExecutorNotFoundError",
    "ExecutorRegistry",
    "GoExecutor",
    "GradleExecutor",
    "NextJSExecutor",
    "default_registry",
]
