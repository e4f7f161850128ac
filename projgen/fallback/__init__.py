"""Fallback generator registry and built-in skeleton generators."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, Sequence

from .generators import (
    BUILTIN_GENERATORS,
    FALLBACK_TOOL,
    AndroidGenerator,
    FallbackGenerator,
    GoBackendGenerator,
    IOSGenerator,
    NextJSGenerator,
    TemplateGenerator,
)
from .render import template_environment


class FallbackRegistry:
    """Thread-safe mapping from component type to fallback generator."""

    def __init__(self) -> None:
        self._generators: Dict[str, FallbackGenerator] = {}
        self._lock = threading.RLock()

    def register(self, component_type: str, generator: FallbackGenerator) -> None:
        if not isinstance(generator, FallbackGenerator):
            raise TypeError(f"Fallback for '{component_type}' must be a FallbackGenerator instance")
        with self._lock:
            self._generators[component_type] = generator

    def get(self, component_type: str) -> FallbackGenerator:
        with self._lock:
            generator = self._generators.get(component_type)
        if generator is None:
            raise KeyError(component_type)
        return generator

    def supports(self, component_type: str) -> bool:
        with self._lock:
            return component_type in self._generators

    def get_supported_types(self) -> List[str]:
        with self._lock:
            return sorted(self._generators)


def default_fallback_registry(templates_dirs: Sequence[Path] = ()) -> FallbackRegistry:
    """Return a registry with every built-in generator sharing one environment."""
    environment = template_environment(templates_dirs)
    registry = FallbackRegistry()
    for factory in BUILTIN_GENERATORS:
        generator = factory(environment)
        registry.register(generator.component_type, generator)
    return registry


__all__ = [
    "AndroidGenerator",
    "FALLBACK_TOOL",
    "FallbackGenerator",
    "FallbackRegistry",
    "GoBackendGenerator",
    "IOSGenerator",
    "NextJSGenerator",
    "TemplateGenerator",
    "default_fallback_registry",
]
