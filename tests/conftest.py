from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

import pytest

from projgen.coordinator import ProjectCoordinator
from projgen.discovery import ToolDiscovery
from projgen.executors import Executor, ExecutorRegistry
from projgen.fallback import default_fallback_registry
from projgen.offline import OfflineDetector
from tests._fixtures.doubles import FakeWhich, RecordingRunner, StaticProbe


@pytest.fixture(autouse=True)
def _reset_projgen_logger() -> Iterator[None]:
    """Undo handler and propagation changes made by configure_logging/attach_run_log."""
    yield
    logger = logging.getLogger("projgen")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def online_detector() -> OfflineDetector:
    """Detector whose probes always reach the network."""
    return OfflineDetector(http_probe=StaticProbe(True), dns_probe=StaticProbe(True))


CoordinatorFactory = Callable[..., ProjectCoordinator]


@pytest.fixture
def make_coordinator(online_detector: OfflineDetector) -> CoordinatorFactory:
    """Build coordinators with a fake PATH, no real subprocesses and no network."""

    def _factory(
        *,
        installed: Iterable[str] = (),
        executors: Optional[dict[str, Executor]] = None,
        detector: Optional[OfflineDetector] = None,
        **kwargs: object,
    ) -> ProjectCoordinator:
        registry = ExecutorRegistry()
        for component_type, executor in (executors or {}).items():
            registry.register(component_type, executor)
        discovery = ToolDiscovery(which=FakeWhich(installed), runner=RecordingRunner())
        return ProjectCoordinator(
            discovery=discovery,
            executors=registry,
            fallbacks=default_fallback_registry(),
            offline_detector=detector or online_detector,
            **kwargs,  # type: ignore[arg-type]
        )

    return _factory


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Output directory path (not created) inside an isolated workspace."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace / "project"
