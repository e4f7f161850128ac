"""End-to-end tests for the generation pipeline with fake tools."""

from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import List, Sequence

import pytest

from projgen.coordinator import TEMP_DIRNAME, ProjectCoordinator
from projgen.errors import (
    AggregateError,
    ErrorCategory,
    GenerationError,
    config_validation_error,
    tool_execution_error,
)
from projgen.integration import Integrator
from projgen.models import ComponentConfig, ComponentResult, IntegrationConfig, ProjectConfig, ProjectOptions
from projgen.offline import OfflineDetector
from projgen.rollback import BACKUP_DIRNAME
from tests._fixtures.doubles import ScriptedExecutor, StaticProbe, write_go_module, write_next_app


GO = ComponentConfig(type="go-backend", name="api", config={"module": "example.com/api"})
WEB = ComponentConfig(type="nextjs", name="web")
ANDROID = ComponentConfig(type="android", name="mobile")


def _config(output: Path, *components: ComponentConfig, **options: object) -> ProjectConfig:
    return ProjectConfig(
        name="demo",
        output_dir=output,
        components=list(components),
        options=ProjectOptions(**options),  # type: ignore[arg-type]
    )


def _slow(writer, delay: float):
    def _write(target: Path) -> None:
        time.sleep(delay)
        writer(target)

    return _write


def test_generate_bootstraps_components_in_parallel(make_coordinator, project_dir: Path) -> None:
    go = ScriptedExecutor("go", "go-backend", [_slow(write_go_module, 0.2)])
    web = ScriptedExecutor("npx", "nextjs", [write_next_app])
    coordinator = make_coordinator(installed=("go", "npx"), executors={"go-backend": go, "nextjs": web})

    result = coordinator.generate(_config(project_dir, GO, WEB))

    assert result.success is True
    assert [c.name for c in result.components] == ["api", "web"]
    assert [c.method for c in result.components] == ["bootstrap", "bootstrap"]
    assert result.components[0].path == project_dir.resolve() / "CommonServer"
    assert (project_dir / "CommonServer" / "go.mod").is_file()
    assert (project_dir / "App" / "package.json").is_file()
    assert not (project_dir / TEMP_DIRNAME).exists()
    manifest = json.loads((project_dir / "projgen.json").read_text(encoding="utf-8"))
    assert [c["name"] for c in manifest["components"]] == ["api", "web"]
    assert result.log_file is not None and result.log_file.is_file()
    assert go.specs[0].target_dir == project_dir.resolve() / TEMP_DIRNAME / "api"


def test_sequential_generation_keeps_order(make_coordinator, project_dir: Path) -> None:
    order: List[str] = []
    go = ScriptedExecutor("go", "go-backend", [lambda target: (order.append("api"), write_go_module(target))])
    web = ScriptedExecutor("npx", "nextjs", [lambda target: (order.append("web"), write_next_app(target))])
    coordinator = make_coordinator(installed=("go", "npx"), executors={"go-backend": go, "nextjs": web})

    result = coordinator.generate(_config(project_dir, WEB, GO, disable_parallel=True))

    assert order == ["web", "api"]
    assert [c.name for c in result.components] == ["web", "api"]


def test_sequential_generation_stops_at_first_failure(make_coordinator, project_dir: Path) -> None:
    go = ScriptedExecutor("go", "go-backend", [config_validation_error("module", "required", "api")])
    web = ScriptedExecutor("npx", "nextjs", [write_next_app])
    coordinator = make_coordinator(installed=("go", "npx"), executors={"go-backend": go, "nextjs": web})

    with pytest.raises(GenerationError) as excinfo:
        coordinator.generate(_config(project_dir, GO, WEB, disable_parallel=True))

    assert excinfo.value.category is ErrorCategory.INVALID_CONFIG
    assert go.attempts == 1
    assert web.attempts == 0
    assert not project_dir.exists()


def test_offline_mode_uses_fallback_generators(make_coordinator, project_dir: Path) -> None:
    go = ScriptedExecutor("go", "go-backend")
    coordinator = make_coordinator(installed=("go",), executors={"go-backend": go})

    result = coordinator.generate(_config(project_dir, GO, ANDROID, offline=True))

    assert result.success is True
    assert [(c.name, c.method) for c in result.components] == [("api", "fallback"), ("mobile", "fallback")]
    assert go.attempts == 0
    assert (project_dir / "CommonServer" / "main.go").is_file()
    assert (project_dir / "Mobile" / "android" / "settings.gradle").is_file()
    assert any("Offline mode" in warning for warning in result.warnings)


def test_detected_offline_switches_to_fallback(make_coordinator, project_dir: Path) -> None:
    detector = OfflineDetector(http_probe=StaticProbe(False), dns_probe=StaticProbe(False))
    go = ScriptedExecutor("go", "go-backend", [write_go_module])
    coordinator = make_coordinator(installed=("go",), executors={"go-backend": go}, detector=detector)

    result = coordinator.generate(_config(project_dir, GO))

    assert result.components[0].method == "fallback"
    assert go.attempts == 0


def test_no_external_tools_skips_network_probe(project_dir: Path, make_coordinator) -> None:
    http = StaticProbe(True)
    detector = OfflineDetector(http_probe=http, dns_probe=StaticProbe(True))
    coordinator = make_coordinator(detector=detector)

    result = coordinator.generate(_config(project_dir, GO, use_external_tools=False))

    assert result.components[0].method == "fallback"
    assert http.calls == 0


def test_failure_restores_existing_output(make_coordinator, project_dir: Path) -> None:
    project_dir.mkdir()
    (project_dir / "existing.txt").write_text("keep me", encoding="utf-8")
    broken = ComponentConfig(type="go-backend", name="api", config={})
    coordinator = make_coordinator()

    with pytest.raises(GenerationError) as excinfo:
        coordinator.generate(_config(project_dir, broken, offline=True))

    assert excinfo.value.category is ErrorCategory.INVALID_CONFIG
    assert excinfo.value.component == "api"
    assert (project_dir / "existing.txt").read_text(encoding="utf-8") == "keep me"
    assert not (project_dir / "CommonServer").exists()
    assert not (project_dir / TEMP_DIRNAME).exists()
    assert not (project_dir / ".logs").exists()
    logs = list((project_dir.parent / BACKUP_DIRNAME / "logs").glob("generation-*.log"))
    assert len(logs) == 1


def test_failure_removes_newly_created_output(make_coordinator, project_dir: Path) -> None:
    coordinator = make_coordinator(installed=())

    with pytest.raises(GenerationError) as excinfo:
        coordinator.generate(_config(project_dir, WEB))

    assert excinfo.value.category is ErrorCategory.TOOL_NOT_FOUND
    assert excinfo.value.suggestions
    assert not project_dir.exists()


def test_missing_tool_with_fallback_uses_templates(make_coordinator, project_dir: Path) -> None:
    coordinator = make_coordinator(installed=(), executors={"android": ScriptedExecutor("gradle", "android")})

    result = coordinator.generate(_config(project_dir, ANDROID))

    (component,) = result.components
    assert component.method == "fallback"
    assert component.manual_steps


def test_retry_then_fallback(make_coordinator, project_dir: Path) -> None:
    failure = tool_execution_error("go", "api", RuntimeError("exit status 1"))
    go = ScriptedExecutor("go", "go-backend", [failure, failure])
    coordinator = make_coordinator(installed=("go",), executors={"go-backend": go})

    result = coordinator.generate(_config(project_dir, GO))

    assert go.attempts == 2
    (component,) = result.components
    assert component.method == "fallback"
    assert any("Bootstrap with go failed" in warning for warning in component.warnings)
    assert (project_dir / "CommonServer" / "go.mod").is_file()


def test_retry_succeeds_on_second_attempt(make_coordinator, project_dir: Path) -> None:
    failure = tool_execution_error("go", "api")
    go = ScriptedExecutor("go", "go-backend", [failure, write_go_module])
    coordinator = make_coordinator(installed=("go",), executors={"go-backend": go})

    result = coordinator.generate(_config(project_dir, GO))

    assert go.attempts == 2
    assert result.components[0].method == "bootstrap"


def test_multiple_failures_are_aggregated(make_coordinator, project_dir: Path) -> None:
    broken_go = ComponentConfig(type="go-backend", name="api", config={"module": "example.com/api", "port": 0})
    broken_android = ComponentConfig(type="android", name="mobile", config={"package": "bad"})
    coordinator = make_coordinator()

    with pytest.raises(AggregateError) as excinfo:
        coordinator.generate(_config(project_dir, broken_go, broken_android, offline=True))

    assert [err.component for err in excinfo.value.errors] == ["api", "mobile"]
    assert not project_dir.exists()


class _FailingIntegrator(Integrator):
    def integrate(self, components: Sequence[ComponentResult], config: IntegrationConfig) -> None:
        raise OSError("disk full")


def test_integration_failure_rolls_back(make_coordinator, project_dir: Path) -> None:
    coordinator = make_coordinator(integrator_factory=lambda config, output: _FailingIntegrator())

    with pytest.raises(GenerationError) as excinfo:
        coordinator.generate(_config(project_dir, GO, offline=True))

    assert excinfo.value.category is ErrorCategory.INTEGRATION
    assert "disk full" in str(excinfo.value)
    assert not project_dir.exists()


def test_structure_validation_failure_rolls_back(make_coordinator, project_dir: Path) -> None:
    empty = ScriptedExecutor("npx", "nextjs", [lambda target: None])
    coordinator = make_coordinator(installed=("npx",), executors={"nextjs": empty})

    with pytest.raises(GenerationError) as excinfo:
        coordinator.generate(_config(project_dir, WEB))

    assert excinfo.value.category is ErrorCategory.VALIDATION
    assert "missing package.json" in excinfo.value.message
    assert not project_dir.exists()


def test_cancelled_run_rolls_back(make_coordinator, project_dir: Path) -> None:
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(GenerationError) as excinfo:
        make_coordinator().generate(_config(project_dir, GO, offline=True), cancel=cancel)

    assert excinfo.value.category is ErrorCategory.TIMEOUT
    assert not project_dir.exists()


def test_expired_deadline_times_out(make_coordinator, project_dir: Path) -> None:
    with pytest.raises(GenerationError) as excinfo:
        make_coordinator().generate(_config(project_dir, GO, offline=True), deadline=time.monotonic() - 1)

    assert excinfo.value.category is ErrorCategory.TIMEOUT
    assert not project_dir.exists()


def test_force_overwrite_replaces_contents(make_coordinator, project_dir: Path) -> None:
    project_dir.mkdir()
    (project_dir / "stale.txt").write_text("old", encoding="utf-8")

    make_coordinator().generate(_config(project_dir, GO, offline=True, force_overwrite=True))

    assert not (project_dir / "stale.txt").exists()
    assert (project_dir / "CommonServer" / "go.mod").is_file()
    backups = list((project_dir.parent / BACKUP_DIRNAME).glob("project-*"))
    assert len(backups) == 1
    assert (backups[0] / "stale.txt").is_file()


@pytest.mark.parametrize(
    "components,output,category",
    [
        ([], "out", ErrorCategory.INVALID_CONFIG),
        ([GO, GO], "out", ErrorCategory.INVALID_CONFIG),
        ([GO, ComponentConfig(type="go-backend", name="api2", config={})], "out", ErrorCategory.INVALID_CONFIG),
        ([ComponentConfig(type="cobol", name="legacy")], "out", ErrorCategory.INVALID_CONFIG),
        ([ComponentConfig(type="nextjs", name="../escape")], "out", ErrorCategory.SECURITY),
        ([WEB], "../out", ErrorCategory.SECURITY),
    ],
)
def test_validate_rejects_bad_configs(
    make_coordinator, components, output: str, category: ErrorCategory
) -> None:
    config = ProjectConfig(name="demo", output_dir=Path(output), components=components)

    with pytest.raises(GenerationError) as excinfo:
        make_coordinator().generate(config)

    assert excinfo.value.category is category
    assert not excinfo.value.recoverable


def test_validate_rejects_unsafe_project_name(make_coordinator, project_dir: Path) -> None:
    config = _config(project_dir, WEB)
    config.name = "demo; rm -rf /"

    with pytest.raises(GenerationError) as excinfo:
        make_coordinator().validate(config)

    assert excinfo.value.category is ErrorCategory.SECURITY


def test_disabled_components_are_ignored(make_coordinator, project_dir: Path) -> None:
    disabled = ComponentConfig(type="nextjs", name="web", enabled=False)

    result = make_coordinator().generate(_config(project_dir, GO, disabled, offline=True))

    assert [c.name for c in result.components] == ["api"]
    assert not (project_dir / "App").exists()


def test_dry_run_writes_nothing(make_coordinator, project_dir: Path) -> None:
    go = ScriptedExecutor("go", "go-backend")
    coordinator = make_coordinator(installed=("go",), executors={"go-backend": go})

    result = coordinator.generate(_config(project_dir, GO, ANDROID, dry_run=True))

    assert result.dry_run is True
    assert result.success is True
    assert [c.method for c in result.components] == ["bootstrap", "fallback"]
    assert not project_dir.exists()
    assert go.attempts == 0


def test_preview_lists_planned_files(make_coordinator, project_dir: Path) -> None:
    preview = make_coordinator().dry_run(_config(project_dir, GO, offline=True))

    (component,) = preview.components
    assert component.method == "fallback"
    assert "go.mod" in component.files
    assert preview.structure == [project_dir.resolve() / "CommonServer"]
    assert project_dir.resolve() / "CommonServer" / "main.go" in preview.files
    assert not project_dir.exists()


def test_preview_reports_unresolvable_components(make_coordinator, project_dir: Path) -> None:
    preview = make_coordinator(installed=()).dry_run(_config(project_dir, WEB))

    (component,) = preview.components
    assert component.method == ""
    assert any("npx" in warning for warning in preview.warnings)


def test_set_offline_mode_forces_fallback(make_coordinator, project_dir: Path) -> None:
    go = ScriptedExecutor("go", "go-backend", [write_go_module])
    coordinator: ProjectCoordinator = make_coordinator(installed=("go",), executors={"go-backend": go})

    coordinator.set_offline_mode(True)
    result = coordinator.generate(_config(project_dir, GO))

    assert coordinator.is_offline()
    assert coordinator.get_offline_message().startswith("Offline mode is enabled")
    assert result.components[0].method == "fallback"
    assert go.attempts == 0
