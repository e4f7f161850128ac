"""Tests for the executor registry and built-in toolchain executors."""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from projgen.errors import ErrorCategory, GenerationError
from projgen.executors import (
    ExecutorNotFoundError,
    ExecutorRegistry,
    GoExecutor,
    GradleExecutor,
    NextJSExecutor,
    default_registry,
)
from projgen.models import BootstrapSpec, ComponentConfig
from tests._fixtures.doubles import ScriptedExecutor


class FakePopen:
    """Records launched commands and exits immediately with ``returncode``."""

    launched: List[dict] = []

    def __init__(self, command, **kwargs) -> None:
        self.command = list(command)
        self.kwargs = kwargs
        self.returncode = 0
        FakePopen.launched.append({"command": self.command, "cwd": kwargs.get("cwd")})

    def communicate(self, timeout=None):
        return "", ""


@pytest.fixture(autouse=True)
def _reset_fake_popen() -> None:
    FakePopen.launched = []


def test_register_get_and_has() -> None:
    registry = ExecutorRegistry()
    executor = ScriptedExecutor("go", "go-backend")

    registry.register("go-backend", executor)

    assert registry.has("go-backend")
    assert registry.get("go-backend") is executor
    assert registry.get_supported_types() == ["go-backend"]
    assert registry.get_default_flags("missing") == []


def test_get_unknown_type_raises() -> None:
    with pytest.raises(ExecutorNotFoundError) as excinfo:
        ExecutorRegistry().get("terraform")
    assert "terraform" in str(excinfo.value)


def test_register_rejects_non_executors() -> None:
    with pytest.raises(TypeError):
        ExecutorRegistry().register("nextjs", object())  # type: ignore[arg-type]


def test_default_registry_contains_builtin_executors() -> None:
    registry = default_registry(include_entry_points=False)

    assert registry.get_supported_types() == ["android", "go-backend", "nextjs"]
    assert registry.get_default_flags("go-backend") == ["mod", "init"]
    assert "--typescript" in registry.get_default_flags("nextjs")
    assert isinstance(registry.get("android"), GradleExecutor)


def _spec(tmp_path: Path, component_type: str, name: str, config: dict | None = None) -> BootstrapSpec:
    return BootstrapSpec(
        component=ComponentConfig(type=component_type, name=name, config=config or {}),
        target_dir=tmp_path / ".temp" / name,
        timeout=5.0,
    )


def test_go_executor_runs_init_and_tidy(tmp_path: Path) -> None:
    spec = _spec(tmp_path, "go-backend", "api", {"module": "example.com/api", "port": 9090})

    result = GoExecutor(popen=FakePopen).bootstrap(spec)

    assert result.success is True
    assert result.tool_used == "go"
    assert [call["command"] for call in FakePopen.launched] == [
        ["go", "mod", "init", "example.com/api"],
        ["go", "mod", "tidy"],
    ]
    main_go = (spec.target_dir / "main.go").read_text(encoding="utf-8")
    assert 'port = "9090"' in main_go


def test_go_executor_requires_module(tmp_path: Path) -> None:
    with pytest.raises(GenerationError) as excinfo:
        GoExecutor(popen=FakePopen).bootstrap(_spec(tmp_path, "go-backend", "api"))

    assert excinfo.value.category is ErrorCategory.INVALID_CONFIG
    assert FakePopen.launched == []


def test_go_executor_rejects_bad_port(tmp_path: Path) -> None:
    spec = _spec(tmp_path, "go-backend", "api", {"module": "example.com/api", "port": 70000})
    with pytest.raises(GenerationError) as excinfo:
        GoExecutor(popen=FakePopen).bootstrap(spec)
    assert excinfo.value.category is ErrorCategory.INVALID_CONFIG


def test_nextjs_executor_runs_in_parent_directory(tmp_path: Path) -> None:
    spec = _spec(tmp_path, "nextjs", "web")

    NextJSExecutor(popen=FakePopen).bootstrap(spec)

    (call,) = FakePopen.launched
    assert call["command"][:3] == ["npx", "create-next-app@latest", "web"]
    assert call["cwd"] == str(spec.target_dir.parent)


def test_config_flags_replace_defaults(tmp_path: Path) -> None:
    spec = _spec(tmp_path, "android", "mobile")
    spec.flags = ["init", "--type", "kotlin-application"]

    result = GradleExecutor(popen=FakePopen).bootstrap(spec)

    (call,) = FakePopen.launched
    assert call["command"] == ["gradle", "init", "--type", "kotlin-application", "--project-name", "mobile"]
    assert result.manual_steps


def test_missing_binary_is_tool_not_found(tmp_path: Path) -> None:
    def _missing(command, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", command[0])

    spec = _spec(tmp_path, "nextjs", "web")
    with pytest.raises(GenerationError) as excinfo:
        NextJSExecutor(popen=_missing).bootstrap(spec)
    assert excinfo.value.category is ErrorCategory.TOOL_NOT_FOUND
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)
