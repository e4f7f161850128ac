"""Hand-written test doubles shared across the projgen test suite."""

from __future__ import annotations

import subprocess
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from projgen.executors import Executor
from projgen.models import BootstrapSpec, ExecutionResult


class FakeWhich:
    """Stand-in for ``shutil.which`` backed by a fixed set of installed commands."""

    def __init__(self, installed: Iterable[str] = ()) -> None:
        self.installed = set(installed)
        self.calls: List[str] = []

    def __call__(self, command: str) -> Optional[str]:
        self.calls.append(command)
        return f"/usr/bin/{command}" if command in self.installed else None


class RecordingRunner:
    """Stand-in for ``subprocess.run`` that answers version probes from a table."""

    def __init__(self, outputs: Dict[str, str] | None = None, *, returncode: int = 0) -> None:
        self.outputs = dict(outputs or {})
        self.returncode = returncode
        self.calls: List[List[str]] = []
        self.raise_timeout = False

    def __call__(self, command: Sequence[str], **kwargs: object) -> subprocess.CompletedProcess:
        self.calls.append(list(command))
        if self.raise_timeout:
            raise subprocess.TimeoutExpired(list(command), float(kwargs.get("timeout", 0) or 0))
        return subprocess.CompletedProcess(
            list(command), self.returncode, stdout=self.outputs.get(command[0], ""), stderr=""
        )


class StaticProbe:
    """Connectivity probe returning a fixed answer and counting calls."""

    def __init__(self, reachable: bool) -> None:
        self.reachable = reachable
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, target: str, timeout: float) -> bool:
        with self._lock:
            self.calls += 1
        return self.reachable


class ScriptedExecutor(Executor):
    """Executor that runs a list of scripted outcomes, one per attempt.

    Each outcome is either an exception to raise or a callable that writes
    files into the target directory.
    """

    def __init__(
        self,
        tool: str,
        component_type: str,
        outcomes: Sequence[BaseException | Callable[[Path], None]] = (),
    ) -> None:
        self.tool = tool
        self._component_type = component_type
        self._outcomes = list(outcomes)
        self.specs: List[BootstrapSpec] = []

    @property
    def attempts(self) -> int:
        return len(self.specs)

    def supports_component(self, component_type: str) -> bool:
        return component_type == self._component_type

    def bootstrap(self, spec: BootstrapSpec, cancel: threading.Event | None = None) -> ExecutionResult:
        self.specs.append(spec)
        outcome = self._outcomes.pop(0) if self._outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        spec.target_dir.mkdir(parents=True, exist_ok=True)
        if outcome is not None:
            outcome(spec.target_dir)
        return ExecutionResult(success=True, output_dir=spec.target_dir, tool_used=self.tool)


def write_go_module(target: Path) -> None:
    (target / "go.mod").write_text("module example.com/api\n\ngo 1.22\n", encoding="utf-8")
    (target / "main.go").write_text("package main\n\nfunc main() {}\n", encoding="utf-8")


def write_next_app(target: Path) -> None:
    (target / "package.json").write_text('{"name": "web"}\n', encoding="utf-8")


__all__ = [
    "FakeWhich",
    "RecordingRunner",
    "ScriptedExecutor",
    "StaticProbe",
    "write_go_module",
    "write_next_app",
]
