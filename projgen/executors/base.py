"""Base classes for component bootstrap executors."""

from __future__ import annotations

import subprocess
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Sequence

from ..errors import ErrorCategory, GenerationError, timeout_error, tool_execution_error, tool_not_found_error
from ..logging import get_logger
from ..models import BootstrapSpec, ExecutionResult


_POLL_INTERVAL = 0.2
_TERMINATE_GRACE = 5.0

PopenFactory = Callable[..., subprocess.Popen]


class Executor(ABC):
    """Contract for executors that bootstrap a component with an external tool."""

    tool: str = ""

    @abstractmethod
    def bootstrap(self, spec: BootstrapSpec, cancel: threading.Event | None = None) -> ExecutionResult:
        """Produce the component inside ``spec.target_dir``."""

    @abstractmethod
    def supports_component(self, component_type: str) -> bool:
        """Return True when this executor can bootstrap ``component_type``."""

    def get_default_flags(self, component_type: str) -> List[str]:
        return []


class CommandExecutor(Executor):
    """Executor helper that runs tool commands with cancellation and timeouts."""

    def __init__(self, *, popen: PopenFactory = subprocess.Popen) -> None:
        self._popen = popen
        self._logger = get_logger(f"executors.{self.tool or self.__class__.__name__.lower()}")

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        spec: BootstrapSpec,
        cancel: threading.Event | None = None,
        started: float | None = None,
    ) -> ExecutionResult:
        """Run ``command`` in ``cwd`` and return its outcome.

        A non-zero exit raises ``TOOL_EXECUTION``; cancellation or exceeding
        ``spec.timeout`` (measured from ``started``) terminates the child and
        raises ``TIMEOUT``.
        """
        component = spec.component.name
        begin = started if started is not None else time.monotonic()
        self._logger.debug("Running %s in %s", " ".join(command), cwd)
        capture = None if spec.stream_output else subprocess.PIPE
        try:
            process = self._popen(
                list(command),
                cwd=str(cwd),
                stdout=capture,
                stderr=capture,
                stdin=subprocess.DEVNULL,
                text=True,
            )
        except FileNotFoundError as exc:
            error = tool_not_found_error(command[0], component)
            raise error from exc
        except OSError as exc:
            raise tool_execution_error(command[0], component, exc) from exc

        stdout, stderr = "", ""
        while True:
            if cancel is not None and cancel.is_set():
                self._terminate(process)
                raise GenerationError(
                    ErrorCategory.TIMEOUT,
                    f"operation '{' '.join(command)}' was cancelled",
                    component=component,
                )
            remaining = spec.timeout - (time.monotonic() - begin)
            if remaining <= 0:
                self._terminate(process)
                raise timeout_error(" ".join(command), component)
            try:
                out, err = process.communicate(timeout=min(_POLL_INTERVAL, remaining))
            except subprocess.TimeoutExpired:
                continue
            stdout, stderr = out or "", err or ""
            break

        result = ExecutionResult(
            success=process.returncode == 0,
            output_dir=spec.target_dir,
            tool_used=self.tool,
            exit_code=process.returncode,
            stdout=stdout,
            stderr=stderr,
            duration=time.monotonic() - begin,
        )
        if not result.success:
            cause = subprocess.CalledProcessError(process.returncode, list(command), stdout, stderr)
            raise tool_execution_error(self.tool or command[0], component, cause)
        return result

    def _terminate(self, process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.communicate(timeout=_TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()


__all__ = ["CommandExecutor", "Executor"]
