"""Executors that drive the real toolchains for each supported component type."""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, List

from ..errors import config_validation_error, file_system_error
from ..fallback.render import render_file
from ..models import BootstrapSpec, ExecutionResult
from .base import CommandExecutor


_NEXTJS_FLAGS = [
    "--typescript",
    "--tailwind",
    "--eslint",
    "--app",
    "--src-dir",
    "--import-alias",
    "@/*",
    "--use-npm",
    "--yes",
]


def _require_string(config: Dict[str, Any], key: str, component: str) -> str:
    value = config.get(key)
    if not isinstance(value, str) or not value.strip():
        raise config_validation_error(key, f"{key} is required and must be a non-empty string", component)
    return value.strip()


def _validate_port(config: Dict[str, Any], component: str) -> int:
    port = config.get("port", 8080)
    if isinstance(port, bool) or not isinstance(port, (int, float)):
        raise config_validation_error("port", "port must be a number", component)
    if not 1 <= port <= 65535:
        raise config_validation_error("port", "port must be between 1 and 65535", component)
    return int(port)


class GoExecutor(CommandExecutor):
    """Bootstraps a Go HTTP service with ``go mod init`` and ``go mod tidy``."""

    tool = "go"

    def supports_component(self, component_type: str) -> bool:
        return component_type in {"go-backend", "go", "backend"}

    def get_default_flags(self, component_type: str) -> List[str]:
        return ["mod", "init"] if self.supports_component(component_type) else []

    def bootstrap(self, spec: BootstrapSpec, cancel: threading.Event | None = None) -> ExecutionResult:
        started = time.monotonic()
        component = spec.component.name
        module = _require_string(spec.config, "module", component)
        port = _validate_port(spec.config, component)
        target = spec.target_dir
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise file_system_error("mkdir", target, exc) from exc

        flags = spec.flags or self.get_default_flags(spec.component_type)
        init = self.run(["go", *flags, module], cwd=target, spec=spec, cancel=cancel, started=started)
        context = {"name": component, "module": module, "port": port, "config": spec.config}
        render_file("go-backend", "main.go.j2", target / "main.go", context)
        tidy = self.run(["go", "mod", "tidy"], cwd=target, spec=spec, cancel=cancel, started=started)

        return ExecutionResult(
            success=True,
            output_dir=target,
            tool_used=self.tool,
            stdout="".join(part for part in (init.stdout, tidy.stdout) if part),
            stderr="".join(part for part in (init.stderr, tidy.stderr) if part),
            duration=time.monotonic() - started,
        )


class NextJSExecutor(CommandExecutor):
    """Bootstraps a Next.js application with ``create-next-app``."""

    tool = "npx"

    def supports_component(self, component_type: str) -> bool:
        return component_type in {"nextjs", "frontend"}

    def get_default_flags(self, component_type: str) -> List[str]:
        return list(_NEXTJS_FLAGS) if self.supports_component(component_type) else []

    def bootstrap(self, spec: BootstrapSpec, cancel: threading.Event | None = None) -> ExecutionResult:
        target = spec.target_dir
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise file_system_error("mkdir", target.parent, exc) from exc
        flags = spec.flags or self.get_default_flags(spec.component_type)
        command = ["npx", "create-next-app@latest", target.name, *flags]
        result = self.run(command, cwd=target.parent, spec=spec, cancel=cancel)
        result.output_dir = target
        return result


class GradleExecutor(CommandExecutor):
    """Bootstraps an Android project skeleton with ``gradle init``."""

    tool = "gradle"

    def supports_component(self, component_type: str) -> bool:
        return component_type == "android"

    def get_default_flags(self, component_type: str) -> List[str]:
        if not self.supports_component(component_type):
            return []
        return ["init", "--type", "basic", "--dsl", "kotlin", "--no-daemon"]

    def bootstrap(self, spec: BootstrapSpec, cancel: threading.Event | None = None) -> ExecutionResult:
        target = spec.target_dir
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise file_system_error("mkdir", target, exc) from exc
        flags = spec.flags or self.get_default_flags(spec.component_type)
        command = ["gradle", *flags, "--project-name", spec.component.name]
        result = self.run(command, cwd=target, spec=spec, cancel=cancel)
        result.manual_steps = [
            "Open the project in Android Studio and add an application module",
            "Configure the Android SDK location in local.properties",
        ]
        return result


__all__ = ["GoExecutor", "GradleExecutor", "NextJSExecutor"]
