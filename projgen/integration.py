"""Cross-component integration artifacts written after every component succeeded."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence

import yaml

from . import __version__
from .fallback.render import render_file
from .logging import get_logger
from .models import ComponentResult, IntegrationConfig


MANIFEST_FILENAME = "projgen.json"
COMPOSE_FILENAME = "docker-compose.yml"
ENV_FILENAME = ".env"

_NETWORK = "app-network"


class Integrator(ABC):
    """Collaborator invoked once with every successful component."""

    @abstractmethod
    def integrate(self, components: Sequence[ComponentResult], config: IntegrationConfig) -> None:
        """Wire the components together; raise on failure."""


def _service_name(name: str) -> str:
    cleaned = re.sub(r"[^a-z0-9_-]", "-", name.lower()).strip("-")
    return cleaned or "service"


def _env_key(name: str) -> str:
    return re.sub(r"[^A-Z0-9]", "_", name.upper())


class ProjectIntegrator(Integrator):
    """Writes the root ``.env``, compose file, manifest and README."""

    def __init__(
        self,
        project_root: Path,
        *,
        project_name: str = "",
        description: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        self._root = Path(project_root)
        self._name = project_name or self._root.name
        self._description = description
        self._logger = logger or get_logger("integration")

    def integrate(self, components: Sequence[ComponentResult], config: IntegrationConfig) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        written: List[Path] = [self._write_env(components, config)]
        compose = self.build_compose(components)
        if config.generate_compose and compose["services"]:
            target = self._root / COMPOSE_FILENAME
            target.write_text(yaml.safe_dump(compose, sort_keys=False), encoding="utf-8")
            written.append(target)
        if config.generate_manifest:
            written.append(self._write_manifest(components))
        written.append(
            render_file(
                "project",
                "README.md.j2",
                self._root / "README.md",
                {
                    "name": self._name,
                    "description": self._description,
                    "components": [self._component_view(component) for component in components],
                    "has_compose": config.generate_compose and bool(compose["services"]),
                },
            )
        )
        for path in written:
            self._logger.debug("Wrote %s", path)

    def build_compose(self, components: Sequence[ComponentResult]) -> Dict[str, Any]:
        services: Dict[str, Any] = {}
        backend = next((c for c in components if c.type == "go-backend"), None)
        backend_host = _service_name(backend.name) if backend is not None else "backend"
        for component in components:
            relative = self._relative(component)
            name = _service_name(component.name)
            if component.type == "nextjs":
                service: Dict[str, Any] = {
                    "build": {"context": f"./{relative}", "dockerfile": "Dockerfile"},
                    "ports": ["3000:3000"],
                    "environment": [
                        "NODE_ENV=development",
                        f"NEXT_PUBLIC_API_URL=${{API_URL:-http://{backend_host}:8080}}",
                    ],
                    "networks": [_NETWORK],
                    "command": "npm run dev",
                }
                if backend is not None:
                    service["depends_on"] = [backend_host]
                services[name] = service
            elif component.type == "go-backend":
                services[name] = {
                    "build": {"context": f"./{relative}", "dockerfile": "Dockerfile"},
                    "ports": ["8080:8080"],
                    "environment": ["GO_ENV=development", "PORT=8080", "DATABASE_URL=${DATABASE_URL:-}"],
                    "networks": [_NETWORK],
                    "command": "go run .",
                }
        compose: Dict[str, Any] = {"services": services}
        if services:
            compose["networks"] = {_NETWORK: {"driver": "bridge"}}
        return compose

    def render_env(self, components: Sequence[ComponentResult], config: IntegrationConfig) -> str:
        lines = ["# Shared environment configuration", "# Generated by projgen", ""]
        if config.api_endpoints:
            lines.append("# API endpoints")
            for key, value in sorted(config.api_endpoints.items()):
                lines.append(f"{_env_key(key)}_URL={value}")
            lines.append("")
        if config.shared_environment:
            lines.append("# Shared variables")
            for key, value in sorted(config.shared_environment.items()):
                lines.append(f"{key}={value}")
            lines.append("")
        for component in components:
            if component.type == "nextjs":
                lines.extend(
                    [f"# {component.name} (Next.js)", "NEXT_PUBLIC_API_URL=http://localhost:8080", "NODE_ENV=development", ""]
                )
            elif component.type == "go-backend":
                lines.extend([f"# {component.name} (Go backend)", "PORT=8080", "GO_ENV=development", "DATABASE_URL=", ""])
        return "\n".join(lines)

    def _write_env(self, components: Sequence[ComponentResult], config: IntegrationConfig) -> Path:
        target = self._root / ENV_FILENAME
        target.write_text(self.render_env(components, config), encoding="utf-8")
        return target

    def _write_manifest(self, components: Sequence[ComponentResult]) -> Path:
        payload = {
            "name": self._name,
            "description": self._description,
            "generator": f"projgen {__version__}",
            "generated_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "components": [self._component_view(component) for component in components],
        }
        target = self._root / MANIFEST_FILENAME
        target.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        return target

    def _component_view(self, component: ComponentResult) -> Dict[str, Any]:
        return {
            "name": component.name,
            "type": component.type,
            "path": self._relative(component),
            "method": component.method,
            "tool": component.tool_used,
            "manual_steps": list(component.manual_steps),
        }

    def _relative(self, component: ComponentResult) -> str:
        if component.path is None:
            return ""
        try:
            return Path(component.path).resolve().relative_to(self._root.resolve()).as_posix()
        except ValueError:
            return Path(component.path).as_posix()


__all__ = ["Integrator", "MANIFEST_FILENAME", "ProjectIntegrator"]
