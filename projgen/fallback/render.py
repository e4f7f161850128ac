"""Jinja2 rendering helpers for the embedded skeleton templates."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Sequence

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

from ..errors import ErrorCategory, GenerationError, file_system_error


TEMPLATES_DIR = Path(__file__).with_name("templates")


def template_environment(extra_dirs: Sequence[Path] = ()) -> Environment:
    """Return an environment searching ``extra_dirs`` before the embedded templates."""
    directories: list[str] = []
    seen: set[str] = set()
    for directory in [*extra_dirs, TEMPLATES_DIR]:
        key = str(directory)
        if key not in seen:
            directories.append(key)
            seen.add(key)
    return Environment(
        loader=FileSystemLoader(directories),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def render_template(
    component_type: str,
    template: str,
    context: Mapping[str, Any],
    *,
    environment: Environment | None = None,
) -> str:
    env = environment or template_environment()
    name = f"{component_type}/{template}"
    try:
        return env.get_template(name).render(**context)
    except TemplateNotFound as exc:
        raise GenerationError(ErrorCategory.UNKNOWN, f"missing skeleton template '{name}'", exc) from exc


def render_file(
    component_type: str,
    template: str,
    destination: Path,
    context: Mapping[str, Any],
    *,
    environment: Environment | None = None,
) -> Path:
    """Render ``template`` and write it to ``destination``, creating parents."""
    content = render_template(component_type, template, context, environment=environment)
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise file_system_error("write", destination, exc) from exc
    return destination


__all__ = ["TEMPLATES_DIR", "render_file", "render_template", "template_environment"]
