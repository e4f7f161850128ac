"""Configuration loading for projgen (.projgen.yml)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .models import ComponentConfig, IntegrationConfig, ProjectConfig, ProjectOptions
from .stores.tool_cache import ToolCacheConfig, default_cache_dir


CONFIG_FILENAME = ".projgen.yml"

ENV_OFFLINE = "PROJGEN_OFFLINE"
ENV_DISABLE_PARALLEL = "PROJGEN_DISABLE_PARALLEL"
ENV_CACHE_DIR = "PROJGEN_CACHE_DIR"


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class CacheSettings:
    """Tool cache settings from the ``cache`` section."""

    dir: Optional[Path] = None
    ttl: Optional[float] = None
    save_interval: Optional[float] = None
    refresh_when_online: bool = False

    def to_cache_config(self, *, offline: bool = False) -> ToolCacheConfig:
        config = ToolCacheConfig(
            cache_dir=self.dir or default_cache_dir(),
            offline_mode=offline,
            refresh_when_online=self.refresh_when_online,
        )
        if self.ttl is not None:
            config.ttl = timedelta(seconds=self.ttl)
        if self.save_interval is not None:
            config.save_interval = timedelta(seconds=self.save_interval)
        return config


@dataclass
class Settings:
    """Everything read from .projgen.yml plus environment overrides."""

    project: ProjectConfig
    cache: CacheSettings = field(default_factory=CacheSettings)
    templates_dir: Optional[Path] = None


def load_settings(config_path: Path, env: Mapping[str, str] | None = None) -> Settings:
    """Load project and cache settings from disk."""
    environ = os.environ if env is None else env
    config_file = _resolve_config_path(Path(config_path))
    root = config_file.parent.resolve()

    if not config_file.exists():
        raise ConfigError(f"Configuration file not found: {config_file}")

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file.name} must contain a mapping at the root")

    name = _as_str(data.get("name"))
    if not name:
        raise ConfigError(f"{config_file.name}: 'name' is required")

    output = _as_str(data.get("output_dir")) or name
    output_dir = Path(output).expanduser()
    if not output_dir.is_absolute():
        output_dir = root / output_dir

    project = ProjectConfig(
        name=name,
        output_dir=output_dir,
        description=_as_str(data.get("description")) or "",
        components=_parse_components(data.get("components")),
        integration=_parse_integration(_as_dict(data.get("integration"))),
        options=_parse_options(_as_dict(data.get("options"))),
    )

    cache_data = _as_dict(data.get("cache"))
    cache = CacheSettings(
        ttl=_as_float(cache_data.get("ttl")),
        save_interval=_as_float(cache_data.get("save_interval")),
        refresh_when_online=_as_bool(cache_data.get("refresh_when_online")) or False,
    )
    cache_dir = _as_str(cache_data.get("dir"))
    if cache_dir:
        cache.dir = _relative_to(root, cache_dir)

    templates = _as_str(data.get("templates_dir"))
    settings = Settings(
        project=project,
        cache=cache,
        templates_dir=_relative_to(root, templates) if templates else None,
    )
    apply_env_overrides(settings, environ)
    return settings


def load_config(config_path: Path, env: Mapping[str, str] | None = None) -> ProjectConfig:
    """Load the project configuration from disk."""
    return load_settings(config_path, env).project


def apply_env_overrides(settings: Settings, env: Mapping[str, str]) -> None:
    """Apply ``PROJGEN_*`` environment variables on top of file settings."""
    offline = _as_bool(env.get(ENV_OFFLINE))
    if offline is not None:
        settings.project.options.offline = offline
    disable_parallel = _as_bool(env.get(ENV_DISABLE_PARALLEL))
    if disable_parallel is not None:
        settings.project.options.disable_parallel = disable_parallel
    cache_dir = env.get(ENV_CACHE_DIR)
    if cache_dir:
        settings.cache.dir = Path(cache_dir).expanduser()


def _parse_components(value: Any) -> List[ComponentConfig]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError("'components' must be a list")
    components: List[ComponentConfig] = []
    for index, item in enumerate(value):
        if not isinstance(item, dict):
            raise ConfigError(f"components[{index}] must be a mapping")
        extra = item.get("config")
        if extra is not None and not isinstance(extra, dict):
            raise ConfigError(f"components[{index}].config must be a mapping")
        enabled = _as_bool(item.get("enabled"))
        components.append(
            ComponentConfig(
                type=_as_str(item.get("type")) or "",
                name=_as_str(item.get("name")) or "",
                enabled=True if enabled is None else enabled,
                config=dict(extra or {}),
            )
        )
    return components


def _parse_integration(data: Dict[str, Any]) -> IntegrationConfig:
    integration = IntegrationConfig(
        api_endpoints=_as_str_map(data.get("api_endpoints")),
        shared_environment=_as_str_map(data.get("shared_environment")),
    )
    manifest = _as_bool(data.get("generate_manifest"))
    if manifest is not None:
        integration.generate_manifest = manifest
    compose = _as_bool(data.get("generate_compose"))
    if compose is not None:
        integration.generate_compose = compose
    return integration


def _parse_options(data: Dict[str, Any]) -> ProjectOptions:
    options = ProjectOptions()
    for key in (
        "use_external_tools",
        "dry_run",
        "verbose",
        "create_backup",
        "force_overwrite",
        "offline",
        "disable_parallel",
        "stream_output",
    ):
        value = _as_bool(data.get(key))
        if value is not None:
            setattr(options, key, value)
    max_workers = _as_int(data.get("max_workers"))
    if max_workers is not None:
        if max_workers < 1:
            raise ConfigError("options.max_workers must be at least 1")
        options.max_workers = max_workers
    timeout = _as_float(data.get("bootstrap_timeout"))
    if timeout is not None:
        if timeout <= 0:
            raise ConfigError("options.bootstrap_timeout must be positive")
        options.bootstrap_timeout = timeout
    return options


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _relative_to(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded if loaded is not None else {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value) if isinstance(value, (str, int, float)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1", "on"}:
            return True
        if lowered in {"false", "no", "0", "off"}:
            return False
    return None


def _as_str_map(value: Any) -> Dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(key): str(item) for key, item in value.items() if item is not None}


__all__ = [
    "CONFIG_FILENAME",
    "CacheSettings",
    "ConfigError",
    "Settings",
    "apply_env_overrides",
    "load_config",
    "load_settings",
]
