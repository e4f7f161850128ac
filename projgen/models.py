"""Core data models shared across projgen components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ComponentConfig:
    """User-supplied description of one component to generate."""

    type: str
    name: str
    enabled: bool = True
    config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "config", dict(self.config or {}))


@dataclass
class ComponentResult:
    """Outcome of generating a single component."""

    type: str
    name: str
    success: bool = False
    path: Optional[Path] = None
    error: Optional[BaseException] = None
    method: str = ""
    tool_used: str = ""
    manual_steps: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duration: float = 0.0


@dataclass(frozen=True)
class ToolMetadata:
    """Static registration for a bootstrap tool."""

    name: str
    command: str
    version_flag: str = "--version"
    min_version: str = ""
    fallback_available: bool = False
    component_types: tuple[str, ...] = ()
    install_docs: Dict[str, str] = field(default_factory=dict)


@dataclass
class CachedTool:
    """Availability snapshot for one tool held by the tool cache."""

    available: bool
    version: str
    cached_at: datetime
    ttl: timedelta

    def is_expired(self, now: datetime | None = None) -> bool:
        current = now or datetime.now(UTC)
        return current - self.cached_at > self.ttl


@dataclass
class Tool:
    """Result of checking a single registered tool."""

    name: str
    command: str
    version_command: str
    min_version: str
    available: bool = False
    installed_version: str = ""
    install_instructions: Dict[str, str] = field(default_factory=dict)
    last_checked: Optional[datetime] = None


@dataclass
class ToolCheckResult:
    """Aggregate answer for a set of required tools."""

    all_available: bool = True
    tools: Dict[str, Tool] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)
    outdated: List[str] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ProjectOptions:
    """Run toggles consumed by the coordinator."""

    use_external_tools: bool = True
    dry_run: bool = False
    verbose: bool = False
    create_backup: bool = True
    force_overwrite: bool = False
    offline: bool = False
    disable_parallel: bool = False
    stream_output: bool = False
    max_workers: int = 4
    bootstrap_timeout: float = 300.0


@dataclass
class IntegrationConfig:
    """Settings forwarded to the integration collaborator."""

    generate_manifest: bool = True
    generate_compose: bool = True
    api_endpoints: Dict[str, str] = field(default_factory=dict)
    shared_environment: Dict[str, str] = field(default_factory=dict)


@dataclass
class ProjectConfig:
    """Complete description of a project generation run."""

    name: str
    output_dir: Path
    description: str = ""
    components: List[ComponentConfig] = field(default_factory=list)
    integration: IntegrationConfig = field(default_factory=IntegrationConfig)
    options: ProjectOptions = field(default_factory=ProjectOptions)

    def enabled_components(self) -> List[ComponentConfig]:
        return [component for component in self.components if component.enabled]


@dataclass
class BootstrapSpec:
    """Instructions handed to an executor or fallback generator."""

    component: ComponentConfig
    target_dir: Path
    flags: List[str] = field(default_factory=list)
    timeout: float = 300.0
    stream_output: bool = False

    @property
    def component_type(self) -> str:
        return self.component.type

    @property
    def config(self) -> Dict[str, Any]:
        return self.component.config


@dataclass
class ExecutionResult:
    """Outcome of an external tool invocation or a fallback render."""

    success: bool
    output_dir: Optional[Path] = None
    tool_used: str = ""
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    manual_steps: List[str] = field(default_factory=list)


@dataclass
class GenerationResult:
    """Summary of a complete coordinator run."""

    project_root: Path
    success: bool = False
    components: List[ComponentResult] = field(default_factory=list)
    errors: List[BaseException] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    dry_run: bool = False
    duration: float = 0.0
    log_file: Optional[Path] = None


@dataclass
class ComponentPreview:
    """Dry-run preview for one component."""

    type: str
    name: str
    target_path: Path
    method: str
    tool_used: str = ""
    files: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class PreviewResult:
    """Dry-run preview of a whole project."""

    project_root: Path
    components: List[ComponentPreview] = field(default_factory=list)
    structure: List[Path] = field(default_factory=list)
    files: List[Path] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
