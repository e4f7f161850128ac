"""Generation pipeline: validate, back up, check tools, generate, integrate, verify."""

from __future__ import annotations

import re
import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import CacheSettings, Settings
from .discovery import ToolDiscovery
from .errors import (
    AggregateError,
    ErrorCategory,
    ErrorContext,
    GenerationError,
    aggregate_errors,
    as_generation_error,
    config_validation_error,
    integration_error,
    security_error,
    should_fallback,
    should_retry,
)
from .executors import ExecutorRegistry, default_registry
from .fallback import FALLBACK_TOOL, FallbackRegistry, TemplateGenerator, default_fallback_registry
from .integration import Integrator, ProjectIntegrator
from .logging import attach_run_log, detach_run_log, get_logger
from .mapper import StructureMapper
from .models import (
    BootstrapSpec,
    ComponentConfig,
    ComponentPreview,
    ComponentResult,
    GenerationResult,
    PreviewResult,
    ProjectConfig,
    ProjectOptions,
)
from .offline import FORCED_OFFLINE_MESSAGE, OfflineDetector
from .rollback import RollbackManager, default_backup_root
from .stores import ToolCache


TEMP_DIRNAME = ".temp"
LOGS_DIRNAME = ".logs"


_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# Files a successful toolchain bootstrap is expected to produce, for previews.
EXPECTED_BOOTSTRAP_FILES: Dict[str, Tuple[str, ...]] = {
    "nextjs": ("package.json", "next.config.mjs", "tsconfig.json", "src/app/layout.tsx", "src/app/page.tsx"),
    "go-backend": ("go.mod", "go.sum", "main.go"),
    "android": ("settings.gradle.kts", "build.gradle.kts", "gradlew", "gradle/wrapper/gradle-wrapper.properties"),
}

IntegratorFactory = Callable[[ProjectConfig, Path], Integrator]
RollbackFactory = Callable[[Path], RollbackManager]


def _default_integrator(config: ProjectConfig, output_dir: Path) -> Integrator:
    return ProjectIntegrator(output_dir, project_name=config.name, description=config.description)


def _default_rollback(output_dir: Path) -> RollbackManager:
    return RollbackManager(default_backup_root(output_dir))


class ProjectCoordinator:
    """Runs one project generation from validated config to committed output."""

    def __init__(
        self,
        *,
        discovery: ToolDiscovery | None = None,
        executors: ExecutorRegistry | None = None,
        fallbacks: FallbackRegistry | None = None,
        mapper: StructureMapper | None = None,
        offline_detector: OfflineDetector | None = None,
        integrator_factory: IntegratorFactory | None = None,
        rollback_factory: RollbackFactory | None = None,
    ) -> None:
        self.discovery = discovery or ToolDiscovery()
        self.executors = executors or default_registry()
        self.fallbacks = fallbacks or default_fallback_registry()
        self.mapper = mapper or StructureMapper()
        self.offline_detector = offline_detector or OfflineDetector()
        self._integrator_factory = integrator_factory or _default_integrator
        self._rollback_factory = rollback_factory or _default_rollback
        self.logger = get_logger("coordinator")

    # ------------------------------------------------------------------
    # Offline mode

    def set_offline_mode(self, offline: bool) -> None:
        self.offline_detector.force_offline(offline)
        self.discovery.set_offline_mode(offline)

    def is_offline(self) -> bool:
        return self.offline_detector.is_offline()

    def get_offline_message(self) -> str:
        return self.offline_detector.get_offline_message()

    def _offline_message(self, options: ProjectOptions) -> str:
        if options.offline:
            return FORCED_OFFLINE_MESSAGE
        return self.get_offline_message()

    # ------------------------------------------------------------------
    # Validation

    def validate(self, config: ProjectConfig) -> None:
        """Raise ``INVALID_CONFIG`` or ``SECURITY`` errors; never touches the filesystem."""
        if not config.name or not config.name.strip():
            raise config_validation_error("name", "project name is required")
        if not _SAFE_NAME.match(config.name):
            raise security_error(f"project name '{config.name}' contains unsafe characters")
        if config.output_dir is None or not str(config.output_dir).strip():
            raise config_validation_error("output_dir", "output directory is required")
        if ".." in Path(config.output_dir).parts:
            raise security_error(f"output directory '{config.output_dir}' contains path traversal")

        enabled = config.enabled_components()
        if not enabled:
            raise config_validation_error("components", "at least one enabled component is required")

        known = set(self.mapper.known_types())
        names: set[str] = set()
        types: Dict[str, str] = {}
        for index, component in enumerate(enabled):
            field_prefix = f"components[{index}]"
            if not component.type or not component.type.strip():
                raise config_validation_error(f"{field_prefix}.type", "component type is required", component.name)
            if not component.name or not component.name.strip():
                raise config_validation_error(f"{field_prefix}.name", "component name is required")
            if ".." in component.name or not _SAFE_NAME.match(component.name):
                raise security_error(f"component name '{component.name}' contains unsafe characters")
            if component.name in names:
                raise config_validation_error(
                    f"{field_prefix}.name", f"duplicate component name '{component.name}'", component.name
                )
            names.add(component.name)
            if component.type not in known:
                raise config_validation_error(
                    f"{field_prefix}.type",
                    f"unknown component type '{component.type}' (expected one of: {', '.join(sorted(known))})",
                    component.name,
                )
            if component.type in types:
                raise config_validation_error(
                    f"{field_prefix}.type",
                    f"component type '{component.type}' is already used by '{types[component.type]}'",
                    component.name,
                )
            types[component.type] = component.name

    # ------------------------------------------------------------------
    # Preview

    def dry_run(self, config: ProjectConfig) -> PreviewResult:
        """Describe what :meth:`generate` would write without writing anything."""
        self.validate(config)
        options = config.options
        output = Path(config.output_dir).resolve()
        offline = options.offline or (options.use_external_tools and self.is_offline())
        self.discovery.set_offline_mode(offline)
        preview = PreviewResult(project_root=output)
        if offline:
            preview.warnings.append(self._offline_message(options))
        if output.exists() and not options.force_overwrite:
            preview.warnings.append(f"Output directory {output} exists; generated files will be written alongside it")

        for component in config.enabled_components():
            target = self.mapper.target_dir(output, component.type)
            item = ComponentPreview(type=component.type, name=component.name, target_path=target, method="")
            try:
                use_fallback, reason = self._choose_method(component, options, offline)
            except GenerationError as exc:
                item.warnings.append(str(exc))
                preview.warnings.append(str(exc))
            else:
                if use_fallback:
                    item.method = "fallback"
                    generator = self.fallbacks.get(component.type)
                    item.tool_used = FALLBACK_TOOL
                    if reason:
                        item.warnings.append(f"Using fallback generation: {reason}")
                    if isinstance(generator, TemplateGenerator):
                        try:
                            item.files = generator.planned_files(component)
                        except GenerationError as exc:
                            item.warnings.append(str(exc))
                            preview.warnings.append(str(exc))
                else:
                    item.method = "bootstrap"
                    item.tool_used = self.executors.get(component.type).tool
                    item.files = list(EXPECTED_BOOTSTRAP_FILES.get(component.type, ()))
            preview.components.append(item)
            preview.structure.append(target)
            preview.files.extend(target / name for name in item.files)
        return preview

    # ------------------------------------------------------------------
    # Generation

    def generate(
        self,
        config: ProjectConfig,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> GenerationResult:
        """Generate the project described by ``config``.

        ``deadline`` is an absolute ``time.monotonic()`` value bounding the
        whole run. Failures after validation roll back every filesystem change
        and are re-raised as ``GenerationError`` or ``AggregateError``.
        """
        started = time.monotonic()
        self.validate(config)
        options = config.options

        if options.dry_run:
            return self._dry_run_result(config, started)

        output = Path(config.output_dir).resolve()
        self.logger.info("Starting generation of %s in %s", config.name, output)
        rollback = self._rollback_factory(output)

        if options.create_backup:
            rollback.create_automatic_backup(output)
        if not output.exists():
            try:
                output.mkdir(parents=True)
            except OSError as exc:
                raise as_generation_error(exc) from exc
            rollback.register_temp_dir(output)
        elif options.force_overwrite:
            self.logger.info("Removing existing contents of %s", output)
            try:
                for child in output.iterdir():
                    _remove(child)
            except OSError as exc:
                error = as_generation_error(exc)
                self._rollback(rollback, None, output)
                raise error from exc

        log_file = output / LOGS_DIRNAME / f"generation-{datetime.now().strftime('%Y%m%d-%H%M%S')}.log"
        log_handler = attach_run_log(log_file, verbose=options.verbose)
        result = GenerationResult(project_root=output, log_file=log_file)

        try:
            self._check_cancel(cancel, deadline, "checking-tools")
            offline = options.offline or (options.use_external_tools and self.is_offline())
            self.discovery.set_offline_mode(offline)
            result.warnings.extend(self._check_tools(config, offline))

            self._check_cancel(cancel, deadline, "generating")
            result.components = self._generate_components(config, output, rollback, cancel, deadline, offline)
            failures = [component.error for component in result.components if component.error is not None]
            combined = aggregate_errors(failures)
            if combined is not None:
                raise combined

            staging = output / TEMP_DIRNAME
            for component in result.components:
                target = self.mapper.target_dir(output, component.type)
                if not options.create_backup and target.exists():
                    rollback.create_backup(target)
                component.path = self.mapper.map(component.path or staging / component.name, output, component.type)
                result.warnings.extend(f"{component.name}: {warning}" for warning in component.warnings)

            self._check_cancel(cancel, deadline, "integrating")
            self._integrate(config, output, result.components)

            self._check_cancel(cancel, deadline, "validating-structure")
            self.mapper.validate_structure(output, [component.type for component in result.components])
        except (GenerationError, AggregateError) as exc:
            detach_run_log(log_handler)
            self._rollback(rollback, exc, output, log_file)
            raise
        except Exception as exc:
            detach_run_log(log_handler)
            error = as_generation_error(exc)
            self._rollback(rollback, error, output, log_file)
            raise error from exc

        _remove(output / TEMP_DIRNAME)
        rollback.clear()
        result.success = True
        result.duration = time.monotonic() - started
        self.logger.info(
            "Generated %d component(s) for %s in %.1fs", len(result.components), config.name, result.duration
        )
        if rollback.auto_backup_location is not None:
            self.logger.info("Previous contents backed up at %s", rollback.auto_backup_location)
        detach_run_log(log_handler)
        return result

    # ------------------------------------------------------------------
    # Pipeline stages

    def _check_tools(self, config: ProjectConfig, offline: bool) -> List[str]:
        warnings: List[str] = []
        if offline:
            message = self._offline_message(config.options)
            self.logger.info(message)
            warnings.append(message)
        tools: List[str] = []
        for component in config.enabled_components():
            for tool in self.discovery.get_tools_for_component(component.type):
                if tool not in tools:
                    tools.append(tool)
        if not tools or not config.options.use_external_tools:
            return warnings
        check = self.discovery.check_requirements(tools)
        for name in check.missing:
            self.logger.warning("Tool %s is not available", name)
            warnings.append(f"Tool '{name}' is not available")
        for name in check.outdated:
            tool = check.tools[name]
            warnings.append(f"Tool '{name}' {tool.installed_version} is older than {tool.min_version}")
        return warnings

    def _generate_components(
        self,
        config: ProjectConfig,
        output: Path,
        rollback: RollbackManager,
        cancel: threading.Event | None,
        deadline: float | None,
        offline: bool,
    ) -> List[ComponentResult]:
        components = config.enabled_components()
        options = config.options
        results: List[Optional[ComponentResult]] = [None] * len(components)

        def _run(index: int) -> None:
            results[index] = self._generate_component(
                components[index], output, rollback, options, cancel, deadline, offline
            )

        if options.disable_parallel or len(components) == 1:
            self.logger.debug("Generating %d component(s) sequentially", len(components))
            for index in range(len(components)):
                _run(index)
                if results[index].error is not None:
                    break
        else:
            workers = min(max(1, options.max_workers), len(components))
            self.logger.debug("Generating %d component(s) with %d workers", len(components), workers)
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="projgen-component") as pool:
                futures = [pool.submit(_run, index) for index in range(len(components))]
                for future in as_completed(futures):
                    future.result()
        return [result for result in results if result is not None]

    def _generate_component(
        self,
        component: ComponentConfig,
        output: Path,
        rollback: RollbackManager,
        options: ProjectOptions,
        cancel: threading.Event | None,
        deadline: float | None,
        offline: bool,
    ) -> ComponentResult:
        started = time.monotonic()
        result = ComponentResult(type=component.type, name=component.name)
        staging = output / TEMP_DIRNAME / component.name
        rollback.register_temp_dir(staging)
        try:
            self._check_cancel(cancel, deadline, "generating", component.name)
            use_fallback, reason = self._choose_method(component, options, offline)
            if use_fallback:
                self.logger.info("Generating %s with fallback templates (%s)", component.name, reason)
                self._run_fallback(component, staging, result)
            else:
                self._run_bootstrap(component, staging, options, cancel, deadline, result)
        except GenerationError as exc:
            result.error = exc.with_component(component.name)
        except Exception as exc:
            result.error = as_generation_error(exc, component=component.name)

        result.success = result.error is None
        result.duration = time.monotonic() - started
        if result.success:
            self.logger.info("Component %s generated via %s", component.name, result.method)
        else:
            self.logger.error("Component %s failed: %s", component.name, result.error)
        return result

    def _choose_method(self, component: ComponentConfig, options: ProjectOptions, offline: bool) -> Tuple[bool, str]:
        """Return ``(use_fallback, reason)`` or raise when nothing can generate the component."""
        component_type = component.type
        if offline or not options.use_external_tools:
            reason = "offline mode is enabled" if offline else "external tools are disabled"
            if self.fallbacks.supports(component_type):
                return True, reason
            raise GenerationError(
                ErrorCategory.TOOL_NOT_FOUND,
                f"no fallback generator for component type '{component_type}' ({reason})",
                component=component.name,
            )

        try:
            use_fallback, reason = self.discovery.should_use_fallback(component_type)
        except GenerationError as exc:
            ctx = ErrorContext(
                operation="tool-discovery",
                component=component.name,
                phase="checking-tools",
                can_retry=False,
                can_fallback=self.fallbacks.supports(component_type)
                and self.discovery.has_fallback(component_type),
            )
            if should_fallback(exc, ctx):
                return True, exc.message
            raise

        if use_fallback:
            if self.fallbacks.supports(component_type):
                return True, reason
            raise GenerationError(
                ErrorCategory.TOOL_NOT_FOUND,
                f"no generation method for component type '{component_type}': {reason}",
                component=component.name,
            )
        if not self.executors.has(component_type):
            if self.fallbacks.supports(component_type):
                return True, f"no executor registered for {component_type}"
            raise GenerationError(
                ErrorCategory.TOOL_NOT_FOUND,
                f"no executor or fallback generator for component type '{component_type}'",
                component=component.name,
            )
        return False, ""

    def _run_bootstrap(
        self,
        component: ComponentConfig,
        staging: Path,
        options: ProjectOptions,
        cancel: threading.Event | None,
        deadline: float | None,
        result: ComponentResult,
    ) -> None:
        executor = self.executors.get(component.type)
        flags = component.config.get("flags")
        attempt = 1
        while True:
            self._check_cancel(cancel, deadline, "generating", component.name)
            spec = BootstrapSpec(
                component=component,
                target_dir=staging,
                flags=[str(flag) for flag in flags] if isinstance(flags, list) else [],
                timeout=_remaining(options.bootstrap_timeout, deadline),
                stream_output=options.stream_output,
            )
            try:
                _remove(staging)
                self.logger.info("Bootstrapping %s with %s (attempt %d)", component.name, executor.tool, attempt)
                execution = executor.bootstrap(spec, cancel)
            except GenerationError as exc:
                error = exc.with_component(component.name)
            except Exception as exc:
                error = as_generation_error(exc, component=component.name, tool=executor.tool)
            else:
                result.method = "bootstrap"
                result.tool_used = execution.tool_used or executor.tool
                result.path = execution.output_dir or staging
                result.manual_steps = list(execution.manual_steps)
                return

            ctx = ErrorContext(
                operation="bootstrap",
                component=component.name,
                phase="generating",
                attempt_number=attempt,
                can_retry=not (cancel is not None and cancel.is_set()),
                can_fallback=self.fallbacks.supports(component.type),
            )
            if should_retry(error, ctx):
                self.logger.warning("Bootstrap of %s failed, retrying: %s", component.name, error)
                attempt += 1
                continue
            if should_fallback(error, ctx):
                self.logger.warning("Bootstrap of %s failed, using fallback generation: %s", component.name, error)
                self._run_fallback(component, staging, result)
                result.warnings.append(f"Bootstrap with {executor.tool} failed; fallback templates were used")
                return
            raise error

    def _run_fallback(self, component: ComponentConfig, staging: Path, result: ComponentResult) -> None:
        _remove(staging)
        generated = self.fallbacks.get(component.type).generate(component, staging)
        result.method = generated.method or "fallback"
        result.tool_used = generated.tool_used
        result.path = generated.path or staging
        result.manual_steps = list(generated.manual_steps)
        result.warnings.extend(generated.warnings)

    def _integrate(self, config: ProjectConfig, output: Path, components: Sequence[ComponentResult]) -> None:
        integrator = self._integrator_factory(config, output)
        try:
            integrator.integrate(components, config.integration)
        except GenerationError as exc:
            if exc.category is ErrorCategory.INTEGRATION:
                raise
            raise integration_error(f"integration failed: {exc.message}", exc) from exc
        except Exception as exc:
            raise integration_error(f"integration failed: {exc}", exc) from exc

    def _rollback(
        self,
        rollback: RollbackManager,
        error: BaseException | None,
        output: Path,
        log_file: Path | None = None,
    ) -> None:
        if error is not None:
            self.logger.error("Generation failed: %s", error)
        preserved = self._preserve_log(rollback, output, log_file)
        if not rollback.auto_rollback_enabled:
            self.logger.warning("Automatic rollback is disabled; partial output left in %s", output)
            return
        try:
            rollback.rollback()
        except GenerationError as rollback_error:
            if error is None:
                raise
            raise AggregateError([error, rollback_error]) from error
        if preserved is not None:
            self.logger.info("Run log preserved at %s", preserved)

    def _preserve_log(self, rollback: RollbackManager, output: Path, log_file: Path | None) -> Optional[Path]:
        if log_file is None or not log_file.exists():
            return None
        root = rollback.backup_root or default_backup_root(output)
        destination = root / "logs" / log_file.name
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(log_file, destination)
        except OSError as exc:
            self.logger.debug("Could not preserve run log %s: %s", log_file, exc)
            return None
        return destination

    def _dry_run_result(self, config: ProjectConfig, started: float) -> GenerationResult:
        preview = self.dry_run(config)
        result = GenerationResult(project_root=preview.project_root, dry_run=True, warnings=list(preview.warnings))
        for item in preview.components:
            result.components.append(
                ComponentResult(
                    type=item.type,
                    name=item.name,
                    success=bool(item.method),
                    path=item.target_path,
                    method=item.method,
                    tool_used=item.tool_used,
                    warnings=list(item.warnings),
                )
            )
        result.success = all(component.success for component in result.components)
        result.duration = time.monotonic() - started
        return result

    @staticmethod
    def _check_cancel(
        cancel: threading.Event | None,
        deadline: float | None,
        phase: str,
        component: str = "",
    ) -> None:
        if cancel is not None and cancel.is_set():
            raise GenerationError(ErrorCategory.TIMEOUT, f"generation cancelled during {phase}", component=component)
        if deadline is not None and time.monotonic() >= deadline:
            raise GenerationError(
                ErrorCategory.TIMEOUT, f"operation '{phase}' timed out", component=component
            ).with_suggestions("Increase the overall deadline or bootstrap_timeout")


def _remaining(timeout: float, deadline: float | None) -> float:
    if deadline is None:
        return timeout
    return max(0.0, min(timeout, deadline - time.monotonic()))


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


def build_coordinator(settings: Settings | None = None) -> ProjectCoordinator:
    """Wire a coordinator with a persistent tool cache and the configured templates."""
    if settings is None:
        return ProjectCoordinator(discovery=ToolDiscovery(cache=ToolCache(CacheSettings().to_cache_config())))
    offline = settings.project.options.offline
    cache = ToolCache(settings.cache.to_cache_config(offline=offline))
    templates = [settings.templates_dir] if settings.templates_dir is not None else []
    coordinator = ProjectCoordinator(
        discovery=ToolDiscovery(cache=cache),
        fallbacks=default_fallback_registry(templates),
    )
    if offline:
        coordinator.set_offline_mode(True)
    return coordinator


__all__ = ["EXPECTED_BOOTSTRAP_FILES", "ProjectCoordinator", "build_coordinator"]
