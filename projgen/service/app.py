"""FastAPI application entrypoint for projgen service mode."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..coordinator import ProjectCoordinator, build_coordinator
from ..errors import AggregateError, ErrorCategory, GenerationError, format_error
from ..models import (
    ComponentConfig,
    GenerationResult,
    IntegrationConfig,
    PreviewResult,
    ProjectConfig,
    ProjectOptions,
)

_CLIENT_ERRORS = {ErrorCategory.INVALID_CONFIG, ErrorCategory.SECURITY}


class ComponentPayload(BaseModel):
    type: str
    name: str
    enabled: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)


class IntegrationPayload(BaseModel):
    generate_manifest: bool = True
    generate_compose: bool = True
    api_endpoints: Dict[str, str] = Field(default_factory=dict)
    shared_environment: Dict[str, str] = Field(default_factory=dict)


class OptionsPayload(BaseModel):
    use_external_tools: bool = True
    verbose: bool = False
    create_backup: bool = True
    force_overwrite: bool = False
    offline: bool = False
    disable_parallel: bool = False
    max_workers: int = Field(default=4, ge=1)
    bootstrap_timeout: float = Field(default=300.0, gt=0)


class ProjectPayload(BaseModel):
    name: str
    output_dir: str
    description: str = ""
    components: List[ComponentPayload] = Field(default_factory=list)
    integration: IntegrationPayload = Field(default_factory=IntegrationPayload)
    options: OptionsPayload = Field(default_factory=OptionsPayload)

    def to_config(self, *, dry_run: bool = False) -> ProjectConfig:
        return ProjectConfig(
            name=self.name,
            output_dir=Path(self.output_dir),
            description=self.description,
            components=[
                ComponentConfig(type=item.type, name=item.name, enabled=item.enabled, config=item.config)
                for item in self.components
            ],
            integration=IntegrationConfig(**self.integration.model_dump()),
            options=ProjectOptions(dry_run=dry_run, **self.options.model_dump()),
        )


class ComponentSummary(BaseModel):
    name: str
    type: str
    method: str
    tool_used: str = ""
    path: Optional[str] = None
    files: List[str] = Field(default_factory=list)
    manual_steps: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class GenerateResponse(BaseModel):
    success: bool
    project_root: str
    dry_run: bool = False
    duration: float = 0.0
    log_file: Optional[str] = None
    components: List[ComponentSummary] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ToolStatus(BaseModel):
    name: str
    available: bool
    version: str = ""
    outdated: bool = False


class ToolsResponse(BaseModel):
    all_available: bool
    tools: List[ToolStatus]


class HealthResponse(BaseModel):
    status: str
    version: str


def _default_coordinator() -> ProjectCoordinator:
    return build_coordinator()


def create_app(
    coordinator_factory: Callable[[], ProjectCoordinator] = _default_coordinator,
) -> FastAPI:
    """Create the FastAPI application exposing projgen operations."""

    app = FastAPI(title="projgen Service", version=__version__)

    async def get_coordinator() -> ProjectCoordinator:
        # Lazy-instantiate per request to keep state predictable.
        return coordinator_factory()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    @app.post("/generate", response_model=GenerateResponse)
    async def generate(
        payload: ProjectPayload,
        coordinator: ProjectCoordinator = Depends(get_coordinator),
    ) -> GenerateResponse:
        config = payload.to_config()
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, coordinator.generate, config)
        return _generation_response(result)

    @app.post("/preview", response_model=GenerateResponse)
    async def preview(
        payload: ProjectPayload,
        coordinator: ProjectCoordinator = Depends(get_coordinator),
    ) -> GenerateResponse:
        config = payload.to_config(dry_run=True)
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, coordinator.dry_run, config)
        return _preview_response(result)

    @app.get("/tools", response_model=ToolsResponse)
    async def tools(
        coordinator: ProjectCoordinator = Depends(get_coordinator),
    ) -> ToolsResponse:
        discovery = coordinator.discovery
        loop = asyncio.get_running_loop()
        check = await loop.run_in_executor(
            None, discovery.check_requirements, discovery.list_registered_tools()
        )
        return ToolsResponse(
            all_available=check.all_available,
            tools=[
                ToolStatus(
                    name=name,
                    available=tool.available,
                    version=tool.installed_version,
                    outdated=name in check.outdated,
                )
                for name, tool in sorted(check.tools.items())
            ],
        )

    @app.exception_handler(GenerationError)
    async def generation_error_handler(_: Any, exc: GenerationError) -> JSONResponse:
        status = 422 if exc.category in _CLIENT_ERRORS else 500
        return JSONResponse(
            status_code=status,
            content={
                "detail": str(exc),
                "category": exc.category.value,
                "component": exc.component,
                "suggestions": list(exc.suggestions),
            },
        )

    @app.exception_handler(AggregateError)
    async def aggregate_error_handler(_: Any, exc: AggregateError) -> JSONResponse:
        return JSONResponse(
            status_code=500,
            content={"detail": format_error(exc), "errors": [str(error) for error in exc.errors]},
        )

    return app


def _generation_response(result: GenerationResult) -> GenerateResponse:
    return GenerateResponse(
        success=result.success,
        project_root=str(result.project_root),
        dry_run=result.dry_run,
        duration=result.duration,
        log_file=str(result.log_file) if result.log_file else None,
        components=[
            ComponentSummary(
                name=component.name,
                type=component.type,
                method=component.method,
                tool_used=component.tool_used,
                path=str(component.path) if component.path else None,
                manual_steps=list(component.manual_steps),
                warnings=list(component.warnings),
            )
            for component in result.components
        ],
        warnings=list(result.warnings),
    )


def _preview_response(preview: PreviewResult) -> GenerateResponse:
    return GenerateResponse(
        success=all(item.method for item in preview.components),
        project_root=str(preview.project_root),
        dry_run=True,
        components=[
            ComponentSummary(
                name=item.name,
                type=item.type,
                method=item.method,
                tool_used=item.tool_used,
                path=str(item.target_path),
                files=list(item.files),
                warnings=list(item.warnings),
            )
            for item in preview.components
        ],
        warnings=list(preview.warnings),
    )


def serve(host: str = "127.0.0.1", port: int = 8000) -> None:  # pragma: no cover - integration path
    import uvicorn

    uvicorn.run(create_app(), host=host, port=port)


__all__ = ["create_app", "serve"]
