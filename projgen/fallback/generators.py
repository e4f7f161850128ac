"""Template-driven skeleton generators used when a bootstrap tool cannot run."""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

from jinja2 import Environment

from ..errors import config_validation_error, file_system_error
from ..logging import get_logger
from ..models import ComponentConfig, ComponentResult
from .render import render_file, template_environment


_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_PACKAGE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)+$")
_MODULE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._~/-]*$")


FALLBACK_TOOL = "embedded-templates"


class FallbackGenerator(ABC):
    """Contract for generators that produce a component without external tools."""

    @abstractmethod
    def generate(self, component: ComponentConfig, target_dir: Path) -> ComponentResult:
        """Write a skeleton for ``component`` into ``target_dir``."""

    @abstractmethod
    def supports_component(self, component_type: str) -> bool:
        """Return True when this generator handles ``component_type``."""

    @abstractmethod
    def get_required_manual_steps(self, component_type: str) -> List[str]:
        """Steps the user must finish by hand after generation."""


class TemplateGenerator(FallbackGenerator):
    """Renders a fixed set of Jinja2 templates into the target directory.

    ``files`` maps an output path pattern (``str.format`` fields taken from
    the render context) to a template name under ``templates/<type>/``.
    """

    component_type: str = ""
    files: Dict[str, str] = {}
    directories: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    manual_steps: Tuple[str, ...] = ()

    def __init__(self, environment: Environment | None = None) -> None:
        self._env = environment or template_environment()
        self._logger = get_logger(f"fallback.{self.component_type}")

    def supports_component(self, component_type: str) -> bool:
        return component_type == self.component_type

    def get_required_manual_steps(self, component_type: str) -> List[str]:
        return list(self.manual_steps) if self.supports_component(component_type) else []

    def planned_files(self, component: ComponentConfig) -> List[str]:
        """Relative paths this generator would write for ``component``."""
        context = self.build_context(component)
        return sorted(pattern.format(**context) for pattern in self.files)

    @abstractmethod
    def build_context(self, component: ComponentConfig) -> Dict[str, Any]:
        """Return template variables, validating the component config."""

    def generate(self, component: ComponentConfig, target_dir: Path) -> ComponentResult:
        started = time.monotonic()
        context = self.build_context(component)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            for directory in self.directories:
                (target_dir / directory.format(**context)).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise file_system_error("mkdir", target_dir, exc).with_component(component.name) from exc

        for pattern, template in self.files.items():
            render_file(
                self.component_type,
                template,
                target_dir / pattern.format(**context),
                context,
                environment=self._env,
            )
        self._logger.debug("Rendered %d files for %s", len(self.files), component.name)

        return ComponentResult(
            type=component.type,
            name=component.name,
            success=True,
            path=target_dir,
            method="fallback",
            tool_used=FALLBACK_TOOL,
            manual_steps=self.get_required_manual_steps(component.type),
            warnings=list(self.warnings),
            duration=time.monotonic() - started,
        )


def _string(config: Dict[str, Any], key: str, default: str) -> str:
    value = config.get(key, default)
    if not isinstance(value, str):
        return default
    return value.strip() or default


def _checked(value: str, pattern: re.Pattern[str], field_name: str, component: str, hint: str) -> str:
    if not pattern.match(value) or ".." in value:
        raise config_validation_error(field_name, hint, component)
    return value


class AndroidGenerator(TemplateGenerator):
    component_type = "android"
    files = {
        "settings.gradle": "settings.gradle.j2",
        "build.gradle": "build.gradle.j2",
        "gradle.properties": "gradle.properties.j2",
        "app/build.gradle": "app.build.gradle.j2",
        "app/src/main/AndroidManifest.xml": "AndroidManifest.xml.j2",
        "app/src/main/java/{package_path}/MainActivity.kt": "MainActivity.kt.j2",
        "app/src/main/res/values/strings.xml": "strings.xml.j2",
        "gradle/wrapper/gradle-wrapper.properties": "gradle-wrapper.properties.j2",
        ".gitignore": "gitignore.j2",
        "README.md": "README.md.j2",
    }
    directories = (
        "app/src/main/res/layout",
        "app/src/main/res/drawable",
        "app/src/test/java/{package_path}",
    )
    warnings = (
        "This is a minimal Android project structure",
        "Android Studio and Gradle setup required",
        "Dependencies need to be synced manually",
    )
    manual_steps = (
        "Install Android Studio from https://developer.android.com/studio",
        "Open the project in Android Studio",
        "Wait for Gradle sync to complete",
        "Configure Android SDK if not already installed",
        "Update dependencies in build.gradle files as needed",
        "Run the app on an emulator or physical device",
    )

    def build_context(self, component: ComponentConfig) -> Dict[str, Any]:
        config = component.config
        package = _checked(
            _string(config, "package", "com.example.app"),
            _PACKAGE,
            "package",
            component.name,
            "package must be a dotted Java package name such as com.example.app",
        )
        app_name = _checked(
            _string(config, "app_name", "MyApp"),
            _IDENTIFIER,
            "app_name",
            component.name,
            "app_name must start with a letter and contain only letters, digits and underscores",
        )
        return {
            "name": component.name,
            "package": package,
            "package_path": package.replace(".", "/"),
            "app_name": app_name,
            "min_sdk": config.get("min_sdk", 24),
            "target_sdk": config.get("target_sdk", 34),
        }


class IOSGenerator(TemplateGenerator):
    component_type = "ios"
    files = {
        "{app_name}.xcodeproj/project.pbxproj": "project.pbxproj.j2",
        "{app_name}/{app_name}App.swift": "App.swift.j2",
        "{app_name}/ContentView.swift": "ContentView.swift.j2",
        "{app_name}/Info.plist": "Info.plist.j2",
        "{app_name}/Assets.xcassets/Contents.json": "Contents.json.j2",
        "{app_name}Tests/{app_name}Tests.swift": "Tests.swift.j2",
        ".gitignore": "gitignore.j2",
        "README.md": "README.md.j2",
    }
    warnings = (
        "This is a minimal iOS project structure",
        "Xcode is required to build and run the project",
        "Code signing configuration needed",
    )
    manual_steps = (
        "Install Xcode from the Mac App Store",
        "Open the .xcodeproj file in Xcode",
        "Configure code signing in Xcode project settings",
        "Select a development team in the Signing & Capabilities tab",
        "Choose a simulator or connect a physical iOS device",
        "Build and run the project using Cmd+R",
    )

    def build_context(self, component: ComponentConfig) -> Dict[str, Any]:
        config = component.config
        app_name = _checked(
            _string(config, "app_name", "MyApp"),
            _IDENTIFIER,
            "app_name",
            component.name,
            "app_name must start with a letter and contain only letters, digits and underscores",
        )
        bundle_id = _checked(
            _string(config, "bundle_id", f"com.example.{app_name.lower()}"),
            _PACKAGE,
            "bundle_id",
            component.name,
            "bundle_id must be a reverse-DNS identifier such as com.example.myapp",
        )
        return {
            "name": component.name,
            "app_name": app_name,
            "bundle_id": bundle_id,
            "organization": _string(config, "organization", "Example Organization"),
            "deployment_target": _string(config, "deployment_target", "17.0"),
        }


class GoBackendGenerator(TemplateGenerator):
    component_type = "go-backend"
    files = {
        "go.mod": "go.mod.j2",
        "main.go": "main.go.j2",
        "main_test.go": "main_test.go.j2",
        ".gitignore": "gitignore.j2",
        "README.md": "README.md.j2",
    }
    warnings = ("Generated without the Go toolchain; run go mod tidy once Go is installed",)
    manual_steps = (
        "Install Go from https://go.dev/doc/install",
        "Run go mod tidy in the CommonServer directory",
        "Start the server with go run .",
    )

    def build_context(self, component: ComponentConfig) -> Dict[str, Any]:
        config = component.config
        module = config.get("module")
        if not isinstance(module, str) or not module.strip():
            raise config_validation_error(
                "module", "module is required and must be a valid Go module path", component.name
            )
        _checked(module.strip(), _MODULE, "module", component.name, "module must be a valid Go module path")
        port = config.get("port", 8080)
        if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
            raise config_validation_error("port", "port must be between 1 and 65535", component.name)
        return {
            "name": component.name,
            "module": module.strip(),
            "port": port,
            "go_version": _string(config, "go_version", "1.22"),
        }


class NextJSGenerator(TemplateGenerator):
    component_type = "nextjs"
    files = {
        "package.json": "package.json.j2",
        "tsconfig.json": "tsconfig.json.j2",
        "next.config.mjs": "next.config.mjs.j2",
        "src/app/layout.tsx": "layout.tsx.j2",
        "src/app/page.tsx": "page.tsx.j2",
        ".gitignore": "gitignore.j2",
        "README.md": "README.md.j2",
    }
    directories = ("public",)
    warnings = ("Dependencies are not installed; run npm install",)
    manual_steps = (
        "Install Node.js from https://nodejs.org",
        "Run npm install in the App directory",
        "Start the development server with npm run dev",
    )

    def build_context(self, component: ComponentConfig) -> Dict[str, Any]:
        config = component.config
        return {
            "name": component.name,
            "package_name": re.sub(r"[^a-z0-9._-]", "-", component.name.lower()),
            "title": _string(config, "title", component.name),
            "next_version": _string(config, "next_version", "14.2.5"),
        }


BUILTIN_GENERATORS: Sequence[type[TemplateGenerator]] = (
    AndroidGenerator,
    IOSGenerator,
    GoBackendGenerator,
    NextJSGenerator,
)


__all__ = [
    "AndroidGenerator",
    "BUILTIN_GENERATORS",
    "FALLBACK_TOOL",
    "FallbackGenerator",
    "GoBackendGenerator",
    "IOSGenerator",
    "NextJSGenerator",
    "TemplateGenerator",
]
