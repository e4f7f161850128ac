"""Error taxonomy and recovery policy for project generation.

Every failure the core surfaces is a :class:`GenerationError`. Its
``recoverable`` flag is derived from the category alone; callers decide
whether to retry or fall back through :func:`should_retry` and
:func:`should_fallback` using a fresh :class:`ErrorContext` per attempt.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence


class ErrorCategory(str, Enum):
    """Closed set of failure categories."""

    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    TOOL_EXECUTION = "TOOL_EXECUTION"
    INVALID_CONFIG = "INVALID_CONFIG"
    FILE_SYSTEM = "FILE_SYSTEM"
    SECURITY = "SECURITY"
    INTEGRATION = "INTEGRATION"
    VALIDATION = "VALIDATION"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:
        return self.value


_RECOVERABLE = frozenset(
    {
        ErrorCategory.TOOL_NOT_FOUND,
        ErrorCategory.TOOL_EXECUTION,
        ErrorCategory.FILE_SYSTEM,
        ErrorCategory.INTEGRATION,
        ErrorCategory.VALIDATION,
        ErrorCategory.TIMEOUT,
    }
)


_RETRYABLE = frozenset(
    {
        ErrorCategory.TOOL_EXECUTION,
        ErrorCategory.FILE_SYSTEM,
        ErrorCategory.TIMEOUT,
    }
)


MAX_ATTEMPTS = 2


def is_recoverable(category: object) -> bool:
    """Return whether retry and/or fallback is permitted for ``category``."""
    return category in _RECOVERABLE


class GenerationError(Exception):
    """Categorised failure raised by the generation core."""

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        cause: BaseException | None = None,
        *,
        component: str = "",
        suggestions: Iterable[str] | None = None,
    ) -> None:
        self.category = category
        self.message = message
        self.cause = cause
        self.component = component
        self.suggestions: List[str] = list(suggestions or [])
        super().__init__(self._render())
        if cause is not None:
            self.__cause__ = cause

    @property
    def recoverable(self) -> bool:
        return is_recoverable(self.category)

    def __str__(self) -> str:
        return self._render()

    def _render(self) -> str:
        parts = [f"[{self.category}]"]
        if self.component:
            parts.append(f"Component '{self.component}':")
        parts.append(self.message)
        rendered = " ".join(parts)
        if self.cause is not None:
            rendered += f" (caused by: {self.cause})"
        return rendered

    def with_suggestions(self, *suggestions: str) -> "GenerationError":
        self.suggestions.extend(suggestions)
        return self

    def with_component(self, component: str) -> "GenerationError":
        if not self.component:
            self.component = component
        return self

    def format_suggestions(self) -> str:
        """Return the numbered suggestions block, or an empty string."""
        if not self.suggestions:
            return ""
        lines = ["", "Suggestions:"]
        for index, suggestion in enumerate(self.suggestions, start=1):
            lines.append(f"  {index}. {suggestion}")
        return "\n".join(lines) + "\n"


class AggregateError(Exception):
    """Several independent failures reported as one."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        lines = [f"multiple errors occurred ({len(self.errors)}):"]
        for index, error in enumerate(self.errors, start=1):
            lines.append(f"  {index}. {error}")
        super().__init__("\n".join(lines))


@dataclass
class ErrorContext:
    """Facts about the current attempt used by the recovery policy."""

    operation: str
    component: str = ""
    phase: str = ""
    attempt_number: int = 1
    can_retry: bool = True
    can_fallback: bool = False


def should_retry(err: GenerationError, ctx: ErrorContext) -> bool:
    """Return True when one more attempt of the same strategy is allowed."""
    if not ctx.can_retry:
        return False
    if ctx.attempt_number >= MAX_ATTEMPTS:
        return False
    if not err.recoverable:
        return False
    return err.category in _RETRYABLE


def should_fallback(err: GenerationError, ctx: ErrorContext) -> bool:
    """Return True when the component should switch to fallback generation."""
    if not ctx.can_fallback:
        return False
    if err.category is ErrorCategory.TOOL_NOT_FOUND:
        return True
    if err.category is ErrorCategory.TOOL_EXECUTION:
        return ctx.attempt_number >= MAX_ATTEMPTS
    return False


def aggregate_errors(errors: Sequence[BaseException]) -> Optional[BaseException]:
    """Collapse a list of failures into zero, one or a combined error."""
    if not errors:
        return None
    if len(errors) == 1:
        return errors[0]
    return AggregateError(errors)


def format_error(err: BaseException) -> str:
    """Render an error for users, including suggestions when available."""
    if isinstance(err, GenerationError):
        return f"{err}\n{err.format_suggestions()}"
    if isinstance(err, AggregateError):
        blocks = [str(err)]
        for child in err.errors:
            if isinstance(child, GenerationError) and child.suggestions:
                blocks.append(f"{child.component or child.category}:{child.format_suggestions()}")
        return "\n".join(blocks)
    return str(err)


# ----------------------------------------------------------------------
# Constructors


def tool_not_found_error(tool: str, component: str = "") -> GenerationError:
    return GenerationError(
        ErrorCategory.TOOL_NOT_FOUND,
        f"required tool '{tool}' is not available",
        component=component,
        suggestions=[
            f"Install {tool} on your system",
            "Use --no-external-tools to force fallback generation",
            f"Run `projgen tools install-help {tool}` for installation instructions",
        ],
    )


def tool_execution_error(
    tool: str, component: str = "", cause: BaseException | None = None
) -> GenerationError:
    return GenerationError(
        ErrorCategory.TOOL_EXECUTION,
        f"tool '{tool}' execution failed",
        cause,
        component=component,
        suggestions=[
            "Check tool output for specific error messages",
            "Verify the tool is properly installed and configured",
            "Try running the tool manually to diagnose the issue",
            "Use --verbose for detailed execution logs",
        ],
    )


def config_validation_error(field_name: str, message: str, component: str = "") -> GenerationError:
    return GenerationError(
        ErrorCategory.INVALID_CONFIG,
        f"configuration validation failed for field '{field_name}': {message}",
        component=component,
        suggestions=[
            "Check your configuration file for errors",
            "Compare it with the example in the README",
        ],
    )


def file_system_error(
    operation: str, path: object, cause: BaseException | None = None
) -> GenerationError:
    return GenerationError(
        ErrorCategory.FILE_SYSTEM,
        f"file system operation '{operation}' failed for path '{path}'",
        cause,
        suggestions=[
            "Check file system permissions",
            "Verify disk space is available",
            "Ensure the path is accessible",
        ],
    )


def security_error(message: str, cause: BaseException | None = None) -> GenerationError:
    return GenerationError(
        ErrorCategory.SECURITY,
        message,
        cause,
        suggestions=[
            "Review input for potentially dangerous patterns",
            "Ensure paths do not contain traversal segments",
        ],
    )


def integration_error(message: str, cause: BaseException | None = None) -> GenerationError:
    return GenerationError(
        ErrorCategory.INTEGRATION,
        message,
        cause,
        suggestions=[
            "Check that all components were generated successfully",
            "Verify component configurations are compatible",
            "Review integration logs for specific errors",
        ],
    )


def validation_error(message: str, cause: BaseException | None = None) -> GenerationError:
    return GenerationError(
        ErrorCategory.VALIDATION,
        message,
        cause,
        suggestions=[
            "Check the generated project structure",
            "Verify all required files were created",
        ],
    )


def timeout_error(operation: str, component: str = "") -> GenerationError:
    return GenerationError(
        ErrorCategory.TIMEOUT,
        f"operation '{operation}' timed out",
        component=component,
        suggestions=[
            "Increase bootstrap_timeout in the options section of .projgen.yml",
            "Check network connectivity if dependencies are downloaded",
            "Verify system resources are not constrained",
        ],
    )


def as_generation_error(
    exc: BaseException,
    *,
    default: ErrorCategory = ErrorCategory.UNKNOWN,
    component: str = "",
    tool: str = "",
) -> GenerationError:
    """Convert an arbitrary exception into a categorised error."""
    if isinstance(exc, GenerationError):
        return exc.with_component(component) if component else exc
    if isinstance(exc, subprocess.TimeoutExpired):
        return timeout_error(tool or "bootstrap", component)
    if isinstance(exc, FileNotFoundError) and tool and exc.filename in (tool, None):
        error = tool_not_found_error(tool, component)
        error.cause = exc
        error.__cause__ = exc
        return error
    if isinstance(exc, OSError):
        error = file_system_error("write", exc.filename or "?", exc)
        return error.with_component(component) if component else error
    if isinstance(exc, subprocess.CalledProcessError):
        return tool_execution_error(tool or str(exc.cmd), component, exc)
    return GenerationError(default, str(exc) or exc.__class__.__name__, exc, component=component)


# ----------------------------------------------------------------------
# Recovery guidance


@dataclass(frozen=True)
class RecoveryAction:
    """Named step of a recovery strategy."""

    description: str


@dataclass
class RecoveryStrategy:
    """User-facing recovery guidance for one error category."""

    category: ErrorCategory
    description: str
    actions: List[RecoveryAction] = field(default_factory=list)


_STRATEGIES: dict[ErrorCategory, tuple[str, tuple[str, ...]]] = {
    ErrorCategory.TOOL_NOT_FOUND: (
        "Use fallback generation instead of bootstrap tool",
        (
            "Check if fallback generator is available",
            "Switch to fallback generation mode",
            "Retry component generation",
        ),
    ),
    ErrorCategory.TOOL_EXECUTION: (
        "Retry execution or fall back to custom generation",
        (
            "Retry tool execution once",
            "If retry fails, switch to fallback generation",
        ),
    ),
    ErrorCategory.FILE_SYSTEM: (
        "Retry file system operation after fixing issues",
        ("Check and fix permissions", "Verify disk space", "Retry operation"),
    ),
    ErrorCategory.INTEGRATION: (
        "Continue without full integration",
        (
            "Mark integration as incomplete",
            "Generate manual integration instructions",
            "Continue with project generation",
        ),
    ),
    ErrorCategory.VALIDATION: (
        "Continue with warnings",
        ("Log validation warnings", "Continue with project generation"),
    ),
    ErrorCategory.TIMEOUT: (
        "Retry with increased timeout",
        ("Increase timeout duration", "Retry operation"),
    ),
}


def get_recovery_strategy(err: GenerationError) -> RecoveryStrategy:
    """Return recovery guidance for ``err``; never ``None``."""
    known = _STRATEGIES.get(err.category)
    if known is None:
        return RecoveryStrategy(category=err.category, description="No automatic recovery available")
    description, actions = known
    return RecoveryStrategy(
        category=err.category,
        description=description,
        actions=[RecoveryAction(action) for action in actions],
    )


__all__ = [
    "AggregateError",
    "ErrorCategory",
    "ErrorContext",
    "GenerationError",
    "MAX_ATTEMPTS",
    "RecoveryAction",
    "RecoveryStrategy",
    "aggregate_errors",
    "as_generation_error",
    "config_validation_error",
    "file_system_error",
    "format_error",
    "get_recovery_strategy",
    "integration_error",
    "is_recoverable",
    "security_error",
    "should_fallback",
    "should_retry",
    "timeout_error",
    "tool_execution_error",
    "tool_not_found_error",
    "validation_error",
]
