"""
Custom exception hierarchy for web2apk.

All exceptions inherit from Web2APKError to enable consistent error handling
across the build pipeline. Each build-failure type carries a stable ``code`` that is
written to the build record and a ``retryable`` flag consulted by the job queue.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass
class Web2APKError(Exception):
    """Base exception for all web2apk errors."""

    message: str
    context: dict[str, Any] = field(default_factory=dict)
    cause: Exception | None = None

    code: ClassVar[str] = "BUILD_ERROR"
    retryable: ClassVar[bool] = True

    def __str__(self) -> str:
        ctx = f" | context: {self.context}" if self.context else ""
        cause = f" | caused by: {self.cause}" if self.cause else ""
        return f"{self.message}{ctx}{cause}"


@dataclass
class BuildError(Web2APKError):
    """Raised for build failures that fit no narrower class."""


@dataclass
class ConfigurationError(Web2APKError):
    """Raised when a build request is invalid. Rejected before enqueue."""

    field_name: str | None = None

    code: ClassVar[str] = "CONFIGURATION_ERROR"
    retryable: ClassVar[bool] = False

    def __str__(self) -> str:
        base = super().__str__()
        if self.field_name:
            return f"Invalid configuration for '{self.field_name}': {base}"
        return f"Invalid configuration: {base}"


@dataclass
class ToolchainError(Web2APKError):
    """Raised when the compiler or signer exits non-zero, times out or produces nothing."""

    tool_name: str = ""
    returncode: int | None = None
    output_tail: str = ""
    error_code: str | None = None

    code: ClassVar[str] = "TOOLCHAIN_ERROR"

    def __str__(self) -> str:
        base = super().__str__()
        tool = f"[{self.tool_name}] " if self.tool_name else ""
        return f"{tool}{base}"


@dataclass
class ToolNotFoundError(ToolchainError):
    """Raised when a required external tool is not available."""

    expected_path: str = ""
    install_hint: str = ""

    code: ClassVar[str] = "TOOL_NOT_FOUND"

    def __str__(self) -> str:
        hint = f" Install hint: {self.install_hint}" if self.install_hint else ""
        return f"Tool '{self.tool_name}' not found at '{self.expected_path}'.{hint}"


@dataclass
class ResourceError(Web2APKError):
    """Raised when a workspace or asset cannot be created, read or removed."""

    path: str = ""

    code: ClassVar[str] = "RESOURCE_ERROR"
    retryable: ClassVar[bool] = False


@dataclass
class TemplateError(ResourceError):
    """Raised when a template file lacks the anchor a patch expects."""

    pattern: str = ""

    code: ClassVar[str] = "TEMPLATE_ERROR"

    def __str__(self) -> str:
        return f"Template anchor {self.pattern!r} not found in '{self.path}': {self.message}"


@dataclass
class StalledJobError(Web2APKError):
    """Raised into a job whose lease expired without a heartbeat."""

    job_id: str = ""
    stalled_count: int = 0

    code: ClassVar[str] = "STALLED_JOB"


@dataclass
class CancelledByUserError(Web2APKError):
    """Raised when the worker observes a user cancellation."""

    build_id: str = ""

    code: ClassVar[str] = "CANCELLED_BY_USER"
    retryable: ClassVar[bool] = False


@dataclass
class DuplicateJobError(Web2APKError):
    """Raised when a build id is enqueued twice."""

    build_id: str = ""


@dataclass
class JobRunningError(Web2APKError):
    """Raised when removing a job that is already running."""

    job_id: str = ""


@dataclass
class BuildNotFoundError(Web2APKError):
    """Raised when a build record does not exist."""

    build_id: str = ""


@dataclass
class InvalidStateError(Web2APKError):
    """Raised when an operation is not allowed in the record's current status."""

    build_id: str = ""
    status: str = ""


@dataclass
class AccessDeniedError(Web2APKError):
    """Raised when a user acts on another user's build."""

    build_id: str = ""
    user_id: str = ""


def error_code(exc: BaseException) -> str:
    """Stable classification code for an exception."""
    if isinstance(exc, Web2APKError):
        return getattr(exc, "error_code", None) or exc.code
    return BuildError.code


def classify_error(exc: BaseException) -> Web2APKError:
    """Map any exception raised by a build stage onto the web2apk taxonomy."""
    if isinstance(exc, Web2APKError):
        return exc
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return ToolchainError(message=f"Timed out: {exc}", cause=exc)
    if isinstance(exc, OSError):
        return ResourceError(
            message=exc.strerror or str(exc),
            path=str(exc.filename or ""),
            cause=exc,
        )
    return BuildError(message=str(exc) or type(exc).__name__, cause=exc)
