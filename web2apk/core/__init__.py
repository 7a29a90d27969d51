"""Core infrastructure components for web2apk."""

from .config import Config, get_config
from .exceptions import (
    BuildError,
    CancelledByUserError,
    ConfigurationError,
    ResourceError,
    StalledJobError,
    TemplateError,
    ToolchainError,
    Web2APKError,
    classify_error,
)
from .logging import get_logger, setup_logging
from .types import ArtifactPath, StageResult, StageStatus

__all__ = [
    "Config",
    "get_config",
    "Web2APKError",
    "BuildError",
    "CancelledByUserError",
    "ConfigurationError",
    "ResourceError",
    "StalledJobError",
    "TemplateError",
    "ToolchainError",
    "classify_error",
    "get_logger",
    "setup_logging",
    "ArtifactPath",
    "StageResult",
    "StageStatus",
]
