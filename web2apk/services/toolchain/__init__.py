"""External build tool invocation."""

from .service import ToolchainInvoker

__all__ = ["ToolchainInvoker"]
