"""Services for web2apk."""

from .materializer import ProjectMaterializer, TemplateStore
from .toolchain import ToolchainInvoker

__all__ = ["ProjectMaterializer", "TemplateStore", "ToolchainInvoker"]
