"""Android project materialization."""

from .service import ProjectMaterializer
from .template import TemplateStore

__all__ = ["ProjectMaterializer", "TemplateStore"]
