from .meta import ModelMeta
from .base import Model

__all__ = ["Model", "ModelMeta"]
