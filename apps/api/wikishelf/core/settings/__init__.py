from .content import ContentSettings
from .core import CoreSettings

__all__ = [
    "ContentSettings",
    "CoreSettings",
]
