"""Repository and model catalog exports."""

from .loader import CatalogLoadError, CatalogLoader
from .models import AgentModel, Catalog, Repository

__all__ = [
    "AgentModel",
    "Catalog",
    "CatalogLoadError",
    "CatalogLoader",
    "Repository",
]
