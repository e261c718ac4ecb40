"""Catalog loading utilities."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import AgentModel, Catalog, Repository


class CatalogLoadError(RuntimeError):
    """Raised when the catalog file is missing, unparsable or references bad repositories."""


class CatalogLoader:
    """Loads the repository and model catalog from a YAML file on disk."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Catalog:
        """Load and validate the catalog.

        Every problem found is collected, so a single error lists all bad entries.
        """

        if not self._path.exists():
            raise CatalogLoadError(f"Catalog file not found at {self._path}")

        try:
            document = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - library type
            raise CatalogLoadError(f"Failed to parse YAML in {self._path}: {exc}") from exc

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise CatalogLoadError(f"Catalog in {self._path} must be a mapping")

        try:
            catalog = Catalog.model_validate(document)
        except ValidationError as exc:
            raise CatalogLoadError(f"Catalog validation error in {self._path}: {exc}") from exc

        errors: list[str] = []
        seen: set[str] = set()
        for repository in catalog.repositories:
            if repository.name in seen:
                errors.append(f"Duplicate repository name '{repository.name}'")
            seen.add(repository.name)
            if not repository.path.is_dir():
                errors.append(f"Repository '{repository.name}' path does not exist: {repository.path}")
            elif not (repository.path / ".git").exists():
                errors.append(f"Repository '{repository.name}' is not a git checkout: {repository.path}")

        if not catalog.repositories:
            errors.append("Catalog must list at least one repository")
        if not catalog.models:
            errors.append("Catalog must list at least one model")

        if errors:
            raise CatalogLoadError("; ".join(errors))

        return catalog

    def repository(self, name: str) -> Repository:
        """Return a single repository by display name."""

        catalog = self.load()
        repository = catalog.find_repository(name)
        if repository is None:
            raise CatalogLoadError(f"Repository '{name}' not found in catalog")
        return repository

    def model(self, label: str) -> AgentModel:
        """Return a single model by its ``provider/model`` label."""

        catalog = self.load()
        model = catalog.find_model(label)
        if model is None:
            raise CatalogLoadError(f"Model '{label}' not found in catalog")
        return model


__all__ = ["CatalogLoadError", "CatalogLoader"]
