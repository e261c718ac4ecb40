"""Catalog models describing the repositories and models a session may use."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class Repository(BaseModel):
    """A source repository that sessions can branch worktrees from."""

    name: str = Field(..., description="Display name shown in the repository picker.")
    path: Path = Field(..., description="Filesystem path of the source checkout.")

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Repository name must not be empty")
        return normalized

    @field_validator("path")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        return Path(value).expanduser()


class AgentModel(BaseModel):
    """A provider/model pair the agent can be prompted with."""

    provider_id: str = Field(..., description="Agent provider identifier, e.g. 'anthropic'.")
    model_id: str = Field(..., description="Model identifier within the provider.")

    @field_validator("provider_id", "model_id")
    @classmethod
    def _strip(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Model identifiers must not be empty")
        return normalized

    @property
    def label(self) -> str:
        return f"{self.provider_id}/{self.model_id}"

    @classmethod
    def from_label(cls, label: str) -> "AgentModel":
        """Parse a ``provider/model`` label back into a model."""

        provider_id, sep, model_id = label.partition("/")
        if not sep:
            raise ValueError(f"Model label '{label}' must look like 'provider/model'")
        return cls(provider_id=provider_id, model_id=model_id)


class Catalog(BaseModel):
    """Top-level catalog document."""

    repositories: list[Repository] = Field(default_factory=list)
    models: list[AgentModel] = Field(default_factory=list)

    def find_repository(self, name: str) -> Repository | None:
        for repository in self.repositories:
            if repository.name == name:
                return repository
        return None

    def find_model(self, label: str) -> AgentModel | None:
        for model in self.models:
            if model.label == label:
                return model
        return None


__all__ = ["AgentModel", "Catalog", "Repository"]
