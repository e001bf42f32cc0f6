"""Shared context objects for the activity suggestion service."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from acopilot.core.config import AppConfig
from acopilot.core.dspy_runtime import DSPyModelHandles
from acopilot.core.provenance import ProvenanceLogger


class ServicePaths(BaseModel):
    """Canonical locations used by the CLI and the portal backend."""

    repo_root: Path
    store_path: Path
    logs_dir: Path

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("repo_root", "store_path", "logs_dir", mode="before")
    @classmethod
    def _expand(cls, value: Path | str) -> Path:
        return Path(value).expanduser().resolve()

    @property
    def provenance_path(self) -> Path:
        return self.logs_dir / "provenance.jsonl"

    def ensure_directories(self) -> None:
        for path in (self.store_path.parent, self.logs_dir):
            path.mkdir(parents=True, exist_ok=True)


class ServiceContext(BaseModel):
    """Aggregated runtime context handed to caller surfaces."""

    config: AppConfig
    paths: ServicePaths
    env: Dict[str, str] = Field(default_factory=dict)
    provenance: ProvenanceLogger
    dspy_handles: Optional[DSPyModelHandles] = None
    offline: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True)


__all__ = ["ServiceContext", "ServicePaths"]
