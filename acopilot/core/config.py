"""
Typed configuration for the activity copilot.

The YAML layout mirrors the sections below; `store` is the only section a
config file must provide, everything else has workable defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .models import SupervisionLevel


class RoleModelConfig(BaseModel):
    """Provider-specific configuration for the suggestion LM."""

    model_config = ConfigDict(extra="allow")

    provider: Literal["openai"] = "openai"
    model: str
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=64)
    api_key_env: str | None = None
    api_base: str | None = None
    api_base_env: str | None = None

    @property
    def extra_kwargs(self) -> Dict[str, Any]:
        return getattr(self, "model_extra", None) or {}


class ModelConfig(BaseModel):
    """LM defaults for the suggestion generator."""

    model_config = ConfigDict(extra="ignore")

    suggester: RoleModelConfig = Field(default_factory=lambda: RoleModelConfig(model="gpt-4o-mini"))
    default_temperature: float = Field(default=1.0, ge=0.0, le=2.0)
    default_max_tokens: int = Field(default=8192, ge=256)

    @model_validator(mode="before")
    @classmethod
    def coerce_legacy_format(cls, data: Any) -> Any:
        if data is None or isinstance(data, ModelConfig):
            return data
        if not isinstance(data, dict):
            return data

        payload = dict(data)
        # Flat "model: gpt-..." blocks predate the per-role layout
        if "suggester" not in payload and "model" in payload:
            payload["suggester"] = {"provider": payload.pop("provider", "openai"), "model": payload.pop("model")}
            if "temperature" in payload:
                payload["default_temperature"] = payload.pop("temperature")
            if "max_tokens" in payload:
                payload["default_max_tokens"] = payload.pop("max_tokens")
        return payload


class GeneratorConfig(BaseModel):
    """Bounds for calls to the external suggestion generator."""

    timeout_seconds: float = Field(default=30.0, gt=0.0)
    batch_size: int = Field(default=5, ge=1, le=10)
    temperature: float = Field(default=1.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=8192, ge=64)
    home_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    home_max_tokens: int = Field(default=2048, ge=64)
    story_temperature: float = Field(default=0.8, ge=0.0, le=2.0)
    story_max_tokens: int = Field(default=1024, ge=64)


class FallbackConfig(BaseModel):
    """Defaults applied by the local rule engine when the caller is silent."""

    default_supervision: SupervisionLevel = SupervisionLevel.MINIMAL
    default_location: str = "indoor"
    max_materials: int = Field(default=5, ge=1, le=12)

    @field_validator("default_supervision", mode="before")
    @classmethod
    def parse_supervision(cls, value: Any) -> SupervisionLevel:
        return SupervisionLevel.parse(value)


class StoreConfig(BaseModel):
    """Location of the SQLite student document store."""

    sqlite_path: Path = Field(default=Path("outputs/students.sqlite"))

    @field_validator("sqlite_path", mode="before")
    @classmethod
    def coerce_path(cls, value: Any) -> Path:
        return Path(value).expanduser().resolve()


class AppConfig(BaseModel):
    """Top-level configuration for the suggestion service."""

    models: ModelConfig = Field(default_factory=ModelConfig)
    generator: GeneratorConfig = Field(default_factory=GeneratorConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    store: StoreConfig
    logs_dir: Path = Field(default=Path("outputs/logs"))

    @model_validator(mode="before")
    @classmethod
    def ensure_sections_present(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        missing = [key for key in ("store",) if key not in values]
        if missing:
            raise ValueError(f"Missing config sections: {', '.join(missing)}")
        return values

    @field_validator("logs_dir", mode="before")
    @classmethod
    def coerce_logs_dir(cls, value: Any) -> Path:
        return Path(value).expanduser().resolve()


def read_yaml_file(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping at root of {path}, received {type(data)}")
    return data


def _resolve_config_path(value: Any, base_dir: Path) -> str:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    else:
        path = path.resolve()
    return str(path)


def _absolutize_paths(data: Dict[str, Any], base_dir: Path) -> None:
    store = data.get("store")
    if isinstance(store, dict) and store.get("sqlite_path"):
        store["sqlite_path"] = _resolve_config_path(store["sqlite_path"], base_dir)
    if data.get("logs_dir"):
        data["logs_dir"] = _resolve_config_path(data["logs_dir"], base_dir)


def load_app_config(path: Path, *, base_dir: Path | None = None) -> AppConfig:
    """Load the service config used by the CLI and the portal backend."""
    path = path.expanduser().resolve()
    data = read_yaml_file(path)
    _absolutize_paths(data, base_dir=(base_dir or path.parent).resolve())
    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid app config in {path}") from exc


def default_app_config(root: Path) -> AppConfig:
    """Config used when no YAML is available; everything lives under ``root/outputs``."""

    root = root.expanduser().resolve()
    return AppConfig(
        store=StoreConfig(sqlite_path=root / "outputs" / "students.sqlite"),
        logs_dir=root / "outputs" / "logs",
    )


__all__ = [
    "AppConfig",
    "FallbackConfig",
    "GeneratorConfig",
    "ModelConfig",
    "RoleModelConfig",
    "StoreConfig",
    "default_app_config",
    "load_app_config",
    "read_yaml_file",
]
