"""Helpers for configuring the DSPy language model behind the suggestion generator."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict

import dspy

from acopilot.core.config import ModelConfig, RoleModelConfig

DISABLE_LLM_ENV = "ACOPILOT_DISABLE_LLM"


class DSPyConfigurationError(RuntimeError):
    """Raised when DSPy cannot be configured for the requested run."""


@dataclass(frozen=True, slots=True)
class DSPyModelHandles:
    """Concrete LM handles provisioned for each role."""

    suggester: object


def llm_disabled() -> bool:
    """Return True when every generation round should use the local fallback engine."""

    value = os.getenv(DISABLE_LLM_ENV)
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _qualified_model_name(role_cfg: RoleModelConfig) -> str:
    if "/" in role_cfg.model:
        return role_cfg.model
    return f"{role_cfg.provider}/{role_cfg.model}"


def _build_openai_lm(
    model_name: str,
    *,
    api_key: str,
    temperature: float,
    max_tokens: int,
    api_base: str | None = None,
    extra_kwargs: Dict[str, Any] | None = None,
) -> object:
    kwargs: Dict[str, Any] = {
        "model": model_name,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "api_key": api_key,
    }
    if api_base:
        kwargs["api_base"] = api_base
    if extra_kwargs:
        kwargs.update(extra_kwargs)
    return dspy.LM(**kwargs)


def _first_env(explicit_env: str | None, prefix: str, role_name: str) -> str | None:
    """Look up ``explicit_env``, then ``<prefix>_<ROLE>``, then ``<prefix>``."""

    for env_var in (explicit_env, f"{prefix}_{role_name.upper()}", prefix):
        if env_var and (value := os.getenv(env_var)):
            return value
    return None


def _resolve_api_key(role_cfg: RoleModelConfig, role_name: str) -> str | None:
    return _first_env(role_cfg.api_key_env, "OPENAI_API_KEY", role_name)


def _resolve_api_base(role_cfg: RoleModelConfig, role_name: str) -> str | None:
    return role_cfg.api_base or _first_env(role_cfg.api_base_env, "OPENAI_API_BASE", role_name)


def _build_model_for_role(
    role_cfg: RoleModelConfig,
    role_name: str,
    model_cfg: ModelConfig,
    override_key: str | None,
) -> object:
    if role_cfg.provider != "openai":
        raise DSPyConfigurationError(f"Unsupported provider '{role_cfg.provider}' for role '{role_name}'")

    api_key = override_key or _resolve_api_key(role_cfg, role_name)
    if not api_key:
        expected_env = role_cfg.api_key_env or f"OPENAI_API_KEY_{role_name.upper()}"
        raise DSPyConfigurationError(f"Missing API key for {role_name} model; set {expected_env} or OPENAI_API_KEY.")

    temperature = role_cfg.temperature if role_cfg.temperature is not None else model_cfg.default_temperature
    max_tokens = role_cfg.max_tokens if role_cfg.max_tokens is not None else model_cfg.default_max_tokens

    return _build_openai_lm(
        _qualified_model_name(role_cfg),
        api_key=api_key,
        temperature=temperature,
        max_tokens=max_tokens,
        api_base=_resolve_api_base(role_cfg, role_name),
        extra_kwargs=role_cfg.extra_kwargs,
    )


def configure_dspy_models(model_cfg: ModelConfig, *, api_key: str | None = None) -> DSPyModelHandles:
    """Instantiate the DSPy LM used to draft activity suggestions."""

    suggester = _build_model_for_role(model_cfg.suggester, "suggester", model_cfg, api_key)
    dspy.settings.configure(lm=suggester)
    return DSPyModelHandles(suggester=suggester)


__all__ = [
    "DISABLE_LLM_ENV",
    "DSPyConfigurationError",
    "DSPyModelHandles",
    "configure_dspy_models",
    "llm_disabled",
]
