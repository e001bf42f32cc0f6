"""Bootstrap helpers for the activity suggestion service."""

from __future__ import annotations

import logging
import os
import random
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv

from acopilot.core.config import AppConfig, default_app_config, load_app_config
from acopilot.core.dspy_runtime import DSPyConfigurationError, configure_dspy_models, llm_disabled
from acopilot.core.provenance import ProvenanceEvent, ProvenanceLogger
from apps.suggestions.generator import LMSuggestionGenerator
from apps.suggestions.service import ActivitySuggestionService
from student_store import StudentDocumentStore

from .context import ServiceContext, ServicePaths

DEFAULT_CONFIG_PATH = Path("config/activity.yaml")
REPO_ROOT_ENV = "ACOPILOT_REPO_ROOT"
LOGGER = logging.getLogger(__name__)


def _capture_env(keys: tuple[str, ...]) -> Dict[str, str]:
    """Return a filtered snapshot of environment variables for provenance."""
    snapshot: Dict[str, str] = {}
    for key in keys:
        value = os.getenv(key)
        if value is not None:
            snapshot[key] = value
    return snapshot


def resolve_repo_root(repo_root: Path | None = None) -> Path:
    if repo_root is not None:
        return repo_root.expanduser().resolve()
    env_root = os.getenv(REPO_ROOT_ENV)
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path.cwd().resolve()


def bootstrap_service(
    config_path: Path | None = None,
    *,
    repo_root: Path | None = None,
    store_path_override: Path | None = None,
    offline: bool = False,
    env_keys: tuple[str, ...] = ("ACOPILOT_DISABLE_LLM", "OPENAI_API_BASE"),
) -> ServiceContext:
    """
    Load configuration and environment variables, then build the service context.

    Parameters
    ----------
    config_path:
        Path to the service YAML. Defaults to ``config/activity.yaml`` under the
        repository root; when that file is absent the built-in defaults are used.
    repo_root:
        Root of the repository. Defaults to ``$ACOPILOT_REPO_ROOT`` or ``Path.cwd()``.
    store_path_override:
        Use this SQLite file instead of ``store.sqlite_path``.
    offline:
        Skip LM configuration so every round uses the fallback engine. The
        ``ACOPILOT_DISABLE_LLM`` environment toggle has the same effect.
    env_keys:
        Environment variables to capture for provenance logging.
    """

    repo_root = resolve_repo_root(repo_root)
    load_dotenv(repo_root / ".env")

    config = _load_config(config_path, repo_root)
    if store_path_override is not None:
        store_cfg = config.store.model_copy(update={"sqlite_path": store_path_override.expanduser().resolve()})
        config = config.model_copy(update={"store": store_cfg})

    paths = ServicePaths(repo_root=repo_root, store_path=config.store.sqlite_path, logs_dir=config.logs_dir)
    paths.ensure_directories()
    ctx = ServiceContext(
        config=config,
        paths=paths,
        env=_capture_env(env_keys),
        provenance=ProvenanceLogger(paths.provenance_path),
        offline=offline or llm_disabled(),
    )

    if ctx.offline:
        LOGGER.info("LLM disabled; suggestions will come from the fallback engine.")
    else:
        try:
            ctx.dspy_handles = configure_dspy_models(config.models)
        except DSPyConfigurationError as exc:
            LOGGER.warning("LLM unavailable (%s); suggestions will come from the fallback engine.", exc)
            ctx.offline = True

    ctx.provenance.log(
        ProvenanceEvent(
            stage="bootstrap",
            message="Suggestion service configured",
            agent="acopilot.pipeline",
            payload={
                "offline": ctx.offline,
                "suggester_model": config.models.suggester.model,
                "store": str(paths.store_path),
            },
        )
    )
    return ctx


def build_service(ctx: ServiceContext, *, rng: random.Random | None = None) -> ActivitySuggestionService:
    """Construct the suggestion service described by ``ctx``."""

    generator = None
    if not ctx.offline and ctx.dspy_handles is not None:
        generator = LMSuggestionGenerator(
            ctx.dspy_handles.suggester,
            timeout_seconds=ctx.config.generator.timeout_seconds,
        )
    return ActivitySuggestionService(
        StudentDocumentStore(ctx.paths.store_path),
        generator,
        ctx.config,
        provenance=ctx.provenance,
        rng=rng,
    )


def _load_config(config_path: Path | None, repo_root: Path) -> AppConfig:
    if config_path is not None:
        return load_app_config(config_path.expanduser(), base_dir=repo_root)
    default_path = repo_root / DEFAULT_CONFIG_PATH
    if default_path.exists():
        return load_app_config(default_path, base_dir=repo_root)
    LOGGER.debug("No config at %s; using built-in defaults", default_path)
    return default_app_config(repo_root)


__all__ = ["DEFAULT_CONFIG_PATH", "REPO_ROOT_ENV", "bootstrap_service", "build_service", "resolve_repo_root"]
