"""Service bootstrap utilities for the activity copilot."""

from __future__ import annotations

from .bootstrap import bootstrap_service, build_service
from .context import ServiceContext, ServicePaths

__all__ = [
    "ServiceContext",
    "ServicePaths",
    "bootstrap_service",
    "build_service",
]
