"""
Core package for the activity copilot.

Kept free of heavy imports so the CLI and the HTTP backend can import the
version helper before the store or the LM runtime are configured.
"""

from importlib import metadata


def get_version() -> str:
    """Return the installed project version."""
    try:
        return metadata.version("activity-copilot")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__all__ = ["get_version"]
