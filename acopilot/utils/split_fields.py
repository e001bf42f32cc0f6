"""Splitting helpers for free-text list fields (materials, interests, skills)."""

from __future__ import annotations

from collections.abc import Sequence
import re
from typing import List

DEFAULT_DELIMITERS = r"[;,\n]"


def split_fields(
    value: str | Sequence[str] | None,
    *,
    delimiters: str = DEFAULT_DELIMITERS,
    limit: int | None = None,
) -> List[str]:
    """Split a comma/semicolon separated field into trimmed, non-empty tokens.

    Sequences are flattened, so ``["paper, glue", "tape"]`` yields three items.
    ``limit`` keeps only the first N tokens.
    """

    if not value:
        return []
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        tokens: List[str] = []
        for item in value:
            tokens.extend(split_fields(item, delimiters=delimiters))
    else:
        tokens = [token.strip() for token in re.split(delimiters, str(value)) if token.strip()]
    if limit is not None and limit >= 0:
        tokens = tokens[:limit]
    return tokens
