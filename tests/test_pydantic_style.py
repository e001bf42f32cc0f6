"""Keep the codebase on the Pydantic v2 API (validators, config, model methods)."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
PACKAGES: tuple[str, ...] = ("acopilot", "apps", "student_store", "tests")
V1_PATTERNS: dict[str, re.Pattern[str]] = {
    "validator decorator": re.compile(r"@(?:root_)?validator\b"),
    "validator import": re.compile(r"\bfrom\s+pydantic\s+import\b[^\n]*\b(?:root_)?validator\b"),
    "inner Config class": re.compile(r"^\s+class Config:", re.MULTILINE),
    "parse_obj/parse_raw": re.compile(r"\.parse_(?:obj|raw)\("),
    "copy(update=...)": re.compile(r"\.copy\(update="),
    "dict(exclude=...)": re.compile(r"\.dict\((?:exclude|include|by_alias)="),
}


def _sources() -> List[Path]:
    this_file = Path(__file__).resolve()
    files: List[Path] = []
    for package in PACKAGES:
        files.extend(path for path in sorted((REPO_ROOT / package).rglob("*.py")) if path != this_file)
    return files


@pytest.mark.parametrize("path", _sources(), ids=lambda path: str(path.relative_to(REPO_ROOT)))
def test_module_uses_pydantic_v2_api(path: Path) -> None:
    text = path.read_text(encoding="utf-8")
    hits = [label for label, pattern in V1_PATTERNS.items() if pattern.search(text)]
    assert not hits, f"{path.relative_to(REPO_ROOT)} uses Pydantic v1 API: {', '.join(hits)}"
