"""Skill taxonomy: normalizes free-form skill tags into canonical `{name, category}` pairs."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List

from acopilot.core.errors import EmptySkillSetError, InvalidCategoryError
from acopilot.core.models import Activity, SkillCategory, SkillTag
from acopilot.utils.split_fields import split_fields

LOGGER = logging.getLogger(__name__)

ALLOWED_CATEGORIES: tuple[str, ...] = tuple(SkillCategory.choices())
_SKILL_ENTRY_DELIMITERS = r"[;\n]"


def _category_lookup() -> Dict[str, SkillCategory]:
    lookup: Dict[str, SkillCategory] = {}
    for member in SkillCategory:
        label = member.value.lower()
        lookup[label] = member
        lookup[member.name.lower()] = member
        if label.endswith(" skills"):
            lookup[label[: -len(" skills")]] = member
    return lookup


_LOOKUP = _category_lookup()


def resolve_category(label: Any) -> SkillCategory:
    """Map a category label onto the closed set; case and a trailing 'Skills' are ignored.

    Anything else raises `InvalidCategoryError`; there is no catch-all category.
    """

    if isinstance(label, SkillCategory):
        return label
    text = str(label or "").strip()
    member = _LOOKUP.get(text.lower())
    if member is None:
        raise InvalidCategoryError(text or "<missing>")
    return member


def normalize_skills(raw: Any) -> List[SkillTag]:
    """Coerce any accepted raw shape into an ordered list of `SkillTag`.

    Accepted shapes: a list of ``{name, category}`` mappings, a list of
    ``"category: name"`` strings, a single mapping, or a single free-text
    string (JSON, or ``"category: name"`` entries separated by ``;``/newlines).
    Raises `InvalidCategoryError` on the first unknown category and
    `EmptySkillSetError` when nothing usable remains.
    """

    entries = _entries_from_raw(raw)
    skills: List[SkillTag] = []
    seen: set[tuple[str, SkillCategory]] = set()
    for entry in entries:
        tag = _tag_from_entry(entry)
        if tag is None:
            continue
        key = (tag.name, tag.category)
        if key in seen:
            continue
        seen.add(key)
        skills.append(tag)

    if not skills:
        raise EmptySkillSetError("Activity has no valid skills supported")
    return skills


def require_skills(activity: Activity) -> List[SkillTag]:
    """Return the canonical skills for ``activity``, normalizing raw generator output if needed."""

    if activity.skills:
        return list(activity.skills)
    if activity.raw_skills is not None:
        return normalize_skills(activity.raw_skills)
    raise EmptySkillSetError(f"Activity '{activity.title}' has no skills supported")


# ----------------------------------------------------------------------


def _entries_from_raw(raw: Any) -> List[Any]:
    if raw is None:
        return []
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            return list(split_fields(text, delimiters=_SKILL_ENTRY_DELIMITERS))
        if isinstance(decoded, str):
            return list(split_fields(decoded, delimiters=_SKILL_ENTRY_DELIMITERS))
        return _entries_from_raw(decoded)
    if isinstance(raw, dict):
        return [raw]
    if isinstance(raw, Iterable):
        return list(raw)
    LOGGER.warning("Ignoring skills payload of unsupported type %s", type(raw).__name__)
    return []


def _tag_from_entry(entry: Any) -> SkillTag | None:
    if isinstance(entry, SkillTag):
        return entry
    if isinstance(entry, dict):
        name = str(entry.get("name") or entry.get("skill") or "").strip()
        if not name:
            return None
        return SkillTag(name=name, category=resolve_category(entry.get("category")))
    if isinstance(entry, str):
        text = entry.strip()
        if not text:
            return None
        if ":" not in text:
            raise InvalidCategoryError("<missing>", f"Skill '{text}' has no category")
        category, _, name = text.partition(":")
        name = name.strip()
        if not name:
            return None
        return SkillTag(name=name, category=resolve_category(category))
    LOGGER.warning("Ignoring skill entry of unsupported type %s", type(entry).__name__)
    return None


__all__ = ["ALLOWED_CATEGORIES", "normalize_skills", "require_skills", "resolve_category"]
