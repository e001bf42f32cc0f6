from __future__ import annotations

import pytest

from acopilot.core.errors import EmptySkillSetError, ErrorKind, InvalidCategoryError
from acopilot.core.models import Activity, SkillCategory, SkillTag
from apps.suggestions.taxonomy import ALLOWED_CATEGORIES, normalize_skills, require_skills, resolve_category


def test_allowed_categories_is_the_closed_set_of_nine() -> None:
    assert len(ALLOWED_CATEGORIES) == 9
    assert "Cognitive Skills" in ALLOWED_CATEGORIES
    assert "Other" not in ALLOWED_CATEGORIES


@pytest.mark.parametrize(
    "label,expected",
    [
        ("Cognitive Skills", SkillCategory.COGNITIVE),
        ("cognitive skills", SkillCategory.COGNITIVE),
        ("Cognitive", SkillCategory.COGNITIVE),
        ("Social-Emotional", SkillCategory.SOCIAL_EMOTIONAL),
        ("problem_solving", SkillCategory.PROBLEM_SOLVING),
        ("  Creative Arts/Expression Skills ", SkillCategory.CREATIVE),
    ],
)
def test_resolve_category_accepts_known_labels(label: str, expected: SkillCategory) -> None:
    assert resolve_category(label) is expected


@pytest.mark.parametrize("label", ["Other", "Math", "", None])
def test_resolve_category_rejects_unknown_labels(label) -> None:
    with pytest.raises(InvalidCategoryError) as excinfo:
        resolve_category(label)
    assert excinfo.value.kind is ErrorKind.INVALID_CATEGORY


def test_normalize_object_list_preserves_order() -> None:
    skills = normalize_skills(
        [
            {"name": "Jumping", "category": "Physical Skills"},
            {"name": "Counting", "category": "Cognitive Skills"},
        ]
    )
    assert skills == [
        SkillTag(name="Jumping", category=SkillCategory.PHYSICAL),
        SkillTag(name="Counting", category=SkillCategory.COGNITIVE),
    ]


def test_normalize_category_name_strings() -> None:
    skills = normalize_skills(["Literacy Skills: Letter sounds", "Physical: Balance"])
    assert [(tag.category, tag.name) for tag in skills] == [
        (SkillCategory.LITERACY, "Letter sounds"),
        (SkillCategory.PHYSICAL, "Balance"),
    ]


def test_normalize_free_text_string() -> None:
    skills = normalize_skills("Cognitive Skills: Sorting; Language and Communication Skills: Naming colours")
    assert [tag.name for tag in skills] == ["Sorting", "Naming colours"]


def test_normalize_json_text() -> None:
    skills = normalize_skills('[{"name": "Empathy", "category": "Social-Emotional Skills"}]')
    assert skills[0].category is SkillCategory.SOCIAL_EMOTIONAL


def test_normalize_drops_duplicates_and_blank_names() -> None:
    skills = normalize_skills(
        [
            {"name": "Counting", "category": "Cognitive Skills"},
            {"name": "Counting", "category": "cognitive"},
            {"name": "", "category": "Physical Skills"},
        ]
    )
    assert skills == [SkillTag(name="Counting", category=SkillCategory.COGNITIVE)]


def test_unknown_category_is_rejected_not_coerced() -> None:
    with pytest.raises(InvalidCategoryError) as excinfo:
        normalize_skills([{"name": "Counting", "category": "Math"}])
    assert excinfo.value.category == "Math"


def test_string_without_category_is_rejected() -> None:
    with pytest.raises(InvalidCategoryError):
        normalize_skills("Counting")


@pytest.mark.parametrize("raw", [None, "", [], [{"name": "", "category": "Cognitive Skills"}]])
def test_empty_results_raise_empty_skill_set(raw) -> None:
    with pytest.raises(EmptySkillSetError):
        normalize_skills(raw)


def test_require_skills_normalizes_raw_generator_output() -> None:
    activity = Activity(title="Sorting game", raw_skills=["Cognitive: Sorting"])
    assert require_skills(activity) == [SkillTag(name="Sorting", category=SkillCategory.COGNITIVE)]


def test_require_skills_without_any_skills_fails() -> None:
    with pytest.raises(EmptySkillSetError):
        require_skills(Activity(title="Bare"))
