from __future__ import annotations

from datetime import datetime, timezone

import pytest
from conftest import make_profile

from acopilot.core.errors import (
    EmptySkillSetError,
    InvalidCategoryError,
    InvalidTransitionError,
    NotFoundError,
)
from acopilot.core.models import Activity, ActivityState, SkillCategory, SkillTag
from apps.suggestions.lifecycle import ActivityLifecycleStore
from apps.suggestions.session import DeduplicationTracker, SuggestionSession
from student_store import Collection

FIXED_NOW = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture()
def lifecycle(documents) -> ActivityLifecycleStore:
    documents.create(make_profile(id="s1"))
    return ActivityLifecycleStore(documents, clock=lambda: FIXED_NOW)


def _suggested(title: str, activity_id: str | None = None) -> Activity:
    payload = {"title": title, "skills": [SkillTag(name="Counting", category=SkillCategory.COGNITIVE)]}
    if activity_id:
        payload["id"] = activity_id
    return Activity(**payload)


def _collections(documents, student_id: str = "s1") -> dict[str, list[str]]:
    profile = documents.get(student_id)
    return {
        "saved": [activity.id for activity in profile.saved],
        "discarded": [activity.id for activity in profile.discarded],
        "history": [activity.id for activity in profile.history],
    }


def test_save_stamps_state_and_time(lifecycle, documents) -> None:
    stored = lifecycle.save("s1", _suggested("Dino Dig", "a1"))

    assert stored.state is ActivityState.SAVED
    assert stored.timestamp == FIXED_NOW
    assert _collections(documents) == {"saved": ["a1"], "discarded": [], "history": []}


def test_discard_records_rejected_title(lifecycle, documents) -> None:
    session = SuggestionSession(student_id="s1")
    tracker = DeduplicationTracker(session)

    stored = lifecycle.discard("s1", _suggested("Building Fun", "a1"), tracker=tracker)

    assert stored.state is ActivityState.DISCARDED
    assert tracker.is_excluded("Building Fun")
    assert _collections(documents)["discarded"] == ["a1"]


def test_activity_lives_in_one_collection_only(lifecycle, documents) -> None:
    activity = _suggested("Dino Dig", "a1")
    lifecycle.save("s1", activity)

    with pytest.raises(InvalidTransitionError):
        lifecycle.discard("s1", activity)
    assert _collections(documents) == {"saved": ["a1"], "discarded": [], "history": []}


def test_only_suggested_activities_can_be_saved(lifecycle) -> None:
    stored = lifecycle.save("s1", _suggested("Dino Dig"))
    with pytest.raises(InvalidTransitionError):
        lifecycle.save("s1", stored)


def test_empty_skills_leave_no_trace(lifecycle, documents) -> None:
    with pytest.raises(EmptySkillSetError):
        lifecycle.save("s1", Activity(title="Skill-less"))
    with pytest.raises(EmptySkillSetError):
        lifecycle.discard("s1", Activity(title="Blank", raw_skills="   "))
    assert _collections(documents) == {"saved": [], "discarded": [], "history": []}


def test_raw_skills_are_normalized_or_rejected(lifecycle, documents) -> None:
    with pytest.raises(InvalidCategoryError):
        lifecycle.save("s1", Activity(title="Mystery", raw_skills=[{"name": "Juggling", "category": "Other"}]))

    stored = lifecycle.save("s1", Activity(title="Sorting", raw_skills="Cognitive: Sorting; Sensory: Texture"))
    assert [(tag.category, tag.name) for tag in stored.skills] == [
        (SkillCategory.COGNITIVE, "Sorting"),
        (SkillCategory.SENSORY, "Texture"),
    ]
    assert documents.list_collection("s1", Collection.SAVED)[0].skills == stored.skills


def test_restore_appends_to_saved(lifecycle, documents) -> None:
    lifecycle.save("s1", _suggested("First", "a1"))
    lifecycle.discard("s1", _suggested("Building Fun", "a2"))

    restored = lifecycle.restore("s1", "a2")

    assert restored.state is ActivityState.SAVED
    assert _collections(documents) == {"saved": ["a1", "a2"], "discarded": [], "history": []}
    with pytest.raises(NotFoundError):
        lifecycle.restore("s1", "a2")


def test_remove_rules(lifecycle, documents) -> None:
    lifecycle.save("s1", _suggested("Dino Dig", "a1"))
    entry = lifecycle.append_history("s1", Activity(title="Park visit", result="Loved it"))

    with pytest.raises(InvalidTransitionError):
        lifecycle.remove("s1", entry.id, "history")
    with pytest.raises(InvalidTransitionError):
        lifecycle.remove("s1", "a1", "archive")
    with pytest.raises(NotFoundError):
        lifecycle.remove("s1", "a1", Collection.DISCARDED)

    lifecycle.remove("s1", "a1", "saved")
    assert _collections(documents) == {"saved": [], "discarded": [], "history": [entry.id]}


def test_history_entries_are_caller_provided(lifecycle) -> None:
    logged_at = datetime(2024, 12, 24, tzinfo=timezone.utc)
    entry = lifecycle.append_history("s1", Activity(title="Cookie baking", timestamp=logged_at, difficulty_level="Easy"))
    undated = lifecycle.append_history("s1", Activity(title="Bath time songs"))

    assert entry.state is ActivityState.HISTORICAL
    assert entry.provenance == "caller"
    assert entry.timestamp == logged_at
    assert undated.timestamp == FIXED_NOW


def test_unknown_student_is_not_found(lifecycle) -> None:
    with pytest.raises(NotFoundError):
        lifecycle.save("ghost", _suggested("Dino Dig"))
    with pytest.raises(NotFoundError):
        lifecycle.list_collection("ghost", "saved")


def test_colliding_ids_do_not_cross_students(lifecycle, documents) -> None:
    documents.create(make_profile(id="s2", name="Leo"))
    lifecycle.discard("s1", _suggested("Mine", "shared"))
    lifecycle.discard("s2", _suggested("Theirs", "shared"))

    lifecycle.restore("s2", "shared")

    assert _collections(documents, "s1")["discarded"] == ["shared"]
    assert _collections(documents, "s2") == {"saved": ["shared"], "discarded": [], "history": []}
    assert lifecycle.list_collection("s1", "discarded")[0].title == "Mine"
