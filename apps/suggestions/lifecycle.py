"""Persisted activity collections and the transitions between them.

Legal transitions:

    suggested -> saved        (save)
    suggested -> discarded    (discard)
    discarded -> saved        (restore)
    saved | discarded -> gone (remove)
    caller input -> historical (append_history)

Every other move raises `InvalidTransitionError`. Each transition is a single
atomic update against the student document store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from acopilot.core.errors import InvalidTransitionError, NotFoundError
from acopilot.core.models import Activity, ActivityState
from student_store import Collection, DuplicateActivityError, StudentDocumentStore

from .session import DeduplicationTracker
from .taxonomy import require_skills

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityLifecycleStore:
    """Save, discard, restore, remove, and history operations scoped to one student id."""

    def __init__(self, documents: StudentDocumentStore, *, clock: Optional[Clock] = None) -> None:
        self.documents = documents
        self.clock = clock or _utcnow

    # ------------------------------------------------------------------
    # suggested -> saved | discarded

    def save(self, student_id: str, activity: Activity) -> Activity:
        stored = self._store_suggestion(student_id, activity, Collection.SAVED, ActivityState.SAVED)
        LOGGER.info("Saved activity %s ('%s') for student %s", stored.id, stored.title, student_id)
        return stored

    def discard(
        self,
        student_id: str,
        activity: Activity,
        *,
        tracker: DeduplicationTracker | None = None,
    ) -> Activity:
        stored = self._store_suggestion(student_id, activity, Collection.DISCARDED, ActivityState.DISCARDED)
        if tracker is not None:
            tracker.record_rejected(stored.title)
        LOGGER.info("Discarded activity %s ('%s') for student %s", stored.id, stored.title, student_id)
        return stored

    def _store_suggestion(
        self,
        student_id: str,
        activity: Activity,
        collection: Collection,
        state: ActivityState,
    ) -> Activity:
        # Skill validation runs first so a rejected activity leaves no trace.
        skills = require_skills(activity)
        if activity.state is not ActivityState.SUGGESTED:
            raise InvalidTransitionError(
                f"Activity {activity.id} is {activity.state.value}; only suggested activities can be {state.value}"
            )
        stored = activity.model_copy(update={"skills": skills}).transitioned(state, at=self.clock())
        self._push(student_id, collection, stored)
        return stored

    # ------------------------------------------------------------------
    # discarded -> saved, removal, history

    def restore(self, student_id: str, activity_id: str) -> Activity:
        """Move a discarded activity to the end of Saved in one statement."""

        restored = self.documents.move(
            student_id,
            activity_id,
            Collection.DISCARDED,
            Collection.SAVED,
            state=ActivityState.SAVED.value,
            timestamp=self.clock(),
        )
        if restored is None:
            raise NotFoundError(f"Activity {activity_id} is not in the discarded list of student {student_id}")
        LOGGER.info("Restored activity %s for student %s", activity_id, student_id)
        return restored

    def remove(self, student_id: str, activity_id: str, from_collection: Collection | str) -> None:
        collection = self._parse_collection(from_collection)
        if collection is Collection.HISTORY:
            raise InvalidTransitionError("History entries cannot be removed")
        if not self.documents.pull(student_id, collection, activity_id):
            raise NotFoundError(f"Activity {activity_id} is not in the {collection.value} list of student {student_id}")
        LOGGER.info("Removed activity %s from %s for student %s", activity_id, collection.value, student_id)

    def append_history(self, student_id: str, activity: Activity) -> Activity:
        entry = activity.model_copy(
            update={
                "state": ActivityState.HISTORICAL,
                "timestamp": activity.timestamp or self.clock(),
                "provenance": "caller",
                "raw_skills": None,
            }
        )
        self._push(student_id, Collection.HISTORY, entry)
        LOGGER.info("Logged past activity '%s' for student %s", entry.title, student_id)
        return entry

    # ------------------------------------------------------------------
    # reads

    def list_collection(self, student_id: str, collection: Collection | str) -> List[Activity]:
        if not self.documents.exists(student_id):
            raise NotFoundError(f"Student {student_id} not found")
        return self.documents.list_collection(student_id, self._parse_collection(collection))

    # ------------------------------------------------------------------

    def _push(self, student_id: str, collection: Collection, activity: Activity) -> None:
        try:
            pushed = self.documents.push(student_id, collection, activity)
        except DuplicateActivityError as exc:
            raise InvalidTransitionError(str(exc)) from exc
        if not pushed:
            raise NotFoundError(f"Student {student_id} not found")

    @staticmethod
    def _parse_collection(value: Collection | str) -> Collection:
        try:
            return Collection(value)
        except ValueError as exc:
            valid = ", ".join(member.value for member in Collection)
            raise InvalidTransitionError(f"Unknown collection '{value}'. Valid options: {valid}") from exc


__all__ = ["ActivityLifecycleStore"]
