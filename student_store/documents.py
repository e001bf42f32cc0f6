"""Document-style access to students and their activity collections.

Each public method maps to one atomic update against the SQLite store:
push into a collection, pull by activity id, move between collections,
or replace the whole document. Every activity statement is filtered by
``student_id`` so ids that collide across students never leak.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from acopilot.core.models import Activity, RecentActivity, Story, StudentProfile

from .storage import StudentStore


class Collection(str, Enum):
    SAVED = "saved"
    DISCARDED = "discarded"
    HISTORY = "history"


class DuplicateActivityError(ValueError):
    """Raised when an activity or story id is already persisted for the student."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dump_activity(activity: Activity) -> str:
    return activity.model_dump_json()


@dataclass
class StudentDocumentStore:
    store_path: Path

    def __post_init__(self) -> None:
        self.store = StudentStore(self.store_path)

    # ------------------------------------------------------------------
    # Whole-document helpers

    def create(self, profile: StudentProfile) -> StudentProfile:
        """Insert a new student document (profile plus any collections it carries)."""

        timestamp = _now()
        with self.store.transaction() as con:
            con.execute(
                "INSERT INTO students(id, owner_id, profile, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (profile.id, profile.owner_id, json.dumps(profile.profile_fields()), timestamp, timestamp),
            )
            self._insert_collections(con, profile)
        return profile

    def replace(self, profile: StudentProfile) -> StudentProfile:
        """Overwrite the whole document, collections included."""

        timestamp = _now()
        with self.store.transaction() as con:
            cur = con.execute(
                "UPDATE students SET owner_id = ?, profile = ?, updated_at = ? WHERE id = ?",
                (profile.owner_id, json.dumps(profile.profile_fields()), timestamp, profile.id),
            )
            if cur.rowcount == 0:
                con.execute(
                    "INSERT INTO students(id, owner_id, profile, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                    (profile.id, profile.owner_id, json.dumps(profile.profile_fields()), timestamp, timestamp),
                )
            con.execute("DELETE FROM activities WHERE student_id = ?", (profile.id,))
            con.execute("DELETE FROM stories WHERE student_id = ?", (profile.id,))
            self._insert_collections(con, profile)
        return profile

    def get(self, student_id: str, *, owner_id: str | None = None) -> Optional[StudentProfile]:
        """Assemble the full document, or None when absent (or owned by someone else)."""

        sql = "SELECT profile FROM students WHERE id = ?"
        params: Tuple[Any, ...] = (student_id,)
        if owner_id is not None:
            sql += " AND owner_id = ?"
            params += (owner_id,)
        with self.store.transaction() as con:
            row = con.execute(sql, params).fetchone()
            if row is None:
                return None
            activity_rows = con.execute(
                "SELECT collection, payload FROM activities WHERE student_id = ? ORDER BY seq",
                (student_id,),
            ).fetchall()
            story_rows = con.execute(
                "SELECT payload FROM stories WHERE student_id = ? ORDER BY seq", (student_id,)
            ).fetchall()

        payload: Dict[str, Any] = json.loads(row[0])
        collections: Dict[str, List[Activity]] = {member.value: [] for member in Collection}
        for collection, activity_payload in activity_rows:
            collections[collection].append(Activity.model_validate_json(activity_payload))
        payload.update(collections)
        payload["saved_stories"] = [Story.model_validate_json(story_row[0]) for story_row in story_rows]
        return StudentProfile.model_validate(payload)

    def exists(self, student_id: str, *, owner_id: str | None = None) -> bool:
        sql = "SELECT 1 FROM students WHERE id = ?"
        params: Tuple[Any, ...] = (student_id,)
        if owner_id is not None:
            sql += " AND owner_id = ?"
            params += (owner_id,)
        return bool(self.store.query(sql, params))

    def list_students(self, *, owner_id: str | None = None) -> List[Dict[str, Any]]:
        sql = "SELECT id, owner_id, json_extract(profile, '$.name'), updated_at FROM students"
        params: Tuple[Any, ...] = tuple()
        if owner_id is not None:
            sql += " WHERE owner_id = ?"
            params = (owner_id,)
        sql += " ORDER BY created_at"
        rows = self.store.query(sql, params)
        return [{"id": row[0], "owner_id": row[1], "name": row[2], "updated_at": row[3]} for row in rows]

    def update_recent_activity(self, student_id: str, recent: RecentActivity) -> bool:
        affected = self.store.execute(
            "UPDATE students SET profile = json_set(profile, '$.recent_activity', json(?)), updated_at = ? WHERE id = ?",
            (recent.model_dump_json(), _now(), student_id),
        )
        return affected > 0

    # ------------------------------------------------------------------
    # Collection helpers

    def push(self, student_id: str, collection: Collection, activity: Activity) -> bool:
        """Append ``activity`` to ``collection``; False when the student does not exist."""

        try:
            affected = self.store.execute(
                """
                INSERT INTO activities(student_id, id, collection, seq, payload)
                SELECT ?, ?, ?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM activities WHERE student_id = ?), ?
                WHERE EXISTS (SELECT 1 FROM students WHERE id = ?)
                """,
                (student_id, activity.id, Collection(collection).value, student_id, _dump_activity(activity), student_id),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateActivityError(f"Activity {activity.id} already stored for student {student_id}") from exc
        return affected > 0

    def pull(self, student_id: str, collection: Collection, activity_id: str) -> bool:
        """Delete an activity by id from one collection; False when nothing matched."""

        affected = self.store.execute(
            "DELETE FROM activities WHERE student_id = ? AND collection = ? AND id = ?",
            (student_id, Collection(collection).value, activity_id),
        )
        return affected > 0

    def move(
        self,
        student_id: str,
        activity_id: str,
        source: Collection,
        target: Collection,
        *,
        state: str,
        timestamp: datetime,
    ) -> Optional[Activity]:
        """Relabel an activity from ``source`` to the end of ``target`` in one statement.

        The row is never visible in both collections or in neither. Returns the
        moved activity, or None when it was not in ``source``.
        """

        with self.store.transaction() as con:
            cur = con.execute(
                """
                UPDATE activities
                SET collection = ?,
                    seq = (SELECT COALESCE(MAX(seq), 0) + 1 FROM activities WHERE student_id = ?),
                    payload = json_set(payload, '$.state', ?, '$.timestamp', ?)
                WHERE student_id = ? AND id = ? AND collection = ?
                """,
                (
                    Collection(target).value,
                    student_id,
                    state,
                    timestamp.isoformat(),
                    student_id,
                    activity_id,
                    Collection(source).value,
                ),
            )
            if cur.rowcount == 0:
                return None
            row = con.execute(
                "SELECT payload FROM activities WHERE student_id = ? AND id = ?",
                (student_id, activity_id),
            ).fetchone()
        return Activity.model_validate_json(row[0])

    def list_collection(self, student_id: str, collection: Collection) -> List[Activity]:
        rows = self.store.query(
            "SELECT payload FROM activities WHERE student_id = ? AND collection = ? ORDER BY seq",
            (student_id, Collection(collection).value),
        )
        return [Activity.model_validate_json(row[0]) for row in rows]

    # ------------------------------------------------------------------
    # Saved stories

    def push_story(self, student_id: str, story: Story) -> bool:
        """Append ``story`` to the student's saved stories; False when the student does not exist."""

        try:
            affected = self.store.execute(
                """
                INSERT INTO stories(student_id, id, seq, payload)
                SELECT ?, ?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM stories WHERE student_id = ?), ?
                WHERE EXISTS (SELECT 1 FROM students WHERE id = ?)
                """,
                (student_id, story.id, student_id, story.model_dump_json(), student_id),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateActivityError(f"Story {story.id} already stored for student {student_id}") from exc
        return affected > 0

    def pull_story(self, student_id: str, story_id: str) -> bool:
        affected = self.store.execute("DELETE FROM stories WHERE student_id = ? AND id = ?", (student_id, story_id))
        return affected > 0

    def list_stories(self, student_id: str) -> List[Story]:
        rows = self.store.query("SELECT payload FROM stories WHERE student_id = ? ORDER BY seq", (student_id,))
        return [Story.model_validate_json(row[0]) for row in rows]

    # ------------------------------------------------------------------

    @staticmethod
    def _insert_collections(con: sqlite3.Connection, profile: StudentProfile) -> None:
        rows = []
        seq = 0
        for collection, activities in (
            (Collection.SAVED, profile.saved),
            (Collection.DISCARDED, profile.discarded),
            (Collection.HISTORY, profile.history),
        ):
            for activity in activities:
                seq += 1
                rows.append((profile.id, activity.id, collection.value, seq, _dump_activity(activity)))
        if rows:
            con.executemany(
                "INSERT INTO activities(student_id, id, collection, seq, payload) VALUES (?, ?, ?, ?, ?)",
                rows,
            )
        if profile.saved_stories:
            con.executemany(
                "INSERT INTO stories(student_id, id, seq, payload) VALUES (?, ?, ?, ?)",
                [(profile.id, story.id, seq, story.model_dump_json()) for seq, story in enumerate(profile.saved_stories, start=1)],
            )


__all__ = ["Collection", "DuplicateActivityError", "StudentDocumentStore"]
