"""Per-student suggestion sessions and the deduplication tracker they carry."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional
from uuid import uuid4

from acopilot.core.errors import InvalidTransitionError, NotFoundError
from acopilot.core.models import Activity

LOGGER = logging.getLogger(__name__)


@dataclass
class SuggestionSession:
    """Explicit session value: one student, one continuous interaction.

    Nothing here is persisted; a new session (for example a new page load)
    starts with an empty exclusion set.
    """

    student_id: str
    session_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    rounds: int = 0
    context_sent: bool = False
    shown: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    suggested: Dict[str, Activity] = field(default_factory=dict)
    exclusions: set[str] = field(default_factory=set, repr=False)

    @property
    def is_follow_up(self) -> bool:
        return self.context_sent

    # in-flight batch ----------------------------------------------------

    def hold(self, activities: Iterable[Activity]) -> None:
        """Replace the in-flight batch with the activities of the latest round."""

        self.suggested = {activity.id: activity for activity in activities}

    def peek(self, activity_id: str) -> Activity:
        try:
            return self.suggested[activity_id]
        except KeyError as exc:
            raise NotFoundError(f"Activity {activity_id} is not among the current suggestions") from exc

    def release(self, activity_id: str) -> Activity:
        """Remove an activity from the in-flight batch once it was saved or discarded."""

        activity = self.suggested.pop(activity_id, None)
        if activity is None:
            raise InvalidTransitionError(f"Activity {activity_id} is no longer in the suggested state")
        return activity


class DeduplicationTracker:
    """Accumulates titles shown or rejected within a session.

    Matching is exact and case-sensitive. The exclusion set only grows for the
    lifetime of the session.
    """

    def __init__(self, session: SuggestionSession) -> None:
        self.session = session

    def record_shown(self, titles: Iterable[str]) -> None:
        added = 0
        for title in titles:
            if not title:
                continue
            if title not in self.session.exclusions:
                self.session.exclusions.add(title)
                self.session.shown.append(title)
                added += 1
        LOGGER.debug("Session %s: recorded %s shown titles", self.session.session_id, added)

    def record_rejected(self, title: str) -> None:
        if not title:
            return
        self.session.exclusions.add(title)
        if title not in self.session.rejected:
            self.session.rejected.append(title)

    def exclusion_set(self) -> FrozenSet[str]:
        return frozenset(self.session.exclusions)

    def is_excluded(self, title: str) -> bool:
        return title in self.session.exclusions

    def ordered_exclusions(self) -> List[str]:
        """Exclusions in first-seen order, for stable prompt text."""

        ordered = list(self.session.shown)
        ordered.extend(title for title in self.session.rejected if title not in self.session.shown)
        return ordered


class SessionRegistry:
    """In-process map of live sessions used by the HTTP backend.

    Sessions idle for longer than ``idle_ttl`` are dropped on the next access,
    and once ``max_sessions`` are open the least recently used one is evicted.
    A dropped session reads as NotFound, exactly like one that was closed.
    """

    def __init__(
        self,
        *,
        max_sessions: int = 1000,
        idle_ttl: timedelta | None = timedelta(hours=2),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self.idle_ttl = idle_ttl
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._sessions: OrderedDict[str, SuggestionSession] = OrderedDict()
        self._last_used: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def open(self, student_id: str) -> SuggestionSession:
        return self.add(SuggestionSession(student_id=student_id))

    def add(self, session: SuggestionSession) -> SuggestionSession:
        with self._lock:
            self._expire()
            self._sessions[session.session_id] = session
            self._sessions.move_to_end(session.session_id)
            self._last_used[session.session_id] = self.clock()
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                self._last_used.pop(evicted, None)
                LOGGER.info("Session registry full; evicted least recently used session %s", evicted)
        return session

    def get(self, session_id: str) -> SuggestionSession:
        with self._lock:
            self._expire()
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Session {session_id} not found")
            self._sessions.move_to_end(session_id)
            self._last_used[session_id] = self.clock()
        return session

    def close(self, session_id: str) -> Optional[SuggestionSession]:
        with self._lock:
            return self._drop(session_id)

    def _drop(self, session_id: str) -> Optional[SuggestionSession]:
        self._last_used.pop(session_id, None)
        return self._sessions.pop(session_id, None)

    def _expire(self) -> None:
        if self.idle_ttl is None:
            return
        cutoff = self.clock() - self.idle_ttl
        # Ordered by last use, so stop at the first session still inside the window.
        while self._sessions:
            session_id = next(iter(self._sessions))
            if self._last_used[session_id] > cutoff:
                break
            self._drop(session_id)
            LOGGER.debug("Expired idle session %s", session_id)

    def __len__(self) -> int:
        with self._lock:
            self._expire()
            return len(self._sessions)


__all__ = ["DeduplicationTracker", "SessionRegistry", "SuggestionSession"]
