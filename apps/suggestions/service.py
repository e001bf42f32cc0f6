"""Caller-facing operations for the activity suggestion lifecycle.

One generation round reads the session's exclusion set, asks the generator
(or the fallback engine) for new activities, and records every returned
title before handing the batch back. Nothing is persisted until the caller
saves, discards, or logs an activity.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from acopilot.core.config import AppConfig
from acopilot.core.errors import (
    EmptySkillSetError,
    GeneratorUnavailableError,
    InvalidCategoryError,
    InvalidTransitionError,
    NotFoundError,
)
from acopilot.core.models import (
    Activity,
    ActivityOptions,
    RecentActivity,
    Story,
    StudentContext,
    StudentProfile,
    SuggestionRound,
)
from acopilot.core.provenance import ProvenanceEvent, ProvenanceLogger
from acopilot.utils.split_fields import DEFAULT_DELIMITERS, split_fields
from student_store import Collection, DuplicateActivityError, StudentDocumentStore

from .fallback import FallbackRuleEngine
from .generator import SuggestionGenerator, normalize_home_activity, normalize_story, normalize_suggestion
from .lifecycle import ActivityLifecycleStore
from .prompting import PromptComposer
from .session import DeduplicationTracker, SuggestionSession
from .stories import StoryFallback
from .taxonomy import normalize_skills

LOGGER = logging.getLogger(__name__)

DEGRADED_NOTE = "Generated via backup: none of our activity templates were left, so this one is a general idea."
# Sentences may contain commas, so prose fields only split on line breaks and semicolons.
_PROSE_DELIMITERS = r"[;\n]"


def _text_list(value: Any, *, delimiters: str = DEFAULT_DELIMITERS) -> List[str]:
    """A generator list field as clean strings; a bare string is split, not iterated."""

    if value is None:
        return []
    if isinstance(value, str):
        return split_fields(value, delimiters=delimiters)
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [text for text in (str(item).strip() for item in value) if text]


class ActivitySuggestionService:
    """Wires prompt composition, generation, fallback, and the lifecycle store together."""

    def __init__(
        self,
        documents: StudentDocumentStore,
        generator: SuggestionGenerator | None,
        config: AppConfig,
        *,
        provenance: ProvenanceLogger | None = None,
        rng: random.Random | None = None,
        fallback: FallbackRuleEngine | None = None,
        lifecycle: ActivityLifecycleStore | None = None,
        stories: StoryFallback | None = None,
    ) -> None:
        self.documents = documents
        self.generator = generator
        self.config = config
        self.provenance = provenance
        self.composer = PromptComposer(batch_size=config.generator.batch_size)
        self.fallback = fallback or FallbackRuleEngine(config.fallback, rng=rng)
        self.lifecycle = lifecycle or ActivityLifecycleStore(documents)
        self.stories = stories or StoryFallback()

    # ------------------------------------------------------------------
    # Students

    def create_student(self, profile: StudentProfile) -> StudentProfile:
        created = self.documents.create(profile)
        LOGGER.info("Created student %s (%s)", created.id, created.name)
        return created

    def get_student(self, student_id: str, *, owner_id: str | None = None) -> StudentProfile:
        profile = self.documents.get(student_id, owner_id=owner_id)
        if profile is None:
            raise NotFoundError(f"Student {student_id} not found")
        return profile

    def list_students(self, *, owner_id: str | None = None) -> List[Dict[str, Any]]:
        return self.documents.list_students(owner_id=owner_id)

    def update_recent_activity(
        self, student_id: str, recent: RecentActivity, *, owner_id: str | None = None
    ) -> StudentProfile:
        self.require_student(student_id, owner_id)
        if not self.documents.update_recent_activity(student_id, recent):
            raise NotFoundError(f"Student {student_id} not found")
        return self.get_student(student_id, owner_id=owner_id)

    def open_session(self, student_id: str, *, owner_id: str | None = None) -> SuggestionSession:
        self.require_student(student_id, owner_id)
        session = SuggestionSession(student_id=student_id)
        LOGGER.debug("Opened session %s for student %s", session.session_id, student_id)
        return session

    # ------------------------------------------------------------------
    # Generation rounds

    def request_suggestions(
        self,
        session: SuggestionSession,
        *,
        options: ActivityOptions | None = None,
        owner_id: str | None = None,
    ) -> SuggestionRound:
        """Return one batch of new suggestions that repeats nothing from this session."""

        context = self.get_student(session.student_id, owner_id=owner_id).context()
        tracker = DeduplicationTracker(session)
        prompt = self.composer.compose(context, tracker.ordered_exclusions(), follow_up=session.is_follow_up)

        activities: List[Activity] = []
        raw_response: Optional[str] = None
        if self.generator is None:
            LOGGER.info("No generator configured; using fallback templates for student %s", context.student_id)
        else:
            try:
                items = self.generator.generate(
                    prompt,
                    temperature=self.config.generator.temperature,
                    max_tokens=self.config.generator.max_tokens,
                )
                session.context_sent = True
                activities = self._activities_from_batch(items, tracker)
                if not activities:
                    LOGGER.warning("Generator returned only previously shown titles; falling back")
            except GeneratorUnavailableError as exc:
                LOGGER.warning("Suggestion generator unavailable (%s); falling back", exc)
                raw_response = exc.raw_response

        used_fallback = not activities
        if used_fallback:
            activities = [self._fallback_activity(context, tracker, options, raw_response)]
        return self._finish_round(session, tracker, activities, used_fallback, stage="suggest")

    def request_home_activity(
        self,
        session: SuggestionSession,
        options: ActivityOptions | None = None,
        *,
        owner_id: str | None = None,
    ) -> SuggestionRound:
        """Generate a single at-home activity shaped by ``options``."""

        options = options or ActivityOptions(location=self.config.fallback.default_location)
        context = self.get_student(session.student_id, owner_id=owner_id).context()
        tracker = DeduplicationTracker(session)

        activity: Optional[Activity] = None
        raw_response: Optional[str] = None
        if self.generator is not None:
            prompt = self.composer.compose_home_activity(
                context,
                options,
                tracker.ordered_exclusions(),
                age_label=self.fallback.age_band(context, options).label,
            )
            try:
                payload = self.generator.generate_home_activity(
                    prompt,
                    temperature=self.config.generator.home_temperature,
                    max_tokens=self.config.generator.home_max_tokens,
                )
                activity = self._home_activity_from_payload(normalize_home_activity(payload))
                if tracker.is_excluded(activity.title):
                    LOGGER.warning("Generator repeated '%s'; falling back", activity.title)
                    activity = None
            except GeneratorUnavailableError as exc:
                LOGGER.warning("Home activity generator unavailable (%s); falling back", exc)
                raw_response = exc.raw_response

        used_fallback = activity is None
        if activity is None:
            activity = self._fallback_activity(context, tracker, options, raw_response)
        return self._finish_round(session, tracker, [activity], used_fallback, stage="home_activity")

    def _activities_from_batch(
        self, items: Sequence[Dict[str, Any]], tracker: DeduplicationTracker
    ) -> List[Activity]:
        activities: List[Activity] = []
        seen: set[str] = set()
        for index, item in enumerate(items):
            item = normalize_suggestion(item, index)
            title = item["title"]
            if tracker.is_excluded(title) or title in seen:
                LOGGER.debug("Dropping repeated suggestion '%s'", title)
                continue
            seen.add(title)
            activities.append(self._suggestion(item))
        return activities

    @staticmethod
    def _suggestion(item: Dict[str, Any]) -> Activity:
        try:
            skills = normalize_skills(item["skills"])
        except (EmptySkillSetError, InvalidCategoryError) as exc:
            # Kept as a suggestion; save/discard re-validate and reject it.
            LOGGER.warning("Suggestion '%s' has unusable skills: %s", item["title"], exc)
            return Activity(title=item["title"], rationale=item["rationale"], raw_skills=item["skills"], notes=item.get("notes"))
        return Activity(title=item["title"], rationale=item["rationale"], skills=skills, notes=item.get("notes"))

    @staticmethod
    def _home_activity_from_payload(payload: Dict[str, Any]) -> Activity:
        raw_skills = payload.get("skills")
        skills = []
        if raw_skills:
            try:
                skills = normalize_skills(raw_skills)
            except (EmptySkillSetError, InvalidCategoryError) as exc:
                LOGGER.warning("Home activity '%s' has unusable skills: %s", payload.get("title"), exc)
        return Activity(
            title=payload["title"],
            rationale=payload["description"],
            description=payload["description"],
            skills=skills,
            raw_skills=None if skills else raw_skills,
            materials=_text_list(payload.get("materials")),
            instructions=_text_list(payload["instructions"], delimiters=_PROSE_DELIMITERS),
            learning_outcomes=_text_list(
                payload.get("learningOutcomes") or payload.get("learning_outcomes"), delimiters=_PROSE_DELIMITERS
            ),
            tips=_text_list(payload.get("tips"), delimiters=_PROSE_DELIMITERS),
        )

    def _fallback_activity(
        self,
        context: StudentContext,
        tracker: DeduplicationTracker,
        options: ActivityOptions | None,
        raw_response: Optional[str],
    ) -> Activity:
        return self.fallback.generate(
            context,
            options.supervision if options is not None else None,
            tracker.exclusion_set(),
            options=options,
            raw_response=raw_response,
        )

    def _finish_round(
        self,
        session: SuggestionSession,
        tracker: DeduplicationTracker,
        activities: List[Activity],
        used_fallback: bool,
        *,
        stage: str,
    ) -> SuggestionRound:
        tracker.record_shown(activity.title for activity in activities)
        session.hold(activities)
        session.rounds += 1

        degraded = any(activity.provenance == "generic" for activity in activities)
        note = None
        if used_fallback:
            note = DEGRADED_NOTE if degraded else activities[0].note
        round_ = SuggestionRound(
            session_id=session.session_id,
            student_id=session.student_id,
            round_index=session.rounds,
            activities=activities,
            used_fallback=used_fallback,
            degraded=degraded,
            provenance_note=note,
        )
        self._log(
            stage,
            f"Round {round_.round_index} returned {len(activities)} activities",
            agent="fallback" if used_fallback else "llm",
            student_id=session.student_id,
            payload={
                "session_id": session.session_id,
                "titles": [activity.title for activity in activities],
                "provenance_note": note,
            },
        )
        return round_

    # ------------------------------------------------------------------
    # Lifecycle transitions

    def save_activity(self, session: SuggestionSession, activity_id: str, *, owner_id: str | None = None) -> Activity:
        self.require_student(session.student_id, owner_id)
        stored = self.lifecycle.save(session.student_id, session.peek(activity_id))
        session.release(activity_id)
        self._log("save", f"Saved '{stored.title}'", student_id=session.student_id, payload={"activity_id": stored.id})
        return stored

    def discard_activity(self, session: SuggestionSession, activity_id: str, *, owner_id: str | None = None) -> Activity:
        self.require_student(session.student_id, owner_id)
        stored = self.lifecycle.discard(
            session.student_id, session.peek(activity_id), tracker=DeduplicationTracker(session)
        )
        session.release(activity_id)
        self._log("discard", f"Discarded '{stored.title}'", student_id=session.student_id, payload={"activity_id": stored.id})
        return stored

    def restore_discarded(self, student_id: str, activity_id: str, *, owner_id: str | None = None) -> Activity:
        """Move a discarded activity back to Saved; the session keeps excluding its title."""

        self.require_student(student_id, owner_id)
        restored = self.lifecycle.restore(student_id, activity_id)
        self._log("restore", f"Restored '{restored.title}'", student_id=student_id, payload={"activity_id": activity_id})
        return restored

    def remove_activity(
        self,
        student_id: str,
        activity_id: str,
        from_collection: Collection | str,
        *,
        owner_id: str | None = None,
    ) -> None:
        self.require_student(student_id, owner_id)
        self.lifecycle.remove(student_id, activity_id, from_collection)
        self._log(
            "remove",
            f"Removed activity {activity_id}",
            student_id=student_id,
            payload={"activity_id": activity_id, "collection": Collection(from_collection).value},
        )

    def log_past_activity(
        self,
        student_id: str,
        *,
        name: str,
        result: str | None = None,
        difficulty_level: str | None = None,
        date: datetime | None = None,
        notes: str | None = None,
        owner_id: str | None = None,
    ) -> Activity:
        self.require_student(student_id, owner_id)
        entry = self.lifecycle.append_history(
            student_id,
            Activity(title=name, result=result, difficulty_level=difficulty_level, timestamp=date, notes=notes),
        )
        self._log("history", f"Logged past activity '{entry.title}'", student_id=student_id, payload={"activity_id": entry.id})
        return entry

    def list_activities(
        self, student_id: str, collection: Collection | str, *, owner_id: str | None = None
    ) -> List[Activity]:
        self.require_student(student_id, owner_id)
        return self.lifecycle.list_collection(student_id, collection)

    # ------------------------------------------------------------------
    # Stories

    def request_story(
        self,
        story_context: str,
        *,
        student_id: str | None = None,
        owner_id: str | None = None,
        exclude_titles: Sequence[str] = (),
    ) -> Story:
        """Write a short parent-facing story about ``story_context``.

        With a student the story is personalised with their name and age;
        without one it is a classroom sample. Titles in ``exclude_titles``
        (stories the caller already turned down) are not offered again.
        Nothing is persisted until ``save_story``.
        """

        student_name: Optional[str] = None
        age_label: Optional[str] = None
        if student_id is not None:
            profile = self.get_student(student_id, owner_id=owner_id)
            student_name = profile.name
            if profile.age_months is not None:
                age_label = f"{profile.age_months} months"
            else:
                age_label = profile.age_band
        prompt = self.composer.compose_story(story_context, student_name=student_name, age_label=age_label)
        excluded = {title for title in exclude_titles if title}

        story: Optional[Story] = None
        raw_response: Optional[str] = None
        if self.generator is not None:
            try:
                payload = normalize_story(
                    self.generator.generate_story(
                        prompt,
                        temperature=self.config.generator.story_temperature,
                        max_tokens=self.config.generator.story_max_tokens,
                    )
                )
                story = Story(
                    title=payload["title"],
                    content=payload["content"],
                    context=story_context.strip(),
                    student_name=student_name,
                )
                if story.title in excluded:
                    LOGGER.warning("Generator repeated story '%s'; falling back", story.title)
                    story = None
            except GeneratorUnavailableError as exc:
                LOGGER.warning("Story generator unavailable (%s); falling back", exc)
                raw_response = exc.raw_response

        used_fallback = story is None
        if story is None:
            story = self.stories.generate(
                story_context, student_name=student_name, exclusions=excluded, raw_response=raw_response
            )
        self._log(
            "story",
            f"Wrote story '{story.title}'",
            agent="fallback" if used_fallback else "llm",
            student_id=student_id,
            payload={"story_id": story.id, "title": story.title, "provenance_note": story.note},
        )
        return story

    def save_story(self, student_id: str, story: Story, *, owner_id: str | None = None) -> Story:
        self.require_student(student_id, owner_id)
        try:
            pushed = self.documents.push_story(student_id, story)
        except DuplicateActivityError as exc:
            raise InvalidTransitionError(str(exc)) from exc
        if not pushed:
            raise NotFoundError(f"Student {student_id} not found")
        self._log("story_save", f"Saved story '{story.title}'", student_id=student_id, payload={"story_id": story.id})
        return story

    def list_stories(self, student_id: str, *, owner_id: str | None = None) -> List[Story]:
        self.require_student(student_id, owner_id)
        return self.documents.list_stories(student_id)

    def remove_story(self, student_id: str, story_id: str, *, owner_id: str | None = None) -> None:
        self.require_student(student_id, owner_id)
        if not self.documents.pull_story(student_id, story_id):
            raise NotFoundError(f"Story {story_id} is not saved for student {student_id}")
        self._log("story_remove", f"Removed story {story_id}", student_id=student_id, payload={"story_id": story_id})

    # ------------------------------------------------------------------

    def require_student(self, student_id: str, owner_id: str | None = None) -> None:
        """Raise NotFound unless the student exists and, when given, belongs to ``owner_id``."""

        if not self.documents.exists(student_id, owner_id=owner_id):
            raise NotFoundError(f"Student {student_id} not found")

    def _log(
        self,
        stage: str,
        message: str,
        *,
        agent: str = "caller",
        student_id: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        if self.provenance is None:
            return
        self.provenance.log(
            ProvenanceEvent(stage=stage, message=message, agent=agent, student_id=student_id, payload=payload or {})
        )


__all__ = ["ActivitySuggestionService", "DEGRADED_NOTE"]
