"""Typed domain records for students and their activity collections."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SkillCategory(str, Enum):
    """Closed set of developmental skill categories."""

    SOCIAL_EMOTIONAL = "Social-Emotional Skills"
    COGNITIVE = "Cognitive Skills"
    LITERACY = "Literacy Skills"
    PHYSICAL = "Physical Skills"
    CREATIVE = "Creative Arts/Expression Skills"
    LANGUAGE = "Language and Communication Skills"
    SELF_HELP = "Self-Help/Adaptive Skills"
    PROBLEM_SOLVING = "Problem-Solving Skills"
    SENSORY = "Sensory Processing Skills"

    @classmethod
    def choices(cls) -> List[str]:
        return [member.value for member in cls]


class ActivityState(str, Enum):
    SUGGESTED = "suggested"
    SAVED = "saved"
    DISCARDED = "discarded"
    HISTORICAL = "historical"


class SupervisionLevel(str, Enum):
    """Degree of adult involvement declared by the caller."""

    NONE = "none"
    MINIMAL = "minimal"
    FULL = "full"

    @classmethod
    def parse(cls, value: Any) -> "SupervisionLevel":
        if isinstance(value, SupervisionLevel):
            return value
        token = str(value or "").strip().lower()
        aliases = {
            "none": cls.NONE,
            "independent": cls.NONE,
            "independent play": cls.NONE,
            "solo": cls.NONE,
            "minimal": cls.MINIMAL,
            "nearby": cls.MINIMAL,
            "light": cls.MINIMAL,
            "full": cls.FULL,
            "active": cls.FULL,
            "parent-involved": cls.FULL,
            "participating": cls.FULL,
        }
        if token in aliases:
            return aliases[token]
        valid = ", ".join(member.value for member in cls)
        raise ValueError(f"Unknown supervision level '{value}'. Valid options: {valid}")


class SkillTag(BaseModel):
    """Canonical `{name, category}` pair produced by the skill taxonomy."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    category: SkillCategory


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Activity(BaseModel):
    """One educational activity, either an in-flight suggestion or a stored record."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    title: str = Field(..., min_length=1)
    rationale: str = ""
    skills: List[SkillTag] = Field(default_factory=list)
    raw_skills: Any = Field(default=None, exclude=True, description="Unnormalized skills as returned by the generator.")
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None
    state: ActivityState = ActivityState.SUGGESTED
    description: Optional[str] = None
    materials: List[str] = Field(default_factory=list)
    instructions: List[str] = Field(default_factory=list)
    learning_outcomes: List[str] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)
    provenance: str = Field(default="model", description="model, template, generic, or caller")
    note: Optional[str] = None
    result: Optional[str] = None
    difficulty_level: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    def transitioned(self, state: ActivityState, *, at: datetime | None = None) -> "Activity":
        """Return a copy moved into ``state`` with the transition timestamp set."""

        return self.model_copy(update={"state": state, "timestamp": at or _utcnow(), "raw_skills": None})


class Story(BaseModel):
    """Short narrative for parents about something a child did that day."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    context: str = ""
    student_name: Optional[str] = None
    generated_at: datetime = Field(default_factory=_utcnow)
    provenance: str = Field(default="model", description="model or template")
    note: Optional[str] = None

    @field_validator("title", "content", mode="before")
    @classmethod
    def strip_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value


class RecentActivity(BaseModel):
    """Latest observed activity outcome; gates suggestion generation."""

    name: str = ""
    result: str = ""
    difficulty_level: str = ""
    observations: str = ""

    @property
    def is_complete(self) -> bool:
        return all(value.strip() for value in (self.name, self.result, self.difficulty_level, self.observations))


class StudentContext(BaseModel):
    """Read-only projection of a student's developmental fields."""

    model_config = ConfigDict(frozen=True)

    student_id: str
    name: str = ""
    age_months: Optional[int] = None
    age_band: Optional[str] = None
    description: str = ""
    personality: str = ""
    developmental_stage: str = ""
    interests: Tuple[str, ...] = ()
    preferred_learning_style: str = ""
    social_behavior: str = ""
    energy_level: str = ""
    goals: Tuple[str, ...] = ()
    recent_activity: Optional[RecentActivity] = None
    activity_history: Tuple[Activity, ...] = ()

    @property
    def age_years(self) -> Optional[float]:
        if self.age_band:
            match = re.match(r"\s*(\d+)", self.age_band)
            if match:
                return float(match.group(1))
        if self.age_months is not None:
            return self.age_months / 12.0
        return None


class StudentProfile(BaseModel):
    """Persisted student document with its activity collections."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    owner_id: Optional[str] = None
    name: str
    age_months: Optional[int] = Field(default=None, ge=0)
    age_band: Optional[str] = None
    description: str = ""
    personality: str = ""
    developmental_stage: str = ""
    interests: List[str] = Field(default_factory=list)
    preferred_learning_style: str = ""
    social_behavior: str = ""
    energy_level: str = ""
    goals: List[str] = Field(default_factory=list)
    recent_activity: Optional[RecentActivity] = None
    saved: List[Activity] = Field(default_factory=list)
    discarded: List[Activity] = Field(default_factory=list)
    history: List[Activity] = Field(default_factory=list)
    saved_stories: List[Story] = Field(default_factory=list)

    @field_validator("interests", "goals", mode="before")
    @classmethod
    def coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [token.strip() for token in value.split(",") if token.strip()]
        return value

    def context(self) -> StudentContext:
        return StudentContext(
            student_id=self.id,
            name=self.name,
            age_months=self.age_months,
            age_band=self.age_band,
            description=self.description,
            personality=self.personality,
            developmental_stage=self.developmental_stage,
            interests=tuple(self.interests),
            preferred_learning_style=self.preferred_learning_style,
            social_behavior=self.social_behavior,
            energy_level=self.energy_level,
            goals=tuple(self.goals),
            recent_activity=self.recent_activity,
            activity_history=tuple(self.history),
        )

    def profile_fields(self) -> dict:
        """Document fields without the activity collections."""

        return self.model_dump(mode="json", exclude={"saved", "discarded", "history", "saved_stories"})


class ActivityOptions(BaseModel):
    """Caller-declared constraints for a generation round."""

    age: Optional[str] = Field(default=None, description="Age band label such as '4-5 years'; overrides the profile age.")
    location: str = "indoor"
    duration: str = "30 minutes"
    number_of_children: str = "1"
    supervision: Optional[SupervisionLevel] = None
    available_materials: Optional[str] = None
    available_time: Optional[str] = None
    learning_goals: Optional[str] = None
    activity_type: Optional[str] = None
    dislikes: Optional[str] = None

    @field_validator("supervision", mode="before")
    @classmethod
    def parse_supervision(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return SupervisionLevel.parse(value)

    @field_validator("number_of_children", mode="before")
    @classmethod
    def stringify_count(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @property
    def is_outdoor(self) -> bool:
        return "outdoor" in self.location.lower()

    @property
    def is_group(self) -> bool:
        match = re.match(r"\s*(\d+)", self.number_of_children)
        return bool(match) and int(match.group(1)) > 1


class SuggestionRound(BaseModel):
    """Result of one generation round handed back to the caller."""

    session_id: str
    student_id: str
    round_index: int
    activities: List[Activity]
    used_fallback: bool = False
    degraded: bool = False
    provenance_note: Optional[str] = None


__all__ = [
    "Activity",
    "ActivityOptions",
    "ActivityState",
    "RecentActivity",
    "SkillCategory",
    "SkillTag",
    "Story",
    "StudentContext",
    "StudentProfile",
    "SuggestionRound",
    "SupervisionLevel",
]
