"""Local rule engine used whenever the external generator is unavailable.

The engine is total: for every age band, supervision level, and exclusion set
it returns exactly one activity whose title is not excluded. When every
template is ruled out it synthesizes a generic activity and marks it with
``provenance="generic"`` so callers can surface the degraded result.
"""

from __future__ import annotations

import logging
import random
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Optional, Sequence

import yaml
from pydantic import BaseModel, Field

from acopilot.core.config import FallbackConfig
from acopilot.core.models import Activity, ActivityOptions, SkillTag, StudentContext, SupervisionLevel
from acopilot.utils.split_fields import split_fields

LOGGER = logging.getLogger(__name__)

CATALOG_PATH = Path(__file__).with_name("fallback_catalog.yaml")
BACKUP_NOTE = "Generated using our backup system - still personalized for your child!"
BACKUP_NOTE_WITH_GUIDANCE = "Generated using our backup system with AI guidance - still personalized for your child!"
MIN_AGE_YEARS = 2
MAX_AGE_YEARS = 9

Stage = Literal["young", "middle", "older"]
_ARTICLES = {"a", "an", "the"}
_WORD_RE = re.compile(r"[a-z0-9']+")


class AgeBand(BaseModel):
    label: str
    learner: str
    stage: Stage


class SupervisionProfile(BaseModel):
    phrase: str
    opening_step: str
    closing_step: str
    outcome: str
    tips: List[str] = Field(default_factory=list)


class StageProfile(BaseModel):
    outcome: str
    tips: List[str] = Field(default_factory=list)


class TemplateMaterial(BaseModel):
    name: str
    needs_adult: bool = False
    small_parts: bool = False


class TemplateKind(BaseModel):
    """One activity family with age-band and supervision variants."""

    kind: str
    theme: str
    min_band: int = Field(default=0, ge=0)
    independent_from_band: int = Field(default=0, ge=0)
    rationale: str
    outcome: str
    skills: List[SkillTag]
    titles: Dict[Stage, Dict[SupervisionLevel, str]]
    instructions: Dict[Stage, List[str]]
    materials: List[TemplateMaterial] = Field(default_factory=list)

    def title_for(self, stage: Stage, supervision: SupervisionLevel, personality: str) -> str:
        return self.titles[stage][supervision].format(personality=personality)

    def allowed_at(self, band_index: int) -> bool:
        return band_index >= self.min_band

    def safe_for_independent_play(self, band_index: int) -> bool:
        return band_index >= self.independent_from_band


class TemplateCatalog(BaseModel):
    age_bands: List[AgeBand]
    supervision: Dict[SupervisionLevel, SupervisionProfile]
    stages: Dict[Stage, StageProfile]
    kinds: List[TemplateKind]


@lru_cache(maxsize=4)
def load_catalog(path: Path = CATALOG_PATH) -> TemplateCatalog:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    catalog = TemplateCatalog.model_validate(data)
    if len(catalog.age_bands) != MAX_AGE_YEARS - MIN_AGE_YEARS + 1:
        raise ValueError(f"Template catalog {path} must define one band per year from {MIN_AGE_YEARS} to {MAX_AGE_YEARS}")
    return catalog


# ----------------------------------------------------------------------
# title similarity


def _words(title: str) -> List[str]:
    return _WORD_RE.findall(title.lower())


def _first_word(title: str) -> Optional[str]:
    for word in _words(title):
        if word not in _ARTICLES:
            return word
    return None


def titles_conflict(template_title: str, excluded_title: str) -> bool:
    """First-word prefix heuristic shared with the rejected-title list.

    Two titles conflict when the first significant word of either one is a
    prefix of some word in the other. Words shorter than three characters
    never trigger a conflict.
    """

    if template_title == excluded_title:
        return True
    template_words = _words(template_title)
    excluded_words = _words(excluded_title)
    for lead, others in (
        (_first_word(template_title), excluded_words),
        (_first_word(excluded_title), template_words),
    ):
        if lead and len(lead) >= 3 and any(word.startswith(lead) for word in others):
            return True
    return False


def personality_descriptor(context: StudentContext) -> str:
    words = _words(context.personality)
    if not words:
        return "Curious"
    return words[0].capitalize()


# ----------------------------------------------------------------------


class FallbackRuleEngine:
    """Deterministic-given-seed template engine keyed on age band and supervision."""

    def __init__(
        self,
        config: FallbackConfig | None = None,
        *,
        rng: random.Random | None = None,
        catalog: TemplateCatalog | None = None,
    ) -> None:
        self.config = config or FallbackConfig()
        self.rng = rng or random.Random()
        self.catalog = catalog or load_catalog()

    # classification ----------------------------------------------------

    def band_index(self, context: StudentContext, options: ActivityOptions | None = None) -> int:
        years: Optional[float] = None
        if options is not None and options.age:
            match = re.match(r"\s*(\d+)", options.age)
            if match:
                years = float(match.group(1))
        if years is None:
            years = context.age_years
        if years is None:
            LOGGER.debug("No age for student %s; using the middle of the young bands", context.student_id)
            years = 4.0
        clamped = min(max(int(years), MIN_AGE_YEARS), MAX_AGE_YEARS)
        return clamped - MIN_AGE_YEARS

    def age_band(self, context: StudentContext, options: ActivityOptions | None = None) -> AgeBand:
        return self.catalog.age_bands[self.band_index(context, options)]

    def resolve_supervision(self, supervision: SupervisionLevel | str | None) -> SupervisionLevel:
        if supervision is None or supervision == "":
            return self.config.default_supervision
        return SupervisionLevel.parse(supervision)

    def candidate_kinds(self, band_index: int, supervision: SupervisionLevel) -> List[TemplateKind]:
        kinds = [kind for kind in self.catalog.kinds if kind.allowed_at(band_index)]
        if supervision is SupervisionLevel.NONE:
            kinds = [kind for kind in kinds if kind.safe_for_independent_play(band_index)]
        return kinds

    def catalog_titles(
        self,
        band_index: int,
        *,
        supervision: SupervisionLevel | None = None,
        theme: str | None = None,
        personality: str = "Curious",
    ) -> List[str]:
        """Every template title for a band, optionally narrowed by supervision and theme."""

        band = self.catalog.age_bands[band_index]
        levels = [supervision] if supervision is not None else list(SupervisionLevel)
        titles: List[str] = []
        for kind in self.catalog.kinds:
            if theme is not None and kind.theme != theme:
                continue
            for level in levels:
                titles.append(kind.title_for(band.stage, level, personality))
        return titles

    # generation --------------------------------------------------------

    def generate(
        self,
        context: StudentContext,
        supervision: SupervisionLevel | str | None,
        exclusions: Iterable[str],
        *,
        options: ActivityOptions | None = None,
        raw_response: str | None = None,
    ) -> Activity:
        """Return one activity whose title avoids ``exclusions``."""

        options = options or ActivityOptions(location=self.config.default_location)
        level = self.resolve_supervision(supervision if supervision is not None else options.supervision)
        band_index = self.band_index(context, options)
        band = self.catalog.age_bands[band_index]
        personality = personality_descriptor(context)
        excluded = [title for title in exclusions if title]
        excluded_set = set(excluded)

        available: List[TemplateKind] = []
        for kind in self.candidate_kinds(band_index, level):
            title = kind.title_for(band.stage, level, personality)
            if title in excluded_set or any(titles_conflict(title, other) for other in excluded):
                continue
            available.append(kind)

        note = BACKUP_NOTE_WITH_GUIDANCE if raw_response else BACKUP_NOTE
        if not available:
            LOGGER.info(
                "Fallback templates exhausted for band %s (%s supervision); synthesizing a generic activity",
                band.label,
                level.value,
            )
            return self._generic_activity(context, options, band, level, personality, excluded_set, note)

        chosen = self._select(available, options)
        LOGGER.debug("Fallback chose %s for band %s (%s supervision)", chosen.kind, band.label, level.value)
        return self._template_activity(chosen, context, options, band, band_index, level, personality, note)

    def _select(self, available: Sequence[TemplateKind], options: ActivityOptions) -> TemplateKind:
        if options.is_outdoor:
            for kind in available:
                if kind.theme == "nature":
                    return kind
        return self.rng.choice(list(available))

    # assembly ----------------------------------------------------------

    def _template_activity(
        self,
        kind: TemplateKind,
        context: StudentContext,
        options: ActivityOptions,
        band: AgeBand,
        band_index: int,
        level: SupervisionLevel,
        personality: str,
        note: str,
    ) -> Activity:
        profile = self.catalog.supervision[level]
        instructions = [profile.opening_step, *kind.instructions[band.stage], profile.closing_step]
        return Activity(
            title=kind.title_for(band.stage, level, personality),
            rationale=f"{kind.rationale} Planned for a {band.learner} who {profile.phrase}.",
            skills=list(kind.skills),
            description=self._description(context, options, band),
            materials=self._materials(options, band, level, kind.materials),
            instructions=instructions,
            learning_outcomes=self._outcomes(kind.outcome, context, options, band, level),
            tips=self._tips(options, band, level),
            provenance="template",
            note=note,
        )

    def _generic_activity(
        self,
        context: StudentContext,
        options: ActivityOptions,
        band: AgeBand,
        level: SupervisionLevel,
        personality: str,
        excluded: set[str],
        note: str,
    ) -> Activity:
        base = f"Unique {personality} Learning Experience"
        title = base
        suffix = 2
        while title in excluded:
            title = f"{base} #{suffix}"
            suffix += 1

        profile = self.catalog.supervision[level]
        interests = ", ".join(context.interests) or "new things"
        return Activity(
            title=title,
            rationale=(
                f"An open-ended activity built around {interests}, for a {band.learner} who {profile.phrase}."
            ),
            skills=[
                SkillTag(name="Exploration", category="Cognitive Skills"),
                SkillTag(name="Self-Expression", category="Creative Arts/Expression Skills"),
            ],
            description=self._description(context, options, band),
            materials=self._materials(options, band, level, []),
            instructions=[
                profile.opening_step,
                f"Pick one of your child's favourite things ({interests}) as today's theme",
                "Let your child choose how to explore it: drawing, building, moving, or telling a story",
                "Ask what they noticed and what they would like to try next time",
                profile.closing_step,
            ],
            learning_outcomes=self._outcomes("Encourages curiosity and independent choice", context, options, band, level),
            tips=self._tips(options, band, level),
            provenance="generic",
            note=note,
        )

    def _description(self, context: StudentContext, options: ActivityOptions, band: AgeBand) -> str:
        interests = ", ".join(context.interests) or "exploring"
        setting = "outdoor" if options.is_outdoor else options.location.lower()
        children = f"{options.number_of_children} {band.learner}s" if options.is_group else f"a {band.learner}"
        return (
            f"A fun, engaging {options.duration} activity designed for {children} who enjoys {interests}. "
            f"Perfect for {setting} play that promotes creativity and learning."
        )

    def _materials(
        self,
        options: ActivityOptions,
        band: AgeBand,
        level: SupervisionLevel,
        defaults: Sequence[TemplateMaterial],
    ) -> List[str]:
        limit = self.config.max_materials
        if options.available_materials:
            provided = split_fields(options.available_materials, limit=limit)
            if provided:
                return provided
        items: List[str] = []
        for material in defaults:
            if material.needs_adult and level is SupervisionLevel.NONE:
                continue
            if material.small_parts and band.stage == "young":
                continue
            items.append(material.name)
        if not items:
            items = ["Paper", "Crayons or markers", "Household items"]
        return items[:limit]

    def _outcomes(
        self,
        kind_outcome: str,
        context: StudentContext,
        options: ActivityOptions,
        band: AgeBand,
        level: SupervisionLevel,
    ) -> List[str]:
        outcomes = [kind_outcome, self.catalog.stages[band.stage].outcome, self.catalog.supervision[level].outcome]
        if options.is_group:
            outcomes.append("Promotes turn-taking and cooperation")
        if options.learning_goals:
            outcomes.append(f"Supports your goal: {options.learning_goals}")
        elif context.developmental_stage:
            outcomes.append(f"Supports {context.developmental_stage.lower()} development")
        return outcomes

    def _tips(self, options: ActivityOptions, band: AgeBand, level: SupervisionLevel) -> List[str]:
        tips = list(self.catalog.supervision[level].tips)
        tips.extend(self.catalog.stages[band.stage].tips)
        if options.is_outdoor:
            tips.append("Dress for the weather and bring water")
        if options.dislikes:
            tips.append(f"Steer clear of: {options.dislikes}")
        return tips


__all__ = [
    "BACKUP_NOTE",
    "BACKUP_NOTE_WITH_GUIDANCE",
    "FallbackRuleEngine",
    "TemplateCatalog",
    "TemplateKind",
    "load_catalog",
    "personality_descriptor",
    "titles_conflict",
]
