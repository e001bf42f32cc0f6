from __future__ import annotations

import itertools
import random

import pytest
from conftest import make_profile

from acopilot.core.config import FallbackConfig
from acopilot.core.models import ActivityOptions, SkillCategory, SupervisionLevel
from apps.suggestions.fallback import (
    BACKUP_NOTE,
    BACKUP_NOTE_WITH_GUIDANCE,
    FallbackRuleEngine,
    load_catalog,
    titles_conflict,
)

BANDS = ["2-3 years", "3-4 years", "4-5 years", "5-6 years", "6-7 years", "7-8 years", "8-9 years", "9-10 years"]


def _engine(seed: int = 0, **config) -> FallbackRuleEngine:
    return FallbackRuleEngine(FallbackConfig(**config), rng=random.Random(seed))


def _context(age_band: str = "4-5 years", **overrides):
    return make_profile(age_band=age_band, **overrides).context()


def test_catalog_covers_eight_bands_and_eight_kinds() -> None:
    catalog = load_catalog()
    assert [band.label for band in catalog.age_bands] == BANDS
    assert {kind.theme for kind in catalog.kinds} == {
        "nature",
        "art",
        "building",
        "reading",
        "movement",
        "science",
        "research",
        "writing",
    }


def test_template_kinds_never_collide_with_each_other() -> None:
    engine = _engine()
    catalog = engine.catalog
    for band_index, level in itertools.product(range(len(BANDS)), SupervisionLevel):
        stage = catalog.age_bands[band_index].stage
        titles = {kind.theme: kind.title_for(stage, level, "Curious") for kind in catalog.kinds}
        for (theme_a, title_a), (theme_b, title_b) in itertools.combinations(titles.items(), 2):
            assert not titles_conflict(title_a, title_b), (theme_a, theme_b, title_a, title_b)


@pytest.mark.parametrize("band,level", list(itertools.product(BANDS, SupervisionLevel)))
def test_fallback_is_total_even_when_every_template_is_excluded(band: str, level: SupervisionLevel) -> None:
    engine = _engine()
    context = _context(band)
    band_index = engine.band_index(context)
    exclusions = set(engine.catalog_titles(band_index, personality="Curious"))

    template = engine.generate(context, level, set())
    assert template.title
    assert template.provenance == "template"
    assert template.skills

    generic = engine.generate(context, level, exclusions)
    assert generic.title
    assert generic.title not in exclusions
    assert generic.provenance == "generic"
    assert generic.skills
    assert generic.note == BACKUP_NOTE


@pytest.mark.parametrize("band,level", list(itertools.product(BANDS, SupervisionLevel)))
def test_fallback_never_returns_an_excluded_title(band: str, level: SupervisionLevel) -> None:
    engine = _engine(seed=3)
    context = _context(band)
    exclusions: set[str] = set()
    for _ in range(12):
        activity = engine.generate(context, level, exclusions)
        assert activity.title not in exclusions
        exclusions.add(activity.title)


def test_generic_title_is_disambiguated_against_exclusions() -> None:
    engine = _engine()
    context = _context(personality="gentle")
    exclusions = set(engine.catalog_titles(engine.band_index(context), personality="Gentle"))
    exclusions.add("Unique Gentle Learning Experience")

    activity = engine.generate(context, SupervisionLevel.FULL, exclusions)

    assert activity.title == "Unique Gentle Learning Experience #2"


def test_outdoor_independent_four_year_old_gets_non_nature_template_when_nature_is_excluded() -> None:
    engine = _engine()
    context = _context("4-5 years")
    nature_titles = engine.catalog_titles(engine.band_index(context), theme="nature")
    assert len(nature_titles) == 3
    options = ActivityOptions(location="outdoor", supervision="none")

    activity = engine.generate(context, SupervisionLevel.NONE, set(nature_titles), options=options)

    assert activity.provenance == "template"
    assert activity.title.split()[0] in {"Building", "Reading", "Creative", "Movement"}


def test_outdoor_prefers_nature_when_available() -> None:
    engine = _engine()
    options = ActivityOptions(location="Outdoor park")
    for seed in range(5):
        engine.rng = random.Random(seed)
        activity = engine.generate(_context(), SupervisionLevel.MINIMAL, set(), options=options)
        assert activity.title.startswith("Nature")


def test_independent_play_filters_unsafe_templates() -> None:
    engine = _engine()
    toddler = _context("2-3 years")
    kinds = {kind.theme for kind in engine.candidate_kinds(engine.band_index(toddler), SupervisionLevel.NONE)}
    assert kinds == {"building", "reading"}

    supervised = {kind.theme for kind in engine.candidate_kinds(engine.band_index(toddler), SupervisionLevel.FULL)}
    assert {"science", "nature", "art", "movement"} <= supervised
    assert "research" not in supervised


def test_first_word_prefix_rule_catches_near_duplicates() -> None:
    engine = _engine()
    context = _context("5-6 years")
    activity = engine.generate(context, SupervisionLevel.FULL, {"Building Fun"}, options=ActivityOptions())
    assert not activity.title.startswith("Building")

    assert titles_conflict("Nature Treasure Hunt", "An outdoor nature walk")
    assert titles_conflict("Reading Nook Picture Walk", "Reading Time")
    assert not titles_conflict("Science Sink or Float", "A Fun Time")


def test_selection_is_deterministic_for_a_seed() -> None:
    context = _context("6-7 years")
    first = [_engine(seed=11).generate(context, SupervisionLevel.MINIMAL, set()).title for _ in range(3)]
    second = [_engine(seed=11).generate(context, SupervisionLevel.MINIMAL, set()).title for _ in range(3)]
    assert first == second


def test_caller_materials_override_defaults_and_are_capped() -> None:
    engine = _engine(max_materials=2)
    options = ActivityOptions(available_materials="chalk, buckets, spoons")
    activity = engine.generate(_context(), SupervisionLevel.MINIMAL, set(), options=options)
    assert activity.materials == ["chalk", "buckets"]


def test_default_materials_respect_supervision_and_age() -> None:
    engine = _engine(max_materials=12)
    context = _context("2-3 years")
    for _ in range(10):
        activity = engine.generate(context, SupervisionLevel.NONE, set())
        assert "Craft knife" not in activity.materials
        assert "Marbles" not in activity.materials
        assert activity.materials


def test_supervision_defaults_and_parameterized_strings() -> None:
    engine = _engine(default_supervision="full")
    activity = engine.generate(_context("8-9 years"), None, set(), options=ActivityOptions(number_of_children="3"))

    assert activity.instructions[0].startswith("Sit down with your child")
    assert "Strengthens the adult-child bond through shared play" in activity.learning_outcomes
    assert "Promotes turn-taking and cooperation" in activity.learning_outcomes
    assert "Let your child set a personal goal before starting" in activity.tips
    assert all(tag.category in SkillCategory for tag in activity.skills)


def test_backup_note_mentions_guidance_when_raw_response_exists() -> None:
    activity = _engine().generate(_context(), SupervisionLevel.MINIMAL, set(), raw_response="not json")
    assert activity.note == BACKUP_NOTE_WITH_GUIDANCE


def test_age_classification_clamps_and_prefers_options() -> None:
    engine = _engine()
    assert engine.age_band(make_profile(age_band=None, age_months=18).context()).label == "2-3 years"
    assert engine.age_band(make_profile(age_band=None, age_months=140).context()).label == "9-10 years"
    assert engine.age_band(make_profile(age_band=None, age_months=None).context()).label == "4-5 years"
    assert engine.age_band(_context("3-4 years"), ActivityOptions(age="7-8 years")).label == "7-8 years"
