from __future__ import annotations

import random
from pathlib import Path
from typing import Any, Dict, List

import pytest

from acopilot.core.config import default_app_config
from acopilot.core.models import RecentActivity, StudentProfile
from student_store import StudentDocumentStore


def make_profile(**overrides: Any) -> StudentProfile:
    payload: Dict[str, Any] = {
        "name": "Mia",
        "age_band": "4-5 years",
        "personality": "curious and playful",
        "developmental_stage": "Fine motor",
        "interests": ["dinosaurs", "painting"],
        "goals": ["share with friends"],
        "recent_activity": RecentActivity(
            name="Puzzle race",
            result="Success",
            difficulty_level="Medium",
            observations="Finished quickly and asked for a harder one",
        ),
    }
    payload.update(overrides)
    return StudentProfile(**payload)


class FakeGenerator:
    """Returns queued batches; an Exception in the queue is raised instead."""

    def __init__(
        self,
        batches: List[Any] | None = None,
        home: List[Any] | None = None,
        stories: List[Any] | None = None,
    ) -> None:
        self.batches = list(batches or [])
        self.home = list(home or [])
        self.stories = list(stories or [])
        self.prompts: List[str] = []

    def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> List[Dict[str, Any]]:
        self.prompts.append(prompt)
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch

    def generate_home_activity(self, prompt: str, *, temperature: float, max_tokens: int) -> Dict[str, Any]:
        self.prompts.append(prompt)
        payload = self.home.pop(0)
        if isinstance(payload, Exception):
            raise payload
        return payload

    def generate_story(self, prompt: str, *, temperature: float, max_tokens: int) -> Dict[str, Any]:
        self.prompts.append(prompt)
        payload = self.stories.pop(0)
        if isinstance(payload, Exception):
            raise payload
        return payload


def suggestion(title: str, *skills: str) -> Dict[str, Any]:
    return {
        "title": title,
        "rationale": f"{title} builds on the last success.",
        "skills": [{"name": name, "category": "Cognitive Skills"} for name in (skills or ("Counting",))],
        "notes": None,
    }


@pytest.fixture()
def documents(tmp_path: Path) -> StudentDocumentStore:
    return StudentDocumentStore(tmp_path / "students.sqlite")


@pytest.fixture()
def app_config(tmp_path: Path):
    return default_app_config(tmp_path)


@pytest.fixture()
def rng() -> random.Random:
    return random.Random(7)
