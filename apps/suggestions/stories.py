"""Backup stories used when the generator cannot write one.

Templates are tried in catalog order and the first title that is not
excluded wins, so the same context and exclusions always give the same
story. Once every template is excluded the closing template is numbered
until its title is free.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional

import yaml
from pydantic import BaseModel

from acopilot.core.models import Story

from .fallback import BACKUP_NOTE, BACKUP_NOTE_WITH_GUIDANCE

LOGGER = logging.getLogger(__name__)

STORY_CATALOG_PATH = Path(__file__).with_name("story_templates.yaml")


class StoryTemplate(BaseModel):
    title: str
    sample_title: str
    sample_subject: str
    lead: str
    body: str

    def title_for(self, name: Optional[str]) -> str:
        return self.title.format(name=name) if name else self.sample_title

    def render(self, name: Optional[str], story_context: str) -> str:
        event = story_context.strip().rstrip(" .!")
        if "during" not in event.lower():
            event = f"{self.lead} {event}"
        return self.body.format(subject=name or self.sample_subject, event=event).strip()


class StoryCatalog(BaseModel):
    templates: List[StoryTemplate]
    closing: StoryTemplate


@lru_cache(maxsize=4)
def load_story_catalog(path: Path = STORY_CATALOG_PATH) -> StoryCatalog:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    catalog = StoryCatalog.model_validate(data)
    if not catalog.templates:
        raise ValueError(f"Story catalog {path} defines no templates")
    return catalog


class StoryFallback:
    def __init__(self, catalog: StoryCatalog | None = None) -> None:
        self.catalog = catalog or load_story_catalog()

    def generate(
        self,
        story_context: str,
        *,
        student_name: str | None = None,
        exclusions: Iterable[str] = (),
        raw_response: str | None = None,
    ) -> Story:
        excluded = {title for title in exclusions if title}
        note = BACKUP_NOTE_WITH_GUIDANCE if raw_response else BACKUP_NOTE

        for template in self.catalog.templates:
            title = template.title_for(student_name)
            if title not in excluded:
                return self._story(template, title, story_context, student_name, note)

        closing = self.catalog.closing
        base = closing.title_for(student_name)
        title = base
        suffix = 2
        while title in excluded:
            title = f"{base} #{suffix}"
            suffix += 1
        LOGGER.info("Story templates exhausted; using closing story '%s'", title)
        return self._story(closing, title, story_context, student_name, note)

    @staticmethod
    def _story(
        template: StoryTemplate,
        title: str,
        story_context: str,
        student_name: str | None,
        note: str,
    ) -> Story:
        return Story(
            title=title,
            content=template.render(student_name, story_context),
            context=story_context.strip(),
            student_name=student_name,
            provenance="template",
            note=note,
        )


__all__ = ["StoryCatalog", "StoryFallback", "StoryTemplate", "load_story_catalog"]
