"""Append-only JSONL provenance log for suggestion rounds and lifecycle transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, Field


class ProvenanceEvent(BaseModel):
    """Structured record for one caller-facing operation."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stage: str = Field(..., description="Operation name, e.g. 'suggest', 'save', or 'restore'.")
    message: str = Field(..., description="Human-readable description of the event.")
    agent: str = Field(default="caller", description="'llm', 'fallback', or 'caller'.")
    student_id: str | None = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class ProvenanceLogger:
    """Append-only JSONL logger for provenance and debugging."""

    def __init__(self, output_path: Path):
        self.output_path = output_path
        self.output_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, event: ProvenanceEvent | Dict[str, Any]) -> ProvenanceEvent:
        """Write a single event to disk and return the normalized object."""
        if not isinstance(event, ProvenanceEvent):
            event = ProvenanceEvent(**event)
        line = event.model_dump_json()
        with self.output_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        return event

    def extend(self, events: Iterable[ProvenanceEvent | Dict[str, Any]]) -> None:
        """Batch-write multiple events."""
        for event in events:
            self.log(event)

    def read(self) -> List[ProvenanceEvent]:
        if not self.output_path.exists():
            return []
        lines = self.output_path.read_text(encoding="utf-8").splitlines()
        return [ProvenanceEvent.model_validate_json(line) for line in lines if line.strip()]


__all__ = ["ProvenanceEvent", "ProvenanceLogger"]
