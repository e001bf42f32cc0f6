"""Boundary to the external generative model.

The model is a black box: a prompt goes in, text comes out. Anything other
than a well-formed payload (timeout, transport error, malformed JSON, missing
fields) surfaces as `GeneratorUnavailableError` so callers can fall back.
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, List, Protocol

from acopilot.core.errors import GeneratorUnavailableError

from .prompting import RATIONALE_KEY, SKILLS_KEY, TITLE_KEY

LOGGER = logging.getLogger(__name__)
_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class SuggestionGenerator(Protocol):
    def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> List[Dict[str, Any]]:
        ...

    def generate_home_activity(self, prompt: str, *, temperature: float, max_tokens: int) -> Dict[str, Any]:
        ...

    def generate_story(self, prompt: str, *, temperature: float, max_tokens: int) -> Dict[str, Any]:
        ...


class LMSuggestionGenerator:
    """Calls a DSPy-style LM (``lm(prompt=..., **kwargs)``) with a bounded wait."""

    def __init__(self, lm: Callable[..., Any], *, timeout_seconds: float = 30.0) -> None:
        self.lm = lm
        self.timeout_seconds = timeout_seconds

    def complete(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="suggestion-lm")
        future = executor.submit(self.lm, prompt=prompt, temperature=temperature, max_tokens=max_tokens)
        try:
            raw = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            raise GeneratorUnavailableError(f"Generator timed out after {self.timeout_seconds}s") from exc
        except Exception as exc:  # noqa: BLE001 - any provider failure routes to the fallback engine
            raise GeneratorUnavailableError(f"Generator call failed: {exc}") from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return normalize_lm_output(raw)

    def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> List[Dict[str, Any]]:
        text = self.complete(prompt, temperature=temperature, max_tokens=max_tokens)
        return parse_suggestion_batch(text)

    def generate_home_activity(self, prompt: str, *, temperature: float, max_tokens: int) -> Dict[str, Any]:
        text = self.complete(prompt, temperature=temperature, max_tokens=max_tokens)
        return parse_home_activity(text)

    def generate_story(self, prompt: str, *, temperature: float, max_tokens: int) -> Dict[str, Any]:
        text = self.complete(prompt, temperature=temperature, max_tokens=max_tokens)
        return parse_story(text)


def normalize_lm_output(raw: Any) -> str:
    if isinstance(raw, list):
        return "\n".join(str(part) for part in raw)
    return str(raw)


def extract_json(text: str) -> Any:
    """Decode the JSON payload in ``text``, tolerating code fences and surrounding prose."""

    cleaned = _FENCE_RE.sub("", text).strip()
    if not cleaned:
        raise GeneratorUnavailableError("Generator returned an empty response", raw_response=text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise GeneratorUnavailableError("Generator did not return JSON", raw_response=text)
    try:
        return json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        raise GeneratorUnavailableError(f"Generator returned invalid JSON: {exc}", raw_response=text) from exc


def _first(item: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def normalize_suggestion(item: Any, index: int = 0, *, raw_response: str | None = None) -> Dict[str, Any]:
    """Coerce one batch item into ``{title, rationale, skills, notes}`` or fail the batch."""

    if not isinstance(item, dict):
        raise GeneratorUnavailableError(f"Suggestion {index} is not an object", raw_response=raw_response)
    title = _first(item, TITLE_KEY, "title", "name")
    rationale = _first(item, RATIONALE_KEY, "why_it_works", "rationale")
    skills = _first(item, SKILLS_KEY, "skills_supported", "skills")
    missing = [label for label, value in (("title", title), ("rationale", rationale), ("skills", skills)) if value is None]
    if missing:
        raise GeneratorUnavailableError(
            f"Suggestion {index} is missing required fields: {', '.join(missing)}", raw_response=raw_response
        )
    title = str(title).strip()
    if not title:
        raise GeneratorUnavailableError(f"Suggestion {index} has a blank title", raw_response=raw_response)
    notes = _first(item, "Notes", "notes")
    if notes is not None:
        notes = str(notes).strip() or None
    return {"title": title, "rationale": str(rationale).strip(), "skills": skills, "notes": notes}


def parse_suggestion_batch(text: str) -> List[Dict[str, Any]]:
    """Return ``[{title, rationale, skills, notes}]``; any non-conforming item fails the whole batch."""

    payload = extract_json(text)
    if isinstance(payload, dict):
        items = payload.get("activity_suggestions")
        if items is None:
            items = next((value for value in payload.values() if isinstance(value, list)), None)
    else:
        items = payload
    if not isinstance(items, list) or not items:
        raise GeneratorUnavailableError("Generator response has no activity suggestions", raw_response=text)
    return [normalize_suggestion(item, index, raw_response=text) for index, item in enumerate(items)]


def normalize_home_activity(payload: Any, *, raw_response: str | None = None) -> Dict[str, Any]:
    """Check the required home-activity fields; title and description come back stripped."""

    if not isinstance(payload, dict):
        raise GeneratorUnavailableError("Home activity response is not an object", raw_response=raw_response)
    payload = dict(payload)
    for key in ("title", "description"):
        value = payload.get(key)
        if value is None or not str(value).strip():
            raise GeneratorUnavailableError(f"Home activity is missing '{key}'", raw_response=raw_response)
        payload[key] = str(value).strip()
    if not isinstance(payload.get("instructions"), list) or not payload["instructions"]:
        raise GeneratorUnavailableError("Invalid activity format from generator", raw_response=raw_response)
    return payload


def parse_home_activity(text: str) -> Dict[str, Any]:
    return normalize_home_activity(extract_json(text), raw_response=text)


def normalize_story(payload: Any, *, raw_response: str | None = None) -> Dict[str, str]:
    if not isinstance(payload, dict):
        raise GeneratorUnavailableError("Story response is not an object", raw_response=raw_response)
    story: Dict[str, str] = {}
    for key in ("title", "content"):
        value = payload.get(key)
        if value is None or not str(value).strip():
            raise GeneratorUnavailableError(f"Story is missing '{key}'", raw_response=raw_response)
        story[key] = str(value).strip()
    return story


def parse_story(text: str) -> Dict[str, str]:
    return normalize_story(extract_json(text), raw_response=text)


__all__ = [
    "LMSuggestionGenerator",
    "SuggestionGenerator",
    "extract_json",
    "normalize_home_activity",
    "normalize_lm_output",
    "normalize_story",
    "normalize_suggestion",
    "parse_home_activity",
    "parse_story",
    "parse_suggestion_batch",
]
