from __future__ import annotations

import json
import threading
import unittest
from unittest import mock

from acopilot.core.errors import GeneratorUnavailableError
from apps.suggestions.generator import (
    LMSuggestionGenerator,
    extract_json,
    normalize_home_activity,
    parse_home_activity,
    parse_story,
    parse_suggestion_batch,
)

BATCH = {
    "activity_suggestions": [
        {
            "Title of Activity": "Dinosaur Footprint Counting",
            "Why it works": "Combines a favourite theme with counting practice.",
            "Skills supported": [{"name": "Counting", "category": "Cognitive Skills"}],
        },
        {
            "Title of Activity": "Paint a Volcano",
            "Why it works": "Open-ended painting.",
            "Skills supported": ["Creative Arts/Expression Skills: Painting"],
        },
    ]
}


class ParseSuggestionBatchTests(unittest.TestCase):
    def test_parses_fenced_json(self) -> None:
        text = "Here you go:\n```json\n" + json.dumps(BATCH) + "\n```"
        items = parse_suggestion_batch(text)

        self.assertEqual([item["title"] for item in items], ["Dinosaur Footprint Counting", "Paint a Volcano"])
        self.assertEqual(items[1]["skills"], ["Creative Arts/Expression Skills: Painting"])

    def test_accepts_snake_case_keys_and_bare_lists(self) -> None:
        text = json.dumps([{"title": "Sock Sorting", "why_it_works": "Matching.", "skills": "Cognitive: Sorting"}])
        items = parse_suggestion_batch(text)
        self.assertEqual(items[0]["rationale"], "Matching.")

    def test_missing_required_field_fails_whole_batch(self) -> None:
        broken = {"activity_suggestions": [BATCH["activity_suggestions"][0], {"Title of Activity": "No rationale"}]}
        with self.assertRaises(GeneratorUnavailableError) as ctx:
            parse_suggestion_batch(json.dumps(broken))
        self.assertIn("missing required fields", str(ctx.exception))
        self.assertIsNotNone(ctx.exception.raw_response)

    def test_invalid_json_keeps_raw_response(self) -> None:
        with self.assertRaises(GeneratorUnavailableError) as ctx:
            extract_json("I'm sorry, I cannot help with that.")
        self.assertEqual(ctx.exception.raw_response, "I'm sorry, I cannot help with that.")

    def test_empty_batch_is_a_failure(self) -> None:
        with self.assertRaises(GeneratorUnavailableError):
            parse_suggestion_batch('{"activity_suggestions": []}')

    def test_whitespace_title_fails_whole_batch(self) -> None:
        blank = {"title": "   ", "rationale": "Looks fine otherwise.", "skills": "Cognitive: Sorting"}
        with self.assertRaises(GeneratorUnavailableError) as ctx:
            parse_suggestion_batch(json.dumps([BATCH["activity_suggestions"][0], blank]))
        self.assertIn("blank title", str(ctx.exception))

    def test_notes_are_coerced_to_text(self) -> None:
        items = parse_suggestion_batch(
            json.dumps(
                [
                    {"title": "Sock Sorting", "rationale": "Matching.", "skills": "Cognitive: Sorting", "notes": 3},
                    {"title": "Cup Towers", "rationale": "Stacking.", "skills": "Physical: Balance", "Notes": "  "},
                ]
            )
        )
        self.assertEqual(items[0]["notes"], "3")
        self.assertIsNone(items[1]["notes"])


class ParseHomeActivityTests(unittest.TestCase):
    def test_requires_title_description_and_instructions(self) -> None:
        payload = {"title": "Chalk Maze", "description": "Draw a maze", "instructions": ["Draw", "Walk"]}
        self.assertEqual(parse_home_activity(json.dumps(payload))["title"], "Chalk Maze")

        del payload["instructions"]
        with self.assertRaises(GeneratorUnavailableError):
            parse_home_activity(json.dumps(payload))

    def test_blank_title_or_empty_steps_are_rejected(self) -> None:
        base = {"title": " Chalk Maze ", "description": "Draw a maze", "instructions": ["Draw"]}
        self.assertEqual(normalize_home_activity(base)["title"], "Chalk Maze")
        self.assertEqual(base["title"], " Chalk Maze ")

        for override in ({"title": "  "}, {"description": None}, {"instructions": []}, {"instructions": "Draw"}):
            with self.subTest(override=override):
                with self.assertRaises(GeneratorUnavailableError):
                    normalize_home_activity({**base, **override})


class ParseStoryTests(unittest.TestCase):
    def test_takes_first_json_object_from_prose(self) -> None:
        text = 'Sure! {"title": " Sponge Stars ", "content": "Mia painted stars."} Hope you like it.'
        self.assertEqual(parse_story(text), {"title": "Sponge Stars", "content": "Mia painted stars."})

    def test_blank_or_missing_fields_are_rejected(self) -> None:
        for payload in ({"title": "Sponge Stars"}, {"title": " ", "content": "Mia painted."}, ["not", "an", "object"]):
            with self.subTest(payload=payload):
                with self.assertRaises(GeneratorUnavailableError):
                    parse_story(json.dumps(payload))


class LMSuggestionGeneratorTests(unittest.TestCase):
    def test_passes_generation_parameters_and_joins_list_output(self) -> None:
        lm = mock.Mock(return_value=[json.dumps(BATCH)])
        generator = LMSuggestionGenerator(lm, timeout_seconds=5)

        items = generator.generate("prompt", temperature=0.4, max_tokens=512)

        lm.assert_called_once_with(prompt="prompt", temperature=0.4, max_tokens=512)
        self.assertEqual(len(items), 2)

    def test_story_goes_through_the_same_bounded_call(self) -> None:
        lm = mock.Mock(return_value='```json\n{"title": "Bubble Day", "content": "Mia chased bubbles."}\n```')

        story = LMSuggestionGenerator(lm).generate_story("prompt", temperature=0.8, max_tokens=1024)

        lm.assert_called_once_with(prompt="prompt", temperature=0.8, max_tokens=1024)
        self.assertEqual(story["title"], "Bubble Day")

    def test_transport_errors_become_generator_unavailable(self) -> None:
        lm = mock.Mock(side_effect=ConnectionError("boom"))
        with self.assertRaises(GeneratorUnavailableError):
            LMSuggestionGenerator(lm).generate("prompt", temperature=1.0, max_tokens=64)

    def test_wait_is_bounded(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)

        def slow_lm(**_kwargs):
            release.wait(5)
            return json.dumps(BATCH)

        generator = LMSuggestionGenerator(slow_lm, timeout_seconds=0.05)
        with self.assertRaises(GeneratorUnavailableError) as ctx:
            generator.generate("prompt", temperature=1.0, max_tokens=64)
        self.assertIn("timed out", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
