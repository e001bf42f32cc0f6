"""Prompt text sent to the external suggestion generator."""

from __future__ import annotations

import json
from textwrap import dedent
from typing import Any, Dict, List, Sequence

from acopilot.core.errors import MissingPreconditionError
from acopilot.core.models import ActivityOptions, StudentContext

from .taxonomy import ALLOWED_CATEGORIES

TITLE_KEY = "Title of Activity"
RATIONALE_KEY = "Why it works"
SKILLS_KEY = "Skills supported"


def _history_payload(context: StudentContext) -> List[Dict[str, Any]]:
    return [
        {
            "name": entry.title,
            "result": entry.result or "unknown",
            "difficulty_level": entry.difficulty_level or "unknown",
            "notes": entry.notes or "",
        }
        for entry in context.activity_history
    ]


class PromptComposer:
    """Builds generator prompts from a student context and the session's exclusions.

    The first round for a student carries the full context; follow-up rounds in
    the same session only ask for more suggestions and restate the exclusions.
    """

    def __init__(self, *, batch_size: int = 5) -> None:
        self.batch_size = batch_size

    def compose(self, context: StudentContext, exclusion_titles: Sequence[str], *, follow_up: bool = False) -> str:
        recent = context.recent_activity
        if recent is None or not recent.is_complete:
            raise MissingPreconditionError(
                f"Student {context.student_id} needs a complete recent activity before requesting suggestions"
            )

        exclusions = list(exclusion_titles)
        if follow_up:
            request = (
                "With the same instructions and the same recent_activity as before, "
                f"give me {self.batch_size} more activity suggestions."
            )
            if exclusions:
                request += f" Do not repeat any of these: {', '.join(exclusions)}."
            return f"{request}\n\n{self.instructions()}"

        student_block = json.dumps(self._context_payload(context), indent=2)
        other_than = f"\n\nOther than: {', '.join(exclusions)}." if exclusions else ""
        return f"{student_block}{other_than}\n\n{self.instructions()}"

    def instructions(self) -> str:
        categories = ", ".join(f"'{category}'" for category in ALLOWED_CATEGORIES)
        return dedent(
            f"""
            You are an expert in early childhood development, specializing in creating engaging and
            developmentally appropriate activities for young children. Provide diverse activity
            suggestions tailored to the child's individual needs and recent performance.

            Analyze the recent_activity result.
            If the child failed the activity, provide {self.batch_size} diverse activity options that build
            towards success in the same skill area, prioritizing the recent_activity observations.
            If the child succeeded, provide {self.batch_size} diverse activity options that help them grow further.
            In both cases consider developmental_stage, goals, interests, energy_level, and social_behavior,
            and vary the type of play, skill focus, and materials.

            For each activity provide only: "{TITLE_KEY}" (string), "{RATIONALE_KEY}" (string), and
            "{SKILLS_KEY}" (array of objects of the form {{"name": "Skill Name", "category": "Category"}}).
            The skill name may be anything (e.g. 'Empathy', 'Counting', 'Jumping') but the category must be
            exactly one of: {categories}. Do not invent new categories.

            Output JSON only, using this schema:
            {{"activity_suggestions": [{{"{TITLE_KEY}": "String", "{RATIONALE_KEY}": "String", "{SKILLS_KEY}": [{{"name": "String", "category": "String"}}]}}]}}
            """
        ).strip()

    def compose_home_activity(
        self,
        context: StudentContext,
        options: ActivityOptions,
        exclusion_titles: Sequence[str],
        *,
        age_label: str,
    ) -> str:
        """Prompt for a single at-home activity shaped by the caller's options."""

        interests = ", ".join(context.interests)
        child_lines = [f"- Age: {age_label}"]
        if interests:
            child_lines.append(f"- Interests: {interests}")
        if context.personality:
            child_lines.append(f"- Personality: {context.personality}")
        if context.developmental_stage:
            child_lines.append(f"- Developmental Focus: {context.developmental_stage}")
        if options.dislikes:
            child_lines.append(f"- Things to Avoid: {options.dislikes}")

        requirement_lines = [
            f"- Location: {options.location}",
            f"- Duration: {options.duration}",
            f"- Number of Children: {options.number_of_children}",
        ]
        if options.supervision is not None:
            requirement_lines.append(f"- Adult Supervision: {options.supervision.value}")
        for label, value in (
            ("Parent Available Time", options.available_time),
            ("Available Materials", options.available_materials),
            ("Learning Goals", options.learning_goals),
            ("Preferred Activity Type", options.activity_type),
        ):
            if value:
                requirement_lines.append(f"- {label}: {value}")

        avoid_block = ""
        exclusions = list(exclusion_titles)
        if exclusions:
            numbered = "\n".join(f'{index}. "{title}"' for index, title in enumerate(exclusions, start=1))
            avoid_block = (
                "\nIMPORTANT: Do NOT create activities similar to these previously generated ones:\n"
                f"{numbered}\n"
                "Create a completely different type of activity that is unique and distinct from the above.\n"
            )

        child_block = "\n".join(child_lines)
        requirement_block = "\n".join(requirement_lines)
        schema = (
            '{"title": "Activity Title", "description": "Brief description", '
            '"materials": ["..."], "instructions": ["step 1", "step 2"], '
            '"learningOutcomes": ["..."], "tips": ["..."], '
            '"skills": [{"name": "Skill Name", "category": "Category"}]}'
        )
        categories = ", ".join(ALLOWED_CATEGORIES)
        return (
            "You are an expert early childhood educator creating personalized educational activities "
            "for children to do at home.\n\n"
            f"Child Information:\n{child_block}\n\n"
            f"Activity Requirements:\n{requirement_block}\n"
            f"{avoid_block}\n"
            f"Create one engaging, safe, age-appropriate activity suitable for a {options.location.lower()} setting "
            f"that fits within {options.duration}, with clear step-by-step instructions, learning outcomes, "
            "and tips for parents or caregivers. Use common household items unless materials are listed.\n"
            f"Skill categories must be one of: {categories}.\n\n"
            f"Respond with a JSON object only, using this structure:\n{schema}"
        )

    def compose_story(
        self,
        story_context: str,
        *,
        student_name: str | None = None,
        age_label: str | None = None,
    ) -> str:
        """Prompt for a short parent-facing story; without a name it reads as a classroom sample."""

        if not story_context.strip():
            raise MissingPreconditionError("A story needs a context describing what happened")
        details = []
        if student_name:
            details.append(f"Child's Name: {student_name}")
            if age_label:
                details.append(f"Age: {age_label}")
        details.append(f"Context/Scenario: {story_context.strip()}")
        detail_block = "\n".join(details)
        return dedent(
            """
            You are an expert story writer at a daycare specializing in creating engaging, age-appropriate
            stories for the parents and guardians of children and toddlers.

            Create a personalized story based on the following details:

            {details}

            Story Requirements:
            1. The story should be engaging and appropriate for the parents of the child.
            2. Follow the provided context as the main theme of the story.
            3. Keep the story positive, educational, fun and a means to convey the activity to the parent.
            4. The story should be between 100-200 words.
            5. Include a clear beginning, middle, and end.
            6. Be creative but do not digress from the main context too much.
            7. The story is a post telling the parent what their child did today, in a creative, engaging,
               and professional manner.
            8. DO NOT create characters.

            Respond with a JSON object only, using this structure:
            {{"title": "The Title of the Story", "content": "The full story content here..."}}
            """
        ).strip().format(details=detail_block)

    @staticmethod
    def _context_payload(context: StudentContext) -> Dict[str, Any]:
        recent = context.recent_activity
        return {
            "toddler_description": context.description or "unknown",
            "name": context.name,
            "age_months": context.age_months,
            "age_band": context.age_band,
            "personality": context.personality or "unknown",
            "developmental_stage": context.developmental_stage or "unknown",
            "recent_activity": recent.model_dump() if recent else None,
            "interests": list(context.interests),
            "preferred_learning_style": context.preferred_learning_style or "unknown",
            "social_behavior": context.social_behavior or "unknown",
            "energy_level": context.energy_level or "unknown",
            "goals": list(context.goals),
            "activity_history": _history_payload(context),
        }


__all__ = ["PromptComposer", "RATIONALE_KEY", "SKILLS_KEY", "TITLE_KEY"]
