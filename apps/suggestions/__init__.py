"""Activity suggestion lifecycle: generation rounds, fallback templates, and saved/discarded collections."""

from .fallback import FallbackRuleEngine
from .generator import LMSuggestionGenerator, SuggestionGenerator
from .lifecycle import ActivityLifecycleStore
from .prompting import PromptComposer
from .service import ActivitySuggestionService
from .session import DeduplicationTracker, SessionRegistry, SuggestionSession
from .taxonomy import normalize_skills, resolve_category

__all__ = [
    "ActivityLifecycleStore",
    "ActivitySuggestionService",
    "DeduplicationTracker",
    "FallbackRuleEngine",
    "LMSuggestionGenerator",
    "PromptComposer",
    "SessionRegistry",
    "SuggestionGenerator",
    "SuggestionSession",
    "normalize_skills",
    "resolve_category",
]
