"""
Configuration, error taxonomy, domain models, and provenance logging.

Nothing here touches the store or the LM, so every other package can import
it first.
"""

from .config import AppConfig, FallbackConfig, GeneratorConfig, load_app_config
from .errors import ActivityError, ErrorKind
from .models import Activity, ActivityOptions, ActivityState, SkillCategory, SkillTag, StudentProfile, SupervisionLevel
from .provenance import ProvenanceEvent, ProvenanceLogger

__all__ = [
    "Activity",
    "ActivityError",
    "ActivityOptions",
    "ActivityState",
    "AppConfig",
    "ErrorKind",
    "FallbackConfig",
    "GeneratorConfig",
    "ProvenanceEvent",
    "ProvenanceLogger",
    "SkillCategory",
    "SkillTag",
    "StudentProfile",
    "SupervisionLevel",
    "load_app_config",
]
