"""SQLite persistence for student documents."""

from .documents import Collection, DuplicateActivityError, StudentDocumentStore
from .storage import StudentStore

__all__ = ["Collection", "DuplicateActivityError", "StudentDocumentStore", "StudentStore"]
