"""Storage layer for the Memento note store."""

from memento.storage.id_resolver import NoteIDManager
from memento.storage.note_repository import NoteRepository
from memento.storage.persistence import PersistenceController
from memento.storage.tag_cleanup import TagGarbageCollector
from memento.storage.tag_repository import TagRepository

__all__ = [
    "NoteIDManager",
    "NoteRepository",
    "PersistenceController",
    "TagGarbageCollector",
    "TagRepository",
]
