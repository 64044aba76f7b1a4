"""Service layer for note and tag operations."""

import logging
from typing import Dict, List, Optional, Sequence

from memento.exceptions import ErrorCode, NoteNotFoundError, NoteValidationError
from memento.models.schema import Note, SortOption, Tag, utc_now
from memento.observability import traced
from memento.storage.note_repository import NoteRepository
from memento.storage.tag_cleanup import TagGarbageCollector
from memento.storage.tag_repository import TagRepository

logger = logging.getLogger(__name__)


class NoteService:
    """Application-facing operations on notes and tags.

    Takes plain values from the caller (titles, bodies, tag strings),
    validates them and delegates to the repositories, which share one
    tag garbage collector.
    """

    def __init__(
        self,
        repository: NoteRepository,
        tag_repository: Optional[TagRepository] = None,
    ):
        self.repository = repository
        self.tag_repository = tag_repository or TagRepository(
            repository.session_factory, tag_collector=repository.tag_collector
        )

    @property
    def tag_collector(self) -> TagGarbageCollector:
        return self.repository.tag_collector

    @staticmethod
    def _check_title(title: str) -> str:
        if title is None or not title.strip():
            raise NoteValidationError(
                "Title is required",
                field="title",
                code=ErrorCode.NOTE_TITLE_REQUIRED,
            )
        return title

    @traced("create_note")
    def create_note(self, title: str, body: str = "", tag_text: str = "") -> Note:
        """Create a note; ``tag_text`` is a comma-separated tag string."""
        note = Note(title=self._check_title(title), body=body or "")
        note.set_tag_text(tag_text)
        note.updated_at = note.created_at
        return self.repository.create(note)

    @traced("get_note")
    def get_note(self, note_id: str) -> Optional[Note]:
        return self.repository.get(note_id)

    def _require(self, note_id: str) -> Note:
        note = self.repository.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    @traced("update_note")
    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
        tag_text: Optional[str] = None,
    ) -> Note:
        """Update the given fields of a note.

        Passing ``tag_text`` replaces the note's whole tag set. Tags that
        end up without notes are deleted.

        Raises:
            NoteNotFoundError: If the note doesn't exist.
            NoteValidationError: If the new title is blank.
        """
        note = self._require(note_id)
        if title is not None:
            note.title = self._check_title(title)
        if body is not None:
            note.body = body
        if tag_text is not None:
            note.set_tag_text(tag_text)
        note.updated_at = utc_now()
        return self.repository.update(note)

    @traced("delete_note")
    def delete_note(self, note_id: str) -> None:
        self.repository.delete(note_id)

    @traced("delete_notes")
    def delete_notes(self, note_ids: Sequence[str]) -> int:
        return self.repository.delete_many(note_ids)

    @traced("toggle_pin")
    def toggle_pin(self, note_id: str) -> Note:
        note = self._require(note_id)
        return self.repository.set_pinned(note_id, not note.pinned)

    @traced("list_notes")
    def list_notes(self, sort: SortOption = SortOption.CREATED_AT) -> List[Note]:
        return self.repository.get_all(sort)

    @traced("search_notes")
    def search_notes(self, text: str, sort: SortOption = SortOption.CREATED_AT) -> List[Note]:
        return self.repository.search(text, sort)

    @traced("find_notes_by_tag")
    def find_notes_by_tag(self, tag: str, sort: SortOption = SortOption.CREATED_AT) -> List[Note]:
        return self.repository.find_by_tag(tag, sort)

    @traced("add_tag")
    def add_tag(self, note_id: str, tag: str) -> Note:
        self.tag_repository.add_tag_to_note(note_id, tag)
        return self._require(note_id)

    @traced("remove_tag")
    def remove_tag(self, note_id: str, tag: str) -> Note:
        self.tag_repository.remove_tag_from_note(note_id, tag)
        return self._require(note_id)

    @traced("get_all_tags")
    def get_all_tags(self) -> List[Tag]:
        return self.tag_repository.get_all()

    @traced("get_tags_with_counts")
    def get_tags_with_counts(self) -> Dict[str, int]:
        return self.tag_repository.get_with_counts()

    @traced("search_tags")
    def search_tags(self, text: str) -> List[Tag]:
        return self.tag_repository.search(text)

    @traced("rename_tag")
    def rename_tag(self, tag: str, new_name: str) -> Tag:
        return self.tag_repository.rename(tag, new_name)

    @traced("delete_tag")
    def delete_tag(self, tag: str) -> bool:
        return self.tag_repository.delete(tag)

    @traced("cleanup_tags")
    def cleanup_tags(self) -> int:
        """Delete every tag that has no notes left."""
        removed = self.tag_repository.delete_unused()
        if removed:
            logger.info(f"Removed {removed} unused tags")
        return removed
