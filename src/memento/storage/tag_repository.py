"""Repository for tag storage and retrieval."""
import logging
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from memento.exceptions import ErrorCode, NoteNotFoundError, StorageError, TagError
from memento.models.db_models import DBNote, DBTag, note_tags
from memento.models.schema import Tag, format_tag_names, normalize_tag_name, utc_now
from memento.storage.tag_cleanup import TagGarbageCollector
from memento.utils import contains_pattern

logger = logging.getLogger(__name__)


def find_tag_by_name(session: Session, tag_name: str) -> Optional[DBTag]:
    """Look a tag up by name, ignoring case."""
    return session.scalar(
        select(DBTag)
        .where(func.casefold(DBTag.name) == normalize_tag_name(tag_name))
        .order_by(DBTag.id)
        .limit(1)
    )


def get_or_create_tag(session: Session, tag_name: str) -> DBTag:
    """Return the tag with this name, adding a new one if there is none."""
    name = tag_name.strip()
    db_tag = find_tag_by_name(session, name)
    if db_tag is None:
        db_tag = DBTag(name=name)
        session.add(db_tag)
    return db_tag


def refresh_tag_text(db_note: DBNote) -> None:
    """Rewrite a note's tag string from its current tags."""
    db_note.tag_text = format_tag_names(t.name for t in db_note.tags)


class TagRepository:
    """Repository for managing tags.

    Provides CRUD operations for tags. Any operation that detaches a tag
    from a note hands it to the garbage collector afterwards.
    """

    def __init__(self, session_factory, tag_collector: Optional[TagGarbageCollector] = None):
        """Initialize the tag repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
            tag_collector: Orphaned tag collector. A default one is created if omitted.
        """
        self.session_factory = session_factory
        self.tag_collector = tag_collector or TagGarbageCollector()

    def get(self, tag_name: str) -> Optional[Tag]:
        with self.session_factory() as session:
            db_tag = find_tag_by_name(session, tag_name)
            if not db_tag:
                return None
            return Tag(name=db_tag.name)

    def get_all(self) -> List[Tag]:
        """Get all tags, sorted by name ignoring case."""
        with self.session_factory() as session:
            db_tags = session.scalars(select(DBTag)).all()
            names = sorted((t.name for t in db_tags), key=lambda n: (n.casefold(), n))
        return [Tag(name=name) for name in names]

    def get_with_counts(self) -> Dict[str, int]:
        """Get all tags with their usage counts.

        Returns:
            Dictionary mapping tag names to their note counts.
        """
        with self.session_factory() as session:
            result = session.execute(
                select(DBTag.name, func.count(note_tags.c.note_pk))
                .select_from(DBTag)
                .outerjoin(note_tags, DBTag.id == note_tags.c.tag_id)
                .group_by(DBTag.name)
            ).all()

            return {name: count for name, count in result}

    def search(self, text: str) -> List[Tag]:
        """Find tags whose name contains ``text``, ignoring case."""
        text = text.strip()
        if not text:
            return self.get_all()
        with self.session_factory() as session:
            names = session.scalars(
                select(DBTag.name).where(
                    func.casefold(DBTag.name).like(
                        contains_pattern(text.casefold()), escape="\\"
                    )
                )
            ).all()
        return [Tag(name=n) for n in sorted(names, key=lambda n: (n.casefold(), n))]

    def find_note_ids_by_tag(self, tag_name: str) -> List[str]:
        with self.session_factory() as session:
            db_tag = find_tag_by_name(session, tag_name)
            if not db_tag:
                return []
            return sorted(n.id for n in db_tag.notes)

    def _load_note(self, session: Session, note_id: str) -> DBNote:
        db_note = session.scalar(select(DBNote).where(DBNote.id == note_id))
        if not db_note:
            raise NoteNotFoundError(note_id)
        return db_note

    def _commit(self, session: Session, operation: str) -> None:
        try:
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(
                f"Failed to {operation.replace('_', ' ')}",
                operation=operation,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def add_tag_to_note(self, note_id: str, tag_name: str) -> None:
        """Add a tag to a note, creating the tag if needed."""
        if not tag_name.strip():
            raise TagError("Tag name cannot be empty")
        with self.session_factory() as session:
            db_note = self._load_note(session, note_id)
            db_tag = get_or_create_tag(session, tag_name)
            if db_tag not in db_note.tags:
                db_note.tags.append(db_tag)
                refresh_tag_text(db_note)
                db_note.updated_at = utc_now()
                self._commit(session, "add_tag")

    def remove_tag_from_note(self, note_id: str, tag_name: str) -> bool:
        """Remove a tag from a note.

        The tag is deleted too when no other note carries it.

        Returns:
            True if the tag was removed, False if it wasn't present.
        """
        with self.session_factory() as session:
            db_note = self._load_note(session, note_id)
            db_tag = find_tag_by_name(session, tag_name)
            if not db_tag or db_tag not in db_note.tags:
                return False

            db_note.tags.remove(db_tag)
            refresh_tag_text(db_note)
            db_note.updated_at = utc_now()
            self._commit(session, "remove_tag")

            self.tag_collector.handle_tag_removed_from_note(session, db_tag)
            return True

    def delete(self, tag_name: str) -> bool:
        """Delete a tag and detach it from every note carrying it."""
        with self.session_factory() as session:
            db_tag = find_tag_by_name(session, tag_name)
            if not db_tag:
                return False
            for db_note in list(db_tag.notes):
                db_note.tags.remove(db_tag)
                refresh_tag_text(db_note)
            session.delete(db_tag)
            self._commit(session, "delete_tag")
            logger.info(f"Deleted tag: {tag_name}")
            return True

    def rename(self, tag_name: str, new_name: str) -> Tag:
        """Rename a tag, merging it into an existing tag of the new name.

        Raises:
            TagError: If the new name is blank or the tag doesn't exist.
        """
        new_name = new_name.strip()
        if not new_name:
            raise TagError("Tag name cannot be empty", tag_name=tag_name)

        with self.session_factory() as session:
            db_tag = find_tag_by_name(session, tag_name)
            if not db_tag:
                raise TagError(
                    f"Tag '{tag_name}' not found",
                    tag_name=tag_name,
                    code=ErrorCode.TAG_NOT_FOUND,
                )

            # Same name ignoring case: nothing to do
            if db_tag.name.casefold() == new_name.casefold():
                return Tag(name=db_tag.name)

            existing = find_tag_by_name(session, new_name)
            if existing is None:
                db_tag.name = new_name
                for db_note in db_tag.notes:
                    refresh_tag_text(db_note)
                self._commit(session, "rename_tag")
                return Tag(name=new_name)

            self._merge(db_tag, existing)
            session.delete(db_tag)
            self._commit(session, "merge_tag")
            logger.info(f"Merged tag '{tag_name}' into '{existing.name}'")
            return Tag(name=existing.name)

    @staticmethod
    def _merge(source: DBTag, target: DBTag) -> None:
        for db_note in list(source.notes):
            db_note.tags.remove(source)
            if target not in db_note.tags:
                db_note.tags.append(target)
            refresh_tag_text(db_note)

    def delete_unused(self) -> int:
        """Delete tags that are not associated with any notes.

        Returns:
            Number of tags deleted.
        """
        with self.session_factory() as session:
            try:
                return self.tag_collector.sweep(session)
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(
                    "Failed to delete unused tags",
                    operation="delete_unused_tags",
                    code=ErrorCode.STORAGE_DELETE_FAILED,
                    original_error=e,
                ) from e
