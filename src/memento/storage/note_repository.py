"""Repository for note storage and retrieval."""

import logging
from datetime import timezone
from typing import List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from memento.exceptions import (
    ErrorCode,
    IdentifierCollisionError,
    NoteNotFoundError,
    StorageError,
)
from memento.models.db_models import DBNote, DBTag
from memento.models.schema import (
    Note,
    SortOption,
    Tag,
    ensure_timezone_aware,
    normalize_tag_name,
    sort_notes,
)
from memento.storage.id_resolver import NoteIDManager
from memento.storage.tag_cleanup import TagGarbageCollector
from memento.storage.tag_repository import get_or_create_tag
from memento.utils import contains_pattern

logger = logging.getLogger(__name__)


class NoteRepository:
    """Repository for note storage and retrieval.

    Writes are guarded two ways:
    1. A note whose identifier is already taken is rejected by the unique
       index and re-identified by the ``NoteIDManager`` before one retry.
    2. Every mutation that detaches tags ends by passing those tags to the
       ``TagGarbageCollector``, so no tag outlives its last note.
    """

    def __init__(
        self,
        session_factory,
        id_manager: Optional[NoteIDManager] = None,
        tag_collector: Optional[TagGarbageCollector] = None,
    ):
        """Initialize the repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
            id_manager: Identifier generator and collision resolver.
            tag_collector: Orphaned tag collector.
        """
        self.session_factory = session_factory
        self.id_manager = id_manager or NoteIDManager()
        self.tag_collector = tag_collector or TagGarbageCollector()

    # -- Conversion ---------------------------------------------------------

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a SQLAlchemy DBNote to a domain Note."""
        names = sorted((t.name for t in (db_note.tags or [])), key=lambda n: (n.casefold(), n))
        return Note(
            id=db_note.id,
            title=db_note.title,
            body=db_note.body or "",
            tag_text=db_note.tag_text or "",
            tags=[Tag(name=n) for n in names],
            pinned=bool(db_note.pinned),
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at or db_note.created_at),
        )

    @staticmethod
    def _apply_note(session: Session, db_note: DBNote, note: Note) -> None:
        """Copy a domain Note's fields and tag set onto a row."""
        db_note.id = note.id
        db_note.title = note.title
        db_note.body = note.body
        db_note.tag_text = note.tag_text
        db_note.pinned = note.pinned
        db_note.created_at = ensure_timezone_aware(note.created_at).astimezone(timezone.utc)
        db_note.updated_at = ensure_timezone_aware(note.updated_at).astimezone(timezone.utc)

        tags: List[DBTag] = []
        for tag in note.tags:
            db_tag = get_or_create_tag(session, tag.name)
            if db_tag not in tags:
                tags.append(db_tag)
        db_note.tags = tags

    @staticmethod
    def _load(session: Session, note_id: str) -> Optional[DBNote]:
        return session.scalar(
            select(DBNote)
            .options(selectinload(DBNote.tags))
            .where(DBNote.id == note_id)
        )

    # -- Writes -------------------------------------------------------------

    def _insert(self, notes: Sequence[Note], operation: str) -> List[Note]:
        """Insert notes in one transaction, repairing identifier collisions.

        A note object listed more than once is stored once.
        """
        unique = list({id(note): note for note in notes}.values())
        if len(unique) < len(notes):
            logger.warning(
                f"{operation}: ignoring {len(notes) - len(unique)} repeated note object(s)"
            )
        notes = unique

        for note in notes:
            self.id_manager.ensure_note_has_id(note)

        with self.session_factory() as session:
            def write() -> None:
                for note in notes:
                    db_note = DBNote()
                    session.add(db_note)
                    # Scalar fields are set before the first tag lookup autoflushes
                    self._apply_note(session, db_note, note)
                session.commit()

            try:
                write()
            except SQLAlchemyError as e:
                if self.id_manager.handle_save_error(e, session, notes, write):
                    logger.info(f"{operation}: saved after repairing duplicate note IDs")
                    return list(notes)
                session.rollback()
                if self.id_manager.is_uniqueness_violation(e):
                    raise IdentifierCollisionError(
                        "Could not repair duplicate note identifiers",
                        note_ids=[n.id for n in notes],
                        original_error=e,
                    ) from e
                raise StorageError(
                    f"Failed to save {len(notes)} note(s)",
                    operation=operation,
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e
        return list(notes)

    def create(self, note: Note) -> Note:
        """Create a new note.

        If the note's identifier is already taken it is given a new one;
        the returned note carries the identifier it was stored under.
        """
        return self._insert([note], "create")[0]

    def create_many(self, notes: Sequence[Note]) -> List[Note]:
        """Create several notes in a single transaction."""
        if not notes:
            return []
        saved = self._insert(list(notes), "create_many")
        logger.info(f"Created {len(saved)} notes")
        return saved

    def update(self, note: Note) -> Note:
        """Replace a stored note's fields and tags.

        Tags the note no longer carries are removed from the store if no
        other note uses them.

        Raises:
            NoteNotFoundError: If no note has this identifier.
        """
        with self.session_factory() as session:
            db_note = self._load(session, note.id)
            if not db_note:
                raise NoteNotFoundError(note.id)

            previous = list(db_note.tags)
            self._apply_note(session, db_note, note)
            try:
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(
                    f"Failed to update note {note.id}",
                    operation="update",
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e

            current = set(db_note.tags)
            detached = [t for t in previous if t not in current]
            if detached:
                self.tag_collector.collect(session, detached, reason="retagging")

            return self._db_note_to_model(self._load(session, note.id))

    def set_pinned(self, note_id: str, pinned: bool) -> Note:
        with self.session_factory() as session:
            db_note = self._load(session, note_id)
            if not db_note:
                raise NoteNotFoundError(note_id)
            db_note.pinned = pinned
            try:
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(
                    f"Failed to update pin status of note {note_id}",
                    operation="set_pinned",
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e
            return self._db_note_to_model(db_note)

    def delete(self, id: str) -> None:
        """Delete a note by ID.

        Tags left without notes are removed afterwards; a failure there is
        logged and does not undo the delete.

        Raises:
            NoteNotFoundError: If no note has this identifier.
        """
        with self.session_factory() as session:
            db_note = self._load(session, id)
            if not db_note:
                raise NoteNotFoundError(id)

            former_tags = list(db_note.tags)
            session.delete(db_note)
            try:
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(
                    f"Failed to delete note {id}",
                    operation="delete",
                    code=ErrorCode.STORAGE_DELETE_FAILED,
                    original_error=e,
                ) from e

            self.tag_collector.handle_note_deleted(session, former_tags)

    def delete_many(self, note_ids: Sequence[str]) -> int:
        """Delete several notes in one transaction.

        Unknown identifiers are skipped. The tags of all deleted notes are
        checked for orphans together afterwards.

        Returns:
            Number of notes deleted.
        """
        if not note_ids:
            return 0

        with self.session_factory() as session:
            db_notes = session.scalars(
                select(DBNote)
                .options(selectinload(DBNote.tags))
                .where(DBNote.id.in_(list(note_ids)))
            ).all()

            found = {n.id for n in db_notes}
            for missing in sorted(set(note_ids) - found):
                logger.warning(f"Note {missing} not found for delete_many")

            former_tags = []
            for db_note in db_notes:
                former_tags.extend(db_note.tags)
                session.delete(db_note)
            try:
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(
                    f"Failed to delete {len(db_notes)} notes",
                    operation="delete_many",
                    code=ErrorCode.STORAGE_DELETE_FAILED,
                    original_error=e,
                ) from e

            self.tag_collector.handle_note_deleted(session, former_tags)
            logger.info(f"delete_many: deleted {len(db_notes)} notes")
            return len(db_notes)

    # -- Reads --------------------------------------------------------------

    def get(self, id: str) -> Optional[Note]:
        """Get a note by ID, or None if there is none."""
        with self.session_factory() as session:
            db_note = self._load(session, id)
            if not db_note:
                return None
            return self._db_note_to_model(db_note)

    def exists(self, id: str) -> bool:
        with self.session_factory() as session:
            return session.scalar(select(DBNote.pk).where(DBNote.id == id)) is not None

    def count(self) -> int:
        with self.session_factory() as session:
            return session.scalar(select(func.count(DBNote.pk))) or 0

    def _select_notes(self, *criteria) -> List[Note]:
        with self.session_factory() as session:
            db_notes = session.scalars(
                select(DBNote).options(selectinload(DBNote.tags)).where(*criteria)
            ).all()
            return [self._db_note_to_model(n) for n in db_notes]

    def get_all(self, sort: SortOption = SortOption.CREATED_AT) -> List[Note]:
        return sort_notes(self._select_notes(), sort)

    def search(self, text: str, sort: SortOption = SortOption.CREATED_AT) -> List[Note]:
        """Find notes whose title, body or tag names contain ``text``.

        Matching ignores case. A leading ``#`` searches tag names only.
        """
        text = (text or "").strip()
        if not text or text == "#":
            return self.get_all(sort)

        if text.startswith("#"):
            pattern = contains_pattern(text[1:].strip().casefold())
            criteria = DBNote.tags.any(
                func.casefold(DBTag.name).like(pattern, escape="\\")
            )
        else:
            pattern = contains_pattern(text.casefold())
            criteria = or_(
                func.casefold(DBNote.title).like(pattern, escape="\\"),
                func.casefold(DBNote.body).like(pattern, escape="\\"),
                DBNote.tags.any(func.casefold(DBTag.name).like(pattern, escape="\\")),
            )
        return sort_notes(self._select_notes(criteria), sort)

    def find_by_tag(self, tag: str, sort: SortOption = SortOption.CREATED_AT) -> List[Note]:
        """Get the notes carrying a tag (name compared ignoring case)."""
        criteria = DBNote.tags.any(func.casefold(DBTag.name) == normalize_tag_name(tag))
        return sort_notes(self._select_notes(criteria), sort)
