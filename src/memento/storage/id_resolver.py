"""Note identifier generation and duplicate-identifier repair.

The ``notes.id`` column carries a unique index, so the store itself
refuses a second note with an identifier it already holds. This module
reacts to that refusal: it finds the notes sharing an identifier, gives
every note after the first a fresh one, and retries the write once.
"""
import logging
from typing import Callable, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from memento.models.db_models import DBNote
from memento.models.schema import generate_id

logger = logging.getLogger(__name__)

# What SQLite reports when the note identifier index rejects a row
NOTE_ID_VIOLATION = "UNIQUE constraint failed: notes.id"


class NoteIDManager:
    """Generates note identifiers and repairs identifier collisions."""

    def __init__(self, id_factory: Optional[Callable[[], str]] = None):
        """Initialize the manager.

        Args:
            id_factory: Callable producing new identifiers. Defaults to UUID4.
        """
        self._id_factory = id_factory or generate_id

    def generate_note_id(self) -> str:
        return self._id_factory()

    def ensure_note_has_id(self, note) -> None:
        """Assign an identifier to a note that has none."""
        if not note.id:
            note.id = self.generate_note_id()
            logger.debug(f"Assigned new ID to note: {note.id}")

    def _fresh_id(self, taken: set) -> str:
        new_id = self.generate_note_id()
        while new_id in taken:
            new_id = self.generate_note_id()
        return new_id

    def resolve_duplicates(self, notes: Iterable, reserved: Iterable[str] = ()) -> List:
        """Give every note after the first in a duplicate group a new identifier.

        Args:
            notes: Objects with an ``id`` attribute, in encounter order.
            reserved: Identifiers already held by earlier, persisted notes.
                Pending notes that reuse one of these are re-identified.

        Returns:
            The notes whose identifier was changed.
        """
        seen = set(reserved)
        taken = set(seen)
        pending = list(notes)
        taken.update(n.id for n in pending if n.id)

        fixed = []
        for note in pending:
            if not note.id:
                continue
            if note.id in seen:
                old_id = note.id
                note.id = self._fresh_id(taken)
                taken.add(note.id)
                fixed.append(note)
                logger.warning(f"Found duplicate note ID: {old_id}, regenerated as {note.id}")
            seen.add(note.id)
        return fixed

    @staticmethod
    def is_uniqueness_violation(error: BaseException) -> bool:
        """Check whether an error is the note identifier index rejecting a write.

        Only integrity errors naming the ``notes.id`` index match; unique
        violations on other columns and every other error type do not.
        """
        if not isinstance(error, IntegrityError):
            return False
        return NOTE_ID_VIOLATION in str(error.orig)

    def handle_save_error(
        self,
        error: BaseException,
        session: Session,
        pending: Sequence,
        retry: Callable[[], None],
    ) -> bool:
        """Repair duplicate identifiers after a rejected write and retry it once.

        Args:
            error: The exception raised by the failed commit.
            session: The session the write ran in; it is rolled back here.
            pending: Notes of the failed write, in the order they were added.
                Their identifiers are edited in place.
            retry: Re-runs the original write.

        Returns:
            True if the violation was repaired and the retry succeeded.
            False if the error is not an identifier violation, or if the
            repair fetch or the retry failed.
        """
        if not self.is_uniqueness_violation(error):
            return False

        logger.warning("Unique constraint violation on note ID detected, attempting to resolve")
        try:
            session.rollback()
            persisted = session.scalars(select(DBNote.id).order_by(DBNote.pk)).all()
            fixed = self.resolve_duplicates(pending, reserved=persisted)
            logger.info(f"Regenerated IDs for {len(fixed)} note(s), retrying save")
            retry()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to resolve unique constraint violation: {e}")
            return False
