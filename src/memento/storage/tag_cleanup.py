"""Orphaned tag removal.

A tag with no associated notes must not persist. Every mutation that can
detach a tag from a note finishes by handing the detached tags to the
collector, which deletes the ones left without notes.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from memento.models.db_models import DBTag, note_tags

logger = logging.getLogger(__name__)


class TagGarbageCollector:
    """Deletes tags whose associated-note count is zero."""

    def find_orphans(
        self, session: Session, candidates: Optional[Iterable[DBTag]] = None
    ) -> List[DBTag]:
        """Return the tags that violate the "has at least one note" invariant.

        Args:
            session: Session to query in.
            candidates: Tags to check. None checks every tag in the store.

        Returns:
            Orphaned tags ordered by name.
        """
        if candidates is None:
            orphans = session.scalars(
                select(DBTag)
                .outerjoin(note_tags, DBTag.id == note_tags.c.tag_id)
                .where(note_tags.c.note_pk.is_(None))
            ).all()
        else:
            orphans = [
                tag for tag in self._live(session, candidates) if len(tag.notes) == 0
            ]
        return sorted(orphans, key=lambda t: t.name)

    def cleanup_orphaned_tags(self, session: Session, tags: Iterable[DBTag]) -> int:
        """Delete the given tags that have no notes, in one commit.

        Raises:
            SQLAlchemyError: If the delete or the commit fails.
        """
        orphans = []
        for tag in self._live(session, tags):
            if len(tag.notes) == 0:
                logger.info(f"Deleting orphaned tag: {tag.name}")
                session.delete(tag)
                orphans.append(tag)

        if orphans:
            session.commit()
            logger.info(
                f"Cleaned up {len(orphans)} orphaned tag{'' if len(orphans) == 1 else 's'}"
            )
        return len(orphans)

    def cleanup_orphaned_tag(self, session: Session, tag: DBTag) -> int:
        return self.cleanup_orphaned_tags(session, [tag])

    def collect(self, session: Session, tags: Iterable[DBTag], reason: str = "mutation") -> int:
        """Best-effort cleanup run after a mutation that detached ``tags``.

        Failures are logged and swallowed; the mutation that triggered the
        cleanup has already been committed and stays in place.
        """
        try:
            return self.cleanup_orphaned_tags(session, tags)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to cleanup orphaned tags after {reason}: {e}")
            return 0

    def handle_tag_removed_from_note(self, session: Session, tag: DBTag) -> int:
        return self.collect(session, [tag], reason="tag removal")

    def handle_note_deleted(self, session: Session, tags: Iterable[DBTag]) -> int:
        """Best-effort cleanup of the tags a deleted note carried.

        The tags must be collected before the note is deleted.
        """
        return self.collect(session, tags, reason="note deletion")

    def sweep(self, session: Session) -> int:
        """Delete every orphaned tag in the store."""
        return self.cleanup_orphaned_tags(session, self.find_orphans(session))

    @staticmethod
    def _live(session: Session, tags: Iterable[DBTag]) -> List[DBTag]:
        """Drop duplicates and tags that are already gone from the store."""
        live = []
        seen = set()
        for tag in tags:
            if tag is None or id(tag) in seen:
                continue
            seen.add(id(tag))
            if tag in session and not inspect(tag).deleted:
                live.append(tag)
        return live
