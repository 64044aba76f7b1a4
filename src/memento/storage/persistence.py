"""Opening, seeding and sharing the note store."""
import datetime
import logging
import sqlite3
import sys
from pathlib import Path
from typing import List, Optional

from sqlalchemy import event, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from memento.config import MementoConfig
from memento.config import config as default_config
from memento.exceptions import StorageError, StoreLoadError
from memento.models.db_models import DBNote, get_session_factory, init_db
from memento.models.schema import Note, Tag, format_tag_names, utc_now
from memento.observability import configure_logging, is_logging_configured
from memento.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)

# Example content seeded into an empty store when debug mode is on
EXAMPLE_NOTES = [
    {
        "title": "Welcome to MyMemento",
        "body": (
            "This is your personal note-taking app. You can create, edit, and "
            "organize your thoughts here. Use tags to categorize your notes and "
            "search to find them quickly."
        ),
        "tags": ["welcome", "getting-started"],
        "pinned": True,
    },
    {
        "title": "Meeting Notes - Project Alpha",
        "body": (
            "Discussed the new features for Q4:\n"
            "- Implement user authentication\n"
            "- Add export functionality\n"
            "- Improve search capabilities\n\n"
            "Next meeting: Friday 2PM"
        ),
        "tags": ["work", "meetings", "project-alpha"],
        "pinned": False,
    },
    {
        "title": "Book Ideas",
        "body": (
            "Random thoughts for the novel I want to write:\n\n"
            "- Character: A detective who can see memories\n"
            "- Setting: Near-future cyberpunk city\n"
            "- Plot twist: The memories aren't real\n\n"
            "Need to research: Memory implantation technology"
        ),
        "tags": ["creative", "writing", "ideas"],
        "pinned": False,
    },
]


class PersistenceController:
    """Owns the store's engine, its read session and its session factory.

    Reads for display go through ``view_session``. Every other session made
    by ``session_factory``, including the repositories' sessions, is merged
    into the view session when it commits: the view's cached state is
    expired, so its next read reloads.
    """

    _shared: Optional["PersistenceController"] = None

    def __init__(self, config: Optional[MementoConfig] = None, in_memory: Optional[bool] = None):
        """Open (or create) the store.

        Args:
            config: Store configuration. Defaults to the global config.
            in_memory: Keep the store in process memory. Defaults to
                ``config.in_memory_db``.

        Raises:
            StoreLoadError: If the store cannot be opened. The store files
                are removed first so that the next start is clean.
        """
        self.config = config or default_config
        self.in_memory = self.config.in_memory_db if in_memory is None else in_memory
        self.db_path: Optional[Path] = None if self.in_memory else self.config.get_db_path()

        self.engine = None
        try:
            self.engine = init_db(self.db_path)
        except (SQLAlchemyError, sqlite3.Error, OSError) as e:
            self._handle_load_failure(e)

        self.session_factory = get_session_factory(self.engine)
        event.listen(self.session_factory, "after_commit", self._merge_into_view)
        self.view_session: Session = self.session_factory()
        logger.info(f"Opened note store: {self.db_path or ':memory:'}")

        if self.config.debug_mode:
            self.seed_examples_if_empty()

    def _handle_load_failure(self, error: Exception) -> None:
        logger.critical(f"Failed to load persistent store: {error}")
        if self.engine is not None:
            self.engine.dispose()

        if self.db_path is None:
            raise StoreLoadError(
                "In-memory store failed to load",
                original_error=error,
            ) from error

        logger.info("Attempting to recover by deleting and recreating the store")
        for path in self.store_files():
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Could not remove store file {path.name}: {e}")
        logger.info("Deleted corrupted store files, a fresh store is created on restart")
        raise StoreLoadError(
            "Store was corrupted and has been reset; restart to continue",
            path=str(self.db_path),
            reset=True,
            original_error=error,
        ) from error

    def store_files(self) -> List[Path]:
        """The database file and its WAL companions."""
        if self.db_path is None:
            return []
        return [
            self.db_path,
            self.db_path.with_name(self.db_path.name + "-wal"),
            self.db_path.with_name(self.db_path.name + "-shm"),
        ]

    @classmethod
    def shared(cls, config: Optional[MementoConfig] = None) -> "PersistenceController":
        """The process-wide store.

        File logging is set up from the settings on first use. The
        application cannot run without its store, so a load failure here
        ends the process.
        """
        if cls._shared is None:
            settings = config or default_config
            if not is_logging_configured():
                configure_logging(settings.log_dir, level=settings.log_level)
            try:
                cls._shared = cls(settings)
            except StoreLoadError as e:
                logger.critical(f"Cannot continue without a note store: {e}")
                sys.exit(1)
        return cls._shared

    @classmethod
    def reset_shared(cls) -> None:
        """Close and forget the process-wide store (useful for testing)."""
        if cls._shared is not None:
            cls._shared.close()
            cls._shared = None

    @classmethod
    def preview(
        cls, sample_count: Optional[int] = None, config: Optional[MementoConfig] = None
    ) -> "PersistenceController":
        """An in-memory store filled with placeholder notes."""
        controller = cls(config, in_memory=True)
        if sample_count is None:
            sample_count = controller.config.preview_sample_count
        controller.seed_samples(sample_count)
        return controller

    def repository(self) -> NoteRepository:
        return NoteRepository(self.session_factory)

    def new_background_session(self) -> Session:
        """A session for writes made off the view session.

        Its commits are merged into the view session like those of any
        session from ``session_factory``.
        """
        return self.session_factory()

    def _merge_into_view(self, session: Session) -> None:
        if session is self.view_session:
            return
        self.view_session.expire_all()

    def count_notes(self) -> int:
        with self.session_factory() as session:
            return session.scalar(select(func.count(DBNote.pk))) or 0

    def seed_samples(self, count: int) -> int:
        """Write ``count`` placeholder notes.

        Failures are logged only; the store works without sample data.
        """
        now = utc_now()
        notes = [
            Note(
                title=f"Sample Note {i + 1}",
                body=f"This is the body content of sample note {i + 1}",
                created_at=now - datetime.timedelta(minutes=30 * i),
                updated_at=now - datetime.timedelta(minutes=30 * i),
            )
            for i in range(count)
        ]
        if not notes:
            return 0
        try:
            self.repository().create_many(notes)
        except StorageError as e:
            logger.error(f"Failed to save preview data: {e}")
            return 0
        return len(notes)

    def seed_examples_if_empty(self) -> int:
        """Create the example notes when the store holds no notes at all."""
        try:
            if self.count_notes() > 0:
                return 0
            logger.info("Debug mode: creating example notes for empty storage")
            now = utc_now()
            notes = []
            for index, example in enumerate(EXAMPLE_NOTES):
                stamp = now - datetime.timedelta(hours=index)
                notes.append(
                    Note(
                        title=example["title"],
                        body=example["body"],
                        tags=[Tag(name=name) for name in example["tags"]],
                        tag_text=format_tag_names(example["tags"]),
                        pinned=example["pinned"],
                        created_at=stamp,
                        updated_at=stamp,
                    )
                )
            self.repository().create_many(notes)
        except (StorageError, SQLAlchemyError) as e:
            logger.error(f"Debug mode: failed to create example notes: {e}")
            return 0
        logger.info(f"Debug mode: created {len(notes)} example notes")
        return len(notes)

    def close(self) -> None:
        self.view_session.close()
        self.engine.dispose()

    def __enter__(self) -> "PersistenceController":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
