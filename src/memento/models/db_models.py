"""SQLAlchemy database models for the Memento note store."""
import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Index, Integer,
                        String, Table, Text, create_engine, event, inspect, text)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from memento.models.schema import generate_id

# Create base class for SQLAlchemy models
Base = declarative_base()

# Name of the unique index guarding note identifiers. The storage layer
# rejects a second note with the same id at insert time.
NOTE_ID_INDEX = "uq_notes_id"

# Association table for tags and notes
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column("note_pk", Integer, ForeignKey("notes.pk", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


class DBNote(Base):
    """Database model for a note.

    Rows are keyed by a surrogate integer so that two pending notes
    carrying the same identifier reach the unique index instead of
    clashing in the session's identity map.
    """
    __tablename__ = "notes"
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False)
    title = Column(String(255), nullable=False, index=True)
    body = Column(Text, nullable=False, default="")
    tag_text = Column(Text, nullable=False, default="")
    pinned = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)

    # Relationships
    tags = relationship(
        "DBTag", secondary=note_tags, back_populates="notes"
    )

    __table_args__ = (
        Index(NOTE_ID_INDEX, "id", unique=True),
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    # Relationships
    notes = relationship(
        "DBNote", secondary=note_tags, back_populates="tags"
    )

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id={self.id}, name='{self.name}')>"


def create_store_engine(db_path: Optional[Path] = None) -> Engine:
    """Create the engine for a store file, or an in-memory store.

    A file store gets WAL journaling for crash resilience. The in-memory
    store keeps one shared connection so every session sees the same data.
    """
    if db_path is None:
        engine = create_engine(
            "sqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"timeout": 30},
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if db_path is not None:
            # WAL mode: writes go to separate journal, preventing corruption on crash
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # SQLite's lower() only folds ASCII; tag names are compared with this
        dbapi_connection.create_function("casefold", 1, _casefold, deterministic=True)

    return engine


def init_db(db_path: Optional[Path] = None) -> Engine:
    """Open (or create) the store and bring its schema up to date.

    Args:
        db_path: SQLite file to use. None opens an in-memory store.

    Returns:
        The configured engine.
    """
    engine = create_store_engine(db_path)
    try:
        Base.metadata.create_all(engine)
        # Run migrations for schema updates
        _migrate_add_note_columns(engine)
        _migrate_note_id_index(engine)
    except Exception:
        engine.dispose()
        raise

    return engine


def _migrate_add_note_columns(engine: Engine) -> None:
    """Migration: add columns introduced after the first schema.

    SQLite doesn't support IF NOT EXISTS for ADD COLUMN, so we check
    the schema first. This is idempotent and safe to run multiple times.
    """
    columns = [col["name"] for col in inspect(engine).get_columns("notes")]

    statements = []
    if "pinned" not in columns:
        statements.append(
            "ALTER TABLE notes ADD COLUMN pinned BOOLEAN NOT NULL DEFAULT 0"
        )
    if "updated_at" not in columns:
        statements.append("ALTER TABLE notes ADD COLUMN updated_at DATETIME")
    if not statements:
        return

    with engine.connect() as conn:
        for statement in statements:
            conn.execute(text(statement))
        if "updated_at" not in columns:
            conn.execute(text(
                "UPDATE notes SET updated_at = created_at WHERE updated_at IS NULL"
            ))
        conn.commit()


def _migrate_note_id_index(engine: Engine) -> None:
    """Migration: add the unique index on note identifiers.

    Stores created before the index existed may hold repeated identifiers.
    The oldest row keeps each identifier and later rows get fresh ones, so
    the index can be built.
    """
    indexes = {ix["name"] for ix in inspect(engine).get_indexes("notes")}
    if NOTE_ID_INDEX in indexes:
        return

    with engine.connect() as conn:
        rows = conn.execute(text("SELECT pk, id FROM notes ORDER BY pk")).all()
        seen = set()
        for pk, note_id in rows:
            if note_id and note_id not in seen:
                seen.add(note_id)
                continue
            new_id = generate_id()
            conn.execute(
                text("UPDATE notes SET id = :id WHERE pk = :pk"),
                {"id": new_id, "pk": pk},
            )
            seen.add(new_id)
        conn.execute(text(f"CREATE UNIQUE INDEX {NOTE_ID_INDEX} ON notes (id)"))
        conn.commit()


def get_session_factory(engine: Engine):
    """Get a session factory for the database."""
    return sessionmaker(bind=engine)
