"""Data models for the Memento note store."""

import datetime
import uuid
from datetime import timezone
from enum import Enum
from typing import Iterable, List, Union

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes, so everything read from the
    database passes through here.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def generate_id() -> str:
    """Generate a new note identifier (random UUID4, canonical form)."""
    return str(uuid.uuid4())


def normalize_tag_name(name: str) -> str:
    """Key used for case-insensitive tag comparison."""
    return name.strip().casefold()


def parse_tag_text(text: str) -> List[str]:
    """Split a free-text tag string into tag names.

    Names are separated by commas and trimmed. Empty entries are dropped
    and duplicates (compared case-insensitively) keep their first spelling.

    Examples:
        "work, Ideas ,, work" -> ["work", "Ideas"]
    """
    if not text:
        return []
    names: List[str] = []
    seen = set()
    for raw in text.split(","):
        name = raw.strip()
        if not name:
            continue
        key = normalize_tag_name(name)
        if key in seen:
            continue
        seen.add(key)
        names.append(name)
    return names


def format_tag_names(names: Iterable[str]) -> str:
    """Render tag names as the sorted, comma-separated tag string."""
    return ", ".join(sorted(names, key=lambda n: (n.casefold(), n)))


class SortOption(str, Enum):
    """Orderings offered for note lists.

    Pinned notes always come first regardless of the option.
    """

    CREATED_AT = "created_at"  # Newest first
    UPDATED_AT = "updated_at"  # Most recently edited first
    TITLE = "title"  # Alphabetical, case-insensitive
    PINNED = "pinned"  # Pinned group, then newest first


class Tag(BaseModel):
    """A named label attachable to many notes."""

    name: str = Field(..., description="Tag name")

    model_config = {"validate_assignment": True, "frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Strip surrounding whitespace and reject blank names."""
        v = v.strip()
        if not v:
            raise ValueError("Tag name cannot be empty")
        return v

    def __str__(self) -> str:
        return self.name


class Note(BaseModel):
    """A user-authored note."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    title: str = Field(..., description="Title of the note")
    body: str = Field(default="", description="Body text of the note")
    tag_text: str = Field(default="", description="Free-text tag string as entered")
    tags: List[Tag] = Field(default_factory=list, description="Tags for categorization")
    pinned: bool = Field(default=False, description="Pinned notes sort first")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @property
    def tag_names(self) -> List[str]:
        return [t.name for t in self.tags]

    def add_tag(self, tag: Union[str, Tag]) -> None:
        """Add a tag to the note, ignoring case-insensitive duplicates."""
        if isinstance(tag, str):
            tag = Tag(name=tag)
        existing = {normalize_tag_name(t.name) for t in self.tags}
        if normalize_tag_name(tag.name) not in existing:
            self.tags = [*self.tags, tag]
            self.tag_text = format_tag_names(self.tag_names)
            self.updated_at = utc_now()

    def remove_tag(self, tag: Union[str, Tag]) -> None:
        """Remove a tag from the note."""
        key = normalize_tag_name(tag.name if isinstance(tag, Tag) else tag)
        self.tags = [t for t in self.tags if normalize_tag_name(t.name) != key]
        self.tag_text = format_tag_names(self.tag_names)
        self.updated_at = utc_now()

    def set_tag_text(self, text: str) -> None:
        """Replace the note's tags with those parsed from a tag string."""
        names = parse_tag_text(text)
        self.tags = [Tag(name=n) for n in names]
        self.tag_text = format_tag_names(names)
        self.updated_at = utc_now()


def sort_notes(notes: List[Note], sort: SortOption = SortOption.CREATED_AT) -> List[Note]:
    """Order notes for display.

    Pinned notes come first; within each group the chosen option applies.
    """
    if sort == SortOption.TITLE:
        def key(n: Note):
            return (not n.pinned, n.title.casefold(), n.title)
        return sorted(notes, key=key)

    if sort == SortOption.UPDATED_AT:
        def stamp(n: Note):
            return ensure_timezone_aware(n.updated_at)
    else:
        def stamp(n: Note):
            return ensure_timezone_aware(n.created_at)

    # Two stable passes: newest first, then pinned group first
    by_time = sorted(notes, key=stamp, reverse=True)
    return sorted(by_time, key=lambda n: not n.pinned)
