"""Configuration module for the Memento note store."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from memento import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default data directory
_USER_ENV = Path.home() / ".memento" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class MementoConfig(BaseModel):
    """Configuration for the note store."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("MEMENTO_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("MEMENTO_DATABASE_PATH", "data/db/memento.db")
        )
    )
    # When True, the store lives in process memory and vanishes on exit
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("MEMENTO_IN_MEMORY_DB", "false")
    )
    # Seeds example notes into an empty store
    debug_mode: bool = Field(
        default_factory=lambda: _env_flag("MEMENTO_DEBUG_MODE", "false")
    )
    preview_sample_count: int = Field(
        default_factory=lambda: int(os.getenv("MEMENTO_PREVIEW_SAMPLE_COUNT", "10"))
    )
    # Logging configuration
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("MEMENTO_LOG_DIR"))
            if os.getenv("MEMENTO_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("MEMENTO_LOG_LEVEL", "INFO").upper()
    )
    version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_settings(self) -> "MementoConfig":
        """Reject values the store cannot work with."""
        if self.preview_sample_count < 0:
            raise ValueError("preview_sample_count must be >= 0")
        if self.log_level.upper() not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {', '.join(_VALID_LOG_LEVELS)}"
            )
        if self.debug_mode and self.in_memory_db:
            logger.debug("Debug examples will be seeded into an in-memory store")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_path(self) -> Path:
        """Get the absolute database file path, creating its directory."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return db_path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        return f"sqlite:///{self.get_db_path()}"


# Create a global config instance
config = MementoConfig()
