"""
Memento - a personal note-taking store.

Notes and tags are persisted in an embedded SQLite database through
SQLAlchemy. The package keeps the tag graph free of orphaned tags and
guarantees that no two notes are ever stored under the same identifier.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("memento-notes")
except PackageNotFoundError:
    __version__ = "0.3.0"
