"""Data models for the Memento note store."""
