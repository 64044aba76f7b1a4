"""Service layer for the Memento note store."""
