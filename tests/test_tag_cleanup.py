"""Tests for orphaned tag removal.

These tests verify that a tag never outlives its last note:
1. Deleting the only note carrying a tag deletes the tag
2. Shared tags survive until their last note goes
3. Cleanup failures never undo the mutation that triggered them
"""
import sqlite3

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from memento.models.db_models import DBNote, DBTag
from memento.models.schema import Note
from memento.storage.tag_cleanup import TagGarbageCollector


def _tagged(title, *tags):
    note = Note(title=title)
    note.set_tag_text(", ".join(tags))
    return note


def _tag_names(store):
    with store.session_factory() as session:
        return sorted(session.scalars(select(DBTag.name)).all())


class TestFindOrphans:
    def test_reports_tags_without_notes(self, store, note_repository):
        note_repository.create(_tagged("Keeper", "used"))
        with store.session_factory() as session:
            session.add_all([DBTag(name="zeta"), DBTag(name="alpha")])
            session.commit()

            orphans = TagGarbageCollector().find_orphans(session)

            assert [t.name for t in orphans] == ["alpha", "zeta"]

    def test_candidates_are_filtered(self, store, note_repository):
        note_repository.create(_tagged("Keeper", "used"))
        with store.session_factory() as session:
            session.add(DBTag(name="lonely"))
            session.commit()
            used = session.scalar(select(DBTag).where(DBTag.name == "used"))
            lonely = session.scalar(select(DBTag).where(DBTag.name == "lonely"))

            orphans = TagGarbageCollector().find_orphans(session, [used, lonely, lonely])

            assert orphans == [lonely]

    def test_store_without_orphans(self, store, note_repository):
        note_repository.create(_tagged("Keeper", "used"))
        with store.session_factory() as session:
            assert TagGarbageCollector().find_orphans(session) == []


class TestCleanup:
    def test_cleanup_deletes_only_orphans(self, store, note_repository):
        note_repository.create(_tagged("Keeper", "used"))
        with store.session_factory() as session:
            session.add(DBTag(name="lonely"))
            session.commit()
            tags = session.scalars(select(DBTag)).all()

            removed = TagGarbageCollector().cleanup_orphaned_tags(session, tags)

        assert removed == 1
        assert _tag_names(store) == ["used"]

    def test_already_deleted_tags_are_skipped(self, store):
        with store.session_factory() as session:
            tag = DBTag(name="gone")
            session.add(tag)
            session.commit()
            session.delete(tag)
            session.commit()

            assert TagGarbageCollector().cleanup_orphaned_tag(session, tag) == 0

    def test_sweep(self, store, note_repository):
        note_repository.create(_tagged("Keeper", "used"))
        with store.session_factory() as session:
            session.add_all([DBTag(name="one"), DBTag(name="two")])
            session.commit()

            assert TagGarbageCollector().sweep(session) == 2
            assert TagGarbageCollector().sweep(session) == 0

        assert _tag_names(store) == ["used"]


class TestNoteDeletion:
    """Tags of deleted notes."""

    def test_sole_tag_is_deleted_with_note(self, store, note_repository):
        note = note_repository.create(_tagged("Only", "solo"))
        note_repository.delete(note.id)
        assert _tag_names(store) == []

    def test_shared_tag_survives_until_last_note(self, store, note_repository):
        first = note_repository.create(_tagged("First", "shared", "mine"))
        second = note_repository.create(_tagged("Second", "shared"))

        note_repository.delete(first.id)
        assert _tag_names(store) == ["shared"]

        note_repository.delete(second.id)
        assert _tag_names(store) == []

    @pytest.mark.parametrize("order", [(0, 1), (1, 0)])
    def test_deletion_order_converges(self, store, note_repository, order):
        notes = [
            note_repository.create(_tagged("A", "common", "a-only")),
            note_repository.create(_tagged("B", "common", "b-only")),
        ]
        for index in order:
            note_repository.delete(notes[index].id)

        assert _tag_names(store) == []
        with store.session_factory() as session:
            assert TagGarbageCollector().find_orphans(session) == []

    def test_cleanup_failure_keeps_note_deleted(self, store, note_repository, monkeypatch):
        note = note_repository.create(_tagged("Doomed", "left-behind"))

        def fail(session, tags):
            raise OperationalError("DELETE FROM tags", {}, sqlite3.OperationalError("database is locked"))

        monkeypatch.setattr(note_repository.tag_collector, "cleanup_orphaned_tags", fail)

        note_repository.delete(note.id)

        assert note_repository.get(note.id) is None
        # The orphan is left for a later sweep
        assert _tag_names(store) == ["left-behind"]
        with store.session_factory() as session:
            assert TagGarbageCollector().sweep(session) == 1


class TestTagRemoval:
    def test_removing_last_use_deletes_tag(self, store, note_repository, tag_repository):
        note = note_repository.create(_tagged("Note", "temp", "stay"))

        assert tag_repository.remove_tag_from_note(note.id, "TEMP") is True

        assert _tag_names(store) == ["stay"]
        stored = note_repository.get(note.id)
        assert stored.tag_names == ["stay"]
        assert stored.tag_text == "stay"

    def test_removing_shared_tag_keeps_it(self, store, note_repository, tag_repository):
        first = note_repository.create(_tagged("First", "shared"))
        note_repository.create(_tagged("Second", "shared"))

        tag_repository.remove_tag_from_note(first.id, "shared")

        assert _tag_names(store) == ["shared"]

    def test_removing_absent_tag(self, note_repository, tag_repository):
        note = note_repository.create(_tagged("Note", "present"))
        assert tag_repository.remove_tag_from_note(note.id, "absent") is False


def test_note_rows_and_links_are_consistent(store, note_repository):
    """Every remaining tag is linked to at least one remaining note."""
    notes = [note_repository.create(_tagged(f"N{i}", "all", f"n{i}")) for i in range(5)]
    note_repository.delete_many([n.id for n in notes[:3]])
    note_repository.delete(notes[3].id)

    with store.session_factory() as session:
        tags = session.scalars(select(DBTag)).all()
        assert sorted(t.name for t in tags) == ["all", "n4"]
        for tag in tags:
            assert tag.notes
        assert session.scalars(select(DBNote.title)).all() == ["N4"]
