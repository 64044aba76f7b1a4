"""Tests for the TagRepository class."""
import pytest

from memento.exceptions import ErrorCode, NoteNotFoundError, TagError
from memento.models.db_models import DBTag
from memento.models.schema import Note


def _tagged(title, *tags):
    note = Note(title=title)
    note.set_tag_text(", ".join(tags))
    return note


@pytest.fixture
def tagged_notes(note_repository):
    return [
        note_repository.create(_tagged("Plan", "work", "Ideas")),
        note_repository.create(_tagged("Draft", "ideas", "writing")),
        note_repository.create(_tagged("Errand", "home")),
    ]


def test_get_all_sorted_ignoring_case(tag_repository, tagged_notes):
    assert [t.name for t in tag_repository.get_all()] == ["home", "Ideas", "work", "writing"]


def test_get_is_case_insensitive(tag_repository, tagged_notes):
    assert tag_repository.get("IDEAS").name == "Ideas"
    assert tag_repository.get("nothing") is None


def test_get_with_counts(tag_repository, tagged_notes):
    assert tag_repository.get_with_counts() == {
        "home": 1, "Ideas": 2, "work": 1, "writing": 1,
    }


def test_search(tag_repository, tagged_notes):
    assert [t.name for t in tag_repository.search("W")] == ["work", "writing"]
    assert [t.name for t in tag_repository.search("")] == ["home", "Ideas", "work", "writing"]
    assert tag_repository.search("%") == []


def test_find_note_ids_by_tag(tag_repository, tagged_notes):
    expected = sorted(n.id for n in tagged_notes[:2])
    assert tag_repository.find_note_ids_by_tag("ideas") == expected
    assert tag_repository.find_note_ids_by_tag("missing") == []


class TestAddTag:
    def test_add_new_tag(self, note_repository, tag_repository, tagged_notes):
        note = tagged_notes[2]
        tag_repository.add_tag_to_note(note.id, "Urgent")

        stored = note_repository.get(note.id)
        assert stored.tag_names == ["home", "Urgent"]
        assert stored.tag_text == "home, Urgent"
        assert stored.updated_at >= note.updated_at

    def test_add_existing_tag_reuses_it(self, note_repository, tag_repository, tagged_notes):
        tag_repository.add_tag_to_note(tagged_notes[2].id, "WORK")

        assert note_repository.get(tagged_notes[2].id).tag_names == ["home", "work"]
        assert tag_repository.get_with_counts()["work"] == 2

    def test_add_duplicate_is_noop(self, note_repository, tag_repository, tagged_notes):
        tag_repository.add_tag_to_note(tagged_notes[0].id, "work")
        assert note_repository.get(tagged_notes[0].id).tag_names == ["Ideas", "work"]

    def test_blank_tag_rejected(self, tag_repository, tagged_notes):
        with pytest.raises(TagError):
            tag_repository.add_tag_to_note(tagged_notes[0].id, "  ")

    def test_missing_note(self, tag_repository):
        with pytest.raises(NoteNotFoundError):
            tag_repository.add_tag_to_note("missing", "tag")


class TestRenameTag:
    def test_rename(self, note_repository, tag_repository, tagged_notes):
        renamed = tag_repository.rename("work", "job")

        assert renamed.name == "job"
        assert tag_repository.get("work") is None
        stored = note_repository.get(tagged_notes[0].id)
        assert stored.tag_names == ["Ideas", "job"]
        assert stored.tag_text == "Ideas, job"

    def test_rename_case_only_is_noop(self, tag_repository, tagged_notes):
        assert tag_repository.rename("ideas", "IDEAS").name == "Ideas"
        assert tag_repository.get("ideas").name == "Ideas"

    def test_rename_into_existing_tag_merges(self, note_repository, tag_repository, tagged_notes):
        merged = tag_repository.rename("writing", "ideas")

        assert merged.name == "Ideas"
        assert tag_repository.get("writing") is None
        assert tag_repository.get_with_counts()["Ideas"] == 2
        assert note_repository.get(tagged_notes[1].id).tag_names == ["Ideas"]

    def test_merge_into_tag_on_other_notes(self, note_repository, tag_repository, tagged_notes):
        tag_repository.rename("home", "work")

        counts = tag_repository.get_with_counts()
        assert "home" not in counts
        assert counts["work"] == 2
        assert note_repository.get(tagged_notes[2].id).tag_text == "work"

    def test_rename_missing_tag(self, tag_repository):
        with pytest.raises(TagError) as exc_info:
            tag_repository.rename("missing", "other")
        assert exc_info.value.code == ErrorCode.TAG_NOT_FOUND

    def test_rename_to_blank(self, tag_repository, tagged_notes):
        with pytest.raises(TagError):
            tag_repository.rename("work", " ")


class TestDeleteTag:
    def test_delete_detaches_from_notes(self, note_repository, tag_repository, tagged_notes):
        assert tag_repository.delete("IDEAS") is True

        assert tag_repository.get("ideas") is None
        assert note_repository.get(tagged_notes[0].id).tag_text == "work"
        assert note_repository.get(tagged_notes[1].id).tag_names == ["writing"]
        assert note_repository.count() == 3

    def test_delete_missing(self, tag_repository):
        assert tag_repository.delete("missing") is False


def test_delete_unused(store, tag_repository, tagged_notes):
    with store.session_factory() as session:
        session.add_all([DBTag(name="stale"), DBTag(name="old")])
        session.commit()

    assert tag_repository.delete_unused() == 2
    assert tag_repository.delete_unused() == 0
    assert len(tag_repository.get_all()) == 4


def test_unicode_tags_match_across_case(note_repository, tag_repository):
    note_repository.create(_tagged("Cafe", "Café"))
    note_repository.create(_tagged("CAFE", "CAFÉ"))

    assert tag_repository.get_with_counts() == {"Café": 2}
    assert tag_repository.get("café").name == "Café"
