"""
Tests for the versioned record store.

Covers idempotent create, compare-and-swap updates, soft delete and
resumable listing.
"""
from datetime import timedelta

import pytest
from conftest import OUTSIDER_ID, OWNER_ID

from dugout.errors import NotFound, StaleVersion
from dugout.models import EntityType, RecordState, SyncedRecord, db
from dugout.records import CHANGE_OVERLAP, athletes, games, store_for


class TestCreate:
    """Test record creation."""

    def test_create_starts_at_version_one(self, ctx):
        """New records are active at version 1 with the given payload."""
        record = athletes.create(OWNER_ID, "local-1", {"name": "Sam", "jersey": 12})
        assert record.version == 1
        assert record.state == RecordState.ACTIVE
        assert record.payload == {"name": "Sam", "jersey": 12}
        assert record.owner_id == OWNER_ID

    def test_create_is_idempotent_on_local_id(self, ctx):
        """Retrying a create returns the same record instead of duplicating it."""
        first = athletes.create(OWNER_ID, "local-1", {"name": "Sam"})
        second = athletes.create(OWNER_ID, "local-1", {"name": "Different"})
        assert second.id == first.id
        assert second.payload == {"name": "Sam"}
        assert db.session.query(SyncedRecord).count() == 1

    def test_create_does_not_resurrect_deleted_record(self, ctx):
        """A replayed create after a soft delete returns the tombstone untouched."""
        record = athletes.create(OWNER_ID, "local-1", {"name": "Sam"})
        athletes.soft_delete(OWNER_ID, record.id)
        replay = athletes.create(OWNER_ID, "local-1", {"name": "Sam"})
        assert replay.id == record.id
        assert replay.is_deleted is True

    def test_same_local_id_in_different_entity_types(self, ctx):
        """local_id uniqueness is per owner and entity type."""
        athlete = athletes.create(OWNER_ID, "shared-local", {})
        game = games.create(OWNER_ID, "shared-local", {})
        assert athlete.id != game.id

    def test_reserved_fields_are_stripped(self, ctx):
        """Clients cannot set version or ownership through the payload."""
        record = athletes.create(OWNER_ID, "local-1", {"version": 99, "owner_id": "x", "a": 1})
        assert record.version == 1
        assert record.payload == {"a": 1}

    def test_create_requires_local_id(self, ctx):
        with pytest.raises(ValueError):
            athletes.create(OWNER_ID, "", {})


class TestUpdate:
    """Test optimistic concurrency on update."""

    def test_update_bumps_version_and_merges_patch(self, ctx):
        record = games.create(OWNER_ID, "g1", {"opponent": "Tigers", "score": "0-0"})
        updated = games.update(OWNER_ID, record.id, {"score": "3-1"}, expected_version=1)
        assert updated.version == 2
        assert updated.payload == {"opponent": "Tigers", "score": "3-1"}

    def test_stale_version_is_rejected(self, ctx):
        """Only one of two writers holding the same version wins."""
        record = games.create(OWNER_ID, "g1", {"score": "0-0"})
        games.update(OWNER_ID, record.id, {"score": "1-0"}, expected_version=1)

        with pytest.raises(StaleVersion) as excinfo:
            games.update(OWNER_ID, record.id, {"score": "0-1"}, expected_version=1)

        assert excinfo.value.current == 2
        assert excinfo.value.expected == 1
        current = games.get(OWNER_ID, record.id)
        assert current.version == 2
        assert current.payload == {"score": "1-0"}

    def test_update_of_deleted_record_is_not_found(self, ctx):
        record = games.create(OWNER_ID, "g1", {})
        games.soft_delete(OWNER_ID, record.id)
        with pytest.raises(NotFound):
            games.update(OWNER_ID, record.id, {"a": 1}, expected_version=2)

    def test_update_by_other_owner_is_not_found(self, ctx):
        record = games.create(OWNER_ID, "g1", {})
        with pytest.raises(NotFound):
            games.update(OUTSIDER_ID, record.id, {"a": 1}, expected_version=1)

    def test_expected_version_must_be_integer(self, ctx):
        record = games.create(OWNER_ID, "g1", {})
        with pytest.raises(ValueError):
            games.update(OWNER_ID, record.id, {}, expected_version="1")


class TestSoftDelete:
    """Test tombstones."""

    def test_soft_delete_hides_record_and_bumps_version(self, ctx):
        record = athletes.create(OWNER_ID, "a1", {})
        deleted = athletes.soft_delete(OWNER_ID, record.id)
        assert deleted.state == RecordState.DELETED
        assert deleted.version == 2
        assert deleted.deleted_at is not None
        with pytest.raises(NotFound):
            athletes.get(OWNER_ID, record.id)
        assert athletes.list(OWNER_ID) == []

    def test_double_delete_is_not_found(self, ctx):
        record = athletes.create(OWNER_ID, "a1", {})
        athletes.soft_delete(OWNER_ID, record.id)
        with pytest.raises(NotFound):
            athletes.soft_delete(OWNER_ID, record.id)

    def test_changes_since_includes_tombstones(self, ctx):
        keep = athletes.create(OWNER_ID, "a1", {})
        gone = athletes.create(OWNER_ID, "a2", {})
        athletes.soft_delete(OWNER_ID, gone.id)

        changes = athletes.changes_since(OWNER_ID, keep.created_at - timedelta(seconds=1))
        by_id = {r.id: r for r in changes}
        assert set(by_id) == {keep.id, gone.id}
        assert by_id[gone.id].is_deleted is True

    def test_late_commit_inside_overlap_is_returned(self, ctx):
        """A write stamped before the reader's cursor but committed after it is not lost."""
        seen = athletes.create(OWNER_ID, "a1", {})
        late = athletes.create(OWNER_ID, "a2", {})
        late.updated_at = seen.updated_at - timedelta(seconds=2)
        db.session.commit()

        changes = athletes.changes_since(OWNER_ID, seen.updated_at)
        assert late.id in {r.id for r in changes}

        strict = athletes.changes_since(OWNER_ID, seen.updated_at, overlap=timedelta(0))
        assert late.id not in {r.id for r in strict}

    def test_changes_outside_overlap_are_skipped(self, ctx):
        old = athletes.create(OWNER_ID, "a1", {})
        since = old.updated_at + CHANGE_OVERLAP + timedelta(seconds=1)
        assert athletes.changes_since(OWNER_ID, since) == []


class TestList:
    """Test creation-ordered, resumable listing."""

    def test_list_returns_creation_order(self, ctx):
        ids = [athletes.create(OWNER_ID, f"a{i}", {"i": i}).id for i in range(5)]
        assert [r.id for r in athletes.list(OWNER_ID)] == ids

    def test_list_resumes_after_cursor(self, ctx):
        ids = [athletes.create(OWNER_ID, f"a{i}", {}).id for i in range(5)]
        first_page = athletes.list(OWNER_ID, limit=2)
        assert [r.id for r in first_page] == ids[:2]
        second_page = athletes.list(OWNER_ID, after=first_page[-1].id, limit=2)
        assert [r.id for r in second_page] == ids[2:4]

    def test_list_resumes_after_deleted_cursor(self, ctx):
        """The cursor record may have been deleted since the previous page."""
        ids = [athletes.create(OWNER_ID, f"a{i}", {}).id for i in range(3)]
        athletes.soft_delete(OWNER_ID, ids[0])
        assert [r.id for r in athletes.list(OWNER_ID, after=ids[0])] == ids[1:]

    def test_list_is_scoped_to_owner(self, ctx):
        athletes.create(OWNER_ID, "a1", {})
        assert athletes.list(OUTSIDER_ID) == []

    def test_unknown_cursor_is_not_found(self, ctx):
        with pytest.raises(NotFound):
            athletes.list(OWNER_ID, after="missing")

    def test_iter_records_walks_all_pages(self, ctx):
        ids = [athletes.create(OWNER_ID, f"a{i}", {}).id for i in range(5)]
        assert [r.id for r in athletes.iter_records(OWNER_ID, page_size=2)] == ids


class TestPurge:
    def test_purge_owner_removes_tombstones_of_one_type(self, ctx):
        athletes.create(OWNER_ID, "a1", {})
        deleted = athletes.create(OWNER_ID, "a2", {})
        athletes.soft_delete(OWNER_ID, deleted.id)
        games.create(OWNER_ID, "g1", {})
        athletes.create(OUTSIDER_ID, "a1", {})

        assert athletes.purge_owner(OWNER_ID) == 2
        db.session.commit()

        assert athletes.changes_since(OWNER_ID) == []
        assert len(games.list(OWNER_ID)) == 1
        assert len(athletes.list(OUTSIDER_ID)) == 1


class TestStoreLookup:
    def test_store_for_accepts_enum_and_value(self):
        assert store_for(EntityType.GAME) is games
        assert store_for("athlete") is athletes

    def test_store_for_unknown_type(self):
        with pytest.raises(NotFound):
            store_for("coach")
