"""
Tests for database.py and the candidate repository.
"""

import pytest

from intake.database import ActivityLog, Candidate, get_session, init_database
from intake.errors import CandidateNotFound, ConcurrentModificationError, RemoteServiceError
from intake.models import CandidateDraft


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        """Test that init_database creates the database file."""
        db_path = tmp_path / "test.db"
        assert not db_path.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_creates_tables(self, tmp_path):
        """Test that init_database creates the candidate and activity tables."""
        db_path = tmp_path / "test.db"
        init_database(db_path)

        session = get_session(db_path)
        assert session.query(Candidate).count() == 0
        assert session.query(ActivityLog).count() == 0
        session.close()

    def test_init_creates_parent_directories(self, tmp_path):
        """Test that init_database creates parent directories if missing."""
        db_path = tmp_path / "nested" / "dir" / "test.db"

        init_database(db_path)

        assert db_path.exists()


class TestCandidateRepository:
    """Test CRUD and transactions on the candidates table."""

    def test_create_applies_defaults(self, repository, john_smith):
        """New records start unlinked at version 1 with a creation audit entry."""
        draft = CandidateDraft.from_dict(john_smith)
        candidate = repository.create(draft.to_fields(), actor="tester")

        stored = repository.get(candidate.id)
        assert stored.version == 1
        assert stored.duplicate_status == "none"
        assert stored.linked_candidate_ids == []
        assert stored.not_duplicate_of == []
        assert stored.created_by == "tester"
        assert stored.phone_normalized == "07911123456"
        assert stored.duplicate_key == "john|smith|07911123456"
        assert stored.postcode == "SW1A 1AA"

        actions = [entry.action for entry in repository.activity_for(candidate.id)]
        assert actions == ["created"]

    def test_update_bumps_version(self, repository, stored_john):
        repository.update(stored_john, {"notes": "Called back"}, actor="tester")

        stored = repository.get(stored_john)
        assert stored.notes == "Called back"
        assert stored.version == 2

    def test_query_by_field(self, repository, stored_john):
        matches = repository.query_by_field("phone_normalized", "07911123456")
        assert [c.id for c in matches] == [stored_john]

    def test_query_by_unsupported_field(self, repository):
        with pytest.raises(ValueError):
            repository.query_by_field("notes", "x")

    def test_require_missing(self, repository):
        with repository.transaction() as session:
            with pytest.raises(CandidateNotFound):
                repository.require(session, "missing")

    def test_delete(self, repository, stored_john):
        repository.delete(stored_john, actor="tester")

        assert repository.get(stored_john) is None
        assert repository.activity_for(stored_john)[-1].action == "deleted"

    def test_transaction_rolls_back_on_error(self, repository, stored_john):
        """Nothing written inside a failed transaction survives."""
        with pytest.raises(RuntimeError):
            with repository.transaction() as session:
                candidate = repository.require(session, stored_john)
                candidate.notes = "should not persist"
                session.flush()
                raise RuntimeError("boom")

        assert repository.get(stored_john).notes == "Referred by a colleague"

    def test_duplicate_id_is_store_error(self, repository, stored_john, john_smith):
        fields = CandidateDraft.from_dict(john_smith).to_fields()
        fields["id"] = stored_john

        with pytest.raises(RemoteServiceError):
            repository.create(fields, actor="tester")

    def test_stale_version_raises(self, repository, stored_john):
        """A row changed after it was loaded fails the versioned update."""
        with pytest.raises(ConcurrentModificationError):
            with repository.transaction() as session:
                candidate = repository.require(session, stored_john)
                # Simulate another operator's write landing first
                repository.update(stored_john, {"notes": "other operator"}, actor="other")
                candidate.notes = "mine"

        assert repository.get(stored_john).notes == "other operator"

    def test_stamp_reviewed_keeps_version(self, repository, stored_john):
        repository.stamp_reviewed(stored_john, actor="reviewer")

        stored = repository.get(stored_john)
        assert stored.duplicate_reviewed_by == "reviewer"
        assert stored.duplicate_reviewed_at is not None
        assert stored.version == 1
        assert repository.activity_for(stored_john)[-1].action == "duplicate_reviewed"

    def test_stamp_reviewed_missing(self, repository):
        with pytest.raises(CandidateNotFound):
            repository.stamp_reviewed("missing", actor="reviewer")

    def test_list_summaries(self, repository, stored_john):
        summaries = repository.list_summaries()

        assert len(summaries) == 1
        assert summaries[0].id == stored_john
        assert summaries[0].full_name == "John Smith"
        assert summaries[0].version == 1
