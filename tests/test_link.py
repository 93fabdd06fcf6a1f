"""
Tests for linking a new application to an existing candidate.
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from intake.errors import CandidateNotFound, ConcurrentModificationError, PartialLinkFailure
from intake.models import CandidateDraft


@pytest.fixture
def second_application(john_smith) -> CandidateDraft:
    """John applying again, for a different job."""
    return CandidateDraft.from_dict(dict(john_smith, job_id="job-2", job_title="Technician"))


def own_history(record):
    return [e for e in record.application_history if e["candidate_id"] == record.id]


class TestLink:
    """Both sides of a link are written together."""

    def test_link_is_bidirectional(self, service, stored_john, second_application, cluster_problems):
        new_id = service.link_candidate(stored_john, second_application)

        primary = service.get_candidate(stored_john)
        linked = service.get_candidate(new_id)
        assert primary.duplicate_status == "primary"
        assert primary.linked_candidate_ids == [new_id]
        assert linked.duplicate_status == "linked"
        assert linked.primary_record_id == stored_john
        assert linked.linked_candidate_ids == [stored_john]
        assert linked.job_title == "Technician"
        assert cluster_problems() == []

    def test_history_backfilled_once(self, service, stored_john, second_application, john_smith):
        """The primary's own application is recorded on its first link only."""
        service.link_candidate(stored_john, second_application)
        third = CandidateDraft.from_dict(dict(john_smith, job_id="job-3", job_title="Dispenser"))
        service.link_candidate(stored_john, third)

        primary = service.get_candidate(stored_john)
        assert len(own_history(primary)) == 1
        assert own_history(primary)[0]["job_title"] == "Pharmacist"
        assert len(primary.linked_candidate_ids) == 2

    def test_linked_record_has_its_own_history(self, service, stored_john, second_application):
        new_id = service.link_candidate(stored_john, second_application)

        linked = service.get_candidate(new_id)
        assert len(own_history(linked)) == 1
        assert own_history(linked)[0]["job_id"] == "job-2"

    def test_link_to_linked_record_uses_primary(
        self, service, stored_john, second_application, john_smith, cluster_problems
    ):
        first = service.link_candidate(stored_john, second_application)
        third = CandidateDraft.from_dict(dict(john_smith, job_id="job-3"))

        second = service.link_candidate(first, third)

        assert service.get_candidate(second).primary_record_id == stored_john
        assert service.get_candidate(stored_john).linked_candidate_ids == [first, second]
        assert service.get_candidate(first).linked_candidate_ids == [stored_john]
        assert cluster_problems() == []

    def test_audit_entries_on_both_sides(self, service, stored_john, second_application):
        new_id = service.link_candidate(stored_john, second_application)

        assert "linked" in [a.action for a in service.activity_for(stored_john)]
        assert "linked" in [a.action for a in service.activity_for(new_id)]

    def test_not_duplicate_of_written_with_link(self, service, stored_john, second_application, jane_doe):
        jane = service.create_candidate(CandidateDraft.from_dict(jane_doe))

        new_id = service.link_candidate(stored_john, second_application, not_duplicate_of=[jane])

        assert service.get_candidate(new_id).not_duplicate_of == [jane]
        assert service.get_candidate(jane).not_duplicate_of == [new_id]


class TestLinkFailures:
    """A failed link leaves nothing behind."""

    def test_unknown_primary(self, service, second_application):
        with pytest.raises(CandidateNotFound):
            service.link_candidate("missing", second_application)

        assert service.list_summaries() == []

    def test_stale_primary(self, service, stored_john, second_application):
        service.repository.update(stored_john, {"address": "Moved"}, actor="other")

        with pytest.raises(ConcurrentModificationError):
            service.link_candidate(stored_john, second_application, expected_version=1)

        assert len(service.list_summaries()) == 1
        assert service.get_candidate(stored_john).linked_candidate_ids == []

    def test_write_failure_rolls_back(self, service, stored_john, second_application, monkeypatch):
        def failing_attach(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr("pipelines.resolution.link.attach", failing_attach)

        with pytest.raises(PartialLinkFailure):
            service.link_candidate(stored_john, second_application)

        assert [s.id for s in service.list_summaries()] == [stored_john]
        assert service.get_candidate(stored_john).duplicate_status == "none"
