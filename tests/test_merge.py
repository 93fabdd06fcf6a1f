"""
Tests for the merge executor.
"""

import pytest

from intake.errors import ConcurrentModificationError, RemoteServiceError
from intake.models import CandidateDraft
from pipelines.resolution.merge import MERGED_NOTE_SEPARATOR, build_merge_update, combine_fields, union


class TestMergeRules:
    """Pure field-combination rules."""

    def test_fills_only_empty_scalars(self):
        primary = {"email": "john@example.com", "address": "", "postcode": ""}
        incoming = {"email": "other@example.com", "address": "1 High St", "postcode": "sw1a1aa"}

        changes = build_merge_update(primary, incoming)

        assert "email" not in changes
        assert changes["address"] == "1 High St"
        assert changes["postcode"] == "SW1A 1AA"

    def test_never_blanks_a_populated_field(self):
        primary = {"first_name": "John", "email": "john@example.com"}
        incoming = {"first_name": "", "email": ""}

        assert build_merge_update(primary, incoming) == {}

    def test_arrays_union_in_order(self):
        primary = {"skills": ["dispensing", "counselling"]}
        incoming = {"skills": ["counselling", "vaccination"]}

        changes = build_merge_update(primary, incoming)

        assert changes["skills"] == ["dispensing", "counselling", "vaccination"]

    def test_cv_adopted_only_when_missing(self):
        incoming = {"cv_url": "file:///new.pdf", "cv_file_name": "new.pdf", "cv_parsed_data": {"x": 1}}

        assert build_merge_update({"cv_url": None}, incoming)["cv_url"] == "file:///new.pdf"
        assert "cv_url" not in build_merge_update({"cv_url": "file:///old.pdf"}, incoming)

    def test_key_recomputed_when_phone_filled(self):
        primary = {"first_name": "John", "last_name": "Smith", "phone": ""}
        changes = build_merge_update(primary, {"phone": "+44 7911 123456"})

        assert changes["phone_normalized"] == "07911123456"
        assert changes["duplicate_key"] == "john|smith|07911123456"

    def test_combine_fields(self):
        combined = combine_fields(
            {"notes": "First note", "skills": ["a"], "qualifications": []},
            {"notes": "Second note", "skills": ["b", "a"], "qualifications": ["GPhC"]},
        )

        assert combined["notes"] == f"First note{MERGED_NOTE_SEPARATOR}Second note"
        assert combined["skills"] == ["a", "b"]
        assert combined["qualifications"] == ["GPhC"]

    def test_combined_arrays_extend_primary(self):
        """Operator-chosen lists are unioned with the primary, never replace it."""
        primary = {"skills": ["a", "b"]}
        changes = build_merge_update(primary, {"skills": ["c", "d"]}, combined_fields={"skills": ["c"]})

        assert changes["skills"] == ["a", "b", "c"]

    def test_combined_fields_restricted(self):
        with pytest.raises(ValueError):
            build_merge_update({}, {}, combined_fields={"email": "x"})

    def test_union(self):
        assert union(["a", "b"], None, ["b", "c", ""]) == ["a", "b", "c"]


class TestMergeExecutor:
    """Merges against the database."""

    def test_merge_draft_into_primary(self, service, stored_john):
        draft = CandidateDraft(
            first_name="John", last_name="Smith", phone="07911123456",
            address="1 High St", skills=["vaccination"], notes="Second application",
        )

        summary = service.merge_candidate(
            stored_john, draft, combined_fields={"notes": "Referred by a colleague\n\nSecond application"}
        )

        stored = service.get_candidate(stored_john)
        assert summary.id == stored_john
        assert summary.duplicate_status == "primary"
        assert stored.address == "1 High St"
        assert stored.email == "john.smith@example.com"
        assert stored.skills == ["dispensing", "vaccination"]
        assert "Second application" in stored.notes
        assert stored.duplicate_reviewed_by == "tester"
        assert service.activity_for(stored_john)[-1].action == "merged"
        assert len(service.list_summaries()) == 1

    def test_merge_and_delete_secondary(self, service, stored_john, jane_doe):
        secondary = service.create_candidate(CandidateDraft.from_dict(jane_doe))

        service.merge_candidate(
            stored_john, dict(jane_doe), delete_secondary=True, secondary_id=secondary
        )

        assert [s.id for s in service.list_summaries()] == [stored_john]

    def test_failed_delete_links_secondary(self, service, stored_john, jane_doe, monkeypatch):
        """A secondary that cannot be deleted ends up linked, never orphaned."""
        secondary = service.create_candidate(CandidateDraft.from_dict(jane_doe))

        def failing_delete(*args, **kwargs):
            raise RemoteServiceError("delete failed")

        monkeypatch.setattr(service.repository, "delete", failing_delete)

        service.merge_candidate(stored_john, dict(jane_doe), delete_secondary=True, secondary_id=secondary)

        kept = service.get_candidate(secondary)
        primary = service.get_candidate(stored_john)
        assert kept.primary_record_id == stored_john
        assert kept.duplicate_status == "linked"
        assert secondary in primary.linked_candidate_ids

    def test_merge_without_delete_links_secondary(self, service, stored_john, jane_doe):
        secondary = service.create_candidate(CandidateDraft.from_dict(jane_doe))

        service.merge_candidate(stored_john, dict(jane_doe), secondary_id=secondary)

        assert service.get_candidate(secondary).primary_record_id == stored_john
        assert service.get_candidate(stored_john).linked_candidate_ids == [secondary]

    def test_stale_version_rejected(self, service, stored_john):
        service.repository.update(stored_john, {"address": "Changed elsewhere"}, actor="other")

        with pytest.raises(ConcurrentModificationError):
            service.merge_candidate(stored_john, {"notes": "x", "skills": ["y"]}, expected_version=1)

        assert service.get_candidate(stored_john).skills == ["dispensing"]


@pytest.fixture
def jane_cluster(service, jane_doe):
    """Jane as a primary with one linked application of her own."""
    jane = service.create_candidate(CandidateDraft.from_dict(jane_doe))
    jane_again = service.link_candidate(jane, CandidateDraft.from_dict(dict(jane_doe, job_title="Technician")))
    return jane, jane_again


class TestMergeClusters:
    """Merging never leaves a cluster half-linked."""

    def test_secondary_members_follow_it(self, service, stored_john, jane_cluster, cluster_problems):
        jane, jane_again = jane_cluster

        service.merge_candidate(stored_john, {}, secondary_id=jane)

        assert set(service.get_candidate(stored_john).linked_candidate_ids) == {jane, jane_again}
        assert service.get_candidate(jane).primary_record_id == stored_john
        assert service.get_candidate(jane).linked_candidate_ids == [stored_john]
        assert service.get_candidate(jane_again).primary_record_id == stored_john
        assert cluster_problems() == []

    def test_deleted_secondary_hands_over_members(self, service, stored_john, jane_cluster, cluster_problems):
        jane, jane_again = jane_cluster

        service.merge_candidate(stored_john, {}, delete_secondary=True, secondary_id=jane)

        assert jane not in [s.id for s in service.list_summaries()]
        assert service.get_candidate(stored_john).linked_candidate_ids == [jane_again]
        assert service.get_candidate(jane_again).primary_record_id == stored_john
        assert cluster_problems() == []

    def test_failed_delete_with_members(self, service, stored_john, jane_cluster, cluster_problems, monkeypatch):
        jane, jane_again = jane_cluster

        def failing_delete(*args, **kwargs):
            raise RemoteServiceError("delete failed")

        monkeypatch.setattr(service.repository, "delete", failing_delete)

        service.merge_candidate(stored_john, {}, delete_secondary=True, secondary_id=jane)

        assert set(service.get_candidate(stored_john).linked_candidate_ids) == {jane, jane_again}
        assert service.get_candidate(jane).duplicate_status == "linked"
        assert cluster_problems() == []

    def test_linked_secondary_leaves_old_primary(self, service, stored_john, jane_cluster, cluster_problems):
        jane, jane_again = jane_cluster

        service.merge_candidate(stored_john, {}, secondary_id=jane_again)

        old_primary = service.get_candidate(jane)
        assert old_primary.linked_candidate_ids == []
        assert old_primary.duplicate_status == "reviewed"
        assert service.get_candidate(jane_again).primary_record_id == stored_john
        assert service.get_candidate(stored_john).linked_candidate_ids == [jane_again]
        assert "unlinked" in [a.action for a in service.activity_for(jane)]
        assert cluster_problems() == []

    def test_target_inside_secondary_cluster_takes_over(self, service, jane_cluster, cluster_problems):
        jane, jane_again = jane_cluster

        summary = service.merge_candidate(jane_again, {}, secondary_id=jane)

        assert summary.duplicate_status == "primary"
        assert service.get_candidate(jane_again).linked_candidate_ids == [jane]
        assert service.get_candidate(jane_again).primary_record_id is None
        assert service.get_candidate(jane).primary_record_id == jane_again
        assert cluster_problems() == []

    def test_merge_into_itself_rejected(self, service, stored_john):
        with pytest.raises(ValueError):
            service.merge_candidate(stored_john, {}, secondary_id=stored_john)
