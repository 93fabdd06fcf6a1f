"""
Link Executor.

Responsibilities:
- Create a new application record attached to an existing primary.
- Attach an already persisted record to a primary (merge fallback).
- Keep the primary/linked references and application history consistent.

Non-Responsibilities:
- No duplicate detection.
- No field merging.

Invariant:
Both sides of a link are written in one transaction. A record is either
fully linked (primary_record_id set and listed by the primary) or untouched.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from intake.database import Candidate, new_candidate_id
from intake.errors import (
    CandidateNotFound,
    ConcurrentModificationError,
    PartialLinkFailure,
    RemoteServiceError,
)
from intake.logger import get_logger
from intake.models import CandidateDraft, DuplicateStatus
from storage.repositories.candidates import CandidateRepository

from .dismissal import record_not_duplicate

logger = get_logger()

MAX_CLUSTER_DEPTH = 10


def history_entry(record: Any, applied_at: Optional[datetime] = None) -> Dict[str, Any]:
    """Application history entry describing a record's own job/branch."""
    applied_at = applied_at or getattr(record, "created_at", None) or datetime.now()
    return {
        "candidate_id": record.id,
        "job_id": record.job_id or "",
        "job_title": record.job_title or "",
        "branch_id": record.branch_id or "",
        "branch_name": record.branch_name or "",
        "applied_at": applied_at.isoformat(),
        "status": record.status or "new",
    }


def needs_history_backfill(record: Candidate) -> bool:
    """True the first time a record with a job takes part in a link."""
    if not (record.job_title or record.job_id):
        return False
    return not any(e.get("candidate_id") == record.id for e in record.application_history or [])


def check_version(record: Candidate, expected_version: Optional[int]) -> None:
    if expected_version is not None and record.version != expected_version:
        raise ConcurrentModificationError(
            f"Candidate {record.id} is at version {record.version}, expected {expected_version}"
        )


def resolve_cluster_root(repository: CandidateRepository, session: Session, record: Candidate) -> Candidate:
    """Follow primary_record_id from a linked record up to its primary."""
    seen = {record.id}
    current = record
    for _ in range(MAX_CLUSTER_DEPTH):
        if current.duplicate_status != DuplicateStatus.LINKED or not current.primary_record_id:
            return current
        parent = repository.require(session, current.primary_record_id)
        if parent.id in seen:
            break
        seen.add(parent.id)
        current = parent
    logger.warning("Cluster chain did not terminate", candidate_id=record.id)
    return current


def detach(repository: CandidateRepository, session: Session, record: Candidate, actor: str) -> None:
    """Take a linked record out of its primary's member list."""
    if not record.primary_record_id:
        return
    parent = session.get(Candidate, record.primary_record_id)
    if parent is not None and record.id in (parent.linked_candidate_ids or []):
        parent.linked_candidate_ids = [i for i in parent.linked_candidate_ids if i != record.id]
        if not parent.linked_candidate_ids and parent.duplicate_status == DuplicateStatus.PRIMARY:
            parent.duplicate_status = DuplicateStatus.REVIEWED
        repository.log_activity(
            session,
            parent.id,
            "unlinked",
            f"Linked application \"{record.full_name}\" moved out of this cluster",
            previous_value={"linked_candidate_id": record.id},
            actor=actor,
        )
    record.primary_record_id = None
    record.linked_candidate_ids = []
    if record.duplicate_status == DuplicateStatus.LINKED:
        record.duplicate_status = DuplicateStatus.REVIEWED


def release(
    repository: CandidateRepository,
    session: Session,
    root: Candidate,
    record: Candidate,
    actor: str,
) -> List[str]:
    """
    Take record out of whatever cluster it is in, moving its own linked
    members under root. Returns the ids of the moved members.
    """
    if root.primary_record_id == record.id:
        detach(repository, session, root, actor)
    detach(repository, session, record, actor)

    members: List[str] = []
    if record.duplicate_status == DuplicateStatus.PRIMARY:
        members = [i for i in record.linked_candidate_ids or [] if i not in (root.id, record.id)]
        record.linked_candidate_ids = []
        record.duplicate_status = DuplicateStatus.REVIEWED

    for member_id in members:
        member = session.get(Candidate, member_id)
        if member is not None and member.primary_record_id == record.id:
            attach(repository, session, root, member, actor)
    return members


def attach(
    repository: CandidateRepository,
    session: Session,
    primary: Candidate,
    linked: Candidate,
    actor: str,
) -> None:
    """
    Point linked at primary and primary at linked, with one audit entry each.

    A linked record that already belonged to another cluster leaves it first,
    and any members it had as a primary follow it under the new primary.
    JSON columns are always reassigned, never mutated in place.
    """
    if linked.id == primary.id:
        return
    if linked.primary_record_id != primary.id:
        release(repository, session, primary, linked, actor)

    if linked.id not in (primary.linked_candidate_ids or []):
        primary.linked_candidate_ids = list(primary.linked_candidate_ids or []) + [linked.id]
    primary.duplicate_status = DuplicateStatus.PRIMARY
    if needs_history_backfill(primary):
        primary.application_history = list(primary.application_history or []) + [history_entry(primary)]

    linked.primary_record_id = primary.id
    linked.duplicate_status = DuplicateStatus.LINKED
    linked.linked_candidate_ids = [primary.id]
    if needs_history_backfill(linked):
        linked.application_history = list(linked.application_history or []) + [history_entry(linked)]

    repository.log_activity(
        session,
        primary.id,
        "linked",
        f"Linked application \"{linked.full_name}\" ({linked.job_title or 'no job'})",
        new_value={"linked_candidate_id": linked.id},
        actor=actor,
    )
    repository.log_activity(
        session,
        linked.id,
        "linked",
        f"Linked to existing candidate \"{primary.full_name}\"",
        new_value={"primary_record_id": primary.id},
        actor=actor,
    )


class LinkExecutor:
    """Writes links between candidate records."""

    def __init__(self, repository: CandidateRepository, actor: str = "system"):
        self.repository = repository
        self.actor = actor

    def link(
        self,
        primary_id: str,
        draft: CandidateDraft,
        expected_version: Optional[int] = None,
        not_duplicate_of: Iterable[str] = (),
    ) -> str:
        """
        Create the draft as a linked record of primary_id.

        Args:
            primary_id: Chosen existing record (redirected to its cluster root
                if it is itself linked)
            draft: Incoming candidate fields
            expected_version: Version of the chosen record the operator saw
            not_duplicate_of: Ids dismissed for this draft, written symmetrically

        Returns:
            Id of the new linked record

        Raises:
            CandidateNotFound: primary_id does not exist
            ConcurrentModificationError: The chosen record changed since it was read
            PartialLinkFailure: Either write failed; nothing was persisted
        """
        new_id = draft.id or new_candidate_id()
        try:
            with self.repository.transaction() as session:
                chosen = self.repository.require(session, primary_id)
                check_version(chosen, expected_version)
                primary = resolve_cluster_root(self.repository, session, chosen)

                fields = draft.to_fields()
                fields.update(id=new_id, linked_candidate_ids=[])
                linked = self.repository.add(
                    session,
                    fields,
                    self.actor,
                    f"Candidate \"{draft.full_name}\" was added as a linked application",
                )
                linked.application_history = [history_entry(linked)]
                attach(self.repository, session, primary, linked, self.actor)
                record_not_duplicate(self.repository, session, linked, not_duplicate_of, self.actor)
        except (CandidateNotFound, ConcurrentModificationError):
            raise
        except RemoteServiceError as e:
            logger.error("Link rolled back", primary_id=primary_id, error=str(e))
            raise PartialLinkFailure(primary_id, str(e)) from e

        logger.info("Linked new application", primary_id=primary.id, linked_id=new_id)
        return new_id

    def link_existing(self, primary_id: str, secondary_id: str) -> None:
        """Attach an already persisted record to primary_id's cluster."""
        try:
            with self.repository.transaction() as session:
                primary = resolve_cluster_root(
                    self.repository, session, self.repository.require(session, primary_id)
                )
                secondary = self.repository.require(session, secondary_id)
                if secondary.id == primary.id:
                    return
                attach(self.repository, session, primary, secondary, self.actor)
        except (CandidateNotFound, ConcurrentModificationError):
            raise
        except RemoteServiceError as e:
            raise PartialLinkFailure(primary_id, str(e)) from e
