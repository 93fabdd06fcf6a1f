"""
Candidate intake operations.

CandidateService is the entry point used by the CLI, the resolution session
and the bulk coordinator. It owns the I/O: repository reads feed the pure
matcher, and every write goes through a repository transaction.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from pipelines.entity_resolution.resolver import find_duplicates
from pipelines.resolution.dismissal import record_not_duplicate
from pipelines.resolution.link import LinkExecutor
from pipelines.resolution.merge import MergeExecutor, union
from storage.repositories.candidates import CandidateRepository

from .config import Settings
from .database import ActivityLog, Candidate, get_session_factory, init_database, new_candidate_id
from .errors import CandidateNotFound, ValidationError
from .logger import get_logger
from .models import CandidateDraft, CandidateSummary, DismissalAck, DuplicateCheckResult
from .schema import validate_draft

logger = get_logger()


class CandidateService:
    """Duplicate-aware candidate creation and resolution."""

    def __init__(
        self,
        repository: CandidateRepository,
        actor: str = "system",
        name_threshold: float = 85.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repository = repository
        self.actor = actor
        self.name_threshold = name_threshold
        self.clock = clock
        self.merger = MergeExecutor(repository, actor)
        self.linker = LinkExecutor(repository, actor)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CandidateService":
        init_database(settings.db_path)
        repository = CandidateRepository(get_session_factory(settings.db_path))
        return cls(repository, actor=settings.actor, name_threshold=settings.name_similarity_threshold)

    def validate(self, draft: CandidateDraft, require_contact: bool = True) -> None:
        errors = validate_draft(asdict(draft), require_contact=require_contact)
        if errors:
            raise ValidationError(errors)

    def check_duplicates(
        self,
        draft: CandidateDraft,
        excluded_ids: Iterable[str] = (),
        existing: Optional[List[CandidateSummary]] = None,
    ) -> DuplicateCheckResult:
        """
        Run the matcher for a draft.

        Args:
            draft: Incoming candidate fields
            excluded_ids: Ids dismissed for this draft in the current flow
            existing: Pre-fetched summaries to compare against (the bulk
                snapshot); the store is read when omitted

        Returns:
            DuplicateCheckResult
        """
        if existing is None:
            existing = self.repository.list_summaries()
        result = find_duplicates(
            draft,
            existing,
            excluded_ids=excluded_ids,
            now=self.clock(),
            name_threshold=self.name_threshold,
        )
        logger.record_duplicate_check(len(result.matches))
        if result.has_duplicates:
            logger.info(
                "Duplicate check found matches",
                candidate=draft.full_name,
                matches=[m.candidate_id for m in result.matches],
                action=result.recommended_action,
            )
        return result

    def create_candidate(
        self,
        draft: CandidateDraft,
        overrides: Optional[Mapping[str, Any]] = None,
        require_contact: bool = True,
    ) -> str:
        """
        Store a draft as a new candidate.

        Args:
            draft: Incoming candidate fields
            overrides: Column values applied over the draft's own; a
                "not_duplicate_of" entry adds ids to pair symmetrically
            require_contact: Require an email or phone (off for CV uploads)

        Returns:
            Id of the new candidate

        Raises:
            ValidationError: The draft is malformed
            RemoteServiceError: The write failed; nothing was persisted
        """
        self.validate(draft, require_contact)
        overrides = dict(overrides or {})
        dismissed = union(draft.not_duplicate_of, overrides.pop("not_duplicate_of", None))

        fields = draft.to_fields()
        fields.update(overrides)
        fields["id"] = draft.id or new_candidate_id()

        with self.repository.transaction() as session:
            record = self.repository.add(session, fields, self.actor)
            record_not_duplicate(self.repository, session, record, dismissed, self.actor)

        logger.record_resolution("create")
        logger.info("Candidate created", candidate_id=record.id, not_duplicate_of=dismissed)
        return record.id

    def merge_candidate(
        self,
        primary_id: str,
        incoming_fields: Union[CandidateDraft, Mapping[str, Any]],
        combined_fields: Optional[Mapping[str, Any]] = None,
        delete_secondary: bool = False,
        secondary_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CandidateSummary:
        """Merge a draft (or a persisted secondary's fields) into primary_id."""
        if isinstance(incoming_fields, CandidateDraft):
            incoming_fields = incoming_fields.to_fields()
        summary = self.merger.merge(
            primary_id,
            incoming_fields,
            combined_fields=combined_fields,
            delete_secondary=delete_secondary,
            secondary_id=secondary_id,
            expected_version=expected_version,
        )
        logger.record_resolution("merge")
        return summary

    def link_candidate(
        self,
        primary_id: str,
        draft: CandidateDraft,
        expected_version: Optional[int] = None,
        not_duplicate_of: Iterable[str] = (),
        require_contact: bool = True,
    ) -> str:
        """Create the draft as a separate application linked to primary_id."""
        self.validate(draft, require_contact)
        new_id = self.linker.link(
            primary_id,
            draft,
            expected_version=expected_version,
            not_duplicate_of=union(draft.not_duplicate_of, not_duplicate_of),
        )
        logger.record_resolution("link")
        return new_id

    def mark_not_duplicate(self, primary_id: str, context_id: str) -> DismissalAck:
        """
        Record that primary_id and context_id are different people.

        When context_id is a stored record both sides are written in one
        transaction. Otherwise (context_id names a draft that is not stored
        yet) only the review stamp on primary_id is written; the pair is
        completed when the draft is created with not_duplicate_of.
        """
        with self.repository.transaction() as session:
            primary = self.repository.require(session, primary_id)
            context = session.get(Candidate, context_id)
            primary.duplicate_reviewed_at = datetime.now()
            primary.duplicate_reviewed_by = self.actor
            if context is not None:
                record_not_duplicate(self.repository, session, context, [primary_id], self.actor)
                symmetric = True
            else:
                self.repository.log_activity(
                    session,
                    primary_id,
                    "duplicate_reviewed",
                    "Reviewed during intake: not a duplicate",
                    new_value={"context_id": context_id},
                    actor=self.actor,
                )
                symmetric = False

        logger.record_resolution("dismiss")
        return DismissalAck(primary_id=primary_id, context_id=context_id, symmetric=symmetric)

    def get_candidate(self, candidate_id: str) -> Candidate:
        candidate = self.repository.get(candidate_id)
        if candidate is None:
            raise CandidateNotFound(candidate_id)
        return candidate

    def list_summaries(self) -> List[CandidateSummary]:
        return self.repository.list_summaries()

    def activity_for(self, candidate_id: str) -> List[ActivityLog]:
        return self.repository.activity_for(candidate_id)

