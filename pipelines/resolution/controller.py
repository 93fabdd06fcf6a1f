"""
Resolution Controller.

Responsibilities:
- Drive one draft from duplicate check to a single committed outcome.
- Route each match to add-anyway, merge, link or dismiss.

Non-Responsibilities:
- No matching rules.
- No direct store writes (the service and executors own those).

Invariant:
A session commits its draft at most once, through exactly one of
create, merge or link.
"""

from typing import Dict, List, Optional

from intake.errors import DuplicateBlocked, ResolutionStateError
from intake.logger import get_logger
from intake.models import CandidateDraft, CandidateSummary, DuplicateCheckResult, DuplicateMatch, RecommendedAction

from .dismissal import DismissalTracker

logger = get_logger()


class ResolutionSession:
    """
    Interactive resolution of one draft.

    Usage:
        session = ResolutionSession(service, draft)
        result = session.start()
        if session.committed_id is None:
            session.link(result.matches[0].candidate_id)
    """

    def __init__(self, service, draft: CandidateDraft, tracker: Optional[DismissalTracker] = None):
        self.service = service
        self.draft = draft
        self.tracker = tracker or DismissalTracker(service.repository, actor=service.actor)
        self.result: Optional[DuplicateCheckResult] = None
        self.committed_id: Optional[str] = None
        self.outcome: Optional[str] = None
        self._closed = False

    @property
    def pending_matches(self) -> List[DuplicateMatch]:
        if self.result is None:
            return []
        excluded = self.tracker.excluded_ids
        return [m for m in self.result.matches if m.candidate_id not in excluded]

    def _ensure_open(self) -> None:
        if self._closed:
            raise ResolutionStateError(f"Resolution already finished ({self.outcome})")
        if self.result is None:
            raise ResolutionStateError("Call start() before resolving matches")

    def _match(self, candidate_id: str) -> DuplicateMatch:
        for match in self.pending_matches:
            if match.candidate_id == candidate_id:
                return match
        raise ResolutionStateError(f"{candidate_id} is not a pending match for this draft")

    def _finish(self, outcome: str, committed_id: Optional[str]) -> None:
        self.outcome = outcome
        self.committed_id = committed_id
        self._closed = True
        self.tracker.close()
        logger.info("Resolution finished", outcome=outcome, candidate_id=committed_id)

    def start(self) -> DuplicateCheckResult:
        """
        Validate and check the draft. With no matches the draft is created
        immediately.
        """
        if self._closed or self.result is not None:
            raise ResolutionStateError("Resolution already started")
        self.service.validate(self.draft)
        self.result = self.service.check_duplicates(self.draft, self.tracker.excluded_ids)
        if not self.result.has_duplicates:
            self._create("create")
        return self.result

    def _create(self, outcome: str) -> str:
        candidate_id = self.service.create_candidate(
            self.draft,
            overrides={"not_duplicate_of": sorted(self.tracker.excluded_ids)},
        )
        self._finish(outcome, candidate_id)
        return candidate_id

    def add_anyway(self, confirmed: bool = False) -> str:
        """
        Create the draft despite the pending matches.

        Raises:
            DuplicateBlocked: An exact match is pending and confirmed is False
        """
        self._ensure_open()
        pending = self.pending_matches
        blocking = [m for m in pending if m.is_exact]
        if blocking and self.result.recommended_action == RecommendedAction.BLOCK and not confirmed:
            raise DuplicateBlocked(blocking)
        if pending:
            logger.warning(
                "Adding candidate despite duplicate matches",
                candidate=self.draft.full_name,
                matches=[m.candidate_id for m in pending],
                confirmed=confirmed,
            )
        return self._create("add_anyway")

    def merge(
        self,
        candidate_id: str,
        combined_fields: Optional[Dict[str, object]] = None,
        expected_version: Optional[int] = None,
    ) -> CandidateSummary:
        """Merge the draft into the matched record. Nothing new is created."""
        self._ensure_open()
        match = self._match(candidate_id)
        if expected_version is None:
            expected_version = match.existing.version
        summary = self.service.merge_candidate(
            candidate_id,
            self.draft,
            combined_fields=combined_fields,
            expected_version=expected_version,
        )
        self._finish("merge", summary.id)
        return summary

    def link(self, candidate_id: str, expected_version: Optional[int] = None) -> str:
        """Create the draft as a linked application of the matched record."""
        self._ensure_open()
        match = self._match(candidate_id)
        if expected_version is None:
            expected_version = match.existing.version
        new_id = self.service.link_candidate(
            candidate_id,
            self.draft,
            expected_version=expected_version,
            not_duplicate_of=sorted(self.tracker.excluded_ids),
        )
        self._finish("link", new_id)
        return new_id

    def dismiss(self, candidate_id: str) -> Optional[str]:
        """
        Declare the match not a duplicate.

        Returns:
            The new candidate id when this was the last pending match (the
            draft is then created), otherwise None
        """
        self._ensure_open()
        self._match(candidate_id)
        self.tracker.dismiss(candidate_id)
        logger.record_resolution("dismiss")
        if not self.pending_matches:
            return self._create("create")
        return None

    def abort(self) -> None:
        """End the session without writing the draft."""
        if self._closed:
            raise ResolutionStateError(f"Resolution already finished ({self.outcome})")
        self._finish("abort", None)
