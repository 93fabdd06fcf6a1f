"""
Dismissal Tracker.

Responsibilities:
- Remember which matches the operator declared "not a duplicate" while
  resolving one draft, so later checks in the same flow skip them.
- Persist review metadata on the dismissed record in the background.
- Write the symmetric not_duplicate_of pair once the draft is stored.

Non-Responsibilities:
- No duplicate detection.
- No record creation.

Invariant:
Background persistence never blocks or fails the resolution flow.
"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from intake.database import Candidate
from intake.logger import get_logger
from intake.models import DuplicateStatus
from storage.repositories.candidates import CandidateRepository

logger = get_logger()


def record_not_duplicate(
    repository: CandidateRepository,
    session: Session,
    record: Candidate,
    other_ids: Iterable[str],
    actor: str,
) -> List[str]:
    """
    Mark record and each of other_ids as not duplicates of each other.

    Runs inside the caller's transaction. Ids that no longer exist are
    skipped. Returns the ids actually paired.
    """
    paired: List[str] = []
    for other_id in dict.fromkeys(other_ids):
        if not other_id or other_id == record.id:
            continue
        other = session.get(Candidate, other_id)
        if other is None:
            logger.warning("Dismissed candidate no longer exists", candidate_id=other_id)
            continue
        if record.id not in (other.not_duplicate_of or []):
            other.not_duplicate_of = list(other.not_duplicate_of or []) + [record.id]
        paired.append(other_id)
        repository.log_activity(
            session,
            other_id,
            "not_duplicate",
            f"Marked as not a duplicate of \"{record.full_name}\"",
            new_value={"not_duplicate_of": record.id},
            actor=actor,
        )

    if paired:
        current = list(record.not_duplicate_of or [])
        record.not_duplicate_of = current + [i for i in paired if i not in current]
        if record.duplicate_status in (None, DuplicateStatus.NONE):
            record.duplicate_status = DuplicateStatus.REVIEWED
        record.duplicate_reviewed_at = datetime.now()
        record.duplicate_reviewed_by = actor
    return paired


class DismissalTracker:
    """
    Per-draft set of dismissed match ids.

    Review stamps are submitted to a worker thread; errors are logged and
    dropped. Call flush() to wait for pending writes.
    """

    def __init__(
        self,
        repository: CandidateRepository,
        actor: str = "system",
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.repository = repository
        self.actor = actor
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="dismissal")
        self._excluded: Set[str] = set()
        self._pending: List[Future] = []

    @property
    def excluded_ids(self) -> frozenset:
        return frozenset(self._excluded)

    def dismiss(self, candidate_id: str) -> None:
        """Exclude candidate_id from later checks and stamp it as reviewed."""
        if candidate_id in self._excluded:
            return
        self._excluded.add(candidate_id)
        self._pending.append(self._executor.submit(self._persist, candidate_id))

    def _persist(self, candidate_id: str) -> None:
        try:
            self.repository.stamp_reviewed(
                candidate_id,
                self.actor,
                description="Reviewed during intake: not a duplicate",
            )
        except Exception as e:
            logger.warning("Failed to persist dismissal", candidate_id=candidate_id, error=str(e))
            logger.record_error(type(e).__name__)

    def flush(self, timeout: Optional[float] = None) -> None:
        pending, self._pending = self._pending, []
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        """Stop accepting work. Pending stamps still complete in the background."""
        if self._owns_executor:
            self._executor.shutdown(wait=False)
