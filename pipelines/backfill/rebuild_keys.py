"""
Duplicate Key Backfill Pipeline.

Responsibilities:
- Recompute phone_normalized and duplicate_key for every stored candidate.
- Report how many records changed.

Non-Responsibilities:
- No duplicate detection.
- No normalization logic of its own.

Invariant:
A rebuild must be idempotent: running it twice changes nothing the
second time.
"""

from dataclasses import dataclass

from intake.database import Candidate
from intake.logger import get_logger
from intake.normalize import generate_duplicate_key, normalize_phone
from storage.repositories.candidates import CandidateRepository

logger = get_logger()


@dataclass
class RebuildReport:
    scanned: int = 0
    updated: int = 0


def rebuild_keys(repository: CandidateRepository, actor: str = "system", dry_run: bool = False) -> RebuildReport:
    """
    Bring derived matching fields in line with the current normalizer.

    Args:
        repository: Candidate repository
        actor: Audit actor for the updates
        dry_run: Count stale records without writing

    Returns:
        RebuildReport with scanned/updated counts
    """
    report = RebuildReport()
    with repository.transaction() as session:
        for candidate in session.query(Candidate).order_by(Candidate.created_at).all():
            report.scanned += 1
            phone_normalized = normalize_phone(candidate.phone)
            duplicate_key = generate_duplicate_key(candidate.first_name, candidate.last_name, candidate.phone)
            if candidate.phone_normalized == phone_normalized and candidate.duplicate_key == duplicate_key:
                continue
            report.updated += 1
            if dry_run:
                continue
            repository.log_activity(
                session,
                candidate.id,
                "updated",
                "Duplicate key rebuilt",
                previous_value={"duplicate_key": candidate.duplicate_key},
                new_value={"duplicate_key": duplicate_key},
                actor=actor,
            )
            candidate.phone_normalized = phone_normalized
            candidate.duplicate_key = duplicate_key

    logger.info("Duplicate key rebuild finished", scanned=report.scanned, updated=report.updated, dry_run=dry_run)
    return report
