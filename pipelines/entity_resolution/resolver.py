"""
Entity Resolution Orchestrator.

Responsibilities:
- Coordinate candidate selection.
- Invoke feature computation and scoring for every eligible pair.
- Classify each match into an application scenario.
- Rank matches and pick the recommended action.

Non-Responsibilities:
- No database access.
- No mutation of persistent state.
- No resolution (merge, link, dismiss) of the matches it returns.

Invariant:
This module must be deterministic given the same inputs,
including the reference time.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from intake.models import (
    CandidateDraft,
    CandidateSummary,
    DuplicateCheckResult,
    DuplicateMatch,
    RecommendedAction,
    Severity,
)

from .candidate_selector import select_candidates
from .features import PairFeatures, compute_features
from .scoring import score_pair

REJECTED_STATUSES = {"rejected", "withdrawn", "cancelled", "no_show"}
HIRED_STATUSES = {"hired", "accepted"}

SCENARIO_LABELS = {
    "same_job_same_location": "Already applied for this job at this branch",
    "same_job_diff_location": "Applied for the same job at a different branch",
    "different_job": "Previously applied for a different job",
    "previously_rejected": "Previously rejected or withdrawn",
    "previously_hired": "Previously hired",
    "general_duplicate": "Possible duplicate",
}


def classify_scenario(existing: CandidateSummary, features: PairFeatures) -> str:
    status = (existing.status or "").lower()
    if status in HIRED_STATUSES:
        return "previously_hired"
    if status in REJECTED_STATUSES:
        return "previously_rejected"
    if features.same_job is True:
        if features.same_branch is False:
            return "same_job_diff_location"
        return "same_job_same_location"
    if features.same_job is False:
        return "different_job"
    return "general_duplicate"


def days_since(created_at: Optional[datetime], now: datetime) -> Optional[int]:
    if created_at is None:
        return None
    return max(0, (now - created_at).days)


def _sort_key(match: DuplicateMatch):
    return (-match.confidence, -Severity.RANK.get(match.severity, 0), match.candidate_id)


def find_duplicates(
    draft: CandidateDraft,
    existing: Iterable[CandidateSummary],
    excluded_ids: Iterable[str] = (),
    now: Optional[datetime] = None,
    name_threshold: float = 85.0,
) -> DuplicateCheckResult:
    """
    Compare a draft against existing candidates.

    Args:
        draft: Incoming candidate fields
        existing: Summaries of persisted and in-batch created candidates
        excluded_ids: Ids dismissed for this draft in the current flow
        now: Reference time for days-since-application
        name_threshold: Minimum name similarity for fuzzy matches

    Returns:
        DuplicateCheckResult with matches ranked by confidence
    """
    now = now or datetime.now()
    matches: List[DuplicateMatch] = []

    for summary in select_candidates(draft, existing, excluded_ids):
        features = compute_features(draft, summary)
        score = score_pair(features, name_threshold)
        if score is None:
            continue
        scenario = classify_scenario(summary, features)
        matches.append(
            DuplicateMatch(
                candidate_id=summary.id,
                existing=summary,
                match_type=score.match_type,
                confidence=score.confidence,
                severity=score.severity,
                matched_fields=score.matched_fields,
                scenario=scenario,
                scenario_label=SCENARIO_LABELS[scenario],
                days_since_application=days_since(summary.created_at, now),
            )
        )

    if not matches:
        return DuplicateCheckResult.empty()

    matches.sort(key=_sort_key)
    highest = max((m.severity for m in matches), key=lambda s: Severity.RANK.get(s, 0))
    if any(m.is_exact for m in matches):
        action = RecommendedAction.BLOCK
    else:
        action = RecommendedAction.WARN

    return DuplicateCheckResult(
        has_duplicates=True,
        matches=matches,
        highest_severity=highest,
        recommended_action=action,
    )
