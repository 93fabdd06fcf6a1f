"""
Candidate Selection Logic.

Responsibilities:
- Drop existing records the draft must not be compared against
  (itself, dismissed pairs from this session, persisted not-duplicate pairs).
- Drop repeated ids so each existing record is scored once.

Non-Responsibilities:
- No scoring.
- No similarity computation.
- No resolution decisions.

Invariant:
Only explicit exclusions remove records. No field-based pruning happens
here, so a valid match is never lost.
"""

from typing import Iterable, List

from intake.models import CandidateDraft, CandidateSummary


def excluded_ids_for(draft: CandidateDraft, session_excluded: Iterable[str] = ()) -> set:
    excluded = set(session_excluded)
    excluded.update(draft.not_duplicate_of)
    if draft.id:
        excluded.add(draft.id)
    return excluded


def select_candidates(
    draft: CandidateDraft,
    existing: Iterable[CandidateSummary],
    excluded_ids: Iterable[str] = (),
) -> List[CandidateSummary]:
    """
    Existing records eligible for comparison with the draft.

    Args:
        draft: Incoming candidate fields
        existing: Summaries of stored (and in-batch created) candidates
        excluded_ids: Ids dismissed for this draft in the current flow

    Returns:
        Eligible summaries, in input order, without duplicates by id
    """
    excluded = excluded_ids_for(draft, excluded_ids)
    seen = set()
    selected: List[CandidateSummary] = []
    for summary in existing:
        if summary.id in excluded or summary.id in seen:
            continue
        if draft.id and draft.id in summary.not_duplicate_of:
            continue
        seen.add(summary.id)
        selected.append(summary)
    return selected
