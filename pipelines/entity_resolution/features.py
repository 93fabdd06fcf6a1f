"""
Feature Extraction for Entity Resolution.

Responsibilities:
- Compute individual similarity and conflict features.
- Normalize and compare fields (name, phone, email, job/branch context).

Non-Responsibilities:
- No weighting logic.
- No threshold logic.
- No persistence.

Invariant:
Missing data must never be treated as a mismatch.
"""

from dataclasses import dataclass
from typing import Optional

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

from intake.models import CandidateDraft, CandidateSummary
from intake.normalize import (
    generate_duplicate_key,
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_text,
)

PHONE_SUFFIX_DIGITS = 6


@dataclass(frozen=True)
class PairFeatures:
    key_equal: bool
    name_equal: bool
    name_similarity: Optional[float]
    phone_equal: bool
    phone_partial: bool
    email_equal: bool
    email_partial: bool
    same_job: Optional[bool]
    same_branch: Optional[bool]


def _full_name(first: str, last: str) -> str:
    return normalize_name(f"{first} {last}")


def name_similarity(left: str, right: str) -> Optional[float]:
    """token_sort_ratio on normalized names, None when either side is blank."""
    if not left or not right:
        return None
    return float(fuzz.token_sort_ratio(left, right))


def phones_overlap(left: str, right: str) -> bool:
    """Same trailing digits, or a single typo apart."""
    if not left or not right or left == right:
        return False
    if len(left) >= PHONE_SUFFIX_DIGITS and len(right) >= PHONE_SUFFIX_DIGITS:
        if left[-PHONE_SUFFIX_DIGITS:] == right[-PHONE_SUFFIX_DIGITS:]:
            return True
    return Levenshtein.distance(left, right) <= 1


def emails_overlap(left: str, right: str) -> bool:
    """Same mailbox name at a different domain."""
    if not left or not right or left == right:
        return False
    left_local = left.split("@", 1)[0]
    right_local = right.split("@", 1)[0]
    return bool(left_local) and left_local == right_local


def _same(left: str, right: str) -> Optional[bool]:
    left, right = normalize_text(left), normalize_text(right)
    if not left or not right:
        return None
    return left == right


def compute_features(draft: CandidateDraft, existing: CandidateSummary) -> PairFeatures:
    draft_phone = draft.phone_normalized
    existing_phone = existing.phone_normalized or normalize_phone(existing.phone)
    existing_key = existing.duplicate_key or generate_duplicate_key(
        existing.first_name, existing.last_name, existing.phone
    )
    draft_email = normalize_email(draft.email)
    existing_email = normalize_email(existing.email)
    draft_name = _full_name(draft.first_name, draft.last_name)
    existing_name = _full_name(existing.first_name, existing.last_name)

    same_job = _same(draft.job_id, existing.job_id)
    if same_job is None:
        same_job = _same(draft.job_title, existing.job_title)
    same_branch = _same(draft.branch_id, existing.branch_id)
    if same_branch is None:
        same_branch = _same(draft.branch_name, existing.branch_name)

    return PairFeatures(
        key_equal=bool(draft_phone) and draft.duplicate_key == existing_key,
        name_equal=bool(draft_name) and draft_name == existing_name,
        name_similarity=name_similarity(draft_name, existing_name),
        phone_equal=bool(draft_phone) and draft_phone == existing_phone,
        phone_partial=phones_overlap(draft_phone, existing_phone),
        email_equal=bool(draft_email) and draft_email == existing_email,
        email_partial=emails_overlap(draft_email, existing_email),
        same_job=same_job,
        same_branch=same_branch,
    )
