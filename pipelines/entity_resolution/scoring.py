"""
Scoring Logic for Entity Resolution (v1).

Responsibilities:
- Turn the features of one (draft, existing) pair into a confidence score,
  a severity and the list of signals that produced them.

Non-Responsibilities:
- No database access.
- No candidate selection.
- No block/warn/allow decision.

Invariant:
Given identical inputs, this module must always return
the same score and signals.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from intake.models import Severity

from .features import PairFeatures

EXACT_KEY_CONFIDENCE = 100
PHONE_CONFIDENCE = 90
PHONE_AND_EMAIL_CONFIDENCE = 95
EMAIL_CONFIDENCE = 85
NAME_BONUS = 5

FUZZY_BASE = 50
PARTIAL_SIGNAL_BONUS = 10
CONTEXT_ADJUSTMENT = 10
# Fuzzy matches never outrank an exact email hit
FUZZY_CEILING = EMAIL_CONFIDENCE - 1


@dataclass
class PairScore:
    confidence: int
    severity: str
    match_type: List[str] = field(default_factory=list)
    matched_fields: List[str] = field(default_factory=list)


def _name_similar(features: PairFeatures, threshold: float) -> bool:
    if features.name_equal:
        return True
    return features.name_similarity is not None and features.name_similarity >= threshold


def _context_adjustment(features: PairFeatures) -> int:
    adjustment = 0
    if features.same_job or features.same_branch:
        adjustment += CONTEXT_ADJUSTMENT
    if features.same_branch is False:
        adjustment -= CONTEXT_ADJUSTMENT
    return adjustment


def score_pair(features: PairFeatures, name_threshold: float = 85.0) -> Optional[PairScore]:
    """
    Score one pair, strongest rule first.

    Args:
        features: Output of compute_features for the pair
        name_threshold: Minimum token_sort_ratio for names to count as similar

    Returns:
        PairScore, or None when no rule qualifies
    """
    name_similar = _name_similar(features, name_threshold)

    if features.key_equal:
        score = PairScore(
            confidence=EXACT_KEY_CONFIDENCE,
            severity=Severity.HIGH,
            match_type=["duplicate_key", "name", "phone"],
            matched_fields=["first_name", "last_name", "phone"],
        )
        if features.email_equal:
            score.match_type.append("email")
            score.matched_fields.append("email")
        return score

    if features.phone_equal:
        score = PairScore(
            confidence=PHONE_AND_EMAIL_CONFIDENCE if features.email_equal else PHONE_CONFIDENCE,
            severity=Severity.HIGH,
            match_type=["phone"],
            matched_fields=["phone"],
        )
        if features.email_equal:
            score.match_type.append("email")
            score.matched_fields.append("email")
        if name_similar:
            score.match_type.append("name")
            score.matched_fields.extend(["first_name", "last_name"])
        return score

    if features.email_equal:
        score = PairScore(
            confidence=EMAIL_CONFIDENCE,
            severity=Severity.HIGH,
            match_type=["email"],
            matched_fields=["email"],
        )
        if name_similar:
            score.confidence += NAME_BONUS
            score.match_type.append("name")
            score.matched_fields.extend(["first_name", "last_name"])
        return score

    if not name_similar or not (features.phone_partial or features.email_partial):
        return None

    similarity = features.name_similarity if features.name_similarity is not None else 100.0
    # Map the similarity band [threshold, 100] onto 0..10
    span = max(100.0 - name_threshold, 1.0)
    confidence = FUZZY_BASE + int(round(10 * (similarity - name_threshold) / span))

    score = PairScore(
        confidence=0,
        severity=Severity.MEDIUM,
        match_type=["name"],
        matched_fields=["first_name", "last_name"],
    )
    if features.phone_partial:
        confidence += PARTIAL_SIGNAL_BONUS
        score.match_type.append("partial_phone")
        score.matched_fields.append("phone")
    if features.email_partial:
        confidence += PARTIAL_SIGNAL_BONUS
        score.match_type.append("partial_email")
        score.matched_fields.append("email")
    confidence += _context_adjustment(features)
    score.confidence = max(1, min(FUZZY_CEILING, confidence))
    return score
