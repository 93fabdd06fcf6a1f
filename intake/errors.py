"""
Exception taxonomy for candidate intake.

ValidationError and DuplicateBlocked are raised before anything is written.
RemoteServiceError (and its subclasses) wrap store failures; when the failing
call was a transaction, nothing from it was persisted.
"""

from typing import List, Optional


class IntakeError(Exception):
    """Base class for all intake errors."""
    pass


class ValidationError(IntakeError):
    """Draft rejected before reaching the store."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid candidate draft")


class DuplicateBlocked(IntakeError):
    """Exact duplicate-key match; creation needs an explicit override."""

    def __init__(self, matches: list):
        self.matches = list(matches)
        ids = ", ".join(m.candidate_id for m in self.matches)
        super().__init__(f"Exact duplicate of existing candidate(s): {ids}")


class CandidateNotFound(IntakeError):
    """Referenced candidate id does not exist."""

    def __init__(self, candidate_id: str):
        self.candidate_id = candidate_id
        super().__init__(f"Candidate not found: {candidate_id}")


class RemoteServiceError(IntakeError):
    """Store or network failure."""
    pass


class ConcurrentModificationError(RemoteServiceError):
    """A record changed between read and write (version mismatch)."""
    pass


class PartialLinkFailure(RemoteServiceError):
    """One of the two link writes failed; the link was rolled back."""

    def __init__(self, primary_id: str, message: str):
        self.primary_id = primary_id
        super().__init__(f"Link to {primary_id} rolled back: {message}")


class ExtractionFailure(IntakeError):
    """CV extraction failed or returned low confidence. Never fatal."""

    def __init__(self, message: str, confidence: Optional[float] = None):
        self.confidence = confidence
        super().__init__(message)


class BlobStoreError(RemoteServiceError):
    """CV attachment upload/delete failure."""
    pass


class ResolutionStateError(IntakeError):
    """Decision requested on a resolution session that cannot accept it."""
    pass
