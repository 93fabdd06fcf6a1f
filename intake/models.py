from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional

from .normalize import format_postcode, generate_duplicate_key, normalize_email, normalize_phone


class DuplicateStatus:
    NONE = "none"
    PRIMARY = "primary"
    LINKED = "linked"
    REVIEWED = "reviewed"


class Severity:
    HIGH = "high"
    MEDIUM = "medium"

    RANK = {HIGH: 2, MEDIUM: 1}


class RecommendedAction:
    BLOCK = "block"
    WARN = "warn"
    ALLOW = "allow"


SCALAR_FIELDS = [
    "first_name",
    "last_name",
    "email",
    "phone",
    "address",
    "postcode",
    "source",
    "job_id",
    "job_title",
    "branch_id",
    "branch_name",
    "notes",
]
ARRAY_FIELDS = ["skills", "qualifications"]
CV_FIELDS = ["cv_url", "cv_file_name", "cv_storage_path"]


@dataclass(slots=True)
class CandidateDraft:
    """Candidate fields as submitted, before (or without) persistence."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    postcode: str = ""
    source: str = ""
    job_id: str = ""
    job_title: str = ""
    branch_id: str = ""
    branch_name: str = ""
    notes: str = ""
    status: str = "new"
    skills: List[str] = field(default_factory=list)
    qualifications: List[str] = field(default_factory=list)
    cv_url: Optional[str] = None
    cv_file_name: Optional[str] = None
    cv_storage_path: Optional[str] = None
    cv_parsed_data: Optional[Dict[str, Any]] = None
    needs_review: bool = False
    # Set when the draft describes an already persisted record
    id: Optional[str] = None
    not_duplicate_of: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateDraft":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and v is not None}
        for name in ARRAY_FIELDS + ["not_duplicate_of"]:
            if name in values:
                values[name] = [str(v) for v in values[name] if v]
        return cls(**values)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def phone_normalized(self) -> str:
        return normalize_phone(self.phone)

    @property
    def duplicate_key(self) -> str:
        return generate_duplicate_key(self.first_name, self.last_name, self.phone)

    def to_fields(self) -> Dict[str, Any]:
        """Column values for a new candidate record."""
        return {
            "first_name": self.first_name.strip(),
            "last_name": self.last_name.strip(),
            "email": normalize_email(self.email),
            "phone": self.phone.strip(),
            "phone_normalized": self.phone_normalized,
            "duplicate_key": self.duplicate_key,
            "address": self.address.strip(),
            "postcode": format_postcode(self.postcode),
            "source": self.source,
            "job_id": self.job_id,
            "job_title": self.job_title.strip(),
            "branch_id": self.branch_id,
            "branch_name": self.branch_name,
            "notes": self.notes.strip(),
            "status": self.status,
            "skills": list(dict.fromkeys(self.skills)),
            "qualifications": list(dict.fromkeys(self.qualifications)),
            "cv_url": self.cv_url,
            "cv_file_name": self.cv_file_name,
            "cv_storage_path": self.cv_storage_path,
            "cv_parsed_data": self.cv_parsed_data,
            "needs_review": self.needs_review,
        }


@dataclass(slots=True)
class CandidateSummary:
    """Read-only projection of a stored candidate used by the matcher."""

    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    phone_normalized: str = ""
    duplicate_key: str = ""
    status: str = "new"
    job_id: str = ""
    job_title: str = ""
    branch_id: str = ""
    branch_name: str = ""
    created_at: Optional[datetime] = None
    duplicate_status: str = DuplicateStatus.NONE
    primary_record_id: Optional[str] = None
    not_duplicate_of: List[str] = field(default_factory=list)
    version: Optional[int] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(slots=True)
class DuplicateMatch:
    """One existing candidate that looks like the draft."""

    candidate_id: str
    existing: CandidateSummary
    match_type: List[str]
    confidence: int
    severity: str
    matched_fields: List[str]
    scenario: str
    scenario_label: str
    days_since_application: Optional[int] = None

    @property
    def is_exact(self) -> bool:
        return "duplicate_key" in self.match_type


@dataclass(slots=True)
class DuplicateCheckResult:
    has_duplicates: bool
    matches: List[DuplicateMatch]
    highest_severity: Optional[str]
    recommended_action: str

    @classmethod
    def empty(cls) -> "DuplicateCheckResult":
        return cls(
            has_duplicates=False,
            matches=[],
            highest_severity=None,
            recommended_action=RecommendedAction.ALLOW,
        )


@dataclass(slots=True)
class DismissalAck:
    primary_id: str
    context_id: str
    symmetric: bool
