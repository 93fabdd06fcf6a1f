import re
from typing import Any, Dict, List

from .normalize import normalize_phone

REQUIRED_STR_FIELDS = ["first_name", "last_name"]
OPTIONAL_STR_FIELDS = [
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
OPTIONAL_LIST_FIELDS = ["skills", "qualifications"]

MIN_PHONE_DIGITS = 10
MAX_NAME_LENGTH = 100

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def validate_draft(data: Dict[str, Any], require_contact: bool = True) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    Bulk CV uploads pass require_contact=False since the filename fallback
    only yields a name.
    """
    errors: List[str] = []

    for f in REQUIRED_STR_FIELDS:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")
        elif len(data[f].strip()) > MAX_NAME_LENGTH:
            errors.append(f"Field '{f}' length must be at most {MAX_NAME_LENGTH}")

    for f in OPTIONAL_STR_FIELDS:
        if f in data and data[f] is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    for f in OPTIONAL_LIST_FIELDS:
        value = data.get(f)
        if value is None:
            continue
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            errors.append(f"Field '{f}' must be a list of strings if provided")

    email = data.get("email")
    if _is_non_empty_str(email) and not _EMAIL_RE.match(email.strip()):
        errors.append("Field 'email' must be a valid email address")

    phone = data.get("phone")
    if _is_non_empty_str(phone) and len(normalize_phone(phone)) < MIN_PHONE_DIGITS:
        errors.append(f"Field 'phone' must contain at least {MIN_PHONE_DIGITS} digits")

    if require_contact and not _is_non_empty_str(email) and not _is_non_empty_str(phone):
        errors.append("At least one of 'email' or 'phone' is required")

    return errors
