import re

DEFAULT_COUNTRY_CODE = "44"

_NON_DIGITS = re.compile(r"\D")
_POSTCODE_CHARS = re.compile(r"[^A-Z0-9]")


def normalize_text(s: str | None) -> str:
    if not s:
        return ""
    return " ".join(s.strip().lower().split())


def normalize_name(name: str | None) -> str:
    return normalize_text(name)


def normalize_email(email: str | None) -> str:
    if not email:
        return ""
    return email.strip().lower()


def normalize_phone(raw: str | None, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    Canonical national form of a phone number.

    Punctuation and spacing are dropped, and the international variants
    (+44 7911..., 0044 7911..., 44 7911...) collapse to the national
    trunk-prefixed form 07911...
    """
    if not raw:
        return ""
    digits = _NON_DIGITS.sub("", raw)
    if not digits:
        return ""

    intl_prefix = "00" + country_code
    if digits.startswith(intl_prefix):
        digits = digits[len(intl_prefix):]
        return "0" + digits.lstrip("0")
    if raw.strip().startswith("+") and digits.startswith(country_code):
        digits = digits[len(country_code):]
        return "0" + digits.lstrip("0")
    # 44 7911 123456 typed without the plus
    if digits.startswith(country_code) and len(digits) == len(country_code) + 10:
        return "0" + digits[len(country_code):]
    return digits


def generate_duplicate_key(first_name: str | None, last_name: str | None, phone: str | None) -> str:
    """Deterministic fingerprint: first|last|phone, all normalized."""
    return "|".join([normalize_name(first_name), normalize_name(last_name), normalize_phone(phone)])


def format_postcode(postcode: str | None) -> str:
    if not postcode:
        return ""
    compact = _POSTCODE_CHARS.sub("", postcode.upper())
    if len(compact) < 5:
        return compact
    # Inward code is always the last three characters
    return f"{compact[:-3]} {compact[-3:]}"
