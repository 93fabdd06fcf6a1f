"""CV field extraction via the remote parsing service, plus the filename fallback."""

import re
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from .errors import ExtractionFailure
from .logger import get_logger
from .retry import CircuitBreaker, CircuitOpenError, RetryError, exponential_backoff, should_retry_http_status

logger = get_logger()

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

_EXTENSION_RE = re.compile(r"\.(pdf|doc|docx)$", re.IGNORECASE)
_CV_PREFIX_RE = re.compile(r"^(resume|cv|curriculum.?vitae)[-_\s]*", re.IGNORECASE)
_YEAR_RE = re.compile(r"\s*\d{4}\s*")
_COPY_RE = re.compile(r"\s*(copy|\(\d+\))\s*", re.IGNORECASE)


class _RetryableStatus(Exception):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Extraction service returned {status_code}")


def mime_type_for(file_name: str) -> str:
    return MIME_TYPES.get(Path(file_name).suffix.lower(), "application/pdf")


def name_from_filename(file_name: str) -> Dict[str, str]:
    """
    Best-effort name guess from a CV file name.

    "CV_Jane_Doe_2024 (1).pdf" -> Jane / Doe. Never fails: unknown parts
    get placeholder values so the record is still created for review.
    """
    stem = _EXTENSION_RE.sub("", file_name)
    stem = _CV_PREFIX_RE.sub("", stem)
    stem = re.sub(r"[-_]", " ", stem)
    stem = _YEAR_RE.sub(" ", stem)
    stem = _COPY_RE.sub(" ", stem).strip()

    parts = stem.split()
    return {
        "first_name": parts[0] if parts else "Unknown",
        "last_name": " ".join(parts[1:]) if len(parts) > 1 else "(CV Upload)",
        "email": "",
        "phone": "",
        "address": "",
        "postcode": "",
    }


class ExtractionClient:
    """
    Client for the CV parsing service.

    The service answers {"success": bool, "data": {...}, "error": str}; data
    carries camelCase field names and confidence.overall on a 0-100 scale.
    """

    FIELD_MAP = {
        "firstName": "first_name",
        "lastName": "last_name",
        "email": "email",
        "phone": "phone",
        "address": "address",
        "postcode": "postcode",
        "skills": "skills",
        "qualifications": "qualifications",
    }

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        max_retries: int = 2,
        min_confidence: float = 50.0,
        base_delay: float = 1.0,
        http: Optional[Any] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.min_confidence = min_confidence
        self.http = http or requests.Session()
        self.breaker = breaker or CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        self._post = exponential_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError, _RetryableStatus),
            on_retry=self._on_retry,
        )(self._post_once)

    def _on_retry(self, attempt: int, error: Exception, delay: float):
        logger.warning("Extraction retry", attempt=attempt, error=str(error), delay=delay)

    def _post_once(self, payload: Dict[str, Any]):
        resp = self.http.post(self.base_url, json=payload, timeout=self.timeout)
        if should_retry_http_status(resp.status_code):
            raise _RetryableStatus(resp.status_code)
        resp.raise_for_status()
        return resp

    def extract(self, file_url: str, file_name: str) -> Dict[str, Any]:
        """
        Extract candidate fields from an uploaded CV.

        Args:
            file_url: URL of the uploaded CV
            file_name: Original file name (used for the MIME type)

        Returns:
            Dict of snake_case candidate fields plus "cv_parsed_data" holding
            the raw service payload

        Raises:
            ExtractionFailure: On any service error, exhausted retries, an
                open circuit, or confidence below the configured minimum
        """
        payload = {"fileUrl": file_url, "fileName": file_name, "mimeType": mime_type_for(file_name)}
        try:
            resp = self.breaker.call(self._post, payload)
            body = resp.json()
        except CircuitOpenError as e:
            raise ExtractionFailure(f"Extraction unavailable: {e}") from e
        except RetryError as e:
            raise ExtractionFailure(f"Extraction failed after {e.attempts} attempts: {e.__cause__}") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "HTTPError"
            raise ExtractionFailure(f"Extraction request failed ({status})") from e
        except requests.exceptions.RequestException as e:
            raise ExtractionFailure(f"Extraction request error: {e}") from e
        except ValueError as e:
            raise ExtractionFailure(f"Extraction returned invalid JSON: {e}") from e

        if not body.get("success") or not body.get("data"):
            raise ExtractionFailure(f"Extraction unsuccessful: {body.get('error') or 'no data'}")

        data = body["data"]
        confidence = (data.get("confidence") or {}).get("overall")
        if confidence is not None and confidence < self.min_confidence:
            raise ExtractionFailure(
                f"Extraction confidence {confidence} below {self.min_confidence}",
                confidence=confidence,
            )

        fields: Dict[str, Any] = {}
        for source_key, target_key in self.FIELD_MAP.items():
            value = data.get(source_key)
            if value is not None:
                fields[target_key] = value
        fields["cv_parsed_data"] = data
        return fields
