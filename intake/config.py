"""
Runtime settings for candidate intake.

Values come from environment variables (optionally loaded from a .env file
by load_env). Anything not set falls back to the defaults below.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .env import load_env

DEFAULT_DB_PATH = "data/candidates.db"
DEFAULT_BLOB_DIR = "data/blobs"


@dataclass(frozen=True)
class Settings:
    """Intake configuration."""

    db_path: Path = Path(DEFAULT_DB_PATH)
    blob_dir: Path = Path(DEFAULT_BLOB_DIR)
    extraction_url: Optional[str] = None
    extraction_timeout: float = 120.0
    extraction_retries: int = 2
    extraction_min_confidence: float = 50.0
    name_similarity_threshold: float = 85.0
    log_level: str = "INFO"
    actor: str = "system"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise SystemExit(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise SystemExit(f"{name} must be an integer, got {raw!r}")


def load_settings() -> Settings:
    """
    Build Settings from the environment.

    Returns:
        Settings instance with env overrides applied
    """
    load_env()
    return Settings(
        db_path=Path(os.getenv("INTAKE_DB_PATH") or DEFAULT_DB_PATH),
        blob_dir=Path(os.getenv("INTAKE_BLOB_DIR") or DEFAULT_BLOB_DIR),
        extraction_url=os.getenv("INTAKE_EXTRACTION_URL") or None,
        extraction_timeout=_env_float("INTAKE_EXTRACTION_TIMEOUT", 120.0),
        extraction_retries=_env_int("INTAKE_EXTRACTION_RETRIES", 2),
        extraction_min_confidence=_env_float("INTAKE_EXTRACTION_MIN_CONFIDENCE", 50.0),
        name_similarity_threshold=_env_float("INTAKE_NAME_SIMILARITY", 85.0),
        log_level=os.getenv("INTAKE_LOG_LEVEL") or "INFO",
        actor=os.getenv("INTAKE_ACTOR") or "system",
    )
