"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for candidate and activity-log storage.
"""

import uuid
from datetime import datetime
from pathlib import Path
from sqlalchemy import (
    create_engine,
    Boolean,
    Column,
    DateTime,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from .models import CandidateSummary, DuplicateStatus

Base = declarative_base()


def new_candidate_id() -> str:
    return uuid.uuid4().hex


class Candidate(Base):
    """Candidate application record."""

    __tablename__ = "candidates"

    id = Column(String, primary_key=True, default=new_candidate_id)

    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=False, default="", index=True)
    phone = Column(String, nullable=False, default="")
    phone_normalized = Column(String, nullable=False, default="", index=True)
    address = Column(String, nullable=False, default="")
    postcode = Column(String, nullable=False, default="")

    duplicate_key = Column(String, nullable=False, index=True)
    duplicate_status = Column(String, nullable=False, default=DuplicateStatus.NONE)
    primary_record_id = Column(String, nullable=True, index=True)
    linked_candidate_ids = Column(JSON, nullable=False, default=list)
    not_duplicate_of = Column(JSON, nullable=False, default=list)
    duplicate_reviewed_at = Column(DateTime, nullable=True)
    duplicate_reviewed_by = Column(String, nullable=True)

    job_id = Column(String, nullable=False, default="")
    job_title = Column(String, nullable=False, default="")
    branch_id = Column(String, nullable=False, default="")
    branch_name = Column(String, nullable=False, default="")
    source = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="new")
    application_history = Column(JSON, nullable=False, default=list)

    skills = Column(JSON, nullable=False, default=list)
    qualifications = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=False, default="")

    cv_url = Column(String, nullable=True)
    cv_file_name = Column(String, nullable=True)
    cv_storage_path = Column(String, nullable=True)
    cv_parsed_data = Column(JSON, nullable=True)
    needs_review = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    created_by = Column(String, nullable=True)

    # Compare-and-swap guard for the two-record link/merge writes
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_summary(self) -> CandidateSummary:
        return CandidateSummary(
            id=self.id,
            first_name=self.first_name or "",
            last_name=self.last_name or "",
            email=self.email or "",
            phone=self.phone or "",
            phone_normalized=self.phone_normalized or "",
            duplicate_key=self.duplicate_key or "",
            status=self.status or "new",
            job_id=self.job_id or "",
            job_title=self.job_title or "",
            branch_id=self.branch_id or "",
            branch_name=self.branch_name or "",
            created_at=self.created_at,
            duplicate_status=self.duplicate_status or DuplicateStatus.NONE,
            primary_record_id=self.primary_record_id,
            not_duplicate_of=list(self.not_duplicate_of or []),
            version=self.version,
        )


class ActivityLog(Base):
    """Append-only audit entry."""

    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String, nullable=False, default="candidate")
    entity_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)  # created, updated, merged, linked, not_duplicate, deleted
    description = Column(Text, nullable=False, default="")
    previous_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    actor = Column(String, nullable=False, default="system")
    created_at = Column(DateTime, nullable=False, default=datetime.now)


def get_engine(db_path: Path):
    """
    Create an engine for the SQLite file.

    Dismissal persistence runs on a worker thread, so connections may be
    used outside the thread that opened them.
    """
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(db_path)
    Base.metadata.create_all(engine)
    engine.dispose()


def get_session_factory(db_path: Path):
    """
    Build a session factory bound to the database file.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy sessionmaker
    """
    return sessionmaker(bind=get_engine(db_path), expire_on_commit=False)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    return get_session_factory(db_path)()
