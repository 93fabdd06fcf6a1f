"""
Candidates Repository.

Responsibilities:
- CRUD operations for the candidates table.
- Transaction-safe writes spanning several records.
- Append-only activity log.

Non-Responsibilities:
- No business logic.
- No entity resolution.
- No scoring.

Invariant:
Repositories must not encode domain decisions.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from intake.database import ActivityLog, Candidate, new_candidate_id
from intake.errors import CandidateNotFound, ConcurrentModificationError, RemoteServiceError
from intake.models import CandidateSummary

QUERYABLE_FIELDS = {
    "duplicate_key",
    "phone_normalized",
    "email",
    "primary_record_id",
    "job_id",
    "branch_id",
    "status",
}


class CandidateRepository:
    """Candidate persistence over a SQLAlchemy session factory."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Unit of work: everything written through the yielded session commits
        together or not at all.

        Raises:
            ConcurrentModificationError: A versioned row changed underneath us
            RemoteServiceError: Any other store failure
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except StaleDataError as e:
            session.rollback()
            raise ConcurrentModificationError(f"Candidate modified concurrently: {e}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise RemoteServiceError(f"Store write failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Reads

    def get(self, candidate_id: str) -> Optional[Candidate]:
        session = self._session_factory()
        try:
            return session.get(Candidate, candidate_id)
        except SQLAlchemyError as e:
            raise RemoteServiceError(f"Store read failed: {e}") from e
        finally:
            session.close()

    def require(self, session: Session, candidate_id: str) -> Candidate:
        candidate = session.get(Candidate, candidate_id)
        if candidate is None:
            raise CandidateNotFound(candidate_id)
        return candidate

    def query_by_field(self, field: str, value: Any) -> List[Candidate]:
        if field not in QUERYABLE_FIELDS:
            raise ValueError(f"Unsupported query field: {field}")
        session = self._session_factory()
        try:
            column = getattr(Candidate, field)
            return session.query(Candidate).filter(column == value).all()
        except SQLAlchemyError as e:
            raise RemoteServiceError(f"Store read failed: {e}") from e
        finally:
            session.close()

    def list_all(self) -> List[Candidate]:
        session = self._session_factory()
        try:
            return session.query(Candidate).order_by(Candidate.created_at).all()
        except SQLAlchemyError as e:
            raise RemoteServiceError(f"Store read failed: {e}") from e
        finally:
            session.close()

    def list_summaries(self) -> List[CandidateSummary]:
        return [c.to_summary() for c in self.list_all()]

    def activity_for(self, entity_id: str) -> List[ActivityLog]:
        session = self._session_factory()
        try:
            return (
                session.query(ActivityLog)
                .filter(ActivityLog.entity_id == entity_id)
                .order_by(ActivityLog.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise RemoteServiceError(f"Store read failed: {e}") from e
        finally:
            session.close()

    # Writes

    def add(self, session: Session, fields: Dict[str, Any], actor: str, description: str = "") -> Candidate:
        """Insert a candidate inside the caller's transaction."""
        candidate = Candidate(**fields)
        if not candidate.id:
            candidate.id = new_candidate_id()
        candidate.created_by = candidate.created_by or actor
        session.add(candidate)
        self.log_activity(
            session,
            candidate.id,
            "created",
            description or f"Candidate \"{candidate.full_name}\" was added",
            new_value={"first_name": candidate.first_name, "last_name": candidate.last_name},
            actor=actor,
        )
        return candidate

    def create(self, fields: Dict[str, Any], actor: str, description: str = "") -> Candidate:
        with self.transaction() as session:
            candidate = self.add(session, fields, actor, description)
        return candidate

    def update(self, candidate_id: str, changes: Dict[str, Any], actor: str, description: str = "") -> Candidate:
        with self.transaction() as session:
            candidate = self.require(session, candidate_id)
            previous = {k: getattr(candidate, k) for k in changes}
            for key, value in changes.items():
                setattr(candidate, key, value)
            self.log_activity(
                session,
                candidate_id,
                "updated",
                description or f"{len(changes)} field(s) updated",
                previous_value=previous,
                new_value=changes,
                actor=actor,
            )
        return candidate

    def delete(self, candidate_id: str, actor: str, description: str = "") -> None:
        with self.transaction() as session:
            candidate = self.require(session, candidate_id)
            session.delete(candidate)
            self.log_activity(
                session,
                candidate_id,
                "deleted",
                description or f"Candidate \"{candidate.full_name}\" was deleted",
                actor=actor,
            )

    def stamp_reviewed(
        self,
        candidate_id: str,
        actor: str,
        reviewed_at: Optional[datetime] = None,
        description: str = "",
    ) -> None:
        """
        Record duplicate-review metadata without bumping the row version.

        Review stamps are not part of the link/not-duplicate state, so they
        must not make an operator's pending link or merge look stale.
        """
        reviewed_at = reviewed_at or datetime.now()
        with self.transaction() as session:
            result = session.execute(
                update(Candidate.__table__)
                .where(Candidate.__table__.c.id == candidate_id)
                .values(duplicate_reviewed_at=reviewed_at, duplicate_reviewed_by=actor)
            )
            if result.rowcount == 0:
                raise CandidateNotFound(candidate_id)
            self.log_activity(
                session,
                candidate_id,
                "duplicate_reviewed",
                description or "Duplicate match reviewed",
                new_value={"duplicate_reviewed_at": reviewed_at},
                actor=actor,
            )

    def log_activity(
        self,
        session: Session,
        entity_id: str,
        action: str,
        description: str,
        previous_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        actor: str = "system",
    ) -> None:
        session.add(
            ActivityLog(
                entity_type="candidate",
                entity_id=entity_id,
                action=action,
                description=description,
                previous_value=_jsonable(previous_value),
                new_value=_jsonable(new_value),
                actor=actor,
                created_at=datetime.now(),
            )
        )


def _jsonable(value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    out: Dict[str, Any] = {}
    for key, item in value.items():
        out[key] = item.isoformat() if isinstance(item, datetime) else item
    return out
