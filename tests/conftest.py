"""
Pytest configuration and shared fixtures.
"""

import importlib.util
import pytest
from pathlib import Path
from typing import Dict, Any

from intake.database import get_session_factory, init_database
from intake.models import CandidateDraft
from intake.service import CandidateService
from storage.blobs import LocalBlobStore
from storage.repositories.candidates import CandidateRepository


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Create an empty candidate database."""
    path = tmp_path / "candidates.db"
    init_database(path)
    return path


@pytest.fixture
def repository(db_path) -> CandidateRepository:
    return CandidateRepository(get_session_factory(db_path))


@pytest.fixture
def service(repository) -> CandidateService:
    return CandidateService(repository, actor="tester")


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def john_smith() -> Dict[str, Any]:
    """Valid candidate draft data."""
    return {
        "first_name": "John",
        "last_name": "Smith",
        "email": "john.smith@example.com",
        "phone": "07911 123456",
        "postcode": "sw1a1aa",
        "job_id": "job-1",
        "job_title": "Pharmacist",
        "branch_id": "branch-1",
        "branch_name": "Camden",
        "skills": ["dispensing"],
        "notes": "Referred by a colleague",
    }


@pytest.fixture
def jane_doe() -> Dict[str, Any]:
    """A candidate unrelated to john_smith."""
    return {
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane.doe@example.org",
        "phone": "07700 900123",
        "job_title": "Dispenser",
    }


@pytest.fixture
def invalid_draft() -> Dict[str, Any]:
    """Invalid draft (missing last name and contact details)."""
    return {
        "first_name": "John",
    }


@pytest.fixture
def stored_john(service, john_smith) -> str:
    """John Smith already in the database. Returns his id."""
    return service.create_candidate(CandidateDraft.from_dict(john_smith))


@pytest.fixture
def cluster_problems(repository):
    """Callable returning the cluster consistency problems currently stored."""
    path = Path(__file__).parent.parent / "scripts" / "validate_links.py"
    spec = importlib.util.spec_from_file_location("validate_links", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return lambda: module.find_problems(repository.list_all())
