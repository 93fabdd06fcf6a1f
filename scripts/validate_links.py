#!/usr/bin/env python3
"""
Validate duplicate-cluster consistency in the candidate database.

Checks that every linked record is listed by its primary, that every id a
primary lists points back at it, and that not_duplicate_of pairs are
symmetric.

Usage:
    python scripts/validate_links.py --db data/candidates.db
"""

import argparse
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from intake.database import Candidate, get_session


def find_problems(candidates):
    """
    Inspect a list of Candidate rows.

    Returns a list of human-readable problem descriptions (empty if consistent).
    """
    by_id = {c.id: c for c in candidates}
    problems = []

    for candidate in candidates:
        if candidate.primary_record_id:
            primary = by_id.get(candidate.primary_record_id)
            if primary is None:
                problems.append(f"{candidate.id}: primary {candidate.primary_record_id} does not exist")
            elif candidate.id not in (primary.linked_candidate_ids or []):
                problems.append(f"{candidate.id}: not listed by its primary {primary.id}")

        if candidate.duplicate_status == "primary":
            for linked_id in candidate.linked_candidate_ids or []:
                linked = by_id.get(linked_id)
                if linked is None:
                    problems.append(f"{candidate.id}: linked record {linked_id} does not exist")
                elif linked.primary_record_id != candidate.id:
                    problems.append(f"{candidate.id}: linked record {linked_id} points at {linked.primary_record_id}")

        for other_id in candidate.not_duplicate_of or []:
            other = by_id.get(other_id)
            if other is not None and candidate.id not in (other.not_duplicate_of or []):
                problems.append(f"{candidate.id}: not_duplicate_of {other_id} is not symmetric")

    return problems


def validate(db_path: Path):
    """
    Check link and not-duplicate invariants.

    Returns True if consistent, False otherwise.
    """
    print(f"Querying database at {db_path}...")
    session = get_session(db_path)
    try:
        candidates = session.query(Candidate).all()
    finally:
        session.close()
    print(f"  {len(candidates)} candidates")

    problems = find_problems(candidates)
    if problems:
        print(f"\n❌ {len(problems)} consistency problem(s)")
        for problem in problems[:10]:
            print(f"   - {problem}")
        if len(problems) > 10:
            print(f"   ... and {len(problems) - 10} more")
        return False

    print("✅ All duplicate links validated successfully!")
    print("   - Every linked record is listed by its primary")
    print("   - Every not-duplicate pair is symmetric")
    return True


def main():
    parser = argparse.ArgumentParser(description="Validate duplicate links between candidates")
    parser.add_argument("--db", type=Path, default=Path("data/candidates.db"),
                       help="Path to SQLite database file")

    args = parser.parse_args()

    if not args.db.exists():
        print(f"❌ Database file not found: {args.db}")
        sys.exit(1)

    success = validate(args.db)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
