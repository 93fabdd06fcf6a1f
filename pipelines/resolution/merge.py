"""
Merge Executor.

Responsibilities:
- Fold incoming candidate fields into an existing primary record.
- Optionally remove (or link) the persisted secondary afterwards.

Non-Responsibilities:
- No duplicate detection.
- No creation of new records.

Invariant:
A populated primary field is never overwritten by the merge defaults, and a
secondary record is never deleted before the merged primary is committed.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from intake.errors import CandidateNotFound, IntakeError
from intake.logger import get_logger
from intake.models import ARRAY_FIELDS, CV_FIELDS, SCALAR_FIELDS, CandidateSummary, DuplicateStatus
from intake.normalize import format_postcode, generate_duplicate_key, normalize_email, normalize_phone
from storage.repositories.candidates import CandidateRepository

from .link import LinkExecutor, attach, check_version, release, resolve_cluster_root

logger = get_logger()

MERGED_NOTE_SEPARATOR = "\n\n--- Merged Note ---\n\n"
COMBINABLE_FIELDS = ("notes", "skills", "qualifications")
KEY_FIELDS = ("first_name", "last_name", "phone")
MERGE_SNAPSHOT_FIELDS = SCALAR_FIELDS + ARRAY_FIELDS + CV_FIELDS + ["cv_parsed_data"]


def union(*lists: Optional[Iterable[str]]) -> List[str]:
    """Order-preserving set union."""
    merged: Dict[str, None] = {}
    for items in lists:
        for item in items or []:
            if item:
                merged.setdefault(item, None)
    return list(merged)


def combine_notes(primary_notes: str, incoming_notes: str) -> str:
    primary_notes = (primary_notes or "").strip()
    incoming_notes = (incoming_notes or "").strip()
    if not incoming_notes or incoming_notes == primary_notes:
        return primary_notes
    if not primary_notes:
        return incoming_notes
    return f"{primary_notes}{MERGED_NOTE_SEPARATOR}{incoming_notes}"


def combine_fields(primary: Mapping[str, Any], incoming: Mapping[str, Any]) -> Dict[str, Any]:
    """Default combination of the fields an operator may choose to combine."""
    return {
        "notes": combine_notes(primary.get("notes", ""), incoming.get("notes", "")),
        "skills": union(primary.get("skills"), incoming.get("skills")),
        "qualifications": union(primary.get("qualifications"), incoming.get("qualifications")),
    }


def build_merge_update(
    primary: Mapping[str, Any],
    incoming: Mapping[str, Any],
    combined_fields: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Column changes that fold incoming into primary.

    Args:
        primary: Current field values of the primary record
        incoming: Field values of the draft or secondary record
        combined_fields: Operator-chosen values for notes/skills/qualifications

    Returns:
        Dict of changed columns only
    """
    changes: Dict[str, Any] = {}

    for name in SCALAR_FIELDS:
        value = incoming.get(name)
        if isinstance(value, str):
            value = value.strip()
        if value and not primary.get(name):
            if name == "email":
                value = normalize_email(value)
            elif name == "postcode":
                value = format_postcode(value)
            changes[name] = value

    for name in ARRAY_FIELDS:
        merged = union(primary.get(name), incoming.get(name))
        if merged != list(primary.get(name) or []):
            changes[name] = merged

    for name, value in (combined_fields or {}).items():
        if name not in COMBINABLE_FIELDS:
            raise ValueError(f"Field cannot be combined: {name}")
        if name == "notes":
            if value != primary.get("notes"):
                changes["notes"] = value
        else:
            # Chosen values extend the primary's list, never replace it
            merged = union(primary.get(name), value)
            if merged != list(primary.get(name) or []):
                changes[name] = merged
            else:
                changes.pop(name, None)

    if incoming.get("cv_url") and not primary.get("cv_url") and not primary.get("cv_storage_path"):
        for name in CV_FIELDS + ["cv_parsed_data"]:
            if incoming.get(name) is not None:
                changes[name] = incoming[name]

    if any(name in changes for name in KEY_FIELDS):
        first = changes.get("first_name", primary.get("first_name"))
        last = changes.get("last_name", primary.get("last_name"))
        phone = changes.get("phone", primary.get("phone"))
        changes["phone_normalized"] = normalize_phone(phone)
        changes["duplicate_key"] = generate_duplicate_key(first, last, phone)

    return changes


class MergeExecutor:
    """Applies merges to stored candidates."""

    def __init__(self, repository: CandidateRepository, actor: str = "system"):
        self.repository = repository
        self.actor = actor
        self.linker = LinkExecutor(repository, actor)

    def merge(
        self,
        primary_id: str,
        incoming: Mapping[str, Any],
        combined_fields: Optional[Mapping[str, Any]] = None,
        delete_secondary: bool = False,
        secondary_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CandidateSummary:
        """
        Merge incoming fields into primary_id.

        Args:
            primary_id: Surviving record
            incoming: Draft fields (or the secondary record's fields)
            combined_fields: Operator-chosen notes/skills/qualifications
            delete_secondary: Delete secondary_id once the merge has committed
            secondary_id: Persisted record being merged away, if any
            expected_version: Version of the primary the operator saw

        Returns:
            Summary of the updated primary

        Raises:
            CandidateNotFound: primary_id (or secondary_id) does not exist
            ConcurrentModificationError: The primary changed since it was read
            RemoteServiceError: The merge write failed; nothing was persisted
        """
        if secondary_id == primary_id:
            raise ValueError("A candidate cannot be merged into itself")
        with self.repository.transaction() as session:
            primary = self.repository.require(session, primary_id)
            check_version(primary, expected_version)
            snapshot = {name: getattr(primary, name) for name in MERGE_SNAPSHOT_FIELDS}
            changes = build_merge_update(snapshot, incoming, combined_fields)

            previous = {name: getattr(primary, name) for name in changes}
            for name, value in changes.items():
                setattr(primary, name, value)
            primary.duplicate_reviewed_at = datetime.now()
            primary.duplicate_reviewed_by = self.actor

            if secondary_id:
                secondary = self.repository.require(session, secondary_id)
                root = resolve_cluster_root(self.repository, session, primary)
                if root.id == secondary.id:
                    # Merge target sits under the secondary; it takes over the cluster
                    root = primary
                if delete_secondary:
                    # Members must not point at a record about to be deleted
                    release(self.repository, session, root, secondary, self.actor)
                else:
                    attach(self.repository, session, root, secondary, self.actor)

            # A linked record keeps its place in its cluster
            if primary.duplicate_status != DuplicateStatus.LINKED:
                primary.duplicate_status = DuplicateStatus.PRIMARY

            self.repository.log_activity(
                session,
                primary.id,
                "merged",
                f"Merged duplicate data into \"{primary.full_name}\" ({len(changes)} field(s) updated)",
                previous_value=previous,
                new_value={**changes, "secondary_id": secondary_id},
                actor=self.actor,
            )

        logger.info(
            "Merged candidate",
            primary_id=primary_id,
            secondary_id=secondary_id,
            fields=sorted(changes),
        )

        if secondary_id and delete_secondary:
            self._remove_secondary(primary_id, secondary_id)

        return primary.to_summary()

    def _remove_secondary(self, primary_id: str, secondary_id: str) -> None:
        try:
            self.repository.delete(
                secondary_id,
                self.actor,
                description=f"Deleted after merge into {primary_id}",
            )
        except CandidateNotFound:
            logger.info("Secondary already removed", secondary_id=secondary_id)
        except IntakeError as e:
            logger.warning(
                "Secondary delete failed after merge, linking instead",
                primary_id=primary_id,
                secondary_id=secondary_id,
                error=str(e),
            )
            self.linker.link_existing(primary_id, secondary_id)
