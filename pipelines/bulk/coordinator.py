"""
Bulk CV Upload Coordinator.

Responsibilities:
- Upload, extract, duplicate-check and create one candidate per CV file.
- Detect duplicates against stored records and against records created
  earlier in the same batch.
- Track a status per file and let the operator retry or resolve items.

Non-Responsibilities:
- No matching rules.
- No parallel processing; files are handled strictly in order.

Invariant:
One file's failure never aborts the rest of the batch.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from intake.database import new_candidate_id
from intake.errors import BlobStoreError, ExtractionFailure, ResolutionStateError
from intake.extraction import ExtractionClient, name_from_filename
from intake.logger import get_logger
from intake.models import CandidateDraft, CandidateSummary, DuplicateMatch, Severity
from storage.blobs import LocalBlobStore, cv_path

logger = get_logger()

ALLOWED_EXTENSIONS = {".pdf", ".doc", ".docx"}
MAX_FILE_BYTES = 10 * 1024 * 1024


class BulkStatus:
    PENDING = "pending"
    UPLOADING = "uploading"
    PARSING = "parsing"
    CREATING = "creating"
    SUCCESS = "success"
    ERROR = "error"
    DUPLICATE = "duplicate"

    ALL = [PENDING, UPLOADING, PARSING, CREATING, SUCCESS, ERROR, DUPLICATE]


@dataclass
class BulkContext:
    """Job/branch context shared by every file in a batch."""

    job_id: str = ""
    job_title: str = ""
    branch_id: str = ""
    branch_name: str = ""
    source: str = "cv_upload"


@dataclass
class BulkItem:
    path: Path
    status: str = BulkStatus.PENDING
    reserved_id: Optional[str] = None
    storage_key: Optional[str] = None
    file_url: Optional[str] = None
    draft: Optional[CandidateDraft] = None
    candidate_id: Optional[str] = None
    matches: List[DuplicateMatch] = field(default_factory=list)
    duplicate_of: Optional[str] = None
    needs_review: bool = False
    error: Optional[str] = None
    resolution: Optional[str] = None

    @property
    def file_name(self) -> str:
        return self.path.name


def rejection_reason(path: Path) -> Optional[str]:
    """Why a file cannot be part of a batch, or None if it can."""
    if path.suffix.lower() not in ALLOWED_EXTENSIONS:
        return f"unsupported file type {path.suffix or '(none)'}"
    if not path.is_file():
        return "file not found"
    if path.stat().st_size > MAX_FILE_BYTES:
        return "file larger than 10 MB"
    return None


class BulkCoordinator:
    """
    Sequential bulk CV intake.

    Files whose best match is high severity are parked as "duplicate" and
    left for the operator (resolve_add_anyway, resolve_link, resolve_merge);
    everything else is created as soon as it has been checked.
    """

    def __init__(
        self,
        service,
        blob_store: LocalBlobStore,
        extractor: Optional[ExtractionClient] = None,
        context: Optional[BulkContext] = None,
    ):
        self.service = service
        self.blob_store = blob_store
        self.extractor = extractor
        self.context = context or BulkContext()
        self.items: List[BulkItem] = []
        self.rejected: List[Tuple[str, str]] = []
        self._snapshot: Optional[List[CandidateSummary]] = None
        self._created: Dict[str, CandidateSummary] = {}

    def add_files(self, paths: Iterable[Path]) -> List[BulkItem]:
        added = []
        for path in paths:
            path = Path(path)
            reason = rejection_reason(path)
            if reason:
                logger.warning("Skipping file", file=path.name, reason=reason)
                self.rejected.append((path.name, reason))
                continue
            item = BulkItem(path=path)
            self.items.append(item)
            added.append(item)
        return added

    def run(self, paths: Optional[Iterable[Path]] = None) -> Dict[str, int]:
        """
        Process every pending item in order.

        Args:
            paths: Files to add to the batch before processing

        Returns:
            Per-status counts (see summary)
        """
        if paths is not None:
            self.add_files(paths)
        self._snapshot = self.service.list_summaries()
        logger.info(
            "Bulk upload started",
            files=len(self.items),
            rejected=len(self.rejected),
            existing=len(self._snapshot),
        )
        for item in self.items:
            if item.status == BulkStatus.PENDING:
                self._process(item)
        summary = self.summary()
        logger.info("Bulk upload finished", **summary)
        return summary

    def comparison_set(self) -> List[CandidateSummary]:
        """Stored snapshot plus everything created so far in this batch."""
        if self._snapshot is None:
            self._snapshot = self.service.list_summaries()
        return list(self._snapshot) + list(self._created.values())

    def _remember(self, candidate_id: str) -> None:
        self._created[candidate_id] = self.service.get_candidate(candidate_id).to_summary()

    def _process(self, item: BulkItem) -> None:
        try:
            item.status = BulkStatus.UPLOADING
            if item.reserved_id is None:
                item.reserved_id = new_candidate_id()
            self._upload(item)

            item.status = BulkStatus.PARSING
            item.draft = self._build_draft(item, self._extract(item))

            item.status = BulkStatus.CREATING
            result = self.service.check_duplicates(item.draft, existing=self.comparison_set())
            if result.highest_severity == Severity.HIGH:
                item.matches = result.matches
                item.duplicate_of = result.matches[0].candidate_id
                item.status = BulkStatus.DUPLICATE
                logger.info("Bulk item flagged as duplicate", file=item.file_name, duplicate_of=item.duplicate_of)
            else:
                item.matches = result.matches
                item.candidate_id = self.service.create_candidate(item.draft, require_contact=False)
                self._remember(item.candidate_id)
                item.status = BulkStatus.SUCCESS
        except Exception as e:
            item.status = BulkStatus.ERROR
            item.error = str(e)
            logger.error("Bulk item failed", file=item.file_name, error=str(e))
            logger.record_error(type(e).__name__)
        logger.record_bulk_item(item.status)

    def _upload(self, item: BulkItem) -> None:
        if item.storage_key and item.file_url:
            # Uploaded by an earlier attempt
            return
        if item.storage_key:
            self._delete_blob(item.storage_key)
            item.storage_key = None
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        item.storage_key = self.blob_store.upload(
            item.path, cv_path(item.reserved_id, f"{stamp}_{item.file_name}")
        )
        item.file_url = self.blob_store.get_url(item.storage_key)

    def _extract(self, item: BulkItem) -> Dict[str, Any]:
        if self.extractor is not None:
            try:
                fields = self.extractor.extract(item.file_url, item.file_name)
            except ExtractionFailure as e:
                logger.warning("Extraction failed, using file name", file=item.file_name, error=str(e))
                logger.record_error("ExtractionFailure")
            else:
                if fields.get("first_name") and fields.get("last_name"):
                    return fields
                # Parsed without a usable name
                item.needs_review = True
                guess = name_from_filename(item.file_name)
                return {**fields, **{k: fields.get(k) or guess[k] for k in ("first_name", "last_name")}}
        item.needs_review = True
        return name_from_filename(item.file_name)

    def _build_draft(self, item: BulkItem, fields: Dict[str, Any]) -> CandidateDraft:
        data = dict(fields)
        data.update(
            id=item.reserved_id,
            job_id=self.context.job_id,
            job_title=self.context.job_title,
            branch_id=self.context.branch_id,
            branch_name=self.context.branch_name,
            source=self.context.source,
            cv_url=item.file_url,
            cv_file_name=item.file_name,
            cv_storage_path=item.storage_key,
            needs_review=item.needs_review,
        )
        return CandidateDraft.from_dict(data)

    # Operator actions

    def _item(self, index: int, status: str) -> BulkItem:
        if index < 0:
            raise ResolutionStateError(f"No bulk item at index {index}")
        try:
            item = self.items[index]
        except IndexError:
            raise ResolutionStateError(f"No bulk item at index {index}")
        if item.status != status:
            raise ResolutionStateError(f"Item {index} is {item.status}, expected {status}")
        return item

    def _match_version(self, item: BulkItem, candidate_id: str) -> Optional[int]:
        for match in item.matches:
            if match.candidate_id == candidate_id:
                return match.existing.version
        return None

    def retry(self, index: int) -> BulkItem:
        """Re-run a failed item from the upload step."""
        item = self._item(index, BulkStatus.ERROR)
        item.error = None
        item.needs_review = False
        item.status = BulkStatus.PENDING
        self._process(item)
        return item

    def retry_failed(self) -> List[BulkItem]:
        failed = [i for i, item in enumerate(self.items) if item.status == BulkStatus.ERROR]
        return [self.retry(i) for i in failed]

    def resolve_add_anyway(self, index: int) -> str:
        """Create a flagged item and record it as not a duplicate of its match."""
        item = self._item(index, BulkStatus.DUPLICATE)
        item.candidate_id = self.service.create_candidate(
            item.draft,
            overrides={"not_duplicate_of": [item.duplicate_of]},
            require_contact=False,
        )
        self._remember(item.candidate_id)
        self._refresh(item.duplicate_of)
        return self._resolved(item, "add_anyway")

    def resolve_link(self, index: int, primary_id: Optional[str] = None) -> str:
        """Create a flagged item as a linked application of its match."""
        item = self._item(index, BulkStatus.DUPLICATE)
        primary_id = primary_id or item.duplicate_of
        item.candidate_id = self.service.link_candidate(
            primary_id,
            item.draft,
            expected_version=self._match_version(item, primary_id),
            require_contact=False,
        )
        self._remember(item.candidate_id)
        self._refresh(primary_id, item.candidate_id)
        return self._resolved(item, "link")

    def resolve_merge(
        self,
        index: int,
        primary_id: Optional[str] = None,
        combined_fields: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Merge a flagged item into its match. No new record is created."""
        item = self._item(index, BulkStatus.DUPLICATE)
        primary_id = primary_id or item.duplicate_of
        summary = self.service.merge_candidate(
            primary_id,
            item.draft,
            combined_fields=combined_fields,
            expected_version=self._match_version(item, primary_id),
        )
        item.candidate_id = summary.id
        self._refresh(primary_id)
        self._discard_unused_cv(item, primary_id)
        return self._resolved(item, "merge")

    def _refresh(self, *candidate_ids: Optional[str]) -> None:
        """
        Re-read records a resolution just wrote, together with their cluster
        primaries, so later checks and parked matches see current versions.
        """
        fresh: Dict[str, CandidateSummary] = {}
        pending = [i for i in candidate_ids if i]
        while pending:
            candidate_id = pending.pop()
            if candidate_id in fresh:
                continue
            record = self.service.repository.get(candidate_id)
            if record is None:
                continue
            fresh[candidate_id] = record.to_summary()
            if record.primary_record_id:
                pending.append(record.primary_record_id)

        for candidate_id, summary in fresh.items():
            if candidate_id in self._created:
                self._created[candidate_id] = summary
        if self._snapshot is not None:
            self._snapshot = [fresh.get(s.id, s) for s in self._snapshot]
        for item in self.items:
            for match in item.matches:
                if match.candidate_id in fresh:
                    match.existing = fresh[match.candidate_id]

    def _discard_unused_cv(self, item: BulkItem, primary_id: str) -> None:
        if not item.storage_key:
            return
        if self.service.get_candidate(primary_id).cv_storage_path == item.storage_key:
            return
        self._delete_blob(item.storage_key)

    def _delete_blob(self, key: str) -> None:
        try:
            self.blob_store.delete(key)
        except BlobStoreError as e:
            logger.warning("Could not remove unused CV", key=key, error=str(e))

    def _resolved(self, item: BulkItem, resolution: str) -> str:
        item.resolution = resolution
        item.status = BulkStatus.SUCCESS
        logger.info("Bulk duplicate resolved", file=item.file_name, resolution=resolution, candidate_id=item.candidate_id)
        return item.candidate_id

    def summary(self) -> Dict[str, int]:
        counts = {status: 0 for status in BulkStatus.ALL}
        for item in self.items:
            counts[item.status] += 1
        counts["rejected"] = len(self.rejected)
        return counts
