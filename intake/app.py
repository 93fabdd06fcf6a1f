import argparse
import dataclasses
import json
from pathlib import Path
from .env import load_env

from . import __version__
from .config import Settings, load_settings
from .errors import DuplicateBlocked, IntakeError, ValidationError
from .extraction import ExtractionClient
from .logger import get_logger
from .models import CandidateDraft, DuplicateCheckResult
from .schema import validate_draft
from .service import CandidateService


def _read_draft(path_arg: str) -> dict:
    input_path = Path(path_arg)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _settings(args: argparse.Namespace) -> Settings:
    settings = load_settings()
    if getattr(args, "db", None):
        settings = dataclasses.replace(settings, db_path=Path(args.db))
    return settings


def _service(args: argparse.Namespace) -> CandidateService:
    settings = _settings(args)
    get_logger().set_level(settings.log_level)
    return CandidateService.from_settings(settings)


def _print_matches(result: DuplicateCheckResult) -> None:
    if not result.has_duplicates:
        print("No duplicates found.")
        return
    print(f"Found {len(result.matches)} possible duplicate(s) "
          f"(highest severity: {result.highest_severity}, action: {result.recommended_action}):\n")
    for m in result.matches:
        print(f"ID: {m.candidate_id}")
        print(f"  Name: {m.existing.full_name}")
        print(f"  Match: {', '.join(m.match_type)} ({m.confidence}%, {m.severity})")
        print(f"  Scenario: {m.scenario_label}")
        if m.days_since_application is not None:
            print(f"  Applied: {m.days_since_application} day(s) ago")
        print()


def cmd_validate(args: argparse.Namespace) -> None:
    data = _read_draft(args.input)
    errors = validate_draft(data)
    if errors:
        print("Invalid:")
        for e in errors:
            print(f" - {e}")
        raise SystemExit(2)
    print("Valid")


def cmd_check(args: argparse.Namespace) -> None:
    draft = CandidateDraft.from_dict(_read_draft(args.input))
    service = _service(args)
    result = service.check_duplicates(draft, excluded_ids=args.exclude or [])
    _print_matches(result)


def cmd_add(args: argparse.Namespace) -> None:
    from pipelines.resolution.controller import ResolutionSession

    draft = CandidateDraft.from_dict(_read_draft(args.input))
    service = _service(args)
    session = ResolutionSession(service, draft)
    try:
        result = session.start()
        if session.committed_id:
            print(f"Created: {session.committed_id}")
            return

        for candidate_id in args.not_duplicate or []:
            created = session.dismiss(candidate_id)
            print(f"Dismissed: {candidate_id}")
            if created:
                print(f"Created: {created}")
                return

        if args.merge:
            summary = session.merge(args.merge)
            print(f"Merged into: {summary.id}")
        elif args.link:
            print(f"Linked: {session.link(args.link)} -> {args.link}")
        elif args.force:
            print(f"Created: {session.add_anyway(confirmed=True)}")
        else:
            _print_matches(result)
            session.abort()
            print("Not added. Re-run with --merge ID, --link ID, --not-duplicate ID or --force.")
            raise SystemExit(3)
    except DuplicateBlocked as e:
        raise SystemExit(str(e))
    except ValidationError as e:
        print("Invalid:")
        for err in e.errors:
            print(f" - {err}")
        raise SystemExit(2)
    except IntakeError as e:
        raise SystemExit(f"Add failed: {e}")


def cmd_dismiss(args: argparse.Namespace) -> None:
    service = _service(args)
    try:
        ack = service.mark_not_duplicate(args.primary, args.context)
    except IntakeError as e:
        raise SystemExit(str(e))
    kind = "symmetric" if ack.symmetric else "review stamp only"
    print(f"Not a duplicate: {ack.primary_id} / {ack.context_id} ({kind})")


def cmd_bulk(args: argparse.Namespace) -> None:
    from pipelines.bulk.coordinator import BulkContext, BulkCoordinator
    from storage.blobs import LocalBlobStore

    settings = _settings(args)
    get_logger().set_level(settings.log_level)
    service = CandidateService.from_settings(settings)
    extractor = None
    if settings.extraction_url:
        extractor = ExtractionClient(
            settings.extraction_url,
            timeout=settings.extraction_timeout,
            max_retries=settings.extraction_retries,
            min_confidence=settings.extraction_min_confidence,
        )
    context = BulkContext(
        job_id=args.job_id or "",
        job_title=args.job_title or "",
        branch_id=args.branch_id or "",
        branch_name=args.branch_name or "",
    )
    coordinator = BulkCoordinator(service, LocalBlobStore(settings.blob_dir), extractor, context)
    summary = coordinator.run([Path(p) for p in args.files])

    for name, reason in coordinator.rejected:
        print(f"[rejected] {name} - {reason}")
    for index, item in enumerate(coordinator.items):
        if item.status == "duplicate":
            print(f"[duplicate] #{index} {item.file_name} -> {item.duplicate_of}")
        elif item.status == "error":
            print(f"[error] #{index} {item.file_name} - {item.error}")
        else:
            review = " (needs review)" if item.needs_review else ""
            print(f"[{item.status}] #{index} {item.file_name} -> {item.candidate_id}{review}")
    print("Done. " + " ".join(f"{k}={v}" for k, v in summary.items() if v))
    get_logger().log_metrics_summary()


def cmd_list(args: argparse.Namespace) -> None:
    service = _service(args)
    summaries = service.list_summaries()
    if not summaries:
        print("No candidates in store.")
        return
    print(f"Found {len(summaries)} candidates:\n")
    for s in summaries:
        print(f"ID: {s.id}")
        print(f"  Name: {s.full_name}")
        print(f"  Email: {s.email}")
        print(f"  Phone: {s.phone}")
        print(f"  Job: {s.job_title} @ {s.branch_name}")
        print(f"  Duplicate status: {s.duplicate_status}"
              + (f" (primary {s.primary_record_id})" if s.primary_record_id else ""))
        print()


def cmd_rebuild_keys(args: argparse.Namespace) -> None:
    from pipelines.backfill.rebuild_keys import rebuild_keys

    service = _service(args)
    report = rebuild_keys(service.repository, actor=service.actor, dry_run=args.dry_run)
    verb = "would update" if args.dry_run else "updated"
    print(f"Done. scanned={report.scanned} {verb}={report.updated}")


def main():
    # Load .env if present (INTAKE_DB_PATH, INTAKE_EXTRACTION_URL, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="candidate-intake", description="Candidate intake with duplicate resolution")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")

    val = subparsers.add_parser("validate", help="Validate a candidate JSON draft")
    val.add_argument("--input", required=True, help="Path to candidate JSON input")
    val.set_defaults(func=cmd_validate)

    chk = subparsers.add_parser("check", help="List stored candidates that look like a draft")
    chk.add_argument("--input", required=True, help="Path to candidate JSON input")
    chk.add_argument("--exclude", action="append", metavar="ID", help="Ignore this candidate id (repeatable)")
    chk.add_argument("--db", help="Path to SQLite database (default: INTAKE_DB_PATH)")
    chk.set_defaults(func=cmd_check)

    add = subparsers.add_parser("add", help="Add a candidate, resolving duplicates")
    add.add_argument("--input", required=True, help="Path to candidate JSON input")
    add.add_argument("--force", action="store_true", help="Add even if duplicates were found")
    add.add_argument("--merge", metavar="ID", help="Merge the draft into this candidate")
    add.add_argument("--link", metavar="ID", help="Add as a linked application of this candidate")
    add.add_argument("--not-duplicate", action="append", metavar="ID", help="Dismiss this match (repeatable)")
    add.add_argument("--db", help="Path to SQLite database (default: INTAKE_DB_PATH)")
    add.set_defaults(func=cmd_add)

    dis = subparsers.add_parser("dismiss", help="Mark two candidates as not duplicates")
    dis.add_argument("--primary", required=True, help="Existing candidate id")
    dis.add_argument("--context", required=True, help="Other candidate id")
    dis.add_argument("--db", help="Path to SQLite database (default: INTAKE_DB_PATH)")
    dis.set_defaults(func=cmd_dismiss)

    blk = subparsers.add_parser("bulk", help="Create candidates from CV files (.pdf/.doc/.docx)")
    blk.add_argument("files", nargs="+", help="CV files, processed in order")
    blk.add_argument("--job-id", help="Job id for every file")
    blk.add_argument("--job-title", help="Job title for every file")
    blk.add_argument("--branch-id", help="Branch id for every file")
    blk.add_argument("--branch-name", help="Branch name for every file")
    blk.add_argument("--db", help="Path to SQLite database (default: INTAKE_DB_PATH)")
    blk.set_defaults(func=cmd_bulk)

    lst = subparsers.add_parser("list", help="List all stored candidates")
    lst.add_argument("--db", help="Path to SQLite database (default: INTAKE_DB_PATH)")
    lst.set_defaults(func=cmd_list)

    rbk = subparsers.add_parser("rebuild-keys", help="Recompute duplicate keys for every candidate")
    rbk.add_argument("--dry-run", action="store_true", help="Only count records that would change")
    rbk.add_argument("--db", help="Path to SQLite database (default: INTAKE_DB_PATH)")
    rbk.set_defaults(func=cmd_rebuild_keys)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
