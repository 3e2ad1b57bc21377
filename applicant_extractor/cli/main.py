"""CLI entry point for applicant extraction runs."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

import click
from tabulate import tabulate

from auth.credential_store import EnvCredentialStore
from auth.linkedin_auth import LinkedInSession
from auth.session_manager import SessionManager
from config.config import BASE_DIR, Config
from config.logging_utils import setup_logging
from models import OperationSnapshot, Phase
from orchestration.errors import InvalidStateError, ValidationError
from orchestration.orchestrator import ExtractionOrchestrator
from sources.json_source import JsonApplicantSource, LocalCVDownloader, RecordedProfileFetcher
from storage_pkg.results_export import sink_for_path

logger = logging.getLogger(__name__)

EXIT_CODES = {
    Phase.COMPLETED: 0,
    Phase.ERROR: 2,
    Phase.CANCELLED: 130,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract LinkedIn job applicants in batches")
    parser.add_argument("--job-id", required=True, help="LinkedIn job posting id")
    parser.add_argument(
        "--applicants",
        required=True,
        type=Path,
        help="JSON file with the applicant list to process",
    )
    parser.add_argument("--batch-size", type=int, default=None, help="Overrides BATCH_SIZE")
    parser.add_argument("--max-items", type=int, default=None, help="Overrides MAX_ITEMS")
    parser.add_argument("--cooldown-ms", type=int, default=None, help="Overrides COOLDOWN_MS")
    parser.add_argument(
        "--download-cvs",
        action="store_true",
        default=None,
        help="Copy each applicant's CV into DOWNLOAD_DIR",
    )
    parser.add_argument(
        "--login",
        action="store_true",
        help="Open a LinkedIn browser session before extracting",
    )
    parser.add_argument(
        "--export",
        type=Path,
        default=None,
        help="Write results to this file (.json or .xlsx); relative paths land in EXPORT_DIR",
    )
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    return parser


def _print_progress(payload: dict[str, Any]) -> None:
    status = "ok" if payload["success"] else "failed"
    click.echo(
        f"  [{payload['current']}/{payload['total']}] {payload['currentApplicant']}: {status}"
    )


def _print_summary(snapshot: OperationSnapshot) -> None:
    color = {"completed": "green", "error": "red", "cancelled": "yellow"}.get(
        snapshot.phase.value, "white"
    )
    click.secho(f"\nExtraction {snapshot.phase.value}", fg=color, bold=True)
    click.echo("=" * 80)

    table_data = []
    for index, item in enumerate(snapshot.processed_items, 1):
        table_data.append(
            [
                index,
                item.source_ref.label[:25],
                item.source_ref.profile_id[:25],
                "Yes" if item.success else "No",
                item.attempts,
                (item.error or "")[:40],
            ]
        )
    if table_data:
        headers = ["#", "Name", "Profile ID", "Success", "Attempts", "Error"]
        click.echo(tabulate(table_data, headers=headers, tablefmt="grid"))

    click.echo(
        f"Processed {len(snapshot.processed_items)}/{snapshot.total_items} "
        f"({snapshot.success_count} ok, {snapshot.failed_count} failed) "
        f"in {snapshot.running_time_seconds():.1f}s"
    )
    if snapshot.fatal_error is not None:
        click.secho(f"Fatal error: {snapshot.fatal_error.message}", fg="red")


def _wait(orchestrator: ExtractionOrchestrator) -> None:
    """Join the background run; Ctrl-C requests cancellation and keeps waiting."""
    try:
        while not orchestrator.join(timeout=0.5):
            pass
    except KeyboardInterrupt:
        click.secho("\nCancelling after the current applicant...", fg="yellow")
        try:
            orchestrator.cancel()
        except InvalidStateError:
            pass  # run finished in the meantime
        orchestrator.join()


def main(argv: Sequence[str] | None = None) -> int:
    """Run one extraction and return the process exit code."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    config = Config()
    if args.log_level:
        config.log_level = args.log_level

    errors = config.validate()
    if args.login:
        errors.extend(config.validate_credentials())
    if errors:
        for error in errors:
            click.secho(f"Config error: {error}", fg="red", err=True)
        return 1

    setup_logging(
        log_dir=str(config.log_dir),
        log_level=config.log_level,
        retention_days=config.log_file_retention_days,
    )

    try:
        target = config.build_target(
            args.job_id,
            batch_size=args.batch_size,
            max_items=args.max_items,
            cooldown_ms=args.cooldown_ms,
            download_cvs=args.download_cvs,
        )
    except (TypeError, ValueError) as exc:
        click.secho(f"Config error: {exc}", fg="red", err=True)
        return 1

    session_manager = None
    session = None
    if args.login:
        session_manager = SessionManager(
            headless=config.headless,
            cookie_path=config.cookie_path,
            download_dir=config.download_dir,
        )
        session = LinkedInSession(session_manager, EnvCredentialStore(BASE_DIR / ".env"))

    orchestrator = ExtractionOrchestrator(
        source=JsonApplicantSource(args.applicants),
        profile_fetcher=RecordedProfileFetcher(),
        cv_downloader=LocalCVDownloader(config.download_dir, base_dir=args.applicants.parent),
        session=session,
        config=config,
    )
    orchestrator.subscribe("progress", _print_progress)

    click.echo(f"Extracting applicants for job {target.job_id}")
    click.echo("=" * 80)
    try:
        orchestrator.start(target, background=True)
    except ValidationError as exc:
        click.secho(f"Config error: {exc}", fg="red", err=True)
        return 1

    try:
        _wait(orchestrator)
    finally:
        if session_manager is not None:
            session_manager.quit()

    snapshot = orchestrator.get_snapshot()
    _print_summary(snapshot)

    if args.export:
        export_path = args.export
        if not export_path.is_absolute():
            export_path = config.export_dir / export_path
        orchestrator.export_results(sink_for_path(export_path))
        click.secho(f"Results written to {export_path}", fg="green")

    return EXIT_CODES.get(snapshot.phase, 2)


if __name__ == "__main__":
    sys.exit(main())
