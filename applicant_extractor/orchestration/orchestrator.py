"""
Batch extraction orchestrator.

Runs one applicant extraction at a time: connects the session, lists the
applicants for a job, then processes them in rate-limited batches through the
retry policy while publishing progress events. Collaborators are injected at
construction; the orchestrator never reaches into global state.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Any, Protocol, runtime_checkable

from config.config import Config
from config.logging_utils import log_item_outcome, log_phase_start, log_run_separator
from events import standardization as payloads
from events.emitter import EventHandler, ProgressEventEmitter
from models import (
    ApplicantRef,
    DownloadResult,
    ErrorKind,
    ErrorRecord,
    ExtractionTarget,
    ItemResult,
    OperationSnapshot,
    Phase,
    ProfileData,
)
from orchestration.batch_scheduler import BatchOutcome, BatchScheduler
from orchestration.errors import (
    FatalError,
    ItemTimeoutError,
    OperationCancelledError,
    RetriesExhaustedError,
)
from orchestration.retry_policy import (
    DEFAULT_FATAL_KEYWORDS,
    DEFAULT_RETRYABLE_KEYWORDS,
    FailureClassifier,
    RetryPolicy,
)
from orchestration.state_machine import OperationStateMachine
from storage_pkg.results_export import build_export_document

logger = logging.getLogger(__name__)


@runtime_checkable
class ApplicantSource(Protocol):
    def list_applicants(
        self, job_id: str, applicant_view_id: str | None = None
    ) -> list[ApplicantRef]: ...


@runtime_checkable
class ProfileFetcher(Protocol):
    def fetch_profile(self, ref: ApplicantRef) -> ProfileData: ...


@runtime_checkable
class CVDownloader(Protocol):
    def download_cv(self, ref: ApplicantRef) -> DownloadResult: ...


@runtime_checkable
class SessionConnector(Protocol):
    def connect(self) -> None: ...


@runtime_checkable
class ResultsSink(Protocol):
    def write(self, document: dict[str, Any]) -> Any: ...


def build_retry_policy(
    config: Config, sleep_fn: Callable[[float], Any] | None = None
) -> RetryPolicy:
    """Retry policy from configuration (MAX_RETRIES, RETRY_BASE_DELAY_MS, keyword overrides)."""
    classifier = FailureClassifier(
        retryable_keywords=config.retryable_keywords or DEFAULT_RETRYABLE_KEYWORDS,
        fatal_keywords=config.fatal_keywords or DEFAULT_FATAL_KEYWORDS,
    )
    kwargs: dict[str, Any] = {}
    if sleep_fn is not None:
        kwargs["sleep_fn"] = sleep_fn
    return RetryPolicy(
        max_retries=config.max_retries,
        base_delay=config.retry_base_delay_ms / 1000.0,
        backoff_factor=config.retry_backoff_factor,
        classifier=classifier,
        **kwargs,
    )


class _FatalItemError(Exception):
    """Carries a fatal error together with the applicant that raised it."""

    def __init__(self, ref: ApplicantRef, error: BaseException) -> None:
        super().__init__(str(error))
        self.ref = ref
        self.error = error


class ExtractionOrchestrator:
    """
    Control API for applicant extraction runs.

    Attributes:
        source (ApplicantSource): Lists applicants for a job
        profile_fetcher (ProfileFetcher): Fetches one applicant profile
        cv_downloader (CVDownloader | None): Downloads one applicant CV
        session (SessionConnector | None): Ensures an authenticated session
        emitter (ProgressEventEmitter): Publishes run events
        retry_policy (RetryPolicy): Wraps each per-item operation

    ``sleep_fn`` replaces both the retry backoff sleep and the cooldown between
    batches; leave it unset in production so cancel() can cut a cooldown short.
    """

    def __init__(
        self,
        source: ApplicantSource,
        profile_fetcher: ProfileFetcher | None = None,
        cv_downloader: CVDownloader | None = None,
        session: SessionConnector | None = None,
        emitter: ProgressEventEmitter | None = None,
        retry_policy: RetryPolicy | None = None,
        config: Config | None = None,
        sleep_fn: Callable[[float], Any] | None = None,
    ) -> None:
        self.config = config or Config()
        self.source = source
        self.profile_fetcher = profile_fetcher
        self.cv_downloader = cv_downloader
        self.session = session
        self.emitter = emitter or ProgressEventEmitter()
        self.retry_policy = retry_policy or build_retry_policy(self.config, sleep_fn)
        self._machine = OperationStateMachine(self.emitter)
        self._scheduler = BatchScheduler(self._machine, cooldown_fn=sleep_fn)
        self._worker: threading.Thread | None = None

    # ---------------------------------------------------------------------
    # Control API
    # ---------------------------------------------------------------------
    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        return self.emitter.subscribe(event_name, handler)

    def start(
        self, target: ExtractionTarget | Mapping[str, Any], background: bool = False
    ) -> OperationSnapshot:
        """
        Start a run.

        Args:
            target: ExtractionTarget or a mapping accepted by ExtractionTarget.from_dict
            background: Run on a worker thread and return immediately

        Returns:
            Final snapshot (foreground) or the Connecting snapshot (background)

        Raises:
            ValidationError: bad target, nothing changed
            InvalidStateError: another run is active
        """
        if not isinstance(target, ExtractionTarget):
            target = ExtractionTarget.from_dict(target)
        if target.fetch_profiles and self.profile_fetcher is None:
            target = replace(target, fetch_profiles=False)
        if target.download_cvs and self.cv_downloader is None:
            logger.warning("CV downloads requested but no downloader configured; skipping")
            target = replace(target, download_cvs=False)

        run_id = self._machine.start(target)

        if background:
            self._worker = threading.Thread(
                target=self._run, args=(target,), name=f"extraction-{run_id}", daemon=True
            )
            self._worker.start()
            return self._machine.get_snapshot()

        self._run(target)
        return self._machine.get_snapshot()

    def pause(self) -> None:
        self._machine.request_pause()

    def resume(self) -> None:
        self._machine.resume()

    def cancel(self) -> None:
        self._machine.cancel()

    def get_snapshot(self) -> OperationSnapshot:
        return self._machine.get_snapshot()

    @property
    def phase(self) -> Phase:
        return self._machine.phase

    def join(self, timeout: float | None = None) -> bool:
        """Wait for a background run. Returns True once no run thread is alive."""
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def export_results(self, sink: ResultsSink | Callable[[dict[str, Any]], Any]) -> dict[str, Any]:
        """Serialize the current results to ``sink`` and return the document written."""
        document = build_export_document(self._machine.get_snapshot())
        if hasattr(sink, "write"):
            sink.write(document)
        else:
            sink(document)
        logger.info(
            "Exported %s item(s) and %s error(s) for job %s",
            len(document["items"]),
            len(document["errors"]),
            document["jobId"],
        )
        return document

    # ---------------------------------------------------------------------
    # Run loop
    # ---------------------------------------------------------------------
    def _run(self, target: ExtractionTarget) -> None:
        log_run_separator(logger, target.job_id)
        try:
            outcome = self._execute(target)
        except _FatalItemError as exc:
            self._machine.fail(
                exc.error,
                item_ref=exc.ref,
                context=f"Failed on applicant {exc.ref.label} for job {target.job_id}",
            )
        except FatalError as exc:
            self._machine.fail(
                exc, context=f"Failed while extracting applicants for job {target.job_id}"
            )
        except Exception as exc:
            logger.exception("Unexpected failure in extraction run for job %s", target.job_id)
            self._machine.fail(exc, context=f"Unexpected failure for job {target.job_id}")
        else:
            if outcome is BatchOutcome.CANCELLED:
                self._machine.finish_cancelled()
            else:
                self._machine.complete()
        finally:
            self.retry_policy.close()
        log_run_separator(logger, None)

    def _execute(self, target: ExtractionTarget) -> BatchOutcome:
        log_phase_start(logger, "Connecting")
        if self.session is not None:
            self._retry(self.session.connect, label="session connect")
            if self._machine.cancel_requested:
                return BatchOutcome.CANCELLED
        applicants = self._list_applicants(target)

        if self._machine.cancel_requested:
            return BatchOutcome.CANCELLED
        self._machine.connected(len(applicants))

        log_phase_start(logger, "Extracting applicants")
        return self._scheduler.run(
            applicants,
            max_items=target.max_items,
            batch_size=target.batch_size,
            cooldown_seconds=target.cooldown_seconds,
            process_item=lambda ref: self._process_item(ref, target),
        )

    def _list_applicants(self, target: ExtractionTarget) -> list[ApplicantRef]:
        applicants = self._retry(
            self.source.list_applicants,
            target.job_id,
            target.applicant_view_id,
            label=f"list applicants for job {target.job_id}",
        )
        return list(applicants or [])

    def _retry(self, func: Callable[..., Any], *args: Any, label: str) -> Any:
        """Run a connection-phase step; anything short of success ends the run."""
        try:
            return self.retry_policy.execute(
                func, *args, should_abort=lambda: self._machine.cancel_requested, label=label
            ).value
        except RetriesExhaustedError as exc:
            raise FatalError(f"{label} failed: {exc.last_error}") from exc
        except OperationCancelledError:
            return None

    def _process_item(self, ref: ApplicantRef, target: ExtractionTarget) -> bool:
        attempts = 0
        profile: ProfileData | None = None
        cv_download: DownloadResult | None = None
        error: ErrorRecord | None = None

        try:
            if target.fetch_profiles and self.profile_fetcher is not None:
                outcome = self.retry_policy.execute(
                    self.profile_fetcher.fetch_profile,
                    ref,
                    timeout=target.item_timeout_seconds,
                    should_abort=lambda: self._machine.cancel_requested,
                    label=f"fetch profile {ref.label}",
                )
                profile = outcome.value
                attempts += outcome.attempts

            if target.download_cvs and self.cv_downloader is not None:
                cv_download, used = self._download_cv(ref, target)
                attempts += used
                if not cv_download.success:
                    error = _item_error(
                        ref,
                        ErrorKind.DOWNLOAD,
                        cv_download.message or "CV download failed",
                    )
        except RetriesExhaustedError as exc:
            attempts += exc.attempts
            kind = (
                ErrorKind.TIMEOUT
                if isinstance(exc.last_error, ItemTimeoutError)
                else ErrorKind.RETRYABLE
            )
            error = _item_error(ref, kind, str(exc.last_error) or type(exc.last_error).__name__)
        except OperationCancelledError as exc:
            attempts += exc.attempts
            error = _item_error(ref, ErrorKind.CANCELLED, "Cancelled before retry")
        except FatalError as exc:
            raise _FatalItemError(ref, exc) from exc

        result = ItemResult(
            source_ref=ref,
            success=error is None,
            attempts=max(attempts, 1),
            profile=profile,
            cv_download=cv_download,
            error=error.message if error else None,
        )
        self._machine.record_item(result, error)
        log_item_outcome(
            logger, ref.profile_id, ref.label, result.success, result.attempts, result.error
        )
        return result.success

    def _download_cv(
        self, ref: ApplicantRef, target: ExtractionTarget
    ) -> tuple[DownloadResult, int]:
        assert self.cv_downloader is not None
        self.emitter.emit("cv-download-started", payloads.cv_download_started_payload(ref))

        def on_retry(attempt: int, _delay: float, error: BaseException) -> None:
            self.emitter.emit(
                "cv-download-progress",
                payloads.cv_download_progress_payload(
                    ref, attempt, self.retry_policy.max_retries, error
                ),
            )

        try:
            outcome = self.retry_policy.execute(
                self.cv_downloader.download_cv,
                ref,
                timeout=target.item_timeout_seconds,
                should_abort=lambda: self._machine.cancel_requested,
                on_retry=on_retry,
                label=f"download CV {ref.label}",
            )
        except (RetriesExhaustedError, OperationCancelledError, FatalError) as exc:
            self.emitter.emit("cv-download-error", payloads.cv_download_error_payload(ref, exc))
            raise

        result = outcome.value
        if result.success:
            self.emitter.emit(
                "cv-download-completed", payloads.cv_download_completed_payload(ref, result)
            )
        else:
            self.emitter.emit(
                "cv-download-error",
                payloads.cv_download_error_payload(ref, result.message or "CV download failed"),
            )
        return result, outcome.attempts


def _item_error(ref: ApplicantRef, kind: ErrorKind, message: str) -> ErrorRecord:
    return ErrorRecord(
        item_ref=ref,
        error_kind=kind,
        message=message,
        recoverable=True,
        error_code=payloads.map_error_to_code(message),
    )

