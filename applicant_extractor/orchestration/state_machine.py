"""
Operation state machine for one extraction run.

    IDLE -> CONNECTING -> RUNNING <-> PAUSED
                 |            |          |
                 +------------+----------+--> COMPLETED | ERROR | CANCELLED

The machine owns the OperationState. Callers read it through snapshots and
change it only through the transition methods below. Every lifecycle event is
emitted while the state lock is held, so event order always matches transition
order.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid

from events import standardization as payloads
from events.emitter import ProgressEventEmitter
from models import (
    ApplicantRef,
    ErrorKind,
    ErrorRecord,
    ExtractionTarget,
    ItemResult,
    OperationSnapshot,
    OperationState,
    Phase,
    utc_now,
)
from orchestration.errors import (
    InvalidStateError,
    NavigationError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def validate_target(target: ExtractionTarget) -> None:
    """Raise ValidationError when the run configuration is unusable."""
    problems: list[str] = []

    if not isinstance(target.job_id, str) or not target.job_id.strip():
        problems.append("job_id must be a non-empty string")
    if target.applicant_view_id is not None and not str(target.applicant_view_id).strip():
        problems.append("applicant_view_id must be non-empty when provided")
    for name, minimum in (("batch_size", 1), ("max_items", 1), ("cooldown_ms", 0)):
        value = getattr(target, name)
        if isinstance(value, bool) or not isinstance(value, int):
            problems.append(f"{name} must be an integer")
        elif value < minimum:
            problems.append(f"{name} must be >= {minimum}")
    timeout = target.item_timeout_seconds
    if timeout is not None and (
        isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0
    ):
        problems.append("item_timeout_seconds must be a positive number")

    if problems:
        raise ValidationError("; ".join(problems))


class OperationStateMachine:
    """Lifecycle, cursor and accumulated results of the current run."""

    def __init__(self, emitter: ProgressEventEmitter) -> None:
        self.emitter = emitter
        self._lock = threading.RLock()
        self._state = OperationState(id=self._new_id())
        # Set whenever a paused run may continue (resume or cancel).
        self._wake = threading.Event()
        self._wake.set()
        # Set on cancel so cooldown waits end early.
        self._cancel_signal = threading.Event()

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex[:12]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def phase(self) -> Phase:
        with self._lock:
            return self._state.phase

    @property
    def cancel_requested(self) -> bool:
        with self._lock:
            return self._state.cancel_requested

    @property
    def pause_requested(self) -> bool:
        with self._lock:
            return self._state.pause_requested

    @property
    def cancel_signal(self) -> threading.Event:
        return self._cancel_signal

    def get_snapshot(self) -> OperationSnapshot:
        """Immutable point-in-time copy of the current state."""
        with self._lock:
            state = self._state
            return OperationSnapshot(
                id=state.id,
                phase=state.phase,
                target=state.target,
                cursor=state.cursor,
                total_items=state.total_items,
                processed_items=tuple(copy.deepcopy(state.processed_items)),
                errors=tuple(copy.deepcopy(state.errors)),
                batch_current=state.batches.current,
                batch_total=state.batches.total,
                batch_completed=state.batches.completed,
                start_time=state.start_time,
                end_time=state.end_time,
                pause_requested=state.pause_requested,
                cancel_requested=state.cancel_requested,
                fatal_error=state.fatal_error,
            )

    # ------------------------------------------------------------------
    # Control transitions (called by external callers)
    # ------------------------------------------------------------------
    def start(self, target: ExtractionTarget) -> str:
        """Idle (or a finished run) -> Connecting. Returns the new run id."""
        validate_target(target)
        with self._lock:
            if self._state.phase.is_active:
                raise InvalidStateError("start", self._state.phase.value)

            self._state = OperationState(
                id=self._new_id(),
                phase=Phase.CONNECTING,
                target=target,
                start_time=utc_now(),
            )
            self._wake.set()
            self._cancel_signal.clear()
            logger.info("Run %s connecting for job %s", self._state.id, target.job_id)
            return self._state.id

    def request_pause(self) -> None:
        """Ask a running extraction to pause at the next batch boundary."""
        with self._lock:
            if self._state.phase is not Phase.RUNNING:
                raise InvalidStateError("pause", self._state.phase.value)
            if self._state.cancel_requested:
                raise InvalidStateError("pause", "cancelling")
            self._state.pause_requested = True
            logger.info("Pause requested for run %s", self._state.id)

    def resume(self) -> None:
        """Paused -> Running. Also withdraws a pause that has not been honored yet."""
        with self._lock:
            state = self._state
            if state.phase is Phase.RUNNING and state.pause_requested:
                state.pause_requested = False
                logger.info("Pending pause withdrawn for run %s", state.id)
                return
            if state.phase is not Phase.PAUSED:
                raise InvalidStateError("resume", state.phase.value)
            if state.cancel_requested:
                raise InvalidStateError("resume", "cancelling")

            state.phase = Phase.RUNNING
            logger.info("Run %s resumed at %s/%s", state.id, state.cursor, state.total_items)
            self.emitter.emit("resumed", payloads.resumed_payload(self.get_snapshot()))
            self._wake.set()

    def cancel(self) -> None:
        """Flag the run for cancellation; the run loop finishes the transition."""
        with self._lock:
            if not self._state.phase.is_active:
                raise InvalidStateError("cancel", self._state.phase.value)
            self._state.cancel_requested = True
            self._state.pause_requested = False
            logger.info("Cancel requested for run %s", self._state.id)
            self._cancel_signal.set()
            self._wake.set()

    # ------------------------------------------------------------------
    # Run-loop transitions (called by the orchestrator only)
    # ------------------------------------------------------------------
    def connected(self, source_total: int) -> int:
        """Connecting -> Running. Returns the number of items the run will cover."""
        with self._lock:
            state = self._state
            self._require(Phase.CONNECTING, "mark connected")
            assert state.target is not None
            state.total_items = min(max(source_total, 0), state.target.max_items)
            state.phase = Phase.RUNNING
            logger.info(
                "Run %s started: %s applicant(s) in scope (source has %s)",
                state.id,
                state.total_items,
                source_total,
            )
            self.emitter.emit(
                "started",
                payloads.started_payload(state.target.job_id, state.total_items, state.id),
            )
            return state.total_items

    def batch_started(self, batch_index: int, total_batches: int, batch_size: int) -> None:
        with self._lock:
            self._require(Phase.RUNNING, "start a batch")
            self._state.batches.current = batch_index + 1
            self._state.batches.total = total_batches
            assert self._state.target is not None
            self.emitter.emit(
                "batch-started",
                payloads.batch_started_payload(
                    self._state.target.job_id, batch_index, total_batches, batch_size
                ),
            )

    def batch_completed(
        self, batch_index: int, total_batches: int, processed: int, succeeded: int, failed: int
    ) -> None:
        with self._lock:
            self._require(Phase.RUNNING, "complete a batch")
            self._state.batches.completed += 1
            assert self._state.target is not None
            self.emitter.emit(
                "batch-completed",
                payloads.batch_completed_payload(
                    self._state.target.job_id,
                    batch_index,
                    total_batches,
                    processed,
                    succeeded,
                    failed,
                ),
            )

    def record_item(self, result: ItemResult, error: ErrorRecord | None = None) -> None:
        """Append one processed item (and its recoverable error) and emit progress."""
        with self._lock:
            self._require(Phase.RUNNING, "record an item")
            state = self._state
            if state.cursor >= state.total_items:
                raise InvalidStateError("record an item", "past the end of the source")
            state.processed_items.append(result)
            if error is not None:
                state.errors.append(error)
            state.cursor += 1
            self.emitter.emit(
                "progress", payloads.progress_payload(self.get_snapshot(), result)
            )

    def enter_pause(self) -> bool:
        """Honor a pending pause at a batch boundary. Returns True if now paused."""
        with self._lock:
            state = self._state
            if state.phase is not Phase.RUNNING or not state.pause_requested:
                return False
            if state.cancel_requested:
                return False
            state.pause_requested = False
            state.phase = Phase.PAUSED
            self._wake.clear()
            logger.info("Run %s paused at %s/%s", state.id, state.cursor, state.total_items)
            self.emitter.emit("paused", payloads.paused_payload(self.get_snapshot()))
            return True

    def wait_until_resumed(self, timeout: float | None = None) -> bool:
        """Block (without spinning) until resume or cancel. Returns False on timeout."""
        return self._wake.wait(timeout)

    def complete(self) -> None:
        """Running -> Completed."""
        with self._lock:
            self._require(Phase.RUNNING, "complete")
            state = self._state
            state.phase = Phase.COMPLETED
            state.end_time = utc_now()
            state.pause_requested = False
            logger.info(
                "Run %s completed: %s item(s), %s error(s)",
                state.id,
                len(state.processed_items),
                len(state.errors),
            )
            self.emitter.emit("completed", payloads.completed_payload(self.get_snapshot()))

    def finish_cancelled(self) -> None:
        """Any active phase -> Cancelled. Emits the final ``cancelled`` event."""
        with self._lock:
            state = self._state
            if not state.phase.is_active:
                raise InvalidStateError("finish cancellation", state.phase.value)
            state.phase = Phase.CANCELLED
            state.end_time = utc_now()
            state.pause_requested = False
            self._wake.set()
            logger.info(
                "Run %s cancelled after %s item(s)", state.id, len(state.processed_items)
            )
            self.emitter.emit("cancelled", payloads.cancelled_payload(self.get_snapshot()))

    def fail(
        self, error: BaseException, item_ref: ApplicantRef | None = None, context: str = ""
    ) -> None:
        """
        Any non-terminal phase -> Error.

        Results collected so far are kept; when ``item_ref`` is given the item that
        raised the fatal error is recorded in ``errors`` and the cursor moves past it.
        """
        with self._lock:
            state = self._state
            if state.phase.is_terminal:
                raise InvalidStateError("fail", state.phase.value)

            record = ErrorRecord(
                item_ref=item_ref,
                error_kind=_kind_for(error),
                message=str(error) or type(error).__name__,
                recoverable=False,
                error_code=payloads.map_error_to_code(error),
            )
            state.errors.append(record)
            if item_ref is not None and state.cursor < state.total_items:
                state.cursor += 1
            state.fatal_error = record
            state.phase = Phase.ERROR
            state.end_time = utc_now()
            state.pause_requested = False
            self._wake.set()
            logger.error("Run %s failed: %s", state.id, record.message)
            self.emitter.emit(
                "error", payloads.error_payload(self.get_snapshot(), error, context)
            )

    def _require(self, phase: Phase, action: str) -> None:
        if self._state.phase is not phase:
            raise InvalidStateError(action, self._state.phase.value)


def _kind_for(error: BaseException) -> ErrorKind:
    if isinstance(error, NavigationError):
        return ErrorKind.NAVIGATION
    return ErrorKind.FATAL
