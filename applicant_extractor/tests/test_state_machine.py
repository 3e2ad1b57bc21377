"""Tests for the operation state machine transitions and snapshots."""

import pytest

from conftest import EventRecorder, make_refs
from events.emitter import ProgressEventEmitter
from models import ErrorKind, ExtractionTarget, ItemResult, Phase
from orchestration.errors import InvalidStateError, NavigationError, ValidationError
from orchestration.state_machine import OperationStateMachine, validate_target


@pytest.fixture
def machine():
    return OperationStateMachine(ProgressEventEmitter())


def _running(machine, total=4, **target_kwargs):
    machine.start(ExtractionTarget(job_id="job-1", **target_kwargs))
    machine.connected(total)
    return machine


def _ok(ref):
    return ItemResult(source_ref=ref, success=True, attempts=1)


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"job_id": ""},
            {"job_id": "   "},
            {"job_id": "j", "batch_size": 0},
            {"job_id": "j", "max_items": 0},
            {"job_id": "j", "cooldown_ms": -1},
            {"job_id": "j", "batch_size": 2.5},
            {"job_id": "j", "item_timeout_seconds": 0},
            {"job_id": "j", "applicant_view_id": ""},
        ],
    )
    def test_invalid_targets_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            validate_target(ExtractionTarget(**kwargs))

    def test_invalid_start_leaves_machine_idle(self, machine):
        with pytest.raises(ValidationError):
            machine.start(ExtractionTarget(job_id="j", batch_size=0))

        assert machine.phase is Phase.IDLE

    def test_target_from_dict_accepts_aliases(self):
        target = ExtractionTarget.from_dict(
            {"jobId": "42", "maxApplicants": 7, "batchSize": 3, "pauseBetweenBatches": 0}
        )

        assert target.job_id == "42"
        assert target.max_items == 7
        assert target.batch_size == 3
        assert target.cooldown_ms == 0

    def test_target_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValidationError):
            ExtractionTarget.from_dict({"jobId": "42", "colour": "blue"})


class TestTransitions:
    def test_start_moves_to_connecting(self, machine):
        run_id = machine.start(ExtractionTarget(job_id="job-1"))

        snapshot = machine.get_snapshot()
        assert snapshot.phase is Phase.CONNECTING
        assert snapshot.id == run_id
        assert snapshot.start_time is not None

    def test_start_rejected_while_active(self, machine):
        machine.start(ExtractionTarget(job_id="job-1"))

        with pytest.raises(InvalidStateError):
            machine.start(ExtractionTarget(job_id="job-2"))

    def test_restart_after_terminal_phase_replaces_state(self, machine):
        _running(machine, total=1)
        machine.record_item(_ok(make_refs(1)[0]))
        machine.complete()
        first_id = machine.get_snapshot().id

        machine.start(ExtractionTarget(job_id="job-2"))

        snapshot = machine.get_snapshot()
        assert snapshot.id != first_id
        assert snapshot.processed_items == ()
        assert snapshot.cursor == 0

    def test_connected_caps_total_by_max_items(self, machine):
        machine.start(ExtractionTarget(job_id="job-1", max_items=3))

        assert machine.connected(10) == 3
        assert machine.phase is Phase.RUNNING

    def test_pause_only_while_running(self, machine):
        with pytest.raises(InvalidStateError):
            machine.request_pause()

        machine.start(ExtractionTarget(job_id="job-1"))
        with pytest.raises(InvalidStateError):
            machine.request_pause()

    def test_resume_requires_paused_or_pending_pause(self, machine):
        _running(machine)

        with pytest.raises(InvalidStateError):
            machine.resume()

    def test_resume_withdraws_pending_pause(self, machine):
        _running(machine)
        machine.request_pause()

        machine.resume()

        assert machine.pause_requested is False
        assert machine.enter_pause() is False

    def test_pause_and_resume_cycle_emits_events(self):
        emitter = ProgressEventEmitter()
        recorder = EventRecorder(emitter)
        machine = _running(OperationStateMachine(emitter))

        machine.request_pause()
        assert machine.enter_pause() is True
        assert machine.phase is Phase.PAUSED
        assert machine.wait_until_resumed(timeout=0.01) is False

        machine.resume()

        assert machine.phase is Phase.RUNNING
        assert machine.wait_until_resumed(timeout=0.01) is True
        assert recorder.names == ["started", "paused", "resumed"]

    def test_cancel_while_paused_wakes_waiter(self, machine):
        _running(machine)
        machine.request_pause()
        machine.enter_pause()

        machine.cancel()

        assert machine.wait_until_resumed(timeout=0.01) is True
        assert machine.cancel_requested is True
        assert machine.cancel_signal.is_set()

    def test_cancel_rejected_when_idle_or_terminal(self, machine):
        with pytest.raises(InvalidStateError):
            machine.cancel()

        _running(machine, total=0)
        machine.complete()
        with pytest.raises(InvalidStateError):
            machine.cancel()

    def test_record_item_advances_cursor(self, machine):
        refs = make_refs(2)
        _running(machine, total=2)

        machine.record_item(_ok(refs[0]))

        snapshot = machine.get_snapshot()
        assert snapshot.cursor == 1
        assert snapshot.percentage == 50
        assert snapshot.processed_items[0].source_ref == refs[0]

    def test_record_item_past_end_rejected(self, machine):
        refs = make_refs(2)
        _running(machine, total=1)
        machine.record_item(_ok(refs[0]))

        with pytest.raises(InvalidStateError):
            machine.record_item(_ok(refs[1]))

    def test_fail_records_fatal_error_and_keeps_results(self):
        emitter = ProgressEventEmitter()
        recorder = EventRecorder(emitter)
        machine = _running(OperationStateMachine(emitter), total=3)
        refs = make_refs(3)
        machine.record_item(_ok(refs[0]))

        machine.fail(NavigationError("page layout changed"), item_ref=refs[1], context="item 2")

        snapshot = machine.get_snapshot()
        assert snapshot.phase is Phase.ERROR
        assert snapshot.cursor == 2
        assert snapshot.fatal_error.error_kind is ErrorKind.NAVIGATION
        assert snapshot.fatal_error.recoverable is False
        assert snapshot.end_time is not None
        error_payload = recorder.payloads("error")[0]
        assert error_payload["context"] == "item 2"
        assert error_payload["partial"]["count"] == 1

    def test_fail_rejected_after_terminal(self, machine):
        _running(machine, total=0)
        machine.complete()

        with pytest.raises(InvalidStateError):
            machine.fail(RuntimeError("late"))


class TestSnapshots:
    def test_snapshot_is_idempotent(self, machine):
        _running(machine, total=2)
        machine.record_item(_ok(make_refs(1)[0]))

        assert machine.get_snapshot() == machine.get_snapshot()

    def test_snapshot_is_isolated_from_later_changes(self, machine):
        refs = make_refs(2)
        _running(machine, total=2)
        before = machine.get_snapshot()

        machine.record_item(_ok(refs[0]))

        assert before.cursor == 0
        assert before.processed_items == ()

    def test_snapshot_to_dict_uses_camel_case(self, machine):
        _running(machine, total=2)

        data = machine.get_snapshot().to_dict()

        assert data["phase"] == "running"
        assert data["target"]["jobId"] == "job-1"
        assert data["batches"] == {"current": 0, "total": 0, "completed": 0}
        assert data["pauseRequested"] is False
