"""Tests for batch planning, cooldowns and batch-boundary control."""

import threading

import pytest

from conftest import EventRecorder, make_refs
from events.emitter import ProgressEventEmitter
from models import ExtractionTarget, ItemResult, Phase
from orchestration.batch_scheduler import BatchOutcome, BatchScheduler, plan_batches
from orchestration.state_machine import OperationStateMachine


def _setup(total, cooldowns=None):
    emitter = ProgressEventEmitter()
    recorder = EventRecorder(emitter)
    machine = OperationStateMachine(emitter)
    machine.start(ExtractionTarget(job_id="job-1", max_items=max(total, 1)))
    machine.connected(total)
    cooldown_fn = cooldowns.append if cooldowns is not None else (lambda _s: None)
    return machine, BatchScheduler(machine, cooldown_fn=cooldown_fn), recorder


def _processor(machine, hook=None):
    def process(ref):
        if hook is not None:
            hook(ref)
        machine.record_item(ItemResult(source_ref=ref, success=True, attempts=1))
        return True

    return process


class TestPlanBatches:
    def test_last_batch_is_short(self):
        plans = plan_batches(make_refs(5), max_items=5, batch_size=2)

        assert [len(plan.items) for plan in plans] == [2, 2, 1]
        assert [plan.start_offset for plan in plans] == [0, 2, 4]
        assert [plan.is_last for plan in plans] == [False, False, True]
        assert all(plan.total_batches == 3 for plan in plans)

    def test_max_items_caps_plan(self):
        plans = plan_batches(make_refs(10), max_items=3, batch_size=5)

        assert len(plans) == 1
        assert [ref.profile_id for ref in plans[0].items] == [
            "applicant-1",
            "applicant-2",
            "applicant-3",
        ]

    def test_batch_larger_than_source_gives_one_batch(self):
        plans = plan_batches(make_refs(3), max_items=100, batch_size=10)

        assert len(plans) == 1
        assert len(plans[0].items) == 3

    def test_empty_source_gives_no_batches(self):
        assert plan_batches([], max_items=10, batch_size=2) == []
        assert plan_batches(make_refs(4), max_items=0, batch_size=2) == []

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            plan_batches(make_refs(1), max_items=1, batch_size=0)


class TestBatchScheduler:
    def test_runs_every_batch_with_cooldowns_between(self):
        cooldowns = []
        machine, scheduler, recorder = _setup(5, cooldowns)

        outcome = scheduler.run(make_refs(5), 5, 2, 1.5, _processor(machine))

        assert outcome is BatchOutcome.COMPLETED
        assert cooldowns == [1.5, 1.5]
        assert recorder.names.count("batch-started") == 3
        assert recorder.names.count("batch-completed") == 3
        assert recorder.names.count("progress") == 5
        sizes = [p["processedCount"] for p in recorder.payloads("batch-completed")]
        assert sizes == [2, 2, 1]
        assert machine.get_snapshot().batch_completed == 3

    def test_zero_cooldown_skips_wait(self):
        cooldowns = []
        machine, scheduler, _ = _setup(4, cooldowns)

        scheduler.run(make_refs(4), 4, 2, 0, _processor(machine))

        assert cooldowns == []

    def test_empty_source_emits_no_batch_events(self):
        machine, scheduler, recorder = _setup(0)

        outcome = scheduler.run([], 10, 2, 0, _processor(machine))

        assert outcome is BatchOutcome.COMPLETED
        assert "batch-started" not in recorder.names

    def test_cancel_mid_batch_finishes_current_item_only(self):
        machine, scheduler, recorder = _setup(6)
        calls = []

        def hook(ref):
            calls.append(ref.profile_id)
            if len(calls) == 2:
                machine.cancel()

        outcome = scheduler.run(make_refs(6), 6, 3, 0, _processor(machine, hook))

        assert outcome is BatchOutcome.CANCELLED
        assert calls == ["applicant-1", "applicant-2"]
        assert recorder.payloads("batch-completed")[0]["processedCount"] == 2
        assert machine.get_snapshot().cursor == 2

    def test_pause_is_honored_at_next_boundary(self):
        cooldowns = []
        machine, scheduler, recorder = _setup(4, cooldowns)
        paused_at = []

        def on_paused(payload):
            paused_at.append(payload["current"])
            threading.Timer(0.05, machine.resume).start()

        unsubscribe = machine.emitter.subscribe("paused", on_paused)

        def hook(ref):
            if ref.profile_id == "applicant-1":
                machine.request_pause()

        outcome = scheduler.run(make_refs(4), 4, 2, 2.0, _processor(machine, hook))
        unsubscribe()

        assert outcome is BatchOutcome.COMPLETED
        # the second item of the first batch still ran before the pause
        assert paused_at == [2]
        assert cooldowns == []
        names = recorder.names
        assert names.index("paused") > names.index("batch-completed")
        assert names.index("resumed") < len(names) - 1
        assert names.count("progress") == 4
        assert machine.phase is Phase.RUNNING

    def test_cancel_while_paused_ends_run(self):
        machine, scheduler, recorder = _setup(4)

        def on_paused(_payload):
            threading.Timer(0.05, machine.cancel).start()

        machine.emitter.subscribe("paused", on_paused)

        def hook(ref):
            if ref.profile_id == "applicant-2":
                machine.request_pause()

        outcome = scheduler.run(make_refs(4), 4, 2, 0, _processor(machine, hook))

        assert outcome is BatchOutcome.CANCELLED
        assert machine.get_snapshot().cursor == 2
        assert "resumed" not in recorder.names

    def test_pause_requested_in_last_batch_is_not_honored(self):
        machine, scheduler, recorder = _setup(2)

        def hook(ref):
            machine.request_pause()

        outcome = scheduler.run(make_refs(2), 2, 2, 0, _processor(machine, hook))

        assert outcome is BatchOutcome.COMPLETED
        assert "paused" not in recorder.names
