"""
Batch scheduling for extraction runs.

Slices the applicant list into fixed-size batches, runs each item through a
processor callback, and handles the boundary between batches: cancellation,
pause/resume, and the cooldown that keeps us under upstream rate limits.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Any

from models import ApplicantRef, BatchPlan
from orchestration.state_machine import OperationStateMachine

logger = logging.getLogger(__name__)

ItemProcessor = Callable[[ApplicantRef], bool]


class BatchOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def plan_batches(
    items: Sequence[ApplicantRef], max_items: int, batch_size: int
) -> list[BatchPlan]:
    """
    Split ``items`` into batches of ``batch_size``, covering at most ``max_items``.

    The final batch is shorter when the capped total is not a multiple of the
    batch size; it is never padded. No items (or a cap of zero) means no batches.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    total = min(len(items), max(max_items, 0))
    total_batches = math.ceil(total / batch_size)
    plans = []
    for batch_index in range(total_batches):
        start = batch_index * batch_size
        end = min(start + batch_size, total)
        plans.append(
            BatchPlan(
                batch_index=batch_index,
                total_batches=total_batches,
                items=tuple(items[start:end]),
                start_offset=start,
            )
        )
    return plans


class BatchScheduler:
    """
    Drive batches for the current run of an OperationStateMachine.

    ``cooldown_fn`` is injectable for tests; by default the cooldown waits on the
    machine's cancel signal so cancel() cuts it short.
    """

    def __init__(
        self,
        machine: OperationStateMachine,
        cooldown_fn: Callable[[float], Any] | None = None,
    ) -> None:
        self.machine = machine
        self.cooldown_fn = cooldown_fn or machine.cancel_signal.wait

    def run(
        self,
        items: Sequence[ApplicantRef],
        max_items: int,
        batch_size: int,
        cooldown_seconds: float,
        process_item: ItemProcessor,
    ) -> BatchOutcome:
        plans = plan_batches(items, max_items, batch_size)
        if not plans:
            logger.info("No applicants in scope; nothing to schedule")
            return BatchOutcome.COMPLETED

        for plan in plans:
            if plan.batch_index > 0 and not self._pass_boundary():
                return BatchOutcome.CANCELLED

            logger.info(
                "[BATCH %s/%s] %s applicant(s)",
                plan.batch_index + 1,
                plan.total_batches,
                len(plan.items),
            )
            self.machine.batch_started(plan.batch_index, plan.total_batches, len(plan.items))

            processed = succeeded = 0
            for ref in plan.items:
                ok = process_item(ref)
                processed += 1
                succeeded += 1 if ok else 0
                if self.machine.cancel_requested:
                    logger.info("Cancel observed mid-batch; skipping remaining items")
                    break

            self.machine.batch_completed(
                plan.batch_index,
                plan.total_batches,
                processed,
                succeeded,
                processed - succeeded,
            )

            if self.machine.cancel_requested:
                return BatchOutcome.CANCELLED
            if plan.is_last:
                break
            if not self.machine.pause_requested and cooldown_seconds > 0:
                logger.debug("Cooling down for %.1fs", cooldown_seconds)
                self.cooldown_fn(cooldown_seconds)

        return BatchOutcome.COMPLETED

    def _pass_boundary(self) -> bool:
        """Honor pause/cancel before the next batch. False means the run was cancelled."""
        if self.machine.cancel_requested:
            return False
        if self.machine.enter_pause():
            self.machine.wait_until_resumed()
        return not self.machine.cancel_requested
