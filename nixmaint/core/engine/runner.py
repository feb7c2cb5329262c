"""
Locked task runner — the maintenance orchestration loop.

Runs an ordered list of named tasks while holding an advisory lock,
so only one instance of a given workflow proceeds at a time. Distinct
lock names never contend.

Flow:
    acquire(lock) → run tasks in order → collect results → release(lock)
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from nixmaint.core.models.task import MaintenanceTask, TaskResult
from nixmaint.core.persistence.lock_file import LockHandle, acquire_lock, release_lock

logger = logging.getLogger(__name__)


@dataclass
class TaskRunReport:
    """Result of running a task list."""

    lock_name: str = ""
    results: list[TaskResult] = field(default_factory=list)
    halted: bool = False
    planned: int = 0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def not_attempted(self) -> int:
        return self.planned - self.total

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "lock": self.lock_name,
            "status": self.status,
            "planned": self.planned,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "halted": self.halted,
            "results": [r.model_dump(mode="json") for r in self.results],
        }


def run_task(task: MaintenanceTask) -> TaskResult:
    """Execute one task and capture its outcome. Never raises."""
    start = time.monotonic()
    try:
        outcome = task.operation()
    except Exception as e:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug("Task '%s' raised", task.name, exc_info=True)
        return TaskResult.failure(task.name, error=str(e) or type(e).__name__, duration_ms=elapsed_ms)

    elapsed_ms = int((time.monotonic() - start) * 1000)
    if isinstance(outcome, TaskResult):
        return outcome.model_copy(update={"name": task.name, "duration_ms": elapsed_ms})
    if outcome:
        return TaskResult.success(task.name, duration_ms=elapsed_ms)
    return TaskResult.failure(task.name, error=f"Task '{task.name}' reported failure", duration_ms=elapsed_ms)


class LockedTaskRunner:
    """Single-instance runner for named maintenance workflows.

    Usage:
        runner = LockedTaskRunner(lock_dir)
        with runner.session("system-maintenance") as handle:
            report = runner.run(tasks, halt_on_failure=False, handle=handle)
    """

    def __init__(self, lock_dir: Path):
        self._lock_dir = lock_dir

    @property
    def lock_dir(self) -> Path:
        return self._lock_dir

    def acquire(self, lock_name: str) -> LockHandle:
        """Take the lock or raise AlreadyRunningError."""
        handle = acquire_lock(self._lock_dir, lock_name)
        logger.info("Acquired lock '%s'", lock_name)
        return handle

    def release(self, handle: LockHandle) -> None:
        """Give the lock back. Repeated calls are no-ops."""
        if handle.released:
            return
        release_lock(handle)
        logger.info("Released lock '%s'", handle.name)

    @contextmanager
    def session(self, lock_name: str) -> Iterator[LockHandle]:
        """Hold ``lock_name`` for the duration of the block.

        Release runs on every exit path, including KeyboardInterrupt
        and SystemExit.
        """
        handle = self.acquire(lock_name)
        try:
            yield handle
        finally:
            self.release(handle)

    def run(
        self,
        tasks: Sequence[MaintenanceTask],
        halt_on_failure: bool,
        handle: LockHandle | None = None,
    ) -> TaskRunReport:
        """Execute tasks strictly in order.

        Args:
            tasks: Ordered tasks.
            halt_on_failure: Stop after the first failed task.
            handle: The lock the run happens under, for reporting.

        Returns:
            TaskRunReport with one result per attempted task.
        """
        report = TaskRunReport(
            lock_name=handle.name if handle else "",
            planned=len(tasks),
        )

        for task in tasks:
            logger.info("Running task: %s", task.name)
            result = run_task(task)
            report.results.append(result)

            if result.ok:
                logger.info("✓ %s (%dms)", task.name, result.duration_ms)
                continue

            logger.error("✗ %s: %s", task.name, result.error)
            if halt_on_failure:
                report.halted = True
                remaining = len(tasks) - report.total
                if remaining:
                    logger.warning("Halting; %d task(s) not attempted", remaining)
                break

        return report


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    return f"op-{now}-{uuid.uuid4().hex[:6]}"
