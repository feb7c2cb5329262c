"""
Task models — the maintenance run contract.

A MaintenanceTask is a name plus a zero-argument operation. The runner
executes tasks in order and turns each outcome into a TaskResult.
Task failures are data, never exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Callable

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class TaskOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class MaintenanceTask:
    """A named maintenance step.

    ``operation`` returns True on success, or a ready TaskResult when it
    has output to report. Returning False or raising counts as a failure.
    """

    name: str
    operation: Callable[[], bool | TaskResult]


class TaskResult(BaseModel):
    """Result of a single maintenance task."""

    name: str
    outcome: TaskOutcome

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    # Findings worth attention that did not fail the task
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome == TaskOutcome.SUCCESS

    @property
    def failed(self) -> bool:
        return self.outcome == TaskOutcome.FAILURE

    @classmethod
    def success(cls, name: str, output: str = "", **kwargs) -> TaskResult:
        return cls(name=name, outcome=TaskOutcome.SUCCESS, output=output, **kwargs)

    @classmethod
    def failure(cls, name: str, error: str = "", **kwargs) -> TaskResult:
        return cls(name=name, outcome=TaskOutcome.FAILURE, error=error or None, **kwargs)
