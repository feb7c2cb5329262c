"""
Command tasks — wrap external commands as maintenance tasks.

Bridges the shell adapter (CommandResult) and the task runner
(TaskResult): a task built here runs one or more commands in order and
fails on the first failing command.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from nixmaint.adapters.shell.command import CommandResult, CommandRunner
from nixmaint.core.models.task import MaintenanceTask, TaskResult

logger = logging.getLogger(__name__)

# Output kept per task in results and the ledger
_MAX_OUTPUT_CHARS = 4000


def result_from_command(name: str, result: CommandResult) -> TaskResult:
    """Translate a command outcome into a task outcome."""
    output = result.stdout[-_MAX_OUTPUT_CHARS:]
    if result.ok:
        return TaskResult.success(name, output=output)
    return TaskResult.failure(name, error=f"{result.command}: {result.error}", output=output)


def command_task(name: str, call: Callable[[], CommandResult]) -> MaintenanceTask:
    """A task whose outcome is a single adapter call."""
    return MaintenanceTask(name=name, operation=lambda: result_from_command(name, call()))


def commands_task(
    name: str,
    runner: CommandRunner,
    commands: Sequence[Sequence[str]],
    timeout: int | None = None,
) -> MaintenanceTask:
    """A task that runs ``commands`` in order, stopping at the first failure."""

    def operation() -> TaskResult:
        outputs = []
        for argv in commands:
            result = runner.run(argv, timeout=timeout)
            if result.stdout:
                outputs.append(result.stdout)
            if not result.ok:
                failed = result_from_command(name, result)
                return failed.model_copy(update={"output": "\n".join(outputs)[-_MAX_OUTPUT_CHARS:]})
        return TaskResult.success(name, output="\n".join(outputs)[-_MAX_OUTPUT_CHARS:])

    return MaintenanceTask(name=name, operation=operation)
