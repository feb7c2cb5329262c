"""
Maintain use case — run named maintenance tasks under one lock.

Task names map to command lists (update, optimize, logs) or to
read-only checks (health, security, disk, services) whose findings are
warnings, not failures. The ``cleanup`` task is special: it deletes
expired generations through the retention engine instead of a fixed
``--delete-generations +N``, then clears old temporary files.
Commands in nixmaint.yml replace or extend the built-in definitions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from nixmaint.adapters.nix.profile import NixProfile
from nixmaint.adapters.shell.command import CommandRunner
from nixmaint.core.config.loader import ConfigError, MaintenanceConfig
from nixmaint.core.engine.runner import LockedTaskRunner, TaskRunReport, generate_operation_id
from nixmaint.core.models.task import MaintenanceTask, TaskResult
from nixmaint.core.persistence.audit import AuditEntry, AuditWriter
from nixmaint.core.persistence.lock_file import LockError
from nixmaint.core.services.checks import (
    CheckReport,
    disk_check,
    health_check,
    missing_tools,
    security_check,
    services_check,
)
from nixmaint.core.services.command_tasks import commands_task
from nixmaint.core.use_cases.clean import clean_generations

logger = logging.getLogger(__name__)

MAINTENANCE_LOCK = "system-maintenance"
CLEANUP_TASK = "cleanup"
REQUIRED_TOOLS = ("nix-env", "systemctl")

BUILTIN_TASKS: dict[str, list[list[str]]] = {
    "update": [
        ["nix-channel", "--update"],
        ["nixos-rebuild", "build"],
    ],
    "optimize": [
        ["nix-store", "--optimise"],
    ],
    "logs": [
        ["journalctl", "--rotate"],
        ["journalctl", "--vacuum-time=30d"],
    ],
}

CHECK_TASKS: dict[str, Callable[[CommandRunner, MaintenanceConfig], CheckReport]] = {
    "health": lambda runner, config: health_check(runner),
    "security": lambda runner, config: security_check(runner),
    "disk": lambda runner, config: disk_check(runner),
    "services": lambda runner, config: services_check(runner, config.critical_services),
}

DEFAULT_TASKS = ["update", "cleanup", "health", "optimize", "security", "logs", "disk", "services"]


@dataclass
class MaintenanceResult:
    """Result of a maintenance run."""

    operation_id: str = ""
    tasks: list[str] | None = None
    dry_run: bool = False
    report: TaskRunReport | None = None
    error: str | None = None

    @property
    def status(self) -> str:
        if self.error:
            return "error"
        return self.report.status if self.report else "ok"

    def to_dict(self) -> dict:
        result: dict = {"operation_id": self.operation_id}
        if self.error:
            result["error"] = self.error
            return result

        result["status"] = self.status
        result["dry_run"] = self.dry_run
        result["tasks"] = self.tasks or []
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def available_tasks(config: MaintenanceConfig) -> list[str]:
    """Every task name the config can run, built-ins first."""
    names = list(DEFAULT_TASKS)
    names.extend(n for n in config.tasks if n not in names)
    return names


def parse_task_list(value: str | None, config: MaintenanceConfig) -> list[str]:
    """Split ``update, cleanup`` into names and check each one exists.

    Raises:
        ConfigError: An unknown task name.
    """
    if not value:
        return list(DEFAULT_TASKS)

    names = [n.strip() for n in value.split(",") if n.strip()]
    known = set(available_tasks(config))
    unknown = [n for n in names if n not in known]
    if unknown:
        raise ConfigError(
            f"Unknown task(s): {', '.join(unknown)}. "
            f"Available: {', '.join(available_tasks(config))}"
        )
    return names


def build_tasks(
    names: list[str],
    config: MaintenanceConfig,
    commands: CommandRunner,
    runner: LockedTaskRunner,
    audit: AuditWriter,
    dry_run: bool = False,
    now: datetime | None = None,
) -> list[MaintenanceTask]:
    """Turn task names into runnable tasks."""
    tasks = []
    for name in names:
        if name in config.tasks:
            tasks.append(commands_task(name, commands, config.tasks[name], config.command_timeout))
        elif name == CLEANUP_TASK:
            tasks.append(_cleanup_task(config, commands, runner, audit, dry_run, now))
        elif name in BUILTIN_TASKS:
            tasks.append(commands_task(name, commands, BUILTIN_TASKS[name], config.command_timeout))
        elif name in CHECK_TASKS:
            tasks.append(_check_task(name, config, commands))
        else:
            raise ConfigError(f"Unknown task: {name}")
    return tasks


def _check_task(name: str, config: MaintenanceConfig, commands: CommandRunner) -> MaintenanceTask:
    check = CHECK_TASKS[name]
    return MaintenanceTask(name=name, operation=lambda: check(commands, config).to_result())


def clean_tmp_files(config: MaintenanceConfig, commands: CommandRunner) -> list[str]:
    """Delete files nobody read for ``tmp_max_age_days``; return warnings.

    Skipped in dry-run like any other destructive command.
    """
    warnings = []
    for directory in config.tmp_dirs:
        argv = [
            "find", directory, "-xdev", "-type", "f",
            "-atime", f"+{config.tmp_max_age_days}", "-delete",
        ]
        result = commands.run(argv, timeout=config.command_timeout)
        if not result.ok:
            message = f"Could not clean {directory}: {result.error}"
            logger.warning(message)
            warnings.append(message)
    return warnings


def _cleanup_task(
    config: MaintenanceConfig,
    commands: CommandRunner,
    runner: LockedTaskRunner,
    audit: AuditWriter,
    dry_run: bool,
    now: datetime | None,
) -> MaintenanceTask:
    def operation() -> TaskResult:
        result = clean_generations(
            config,
            NixProfile(commands, config.profile),
            runner=runner,
            dry_run=dry_run,
            now=now,
            audit=audit,
        )
        warnings = clean_tmp_files(config, commands)

        if result.error:
            return TaskResult.failure(CLEANUP_TASK, error=result.error, warnings=warnings)
        if result.report and result.report.failed:
            errors = [r.error for r in result.report.results if r.error]
            return TaskResult.failure(CLEANUP_TASK, error="; ".join(errors), warnings=warnings)

        if dry_run:
            pending = result.plan.to_delete_ids if result.plan else []
            output = f"Would remove {len(pending)} generation(s)"
        else:
            output = f"Removed {len(result.deleted_ids)} generation(s)"
        return TaskResult.success(CLEANUP_TASK, output=output, warnings=warnings)

    return MaintenanceTask(name=CLEANUP_TASK, operation=operation)


def run_maintenance(
    config: MaintenanceConfig,
    task_names: list[str] | None = None,
    halt_on_failure: bool = False,
    dry_run: bool = False,
    commands: CommandRunner | None = None,
    runner: LockedTaskRunner | None = None,
    audit: AuditWriter | None = None,
    now: datetime | None = None,
) -> MaintenanceResult:
    """Run maintenance tasks in order under the maintenance lock.

    Args:
        config: Loaded configuration.
        task_names: Tasks to run (default: DEFAULT_TASKS).
        halt_on_failure: Stop at the first failed task.
        dry_run: Log commands instead of running them.
        commands: Command runner (default: a real one honoring dry_run).
        runner: Locked runner (default: one on the configured lock dir).
        audit: Ledger writer (default: the configured ledger).
        now: Reference time for the cleanup task.

    Returns:
        MaintenanceResult. Errors are reported in ``error``, never raised.
    """
    names = task_names or list(DEFAULT_TASKS)
    result = MaintenanceResult(
        operation_id=generate_operation_id(),
        tasks=names,
        dry_run=dry_run,
    )
    commands = commands or CommandRunner(timeout=config.command_timeout, dry_run=dry_run)
    runner = runner or LockedTaskRunner(config.effective_lock_dir)
    audit = audit or AuditWriter(config.audit_path)

    try:
        tasks = build_tasks(names, config, commands, runner, audit, dry_run=dry_run, now=now)
    except ConfigError as e:
        result.error = str(e)
        return result

    logger.info("Starting system maintenance (%s)", "DRY-RUN" if dry_run else "LIVE")
    logger.info("Tasks: %s", ", ".join(names))

    try:
        with runner.session(MAINTENANCE_LOCK) as handle:
            missing = missing_tools(commands, REQUIRED_TOOLS)
            if missing:
                result.error = f"Required tool(s) not found: {', '.join(missing)}"
                logger.error("%s", result.error)
            else:
                result.report = runner.run(tasks, halt_on_failure=halt_on_failure, handle=handle)
    except LockError as e:
        logger.error("%s", e)
        result.error = str(e)

    _write_audit(audit, result)
    return result


def _write_audit(audit: AuditWriter, result: MaintenanceResult) -> None:
    entry = AuditEntry(
        operation_id=result.operation_id,
        workflow=MAINTENANCE_LOCK,
        dry_run=result.dry_run,
        status=result.status,
        context={"tasks": result.tasks or []},
    )
    if result.report:
        entry.tasks_total = result.report.total
        entry.tasks_succeeded = result.report.succeeded
        entry.tasks_failed = result.report.failed
        entry.errors = [r.error for r in result.report.results if r.error]
        entry.warnings = [f"{r.name}: {w}" for r in result.report.results for w in r.warnings]
        entry.context["halted"] = result.report.halted
    if result.error:
        entry.errors.append(result.error)
    audit.write(entry)
