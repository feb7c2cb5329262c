"""
Update use case — update, rebuild and activate the system, or roll back.

    lock → prerequisites → health checks → channels → build → switch → verify → audit → unlock

Modes:
    full           channels, build, switch, then verify the new system
    channels-only  update Nix channels only
    build-only     build the configuration without activating it

Rollback switches the system profile to the newest generation older
than the current one, under the same lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from nixmaint.adapters.nix.profile import NixProfile, ProfileError
from nixmaint.adapters.shell.command import CommandRunner
from nixmaint.core.config.loader import MaintenanceConfig
from nixmaint.core.engine.retention import RetentionError, validate_generations
from nixmaint.core.engine.runner import LockedTaskRunner, TaskRunReport, generate_operation_id
from nixmaint.core.models.task import MaintenanceTask, TaskResult
from nixmaint.core.persistence.audit import AuditEntry, AuditWriter
from nixmaint.core.persistence.lock_file import LockError
from nixmaint.core.services.checks import (
    CheckReport,
    failed_units,
    health_check,
    missing_tools,
    service_active,
)
from nixmaint.core.services.command_tasks import command_task, commands_task

logger = logging.getLogger(__name__)

UPDATE_LOCK = "nixos-update"
REQUIRED_TOOLS = ("nix-env", "nixos-rebuild")


class UpdateMode(str, Enum):
    FULL = "full"
    CHANNELS = "channels-only"
    BUILD = "build-only"
    ROLLBACK = "rollback"


@dataclass
class UpdateResult:
    """Result of an update or rollback run."""

    operation_id: str = ""
    mode: UpdateMode = UpdateMode.FULL
    dry_run: bool = False
    warnings: list[str] = field(default_factory=list)
    report: TaskRunReport | None = None
    rollback_from: int | None = None
    rollback_to: int | None = None
    error: str | None = None

    @property
    def status(self) -> str:
        if self.error:
            return "error"
        return self.report.status if self.report else "ok"

    def to_dict(self) -> dict:
        result: dict = {"operation_id": self.operation_id, "mode": self.mode.value}
        if self.error:
            result["error"] = self.error
            result["warnings"] = self.warnings
            return result

        result["status"] = self.status
        result["dry_run"] = self.dry_run
        result["warnings"] = self.warnings
        if self.mode is UpdateMode.ROLLBACK:
            result["rollback_from"] = self.rollback_from
            result["rollback_to"] = self.rollback_to
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def build_update_tasks(
    mode: UpdateMode,
    config: MaintenanceConfig,
    commands: CommandRunner,
) -> list[MaintenanceTask]:
    """The ordered steps of an update in ``mode``."""
    timeout = config.command_timeout
    channels = commands_task("update-channels", commands, [["nix-channel", "--update"]], timeout)
    build = commands_task("build-system", commands, [["nixos-rebuild", "build"]], timeout)

    if mode is UpdateMode.CHANNELS:
        return [channels]
    if mode is UpdateMode.BUILD:
        return [build]
    return [
        channels,
        build,
        commands_task("activate-system", commands, [["nixos-rebuild", "switch"]], timeout),
        _verify_task(config, commands),
    ]


def _verify_task(config: MaintenanceConfig, commands: CommandRunner) -> MaintenanceTask:
    def operation() -> TaskResult:
        if commands.dry_run:
            return TaskResult.success("verify", output="Skipped in dry-run")

        report = CheckReport("verify")
        bootable = commands.run(["nixos-rebuild", "dry-activate"], timeout=config.command_timeout)
        if not bootable.ok:
            return TaskResult.failure("verify", error=f"System is not bootable: {bootable.error}")
        report.info("System is bootable")

        stopped = [s for s in config.critical_services if not service_active(commands, s)]
        if stopped:
            return TaskResult.failure(
                "verify", error=f"Critical service(s) not running: {', '.join(stopped)}"
            )
        report.info("Critical services are running")

        failed = failed_units(commands)
        if failed:
            report.warn("Found %d failed service(s) after update: %s", len(failed), ", ".join(failed))
        return report.to_result()

    return MaintenanceTask(name="verify", operation=operation)


def update_system(
    config: MaintenanceConfig,
    mode: UpdateMode = UpdateMode.FULL,
    dry_run: bool = False,
    skip_checks: bool = False,
    force: bool = False,
    commands: CommandRunner | None = None,
    runner: LockedTaskRunner | None = None,
    audit: AuditWriter | None = None,
) -> UpdateResult:
    """Update the system in ``mode``, stopping at the first failed step.

    Args:
        config: Loaded configuration.
        mode: Which steps to run (not ROLLBACK; see rollback_system).
        dry_run: Log commands instead of running them.
        skip_checks: Skip the pre-update health checks.
        force: Carry on when health checks report warnings.
        commands: Command runner (default: a real one honoring dry_run).
        runner: Locked runner (default: one on the configured lock dir).
        audit: Ledger writer (default: the configured ledger).

    Returns:
        UpdateResult. Errors are reported in ``error``, never raised.
    """
    result = UpdateResult(operation_id=generate_operation_id(), mode=mode, dry_run=dry_run)
    commands = commands or CommandRunner(timeout=config.command_timeout, dry_run=dry_run)
    runner = runner or LockedTaskRunner(config.effective_lock_dir)
    audit = audit or AuditWriter(config.audit_path)

    logger.info("Starting NixOS system update (%s, %s)", mode.value, "DRY-RUN" if dry_run else "LIVE")

    try:
        with runner.session(UPDATE_LOCK) as handle:
            missing = missing_tools(commands, REQUIRED_TOOLS)
            if missing:
                result.error = f"Required tool(s) not found: {', '.join(missing)}"
            elif _health_gate(result, commands, skip_checks, force):
                tasks = build_update_tasks(mode, config, commands)
                result.report = runner.run(tasks, halt_on_failure=True, handle=handle)
    except LockError as e:
        result.error = str(e)

    if result.error:
        logger.error("%s", result.error)
    elif result.report and not result.report.failed:
        logger.info("System update completed")

    _write_audit(audit, result)
    return result


def _health_gate(result: UpdateResult, commands: CommandRunner, skip_checks: bool, force: bool) -> bool:
    """Run the pre-update checks; False (with ``result.error`` set) blocks the update."""
    if skip_checks:
        logger.info("Skipping system health checks")
        return True

    report = health_check(commands)
    result.warnings.extend(report.warnings)
    if report.healthy:
        logger.info("System health checks passed")
        return True
    if force:
        logger.warning("Continuing despite failed health checks (--force)")
        return True

    result.error = "System health checks failed: " + "; ".join(report.warnings)
    return False


def rollback_system(
    config: MaintenanceConfig,
    profile: NixProfile,
    dry_run: bool = False,
    runner: LockedTaskRunner | None = None,
    audit: AuditWriter | None = None,
) -> UpdateResult:
    """Switch the profile back to the generation before the current one.

    Returns:
        UpdateResult with ``rollback_from``/``rollback_to`` set.
        Errors are reported in ``error``, never raised.
    """
    result = UpdateResult(
        operation_id=generate_operation_id(), mode=UpdateMode.ROLLBACK, dry_run=dry_run
    )
    runner = runner or LockedTaskRunner(config.effective_lock_dir)
    audit = audit or AuditWriter(config.audit_path)

    try:
        with runner.session(UPDATE_LOCK) as handle:
            generations = profile.list_generations()
            current = validate_generations(generations)
            previous = [g for g in generations if g.id < current.id]
            result.rollback_from = current.id

            if not previous:
                result.error = "No previous generation found for rollback"
            else:
                target = previous[-1]
                result.rollback_to = target.id
                logger.info("Rolling back from generation %d to %d", current.id, target.id)

                if dry_run:
                    logger.info("[dry-run] Would roll back to generation %d", target.id)
                else:
                    task = command_task(
                        f"switch-generation-{target.id}",
                        lambda: profile.switch_generation(target.id),
                    )
                    result.report = runner.run([task], halt_on_failure=True, handle=handle)
                    if not result.report.failed:
                        logger.warning("Reboot required to complete rollback")
    except (LockError, ProfileError, RetentionError) as e:
        result.error = str(e)

    if result.error:
        logger.error("%s", result.error)

    _write_audit(audit, result)
    return result


def _write_audit(audit: AuditWriter, result: UpdateResult) -> None:
    entry = AuditEntry(
        operation_id=result.operation_id,
        workflow=UPDATE_LOCK,
        dry_run=result.dry_run,
        status=result.status,
        warnings=list(result.warnings),
        context={"mode": result.mode.value},
    )
    if result.mode is UpdateMode.ROLLBACK:
        entry.context["rollback_from"] = result.rollback_from
        entry.context["rollback_to"] = result.rollback_to
    if result.report:
        entry.tasks_total = result.report.total
        entry.tasks_succeeded = result.report.succeeded
        entry.tasks_failed = result.report.failed
        entry.errors = [r.error for r in result.report.results if r.error]
        entry.warnings.extend(f"{r.name}: {w}" for r in result.report.results for w in r.warnings)
        entry.context["halted"] = result.report.halted
    if result.error:
        entry.errors.append(result.error)
    audit.write(entry)
