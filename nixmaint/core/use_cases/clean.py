"""
Clean use case — delete expired generations of a profile.

The full vertical slice of a cleanup run:

    lock → list generations → plan retention → confirm → delete → gc → audit → unlock

The whole plan is computed before anything is deleted, so an invalid
listing or policy never leads to a partial cleanup.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from nixmaint.adapters.nix.profile import NixProfile, ProfileError
from nixmaint.core.config.loader import MaintenanceConfig
from nixmaint.core.engine.retention import RetentionError, RetentionPlan, plan_retention
from nixmaint.core.engine.runner import LockedTaskRunner, TaskRunReport, generate_operation_id
from nixmaint.core.models.generation import Generation
from nixmaint.core.models.task import MaintenanceTask
from nixmaint.core.persistence.audit import AuditEntry, AuditWriter
from nixmaint.core.persistence.lock_file import LockError
from nixmaint.core.services.command_tasks import command_task

logger = logging.getLogger(__name__)

CLEAN_LOCK = "clean-generations"
DELETE_TASK_PREFIX = "delete-generation-"

ConfirmCallback = Callable[[RetentionPlan, list[Generation]], bool]


@dataclass
class CleanResult:
    """Result of a cleanup run."""

    operation_id: str = ""
    profile: str = ""
    dry_run: bool = False
    generations: list[Generation] = field(default_factory=list)
    plan: RetentionPlan | None = None
    report: TaskRunReport | None = None
    cancelled: bool = False
    error: str | None = None

    @property
    def status(self) -> str:
        if self.error:
            return "error"
        if self.cancelled:
            return "cancelled"
        if self.report is None:
            return "ok"
        return self.report.status

    @property
    def deleted_ids(self) -> list[int]:
        """Generations whose deletion task succeeded."""
        if self.report is None:
            return []
        return [
            int(r.name.rsplit("-", 1)[1])
            for r in self.report.results
            if r.ok and r.name.startswith(DELETE_TASK_PREFIX)
        ]

    def to_dict(self) -> dict:
        result: dict = {"operation_id": self.operation_id, "profile": self.profile}
        if self.error:
            result["error"] = self.error
            return result

        result["status"] = self.status
        result["dry_run"] = self.dry_run
        result["cancelled"] = self.cancelled
        if self.plan:
            result["plan"] = self.plan.to_dict()
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def build_cleanup_tasks(
    profile: NixProfile,
    plan: RetentionPlan,
    collect_garbage: bool,
) -> list[MaintenanceTask]:
    """One deletion task per expired generation, oldest first, then gc."""
    tasks = [
        command_task(
            f"{DELETE_TASK_PREFIX}{generation_id}",
            lambda generation_id=generation_id: profile.delete_generation(generation_id),
        )
        for generation_id in sorted(plan.to_delete_ids)
    ]
    if collect_garbage:
        tasks.append(command_task("collect-garbage", profile.collect_garbage))
    return tasks


def clean_generations(
    config: MaintenanceConfig,
    profile: NixProfile,
    runner: LockedTaskRunner | None = None,
    dry_run: bool = False,
    confirm: ConfirmCallback | None = None,
    collect_garbage: bool | None = None,
    now: datetime | None = None,
    audit: AuditWriter | None = None,
) -> CleanResult:
    """Delete the generations the retention policy marks as expired.

    Args:
        config: Loaded configuration (retention policy, paths).
        profile: Profile adapter to list and delete through.
        runner: Locked runner (default: one on the configured lock dir).
        dry_run: Plan only; delete nothing.
        confirm: Called with the plan before deleting; False cancels.
        collect_garbage: Run nix-collect-garbage afterwards
            (default: config.garbage_collect).
        now: Reference time for generation ages (default: current time).
        audit: Ledger writer (default: the configured ledger).

    Returns:
        CleanResult. Errors are reported in ``error``, never raised.
    """
    result = CleanResult(
        operation_id=generate_operation_id(),
        profile=profile.path,
        dry_run=dry_run,
    )
    runner = runner or LockedTaskRunner(config.effective_lock_dir)
    audit = audit or AuditWriter(config.audit_path)
    if collect_garbage is None:
        collect_garbage = config.garbage_collect

    try:
        with runner.session(CLEAN_LOCK) as handle:
            result.generations = profile.list_generations()
            result.plan = plan_retention(
                result.generations, config.retention.to_policy(), now
            )
            _log_plan(result.plan)

            if dry_run:
                logger.info("[dry-run] %d generation(s) would be removed", len(result.plan.deleted))
            elif not result.plan.to_delete_ids and not collect_garbage:
                logger.info("No generations to remove")
            elif confirm is not None and result.plan.to_delete_ids and not confirm(
                result.plan, result.generations
            ):
                logger.info("Operation cancelled by user")
                result.cancelled = True
            else:
                tasks = build_cleanup_tasks(profile, result.plan, collect_garbage)
                result.report = runner.run(tasks, halt_on_failure=False, handle=handle)
                logger.info(
                    "Cleanup completed. Removed %d generation(s)", len(result.deleted_ids)
                )
    except (LockError, ProfileError, RetentionError) as e:
        logger.error("%s", e)
        result.error = str(e)

    _write_audit(audit, result)
    return result


def _log_plan(plan: RetentionPlan) -> None:
    for decision in plan.decisions:
        logger.debug(
            "Generation %d: %s (%s)",
            decision.generation_id,
            decision.action.value,
            decision.reason.value,
        )
    if plan.to_delete_ids:
        logger.info(
            "Generations to be removed: %s",
            ", ".join(str(i) for i in sorted(plan.to_delete_ids)),
        )


def _write_audit(audit: AuditWriter, result: CleanResult) -> None:
    entry = AuditEntry(
        operation_id=result.operation_id,
        workflow=CLEAN_LOCK,
        dry_run=result.dry_run,
        status=result.status,
        context={"profile": result.profile},
    )
    if result.plan:
        entry.generations_kept = [d.generation_id for d in result.plan.kept]
        entry.generations_deleted = result.deleted_ids
        entry.context["policy"] = result.plan.policy.model_dump()
    if result.report:
        entry.tasks_total = result.report.total
        entry.tasks_succeeded = result.report.succeeded
        entry.tasks_failed = result.report.failed
        entry.errors = [r.error for r in result.report.results if r.error]
    if result.error:
        entry.errors.append(result.error)
    audit.write(entry)
