"""
nixmaint — CLI entrypoint.

Usage:
    nixmaint --help
    nixmaint generations
    nixmaint clean --dry-run
    nixmaint maintain --tasks update,cleanup
    nixmaint update --build-only
"""

from __future__ import annotations

import json
import os
import signal
import sys
from pathlib import Path
from typing import NoReturn

import click

from nixmaint import __version__
from nixmaint.adapters.nix.profile import NixProfile, ProfileError
from nixmaint.adapters.shell.command import CommandRunner
from nixmaint.core.config.loader import ConfigError, MaintenanceConfig, load_config
from nixmaint.core.engine.retention import RetentionError, RetentionPlan, plan_retention
from nixmaint.core.models.generation import Generation
from nixmaint.core.observability.logging_config import setup_logging

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red", "cancelled": "yellow"}


def _terminate(signum, frame) -> None:
    # Unwind through finally blocks so held locks are released
    raise SystemExit(128 + signum)


@click.group()
@click.version_option(version=__version__, prog_name="nixmaint")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to nixmaint.yml (default: $NIXMAINT_CONFIG or /etc/nixmaint.yml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """nixmaint — generation cleanup and system maintenance for NixOS."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("NIXMAINT_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("NIXMAINT_LOG_FILE"),
        log_file_level=os.environ.get("NIXMAINT_LOG_FILE_LEVEL"),
    )

    signal.signal(signal.SIGTERM, _terminate)


# ── Helpers ─────────────────────────────────────────────────────────


def _load_config_or_exit(ctx: click.Context, as_json: bool = False) -> MaintenanceConfig:
    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        _fail(str(e), as_json)


def _fail(message: str, as_json: bool) -> NoReturn:
    if as_json:
        click.echo(json.dumps({"error": message}, indent=2))
    else:
        click.secho(f"❌ {message}", fg="red")
    sys.exit(1)


def _commands(ctx: click.Context, config: MaintenanceConfig, dry_run: bool = False) -> CommandRunner:
    """Command runner for this invocation (tests inject one via ``obj``)."""
    injected = ctx.obj.get("commands")
    if injected is not None:
        return injected
    return CommandRunner(timeout=config.command_timeout, dry_run=dry_run)


def _echo_plan(plan: RetentionPlan, generations: list[Generation]) -> None:
    created = {g.id: g.created_at for g in generations}
    for decision in plan.decisions:
        when = created[decision.generation_id].strftime("%Y-%m-%d %H:%M:%S")
        label = f"   {decision.generation_id:>5}  {when}  "
        if decision.keep:
            click.secho(f"{label}keep  ", fg="green", nl=False)
        else:
            click.secho(f"{label}delete", fg="red", nl=False)
        click.echo(f"  ({decision.reason.value.replace('_', ' ')})")


# ── Commands ────────────────────────────────────────────────────────


@cli.command()
@click.option("--keep-days", "-k", type=int, default=None, help="Keep generations from the last N days.")
@click.option("--min-gen", "-m", "min_gen", type=int, default=None, help="Minimum generations to keep.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def generations(ctx: click.Context, keep_days: int | None, min_gen: int | None, as_json: bool) -> None:
    """List profile generations with their retention decision."""
    config = _load_config_or_exit(ctx, as_json).with_retention(keep_days, min_gen)
    profile = NixProfile(_commands(ctx, config), config.profile)

    try:
        listing = profile.list_generations()
        plan = plan_retention(listing, config.retention.to_policy())
    except (ProfileError, RetentionError) as e:
        _fail(str(e), as_json)
        return

    if as_json:
        click.echo(json.dumps({"profile": profile.path, "plan": plan.to_dict()}, indent=2))
        return

    click.secho(f"\n📦 {profile.path}", fg="cyan", bold=True)
    click.echo(
        f"   Policy: keep {plan.policy.min_age_days} days, "
        f"at least {plan.policy.min_keep_count} generations"
    )
    click.echo()
    _echo_plan(plan, listing)
    click.echo()
    click.echo(f"   {len(plan.kept)} kept, {len(plan.deleted)} expired")
    click.echo()


@cli.command()
@click.option("--keep-days", "-k", type=int, default=None, help="Keep generations from the last N days.")
@click.option("--min-gen", "-m", "min_gen", type=int, default=None, help="Minimum generations to keep.")
@click.option("--dry-run", "-d", is_flag=True, help="Show what would be deleted without deleting.")
@click.option("--yes", "--auto", "-y", "assume_yes", is_flag=True, help="Don't ask for confirmation.")
@click.option("--gc/--no-gc", "collect_garbage", default=None, help="Run nix-collect-garbage afterwards.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def clean(
    ctx: click.Context,
    keep_days: int | None,
    min_gen: int | None,
    dry_run: bool,
    assume_yes: bool,
    collect_garbage: bool | None,
    as_json: bool,
) -> None:
    """Delete expired generations of the system profile.

    Examples:

        nixmaint clean --dry-run

        nixmaint clean --keep-days 14 --min-gen 5 --yes
    """
    from nixmaint.core.use_cases.clean import clean_generations

    config = _load_config_or_exit(ctx, as_json).with_retention(keep_days, min_gen)
    profile = NixProfile(_commands(ctx, config), config.profile)

    def confirm(plan: RetentionPlan, listing: list[Generation]) -> bool:
        click.secho("\nGenerations to be removed:", bold=True)
        _echo_plan(plan, listing)
        click.echo()
        return click.confirm("Do you want to proceed with removing these generations?", default=False)

    interactive = not (assume_yes or dry_run)
    if interactive and as_json:
        _fail("--json needs --yes or --dry-run (no interactive confirmation)", as_json)

    result = clean_generations(
        config,
        profile,
        dry_run=dry_run,
        confirm=confirm if interactive else None,
        collect_garbage=collect_garbage,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error or (result.report and result.report.failed):
            sys.exit(1)
        return

    if result.error:
        _fail(result.error, as_json)
        return

    assert result.plan is not None
    mode_label = "[dry-run] " if dry_run else ""
    click.secho(f"\n🧹 {mode_label}clean — {result.profile}", fg="cyan", bold=True)

    if dry_run or not interactive:
        _echo_plan(result.plan, result.generations)

    if result.cancelled:
        click.secho("\n   Operation cancelled.", fg="yellow")
        click.echo()
        return

    if result.report:
        click.echo()
        for task in result.report.results:
            if task.ok:
                click.secho(f"   ✓ {task.name}", fg="green")
            else:
                click.secho(f"   ✗ {task.name}", fg="red")
                for line in (task.error or "").split("\n")[:5]:
                    click.echo(f"     │ {line}")

    click.echo()
    if dry_run:
        click.secho(f"   Would remove {len(result.plan.deleted)} generation(s)", bold=True)
    else:
        click.secho(
            f"   Removed {len(result.deleted_ids)} generation(s)",
            fg=_STATUS_COLORS.get(result.status, "white"),
            bold=True,
        )

    if result.report and result.report.failed:
        click.echo()
        sys.exit(1)
    click.echo()


@cli.command()
@click.option("--tasks", "-t", "task_list", default=None, help="Comma-separated tasks to run.")
@click.option(
    "--halt-on-failure/--continue-on-failure",
    default=False,
    help="Stop at the first failed task (default: continue).",
)
@click.option("--dry-run", "-d", is_flag=True, help="Log commands without running them.")
@click.option("--list", "list_tasks", is_flag=True, help="List available tasks and exit.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def maintain(
    ctx: click.Context,
    task_list: str | None,
    halt_on_failure: bool,
    dry_run: bool,
    list_tasks: bool,
    as_json: bool,
) -> None:
    """Run system maintenance tasks (one instance at a time).

    Examples:

        nixmaint maintain

        nixmaint maintain --tasks update,cleanup --halt-on-failure
    """
    from nixmaint.core.use_cases.maintain import available_tasks, parse_task_list, run_maintenance

    config = _load_config_or_exit(ctx, as_json)

    if list_tasks:
        names = available_tasks(config)
        if as_json:
            click.echo(json.dumps({"tasks": names}, indent=2))
        else:
            for name in names:
                click.echo(name)
        return

    try:
        names = parse_task_list(task_list, config)
    except ConfigError as e:
        _fail(str(e), as_json)
        return

    result = run_maintenance(
        config,
        task_names=names,
        halt_on_failure=halt_on_failure,
        dry_run=dry_run,
        commands=_commands(ctx, config, dry_run=dry_run),
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error or (result.report and result.report.failed):
            sys.exit(1)
        return

    if result.error:
        _fail(result.error, as_json)
        return

    report = result.report
    assert report is not None

    mode_label = "[dry-run] " if dry_run else ""
    click.secho(f"\n🔧 {mode_label}maintenance — {', '.join(names)}", fg="cyan", bold=True)
    click.echo()
    for task in report.results:
        timing = f" ({task.duration_ms}ms)" if task.duration_ms else ""
        if task.ok:
            click.secho(f"   ✓ {task.name}", fg="green", nl=False)
            click.echo(timing)
            if ctx.obj.get("verbose") and task.output:
                for line in task.output.split("\n")[:10]:
                    click.echo(f"     │ {line}")
        else:
            click.secho(f"   ✗ {task.name}", fg="red", nl=False)
            click.echo(timing)
            for line in (task.error or "").split("\n")[:5]:
                click.echo(f"     │ {line}")
        for warning in task.warnings:
            click.secho(f"     ⚠ {warning}", fg="yellow")

    for name in names[report.total:]:
        click.secho(f"   ⊘ {name} ", fg="yellow", nl=False)
        click.echo("(not attempted)")

    click.echo()
    click.secho(
        f"   Result: {report.succeeded}/{report.planned} succeeded",
        fg=_STATUS_COLORS.get(report.status, "white"),
        bold=True,
    )
    warning_count = sum(len(task.warnings) for task in report.results)
    if warning_count:
        click.secho(f"   {warning_count} warning(s)", fg="yellow")

    if report.failed:
        click.echo()
        sys.exit(1)
    click.echo()


@cli.command()
@click.option("--channels-only", "-c", is_flag=True, help="Update Nix channels only.")
@click.option("--build-only", "-b", is_flag=True, help="Build the system configuration only.")
@click.option("--dry-run", "-d", is_flag=True, help="Log commands without running them.")
@click.option("--skip-checks", "-s", is_flag=True, help="Skip pre-update health checks.")
@click.option("--force", "-f", is_flag=True, help="Update even if health checks report problems.")
@click.option("--rollback", "-r", is_flag=True, help="Roll back to the previous generation.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def update(
    ctx: click.Context,
    channels_only: bool,
    build_only: bool,
    dry_run: bool,
    skip_checks: bool,
    force: bool,
    rollback: bool,
    as_json: bool,
) -> None:
    """Update, rebuild and activate the system (one instance at a time).

    Examples:

        nixmaint update --dry-run

        nixmaint update --channels-only

        nixmaint update --rollback
    """
    from nixmaint.core.use_cases.update import UpdateMode, rollback_system, update_system

    if sum((channels_only, build_only, rollback)) > 1:
        _fail("--channels-only, --build-only and --rollback are mutually exclusive", as_json)

    config = _load_config_or_exit(ctx, as_json)
    commands = _commands(ctx, config, dry_run=dry_run)

    if rollback:
        result = rollback_system(config, NixProfile(commands, config.profile), dry_run=dry_run)
    else:
        if channels_only:
            mode = UpdateMode.CHANNELS
        elif build_only:
            mode = UpdateMode.BUILD
        else:
            mode = UpdateMode.FULL
        result = update_system(
            config,
            mode=mode,
            dry_run=dry_run,
            skip_checks=skip_checks,
            force=force,
            commands=commands,
        )

    failed = bool(result.error or (result.report and result.report.failed))
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if failed:
            sys.exit(1)
        return

    for warning in result.warnings:
        click.secho(f"⚠ {warning}", fg="yellow")
    if result.error:
        _fail(result.error, as_json)
        return

    mode_label = "[dry-run] " if dry_run else ""
    click.secho(f"\n🔄 {mode_label}update — {result.mode.value}", fg="cyan", bold=True)
    click.echo()

    if result.mode is UpdateMode.ROLLBACK:
        verb = "Would roll back" if dry_run else "Rolling back"
        click.echo(f"   {verb} from generation {result.rollback_from} to {result.rollback_to}")

    report = result.report
    if report:
        for task in report.results:
            if task.ok:
                click.secho(f"   ✓ {task.name}", fg="green")
            else:
                click.secho(f"   ✗ {task.name}", fg="red")
                for line in (task.error or "").split("\n")[:5]:
                    click.echo(f"     │ {line}")
            for warning in task.warnings:
                click.secho(f"     ⚠ {warning}", fg="yellow")
        if report.not_attempted:
            click.secho(f"   ⊘ {report.not_attempted} step(s) not attempted", fg="yellow")

    click.echo()
    if failed:
        click.secho("   Update failed", fg="red", bold=True)
        click.echo()
        sys.exit(1)
    if result.mode is UpdateMode.ROLLBACK and not dry_run:
        click.secho("   Reboot required to complete rollback", fg="yellow", bold=True)
    else:
        click.secho("   Update completed", fg="green", bold=True)
    click.echo()


@cli.command()
@click.option("-n", "count", type=int, default=20, help="Number of entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent cleanup and maintenance runs."""
    from nixmaint.core.persistence.audit import AuditWriter

    config = _load_config_or_exit(ctx, as_json)
    entries = AuditWriter(config.audit_path).read_recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No runs recorded yet.")
        return

    click.echo()
    for entry in entries:
        color = _STATUS_COLORS.get(entry.status, "white")
        dry = " [dry-run]" if entry.dry_run else ""
        click.echo(f"   {entry.timestamp[:19]}  {entry.workflow}{dry}  ", nl=False)
        click.secho(entry.status, fg=color, nl=False)
        click.echo(f"  ({entry.tasks_succeeded}/{entry.tasks_total} tasks)")
        if entry.generations_deleted:
            ids = ", ".join(str(i) for i in entry.generations_deleted)
            click.echo(f"      deleted generations: {ids}")
    click.echo()


if __name__ == "__main__":
    cli()
