"""
System checks — read-only health, security, disk and service reports.

Check tasks never fail on what they find: a full disk or a stopped
service becomes a warning on the TaskResult, and the run carries on.
Every command here is read-only, so checks also run in dry-run mode.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from nixmaint.adapters.shell.command import CommandRunner
from nixmaint.core.models.task import TaskResult

logger = logging.getLogger(__name__)

DISK_WARN_PERCENT = 90
DISK_HIGH_PERCENT = 85
MEMORY_WARN_PERCENT = 90.0
FAILED_LOGIN_THRESHOLD = 10

NIX_STORE = "/nix/store"
_SUSPICIOUS_PROCESS = re.compile(r"cryptominer|miner|coin", re.IGNORECASE)
_MAX_OUTPUT_CHARS = 4000


@dataclass
class CheckReport:
    """Findings of one check task, in the order they were made."""

    name: str
    lines: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def info(self, message: str, *args) -> None:
        text = message % args if args else message
        logger.info(text)
        self.lines.append(text)

    def warn(self, message: str, *args) -> None:
        text = message % args if args else message
        logger.warning(text)
        self.lines.append(f"WARN: {text}")
        self.warnings.append(text)

    @property
    def healthy(self) -> bool:
        return not self.warnings

    def to_result(self) -> TaskResult:
        output = "\n".join(self.lines)[-_MAX_OUTPUT_CHARS:]
        return TaskResult.success(self.name, output=output, warnings=list(self.warnings))


# ── Readings ────────────────────────────────────────────────────────


def missing_tools(runner: CommandRunner, tools: Sequence[str]) -> list[str]:
    """Names in ``tools`` that are not on PATH."""
    return [tool for tool in tools if not runner.is_available(tool)]


def disk_usage_percent(runner: CommandRunner, mount: str = "/") -> int | None:
    """Used space of the filesystem holding ``mount``, or None if unknown."""
    result = runner.run(["df", "--output=pcent", mount], read_only=True)
    if not result.ok:
        return None
    for line in reversed(result.stdout.splitlines()):
        value = line.strip().rstrip("%")
        if value.isdigit():
            return int(value)
    return None


def memory_usage_percent(runner: CommandRunner) -> float | None:
    """Used share of RAM from ``free -b``, or None if unknown."""
    result = runner.run(["free", "-b"], read_only=True)
    if not result.ok:
        return None
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 3 and parts[0] == "Mem:":
            try:
                total, used = int(parts[1]), int(parts[2])
            except ValueError:
                return None
            return used * 100 / total if total else None
    return None


def failed_units(runner: CommandRunner) -> list[str]:
    """Units systemd reports as failed."""
    result = runner.run(["systemctl", "--failed", "--no-legend", "--plain"], read_only=True)
    if not result.ok:
        logger.debug("Cannot list failed units: %s", result.error)
        return []
    return [line.split()[0] for line in result.stdout.splitlines() if line.strip()]


def service_active(runner: CommandRunner, service: str) -> bool:
    return runner.run(["systemctl", "is-active", "--quiet", service], read_only=True).ok


def failed_login_count(runner: CommandRunner, unit: str = "sshd", since: str = "1 hour ago") -> int:
    result = runner.run(["journalctl", "-u", unit, "--since", since, "--no-pager"], read_only=True)
    return sum(1 for line in result.stdout.splitlines() if "Failed password" in line)


def suspicious_processes(runner: CommandRunner) -> list[str]:
    result = runner.run(["ps", "-eo", "comm="], read_only=True)
    return [name.strip() for name in result.stdout.splitlines() if _SUSPICIOUS_PROCESS.search(name)]


# ── Check tasks ─────────────────────────────────────────────────────


def _check_disk(report: CheckReport, runner: CommandRunner, threshold: int) -> int | None:
    usage = disk_usage_percent(runner)
    if usage is None:
        report.info("Disk usage unavailable")
    elif usage > threshold:
        report.warn("Disk usage is high: %d%%", usage)
    else:
        report.info("Disk usage is acceptable: %d%%", usage)
    return usage


def _check_failed_units(report: CheckReport, runner: CommandRunner) -> None:
    failed = failed_units(runner)
    if not failed:
        report.info("No failed services found")
        return
    report.warn("Found %d failed service(s): %s", len(failed), ", ".join(failed))


def health_check(runner: CommandRunner) -> CheckReport:
    """Disk, memory and failed units."""
    report = CheckReport("health")
    _check_disk(report, runner, DISK_WARN_PERCENT)

    memory = memory_usage_percent(runner)
    if memory is None:
        report.info("Memory usage unavailable")
    elif memory > MEMORY_WARN_PERCENT:
        report.warn("Memory usage is high: %.1f%%", memory)
    else:
        report.info("Memory usage: %.1f%%", memory)

    _check_failed_units(report, runner)
    return report


def security_check(runner: CommandRunner) -> CheckReport:
    """Failed ssh logins, suspicious processes and the firewall."""
    report = CheckReport("security")

    logins = failed_login_count(runner)
    if logins > FAILED_LOGIN_THRESHOLD:
        report.warn("High number of failed login attempts: %d", logins)
    else:
        report.info("Failed login attempts in the last hour: %d", logins)

    suspicious = suspicious_processes(runner)
    if suspicious:
        report.warn("Found %d potentially suspicious process(es): %s", len(suspicious), ", ".join(suspicious))

    if service_active(runner, "nftables"):
        report.info("Firewall is active")
    else:
        report.warn("Firewall is not active")
    return report


def disk_check(runner: CommandRunner, top: int = 10) -> CheckReport:
    """Largest top-level directories and the size of the Nix store."""
    report = CheckReport("disk")

    # du exits non-zero on unreadable entries but still prints the rest
    listing = runner.run(["du", "-x", "-k", "--max-depth=1", "/"], read_only=True)
    sizes = []
    for line in listing.stdout.splitlines():
        size, _, path = line.partition("\t")
        if size.isdigit() and path:
            sizes.append((int(size), path))
    if sizes:
        report.info("Disk usage by directory:")
        for size, path in sorted(sizes, reverse=True)[:top]:
            report.info("  %s  %s", _human_size(size * 1024), path)

    store = runner.run(["du", "-sh", NIX_STORE], read_only=True)
    if store.ok and store.stdout:
        report.info("Nix store usage: %s", store.stdout.split()[0])
    else:
        report.warn("Could not check Nix store usage")

    usage = disk_usage_percent(runner)
    if usage is not None and usage > DISK_HIGH_PERCENT:
        report.warn("Disk usage is high: %d%%; run 'nixmaint clean' to remove old generations", usage)
    return report


def services_check(runner: CommandRunner, critical_services: Sequence[str]) -> CheckReport:
    """Critical services, failed units and the slowest starters."""
    report = CheckReport("services")
    for service in critical_services:
        if service_active(runner, service):
            report.info("Service %s is running", service)
        else:
            report.warn("Service %s is not running", service)

    _check_failed_units(report, runner)

    blame = runner.run(["systemd-analyze", "blame", "--no-pager"], read_only=True)
    slowest = [line.strip() for line in blame.stdout.splitlines() if line.strip()][:5]
    if slowest:
        report.info("Slowest starting services:")
        for line in slowest:
            report.info("  %s", line)
    return report


def _human_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}T"
