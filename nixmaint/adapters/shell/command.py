"""
Shell command adapter — run external tools and capture their output.

Every call into nix-env, nix-collect-garbage, journalctl and friends
goes through here. The runner never raises: timeouts, missing
executables and non-zero exits all come back as a failed CommandResult.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1800


@dataclass
class CommandResult:
    """Outcome of one external command."""

    argv: list[str] = field(default_factory=list)
    return_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    error: str | None = None
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.return_code == 0

    @property
    def command(self) -> str:
        return shlex.join(self.argv)


class CommandRunner:
    """Execute commands as argv lists (no shell).

    Args:
        timeout: Default timeout in seconds.
        dry_run: Log commands instead of running them; report success.
    """

    def __init__(self, timeout: int = DEFAULT_TIMEOUT, dry_run: bool = False):
        self._timeout = timeout
        self._dry_run = dry_run

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def is_available(self, executable: str) -> bool:
        return shutil.which(executable) is not None

    def run(
        self,
        argv: Sequence[str],
        timeout: int | None = None,
        read_only: bool = False,
    ) -> CommandResult:
        """Run ``argv``. Read-only commands still run in dry-run mode."""
        argv = list(argv)
        timeout = timeout or self._timeout

        if self._dry_run and not read_only:
            logger.info("[dry-run] Would run: %s", shlex.join(argv))
            return CommandResult(argv=argv, return_code=0, dry_run=True)

        logger.debug("Executing: %s", shlex.join(argv))
        start = time.monotonic()

        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                argv=argv,
                error=f"Command timed out after {timeout}s",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except FileNotFoundError:
            return CommandResult(argv=argv, error=f"Command not found: {argv[0]}")
        except Exception as e:
            return CommandResult(argv=argv, error=f"Command execution error: {e}")

        result = CommandResult(
            argv=argv,
            return_code=proc.returncode,
            stdout=proc.stdout.strip(),
            stderr=proc.stderr.strip(),
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        if proc.returncode != 0:
            result.error = result.stderr or f"Command exited with code {proc.returncode}"
        return result
