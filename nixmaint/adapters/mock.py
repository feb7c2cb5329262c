"""
Mock command runner — test double for every external tool call.

Used by tests to simulate nix-env and friends without touching the
system. Succeeds by default; responses can be configured per command
prefix.
"""

from __future__ import annotations

from collections.abc import Sequence

from nixmaint.adapters.shell.command import CommandResult, CommandRunner


class MockCommandRunner(CommandRunner):
    """Universal mock runner.

    Responses are matched on the longest configured argv prefix, so
    ``("nix-env", "--delete-generations", "12")`` can fail while every
    other ``nix-env`` call succeeds.
    """

    def __init__(self, dry_run: bool = False, default_output: str = ""):
        super().__init__(dry_run=dry_run)
        self._default_output = default_output
        self._responses: dict[tuple[str, ...], CommandResult] = {}
        self._call_log: list[list[str]] = []
        self._unavailable: set[str] = set()

    @property
    def call_log(self) -> list[list[str]]:
        """Every argv this mock actually executed."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def is_available(self, executable: str) -> bool:
        return executable not in self._unavailable

    def set_unavailable(self, *executables: str) -> None:
        """Report ``executables`` as missing from PATH."""
        self._unavailable.update(executables)

    def set_output(self, prefix: Sequence[str], stdout: str) -> None:
        """Succeed with ``stdout`` for commands starting with ``prefix``."""
        self._responses[tuple(prefix)] = CommandResult(return_code=0, stdout=stdout)

    def set_failure(self, prefix: Sequence[str], error: str = "Mock failure", return_code: int = 1) -> None:
        """Fail commands starting with ``prefix``."""
        self._responses[tuple(prefix)] = CommandResult(
            return_code=return_code, stderr=error, error=error
        )

    def run(
        self,
        argv: Sequence[str],
        timeout: int | None = None,
        read_only: bool = False,
    ) -> CommandResult:
        argv = list(argv)
        if self.dry_run and not read_only:
            return CommandResult(argv=argv, return_code=0, dry_run=True)

        self._call_log.append(argv)
        response = self._match(argv)
        if response is None:
            return CommandResult(argv=argv, return_code=0, stdout=self._default_output)
        return CommandResult(
            argv=argv,
            return_code=response.return_code,
            stdout=response.stdout,
            stderr=response.stderr,
            error=response.error,
        )

    def ran(self, *prefix: str) -> bool:
        """Whether any executed command started with ``prefix``."""
        return any(tuple(argv[: len(prefix)]) == prefix for argv in self._call_log)

    def reset(self) -> None:
        self._call_log.clear()
        self._responses.clear()
        self._unavailable.clear()

    def _match(self, argv: list[str]) -> CommandResult | None:
        best: tuple[str, ...] | None = None
        for prefix in self._responses:
            if tuple(argv[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        return self._responses[best] if best is not None else None
