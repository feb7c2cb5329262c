"""
Nix profile adapter — list, delete, switch and collect generations.

Normalizes ``nix-env --list-generations`` output into typed Generation
records so the retention engine never looks at raw text. Typical lines:

       41   2024-05-02 09:14:33
       42   2024-05-09 18:02:10   (current)

Listing timestamps are local time.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from nixmaint.adapters.shell.command import CommandResult, CommandRunner
from nixmaint.core.models.generation import Generation

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "/nix/var/nix/profiles/system"

_GENERATION_LINE = re.compile(
    r"^\s*(?P<id>\d+)\s+(?P<date>\d{4}-\d{2}-\d{2})\s+(?P<time>\d{2}:\d{2}:\d{2})"
    r"(?P<rest>.*)$"
)


class ProfileError(Exception):
    """Raised when the profile cannot be listed."""


def parse_generations(output: str) -> list[Generation]:
    """Parse a generation listing.

    Lines that don't look like generations (headers, blanks, warnings)
    are skipped. Results are sorted by id.
    """
    generations: list[Generation] = []
    for line in output.splitlines():
        match = _GENERATION_LINE.match(line)
        if not match:
            if line.strip():
                logger.debug("Skipping unrecognised listing line: %r", line)
            continue
        local = datetime.fromisoformat(f"{match['date']} {match['time']}")
        generations.append(
            Generation(
                id=int(match["id"]),
                created_at=local.astimezone(),
                is_current="(current)" in match["rest"],
            )
        )
    generations.sort(key=lambda g: g.id)
    return generations


class NixProfile:
    """A nix-env profile (default: the system profile)."""

    def __init__(self, runner: CommandRunner, path: str = DEFAULT_PROFILE):
        self._runner = runner
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def list_generations(self) -> list[Generation]:
        """List generations of the profile.

        Listing is read-only, so it runs even when the runner is in
        dry-run mode.

        Raises:
            ProfileError: nix-env failed.
        """
        argv = ["nix-env", "--list-generations", "--profile", self._path]
        result = self._runner.run(argv, read_only=True)
        if not result.ok:
            raise ProfileError(f"Cannot list generations of {self._path}: {result.error}")

        generations = parse_generations(result.stdout)
        logger.info("Profile %s has %d generations", self._path, len(generations))
        return generations

    def delete_generation(self, generation_id: int) -> CommandResult:
        return self._runner.run(
            ["nix-env", "--delete-generations", str(generation_id), "--profile", self._path]
        )

    def switch_generation(self, generation_id: int) -> CommandResult:
        return self._runner.run(
            ["nix-env", "--switch-generation", str(generation_id), "--profile", self._path]
        )

    def collect_garbage(self) -> CommandResult:
        return self._runner.run(["nix-collect-garbage", "-d"])
