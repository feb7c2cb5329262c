"""Adapters — bindings to the external tools nixmaint drives.

Public re-exports for convenient access.
"""

from nixmaint.adapters.mock import MockCommandRunner
from nixmaint.adapters.nix.profile import NixProfile, ProfileError, parse_generations
from nixmaint.adapters.shell.command import CommandResult, CommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "MockCommandRunner",
    "NixProfile",
    "ProfileError",
    "parse_generations",
]
