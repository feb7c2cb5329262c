"""
Shared test fixtures and configuration.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from nixmaint.adapters.mock import MockCommandRunner
from nixmaint.core.config.loader import MaintenanceConfig
from nixmaint.core.models.generation import Generation

PROFILE = "/nix/var/nix/profiles/system"
LIST_COMMAND = ("nix-env", "--list-generations")

# (id, age in days, is_current)
GenSpec = tuple[int, float, bool]


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for retention tests."""
    return datetime(2026, 3, 15, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def make_generations(now: datetime) -> Callable[[list[GenSpec]], list[Generation]]:
    """Build generations from (id, age_days, is_current) tuples."""

    def build(specs: list[GenSpec], at: datetime | None = None) -> list[Generation]:
        ref = at or now
        return [
            Generation(id=gid, created_at=ref - timedelta(days=age), is_current=current)
            for gid, age, current in specs
        ]

    return build


@pytest.fixture
def render_listing() -> Callable[[list[Generation]], str]:
    """Render generations the way ``nix-env --list-generations`` prints them."""

    def render(generations: list[Generation]) -> str:
        lines = []
        for g in generations:
            stamp = g.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
            suffix = "   (current)" if g.is_current else ""
            lines.append(f"{g.id:>5}   {stamp}{suffix}")
        return "\n".join(lines) + "\n"

    return render


@pytest.fixture
def config(tmp_path: Path) -> MaintenanceConfig:
    """Config with state (locks, ledger) under a temp directory."""
    return MaintenanceConfig(state_dir=tmp_path / "state", profile=PROFILE)


@pytest.fixture
def commands() -> MockCommandRunner:
    return MockCommandRunner()


@pytest.fixture
def tmp_lock_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for lock markers."""
    lock_dir = tmp_path / "locks"
    lock_dir.mkdir()
    return lock_dir
