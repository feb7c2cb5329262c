"""
Configuration loader — reads nixmaint.yml into a MaintenanceConfig.

Reads YAML, validates against Pydantic schemas, and returns typed
settings. The file is optional: without one every setting keeps its
default, which mirrors the defaults of the old maintenance scripts.

Lookup order:
    --config PATH  >  NIXMAINT_CONFIG env var  >  /etc/nixmaint.yml  >  defaults
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from nixmaint.core.models.generation import RetentionPolicy

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NIXMAINT_CONFIG"
SYSTEM_CONFIG_FILE = Path("/etc/nixmaint.yml")


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""


class RetentionSettings(BaseModel):
    """Retention section of nixmaint.yml."""

    keep_days: int = 7
    min_generations: int = 3

    def to_policy(self) -> RetentionPolicy:
        return RetentionPolicy(
            min_age_days=self.keep_days,
            min_keep_count=self.min_generations,
        )


class MaintenanceConfig(BaseModel):
    """Root configuration model."""

    profile: str = "/nix/var/nix/profiles/system"
    state_dir: Path = Path("/var/lib/nixmaint")
    lock_dir: Path | None = None
    command_timeout: int = 1800

    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    garbage_collect: bool = True

    critical_services: list[str] = Field(
        default_factory=lambda: ["sshd", "systemd-logind", "NetworkManager"]
    )
    # Files not accessed for tmp_max_age_days are removed by the cleanup task
    tmp_dirs: list[str] = Field(default_factory=lambda: ["/tmp", "/var/tmp"])
    tmp_max_age_days: int = 7

    # Task name → commands; entries here replace the built-in definitions
    tasks: dict[str, list[list[str]]] = Field(default_factory=dict)

    @property
    def effective_lock_dir(self) -> Path:
        return self.lock_dir or self.state_dir / "locks"

    @property
    def audit_path(self) -> Path:
        return self.state_dir / "audit.ndjson"

    def with_retention(
        self,
        keep_days: int | None = None,
        min_generations: int | None = None,
    ) -> MaintenanceConfig:
        """Copy with CLI retention overrides applied."""
        updates = {}
        if keep_days is not None:
            updates["keep_days"] = keep_days
        if min_generations is not None:
            updates["min_generations"] = min_generations
        if not updates:
            return self
        return self.model_copy(
            update={"retention": self.retention.model_copy(update=updates)}
        )


def find_config_file(explicit: Path | None = None) -> Path | None:
    """Resolve which config file to read, if any.

    An explicit path is returned as-is (even if missing, so the caller
    can report it). Otherwise the env var, then the system file.
    """
    if explicit is not None:
        return explicit

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    if SYSTEM_CONFIG_FILE.is_file():
        return SYSTEM_CONFIG_FILE

    return None


def load_config(path: Path | None = None) -> MaintenanceConfig:
    """Load and validate configuration.

    Args:
        path: Explicit path to nixmaint.yml. If None, searches the defaults.

    Returns:
        Validated MaintenanceConfig.

    Raises:
        ConfigError: If an explicitly named file is missing or any file is invalid.
    """
    path = find_config_file(path)
    if path is None:
        logger.debug("No config file found, using defaults")
        return MaintenanceConfig()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return MaintenanceConfig()

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = MaintenanceConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info(
        "Loaded config from %s (keep_days=%d, min_generations=%d)",
        path,
        config.retention.keep_days,
        config.retention.min_generations,
    )
    return config
