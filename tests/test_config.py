"""
Tests for configuration loading — nixmaint.yml parsing and validation.
"""

import textwrap
from pathlib import Path

import pytest

from nixmaint.core.config import loader
from nixmaint.core.config.loader import ConfigError, MaintenanceConfig, find_config_file, load_config


@pytest.fixture(autouse=True)
def _isolate_lookup(monkeypatch, tmp_path: Path):
    """Keep the host's /etc/nixmaint.yml and env out of the lookup."""
    monkeypatch.delenv(loader.CONFIG_ENV_VAR, raising=False)
    monkeypatch.setattr(loader, "SYSTEM_CONFIG_FILE", tmp_path / "etc-nixmaint.yml")


@pytest.fixture
def valid_config_yml(tmp_path: Path) -> Path:
    content = textwrap.dedent("""\
        profile: /nix/var/nix/profiles/per-user/alice/profile
        state_dir: /srv/nixmaint
        command_timeout: 600

        retention:
          keep_days: 14
          min_generations: 5

        garbage_collect: false

        tasks:
          health:
            - [uptime]
          backup:
            - [restic, backup, /home]
            - [restic, forget, --keep-daily, "7"]
    """)
    path = tmp_path / "nixmaint.yml"
    path.write_text(content)
    return path


class TestLoadConfig:
    def test_valid_file(self, valid_config_yml: Path):
        config = load_config(valid_config_yml)
        assert config.profile == "/nix/var/nix/profiles/per-user/alice/profile"
        assert config.state_dir == Path("/srv/nixmaint")
        assert config.command_timeout == 600
        assert config.retention.keep_days == 14
        assert config.retention.min_generations == 5
        assert config.garbage_collect is False
        assert config.tasks["backup"][1] == ["restic", "forget", "--keep-daily", "7"]

    def test_defaults_without_file(self):
        config = load_config()
        assert config == MaintenanceConfig()
        assert config.retention.keep_days == 7
        assert config.retention.min_generations == 3
        assert config.profile == "/nix/var/nix/profiles/system"
        assert config.critical_services == ["sshd", "systemd-logind", "NetworkManager"]
        assert config.tmp_dirs == ["/tmp", "/var/tmp"]

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        path = tmp_path / "nixmaint.yml"
        path.write_text("")
        assert load_config(path) == MaintenanceConfig()

    def test_partial_file(self, tmp_path: Path):
        path = tmp_path / "nixmaint.yml"
        path.write_text("retention:\n  keep_days: 30\n")
        config = load_config(path)
        assert config.retention.keep_days == 30
        assert config.retention.min_generations == 3

    def test_maintenance_settings(self, tmp_path: Path):
        path = tmp_path / "nixmaint.yml"
        path.write_text("critical_services: [sshd, postgresql]\ntmp_dirs: [/tmp]\ntmp_max_age_days: 3\n")
        config = load_config(path)
        assert config.critical_services == ["sshd", "postgresql"]
        assert config.tmp_dirs == ["/tmp"]
        assert config.tmp_max_age_days == 3

    def test_explicit_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.yml")

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "nixmaint.yml"
        path.write_text("retention: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / "nixmaint.yml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_schema_error(self, tmp_path: Path):
        path = tmp_path / "nixmaint.yml"
        path.write_text("retention:\n  keep_days: forever\n")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path)


class TestFindConfigFile:
    def test_explicit_wins(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv(loader.CONFIG_ENV_VAR, str(tmp_path / "env.yml"))
        assert find_config_file(tmp_path / "cli.yml") == tmp_path / "cli.yml"

    def test_env_var(self, monkeypatch, valid_config_yml: Path):
        monkeypatch.setenv(loader.CONFIG_ENV_VAR, str(valid_config_yml))
        assert find_config_file() == valid_config_yml
        assert load_config().retention.keep_days == 14

    def test_system_file(self, tmp_path: Path):
        system_file = loader.SYSTEM_CONFIG_FILE
        system_file.write_text("garbage_collect: false\n")
        assert find_config_file() == system_file
        assert load_config().garbage_collect is False

    def test_nothing_found(self):
        assert find_config_file() is None


class TestMaintenanceConfig:
    def test_paths_follow_state_dir(self):
        config = MaintenanceConfig(state_dir=Path("/tmp/nm"))
        assert config.effective_lock_dir == Path("/tmp/nm/locks")
        assert config.audit_path == Path("/tmp/nm/audit.ndjson")

    def test_explicit_lock_dir(self):
        config = MaintenanceConfig(lock_dir=Path("/run/nixmaint"))
        assert config.effective_lock_dir == Path("/run/nixmaint")

    def test_retention_overrides(self):
        config = MaintenanceConfig()
        overridden = config.with_retention(keep_days=30)
        assert overridden.retention.keep_days == 30
        assert overridden.retention.min_generations == 3
        assert config.retention.keep_days == 7

    def test_no_overrides_returns_same(self):
        config = MaintenanceConfig()
        assert config.with_retention() is config

    def test_to_policy(self):
        policy = MaintenanceConfig().with_retention(14, 5).retention.to_policy()
        assert policy.min_age_days == 14
        assert policy.min_keep_count == 5
