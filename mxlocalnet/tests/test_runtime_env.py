"""
Unit tests for runtime_env.py settings and profile environments.

Tests cover:
- load_settings parsing of environment variables
- DevEnvironment, TestEnvironment, ProductionEnvironment, CIEnvironment
- Production wallet validation
- Address and masking helpers
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from mxlocalnet.runtime_env import (
    CIEnvironment,
    DevEnvironment,
    LocalnetSettings,
    NetworkProfile,
    ProductionEnvironment,
    TestEnvironment,
    builder_for,
    get_workspace_root,
    is_dry_run,
    is_test_wallet,
    is_valid_address,
    load_settings,
    mask_sensitive_value,
)

ALICE = "erd1qyu5wthldzr8wx5c9ucg8kjagg0jfs53s8nr3zpz3hypefsdd8ssycr6th"


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self):
        """Empty environment gives the documented defaults."""
        settings = load_settings({})
        assert settings.proxy_url == "http://localhost:7950"
        assert settings.shards == 3
        assert settings.monitoring_port == 8080
        assert settings.metrics_interval == 5
        assert settings.dry_run is False
        assert settings.pem is None

    def test_reads_variables(self, tmp_path):
        """Environment variables override defaults."""
        settings = load_settings({
            "MX_WORKSPACE": str(tmp_path),
            "MX_PROXY_URL": "http://127.0.0.1:7950/",
            "LOCALNET_SHARDS": "2",
            "MONITORING_PORT": "9000",
            "DRY_RUN": "yes",
            "MX_PEM": str(tmp_path / "owner.pem"),
        })
        assert settings.workspace == tmp_path
        assert settings.proxy_url == "http://127.0.0.1:7950"
        assert settings.shards == 2
        assert settings.monitoring_port == 9000
        assert settings.dry_run is True
        assert settings.pem == tmp_path / "owner.pem"

    def test_rejects_non_integer_shards(self):
        """LOCALNET_SHARDS must be an integer."""
        with pytest.raises(ValueError, match="LOCALNET_SHARDS must be an integer"):
            load_settings({"LOCALNET_SHARDS": "three"})

    def test_rejects_zero_port(self):
        """MONITORING_PORT must be positive."""
        with pytest.raises(ValueError, match="MONITORING_PORT must be positive"):
            load_settings({"MONITORING_PORT": "0"})

    def test_workspace_directories(self, tmp_path):
        """Derived directories live under the workspace."""
        settings = LocalnetSettings(workspace=tmp_path)
        assert settings.logs_dir == tmp_path / "logs"
        assert settings.backups_dir == tmp_path / "backups"
        assert settings.results_dir == tmp_path / "test-results"
        assert settings.security_dir == tmp_path / "security"


class TestDevEnvironment:
    """Tests for DevEnvironment configuration."""

    def test_fast_rounds(self):
        """Dev profile uses 2 second rounds."""
        env = DevEnvironment(LocalnetSettings()).build()
        assert env["LOCALNET_PROFILE"] == "dev"
        assert env["LOCALNET_ROUND_DURATION"] == "2000"

    def test_shards_from_settings(self):
        """Dev profile keeps the configured shard count."""
        env = DevEnvironment(LocalnetSettings(shards=5)).build()
        assert env["LOCALNET_SHARDS"] == "5"

    def test_extra_vars(self):
        """with_var exports an additional variable."""
        env = DevEnvironment(LocalnetSettings()).with_var("FOO", "bar").build()
        assert env["FOO"] == "bar"

    def test_validation_always_passes(self):
        """Dev environment validation never fails."""
        DevEnvironment(LocalnetSettings()).validate()


class TestTestEnvironment:
    """Tests for TestEnvironment configuration."""

    def test_six_second_rounds(self):
        """Test profile uses 6 second rounds."""
        env = TestEnvironment(LocalnetSettings()).build()
        assert env["LOCALNET_ROUND_DURATION"] == "6000"

    def test_requires_two_shards(self):
        """Test profile refuses a single shard."""
        with pytest.raises(ValueError, match="at least 2 shards"):
            TestEnvironment(LocalnetSettings(shards=1)).build()


class TestProductionEnvironment:
    """Tests for ProductionEnvironment validation."""

    def test_requires_pem(self):
        """Production profile requires MX_PEM."""
        with pytest.raises(ValueError, match="MX_PEM environment variable is required"):
            ProductionEnvironment(LocalnetSettings()).build()

    def test_rejects_test_wallet(self, tmp_path):
        """Published test wallets are refused."""
        pem = tmp_path / "alice.pem"
        pem.write_text("key")
        with pytest.raises(ValueError, match="published test wallet"):
            ProductionEnvironment(LocalnetSettings(pem=pem)).build()

    def test_rejects_missing_file(self, tmp_path):
        """A PEM path that does not exist is refused."""
        with pytest.raises(ValueError, match="missing file"):
            ProductionEnvironment(LocalnetSettings(pem=tmp_path / "owner.pem")).build()

    def test_accepts_dedicated_wallet(self, tmp_path):
        """A dedicated wallet is exported as MX_PEM."""
        pem = tmp_path / "owner.pem"
        pem.write_text("key")
        env = ProductionEnvironment(LocalnetSettings(pem=pem)).build()
        assert env["MX_PEM"] == str(pem)
        assert env["LOCALNET_PROFILE"] == "production"


class TestCIEnvironment:
    """Tests for CIEnvironment configuration."""

    def test_two_shards_one_second_rounds(self):
        """CI profile forces 2 shards and 1 second rounds."""
        with patch.dict(os.environ, {"CI": "true"}):
            env = CIEnvironment(LocalnetSettings(shards=4)).build()
        assert env["LOCALNET_SHARDS"] == "2"
        assert env["LOCALNET_ROUND_DURATION"] == "1000"

    def test_warns_outside_ci(self, capsys):
        """CI profile warns when CI is not set."""
        with patch.dict(os.environ, {}, clear=True):
            CIEnvironment(LocalnetSettings()).build()
        assert "CI not set" in capsys.readouterr().err

    def test_no_warning_in_ci(self, capsys):
        """CI profile is quiet under a CI runner."""
        with patch.dict(os.environ, {"CI": "true"}):
            CIEnvironment(LocalnetSettings()).build()
        assert "CI not set" not in capsys.readouterr().err

    def test_dry_run_exported(self):
        """DRY_RUN is passed through to child processes."""
        with patch.dict(os.environ, {"CI": "1"}):
            env = CIEnvironment(LocalnetSettings(dry_run=True)).build()
        assert env["DRY_RUN"] == "true"


class TestBuilderFor:
    """Tests for builder_for factory."""

    def test_known_profiles(self):
        """Each profile name maps to its builder."""
        settings = LocalnetSettings()
        assert isinstance(builder_for("dev", settings), DevEnvironment)
        assert isinstance(builder_for("TEST", settings), TestEnvironment)
        assert isinstance(builder_for("ci", settings), CIEnvironment)

    def test_unknown_profile(self):
        """Unknown profile names raise ValueError."""
        with pytest.raises(ValueError, match="Unknown profile 'staging'"):
            builder_for("staging", LocalnetSettings())

    def test_profile_values(self):
        """Profile enum values match template keys."""
        assert [p.value for p in NetworkProfile] == ["dev", "test", "production", "ci"]


class TestHelpers:
    """Tests for small helpers."""

    def test_valid_address(self):
        """A bech32 erd1 address is accepted."""
        assert is_valid_address(ALICE) is True

    def test_invalid_addresses(self):
        """Wrong prefix, length or charset is rejected."""
        assert is_valid_address(None) is False
        assert is_valid_address("") is False
        assert is_valid_address("erd1short") is False
        assert is_valid_address(ALICE.replace("erd1", "abc1")) is False
        assert is_valid_address(ALICE[:-1] + "b") is False

    def test_is_test_wallet(self):
        """Wallet names from the test wallet set are detected."""
        assert is_test_wallet(Path("/x/bob.pem")) is True
        assert is_test_wallet(Path("/x/owner.pem")) is False

    def test_is_dry_run(self):
        """Truthy DRY_RUN values are recognised."""
        assert is_dry_run({"DRY_RUN": "1"}) is True
        assert is_dry_run({"DRY_RUN": "On"}) is True
        assert is_dry_run({"DRY_RUN": "0"}) is False
        assert is_dry_run({}) is False

    def test_mask_short_value(self):
        """Values 4 chars or shorter are fully masked."""
        assert mask_sensitive_value("abcd") == "****"

    def test_mask_long_value(self):
        """Longer values show first 2 and last 2."""
        assert mask_sensitive_value("secret123") == "se...23"

    def test_workspace_root(self, tmp_path):
        """MX_WORKSPACE wins over the current directory."""
        assert get_workspace_root({"MX_WORKSPACE": str(tmp_path)}) == tmp_path
        assert get_workspace_root({}) == Path.cwd()
