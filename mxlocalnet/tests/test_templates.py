"""
Unit tests for templates.py configuration template generator.

Tests cover:
- Built-in template values per profile
- config.toml, nodesSetup.json, genesis.json rendering
- ConfigManager init/list/apply/current and linking into the localnet
"""

import json

import pytest

from mxlocalnet.errors import TemplateError
from mxlocalnet.templates import (
    DEFAULT_TEMPLATES,
    DEV_GENESIS_ALLOC,
    MAINNET_LIKE_SUPPLY,
    ConfigManager,
    render_config_toml,
    render_nodes_setup,
    write_template,
)


@pytest.fixture
def manager(tmp_path):
    return ConfigManager(tmp_path / "workspace", tmp_path / "mx" / "localnet")


class TestDefaultTemplates:
    """Tests for the built-in template values."""

    def test_round_durations(self):
        """Round durations follow the profiles."""
        assert {k: t.round_duration for k, t in DEFAULT_TEMPLATES.items()} == {
            "dev": 2000, "test": 6000, "production": 6000, "ci": 1000,
        }

    def test_consensus_sizes(self):
        """Production uses mainnet-like consensus groups."""
        assert DEFAULT_TEMPLATES["dev"].consensus_group_size == 1
        assert DEFAULT_TEMPLATES["test"].consensus_group_size == 2
        assert DEFAULT_TEMPLATES["production"].consensus_group_size == 63
        assert DEFAULT_TEMPLATES["production"].min_nodes_per_shard == 400

    def test_ci_uses_two_shards(self):
        """CI template runs on 2 shards."""
        assert DEFAULT_TEMPLATES["ci"].shards == 2

    def test_only_dev_prefunds_wallets(self):
        """Only the dev template carries a genesis allocation."""
        assert DEFAULT_TEMPLATES["dev"].genesis_alloc == DEV_GENESIS_ALLOC
        assert not DEFAULT_TEMPLATES["production"].genesis_alloc


class TestRendering:
    """Tests for file rendering."""

    def test_config_toml_parses(self):
        """Every rendered config.toml is valid TOML."""
        tomllib = pytest.importorskip("tomllib")
        for spec in DEFAULT_TEMPLATES.values():
            data = tomllib.loads(render_config_toml(spec))
            assert data["GeneralSettings"]["ChainID"] == "localnet"

    def test_dev_enables_all_epochs(self):
        """Dev config activates features at epoch 0."""
        text = render_config_toml(DEFAULT_TEMPLATES["dev"])
        assert "SCDeployEnableEpoch = 0" in text
        assert "StartInEpochEnabled = true" in text

    def test_production_supply(self):
        """Production template uses the mainnet-like supply."""
        text = render_config_toml(DEFAULT_TEMPLATES["production"])
        assert MAINNET_LIKE_SUPPLY in text
        assert "SCDeployEnableEpoch" not in text

    def test_nodes_setup(self):
        """nodesSetup carries the consensus parameters."""
        setup = render_nodes_setup(DEFAULT_TEMPLATES["test"])
        assert setup["roundDuration"] == 6000
        assert setup["hysteresis"] == 0.2
        assert setup["adaptivity"] is True
        assert setup["genesisMaxNumberOfShards"] == 3

    def test_write_template_files(self, tmp_path):
        """write_template writes genesis.json only when wallets are allocated."""
        dev = write_template(DEFAULT_TEMPLATES["dev"], tmp_path / "dev")
        prod = write_template(DEFAULT_TEMPLATES["production"], tmp_path / "production")
        assert (dev / "genesis.json").is_file()
        assert not (prod / "genesis.json").exists()
        meta = json.loads((dev / "template.json").read_text())
        assert meta["type"] == "dev"
        assert meta["recommended_for"] == "Daily development work"


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_init_creates_all_templates(self, manager):
        """init writes dev, test, production and ci."""
        manager.init()
        keys = [t.key for t in manager.list_templates()]
        assert keys == ["ci", "dev", "production", "test"]

    def test_custom_templates_listed(self, manager):
        """Templates under custom/ are listed too."""
        manager.init()
        write_template(DEFAULT_TEMPLATES["dev"], manager.custom_dir / "mine")
        assert "mine" in [t.key for t in manager.list_templates()]

    def test_apply_unknown_template(self, manager):
        """Applying an unknown template raises TemplateError."""
        manager.init()
        with pytest.raises(TemplateError, match="Template not found: nope"):
            manager.apply("nope")

    def test_apply_requires_name(self, manager):
        """An empty template name is refused."""
        with pytest.raises(TemplateError, match="Template name required"):
            manager.apply("")

    def test_apply_and_current(self, manager):
        """apply copies the template into active/."""
        manager.init()
        assert manager.current() is None
        info = manager.apply("ci")
        assert info.name == "CI/CD"
        assert manager.current().type == "ci"
        assert (manager.active_dir / "config.toml").is_file()

    def test_apply_backs_up_previous(self, manager):
        """Re-applying keeps the previous active config in backup_<ts>."""
        manager.init()
        manager.apply("dev")
        manager.apply("test")
        backups = [p for p in manager.config_dir.iterdir() if p.name.startswith("backup_")]
        assert backups
        assert not (manager.active_dir / "genesis.json").exists()

    def test_apply_links_into_localnet(self, manager):
        """Existing localnet files are moved aside and replaced by links."""
        manager.init()
        manager.localnet_dir.mkdir(parents=True)
        (manager.localnet_dir / "config.toml").write_text("old")
        manager.apply("dev")
        link = manager.localnet_dir / "config.toml"
        assert link.is_symlink()
        assert link.resolve() == (manager.active_dir / "config.toml").resolve()
        assert list(manager.localnet_dir.glob("config.toml.backup.*"))

    def test_unreadable_metadata(self, manager):
        """Corrupt template.json raises TemplateError."""
        manager.ensure_dirs()
        broken = manager.templates_dir / "broken"
        broken.mkdir()
        (broken / "template.json").write_text("{not json")
        with pytest.raises(TemplateError, match="Unreadable template metadata"):
            manager.list_templates()
