"""
Localnet configuration templates.

Templates live under `<workspace>/configs/templates/<name>/` and hold the
three files mxpy's localnet reads (`config.toml`, `nodesSetup.json` and, for
dev, `genesis.json`) plus a `template.json` describing the template. Applying
a template copies it into `configs/active/` and links the active files into
the localnet directory.
"""

from __future__ import annotations

import json
import logging
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .errors import TemplateError

LOGGER = logging.getLogger(__name__)

LOCALNET_FILES = ("config.toml", "nodesSetup.json", "genesis.json")

PROTOCOL_SUSTAINABILITY_ADDRESS = "erd1932eft30w753xyvme8d49qejgkjc09n5e49w4mwdjtm0neld797su0dlxp"

# Pre-funded dev wallets (alice and bob from the mxpy test wallets).
DEV_GENESIS_ALLOC = {
    "erd1qyu5wthldzr8wx5c9ucg8kjagg0jfs53s8nr3zpz3hypefsdd8ssycr6th": "1000000000000000000000000",
    "erd1spyavw0956vq68xj8y4tenjpq2wd5a9p2c6j8gsz7ztyrnpxrruqzu66jx": "1000000000000000000000000",
}

STANDARD_SUPPLY = "20000000000000000000000000"
MAINNET_LIKE_SUPPLY = "31415926535898462843383279502884197169399375105820974944592307816406286208998628034825342117067"

# Activation epochs set to 0 in the dev template so every feature is live at genesis.
DEV_ENABLE_EPOCHS = (
    "SCDeployEnableEpoch",
    "BuiltInFunctionsEnableEpoch",
    "RelayedTransactionsEnableEpoch",
    "PenalizedTooMuchGasEnableEpoch",
    "SwitchJailWaitingEnableEpoch",
    "BelowSignedThresholdEnableEpoch",
    "SwitchHysteresisForMinNodesEnableEpoch",
    "TransactionSignedWithTxHashEnableEpoch",
    "MetaProtectionEnableEpoch",
    "AheadOfTimeGasUsageEnableEpoch",
    "GasPriceModifierEnableEpoch",
    "RepairCallbackEnableEpoch",
    "BlockGasAndFeesReCheckEnableEpoch",
    "BalanceWaitingListsEnableEpoch",
    "ReturnDataToLastTransferEnableEpoch",
    "SenderInOutTransferEnableEpoch",
    "StakeEnableEpoch",
    "StakingV2EnableEpoch",
    "DoubleKeyProtectionEnableEpoch",
    "ESDTEnableEpoch",
    "GovernanceEnableEpoch",
    "DelegationManagerEnableEpoch",
    "DelegationSmartContractEnableEpoch",
    "CorrectLastUnJailEpoch",
    "SCProcessorV2EnableEpoch",
)


@dataclass
class TemplateSpec:
    """Everything needed to render one template directory."""
    key: str
    name: str
    description: str
    round_duration: int
    consensus_group_size: int
    min_nodes_per_shard: int
    meta_consensus_group_size: int
    meta_min_nodes: int
    hysteresis: float
    adaptivity: bool
    shards: int
    max_gas_per_block: str
    genesis_supply: str = STANDARD_SUPPLY
    enable_all_epochs: bool = False
    genesis_alloc: Dict[str, str] = field(default_factory=dict)
    rewards: bool = False
    features: List[str] = field(default_factory=list)
    use_cases: List[str] = field(default_factory=list)
    recommended_for: str = ""


DEFAULT_TEMPLATES: Dict[str, TemplateSpec] = {
    "dev": TemplateSpec(
        key="dev",
        name="Development",
        description="Fast development template with 2s rounds, minimal validators, optimized for quick iteration",
        round_duration=2000,
        consensus_group_size=1,
        min_nodes_per_shard=1,
        meta_consensus_group_size=1,
        meta_min_nodes=1,
        hysteresis=0.0,
        adaptivity=False,
        shards=3,
        max_gas_per_block="10000000",
        enable_all_epochs=True,
        genesis_alloc=dict(DEV_GENESIS_ALLOC),
        rewards=True,
        features=[
            "Fast 2-second rounds",
            "Minimal validator setup (1 per shard)",
            "All features enabled from epoch 0",
            "Pre-funded development wallets",
            "Optimized gas settings",
        ],
        use_cases=[
            "Smart contract development",
            "dApp frontend testing",
            "Quick prototyping",
            "Integration testing",
        ],
        recommended_for="Daily development work",
    ),
    "test": TemplateSpec(
        key="test",
        name="Testing",
        description="Testnet-like configuration for realistic testing with 6s rounds and multiple validators",
        round_duration=6000,
        consensus_group_size=2,
        min_nodes_per_shard=2,
        meta_consensus_group_size=2,
        meta_min_nodes=2,
        hysteresis=0.2,
        adaptivity=True,
        shards=3,
        max_gas_per_block="1500000",
        features=[
            "Testnet-like 6-second rounds",
            "Multiple validators per shard (2)",
            "Realistic gas limits",
            "Consensus group simulation",
            "Hysteresis and adaptivity enabled",
        ],
        use_cases=[
            "Pre-deployment testing",
            "Performance benchmarking",
            "Stress testing",
            "Final validation",
        ],
        recommended_for="Testing before mainnet deployment",
    ),
    "production": TemplateSpec(
        key="production",
        name="Production",
        description="Mainnet-like configuration with realistic parameters for final testing",
        round_duration=6000,
        consensus_group_size=63,
        min_nodes_per_shard=400,
        meta_consensus_group_size=400,
        meta_min_nodes=400,
        hysteresis=0.2,
        adaptivity=True,
        shards=3,
        max_gas_per_block="1500000",
        genesis_supply=MAINNET_LIKE_SUPPLY,
        features=[
            "Mainnet-like parameters",
            "Large consensus groups",
            "Production token supply",
            "Realistic network conditions",
            "Full security features",
        ],
        use_cases=[
            "Final pre-mainnet testing",
            "Security auditing",
            "Performance validation",
            "Load testing",
        ],
        recommended_for="Final validation before mainnet",
    ),
    "ci": TemplateSpec(
        key="ci",
        name="CI/CD",
        description="Minimal configuration optimized for CI/CD pipelines with fastest startup and low resource usage",
        round_duration=1000,
        consensus_group_size=1,
        min_nodes_per_shard=1,
        meta_consensus_group_size=1,
        meta_min_nodes=1,
        hysteresis=0.0,
        adaptivity=False,
        shards=2,
        max_gas_per_block="10000000",
        features=[
            "Ultra-fast 1-second rounds",
            "Minimal validators (1 per shard)",
            "Only 2 shards",
            "Fastest startup time",
            "Low memory footprint",
        ],
        use_cases=[
            "GitHub Actions",
            "GitLab CI/CD",
            "Automated testing",
            "Quick validation",
        ],
        recommended_for="Automated CI/CD pipelines",
    ),
}


@dataclass
class TemplateInfo:
    """Metadata read back from a template.json."""
    key: str
    name: str
    type: str
    description: str
    path: Path
    features: List[str] = field(default_factory=list)
    use_cases: List[str] = field(default_factory=list)
    recommended_for: str = ""

    @classmethod
    def from_dir(cls, directory: Path) -> "TemplateInfo":
        meta_path = directory / "template.json"
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise TemplateError(f"Unreadable template metadata {meta_path}: {exc}") from exc
        return cls(
            key=directory.name,
            name=data.get("name", "Unknown"),
            type=data.get("type", "unknown"),
            description=data.get("description", "No description"),
            path=directory,
            features=list(data.get("features") or []),
            use_cases=list(data.get("use_cases") or []),
            recommended_for=data.get("recommended_for", ""),
        )


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------

def render_config_toml(spec: TemplateSpec) -> str:
    lines = [
        f"# {spec.name} Configuration Template",
        f"# {spec.description}",
        "",
        "[GeneralSettings]",
        '    ChainID = "localnet"',
        "    MinTransactionVersion = 1",
    ]
    if spec.enable_all_epochs:
        lines.append("    StartInEpochEnabled = true")
        lines.extend(f"    {name} = 0" for name in DEV_ENABLE_EPOCHS)

    lines += [
        "",
        "[EconomicsConfig.GlobalSettings]",
        f'    GenesisTotalSupply = "{spec.genesis_supply}"',
        "    MinimumInflation = 0.01",
        "",
        "[[EconomicsConfig.GlobalSettings.YearSettings]]",
        "    Year = 0",
        "    MaximumInflation = 0.1",
    ]
    if spec.rewards:
        lines += [
            "",
            "[[EconomicsConfig.RewardsSettings.RewardsConfigByEpoch]]",
            "    LeaderPercentage = 0.1",
            "    DeveloperPercentage = 0.1",
            "    ProtocolSustainabilityPercentage = 0.1",
            f'    ProtocolSustainabilityAddress = "{PROTOCOL_SUSTAINABILITY_ADDRESS}"',
            '    TopUpGradientPoint = "300000000000000000000"',
            "    TopUpFactor = 0.25",
            "    EpochEnable = 0",
        ]
    lines += [
        "",
        "[[EconomicsConfig.FeeSettings.GasLimitSettings]]",
        f'    MaxGasLimitPerBlock = "{spec.max_gas_per_block}"',
        f'    MaxGasLimitPerMiniBlock = "{spec.max_gas_per_block}"',
        '    MaxGasLimitPerMetaBlock = "15000000"',
        '    MaxGasLimitPerMetaMiniBlock = "15000000"',
        '    MaxGasLimitPerTx = "600000000"',
        '    MinGasPrice = "1000000000"',
        '    GasPerDataByte = "1500"',
        "    EpochEnable = 0",
        "",
    ]
    return "\n".join(lines)


def render_nodes_setup(spec: TemplateSpec) -> Dict[str, object]:
    return {
        "startTime": 0,
        "roundDuration": spec.round_duration,
        "consensusGroupSize": spec.consensus_group_size,
        "minNodesPerShard": spec.min_nodes_per_shard,
        "metaChainConsensusGroupSize": spec.meta_consensus_group_size,
        "metaChainMinNodes": spec.meta_min_nodes,
        "hysteresis": spec.hysteresis,
        "adaptivity": spec.adaptivity,
        "chainID": "localnet",
        "minTransactionVersion": 1,
        "genesisMaxNumberOfShards": spec.shards,
        "genesisShardConsensusGroupPreset": "normal",
    }


def render_genesis(spec: TemplateSpec) -> Dict[str, object]:
    return {
        "alloc": {address: {"balance": balance, "nonce": 0} for address, balance in spec.genesis_alloc.items()},
        "gasSchedule": {
            "BaseOpsAPICost": {
                "StorageStore": 200,
                "StorageLoad": 10,
                "GetCaller": 2,
                "CheckNoPayment": 1,
            }
        },
    }


def render_metadata(spec: TemplateSpec) -> Dict[str, object]:
    return {
        "name": spec.name,
        "description": spec.description,
        "type": spec.key,
        "features": spec.features,
        "use_cases": spec.use_cases,
        "recommended_for": spec.recommended_for,
    }


def _write_json(path: Path, payload: Dict[str, object]) -> None:
    path.write_text(json.dumps(payload, indent=4) + "\n", encoding="utf-8")


def write_template(spec: TemplateSpec, directory: Path) -> Path:
    """Render a template spec into a directory and return it."""
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "config.toml").write_text(render_config_toml(spec), encoding="utf-8")
    _write_json(directory / "nodesSetup.json", render_nodes_setup(spec))
    if spec.genesis_alloc:
        _write_json(directory / "genesis.json", render_genesis(spec))
    _write_json(directory / "template.json", render_metadata(spec))
    return directory


# ------------------------------------------------------------------
# Manager
# ------------------------------------------------------------------

class ConfigManager:
    """Create, list and apply configuration templates."""

    def __init__(self, workspace: Path, localnet_dir: Path):
        self.config_dir = workspace / "configs"
        self.templates_dir = self.config_dir / "templates"
        self.active_dir = self.config_dir / "active"
        self.custom_dir = self.config_dir / "custom"
        self.localnet_dir = localnet_dir

    def ensure_dirs(self) -> None:
        for directory in (self.config_dir, self.templates_dir, self.active_dir, self.custom_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def init(self) -> List[Path]:
        """Create the directory layout and every default template."""
        self.ensure_dirs()
        created = []
        for key, spec in DEFAULT_TEMPLATES.items():
            created.append(write_template(spec, self.templates_dir / key))
            LOGGER.info("Template '%s' written to %s", key, self.templates_dir / key)
        return created

    def list_templates(self) -> List[TemplateInfo]:
        infos: List[TemplateInfo] = []
        for root in (self.templates_dir, self.custom_dir):
            if not root.is_dir():
                continue
            for directory in sorted(root.iterdir()):
                if directory.is_dir() and (directory / "template.json").is_file():
                    infos.append(TemplateInfo.from_dir(directory))
        return infos

    def find(self, name: str) -> Path:
        for root in (self.templates_dir, self.custom_dir):
            candidate = root / name
            if candidate.is_dir():
                return candidate
        raise TemplateError(f"Template not found: {name}")

    def apply(self, name: str) -> TemplateInfo:
        """
        Make a template the active configuration.

        The previous active configuration is preserved as
        configs/backup_<timestamp>. When the localnet directory exists, its
        config files are moved aside and replaced by links to the active ones.
        """
        if not name:
            raise TemplateError("Template name required")
        source = self.find(name)
        self.ensure_dirs()

        if any(self.active_dir.iterdir()):
            backup_dir = self.config_dir / f"backup_{datetime.now():%Y%m%d_%H%M%S}"
            shutil.copytree(self.active_dir, backup_dir, dirs_exist_ok=True)
            LOGGER.info("Current configuration backed up to %s", backup_dir)

        for entry in self.active_dir.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        for entry in source.iterdir():
            target = self.active_dir / entry.name
            if entry.is_dir():
                shutil.copytree(entry, target)
            else:
                shutil.copy2(entry, target)

        if self.localnet_dir.is_dir():
            self._link_into_localnet()

        return TemplateInfo.from_dir(self.active_dir)

    def _link_into_localnet(self) -> None:
        stamp = int(time.time())
        for filename in LOCALNET_FILES:
            active_file = self.active_dir / filename
            if not active_file.exists():
                continue
            target = self.localnet_dir / filename
            if target.is_symlink():
                target.unlink()
            elif target.exists():
                target.rename(self.localnet_dir / f"{filename}.backup.{stamp}")
            target.symlink_to(active_file.resolve())
            LOGGER.info("Linked %s -> %s", target, active_file)

    def current(self) -> Optional[TemplateInfo]:
        if not (self.active_dir / "template.json").is_file():
            return None
        return TemplateInfo.from_dir(self.active_dir)
