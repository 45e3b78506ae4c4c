#!/usr/bin/env python3
"""
Settings and environment helpers for the mxl CLI.

This module provides centralized environment variable management for the
localnet profiles (dev, test, production, ci). Each profile builds the
environment handed to mxpy and the other child processes, with guard rails to
prevent common mistakes such as deploying a production-like network with a
published test wallet.

Usage:
    from mxlocalnet.runtime_env import DevEnvironment, ProductionEnvironment, load_settings

    settings = load_settings()

    # Development mode
    env = DevEnvironment(settings).build()

    # Production-like mode
    env = ProductionEnvironment(settings).build()  # Will raise if MX_PEM not set
"""

from __future__ import annotations

import os
import re
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional


DEFAULT_PROXY_URL = "http://localhost:7950"
DEFAULT_LOCALNET_DIR = "~/mx-localnet/localnet"
DEFAULT_FAUCET_URL = "https://r3d4.fr/faucet"
DEFAULT_SHARDS = 3
DEFAULT_MONITORING_PORT = 8080
DEFAULT_METRICS_INTERVAL = 5

# Wallets shipped with `mxpy deps install testwallets`; their keys are public.
TEST_WALLET_NAMES = frozenset(
    ["alice", "bob", "carol", "dan", "eve", "frank", "grace", "heidi", "ivan", "judy", "mallory", "mike"]
)

ADDRESS_PATTERN = re.compile(r"^erd1[qpzry9x8gf2tvdw0s3jn54khce6mua7l]{58}$")

_TRUTHY = ("1", "true", "yes", "on")


class NetworkProfile(Enum):
    """Localnet profiles, one per configuration template."""
    DEV = "dev"
    TEST = "test"
    PRODUCTION = "production"
    CI = "ci"


# Round duration (ms) and shard count per profile.
PROFILE_ROUNDS: Dict[NetworkProfile, int] = {
    NetworkProfile.DEV: 2000,
    NetworkProfile.TEST: 6000,
    NetworkProfile.PRODUCTION: 6000,
    NetworkProfile.CI: 1000,
}


@dataclass
class LocalnetSettings:
    """
    Settings read from the process environment.

    Attributes:
        workspace: Root for configs/, backups/, logs/, data/, reports/ and friends
        localnet_dir: Directory created by `mxpy localnet setup`
        proxy_url: Base URL of the MultiversX proxy
        chain_id: Chain ID used when sending transactions
        shards: Number of shards (LOCALNET_SHARDS)
        monitoring_port: Port of the local dashboard server (MONITORING_PORT)
        metrics_interval: Seconds between metric samples
        dry_run: Print external commands instead of running them (DRY_RUN)
        pem: Wallet PEM used for deploys and transfers (MX_PEM)
        faucet_url: Testnet faucet endpoint
    """
    workspace: Path = field(default_factory=Path.cwd)
    localnet_dir: Path = field(default_factory=lambda: Path(DEFAULT_LOCALNET_DIR).expanduser())
    proxy_url: str = DEFAULT_PROXY_URL
    chain_id: str = "localnet"
    shards: int = DEFAULT_SHARDS
    monitoring_port: int = DEFAULT_MONITORING_PORT
    metrics_interval: int = DEFAULT_METRICS_INTERVAL
    dry_run: bool = False
    pem: Optional[Path] = None
    faucet_url: str = DEFAULT_FAUCET_URL

    @property
    def logs_dir(self) -> Path:
        return self.workspace / "logs"

    @property
    def data_dir(self) -> Path:
        return self.workspace / "data"

    @property
    def configs_dir(self) -> Path:
        return self.workspace / "configs"

    @property
    def backups_dir(self) -> Path:
        return self.workspace / "backups"

    @property
    def reports_dir(self) -> Path:
        return self.workspace / "reports"

    @property
    def results_dir(self) -> Path:
        return self.workspace / "test-results"

    @property
    def security_dir(self) -> Path:
        return self.workspace / "security"


def _int_from_env(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r}).") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {value}).")
    return value


def is_dry_run(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Return True when DRY_RUN is set to a truthy value."""
    environ = os.environ if environ is None else environ
    return environ.get("DRY_RUN", "").strip().lower() in _TRUTHY


def load_settings(environ: Optional[Mapping[str, str]] = None) -> LocalnetSettings:
    """Build LocalnetSettings from environment variables."""
    environ = os.environ if environ is None else environ
    pem = environ.get("MX_PEM")
    return LocalnetSettings(
        workspace=get_workspace_root(environ),
        localnet_dir=Path(environ.get("MX_LOCALNET_DIR", DEFAULT_LOCALNET_DIR)).expanduser(),
        proxy_url=environ.get("MX_PROXY_URL", DEFAULT_PROXY_URL).rstrip("/"),
        chain_id=environ.get("MX_CHAIN_ID", "localnet"),
        shards=_int_from_env(environ, "LOCALNET_SHARDS", DEFAULT_SHARDS),
        monitoring_port=_int_from_env(environ, "MONITORING_PORT", DEFAULT_MONITORING_PORT),
        metrics_interval=_int_from_env(environ, "METRICS_INTERVAL", DEFAULT_METRICS_INTERVAL),
        dry_run=is_dry_run(environ),
        pem=Path(pem).expanduser() if pem else None,
        faucet_url=environ.get("MX_FAUCET_URL", DEFAULT_FAUCET_URL),
    )


@dataclass
class EnvironmentConfig:
    """
    Values exported to child processes.

    Attributes:
        profile: Localnet profile being run
        shards: Number of shards to start
        round_duration: Round duration in milliseconds
        monitoring_port: Dashboard port
        dry_run: Whether external commands are only printed
        proxy_url: Proxy base URL
        chain_id: Chain ID for transactions
        pem: Wallet used for deploys (required for production)
    """
    profile: NetworkProfile = NetworkProfile.DEV
    shards: int = DEFAULT_SHARDS
    round_duration: int = PROFILE_ROUNDS[NetworkProfile.DEV]
    monitoring_port: int = DEFAULT_MONITORING_PORT
    dry_run: bool = False
    proxy_url: str = DEFAULT_PROXY_URL
    chain_id: str = "localnet"
    pem: Optional[Path] = None
    extra_vars: Dict[str, str] = field(default_factory=dict)


class EnvironmentBuilder(ABC):
    """Abstract base for environment builders."""

    profile: NetworkProfile = NetworkProfile.DEV

    def __init__(self, settings: Optional[LocalnetSettings] = None):
        settings = settings or load_settings()
        self._config = EnvironmentConfig(
            profile=self.profile,
            shards=settings.shards,
            round_duration=PROFILE_ROUNDS[self.profile],
            monitoring_port=settings.monitoring_port,
            dry_run=settings.dry_run,
            proxy_url=settings.proxy_url,
            chain_id=settings.chain_id,
            pem=settings.pem,
        )

    @property
    def config(self) -> EnvironmentConfig:
        return self._config

    @abstractmethod
    def validate(self) -> None:
        """Validate configuration. Raises ValueError if invalid."""
        pass

    def with_var(self, name: str, value: str) -> "EnvironmentBuilder":
        """Export an additional variable."""
        self._config.extra_vars[name] = value
        return self

    def build(self) -> Dict[str, str]:
        """Build and return the environment dictionary."""
        self.validate()
        env = os.environ.copy()

        env["LOCALNET_PROFILE"] = self._config.profile.value
        env["LOCALNET_SHARDS"] = str(self._config.shards)
        env["LOCALNET_ROUND_DURATION"] = str(self._config.round_duration)
        env["MONITORING_PORT"] = str(self._config.monitoring_port)
        env["DRY_RUN"] = str(self._config.dry_run).lower()

        # Proxy and chain used by mxpy subcommands
        env["MX_PROXY_URL"] = self._config.proxy_url
        env["MX_CHAIN_ID"] = self._config.chain_id

        if self._config.pem:
            env["MX_PEM"] = str(self._config.pem)

        env.update(self._config.extra_vars)
        return env


class DevEnvironment(EnvironmentBuilder):
    """
    Development profile.

    - Fast 2-second rounds
    - Any wallet allowed, including the published test wallets

    Usage:
        env = DevEnvironment().build()
    """

    profile = NetworkProfile.DEV

    def validate(self) -> None:
        """Dev mode has no strict validation - anything goes locally."""
        pass


class TestEnvironment(EnvironmentBuilder):
    """
    Testnet-like profile with 6-second rounds.

    Usage:
        env = TestEnvironment().build()
    """

    profile = NetworkProfile.TEST
    __test__ = False  # not a pytest class

    def validate(self) -> None:
        if self._config.shards < 2:
            raise ValueError(
                f"The test profile needs at least 2 shards (got {self._config.shards}).\n"
                "Set LOCALNET_SHARDS=2 or higher."
            )


class ProductionEnvironment(EnvironmentBuilder):
    """
    Mainnet-like profile for final validation.

    - 6-second rounds, large consensus groups
    - MX_PEM REQUIRED (aborts if missing, absent on disk, or a test wallet)

    Usage:
        # Will raise if MX_PEM not set
        env = ProductionEnvironment().build()
    """

    profile = NetworkProfile.PRODUCTION

    def validate(self) -> None:
        """Validate production requirements."""
        pem = self._config.pem

        if pem is None:
            raise ValueError(
                "MX_PEM environment variable is required for the production profile.\n"
                "Create a wallet with: mxl wallet new --outfile wallet.pem"
            )

        if is_test_wallet(pem):
            raise ValueError(
                f"MX_PEM cannot be a published test wallet ({pem.name}) in the production profile.\n"
                "Create a dedicated wallet with: mxl wallet new --outfile wallet.pem"
            )

        if not pem.exists():
            raise ValueError(f"MX_PEM points to a missing file: {pem}")


class CIEnvironment(EnvironmentBuilder):
    """
    CI profile: 1-second rounds on 2 shards, minimal resources.

    Usage:
        env = CIEnvironment().build()
    """

    profile = NetworkProfile.CI

    def __init__(self, settings: Optional[LocalnetSettings] = None):
        super().__init__(settings)
        self._config.shards = 2

    def validate(self) -> None:
        """CI mode warns when it is not running under a CI runner."""
        if not os.environ.get("CI"):
            print(
                "[WARN] CI not set. The ci profile is tuned for pipelines; use dev for local work.",
                file=sys.stderr,
            )


_BUILDERS = {
    NetworkProfile.DEV: DevEnvironment,
    NetworkProfile.TEST: TestEnvironment,
    NetworkProfile.PRODUCTION: ProductionEnvironment,
    NetworkProfile.CI: CIEnvironment,
}


def builder_for(profile: str, settings: Optional[LocalnetSettings] = None) -> EnvironmentBuilder:
    """Return the environment builder for a profile name."""
    try:
        key = NetworkProfile(profile.lower())
    except ValueError:
        names = ", ".join(p.value for p in NetworkProfile)
        raise ValueError(f"Unknown profile '{profile}'. Choose one of: {names}") from None
    return _BUILDERS[key](settings)


def is_test_wallet(pem: Path) -> bool:
    """Check if a PEM file is one of the published test wallets."""
    return pem.stem.lower() in TEST_WALLET_NAMES


def is_valid_address(address: Optional[str]) -> bool:
    """Check that a string looks like a bech32 MultiversX address."""
    if not address:
        return False
    return bool(ADDRESS_PATTERN.match(address))


def mask_sensitive_value(value: str) -> str:
    """Mask a sensitive value for logging (show first/last 2 chars)."""
    if len(value) <= 4:
        return "****"
    return f"{value[:2]}...{value[-2:]}"


def get_workspace_root(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return the workspace directory (MX_WORKSPACE or the current directory)."""
    environ = os.environ if environ is None else environ
    workspace = environ.get("MX_WORKSPACE")
    return Path(workspace).expanduser() if workspace else Path.cwd()
