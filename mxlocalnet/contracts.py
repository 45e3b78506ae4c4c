"""
sc-meta wrapper: scaffold, build and deploy smart contracts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import LocalnetError, ScMetaError
from .mxpy import Mxpy
from .processes import CommandResult, run_command

LOGGER = logging.getLogger(__name__)

DEPLOY_GAS_LIMIT = 5000000


@dataclass(frozen=True)
class Network:
    name: str
    chain: str
    proxy: str


NETWORKS = {
    "localnet": Network("localnet", "localnet", "http://localhost:7950"),
    "devnet": Network("devnet", "D", "https://devnet-gateway.multiversx.com"),
    "testnet": Network("testnet", "T", "https://testnet-gateway.multiversx.com"),
    "mainnet": Network("mainnet", "1", "https://gateway.multiversx.com"),
}


def network_for(name: str) -> Network:
    try:
        return NETWORKS[name]
    except KeyError:
        raise ValueError(
            f"Unknown network '{name}'. Valid values: {', '.join(NETWORKS)}"
        ) from None


class ScMeta:
    """Run sc-meta subcommands."""

    def __init__(self, executable: str = "sc-meta", dry_run: bool = False):
        self.executable = executable
        self.dry_run = dry_run

    def _run(self, args: Sequence[str], cwd: Optional[Path] = None) -> CommandResult:
        cmd = [self.executable, *args]
        result = run_command(cmd, cwd=cwd, dry_run=self.dry_run)
        if not result.ok:
            raise ScMetaError(cmd, result.returncode, result.stderr)
        return result

    def new(self, template: str, name: str, path: Path) -> Path:
        """Scaffold `<path>/<name>` from an sc-meta template; returns the contract dir."""
        target = path / name
        if target.exists():
            raise LocalnetError(f"{target} already exists")
        path.mkdir(parents=True, exist_ok=True)
        self._run(["new", "--template", template, "--name", name, "--path", str(path)])
        return target

    def build(self, contract_dir: Path) -> List[Path]:
        if not (contract_dir / "Cargo.toml").is_file():
            raise LocalnetError(f"Cargo.toml not found in {contract_dir}")
        self._run(["all", "build"], cwd=contract_dir)
        return sorted((contract_dir / "output").glob("*.wasm"))

    @staticmethod
    def find_bytecode(contract_dir: Path) -> Optional[Path]:
        wasm = sorted((contract_dir / "output").rglob("*.wasm"))
        return wasm[0] if wasm else None


def deploy_contract(
    contract_dir: Path,
    network: str,
    pem: Path,
    mxpy: Mxpy,
    sc_meta: Optional[ScMeta] = None,
    build: bool = True,
    gas_limit: int = DEPLOY_GAS_LIMIT,
    arguments: Optional[Sequence[str]] = None,
) -> Path:
    """Build the contract (unless told not to) and deploy its first wasm; returns the wasm path."""
    target = network_for(network)
    if not pem.is_file():
        raise LocalnetError(f"Wallet file not found at {pem}")
    if build:
        (sc_meta or ScMeta(dry_run=mxpy.dry_run)).build(contract_dir)
    bytecode = ScMeta.find_bytecode(contract_dir)
    if bytecode is None:
        if not mxpy.dry_run:
            raise LocalnetError(f"WASM file not found in {contract_dir / 'output'}")
        bytecode = contract_dir / "output" / f"{contract_dir.name}.wasm"
    LOGGER.info("Deploying %s to %s", bytecode, target.name)
    mxpy.contract_deploy(
        bytecode=bytecode,
        pem=pem,
        proxy=target.proxy,
        chain=target.chain,
        gas_limit=gas_limit,
        arguments=arguments,
    )
    return bytecode
