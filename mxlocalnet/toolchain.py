"""
Detect and install the external toolchain: mxpy, Rust, sc-meta and test wallets.
"""

from __future__ import annotations

import json
import logging
import platform
import re
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .errors import MxpyError, ToolchainError
from .mxpy import Mxpy
from .processes import run_command, which
from .runtime_env import DEFAULT_PROXY_URL

LOGGER = logging.getLogger(__name__)

TESTNET_PROXY = "https://testnet-gateway.multiversx.com"
TESTWALLETS_DIR = Path.home() / "multiversx-sdk" / "testwallets" / "latest" / "users"

# (tool, required)
TOOLS = (
    ("mxpy", True),
    ("python3", True),
    ("cargo", True),
    ("rustup", False),
    ("sc-meta", False),
    ("docker", False),
    ("terraform", False),
    ("myth", False),
    ("slither", False),
    ("aderyn", False),
)

RUST_COMPONENTS = ("clippy", "rustfmt")
WASM_TARGET = "wasm32-unknown-unknown"
RUSTUP_INSTALL = "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh -s -- -y"

_VERSION = re.compile(r"\d+\.\d+(?:\.\d+)?")


@dataclass
class ToolStatus:
    name: str
    path: Optional[str]
    version: Optional[str]
    required: bool

    @property
    def installed(self) -> bool:
        return self.path is not None


def tool_version(tool: str) -> Optional[str]:
    result = run_command([tool, "--version"], timeout=30)
    if not result.ok:
        return None
    match = _VERSION.search(result.stdout or result.stderr)
    return match.group(0) if match else None


def detect_tools(tools: Iterable = TOOLS) -> List[ToolStatus]:
    """Look up each tool on PATH; never raises."""
    statuses = []
    for name, required in tools:
        path = which(name)
        version = tool_version(name) if path else None
        statuses.append(ToolStatus(name=name, path=path, version=version, required=required))
    return statuses


def missing_required(statuses: Iterable[ToolStatus]) -> List[str]:
    return [s.name for s in statuses if s.required and not s.installed]


def record_versions(path: Path, statuses: Iterable[ToolStatus]) -> Path:
    """Write {tool: version, ..., "recorded_at": iso} next to the other workspace metadata."""
    data: Dict[str, Optional[str]] = {s.name: s.version for s in statuses if s.installed}
    data["recorded_at"] = datetime.now().astimezone().isoformat(timespec="seconds")
    data["platform"] = f"{platform.system()}-{platform.machine()}"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return path


def _check(cmd: List[str], dry_run: bool) -> None:
    result = run_command(cmd, dry_run=dry_run, capture=False)
    if not result.ok:
        raise ToolchainError(f"{' '.join(cmd)} failed with exit code {result.returncode}")


# ----------------------------------------------------------------------
# installers
# ----------------------------------------------------------------------

def install_mxpy(dry_run: bool = False) -> None:
    """Install or upgrade multiversx-sdk-cli, preferring pipx."""
    if which("pipx"):
        result = run_command(["pipx", "install", "multiversx-sdk-cli", "--force"], dry_run=dry_run, capture=False)
        if result.ok:
            return
        LOGGER.warning("pipx install failed, upgrading instead")
        _check(["pipx", "upgrade", "multiversx-sdk-cli"], dry_run)
        return
    _check([sys.executable, "-m", "pip", "install", "--user", "--upgrade", "multiversx-sdk-cli"], dry_run)


def install_rust(dry_run: bool = False) -> None:
    if which("rustup"):
        _check(["rustup", "update"], dry_run)
    else:
        _check(["sh", "-c", RUSTUP_INSTALL], dry_run)
    rustup = which("rustup") or str(Path.home() / ".cargo" / "bin" / "rustup")
    _check([rustup, "component", "add", *RUST_COMPONENTS], dry_run)
    _check([rustup, "target", "add", WASM_TARGET], dry_run)


def install_sc_meta(dry_run: bool = False) -> None:
    if not which("cargo") and not dry_run:
        raise ToolchainError("cargo not found. Run: mxl sdk install --rust")
    _check(["cargo", "install", "multiversx-sc-meta", "--locked"], dry_run)


def install_testwallets(mxpy: Mxpy) -> bool:
    """Install the published test wallets unless `mxpy deps check` already passes."""
    if mxpy.deps_check("testwallets"):
        LOGGER.info("Test wallets already installed")
        return False
    try:
        mxpy.deps_install("testwallets", overwrite=True)
    except MxpyError as exc:
        raise ToolchainError(f"Could not install test wallets: {exc}") from exc
    return True


def configure_testnet_env(mxpy: Mxpy, proxy_url: str = TESTNET_PROXY) -> None:
    """Create (if needed) and switch to an mxpy config env named `testnet`."""
    try:
        mxpy.config_env_new("testnet")
    except MxpyError as exc:
        LOGGER.info("config-env testnet not created: %s", exc.stderr.strip() or exc)
    try:
        mxpy.config_env_set("proxy_url", proxy_url, env_name="testnet")
        mxpy.config_env_switch("testnet")
    except MxpyError as exc:
        raise ToolchainError(f"Could not configure the testnet env: {exc}") from exc


def wasm_target_installed() -> bool:
    result = run_command(["rustup", "target", "list", "--installed"])
    return result.ok and WASM_TARGET in result.stdout


def localnet_proxy_hint(statuses: Iterable[ToolStatus]) -> str:
    names = {s.name for s in statuses if s.installed}
    if "mxpy" in names:
        return f"Ready: mxl setup && mxl start, proxy on {DEFAULT_PROXY_URL}"
    return "Install mxpy first: mxl sdk install"
