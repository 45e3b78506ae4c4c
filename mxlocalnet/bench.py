"""
Functional tests and benchmarks against a running localnet.

Each test writes `<results_dir>/<name>_test.json` shaped as
{"test": <name>, "success": bool, "timestamp": ..., <test specific fields>}
so `write_test_report` and `reports.summarize` can read them back uniformly.
"""

from __future__ import annotations

import json
import logging
import platform
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .errors import MxpyError
from .mxpy import Mxpy
from .proxy import check_health
from .reports import timestamped_path

LOGGER = logging.getLogger(__name__)

# System smart contract address, always present on a fresh chain.
SYSTEM_ADDRESS = "erd1qqqqqqqqqqqqqqqpqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqplllst77y4l"

DEFAULT_ENDPOINTS = (
    "network/status",
    "network/config",
    f"address/{SYSTEM_ADDRESS}/nonce",
)

THROUGHPUT_VALUE = "1000000000000000"
STRESS_VALUE = "100000000000000"
TRANSFER_GAS = 50000


@dataclass
class EndpointCheck:
    endpoint: str
    ok: bool
    latency_ms: int
    status: str


@dataclass
class TxStats:
    total: int = 0
    successful: int = 0
    failed: int = 0
    duration: float = 0.0

    @property
    def tps(self) -> float:
        if self.duration <= 0:
            return 0.0
        return round(self.successful / self.duration, 2)


@dataclass
class DeployResult:
    success: bool
    duration: float
    error: str = ""


@dataclass
class StressResult:
    streams: int
    tx_per_stream: int
    stats: TxStats = field(default_factory=TxStats)


def _timestamp() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def save_result(results_dir: Path, name: str, success: bool, **fields) -> Path:
    results_dir.mkdir(parents=True, exist_ok=True)
    path = results_dir / f"{name}_test.json"
    payload = {"test": name, "success": success, "timestamp": _timestamp(), **fields}
    path.write_text(json.dumps(payload, indent=4) + "\n", encoding="utf-8")
    return path


def connectivity_test(proxy_url: str, results_dir: Path, endpoints: Sequence[str] = DEFAULT_ENDPOINTS) -> List[EndpointCheck]:
    checks = []
    for endpoint in endpoints:
        is_up, latency, status = check_health(f"{proxy_url.rstrip('/')}/{endpoint}")
        checks.append(EndpointCheck(endpoint=endpoint, ok=is_up, latency_ms=latency, status=status))
        LOGGER.info("%s %s - %sms", "✓" if is_up else "✗", endpoint, latency)
    save_result(
        results_dir,
        "connectivity",
        all(c.ok for c in checks),
        endpoints=[asdict(c) for c in checks],
        total_ms=sum(c.latency_ms for c in checks),
    )
    return checks


def generate_wallets(mxpy: Mxpy, wallets_dir: Path, count: int = 10) -> List[Path]:
    """Create test_wallet_<n>.pem files, keeping any that already exist."""
    wallets = []
    for index in range(1, count + 1):
        wallet = wallets_dir / f"test_wallet_{index}.pem"
        if not wallet.exists():
            mxpy.wallet_new(wallet)
            LOGGER.info("Generated wallet: %s", wallet.name)
        wallets.append(wallet)
    return wallets


def wallet_addresses(mxpy: Mxpy, wallets: Sequence[Path]) -> Dict[Path, str]:
    addresses = {}
    for wallet in wallets:
        try:
            addresses[wallet] = mxpy.wallet_pem_address(wallet)
        except (MxpyError, ValueError) as exc:
            LOGGER.warning("Skipping %s: %s", wallet, exc)
    return addresses


def send_transfer(mxpy: Mxpy, pem: Path, receiver: str, value: str, proxy: str, chain: str) -> bool:
    try:
        mxpy.tx_new(pem=pem, receiver=receiver, value=value, gas_limit=TRANSFER_GAS, proxy=proxy, chain=chain)
    except (MxpyError, ValueError) as exc:
        LOGGER.debug("Transaction from %s failed: %s", pem.name, exc)
        return False
    return True


def throughput_test(
    mxpy: Mxpy,
    sender: Path,
    receivers: Sequence[str],
    duration: float,
    results_dir: Path,
    proxy: str,
    chain: str = "localnet",
    delay: float = 0.1,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> TxStats:
    """Send small transfers from sender for `duration` seconds, cycling through receivers."""
    if not receivers:
        raise ValueError("At least one receiver address is required")
    stats = TxStats()
    start = clock()
    while clock() - start < duration:
        receiver = receivers[stats.total % len(receivers)]
        if send_transfer(mxpy, sender, receiver, THROUGHPUT_VALUE, proxy, chain):
            stats.successful += 1
        else:
            stats.failed += 1
        stats.total += 1
        sleep(delay)
    stats.duration = max(clock() - start, 0.0)
    save_result(
        results_dir,
        "throughput",
        stats.total > 0 and stats.failed == 0,
        duration=round(stats.duration, 2),
        total_transactions=stats.total,
        successful_transactions=stats.successful,
        failed_transactions=stats.failed,
        transactions_per_second=stats.tps,
    )
    return stats


def contract_deployment_test(
    mxpy: Mxpy,
    bytecode: Path,
    pem: Path,
    results_dir: Path,
    proxy: str,
    chain: str = "localnet",
    gas_limit: int = 5000000,
) -> DeployResult:
    if not bytecode.is_file():
        raise FileNotFoundError(f"Contract bytecode not found: {bytecode}")
    if not pem.is_file():
        raise FileNotFoundError(f"Wallet not found: {pem}")
    start = time.monotonic()
    try:
        mxpy.contract_deploy(
            bytecode=bytecode,
            pem=pem,
            proxy=proxy,
            chain=chain,
            gas_limit=gas_limit,
            outfile=results_dir / "deploy_result.json",
        )
    except MxpyError as exc:
        result = DeployResult(success=False, duration=round(time.monotonic() - start, 3), error=str(exc))
    else:
        result = DeployResult(success=True, duration=round(time.monotonic() - start, 3))
    save_result(results_dir, "contract", result.success, duration=result.duration, error=result.error)
    return result


def stress_test(
    mxpy: Mxpy,
    wallets: Dict[Path, str],
    results_dir: Path,
    proxy: str,
    chain: str = "localnet",
    streams: int = 10,
    tx_per_stream: int = 20,
    delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> StressResult:
    """
    Run parallel transfer streams; stream i sends from wallet i to wallet i+1.

    `wallets` maps each PEM to its address (see `wallet_addresses`).
    """
    if not wallets:
        raise ValueError("Stress test needs at least one wallet")
    pems = list(wallets)[:streams]
    addresses = [wallets[p] for p in pems]

    def stream(index: int) -> List[bool]:
        outcomes = []
        receiver = addresses[(index + 1) % len(addresses)]
        for _ in range(tx_per_stream):
            outcomes.append(send_transfer(mxpy, pems[index], receiver, STRESS_VALUE, proxy, chain))
            sleep(delay)
        return outcomes

    result = StressResult(streams=len(pems), tx_per_stream=tx_per_stream)
    start = time.monotonic()
    with ThreadPoolExecutor(max_workers=len(pems)) as executor:
        for outcomes in executor.map(stream, range(len(pems))):
            result.stats.total += len(outcomes)
            result.stats.successful += sum(outcomes)
    result.stats.failed = result.stats.total - result.stats.successful
    result.stats.duration = time.monotonic() - start
    save_result(
        results_dir,
        "stress",
        result.stats.failed == 0,
        duration=round(result.stats.duration, 2),
        concurrent_streams=result.streams,
        transactions=result.stats.total,
        failed_transactions=result.stats.failed,
        transactions_per_second=result.stats.tps,
    )
    return result


def write_test_report(results_dir: Path, proxy_url: str, mxpy_version: Optional[str] = None) -> Path:
    report = timestamped_path(results_dir, "test_report", ".md")
    lines = [
        "# MultiversX Localnet Test Report",
        "",
        f"**Generated:** {datetime.now():%Y-%m-%d %H:%M:%S}",
        f"**Localnet API:** {proxy_url}",
        "",
        "## Environment",
        "",
        f"- **OS:** {platform.system()} {platform.release()}",
        f"- **Python:** {platform.python_version()}",
        f"- **mxpy:** {mxpy_version or 'Not available'}",
        "",
        "## Test Results",
        "",
        "| Test | Result | Timestamp |",
        "| --- | --- | --- |",
    ]
    details: List[str] = []
    for path in sorted(results_dir.glob("*_test.json")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            continue
        name = data.get("test", path.stem)
        outcome = "PASS" if data.get("success") else "FAIL"
        lines.append(f"| {name} | {outcome} | {data.get('timestamp', '-')} |")
        details += [f"### {name}", "", "```json", json.dumps(data, indent=2), "```", ""]
    lines += [""] + details
    lines += [
        "## Recommendations",
        "",
        "- Monitor memory usage during high TPS periods",
        "- Adjust round duration for better throughput",
        "- Optimize gas limits for smart contract calls",
        "",
    ]
    report.write_text("\n".join(lines), encoding="utf-8")
    return report
