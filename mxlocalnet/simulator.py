"""
Multi-node chain simulator under docker compose, plus a JSON scenario runner.

`ChainSimulator` owns `<workspace>/simulator`: one config, data and log
directory per node, a compose file with the proxy, the nodes and a metrics
exporter, and the bundled scenarios. `ScenarioRunner` executes scenario steps
against any proxy with the same mxpy senders the benchmarks use.

A scenario is a JSON document:

    {"name": "...", "description": "...",
     "steps": [{"action": "create_accounts", "count": 10}, ...]}

Every key of a step except "action" is passed to the matching runner method.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
import shutil
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .bench import (
    SYSTEM_ADDRESS,
    THROUGHPUT_VALUE,
    TxStats,
    generate_wallets,
    save_result,
    send_transfer,
    wallet_addresses,
)
from .errors import MxpyError, ProxyError, SimulatorError
from .mxpy import Mxpy
from .processes import CommandResult
from .proxy import ProxyClient, check_health
from .reports import percent
from .runtime_env import is_valid_address
from .stack import ComposeProject, dump_yaml
from .templates import PROTOCOL_SUSTAINABILITY_ADDRESS

LOGGER = logging.getLogger(__name__)

PROXY_PORT = 7950
METRICS_PORT = 8081
REST_BASE_PORT = 8080
P2P_BASE_PORT = 9999
PORT_STEP = 10
NETWORK = "mvx-sim"
SUBNET = "172.20.0.0/16"

SCENARIOS: Dict[str, Dict[str, Any]] = {
    "basic-tx": {
        "name": "Basic Transaction Test",
        "description": "Send simple transactions between accounts",
        "steps": [
            {"action": "create_accounts", "count": 10, "initial_balance": "1000000000000000000"},
            {"action": "send_transactions", "count": 100, "tps": 10, "duration": 10},
            {"action": "verify_balances"},
        ],
    },
    "high-load": {
        "name": "High Load Test",
        "description": "Test network under high transaction load",
        "steps": [
            {"action": "create_accounts", "count": 100, "initial_balance": "10000000000000000000"},
            {"action": "send_transactions", "count": 5000, "tps": 100, "duration": 50},
            {"action": "measure_performance", "metrics": ["tps", "latency", "success_rate"]},
        ],
    },
    "smart-contracts": {
        "name": "Smart Contract Test",
        "description": "Deploy and test smart contracts",
        "steps": [
            {"action": "deploy_contract", "contract": "counter.wasm", "constructor_args": []},
            {"action": "call_contract", "function": "increment", "count": 100},
            {"action": "query_contract", "function": "get_count", "expected_value": 100},
        ],
    },
}


@dataclass
class SimulatorLayout:
    nodes: int = 4
    shards: int = 2

    def __post_init__(self):
        if self.nodes < 1:
            raise ValueError(f"Number of nodes must be at least 1 (got {self.nodes})")
        if self.shards < 1:
            raise ValueError(f"Number of shards must be at least 1 (got {self.shards})")
        if self.shards > self.nodes:
            raise ValueError(f"Cannot spread {self.nodes} node(s) over {self.shards} shards")

    def shard_of(self, index: int) -> int:
        return index % self.shards

    def rest_port(self, index: int) -> int:
        return REST_BASE_PORT + index * PORT_STEP

    def p2p_port(self, index: int) -> int:
        return P2P_BASE_PORT + index * PORT_STEP


def render_node_config(layout: SimulatorLayout, index: int) -> str:
    peers = ",\n".join(
        f'    {{Addr = "node-{peer}:{layout.p2p_port(peer)}", PubKey = "node{peer}_key"}}'
        for peer in range(layout.nodes)
    )
    return "\n".join([
        "[GeneralSettings]",
        'ChainID = "localnet"',
        "MinTransactionVersion = 1",
        f'ProtocolSustainabilityAddress = "{PROTOCOL_SUSTAINABILITY_ADDRESS}"',
        "",
        "[NetworkConfig]",
        f"Port = {layout.p2p_port(index)}",
        "MaximumExpectedPeerCount = 10",
        'ConnectionWatcherType = "print"',
        f"ShardId = {layout.shard_of(index)}",
        "",
        "[P2PConfig]",
        "Node = [",
        peers,
        "]",
        "",
        "[RestAPIServerConfig]",
        f'RestApiInterface = "0.0.0.0:{layout.rest_port(index)}"',
        "",
        "[LogsConfig]",
        'LogsPath = "/logs"',
        "LogFileLifeSpanInMB = 100",
        "LogFileLifeSpanInSec = 86400",
        "",
        "[ConsensusConfig]",
        'Type = "bls"',
        "RoundDurationInMilliseconds = 6000",
        "",
    ])


def compose_config(layout: SimulatorLayout) -> Dict[str, object]:
    services: Dict[str, object] = {
        "proxy": {
            "image": "multiversx/chain-proxy:latest",
            "container_name": "mvx-sim-proxy",
            "ports": [f"{PROXY_PORT}:{PROXY_PORT}"],
            "volumes": ["./config/proxy:/config", "./logs/proxy:/logs"],
            "environment": [f"MX_PROXY_PORT={PROXY_PORT}"],
            "networks": [NETWORK],
            "restart": "unless-stopped",
        },
    }
    for index in range(layout.nodes):
        rest, p2p = layout.rest_port(index), layout.p2p_port(index)
        services[f"node-{index}"] = {
            "image": "multiversx/chain-node:latest",
            "container_name": f"mvx-sim-node-{index}",
            "ports": [f"{rest}:{rest}", f"{p2p}:{p2p}"],
            "volumes": [
                f"./config/node-{index}:/config",
                f"./data/node-{index}:/data",
                f"./logs/node-{index}:/logs",
            ],
            "environment": [
                f"NODE_INDEX={index}",
                f"SHARD_ID={layout.shard_of(index)}",
                f"REST_API_PORT={rest}",
            ],
            "networks": [NETWORK],
            "restart": "unless-stopped",
            "depends_on": ["proxy"],
        }
    services["metrics-exporter"] = {
        "image": "multiversx/chain-metrics-exporter:latest",
        "container_name": "mvx-sim-metrics",
        "ports": [f"{METRICS_PORT}:{METRICS_PORT}"],
        "volumes": ["./config/metrics:/config", "./logs/metrics:/logs"],
        "networks": [NETWORK],
        "restart": "unless-stopped",
    }
    return {
        "services": services,
        "networks": {NETWORK: {"driver": "bridge", "ipam": {"config": [{"subnet": SUBNET}]}}},
    }


class ChainSimulator(ComposeProject):
    """docker compose project rooted at `<workspace>/simulator`."""

    error = SimulatorError
    setup_hint = "mxl simulator setup"

    def __init__(self, root: Path, dry_run: bool = False):
        super().__init__(root, dry_run=dry_run)
        self.logs_dir = root / "logs"
        self.scenarios_dir = root / "scenarios"
        self.layout_file = root / "simulator.json"

    @property
    def proxy_url(self) -> str:
        return f"http://localhost:{PROXY_PORT}"

    def layout(self) -> SimulatorLayout:
        """The layout written by the last `generate()`, or the default one."""
        if not self.layout_file.is_file():
            return SimulatorLayout()
        try:
            data = json.loads(self.layout_file.read_text(encoding="utf-8"))
            return SimulatorLayout(nodes=int(data["nodes"]), shards=int(data["shards"]))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise SimulatorError(f"Invalid simulator layout in {self.layout_file}: {exc}") from exc

    def generate(self, layout: Optional[SimulatorLayout] = None) -> List[Path]:
        layout = layout or self.layout()
        for stale in self.config_dir.glob("node-*"):
            suffix = stale.name[len("node-"):]
            if not suffix.isdigit() or int(suffix) >= layout.nodes:
                shutil.rmtree(stale)
        written = []
        for index in range(layout.nodes):
            config = self.config_dir / f"node-{index}" / "config.toml"
            config.parent.mkdir(parents=True, exist_ok=True)
            config.write_text(render_node_config(layout, index), encoding="utf-8")
            written.append(config)
            for base in (self.data_dir, self.logs_dir):
                (base / f"node-{index}").mkdir(parents=True, exist_ok=True)
        for service in ("proxy", "metrics"):
            (self.config_dir / service).mkdir(parents=True, exist_ok=True)
            (self.logs_dir / service).mkdir(parents=True, exist_ok=True)
        dump_yaml(self.compose_file, compose_config(layout))
        self.layout_file.write_text(json.dumps(asdict(layout), indent=2) + "\n", encoding="utf-8")
        written += [self.compose_file, self.layout_file]
        written += self.write_scenarios()
        LOGGER.info("Simulator generated in %s (%d nodes, %d shards)", self.root, layout.nodes, layout.shards)
        return written

    def write_scenarios(self) -> List[Path]:
        """Write the bundled scenarios, leaving files the user already edited alone."""
        self.scenarios_dir.mkdir(parents=True, exist_ok=True)
        written = []
        for name, scenario in SCENARIOS.items():
            path = self.scenarios_dir / f"{name}.json"
            if not path.exists():
                path.write_text(json.dumps(scenario, indent=2) + "\n", encoding="utf-8")
                written.append(path)
        return written

    def start(self, wait: bool = True, timeout: float = 60, **wait_kwargs) -> CommandResult:
        result = self.up()
        if wait and not self.dry_run:
            self.wait_ready(timeout=timeout, **wait_kwargs)
        return result

    def wait_ready(
        self,
        timeout: float = 60,
        interval: float = 2,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        url = f"{self.proxy_url}/network/status"
        deadline = clock() + timeout
        while True:
            is_up, _, _ = check_health(url)
            if is_up:
                return
            if clock() >= deadline:
                raise SimulatorError(f"Simulator proxy not responding at {url} after {timeout:.0f}s")
            sleep(interval)

    def reset(self) -> List[Path]:
        """Stop the containers and empty node data and logs; configs and scenarios stay."""
        self.down()
        layout = self.layout()
        cleared = []
        for base in (self.data_dir, self.logs_dir):
            if self.dry_run:
                LOGGER.info("[DRY RUN] would empty %s", base)
                continue
            if base.exists():
                shutil.rmtree(base)
                cleared.append(base)
            for index in range(layout.nodes):
                (base / f"node-{index}").mkdir(parents=True, exist_ok=True)
        return cleared


# ------------------------------------------------------------------
# Scenarios
# ------------------------------------------------------------------

def list_scenarios(directory: Path) -> List[Tuple[str, str]]:
    """Return (name, description) for every scenario file in directory."""
    entries = []
    for path in sorted(directory.glob("*.json")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            data = None
        if isinstance(data, dict):
            description = data.get("description", "No description")
        else:
            description = "Invalid JSON"
        entries.append((path.stem, description))
    return entries


def load_scenario(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise SimulatorError(f"Scenario not found: {path.stem}")
    try:
        scenario = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise SimulatorError(f"Cannot read scenario {path}: {exc}") from exc
    steps = scenario.get("steps") if isinstance(scenario, dict) else None
    if not isinstance(steps, list) or not steps:
        raise SimulatorError(f"Scenario {path.stem} has no steps")
    for index, step in enumerate(steps, 1):
        if not isinstance(step, dict) or not step.get("action"):
            raise SimulatorError(f"Scenario {path.stem}: step {index} has no action")
    scenario.setdefault("name", path.stem)
    return scenario


def load_test_scenario(tps: int, duration: int, accounts: int = 50) -> Dict[str, Any]:
    """Create accounts, send tps * duration transfers at tps, then measure."""
    if tps < 1 or duration < 1:
        raise ValueError(f"TPS and duration must be positive (got tps={tps}, duration={duration})")
    return {
        "name": "Load Test",
        "description": f"{tps} TPS for {duration}s",
        "steps": [
            {"action": "create_accounts", "count": accounts, "initial_balance": "10000000000000000000"},
            {"action": "send_transactions", "count": tps * duration, "tps": tps, "duration": duration},
            {"action": "measure_performance", "metrics": ["tps", "latency", "success_rate"]},
        ],
    }


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "scenario"


def _contract_address(outfile: Path) -> Optional[str]:
    try:
        data = json.loads(outfile.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    address = data.get("contractAddress") if isinstance(data, dict) else None
    return address if is_valid_address(address) else None


def _first_number(stdout: str) -> Optional[int]:
    """First return value of `mxpy contract query`, which prints a JSON list of {"number": ...}."""
    try:
        values = json.loads(stdout)
    except json.JSONDecodeError:
        return None
    if not isinstance(values, list) or not values or not isinstance(values[0], dict):
        return None
    number = values[0].get("number")
    return int(number) if number is not None else None


@dataclass
class StepResult:
    index: int
    action: str
    status: str
    detail: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScenarioResult:
    name: str
    steps: List[StepResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return bool(self.steps) and all(step.status != "failed" for step in self.steps)


class ScenarioRunner:
    """
    Run scenario steps against a proxy.

    Accounts made by `create_accounts` are the senders and receivers of later
    `send_transactions` steps; without them the funder wallet sends to the
    system address. `measure_performance` reports on the most recent send step.
    """

    def __init__(
        self,
        mxpy: Mxpy,
        funder: Path,
        wallets_dir: Path,
        results_dir: Path,
        proxy_url: str,
        chain: str = "localnet",
        base_dir: Optional[Path] = None,
        client: Optional[ProxyClient] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.mxpy = mxpy
        self.funder = funder
        self.wallets_dir = wallets_dir
        self.results_dir = results_dir
        self.proxy_url = proxy_url
        self.chain = chain
        self.base_dir = base_dir or Path.cwd()
        self.client = client or ProxyClient(proxy_url)
        self.clock = clock
        self.sleep = sleep
        self.accounts: Dict[Path, str] = {}
        self.stats = TxStats()
        self.latencies: List[float] = []
        self.contract: Optional[str] = None
        self.handlers: Dict[str, Callable[..., Dict[str, Any]]] = {
            "create_accounts": self.create_accounts,
            "send_transactions": self.send_transactions,
            "verify_balances": self.verify_balances,
            "measure_performance": self.measure_performance,
            "deploy_contract": self.deploy_contract,
            "call_contract": self.call_contract,
            "query_contract": self.query_contract,
        }

    # -- steps ---------------------------------------------------------

    def create_accounts(self, count: int, initial_balance: str = "1000000000000000000") -> Dict[str, Any]:
        if count < 1:
            raise ValueError(f"Number of accounts must be at least 1 (got {count})")
        wallets = generate_wallets(self.mxpy, self.wallets_dir, count)
        self.accounts = wallet_addresses(self.mxpy, wallets)
        funded = sum(
            send_transfer(self.mxpy, self.funder, address, str(initial_balance), self.proxy_url, self.chain)
            for address in self.accounts.values()
        )
        if funded < len(self.accounts):
            raise SimulatorError(f"Funded {funded} of {len(self.accounts)} accounts from {self.funder.name}")
        return {"accounts": len(self.accounts), "funded": funded}

    def send_transactions(self, count: int, tps: float, duration: Optional[float] = None) -> Dict[str, Any]:
        """Send up to count transfers paced at tps, stopping early once duration has elapsed."""
        if count < 1 or tps <= 0:
            raise ValueError(f"count and tps must be positive (got count={count}, tps={tps})")
        senders = list(self.accounts) or [self.funder]
        receivers = list(self.accounts.values()) or [SYSTEM_ADDRESS]
        interval = 1.0 / tps
        stats = TxStats()
        self.latencies = []
        start = self.clock()
        for index in range(count):
            elapsed = self.clock() - start
            if duration is not None and elapsed >= duration:
                break
            if index * interval > elapsed:
                self.sleep(index * interval - elapsed)
            sender = senders[index % len(senders)]
            receiver = receivers[(index + 1) % len(receivers)]
            sent_at = self.clock()
            ok = send_transfer(self.mxpy, sender, receiver, THROUGHPUT_VALUE, self.proxy_url, self.chain)
            self.latencies.append(self.clock() - sent_at)
            stats.total += 1
            if ok:
                stats.successful += 1
            else:
                stats.failed += 1
            if stats.total % 100 == 0:
                LOGGER.info("Sent %d transactions...", stats.total)
        stats.duration = max(self.clock() - start, 0.0)
        self.stats = stats
        if stats.successful == 0:
            raise SimulatorError(f"All {stats.total} transactions failed")
        return {"sent": stats.total, "successful": stats.successful, "failed": stats.failed, "tps": stats.tps}

    def verify_balances(self) -> Dict[str, Any]:
        if not self.accounts:
            raise SimulatorError("No accounts to verify; add a create_accounts step first")
        empty = []
        for address in self.accounts.values():
            account = self.client.get_account(address)
            if int(account.get("balance") or 0) == 0:
                empty.append(address)
        if empty:
            raise SimulatorError(f"{len(empty)} of {len(self.accounts)} account(s) have no balance")
        return {"accounts": len(self.accounts)}

    def measure_performance(self, metrics: Sequence[str] = ("tps", "latency", "success_rate")) -> Dict[str, Any]:
        available = {
            "tps": lambda: self.stats.tps,
            "latency": lambda: round(sum(self.latencies) / len(self.latencies) * 1000, 1) if self.latencies else 0.0,
            "success_rate": lambda: percent(self.stats.successful, self.stats.total),
        }
        unknown = [name for name in metrics if name not in available]
        if unknown:
            raise ValueError(f"Unknown metric(s): {', '.join(unknown)}")
        data: Dict[str, Any] = {name: available[name]() for name in metrics}
        try:
            status = self.client.network_status()
        except ProxyError as exc:
            LOGGER.warning("Network status unavailable: %s", exc)
        else:
            data["nonce"] = status.get("erd_nonce")
        return data

    def deploy_contract(
        self,
        contract: str,
        constructor_args: Sequence[Any] = (),
        gas_limit: int = 60000000,
    ) -> Dict[str, Any]:
        bytecode = Path(contract)
        if not bytecode.is_absolute():
            bytecode = self.base_dir / bytecode
        if not bytecode.is_file():
            raise SimulatorError(f"Contract bytecode not found: {bytecode}")
        outfile = self.results_dir / "scenario_deploy.json"
        self.mxpy.contract_deploy(
            bytecode=bytecode,
            pem=self.funder,
            proxy=self.proxy_url,
            chain=self.chain,
            gas_limit=gas_limit,
            arguments=[str(arg) for arg in constructor_args],
            outfile=outfile,
        )
        self.contract = _contract_address(outfile)
        if self.contract is None and not self.mxpy.dry_run:
            raise SimulatorError(f"mxpy did not report a contract address in {outfile}")
        return {"contract": self.contract or ""}

    def _require_contract(self) -> str:
        if not self.contract:
            raise SimulatorError("No contract deployed; add a deploy_contract step first")
        return self.contract

    def call_contract(
        self,
        function: str,
        count: int = 1,
        arguments: Sequence[Any] = (),
        gas_limit: int = 5000000,
    ) -> Dict[str, Any]:
        contract = self._require_contract()
        failed = 0
        for _ in range(count):
            try:
                self.mxpy.contract_call(
                    contract, self.funder, function, proxy=self.proxy_url, chain=self.chain,
                    gas_limit=gas_limit, arguments=[str(arg) for arg in arguments],
                )
            except MxpyError as exc:
                LOGGER.debug("Call to %s failed: %s", function, exc)
                failed += 1
        if failed:
            raise SimulatorError(f"{failed} of {count} calls to {function} failed")
        return {"calls": count}

    def query_contract(
        self,
        function: str,
        expected_value: Optional[int] = None,
        arguments: Sequence[Any] = (),
    ) -> Dict[str, Any]:
        contract = self._require_contract()
        result = self.mxpy.contract_query(
            contract, function, proxy=self.proxy_url, arguments=[str(arg) for arg in arguments]
        )
        value = _first_number(result.stdout)
        if expected_value is not None and value != expected_value:
            raise SimulatorError(f"{function} returned {value}, expected {expected_value}")
        return {"value": value}

    # -- driver --------------------------------------------------------

    def run_step(self, index: int, step: Dict[str, Any]) -> StepResult:
        action = step.get("action", "")
        handler = self.handlers.get(action)
        if handler is None:
            LOGGER.warning("Unknown action: %s", action)
            return StepResult(index, action, "skipped", "unknown action")
        params = {key: value for key, value in step.items() if key != "action"}
        try:
            inspect.signature(handler).bind(**params)
        except TypeError as exc:
            return StepResult(index, action, "failed", f"Invalid parameters: {exc}")
        try:
            data = handler(**params)
        except (SimulatorError, MxpyError, ProxyError, ValueError) as exc:
            return StepResult(index, action, "failed", str(exc))
        return StepResult(index, action, "ok", data=data)

    def run(self, scenario: Dict[str, Any], keep_going: bool = False) -> ScenarioResult:
        """Run every step in order; stops at the first failure unless keep_going."""
        result = ScenarioResult(name=scenario.get("name", "scenario"))
        start = self.clock()
        for index, step in enumerate(scenario["steps"], 1):
            LOGGER.info("Step %d: %s", index, step.get("action"))
            outcome = self.run_step(index, step)
            result.steps.append(outcome)
            if outcome.status == "failed" and not keep_going:
                break
        result.duration = round(self.clock() - start, 2)
        save_result(
            self.results_dir,
            f"scenario_{_slug(result.name)}",
            result.success,
            scenario=result.name,
            duration=result.duration,
            steps=[asdict(step) for step in result.steps],
        )
        return result
