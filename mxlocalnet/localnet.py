"""
Lifecycle of the mxpy localnet: setup, start, stop, reset and status.

Processes are matched with psutil: the `mxpy localnet start` supervisor plus the
node, proxy and seednode binaries that live inside the localnet directory.
"""

from __future__ import annotations

import glob
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import psutil

from .errors import LocalnetError, MxpyError, ProxyError
from .mxpy import Mxpy
from .processes import start_process, wait_for_endpoint
from .proxy import ProxyClient, check_health
from .runtime_env import LocalnetSettings

LOGGER = logging.getLogger(__name__)

LOCALNET_BINARIES = frozenset(["node", "proxy", "seednode"])


@dataclass
class LocalnetProcess:
    pid: int
    name: str
    role: str


@dataclass
class LocalnetStatus:
    """Snapshot of the localnet processes and proxy."""
    processes: List[LocalnetProcess] = field(default_factory=list)
    proxy_up: bool = False
    latency_ms: int = 0
    proxy_status: str = ""
    epoch: Optional[int] = None
    round: Optional[int] = None
    nonce: Optional[int] = None

    @property
    def running(self) -> bool:
        return bool(self.processes) or self.proxy_up


def _is_within(path: Optional[str], root: Path) -> bool:
    if not path:
        return False
    try:
        Path(path).resolve().relative_to(root.resolve())
    except (ValueError, OSError):
        return False
    return True


def classify_process(name: str, cmdline: List[str], cwd: Optional[str], localnet_dir: Path) -> Optional[str]:
    """Return the role of a process in the localnet, or None if it is unrelated."""
    joined = " ".join(cmdline)
    if "mxpy" in joined and "localnet" in cmdline:
        return "mxpy"
    exe = os.path.basename(cmdline[0]) if cmdline else name
    if exe in LOCALNET_BINARIES or name in LOCALNET_BINARIES:
        if _is_within(cwd, localnet_dir) or (cmdline and _is_within(cmdline[0], localnet_dir)):
            return exe if exe in LOCALNET_BINARIES else name
    return None


class LocalnetManager:
    """Drive the localnet through mxpy and psutil."""

    def __init__(self, settings: LocalnetSettings, mxpy: Optional[Mxpy] = None):
        self.settings = settings
        self.mxpy = mxpy or Mxpy(dry_run=settings.dry_run)
        self.localnet_dir = settings.localnet_dir
        self.pid_file = settings.data_dir / "localnet.pid"
        self.log_file = settings.logs_dir / "localnet.log"
        self.proxy = ProxyClient(settings.proxy_url)

    def is_set_up(self) -> bool:
        return self.localnet_dir.is_dir()

    def setup(self, force: bool = False) -> bool:
        """Run `mxpy localnet setup`. Returns False when already set up."""
        if self.is_set_up() and not force:
            LOGGER.info("Localnet already set up in %s", self.localnet_dir)
            return False
        self.localnet_dir.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.mxpy.localnet_setup(cwd=self.localnet_dir.parent)
        except MxpyError as exc:
            raise LocalnetError(f"Localnet setup failed: {exc}") from exc
        return True

    def find_processes(self) -> List[LocalnetProcess]:
        found: List[LocalnetProcess] = []
        own_pid = os.getpid()
        for proc in psutil.process_iter(["pid", "name", "cmdline", "cwd"]):
            try:
                info = proc.info
                if info["pid"] == own_pid:
                    continue
                role = classify_process(
                    info.get("name") or "",
                    info.get("cmdline") or [],
                    info.get("cwd"),
                    self.localnet_dir,
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            if role:
                found.append(LocalnetProcess(pid=info["pid"], name=info.get("name") or role, role=role))
        return found

    def is_running(self) -> bool:
        return bool(self.find_processes())

    def start(self, wait: bool = True, timeout: int = 120, force: bool = False) -> Optional[subprocess.Popen]:
        """
        Launch `mxpy localnet start` in the background.

        Output goes to logs/localnet.log and the PID to data/localnet.pid.
        With wait=True, blocks until the proxy answers /network/config.
        """
        if not self.is_set_up():
            raise LocalnetError(f"Localnet not set up in {self.localnet_dir}. Run: mxl setup")
        if self.is_running() and not force:
            raise LocalnetError("Localnet is already running. Run 'mxl stop' first or pass --force.")

        cmd = self.mxpy.localnet_start_command()
        if self.settings.dry_run:
            LOGGER.warning("[DRY RUN] %s", " ".join(cmd))
            return None

        proc = start_process(cmd, cwd=self.localnet_dir.parent, env=self.mxpy.env, log_path=self.log_file)
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.pid_file.write_text(str(proc.pid), encoding="utf-8")

        if wait:
            try:
                wait_for_endpoint(f"{self.settings.proxy_url}/network/config", timeout=timeout, interval=2)
            except RuntimeError as exc:
                if proc.poll() is not None:
                    raise LocalnetError(
                        f"mxpy localnet start exited with code {proc.returncode}. See {self.log_file}"
                    ) from exc
                raise LocalnetError(str(exc)) from exc
        return proc

    def stop(self, grace: int = 5) -> List[int]:
        """Terminate localnet processes, killing whatever survives the grace period."""
        targets = []
        for entry in self.find_processes():
            try:
                targets.append(psutil.Process(entry.pid))
            except psutil.NoSuchProcess:
                continue
        if not targets:
            LOGGER.info("No localnet processes running")
            self._clear_pid_file()
            return []

        if self.settings.dry_run:
            LOGGER.warning("[DRY RUN] would stop PIDs %s", [p.pid for p in targets])
            return []

        for proc in targets:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
        _, alive = psutil.wait_procs(targets, timeout=grace)
        for proc in alive:
            LOGGER.warning("Force killing process %s", proc.pid)
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
        self._clear_pid_file()
        return [proc.pid for proc in targets]

    def _clear_pid_file(self) -> None:
        if self.pid_file.exists():
            self.pid_file.unlink()

    def reset(self) -> List[Path]:
        """Stop everything and delete the localnet directory and stray logs."""
        self.stop(grace=0)
        removed: List[Path] = []
        candidates = [Path(p) for p in glob.glob("/tmp/multiversx-*.log")]
        candidates += [self.settings.workspace / "nohup.out", self.localnet_dir.parent / "nohup.out"]
        if self.settings.dry_run:
            LOGGER.warning("[DRY RUN] would remove %s", self.localnet_dir)
            return removed
        if self.localnet_dir.exists():
            shutil.rmtree(self.localnet_dir)
            removed.append(self.localnet_dir)
        for path in candidates:
            if path.is_file():
                path.unlink()
                removed.append(path)
        return removed

    def status(self) -> LocalnetStatus:
        status = LocalnetStatus(processes=self.find_processes())
        status.proxy_up, status.latency_ms, status.proxy_status = check_health(
            f"{self.settings.proxy_url}/network/config"
        )
        if status.proxy_up:
            try:
                metrics = self.proxy.network_status()
            except ProxyError as exc:
                LOGGER.debug("Network status unavailable: %s", exc)
            else:
                status.epoch = metrics.get("erd_epoch_number")
                status.round = metrics.get("erd_round_number")
                status.nonce = metrics.get("erd_nonce")
        return status
