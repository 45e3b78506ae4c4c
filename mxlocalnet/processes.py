"""
Child-process helpers shared by the localnet, stack and scanner modules.

Every external binary (mxpy, sc-meta, docker, terraform, the scanners) is
started through `run_command` or `start_process` so that DRY_RUN and logging
behave the same everywhere.
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.error import URLError
from urllib.request import urlopen

LOGGER = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command."""
    cmd: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def which(tool: str) -> Optional[str]:
    return shutil.which(tool)


def run_command(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    dry_run: bool = False,
    capture: bool = True,
    timeout: Optional[float] = None,
) -> CommandResult:
    """
    Run a command and return its result.

    With dry_run the command is only logged and reported as successful.
    A missing executable is reported as returncode 127, like a shell would.
    """
    cmd = [str(part) for part in cmd]
    if dry_run:
        LOGGER.warning("[DRY RUN] %s", " ".join(cmd))
        return CommandResult(cmd=cmd, returncode=0, dry_run=True)

    LOGGER.debug("Running: %s", " ".join(cmd))
    # Merge with current environment to preserve PATH and tool homes.
    merged_env = {**os.environ, **(env or {})}
    try:
        completed = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            capture_output=capture,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        LOGGER.error("Command not found: %s", cmd[0])
        return CommandResult(cmd=cmd, returncode=127, stderr=f"{cmd[0]}: command not found")

    result = CommandResult(
        cmd=cmd,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if not result.ok:
        LOGGER.debug("%s exited with %d: %s", cmd[0], result.returncode, result.stderr.strip())
    return result


def start_process(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    log_path: Optional[Path] = None,
) -> subprocess.Popen:
    """Start a background process, sending its output to log_path when given."""
    cmd = [str(part) for part in cmd]
    LOGGER.info("Starting: %s", " ".join(cmd))
    merged_env = {**os.environ, **(env or {})}
    if log_path is None:
        return subprocess.Popen(cmd, cwd=str(cwd) if cwd else None, env=merged_env)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_handle = open(log_path, "a", encoding="utf-8")
    try:
        return subprocess.Popen(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            stdout=log_handle,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    finally:
        # The child keeps its own copy of the descriptor.
        log_handle.close()


def wait_for_endpoint(url: str, timeout: float = 120, interval: float = 2) -> float:
    """
    Poll url until it answers HTTP 200.

    Returns the number of seconds waited. Raises RuntimeError on timeout.
    """
    start = time.time()
    deadline = start + timeout
    last_error = "no response"
    while time.time() < deadline:
        try:
            with urlopen(url, timeout=5) as response:
                if response.status == 200:
                    return time.time() - start
                last_error = f"HTTP {response.status}"
        except URLError as exc:
            last_error = str(exc.reason)
        except OSError as exc:
            last_error = str(exc)
        time.sleep(interval)
    raise RuntimeError(f"{url} did not become ready within {timeout}s ({last_error})")


def resolve_compose_command() -> List[str]:
    """Return the docker compose invocation available on this machine."""
    docker = shutil.which("docker")
    if docker:
        plugin = subprocess.run(
            [docker, "compose", "version"],
            capture_output=True,
            text=True,
        )
        if plugin.returncode == 0:
            return [docker, "compose"]
    legacy = shutil.which("docker-compose")
    if legacy:
        return [legacy]
    raise RuntimeError("Neither 'docker compose' nor 'docker-compose' is available. Install Docker.")


def attach_signal_handlers(running: List[Tuple[str, subprocess.Popen]]) -> None:
    """Terminate every tracked child on SIGINT/SIGTERM, then re-raise as KeyboardInterrupt."""

    def _handler(signum, _frame):
        LOGGER.info("Received signal %s, stopping %d process(es)", signum, len(running))
        for name, proc in running:
            if proc.poll() is None:
                LOGGER.debug("Terminating %s (pid %s)", name, proc.pid)
                _signal_group(proc, signal.SIGTERM)
        raise KeyboardInterrupt

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    """Send sig to the child's process group, or to the child alone when it leads no group."""
    try:
        if os.getpgid(proc.pid) == proc.pid:
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
    except ProcessLookupError:
        pass


def terminate_process_group(proc: subprocess.Popen, grace: float = 5) -> None:
    """
    Stop a child started by `start_process` together with everything it spawned.

    Children started with a log file run in their own session, so a terminal
    Ctrl+C never reaches their descendants. SIGTERM goes to the whole group and
    SIGKILL follows after grace seconds.
    """
    try:
        leads_group = os.getpgid(proc.pid) == proc.pid
    except ProcessLookupError:
        # Leader already reaped; its group id is still its pid.
        leads_group = True
    if not leads_group:
        if proc.poll() is None:
            proc.terminate()
        return

    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        LOGGER.warning("pid %s ignored SIGTERM, killing its process group", proc.pid)
    # Descendants can outlive the leader; the group id stays valid while any remain.
    deadline = time.time() + grace
    while time.time() < deadline:
        try:
            os.killpg(proc.pid, 0)
        except ProcessLookupError:
            return
        time.sleep(0.1)
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
