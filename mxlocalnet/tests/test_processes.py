"""
Unit tests for processes.py command helpers.
"""

import signal
import subprocess
import sys
import time
from unittest.mock import MagicMock, patch

import psutil
import pytest

from mxlocalnet.processes import (
    attach_signal_handlers,
    resolve_compose_command,
    run_command,
    start_process,
    terminate_process_group,
)

SUPERVISOR = (
    "import subprocess, sys, time\n"
    "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
    "print(child.pid, flush=True)\n"
    "time.sleep(60)\n"
)


def start_supervisor(log):
    """Start a detached parent that spawns one long-running child; returns (parent, child)."""
    proc = start_process([sys.executable, "-c", SUPERVISOR], log_path=log)
    deadline = time.time() + 20
    while time.time() < deadline:
        text = log.read_text() if log.exists() else ""
        if text.strip():
            return proc, psutil.Process(int(text.split()[0]))
        time.sleep(0.1)
    proc.kill()
    raise AssertionError("supervisor never reported its child")


def is_gone(proc, timeout=10):
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            if proc.status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.NoSuchProcess:
            return True
        time.sleep(0.1)
    return False


class TestRunCommand:
    """Tests for run_command."""

    def test_dry_run_does_not_execute(self):
        """DRY_RUN reports success without spawning anything."""
        with patch("mxlocalnet.processes.subprocess.run") as mocked:
            result = run_command(["mxpy", "localnet", "start"], dry_run=True)
        mocked.assert_not_called()
        assert result.ok
        assert result.dry_run is True
        assert result.cmd == ["mxpy", "localnet", "start"]

    def test_missing_binary_is_127(self):
        """A missing executable is reported like a shell would."""
        result = run_command(["definitely-not-a-real-tool-mxl"])
        assert result.returncode == 127
        assert "command not found" in result.stderr

    def test_captures_output(self):
        """stdout and returncode come back in the result."""
        result = run_command([sys.executable, "-c", "print('hello')"])
        assert result.ok
        assert result.stdout.strip() == "hello"

    def test_failure_keeps_stderr(self):
        """Non-zero exit is not raised; stderr is kept."""
        code = "import sys; sys.stderr.write('boom'); sys.exit(3)"
        result = run_command([sys.executable, "-c", code])
        assert result.returncode == 3
        assert not result.ok
        assert result.stderr == "boom"

    def test_env_is_merged(self):
        """Extra variables are added on top of os.environ."""
        code = "import os; print(os.environ['MXL_TEST_VAR'], 'PATH' in os.environ)"
        result = run_command([sys.executable, "-c", code], env={"MXL_TEST_VAR": "42"})
        assert result.stdout.split() == ["42", "True"]

    def test_arguments_stringified(self, tmp_path):
        """Path arguments are converted to strings."""
        with patch("mxlocalnet.processes.subprocess.run") as mocked:
            mocked.return_value = subprocess.CompletedProcess([], 0, "", "")
            result = run_command(["ls", tmp_path])
        assert result.cmd == ["ls", str(tmp_path)]


class TestStartProcess:
    """Tests for start_process."""

    def test_output_goes_to_log(self, tmp_path):
        """Background output is appended to the log file."""
        log = tmp_path / "logs" / "child.log"
        proc = start_process([sys.executable, "-c", "print('started')"], log_path=log)
        proc.wait(timeout=30)
        assert "started" in log.read_text()


class TestSignalHandlers:
    """Tests for attach_signal_handlers."""

    def test_terminates_live_children(self):
        """Only children still running are terminated, then KeyboardInterrupt is raised."""
        alive, done = MagicMock(), MagicMock()
        alive.poll.return_value = None
        done.poll.return_value = 0
        with patch("mxlocalnet.processes.signal.signal") as install:
            attach_signal_handlers([("node", alive), ("proxy", done)])
        handler = install.call_args_list[0][0][1]
        with patch("mxlocalnet.processes.os.getpgid", return_value=-1):
            with pytest.raises(KeyboardInterrupt):
                handler(2, None)
        alive.send_signal.assert_called_once_with(signal.SIGTERM)
        done.send_signal.assert_not_called()


class TestTerminateProcessGroup:
    """Tests for terminate_process_group."""

    def test_descendants_are_stopped(self, tmp_path):
        """Grandchildren of a detached process die with it."""
        proc, child = start_supervisor(tmp_path / "supervisor.log")
        try:
            terminate_process_group(proc, grace=5)
            assert proc.poll() is not None
            assert is_gone(child)
        finally:
            if not is_gone(child, timeout=0):
                child.kill()

    def test_already_finished(self, tmp_path):
        """A child that already exited is left alone."""
        proc = start_process([sys.executable, "-c", "pass"], log_path=tmp_path / "done.log")
        proc.wait(timeout=30)
        terminate_process_group(proc, grace=1)
        assert proc.returncode == 0


class TestResolveComposeCommand:
    """Tests for docker compose detection."""

    def test_prefers_compose_plugin(self):
        """docker compose wins when the plugin answers."""
        with patch("mxlocalnet.processes.shutil.which", return_value="/usr/bin/docker"), \
                patch("mxlocalnet.processes.subprocess.run", return_value=MagicMock(returncode=0)):
            assert resolve_compose_command() == ["/usr/bin/docker", "compose"]

    def test_falls_back_to_legacy(self):
        """docker-compose is used when the plugin is missing."""
        paths = {"docker": "/usr/bin/docker", "docker-compose": "/usr/local/bin/docker-compose"}
        with patch("mxlocalnet.processes.shutil.which", side_effect=paths.get), \
                patch("mxlocalnet.processes.subprocess.run", return_value=MagicMock(returncode=1)):
            assert resolve_compose_command() == ["/usr/local/bin/docker-compose"]

    def test_no_docker(self):
        """Neither variant available raises RuntimeError."""
        with patch("mxlocalnet.processes.shutil.which", return_value=None):
            with pytest.raises(RuntimeError, match="Install Docker"):
                resolve_compose_command()
