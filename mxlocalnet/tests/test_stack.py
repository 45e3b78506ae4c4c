"""
Unit tests for stack.py docker compose monitoring stack.
"""

import json
from unittest.mock import MagicMock, patch
from urllib.error import URLError

import pytest
import yaml

from mxlocalnet.errors import StackError
from mxlocalnet.processes import CommandResult
from mxlocalnet.stack import MonitoringStack, query_up


def prometheus_response(payload):
    resp = MagicMock()
    resp.read.return_value = json.dumps(payload).encode("utf-8")
    resp.__enter__.return_value = resp
    return resp


@pytest.fixture
def stack(tmp_path):
    return MonitoringStack(tmp_path / "monitoring")


class TestGenerate:
    """Tests for MonitoringStack.generate."""

    def test_writes_all_files(self, stack):
        """Every mounted config file is written."""
        written = stack.generate()
        assert all(path.is_file() for path in written)
        assert (stack.data_dir / "grafana").is_dir()

    def test_compose_services(self, stack):
        """Compose declares the four services on one network."""
        stack.generate()
        compose = yaml.safe_load(stack.compose_file.read_text())
        assert set(compose["services"]) == {"prometheus", "grafana", "node-exporter", "alertmanager"}
        assert compose["services"]["grafana"]["depends_on"] == ["prometheus"]

    def test_prometheus_scrapes_proxy(self, stack):
        """Prometheus scrapes the proxy on 7950 and loads the alert rules."""
        stack.generate()
        config = yaml.safe_load((stack.config_dir / "prometheus" / "prometheus.yml").read_text())
        targets = {job["job_name"]: job["static_configs"][0]["targets"][0] for job in config["scrape_configs"]}
        assert targets["multiversx-proxy"] == "host.docker.internal:7950"
        assert config["rule_files"] == ["alert.rules.yml"]

    def test_dashboard_json(self, stack):
        """The Grafana dashboard is valid JSON."""
        stack.generate()
        dashboard = json.loads((stack.config_dir / "grafana" / "dashboards" / "multiversx-overview.json").read_text())
        assert dashboard["uid"] == "multiversx-overview"


class TestCompose:
    """Tests for compose invocations."""

    def test_requires_compose_file(self, stack):
        """Commands before setup raise StackError."""
        with pytest.raises(StackError, match="mxl stack setup"):
            stack.down()

    def test_up_generates_first(self, stack):
        """up writes the stack when it is missing."""
        with patch("mxlocalnet.stack.resolve_compose_command", return_value=["docker", "compose"]), \
                patch("mxlocalnet.stack.run_command", return_value=CommandResult(cmd=[], returncode=0)) as mocked:
            stack.up()
        assert stack.compose_file.is_file()
        assert mocked.call_args[0][0] == ["docker", "compose", "-f", str(stack.compose_file), "up", "-d"]

    def test_down_with_volumes(self, stack):
        """down -v removes volumes and orphans."""
        stack.generate()
        with patch("mxlocalnet.stack.resolve_compose_command", return_value=["docker-compose"]), \
                patch("mxlocalnet.stack.run_command", return_value=CommandResult(cmd=[], returncode=0)) as mocked:
            stack.down(volumes=True)
        assert mocked.call_args[0][0][-3:] == ["down", "-v", "--remove-orphans"]

    def test_failure_raises(self, stack):
        """A failing compose command raises StackError."""
        stack.generate()
        failed = CommandResult(cmd=[], returncode=1, stderr="port is already allocated")
        with patch("mxlocalnet.stack.resolve_compose_command", return_value=["docker", "compose"]), \
                patch("mxlocalnet.stack.run_command", return_value=failed):
            with pytest.raises(StackError, match="port is already allocated"):
                stack.up()

    def test_no_docker(self, stack):
        """Missing docker is a StackError outside dry run."""
        stack.generate()
        with patch("mxlocalnet.stack.resolve_compose_command", side_effect=RuntimeError("Install Docker.")):
            with pytest.raises(StackError, match="Install Docker"):
                stack.ps()

    def test_dry_run_without_docker(self, tmp_path):
        """Dry run falls back to docker compose and runs nothing."""
        stack = MonitoringStack(tmp_path / "monitoring", dry_run=True)
        stack.generate()
        with patch("mxlocalnet.stack.resolve_compose_command", side_effect=RuntimeError("Install Docker.")):
            result = stack.logs(tail=20)
        assert result.dry_run
        assert result.cmd[:2] == ["docker", "compose"]
        assert "--tail=20" in result.cmd


class TestQueryUp:
    """Tests for the Prometheus up query."""

    def test_jobs(self):
        """Each series maps to UP or DOWN."""
        payload = {
            "status": "success",
            "data": {"result": [
                {"metric": {"job": "multiversx-proxy"}, "value": [1700000000, "1"]},
                {"metric": {"job": "multiversx-node-0"}, "value": [1700000000, "0"]},
            ]},
        }
        with patch("mxlocalnet.stack.urlopen", return_value=prometheus_response(payload)) as mocked:
            jobs = query_up()
        assert jobs == {"multiversx-proxy": "UP", "multiversx-node-0": "DOWN"}
        assert "/api/v1/query?query=up" in mocked.call_args[0][0]

    def test_unreachable(self):
        """Connection errors raise StackError."""
        with patch("mxlocalnet.stack.urlopen", side_effect=URLError("refused")):
            with pytest.raises(StackError, match="not accessible"):
                query_up()

    def test_query_error(self):
        """A failed query reports Prometheus' error."""
        with patch("mxlocalnet.stack.urlopen", return_value=prometheus_response({"status": "error", "error": "bad"})):
            with pytest.raises(StackError, match="query failed: bad"):
                query_up()
