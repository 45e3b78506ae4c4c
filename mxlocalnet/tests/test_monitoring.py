"""
Unit tests for monitoring.py metrics, dashboard and report.
"""

import json
from unittest.mock import MagicMock

from mxlocalnet.errors import ProxyError
from mxlocalnet.monitoring import (
    MetricsCollector,
    MetricsSummary,
    make_dashboard_server,
    summarize_metrics,
    write_dashboard,
    write_performance_report,
)
from mxlocalnet.runtime_env import LocalnetSettings


def sample(directory, name, timestamp, nonce):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text(json.dumps({"timestamp": timestamp, "status": {"erd_nonce": nonce}}))


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_collect_running(self, tmp_path):
        """A reachable proxy writes a sample and a node status file."""
        proxy = MagicMock()
        proxy.network_status.return_value = {"erd_nonce": 12}
        record = MetricsCollector(proxy, tmp_path).collect()
        assert record["proxy"] == "running"
        names = sorted(p.name for p in tmp_path.iterdir())
        assert len(names) == 2
        assert names[-1].startswith("node_status_")

    def test_collect_stopped(self, tmp_path):
        """An unreachable proxy writes only the node status."""
        proxy = MagicMock()
        proxy.network_status.side_effect = ProxyError("down")
        record = MetricsCollector(proxy, tmp_path).collect()
        assert record["proxy"] == "stopped"
        files = list(tmp_path.iterdir())
        assert len(files) == 1
        assert json.loads(files[0].read_text())["proxy"] == "stopped"

    def test_watch_iterations(self, tmp_path):
        """watch sleeps between samples and reports each one."""
        proxy = MagicMock()
        proxy.network_status.return_value = {}
        seen, sleeps = [], []
        count = MetricsCollector(proxy, tmp_path).watch(5, iterations=3, sleep=sleeps.append, on_sample=seen.append)
        assert count == 3
        assert len(seen) == 3
        assert sleeps == [5, 5]


class TestSummary:
    """Tests for summarize_metrics."""

    def test_blocks_per_minute(self, tmp_path):
        """Nonce progression over time gives blocks per minute."""
        sample(tmp_path, "20240101_000000.json", "2024-01-01T00:00:00+00:00", 100)
        sample(tmp_path, "20240101_000200.json", "2024-01-01T00:02:00+00:00", 160)
        (tmp_path / "node_status_20240101_000000.json").write_text(json.dumps({"proxy": "running"}))
        (tmp_path / "node_status_20240101_000100.json").write_text(json.dumps({"proxy": "stopped"}))
        summary = summarize_metrics(tmp_path)
        assert summary.samples == 2
        assert summary.availability == 50.0
        assert (summary.first_nonce, summary.last_nonce) == (100, 160)
        assert summary.blocks_per_minute == 30.0

    def test_corrupt_files_skipped(self, tmp_path):
        """Unreadable samples are ignored."""
        (tmp_path / "20240101_000000.json").write_text("{")
        summary = summarize_metrics(tmp_path)
        assert summary.samples == 0
        assert summary.blocks_per_minute is None

    def test_missing_directory(self, tmp_path):
        """No metrics directory gives an empty summary."""
        assert summarize_metrics(tmp_path / "none").availability == 0.0


class TestDashboardAndReport:
    """Tests for dashboard and performance report output."""

    def test_dashboard(self, tmp_path):
        """The dashboard polls the configured proxy."""
        index = write_dashboard(tmp_path, MetricsSummary(samples=4, up_samples=3), "http://localhost:7950", 10)
        html = index.read_text()
        assert 'const PROXY = "http://localhost:7950";' in html
        assert "setInterval(refreshData, 10000)" in html
        assert "75.0%" in html

    def test_dashboard_server(self, tmp_path):
        """The server binds to the requested host."""
        server = make_dashboard_server(tmp_path, 0)
        try:
            assert server.server_address[0] == "127.0.0.1"
        finally:
            server.server_close()

    def test_performance_report(self, tmp_path):
        """The report records status and metrics."""
        settings = LocalnetSettings(workspace=tmp_path)
        report = write_performance_report(tmp_path / "reports", MetricsSummary(), settings, running=False)
        text = report.read_text()
        assert "- **Status:** Stopped" in text
        assert "- **Nonce range:** - to -" in text
        assert report.name.startswith("performance_report_")
