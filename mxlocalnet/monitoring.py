"""
Network metrics collection, the static HTML dashboard and the performance report.

Samples are plain JSON files in data/metrics/:
  <YYYYmmdd_HHMMSS>.json              {"timestamp", "status": <proxy /network/status data>}
  node_status_<YYYYmmdd_HHMMSS>.json  {"proxy": "running"|"stopped", "timestamp"}
"""

from __future__ import annotations

import functools
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .errors import ProxyError
from .proxy import ProxyClient
from .reports import percent, timestamped_path
from .runtime_env import LocalnetSettings

LOGGER = logging.getLogger(__name__)

NODE_STATUS_PREFIX = "node_status_"


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


class MetricsCollector:
    """Poll the proxy and persist one sample per call."""

    def __init__(self, proxy: ProxyClient, metrics_dir: Path):
        self.proxy = proxy
        self.metrics_dir = metrics_dir

    def collect(self) -> Dict[str, object]:
        self.metrics_dir.mkdir(parents=True, exist_ok=True)
        timestamp = _now_iso()
        record: Dict[str, object] = {"timestamp": timestamp, "proxy": "stopped"}
        try:
            status = self.proxy.network_status()
        except ProxyError as exc:
            LOGGER.warning("Could not fetch network metrics: %s", exc)
        else:
            record["proxy"] = "running"
            record["status"] = status
            sample = timestamped_path(self.metrics_dir, "", ".json")
            sample.write_text(json.dumps({"timestamp": timestamp, "status": status}, indent=2), encoding="utf-8")
            LOGGER.info("Network metrics saved to %s", sample)

        node_status = timestamped_path(self.metrics_dir, "node_status", ".json")
        node_status.write_text(json.dumps({"proxy": record["proxy"], "timestamp": timestamp}), encoding="utf-8")
        return record

    def watch(
        self,
        interval: float,
        iterations: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
        on_sample: Optional[Callable[[Dict[str, object]], None]] = None,
    ) -> int:
        """Collect every interval seconds; runs until interrupted when iterations is None."""
        count = 0
        while iterations is None or count < iterations:
            record = self.collect()
            count += 1
            if on_sample is not None:
                on_sample(record)
            if iterations is not None and count >= iterations:
                break
            sleep(interval)
        return count


@dataclass
class MetricsSummary:
    samples: int = 0
    up_samples: int = 0
    first_nonce: Optional[int] = None
    last_nonce: Optional[int] = None
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    @property
    def availability(self) -> float:
        return percent(self.up_samples, self.samples)

    @property
    def blocks_per_minute(self) -> Optional[float]:
        if None in (self.first_nonce, self.last_nonce, self.first_seen, self.last_seen):
            return None
        elapsed = (self.last_seen - self.first_seen).total_seconds()
        if elapsed <= 0:
            return None
        return round((self.last_nonce - self.first_nonce) / elapsed * 60, 2)


def _read(path: Path) -> Optional[dict]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _parse_time(value: object) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def summarize_metrics(metrics_dir: Path) -> MetricsSummary:
    summary = MetricsSummary()
    if not metrics_dir.is_dir():
        return summary

    for path in sorted(metrics_dir.glob(f"{NODE_STATUS_PREFIX}*.json")):
        data = _read(path)
        if data is None:
            continue
        summary.samples += 1
        if data.get("proxy") == "running":
            summary.up_samples += 1

    points = []
    for path in metrics_dir.glob("*.json"):
        if path.name.startswith(NODE_STATUS_PREFIX):
            continue
        data = _read(path)
        if not data:
            continue
        seen = _parse_time(data.get("timestamp"))
        nonce = (data.get("status") or {}).get("erd_nonce")
        if seen is not None and isinstance(nonce, int):
            points.append((seen, nonce))
    if points:
        points.sort()
        summary.first_seen, summary.first_nonce = points[0]
        summary.last_seen, summary.last_nonce = points[-1]
    return summary


DASHBOARD_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>MultiversX Localnet Dashboard</title>
    <style>
        body {{ font-family: 'Segoe UI', Tahoma, sans-serif; background: #1b1f3a; color: #eee; margin: 0; }}
        .container {{ max-width: 1100px; margin: 0 auto; padding: 20px; }}
        .grid {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(220px, 1fr)); gap: 16px; }}
        .card {{ background: #262b52; border-radius: 10px; padding: 16px; }}
        .value {{ font-size: 2em; font-weight: bold; }}
        .up {{ color: #4caf50; }} .down {{ color: #f44336; }}
    </style>
</head>
<body>
<div class="container">
    <h1>MultiversX Localnet Dashboard</h1>
    <p>Proxy: <code>{proxy_url}</code> &middot; generated {generated}</p>
    <div class="grid">
        <div class="card"><div>Status</div><div id="status" class="value">...</div></div>
        <div class="card"><div>Epoch</div><div id="epoch" class="value">-</div></div>
        <div class="card"><div>Round</div><div id="round" class="value">-</div></div>
        <div class="card"><div>Nonce</div><div id="nonce" class="value">-</div></div>
        <div class="card"><div>Availability</div><div class="value">{availability}%</div></div>
        <div class="card"><div>Blocks / minute</div><div class="value">{blocks_per_minute}</div></div>
    </div>
</div>
<script>
    const PROXY = "{proxy_url}";
    async function refreshData() {{
        const status = document.getElementById("status");
        try {{
            const response = await fetch(PROXY + "/network/status");
            const body = await response.json();
            const s = (body.data || {{}}).status || {{}};
            status.textContent = "UP";
            status.className = "value up";
            document.getElementById("epoch").textContent = s.erd_epoch_number ?? "-";
            document.getElementById("round").textContent = s.erd_round_number ?? "-";
            document.getElementById("nonce").textContent = s.erd_nonce ?? "-";
        }} catch (err) {{
            status.textContent = "DOWN";
            status.className = "value down";
        }}
    }}
    refreshData();
    setInterval(refreshData, {refresh_ms});
</script>
</body>
</html>
"""


def write_dashboard(
    dashboard_dir: Path,
    summary: MetricsSummary,
    proxy_url: str,
    refresh_seconds: int = 5,
) -> Path:
    dashboard_dir.mkdir(parents=True, exist_ok=True)
    bpm = summary.blocks_per_minute
    html = DASHBOARD_HTML.format(
        proxy_url=proxy_url,
        generated=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        availability=summary.availability,
        blocks_per_minute="-" if bpm is None else bpm,
        refresh_ms=refresh_seconds * 1000,
    )
    index = dashboard_dir / "index.html"
    index.write_text(html, encoding="utf-8")
    return index


def make_dashboard_server(dashboard_dir: Path, port: int, host: str = "127.0.0.1") -> ThreadingHTTPServer:
    handler = functools.partial(SimpleHTTPRequestHandler, directory=str(dashboard_dir))
    return ThreadingHTTPServer((host, port), handler)


def serve_dashboard(dashboard_dir: Path, port: int, host: str = "127.0.0.1") -> None:
    """Serve the dashboard directory until interrupted."""
    server = make_dashboard_server(dashboard_dir, port, host)
    LOGGER.info("Dashboard available at http://%s:%d/", host, port)
    try:
        server.serve_forever()
    finally:
        server.server_close()


def write_performance_report(
    reports_dir: Path,
    summary: MetricsSummary,
    settings: LocalnetSettings,
    running: bool,
) -> Path:
    report = timestamped_path(reports_dir, "performance_report", ".md")
    bpm = summary.blocks_per_minute
    lines: List[str] = [
        "# MultiversX Localnet Performance Report",
        "",
        f"**Generated:** {datetime.now():%Y-%m-%d %H:%M:%S}",
        "",
        "## Network Overview",
        "",
        f"- **Status:** {'Running' if running else 'Stopped'}",
        f"- **Proxy:** {settings.proxy_url}",
        f"- **Monitoring Port:** {settings.monitoring_port}",
        f"- **Log Directory:** {settings.logs_dir}",
        "",
        "## Metrics Summary",
        "",
        f"- **Samples:** {summary.samples}",
        f"- **Availability:** {summary.availability}%",
        f"- **Nonce range:** {summary.first_nonce if summary.first_nonce is not None else '-'}"
        f" to {summary.last_nonce if summary.last_nonce is not None else '-'}",
        f"- **Blocks per minute:** {'-' if bpm is None else bpm}",
        "",
        "## Recommendations",
        "",
        "1. Monitor memory usage during high TPS periods",
        "2. Check disk space regularly for log files",
        "3. Consider increasing round duration for stability",
        "4. Optimize validator configuration for better performance",
        "",
        "## Files Generated",
        "",
        f"- Metrics data: `{settings.data_dir / 'metrics'}`",
        f"- Dashboard: `{settings.workspace / 'dashboard' / 'index.html'}`",
        f"- Logs: `{settings.logs_dir}`",
        "",
    ]
    report.write_text("\n".join(lines), encoding="utf-8")
    return report
