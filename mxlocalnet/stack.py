"""
Prometheus + Grafana + node-exporter + alertmanager stack under docker compose.

`generate()` writes every config file the compose services mount; the other
methods shell out to whichever compose command is installed.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Type
from urllib.error import URLError
from urllib.parse import urlencode
from urllib.request import urlopen

import yaml

from .errors import MxLocalnetError, StackError
from .processes import CommandResult, resolve_compose_command, run_command

LOGGER = logging.getLogger(__name__)

SERVICES = {
    "Grafana": "http://localhost:3000",
    "Prometheus": "http://localhost:9090",
    "Node Exporter": "http://localhost:9100",
    "Alert Manager": "http://localhost:9093",
}


def prometheus_config() -> Dict[str, object]:
    def job(name: str, target: str, interval: str, metrics_path: Optional[str] = "/metrics") -> Dict[str, object]:
        entry: Dict[str, object] = {
            "job_name": name,
            "static_configs": [{"targets": [target]}],
            "scrape_interval": interval,
        }
        if metrics_path:
            entry["metrics_path"] = metrics_path
        return entry

    return {
        "global": {
            "scrape_interval": "15s",
            "evaluation_interval": "15s",
            "external_labels": {"monitor": "multiversx-monitor", "environment": "localnet"},
        },
        "rule_files": ["alert.rules.yml"],
        "alerting": {"alertmanagers": [{"static_configs": [{"targets": ["alertmanager:9093"]}]}]},
        "scrape_configs": [
            job("prometheus", "localhost:9090", "5s", None),
            job("multiversx-proxy", "host.docker.internal:7950", "10s"),
            job("multiversx-node-0", "host.docker.internal:8080", "10s"),
            job("multiversx-node-1", "host.docker.internal:8081", "10s"),
            job("system-metrics", "node-exporter:9100", "15s", None),
        ],
    }


ALERT_RULES = {
    "groups": [
        {
            "name": "multiversx.rules",
            "rules": [
                {
                    "alert": "MultiversXNodeDown",
                    "expr": 'up{job=~"multiversx-.*"} == 0',
                    "for": "1m",
                    "labels": {"severity": "critical"},
                    "annotations": {
                        "summary": "MultiversX node {{ $labels.instance }} is down",
                        "description": "MultiversX node {{ $labels.instance }} has been down for more than 1 minute.",
                    },
                },
                {
                    "alert": "HighCPUUsage",
                    "expr": '100 - (avg by(instance) (rate(node_cpu_seconds_total{mode="idle"}[5m])) * 100) > 80',
                    "for": "2m",
                    "labels": {"severity": "warning"},
                    "annotations": {
                        "summary": "High CPU usage on {{ $labels.instance }}",
                        "description": "CPU usage is above 80% for more than 2 minutes.",
                    },
                },
            ],
        }
    ]
}

GRAFANA_DATASOURCE = {
    "apiVersion": 1,
    "datasources": [
        {
            "name": "Prometheus",
            "type": "prometheus",
            "access": "proxy",
            "url": "http://prometheus:9090",
            "isDefault": True,
            "editable": True,
        }
    ],
}

GRAFANA_PROVIDER = {
    "apiVersion": 1,
    "providers": [
        {
            "name": "MultiversX Dashboards",
            "orgId": 1,
            "folder": "MultiversX",
            "type": "file",
            "disableDeletion": False,
            "updateIntervalSeconds": 10,
            "allowUiUpdates": True,
            "options": {"path": "/var/lib/grafana/dashboards"},
        }
    ],
}

GRAFANA_DASHBOARD = {
    "title": "MultiversX Overview",
    "uid": "multiversx-overview",
    "tags": ["multiversx", "blockchain"],
    "schemaVersion": 27,
    "version": 1,
    "time": {"from": "now-1h", "to": "now"},
    "panels": [
        {
            "id": 1,
            "type": "gauge",
            "title": "Proxy Status",
            "gridPos": {"h": 8, "w": 8, "x": 0, "y": 0},
            "targets": [{"expr": 'up{job="multiversx-proxy"}', "legendFormat": "Proxy", "refId": "A"}],
        },
        {
            "id": 2,
            "type": "timeseries",
            "title": "Node Availability",
            "gridPos": {"h": 8, "w": 16, "x": 8, "y": 0},
            "targets": [{"expr": 'up{job=~"multiversx-node-.*"}', "legendFormat": "{{job}}", "refId": "A"}],
        },
    ],
}

ALERTMANAGER_CONFIG = {
    "route": {"receiver": "default", "group_by": ["alertname"], "group_wait": "30s", "repeat_interval": "4h"},
    "receivers": [{"name": "default"}],
}


def compose_config() -> Dict[str, object]:
    return {
        "services": {
            "prometheus": {
                "image": "prom/prometheus:latest",
                "container_name": "mvx-prometheus",
                "ports": ["9090:9090"],
                "volumes": ["./config/prometheus:/etc/prometheus:ro", "./data/prometheus:/prometheus"],
                "command": [
                    "--config.file=/etc/prometheus/prometheus.yml",
                    "--storage.tsdb.path=/prometheus",
                    "--storage.tsdb.retention.time=200h",
                    "--web.enable-lifecycle",
                ],
                "extra_hosts": ["host.docker.internal:host-gateway"],
                "restart": "unless-stopped",
                "networks": ["monitoring"],
            },
            "grafana": {
                "image": "grafana/grafana:latest",
                "container_name": "mvx-grafana",
                "ports": ["3000:3000"],
                "volumes": [
                    "./data/grafana:/var/lib/grafana",
                    "./config/grafana/datasources:/etc/grafana/provisioning/datasources:ro",
                    "./config/grafana/dashboards/dashboard.yml:/etc/grafana/provisioning/dashboards/dashboard.yml:ro",
                    "./config/grafana/dashboards:/var/lib/grafana/dashboards:ro",
                ],
                "environment": ["GF_SECURITY_ADMIN_PASSWORD=admin", "GF_USERS_ALLOW_SIGN_UP=false"],
                "restart": "unless-stopped",
                "networks": ["monitoring"],
                "depends_on": ["prometheus"],
            },
            "node-exporter": {
                "image": "prom/node-exporter:latest",
                "container_name": "mvx-node-exporter",
                "ports": ["9100:9100"],
                "volumes": ["/proc:/host/proc:ro", "/sys:/host/sys:ro", "/:/rootfs:ro"],
                "command": ["--path.procfs=/host/proc", "--path.sysfs=/host/sys"],
                "restart": "unless-stopped",
                "networks": ["monitoring"],
            },
            "alertmanager": {
                "image": "prom/alertmanager:latest",
                "container_name": "mvx-alertmanager",
                "ports": ["9093:9093"],
                "volumes": ["./config/alertmanager:/etc/alertmanager:ro"],
                "restart": "unless-stopped",
                "networks": ["monitoring"],
            },
        },
        "networks": {"monitoring": {"driver": "bridge"}},
    }


def dump_yaml(path: Path, payload: Dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(payload, sort_keys=False, default_flow_style=False), encoding="utf-8")


class ComposeProject:
    """
    A generated docker compose project under one root directory.

    Subclasses write their files in `generate()`; `error` is the exception
    raised when compose fails and `setup_hint` the command that creates the
    project.
    """

    error: Type[MxLocalnetError] = StackError
    setup_hint = "mxl stack setup"

    def __init__(self, root: Path, dry_run: bool = False):
        self.root = root
        self.config_dir = root / "config"
        self.data_dir = root / "data"
        self.compose_file = root / "docker-compose.yml"
        self.dry_run = dry_run

    def generate(self) -> List[Path]:
        raise NotImplementedError

    def _compose(self, *args: str, capture: bool = True) -> CommandResult:
        if not self.compose_file.is_file():
            raise self.error(f"{self.compose_file} not found. Run: {self.setup_hint}")
        try:
            compose = resolve_compose_command()
        except RuntimeError as exc:
            if not self.dry_run:
                raise self.error(str(exc)) from exc
            compose = ["docker", "compose"]
        cmd = compose + ["-f", str(self.compose_file), *args]
        result = run_command(cmd, cwd=self.root, dry_run=self.dry_run, capture=capture)
        if not result.ok:
            raise self.error(f"{' '.join(cmd)} failed: {result.stderr.strip()}")
        return result

    def up(self) -> CommandResult:
        if not self.compose_file.is_file():
            LOGGER.warning("Compose file not found, generating %s first", self.root.name)
            self.generate()
        return self._compose("up", "-d")

    def down(self, volumes: bool = False) -> CommandResult:
        args = ["down"]
        if volumes:
            args += ["-v", "--remove-orphans"]
        return self._compose(*args)

    def ps(self) -> str:
        return self._compose("ps").stdout

    def logs(self, follow: bool = False, tail: int = 100) -> CommandResult:
        args = ["logs", f"--tail={tail}"]
        if follow:
            args.append("-f")
        return self._compose(*args, capture=False)


class MonitoringStack(ComposeProject):
    """docker compose project rooted at `<workspace>/monitoring`."""

    def generate(self) -> List[Path]:
        files = {
            self.config_dir / "prometheus" / "prometheus.yml": prometheus_config(),
            self.config_dir / "prometheus" / "alert.rules.yml": ALERT_RULES,
            self.config_dir / "grafana" / "datasources" / "prometheus.yml": GRAFANA_DATASOURCE,
            self.config_dir / "grafana" / "dashboards" / "dashboard.yml": GRAFANA_PROVIDER,
            self.config_dir / "alertmanager" / "alertmanager.yml": ALERTMANAGER_CONFIG,
            self.compose_file: compose_config(),
        }
        for path, payload in files.items():
            dump_yaml(path, payload)
        dashboard = self.config_dir / "grafana" / "dashboards" / "multiversx-overview.json"
        dashboard.write_text(json.dumps(GRAFANA_DASHBOARD, indent=2) + "\n", encoding="utf-8")
        for sub in ("prometheus", "grafana"):
            (self.data_dir / sub).mkdir(parents=True, exist_ok=True)
        LOGGER.info("Monitoring stack generated in %s", self.root)
        return list(files) + [dashboard]


def query_up(prometheus_url: str = "http://localhost:9090", job_regex: str = "multiversx-.*", timeout: int = 5) -> Dict[str, str]:
    """Return {job: "UP"|"DOWN"} for the Prometheus `up` series of matching jobs."""
    query = urlencode({"query": f'up{{job=~"{job_regex}"}}'})
    url = f"{prometheus_url.rstrip('/')}/api/v1/query?{query}"
    try:
        with urlopen(url, timeout=timeout) as response:
            payload = json.loads(response.read().decode("utf-8"))
    except (URLError, OSError) as exc:
        raise StackError(f"Prometheus is not accessible at {prometheus_url}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise StackError(f"Unexpected Prometheus response: {exc}") from exc

    if payload.get("status") != "success":
        raise StackError(f"Prometheus query failed: {payload.get('error', 'unknown error')}")
    jobs: Dict[str, str] = {}
    for series in payload.get("data", {}).get("result", []):
        job = series.get("metric", {}).get("job", "unknown")
        value = series.get("value") or [None, "0"]
        jobs[job] = "UP" if str(value[1]) == "1" else "DOWN"
    return jobs
