"""
Summarize benchmark results, security scans and backups into a Markdown table
and append it to the GitHub Actions job summary.

Missing inputs (no tests run yet, no scans, no backups) are recorded as
"_no data_" rows instead of failing.
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional


def timestamped_path(directory: Path, prefix: str, suffix: str) -> Path:
    """Return directory/<prefix>_<YYYYmmdd_HHMMSS><suffix> without clobbering an existing file."""
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    base = f"{prefix}_{stamp}" if prefix else stamp
    candidate, counter = directory / f"{base}{suffix}", 1
    while candidate.exists():
        candidate = directory / f"{base}_{counter}{suffix}"
        counter += 1
    return candidate


def percent(part: float, whole: float) -> float:
    """Return percentage helper rounded to 0.1 with zero guard."""
    if whole == 0:
        return 0.0
    return round((part / whole) * 100, 1)


def bar(pct: float, width: int = 20) -> str:
    filled = int(round((pct / 100) * width))
    filled = max(0, min(width, filled))
    return "█" * filled + "░" * (width - filled)


def format_row(metric: str, value: str, detail: str) -> str:
    """Helper for Markdown table rows."""
    return f"| {metric} | {value} | {detail} |"


def _load_json(path: Path) -> Optional[dict]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def load_test_results(results_dir: Path) -> Optional[Dict[str, object]]:
    """Latest outcome per benchmark test from test-results/*.json."""
    if not results_dir.is_dir():
        return None
    latest: Dict[str, dict] = {}
    for path in sorted(results_dir.glob("*.json"), key=lambda p: p.stat().st_mtime):
        data = _load_json(path)
        if not data or "test" not in data:
            continue
        latest[data["test"]] = data
    if not latest:
        return None
    passed = [name for name, data in latest.items() if data.get("success")]
    failed = sorted(set(latest) - set(passed))
    return {"total": len(latest), "passed": len(passed), "failed": failed}


def load_security(reports_dir: Path) -> Optional[Dict[str, object]]:
    """Issue counts from rule-scan reports plus the most recent audit."""
    if not reports_dir.is_dir():
        return None
    scans = sorted(reports_dir.glob("multiversx_scan_*.json"))
    audits = sorted(reports_dir.glob("comprehensive_audit_*.md"))
    if not scans and not audits:
        return None
    issues = 0
    for path in scans:
        data = _load_json(path) or {}
        issues += int(data.get("issues_count", 0))
    return {
        "scans": len(scans),
        "issues": issues,
        "latest_audit": audits[-1].name if audits else None,
    }


def load_backups(backups_dir: Path) -> Optional[Dict[str, object]]:
    if not backups_dir.is_dir():
        return None
    archives = sorted(backups_dir.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime)
    if not archives:
        return None
    return {
        "count": len(archives),
        "latest": archives[-1].name,
        "size_mb": round(sum(p.stat().st_size for p in archives) / (1024 * 1024), 2),
    }


def summarize(workspace: Path) -> str:
    summary_lines = ["### Localnet Summary", "", "| Metric | Result | Details |", "| --- | --- | --- |"]

    tests = load_test_results(workspace / "test-results")
    if tests:
        pct = percent(tests["passed"], tests["total"])
        failed: List[str] = tests["failed"]
        detail = f"Failed: {', '.join(failed)}" if failed else "All passing"
        summary_lines.append(
            format_row("Benchmarks", f"{tests['passed']}/{tests['total']} {bar(pct)}", detail)
        )
    else:
        summary_lines.append(format_row("Benchmarks", "_no data_", "No results in test-results/."))

    security = load_security(workspace / "security" / "reports")
    if security:
        detail = f"{security['scans']} rule scans"
        if security["latest_audit"]:
            detail += f", latest audit `{security['latest_audit']}`"
        summary_lines.append(format_row("Security findings", str(security["issues"]), detail))
    else:
        summary_lines.append(format_row("Security findings", "_not run_", "Run `mxl security audit`."))

    backups = load_backups(workspace / "backups")
    if backups:
        detail = f"Latest `{backups['latest']}`, {backups['size_mb']} MB total"
        summary_lines.append(format_row("Backups", str(backups["count"]), detail))
    else:
        summary_lines.append(format_row("Backups", "_none_", "Run `mxl backup create`."))

    summary_lines.append("")
    summary_lines.append("Artifacts: `test-results/`, `security/reports/`, `backups/`.")
    summary_lines.append("")
    return "\n".join(summary_lines) + "\n"


def publish(summary_text: str, environ: Optional[Mapping[str, str]] = None) -> Optional[Path]:
    """Append to $GITHUB_STEP_SUMMARY when set; returns the file written, or None."""
    environ = os.environ if environ is None else environ
    summary_path = environ.get("GITHUB_STEP_SUMMARY")
    if not summary_path:
        return None
    with open(summary_path, "a", encoding="utf-8") as handle:
        handle.write(summary_text)
    return Path(summary_path)
