"""
Unit tests for security.py.

Tests cover:
- MultiversX rule scanning on a sample Rust contract
- Rules file round trip and validation
- Gas heuristics
- Mythril/Slither/Aderyn wrappers with run_command mocked
- Audit, quick scan and compliance workflows
"""

import json
import os
import time
from unittest.mock import patch

import pytest

from mxlocalnet.errors import ScanError
from mxlocalnet.processes import CommandResult
from mxlocalnet.security import (
    DEFAULT_RULES,
    analyze_gas,
    audit,
    compliance_check,
    find_rust_contracts,
    install_tools,
    list_reports,
    load_rules,
    quick_scan,
    run_aderyn,
    run_mythril,
    run_slither,
    scan_multiversx_rules,
    write_gas_report,
    write_security_configs,
)

CONTRACT = "\n".join([
    "use multiversx_sc::imports::*;",
    "",
    "#[multiversx_sc::contract]",
    "pub trait Adder {",
    "    #[endpoint]",
    "    fn add(&self, a: u64, b: u64) -> u64 {",
    "        a + b",
    "    }",
    "",
    "    #[view(getOwner)]",
    "    fn owner(&self) -> ManagedAddress;",
    "",
    '    #[payable("EGLD")]',
    "    #[endpoint]",
    "    fn deposit(&self) {",
    "        let safe = a.checked_add(b);",
    "        // storage_set in a comment",
    "        self.tx().to(&caller).transfer();",
    "    }",
    "}",
])


@pytest.fixture
def contract(tmp_path):
    path = tmp_path / "adder" / "src" / "lib.rs"
    path.parent.mkdir(parents=True)
    path.write_text(CONTRACT)
    return path


class TestRuleScan:
    """Tests for scan_multiversx_rules."""

    def test_findings(self, contract):
        """Each rule reports its matching lines."""
        findings = scan_multiversx_rules(contract)
        assert [(f.rule_id, f.line) for f in findings] == [("MX-002", 5), ("MX-003", 7), ("MX-005", 18)]
        assert findings[1].severity == "high"
        assert findings[1].text == "a + b"

    def test_payable_endpoint_exempt(self, contract):
        """An endpoint preceded by #[payable] is not reported."""
        assert 14 not in [f.line for f in scan_multiversx_rules(contract) if f.rule_id == "MX-002"]

    def test_comments_skipped(self, contract):
        """Commented-out code never matches."""
        assert all(f.line != 17 for f in scan_multiversx_rules(contract))

    def test_missing_file(self, tmp_path):
        """A missing contract raises ScanError."""
        with pytest.raises(ScanError, match="Contract file not found"):
            scan_multiversx_rules(tmp_path / "nope.rs")


class TestRulesFile:
    """Tests for the YAML rules file."""

    def test_round_trip(self, tmp_path):
        """Written configs load back as the built-in rules."""
        written = write_security_configs(tmp_path)
        assert [p.name for p in written] == ["mythril.yml", "slither.config.json", "multiversx_rules.yml"]
        assert load_rules(tmp_path) == DEFAULT_RULES

    def test_absent_file_uses_defaults(self, tmp_path):
        """No rules file means built-in rules."""
        assert load_rules(tmp_path) == DEFAULT_RULES
        assert load_rules(None) == DEFAULT_RULES

    def test_custom_rule(self, tmp_path, contract):
        """Custom rules are applied with defaults filled in."""
        (tmp_path / "multiversx_rules.yml").write_text(
            "rules:\n  - id: X-1\n    pattern: checked_add\n    severity: LOW\n"
        )
        rules = load_rules(tmp_path)
        assert rules[0].severity == "low"
        assert [f.line for f in scan_multiversx_rules(contract, rules)] == [16]

    def test_invalid_pattern(self, tmp_path):
        """A bad regex raises ScanError."""
        (tmp_path / "multiversx_rules.yml").write_text("rules:\n  - id: X-1\n    pattern: '('\n")
        with pytest.raises(ScanError, match="Invalid rule"):
            load_rules(tmp_path)

    def test_missing_pattern(self, tmp_path):
        """A rule without a pattern raises ScanError."""
        (tmp_path / "multiversx_rules.yml").write_text("rules:\n  - id: X-1\n")
        with pytest.raises(ScanError, match="Invalid rule"):
            load_rules(tmp_path)


class TestGas:
    """Tests for gas analysis."""

    def test_counts_and_recommendations(self, tmp_path):
        """Heavy contracts get recommendations."""
        source = tmp_path / "heavy.rs"
        lines = ["self.storage_set(&key, &value);"] * 11 + ["for x in items {}"] * 4 + ["let y = x.pow(2);"]
        source.write_text("\n".join(lines))
        report = analyze_gas(source)
        assert report.storage_ops == 11
        assert report.loops == 4
        assert report.math_ops == 1
        assert report.recommendations == [
            "Consider batching storage operations",
            "Review loop efficiency and gas limits",
        ]

    def test_report_file(self, tmp_path, contract):
        """The gas report lists counts and 'None' without recommendations."""
        path = write_gas_report(analyze_gas(contract), tmp_path / "reports")
        text = path.read_text()
        assert path.name.startswith("gas_analysis_")
        assert "Storage operations: 0" in text
        assert "- None" in text


class TestScanners:
    """Tests for the external scanner wrappers."""

    def test_mythril_not_installed(self, tmp_path):
        """A missing scanner raises ScanError with install hint."""
        sol = tmp_path / "Token.sol"
        sol.write_text("contract Token {}")
        with patch("mxlocalnet.security.which", return_value=None):
            with pytest.raises(ScanError, match="mxl security install"):
                run_mythril(sol, tmp_path / "config", tmp_path / "reports")

    def test_mythril_counts_issues(self, tmp_path):
        """Mythril JSON issues are counted even with a non-zero exit."""
        sol = tmp_path / "Token.sol"
        sol.write_text("contract Token {}")
        write_security_configs(tmp_path / "config")
        stdout = json.dumps({"success": True, "issues": [{"swc-id": "101"}, {"swc-id": "107"}]})
        with patch("mxlocalnet.security.which", return_value="/usr/bin/myth"), \
                patch("mxlocalnet.security.run_command",
                      return_value=CommandResult(cmd=[], returncode=1, stdout=stdout)) as mocked:
            result = run_mythril(sol, tmp_path / "config", tmp_path / "reports")
        cmd = mocked.call_args[0][0]
        assert cmd[:4] == ["myth", "analyze", str(sol), "-o"]
        assert cmd[cmd.index("--max-depth") + 1] == "22"
        assert result.ok and result.issues == 2
        assert result.report_path.is_file()

    def test_mythril_bad_output(self, tmp_path):
        """Non-JSON output is a failed scan."""
        sol = tmp_path / "Token.sol"
        sol.write_text("contract Token {}")
        with patch("mxlocalnet.security.which", return_value="/usr/bin/myth"), \
                patch("mxlocalnet.security.run_command",
                      return_value=CommandResult(cmd=[], returncode=1, stderr="solc missing")):
            result = run_mythril(sol, tmp_path / "config", tmp_path / "reports")
        assert not result.ok
        assert result.error == "solc missing"

    def test_slither_detectors(self, tmp_path):
        """Slither detectors in its JSON file are counted."""
        sol = tmp_path / "Token.sol"
        sol.write_text("contract Token {}")

        def fake_run(cmd, **kwargs):
            out = cmd[cmd.index("--json") + 1]
            with open(out, "w") as handle:
                json.dump({"success": True, "results": {"detectors": [{}, {}, {}]}}, handle)
            return CommandResult(cmd=cmd, returncode=255)

        with patch("mxlocalnet.security.which", return_value="/usr/bin/slither"), \
                patch("mxlocalnet.security.run_command", side_effect=fake_run):
            result = run_slither(sol, tmp_path / "config", tmp_path / "reports")
        assert result.issues == 3

    def test_aderyn_severity_buckets(self, tmp_path, contract):
        """Aderyn issues are summed across severities."""

        def fake_run(cmd, **kwargs):
            out = cmd[cmd.index("--output") + 1]
            payload = {"high_issues": {"issues": [{}]}, "low_issues": {"issues": [{}, {}]}}
            with open(out, "w") as handle:
                json.dump(payload, handle)
            return CommandResult(cmd=cmd, returncode=0)

        with patch("mxlocalnet.security.which", return_value="/usr/bin/aderyn"), \
                patch("mxlocalnet.security.run_command", side_effect=fake_run):
            result = run_aderyn(contract.parent, tmp_path / "reports")
        assert result.issues == 3

    def test_dry_run(self, tmp_path):
        """DRY_RUN scans report nothing and write nothing."""
        sol = tmp_path / "Token.sol"
        sol.write_text("contract Token {}")
        with patch("mxlocalnet.security.which", return_value="/usr/bin/slither"):
            result = run_slither(sol, tmp_path / "config", tmp_path / "reports", dry_run=True)
        assert result.ok and result.report_path is None

    def test_install_skips_without_cargo(self):
        """Aderyn is skipped when cargo is missing."""
        with patch("mxlocalnet.security.which", return_value=None):
            outcome = install_tools(dry_run=True)
        assert outcome["aderyn"] == "skipped (cargo missing)"
        assert outcome["myth"] == "installed"


class TestWorkflows:
    """Tests for audit, quick scan and compliance."""

    def test_find_rust_contracts_skips_target(self, tmp_path, contract):
        """Build output and non-src files are ignored."""
        stray = tmp_path / "adder" / "target" / "src" / "gen.rs"
        stray.parent.mkdir(parents=True)
        stray.write_text("")
        (tmp_path / "adder" / "build.rs").write_text("")
        assert find_rust_contracts(tmp_path) == [contract]

    def test_find_rust_contracts_ignores_ancestor_src(self, tmp_path):
        """A src directory above the target does not make every file a contract."""
        project = tmp_path / "src" / "workspace"
        (project / "adder" / "src").mkdir(parents=True)
        (project / "adder" / "src" / "lib.rs").write_text("")
        (project / "adder" / "build.rs").write_text("")
        (project / "adder" / "tests").mkdir()
        (project / "adder" / "tests" / "it.rs").write_text("")
        assert find_rust_contracts(project) == [project / "adder" / "src" / "lib.rs"]

    def test_find_rust_contracts_from_src(self, tmp_path):
        """Pointing at a src directory scans its sources."""
        src = tmp_path / "adder" / "src"
        src.mkdir(parents=True)
        (src / "lib.rs").write_text("")
        assert find_rust_contracts(src) == [src / "lib.rs"]

    def test_audit_writes_report(self, tmp_path, contract):
        """audit scans every contract and writes the Markdown report."""
        reports = tmp_path / "reports"
        with patch("mxlocalnet.security.which", return_value=None):
            result = audit(tmp_path / "adder", reports, tmp_path / "config")
        assert len(result.findings) == 3
        assert result.scans[0].tool == "aderyn" and not result.scans[0].ok
        text = result.report_path.read_text()
        assert "# MultiversX Security Audit Report" in text
        assert "MX-003 Integer Overflow Risk | HIGH" in text
        assert list(reports.glob("multiversx_scan_*.json"))

    def test_audit_no_contracts(self, tmp_path):
        """An empty target raises ScanError."""
        with pytest.raises(ScanError, match="No smart contracts found"):
            audit(tmp_path, tmp_path / "reports", tmp_path / "config")

    def test_quick_scan_limit(self, tmp_path):
        """quick_scan stops after limit contracts."""
        for name in ("a", "b", "c"):
            path = tmp_path / name / "src" / "lib.rs"
            path.parent.mkdir(parents=True)
            path.write_text(CONTRACT)
        assert len(quick_scan(tmp_path, limit=2)) == 2

    def test_compliance_passes(self, tmp_path):
        """All tools, a recent audit, workflow and tests make it pass."""
        reports = tmp_path / "security" / "reports"
        reports.mkdir(parents=True)
        (reports / "comprehensive_audit_20240101_000000.md").write_text("# audit")
        os.utime(reports / "comprehensive_audit_20240101_000000.md", (time.time() - 60, time.time() - 60))
        (tmp_path / ".github" / "workflows").mkdir(parents=True)
        (tmp_path / ".github" / "workflows" / "security.yml").write_text("on: push")
        (tmp_path / "tests" / "security").mkdir(parents=True)
        with patch("mxlocalnet.security.which", return_value="/usr/bin/tool"):
            report = compliance_check(tmp_path, reports)
        assert report.passed
        assert "Automated security workflow exists" in report.report_path.read_text()
        assert list_reports(reports)[0] == report.report_path

    def test_compliance_fails_without_tools(self, tmp_path):
        """Missing scanners fail the check."""
        with patch("mxlocalnet.security.which", return_value=None):
            report = compliance_check(tmp_path, tmp_path / "reports")
        assert not report.passed
        assert report.tools == {"Mythril": False, "Slither": False, "Aderyn": False}
