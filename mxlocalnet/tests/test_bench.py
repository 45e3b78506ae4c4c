"""
Unit tests for bench.py.

mxpy and the proxy health check are mocked; clocks and sleeps are injected.
"""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from mxlocalnet.bench import (
    DEFAULT_ENDPOINTS,
    TxStats,
    connectivity_test,
    contract_deployment_test,
    generate_wallets,
    save_result,
    stress_test,
    throughput_test,
    wallet_addresses,
    write_test_report,
)
from mxlocalnet.errors import MxpyError

ALICE = "erd1qyu5wthldzr8wx5c9ucg8kjagg0jfs53s8nr3zpz3hypefsdd8ssycr6th"
BOB = "erd1spyavw0956vq68xj8y4tenjpq2wd5a9p2c6j8gsz7ztyrnpxrruqzu66jx"


def fake_clock(*values):
    it = iter(values)
    return lambda: next(it)


class TestResults:
    """Tests for result files."""

    def test_save_result_shape(self, tmp_path):
        """Result files carry test, success and timestamp."""
        path = save_result(tmp_path / "results", "demo", True, tps=4.2)
        data = json.loads(path.read_text())
        assert path.name == "demo_test.json"
        assert data["test"] == "demo"
        assert data["success"] is True
        assert data["tps"] == 4.2
        assert "timestamp" in data

    def test_tps(self):
        """TPS divides successes by duration and guards zero."""
        assert TxStats(total=10, successful=9, duration=3).tps == 3.0
        assert TxStats(successful=5).tps == 0.0


class TestConnectivity:
    """Tests for connectivity_test."""

    def test_all_up(self, tmp_path):
        """Every endpoint is checked and the result saved."""
        with patch("mxlocalnet.bench.check_health", return_value=(True, 7, "UP")) as health:
            checks = connectivity_test("http://localhost:7950/", tmp_path)
        assert len(checks) == len(DEFAULT_ENDPOINTS)
        assert health.call_args_list[0][0][0] == "http://localhost:7950/network/status"
        data = json.loads((tmp_path / "connectivity_test.json").read_text())
        assert data["success"] is True
        assert data["total_ms"] == 7 * len(DEFAULT_ENDPOINTS)

    def test_one_down(self, tmp_path):
        """A failing endpoint fails the test."""
        answers = [(True, 1, "UP"), (False, 0, "timed out"), (True, 1, "UP")]
        with patch("mxlocalnet.bench.check_health", side_effect=answers):
            checks = connectivity_test("http://localhost:7950", tmp_path)
        assert [c.ok for c in checks] == [True, False, True]
        assert json.loads((tmp_path / "connectivity_test.json").read_text())["success"] is False


class TestWallets:
    """Tests for wallet generation."""

    def test_existing_wallets_kept(self, tmp_path):
        """Only missing wallets are generated."""
        (tmp_path / "test_wallet_1.pem").write_text("existing")
        mxpy = MagicMock()
        wallets = generate_wallets(mxpy, tmp_path, count=3)
        assert [w.name for w in wallets] == ["test_wallet_1.pem", "test_wallet_2.pem", "test_wallet_3.pem"]
        assert mxpy.wallet_new.call_count == 2

    def test_unreadable_wallets_skipped(self):
        """Wallets whose address cannot be read are dropped."""
        mxpy = MagicMock()
        mxpy.wallet_pem_address.side_effect = [ALICE, ValueError("bad pem")]
        addresses = wallet_addresses(mxpy, [Path("a.pem"), Path("b.pem")])
        assert addresses == {Path("a.pem"): ALICE}


class TestThroughput:
    """Tests for throughput_test."""

    def test_round_robin(self, tmp_path):
        """Receivers are used in turn until the duration passes."""
        mxpy = MagicMock()
        stats = throughput_test(
            mxpy, Path("alice.pem"), [ALICE, BOB], 2, tmp_path, "http://localhost:7950",
            clock=fake_clock(0.0, 0.5, 1.0, 1.5, 2.0, 2.0), sleep=lambda _: None,
        )
        receivers = [c[1]["receiver"] for c in mxpy.tx_new.call_args_list]
        assert receivers == [ALICE, BOB, ALICE]
        assert (stats.total, stats.successful, stats.failed) == (3, 3, 0)
        assert stats.tps == 1.5
        data = json.loads((tmp_path / "throughput_test.json").read_text())
        assert data["success"] is True
        assert data["total_transactions"] == 3

    def test_failures_counted(self, tmp_path):
        """Failed sends are counted and fail the test."""
        mxpy = MagicMock()
        mxpy.tx_new.side_effect = MxpyError(["mxpy", "tx", "new"], 1, "nonce too low")
        stats = throughput_test(
            mxpy, Path("alice.pem"), [BOB], 1, tmp_path, "http://localhost:7950",
            clock=fake_clock(0.0, 0.5, 1.0, 1.0), sleep=lambda _: None,
        )
        assert stats.failed == 1
        assert json.loads((tmp_path / "throughput_test.json").read_text())["success"] is False

    def test_requires_receiver(self, tmp_path):
        """No receivers raises ValueError."""
        with pytest.raises(ValueError, match="At least one receiver"):
            throughput_test(MagicMock(), Path("a.pem"), [], 1, tmp_path, "http://localhost:7950")


class TestContractDeployment:
    """Tests for contract_deployment_test."""

    def test_missing_bytecode(self, tmp_path):
        """Missing bytecode raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Contract bytecode not found"):
            contract_deployment_test(MagicMock(), tmp_path / "c.wasm", tmp_path / "a.pem", tmp_path, "http://x")

    def test_success(self, tmp_path):
        """A deploy writes its outfile under results."""
        wasm, pem = tmp_path / "c.wasm", tmp_path / "alice.pem"
        wasm.write_bytes(b"\0asm")
        pem.write_text("key")
        mxpy = MagicMock()
        result = contract_deployment_test(mxpy, wasm, pem, tmp_path / "results", "http://localhost:7950")
        assert result.success
        assert mxpy.contract_deploy.call_args[1]["outfile"] == tmp_path / "results" / "deploy_result.json"
        assert json.loads((tmp_path / "results" / "contract_test.json").read_text())["success"] is True

    def test_failure_recorded(self, tmp_path):
        """mxpy failures are recorded, not raised."""
        wasm, pem = tmp_path / "c.wasm", tmp_path / "alice.pem"
        wasm.write_bytes(b"\0asm")
        pem.write_text("key")
        mxpy = MagicMock()
        mxpy.contract_deploy.side_effect = MxpyError(["mxpy"], 1, "out of gas")
        result = contract_deployment_test(mxpy, wasm, pem, tmp_path, "http://localhost:7950")
        assert not result.success
        assert "out of gas" in result.error


class TestStress:
    """Tests for stress_test."""

    def test_streams(self, tmp_path):
        """Each stream sends to the next wallet; failures are totalled."""
        wallets = {Path("w1.pem"): ALICE, Path("w2.pem"): BOB}
        mxpy = MagicMock()

        def send(pem, **kwargs):
            if pem == Path("w2.pem"):
                raise MxpyError(["mxpy"], 1, "insufficient funds")

        mxpy.tx_new.side_effect = send
        result = stress_test(mxpy, wallets, tmp_path, "http://localhost:7950", tx_per_stream=3, sleep=lambda _: None)
        assert result.streams == 2
        assert (result.stats.total, result.stats.successful, result.stats.failed) == (6, 3, 3)
        receivers = {(c[1]["pem"], c[1]["receiver"]) for c in mxpy.tx_new.call_args_list}
        assert receivers == {(Path("w1.pem"), BOB), (Path("w2.pem"), ALICE)}
        assert json.loads((tmp_path / "stress_test.json").read_text())["success"] is False

    def test_requires_wallets(self, tmp_path):
        """An empty wallet map raises ValueError."""
        with pytest.raises(ValueError, match="at least one wallet"):
            stress_test(MagicMock(), {}, tmp_path, "http://localhost:7950")


class TestReport:
    """Tests for write_test_report."""

    def test_report_lists_results(self, tmp_path):
        """Each result file becomes a table row with details."""
        save_result(tmp_path, "connectivity", True)
        save_result(tmp_path, "throughput", False)
        report = write_test_report(tmp_path, "http://localhost:7950", mxpy_version="9.5.1")
        text = report.read_text()
        assert "| connectivity | PASS |" in text
        assert "| throughput | FAIL |" in text
        assert "- **mxpy:** 9.5.1" in text
        assert "### throughput" in text
