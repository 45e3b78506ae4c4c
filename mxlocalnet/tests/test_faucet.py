"""
Unit tests for faucet.py.
"""

import io
import json
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import pytest

from mxlocalnet.errors import FaucetError
from mxlocalnet.faucet import fund_from_wallet, request_tokens, to_denomination

ALICE = "erd1qyu5wthldzr8wx5c9ucg8kjagg0jfs53s8nr3zpz3hypefsdd8ssycr6th"


def response(body: bytes):
    resp = MagicMock()
    resp.read.return_value = body
    resp.__enter__.return_value = resp
    return resp


class TestRequestTokens:
    """Tests for request_tokens."""

    def test_invalid_address(self):
        """Malformed addresses never reach the faucet."""
        with patch("mxlocalnet.faucet.urlopen") as mocked:
            with pytest.raises(ValueError, match="Invalid address format"):
                request_tokens("0xdeadbeef")
        mocked.assert_not_called()

    def test_success(self):
        """A reply mentioning success is reported as such."""
        with patch("mxlocalnet.faucet.urlopen", return_value=response(b'{"status":"success"}')) as mocked:
            result = request_tokens(ALICE, faucet_url="https://faucet.example")
        assert result.success is True
        request = mocked.call_args[0][0]
        assert json.loads(request.data) == {"address": ALICE}
        assert request.get_header("Content-type") == "application/json"

    def test_rate_limited(self):
        """HTTP errors return the body as an unsuccessful result."""
        error = HTTPError("https://faucet.example", 429, "Too Many", {}, io.BytesIO(b"rate limit exceeded"))
        with patch("mxlocalnet.faucet.urlopen", side_effect=error):
            result = request_tokens(ALICE, faucet_url="https://faucet.example")
        assert result.success is False
        assert result.body == "rate limit exceeded"

    def test_connection_failure(self):
        """Connection errors raise FaucetError."""
        with patch("mxlocalnet.faucet.urlopen", side_effect=URLError("no route")):
            with pytest.raises(FaucetError, match="Failed to connect to faucet"):
                request_tokens(ALICE)

    def test_empty_body(self):
        """An empty reply raises FaucetError."""
        with patch("mxlocalnet.faucet.urlopen", return_value=response(b"  ")):
            with pytest.raises(FaucetError, match="Empty response"):
                request_tokens(ALICE)


class TestFunding:
    """Tests for local wallet funding."""

    def test_denomination(self):
        """EGLD amounts convert to 18 decimals."""
        assert to_denomination(1) == "1000000000000000000"
        assert to_denomination(0.5) == "500000000000000000"

    def test_denomination_positive(self):
        """Zero or negative amounts are refused."""
        with pytest.raises(ValueError, match="Amount must be positive"):
            to_denomination(0)

    def test_missing_pem(self, tmp_path):
        """A missing funding wallet raises FaucetError."""
        with pytest.raises(FaucetError, match="Funding wallet not found"):
            fund_from_wallet(ALICE, 1, tmp_path / "alice.pem", MagicMock())

    def test_sends_transfer(self, tmp_path):
        """Funding sends a plain transfer through mxpy."""
        pem = tmp_path / "alice.pem"
        pem.write_text("key")
        mxpy = MagicMock()
        fund_from_wallet(ALICE, 2, pem, mxpy, proxy="http://localhost:7950")
        mxpy.tx_new.assert_called_once_with(
            pem=pem,
            receiver=ALICE,
            value="2000000000000000000",
            gas_limit=50000,
            proxy="http://localhost:7950",
            chain="localnet",
        )
