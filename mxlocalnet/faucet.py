"""Testnet faucet requests and local wallet-to-wallet funding."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .errors import FaucetError
from .mxpy import Mxpy
from .processes import CommandResult
from .runtime_env import DEFAULT_FAUCET_URL, DEFAULT_PROXY_URL, is_valid_address

LOGGER = logging.getLogger(__name__)

# 1 EGLD in its smallest denomination.
ONE_EGLD = 10 ** 18


@dataclass
class FaucetResult:
    success: bool
    body: str


def request_tokens(address: str, faucet_url: str = DEFAULT_FAUCET_URL, timeout: int = 30) -> FaucetResult:
    """
    Ask the testnet faucet to send xEGLD to address.

    Rate limits and refusals come back as an unsuccessful FaucetResult; only a
    connection failure or an empty reply raises FaucetError.
    """
    if not is_valid_address(address):
        raise ValueError(f"Invalid address format: {address!r}. MultiversX addresses start with 'erd1'.")

    request = Request(
        faucet_url,
        data=json.dumps({"address": address}).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    LOGGER.info("Requesting tokens for %s from %s", address, faucet_url)
    try:
        with urlopen(request, timeout=timeout) as response:
            body = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace")
    except URLError as exc:
        raise FaucetError(f"Failed to connect to faucet at {faucet_url}: {exc.reason}") from exc

    if not body.strip():
        raise FaucetError(f"Empty response from faucet at {faucet_url}")

    lowered = body.lower()
    return FaucetResult(success="success" in lowered or "sent" in lowered, body=body)


def to_denomination(amount_egld: float) -> str:
    """Convert an EGLD amount to the integer string mxpy expects."""
    if amount_egld <= 0:
        raise ValueError("Amount must be positive")
    return str(int(round(amount_egld * ONE_EGLD)))


def fund_from_wallet(
    address: str,
    amount_egld: float,
    pem: Path,
    mxpy: Mxpy,
    proxy: str = DEFAULT_PROXY_URL,
    chain: str = "localnet",
) -> CommandResult:
    """Send EGLD from a local wallet, the localnet stand-in for a faucet."""
    if not pem.is_file():
        raise FaucetError(f"Funding wallet not found: {pem}")
    return mxpy.tx_new(
        pem=pem,
        receiver=address,
        value=to_denomination(amount_egld),
        gas_limit=50000,
        proxy=proxy,
        chain=chain,
    )
