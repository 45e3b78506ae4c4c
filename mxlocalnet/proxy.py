"""Small client for the MultiversX Proxy REST API."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .errors import ProxyError
from .runtime_env import DEFAULT_PROXY_URL

LOGGER = logging.getLogger(__name__)


def check_health(url: str, timeout: int = 5) -> Tuple[bool, int, str]:
    """Check health of a service. Returns (is_up, latency_ms, status)."""
    start = time.time()
    try:
        with urlopen(url, timeout=timeout) as response:
            latency_ms = int((time.time() - start) * 1000)
            if response.status == 200:
                try:
                    payload = json.loads(response.read().decode("utf-8"))
                    status = payload.get("code", "UP") if isinstance(payload, dict) else "UP"
                except json.JSONDecodeError:
                    status = "UP"
                return True, latency_ms, "UP" if status == "successful" else str(status)
            return False, latency_ms, f"HTTP {response.status}"
    except URLError as e:
        latency_ms = int((time.time() - start) * 1000)
        return False, latency_ms, str(e.reason)
    except Exception as e:
        latency_ms = int((time.time() - start) * 1000)
        return False, latency_ms, str(e)


class ProxyClient:
    """
    Read network state and submit transactions through a proxy.

    Every gateway response is an envelope {"data": ..., "error": "", "code": "successful"};
    the methods return the "data" part.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_PROXY_URL,
        timeout: float = 10,
        account_path: str = "/accounts/{address}",
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.account_path = account_path

    def _request(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        data = None
        headers = {"Accept": "application/json"}
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        request = Request(url, data=data, headers=headers, method="POST" if data is not None else "GET")
        LOGGER.debug("%s %s", request.get_method(), url)

        try:
            with urlopen(request, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except HTTPError as exc:
            # Gateway errors still carry the JSON envelope.
            body = exc.read().decode("utf-8", errors="replace")
            if not body:
                raise ProxyError(f"{url}: HTTP {exc.code}") from exc
        except (URLError, OSError) as exc:
            reason = getattr(exc, "reason", exc)
            raise ProxyError(f"Proxy unreachable at {url}: {reason}") from exc

        try:
            envelope = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ProxyError(f"{url}: invalid JSON response") from exc

        if not isinstance(envelope, dict):
            raise ProxyError(f"{url}: unexpected response {envelope!r}")
        code = envelope.get("code", "successful")
        if code != "successful":
            raise ProxyError(f"{url}: {envelope.get('error') or code}")
        return envelope.get("data") or {}

    def network_status(self, shard: Optional[int] = None) -> Dict[str, Any]:
        """Return the status metrics of a shard (the metachain when shard is None)."""
        path = "/network/status" if shard is None else f"/network/status/{shard}"
        return self._request(path).get("status", {})

    def network_config(self) -> Dict[str, Any]:
        return self._request("/network/config").get("config", {})

    def get_account(self, address: str) -> Dict[str, Any]:
        return self._request(self.account_path.format(address=address)).get("account", {})

    def send_transaction(self, tx: Dict[str, Any]) -> str:
        """Submit a signed transaction and return its hash."""
        return self._request("/transactions", payload=tx).get("txHash", "")

    def is_up(self) -> bool:
        try:
            self.network_config()
        except ProxyError:
            return False
        return True
