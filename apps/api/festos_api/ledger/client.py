"""HTTP transport for the ledger: JSON-RPC node plus event indexer."""

import itertools
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class LedgerTransportError(Exception):
    """Raised for RPC-level or HTTP-level ledger failures."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class LedgerClient:
    """Thin client over an EVM JSON-RPC endpoint and the event indexer API."""

    def __init__(
        self,
        rpc_url: str,
        indexer_url: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.rpc_url = rpc_url
        self.indexer_url = indexer_url.rstrip("/")
        self.http = http_client or httpx.Client(timeout=timeout)
        self._ids = itertools.count(1)

    def rpc(self, method: str, params: list) -> Any:
        """Make a JSON-RPC call and return its result."""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.http.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerTransportError(f"{method} failed: {e}") from e

        if body.get("error"):
            error = body["error"]
            raise LedgerTransportError(
                f"{method} returned error: {error.get('message')}", code=error.get("code")
            )
        return body.get("result")

    def block_number(self) -> int:
        return int(self.rpc("eth_blockNumber", []), 16)

    def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        """Receipt for a mined transaction, or None while it is pending."""
        return self.rpc("eth_getTransactionReceipt", [tx_hash])

    def send_raw_transaction(self, raw_transaction: str) -> str:
        """Broadcast a signed transaction and return its hash."""
        return self.rpc("eth_sendRawTransaction", [raw_transaction])

    def _indexer_get(self, path: str, params: Optional[dict] = None) -> Optional[dict]:
        try:
            response = self.http.get(f"{self.indexer_url}{path}", params=params)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerTransportError(f"GET {path} failed: {e}") from e

    def list_events(self, offset: int = 0, limit: int = 100, creator: Optional[str] = None) -> dict:
        """
        Enumerate on-chain events.

        Returns:
            {"events": [...], "total": int}
        """
        params = {"offset": offset, "limit": limit}
        if creator:
            params["creator"] = creator
        body = self._indexer_get("/events", params=params) or {}
        return {"events": body.get("events", []), "total": body.get("total", len(body.get("events", [])))}

    def get_event(self, ledger_event_id: int) -> Optional[dict]:
        """Pointed read of one on-chain event by its contract id."""
        return self._indexer_get(f"/events/{int(ledger_event_id)}")

    def close(self):
        self.http.close()
