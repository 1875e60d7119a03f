"""Ledger adapter - the append-only, trust-anchored record of events.

Writes are two-phase: ``prepare_operation`` builds the exact unsigned
call an external wallet must sign (no side effects), and
``confirm_operation`` waits, bounded, for the signed transaction to reach
finality.
"""

import logging
import re
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from festos_api.errors import StorageError, ValidationError
from festos_api.ledger.client import LedgerClient, LedgerTransportError
from festos_api.settings import get_settings
from festos_api.storage.base import PROVIDER_LEDGER, StorageProvider
from festos_api.utils.units import from_wei, to_wei

logger = logging.getLogger(__name__)

CREATE_EVENT_FUNCTION = "createEvent"
CREATE_EVENT_SIGNATURE = (
    "createEvent(string,string,string,uint256,uint256,uint256,uint256,bool,bool,string)"
)

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")
RAW_TX_PATTERN = re.compile(r"^0x[0-9a-fA-F]{66,}$")

# Confirmation outcomes
CONFIRMED = "confirmed"
REJECTED = "rejected"
PENDING = "pending"


def _to_datetime(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _to_unix(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def normalize_ledger_event(raw: dict) -> dict:
    """Map an indexer event payload onto relational field names."""
    return {
        "ledger_event_id": int(raw["eventId"]),
        "creator_id": (raw.get("creator") or "").lower(),
        "title": raw.get("title", ""),
        "description": raw.get("description", ""),
        "location": raw.get("location", ""),
        "start_time": _to_datetime(raw.get("startTime")),
        "end_time": _to_datetime(raw.get("endTime")),
        "max_capacity": int(raw.get("maxCapacity", 0)),
        "current_attendees": int(raw.get("currentAttendees", 0)),
        "ticket_price": from_wei(int(raw.get("ticketPrice", 0))),
        "status": "active" if raw.get("isActive", True) else "cancelled",
        "require_approval": bool(raw.get("requireApproval", False)),
        "has_poap": bool(raw.get("hasPOAP", False)),
        "content_metadata_ref": raw.get("metadataUri") or None,
        "transaction_hash": raw.get("transactionHash"),
        "created_at": _to_datetime(raw.get("createdAt")),
        "updated_at": _to_datetime(raw.get("updatedAt")),
    }


class LedgerProvider(StorageProvider):
    """EVM ledger adapter. Reads support enumeration and pointed reads only."""

    name = PROVIDER_LEDGER
    health_cache_seconds = 60.0

    def __init__(
        self,
        client: Optional[LedgerClient] = None,
        contract_address: Optional[str] = None,
        chain_id: Optional[int] = None,
        confirm_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        required_confirmations: Optional[int] = None,
        event_created_topic: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        settings = get_settings()
        self.client = client or LedgerClient(
            settings.ledger_rpc_url,
            settings.ledger_indexer_url,
            timeout=settings.ledger_request_timeout_seconds,
        )
        self.contract_address = (contract_address or settings.ledger_contract_address or "").lower()
        self.chain_id = chain_id or settings.ledger_chain_id
        self.confirm_timeout = (
            confirm_timeout if confirm_timeout is not None else settings.ledger_confirm_timeout_seconds
        )
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.ledger_poll_interval_seconds
        )
        self.required_confirmations = required_confirmations or settings.ledger_required_confirmations
        self.event_created_topic = (event_created_topic or "").lower() or None
        self.clock = clock

    def _probe(self) -> dict:
        return {"latest_block": self.client.block_number(), "chain_id": self.chain_id}

    def get_config(self) -> dict:
        return {
            "rpc_url": self.client.rpc_url,
            "indexer_url": self.client.indexer_url,
            "chain_id": self.chain_id,
            "has_contract_address": bool(self.contract_address),
            "confirm_timeout_seconds": self.confirm_timeout,
            "required_confirmations": self.required_confirmations,
        }

    # Reads

    def read(self, query: dict) -> dict:
        """
        Enumerate events ({"offset", "limit", "creator_id"}) or read one
        ({"ledger_event_id"}). Partial filters are not supported here.
        """
        if query.get("ledger_event_id") is not None:
            record = self.get_event(query["ledger_event_id"])
            records = [record] if record else []
            return {"records": records, "total": len(records)}

        try:
            body = self.client.list_events(
                offset=query.get("offset", 0),
                limit=query.get("limit", 100),
                creator=query.get("creator_id"),
            )
            records = [normalize_ledger_event(raw) for raw in body["events"]]
        except (LedgerTransportError, KeyError, ValueError, TypeError) as e:
            raise StorageError(f"Ledger enumeration failed: {e}", PROVIDER_LEDGER, "read", e) from e
        return {"records": records, "total": body["total"]}

    def get_event(self, ledger_event_id: int) -> Optional[dict]:
        """Pointed read. Returns None if the ledger has no such event."""
        try:
            raw = self.client.get_event(ledger_event_id)
            return normalize_ledger_event(raw) if raw else None
        except (LedgerTransportError, KeyError, ValueError, TypeError) as e:
            raise StorageError(f"Ledger read failed: {e}", PROVIDER_LEDGER, "get_event", e) from e

    # Two-phase write

    def prepare_operation(self, params: dict) -> dict:
        """
        Build the unsigned createEvent call. Pure: no ledger state changes.

        Args:
            params: title, description, location, start_time, end_time,
                max_capacity, ticket_price, require_approval, has_poap,
                metadata_ref, sender

        Returns:
            {"target", "selector", "function", "args", "chain_id", "value", "from"}
        """
        if not self.contract_address:
            raise StorageError("Ledger contract address is not configured", PROVIDER_LEDGER, "prepare_operation")
        try:
            args = [
                params["title"],
                params.get("description", ""),
                params.get("location", ""),
                str(_to_unix(params["start_time"])),
                str(_to_unix(params["end_time"])),
                str(int(params["max_capacity"])),
                str(to_wei(params["ticket_price"])),
                bool(params.get("require_approval", False)),
                bool(params.get("has_poap", False)),
                params.get("metadata_ref") or "",
            ]
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise StorageError(
                f"Cannot build ledger operation: {e}", PROVIDER_LEDGER, "prepare_operation", e
            ) from e

        return {
            "target": self.contract_address,
            "selector": CREATE_EVENT_SIGNATURE,
            "function": CREATE_EVENT_FUNCTION,
            "args": args,
            "chain_id": self.chain_id,
            "value": "0",
            "from": (params.get("sender") or "").lower() or None,
        }

    def submit_signed(self, signed_handle: str) -> str:
        """
        Resolve a signed handle to a transaction hash.

        A 32-byte hash is taken as already broadcast; a longer hex payload is
        a raw signed transaction and is broadcast here.
        """
        if not isinstance(signed_handle, str):
            raise ValidationError("Signed operation handle must be a hex string", field="signed_operation")
        if TX_HASH_PATTERN.match(signed_handle):
            return signed_handle.lower()
        if RAW_TX_PATTERN.match(signed_handle):
            try:
                return self.client.send_raw_transaction(signed_handle).lower()
            except LedgerTransportError as e:
                raise StorageError(
                    f"Broadcast failed: {e}", PROVIDER_LEDGER, "send_raw_transaction", e
                ) from e
        raise ValidationError(
            "Signed operation handle is neither a transaction hash nor a raw transaction",
            field="signed_operation",
        )

    def confirm_operation(
        self,
        signed_handle: str,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> dict:
        """
        Wait for a signed operation to reach finality.

        Polls the transaction receipt every ``poll_interval`` seconds until
        ``timeout`` elapses or ``cancel_event`` is set.

        Returns:
            {"status": confirmed|rejected|pending, "transaction_hash",
             "ledger_event_id", "creator", "block_number",
             "contract_address", "chain_id", "reason"}

        Raises:
            StorageError: If the ledger could not be reached at all before
                the deadline (outcome unknown)
        """
        tx_hash = self.submit_signed(signed_handle)
        cancel_event = cancel_event or threading.Event()
        timeout = self.confirm_timeout if timeout is None else timeout
        deadline = self.clock() + timeout
        last_error: Optional[Exception] = None
        polled_ok = False

        while True:
            try:
                outcome = self._check_receipt(tx_hash)
                polled_ok = True
                if outcome is not None:
                    return outcome
            except LedgerTransportError as e:
                last_error = e
                logger.warning(f"Receipt poll for {tx_hash} failed: {e}")
            except (KeyError, ValueError, TypeError) as e:
                raise StorageError(
                    f"Malformed receipt for {tx_hash}: {e}", PROVIDER_LEDGER, "confirm_operation", e
                ) from e

            if self.clock() >= deadline:
                break
            if cancel_event.wait(self.poll_interval):
                logger.info(f"Confirmation wait for {tx_hash} cancelled")
                break

        if last_error is not None and not polled_ok:
            raise StorageError(
                f"Ledger unreachable while confirming {tx_hash}: {last_error}",
                PROVIDER_LEDGER,
                "confirm_operation",
                last_error,
            )
        return self._result(PENDING, tx_hash, reason="not finalized before timeout")

    def _result(self, status: str, tx_hash: str, **fields) -> dict:
        result = {
            "status": status,
            "transaction_hash": tx_hash,
            "ledger_event_id": None,
            "creator": None,
            "block_number": None,
            "contract_address": self.contract_address,
            "chain_id": self.chain_id,
            "reason": None,
        }
        result.update(fields)
        return result

    def _check_receipt(self, tx_hash: str) -> Optional[dict]:
        """Return a final outcome, or None if the transaction is not yet final."""
        receipt = self.client.get_transaction_receipt(tx_hash)
        if not receipt:
            return None

        block_number = int(receipt["blockNumber"], 16)
        if int(receipt.get("status", "0x1"), 16) == 0:
            return self._result(REJECTED, tx_hash, block_number=block_number, reason="transaction reverted")

        if self.required_confirmations > 1:
            confirmations = self.client.block_number() - block_number + 1
            if confirmations < self.required_confirmations:
                return None

        target = (receipt.get("to") or "").lower()
        if target != self.contract_address:
            return self._result(
                REJECTED, tx_hash, block_number=block_number, reason=f"transaction targets {target}"
            )

        for log in receipt.get("logs", []):
            if (log.get("address") or "").lower() != self.contract_address:
                continue
            topics = [t.lower() for t in log.get("topics", [])]
            if len(topics) < 2:
                continue
            if self.event_created_topic and topics[0] != self.event_created_topic:
                continue
            creator = "0x" + topics[2][-40:] if len(topics) > 2 else None
            return self._result(
                CONFIRMED,
                tx_hash,
                ledger_event_id=int(topics[1], 16),
                creator=creator,
                block_number=block_number,
            )

        return self._result(
            REJECTED, tx_hash, block_number=block_number, reason="no event creation log in receipt"
        )

    def check_operation(self, signed_handle: str) -> dict:
        """Single non-blocking receipt check (used by reconciliation)."""
        return self.confirm_operation(signed_handle, timeout=0)
