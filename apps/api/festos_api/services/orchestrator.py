"""Event orchestrator.

Creates, reads and reconciles one logical event across the relational
store, the ledger and the content store. There is no shared transaction:
creation is a saga whose checkpoint is the row's status column
(draft -> pending_ledger -> active | failed).
"""

import logging
import re
import threading
import time
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union

from festos_api.errors import (
    EventNotFoundError,
    InvalidEventStateError,
    StorageError,
    ValidationError,
)
from festos_api.ledger.provider import CONFIRMED, PENDING, REJECTED
from festos_api.models.event import (
    LEDGER_LINKAGE_FIELDS,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_DRAFT,
    STATUS_FAILED,
    STATUS_PENDING_LEDGER,
    Event,
)
from festos_api.monitoring.state import HEALTHY
from festos_api.schemas import EventCreateInput
from festos_api.services.validation import (
    coerce_create_input,
    validate_create_input,
    validate_filters,
)
from festos_api.settings import get_settings
from festos_api.storage.base import PROVIDER_CONTENT, PROVIDER_DATABASE, PROVIDER_LEDGER
from festos_api.utils import metrics
from festos_api.utils.clock import utcnow
from festos_api.utils.retry import retry_with_backoff
from festos_api.utils.units import format_price

logger = logging.getLogger(__name__)

DEFAULT_LISTED_STATUSES = (STATUS_ACTIVE, STATUS_PENDING_LEDGER)
LEDGER_PAGE_SIZE = 100
LEDGER_SCAN_LIMIT = 1000

# Fields the ledger must agree on before a row may become active
VERIFIED_FIELDS = ("creator_id", "max_capacity", "ticket_price")

REPAIRABLE_FIELDS = (
    "ticket_price",
    "max_capacity",
    "creator_id",
    "start_time",
    "end_time",
    "title",
    "description",
    "location",
)


def slugify(title: str, event_id: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:200] or "event"
    return f"{base}-{event_id[:8]}"


class EventOrchestrator:
    """Sole writer of event rows and sole initiator of ledger operations."""

    def __init__(
        self,
        database,
        ledger,
        content,
        monitor=None,
        sleep: Callable[[float], None] = time.sleep,
        content_attempts: Optional[int] = None,
        content_backoff: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.database = database
        self.ledger = ledger
        self.content = content
        self.monitor = monitor
        self.sleep = sleep
        self.content_attempts = content_attempts or settings.content_put_max_attempts
        self.content_backoff = (
            content_backoff if content_backoff is not None else settings.content_put_backoff_seconds
        )
        self.clock = clock

    def _call(self, provider: str, operation: str, func, *args, **kwargs):
        """Invoke a provider method under the health monitor, if one is attached."""
        if self.monitor is None:
            return func(*args, **kwargs)
        with self.monitor.track(provider, operation):
            return func(*args, **kwargs)

    # Creation saga

    def prepare_event_creation(
        self,
        data: Union[EventCreateInput, dict],
        idempotency_token: Optional[str] = None,
    ) -> dict:
        """
        Validate, pin content, write the draft and build the unsigned ledger call.

        Returns:
            {"event_id", "status", "unsigned_operation", "content_refs",
             "idempotency_token", "slug"}

        Raises:
            ValidationError: Input rejected, nothing was written
            StorageError: A provider step failed; the row (if any) stays draft
        """
        event_input = coerce_create_input(data)
        token = idempotency_token or event_input.idempotency_token
        event_input = validate_create_input(event_input, now=self.clock())
        metrics.saga_steps.labels(step="validate", outcome="ok").inc()

        if token:
            existing = self._find_existing(token)
            if existing is not None:
                return self._resume(existing)
        else:
            token = str(uuid.uuid4())

        image_ref = None
        if event_input.banner_image:
            image_ref = self._put_content(
                event_input.banner_image, content_type=event_input.banner_content_type
            )
        metadata_ref = self._put_content_json(self._metadata_document(event_input, image_ref))
        metrics.saga_steps.labels(step="content", outcome="ok").inc()

        event_id = str(uuid.uuid4())
        values = {
            "id": event_id,
            "slug": slugify(event_input.title, event_id),
            "title": event_input.title,
            "description": event_input.description,
            "location": event_input.location,
            "start_time": event_input.start_time,
            "end_time": event_input.end_time,
            "timezone": event_input.timezone,
            "max_capacity": event_input.max_capacity,
            "ticket_price": event_input.ticket_price,
            "visibility": event_input.visibility,
            "require_approval": event_input.require_approval,
            "has_poap": event_input.has_poap,
            "category": event_input.category,
            "tags": event_input.tags,
            "creator_id": event_input.creator_id,
            "status": STATUS_DRAFT,
            "idempotency_token": token,
            "content_metadata_ref": metadata_ref,
            "content_image_ref": image_ref,
        }
        row, created = self._call(PROVIDER_DATABASE, "insert_draft", self.database.insert_draft, values)
        if not created:
            return self._resume(row)

        metrics.saga_steps.labels(step="draft", outcome="ok").inc()
        logger.info(
            f"Draft event created: {row.id}",
            extra={"event_id": row.id, "operation": "prepare_event_creation"},
        )
        return self._issue_operation(row)

    def _find_existing(self, token: str) -> Optional[Event]:
        row = self._call(PROVIDER_DATABASE, "find_by_token", self.database.find_by_token, token)
        if row is not None:
            return row
        active = self._call(
            PROVIDER_DATABASE,
            "find_by_token",
            self.database.find_by_token,
            token,
            statuses=(STATUS_ACTIVE,),
        )
        if active is not None:
            raise InvalidEventStateError(
                f"Idempotency token already finalized as event {active.id}",
                event_id=active.id,
                status=active.status,
            )
        return None

    def _resume(self, row: Event) -> dict:
        """Replay an in-flight draft for a repeated token."""
        logger.info(
            f"Resuming in-flight event {row.id} ({row.status})",
            extra={"event_id": row.id, "operation": "prepare_event_creation"},
        )
        metrics.saga_steps.labels(step="prepare", outcome="replayed").inc()
        if row.status == STATUS_PENDING_LEDGER and row.unsigned_operation:
            return self._prepare_result(row)
        return self._issue_operation(row)

    def _issue_operation(self, row: Event) -> dict:
        """Build the unsigned ledger call for a draft and checkpoint it as pending_ledger."""
        try:
            unsigned = self._call(
                PROVIDER_LEDGER, "prepare_operation", self.ledger.prepare_operation, self._ledger_params(row)
            )
        except StorageError:
            # Row stays draft; re-invoking prepare with the same token resumes here
            metrics.saga_steps.labels(step="ledger_prepare", outcome="error").inc()
            logger.error(
                f"Ledger prepare failed for event {row.id}",
                extra={"event_id": row.id, "provider": PROVIDER_LEDGER},
            )
            raise

        updated = self._call(
            PROVIDER_DATABASE,
            "transition",
            self.database.transition,
            row.id,
            (STATUS_DRAFT,),
            STATUS_PENDING_LEDGER,
            {"unsigned_operation": unsigned},
        )
        if updated is None:
            current = self._call(PROVIDER_DATABASE, "get_event", self.database.get_event, row.id)
            if current is not None and current.status == STATUS_PENDING_LEDGER:
                return self._prepare_result(current)
            raise InvalidEventStateError(
                f"Event {row.id} left draft concurrently",
                event_id=row.id,
                status=current.status if current else None,
            )

        metrics.saga_steps.labels(step="ledger_prepare", outcome="ok").inc()
        return self._prepare_result(updated)

    def _prepare_result(self, row: Event) -> dict:
        return {
            "event_id": row.id,
            "status": row.status,
            "unsigned_operation": row.unsigned_operation,
            "content_refs": {
                "metadata": row.content_metadata_ref,
                "image": row.content_image_ref,
            },
            "idempotency_token": row.idempotency_token,
            "slug": row.slug,
        }

    def _ledger_params(self, row: Event) -> dict:
        return {
            "title": row.title,
            "description": row.description,
            "location": row.location,
            "start_time": row.start_time,
            "end_time": row.end_time,
            "max_capacity": row.max_capacity,
            "ticket_price": Decimal(row.ticket_price),
            "require_approval": row.require_approval,
            "has_poap": row.has_poap,
            "metadata_ref": row.content_metadata_ref,
            "sender": row.creator_id,
        }

    def _metadata_document(self, event_input: EventCreateInput, image_ref: Optional[str]) -> dict:
        """Off-ledger metadata pinned to the content store and referenced from the ledger call."""
        return {
            "name": event_input.title,
            "description": event_input.description,
            "location": event_input.location,
            "category": event_input.category,
            "tags": event_input.tags,
            "timezone": event_input.timezone,
            "visibility": event_input.visibility,
            "image": image_ref,
            "creator": event_input.creator_id,
            "start_time": event_input.start_time.isoformat(),
            "end_time": event_input.end_time.isoformat(),
        }

    def _put_content(self, data: bytes, content_type: str) -> str:
        return retry_with_backoff(
            lambda: self._call(PROVIDER_CONTENT, "put", self.content.put, data, content_type=content_type),
            attempts=self.content_attempts,
            base_delay=self.content_backoff,
            sleep=self.sleep,
            operation="content put",
        )

    def _put_content_json(self, document: dict) -> str:
        return retry_with_backoff(
            lambda: self._call(PROVIDER_CONTENT, "put", self.content.put_json, document),
            attempts=self.content_attempts,
            base_delay=self.content_backoff,
            sleep=self.sleep,
            operation="content put",
        )

    def finalize_event_creation(
        self,
        event_id: str,
        signed_operation: str,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> dict:
        """
        Confirm the signed ledger call and activate the row.

        Returns:
            {"event_id", "status", "finalized", "ledger_transaction_hash",
             "ledger_event_id", "pending_transaction_hash"}. A confirmation
            timeout returns status pending_ledger with finalized=False.

        Raises:
            EventNotFoundError: Unknown event id
            InvalidEventStateError: Row is not pending_ledger
            StorageError: Ledger rejected the operation (row is now failed)
                or a provider call failed (row unchanged)
        """
        row = self._call(PROVIDER_DATABASE, "get_event", self.database.get_event, event_id)
        if row is None:
            raise EventNotFoundError(event_id)
        if row.status != STATUS_PENDING_LEDGER:
            raise InvalidEventStateError(
                f"Event {event_id} is {row.status}, expected {STATUS_PENDING_LEDGER}",
                event_id=event_id,
                status=row.status,
            )

        tx_hash = self._call(PROVIDER_LEDGER, "submit_signed", self.ledger.submit_signed, signed_operation)
        if row.pending_transaction_hash != tx_hash:
            recorded = self._call(
                PROVIDER_DATABASE,
                "transition",
                self.database.transition,
                event_id,
                (STATUS_PENDING_LEDGER,),
                STATUS_PENDING_LEDGER,
                {"pending_transaction_hash": tx_hash},
            )
            if recorded is None:
                raise InvalidEventStateError(
                    f"Event {event_id} left {STATUS_PENDING_LEDGER} concurrently", event_id=event_id
                )
            row = recorded

        outcome = self._call(
            PROVIDER_LEDGER,
            "confirm_operation",
            self.ledger.confirm_operation,
            tx_hash,
            cancel_event=cancel_event,
            timeout=timeout,
        )
        return self._apply_confirmation(row, outcome)

    def _apply_confirmation(self, row: Event, outcome: dict) -> dict:
        tx_hash = outcome["transaction_hash"]
        extra = {"event_id": row.id, "provider": PROVIDER_LEDGER, "operation": "confirm_operation"}

        if outcome["status"] == PENDING:
            metrics.saga_steps.labels(step="ledger_confirm", outcome="pending").inc()
            logger.warning(f"Event {row.id} not finalized yet: {outcome.get('reason')}", extra=extra)
            return self._finalize_result(row.id, STATUS_PENDING_LEDGER, pending_hash=tx_hash)

        if outcome["status"] == REJECTED:
            metrics.saga_steps.labels(step="ledger_confirm", outcome="rejected").inc()
            self._mark_failed(row.id, f"ledger rejected operation: {outcome.get('reason')}", tx_hash)
            raise StorageError(
                f"Ledger rejected transaction {tx_hash}: {outcome.get('reason')}",
                PROVIDER_LEDGER,
                "confirm_operation",
            )

        if outcome["status"] != CONFIRMED:
            raise StorageError(
                f"Unexpected confirmation status {outcome['status']}", PROVIDER_LEDGER, "confirm_operation"
            )

        ledger_event_id = outcome["ledger_event_id"]
        record = self._call(PROVIDER_LEDGER, "get_event", self.ledger.get_event, ledger_event_id)
        if record is None:
            # Indexer has not caught up with the receipt yet
            metrics.saga_steps.labels(step="ledger_verify", outcome="pending").inc()
            logger.warning(f"Ledger event {ledger_event_id} not readable yet", extra=extra)
            return self._finalize_result(row.id, STATUS_PENDING_LEDGER, pending_hash=tx_hash)

        mismatches = self._verify_against_ledger(row, record, outcome)
        if mismatches:
            metrics.saga_steps.labels(step="ledger_verify", outcome="mismatch").inc()
            reason = "ledger record does not match draft: " + ", ".join(mismatches)
            self._mark_failed(row.id, reason, tx_hash)
            raise StorageError(reason, PROVIDER_LEDGER, "verify")

        activated = self._call(
            PROVIDER_DATABASE,
            "transition",
            self.database.transition,
            row.id,
            (STATUS_PENDING_LEDGER,),
            STATUS_ACTIVE,
            {
                "ledger_event_id": ledger_event_id,
                "ledger_transaction_hash": tx_hash,
                "ledger_contract_address": outcome["contract_address"],
                "ledger_chain_id": outcome["chain_id"],
                "pending_transaction_hash": None,
                "failure_reason": None,
            },
        )
        if activated is None:
            current = self._call(PROVIDER_DATABASE, "get_event", self.database.get_event, row.id)
            if current is not None and current.is_verified_active and current.ledger_transaction_hash == tx_hash:
                return self._finalize_result(
                    current.id, STATUS_ACTIVE, tx_hash=tx_hash, ledger_event_id=current.ledger_event_id
                )
            raise InvalidEventStateError(
                f"Event {row.id} left {STATUS_PENDING_LEDGER} during confirmation",
                event_id=row.id,
                status=current.status if current else None,
            )

        metrics.saga_steps.labels(step="ledger_confirm", outcome="confirmed").inc()
        logger.info(
            f"Event {row.id} active as ledger event {ledger_event_id}",
            extra={**extra, "transaction_hash": tx_hash},
        )
        return self._finalize_result(row.id, STATUS_ACTIVE, tx_hash=tx_hash, ledger_event_id=ledger_event_id)

    def _verify_against_ledger(self, row: Event, record: dict, outcome: dict) -> list[str]:
        mismatches = []
        if outcome.get("creator") and outcome["creator"].lower() != row.creator_id:
            mismatches.append("creator_id")
        for field in VERIFIED_FIELDS:
            ledger_value = record.get(field)
            db_value = getattr(row, field)
            if field == "ticket_price":
                equal = Decimal(ledger_value) == Decimal(db_value)
            else:
                equal = ledger_value == db_value
            if not equal and field not in mismatches:
                mismatches.append(field)
        recorded_hash = record.get("transaction_hash")
        if recorded_hash and recorded_hash.lower() != outcome["transaction_hash"]:
            mismatches.append("ledger_transaction_hash")
        return mismatches

    def _mark_failed(self, event_id: str, reason: str, tx_hash: Optional[str]):
        failed = self._call(
            PROVIDER_DATABASE,
            "transition",
            self.database.transition,
            event_id,
            (STATUS_PENDING_LEDGER,),
            STATUS_FAILED,
            {"failure_reason": reason, "pending_transaction_hash": tx_hash},
        )
        logger.error(
            f"Event {event_id} failed: {reason}",
            extra={"event_id": event_id, "transitioned": failed is not None},
        )

    def _finalize_result(
        self,
        event_id: str,
        status: str,
        tx_hash: Optional[str] = None,
        ledger_event_id: Optional[int] = None,
        pending_hash: Optional[str] = None,
    ) -> dict:
        return {
            "event_id": event_id,
            "status": status,
            "finalized": status == STATUS_ACTIVE,
            "ledger_transaction_hash": tx_hash,
            "ledger_event_id": ledger_event_id,
            "pending_transaction_hash": pending_hash,
        }

    # Repairs requested by data sync

    def apply_ledger_value(self, event_id: str, field: str, value) -> bool:
        """
        Overwrite one field with the ledger's value.

        Returns False (no write) when the row already holds ``value``.
        """
        if field not in REPAIRABLE_FIELDS:
            raise ValidationError(f"Field {field} cannot be repaired from the ledger", field=field)
        row = self._call(PROVIDER_DATABASE, "get_event", self.database.get_event, event_id)
        if row is None:
            raise EventNotFoundError(event_id)
        if getattr(row, field) == value:
            return False
        self._call(PROVIDER_DATABASE, "update_fields", self.database.update_fields, event_id, {field: value})
        logger.info(
            f"Repaired {field} of event {event_id} from ledger",
            extra={"event_id": event_id, "operation": "apply_ledger_value"},
        )
        return True

    def apply_ledger_status(self, event_id: str, from_status: str, to_status: str, reason: str) -> bool:
        """
        Move an active row to the status the ledger reports. Returns False if the row moved on.

        A row falling to failed loses its ledger linkage in the same transition.
        """
        if from_status != STATUS_ACTIVE or to_status not in (STATUS_CANCELLED, STATUS_FAILED):
            raise InvalidEventStateError(
                f"Cannot repair status {from_status} -> {to_status}", event_id=event_id, status=from_status
            )
        changes = {"failure_reason": reason}
        if to_status == STATUS_FAILED:
            changes.update({field: None for field in LEDGER_LINKAGE_FIELDS})
        updated = self._call(
            PROVIDER_DATABASE,
            "transition",
            self.database.transition,
            event_id,
            (from_status,),
            to_status,
            changes,
        )
        if updated is not None:
            logger.warning(
                f"Event {event_id} moved {from_status} -> {to_status}: {reason}",
                extra={"event_id": event_id, "operation": "apply_ledger_status"},
            )
        return updated is not None

    # Reads

    def get_events(self, filters: Optional[dict] = None) -> dict:
        """
        Search events, falling back to ledger enumeration.

        Only filter validation errors are raised. Provider failures degrade
        the response (``primary_source`` tells which layer served it).
        """
        query = validate_filters(filters)
        statuses = (query["status"],) if query["status"] else DEFAULT_LISTED_STATUSES
        page, limit = query["page"], query["limit"]

        fallback_reason = None
        try:
            result = self._call(
                PROVIDER_DATABASE,
                "read",
                self.database.read,
                {**query, "statuses": statuses, "offset": (page - 1) * limit, "limit": limit},
            )
            if not result["records"]:
                fallback_reason = self._empty_result_reason()
        except StorageError as e:
            logger.warning(f"Database read failed, falling back to ledger: {e}", extra={"provider": PROVIDER_DATABASE})
            fallback_reason = "database_error"
            result = None

        if fallback_reason is None:
            events = [row.to_dict() for row in result["records"]]
            return self._page(events, result["total"], page, limit, "database")

        metrics.read_fallbacks.labels(reason=fallback_reason).inc()
        try:
            events = self._ledger_events(query, statuses)
        except StorageError as e:
            logger.error(f"Ledger fallback failed: {e}", extra={"provider": PROVIDER_LEDGER})
            if result is not None:
                events = [row.to_dict() for row in result["records"]]
                return self._page(events, result["total"], page, limit, "database")
            return self._page([], 0, page, limit, "none")

        start = (page - 1) * limit
        return self._page(events[start : start + limit], len(events), page, limit, "ledger")

    def _empty_result_reason(self) -> Optional[str]:
        """
        Decide whether an empty relational answer should be double-checked on the ledger.

        Any non-healthy database status triggers the fallback, so a degraded
        database is treated the same as one that is down.
        """
        if self.monitor is not None and self.monitor.get_provider_status(PROVIDER_DATABASE) != HEALTHY:
            return "database_unhealthy"
        try:
            if self._call(PROVIDER_DATABASE, "count", self.database.count_events) == 0:
                return "database_empty"
        except StorageError:
            return "database_error"
        return None

    def _ledger_events(self, query: dict, statuses) -> list[dict]:
        records = []
        offset = 0
        while offset < LEDGER_SCAN_LIMIT:
            body = self._call(
                PROVIDER_LEDGER,
                "read",
                self.ledger.read,
                {"offset": offset, "limit": LEDGER_PAGE_SIZE, "creator_id": query["creator_id"]},
            )
            records.extend(body["records"])
            offset += LEDGER_PAGE_SIZE
            if not body["records"] or offset >= body["total"]:
                break

        events = [self._ledger_record_to_event(record) for record in records]
        events = [e for e in events if self._matches(e, query, statuses)]

        reverse = query["order"] == "desc"
        sort_by = query["sort_by"]
        events.sort(
            key=lambda e: (e[sort_by] is None, e[sort_by] if e[sort_by] is not None else 0),
            reverse=reverse,
        )
        return [self._serialize_ledger_event(e) for e in events]

    def _ledger_record_to_event(self, record: dict) -> dict:
        """Shape a ledger record like a relational row, merging off-ledger metadata when available."""
        event = {
            "id": None,
            "slug": None,
            "title": record["title"],
            "description": record["description"],
            "location": record["location"],
            "start_time": record["start_time"],
            "end_time": record["end_time"],
            "timezone": "UTC",
            "max_capacity": record["max_capacity"],
            "ticket_price": record["ticket_price"],
            "visibility": "public",
            "require_approval": record["require_approval"],
            "has_poap": record["has_poap"],
            "category": None,
            "tags": [],
            "view_count": 0,
            "creator_id": record["creator_id"],
            "status": record["status"],
            "ledger_event_id": record["ledger_event_id"],
            "ledger_contract_address": getattr(self.ledger, "contract_address", None),
            "ledger_chain_id": getattr(self.ledger, "chain_id", None),
            "ledger_transaction_hash": record.get("transaction_hash"),
            "content_metadata_ref": record.get("content_metadata_ref"),
            "content_image_ref": None,
            "created_at": record.get("created_at"),
            "updated_at": record.get("updated_at"),
        }

        metadata = self._fetch_metadata(record.get("content_metadata_ref"))
        if metadata:
            event["category"] = metadata.get("category")
            event["tags"] = list(metadata.get("tags") or [])
            event["visibility"] = metadata.get("visibility") or "public"
            event["timezone"] = metadata.get("timezone") or "UTC"
            event["content_image_ref"] = metadata.get("image")
            event["description"] = event["description"] or metadata.get("description") or ""
            event["location"] = event["location"] or metadata.get("location") or ""
        return event

    def _fetch_metadata(self, ref: Optional[str]) -> Optional[dict]:
        if not ref:
            return None
        try:
            return self._call(PROVIDER_CONTENT, "get", self.content.get_json, ref)
        except (StorageError, ValidationError) as e:
            logger.debug(f"Metadata merge skipped for {ref}: {e}")
            return None

    def _matches(self, event: dict, query: dict, statuses) -> bool:
        """Client-side filtering of ledger records, best-effort."""
        if event["status"] not in statuses:
            return False
        if query["category"] and (event["category"] or "").lower() != query["category"].lower():
            return False
        if query["location"] and query["location"].lower() not in (event["location"] or "").lower():
            return False
        if query["search"]:
            term = query["search"].lower()
            if term not in event["title"].lower() and term not in (event["description"] or "").lower():
                return False
        if query["visibility"] and event["visibility"] != query["visibility"]:
            return False
        if query["min_price"] is not None and event["ticket_price"] < query["min_price"]:
            return False
        if query["max_price"] is not None and event["ticket_price"] > query["max_price"]:
            return False
        if query["start_after"] and (event["start_time"] is None or event["start_time"] < query["start_after"]):
            return False
        if query["end_before"] and (event["end_time"] is None or event["end_time"] > query["end_before"]):
            return False
        return True

    def _serialize_ledger_event(self, event: dict) -> dict:
        data = dict(event)
        for key in ("start_time", "end_time", "created_at", "updated_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        data["ticket_price"] = format_price(event["ticket_price"])
        data["display_status"] = event["status"]
        # Records served by the ledger are themselves the confirmation
        data["purchasable"] = event["status"] == STATUS_ACTIVE and bool(event["ledger_transaction_hash"])
        return data

    def _page(self, events: list[dict], total: int, page: int, limit: int, source: str) -> dict:
        return {
            "events": events,
            "total": total,
            "page": page,
            "limit": limit,
            "has_more": page * limit < total,
            "primary_source": source,
            "available_filters": self._available_filters(events),
        }

    def _available_filters(self, events: list[dict]) -> dict:
        prices = [Decimal(e["ticket_price"]) for e in events if e.get("ticket_price") is not None]
        return {
            "categories": sorted({e["category"] for e in events if e.get("category")}),
            "locations": sorted({e["location"] for e in events if e.get("location")}),
            "price_range": {
                "min": format_price(min(prices)) if prices else None,
                "max": format_price(max(prices)) if prices else None,
            },
        }

    def get_event_by_id(self, event_id: str) -> dict:
        """
        Relational read annotated with a pointed ledger verification.

        A failed ledger read leaves the copy ``verification_pending``.
        """
        row = self._call(PROVIDER_DATABASE, "get_event", self.database.get_event, event_id)
        if row is None:
            raise EventNotFoundError(event_id)

        data = row.to_dict()
        data["ledger_verified"] = False
        data["verification_pending"] = row.status in (STATUS_DRAFT, STATUS_PENDING_LEDGER)
        if row.ledger_event_id is None:
            return data

        try:
            record = self._call(PROVIDER_LEDGER, "get_event", self.ledger.get_event, row.ledger_event_id)
        except StorageError as e:
            logger.warning(f"Ledger verification unavailable for {event_id}: {e}", extra={"event_id": event_id})
            data["verification_pending"] = True
            return data

        if record is not None:
            recorded_hash = (record.get("transaction_hash") or "").lower()
            data["ledger_verified"] = (
                record["creator_id"] == row.creator_id
                and (not recorded_hash or recorded_hash == (row.ledger_transaction_hash or "").lower())
            )
            if record["status"] == STATUS_CANCELLED and row.status != STATUS_CANCELLED:
                data["purchasable"] = False
        if not data["ledger_verified"]:
            data["purchasable"] = False
        return data
