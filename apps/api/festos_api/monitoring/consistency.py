"""Consistency check (detect) and data sync (repair) between the database and the ledger."""

import dataclasses
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from festos_api.errors import EventNotFoundError, FestosError, StorageError
from festos_api.ledger.provider import CONFIRMED, REJECTED
from festos_api.models.event import (
    LEDGER_LINKAGE_FIELDS,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_FAILED,
    STATUS_PENDING_LEDGER,
    Event,
)
from festos_api.settings import get_settings
from festos_api.storage.base import PROVIDER_DATABASE, PROVIDER_LEDGER
from festos_api.utils import metrics
from festos_api.utils.clock import utcnow
from festos_api.utils.units import format_price

logger = logging.getLogger(__name__)

LEDGER_WINS = "ledger"
DATABASE_WINS = "database"

# Pseudo-field for a row whose ledger record cannot be found
FIELD_EXISTENCE = "existence"

DEFAULT_AUTHORITY = {
    "ticket_price": LEDGER_WINS,
    "max_capacity": LEDGER_WINS,
    "creator_id": LEDGER_WINS,
    "status": LEDGER_WINS,
    "start_time": LEDGER_WINS,
    "end_time": LEDGER_WINS,
    FIELD_EXISTENCE: LEDGER_WINS,
    "title": DATABASE_WINS,
    "description": DATABASE_WINS,
    "location": DATABASE_WINS,
    "category": DATABASE_WINS,
    "tags": DATABASE_WINS,
    "view_count": DATABASE_WINS,
}

# Fields present on both the row and the ledger record
COMPARED_FIELDS = (
    "ticket_price",
    "max_capacity",
    "creator_id",
    "status",
    "start_time",
    "end_time",
    "title",
    "description",
    "location",
)


def _serialize(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format_price(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclasses.dataclass(frozen=True)
class DivergenceRecord:
    """One field of one event on which the database and the ledger disagree."""

    event_id: str
    field: str
    database_value: Any
    ledger_value: Any
    ledger_event_id: Optional[int] = None
    detected_at: datetime = dataclasses.field(default_factory=utcnow, compare=False)

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "field": self.field,
            "database_value": _serialize(self.database_value),
            "ledger_value": _serialize(self.ledger_value),
            "ledger_event_id": self.ledger_event_id,
            "detected_at": self.detected_at.isoformat(),
        }


class SyncPolicy:
    """Field authority table: which side wins when a field diverges."""

    def __init__(self, authority: Optional[dict[str, str]] = None):
        self.authority = dict(DEFAULT_AUTHORITY)
        for name, winner in (authority or {}).items():
            if winner not in (LEDGER_WINS, DATABASE_WINS):
                raise ValueError(f"Unknown authority {winner} for field {name}")
            self.authority[name] = winner

    def winner(self, field_name: str) -> str:
        # Fields not tracked on the ledger are presentation-only
        return self.authority.get(field_name, DATABASE_WINS)

    def to_dict(self) -> dict:
        return dict(self.authority)


class ConsistencyChecker:
    """Compare a bounded batch of rows against the ledger. Performs no writes."""

    def __init__(self, database, ledger, monitor=None, batch_size: Optional[int] = None):
        self.database = database
        self.ledger = ledger
        self.monitor = monitor
        self.batch_size = batch_size or get_settings().consistency_batch_size

    def _call(self, provider: str, operation: str, func, *args, **kwargs):
        if self.monitor is None:
            return func(*args, **kwargs)
        with self.monitor.track(provider, operation):
            return func(*args, **kwargs)

    def run(self) -> list[DivergenceRecord]:
        """
        Check the oldest active and pending_ledger rows.

        Rows whose ledger read fails are skipped (logged), so the result is a
        deterministic function of the rows and ledger records that were read.
        """
        rows = self._call(
            PROVIDER_DATABASE,
            "list_for_reconciliation",
            self.database.list_for_reconciliation,
            (STATUS_ACTIVE, STATUS_PENDING_LEDGER),
            self.batch_size,
        )

        records = []
        skipped = 0
        for row in rows:
            try:
                records.extend(self.check_event(row))
            except StorageError as e:
                skipped += 1
                logger.warning(f"Consistency check skipped event {row.id}: {e}", extra={"event_id": row.id})

        records.sort(key=lambda r: (r.event_id, r.field))
        for record in records:
            metrics.divergences_detected.labels(field=record.field).inc()
        logger.info(
            f"Consistency check found {len(records)} divergences across {len(rows)} events",
            extra={"checked": len(rows), "divergences": len(records), "skipped": skipped},
        )
        return records

    def check_event(self, row: Event) -> list[DivergenceRecord]:
        """Divergences for one row. Raises StorageError if the ledger cannot be read."""
        if row.status == STATUS_PENDING_LEDGER:
            return self._check_pending(row)
        if row.status != STATUS_ACTIVE:
            return []

        if row.ledger_event_id is None:
            return [DivergenceRecord(row.id, FIELD_EXISTENCE, "present", None)]

        ledger_record = self._call(PROVIDER_LEDGER, "get_event", self.ledger.get_event, row.ledger_event_id)
        if ledger_record is None:
            return [DivergenceRecord(row.id, FIELD_EXISTENCE, "present", None, row.ledger_event_id)]

        records = []
        for name in COMPARED_FIELDS:
            database_value = getattr(row, name)
            ledger_value = ledger_record.get(name)
            if name == "ticket_price":
                database_value = Decimal(database_value)
                equal = ledger_value is not None and database_value == Decimal(ledger_value)
            else:
                equal = database_value == ledger_value
            if not equal:
                records.append(
                    DivergenceRecord(row.id, name, database_value, ledger_value, row.ledger_event_id)
                )
        return records

    def _check_pending(self, row: Event) -> list[DivergenceRecord]:
        """A pending row with a submitted transaction diverges once the ledger has decided it."""
        if not row.pending_transaction_hash:
            return []
        outcome = self._call(
            PROVIDER_LEDGER, "check_operation", self.ledger.check_operation, row.pending_transaction_hash
        )
        if outcome["status"] == CONFIRMED:
            return [
                DivergenceRecord(
                    row.id, "status", STATUS_PENDING_LEDGER, STATUS_ACTIVE, outcome["ledger_event_id"]
                )
            ]
        if outcome["status"] == REJECTED:
            return [DivergenceRecord(row.id, "status", STATUS_PENDING_LEDGER, STATUS_FAILED)]
        return []


class DataSynchronizer:
    """Apply divergence repairs one-directionally according to a SyncPolicy."""

    def __init__(self, database, orchestrator, checker: ConsistencyChecker, audit=None, policy=None):
        self.database = database
        self.orchestrator = orchestrator
        self.checker = checker
        self.audit = audit
        self.policy = policy or SyncPolicy()

    def run(self, records: Optional[list[DivergenceRecord]] = None) -> dict:
        """
        Repair each divergence.

        Args:
            records: Divergences to repair; a fresh consistency check runs when omitted

        Returns:
            {"repaired", "skipped", "failed", "errors"}
        """
        if records is None:
            records = self.checker.run()

        result = {"repaired": 0, "skipped": 0, "failed": 0, "errors": []}
        for record in records:
            try:
                outcome = self._repair(record)
            except FestosError as e:
                outcome = "failed"
                result["errors"].append({"event_id": record.event_id, "field": record.field, "error": str(e)})
                logger.error(
                    f"Repair of {record.field} on event {record.event_id} failed: {e}",
                    extra={"event_id": record.event_id},
                )
            result[outcome] += 1
            metrics.sync_repairs.labels(field=record.field, outcome=outcome).inc()

        logger.info(
            f"Data sync repaired {result['repaired']}, skipped {result['skipped']}, failed {result['failed']}",
            extra={k: result[k] for k in ("repaired", "skipped", "failed")},
        )
        return result

    def _repair(self, record: DivergenceRecord) -> str:
        winner = self.policy.winner(record.field)
        if winner == DATABASE_WINS:
            # The ledger is immutable; the database copy is already the answer
            return "skipped"

        row = self.database.get_event(record.event_id)
        if row is None:
            return "skipped"

        if record.field == "status" and row.status == STATUS_PENDING_LEDGER:
            applied = self._settle_pending(row)
        elif record.field == "status":
            if record.ledger_value != STATUS_CANCELLED or row.status != STATUS_ACTIVE:
                return "skipped"
            applied = self.orchestrator.apply_ledger_status(
                row.id, STATUS_ACTIVE, STATUS_CANCELLED, "cancelled on ledger"
            )
        elif record.field == FIELD_EXISTENCE:
            if row.status != STATUS_ACTIVE:
                return "skipped"
            applied = self.orchestrator.apply_ledger_status(
                row.id, STATUS_ACTIVE, STATUS_FAILED, "ledger record not found"
            )
        else:
            applied = self.orchestrator.apply_ledger_value(row.id, record.field, record.ledger_value)

        if not applied:
            return "skipped"

        if self.audit is not None:
            payload = {**record.to_dict(), "winner": winner}
            if record.field == FIELD_EXISTENCE:
                payload["cleared_linkage"] = {field: getattr(row, field) for field in LEDGER_LINKAGE_FIELDS}
            self.audit.append_entry(
                record.event_id,
                "status_repair" if record.field in ("status", FIELD_EXISTENCE) else "field_repair",
                payload,
            )
        return "repaired"

    def _settle_pending(self, row: Event) -> bool:
        """Run the finalized transaction through the orchestrator's activation path."""
        if not row.pending_transaction_hash:
            return False
        try:
            result = self.orchestrator.finalize_event_creation(row.id, row.pending_transaction_hash, timeout=0)
        except StorageError:
            current = self.database.get_event(row.id)
            if current is not None and current.status == STATUS_FAILED:
                return True
            raise
        return result["finalized"]

    def repair_event(self, event_id: str) -> dict:
        """Consistency check and data sync restricted to one event."""
        row = self.database.get_event(event_id)
        if row is None:
            raise EventNotFoundError(event_id)
        records = self.checker.check_event(row)
        result = self.run(records)
        result["event_id"] = event_id
        result["divergences"] = [r.to_dict() for r in records]
        return result
