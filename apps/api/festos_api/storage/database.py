"""Relational store adapter - the fast, queryable copy of each event."""

import logging
from typing import Iterable, Optional

from sqlalchemy import func, or_, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from festos_api.errors import StorageError
from festos_api.models import Event
from festos_api.models.event import IN_FLIGHT_STATUSES, STATUS_PENDING_LEDGER
from festos_api.storage.base import PROVIDER_DATABASE, StorageProvider
from festos_api.utils.clock import utcnow

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "start_time": Event.start_time,
    "end_time": Event.end_time,
    "created_at": Event.created_at,
    "ticket_price": Event.ticket_price,
    "title": Event.title,
    "max_capacity": Event.max_capacity,
}


class DatabaseProvider(StorageProvider):
    """SQLAlchemy-backed event store. Every write is a single-row transaction."""

    name = PROVIDER_DATABASE
    health_cache_seconds = 30.0

    def __init__(self, session_factory: sessionmaker):
        super().__init__()
        self.session_factory = session_factory

    def _session(self) -> Session:
        return self.session_factory()

    def _detach(self, db: Session, row: Optional[Event]) -> Optional[Event]:
        if row is None:
            return None
        db.refresh(row)
        db.expunge(row)
        return row

    def _probe(self) -> dict:
        with self._session() as db:
            db.execute(text("SELECT 1"))
        return {"dialect": self.session_factory.kw["bind"].dialect.name}

    def get_config(self) -> dict:
        engine = self.session_factory.kw["bind"]
        return {
            "dialect": engine.dialect.name,
            "url": engine.url.render_as_string(hide_password=True),
        }

    def read(self, query: dict) -> dict:
        """
        Query events with filters, sort order and pagination.

        Supported keys: statuses, category, location, search, creator_id,
        min_price, max_price, start_after, end_before, sort_by, order,
        offset, limit.
        """
        try:
            with self._session() as db:
                stmt = select(Event)
                count_stmt = select(func.count()).select_from(Event)
                conditions = self._build_conditions(query)
                if conditions:
                    stmt = stmt.where(*conditions)
                    count_stmt = count_stmt.where(*conditions)

                column = SORTABLE_COLUMNS.get(query.get("sort_by") or "start_time", Event.start_time)
                ordering = column.desc() if query.get("order") == "desc" else column.asc()
                stmt = stmt.order_by(ordering, Event.id.asc())
                stmt = stmt.offset(query.get("offset", 0)).limit(query.get("limit", 20))

                rows = db.execute(stmt).scalars().all()
                total = db.execute(count_stmt).scalar_one()
                for row in rows:
                    db.expunge(row)
                return {"records": rows, "total": total}
        except SQLAlchemyError as e:
            raise StorageError(f"Event query failed: {e}", PROVIDER_DATABASE, "read", e) from e

    def _build_conditions(self, query: dict) -> list:
        conditions = []
        if query.get("statuses"):
            conditions.append(Event.status.in_(list(query["statuses"])))
        if query.get("category"):
            conditions.append(func.lower(Event.category) == query["category"].lower())
        if query.get("location"):
            conditions.append(Event.location.ilike(f"%{query['location']}%"))
        if query.get("search"):
            term = f"%{query['search']}%"
            conditions.append(or_(Event.title.ilike(term), Event.description.ilike(term)))
        if query.get("creator_id"):
            conditions.append(Event.creator_id == query["creator_id"].lower())
        if query.get("visibility"):
            conditions.append(Event.visibility == query["visibility"])
        if query.get("min_price") is not None:
            conditions.append(Event.ticket_price >= query["min_price"])
        if query.get("max_price") is not None:
            conditions.append(Event.ticket_price <= query["max_price"])
        if query.get("start_after") is not None:
            conditions.append(Event.start_time >= query["start_after"])
        if query.get("end_before") is not None:
            conditions.append(Event.end_time <= query["end_before"])
        return conditions

    def count_events(self) -> int:
        """Count all rows regardless of status."""
        try:
            with self._session() as db:
                return db.execute(select(func.count()).select_from(Event)).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"Event count failed: {e}", PROVIDER_DATABASE, "count", e) from e

    def get_statistics(self) -> dict:
        """Row counts per status, and pending_ledger rows with a submitted transaction."""
        try:
            with self._session() as db:
                by_status = dict(db.execute(select(Event.status, func.count()).group_by(Event.status)).all())
                awaiting_receipt = db.execute(
                    select(func.count())
                    .select_from(Event)
                    .where(
                        Event.status == STATUS_PENDING_LEDGER,
                        Event.pending_transaction_hash.is_not(None),
                    )
                ).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"Statistics query failed: {e}", PROVIDER_DATABASE, "statistics", e) from e
        return {"by_status": by_status, "awaiting_receipt": awaiting_receipt}

    def get_event(self, event_id: str) -> Optional[Event]:
        try:
            with self._session() as db:
                row = db.get(Event, event_id)
                if row is not None:
                    db.expunge(row)
                return row
        except SQLAlchemyError as e:
            raise StorageError(f"Event lookup failed: {e}", PROVIDER_DATABASE, "get_event", e) from e

    def find_by_token(self, token: str, statuses: Iterable[str] = IN_FLIGHT_STATUSES) -> Optional[Event]:
        """Find the row for an idempotency token in one of the given statuses."""
        try:
            with self._session() as db:
                row = db.execute(
                    select(Event)
                    .where(Event.idempotency_token == token, Event.status.in_(list(statuses)))
                    .order_by(Event.created_at.desc())
                    .limit(1)
                ).scalar_one_or_none()
                if row is not None:
                    db.expunge(row)
                return row
        except SQLAlchemyError as e:
            raise StorageError(f"Token lookup failed: {e}", PROVIDER_DATABASE, "find_by_token", e) from e

    def insert_draft(self, values: dict) -> tuple[Event, bool]:
        """
        Insert a draft row.

        Returns:
            (row, created). When a concurrent caller already holds an
            in-flight draft for the same token the existing row is returned
            with created=False.
        """
        try:
            with self._session() as db:
                row = Event(**values)
                db.add(row)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    existing = self.find_by_token(values["idempotency_token"])
                    if existing is None:
                        raise
                    logger.info(
                        "Draft already exists for token",
                        extra={"event_id": existing.id, "provider": PROVIDER_DATABASE},
                    )
                    return existing, False
                return self._detach(db, row), True
        except SQLAlchemyError as e:
            raise StorageError(f"Draft insert failed: {e}", PROVIDER_DATABASE, "insert_draft", e) from e

    def transition(
        self,
        event_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        values: Optional[dict] = None,
    ) -> Optional[Event]:
        """
        Compare-and-set the status of one row.

        Returns the updated row, or None when the row was not in one of
        ``from_statuses``.
        """
        changes = dict(values or {})
        changes["status"] = to_status
        changes["updated_at"] = utcnow()
        try:
            with self._session() as db:
                result = db.execute(
                    update(Event)
                    .where(Event.id == event_id, Event.status.in_(list(from_statuses)))
                    .values(**changes)
                )
                db.commit()
                if result.rowcount == 0:
                    return None
                return self._detach(db, db.get(Event, event_id))
        except SQLAlchemyError as e:
            raise StorageError(f"Status transition failed: {e}", PROVIDER_DATABASE, "transition", e) from e

    def update_fields(self, event_id: str, values: dict) -> Optional[Event]:
        """Write presentation or repaired fields on one row without touching status guards."""
        changes = dict(values)
        changes["updated_at"] = utcnow()
        try:
            with self._session() as db:
                result = db.execute(update(Event).where(Event.id == event_id).values(**changes))
                db.commit()
                if result.rowcount == 0:
                    return None
                return self._detach(db, db.get(Event, event_id))
        except SQLAlchemyError as e:
            raise StorageError(f"Event update failed: {e}", PROVIDER_DATABASE, "update_fields", e) from e

    def list_for_reconciliation(self, statuses: Iterable[str], limit: int) -> list[Event]:
        """Deterministic batch of rows for the consistency check."""
        try:
            with self._session() as db:
                rows = (
                    db.execute(
                        select(Event)
                        .where(Event.status.in_(list(statuses)))
                        .order_by(Event.created_at.asc(), Event.id.asc())
                        .limit(limit)
                    )
                    .scalars()
                    .all()
                )
                for row in rows:
                    db.expunge(row)
                return rows
        except SQLAlchemyError as e:
            raise StorageError(
                f"Reconciliation batch query failed: {e}", PROVIDER_DATABASE, "list_for_reconciliation", e
            ) from e
