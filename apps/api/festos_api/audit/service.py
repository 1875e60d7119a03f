"""Sync audit trail with hash chaining."""

import hashlib
import json
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from festos_api.errors import StorageError
from festos_api.models import SyncAuditEntry
from festos_api.storage.base import PROVIDER_DATABASE
from festos_api.utils.clock import utcnow

logger = logging.getLogger(__name__)


class AuditService:
    """Tamper-evident record of every repair data sync applies."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _hash_entry(self, entry_data: dict) -> str:
        entry_str = json.dumps(entry_data, sort_keys=True, default=str)
        return hashlib.sha256(entry_str.encode()).hexdigest()

    def _entry_data(
        self, event_id: str, action: str, payload: dict, previous_hash: Optional[str], created_at: datetime
    ) -> dict:
        return {
            "event_id": event_id,
            "action": action,
            "payload": payload,
            "previous_hash": previous_hash,
            "timestamp": created_at.isoformat(),
        }

    def _get_last_entry_hash(self, db: Session) -> Optional[str]:
        last_entry = db.query(SyncAuditEntry).order_by(SyncAuditEntry.id.desc()).first()
        return last_entry.entry_hash if last_entry else None

    def append_entry(self, event_id: str, action: str, payload: dict) -> SyncAuditEntry:
        """Append a repair record to the chain."""
        try:
            with self.session_factory() as db:
                previous_hash = self._get_last_entry_hash(db)
                created_at = utcnow().replace(microsecond=0)
                entry_hash = self._hash_entry(
                    self._entry_data(event_id, action, payload, previous_hash, created_at)
                )

                entry = SyncAuditEntry(
                    entry_hash=entry_hash,
                    previous_entry_hash=previous_hash,
                    event_id=event_id,
                    action=action,
                    payload_json=payload,
                    created_at=created_at,
                )
                db.add(entry)
                db.commit()
                db.refresh(entry)
                db.expunge(entry)
                return entry
        except SQLAlchemyError as e:
            raise StorageError(f"Audit append failed: {e}", PROVIDER_DATABASE, "audit_append", e) from e

    def list_entries(self, event_id: Optional[str] = None, limit: int = 100) -> list[SyncAuditEntry]:
        with self.session_factory() as db:
            query = db.query(SyncAuditEntry)
            if event_id:
                query = query.filter(SyncAuditEntry.event_id == event_id)
            entries = query.order_by(SyncAuditEntry.id.desc()).limit(limit).all()
            for entry in entries:
                db.expunge(entry)
            return entries

    def verify_chain(self) -> bool:
        """Verify hash chain integrity."""
        with self.session_factory() as db:
            entries = db.query(SyncAuditEntry).order_by(SyncAuditEntry.id.asc()).all()

            previous_hash = None
            for entry in entries:
                if entry.previous_entry_hash != previous_hash:
                    logger.error(f"Audit chain broken at entry {entry.id}: previous hash mismatch")
                    return False

                computed_hash = self._hash_entry(
                    self._entry_data(
                        entry.event_id,
                        entry.action,
                        entry.payload_json,
                        entry.previous_entry_hash,
                        entry.created_at,
                    )
                )
                if computed_hash != entry.entry_hash:
                    logger.error(f"Audit chain broken at entry {entry.id}: hash mismatch")
                    return False

                previous_hash = entry.entry_hash

        return True
