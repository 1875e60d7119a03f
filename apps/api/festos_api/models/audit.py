"""Sync audit trail models."""

from sqlalchemy import JSON, Column, DateTime, Integer, String

from festos_api.db.base import Base
from festos_api.utils.clock import utcnow


class SyncAuditEntry(Base):
    """Append-only record of a repair applied by data sync, hash chained."""

    __tablename__ = "sync_audit_entries"

    id = Column(Integer, primary_key=True, index=True)
    entry_hash = Column(String(64), nullable=False, unique=True, index=True)
    previous_entry_hash = Column(String(64), nullable=True, index=True)  # NULL for first entry
    event_id = Column(String(36), nullable=False, index=True)
    action = Column(String(100), nullable=False, index=True)  # field_repair, status_repair
    payload_json = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
