"""Database models - import all models here for Alembic discovery."""

from festos_api.models.audit import SyncAuditEntry
from festos_api.models.event import Event

__all__ = [
    "Event",
    "SyncAuditEntry",
]
