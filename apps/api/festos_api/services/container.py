"""Wiring of providers, orchestrator and health monitor."""

import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from festos_api.audit.service import AuditService
from festos_api.ledger.provider import LedgerProvider
from festos_api.monitoring.consistency import ConsistencyChecker, DataSynchronizer, SyncPolicy
from festos_api.monitoring.health import HealthMonitor
from festos_api.monitoring.state import (
    HealthStateStore,
    InMemoryHealthStateStore,
    RedisHealthStateStore,
)
from festos_api.services.orchestrator import EventOrchestrator
from festos_api.settings import get_settings
from festos_api.storage.content import ContentStoreProvider
from festos_api.storage.database import DatabaseProvider

logger = logging.getLogger(__name__)


class Services:
    """One process-wide set of collaborators."""

    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: Optional[LedgerProvider] = None,
        content: Optional[ContentStoreProvider] = None,
        state_store: Optional[HealthStateStore] = None,
        policy: Optional[SyncPolicy] = None,
    ):
        self.database = DatabaseProvider(session_factory)
        self.ledger = ledger or LedgerProvider()
        self.content = content or ContentStoreProvider()
        self.audit = AuditService(session_factory)

        self.monitor = HealthMonitor(
            providers={
                self.database.name: self.database,
                self.ledger.name: self.ledger,
                self.content.name: self.content,
            },
            store=state_store or build_state_store(),
        )
        self.orchestrator = EventOrchestrator(self.database, self.ledger, self.content, monitor=self.monitor)
        self.checker = ConsistencyChecker(self.database, self.ledger, monitor=self.monitor)
        self.synchronizer = DataSynchronizer(
            self.database, self.orchestrator, self.checker, audit=self.audit, policy=policy
        )
        self.monitor.attach_reconciliation(self.checker, self.synchronizer)


def build_state_store() -> HealthStateStore:
    """Pick the health state backend from settings."""
    settings = get_settings()
    if settings.health_state_backend.lower() == "redis":
        import redis

        logger.info("Using Redis health state store")
        return RedisHealthStateStore(redis.from_url(settings.redis_url, decode_responses=True))
    return InMemoryHealthStateStore()


# Global instance
_services: Optional[Services] = None


def get_services() -> Services:
    """Get or create the service container."""
    global _services
    if _services is None:
        from festos_api.db.session import SessionLocal

        _services = Services(SessionLocal)
    return _services


def set_services(services: Optional[Services]):
    """Replace the service container (tests, CLI with custom wiring)."""
    global _services
    _services = services


def get_orchestrator() -> EventOrchestrator:
    return get_services().orchestrator


def get_health_monitor() -> HealthMonitor:
    return get_services().monitor


def get_audit_service() -> AuditService:
    return get_services().audit
