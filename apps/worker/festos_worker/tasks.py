"""Celery tasks for scheduled reconciliation."""

import logging
from typing import Optional

from celery import Task

from festos_api.errors import StorageError
from festos_worker.celery_app import celery_app
from festos_worker.settings import get_settings

logger = logging.getLogger(__name__)


class ServicesTask(Task):
    """Task with the storage providers, orchestrator and monitor wired once per worker."""

    _services = None

    @property
    def services(self):
        if self._services is None:
            from festos_api.services.container import Services
            from festos_worker.db import get_session_factory

            ServicesTask._services = Services(get_session_factory())
        return self._services


@celery_app.task(base=ServicesTask, bind=True)
def run_consistency_check(self, correlation_id: Optional[str] = None):
    """Detect divergence; chain a data sync when auto sync is enabled."""
    log_extra = {"task": "run_consistency_check", "correlation_id": correlation_id}

    records = self.services.monitor.run_consistency_check()
    logger.info(f"Consistency check found {len(records)} divergences", extra=log_extra)

    sync_queued = False
    if records and get_settings().auto_sync_enabled:
        run_data_sync.delay(correlation_id=correlation_id)
        sync_queued = True

    return {
        "divergences": [r.to_dict() for r in records],
        "count": len(records),
        "sync_queued": sync_queued,
    }


@celery_app.task(
    base=ServicesTask,
    bind=True,
    max_retries=3,
    autoretry_for=(StorageError,),
    retry_backoff=True,
    retry_backoff_max=600,
)
def run_data_sync(self, correlation_id: Optional[str] = None):
    """Repair divergence found by a fresh consistency check."""
    log_extra = {"task": "run_data_sync", "correlation_id": correlation_id}

    result = self.services.monitor.run_data_sync()
    if result["failed"]:
        logger.error(f"Data sync finished with {result['failed']} failed repairs", extra=log_extra)
    else:
        logger.info(f"Data sync repaired {result['repaired']} divergences", extra=log_extra)
    return result
