"""Health monitor for the three storage layers.

Tracks rolling latency and failure streaks per provider, applies a
hysteresis state machine (healthy -> degraded -> down -> healthy) and
exposes the on-demand consistency check and data sync jobs.
"""

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional

from festos_api.errors import StorageError
from festos_api.monitoring.state import (
    DEGRADED,
    DOWN,
    HEALTHY,
    STATUS_SEVERITY,
    HealthStateStore,
    HealthStateUnavailableError,
    InMemoryHealthStateStore,
    ProviderHealthState,
)
from festos_api.settings import get_settings
from festos_api.models.event import STATUS_ACTIVE
from festos_api.storage.base import PROVIDER_DATABASE, PROVIDERS, StorageProvider
from festos_api.utils import metrics
from festos_api.utils.clock import utcnow

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Observer of provider health plus the two reconciliation jobs."""

    def __init__(
        self,
        providers: Optional[dict[str, StorageProvider]] = None,
        store: Optional[HealthStateStore] = None,
        degraded_after: Optional[int] = None,
        down_after: Optional[int] = None,
        recover_after: Optional[int] = None,
        alert_config: Optional[dict] = None,
    ):
        settings = get_settings()
        self.providers = providers or {}
        self.store = store or InMemoryHealthStateStore()
        # Serves state while the shared store is unreachable
        self._local_store = InMemoryHealthStateStore()
        self.degraded_after = degraded_after or settings.health_degraded_after_failures
        self.down_after = down_after or settings.health_down_after_failures
        self.recover_after = recover_after or settings.health_recover_after_successes
        self.alert_config = {
            "enabled": True,
            "response_time_threshold_ms": settings.alert_response_time_ms,
            "error_rate_threshold_percent": settings.alert_error_rate_percent,
            "consistency_check_interval_minutes": settings.consistency_check_interval_minutes,
        }
        self.alert_config.update(alert_config or {})

        self.consistency_checker = None
        self.data_synchronizer = None
        self.last_consistency_check: Optional[datetime] = None
        self.last_divergence_count: Optional[int] = None
        self._fed_health_checks: dict[str, datetime] = {}

    def attach_reconciliation(self, consistency_checker, data_synchronizer):
        """Wire the consistency check and data sync jobs."""
        self.consistency_checker = consistency_checker
        self.data_synchronizer = data_synchronizer

    # State machine

    def update_metrics(self, provider: str, latency_ms: float, success: bool) -> ProviderHealthState:
        """Record one provider observation and advance its health state."""
        transition = {}

        def apply(state: ProviderHealthState):
            transition.clear()
            previous = state.status
            state.record(latency_ms, success, utcnow())
            if success:
                if state.status != HEALTHY and state.consecutive_successes >= self.recover_after:
                    state.status = HEALTHY
            elif state.status == HEALTHY and state.consecutive_failures >= self.degraded_after:
                state.status = DEGRADED
                # Count the additional failures needed to reach DOWN from here
                state.consecutive_failures = 0
            elif state.status == DEGRADED and state.consecutive_failures >= self.down_after:
                state.status = DOWN
            if state.status != previous:
                transition["from"] = previous
                transition["to"] = state.status

        state = self._update_state(provider, apply)
        metrics.provider_health_status.labels(provider=provider).set(STATUS_SEVERITY[state.status])

        if transition:
            log = logger.info if state.status == HEALTHY else logger.warning
            log(
                f"Provider {provider} is now {state.status}",
                extra={"provider": provider, "from_status": transition["from"], "to_status": state.status},
            )
        self._check_alerts(provider, latency_ms, state)
        return state

    @contextmanager
    def track(self, provider: str, operation: str):
        """Time a provider call and feed the outcome into update_metrics."""
        start = time.perf_counter()
        success = True
        try:
            yield
        except StorageError:
            success = False
            metrics.provider_call_failures.labels(provider=provider, operation=operation).inc()
            raise
        finally:
            elapsed = time.perf_counter() - start
            metrics.provider_call_duration.labels(provider=provider, operation=operation).observe(elapsed)
            self.update_metrics(provider, elapsed * 1000, success)

    def get_provider_state(self, provider: str) -> ProviderHealthState:
        try:
            return self.store.get(provider)
        except HealthStateUnavailableError as e:
            self._store_unavailable("get", provider, e)
            return self._local_store.get(provider)

    def _update_state(self, provider: str, mutate) -> ProviderHealthState:
        try:
            return self.store.update(provider, mutate)
        except HealthStateUnavailableError as e:
            self._store_unavailable("update", provider, e)
            return self._local_store.update(provider, mutate)

    def _store_unavailable(self, operation: str, provider: str, error: Exception):
        metrics.health_state_store_errors.labels(operation=operation).inc()
        logger.warning(
            f"Health state store unavailable, using process-local state: {error}",
            extra={"provider": provider, "operation": f"health_state_{operation}"},
        )

    def get_provider_status(self, provider: str) -> str:
        return self.get_provider_state(provider).status

    def is_down(self, provider: str) -> bool:
        return self.get_provider_status(provider) == DOWN

    # Surfaces

    def get_system_health(self, probe: bool = True) -> dict:
        """
        Aggregate health. Overall status is the worst provider status.

        With ``probe`` each provider's health_check runs first and fresh
        results are fed through update_metrics.
        """
        start = time.perf_counter()
        errors = {}
        if probe:
            for name, provider in self.providers.items():
                result = provider.health_check()
                if result.get("error"):
                    errors[name] = result["error"]
                if self._fed_health_checks.get(name) == result["checked_at"]:
                    continue
                self._fed_health_checks[name] = result["checked_at"]
                self.update_metrics(name, result["latency_ms"], result["ok"])

        names = list(self.providers) or list(PROVIDERS)
        per_provider = {}
        for name in names:
            state = self.get_provider_state(name)
            per_provider[name] = {
                "status": state.status,
                "latency_ms": round(state.avg_latency_ms, 2),
                "last_checked": state.last_checked.isoformat() if state.last_checked else None,
                "consecutive_failures": state.consecutive_failures,
                "error": errors.get(name),
            }

        overall = max((p["status"] for p in per_provider.values()), key=STATUS_SEVERITY.get, default=HEALTHY)
        return {
            "overall": overall,
            "per_provider": per_provider,
            "details": self._system_details(),
            "checked_at": utcnow().isoformat(),
            "response_time_ms": round((time.perf_counter() - start) * 1000, 2),
        }

    def _system_details(self) -> dict:
        """Event totals from the database plus the last divergence count. Never raises."""
        details = {
            "total_events": 0,
            "synced_events": 0,
            "pending_sync": 0,
            "by_status": {},
            "last_divergence_count": self.last_divergence_count,
            "errors": [],
        }
        database = self.providers.get(PROVIDER_DATABASE)
        if database is None:
            return details
        try:
            stats = database.get_statistics()
        except StorageError as e:
            logger.warning(f"System statistics unavailable: {e}", extra={"provider": PROVIDER_DATABASE})
            details["errors"].append(str(e))
            return details

        by_status = stats["by_status"]
        details.update(
            total_events=sum(by_status.values()),
            synced_events=by_status.get(STATUS_ACTIVE, 0),
            pending_sync=stats["awaiting_receipt"],
            by_status=by_status,
        )
        return details

    def get_performance_metrics(self) -> dict:
        """Average latency, operation totals and error rate per provider and overall."""
        result = {}
        total_ops = 0
        total_failures = 0
        weighted_latency = 0.0
        for name in list(self.providers) or list(PROVIDERS):
            state = self.get_provider_state(name)
            result[name] = {
                "avg_response_time_ms": round(state.mean_latency_ms, 2),
                "rolling_response_time_ms": round(state.avg_latency_ms, 2),
                "total_operations": state.total_operations,
                "error_rate": round(state.error_rate, 4),
            }
            total_ops += state.total_operations
            total_failures += state.total_failures
            weighted_latency += state.mean_latency_ms * state.total_operations

        result["overall"] = {
            "avg_response_time_ms": round(weighted_latency / total_ops, 2) if total_ops else 0.0,
            "total_operations": total_ops,
            "error_rate": round(total_failures / total_ops, 4) if total_ops else 0.0,
        }
        return result

    def get_storage_configs(self) -> dict:
        return {name: provider.get_config() for name, provider in self.providers.items()}

    # Reconciliation jobs

    def run_consistency_check(self) -> list:
        """Detect divergence between the database and the ledger. Performs no writes."""
        if self.consistency_checker is None:
            raise RuntimeError("Consistency checker is not configured")
        records = self.consistency_checker.run()
        self.last_consistency_check = utcnow()
        self.last_divergence_count = len(records)
        return records

    def run_data_sync(self, records: Optional[list] = None) -> dict:
        """Repair divergence one-directionally. Returns {"repaired", "skipped", ...}."""
        if self.data_synchronizer is None:
            raise RuntimeError("Data synchronizer is not configured")
        return self.data_synchronizer.run(records)

    def repair_event(self, event_id: str) -> dict:
        """Check and sync a single event."""
        if self.data_synchronizer is None:
            raise RuntimeError("Data synchronizer is not configured")
        return self.data_synchronizer.repair_event(event_id)

    def is_consistency_check_due(self) -> bool:
        if self.last_consistency_check is None:
            return True
        interval = timedelta(minutes=self.alert_config["consistency_check_interval_minutes"])
        return utcnow() - self.last_consistency_check >= interval

    # Alerts

    def get_alert_config(self) -> dict:
        return dict(self.alert_config)

    def set_alert_config(self, config: dict):
        self.alert_config.update(config)

    def _check_alerts(self, provider: str, latency_ms: float, state: ProviderHealthState):
        if not self.alert_config["enabled"]:
            return

        threshold_ms = self.alert_config["response_time_threshold_ms"]
        if latency_ms > threshold_ms:
            metrics.provider_alerts.labels(provider=provider, kind="latency").inc()
            logger.warning(
                f"{provider} response time ({latency_ms:.0f}ms) exceeded threshold ({threshold_ms}ms)",
                extra={"provider": provider, "alert": "latency"},
            )

        error_rate_percent = state.error_rate * 100
        threshold_percent = self.alert_config["error_rate_threshold_percent"]
        if error_rate_percent > threshold_percent:
            metrics.provider_alerts.labels(provider=provider, kind="error_rate").inc()
            logger.warning(
                f"{provider} error rate ({error_rate_percent:.2f}%) exceeded threshold ({threshold_percent}%)",
                extra={"provider": provider, "alert": "error_rate"},
            )
