"""Tests for provider health tracking."""

import json
from contextlib import nullcontext
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from festos_api.errors import StorageError, ValidationError
from festos_api.monitoring.health import HealthMonitor
from festos_api.monitoring.state import (
    DEGRADED,
    DOWN,
    HEALTHY,
    InMemoryHealthStateStore,
    RedisHealthStateStore,
)
from festos_api.utils.clock import utcnow

from conftest import UnreachableRedis


class FakeRedis:
    def __init__(self):
        self.values = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value):
        self.values[key] = value

    def lock(self, name, timeout=None):
        return nullcontext()


def _provider(name, ok=True, latency_ms=5.0):
    provider = MagicMock()
    provider.name = name
    provider.health_check.return_value = {
        "ok": ok,
        "latency_ms": latency_ms,
        "checked_at": utcnow(),
        "details": {},
        "error": None if ok else "unreachable",
    }
    provider.get_config.return_value = {"name": name}
    provider.get_statistics.return_value = {"by_status": {"active": 2, "pending_ledger": 1}, "awaiting_receipt": 1}
    return provider


@pytest.fixture
def health_monitor():
    return HealthMonitor(store=InMemoryHealthStateStore(), degraded_after=3, down_after=3, recover_after=3)


def test_three_failures_degrade_three_successes_recover(health_monitor):
    for _ in range(2):
        health_monitor.update_metrics("database", 10, False)
    assert health_monitor.get_provider_status("database") == HEALTHY

    health_monitor.update_metrics("database", 10, False)
    assert health_monitor.get_provider_status("database") == DEGRADED

    for _ in range(2):
        health_monitor.update_metrics("database", 10, True)
    assert health_monitor.get_provider_status("database") == DEGRADED

    health_monitor.update_metrics("database", 10, True)
    assert health_monitor.get_provider_status("database") == HEALTHY


def test_additional_failures_take_degraded_down(health_monitor):
    for _ in range(3):
        health_monitor.update_metrics("ledger", 10, False)
    for _ in range(2):
        health_monitor.update_metrics("ledger", 10, False)
    assert health_monitor.get_provider_status("ledger") == DEGRADED

    health_monitor.update_metrics("ledger", 10, False)
    assert health_monitor.get_provider_status("ledger") == DOWN
    assert health_monitor.is_down("ledger")

    for _ in range(3):
        health_monitor.update_metrics("ledger", 10, True)
    assert health_monitor.get_provider_status("ledger") == HEALTHY


def test_single_failure_does_not_flap(health_monitor):
    for success in (True, False, True, False, True):
        health_monitor.update_metrics("content", 10, success)

    assert health_monitor.get_provider_status("content") == HEALTHY


def test_latency_and_error_rate(health_monitor):
    health_monitor.update_metrics("database", 100, True)
    health_monitor.update_metrics("database", 200, True)
    health_monitor.update_metrics("database", 300, False)
    health_monitor.update_metrics("database", 400, True)

    state = health_monitor.get_provider_state("database")
    assert state.total_operations == 4
    assert state.error_rate == pytest.approx(0.25)
    assert state.mean_latency_ms == pytest.approx(250)
    assert state.last_checked is not None

    metrics = health_monitor.get_performance_metrics()
    assert metrics["database"]["avg_response_time_ms"] == pytest.approx(250)
    assert metrics["overall"]["total_operations"] == 4
    assert metrics["overall"]["error_rate"] == pytest.approx(0.25)


def test_track_counts_only_storage_errors(health_monitor):
    with pytest.raises(StorageError):
        with health_monitor.track("ledger", "read"):
            raise StorageError("boom", "ledger", "read")
    with pytest.raises(ValidationError):
        with health_monitor.track("ledger", "read"):
            raise ValidationError("bad input")
    with health_monitor.track("ledger", "read"):
        pass

    state = health_monitor.get_provider_state("ledger")
    assert state.total_operations == 3
    assert state.total_failures == 1


def test_system_health_is_worst_provider():
    monitor = HealthMonitor(
        providers={
            "database": _provider("database"),
            "ledger": _provider("ledger", ok=False),
            "content": _provider("content"),
        },
        store=InMemoryHealthStateStore(),
        degraded_after=1,
    )

    report = monitor.get_system_health()

    assert report["overall"] == DEGRADED
    assert report["per_provider"]["ledger"]["status"] == DEGRADED
    assert report["per_provider"]["ledger"]["error"] == "unreachable"
    assert report["per_provider"]["database"]["status"] == HEALTHY
    assert report["per_provider"]["database"]["last_checked"] is not None


def test_system_health_reports_event_statistics():
    monitor = HealthMonitor(providers={"database": _provider("database")}, store=InMemoryHealthStateStore())
    monitor.consistency_checker = MagicMock()
    monitor.consistency_checker.run.return_value = ["divergence"]
    monitor.run_consistency_check()

    details = monitor.get_system_health()["details"]

    assert details["total_events"] == 3
    assert details["synced_events"] == 2
    assert details["pending_sync"] == 1
    assert details["last_divergence_count"] == 1
    assert details["errors"] == []


def test_statistics_failure_goes_into_errors():
    database = _provider("database")
    database.get_statistics.side_effect = StorageError("connection refused", "database", "statistics")
    monitor = HealthMonitor(providers={"database": database}, store=InMemoryHealthStateStore())

    details = monitor.get_system_health()["details"]

    assert details["total_events"] == 0
    assert details["errors"] == ["[database.statistics] connection refused"]


def test_cached_health_check_is_counted_once():
    provider = _provider("database", ok=False)
    monitor = HealthMonitor(providers={"database": provider}, store=InMemoryHealthStateStore())

    for _ in range(5):
        monitor.get_system_health()

    assert monitor.get_provider_state("database").total_operations == 1


def test_system_health_without_probe_reports_state(health_monitor):
    report = health_monitor.get_system_health(probe=False)

    assert report["overall"] == HEALTHY
    assert set(report["per_provider"]) == {"database", "ledger", "content"}


def test_latency_alert_logged(health_monitor, caplog):
    health_monitor.set_alert_config({"response_time_threshold_ms": 50})

    health_monitor.update_metrics("content", 500, True)

    assert "exceeded threshold" in caplog.text


def test_alerts_can_be_disabled(health_monitor, caplog):
    health_monitor.set_alert_config({"enabled": False, "response_time_threshold_ms": 1})

    health_monitor.update_metrics("content", 500, True)

    assert "exceeded threshold" not in caplog.text
    assert health_monitor.get_alert_config()["enabled"] is False


def test_consistency_check_due(health_monitor):
    checker = MagicMock()
    checker.run.return_value = []
    health_monitor.attach_reconciliation(checker, MagicMock())
    assert health_monitor.is_consistency_check_due()

    health_monitor.run_consistency_check()
    assert not health_monitor.is_consistency_check_due()

    health_monitor.last_consistency_check = utcnow() - timedelta(hours=2)
    assert health_monitor.is_consistency_check_due()


def test_reconciliation_requires_wiring(health_monitor):
    with pytest.raises(RuntimeError):
        health_monitor.run_consistency_check()
    with pytest.raises(RuntimeError):
        health_monitor.run_data_sync()


def test_storage_configs():
    monitor = HealthMonitor(providers={"database": _provider("database")}, store=InMemoryHealthStateStore())

    assert monitor.get_storage_configs() == {"database": {"name": "database"}}


def test_redis_store_shares_state_between_monitors():
    redis_client = FakeRedis()
    first = HealthMonitor(store=RedisHealthStateStore(redis_client), degraded_after=3)
    second = HealthMonitor(store=RedisHealthStateStore(redis_client), degraded_after=3)

    first.update_metrics("ledger", 10, False)
    second.update_metrics("ledger", 10, False)
    first.update_metrics("ledger", 10, False)

    assert second.get_provider_status("ledger") == DEGRADED
    stored = json.loads(redis_client.values["festos:health:ledger"])
    assert stored["status"] == DEGRADED
    assert stored["total_failures"] == 3


def test_unreachable_redis_falls_back_to_process_state(caplog):
    monitor = HealthMonitor(store=RedisHealthStateStore(UnreachableRedis()), degraded_after=3)

    for _ in range(3):
        monitor.update_metrics("ledger", 10, False)

    assert monitor.get_provider_status("ledger") == DEGRADED
    assert monitor.get_system_health(probe=False)["per_provider"]["ledger"]["status"] == DEGRADED
    assert "Health state store unavailable" in caplog.text


def test_unreachable_redis_keeps_provider_error():
    monitor = HealthMonitor(store=RedisHealthStateStore(UnreachableRedis()))

    with pytest.raises(StorageError) as exc:
        with monitor.track("content", "put"):
            raise StorageError("bucket missing", "content", "put")

    assert exc.value.provider == "content"
    assert exc.value.operation == "put"
