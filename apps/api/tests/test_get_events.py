"""Tests for event search with ledger fallback."""

from unittest.mock import patch

import pytest

from festos_api.errors import StorageError, ValidationError
from festos_api.monitoring.health import HealthMonitor
from festos_api.monitoring.state import RedisHealthStateStore
from festos_api.services.orchestrator import EventOrchestrator

from conftest import UnreachableRedis, tx_hash


def _activate(orchestrator, fake_ledger, data, n):
    prepared = orchestrator.prepare_event_creation(data)
    fake_ledger.mine(tx_hash(n), prepared["unsigned_operation"])
    orchestrator.finalize_event_creation(prepared["event_id"], tx_hash(n))
    return prepared["event_id"]


def _ledger_event_with_metadata(fake_ledger, content, category, **fields):
    metadata_ref = content.put_json({"category": category, "tags": [category], "visibility": "public"})
    return fake_ledger.add_event(metadataUri=metadata_ref, **fields)


def test_database_is_primary_source(orchestrator, fake_ledger, event_input):
    event_id = _activate(orchestrator, fake_ledger, event_input(), 1)

    result = orchestrator.get_events({"page": 1, "limit": 20})

    assert result["primary_source"] == "database"
    assert result["total"] == 1
    assert result["events"][0]["id"] == event_id
    assert result["events"][0]["purchasable"] is True
    assert result["has_more"] is False
    assert result["available_filters"]["categories"] == ["music"]


def test_pending_events_listed_as_processing(orchestrator, event_input):
    orchestrator.prepare_event_creation(event_input())

    result = orchestrator.get_events({})

    assert result["primary_source"] == "database"
    event = result["events"][0]
    assert event["display_status"] == "processing"
    assert event["purchasable"] is False


def test_empty_store_falls_back_to_ledger(orchestrator, fake_ledger, content):
    """Empty relational store and two matching on-chain records: served from the ledger."""
    _ledger_event_with_metadata(fake_ledger, content, "music", title="Jazz by the lagoon")
    _ledger_event_with_metadata(fake_ledger, content, "music", title="Afrobeats live")
    _ledger_event_with_metadata(fake_ledger, content, "sports", title="City marathon")

    result = orchestrator.get_events({"page": 1, "limit": 20, "category": "music"})

    assert result["primary_source"] == "ledger"
    assert result["total"] == 2
    assert {e["title"] for e in result["events"]} == {"Jazz by the lagoon", "Afrobeats live"}
    assert all(e["category"] == "music" for e in result["events"])
    assert all(e["purchasable"] for e in result["events"])


def test_database_down_never_throws(orchestrator, database, fake_ledger, event_input):
    _activate(orchestrator, fake_ledger, event_input(), 1)
    fake_ledger.add_event(title="Only on chain")

    with patch.object(database, "read", side_effect=StorageError("connection refused", "database", "read")):
        result = orchestrator.get_events({"page": 1, "limit": 20})

    assert result["primary_source"] == "ledger"
    assert result["total"] == 2
    assert "Only on chain" in {e["title"] for e in result["events"]}


def test_both_stores_down_returns_empty(orchestrator, database, fake_ledger):
    fake_ledger.unreachable = True

    with patch.object(database, "read", side_effect=StorageError("connection refused", "database", "read")):
        result = orchestrator.get_events({})

    assert result["events"] == []
    assert result["total"] == 0
    assert result["primary_source"] == "none"


def test_unsupported_filters_apply_client_side(orchestrator, fake_ledger, content):
    _ledger_event_with_metadata(fake_ledger, content, "music", title="Jazz night", location="Lagos")
    _ledger_event_with_metadata(fake_ledger, content, "music", title="Rock night", location="Abuja")

    result = orchestrator.get_events({"search": "jazz", "location": "lagos"})

    assert result["primary_source"] == "ledger"
    assert [e["title"] for e in result["events"]] == ["Jazz night"]


def test_ledger_fallback_skips_unreadable_metadata(orchestrator, fake_ledger):
    fake_ledger.add_event(title="No metadata", metadataUri="sha256:" + "0" * 64)

    result = orchestrator.get_events({})

    assert result["primary_source"] == "ledger"
    assert result["events"][0]["category"] is None


def test_ledger_fallback_paginates(orchestrator, fake_ledger):
    for _ in range(5):
        fake_ledger.add_event()

    result = orchestrator.get_events({"page": 2, "limit": 2})

    assert result["primary_source"] == "ledger"
    assert result["total"] == 5
    assert len(result["events"]) == 2
    assert result["has_more"] is True


def test_no_match_in_populated_store_stays_on_database(orchestrator, fake_ledger, event_input):
    _activate(orchestrator, fake_ledger, event_input(), 1)

    result = orchestrator.get_events({"category": "sports"})

    assert result["primary_source"] == "database"
    assert result["events"] == []


def test_no_match_on_degraded_database_checks_ledger(orchestrator, monitor, fake_ledger, content, event_input):
    _activate(orchestrator, fake_ledger, event_input(), 1)
    _ledger_event_with_metadata(fake_ledger, content, "sports", title="City marathon")
    for _ in range(monitor.degraded_after):
        monitor.update_metrics("database", 10, False)

    result = orchestrator.get_events({"category": "sports"})

    assert result["primary_source"] == "ledger"
    assert [e["title"] for e in result["events"]] == ["City marathon"]


def test_database_filters(orchestrator, fake_ledger, event_input):
    _activate(orchestrator, fake_ledger, event_input(title="Cheap show", ticket_price="0.01"), 1)
    _activate(orchestrator, fake_ledger, event_input(title="Gala", ticket_price="2", category="formal"), 2)

    result = orchestrator.get_events({"price_range": {"min": "1"}, "sort_by": "ticket_price", "order": "desc"})

    assert [e["title"] for e in result["events"]] == ["Gala"]


@pytest.mark.parametrize(
    "filters, field",
    [
        ({"page": 0}, "page"),
        ({"limit": 101}, "limit"),
        ({"limit": "many"}, "limit"),
        ({"status": "unknown"}, "status"),
        ({"sort_by": "password"}, "sort_by"),
        ({"order": "sideways"}, "order"),
        ({"price_range": {"min": "5", "max": "1"}}, "price_range"),
        ({"date_range": {"start": "not-a-date"}}, "date_range.start"),
        ({"price_range": "0-1"}, "price_range"),
        ({"date_range": ["2030-01-01"]}, "date_range"),
    ],
)
def test_invalid_filters_raise(orchestrator, filters, field):
    with pytest.raises(ValidationError) as exc_info:
        orchestrator.get_events(filters)

    assert exc_info.value.field == field


def test_unreachable_health_state_store_does_not_break_reads(database, ledger, content, fake_ledger, event_input):
    monitor = HealthMonitor(
        providers={database.name: database, ledger.name: ledger, content.name: content},
        store=RedisHealthStateStore(UnreachableRedis()),
    )
    orchestrator = EventOrchestrator(database, ledger, content, monitor=monitor, sleep=lambda seconds: None)
    event_id = _activate(orchestrator, fake_ledger, event_input(), 1)

    result = orchestrator.get_events({"page": 1, "limit": 20})

    assert result["primary_source"] == "database"
    assert [e["id"] for e in result["events"]] == [event_id]
