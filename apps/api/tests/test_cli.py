"""Tests for the operator CLI."""

import pytest
from click.testing import CliRunner

from festos_api.cli import cli
from festos_api.services.container import set_services

from conftest import tx_hash


@pytest.fixture
def runner(services):
    set_services(services)
    try:
        yield CliRunner()
    finally:
        set_services(None)


def _active_event(services, fake_ledger, event_input):
    prepared = services.orchestrator.prepare_event_creation(event_input())
    ledger_event_id = fake_ledger.mine(tx_hash(1), prepared["unsigned_operation"])
    services.orchestrator.finalize_event_creation(prepared["event_id"], tx_hash(1))
    return prepared["event_id"], ledger_event_id


def test_health_without_probe(runner):
    result = runner.invoke(cli, ["health", "--no-probe"])

    assert result.exit_code == 0
    assert '"overall": "healthy"' in result.output


def test_consistency_check_and_sync(runner, services, fake_ledger, event_input):
    event_id, ledger_event_id = _active_event(services, fake_ledger, event_input)
    fake_ledger.events[ledger_event_id]["maxCapacity"] = 30

    check = runner.invoke(cli, ["consistency-check"])
    assert check.exit_code == 0
    assert '"field": "max_capacity"' in check.output

    sync = runner.invoke(cli, ["sync"])
    assert sync.exit_code == 0
    assert "1 repaired" in sync.output
    assert services.database.get_event(event_id).max_capacity == 30


def test_repair_unknown_event_exits_nonzero(runner):
    result = runner.invoke(cli, ["repair", "missing"])

    assert result.exit_code == 1
    assert "Repair failed" in result.output


def test_verify_audit(runner):
    result = runner.invoke(cli, ["verify-audit"])

    assert result.exit_code == 0
    assert "Audit chain intact" in result.output
