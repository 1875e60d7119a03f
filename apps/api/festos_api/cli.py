"""CLI commands for Festos API."""

import json
import sys

import click

from festos_api.errors import FestosError
from festos_api.services.container import get_audit_service, get_health_monitor


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
def cli():
    """Festos API CLI."""
    pass


@cli.command()
@click.option("--no-probe", is_flag=True, help="Report recorded state without probing providers.")
def health(no_probe):
    """Show storage provider health."""
    report = get_health_monitor().get_system_health(probe=not no_probe)
    _echo_json(report)
    if report["overall"] != "healthy":
        sys.exit(1)


@cli.command("consistency-check")
def consistency_check():
    """Detect divergence between the database and the ledger."""
    records = get_health_monitor().run_consistency_check()
    _echo_json([r.to_dict() for r in records])
    click.echo(f"{len(records)} divergence(s) found.", err=True)


@cli.command()
def sync():
    """Run a consistency check and repair divergence."""
    result = get_health_monitor().run_data_sync()
    _echo_json(result)
    if result["failed"]:
        click.echo(f"✗ {result['failed']} repair(s) failed.", err=True)
        sys.exit(1)
    click.echo(f"✓ {result['repaired']} repaired, {result['skipped']} skipped.", err=True)


@cli.command()
@click.argument("event_id")
def repair(event_id):
    """Check and sync a single event."""
    try:
        result = get_health_monitor().repair_event(event_id)
    except FestosError as e:
        click.echo(f"✗ Repair failed: {e}", err=True)
        sys.exit(1)
    _echo_json(result)


@cli.command("verify-audit")
def verify_audit():
    """Verify the sync audit hash chain."""
    if get_audit_service().verify_chain():
        click.echo("✓ Audit chain intact.")
    else:
        click.echo("✗ Audit chain verification failed.", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
