#!/usr/bin/env python3
"""Command Line Interface for Washline.

Usage:
    washline server                  # Start API server
    washline db init                 # Create missing tables
    washline outbox dispatch -l 25   # Process one outbox batch
    washline outbox worker           # Run the outbox/reminder worker
    washline quote price house-wash driveway --zone zone-extended
    washline info                    # Show configuration
"""
from __future__ import annotations

import json
from typing import List, Optional

import typer
import uvicorn

from core.config import get_settings
from core.logging_config import get_logger, setup_logging

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

app = typer.Typer(help="Washline operations CLI")
db_app = typer.Typer(help="Database commands")
outbox_app = typer.Typer(help="Outbox commands")
quote_app = typer.Typer(help="Quote commands")
app.add_typer(db_app, name="db")
app.add_typer(outbox_app, name="outbox")
app.add_typer(quote_app, name="quote")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Washline - exterior cleaning operations backend."""
    log_level = "DEBUG" if verbose else SETTINGS.log_level
    setup_logging(level=log_level, json_format=SETTINGS.log_format == "json")


# =============================================================================
# Server
# =============================================================================


@app.command("server")
def run_server(
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload for development"),
) -> None:
    """Start the API server."""
    typer.echo(f"Starting API server on {host}:{port}...")
    uvicorn.run("api.app:app", host=host, port=port, reload=reload)


# =============================================================================
# Database
# =============================================================================


@db_app.command("init")
def db_init(
    fresh: bool = typer.Option(False, "--fresh", help="Create every table, not just missing ones"),
) -> None:
    """Create database tables."""
    from core.db import init_db

    result = init_db(create_missing_only=not fresh)
    if result["status"] == "error":
        typer.secho(f"✗ Database init failed: {result.get('error')}", fg="red")
        raise typer.Exit(1)

    created = result["tables_created"]
    typer.secho(f"✓ Database ready ({len(created)} tables created)", fg="green")
    for warning in result["warnings"]:
        typer.secho(f"  ! {warning}", fg="yellow")


# =============================================================================
# Outbox
# =============================================================================


@outbox_app.command("dispatch")
def outbox_dispatch(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Events to process (capped at the max batch size)"),
) -> None:
    """Process one batch of pending outbox events."""
    from outbox.dispatcher import get_outbox_dispatcher

    stats = get_outbox_dispatcher().process_batch(limit)
    typer.echo(
        f"Processed {stats.total} events: "
        f"{stats.processed} processed, {stats.skipped} skipped, {stats.errors} errors"
    )
    if stats.errors:
        raise typer.Exit(1)


@outbox_app.command("worker")
def outbox_worker(
    interval: Optional[int] = typer.Option(None, "--interval", "-i", help="Polling interval in seconds"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Events per batch"),
) -> None:
    """Run the outbox and reminder worker until interrupted."""
    from scheduler.runner import run_scheduler_blocking

    typer.echo("Starting worker...")
    run_scheduler_blocking(poll_interval_seconds=interval, batch_size=limit)


@outbox_app.command("pending")
def outbox_pending() -> None:
    """Show how many events are waiting."""
    from outbox.dispatcher import get_outbox_dispatcher

    typer.echo(f"Pending events: {get_outbox_dispatcher().pending_count()}")


# =============================================================================
# Quotes
# =============================================================================


@quote_app.command("price")
def quote_price(
    services: List[str] = typer.Argument(..., help="Service ids, e.g. house-wash roof"),
    zone: str = typer.Option("", "--zone", "-z", help="Service zone id"),
    add_on: List[str] = typer.Option([], "--add-on", "-a", help="Add-on id (repeatable)"),
    surface_area: Optional[float] = typer.Option(None, "--sqft", help="Surface area in square feet"),
    bundles: bool = typer.Option(False, "--bundles", help="Apply bundle discounts"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw breakdown"),
) -> None:
    """Print a price breakdown without storing a quote."""
    from core.exceptions import ValidationError
    from pricing.engine import calculate_breakdown

    request = {
        "zone_id": zone,
        "selected_services": services,
        "selected_add_ons": add_on,
        "surface_area": surface_area,
        "apply_bundles": bundles,
    }
    try:
        breakdown = calculate_breakdown(request, deposit_rate=SETTINGS.default_deposit_rate)
    except ValidationError as e:
        typer.secho(f"✗ {e}", fg="red")
        for problem in e.details.get("errors", []):
            typer.echo(f"  {problem['field']}: {problem['message']}")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(breakdown.to_dict(), indent=2))
        return

    for item in breakdown.line_items:
        typer.echo(f"  {item.label:<32} {item.amount:>10.2f}")
    typer.echo(f"  {'Subtotal':<32} {breakdown.subtotal:>10.2f}")
    if breakdown.discounts:
        typer.echo(f"  {'Discounts':<32} {-breakdown.discounts:>10.2f}")
    typer.echo(f"  {'Total':<32} {breakdown.total:>10.2f}")
    typer.echo(f"  {'Deposit due':<32} {breakdown.deposit_due:>10.2f}")
    typer.echo(f"  {'Balance due':<32} {breakdown.balance_due:>10.2f}")


# =============================================================================
# Info
# =============================================================================


@app.command("info")
def show_info() -> None:
    """Show application configuration info."""
    typer.echo("Washline Configuration:")
    typer.echo(f"  Environment: {SETTINGS.environment}")
    typer.echo(f"  Dry Run: {SETTINGS.dry_run}")
    typer.echo(f"  Log Level: {SETTINGS.log_level}")
    typer.echo(f"  Timezone: {SETTINGS.appointment_timezone}")
    typer.echo(f"  Intake Limit: {SETTINGS.intake_rate_limit}/{SETTINGS.intake_rate_window_seconds}s")
    typer.echo(f"  Outbox Batch: {SETTINGS.outbox_batch_size} (max {SETTINGS.outbox_max_batch_size})")
    typer.echo(f"  Admin Key Set: {bool(SETTINGS.admin_api_key)}")
    typer.echo(f"  Enabled Services: {', '.join(SETTINGS.get_enabled_services()) or 'none'}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
