#!/usr/bin/env python3
"""
Court Reservation Sniper Bot - Main Entry Point

Usage:
    python main.py run [--now] [--dry-run|--shadow|--allow-booking] [--target-date 2025-03-14]
    python main.py resolve 5 2025-03-14 "06:00 AM - 07:00 AM"
    python main.py classify "Su reservación se ha realizado con éxito"
    python main.py api reserve --resource 5 --date 2025-03-14 --time "06:00 AM - 07:00 AM"
"""
import asyncio
import logging
import sys
from typing import Dict, Tuple

import click
from dateutil import parser as date_parser
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from courtbot.common import logs  # noqa: F401  registers the SUCCESS level
from courtbot.common.classifier import classify as classify_text
from courtbot.common.config import load_config
from courtbot.common.errors import AuthError, CourtBotError, SlotResolutionError
from courtbot.common.models import AttemptState, ClaimRequest, SessionMode, day_name
from courtbot.common.schedule import DEFAULT_SCHEDULE
from courtbot.common.scheduler import UnlockClock

console = Console()

STATE_STYLES = {
    AttemptState.SUCCESS: "green",
    AttemptState.SHADOW: "cyan",
    AttemptState.DRY_RUN: "cyan",
    AttemptState.WITHHELD: "yellow",
    AttemptState.FAILURE: "red",
}


def setup_logging(level: str = "INFO", log_file: str = None):
    """Configure logging"""
    handlers = [RichHandler(console=console, rich_tracebacks=True)]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(message)s",
        handlers=handlers
    )


def parse_overrides(values: Tuple[str, ...]) -> Dict[str, str]:
    """RESOURCE=WINDOW pairs from repeated --time options"""
    overrides = {}
    for value in values:
        resource, sep, window = value.partition("=")
        if not sep or not resource.strip() or not window.strip():
            raise click.BadParameter(f"expected RESOURCE=WINDOW, got {value!r}", param_hint="--time")
        overrides[resource.strip()] = window.strip()
    return overrides


@click.group()
@click.option("--config", "-c", default=None, help="Path to config file (default: search, then environment)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, config, verbose):
    """
    Court Reservation Sniper Bot

    Claims tennis-court slots the moment the portal unlocks them.
    """
    ctx.ensure_object(dict)

    try:
        cfg = load_config(config)
        ctx.obj["config"] = cfg
        setup_logging(
            level="DEBUG" if verbose else cfg.logging.level,
            log_file=cfg.logging.file
        )
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        console.print("Create a config file from config/config.example.yaml")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--target-date", help="Reserve this date instead of today + days ahead")
@click.option("--time", "times", multiple=True, metavar="RESOURCE=WINDOW", help="Time window override, repeatable")
@click.option("--skip", multiple=True, metavar="RESOURCE", help="Skip a resource, repeatable")
@click.option("--dry-run", is_flag=True, help="Plan only, no browser")
@click.option("--shadow", is_flag=True, help="Full flow, never click submit")
@click.option("--allow-booking", is_flag=True, help="Allow the real submit (dead-man switch)")
@click.option("--debug", is_flag=True, help="Screenshots and frame dumps on failure")
@click.option("--session-mode", type=click.Choice([m.value for m in SessionMode]), help="shared or isolated logins")
@click.option("--poll-ms", type=int, help="Unlock poll interval")
@click.option("--unlock-max-ms", type=int, help="Max wait for the date to unlock")
@click.option("--nav-ms", type=int, help="Frame navigation timeout")
@click.option("--sel-ms", type=int, help="Selector timeout")
@click.option("--now", "now_", is_flag=True, help="Don't wait for the unlock instant")
@click.option("--deadline", type=float, help="Abort the whole run after this many seconds")
@click.option("--mock-unlock-ms", type=int, help="Keep calendar days locked this long after each load (rehearsal)")
@click.pass_context
def run(ctx, target_date, times, skip, dry_run, shadow, allow_booking, debug, session_mode,
        poll_ms, unlock_max_ms, nav_ms, sel_ms, now_, deadline, mock_unlock_ms):
    """Wait for the unlock and claim every configured court"""
    from courtbot.browser import ClaimOrchestrator

    cfg = ctx.obj["config"]
    run_changes = {
        "time_overrides": {**cfg.run.time_overrides, **parse_overrides(times)},
        "skip": [*cfg.run.skip, *skip],
    }
    if target_date:
        run_changes["target_date"] = target_date
    if session_mode:
        run_changes["session_mode"] = session_mode
    if now_:
        run_changes["wait_for_unlock"] = False
    for key, flag in (("dry_run", dry_run), ("shadow", shadow), ("allow_booking", allow_booking), ("debug", debug)):
        if flag:
            run_changes[key] = True
    cfg = cfg.with_run(**run_changes)

    timing_changes = {
        key: value
        for key, value in (
            ("poll_interval_ms", poll_ms),
            ("unlock_max_ms", unlock_max_ms),
            ("nav_ms", nav_ms),
            ("selector_ms", sel_ms),
        )
        if value is not None
    }
    if timing_changes:
        cfg = cfg.with_timing(**timing_changes)
    if mock_unlock_ms is not None:
        cfg = cfg.with_browser(mock_unlock_ms=mock_unlock_ms)

    mode = "SCHEDULED" if cfg.run.wait_for_unlock else "NOW"
    flags = [name for name, on in (("DRY RUN", cfg.run.dry_run), ("SHADOW", cfg.run.shadow), ("DEBUG", cfg.run.debug)) if on]
    console.print(Panel(
        f"🎾 Court Reservation\n\n"
        f"Mode: {mode}{' (' + ', '.join(flags) + ')' if flags else ''}\n"
        f"Session mode: {cfg.run.session_mode.value}\n"
        f"Booking allowed: {cfg.run.allow_booking}",
        style="blue"
    ))

    async def go():
        orchestrator = ClaimOrchestrator(cfg)
        if deadline:
            return await asyncio.wait_for(orchestrator.run(), timeout=deadline)
        return await orchestrator.run()

    try:
        report = asyncio.run(go())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        sys.exit(130)
    except asyncio.TimeoutError:
        console.print(f"[red]Run aborted after --deadline {deadline}s[/red]")
        sys.exit(2)
    except AuthError as e:
        console.print(Panel(f"[bold red]❌ Login failed[/bold red]\n\n{e}", style="red"))
        sys.exit(1)

    if not report.records:
        console.print("[yellow]No reservations needed for these dates[/yellow]")
        return

    table = Table(title=report.subject)
    table.add_column("Court")
    table.add_column("Date")
    table.add_column("Time")
    table.add_column("Result")
    table.add_column("Details")
    for record in report.records:
        style = STATE_STYLES.get(record.state, "white")
        table.add_row(
            record.resource_name,
            record.target_date.isoformat() if record.target_date else "-",
            record.time_window or "-",
            f"[{style}]{record.state.value}[/{style}]",
            record.summary,
        )
    console.print(table)

    if report.failures:
        sys.exit(1)


@cli.command()
@click.argument("resource")
@click.argument("target_date")
@click.argument("window")
def resolve(resource, target_date, window):
    """Show the slot id for RESOURCE on TARGET_DATE at WINDOW"""
    day = date_parser.parse(target_date).date()
    try:
        slot_id = DEFAULT_SCHEDULE.resolve(resource, day, window)
    except SlotResolutionError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]{resource} {day_name(day)} {day.isoformat()} {window} → slot {slot_id}[/green]")


@cli.command()
@click.argument("text")
def classify(text):
    """Classify a portal response message"""
    outcome = classify_text(text)
    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", outcome.status.value)
    table.add_row("Message", outcome.message)
    if outcome.days:
        table.add_row("Days before", outcome.days)
    console.print(table)


@cli.group()
def api():
    """Mobile API mode (no browser)"""
    pass


@api.command("reserve")
@click.option("--resource", required=True, help="Area id, e.g. 5")
@click.option("--date", "target_date", required=True, help="Date to reserve")
@click.option("--time", "window", required=True, help='Time window, e.g. "06:00 AM - 07:00 AM"')
@click.option("--allow-booking", is_flag=True, help="Actually send the request")
@click.pass_context
def api_reserve(ctx, resource, target_date, window, allow_booking):
    """Reserve one slot through the mobile API"""
    from courtbot.api import MobileAPIClient

    cfg = ctx.obj["config"]
    day = date_parser.parse(target_date).date()
    try:
        resource_cfg = cfg.resource(resource)
        request = ClaimRequest(
            resource_id=resource,
            resource_name=resource_cfg.name,
            target_date=day,
            time_window=window,
            slot_id=DEFAULT_SCHEDULE.resolve(resource, day, window),
        )
    except (KeyError, SlotResolutionError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if not (allow_booking or cfg.run.allow_booking):
        console.print(Panel(
            f"⚠️ Booking not allowed, request not sent\n\n"
            f"Would reserve {request.resource_name} on {day.isoformat()} at {window} (slot {request.slot_id})",
            style="yellow"
        ))
        return

    async def go():
        async with MobileAPIClient.from_config(cfg) as client:
            return await client.reserve(request)

    try:
        outcome = asyncio.run(go())
    except CourtBotError as e:
        console.print(Panel(f"[bold red]❌ Failed[/bold red]\n\n{e}", style="red"))
        sys.exit(1)

    if outcome.is_success:
        console.print(Panel(f"[bold green]🎉 SUCCESS![/bold green]\n\n{outcome.message}", style="green"))
    else:
        console.print(Panel(
            f"[bold red]❌ {outcome.status.value}[/bold red]\n\n{outcome.message}\n\nRaw: {outcome.raw_message}",
            style="red"
        ))
        sys.exit(1)


@cli.command()
@click.pass_context
def info(ctx):
    """Show current configuration"""
    cfg = ctx.obj["config"]
    clock = UnlockClock(cfg.schedule.timezone, cfg.schedule.unlock_clock_time)
    unlock_at = clock.next_unlock()

    console.print(Panel("📋 Current Configuration", style="blue"))

    table = Table(show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Portal", cfg.site.base_url)
    table.add_row("Username", cfg.credentials.username)
    table.add_row("Timezone", cfg.schedule.timezone)
    table.add_row("Next Unlock", f"{unlock_at.isoformat()} (in {clock.format_countdown(unlock_at)})")
    table.add_row("Session Mode", cfg.run.session_mode.value)
    table.add_row("Booking Allowed", str(cfg.run.allow_booking))
    table.add_row("Headless Mode", str(cfg.browser.headless))
    table.add_row("Poll / Max Wait", f"{cfg.timing.poll_interval_ms}ms / {cfg.timing.unlock_max_ms}ms")
    table.add_row("Slot Tables", ", ".join(f"area {r}" for r in DEFAULT_SCHEDULE.resources))
    for resource in cfg.resources:
        slots = ", ".join(f"{day[:3]} {window}" for day, window in resource.slots.items()) or "none"
        table.add_row(f"{resource.name} ({resource.id})", f"{resource.days_ahead} days ahead: {slots}")

    console.print(table)


if __name__ == "__main__":
    cli()
