"""CLI entrypoint — moodring hook, status, stats, watch, serve, config."""

from __future__ import annotations

import json
import logging
import sys
import time

import click
import yaml

from moodring.config import (
    DEFAULTS,
    MoodringConfig,
    configure_logging,
    default_config,
    load_config,
    save_config_value,
)
from moodring.display import DisplayStateMachine
from moodring.engine import load_counters, run_hook, tick_registry
from moodring.models import Event, Phase
from moodring.parser import PayloadError, fallback_session_id, parse_payload
from moodring.streak import milestone_is_fresh, session_elapsed, top_files

logger = logging.getLogger(__name__)


@click.group()
def cli():
    """moodring — what is my coding agent doing right now."""
    pass


def _load_hook_config() -> MoodringConfig:
    """Config for the hook, falling back to defaults when the file is unusable."""
    try:
        config = load_config()
    except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
        config = default_config()
        configure_logging(config)
        logger.warning("Unusable config, using defaults: %s", e)
        config.db_path.parent.mkdir(parents=True, exist_ok=True)
        return config

    try:
        configure_logging(config)
    except OSError as e:
        config.log_file = None
        configure_logging(config)
        logger.warning("Cannot open log file, logging to stderr: %s", e)
    return config


@cli.command()
@click.argument("event", required=False)
def hook(event: str | None):
    """Handle one hook event read as JSON from stdin. Always exits 0."""
    try:
        config = _load_hook_config()
    except OSError:
        # The host tool's hook pipeline must always see exit 0
        logger.exception("Cannot prepare the state directory")
        return
    now = time.time()
    raw = sys.stdin.buffer.read() if not sys.stdin.isatty() else b""

    try:
        parsed = parse_payload(raw, event)
    except PayloadError as e:
        logger.warning("Ignoring hook payload: %s", e)
        parsed = Event(session_id=fallback_session_id(), phase=Phase.TURN_START)

    try:
        outcome = run_hook(parsed, config, now)
    except Exception:
        # The host tool's hook pipeline must always see exit 0
        logger.exception("Hook processing failed for %s", parsed.session_id)
        return
    logger.debug(
        "%s %s -> %s (%s)",
        parsed.phase.value,
        parsed.tool_name,
        outcome.classification.state.value,
        outcome.classification.detail,
    )


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable output.")
def status(as_json: bool):
    """Show the shared display slot and every live session."""
    config = load_config()
    registry = tick_registry(config, time.time())
    slot = registry.slot.to_view() if registry.slot else None

    if as_json:
        click.echo(json.dumps({"slot": slot, "sessions": registry.views()}, indent=2))
        return

    if not registry.sessions:
        click.echo("No live sessions.")
        return

    if slot:
        click.echo(f"Display: {slot['label'] or slot['session_id']} is {slot['state']} ({slot['detail']})")
    click.echo(f"\n{len(registry.sessions)} live sessions:")
    for record in registry.ordered():
        flag = " [stopped]" if record.stopped else ""
        parent = f" <- {record.parent_session_id}" if record.parent_session_id else ""
        click.echo(f"  {record.label:<10} {record.state.value:<12} {record.detail}{flag}{parent}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable output.")
def stats(as_json: bool):
    """Print streaks, records and today's totals."""
    config = load_config()
    counters = load_counters(config)
    now = time.time()

    if as_json:
        from moodring.web.routes import counters_view

        click.echo(json.dumps(counters_view(counters, now, config.milestone_window_seconds), indent=2))
        return

    click.echo(
        f"Streak: {counters.streak} (best {counters.best_streak}). "
        f"Tool calls: {counters.total_tool_calls}, errors: {counters.total_errors}."
    )
    if counters.broken_streak:
        click.echo(f"Last broken streak: {counters.broken_streak}")
    if milestone_is_fresh(counters, now, config.milestone_window_seconds):
        click.echo(f"Milestone! {counters.recent_milestone.value} in a row")

    daily = counters.daily
    minutes = (daily.cumulative_seconds + session_elapsed(counters, now)) / 60
    click.echo(f"Today ({daily.date or 'n/a'}): {daily.session_count} sessions, {minutes:.0f} min active")

    files = top_files(counters)
    if files:
        click.echo("\nMost edited files:")
        for name, count in files:
            click.echo(f"  {name}: {count}")


@cli.command()
@click.option("--interval", default=None, type=float, help="Seconds between ticks.")
@click.option("--ticks", default=0, type=int, help="Stop after N ticks (0 = run until Ctrl+C).")
def watch(interval: float | None, ticks: int):
    """Follow the shared slot, printing each visible state change."""
    config = load_config()
    interval = interval if interval is not None else config.tick_seconds
    display = DisplayStateMachine(now=time.time())
    last_seen = None
    shown = None
    count = 0

    try:
        while True:
            now = time.time()
            registry = tick_registry(config, now)
            slot = registry.slot
            if slot is not None:
                key = (slot.session_id, slot.timestamp)
                if key != last_seen:
                    last_seen = key
                    display.set_state(slot.state, slot.detail, now)
            display.tick(now)
            display.decay(now)

            visible = (display.current_state, display.current_detail)
            if visible != shown:
                shown = visible
                click.echo(f"{display.current_state.value:<12} {display.current_detail}")

            count += 1
            if ticks and count >= ticks:
                break
            time.sleep(interval)
    except KeyboardInterrupt:
        pass


@cli.command()
@click.option("--port", default=None, type=int, help="Port to serve on (default: 8788).")
def serve(port: int | None):
    """Serve the state records as JSON over HTTP."""
    config = load_config()
    serve_port = port or config.port

    click.echo(f"Serving state at http://localhost:{serve_port}/api/state")
    click.echo("Press Ctrl+C to stop.")

    from moodring.web.app import create_app

    app = create_app(config)
    app.run(host="localhost", port=serve_port)


@cli.group("config")
def config_group():
    """Read or change settings in the config file."""
    pass


@config_group.command("show")
def config_show():
    """Print the effective configuration."""
    config = load_config()
    for key in DEFAULTS:
        value = getattr(config, key)
        click.echo(f"{key}: {value}")


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set KEY to VALUE (parsed as YAML, so numbers stay numbers)."""
    if key not in DEFAULTS:
        click.echo(f"Unknown setting '{key}'.", err=True)
        raise SystemExit(1)
    save_config_value(key, yaml.safe_load(value))
    click.echo(f"{key} = {value}")
