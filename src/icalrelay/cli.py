"""CLI for icalrelay: inspect modules, check configs and render profiles."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from datetime import UTC, datetime
from pathlib import Path

import click

from icalrelay.cleanup import ConfigCleanup, find_expired, run_cleanup
from icalrelay.config import ConfigError, RelayConfig, config_writer, load_config
from icalrelay.store import ConfigStore
from icalrelay.core.logging import configure_logging
from icalrelay.errors import RelayError
from icalrelay.modules import MODULES, ErrorPolicy, available_modules, load_pipeline
from icalrelay.relay import render_profile

logger = logging.getLogger(__name__)

_config_option = click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to the relay TOML config",
)


@click.group()
@click.version_option(version="0.1.0")
def cli() -> None:
    """icalrelay: rewrite iCalendar feeds through configurable module pipelines."""


def _load(config_path: Path) -> RelayConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)
    configure_logging(config.logging.level, config.logging.format, config.logging.log_root)
    logger.debug("Loaded config from %s (%d profiles)", config_path, len(config.profiles))
    return config


@cli.command("modules")
def modules_cmd() -> None:
    """List all available modules."""
    click.echo(f"{'Module':<26} {'Privilege':<10} {'Description'}")
    click.echo("-" * 80)
    for name in available_modules():
        spec = MODULES[name]
        privilege = "low" if spec.low_privileged else "super"
        click.echo(f"{name:<26} {privilege:<10} {spec.summary}")


@cli.command()
@_config_option
def check(config_path: Path) -> None:
    """Validate the module list of every profile."""
    config = _load(config_path)
    failed = 0
    for name, profile in sorted(config.profiles.items()):
        try:
            invocations = load_pipeline(profile.modules)
        except RelayError as exc:
            failed += 1
            click.echo(f"{name}: ERROR {exc}")
            continue
        click.echo(f"{name}: ok ({len(invocations)} module(s))")
    if failed:
        sys.exit(1)


@cli.command()
@_config_option
@click.argument("profile")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the calendar to a file instead of stdout",
)
@click.option(
    "--continue-on-error",
    is_flag=True,
    default=False,
    help="Keep running the pipeline after a module fails",
)
def render(config_path: Path, profile: str, output: Path | None, continue_on_error: bool) -> None:
    """Render PROFILE and print the resulting calendar."""
    config = _load(config_path)
    policy = ErrorPolicy.CONTINUE if continue_on_error else ErrorPolicy.ABORT
    try:
        document, result = render_profile(config, profile, policy=policy)
    except RelayError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    for error in result.errors:
        click.echo(f"Module error: {error}", err=True)
    if result.aborted:
        sys.exit(1)

    if output is not None:
        document.write(output)
        click.echo(f"Wrote {document.event_count()} event(s) to {output}", err=True)
    else:
        click.echo(document.serialize().decode(), nl=False)


@cli.command()
@_config_option
@click.option(
    "--apply",
    is_flag=True,
    default=False,
    help="Remove expired entries and save the config file",
)
@click.option(
    "--watch",
    is_flag=True,
    default=False,
    help="Keep running and remove expired entries every cleanup.interval_s",
)
def cleanup(config_path: Path, apply: bool, watch: bool) -> None:
    """List, or remove, module entries whose ``expires`` instant has passed."""
    config = _load(config_path)
    if watch:
        if not config.cleanup.enabled:
            click.echo("Cleanup is disabled in the config.")
            sys.exit(1)
        click.echo(f"Watching {config_path} every {config.cleanup.interval_s}s")
        asyncio.run(_watch_cleanup(config, config_path))
        return

    expired = find_expired(config, datetime.now(UTC))
    if not expired:
        click.echo("No expired modules.")
        return
    for name, positions in sorted(expired.items()):
        for index in positions:
            module = config.profiles[name].modules[index]
            click.echo(f"{name}: module {index + 1} ({module['name']}) expired {module['expires']}")
    click.echo(f"{sum(len(p) for p in expired.values())} expired module(s)")

    if apply:
        store = ConfigStore(config, persist=config_writer(config_path))
        try:
            removed = run_cleanup(store)
        except ConfigError as exc:
            click.echo(f"Config error: {exc}", err=True)
            sys.exit(1)
        click.echo(f"Removed {removed} module(s) from {config_path}")


async def _watch_cleanup(config: RelayConfig, config_path: Path) -> None:
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        click.echo("\nShutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    store = ConfigStore(config, persist=config_writer(config_path))
    task = ConfigCleanup(store, interval_s=config.cleanup.interval_s)
    task.run_once()
    task.start()
    await shutdown_event.wait()
    await task.stop()
