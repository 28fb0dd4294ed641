"""CLI commands for b2g-monitor."""

from pathlib import Path

import click


@click.group()
@click.version_option(package_name="b2g-monitor")
def main() -> None:
    """Watch b2g-info memory usage on a connected KaiOS/B2G device."""
    pass


@main.command()
@click.option("--name", "-n", "names", multiple=True, help="Collect samples for this app")
@click.option(
    "--interval", "-i", type=float, default=None, help="Seconds between polls (0 = back-to-back)"
)
@click.option(
    "--duration", "-d", type=float, default=None, help="Session length in seconds (0 = until Ctrl-C)"
)
@click.option("--output", "-o", type=click.Path(path_type=Path), default=None, help="Report path")
@click.option("--serial", "-s", default=None, help="adb serial of the device to use")
def watch(
    names: tuple[str, ...],
    interval: float | None,
    duration: float | None,
    output: Path | None,
    serial: str | None,
) -> None:
    """Poll b2g-info until stopped, then write the tracked-app report."""
    import asyncio

    from b2g_monitor.config import Config
    from b2g_monitor.monitor import SessionAborted, run_monitor

    try:
        config = Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    if names:
        config.polling.apps = list(names)
    if interval is not None:
        if interval < 0:
            raise click.BadParameter("must be >= 0", param_hint="--interval")
        config.polling.interval = interval
    if duration is not None:
        if duration < 0:
            raise click.BadParameter("must be >= 0", param_hint="--duration")
        config.polling.duration = duration
    if output is not None:
        config.report.path = str(output)
    if serial is not None:
        config.device.serial = serial

    try:
        asyncio.run(run_monitor(config))
    except SessionAborted as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1) from e


@main.command()
@click.argument("dump", type=click.File("r"))
@click.option("--name", "-n", "names", multiple=True, help="Only show this app")
@click.option("--json", "as_json", is_flag=True, help="Print parsed snapshot as JSON")
def parse(dump, names: tuple[str, ...], as_json: bool) -> None:
    """Parse a saved b2g-info dump (use - for stdin)."""
    import json

    from rich.console import Console

    from b2g_monitor.display import render_snapshot
    from b2g_monitor.parser import RootRequired, SnapshotParseError, parse_snapshot
    from b2g_monitor.session import SessionState

    try:
        snapshot = parse_snapshot(dump.read(), names)
    except RootRequired as e:
        raise click.ClickException(f"Dump was taken without root: {e}") from e
    except SnapshotParseError as e:
        raise click.ClickException(f"Malformed dump: {e}") from e

    if as_json:
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
        return

    state = SessionState()
    state.record(snapshot)
    Console(highlight=False).print(render_snapshot(state))


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from b2g_monitor.config import Config

    try:
        cfg = Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[polling]")
    click.echo(f"  apps = {cfg.polling.apps}")
    click.echo(f"  interval = {cfg.polling.interval}")
    click.echo(f"  duration = {cfg.polling.duration}")
    click.echo()
    click.echo("[device]")
    click.echo(f"  adb_path = {cfg.device.adb_path}")
    click.echo(f"  serial = {cfg.device.serial or '(first attached)'}")
    click.echo(f"  command_timeout = {cfg.device.command_timeout}")
    click.echo()
    click.echo("[report]")
    click.echo(f"  path = {cfg.report.path}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from b2g_monitor.config import Config

    cfg = Config()
    if not cfg.config_path.exists():
        cfg.save()
        click.echo(f"Created default config at {cfg.config_path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from b2g_monitor.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
