"""Command Line Interface for adbwire."""

import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .adb import ADBClient, ADBError, DeviceRecord
from .config import AdbWireConfig, get_config, load_config
from .util import setup_logging

console = Console()


def setup_cli_logging(settings: AdbWireConfig, verbose: bool = False):
    """Setup logging for CLI."""
    level = "DEBUG" if verbose else settings.log_level
    setup_logging(level=level, log_file=settings.log_file)


def _client(ctx: click.Context) -> ADBClient:
    config: AdbWireConfig = ctx.obj["config"]
    return ADBClient(config)


def _run(coro):
    """Run a client coroutine, turning ADB errors into a red message and exit 1."""
    try:
        return asyncio.run(coro)
    except ADBError as e:
        console.print(f"[red]ADB Error: {escape(str(e))}[/red]")
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--debug-adb", is_flag=True, help="Log every ADB protocol exchange")
@click.option("--port", "-P", type=int, help="ADB server port")
@click.option("--config", "-c", type=click.Path(exists=True, path_type=Path), help="Configuration file path")
@click.pass_context
def cli(ctx, verbose: bool, debug_adb: bool, port: Optional[int], config: Optional[Path]):
    """adbwire - talk to the Android Debug Bridge server."""
    ctx.ensure_object(dict)
    settings = load_config(config) if config else get_config().model_copy(deep=True)
    if port:
        settings.server.port = port
    if debug_adb:
        settings.server.debug = True
    ctx.obj["config"] = settings

    setup_cli_logging(settings, verbose or debug_adb)


@cli.command("version")
@click.pass_context
def version(ctx):
    """Show the ADB server version."""
    console.print(_run(_client(ctx).version()))


@cli.command("devices")
@click.option("--json", "as_json", is_flag=True, help="Print devices as JSON")
@click.pass_context
def devices(ctx, as_json: bool):
    """List connected devices and emulators."""
    records = _run(_client(ctx).devices())

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
        return
    _list_devices(records)


def _list_devices(records: List[DeviceRecord]):
    """Helper to display device list."""
    if not records:
        console.print("[yellow]No devices found[/yellow]")
        return

    table = Table(title="Connected Devices")
    table.add_column("Serial", style="cyan")
    table.add_column("State", style="green")
    table.add_column("Model", style="white")
    table.add_column("Brand", style="white")
    table.add_column("Android", style="white")
    table.add_column("SDK", style="white")
    table.add_column("ABI", style="white")
    table.add_column("Emulator", style="white")

    for record in records:
        table.add_row(
            record.id,
            record.state,
            record.model or "Unknown",
            record.brand or "Unknown",
            record.release or "Unknown",
            record.sdk or "Unknown",
            ", ".join(record.abi),
            "Yes" if record.emulator else "No",
        )

    console.print(table)


@cli.command("track")
@click.pass_context
def track(ctx):
    """Print the device list every time it changes (Ctrl+C to stop)."""
    client = _client(ctx)

    async def _track():
        tracker = client.track_devices(
            _list_devices,
            on_error=lambda e: console.print(f"[red]Tracking failed: {escape(str(e))}[/red]"),
        )
        try:
            await tracker.wait_closed()
        finally:
            tracker.close()

    try:
        _run(_track())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped tracking[/yellow]")


@cli.command("shell")
@click.argument("serial")
@click.argument("command", nargs=-1, required=True)
@click.pass_context
def shell(ctx, serial: str, command: List[str]):
    """Run a shell command on a device."""
    output = _run(_client(ctx).shell(serial, " ".join(command)))
    click.echo(output.decode("utf-8", errors="replace"), nl=False)


@cli.command("pid")
@click.argument("serial")
@click.argument("app_id")
@click.pass_context
def pid(ctx, serial: str, app_id: str):
    """Show the pid of a running app (0 if not running)."""
    click.echo(_run(_client(ctx).get_pid(serial, app_id)))


@cli.command("start-app")
@click.argument("serial")
@click.argument("app_id")
@click.argument("activity")
@click.pass_context
def start_app(ctx, serial: str, app_id: str, activity: str):
    """Launch an app's activity."""
    output = _run(_client(ctx).start_app(serial, app_id, activity))
    click.echo(output.decode("utf-8", errors="replace"), nl=False)


@cli.command("stop-app")
@click.argument("serial")
@click.argument("app_id")
@click.pass_context
def stop_app(ctx, serial: str, app_id: str):
    """Force-stop a running app."""
    _run(_client(ctx).stop_app(serial, app_id))
    console.print(f"[green]Stopped {app_id}[/green]")


@cli.command("install")
@click.argument("serial")
@click.argument("apk", type=click.Path(path_type=Path))
@click.pass_context
def install(ctx, serial: str, apk: Path):
    """Install an APK on a device."""
    _run(_client(ctx).install_app(serial, apk))
    console.print(f"[bold green]Installed {apk.name}[/bold green]")


@cli.command("push")
@click.argument("serial")
@click.argument("src", type=click.Path(path_type=Path))
@click.argument("dest")
@click.pass_context
def push(ctx, serial: str, src: Path, dest: str):
    """Copy a local file to a device."""
    _run(_client(ctx).push(serial, src, dest))
    console.print(f"[green]{src} -> {dest}[/green]")


@cli.command("pull")
@click.argument("serial")
@click.argument("src")
@click.argument("dest", type=click.Path(path_type=Path))
@click.pass_context
def pull(ctx, serial: str, src: str, dest: Path):
    """Copy a file from a device."""
    _run(_client(ctx).pull(serial, src, dest))
    console.print(f"[green]{src} -> {dest}[/green]")


@cli.command("forward")
@click.argument("serial")
@click.argument("local")
@click.argument("remote")
@click.pass_context
def forward(ctx, serial: str, local: str, remote: str):
    """Forward a host socket to a device socket, e.g. tcp:5000 tcp:6000."""
    _run(_client(ctx).forward(serial, local, remote))


@cli.command("logcat")
@click.argument("serial")
@click.pass_context
def logcat(ctx, serial: str):
    """Stream a device's main log buffer."""
    try:
        _run(_client(ctx).logcat(serial, click.echo))
    except KeyboardInterrupt:
        pass


@cli.command("start-server")
@click.pass_context
def start_server(ctx):
    """Start the ADB server."""
    _run(_client(ctx).start_server())
    console.print("[green]ADB server started[/green]")


@cli.command("kill-server")
@click.pass_context
def kill_server(ctx):
    """Stop the ADB server."""
    _run(_client(ctx).stop_server())
    console.print("[green]ADB server stopped[/green]")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
