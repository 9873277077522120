"""CLI for system-harness.

This module provides a small command-line front-end for starting a QEMU or
container system from a configuration file and watching it run.
"""
import logging
import shlex
import sys
import threading
import time
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from system_harness import __version__
from system_harness.base import Event, EventPublisher, Key, Status, SystemHarness, SystemTerminal
from system_harness.config import load_config
from system_harness.container import ContainerSystemConfig
from system_harness.errors import ConfigError, ErrorKind, SystemHarnessError
from system_harness.settings import LOG_LEVELS, load_settings

console = Console()


# Seconds between status polls while a system runs
POLL_INTERVAL = 1.0


def _load_or_exit(config_path: str):
    try:
        return load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e.message}")
        raise SystemExit(1)


def _print_event(event: Event) -> None:
    console.print(
        f"[yellow]Event:[/yellow] {event.kind.value} at {event.timestamp.isoformat()}"
    )


def _pump_console(terminal: SystemTerminal, out) -> None:
    """Copy console output to ``out`` until the terminal closes."""
    while True:
        try:
            data = terminal.read()
        except SystemHarnessError:
            return
        if not data:
            return
        out.write(data)
        out.flush()


def _watch(system: SystemHarness, deadline: Optional[float], enter: bool) -> None:
    last = system.status()
    console.print(f"  Status: {last.value}")

    with system.terminal() as terminal:
        if enter:
            try:
                terminal.send_key(Key.ENTER)
            except SystemHarnessError as e:
                console.print(f"[yellow]Could not send Enter:[/yellow] {e.message}")

        reader = threading.Thread(
            target=_pump_console,
            args=(terminal, sys.stdout.buffer),
            daemon=True,
        )
        reader.start()

        while deadline is None or time.monotonic() < deadline:
            wait = POLL_INTERVAL
            if deadline is not None:
                wait = max(0.0, min(wait, deadline - time.monotonic()))
            time.sleep(wait)
            try:
                status = system.status()
            except SystemHarnessError as e:
                if e.kind == ErrorKind.IO:
                    console.print("[yellow]Control connection closed[/yellow]")
                    return
                raise
            if status != last:
                console.print(f"  Status: {status.value}")
                last = status
            if status == Status.SHUTDOWN or not reader.is_alive():
                return


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level", "-l",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Log level (default: SYSTEM_HARNESS_LOG_LEVEL or WARNING)",
)
def cli(log_level):
    """System Harness - Start and control QEMU virtual machines and containers."""
    if log_level is None:
        try:
            log_level = load_settings().log_level
        except ConfigError as e:
            console.print(f"[red]Configuration error:[/red] {e.message}")
            raise SystemExit(1)
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
def command(config_path):
    """Print the command a CONFIG_PATH compiles to.

    Example:
        system-harness command vm.json
        system-harness command container.yaml
    """
    config = _load_or_exit(config_path)
    console.print(shlex.join(config.command()), markup=False, highlight=False, soft_wrap=True)


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
def show(config_path):
    """Summarize the system described by CONFIG_PATH.

    Example:
        system-harness show vm.json
    """
    config = _load_or_exit(config_path)
    backend = "container" if isinstance(config, ContainerSystemConfig) else "qemu"

    table = Table(title=f"System ({backend})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in config.model_dump(by_alias=True, exclude_none=True).items():
        table.add_row(key, str(value))
    console.print(table)


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--timeout", "-t", type=float, default=None, help="Stop the system after this many seconds")
@click.option("--enter", is_flag=True, help="Send an Enter keystroke once the console is open (QEMU only)")
def run(config_path, timeout, enter):
    """Start the system in CONFIG_PATH and stream its console.

    The system is shut down when it powers off, when the timeout elapses or
    on Ctrl-C.

    Example:
        system-harness run vm.json
        system-harness run vm.json --timeout 60 --enter
    """
    config = _load_or_exit(config_path)

    console.print("[cyan]Starting system...[/cyan]")
    if isinstance(config, ContainerSystemConfig):
        console.print(f"  Runtime: {config.tool}")
        console.print(f"  Image: {config.image}")
    else:
        console.print(f"  Executable: {config.executable}")

    try:
        system = config.build()
    except SystemHarnessError as e:
        console.print(f"[red]Failed to start:[/red] {e.message}")
        raise SystemExit(1)

    deadline = time.monotonic() + timeout if timeout is not None else None
    with system:
        if isinstance(system, EventPublisher):
            system.subscribe(_print_event)
        try:
            _watch(system, deadline, enter)
        except SystemHarnessError as e:
            console.print(f"[red]Harness error:[/red] {e.message}")
            raise SystemExit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted[/yellow]")
        console.print("[cyan]Stopping system...[/cyan]")
    console.print("[green]System stopped[/green]")


if __name__ == "__main__":
    cli()
