"""Utility CLI commands - facts, version."""
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from homestead import __version__

# Module-level console instance (will be set by register function)
console: Console = Console()


def facts(
    manifest: Optional[str] = typer.Option(None, "--manifest", "-m", help="Override manifest (YAML)"),
    save: Optional[str] = typer.Option(None, "--save", help="Save the probed facts as JSON to this file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show the machine facts a convergence run branches on.

    Probes OS, architecture, RAM, Raspberry Pi board, desktop, and the
    install check of every manifest entry. Nothing is changed.
    """
    from homestead.backends import select_backend
    from homestead.cli_support import find_manifest, handle_cli_error, print_success, print_warning
    from homestead.config.loader import load_manifest
    from homestead.core.command import CommandRunner
    from homestead.core.config import get_config
    from homestead.discovery.hwdetect import SystemDetector
    from homestead.models.errors import UnsupportedPlatformError, ValidationError
    from homestead.models.facts import MachineFacts

    try:
        desired = load_manifest(find_manifest(manifest))
    except ValidationError as e:
        handle_cli_error(e, console, verbose=verbose, exit_code=2)

    detector = SystemDetector(runner=CommandRunner(default_timeout=get_config().check_timeout))
    platform_facts = MachineFacts(os_family=detector.probe_os_family())
    try:
        backend = select_backend(platform_facts)
    except UnsupportedPlatformError as e:
        print_warning(console, f"{e}; package checks will report absent")
        backend = None
    machine = detector.capture_facts(desired, backend)

    console.print("\n[bold cyan]🔍 Machine Facts[/bold cyan]\n")
    console.print(Panel(
        f"[bold]OS:[/bold] {machine.os_family.value}" + (" (WSL)" if machine.is_wsl else "") + "\n"
        f"[bold]Architecture:[/bold] {machine.arch or 'unknown'}\n"
        f"[bold]Desktop:[/bold] {'yes' if machine.has_desktop else 'no'}",
        title="🐧 Platform",
        border_style="blue"
    ))

    dev_tools = "[green]enabled[/green]" if machine.ram_gb >= 4 else "[yellow]skipped (< 4 GB)[/yellow]"
    console.print(Panel(
        f"[bold]Total:[/bold] {machine.ram_gb:.2f} GB\n"
        f"[bold]Development tools:[/bold] {dev_tools}",
        title="🧠 Memory",
        border_style="magenta"
    ))

    if machine.pi_model.is_pi:
        board = machine.pi_model.value
        border = "green"
    else:
        board = f"[dim]{machine.pi_model.value}[/dim]"
        border = "yellow"
    console.print(Panel(
        f"[bold]Raspberry Pi:[/bold] {board}",
        title="🍓 Board",
        border_style=border
    ))

    table = Table(title="📦 Manifest entries", show_header=True)
    table.add_column("Entry", style="cyan")
    table.add_column("Installed", style="bold")
    for name, present in machine.installed.items():
        table.add_row(name, "[green]yes[/green]" if present else "[dim]no[/dim]")
    console.print(table)

    if save:
        path = Path(save).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(machine.to_dict(), indent=2) + "\n")
        print_success(console, f"Facts saved to: {path}")
    else:
        console.print("\n[dim]Tip: Use --save PATH to store these facts as JSON[/dim]")

    console.print()


def version():
    """Show Homestead version."""
    console.print(f"Homestead v{__version__}")


def register_utility_commands(
    app: typer.Typer,
    shared_console: Console,
):
    """Register utility commands with the main Typer app.

    Args:
        app: Main Typer application
        shared_console: Shared Rich console instance
    """
    global console
    console = shared_console

    app.command()(facts)
    app.command()(version)
