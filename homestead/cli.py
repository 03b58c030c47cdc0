#!/usr/bin/env python3
"""Homestead CLI - Converge a workstation or Raspberry Pi to a known state."""

import typer
from rich.console import Console

from homestead.cli_converge_commands import register_converge_commands
from homestead.cli_utility_commands import register_utility_commands
from homestead.core.logger import get_logger

app = typer.Typer(
    name="hs",
    help="""Homestead - Converge this machine to a declared state

SSH key, SSH hosts, packages and services from one YAML manifest.
Safe to rerun: finished steps are skipped.

Quick start:
  hs facts                 # What does this machine look like?
  hs converge --dry-run    # See what would change
  hs converge              # Make it happen
""",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

# Attach modular subcommands
register_converge_commands(app, console)
register_utility_commands(app, console)

if __name__ == "__main__":
    app()
