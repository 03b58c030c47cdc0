"""Convergence CLI command: bring this machine to the manifest's state."""
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from homestead.core.report import ActionOutcome, OutcomeStatus, RunReport

# Module-level console instance (will be set by register function)
console: Console = Console()

STATUS_STYLES = {
    OutcomeStatus.APPLIED: ("green", "applied"),
    OutcomeStatus.SKIPPED_ALREADY_SATISFIED: ("dim", "already satisfied"),
    OutcomeStatus.SKIPPED_NOT_APPLICABLE: ("dim", "not applicable"),
    OutcomeStatus.WOULD_APPLY: ("yellow", "would apply"),
    OutcomeStatus.FAILED: ("red", "failed"),
}


def converge(
    manifest: Optional[str] = typer.Option(None, "--manifest", "-m", help="Override manifest (YAML)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Probe and report without changing anything"),
    skip_dev_tools: bool = typer.Option(False, "--skip-dev-tools", help="Skip every RAM-gated development tool"),
    json_output: bool = typer.Option(False, "--json", help="Print the run report as JSON"),
    report_path: Optional[str] = typer.Option(None, "--report", help="Also write the run report as JSON to this file"),
    timeout: Optional[int] = typer.Option(None, "--timeout", help="Per-action timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Converge this machine toward the manifest.

    Steps already satisfied are skipped, so running twice is safe.

    Examples:
        hs converge --dry-run          # See what would change
        hs converge                    # Apply the built-in defaults
        hs converge -m homestead.yml   # Apply with overrides
        hs converge --skip-dev-tools   # Only SSH, essentials and board setup
    """
    from homestead.cli_support import (
        find_manifest,
        handle_cli_error,
        print_info,
        print_warning,
        setup_file_logging,
    )
    from homestead.config.loader import load_manifest
    from homestead.core.driver import ConvergenceDriver
    from homestead.models.errors import ReportWriteError, UnsupportedPlatformError, ValidationError

    setup_file_logging(log_file=log_file, verbose=verbose)

    try:
        desired = load_manifest(find_manifest(manifest))
    except ValidationError as e:
        handle_cli_error(e, console, verbose=verbose, exit_code=2)

    if dry_run and not json_output:
        print_warning(console, "DRY RUN - no changes will be made")

    reporter = _report_writer(Path(report_path).expanduser()) if report_path else None
    driver = ConvergenceDriver(
        desired,
        dry_run=dry_run,
        skip_dev_tools=skip_dev_tools,
        timeout=timeout,
        reporter=reporter,
        on_outcome=None if json_output else _print_progress,
    )

    def _interrupt(signum, frame):
        driver.cancel()

    previous_handler = signal.signal(signal.SIGINT, _interrupt)
    try:
        report = driver.run()
    except UnsupportedPlatformError as e:
        handle_cli_error(e, console, verbose=verbose, exit_code=2)
    except ReportWriteError as e:
        handle_cli_error(e, console, verbose=verbose, exit_code=1)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if json_output:
        typer.echo(report.to_json())
    else:
        _display_report(report)
        if report_path:
            print_info(console, f"Run report written to {report_path}")
        _display_next_steps(report, desired)

    raise typer.Exit(report.exit_code())


def _report_writer(path: Path):
    from homestead.core.fileops import atomic_write
    from homestead.models.errors import ReportWriteError

    def write(report: RunReport) -> None:
        try:
            atomic_write(path, report.to_json() + "\n")
        except OSError as e:
            raise ReportWriteError(f"Could not write run report to {path}: {e}") from e

    return write


def _print_progress(outcome: ActionOutcome) -> None:
    style, label = STATUS_STYLES[outcome.status]
    console.print(f"  [{style}]{label:>17}[/{style}]  {outcome.target}")


def _display_report(report: RunReport) -> None:
    """Display the run report table and summary line."""
    console.print("\n[bold magenta]Run Report[/bold magenta]")

    table = Table(show_header=True, header_style="bold")
    table.add_column("Target", style="cyan")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")

    for outcome in report.outcomes:
        style, label = STATUS_STYLES[outcome.status]
        target = f"{outcome.target} [dim](required)[/dim]" if outcome.required else outcome.target
        table.add_row(target, f"[{style}]{label}[/{style}]", outcome.detail)

    console.print(table)

    summary = report.summary()
    parts = [
        f"[{STATUS_STYLES[status][0]}]{summary[status]} {STATUS_STYLES[status][1]}[/{STATUS_STYLES[status][0]}]"
        for status in OutcomeStatus.ALL
        if summary.get(status)
    ]
    console.print("Summary: " + (", ".join(parts) if parts else "nothing to do"))

    if report.cancelled:
        console.print("[yellow]⚠ Run cancelled; remaining steps were not attempted[/yellow]")
    failed = report.failures()
    if failed and not report.dry_run:
        console.print("[red]✗ Failed: " + ", ".join(o.target for o in failed) + "[/red]")
    if report.has_required_failures() and not report.dry_run:
        console.print("[red]✗ A required step failed[/red]")


def _display_next_steps(report: RunReport, desired) -> None:
    if report.dry_run:
        return
    key_path = Path(desired.ssh_identity.path).expanduser()
    console.print(f"\n[cyan]ℹ[/cyan] SSH key location: {key_path}.pub")
    console.print("\n[bold]Next steps:[/bold]")
    steps = [
        "Copy your SSH public key to remote hosts",
        "Test SSH connections to configured hosts",
        "Restart your terminal to use newly installed tools",
    ]
    if report.facts.get("ram_gb", 0) >= 4:
        steps += [
            "Authenticate GitHub CLI: gh auth login",
            "Configure Git: git config --global user.name 'Your Name'",
            "Configure Git: git config --global user.email 'your@email.com'",
        ]
    for number, step in enumerate(steps, 1):
        console.print(f"{number}. {step}")


def register_converge_commands(
    app: typer.Typer,
    shared_console: Console,
):
    """Register the converge command with the main Typer app.

    Args:
        app: Main Typer application
        shared_console: Shared Rich console instance
    """
    global console
    console = shared_console

    app.command()(converge)
