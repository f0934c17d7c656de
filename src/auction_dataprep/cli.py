"""Data preparation CLI."""

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from auction_dataprep.config import HarnessSettings, load_settings
from auction_dataprep.exceptions import ConfigurationError
from auction_dataprep.orchestrator import DataLifecycleOrchestrator
from auction_dataprep.services import load_topology
from auction_dataprep.types import RunRequest

app = typer.Typer(
    name="dataprep",
    help="Load, verify and back up auction benchmark data",
    no_args_is_help=True,
)

console = Console()

ConfigOption = typer.Option(
    None,
    "--config", "-c",
    help="Harness settings YAML (DATAPREP_* env vars also apply)",
)
TopologyOption = typer.Option(
    Path("topology.yaml"),
    "--topology", "-t",
    help="Data service topology YAML",
)
UsersOption = typer.Option(
    0,
    "--users", "-u",
    help="Number of simulated users (ignored when scale is set)",
)
LogDirOption = typer.Option(
    Path("logs"),
    "--log-dir",
    help="Directory for stage logs",
)


def build_orchestrator(
    config: Optional[Path], topology: Path, log_dir: Path
) -> DataLifecycleOrchestrator:
    """Create an orchestrator from settings and topology files.

    Raises:
        typer.Exit: If either file is missing or invalid
    """
    try:
        settings = load_settings(config) if config is not None else HarnessSettings()
        app_instance = load_topology(topology, settings)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    log_dir.mkdir(parents=True, exist_ok=True)
    return DataLifecycleOrchestrator(app_instance, settings, str(log_dir), console=console)


def run_async(coro):
    """Run a coroutine, turning configuration errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(1)


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG)


@app.command()
def prepare(
    users: int = UsersOption,
    config: Optional[Path] = ConfigOption,
    topology: Path = TopologyOption,
    log_dir: Path = LogDirOption,
    reload_db: bool = typer.Option(False, "--reload-db", help="Wipe and reload data"),
    load_db: bool = typer.Option(False, "--load-db", help="Load data if none is usable"),
    backup: bool = typer.Option(False, "--backup", help="Back up freshly loaded data"),
    rebackup: bool = typer.Option(False, "--rebackup", help="Always retake the backup"),
) -> None:
    """Make data ready for a run and prepare its auctions.

    Prints the run request to persist for the next run of a series.

    Examples:
        dataprep prepare --users 125 --load-db --backup
        dataprep prepare --config run.yaml --reload-db
    """
    orchestrator = build_orchestrator(config, topology, log_dir)
    request = RunRequest(
        reload_db=reload_db, load_db=load_db, backup=backup, rebackup=rebackup
    )
    result = run_async(orchestrator.prepare_data(users, request))

    console.print_json(json.dumps(asdict(result.next_request)))
    if not result.success:
        console.print(f"[bold red]{result.message}[/bold red]")
        raise typer.Exit(1)
    console.print(f"[bold green]{result.message}[/bold green]")


@app.command()
def check(
    users: int = UsersOption,
    config: Optional[Path] = ConfigOption,
    topology: Path = TopologyOption,
    log_dir: Path = LogDirOption,
) -> None:
    """Check whether loaded data matches the target. Exits 1 if not."""
    orchestrator = build_orchestrator(config, topology, log_dir)
    target = orchestrator.target(users)
    if not run_async(orchestrator.readiness.is_loaded(target)):
        console.print(f"[yellow]Data is not loaded at {target.describe()}[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]Data is loaded at {target.describe()}[/green]")


@app.command("backup-status")
def backup_status(
    users: int = UsersOption,
    config: Optional[Path] = ConfigOption,
    topology: Path = TopologyOption,
    log_dir: Path = LogDirOption,
) -> None:
    """Check whether a backup exists for the target. Exits 1 if not."""
    orchestrator = build_orchestrator(config, topology, log_dir)
    target = orchestrator.target(users)
    if not run_async(orchestrator.backups.is_available(target)):
        console.print(f"[yellow]No backup available at {target.describe()}[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]Backup available at {target.describe()}[/green]")


@app.command("backup")
def create_backup(
    users: int = UsersOption,
    config: Optional[Path] = ConfigOption,
    topology: Path = TopologyOption,
    log_dir: Path = LogDirOption,
) -> None:
    """Stop data services, back up their storage and restart them."""
    orchestrator = build_orchestrator(config, topology, log_dir)
    if not run_async(orchestrator.create_backup(orchestrator.target(users))):
        console.print("[bold red]Backup failed[/bold red]")
        raise typer.Exit(1)
    console.print("[bold green]Backup complete[/bold green]")


@app.command()
def restore(
    users: int = UsersOption,
    config: Optional[Path] = ConfigOption,
    topology: Path = TopologyOption,
    log_dir: Path = LogDirOption,
) -> None:
    """Restore data services from the backup for the target."""
    orchestrator = build_orchestrator(config, topology, log_dir)
    if not run_async(orchestrator.restore_backup(orchestrator.target(users))):
        console.print("[bold red]Restore failed[/bold red]")
        raise typer.Exit(1)
    console.print("[bold green]Restore complete[/bold green]")


@app.command()
def warmup(
    config: Optional[Path] = ConfigOption,
    topology: Path = TopologyOption,
    log_dir: Path = LogDirOption,
) -> None:
    """Touch NoSQL collections to preload caches and indexes."""
    orchestrator = build_orchestrator(config, topology, log_dir)
    if not run_async(orchestrator.pretouch()):
        raise typer.Exit(1)
    console.print("[green]Warm-up complete[/green]")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
