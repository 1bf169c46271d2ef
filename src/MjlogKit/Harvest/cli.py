"""Typer-based CLI for the harvest pipeline."""

import json
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from MjlogKit.Harvest.classify import PairClassifier
from MjlogKit.Harvest.config import (
    HarvestConfig,
    export_config_schema,
    load_config,
    validate_config_file,
)
from MjlogKit.Harvest.errors import FatalConfigError
from MjlogKit.Harvest.extract import RecordFetcher
from MjlogKit.Harvest.net.client import build_http_client
from MjlogKit.Harvest.state import HarvestLayout, requeue_quarantined, scan_status
from MjlogKit.Harvest.summary import StageSummary, emit_console_summary
from MjlogKit.Harvest.sync import IndexSynchronizer

console = Console()
app = typer.Typer(help="MjlogKit Harvest: mirror, fetch and classify game records")

# ============================================================================
# Setup
# ============================================================================


def _setup_logging(verbose: bool) -> None:
    """Setup logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load(
    config: Optional[str],
    root: Optional[Path],
    *,
    workers: Optional[int] = None,
    limit: Optional[int] = None,
) -> HarvestConfig:
    overrides: dict[str, Any] = {
        "root": str(root) if root is not None else None,
        "workers": workers,
        "limit": limit,
    }
    return load_config(path=config, cli_overrides=overrides)


def _run_stage(
    config: Optional[str],
    root: Optional[Path],
    workers: Optional[int],
    limit: Optional[int],
    dry_run: bool,
    verbose: bool,
    stage: Callable[[Any, HarvestLayout, HarvestConfig], StageSummary],
) -> None:
    _setup_logging(verbose)
    try:
        cfg = _load(config, root, workers=workers, limit=limit)
        layout = HarvestLayout.from_config(cfg)
        with build_http_client(cfg.http) as client:
            summary = stage(client, layout, cfg)
    except FatalConfigError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    emit_console_summary(summary, console)
    if dry_run:
        console.print("[yellow]Dry run mode: nothing was written[/yellow]")


# ============================================================================
# Options
# ============================================================================

_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to config file",
    envvar="MJLK_CONFIG",
)
_ROOT_OPTION = typer.Option(None, "--root", help="Working directory (overrides config root)")
_WORKERS_OPTION = typer.Option(None, "--workers", min=1, help="Number of parallel workers")
_LIMIT_OPTION = typer.Option(None, "--limit", min=1, help="Process at most N items")
_DRY_RUN_OPTION = typer.Option(False, "--dry-run", help="Plan only; fetch and move nothing")
_VERBOSE_OPTION = typer.Option(False, "-v", "--verbose", help="Verbose")

# ============================================================================
# Stage Commands
# ============================================================================


@app.command("sync-index")
def sync_index(
    config: Optional[str] = _CONFIG_OPTION,
    root: Optional[Path] = _ROOT_OPTION,
    workers: Optional[int] = _WORKERS_OPTION,
    limit: Optional[int] = _LIMIT_OPTION,
    dry_run: bool = _DRY_RUN_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Mirror the remote archive listing into the index directory."""

    def stage(client, layout, cfg):
        return IndexSynchronizer(client, layout, cfg).run(dry_run=dry_run)

    _run_stage(config, root, workers, limit, dry_run, verbose, stage)


@app.command("fetch-records")
def fetch_records(
    config: Optional[str] = _CONFIG_OPTION,
    root: Optional[Path] = _ROOT_OPTION,
    workers: Optional[int] = _WORKERS_OPTION,
    limit: Optional[int] = _LIMIT_OPTION,
    dry_run: bool = _DRY_RUN_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Fetch raw records for identifiers found in the synchronized archives."""

    def stage(client, layout, cfg):
        return RecordFetcher(client, layout, cfg).run(dry_run=dry_run)

    _run_stage(config, root, workers, limit, dry_run, verbose, stage)


@app.command()
def classify(
    config: Optional[str] = _CONFIG_OPTION,
    root: Optional[Path] = _ROOT_OPTION,
    workers: Optional[int] = _WORKERS_OPTION,
    limit: Optional[int] = _LIMIT_OPTION,
    dry_run: bool = _DRY_RUN_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Fetch converted artifacts and sort pairs into trusted or quarantined."""

    def stage(client, layout, cfg):
        return PairClassifier(client, layout, cfg).run(dry_run=dry_run)

    _run_stage(config, root, workers, limit, dry_run, verbose, stage)


# ============================================================================
# Maintenance Commands
# ============================================================================


@app.command()
def status(
    config: Optional[str] = _CONFIG_OPTION,
    root: Optional[Path] = _ROOT_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    show_empty: bool = typer.Option(False, "--show-empty", help="List zero-length files"),
) -> None:
    """Report progress derived from the working directory."""
    try:
        cfg = _load(config, root)
    except FatalConfigError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    layout = HarvestLayout.from_config(cfg)
    report = scan_status(layout, archive_glob=cfg.selection.archive_glob)

    if as_json:
        typer.echo(json.dumps(report.as_dict(), indent=2))
        return

    data = report.as_dict()
    table = Table(title=f"Harvest status: {layout.root}")
    table.add_column("Item", style="cyan")
    table.add_column("Count", justify="right", style="green")
    table.add_row("archives", str(data["archives"]))
    for state, count in data["records"].items():
        table.add_row(f"records {state}", str(count))
    for bucket, count in data["buckets"].items():
        table.add_row(bucket, str(count))
    table.add_row("zero-length files", str(len(report.empty_files)))
    console.print(table)

    if show_empty:
        for path in report.empty_files:
            console.print(str(path))


@app.command()
def requeue(
    identifiers: Optional[List[str]] = typer.Argument(
        None, help="Identifiers to requeue (default: every quarantined pair)"
    ),
    config: Optional[str] = _CONFIG_OPTION,
    root: Optional[Path] = _ROOT_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Move quarantined pairs back for reclassification."""
    _setup_logging(verbose)
    try:
        cfg = _load(config, root)
        layout = HarvestLayout.from_config(cfg)
        requeued = requeue_quarantined(layout, identifiers or None)
    except (FatalConfigError, ValueError) as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Requeued {len(requeued)} pair(s)[/green]")


# ============================================================================
# Config Commands
# ============================================================================


@app.command("print-config")
def print_config(
    config: Optional[str] = _CONFIG_OPTION,
    root: Optional[Path] = _ROOT_OPTION,
    raw: bool = typer.Option(False, "--raw", help="Raw JSON"),
) -> None:
    """Print merged effective config."""
    try:
        cfg = _load(config, root)
    except FatalConfigError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    data = cfg.model_dump(mode="json")
    if raw:
        typer.echo(json.dumps(data, indent=2))
    else:
        console.print(
            Panel(
                json.dumps(data, indent=2, ensure_ascii=False),
                title=f"Harvest Config ({cfg.config_hash()[:8]})",
                expand=False,
            )
        )


@app.command("validate-config")
def validate_config(
    config: str = typer.Argument(..., help="Path to config file"),
) -> None:
    """Validate a config file."""
    try:
        validate_config_file(config)
    except FatalConfigError as e:
        console.print(f"[red]✗ Invalid: {e}[/red]")
        raise typer.Exit(code=1)
    console.print("[green]✓ Config valid[/green]")


@app.command()
def schema(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save schema to file"),
) -> None:
    """Export JSON Schema for HarvestConfig."""
    schema_data = export_config_schema()
    if output:
        output.write_text(json.dumps(schema_data, indent=2))
        console.print(f"[green]✓ Schema written to {output}[/green]")
    else:
        typer.echo(json.dumps(schema_data, indent=2))


def main() -> None:
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
