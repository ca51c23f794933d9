"""FabricSync CLI - operator commands for supplier ingestion.

Commands:
- init: Initialize database schema
- sync-suppliers: Register suppliers from the YAML config
- parse: Run one supplier
- parse-all: Run every enabled supplier
- parse-file: Run one supplier against a local document (e.g. an email attachment)
- upload: Apply a manual stock or price upload as an override
- deactivate-override: Retire a supplier's active overrides
- analyze: Show sample rows and suggested columns
- infer-rules: Guided rule confirmation
- show-rules: Print a supplier's stored rule set
- seed-categories: Load the price band table
- runs: Show recent runs
"""

from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.table import Table

from fabricsync.canonical.categories import DEFAULT_CATEGORIES
from fabricsync.config import get_config
from fabricsync.core.logging import configure_logging
from fabricsync.db.connection import close_db, get_engine, get_session
from fabricsync.db.models import Base
from fabricsync.db.repository import CatalogRepository
from fabricsync.errors import FabricSyncError, ParseInProgressError
from fabricsync.inference.auto_rules import apply_answers
from fabricsync.models import OverrideType, PriceBand
from fabricsync.pipeline.types import RunResult

app = typer.Typer(
    name="fabricsync",
    help="FabricSync - supplier stock and price list ingestion",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def setup(
    log_level: str | None = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """Configure logging for every command."""
    configure_logging(level=log_level)


def _orchestrator():
    from fabricsync.pipeline.orchestrator import IngestionOrchestrator

    return IngestionOrchestrator()


def _run(coro):
    async def _wrapped():
        try:
            return await coro
        finally:
            await close_db()

    return asyncio.run(_wrapped())


def _print_results(results: list[RunResult], title: str = "Supplier Results") -> None:
    table = Table(title=title)
    table.add_column("Supplier", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Parsed", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Unchanged", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Fabrics", justify="right")
    table.add_column("Duration", justify="right")

    for result in results:
        status_style = "green" if result.success else "red"
        if result.success and result.warnings:
            status_style = "yellow"
        table.add_row(
            result.supplier_name,
            f"[{status_style}]{result.status.value}[/{status_style}]",
            str(result.records_parsed),
            str(result.records_created),
            str(result.records_updated),
            str(result.records_unchanged),
            str(result.records_skipped),
            str(result.fabrics_count),
            f"{result.duration_seconds:.1f}s",
        )

    console.print(table)

    for result in results:
        if not result.success:
            console.print(f"  [red]✗[/red] {result.supplier_name}: {result.message}")
        elif result.structure_changed:
            console.print(
                f"  [yellow]⚠[/yellow] {result.supplier_name}: document structure changed"
            )


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    async def _init():
        engine = get_engine()
        async with engine.begin() as conn:
            if drop:
                console.print("[yellow]Dropping existing tables...[/yellow]")
                await conn.run_sync(Base.metadata.drop_all)
            console.print("[green]Creating tables...[/green]")
            await conn.run_sync(Base.metadata.create_all)

    _run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command(name="sync-suppliers")
def sync_suppliers_cmd(
    config_file: Path | None = typer.Option(
        None, "--config", "-c", help="Suppliers file (defaults to SUPPLIERS_CONFIG)"
    ),
):
    """Register or update suppliers from the YAML configuration."""
    from fabricsync.pipeline.config_loader import load_supplier_specs

    path = config_file or get_config().suppliers_config
    console.print(f"[bold]Syncing suppliers[/bold] from {path}")

    try:
        specs = load_supplier_specs(path, include_disabled=True)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    count = _run(_orchestrator().sync_suppliers(specs))
    console.print(f"[bold green]✓[/bold green] {count} suppliers registered")


@app.command()
def parse(
    supplier: str = typer.Argument(..., help="Supplier name"),
    supersede: bool = typer.Option(
        False, "--supersede-overrides", help="Treat this parse as newer than manual overrides"
    ),
    no_wait: bool = typer.Option(False, "--no-wait", help="Fail if a run is already in flight"),
):
    """Parse one supplier and reconcile its catalog."""
    console.print(f"[bold]Parsing supplier:[/bold] {supplier}")

    try:
        result = _run(
            _orchestrator().run_supplier(
                supplier, wait=not no_wait, parser_supersedes_overrides=supersede
            )
        )
    except ParseInProgressError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(code=1)

    _print_results([result])
    if not result.success:
        raise typer.Exit(code=1)


@app.command(name="parse-all")
def parse_all_cmd(
    concurrency: int = typer.Option(4, "--concurrency", help="Suppliers parsed at once"),
):
    """Parse every enabled supplier. Failures are isolated per supplier."""
    console.print("[bold]Starting ingestion run[/bold]")

    summary = _run(_orchestrator().run_all(max_concurrency=concurrency))

    if not summary["results"]:
        console.print("[yellow]No suppliers registered or all disabled[/yellow]")
        return

    console.print(f"Run timestamp: {summary['run_timestamp']}")
    console.print(
        f"Status: {summary['successful_suppliers']}/{summary['total_suppliers']} suppliers successful"
    )
    _print_results(summary["results"])


@app.command(name="parse-file")
def parse_file_cmd(
    supplier: str = typer.Argument(..., help="Supplier name"),
    file: Path = typer.Argument(..., help="Document to parse (xls/xlsx/html/txt)"),
):
    """Parse a local document (e.g. an email attachment) as the supplier's list."""
    from fabricsync.sources import read_local_document

    try:
        document = read_local_document(file)
    except FabricSyncError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[bold]Parsing[/bold] {file} [bold]as[/bold] {supplier}")
    result = _run(
        _orchestrator().run_supplier(
            supplier, document=document, source_timestamp=document.last_modified
        )
    )
    _print_results([result])
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def upload(
    supplier: str = typer.Argument(..., help="Supplier name"),
    file: Path = typer.Argument(..., help="Uploaded workbook"),
    kind: OverrideType = typer.Option(OverrideType.STOCK, "--type", help="stock or price"),
):
    """Apply a manual upload; it holds its fields until superseded."""
    console.print(f"[bold]Manual {kind.value} upload[/bold] for {supplier}: {file}")
    result = _run(_orchestrator().run_manual_upload(supplier, file, kind))
    _print_results([result], title="Upload Result")
    if not result.success:
        raise typer.Exit(code=1)


@app.command(name="deactivate-override")
def deactivate_override_cmd(
    supplier: str = typer.Argument(..., help="Supplier name"),
    kind: OverrideType | None = typer.Option(None, "--type", help="Only stock or price"),
):
    """Retire active manual overrides so parsing owns the fields again."""

    async def _deactivate():
        async with get_session() as session:
            repo = CatalogRepository(session)
            model = await repo.get_supplier_by_name(supplier)
            if model is None:
                return None
            return await repo.deactivate_overrides(model.id, kind)

    count = _run(_deactivate())
    if count is None:
        console.print(f"[red]Unknown supplier: {supplier}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[bold green]✓[/bold green] {count} override(s) deactivated")


@app.command()
def analyze(
    supplier: str = typer.Argument(..., help="Supplier name"),
    as_json: bool = typer.Option(False, "--json", help="Print the rule editor payload"),
):
    """Show sample rows and suggested columns. Nothing is saved."""
    try:
        analysis = _run(_orchestrator().analyze_supplier(supplier))
    except (FabricSyncError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(json.dumps(analysis.to_dict(), ensure_ascii=False, indent=2))
        return

    width = max((len(row) for row in analysis.sample_rows), default=0)
    table = Table(title=f"{supplier}: first {len(analysis.sample_rows)} rows")
    table.add_column("#", justify="right", style="dim")
    for index in range(width):
        table.add_column(str(index))
    for number, row in enumerate(analysis.sample_rows, start=1):
        style = "bold cyan" if number == analysis.header_row else None
        table.add_row(str(number), *(row + [""] * (width - len(row))), style=style)
    console.print(table)

    console.print(f"Sheets: {', '.join(analysis.sheet_names)}")
    console.print(f"Header row: {analysis.header_row or '-'}")
    console.print(f"Suggested columns: {analysis.suggested_columns or '-'}")


@app.command(name="infer-rules")
def infer_rules_cmd(
    supplier: str = typer.Argument(..., help="Supplier name"),
    accept: bool = typer.Option(False, "--yes", "-y", help="Accept the suggestions as they are"),
):
    """Infer rules and confirm them question by question."""
    orchestrator = _orchestrator()

    try:
        analysis = _run(orchestrator.analyze_supplier(supplier))
    except (FabricSyncError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    for number, row in enumerate(analysis.sample_rows, start=1):
        console.print(f"[dim]{number:>3}[/dim] " + " | ".join(row))

    answers = {}
    for question in analysis.questions:
        if accept:
            answers[question.id] = question.default
        else:
            answers[question.id] = typer.prompt(question.question, default=question.default)

    try:
        rules = apply_answers(analysis.provisional_rules, answers)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    _run(orchestrator.save_rules(supplier, rules))
    console.print(f"[bold green]✓[/bold green] Rules confirmed: {rules.column_mappings.as_dict()}")


@app.command(name="show-rules")
def show_rules_cmd(
    supplier: str = typer.Argument(..., help="Supplier name"),
):
    """Print the stored rule set of a supplier."""

    async def _show():
        async with get_session() as session:
            repo = CatalogRepository(session)
            model = await repo.get_supplier_by_name(supplier)
            if model is None:
                return None, None
            return model, await repo.load_rules(model.id)

    model, rules = _run(_show())
    if model is None:
        console.print(f"[red]Unknown supplier: {supplier}[/red]")
        raise typer.Exit(code=1)
    if rules is None:
        console.print(f"[yellow]No stored rules for {supplier} ({model.kind})[/yellow]")
        return

    state = "confirmed" if rules.confirmed else "provisional"
    console.print(f"[bold]{supplier}[/bold] rules ({rules.origin}, {state})")
    typer.echo(rules.to_json())


@app.command(name="seed-categories")
def seed_categories_cmd(
    file: Path | None = typer.Option(
        None, "--file", "-f", help="YAML mapping of category -> upper price per meter"
    ),
):
    """Replace the price band table (defaults to the built-in bands)."""
    if file is not None:
        with open(file, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        bands = [
            PriceBand(category=int(category), price=Decimal(str(price)))
            for category, price in raw.items()
        ]
    else:
        bands = list(DEFAULT_CATEGORIES)

    async def _seed():
        async with get_session() as session:
            await CatalogRepository(session).save_price_bands(bands)

    try:
        _run(_seed())
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[bold green]✓[/bold green] {len(bands)} price bands stored")


@app.command()
def runs(
    supplier: str | None = typer.Option(None, "--supplier", "-s", help="Only this supplier"),
    last_n: int = typer.Option(20, "--last", "-n", help="Show last N runs"),
):
    """Show recent supplier runs."""

    async def _runs():
        async with get_session() as session:
            return await CatalogRepository(session).recent_runs(supplier, last_n)

    logs = _run(_runs())
    if not logs:
        console.print("[yellow]No runs found[/yellow]")
        return

    table = Table(title=f"Last {len(logs)} runs")
    table.add_column("Time (UTC)")
    table.add_column("Supplier", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("New", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Unchanged", justify="right")
    table.add_column("Message")

    styles = {"SUCCESS": "green", "PARTIAL_SUCCESS": "yellow", "FAILED": "red"}
    for log in logs:
        style = styles.get(log.status, "white")
        table.add_row(
            log.run_timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            log.supplier_name,
            f"[{style}]{log.status}[/{style}]",
            str(log.records_created),
            str(log.records_updated),
            str(log.records_unchanged),
            log.message or "",
        )
    console.print(table)


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
