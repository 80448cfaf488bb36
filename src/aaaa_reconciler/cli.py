"""Command-line interface for the AAAA record reconciler."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Settings, load_config
from .core.declarations import DeclarationLoader
from .core.planner import ChangePlanner
from .core.reconciler import validate_record
from .execution.runner import ApplyRunner
from .gateway.base import RecordGateway
from .gateway.client import WAPIClient
from .models.record import DeclaredRecord
from .models.results import ApplySummary, ReconcileAction
from .observability.logger import configure_logging
from .persistence.state_store import StateStore
from .utils.exceptions import ReconcilerError, SchemaValidationError

app = typer.Typer(
    name="aaaa-reconcile",
    help="Reconcile declared IPv6 (AAAA) records against an Infoblox-style WAPI",
    add_completion=False,
)

console = Console()
logger = structlog.get_logger(__name__)

T = TypeVar("T")

ACTION_STYLES = {
    ReconcileAction.CREATE: "green",
    ReconcileAction.UPDATE: "yellow",
    ReconcileAction.DELETE: "red",
    ReconcileAction.NOOP: "dim",
}


def build_gateway(settings: Settings) -> RecordGateway:
    """
    Create the remote gateway for the configured WAPI endpoint.

    Raises:
        typer.Exit: If no WAPI connection is configured
    """
    if settings.wapi is None:
        console.print(
            "[red]ERROR:[/red] WAPI connection is not configured "
            "(set WAPI_URL/WAPI_USERNAME/WAPI_PASSWORD or use --config)"
        )
        raise typer.Exit(code=1)
    return WAPIClient(settings.wapi)


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj if isinstance(ctx.obj, Settings) else Settings()


def _load_declarations(declaration_file: Path, strict: bool = True) -> dict[str, DeclaredRecord]:
    loader = DeclarationLoader(declaration_file)
    try:
        return loader.load(strict=strict)
    except SchemaValidationError as e:
        console.print(f"[red]ERROR:[/red] {e}")
        raise typer.Exit(code=1) from e


def _run_with_gateway(
    settings: Settings, work: Callable[[ApplyRunner], Awaitable[T]]
) -> T:
    """Run ``work`` with an ApplyRunner wired to the gateway and state store."""
    gateway = build_gateway(settings)

    async def run() -> T:
        try:
            with StateStore(settings.reconciler.state_file) as store:
                runner = ApplyRunner(
                    gateway,
                    store,
                    config=settings.reconciler,
                    retry=settings.retry,
                    console=console,
                )
                return await work(runner)
        finally:
            await gateway.close()

    try:
        return asyncio.run(run())
    except ReconcilerError as e:
        console.print(f"\n[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=1) from e


def _print_summary(summary: ApplySummary, title: str) -> None:
    table = Table(title=title)
    table.add_column("Record", style="cyan")
    table.add_column("Action")
    table.add_column("Address")
    table.add_column("Result")

    for result in summary.results:
        style = ACTION_STYLES[result.action]
        address = result.state.ipv6_addr if result.state else ""
        outcome = "[green]OK[/green]" if result.success else f"[red]{result.error_message}[/red]"
        table.add_row(
            result.name, f"[{style}]{result.action.value}[/{style}]", address or "", outcome
        )

    console.print(table)
    console.print(
        f"Created: {summary.count(ReconcileAction.CREATE)}  "
        f"Updated: {summary.count(ReconcileAction.UPDATE)}  "
        f"Deleted: {summary.count(ReconcileAction.DELETE)}  "
        f"Unchanged: {summary.count(ReconcileAction.NOOP)}  "
        f"Failed: [red]{len(summary.failed)}[/red]"
    )


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Configuration file"),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    ),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON"),
) -> None:
    """Load configuration and set up logging for every command."""
    try:
        settings = load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]ERROR: Configuration error:[/red] {e}")
        raise typer.Exit(code=1) from e

    configure_logging(
        level=log_level or settings.logging.level,
        json_logs=json_logs or settings.logging.format == "json",
        log_file=settings.logging.file,
    )
    ctx.obj = settings


@app.command()
def validate(
    ctx: typer.Context,
    declaration_file: Path = typer.Argument(..., help="Declaration file", exists=True),
) -> None:
    """
    Validate a declaration file without contacting WAPI.

    Checks:
    - YAML structure and record schema
    - Exactly one of ipv6_addr, cidr and filter_params
    - use_ttl/ttl consistency

    Examples:
        aaaa-reconcile validate records.yaml
    """
    settings = _settings(ctx)
    console.print(f"\n[bold blue]Validating:[/bold blue] {declaration_file}\n")

    loader = DeclarationLoader(declaration_file)
    try:
        records = loader.load(strict=False)
    except SchemaValidationError as e:
        console.print(f"[red]ERROR:[/red] {e}")
        raise typer.Exit(code=1) from e

    table = Table(title="Declarations")
    table.add_column("Record", style="cyan")
    table.add_column("FQDN")
    table.add_column("Mode")
    table.add_column("Status")

    errors = [str(e) for e in loader.errors]
    for name, record in records.items():
        prepared = record.with_defaults(
            dns_view=settings.reconciler.default_dns_view,
            network_view=settings.reconciler.default_network_view,
        )
        try:
            addressing = validate_record(prepared)
        except ReconcilerError as e:
            errors.append(f"Record '{name}': {e}")
            table.add_row(name, record.fqdn, "-", f"[red]{e}[/red]")
            continue
        table.add_row(name, record.fqdn, addressing.mode.value, "[green]OK[/green]")

    console.print(table)

    if errors:
        for error in errors:
            console.print(f"  [red]-[/red] {error}")
        console.print(f"\n[red]FAILED:[/red] {len(errors)} invalid record(s)")
        raise typer.Exit(code=1)

    console.print(f"\n[green]OK:[/green] {len(records)} record(s) valid")


@app.command()
def plan(
    ctx: typer.Context,
    declaration_file: Path = typer.Argument(..., help="Declaration file", exists=True),
    prune: bool = typer.Option(
        False, "--prune/--no-prune", help="Plan deletion of records no longer declared"
    ),
) -> None:
    """
    Show what apply would do, using tracked state only.

    Examples:
        aaaa-reconcile plan records.yaml
        aaaa-reconcile plan records.yaml --prune
    """
    settings = _settings(ctx)
    records = _load_declarations(declaration_file)

    with StateStore(settings.reconciler.state_file) as store:
        tracked = store.all()

    changes = ChangePlanner(settings.reconciler).plan(records, tracked, prune=prune)

    table = Table(title=f"Plan for {declaration_file}")
    table.add_column("Record", style="cyan")
    table.add_column("Action")
    table.add_column("Changes")

    for change in changes:
        style = ACTION_STYLES[change.action]
        if change.error:
            details = f"[red]{change.error}[/red]"
        else:
            details = "\n".join(str(fc) for fc in change.field_changes)
        table.add_row(change.name, f"[{style}]{change.action.value}[/{style}]", details)

    console.print(table)

    invalid = [c for c in changes if not c.valid]
    if invalid:
        console.print(f"\n[red]FAILED:[/red] {len(invalid)} record(s) cannot be applied")
        raise typer.Exit(code=1)


@app.command()
def apply(
    ctx: typer.Context,
    declaration_file: Path = typer.Argument(..., help="Declaration file", exists=True),
    dry_run: bool = typer.Option(False, "--dry-run", help="Plan only, change nothing"),
    prune: bool = typer.Option(
        False, "--prune/--no-prune", help="Delete tracked records no longer declared"
    ),
) -> None:
    """
    Reconcile every declared record with WAPI.

    Examples:
        aaaa-reconcile apply records.yaml --dry-run
        aaaa-reconcile -c prod.yaml apply records.yaml --prune
    """
    settings = _settings(ctx)
    records = _load_declarations(declaration_file)

    console.print(
        Panel.fit(
            f"[bold blue]AAAA Reconcile[/bold blue]\n\n"
            f"Declarations: {declaration_file}\n"
            f"Records: {len(records)}\n"
            f"Mode: [yellow]{'DRY RUN' if dry_run else 'EXECUTE'}[/yellow]\n"
            f"Prune: {'on' if prune else 'off'}",
            border_style="blue",
        )
    )

    summary = _run_with_gateway(
        settings, lambda runner: runner.apply(records, dry_run=dry_run, prune=prune)
    )
    _print_summary(summary, "Dry run" if dry_run else "Apply results")

    if summary.failed:
        raise typer.Exit(code=1)


@app.command()
def show(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Record name (all records if omitted)"),
) -> None:
    """
    Print tracked state.

    Examples:
        aaaa-reconcile show
        aaaa-reconcile show web
    """
    settings = _settings(ctx)
    with StateStore(settings.reconciler.state_file) as store:
        if name:
            state = store.get(name)
            if state is None:
                console.print(f"[red]ERROR:[/red] record '{name}' is not tracked")
                raise typer.Exit(code=1)
            console.print_json(data=state.to_dict())
            return
        tracked = store.all()

    if not tracked:
        console.print("[yellow]No tracked records.[/yellow]")
        return

    table = Table(title="Tracked records")
    table.add_column("Record", style="cyan")
    table.add_column("FQDN")
    table.add_column("Mode")
    table.add_column("Address")
    table.add_column("Reference", style="dim")

    for record_name, state in tracked.items():
        table.add_row(
            record_name, state.fqdn, state.mode.value, state.ipv6_addr or "", state.ref
        )
    console.print(table)


@app.command()
def refresh(ctx: typer.Context) -> None:
    """
    Re-read tracked records from WAPI.

    Records deleted outside this tool are dropped from state, so the next
    apply recreates them.
    """
    settings = _settings(ctx)
    summary = _run_with_gateway(settings, lambda runner: runner.refresh())
    _print_summary(summary, "Refresh results")

    if summary.failed:
        raise typer.Exit(code=1)


@app.command()
def destroy(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Record name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """
    Delete one record from WAPI and forget its state.

    Examples:
        aaaa-reconcile destroy web --yes
    """
    settings = _settings(ctx)

    if not yes and not typer.confirm(f"Delete record '{name}' from WAPI?"):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit()

    result = _run_with_gateway(settings, lambda runner: runner.destroy(name))
    if not result.success:
        console.print(f"[red]FAILED:[/red] {result.error_message}")
        raise typer.Exit(code=1)
    console.print(f"[green]Deleted:[/green] {name}")


if __name__ == "__main__":
    app()
