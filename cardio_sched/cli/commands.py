"""CLI commands for cardio-sched."""

import asyncio
from datetime import date
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cardio_sched.config import get_settings

app = typer.Typer(
    name="cardio-sched",
    help="Provider scheduling: availability, PTO, rooms, templates and undo",
    add_completion=False,
)
console = Console()

T = TypeVar("T")


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Invalid date: {value} (expected YYYY-MM-DD)")


def _run(fn: Callable[..., Awaitable[T]]) -> T:
    """Run ``fn(service)`` inside one database session."""
    from cardio_sched.core.database import close_db, session_scope
    from cardio_sched.scheduling.exceptions import SchedulingError
    from cardio_sched.scheduling.service import SchedulingService

    async def runner():
        try:
            async with session_scope() as session:
                service = SchedulingService(session, get_settings())
                result = await fn(service)
                await session.commit()
                return result
        finally:
            await close_db()

    try:
        return asyncio.run(runner())
    except SchedulingError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


async def _resolve_template(service, ref: str):
    """Find a template by id, falling back to an exact name match."""
    from cardio_sched.scheduling.exceptions import NotFoundError

    try:
        return await service.get_template(ref)
    except NotFoundError:
        for template in await service.list_templates():
            if template.name == ref:
                return template
        raise


async def _resolve_provider(service, ref: str):
    from cardio_sched.scheduling.exceptions import NotFoundError
    from cardio_sched.scheduling.snapshot import provider_info

    row = await service.providers.get_by_initials(ref.upper())
    if row is not None:
        return provider_info(row)
    try:
        return await service.get_provider(ref)
    except NotFoundError:
        raise NotFoundError("Provider", ref)


async def _resolve_service(service, ref: str):
    from cardio_sched.scheduling.exceptions import NotFoundError
    from cardio_sched.scheduling.snapshot import service_info

    row = await service.services.get_by_name(ref)
    if row is not None:
        return service_info(row)
    try:
        return await service.get_service(ref)
    except NotFoundError:
        raise NotFoundError("Service", ref)


def _display_apply(result, output_json: bool) -> None:
    if output_json:
        console.print(result.model_dump_json(indent=2))
        return

    console.print(
        Panel(
            f"[bold]Created:[/bold] {result.created}  "
            f"[bold]Skipped:[/bold] {result.skipped}  "
            f"[bold]Failed:[/bold] {result.failed}  "
            f"[bold]Attempted:[/bold] {result.slots_attempted}",
            title="Template Applied",
        )
    )

    if result.pto_conflicts:
        table = Table(title=f"PTO Conflicts ({len(result.pto_conflicts)})")
        table.add_column("Date")
        table.add_column("Block")
        table.add_column("Provider")
        table.add_column("Service")
        for c in result.pto_conflicts:
            table.add_row(
                c.date.isoformat(), c.time_block.value,
                c.provider_name or c.provider_id, c.intended_service_name or c.intended_service_id,
            )
        console.print(table)

    if result.holiday_conflicts:
        console.print("[yellow]Holiday conflicts:[/yellow]")
        for c in result.holiday_conflicts:
            console.print(f"  - {c}")

    for v in result.availability_warnings:
        console.print(
            f"[yellow]Warning:[/yellow] {v.provider_initials} on {v.service_name} "
            f"{v.date} {v.time_block.value}: {v.reason or 'availability rule'}"
        )

    if result.history_id:
        console.print(f"\n[dim]History id: {result.history_id}[/dim]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the REST API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    console.print(f"Starting cardio-sched API server on {host}:{port}")
    uvicorn.run(
        "cardio_sched.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command()
def init_db():
    """Create the schedule tables."""
    from cardio_sched.core.database import close_db, init_db as create_tables

    async def go():
        try:
            await create_tables()
        finally:
            await close_db()

    asyncio.run(go())
    console.print("[green]Schedule tables created[/green]")


@app.command()
def check(
    provider: str = typer.Argument(..., help="Provider initials or id"),
    service_ref: str = typer.Argument(..., metavar="SERVICE", help="Service name or id"),
    day: str = typer.Argument(..., metavar="DATE", help="Date (YYYY-MM-DD)"),
    block: str = typer.Argument(..., metavar="BLOCK", help="AM, PM or BOTH"),
):
    """Evaluate a provider's availability rules for one slot."""
    from cardio_sched.scheduling.models import TimeBlock

    when = _parse_date(day)
    try:
        time_block = TimeBlock(block.upper())
    except ValueError:
        raise typer.BadParameter(f"Invalid time block: {block}")

    async def go(service):
        p = await _resolve_provider(service, provider)
        s = await _resolve_service(service, service_ref)
        return p, s, await service.check_availability(p.id, s.id, when, time_block)

    p, s, result = _run(go)
    label = f"{p.initials} on {s.name} {when.isoformat()} {time_block.value}"
    if result.allowed and result.enforcement is None:
        console.print(f"[green]Available:[/green] {label}")
    elif result.allowed:
        console.print(f"[yellow]Warning:[/yellow] {label} - {result.reason}")
    else:
        console.print(f"[red]Blocked:[/red] {label} - {result.reason}")
        raise typer.Exit(2)


@app.command()
def apply_template(
    template: str = typer.Argument(..., help="Template id or name"),
    start: str = typer.Option(..., "--start", "-s", help="First date (YYYY-MM-DD)"),
    end: str = typer.Option(..., "--end", "-e", help="Last date (YYYY-MM-DD)"),
    clear_existing: bool = typer.Option(False, "--clear-existing", help="Replace existing cells"),
    skip_conflicts: bool = typer.Option(
        True, "--skip-conflicts/--no-skip-conflicts", help="Skip cells that are already filled"
    ),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Apply a template to every week in a date range."""
    from cardio_sched.scheduling.models import ApplyOptions

    start_date, end_date = _parse_date(start), _parse_date(end)
    options = ApplyOptions(clear_existing=clear_existing, skip_conflicts=skip_conflicts)

    async def go(service):
        t = await _resolve_template(service, template)
        return await service.apply_template(t.id, start_date, end_date, options)

    _display_apply(_run(go), output_json)


@app.command()
def apply_alternating(
    templates: list[str] = typer.Option(..., "--template", "-t", help="Template id or name (repeat)"),
    pattern: str = typer.Option(..., "--pattern", help="Comma-separated template indexes, e.g. 0,1"),
    start: str = typer.Option(..., "--start", "-s", help="First date (YYYY-MM-DD)"),
    end: str = typer.Option(..., "--end", "-e", help="Last date (YYYY-MM-DD)"),
    clear_existing: bool = typer.Option(False, "--clear-existing", help="Replace existing cells"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Rotate several templates week by week."""
    from cardio_sched.scheduling.models import ApplyOptions

    start_date, end_date = _parse_date(start), _parse_date(end)
    try:
        rotation = [int(p) for p in pattern.split(",") if p.strip()]
    except ValueError:
        raise typer.BadParameter(f"Invalid pattern: {pattern}")

    async def go(service):
        resolved = [await _resolve_template(service, t) for t in templates]
        return await service.apply_alternating(
            [t.id for t in resolved], rotation, start_date, end_date,
            ApplyOptions(clear_existing=clear_existing),
        )

    result = _run(go)
    _display_apply(result, output_json)
    if not output_json and result.week_applications:
        table = Table(title="Week Rotation")
        table.add_column("Week of")
        table.add_column("Template")
        for w in result.week_applications:
            table.add_row(w.week_start.isoformat(), w.template_name)
        console.print(table)


@app.command()
def history(
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Max entries"),
    days_back: Optional[int] = typer.Option(None, "--days", "-d", help="How far back to look"),
):
    """List recent bulk operations."""
    settings = get_settings()

    async def go(service):
        return await service.history.list_history(
            limit=limit or settings.history_default_limit,
            days_back=days_back or settings.history_default_days_back,
        )

    entries = _run(go)
    if not entries:
        console.print("[yellow]No history in this window.[/yellow]")
        return

    table = Table(title="Change History")
    table.add_column("ID", style="dim")
    table.add_column("When")
    table.add_column("Operation")
    table.add_column("Description")
    table.add_column("State")
    for e in entries:
        state = "[green]active[/green]" if e.is_active else "[yellow]undone[/yellow]"
        table.add_row(
            e.id, e.created_at.strftime("%Y-%m-%d %H:%M"), e.operation_type.value, e.description, state
        )
    console.print(table)


@app.command()
def undo(
    history_id: str = typer.Argument(..., help="History record id"),
    force: bool = typer.Option(False, "--force", "-f", help="Undo even if the range changed since"),
):
    """Undo a bulk operation."""
    result = _run(lambda service: service.history.undo(history_id, force=force))

    if result.requires_confirmation:
        table = Table(title=f"Changes since this operation ({len(result.conflicts)})")
        table.add_column("Change")
        table.add_column("Date")
        table.add_column("Block")
        table.add_column("Provider")
        table.add_column("Service")
        for c in result.conflicts:
            table.add_row(
                c.change_type.value,
                c.date.isoformat() if c.date else "",
                c.time_block.value if c.time_block else "",
                c.provider_name or "",
                c.service_name or "",
            )
        console.print(table)
        console.print(f"[yellow]{result.message}[/yellow] Re-run with --force to proceed.")
        raise typer.Exit(3)

    color = "green" if result.success else "red"
    console.print(f"[{color}]{result.message}[/{color}]")
    if not result.success:
        raise typer.Exit(1)


@app.command()
def redo(history_id: str = typer.Argument(..., help="History record id")):
    """Redo an undone bulk operation."""
    result = _run(lambda service: service.history.redo(history_id))
    color = "green" if result.success else "red"
    console.print(f"[{color}]{result.message}[/{color}]")
    if not result.success:
        raise typer.Exit(1)


@app.command()
def rooms(
    day: str = typer.Argument(..., metavar="DATE", help="Date (YYYY-MM-DD)"),
    block: str = typer.Argument(..., metavar="BLOCK", help="AM or PM"),
):
    """Show room capacity and ranked suggestions for a half-day."""
    from cardio_sched.scheduling.models import TimeBlock

    when = _parse_date(day)
    try:
        time_block = TimeBlock(block.upper())
    except ValueError:
        raise typer.BadParameter(f"Invalid time block: {block}")

    result = _run(lambda service: service.compute_room_suggestions(when, time_block))

    console.print(
        f"[bold]{when.isoformat()} {time_block.value}[/bold]: "
        f"{result.current_rooms}/{result.target} rooms ({result.zone.value}), need {result.needed}"
    )
    if not result.suggestions:
        return

    table = Table(title="Suggestions")
    table.add_column("Provider")
    table.add_column("Role")
    table.add_column("Rooms", justify="right")
    table.add_column("Note")
    for s in result.suggestions:
        note = s.warning_reason if s.has_warning else ("preceptor" if s.is_preceptor else "")
        table.add_row(f"{s.name} ({s.initials})", s.role.value, str(s.default_room_count), note or "")
    console.print(table)


@app.command()
def gaps(
    start: str = typer.Argument(..., help="First date (YYYY-MM-DD)"),
    end: str = typer.Argument(..., help="Last date (YYYY-MM-DD)"),
):
    """List weekday services with nobody assigned."""
    start_date, end_date = _parse_date(start), _parse_date(end)
    found = _run(lambda service: service.coverage_gaps(start_date, end_date))
    if not found:
        console.print("[green]No coverage gaps[/green]")
        return

    table = Table(title=f"Coverage Gaps ({len(found)})")
    table.add_column("Date")
    table.add_column("Block")
    table.add_column("Service")
    for g in found:
        table.add_row(g.date.isoformat(), g.time_block.value, g.service_name)
    console.print(table)


@app.command()
def version():
    """Show version information."""
    from cardio_sched import __version__

    console.print(f"cardio-sched v{__version__}")
