#!/usr/bin/env python3
# src/SKPI/cli.py
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from SKPI.errors import TeacherNotFoundError
from SKPI.services.kpi_scheduler import KpiScheduler
from SKPI.services.kpi_service import KpiService
from SKPI.services.kpi_settings import KpiSettingsProvider

console = Console()


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _session_factory(ctx: click.Context) -> Callable:
    factory = (ctx.obj or {}).get("session_factory")
    if factory is None:
        from SKPI.db.session import get_sessionmaker
        factory = get_sessionmaker()
    return factory


def _settings_provider(ctx: click.Context) -> KpiSettingsProvider:
    return (ctx.obj or {}).get("settings_provider") or KpiSettingsProvider()


def show_json(obj: Any) -> None:
    console.print_json(data=obj)


def _fmt(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.1f}"


# ------------------------------
# Root CLI
# ------------------------------
@click.group(help="SKPI command line: teacher KPI recalculation and inspection")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Top-level command group."""
    ctx.ensure_object(dict)


@cli.command("recalculate", help="Recalculate KPI for every teacher now")
@click.option("--trigger", default="cli", show_default=True, help="Label recorded with the run")
@click.pass_context
def recalculate(ctx: click.Context, trigger: str) -> None:
    factory = _session_factory(ctx)
    provider = _settings_provider(ctx)

    async def _run():
        async with factory() as session:
            return await KpiService(session, provider).recalculate_all(trigger)

    result = asyncio.run(_run())
    t = Table(title="KPI recalculation")
    for col in ("teachers", "ok", "failed", "time (ms)"):
        t.add_column(col)
    t.add_row(
        str(result.total_teachers),
        str(result.success_count),
        str(result.error_count),
        str(result.processing_time_ms),
    )
    console.print(t)
    for err in result.errors:
        console.print(f"[red]{err}[/]")


@cli.command("teacher", help="Show the KPI breakdown of one teacher")
@click.argument("teacher_id")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def teacher(ctx: click.Context, teacher_id: str, as_json: bool) -> None:
    factory = _session_factory(ctx)
    provider = _settings_provider(ctx)

    async def _details():
        async with factory() as session:
            return await KpiService(session, provider).get_teacher_kpi_details(teacher_id)

    try:
        details = asyncio.run(_details())
    except TeacherNotFoundError as exc:
        console.print(f"[red]{exc}[/]")
        raise click.Abort()

    if as_json:
        show_json(details.model_dump(mode="json"))
        return

    t = Table(title=f"{details.teacher.name} ({details.teacher.id})")
    for col in ("metric", "value", "weight", "active"):
        t.add_column(col)
    for key, metric in details.metrics.items():
        t.add_row(metric.name, _fmt(metric.value), f"{metric.weight:g}", "yes" if metric.is_active else "no")
    console.print(t)
    console.print(Panel.fit(f"Overall score: [bold]{details.overall_score}[/]", title="KPI"))


@cli.command("status", help="Show the recalculation schedule")
@click.pass_context
def status(ctx: click.Context) -> None:
    # no run happens here, so the database is never touched
    scheduler = KpiScheduler(lambda: _session_factory(ctx)(), _settings_provider(ctx))
    show_json(scheduler.status().model_dump(mode="json"))


@cli.command("run-scheduler", help="Run the periodic recalculation loop in the foreground")
@click.option("--check-seconds", type=float, default=None, help="Override the schedule check interval")
@click.pass_context
def run_scheduler(ctx: click.Context, check_seconds: Optional[float]) -> None:
    scheduler = KpiScheduler(_session_factory(ctx), _settings_provider(ctx), check_interval=check_seconds)

    async def _forever():
        scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop()

    console.print(f"[green]Scheduler running[/] (period: {scheduler.status().calculation_period}); Ctrl-C to stop")
    try:
        asyncio.run(_forever())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/]")


if __name__ == "__main__":
    cli()
