"""Monitor subcommand: run, once, status."""

from __future__ import annotations

import asyncio
import json
import signal
import sys

import typer

from crowdcast.monitor.worker import MonitorWorker, SchedulerContext
from crowdcast.social.x_client import XClient
from crowdcast.storage.db import get_connection, init_schema
from crowdcast.storage.tracking import list_active_trackings

app = typer.Typer(help="X monitoring loop for auto-resolution")


def _worker(settings, client: XClient, run_on_start: bool = True) -> MonitorWorker:
    return MonitorWorker(
        db_path=settings.db_path,
        reader=client,
        ctx=SchedulerContext(
            poll_interval_sec=settings.poll_interval_sec,
            rate_limit_backoff_sec=settings.rate_limit_backoff_sec,
        ),
        run_on_start=run_on_start,
    )


def _client(settings) -> XClient:
    return XClient(
        base_url=settings.x_api_base,
        timeout=settings.x_request_timeout_sec,
        max_results=settings.max_posts_per_fetch,
    )


@app.command("run")
def run(
    ctx: typer.Context,
    interval: float = typer.Option(None, "--interval", help="Poll interval in seconds (overrides config)"),
) -> None:
    """Poll tracked X accounts until interrupted."""
    settings = ctx.obj["settings"]
    if not settings.monitor_enabled:
        typer.echo("Monitoring is disabled ([monitor].enabled = false).")
        raise typer.Exit(1)
    client = _client(settings)
    worker = _worker(settings, client, run_on_start=settings.monitor_run_on_start)
    if interval:
        worker.ctx.poll_interval_sec = interval
    stop_event = asyncio.Event()

    def shutdown() -> None:
        stop_event.set()

    loop = asyncio.new_event_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, shutdown)
        loop.add_signal_handler(signal.SIGTERM, shutdown)
    try:
        typer.echo(f"Monitoring every {worker.ctx.poll_interval_sec:.0f}s (Ctrl+C to stop)...")
        loop.run_until_complete(worker.run(stop_event=stop_event))
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(client.aclose())
        loop.close()
    typer.echo("Stopped.")


@app.command("once")
def once(ctx: typer.Context) -> None:
    """Run a single poll cycle and print its report."""
    settings = ctx.obj["settings"]

    async def _once():
        async with _client(settings) as client:
            return await _worker(settings, client).tick()

    report = asyncio.run(_once())
    typer.echo(json.dumps(report.as_dict(), indent=2))


@app.command("status")
def status(ctx: typer.Context) -> None:
    """Show active tracking records and their cursors."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        records = list_active_trackings(conn)
        typer.echo(f"Active tracking records: {len(records)}")
        for r in records:
            typer.echo(
                f"  {r.market_id[:8]}  @{r.x_target_username:<16} {r.condition_type:<12}"
                f"  cursor={r.last_checked_post_id or '-'}"
            )
    finally:
        conn.close()
