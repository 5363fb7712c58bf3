"""Markets subcommand: list, show, create."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import typer

from crowdcast.errors import CrowdcastError
from crowdcast.models import MarketDraft, MarketStatus
from crowdcast.monitor.registration import register_market_tracking
from crowdcast.social.x_client import XClient
from crowdcast.storage.db import get_connection, init_schema
from crowdcast.storage.markets import create_market, get_market
from crowdcast.storage.markets import list_markets as storage_list_markets
from crowdcast.storage.tracking import list_market_trackings

app = typer.Typer(help="Create and inspect markets")


def _fmt_ms(ms: int | None) -> str:
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


@app.command("list")
def list_markets(
    ctx: typer.Context,
    status: MarketStatus | None = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """List markets, newest first."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        rows = storage_list_markets(conn, status=status)
        for m in rows:
            typer.echo(f"  {m.id[:8]}  {m.status.value:<8}  {m.total_volume:>10.2f}  {m.title[:60]}")
        typer.echo(f"Total: {len(rows)} markets")
    finally:
        conn.close()


@app.command("show")
def show(ctx: typer.Context, market_id: str = typer.Argument(..., help="Market id")) -> None:
    """Show one market with option shares and X tracking records."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        market = get_market(conn, market_id)
        if market is None:
            typer.echo(f"Market not found: {market_id}", err=True)
            raise typer.Exit(1)
        typer.echo(f"{market.title}  [{market.status.value}]")
        typer.echo(f"  Ends: {_fmt_ms(market.end_date)}  Volume: {market.total_volume:.2f}  Participants: {market.participants}")
        for opt, pct in zip(market.options, market.percentages()):
            marker = " *" if opt.id == market.winner_id else ""
            typer.echo(f"  {pct:>3}%  {opt.label}  ({opt.total_staked:.2f}){marker}")
        trackings = list_market_trackings(conn, market.id)
        if trackings:
            typer.echo("X tracking:")
        for t in trackings:
            typer.echo(
                f"  @{t.x_target_username}  {t.condition_type}  {t.monitoring_status.value}"
                f"  cursor={t.last_checked_post_id or '-'}  checked={_fmt_ms(t.last_checked_at)}"
            )
    finally:
        conn.close()


@app.command("create")
def create(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Market question, e.g. 'Will @elonmusk tweet today?'"),
    creator: str = typer.Option(..., "--creator", help="Creator wallet address"),
    option: list[str] = typer.Option(["Yes", "No"], "--option", "-o", help="Option label (2-4, repeatable)"),
    days: int = typer.Option(7, "--days", help="Days until the market ends"),
    description: str = typer.Option("", "--description", "-d"),
    category: str = typer.Option("Community", "--category"),
    register: bool = typer.Option(
        True, "--register/--no-register", help="Register @mentions for X auto-resolution"
    ),
) -> None:
    """Create a market locally (no on-chain transaction)."""
    settings = ctx.obj["settings"]
    end = datetime.now(timezone.utc) + timedelta(days=days)
    draft = MarketDraft(
        creator_wallet=creator,
        title=title,
        description=description,
        category=category,
        end_date=int(end.timestamp() * 1000),
    )
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        try:
            market = create_market(conn, draft, option)
        except CrowdcastError as e:
            typer.echo(f"Error: {e.message}", err=True)
            raise typer.Exit(1)
        typer.echo(f"Created market {market.id}")
        if register:
            records = asyncio.run(_register(conn, market, settings))
            for r in records:
                typer.echo(f"  Tracking @{r.x_target_username} ({r.condition_type})")
    finally:
        conn.close()


async def _register(conn, market, settings):
    async with XClient(
        base_url=settings.x_api_base,
        timeout=settings.x_request_timeout_sec,
        max_results=settings.max_posts_per_fetch,
    ) as client:
        return await register_market_tracking(conn, market, client)
