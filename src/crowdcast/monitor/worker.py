"""Polling loop: read tracked X accounts on a fixed period and auto-resolve markets."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

import structlog

from crowdcast.models import Market, MarketStatus, Post, TrackingRecord
from crowdcast.models.tracking import post_id_key
from crowdcast.monitor.conditions import evaluate
from crowdcast.monitor.resolution import apply_resolution
from crowdcast.social.base import RateLimitedError, SocialAPIError, SocialReader
from crowdcast.storage.db import get_connection, init_schema
from crowdcast.storage.markets import get_market
from crowdcast.storage.social import get_connection_for
from crowdcast.storage.tracking import advance_tracking_cursor, list_active_trackings

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)

POLL_INTERVAL_SEC = 5 * 60
RATE_LIMIT_BACKOFF_SEC = 15 * 60


@dataclass
class SchedulerContext:
    """State carried between cycles. Inject `clock` (epoch seconds) to drive it without timers."""

    poll_interval_sec: float = POLL_INTERVAL_SEC
    rate_limit_backoff_sec: float = RATE_LIMIT_BACKOFF_SEC
    clock: Callable[[], float] = time.time
    rate_limited_until: float | None = None
    last_run_at: float | None = None
    running: bool = False

    def in_cooldown(self, now: float | None = None) -> bool:
        """True up to and including the cooldown deadline."""
        if self.rate_limited_until is None:
            return False
        return (self.clock() if now is None else now) <= self.rate_limited_until


@dataclass
class CycleReport:
    started_at: float
    skipped: str | None = None  # already_running | rate_limited | no_trackings
    markets_checked: int = 0
    accounts_checked: int = 0
    accounts_failed: int = 0
    posts_seen: int = 0
    resolved_market_ids: list[str] = field(default_factory=list)
    rate_limited: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "skipped": self.skipped,
            "markets_checked": self.markets_checked,
            "accounts_checked": self.accounts_checked,
            "accounts_failed": self.accounts_failed,
            "posts_seen": self.posts_seen,
            "resolved_market_ids": list(self.resolved_market_ids),
            "rate_limited": self.rate_limited,
        }


def _group(records: list[TrackingRecord], key: Callable[[TrackingRecord], str]) -> dict[str, list[TrackingRecord]]:
    groups: dict[str, list[TrackingRecord]] = {}
    for r in records:
        groups.setdefault(key(r), []).append(r)
    return groups


def _newest(ids: list[str | None]) -> str | None:
    present = [i for i in ids if i]
    return max(present, key=post_id_key) if present else None


async def run_cycle(conn: DuckDBPyConnection, ctx: SchedulerContext, reader: SocialReader) -> CycleReport:
    """One poll over every active tracking record. Never raises for social API failures."""
    now = ctx.clock()
    report = CycleReport(started_at=now)
    if ctx.running:
        report.skipped = "already_running"
        log.info("monitor_cycle_skipped", reason=report.skipped)
        return report
    if ctx.in_cooldown(now):
        report.skipped = "rate_limited"
        wait_min = max(0.0, (ctx.rate_limited_until or now) - now) / 60
        log.info("monitor_cycle_skipped", reason=report.skipped, wait_minutes=round(wait_min, 1))
        return report
    ctx.running = True
    try:
        ctx.last_run_at = now
        await _poll(conn, ctx, reader, report, int(now * 1000))
    finally:
        ctx.running = False
    log.info("monitor_cycle_done", **{k: v for k, v in report.as_dict().items() if k != "started_at"})
    return report


async def _poll(
    conn: DuckDBPyConnection,
    ctx: SchedulerContext,
    reader: SocialReader,
    report: CycleReport,
    now_ms: int,
) -> None:
    trackings = list_active_trackings(conn)
    if not trackings:
        report.skipped = "no_trackings"
        log.debug("monitor_no_active_trackings")
        return
    log.info("monitor_cycle_started", trackings=len(trackings))

    for market_id, market_records in _group(trackings, lambda r: r.market_id).items():
        market = get_market(conn, market_id)
        if market is None or not market.is_active:
            continue
        if market.is_expired(now_ms):
            log.info("monitor_market_expired", market_id=market_id)
            continue
        creator = get_connection_for(conn, market.creator_wallet)
        if creator is None or not creator.access_token:
            log.info("monitor_market_skipped", market_id=market_id, reason="creator_not_linked")
            continue
        report.markets_checked += 1

        for account_id, records in _group(market_records, lambda r: r.x_target_user_id).items():
            since = _newest([r.last_checked_post_id for r in records])
            username = records[0].x_target_username
            try:
                page = await reader.list_recent_posts(account_id, since, creator.access_token)
            except RateLimitedError as e:
                ctx.rate_limited_until = ctx.clock() + ctx.rate_limit_backoff_sec
                report.rate_limited = True
                log.warning(
                    "monitor_rate_limited",
                    username=username,
                    backoff_sec=ctx.rate_limit_backoff_sec,
                    api_reset_at=e.reset_at,
                )
                return
            except SocialAPIError as e:
                report.accounts_failed += 1
                log.warning("monitor_fetch_failed", market_id=market_id, username=username, error=str(e))
                continue
            report.accounts_checked += 1
            posts = sorted(page.posts, key=lambda p: post_id_key(p.id), reverse=True)
            report.posts_seen += len(posts)
            if posts:
                log.info("monitor_new_posts", market_id=market_id, username=username, count=len(posts))

            market = _evaluate_account(conn, market, records, posts, report, now_ms)

            newest = _newest([page.newest_cursor] + [p.id for p in posts])
            for record in records:
                advance_tracking_cursor(conn, record.id, newest, now_ms)
            if not market.is_active:
                break


def _evaluate_account(
    conn: DuckDBPyConnection,
    market: Market,
    records: list[TrackingRecord],
    posts: list[Post],
    report: CycleReport,
    now_ms: int,
) -> Market:
    """Evaluate one account's records; stop at the first met condition."""
    for record in records:
        result = evaluate(market, record, posts)
        if not result.met or result.evidence is None:
            continue
        log.info("monitor_condition_met", market_id=market.id, tracking_id=record.id, post_id=result.evidence.post_id)
        if apply_resolution(conn, market, result.evidence, now_ms):
            report.resolved_market_ids.append(market.id)
            return market.model_copy(update={"status": MarketStatus.RESOLVED})
        refreshed = get_market(conn, market.id)
        return refreshed if refreshed is not None else market
    return market


class MonitorWorker:
    """Runs run_cycle every poll interval until stopped. Ticks never overlap."""

    def __init__(
        self,
        db_path: str | Path,
        reader: SocialReader,
        ctx: SchedulerContext | None = None,
        run_on_start: bool = True,
    ) -> None:
        self.db_path = db_path
        self.reader = reader
        self.ctx = ctx or SchedulerContext()
        self.run_on_start = run_on_start
        self.last_report: CycleReport | None = None
        self._stop = asyncio.Event()

    async def tick(self) -> CycleReport:
        conn = get_connection(self.db_path)
        try:
            init_schema(conn)
            self.last_report = await run_cycle(conn, self.ctx, self.reader)
        finally:
            conn.close()
        return self.last_report

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Loop until stop() (or stop_event). An in-flight tick always completes."""
        if stop_event is not None:
            self._stop = stop_event
        log.info("monitor_started", poll_interval_sec=self.ctx.poll_interval_sec)
        first = True
        while not self._stop.is_set():
            if self.run_on_start or not first:
                try:
                    await self.tick()
                except Exception as e:
                    log.error("monitor_cycle_failed", error=str(e))
            first = False
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.ctx.poll_interval_sec)
            except asyncio.TimeoutError:
                pass
        log.info("monitor_stopped")

    def stop(self) -> None:
        self._stop.set()

    def status(self) -> dict[str, Any]:
        now = self.ctx.clock()
        return {
            "running": self.ctx.running,
            "stopped": self._stop.is_set(),
            "poll_interval_sec": self.ctx.poll_interval_sec,
            "last_run_at": self.ctx.last_run_at,
            "rate_limited_until": self.ctx.rate_limited_until,
            "in_cooldown": self.ctx.in_cooldown(now),
            "last_report": self.last_report.as_dict() if self.last_report else None,
        }
