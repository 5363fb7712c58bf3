"""Polling loop tests driven by an injected clock and a scripted reader."""

import asyncio

from conftest import BASE_TS, DAY_MS, iso_at

from crowdcast.models import MarketStatus, MonitoringStatus, Post, PostPage
from crowdcast.monitor.worker import MonitorWorker, SchedulerContext, run_cycle
from crowdcast.social.base import RateLimitedError, SocialAPIError
from crowdcast.storage.markets import get_market
from crowdcast.storage.tracking import create_tracking, get_tracking

START_MS = int(BASE_TS * 1000)


class Clock:
    def __init__(self, t=BASE_TS):
        self.t = t

    def __call__(self):
        return self.t


class ScriptedReader:
    """Returns queued pages (or raises queued errors) per account; records every call."""

    def __init__(self, pages=None):
        self.pages = pages or {}
        self.calls = []

    async def list_recent_posts(self, account_id, since_cursor, credential):
        self.calls.append((account_id, since_cursor, credential))
        queue = self.pages.get(account_id) or []
        item = queue.pop(0) if queue else PostPage()
        if isinstance(item, Exception):
            raise item
        return item


def _page(*posts):
    ordered = sorted(posts, key=lambda p: (len(p.id), p.id), reverse=True)
    return PostPage(posts=ordered, newest_cursor=ordered[0].id if ordered else None)


def _post(pid, text="gm", ts=BASE_TS + 60):
    return Post(id=pid, text=text, created_at=iso_at(ts))


def _track(
    conn, market, account="44196397", username="elonmusk", kind="tweet_posted", params=None, cursor=None, offset=0
):
    return create_tracking(conn, market.id, account, username, kind, params, cursor, now=START_MS + offset)


def test_new_post_resolves_market_with_proof(temp_db, make_market, link_account):
    link_account()
    m = make_market()
    t = _track(temp_db, m)
    reader = ScriptedReader({"44196397": [_page(_post("1001", "hello world"))]})
    ctx = SchedulerContext(clock=Clock())

    report = asyncio.run(run_cycle(temp_db, ctx, reader))

    assert report.resolved_market_ids == [m.id]
    assert reader.calls == [("44196397", None, "tok-creator")]
    stored = get_market(temp_db, m.id)
    assert stored.status == MarketStatus.RESOLVED
    assert stored.winner_id == m.options[0].id
    record = get_tracking(temp_db, t.id)
    assert record.monitoring_status == MonitoringStatus.RESOLVED
    assert record.resolution_proof.post_url == "https://twitter.com/elonmusk/status/1001"
    assert record.last_checked_post_id == "1001"

    # Resolved markets drop out of later cycles
    report = asyncio.run(run_cycle(temp_db, ctx, reader))
    assert report.skipped == "no_trackings"
    assert len(reader.calls) == 1


def test_quiet_account_advances_cursor_only(temp_db, make_market, link_account):
    link_account()
    m = make_market(title="Will @elonmusk tweet about Mars?")
    t = _track(temp_db, m, kind="keyword", params={"keywords": ["mars"]})
    reader = ScriptedReader({"44196397": [_page(_post("1001", "coffee")), _page(_post("1002", "to MARS"))]})
    ctx = SchedulerContext(clock=Clock())

    asyncio.run(run_cycle(temp_db, ctx, reader))
    assert get_market(temp_db, m.id).status == MarketStatus.ACTIVE
    assert get_tracking(temp_db, t.id).last_checked_post_id == "1001"

    asyncio.run(run_cycle(temp_db, ctx, reader))
    # Second fetch starts after the cursor
    assert reader.calls[1][1] == "1001"
    assert get_market(temp_db, m.id).status == MarketStatus.RESOLVED


def test_seen_posts_do_not_retrigger(temp_db, make_market, link_account):
    link_account()
    m = make_market()
    t = _track(temp_db, m, cursor="1001")
    # A reader that ignores since_id and replays an old post
    reader = ScriptedReader({"44196397": [_page(_post("1001")), _page(_post("999"))]})
    ctx = SchedulerContext(clock=Clock())
    asyncio.run(run_cycle(temp_db, ctx, reader))
    asyncio.run(run_cycle(temp_db, ctx, reader))
    assert get_market(temp_db, m.id).status == MarketStatus.ACTIVE
    assert get_tracking(temp_db, t.id).last_checked_post_id == "1001"


def test_rate_limit_skips_cycles_until_backoff_passes(temp_db, make_market, link_account):
    link_account()
    m = make_market()
    _track(temp_db, m)
    clock = Clock()
    reader = ScriptedReader({"44196397": [RateLimitedError(reset_at=BASE_TS + 60)]})
    ctx = SchedulerContext(poll_interval_sec=300, rate_limit_backoff_sec=900, clock=clock)

    report = asyncio.run(run_cycle(temp_db, ctx, reader))
    assert report.rate_limited
    assert ctx.rate_limited_until == BASE_TS + 900

    skipped = 0
    for _ in range(4):
        clock.t += 300
        if asyncio.run(run_cycle(temp_db, ctx, reader)).skipped == "rate_limited":
            skipped += 1
    assert skipped == 3
    assert len(reader.calls) == 2
    assert get_market(temp_db, m.id).status == MarketStatus.ACTIVE


def test_rate_limit_aborts_remaining_accounts(temp_db, make_market, link_account):
    link_account()
    m = make_market(title="Will @alice or @bob tweet?")
    _track(temp_db, m, account="1", username="alice")
    _track(temp_db, m, account="2", username="bob", offset=1)
    reader = ScriptedReader({"1": [RateLimitedError()], "2": [_page(_post("1001"))]})
    asyncio.run(run_cycle(temp_db, SchedulerContext(clock=Clock()), reader))
    assert [c[0] for c in reader.calls] == ["1"]


def test_fetch_error_skips_only_that_account(temp_db, make_market, link_account):
    link_account()
    m = make_market(title="Will @alice or @bob tweet?")
    a = _track(temp_db, m, account="1", username="alice")
    _track(temp_db, m, account="2", username="bob", offset=1)
    reader = ScriptedReader({"1": [SocialAPIError("boom", status_code=500)], "2": [_page(_post("1001"))]})

    report = asyncio.run(run_cycle(temp_db, SchedulerContext(clock=Clock()), reader))

    assert report.accounts_failed == 1
    assert report.resolved_market_ids == [m.id]
    assert get_tracking(temp_db, a.id).monitoring_status == MonitoringStatus.RESOLVED
    assert get_tracking(temp_db, a.id).last_checked_post_id is None


def test_shared_account_is_fetched_once(temp_db, make_market, link_account):
    link_account()
    m = make_market(title="Will @elonmusk tweet about Mars?")
    _track(temp_db, m, kind="keyword", params={"keywords": ["mars"]}, cursor="900")
    _track(temp_db, m, kind="tweet_count", params={"threshold": 5}, cursor="950")
    reader = ScriptedReader({"44196397": [_page(_post("1001", "nothing"))]})
    asyncio.run(run_cycle(temp_db, SchedulerContext(clock=Clock()), reader))
    assert reader.calls == [("44196397", "950", "tok-creator")]


def test_expired_market_is_not_polled(temp_db, make_market, link_account):
    link_account()
    m = make_market(end_date=START_MS - DAY_MS)
    _track(temp_db, m)
    reader = ScriptedReader({"44196397": [_page(_post("1001"))]})
    asyncio.run(run_cycle(temp_db, SchedulerContext(clock=Clock()), reader))
    assert reader.calls == []
    assert get_market(temp_db, m.id).status == MarketStatus.ACTIVE


def test_unlinked_creator_is_skipped(temp_db, make_market):
    m = make_market()
    _track(temp_db, m)
    reader = ScriptedReader()
    report = asyncio.run(run_cycle(temp_db, SchedulerContext(clock=Clock()), reader))
    assert reader.calls == []
    assert report.markets_checked == 0


def test_overlapping_cycle_is_skipped(temp_db):
    ctx = SchedulerContext(clock=Clock())
    ctx.running = True
    report = asyncio.run(run_cycle(temp_db, ctx, ScriptedReader()))
    assert report.skipped == "already_running"


def test_worker_tick_uses_its_own_connection(temp_db, temp_db_path, make_market, link_account):
    link_account()
    m = make_market()
    _track(temp_db, m)
    reader = ScriptedReader({"44196397": [_page(_post("1001"))]})
    worker = MonitorWorker(temp_db_path, reader, SchedulerContext(clock=Clock()))

    report = asyncio.run(worker.tick())

    assert report.resolved_market_ids == [m.id]
    assert worker.status()["last_report"]["resolved_market_ids"] == [m.id]
    assert get_market(temp_db, m.id).status == MarketStatus.RESOLVED


def test_worker_run_stops_on_event(temp_db_path):
    worker = MonitorWorker(temp_db_path, ScriptedReader(), SchedulerContext(poll_interval_sec=0.01))

    async def main():
        stop = asyncio.Event()
        task = asyncio.create_task(worker.run(stop_event=stop))
        await asyncio.sleep(0.05)
        stop.set()
        await task

    asyncio.run(main())
    assert worker.last_report is not None
    assert worker.status()["stopped"] is True


def test_yes_no_market_end_to_end(temp_db, make_market, link_account):
    from crowdcast.monitor.conditions import evaluate
    from crowdcast.storage.markets import create_prediction

    link_account()
    m = make_market()
    assert m.percentages() == [0, 0]
    yes, no = m.options
    create_prediction(temp_db, m.id, "0xa", yes.id, 1.0)
    create_prediction(temp_db, m.id, "0xb", no.id, 1.0)
    m = get_market(temp_db, m.id)
    assert m.total_volume == 2.0
    assert m.percentages() == [50, 50]

    t = _track(temp_db, m)
    tweet = _post("1001", "just posted")
    reader = ScriptedReader({"44196397": [_page(tweet), _page(tweet)]})
    ctx = SchedulerContext(clock=Clock())
    asyncio.run(run_cycle(temp_db, ctx, reader))

    resolved = get_market(temp_db, m.id)
    assert resolved.status == MarketStatus.RESOLVED
    assert resolved.winner_id == yes.id
    # Same tweet evaluated again changes nothing
    assert not evaluate(resolved, get_tracking(temp_db, t.id), [tweet]).met
    record = get_tracking(temp_db, t.id)
    record.monitoring_status = MonitoringStatus.ACTIVE
    assert not evaluate(m, record, [tweet]).met
    assert get_market(temp_db, m.id) == resolved
    assert resolved.total_volume == 2.0
    assert resolved.participants == 2
