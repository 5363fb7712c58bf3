"""Winner selection and resolution application tests."""

import pytest

from crowdcast.models import Evidence, MarketOption, MarketStatus, MonitoringStatus, XMonitoringStatus
from crowdcast.monitor.resolution import apply_resolution, select_winner_option
from crowdcast.storage.markets import get_market
from crowdcast.storage.tracking import create_tracking, get_tracking

EVIDENCE = Evidence(post_id="1001", post_url="https://twitter.com/elonmusk/status/1001", text="hi")


def _opts(*labels):
    return [MarketOption(id=f"o{i}", market_id="m", label=label) for i, label in enumerate(labels)]


def test_select_affirmative_option():
    assert select_winner_option(_opts("No", "Yes")).id == "o1"
    assert select_winner_option(_opts("Absolutely YES", "No")).id == "o0"
    assert select_winner_option(_opts("False", "True")).id == "o1"
    assert select_winner_option(_opts("Team A", "Team B")) is None


def test_apply_resolution_freezes_records(temp_db, make_market):
    m = make_market()
    t = create_tracking(temp_db, m.id, "44196397", "elonmusk", "tweet_posted")
    assert apply_resolution(temp_db, m, EVIDENCE, now=123) is True
    stored = get_market(temp_db, m.id)
    assert stored.status == MarketStatus.RESOLVED
    assert stored.winner_id == m.options[0].id
    assert stored.x_monitoring_status == XMonitoringStatus.RESOLVED
    record = get_tracking(temp_db, t.id)
    assert record.monitoring_status == MonitoringStatus.RESOLVED
    assert record.resolution_proof.post_url == EVIDENCE.post_url
    # Second firing is a no-op
    assert apply_resolution(temp_db, m, EVIDENCE, now=456) is False
    assert get_tracking(temp_db, t.id).resolved_at == 123


def test_no_affirmative_option_leaves_market_active(temp_db, make_market):
    m = make_market(title="Will @bob tweet?", options=("Team A", "Team B"))
    assert apply_resolution(temp_db, m, EVIDENCE) is False
    assert get_market(temp_db, m.id).status == MarketStatus.ACTIVE


def test_manual_resolution_first_wins(temp_db, make_market):
    from crowdcast.storage.markets import resolve_market

    m = make_market()
    resolve_market(temp_db, m.id, m.options[1].id)
    assert apply_resolution(temp_db, m, EVIDENCE) is False
    assert get_market(temp_db, m.id).winner_id == m.options[1].id


def test_failed_record_freeze_rolls_back_market(temp_db, make_market, monkeypatch):
    m = make_market()
    t = create_tracking(temp_db, m.id, "44196397", "elonmusk", "tweet_posted")

    def boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr("crowdcast.monitor.resolution.resolve_market_trackings", boom)
    with pytest.raises(RuntimeError):
        apply_resolution(temp_db, m, EVIDENCE, now=123)

    stored = get_market(temp_db, m.id)
    assert stored.status == MarketStatus.ACTIVE
    assert stored.winner_id is None
    assert get_tracking(temp_db, t.id).monitoring_status == MonitoringStatus.ACTIVE
    # The market can still be resolved once the failure clears
    monkeypatch.undo()
    assert apply_resolution(temp_db, m, EVIDENCE, now=456) is True
