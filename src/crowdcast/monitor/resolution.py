"""Settle a market once its tracked condition fires."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from crowdcast.models import Evidence, Market, MarketOption, XMonitoringStatus
from crowdcast.storage.db import now_ms, transaction
from crowdcast.storage.markets import resolve_market, update_market_x_fields
from crowdcast.storage.tracking import resolve_market_trackings

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)

AFFIRMATIVE_KEYWORDS = ("yes", "true")


def select_winner_option(options: list[MarketOption]) -> MarketOption | None:
    """Winner for a fired condition: first option whose label contains an affirmative word.

    Substring match, case-insensitive. This is the only place the policy lives;
    None means the market has no option that can be called affirmative.
    """
    for opt in options:
        label = opt.label.lower()
        if any(word in label for word in AFFIRMATIVE_KEYWORDS):
            return opt
    return None


def apply_resolution(
    conn: DuckDBPyConnection, market: Market, evidence: Evidence, now: int | None = None
) -> bool:
    """Resolve market with the affirmative option and freeze its tracking records.

    Returns True only when this call moved the market from active to resolved.
    Already-resolved markets and markets without an affirmative option are left as they are.
    """
    winner = select_winner_option(market.options)
    if winner is None:
        log.warning("auto_resolve_skipped_no_affirmative_option", market_id=market.id)
        return False
    resolved_at = now if now is not None else now_ms()
    # market, its records and its monitoring status change together or not at all
    with transaction(conn):
        if not resolve_market(conn, market.id, winner.id):
            log.info("auto_resolve_noop_already_resolved", market_id=market.id)
            return False
        frozen = resolve_market_trackings(conn, market.id, evidence, resolved_at)
        update_market_x_fields(conn, market.id, x_monitoring_status=XMonitoringStatus.RESOLVED.value)
    log.info(
        "market_auto_resolved",
        market_id=market.id,
        winner_id=winner.id,
        winner_label=winner.label,
        proof=evidence.post_url,
        trackings_frozen=frozen,
    )
    return True
