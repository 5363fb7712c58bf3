"""Register new markets for X auto-resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from crowdcast.models import Market, TrackingRecord, XMonitoringStatus
from crowdcast.monitor.conditions import condition_params, detect_condition, extract_mentions
from crowdcast.social.base import IdentityResolver, SocialAPIError
from crowdcast.storage.markets import update_market_x_fields
from crowdcast.storage.social import get_connection_for
from crowdcast.storage.tracking import create_tracking

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)


async def register_market_tracking(
    conn: DuckDBPyConnection, market: Market, resolver: IdentityResolver
) -> list[TrackingRecord]:
    """Create one tracking record per @mention in the title that resolves to an X account.

    Anything missing (mentions, a recognizable condition, the creator's linked
    account, resolvable handles) means the market is simply not tracked.
    """
    mentions = extract_mentions(market.title)
    if not mentions:
        log.debug("tracking_skipped", market_id=market.id, reason="no_mentions")
        return []
    condition = detect_condition(market.title)
    if condition is None:
        log.info("tracking_skipped", market_id=market.id, reason="unsupported_condition")
        return []
    creator = get_connection_for(conn, market.creator_wallet)
    if creator is None or not creator.access_token:
        log.info("tracking_skipped", market_id=market.id, reason="creator_not_linked")
        return []

    resolved: list[tuple[str, str]] = []
    for username in mentions:
        try:
            account_id = await resolver.resolve_username(username, creator.access_token)
        except SocialAPIError as e:
            log.warning("x_username_lookup_failed", username=username, error=str(e))
            continue
        if account_id is None:
            log.info("x_username_unresolved", username=username)
            continue
        resolved.append((username, account_id))
    if not resolved:
        log.info("tracking_skipped", market_id=market.id, reason="no_valid_accounts")
        return []

    primary_username, primary_id = resolved[0]
    update_market_x_fields(
        conn,
        market.id,
        x_target_user_id=primary_id,
        x_target_username=primary_username,
        x_condition_type=condition.kind,
        x_monitoring_status=XMonitoringStatus.ACTIVE.value,
    )
    records = [
        create_tracking(conn, market.id, account_id, username, condition.kind, condition_params(condition))
        for username, account_id in resolved
    ]
    log.info("tracking_registered", market_id=market.id, accounts=[u for u, _ in resolved], condition=condition.kind)
    return records
