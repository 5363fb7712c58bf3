"""X market tracking records."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from crowdcast.errors import NotFoundError
from crowdcast.models import Evidence, MonitoringStatus, TrackingRecord
from crowdcast.models.tracking import is_newer
from crowdcast.storage.db import new_id, now_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_COLUMNS = [
    "id", "market_id", "x_target_user_id", "x_target_username", "condition_type", "condition_params",
    "last_checked_post_id", "last_checked_at", "monitoring_status", "created_at", "resolved_at",
    "resolution_proof",
]
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM x_market_tracking"


def _row_to_tracking(row: tuple) -> TrackingRecord:
    d = dict(zip(_COLUMNS, row))
    params = json.loads(d["condition_params"]) if d["condition_params"] else {}
    d["condition_params"] = params if isinstance(params, dict) else {}
    proof = d["resolution_proof"]
    d["resolution_proof"] = Evidence.model_validate_json(proof) if proof else None
    return TrackingRecord(**d)


def create_tracking(
    conn: DuckDBPyConnection,
    market_id: str,
    x_target_user_id: str,
    x_target_username: str,
    condition_type: str,
    condition_params: dict[str, Any] | None = None,
    last_checked_post_id: str | None = None,
    now: int | None = None,
) -> TrackingRecord:
    record = TrackingRecord(
        id=new_id(),
        market_id=market_id,
        x_target_user_id=x_target_user_id,
        x_target_username=x_target_username,
        condition_type=condition_type,
        condition_params=condition_params or {},
        last_checked_post_id=last_checked_post_id,
        created_at=now if now is not None else now_ms(),
    )
    conn.execute(
        """INSERT INTO x_market_tracking (id, market_id, x_target_user_id, x_target_username,
               condition_type, condition_params, last_checked_post_id, monitoring_status, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, 'active', ?)""",
        [
            record.id,
            market_id,
            x_target_user_id,
            x_target_username,
            condition_type,
            json.dumps(record.condition_params),
            last_checked_post_id,
            record.created_at,
        ],
    )
    return record


def get_tracking(conn: DuckDBPyConnection, tracking_id: str) -> TrackingRecord | None:
    row = conn.execute(f"{_SELECT} WHERE id = ?", [tracking_id]).fetchone()
    return _row_to_tracking(row) if row else None


def list_active_trackings(conn: DuckDBPyConnection) -> list[TrackingRecord]:
    rows = conn.execute(f"{_SELECT} WHERE monitoring_status = 'active' ORDER BY created_at").fetchall()
    return [_row_to_tracking(r) for r in rows]


def list_market_trackings(conn: DuckDBPyConnection, market_id: str) -> list[TrackingRecord]:
    rows = conn.execute(f"{_SELECT} WHERE market_id = ? ORDER BY created_at", [market_id]).fetchall()
    return [_row_to_tracking(r) for r in rows]


def advance_tracking_cursor(
    conn: DuckDBPyConnection, tracking_id: str, post_id: str | None, checked_at: int | None = None
) -> bool:
    """Move the record's cursor to post_id if it is newer. Always stamps last_checked_at.

    Returns True when the cursor moved. The cursor never goes backwards.
    """
    checked_at = checked_at if checked_at is not None else now_ms()
    row = conn.execute("SELECT last_checked_post_id FROM x_market_tracking WHERE id = ?", [tracking_id]).fetchone()
    if row is None:
        raise NotFoundError(f"Tracking record not found: {tracking_id}")
    if post_id is not None and is_newer(post_id, row[0]):
        conn.execute(
            "UPDATE x_market_tracking SET last_checked_post_id = ?, last_checked_at = ? WHERE id = ?",
            [post_id, checked_at, tracking_id],
        )
        return True
    conn.execute("UPDATE x_market_tracking SET last_checked_at = ? WHERE id = ?", [checked_at, tracking_id])
    return False


def resolve_market_trackings(
    conn: DuckDBPyConnection, market_id: str, evidence: Evidence, resolved_at: int | None = None
) -> int:
    """Freeze every tracking record of a market with the resolution evidence."""
    rows = conn.execute(
        """UPDATE x_market_tracking
           SET monitoring_status = 'resolved', resolved_at = ?, resolution_proof = ?
           WHERE market_id = ? AND monitoring_status != 'resolved'
           RETURNING id""",
        [resolved_at if resolved_at is not None else now_ms(), evidence.model_dump_json(), market_id],
    ).fetchall()
    return len(rows)


def set_tracking_status(conn: DuckDBPyConnection, tracking_id: str, status: MonitoringStatus) -> TrackingRecord:
    """Pause or resume a record. Resolved records are frozen and left untouched."""
    record = get_tracking(conn, tracking_id)
    if record is None:
        raise NotFoundError(f"Tracking record not found: {tracking_id}")
    if record.monitoring_status == MonitoringStatus.RESOLVED:
        return record
    conn.execute(
        "UPDATE x_market_tracking SET monitoring_status = ? WHERE id = ?",
        [MonitoringStatus(status).value, tracking_id],
    )
    return record.model_copy(update={"monitoring_status": MonitoringStatus(status)})
