"""Market, option and prediction persistence."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from crowdcast.errors import InvalidRequestError, NotFoundError
from crowdcast.models import Market, MarketDraft, MarketOption, MarketStatus, Prediction
from crowdcast.models.market import MAX_OPTIONS, MIN_OPTIONS
from crowdcast.storage.db import new_id, now_ms, transaction

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_MARKET_COLUMNS = [
    "id", "creator_wallet", "title", "description", "category", "tags", "status", "end_date",
    "total_volume", "participants", "winner_id", "tx_hash", "resolution_method", "created_at",
    "x_target_user_id", "x_target_username", "x_condition_type", "x_monitoring_status",
]
_MARKET_SELECT = f"SELECT {', '.join(_MARKET_COLUMNS)} FROM markets"

_PREDICTION_COLUMNS = ["id", "market_id", "user_wallet", "option_id", "amount", "tx_hash", "created_at"]


def _load_json_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    try:
        loaded = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return []
    return loaded if isinstance(loaded, list) else []


def _row_to_market(row: tuple, options: list[MarketOption]) -> Market:
    d = dict(zip(_MARKET_COLUMNS, row))
    d["tags"] = _load_json_list(d["tags"])
    d["resolution_method"] = d["resolution_method"] or "Community Vote"
    d["x_monitoring_status"] = d["x_monitoring_status"] or "inactive"
    return Market(**d, options=options)


def _options_for(conn: DuckDBPyConnection, market_ids: list[str]) -> dict[str, list[MarketOption]]:
    by_market: dict[str, list[MarketOption]] = {mid: [] for mid in market_ids}
    if not market_ids:
        return by_market
    placeholders = ",".join("?" for _ in market_ids)
    rows = conn.execute(
        f"""SELECT id, market_id, label, total_staked FROM market_options
            WHERE market_id IN ({placeholders}) ORDER BY market_id, position""",
        market_ids,
    ).fetchall()
    for oid, mid, label, staked in rows:
        by_market[mid].append(MarketOption(id=oid, market_id=mid, label=label, total_staked=staked))
    return by_market


def create_market(
    conn: DuckDBPyConnection,
    draft: MarketDraft,
    option_labels: list[str],
    now: int | None = None,
) -> Market:
    """Insert a market and its 2-4 options in one transaction."""
    labels = [label.strip() for label in option_labels]
    if not MIN_OPTIONS <= len(labels) <= MAX_OPTIONS:
        raise InvalidRequestError(f"A market needs {MIN_OPTIONS}-{MAX_OPTIONS} options, got {len(labels)}")
    if any(not label for label in labels):
        raise InvalidRequestError("Option labels must be non-empty")
    market_id = new_id()
    created_at = now if now is not None else now_ms()
    with transaction(conn):
        conn.execute(
            """
            INSERT INTO markets (id, creator_wallet, title, description, category, tags, status,
                                 end_date, tx_hash, resolution_method, created_at, x_monitoring_status)
            VALUES (?, ?, ?, ?, ?, ?, 'active', ?, ?, ?, ?, 'inactive')
            """,
            [
                market_id,
                draft.creator_wallet,
                draft.title,
                draft.description,
                draft.category,
                json.dumps(draft.tags),
                draft.end_date,
                draft.tx_hash,
                draft.resolution_method,
                created_at,
            ],
        )
        for position, label in enumerate(labels):
            conn.execute(
                "INSERT INTO market_options (id, market_id, position, label, total_staked) VALUES (?, ?, ?, ?, 0)",
                [new_id(), market_id, position, label],
            )
    market = get_market(conn, market_id)
    assert market is not None
    return market


def get_market(conn: DuckDBPyConnection, market_id: str) -> Market | None:
    row = conn.execute(f"{_MARKET_SELECT} WHERE id = ?", [market_id]).fetchone()
    if not row:
        return None
    return _row_to_market(row, _options_for(conn, [market_id])[market_id])


def list_markets(conn: DuckDBPyConnection, status: MarketStatus | str | None = None) -> list[Market]:
    """List markets (optionally by status), newest first, with options."""
    if status is not None:
        rows = conn.execute(
            f"{_MARKET_SELECT} WHERE status = ? ORDER BY created_at DESC",
            [MarketStatus(status).value],
        ).fetchall()
    else:
        rows = conn.execute(f"{_MARKET_SELECT} ORDER BY created_at DESC").fetchall()
    options = _options_for(conn, [r[0] for r in rows])
    return [_row_to_market(r, options[r[0]]) for r in rows]


def resolve_market(conn: DuckDBPyConnection, market_id: str, winner_id: str) -> bool:
    """Mark a market resolved with winner_id, only if it is still active.

    Returns True when this call performed the transition. The winner must be one
    of the market's options.
    """
    owned = conn.execute(
        "SELECT 1 FROM market_options WHERE id = ? AND market_id = ?", [winner_id, market_id]
    ).fetchone()
    if not owned:
        if conn.execute("SELECT 1 FROM markets WHERE id = ?", [market_id]).fetchone() is None:
            raise NotFoundError(f"Market not found: {market_id}")
        raise InvalidRequestError(f"Option {winner_id} does not belong to market {market_id}")
    rows = conn.execute(
        """UPDATE markets SET status = 'resolved', winner_id = ?
           WHERE id = ? AND status = 'active'
           RETURNING id""",
        [winner_id, market_id],
    ).fetchall()
    return len(rows) == 1


def update_market_x_fields(
    conn: DuckDBPyConnection,
    market_id: str,
    *,
    x_target_user_id: str | None = None,
    x_target_username: str | None = None,
    x_condition_type: str | None = None,
    x_monitoring_status: str | None = None,
) -> None:
    """Update only the X monitoring fields that are given."""
    fields = {
        "x_target_user_id": x_target_user_id,
        "x_target_username": x_target_username,
        "x_condition_type": x_condition_type,
        "x_monitoring_status": x_monitoring_status,
    }
    updates = {k: v for k, v in fields.items() if v is not None}
    if not updates:
        return
    assignments = ", ".join(f"{k} = ?" for k in updates)
    conn.execute(f"UPDATE markets SET {assignments} WHERE id = ?", [*updates.values(), market_id])


def create_prediction(
    conn: DuckDBPyConnection,
    market_id: str,
    user_wallet: str,
    option_id: str,
    amount: float,
    tx_hash: str | None = None,
    now: int | None = None,
) -> Prediction:
    """Record a stake and bump option/market counters atomically."""
    if amount <= 0:
        raise InvalidRequestError("Stake amount must be positive")
    prediction = Prediction(
        id=new_id(),
        market_id=market_id,
        user_wallet=user_wallet,
        option_id=option_id,
        amount=amount,
        tx_hash=tx_hash,
        created_at=now if now is not None else now_ms(),
    )
    # status check and counter writes share one transaction
    with transaction(conn):
        market = conn.execute("SELECT status FROM markets WHERE id = ?", [market_id]).fetchone()
        if not market:
            raise NotFoundError(f"Market not found: {market_id}")
        if market[0] != MarketStatus.ACTIVE.value:
            raise InvalidRequestError(f"Market {market_id} is not accepting predictions")
        owned = conn.execute(
            "SELECT 1 FROM market_options WHERE id = ? AND market_id = ?", [option_id, market_id]
        ).fetchone()
        if not owned:
            raise InvalidRequestError(f"Option {option_id} does not belong to market {market_id}")
        conn.execute(
            "INSERT INTO predictions (id, market_id, user_wallet, option_id, amount, tx_hash, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            [prediction.id, market_id, user_wallet, option_id, amount, tx_hash, prediction.created_at],
        )
        conn.execute(
            "UPDATE market_options SET total_staked = total_staked + ? WHERE id = ?",
            [amount, option_id],
        )
        conn.execute(
            "UPDATE markets SET total_volume = total_volume + ?, participants = participants + 1 WHERE id = ?",
            [amount, market_id],
        )
    return prediction


def list_market_predictions(conn: DuckDBPyConnection, market_id: str) -> list[Prediction]:
    rows = conn.execute(
        f"SELECT {', '.join(_PREDICTION_COLUMNS)} FROM predictions WHERE market_id = ? ORDER BY created_at",
        [market_id],
    ).fetchall()
    return [Prediction(**dict(zip(_PREDICTION_COLUMNS, r))) for r in rows]


def list_user_predictions(conn: DuckDBPyConnection, wallet: str) -> list[dict[str, Any]]:
    """A wallet's predictions joined with market and option summaries."""
    rows = conn.execute(
        """
        SELECT p.id, p.market_id, p.option_id, p.amount, p.created_at,
               m.title, m.status, m.end_date, m.winner_id, o.label
        FROM predictions p
        JOIN markets m ON m.id = p.market_id
        JOIN market_options o ON o.id = p.option_id
        WHERE p.user_wallet = ?
        ORDER BY p.created_at DESC
        """,
        [wallet],
    ).fetchall()
    return [
        {
            "id": r[0],
            "market_id": r[1],
            "option_id": r[2],
            "amount": r[3],
            "created_at": r[4],
            "market": {"id": r[1], "title": r[5], "status": r[6], "end_date": r[7], "winner_id": r[8]},
            "option": {"id": r[2], "label": r[9]},
        }
        for r in rows
    ]


WIN_PAYOUT_MULTIPLIER = 1.5


def _summarize(preds: list[tuple[float, bool]]) -> dict[str, Any]:
    joined = len(preds)
    wins = sum(1 for _, won in preds if won)
    win_rate = round(wins / joined * 100) if joined else 0
    earnings = sum(amount * WIN_PAYOUT_MULTIPLIER for amount, won in preds if won)
    return {"markets_joined": joined, "wins": wins, "win_rate": win_rate, "total_earnings": round(earnings)}


def get_user_stats(conn: DuckDBPyConnection, wallet: str) -> dict[str, Any]:
    """markets_joined, wins, win_rate (%), total_earnings for one wallet."""
    rows = conn.execute(
        """SELECT p.amount, m.winner_id IS NOT NULL AND m.winner_id = p.option_id
           FROM predictions p JOIN markets m ON m.id = p.market_id
           WHERE p.user_wallet = ?""",
        [wallet],
    ).fetchall()
    return _summarize([(amount, bool(won)) for amount, won in rows])


def get_leaderboard(conn: DuckDBPyConnection, limit: int = 10) -> list[dict[str, Any]]:
    """Top wallets by total earnings."""
    rows = conn.execute(
        """SELECT p.user_wallet, p.amount, m.winner_id IS NOT NULL AND m.winner_id = p.option_id
           FROM predictions p JOIN markets m ON m.id = p.market_id"""
    ).fetchall()
    by_wallet: dict[str, list[tuple[float, bool]]] = {}
    for wallet, amount, won in rows:
        by_wallet.setdefault(wallet, []).append((amount, bool(won)))
    entries = []
    for wallet, preds in by_wallet.items():
        s = _summarize(preds)
        entries.append(
            {
                "wallet": wallet,
                "markets_joined": s["markets_joined"],
                "win_rate": s["win_rate"],
                "total_earnings": s["total_earnings"],
                "accuracy": s["win_rate"],
            }
        )
    entries.sort(key=lambda e: e["total_earnings"], reverse=True)
    return [{"rank": i + 1, **e} for i, e in enumerate(entries[:limit])]
