"""Linked X accounts and badges persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING

import duckdb

from crowdcast.errors import DuplicateConnectionError
from crowdcast.models import Badge, BadgeType, SocialConnection
from crowdcast.storage.db import new_id, now_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_CONNECTION_COLUMNS = [
    "user_wallet", "x_user_id", "x_username", "x_display_name", "x_profile_image",
    "access_token", "refresh_token", "token_expires_at", "connected_at",
]
_BADGE_COLUMNS = ["id", "user_wallet", "badge_type", "earned_at", "metadata"]


def get_connection_for(conn: DuckDBPyConnection, wallet: str) -> SocialConnection | None:
    row = conn.execute(
        f"SELECT {', '.join(_CONNECTION_COLUMNS)} FROM x_connections WHERE user_wallet = ?", [wallet]
    ).fetchone()
    return SocialConnection(**dict(zip(_CONNECTION_COLUMNS, row))) if row else None


def create_connection(conn: DuckDBPyConnection, connection: SocialConnection) -> SocialConnection:
    """Link an X account to a wallet. One link per wallet."""
    stored = connection.model_copy(update={"connected_at": connection.connected_at or now_ms()})
    try:
        conn.execute(
            f"INSERT INTO x_connections ({', '.join(_CONNECTION_COLUMNS)}) VALUES ({', '.join('?' for _ in _CONNECTION_COLUMNS)})",
            [getattr(stored, c) for c in _CONNECTION_COLUMNS],
        )
    except duckdb.ConstraintException as e:
        raise DuplicateConnectionError() from e
    return stored


def delete_connection(conn: DuckDBPyConnection, wallet: str) -> bool:
    """Unlink; returns False when nothing was linked."""
    rows = conn.execute("DELETE FROM x_connections WHERE user_wallet = ? RETURNING user_wallet", [wallet]).fetchall()
    return bool(rows)


def list_badges(conn: DuckDBPyConnection, wallet: str) -> list[Badge]:
    rows = conn.execute(
        f"SELECT {', '.join(_BADGE_COLUMNS)} FROM user_badges WHERE user_wallet = ? ORDER BY earned_at",
        [wallet],
    ).fetchall()
    return [Badge(**dict(zip(_BADGE_COLUMNS, r))) for r in rows]


def award_badge(
    conn: DuckDBPyConnection, wallet: str, badge_type: BadgeType | str, metadata: str | None = None
) -> Badge:
    """Award a badge once; awarding it again returns the existing one."""
    badge_type = BadgeType(badge_type)
    row = conn.execute(
        f"SELECT {', '.join(_BADGE_COLUMNS)} FROM user_badges WHERE user_wallet = ? AND badge_type = ?",
        [wallet, badge_type.value],
    ).fetchone()
    if row:
        return Badge(**dict(zip(_BADGE_COLUMNS, row)))
    badge = Badge(id=new_id(), user_wallet=wallet, badge_type=badge_type, earned_at=now_ms(), metadata=metadata)
    conn.execute(
        "INSERT INTO user_badges (id, user_wallet, badge_type, earned_at, metadata) VALUES (?, ?, ?, ?, ?)",
        [badge.id, wallet, badge_type.value, badge.earned_at, metadata],
    )
    return badge
