"""DuckDB connection, schema init and transaction helper."""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

import duckdb

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

SCHEMA_SQL = """
-- Markets are never physically deleted
CREATE TABLE IF NOT EXISTS markets (
    id                  VARCHAR PRIMARY KEY,
    creator_wallet      VARCHAR NOT NULL,
    title               VARCHAR NOT NULL,
    description         VARCHAR NOT NULL,
    category            VARCHAR NOT NULL DEFAULT 'Community',
    tags                JSON,
    status              VARCHAR NOT NULL DEFAULT 'active',
    end_date            BIGINT NOT NULL,
    total_volume        DOUBLE NOT NULL DEFAULT 0,
    participants        INTEGER NOT NULL DEFAULT 0,
    winner_id           VARCHAR,
    tx_hash             VARCHAR,
    resolution_method   VARCHAR DEFAULT 'Community Vote',
    created_at          BIGINT NOT NULL,
    x_target_user_id    VARCHAR,
    x_target_username   VARCHAR,
    x_condition_type    VARCHAR,
    x_monitoring_status VARCHAR DEFAULT 'inactive'
);

CREATE TABLE IF NOT EXISTS market_options (
    id              VARCHAR PRIMARY KEY,
    market_id       VARCHAR NOT NULL,
    position        INTEGER NOT NULL,
    label           VARCHAR NOT NULL,
    total_staked    DOUBLE NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS predictions (
    id              VARCHAR PRIMARY KEY,
    market_id       VARCHAR NOT NULL,
    user_wallet     VARCHAR NOT NULL,
    option_id       VARCHAR NOT NULL,
    amount          DOUBLE NOT NULL,
    tx_hash         VARCHAR,
    created_at      BIGINT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_badges (
    id              VARCHAR PRIMARY KEY,
    user_wallet     VARCHAR NOT NULL,
    badge_type      VARCHAR NOT NULL,
    earned_at       BIGINT NOT NULL,
    metadata        VARCHAR
);

-- One linked X account per wallet
CREATE TABLE IF NOT EXISTS x_connections (
    user_wallet     VARCHAR PRIMARY KEY,
    x_user_id       VARCHAR NOT NULL,
    x_username      VARCHAR NOT NULL,
    x_display_name  VARCHAR,
    x_profile_image VARCHAR,
    access_token    VARCHAR,
    refresh_token   VARCHAR,
    token_expires_at BIGINT,
    connected_at    BIGINT NOT NULL
);

-- X accounts monitored for market auto-resolution
CREATE TABLE IF NOT EXISTS x_market_tracking (
    id                      VARCHAR PRIMARY KEY,
    market_id               VARCHAR NOT NULL,
    x_target_user_id        VARCHAR NOT NULL,
    x_target_username       VARCHAR NOT NULL,
    condition_type          VARCHAR NOT NULL,
    condition_params        JSON,
    last_checked_post_id    VARCHAR,
    last_checked_at         BIGINT,
    monitoring_status       VARCHAR NOT NULL DEFAULT 'active',
    created_at              BIGINT NOT NULL,
    resolved_at             BIGINT,
    resolution_proof        JSON
);

CREATE TABLE IF NOT EXISTS market_proposals (
    id              VARCHAR PRIMARY KEY,
    proposer_wallet VARCHAR NOT NULL,
    title           VARCHAR NOT NULL,
    description     VARCHAR NOT NULL,
    category        VARCHAR NOT NULL DEFAULT 'Community',
    tags            JSON,
    votes           INTEGER NOT NULL DEFAULT 0,
    status          VARCHAR NOT NULL DEFAULT 'proposed',
    market_id       VARCHAR,
    created_at      BIGINT NOT NULL
);

-- Unique (proposal_id, voter_wallet) surfaces duplicate votes as a constraint error
CREATE TABLE IF NOT EXISTS proposal_votes (
    proposal_id     VARCHAR NOT NULL,
    voter_wallet    VARCHAR NOT NULL,
    created_at      BIGINT NOT NULL,
    UNIQUE (proposal_id, voter_wallet)
);
"""


def get_connection(db_path: str | Path, read_only: bool = False) -> DuckDBPyConnection:
    """Return a DuckDB connection. Caller must close or use as context manager."""
    path = Path(db_path)
    if not read_only and str(db_path) != ":memory:":
        path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(db_path), read_only=read_only)


def init_schema(conn: DuckDBPyConnection) -> None:
    """Create tables if they do not exist."""
    for stmt in SCHEMA_SQL.split(";"):
        stmt = stmt.strip()
        if stmt:
            try:
                conn.execute(stmt)
            except duckdb.Error as e:
                if "already exists" not in str(e).lower():
                    raise


@contextmanager
def transaction(conn: DuckDBPyConnection) -> Iterator[DuckDBPyConnection]:
    """BEGIN ... COMMIT, rolling back if the block raises."""
    conn.begin()
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())
