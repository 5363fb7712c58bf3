"""Shared fixtures: a throwaway DuckDB, market and linked-account factories."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from crowdcast.models import MarketDraft, SocialConnection
from crowdcast.storage.db import get_connection, init_schema
from crowdcast.storage.markets import create_market
from crowdcast.storage.social import create_connection

# Fixed reference time for scheduler tests (epoch seconds)
BASE_TS = 1_700_000_000.0
DAY_MS = 24 * 3600 * 1000


def iso_at(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@pytest.fixture
def temp_db_path():
    tmp = tempfile.mkdtemp()
    path = Path(tmp) / "test.duckdb"
    yield path
    path.unlink(missing_ok=True)
    Path(str(path) + ".wal").unlink(missing_ok=True)
    Path(tmp).rmdir()


@pytest.fixture
def temp_db(temp_db_path):
    conn = get_connection(temp_db_path)
    init_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def make_market(temp_db):
    def _make(
        title="Will @elonmusk tweet today?",
        options=("Yes", "No"),
        creator="0xcreator",
        end_date=None,
        created_at=None,
    ):
        draft = MarketDraft(
            creator_wallet=creator,
            title=title,
            end_date=end_date if end_date is not None else int(BASE_TS * 1000) + 7 * DAY_MS,
        )
        return create_market(
            temp_db,
            draft,
            list(options),
            now=created_at if created_at is not None else int(BASE_TS * 1000) - 1000,
        )

    return _make


@pytest.fixture
def link_account(temp_db):
    def _link(wallet="0xcreator", x_user_id="u-creator", username="creator", token="tok-creator"):
        return create_connection(
            temp_db,
            SocialConnection(user_wallet=wallet, x_user_id=x_user_id, x_username=username, access_token=token),
        )

    return _link
