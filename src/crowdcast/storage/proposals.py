"""Market proposals and the vote ledger."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import duckdb

from crowdcast.errors import DuplicateVoteError, InvalidRequestError, NotFoundError
from crowdcast.models import Market, MarketDraft, Proposal, ProposalStatus
from crowdcast.models.market import DEFAULT_CATEGORY, DEFAULT_RESOLUTION_METHOD
from crowdcast.storage.db import new_id, now_ms, transaction
from crowdcast.storage.markets import create_market

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_COLUMNS = [
    "id", "proposer_wallet", "title", "description", "category", "tags", "votes", "status",
    "market_id", "created_at",
]
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM market_proposals"


def _row_to_proposal(row: tuple) -> Proposal:
    d = dict(zip(_COLUMNS, row))
    d["tags"] = json.loads(d["tags"]) if d["tags"] else []
    return Proposal(**d)


def create_proposal(
    conn: DuckDBPyConnection,
    proposer_wallet: str,
    title: str,
    description: str = "",
    category: str = DEFAULT_CATEGORY,
    tags: list[str] | None = None,
    now: int | None = None,
) -> Proposal:
    proposal = Proposal(
        id=new_id(),
        proposer_wallet=proposer_wallet,
        title=title,
        description=description,
        category=category,
        tags=tags or [],
        created_at=now if now is not None else now_ms(),
    )
    conn.execute(
        """INSERT INTO market_proposals (id, proposer_wallet, title, description, category, tags, votes, status, created_at)
           VALUES (?, ?, ?, ?, ?, ?, 0, 'proposed', ?)""",
        [
            proposal.id,
            proposer_wallet,
            title,
            description,
            category,
            json.dumps(proposal.tags),
            proposal.created_at,
        ],
    )
    return proposal


def get_proposal(conn: DuckDBPyConnection, proposal_id: str) -> Proposal | None:
    row = conn.execute(f"{_SELECT} WHERE id = ?", [proposal_id]).fetchone()
    return _row_to_proposal(row) if row else None


def list_proposals(conn: DuckDBPyConnection, status: ProposalStatus | str | None = None) -> list[Proposal]:
    """Most-voted first, then newest."""
    if status is not None:
        rows = conn.execute(
            f"{_SELECT} WHERE status = ? ORDER BY votes DESC, created_at DESC",
            [ProposalStatus(status).value],
        ).fetchall()
    else:
        rows = conn.execute(f"{_SELECT} ORDER BY votes DESC, created_at DESC").fetchall()
    return [_row_to_proposal(r) for r in rows]


def _require(conn: DuckDBPyConnection, proposal_id: str) -> Proposal:
    proposal = get_proposal(conn, proposal_id)
    if proposal is None:
        raise NotFoundError(f"Proposal not found: {proposal_id}")
    return proposal


def vote_for_proposal(conn: DuckDBPyConnection, proposal_id: str, voter_wallet: str) -> Proposal:
    """Cast one vote. A second vote by the same wallet raises DuplicateVoteError."""
    _require(conn, proposal_id)
    try:
        with transaction(conn):
            conn.execute(
                "INSERT INTO proposal_votes (proposal_id, voter_wallet, created_at) VALUES (?, ?, ?)",
                [proposal_id, voter_wallet, now_ms()],
            )
            conn.execute("UPDATE market_proposals SET votes = votes + 1 WHERE id = ?", [proposal_id])
    except duckdb.ConstraintException as e:
        raise DuplicateVoteError() from e
    return _require(conn, proposal_id)


def unvote_for_proposal(conn: DuckDBPyConnection, proposal_id: str, voter_wallet: str) -> Proposal:
    """Withdraw a vote. Withdrawing a vote never cast changes nothing."""
    _require(conn, proposal_id)
    with transaction(conn):
        deleted = conn.execute(
            """DELETE FROM proposal_votes WHERE proposal_id = ? AND voter_wallet = ?
               RETURNING proposal_id""",
            [proposal_id, voter_wallet],
        ).fetchall()
        if deleted:
            conn.execute(
                "UPDATE market_proposals SET votes = GREATEST(votes - 1, 0) WHERE id = ?",
                [proposal_id],
            )
    return _require(conn, proposal_id)


def has_voted(conn: DuckDBPyConnection, proposal_id: str, voter_wallet: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM proposal_votes WHERE proposal_id = ? AND voter_wallet = ?",
        [proposal_id, voter_wallet],
    ).fetchone()
    return row is not None


def convert_proposal_to_market(
    conn: DuckDBPyConnection,
    proposal_id: str,
    creator_wallet: str,
    end_date: int,
    option_labels: list[str],
    tx_hash: str | None = None,
) -> tuple[Market, Proposal]:
    """Create a market from a proposal and mark the proposal created."""
    proposal = _require(conn, proposal_id)
    if proposal.status != ProposalStatus.PROPOSED:
        raise InvalidRequestError(f"Proposal {proposal_id} is already {proposal.status.value}")
    market = create_market(
        conn,
        MarketDraft(
            creator_wallet=creator_wallet,
            title=proposal.title,
            description=proposal.description,
            category=proposal.category,
            tags=proposal.tags,
            end_date=end_date,
            tx_hash=tx_hash,
            resolution_method=DEFAULT_RESOLUTION_METHOD,
        ),
        option_labels,
    )
    conn.execute(
        "UPDATE market_proposals SET status = 'created', market_id = ? WHERE id = ?",
        [market.id, proposal_id],
    )
    return market, _require(conn, proposal_id)
