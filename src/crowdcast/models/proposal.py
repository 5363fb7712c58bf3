"""Community market proposals."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from crowdcast.models.market import DEFAULT_CATEGORY


class ProposalStatus(str, Enum):
    PROPOSED = "proposed"
    CREATED = "created"
    REJECTED = "rejected"


class Proposal(BaseModel):
    id: str
    proposer_wallet: str
    title: str
    description: str = ""
    category: str = DEFAULT_CATEGORY
    tags: list[str] = Field(default_factory=list)
    votes: int = 0
    status: ProposalStatus = ProposalStatus.PROPOSED
    market_id: str | None = None
    created_at: int
