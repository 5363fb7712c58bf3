"""Market, MarketOption, Prediction - canonical entities."""

from __future__ import annotations

import math
from enum import Enum

from pydantic import BaseModel, Field


class MarketStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class XMonitoringStatus(str, Enum):
    """Market-level summary of X auto-resolution."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    RESOLVED = "resolved"


DEFAULT_CATEGORY = "Community"
DEFAULT_RESOLUTION_METHOD = "Community Vote"
MIN_OPTIONS = 2
MAX_OPTIONS = 4


class MarketOption(BaseModel):
    """One mutually exclusive outcome of a market."""

    id: str
    market_id: str
    label: str
    total_staked: float = 0.0


class MarketDraft(BaseModel):
    """Fields a user (or the AI drafter) supplies to create a market."""

    creator_wallet: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    category: str = DEFAULT_CATEGORY
    tags: list[str] = Field(default_factory=list)
    end_date: int  # ms epoch
    tx_hash: str | None = None
    resolution_method: str = DEFAULT_RESOLUTION_METHOD


class Market(BaseModel):
    """A predictive question with 2-4 options."""

    id: str
    creator_wallet: str
    title: str
    description: str = ""
    category: str = DEFAULT_CATEGORY
    tags: list[str] = Field(default_factory=list)
    status: MarketStatus = MarketStatus.ACTIVE
    end_date: int  # ms epoch
    total_volume: float = 0.0
    participants: int = 0
    winner_id: str | None = None
    tx_hash: str | None = None
    resolution_method: str = DEFAULT_RESOLUTION_METHOD
    created_at: int  # ms epoch
    options: list[MarketOption] = Field(default_factory=list)
    # X auto-resolution metadata (first tracked account)
    x_target_user_id: str | None = None
    x_target_username: str | None = None
    x_condition_type: str | None = None
    x_monitoring_status: XMonitoringStatus = XMonitoringStatus.INACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == MarketStatus.ACTIVE

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.end_date

    def percentages(self) -> list[int]:
        return option_percentages(self.options, self.total_volume)


class Prediction(BaseModel):
    """A user's stake on one option of one market."""

    id: str
    market_id: str
    user_wallet: str
    option_id: str
    amount: float = Field(..., gt=0)
    tx_hash: str | None = None
    created_at: int


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def option_percentages(options: list[MarketOption], total_volume: float) -> list[int]:
    """Integer display shares for each option.

    Every option but the last is rounded to nearest (half up); the last option
    takes whatever is left of 100, floored at 0. The sum is 100 unless the
    rounded-up leading shares already exceed it, in which case the last is 0
    and the sum is over 100. With no volume all shares are 0.
    """
    if not options:
        return []
    if total_volume <= 0:
        return [0] * len(options)
    remaining = 100
    shares: list[int] = []
    for i, opt in enumerate(options):
        if i == len(options) - 1:
            pct = remaining
        else:
            pct = _round_half_up(opt.total_staked / total_volume * 100)
        remaining -= pct
        shares.append(max(0, pct))
    return shares
