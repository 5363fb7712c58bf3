"""Pydantic schemas for API request/response consistency and OpenAPI docs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from crowdcast.models import (
    Badge,
    BadgeType,
    Market,
    MonitoringStatus,
    Proposal,
    SocialConnection,
    TrackingRecord,
)
from crowdcast.models.market import MAX_OPTIONS, MIN_OPTIONS


def iso_from_ms(ms: int | None) -> str | None:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def ms_from_datetime(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "ok"


# --- Error (consistent shape for 4xx/5xx) ---
class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Human-readable message")
    code: str | None = Field(None, description="Machine-readable code, e.g. not_found, duplicate_vote")


# --- Markets ---
class OptionView(BaseModel):
    id: str
    label: str
    staked: float
    percentage: int


class MarketResponse(BaseModel):
    id: str
    creator_wallet: str
    title: str
    description: str
    category: str
    tags: list[str]
    status: str
    end_date: str
    created_at: str
    participants: int
    total_volume: float
    options: list[OptionView]
    winner_id: str | None = None
    tx_hash: str | None = None
    resolution_method: str
    x_target_username: str | None = None
    x_monitoring_status: str

    @classmethod
    def from_market(cls, m: Market) -> MarketResponse:
        shares = m.percentages()
        return cls(
            id=m.id,
            creator_wallet=m.creator_wallet,
            title=m.title,
            description=m.description,
            category=m.category,
            tags=m.tags,
            status=m.status.value,
            end_date=iso_from_ms(m.end_date) or "",
            created_at=iso_from_ms(m.created_at) or "",
            participants=m.participants,
            total_volume=m.total_volume,
            options=[
                OptionView(id=o.id, label=o.label, staked=o.total_staked, percentage=pct)
                for o, pct in zip(m.options, shares)
            ],
            winner_id=m.winner_id,
            tx_hash=m.tx_hash,
            resolution_method=m.resolution_method,
            x_target_username=m.x_target_username,
            x_monitoring_status=m.x_monitoring_status.value,
        )


class CreateMarketRequest(BaseModel):
    creator_wallet: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    end_date: datetime
    options: list[str] = Field(..., min_length=MIN_OPTIONS, max_length=MAX_OPTIONS)
    tx_hash: str | None = None
    resolution_method: str | None = None


class ResolveMarketRequest(BaseModel):
    winner_id: str = Field(..., min_length=1)


class ResolveMarketResponse(BaseModel):
    success: bool = True
    changed: bool
    market: MarketResponse


# --- Predictions ---
class CreatePredictionRequest(BaseModel):
    market_id: str
    user_wallet: str = Field(..., min_length=1)
    option_id: str
    amount: float = Field(..., gt=0)
    tx_hash: str | None = None


class PredictionResponse(BaseModel):
    id: str
    market_id: str
    option_id: str
    amount: float


class UserStatsResponse(BaseModel):
    markets_joined: int
    wins: int
    win_rate: int
    total_earnings: int


class LeaderboardEntry(BaseModel):
    rank: int
    wallet: str
    markets_joined: int
    win_rate: int
    total_earnings: int
    accuracy: int


# --- AI drafts ---
class DraftRequest(BaseModel):
    user_input: str = Field(..., min_length=1)


# --- Badges ---
class AwardBadgeRequest(BaseModel):
    user_wallet: str = Field(..., min_length=1)
    badge_type: BadgeType
    metadata: str | None = None


class BadgeResponse(BaseModel):
    id: str
    user_wallet: str
    badge_type: str
    earned_at: str
    metadata: str | None = None

    @classmethod
    def from_badge(cls, b: Badge) -> BadgeResponse:
        return cls(
            id=b.id,
            user_wallet=b.user_wallet,
            badge_type=b.badge_type.value,
            earned_at=iso_from_ms(b.earned_at) or "",
            metadata=b.metadata,
        )


# --- X account linking ---
class OAuthInitiateRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1)
    redirect_uri: str | None = None


class OAuthInitiateResponse(BaseModel):
    auth_url: str
    state: str


class OAuthCompleteRequest(BaseModel):
    state: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)


class ConnectionResponse(BaseModel):
    """Linked account as shown to clients; credentials are never included."""

    user_wallet: str
    x_user_id: str
    x_username: str
    x_display_name: str | None = None
    x_profile_image: str | None = None
    connected_at: str | None = None

    @classmethod
    def from_connection(cls, c: SocialConnection) -> ConnectionResponse:
        return cls(
            user_wallet=c.user_wallet,
            x_user_id=c.x_user_id,
            x_username=c.x_username,
            x_display_name=c.x_display_name,
            x_profile_image=c.x_profile_image,
            connected_at=iso_from_ms(c.connected_at),
        )


# --- Tracking ---
class TrackingResponse(BaseModel):
    id: str
    market_id: str
    x_target_user_id: str
    x_target_username: str
    condition_type: str
    condition_params: dict[str, Any]
    last_checked_post_id: str | None = None
    last_checked_at: str | None = None
    monitoring_status: MonitoringStatus
    resolved_at: str | None = None
    resolution_proof: dict[str, Any] | None = None

    @classmethod
    def from_record(cls, r: TrackingRecord) -> TrackingResponse:
        return cls(
            id=r.id,
            market_id=r.market_id,
            x_target_user_id=r.x_target_user_id,
            x_target_username=r.x_target_username,
            condition_type=r.condition_type,
            condition_params=r.condition_params,
            last_checked_post_id=r.last_checked_post_id,
            last_checked_at=iso_from_ms(r.last_checked_at),
            monitoring_status=r.monitoring_status,
            resolved_at=iso_from_ms(r.resolved_at),
            resolution_proof=r.resolution_proof.model_dump() if r.resolution_proof else None,
        )


# --- Proposals ---
class CreateProposalRequest(BaseModel):
    proposer_wallet: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    category: str | None = None
    tags: list[str] = Field(default_factory=list)


class VoteRequest(BaseModel):
    voter_wallet: str = Field(..., min_length=1)


class HasVotedResponse(BaseModel):
    has_voted: bool


class ConvertProposalRequest(BaseModel):
    creator_wallet: str = Field(..., min_length=1)
    end_date: datetime
    options: list[str] = Field(..., min_length=MIN_OPTIONS, max_length=MAX_OPTIONS)
    tx_hash: str | None = None


class ConvertProposalResponse(BaseModel):
    market: MarketResponse
    proposal: Proposal
