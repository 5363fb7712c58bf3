"""Canonical schema (Pydantic) - Market, Prediction, Tracking, Social, Proposal."""

from crowdcast.models.market import (
    Market,
    MarketDraft,
    MarketOption,
    MarketStatus,
    Prediction,
    XMonitoringStatus,
    option_percentages,
)
from crowdcast.models.proposal import Proposal, ProposalStatus
from crowdcast.models.social import Badge, BadgeType, SocialConnection
from crowdcast.models.tracking import (
    Evidence,
    MonitoringStatus,
    Post,
    PostPage,
    TrackingRecord,
)

__all__ = [
    "Market",
    "MarketDraft",
    "MarketOption",
    "MarketStatus",
    "Prediction",
    "XMonitoringStatus",
    "option_percentages",
    "Proposal",
    "ProposalStatus",
    "Badge",
    "BadgeType",
    "SocialConnection",
    "Evidence",
    "MonitoringStatus",
    "Post",
    "PostPage",
    "TrackingRecord",
]
