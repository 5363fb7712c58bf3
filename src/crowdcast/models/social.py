"""Linked X accounts and user badges."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class BadgeType(str, Enum):
    EARLY_ADOPTER = "early_adopter"
    X_VERIFIED = "x_verified"
    MARKET_CREATOR = "market_creator"
    TOP_PREDICTOR = "top_predictor"
    VOLUME_TRADER = "volume_trader"


class SocialConnection(BaseModel):
    """At most one per wallet; holds the OAuth credential used for X reads."""

    user_wallet: str
    x_user_id: str
    x_username: str
    x_display_name: str | None = None
    x_profile_image: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: int | None = None  # ms epoch
    connected_at: int | None = None


class Badge(BaseModel):
    id: str
    user_wallet: str
    badge_type: BadgeType
    earned_at: int
    metadata: str | None = None
