"""Tracking records, observed posts and resolution evidence."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class MonitoringStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    RESOLVED = "resolved"


class Post(BaseModel):
    """A single post (tweet) read from the social API."""

    id: str
    text: str = ""
    created_at: str | None = None  # ISO timestamp as returned by the API
    author_id: str | None = None


class PostPage(BaseModel):
    """Posts newer than a cursor, newest first, plus the newest id seen."""

    posts: list[Post] = Field(default_factory=list)
    newest_cursor: str | None = None


class Evidence(BaseModel):
    """Proof attached to a tracking record when its condition fires."""

    post_id: str
    post_url: str
    timestamp: str | None = None
    text: str = ""


class TrackingRecord(BaseModel):
    """Binds a market to one monitored X account and a condition."""

    id: str
    market_id: str
    x_target_user_id: str
    x_target_username: str
    condition_type: str
    condition_params: dict[str, Any] = Field(default_factory=dict)
    last_checked_post_id: str | None = None
    last_checked_at: int | None = None  # ms epoch
    monitoring_status: MonitoringStatus = MonitoringStatus.ACTIVE
    created_at: int
    resolved_at: int | None = None
    resolution_proof: Evidence | None = None


def post_id_key(post_id: str) -> tuple[int, str]:
    """Sort key for snowflake ids: numeric strings compare by length, then lexically."""
    return (len(post_id), post_id)


def is_newer(post_id: str, cursor: str | None) -> bool:
    """True when post_id is strictly after cursor (None means nothing seen yet)."""
    if cursor is None:
        return True
    return post_id_key(post_id) > post_id_key(cursor)
