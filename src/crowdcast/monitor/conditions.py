"""Condition kinds and the pure evaluator that checks them against new posts."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union, assert_never

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from crowdcast.models import Evidence, Market, Post, TrackingRecord
from crowdcast.models.tracking import is_newer
from crowdcast.social.base import post_url

log = structlog.get_logger(__name__)

EVIDENCE_TEXT_LIMIT = 100
_MENTION_RE = re.compile(r"@([A-Za-z0-9_]{1,15})\b")


class PostPublished(BaseModel):
    """Met by any new post."""

    kind: Literal["tweet_posted"] = "tweet_posted"


class PostCountAtLeast(BaseModel):
    """Met when one poll window brings at least `threshold` new posts."""

    kind: Literal["tweet_count"] = "tweet_count"
    threshold: int = Field(1, ge=1)


class PostMentions(BaseModel):
    """Met by a new post containing any keyword (case-insensitive)."""

    kind: Literal["keyword"] = "keyword"
    keywords: list[str] = Field(..., min_length=1)


Condition = Annotated[Union[PostPublished, PostCountAtLeast, PostMentions], Field(discriminator="kind")]
_condition_adapter: TypeAdapter[Condition] = TypeAdapter(Condition)


class Evaluation(BaseModel):
    met: bool = False
    evidence: Evidence | None = None


def parse_condition(kind: str, params: dict[str, Any] | None = None) -> Condition | None:
    """Build a condition from its stored tag and params; None for unknown or invalid ones."""
    try:
        return _condition_adapter.validate_python({**(params or {}), "kind": kind})
    except ValidationError:
        log.warning("condition_unrecognized", kind=kind)
        return None


def condition_params(condition: Condition) -> dict[str, Any]:
    """Params to persist next to the kind tag."""
    return condition.model_dump(exclude={"kind"})


def _evidence(record: TrackingRecord, post: Post) -> Evidence:
    return Evidence(
        post_id=post.id,
        post_url=post_url(record.x_target_username, post.id),
        timestamp=post.created_at,
        text=post.text[:EVIDENCE_TEXT_LIMIT],
    )


def _posted_since(post: Post, since_ms: int) -> bool:
    """False only for posts whose timestamp is known to precede since_ms."""
    if not post.created_at:
        return True
    try:
        ts = datetime.fromisoformat(post.created_at)
    except ValueError:
        return True
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.timestamp() * 1000 >= since_ms


def evaluate(market: Market, record: TrackingRecord, posts: list[Post]) -> Evaluation:
    """Check record's condition against posts (newest first).

    Posts at or before the record's cursor, and posts published before the
    record was created, are ignored, so re-evaluating already-seen posts never
    fires. Unknown conditions never match.
    """
    if not market.is_active:
        return Evaluation()
    condition = parse_condition(record.condition_type, record.condition_params)
    if condition is None:
        return Evaluation()
    fresh = [
        p for p in posts if is_newer(p.id, record.last_checked_post_id) and _posted_since(p, record.created_at)
    ]
    if not fresh:
        return Evaluation()

    if isinstance(condition, PostPublished):
        return Evaluation(met=True, evidence=_evidence(record, fresh[0]))
    if isinstance(condition, PostCountAtLeast):
        if len(fresh) >= condition.threshold:
            return Evaluation(met=True, evidence=_evidence(record, fresh[0]))
        return Evaluation()
    if isinstance(condition, PostMentions):
        keywords = [k.lower() for k in condition.keywords if k]
        for post in fresh:
            text = post.text.lower()
            if any(k in text for k in keywords):
                return Evaluation(met=True, evidence=_evidence(record, post))
        return Evaluation()
    assert_never(condition)


def extract_mentions(text: str) -> list[str]:
    """@handles in order of appearance, without duplicates."""
    seen: list[str] = []
    for handle in _MENTION_RE.findall(text or ""):
        if handle not in seen:
            seen.append(handle)
    return seen


def detect_condition(title: str) -> Condition | None:
    """Infer a condition from market wording. Only posting questions are recognized."""
    lower = (title or "").lower()
    if "tweet" in lower or "post" in lower:
        return PostPublished()
    return None
