"""Turn a free-text idea into a market draft; normalize whatever the provider returns."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field

from crowdcast.models.market import DEFAULT_CATEGORY, DEFAULT_RESOLUTION_METHOD, MAX_OPTIONS, MIN_OPTIONS

log = structlog.get_logger(__name__)

CATEGORIES = (
    "Sports",
    "Politics",
    "Entertainment",
    "Technology",
    "Finance",
    "Crypto",
    "Community",
    "Personal",
    "Science",
    "Other",
)
_CATEGORY_ALIASES = {"tech": "Technology"}
DEFAULT_END_DAYS = 7
DEFAULT_OPTIONS = ["Yes", "No"]


class DraftProviderError(Exception):
    """The text-generation provider failed or returned something unusable."""


class DraftProvider(Protocol):
    def generate(self, free_text: str, today: datetime) -> dict[str, Any]: ...


class GeneratedDraft(BaseModel):
    title: str
    description: str
    category: str = DEFAULT_CATEGORY
    tags: list[str] = Field(default_factory=list)
    suggested_end_date: datetime
    resolution_method: str = DEFAULT_RESOLUTION_METHOD
    options: list[str] = Field(default_factory=lambda: list(DEFAULT_OPTIONS))


def normalize_category(category: Any) -> str:
    """Map to the fixed category list (case-insensitive); unknown -> Community."""
    if not isinstance(category, str) or not category.strip():
        return DEFAULT_CATEGORY
    key = category.strip().lower()
    if key in _CATEGORY_ALIASES:
        return _CATEGORY_ALIASES[key]
    for name in CATEGORIES:
        if name.lower() == key:
            return name
    return DEFAULT_CATEGORY


def normalize_end_date(value: Any, now: datetime, default_days: int = DEFAULT_END_DAYS) -> datetime:
    """Strictly-future end date; past, missing or unparsable -> now + default_days."""
    fallback = now + timedelta(days=default_days)
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            log.warning("draft_end_date_unparsable", value=value)
            return fallback
    else:
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed <= now:
        log.warning("draft_end_date_in_past", value=parsed.isoformat())
        return fallback
    return parsed


def _normalize_options(value: Any) -> list[str]:
    if isinstance(value, list):
        labels = [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
        if MIN_OPTIONS <= len(labels) <= MAX_OPTIONS:
            return labels
    return list(DEFAULT_OPTIONS)


def _text(value: Any, default: str) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else default


def normalize_draft(
    raw: dict[str, Any], free_text: str, now: datetime, default_days: int = DEFAULT_END_DAYS
) -> GeneratedDraft:
    """Fill every missing or invalid field with a local default."""
    tags = raw.get("tags")
    return GeneratedDraft(
        title=_text(raw.get("title"), "Prediction Market"),
        description=_text(raw.get("description"), free_text),
        category=normalize_category(raw.get("category")),
        tags=[str(t) for t in tags if isinstance(t, str) and t.strip()] if isinstance(tags, list) else [],
        suggested_end_date=normalize_end_date(raw.get("suggestedEndDate"), now, default_days),
        resolution_method=_text(raw.get("resolutionMethod"), DEFAULT_RESOLUTION_METHOD),
        options=_normalize_options(raw.get("options")),
    )


def fallback_draft(free_text: str, now: datetime, default_days: int = DEFAULT_END_DAYS) -> GeneratedDraft:
    """Plain Yes/No community market built from the input alone."""
    text = free_text.strip()
    if text.lower().startswith("will "):
        title = text[0].upper() + text[1:]
    else:
        title = f"Will {text}?"
    return GeneratedDraft(
        title=title,
        description=f"This market resolves based on whether the following event occurs: {text}",
        category=DEFAULT_CATEGORY,
        tags=["community", "prediction"],
        suggested_end_date=now + timedelta(days=default_days),
        resolution_method=DEFAULT_RESOLUTION_METHOD,
        options=list(DEFAULT_OPTIONS),
    )


def generate_market_draft(
    free_text: str,
    provider: DraftProvider | None,
    now: datetime | None = None,
    default_days: int = DEFAULT_END_DAYS,
) -> GeneratedDraft:
    """Ask the provider for a draft. Never fails: provider errors yield the fallback."""
    now = now or datetime.now(timezone.utc)
    if provider is None:
        log.info("draft_fallback", reason="no_provider")
        return fallback_draft(free_text, now, default_days)
    try:
        raw = provider.generate(free_text, now)
    except DraftProviderError as e:
        log.warning("draft_fallback", reason="provider_error", error=str(e))
        return fallback_draft(free_text, now, default_days)
    if not isinstance(raw, dict):
        log.warning("draft_fallback", reason="not_an_object")
        return fallback_draft(free_text, now, default_days)
    return normalize_draft(raw, free_text, now, default_days)
