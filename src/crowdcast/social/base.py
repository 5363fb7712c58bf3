"""Social API protocols and errors (pluggable; X is the one implementation)."""

from __future__ import annotations

from typing import Protocol

from crowdcast.models import PostPage


class SocialAPIError(Exception):
    """Any failure talking to the social API other than a rate limit."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(SocialAPIError):
    """HTTP 429. reset_at is the epoch second the API says the window reopens."""

    def __init__(self, message: str = "rate limited", reset_at: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.reset_at = reset_at


class SocialReader(Protocol):
    """Reads recent posts for an account."""

    async def list_recent_posts(
        self, account_id: str, since_cursor: str | None, credential: str
    ) -> PostPage: ...


class IdentityResolver(Protocol):
    """Maps a public handle to an account id. None means not found."""

    async def resolve_username(self, username: str, credential: str) -> str | None: ...


def post_url(username: str, post_id: str) -> str:
    return f"https://twitter.com/{username}/status/{post_id}"
