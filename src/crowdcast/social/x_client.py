"""X API v2 client - recent posts, username lookup, profile of the token owner."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from crowdcast.models import Post, PostPage
from crowdcast.social.base import RateLimitedError, SocialAPIError

log = structlog.get_logger(__name__)

X_API_BASE = "https://api.twitter.com"


class XClient:
    """Async X API client. Implements SocialReader and IdentityResolver.

    Pass `transport` to route requests somewhere other than the network
    (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str = X_API_BASE,
        timeout: float = 15.0,
        max_results: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.max_results = max(5, min(100, max_results))  # API bounds for /tweets
        self._http = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> XClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def _get(self, path: str, credential: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            resp = await self._http.get(path, params=params, headers={"Authorization": f"Bearer {credential}"})
        except httpx.HTTPError as e:
            raise SocialAPIError(f"{path}: {e}") from e
        if resp.status_code == 429:
            reset = resp.headers.get("x-rate-limit-reset")
            raise RateLimitedError(f"{path}: rate limited", reset_at=float(reset) if reset else None)
        if resp.status_code >= 400:
            raise SocialAPIError(f"{path}: HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise SocialAPIError(f"{path}: invalid JSON") from e
        return data if isinstance(data, dict) else {}

    async def list_recent_posts(self, account_id: str, since_cursor: str | None, credential: str) -> PostPage:
        """Posts newer than since_cursor, newest first."""
        params: dict[str, Any] = {
            "max_results": self.max_results,
            "tweet.fields": "created_at,author_id",
        }
        if since_cursor:
            params["since_id"] = since_cursor
        data = await self._get(f"/2/users/{account_id}/tweets", credential, params)
        posts = [
            Post(
                id=str(t["id"]),
                text=t.get("text") or "",
                created_at=t.get("created_at"),
                author_id=t.get("author_id"),
            )
            for t in data.get("data") or []
            if isinstance(t, dict) and t.get("id")
        ]
        newest = (data.get("meta") or {}).get("newest_id") or (posts[0].id if posts else None)
        return PostPage(posts=posts, newest_cursor=newest)

    async def resolve_username(self, username: str, credential: str) -> str | None:
        """Account id for @username, or None if the handle does not exist."""
        try:
            data = await self._get(f"/2/users/by/username/{username.lstrip('@')}", credential)
        except SocialAPIError as e:
            if e.status_code in (400, 404):
                log.info("x_username_not_found", username=username)
                return None
            raise
        user = data.get("data") or {}
        return str(user["id"]) if user.get("id") else None

    async def get_me(self, access_token: str) -> dict[str, Any]:
        """Profile of the token owner: id, username, name, profile_image_url."""
        data = await self._get("/2/users/me", access_token, {"user.fields": "profile_image_url"})
        user = data.get("data")
        if not isinstance(user, dict) or not user.get("id"):
            raise SocialAPIError("/2/users/me: missing user data")
        return user
