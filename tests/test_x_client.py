"""X API client tests against a mock transport."""

import asyncio

import httpx
import pytest

from crowdcast.social.base import RateLimitedError, SocialAPIError
from crowdcast.social.x_client import XClient


def _client(handler):
    return XClient(base_url="https://x.test", transport=httpx.MockTransport(handler))


def test_list_recent_posts_passes_cursor_and_parses_page():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(
            200,
            json={
                "data": [
                    {"id": "1002", "text": "newest", "created_at": "2024-01-01T00:01:00.000Z"},
                    {"id": "1001", "text": "older", "created_at": "2024-01-01T00:00:00.000Z"},
                ],
                "meta": {"newest_id": "1002", "result_count": 2},
            },
        )

    async def main():
        async with _client(handler) as client:
            return await client.list_recent_posts("42", "1000", "tok")

    page = asyncio.run(main())
    assert seen["path"] == "/2/users/42/tweets"
    assert seen["params"]["since_id"] == "1000"
    assert seen["auth"] == "Bearer tok"
    assert [p.id for p in page.posts] == ["1002", "1001"]
    assert page.newest_cursor == "1002"


def test_empty_timeline():
    client = _client(lambda r: httpx.Response(200, json={"meta": {"result_count": 0}}))
    page = asyncio.run(client.list_recent_posts("42", None, "tok"))
    assert page.posts == []
    assert page.newest_cursor is None


def test_rate_limit_is_distinguished():
    def handler(request):
        return httpx.Response(429, headers={"x-rate-limit-reset": "1700000900"})

    with pytest.raises(RateLimitedError) as exc:
        asyncio.run(_client(handler).list_recent_posts("42", None, "tok"))
    assert exc.value.reset_at == 1700000900.0
    assert exc.value.status_code == 429


def test_server_error_is_social_api_error():
    with pytest.raises(SocialAPIError) as exc:
        asyncio.run(_client(lambda r: httpx.Response(503)).list_recent_posts("42", None, "tok"))
    assert not isinstance(exc.value, RateLimitedError)
    assert exc.value.status_code == 503


def test_resolve_username():
    def handler(request):
        if request.url.path.endswith("/alice"):
            return httpx.Response(200, json={"data": {"id": "1", "username": "alice"}})
        if request.url.path.endswith("/gone"):
            return httpx.Response(404)
        return httpx.Response(200, json={"errors": [{"title": "Not Found Error"}]})

    client = _client(handler)
    assert asyncio.run(client.resolve_username("@alice", "tok")) == "1"
    assert asyncio.run(client.resolve_username("gone", "tok")) is None
    assert asyncio.run(client.resolve_username("nobody", "tok")) is None
