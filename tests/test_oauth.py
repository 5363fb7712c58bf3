"""OAuth state store and X account linking tests."""

import asyncio
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from crowdcast.errors import OAuthStateError
from crowdcast.social.base import SocialAPIError
from crowdcast.social.oauth import XOAuth
from crowdcast.social.state_store import MemoryExpiringStore
from crowdcast.social.x_client import XClient


class Clock:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


def test_store_entries_are_single_use():
    store = MemoryExpiringStore()
    store.put("k", {"wallet": "0xa"}, 60)
    assert store.pop("k") == {"wallet": "0xa"}
    assert store.pop("k") is None


def test_store_expiry_and_sweep():
    clock = Clock()
    store = MemoryExpiringStore(clock=clock)
    store.put("old", 1, 10)
    store.put("fresh", 2, 100)
    clock.t += 10
    assert store.pop("old") is None
    store.put("stale", 3, 5)
    clock.t += 50
    assert store.sweep() == 1
    assert len(store) == 1
    assert store.pop("fresh") == 2


def _token_and_me_handler(request):
    if request.url.path == "/2/oauth2/token":
        return httpx.Response(200, json={"access_token": "at-1", "refresh_token": "rt-1", "expires_in": 7200})
    if request.url.path == "/2/users/me":
        assert request.headers["Authorization"] == "Bearer at-1"
        return httpx.Response(200, json={"data": {"id": "99", "username": "alice", "name": "Alice"}})
    return httpx.Response(404)


def _oauth(store=None, handler=_token_and_me_handler):
    transport = httpx.MockTransport(handler)
    return XOAuth(
        client_id="cid",
        client_secret="secret",
        authorize_url="https://x.test/i/oauth2/authorize",
        token_url="https://x.test/2/oauth2/token",
        redirect_uri="http://localhost/callback",
        scopes=["tweet.read", "users.read"],
        store=store if store is not None else MemoryExpiringStore(),
        x_client=XClient(base_url="https://x.test", transport=transport),
        transport=transport,
    )


def test_initiate_builds_pkce_url():
    oauth = _oauth()
    result = oauth.initiate("0xwallet")
    query = parse_qs(urlparse(result["auth_url"]).query)
    assert query["state"] == [result["state"]]
    assert query["code_challenge_method"] == ["S256"]
    assert query["scope"] == ["tweet.read users.read"]
    assert query["redirect_uri"] == ["http://localhost/callback"]


def test_complete_links_account_and_consumes_state():
    oauth = _oauth()
    state = oauth.initiate("0xwallet")["state"]
    conn = asyncio.run(oauth.complete(state, "code-1"))
    assert conn.user_wallet == "0xwallet"
    assert conn.x_user_id == "99"
    assert conn.x_username == "alice"
    assert conn.access_token == "at-1"
    assert conn.token_expires_at is not None
    with pytest.raises(OAuthStateError):
        asyncio.run(oauth.complete(state, "code-1"))


def test_complete_rejects_expired_state():
    clock = Clock()
    oauth = _oauth(store=MemoryExpiringStore(clock=clock))
    state = oauth.initiate("0xwallet")["state"]
    clock.t += 601
    with pytest.raises(OAuthStateError):
        asyncio.run(oauth.complete(state, "code-1"))


def test_abandoned_states_do_not_accumulate():
    clock = Clock()
    store = MemoryExpiringStore(clock=clock)
    oauth = _oauth(store=store)
    for _ in range(1000):
        oauth.initiate("0xwallet")
        clock.t += 60
    # ttl 600 s at one initiate per minute
    assert len(store) <= 11


def test_token_response_that_is_not_json_is_an_api_error():
    def handler(request):
        if request.url.path == "/2/oauth2/token":
            return httpx.Response(200, text="<html>gateway</html>")
        return httpx.Response(404)

    oauth = _oauth(handler=handler)
    state = oauth.initiate("0xwallet")["state"]
    with pytest.raises(SocialAPIError, match="invalid JSON"):
        asyncio.run(oauth.complete(state, "code-1"))
