"""X OAuth 2.0 (PKCE) glue: start the flow, then trade the code for a linked account."""

from __future__ import annotations

import base64
import hashlib
import secrets
import time
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog

from crowdcast.errors import OAuthStateError
from crowdcast.models import SocialConnection
from crowdcast.social.base import SocialAPIError
from crowdcast.social.state_store import ExpiringStore
from crowdcast.social.x_client import XClient

log = structlog.get_logger(__name__)


def _code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


class XOAuth:
    """Authorization-code flow with PKCE. Pending states live in an ExpiringStore."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        authorize_url: str,
        token_url: str,
        redirect_uri: str,
        scopes: list[str],
        store: ExpiringStore,
        x_client: XClient,
        state_ttl_sec: float = 600,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.store = store
        self.x_client = x_client
        self.state_ttl_sec = state_ttl_sec
        self._timeout = timeout
        self._transport = transport

    def initiate(self, wallet: str, redirect_uri: str | None = None) -> dict[str, str]:
        """Create state + verifier for wallet; return the URL to send the user to."""
        state = secrets.token_hex(32)
        verifier = secrets.token_urlsafe(32)
        callback = redirect_uri or self.redirect_uri
        self.store.put(
            state,
            {"wallet": wallet, "code_verifier": verifier, "redirect_uri": callback},
            self.state_ttl_sec,
        )
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.client_id,
                "redirect_uri": callback,
                "scope": " ".join(self.scopes),
                "state": state,
                "code_challenge": _code_challenge(verifier),
                "code_challenge_method": "S256",
            }
        )
        log.info("x_oauth_initiated", wallet=wallet)
        return {"auth_url": f"{self.authorize_url}?{query}", "state": state}

    async def _exchange_code(self, code: str, verifier: str, redirect_uri: str) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as http:
            try:
                resp = await http.post(
                    self.token_url,
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": redirect_uri,
                        "client_id": self.client_id,
                        "code_verifier": verifier,
                    },
                    auth=(self.client_id, self.client_secret),
                )
            except httpx.HTTPError as e:
                raise SocialAPIError(f"token exchange: {e}") from e
        if resp.status_code >= 400:
            log.warning("x_token_exchange_failed", status=resp.status_code, body=resp.text[:200])
            raise SocialAPIError("token_exchange_failed", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            log.warning("x_token_exchange_bad_json", body=resp.text[:200])
            raise SocialAPIError("token_exchange_failed: invalid JSON") from e
        if not isinstance(data, dict) or not data.get("access_token"):
            raise SocialAPIError("token_exchange_failed: no access_token")
        return data

    async def complete(self, state: str, code: str) -> SocialConnection:
        """Consume the state (single use) and build the wallet's SocialConnection."""
        pending = self.store.pop(state)
        if pending is None:
            raise OAuthStateError()
        tokens = await self._exchange_code(code, pending["code_verifier"], pending["redirect_uri"])
        access_token = tokens["access_token"]
        user = await self.x_client.get_me(access_token)
        expires_in = tokens.get("expires_in")
        log.info("x_oauth_completed", wallet=pending["wallet"], x_username=user.get("username"))
        return SocialConnection(
            user_wallet=pending["wallet"],
            x_user_id=str(user["id"]),
            x_username=user.get("username") or "",
            x_display_name=user.get("name"),
            x_profile_image=user.get("profile_image_url"),
            access_token=access_token,
            refresh_token=tokens.get("refresh_token"),
            token_expires_at=int((time.time() + float(expires_in)) * 1000) if expires_in else None,
        )
