# titlequote/adapters/clients/oauth.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import httpx

from ...config import settings
from ...domain.errors import UpstreamAuthFailure
from .http_resilience import ResilientHttp

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Token:
    access_token: str
    expires_at: datetime


class OAuthTokenProvider:
    """
    Client-credentials token source with its own cache.

    One instance is shared by every quote in the process; the lock makes
    concurrent rounds wait on a single refresh instead of stampeding the
    identity provider.
    """

    def __init__(
        self,
        *,
        token_url: str | None,
        client_id: str | None,
        client_secret: str | None,
        scope: str | None = None,
        http: ResilientHttp | None = None,
        refresh_margin_s: int = 300,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.http = http or ResilientHttp()
        self.refresh_margin = timedelta(seconds=refresh_margin_s)
        self._token: _Token | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, http: ResilientHttp | None = None) -> OAuthTokenProvider:
        return cls(
            token_url=settings.lvis_token_url,
            client_id=settings.LVIS_CLIENT_ID,
            client_secret=settings.LVIS_CLIENT_SECRET,
            scope=settings.LVIS_SCOPE,
            http=http,
            refresh_margin_s=settings.LVIS_TOKEN_REFRESH_MARGIN_S,
        )

    def _cached(self) -> str | None:
        if self._token and self._token.expires_at > _utcnow() + self.refresh_margin:
            return self._token.access_token
        return None

    def invalidate(self) -> None:
        self._token = None

    async def get_token(self) -> str:
        token = self._cached()
        if token:
            return token

        async with self._lock:
            token = self._cached()
            if token:
                return token
            return await self._fetch()

    async def _fetch(self) -> str:
        if not (self.token_url and self.client_id and self.client_secret):
            raise UpstreamAuthFailure("oauth_not_configured")

        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        if self.scope:
            data["scope"] = self.scope

        try:
            resp = await self.http.request(
                "POST",
                self.token_url,
                headers={"accept": "application/json", "content-type": "application/x-www-form-urlencoded"},
                data=data,
            )
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.error("oauth token request failed url=%s err=%r", self.token_url, e)
            raise UpstreamAuthFailure("token_request_failed") from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            log.error("oauth token response without access_token keys=%s", sorted(payload or {}))
            raise UpstreamAuthFailure("token_missing")

        expires_in = int(payload.get("expires_in", 3600))
        self._token = _Token(access_token=str(token), expires_at=_utcnow() + timedelta(seconds=expires_in))
        log.info("oauth token refreshed expires_in=%ss", expires_in)
        return self._token.access_token
