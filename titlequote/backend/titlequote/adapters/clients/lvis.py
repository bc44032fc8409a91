# titlequote/adapters/clients/lvis.py
from __future__ import annotations

import logging
from typing import Protocol

import httpx

from ...config import settings
from ...domain.errors import UpstreamAuthFailure, UpstreamTimeout, UpstreamUnavailable
from .http_resilience import ResilientHttp
from .oauth import OAuthTokenProvider

log = logging.getLogger(__name__)


class RateCalculator(Protocol):
    async def product_list(self, payload: bytes) -> bytes: ...
    async def rate_calc(self, payload: bytes) -> bytes: ...


class LvisRateCalculatorClient:
    """FirstAm LVIS calculator: XML in, XML out, bearer token auth."""

    def __init__(
        self,
        *,
        tokens: OAuthTokenProvider,
        http: ResilientHttp | None = None,
        base_url: str | None = None,
        product_list_path: str | None = None,
        rate_calc_path: str | None = None,
    ) -> None:
        self.tokens = tokens
        self.http = http or ResilientHttp()
        self.base_url = (base_url if base_url is not None else settings.LVIS_BASE_URL).rstrip("/")
        self.product_list_path = product_list_path if product_list_path is not None else settings.LVIS_PRODUCT_LIST_PATH
        self.rate_calc_path = rate_calc_path if rate_calc_path is not None else settings.LVIS_RATE_CALC_PATH

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _post(self, path: str, payload: bytes) -> bytes:
        url = self._url(path)
        token = await self.tokens.get_token()
        headers = {
            "accept": "application/xml",
            "content-type": "application/xml",
            "authorization": f"Bearer {token}",
        }
        try:
            resp = await self.http.request("POST", url, headers=headers, content=payload)
        except httpx.TimeoutException as e:
            log.warning("lvis timeout url=%s", url)
            raise UpstreamTimeout("rate_service_timeout") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (401, 403):
                self.tokens.invalidate()
                log.error("lvis rejected token url=%s status=%s", url, status)
                raise UpstreamAuthFailure("rate_service_unauthorized") from e
            log.error("lvis http error url=%s status=%s body=%s", url, status, e.response.text[:500])
            raise UpstreamUnavailable(f"rate_service_http_{status}") from e
        except httpx.HTTPError as e:
            log.error("lvis unreachable url=%s err=%r", url, e)
            raise UpstreamUnavailable("rate_service_unreachable") from e

        return resp.content

    async def product_list(self, payload: bytes) -> bytes:
        return await self._post(self.product_list_path, payload)

    async def rate_calc(self, payload: bytes) -> bytes:
        return await self._post(self.rate_calc_path, payload)
