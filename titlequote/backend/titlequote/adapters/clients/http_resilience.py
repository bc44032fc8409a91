# titlequote/adapters/clients/http_resilience.py
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ...config import settings
from ..circuit_breaker import CircuitBreaker

log = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class CircuitOpenError(httpx.HTTPError):
    pass


class ResilientHttp:
    """
    httpx wrapper: bounded timeout, retries with exponential backoff on
    429/5xx/timeouts/network errors, and a breaker owned by this instance.

    Pass `client` to share a connection pool (or a MockTransport in tests);
    otherwise a short-lived client is opened per attempt.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        backoff_base_s: float | None = None,
    ) -> None:
        self.client = client
        self.breaker = breaker or CircuitBreaker(
            fail_threshold=settings.HTTP_CIRCUIT_FAIL_THRESHOLD,
            reset_s=settings.HTTP_CIRCUIT_RESET_S,
        )
        self.timeout = httpx.Timeout(float(timeout_s if timeout_s is not None else settings.HTTP_TIMEOUT_S))
        self.max_retries = int(max_retries if max_retries is not None else settings.HTTP_MAX_RETRIES)
        self.backoff = float(backoff_base_s if backoff_base_s is not None else settings.HTTP_BACKOFF_BASE_S)

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self.client is not None:
            return await self.client.request(method, url, timeout=self.timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        data: Any | None = None,
        content: bytes | str | None = None,
    ) -> httpx.Response:
        if self.breaker.is_open():
            raise CircuitOpenError(f"circuit_open: refusing external call to {url}")

        last_exc: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                resp = await self._send(method, url, headers=headers, data=data, content=content)

                if resp.status_code in RETRYABLE_STATUS:
                    raise httpx.HTTPStatusError("retryable_status", request=resp.request, response=resp)

                resp.raise_for_status()
                self.breaker.on_success()
                return resp
            except httpx.HTTPStatusError as e:
                # 4xx (other than 429) won't get better by retrying
                if e.response.status_code not in RETRYABLE_STATUS:
                    raise
                last_exc = e
                self.breaker.on_failure()
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                last_exc = e
                self.breaker.on_failure()

            if attempt >= self.max_retries:
                break
            log.warning("http retry %s %s attempt=%s err=%s", method, url, attempt + 1, type(last_exc).__name__)
            await asyncio.sleep(min(5.0, self.backoff * (2**attempt)))

        assert last_exc is not None
        raise last_exc
