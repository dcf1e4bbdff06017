"""HTTP client that expands shortened map links by following redirects."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from ...config import settings

logger = logging.getLogger(__name__)


class UrlExpander(Protocol):
    async def expand(self, url: str) -> str: ...


class UrlExpansionError(RuntimeError):
    """Raised when a short link cannot be expanded."""


class UrlExpanderClient:
    """Expands a short link with a HEAD request that follows redirects.

    When ``service_url`` is given the expansion is delegated to the dispatch
    API's ``/dispatch/expand-url`` endpoint instead of contacting the link host.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        service_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        self.service_url = service_url
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.expand_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request_once(self, url: str) -> str:
        client = self._get_client()
        if self.service_url:
            response = await client.get(self.service_url, params={"url": url})
            response.raise_for_status()
            expanded = response.json().get("expandedUrl")
            if not isinstance(expanded, str) or not expanded:
                raise UrlExpansionError(f"Expansion service returned no URL for {url}")
            return expanded
        response = await client.head(url, follow_redirects=True)
        response.raise_for_status()
        return str(response.url)

    async def expand(self, url: str) -> str:
        attempt = 0
        while True:
            try:
                return await self._request_once(url)
            except httpx.HTTPStatusError as e:
                # 4xx will not get better on retry
                if e.response.status_code < 500:
                    raise UrlExpansionError(f"Failed to expand {url}: HTTP {e.response.status_code}") from e
                attempt += 1
                if attempt > self.max_retries:
                    raise UrlExpansionError(f"Failed to expand {url}: HTTP {e.response.status_code}") from e
                await asyncio.sleep(self.backoff_seconds * attempt)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise UrlExpansionError(f"Failed to expand {url}: {e}") from e
                wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                logger.debug(f"Expansion of {url} failed, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                await asyncio.sleep(wait_time)
            except (httpx.HTTPError, ValueError) as e:
                raise UrlExpansionError(f"Failed to expand {url}: {e}") from e
