"""Client for the dispatch save endpoint."""

from __future__ import annotations

import logging
from typing import Sequence

import httpx

from ...config import settings
from ...models.domain import AssignmentUpdate

logger = logging.getLogger(__name__)


class SaveAssignmentError(RuntimeError):
    """The save was rejected or did not reach the server; nothing is assumed applied."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error", "detail", "message"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return f"Save failed with HTTP {response.status_code}"


class DispatchGateway:
    """Sends the full assignment in one all-or-nothing request."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.dispatch_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._client = client

    async def save_assignment(self, updates: Sequence[AssignmentUpdate]) -> int:
        """Persist ``updates``; returns the number of orders the server updated."""

        if not updates:
            return 0
        url = f"{self.base_url}/orders/reorder"
        payload = {"updates": [update.to_payload() for update in updates]}
        try:
            if self._client is not None:
                response = await self._client.patch(url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0)) as client:
                    response = await client.patch(url, json=payload)
        except httpx.HTTPError as e:
            raise SaveAssignmentError(f"Save request failed: {e}") from e

        if response.is_error:
            message = _error_message(response)
            logger.warning(f"Save of {len(updates)} order(s) rejected: {message}")
            raise SaveAssignmentError(message, status_code=response.status_code)

        try:
            updated = response.json().get("updated", len(updates))
        except (ValueError, AttributeError):
            updated = len(updates)
        logger.info(f"Saved assignment for {updated} order(s)")
        return int(updated)
