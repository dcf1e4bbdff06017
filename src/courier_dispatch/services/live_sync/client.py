"""Background polling of the live courier/client map."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

import httpx

from ...config import settings
from .models import LiveSnapshot

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"


class SyncOutcome(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    NOT_MODIFIED = "not_modified"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LiveSyncClient:
    """Polls the live-map endpoint while the view is open and visible.

    Each request runs in its own task, which is also its cancellation
    handle: ``sync_now`` and ``close`` cancel the pending task instead of
    flipping shared flags. A periodic cycle that finds a request still in
    flight is skipped. Conditional requests send the last ETag; a 304 only
    refreshes ``last_synced_at``. A snapshot equal to the displayed one is
    not committed and does not call ``on_change``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        url: str | None = None,
        interval_seconds: float | None = None,
        on_change: Optional[Callable[[LiveSnapshot], None]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.url = url or f"{settings.dispatch_api_base_url.rstrip('/')}/live-map"
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.live_sync_interval_seconds
        self.on_change = on_change
        self.clock = clock

        self.state = SyncState.IDLE
        self.snapshot: Optional[LiveSnapshot] = None
        self.version_token: Optional[str] = None
        self.last_synced_at: Optional[datetime] = None
        self.visible = True

        self._client = client
        self._owns_client = client is None
        self._inflight: Optional[asyncio.Task[SyncOutcome]] = None
        self._runner: Optional[asyncio.Task[None]] = None
        self._wake = asyncio.Event()
        self._closed = False

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout_seconds, connect=10.0))
        return self._client

    async def sync(self) -> SyncOutcome:
        """One polling cycle; skipped when hidden, closed or already fetching."""
        if self._closed or not self.visible or self.in_flight:
            return SyncOutcome.SKIPPED
        return await self._run_fetch()

    async def sync_now(self) -> SyncOutcome:
        """Manual refresh: abort any pending request, then fetch."""
        if self._closed:
            return SyncOutcome.SKIPPED
        await self._abort_inflight()
        return await self._run_fetch()

    async def _abort_inflight(self) -> None:
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

    async def _run_fetch(self) -> SyncOutcome:
        task = asyncio.get_running_loop().create_task(self._fetch())
        self._inflight = task
        self.state = SyncState.FETCHING
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._inflight is task:
                self._inflight = None
                self.state = SyncState.IDLE
        if task.cancelled():
            return SyncOutcome.CANCELLED
        return task.result()

    async def _fetch(self) -> SyncOutcome:
        headers = {"Cache-Control": "no-store"}
        if self.version_token:
            headers["If-None-Match"] = self.version_token
        try:
            response = await self._get_client().get(self.url, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Live map sync failed: {e}. Keeping last snapshot.")
            return SyncOutcome.FAILED

        if response.status_code == 304:
            self.last_synced_at = self.clock()
            return SyncOutcome.NOT_MODIFIED
        if response.is_error:
            logger.warning(f"Live map sync returned HTTP {response.status_code}. Keeping last snapshot.")
            return SyncOutcome.FAILED
        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"Live map sync returned invalid JSON: {e}")
            return SyncOutcome.FAILED
        if not isinstance(data, dict):
            logger.warning("Live map sync returned an unexpected payload.")
            return SyncOutcome.FAILED

        snapshot = LiveSnapshot.from_payload(data, response.headers.get("etag"))
        if snapshot.version_token:
            self.version_token = snapshot.version_token
        self.last_synced_at = self.clock()

        if snapshot.same_positions(self.snapshot):
            return SyncOutcome.UNCHANGED
        self.snapshot = snapshot
        if self.on_change:
            self.on_change(snapshot)
        return SyncOutcome.UPDATED

    def set_visible(self, visible: bool) -> None:
        """Visibility signal; becoming visible triggers an immediate refresh."""
        changed = visible != self.visible
        self.visible = visible
        if changed:
            self._wake.set()

    async def run(self) -> None:
        while not self._closed:
            self._wake.clear()
            if self.visible:
                await self.sync()
            # Hidden: sleep until the visibility signal wakes us.
            timeout = self.interval_seconds if self.visible else None
            try:
                await asyncio.wait_for(self._wake.wait(), timeout)
            except asyncio.TimeoutError:
                pass

    def start(self) -> asyncio.Task[None]:
        if self._runner is None or self._runner.done():
            self._closed = False
            self._runner = asyncio.get_running_loop().create_task(self.run())
        return self._runner

    async def close(self) -> None:
        """Stop polling, abort the pending request and drop the snapshot."""
        self._closed = True
        self._wake.set()
        await self._abort_inflight()
        runner = self._runner
        if runner is not None and not runner.done():
            runner.cancel()
            await asyncio.wait({runner})
        self._runner = None
        self.snapshot = None
        self.version_token = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
