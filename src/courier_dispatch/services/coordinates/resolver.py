"""Lazy, eventually consistent resolution of order destinations."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional

from ...models.domain import LatLng, Order, Resolution, ResolvedCoordinate
from .expander import UrlExpander, UrlExpanderClient, UrlExpansionError
from .parser import extract_coords_from_text, extract_coords_from_url, find_map_url, is_short_map_url

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[str, ResolvedCoordinate], None]


class ExpansionCache:
    """Deduplicates short-link expansions by raw URL.

    Concurrent and later lookups of the same URL share one request. Failed or
    cancelled expansions are dropped so a later lookup may try again.
    """

    def __init__(self, expander: UrlExpander) -> None:
        self.expander = expander
        self._entries: dict[str, asyncio.Task[Optional[str]]] = {}

    def get(self, url: str) -> asyncio.Task[Optional[str]]:
        task = self._entries.get(url)
        if task is not None and task.done() and (task.cancelled() or task.result() is None):
            task = None
        if task is None:
            task = asyncio.get_running_loop().create_task(self._expand(url))
            self._entries[url] = task
        return task

    async def _expand(self, url: str) -> Optional[str]:
        try:
            return await self.expander.expand(url)
        except UrlExpansionError as e:
            logger.warning(f"Short link expansion failed for {url}: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error expanding {url}: {e}")
            return None

    def cancel_pending(self) -> None:
        for url, task in list(self._entries.items()):
            if not task.done():
                task.cancel()
                del self._entries[url]


class CoordinateResolver:
    """Turns order address text into coordinates.

    ``resolve`` answers immediately. Orders carrying a short map link come
    back as ``Resolution.PENDING`` and are finished in the background; each
    late result is stored in ``coordinates`` and reported through
    ``on_update``. Must be used from a running event loop.
    """

    def __init__(
        self,
        expander: UrlExpander | None = None,
        *,
        cache: ExpansionCache | None = None,
        on_update: UpdateCallback | None = None,
    ) -> None:
        if cache is None:
            cache = ExpansionCache(expander or UrlExpanderClient())
        self.cache = cache
        self.on_update = on_update
        self.coordinates: dict[str, ResolvedCoordinate] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def resolve(self, order: Order) -> ResolvedCoordinate:
        result = self._resolve_now(order)
        self.coordinates[order.id] = result
        return result

    def resolve_all(self, orders: Iterable[Order]) -> dict[str, ResolvedCoordinate]:
        for order in orders:
            self.resolve(order)
        return dict(self.coordinates)

    def located(self) -> dict[str, LatLng]:
        return {order_id: value for order_id, value in self.coordinates.items() if isinstance(value, LatLng)}

    @property
    def pending_ids(self) -> list[str]:
        return [order_id for order_id, task in self._tasks.items() if not task.done()]

    def _resolve_now(self, order: Order) -> ResolvedCoordinate:
        persisted = order.persisted_position
        if persisted:
            return persisted

        text = (order.delivery_address or "").strip()
        parsed = extract_coords_from_text(text)
        if parsed:
            return parsed

        url = find_map_url(text)
        if url is None and is_short_map_url(text) and " " not in text:
            url = f"https://{text}"
        if url:
            if is_short_map_url(url):
                self._queue_expansion(order.id, url)
                return Resolution.PENDING
            parsed = extract_coords_from_url(url)
            if parsed:
                return parsed
        return Resolution.UNRESOLVED

    def _queue_expansion(self, order_id: str, url: str) -> None:
        previous = self._tasks.pop(order_id, None)
        if previous is not None and not previous.done():
            previous.cancel()
        self._tasks[order_id] = asyncio.get_running_loop().create_task(self._complete(order_id, url))

    async def _complete(self, order_id: str, url: str) -> None:
        # Shielded so cancelling one order never cancels an expansion other orders share.
        expanded = await asyncio.shield(self.cache.get(url))
        coordinate = extract_coords_from_url(expanded) if expanded else None
        if coordinate is None:
            coordinate = extract_coords_from_url(url)
        result: ResolvedCoordinate = coordinate or Resolution.UNRESOLVED
        if result is Resolution.UNRESOLVED:
            logger.info(f"Order {order_id}: no coordinates found in {expanded or url}")
        self.coordinates[order_id] = result
        if self.on_update:
            self.on_update(order_id, result)

    async def wait_pending(self) -> None:
        """Wait until every queued expansion has settled."""

        tasks = [task for task in self._tasks.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def close(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        self._tasks.clear()
        self.cache.cancel_pending()
