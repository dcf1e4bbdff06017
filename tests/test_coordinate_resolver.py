import asyncio

import httpx
import pytest

from courier_dispatch.models.domain import LatLng, Order, Resolution
from courier_dispatch.services.coordinates.expander import UrlExpanderClient, UrlExpansionError
from courier_dispatch.services.coordinates.resolver import CoordinateResolver

SHORT = "https://maps.app.goo.gl/abc123"
LONG = "https://www.google.com/maps/place/Chorsu/@41.30,69.20,17z/data=!4m6!8m2!3d41.3265!4d69.2350"


class CountingExpander:
    def __init__(self, mapping: dict[str, str], failing: set[str] | None = None):
        self.mapping = mapping
        self.failing = failing or set()
        self.calls: list[str] = []

    async def expand(self, url: str) -> str:
        self.calls.append(url)
        await asyncio.sleep(0)
        if url in self.failing:
            raise UrlExpansionError(f"boom {url}")
        return self.mapping[url]


class BlockingExpander:
    def __init__(self):
        self.started = asyncio.Event()

    async def expand(self, url: str) -> str:
        self.started.set()
        await asyncio.Event().wait()
        return LONG


def _order(oid: str, address: str = "", lat=None, lng=None) -> Order:
    return Order(id=oid, order_number=1, delivery_address=address, latitude=lat, longitude=lng)


@pytest.mark.anyio
async def test_priority_persisted_then_text_then_url():
    resolver = CoordinateResolver(CountingExpander({}))

    assert resolver.resolve(_order("a", "41.1, 69.1", lat=40.0, lng=70.0)) == LatLng(40.0, 70.0)
    assert resolver.resolve(_order("b", f"home 41.2000, 69.3000 {LONG}")) == LatLng(41.2, 69.3)
    assert resolver.resolve(_order("c", f"gate 3 {LONG}")) == LatLng(41.3265, 69.235)
    assert resolver.resolve(_order("d", "Chilonzor, near the bazaar")) is Resolution.UNRESOLVED
    assert resolver.resolve(_order("e", "", lat=float("nan"), lng=69.0)) is Resolution.UNRESOLVED


@pytest.mark.anyio
async def test_shared_short_url_is_expanded_once():
    expander = CountingExpander({SHORT: LONG})
    updates = []
    resolver = CoordinateResolver(expander, on_update=lambda oid, value: updates.append((oid, value)))

    first = resolver.resolve(_order("a", SHORT))
    second = resolver.resolve(_order("b", f"Entrance 2, {SHORT}"))
    assert first is Resolution.PENDING and second is Resolution.PENDING
    assert sorted(resolver.pending_ids) == ["a", "b"]

    await resolver.wait_pending()

    assert expander.calls == [SHORT]
    assert resolver.coordinates["a"] == LatLng(41.3265, 69.235)
    assert resolver.coordinates["b"] == LatLng(41.3265, 69.235)
    assert sorted(oid for oid, _ in updates) == ["a", "b"]


@pytest.mark.anyio
async def test_bare_short_host_gets_scheme():
    expander = CountingExpander({SHORT: LONG})
    resolver = CoordinateResolver(expander)

    assert resolver.resolve(_order("a", "maps.app.goo.gl/abc123")) is Resolution.PENDING
    await resolver.wait_pending()

    assert expander.calls == [SHORT]


@pytest.mark.anyio
async def test_failed_expansion_only_affects_its_orders():
    bad = "https://maps.app.goo.gl/broken"
    expander = CountingExpander({SHORT: LONG}, failing={bad})
    resolver = CoordinateResolver(expander)

    resolver.resolve_all([_order("ok", SHORT), _order("bad", bad)])
    await resolver.wait_pending()

    assert resolver.coordinates["ok"] == LatLng(41.3265, 69.235)
    assert resolver.coordinates["bad"] is Resolution.UNRESOLVED
    assert resolver.located() == {"ok": LatLng(41.3265, 69.235)}


@pytest.mark.anyio
async def test_failed_expansion_is_retried_by_a_later_lookup():
    bad = "https://maps.app.goo.gl/flaky"
    expander = CountingExpander({bad: LONG}, failing={bad})
    resolver = CoordinateResolver(expander)

    resolver.resolve(_order("a", bad))
    await resolver.wait_pending()
    expander.failing.clear()
    resolver.resolve(_order("a", bad))
    await resolver.wait_pending()

    assert expander.calls == [bad, bad]
    assert resolver.coordinates["a"] == LatLng(41.3265, 69.235)


@pytest.mark.anyio
async def test_close_cancels_pending_expansions():
    expander = BlockingExpander()
    updates = []
    resolver = CoordinateResolver(expander, on_update=lambda oid, value: updates.append(oid))

    resolver.resolve(_order("a", SHORT))
    await expander.started.wait()
    resolver.close()
    await asyncio.sleep(0)

    assert resolver.pending_ids == []
    assert resolver.coordinates["a"] is Resolution.PENDING
    assert updates == []


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.anyio
async def test_expander_follows_redirects():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "HEAD"
        if request.url.host == "maps.app.goo.gl":
            return httpx.Response(302, headers={"Location": LONG})
        return httpx.Response(200)

    async with _client(handler) as client:
        expander = UrlExpanderClient(client)
        assert await expander.expand(SHORT) == LONG


@pytest.mark.anyio
async def test_expander_delegates_to_service():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["url"] == SHORT
        return httpx.Response(200, json={"expandedUrl": LONG})

    async with _client(handler) as client:
        expander = UrlExpanderClient(client, service_url="http://dispatch/api/dispatch/expand-url")
        assert await expander.expand(SHORT) == LONG


@pytest.mark.anyio
async def test_expander_does_not_retry_client_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404)

    async with _client(handler) as client:
        expander = UrlExpanderClient(client, max_retries=3, backoff_seconds=0)
        with pytest.raises(UrlExpansionError):
            await expander.expand(SHORT)

    assert len(calls) == 1


@pytest.mark.anyio
async def test_expander_retries_server_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200)

    async with _client(handler) as client:
        expander = UrlExpanderClient(client, max_retries=1, backoff_seconds=0)
        assert await expander.expand(LONG) == LONG

    assert len(calls) == 2
