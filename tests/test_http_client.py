import httpx
import pytest

from feedsync.adapters.clients.http import HttpFeedFetcher, build_client_factory
from feedsync.adapters.kv_store import InMemoryKeyValueStore
from feedsync.errors import TransportError
from feedsync.service_layer.sync import SyncConfig, SyncOrchestrator

FEED_URL = "https://feeds.example.com/properties.xml"


def _fetcher(handler) -> HttpFeedFetcher:
    return HttpFeedFetcher(build_client_factory(transport=httpx.MockTransport(handler)))


async def test_fetch_returns_status_body_and_reason():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"<properties/>")

    resp = await _fetcher(handler).fetch(FEED_URL, 5)

    assert (resp.status, resp.body, resp.reason, resp.ok) == (200, b"<properties/>", "OK", True)
    assert seen[0].headers["user-agent"].startswith("feedsync/")


async def test_connect_failure_becomes_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError, match="ConnectError"):
        await _fetcher(handler).fetch(FEED_URL, 5)


async def test_malformed_url_becomes_transport_error():
    fetcher = _fetcher(lambda request: httpx.Response(200, content=b"<properties/>"))

    with pytest.raises(TransportError, match="InvalidURL"):
        await fetcher.fetch("https://feeds.example.com/\x01feed.xml", 5)


async def test_connectivity_check_reports_malformed_url(async_session_maker):
    fetcher = _fetcher(lambda request: httpx.Response(200, content=b"<properties/>"))
    orch = SyncOrchestrator(async_session_maker, InMemoryKeyValueStore(), fetcher, SyncConfig(feed_url=FEED_URL))

    result = await orch.test_feed_connectivity("https://feeds.example.com/\x01feed.xml")

    assert result.success is False
    assert result.message.startswith("Connection failed: InvalidURL")
