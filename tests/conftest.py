# tests/conftest.py
from io import BytesIO
from typing import Callable

import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from feedsync.adapters.clients.http import FetchResponse
from feedsync.adapters.kv_store import InMemoryKeyValueStore
from feedsync.db import enable_sqlite_savepoints
from feedsync.errors import TransportError
from feedsync.models import Base


@pytest.fixture
async def engine():
    """
    Fresh in-memory DB per test. StaticPool makes all connections share the same
    in-memory database for the lifetime of this engine fixture.
    """
    engine = enable_sqlite_savepoints(
        create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv(clock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


class FakeFetcher:
    """Feed fetcher double: serves one canned response (or raises) and records calls."""

    def __init__(self, body: bytes = b"", status: int = 200, reason: str = "OK", error: Exception | None = None):
        self.body = body
        self.status = status
        self.reason = reason
        self.error = error
        self.calls: list[str] = []

    async def fetch(self, url: str, timeout: float) -> FetchResponse:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return FetchResponse(status=self.status, body=self.body, reason=self.reason)


@pytest.fixture
def fetcher_factory() -> Callable[..., FakeFetcher]:
    return FakeFetcher


@pytest.fixture
def transport_error() -> TransportError:
    return TransportError("ConnectError: connection refused")


def _property_xml(
    external_id: str,
    *,
    last_updated: str = "2024-03-01 10:00:00",
    name: str | None = None,
    images: tuple[str, ...] = (),
    extra: str = "",
) -> str:
    image_xml = "".join(
        f'<original_image name="{url.rsplit("/", 1)[-1]}">{url}</original_image>' for url in images
    )
    return f"""
    <property>
      <id>{external_id}</id>
      <name>{name or f"Unit {external_id}"}</name>
      <last_updated>{last_updated}</last_updated>
      <status>Available</status>
      <address1>1 High Street</address1>
      <town>Leeds</town>
      <county>West Yorkshire</county>
      <postcode>LS1 4AP</postcode>
      <types><type id="3">Office</type></types>
      <availabilities><type id="1">To Let</type></availabilities>
      <original_images>{image_xml}</original_images>
      {extra}
    </property>
    """


@pytest.fixture
def property_xml() -> Callable[..., str]:
    return _property_xml


@pytest.fixture
def feed_xml() -> Callable[..., bytes]:
    def _build(*items: str) -> bytes:
        return ("<?xml version='1.0' encoding='UTF-8'?><properties>" + "".join(items) + "</properties>").encode()

    return _build


@pytest.fixture
def png_bytes() -> bytes:
    buf = BytesIO()
    Image.new("RGB", (4, 4), color=(200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()
