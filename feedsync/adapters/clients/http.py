# feedsync/adapters/clients/http.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

import certifi
import httpx

from ...config import settings
from ...errors import TransportError

ClientFactory = Callable[..., httpx.AsyncClient]


@dataclass(frozen=True)
class FetchResponse:
    status: int
    body: bytes
    reason: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == 200


def http_verify(verify_ssl: bool = True, ca_bundle: str | None = None) -> bool | str:
    """
    httpx 'verify' can be:
      - True/False
      - path to CA bundle
    """
    if not verify_ssl:
        return False
    # explicit CA bundle path wins; else certifi
    if ca_bundle:
        return ca_bundle
    return certifi.where()


def build_client_factory(
    *,
    user_agent: str | None = None,
    verify: bool | str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ClientFactory:
    """
    Returns a callable producing configured AsyncClients. Tests pass an
    httpx.MockTransport here; nothing else changes.
    """
    ua = user_agent or settings.FEED_USER_AGENT
    v = verify if verify is not None else http_verify(settings.FEED_VERIFY_SSL, settings.FEED_CA_BUNDLE)

    def factory(timeout: float = 30.0) -> httpx.AsyncClient:
        kwargs = {
            "timeout": httpx.Timeout(float(timeout)),
            "follow_redirects": True,
            "headers": {"User-Agent": ua},
        }
        if transport is not None:
            kwargs["transport"] = transport
        else:
            kwargs["verify"] = v
        return httpx.AsyncClient(**kwargs)

    return factory


class HttpFeedFetcher:
    """
    Single GET of the feed document. No retries: a failed fetch fails the run and the
    next scheduled run tries again.
    """

    def __init__(self, client_factory: ClientFactory | None = None):
        self.client_factory = client_factory or build_client_factory()

    @classmethod
    def from_settings(cls, transport: httpx.AsyncBaseTransport | None = None) -> "HttpFeedFetcher":
        return cls(build_client_factory(transport=transport))

    async def fetch(self, url: str, timeout: float) -> FetchResponse:
        headers = {"Accept": "application/xml,text/xml;q=0.9,*/*;q=0.8"}
        try:
            async with self.client_factory(timeout) as client:
                r = await client.get(url, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        return FetchResponse(
            status=r.status_code,
            body=r.content,
            reason=r.reason_phrase,
            headers=dict(r.headers),
        )
