"""Remote content retrieval for the compose manifest and the deploy script."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from .errors import FetchError

DEFAULT_FETCH_TIMEOUT = 30.0


class Fetcher(Protocol):
    """Capability that returns the body of a URL or raises :class:`FetchError`."""

    async def fetch_text(self, url: str) -> str:
        """Return the decoded body of *url*."""
        ...

    async def fetch_bytes(self, url: str) -> bytes:
        """Return the raw body of *url*."""
        ...


@dataclass(frozen=True, slots=True)
class HttpFetcher:
    """:class:`Fetcher` backed by an ``httpx`` async client."""

    timeout: float = DEFAULT_FETCH_TIMEOUT
    transport: httpx.AsyncBaseTransport | None = None

    async def _get(self, url: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, transport=self.transport
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to fetch {url}: {exc}") from exc
        if not response.is_success:
            raise FetchError(f"Failed to fetch {url}: HTTP {response.status_code}")
        return response

    async def fetch_text(self, url: str) -> str:
        """Return the decoded body of *url*; non-2xx responses are failures."""
        return (await self._get(url)).text

    async def fetch_bytes(self, url: str) -> bytes:
        """Return the raw body of *url*; non-2xx responses are failures."""
        return (await self._get(url)).content


__all__ = ["DEFAULT_FETCH_TIMEOUT", "Fetcher", "HttpFetcher"]
