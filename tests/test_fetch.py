"""Tests for the httpx-backed fetcher."""
from __future__ import annotations

import asyncio

import httpx
import pytest

from seedctl.errors import FetchError
from seedctl.fetch import HttpFetcher


def _fetcher(handler) -> HttpFetcher:  # type: ignore[no-untyped-def]
    return HttpFetcher(timeout=5, transport=httpx.MockTransport(handler))


def test_fetch_text_and_bytes_return_body() -> None:
    """Successful responses yield their decoded and raw bodies."""
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, content=b"services: {}\n")

    fetcher = _fetcher(handler)
    assert asyncio.run(fetcher.fetch_text("https://example.test/c.yml")) == "services: {}\n"
    assert asyncio.run(fetcher.fetch_bytes("https://example.test/s.pyz")) == b"services: {}\n"
    assert seen == ["https://example.test/c.yml", "https://example.test/s.pyz"]


def test_redirects_are_followed() -> None:
    """Raw hosting redirects resolve to the final body."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/old":
            return httpx.Response(302, headers={"Location": "https://example.test/new"})
        return httpx.Response(200, text="moved")

    assert asyncio.run(_fetcher(handler).fetch_text("https://example.test/old")) == "moved"


def test_non_success_status_is_a_fetch_error() -> None:
    """A 404 is reported with its status code."""
    fetcher = _fetcher(lambda request: httpx.Response(404))

    with pytest.raises(FetchError, match="HTTP 404"):
        asyncio.run(fetcher.fetch_text("https://example.test/missing"))


def test_transport_errors_become_fetch_errors() -> None:
    """Connection failures surface as FetchError, not httpx exceptions."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(FetchError, match="Failed to fetch https://example.test/x"):
        asyncio.run(_fetcher(handler).fetch_bytes("https://example.test/x"))
