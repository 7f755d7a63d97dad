"""Shared async HTTP client with configurable timeout."""

from typing import Any, Optional

import httpx


class HttpClient:
    """Thin async wrapper around httpx.AsyncClient with a configurable timeout.

    One instance per external service keeps timeouts independently configurable.
    The timeout applies to every single request; retry loops built on top of
    this client get a fresh budget per attempt.

    ``transport`` is passed through to httpx so tests can plug in
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def timeout(self) -> float:
        return self._timeout

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self._client.post(url, **kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self._client.get(url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


def is_success(response: httpx.Response) -> bool:
    """True for any 2xx status."""
    return 200 <= response.status_code < 300
