import asyncio
from typing import Any

import httpx
from loguru import logger

# Statuses worth another attempt: timeouts, rate limiting, and upstream/gateway failures.
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


class BaseClient:
    """
    Shared async HTTP client for upstream JSON APIs.

    Owns a lazily created `httpx.AsyncClient`, retries transient failures with exponential backoff,
    and raises the last error once attempts are exhausted. Client errors (4xx other than throttling)
    are raised immediately.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 10.0,
        max_retries: int = 3,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_seconds: float = 0.5,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.headers = headers or {}
        self.backoff_seconds = backoff_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self.headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self.get_client()

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except (httpx.HTTPStatusError, httpx.TransportError) as e:
                if not is_retryable(e) or attempt == self.max_retries:
                    logger.error(f"{method} {url} failed on attempt {attempt}/{self.max_retries}: {e}")
                    raise
                delay = self.backoff_seconds * 2 ** (attempt - 1)
                logger.warning(f"{method} {url} failed ({e}), retry {attempt}/{self.max_retries - 1} in {delay}s")
                await asyncio.sleep(delay)

        raise RuntimeError("unreachable")

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        # writes made with `Prefer: return=minimal` come back with an empty body
        return response.json() if response.content else None

    async def get(self, url: str, params: Any = None, **kwargs) -> Any:
        return self._decode(await self._request("GET", url, params=params, **kwargs))

    async def post(self, url: str, json: Any = None, **kwargs) -> Any:
        return self._decode(await self._request("POST", url, json=json, **kwargs))

    async def delete(self, url: str, params: Any = None, **kwargs) -> Any:
        return self._decode(await self._request("DELETE", url, params=params, **kwargs))
