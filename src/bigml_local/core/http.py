"""
HTTP access to the BigML API.

Provides BigMLApiClient with rate limiting, retries, and polling until a
resource reaches a terminal state. Local prediction objects only need
read access: fetch a finished resource by id, or download a file.

Usage:
    async with BigMLApiClient() as api:
        model_json = await api.get_finished("model/5143a51a37203f2cf7000972")
"""

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from ..config import Settings, get_settings
from .constants import FAULTY, FINISHED, ONLY_MODEL
from .errors import ApiError, LoadError, RateLimitError
from .resource_ids import get_resource_id, get_status

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

class RateLimiter:
    """Simple token bucket rate limiter for async API calls."""

    def __init__(self, requests_per_minute: int = 600):
        self.delay = 60.0 / requests_per_minute
        self._last_request = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until we can make a request."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request
            if elapsed < self.delay:
                await asyncio.sleep(self.delay - elapsed)
            self._last_request = time.monotonic()


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class BigMLApiClient:
    """
    Async read-only client for BigML resources.

    Use as an async context manager:

        async with BigMLApiClient() as api:
            data = await api.get("ensemble/5143a51a37203f2cf7000972")

    Or with lazy initialisation (for long-lived local ensembles):

        api = BigMLApiClient(settings=my_settings)
        data = await api.get_finished("model/...")  # client auto-creates on first use
        await api.close()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self._base_url = self.settings.base_url
        self._default_params = self.settings.auth_params
        self._rate_limiter = RateLimiter(self.settings.requests_per_minute)
        self._timeout = self.settings.request_timeout
        self._max_retries = self.settings.max_retries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        if not self._default_params:
            logger.warning("BIGML_USERNAME / BIGML_API_KEY not set - API calls will fail")

    # -- Lifecycle -----------------------------------------------------------

    async def __aenter__(self) -> "BigMLApiClient":
        _ = self.client
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        """Return the HTTP client, lazily creating it if needed."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={"Accept": "application/json;charset=utf-8"},
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # -- Requests ------------------------------------------------------------

    async def _request(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Make a GET request with retry logic and rate limiting.

        Raises:
            RateLimitError: If API returns 429 and retries are exhausted
            ApiError: If request fails after retries
        """
        merged_params = {**self._default_params, **(params or {})}
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                await self._rate_limiter.acquire()
                response = await self.client.get(path, params=merged_params)

                if response.status_code == 429:
                    retry_after = int(response.headers.get("retry-after", 60))
                    if attempt < self._max_retries - 1:
                        wait = min(retry_after, 30)
                        logger.warning(
                            f"Rate limited by API, waiting {wait}s (attempt {attempt + 1})"
                        )
                        await asyncio.sleep(wait)
                        continue
                    raise RateLimitError(
                        f"API rate limit exceeded. Try again in {retry_after} seconds.",
                        retry_after=retry_after,
                    )

                response.raise_for_status()
                return response

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                last_error = ApiError(
                    f"HTTP {status}: {e.response.text[:200]}",
                    status_code=status,
                )
                # Client errors (except 429) are not retryable
                if 400 <= status < 500:
                    raise last_error
                if attempt < self._max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Request failed, retrying in {wait}s: {e}")
                    await asyncio.sleep(wait)

            except httpx.RequestError as e:
                last_error = ApiError(f"Request failed: {str(e)}")
                if attempt < self._max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Request error, retrying in {wait}s: {e}")
                    await asyncio.sleep(wait)

        raise last_error or ApiError("Request failed after retries")

    async def get(self, resource_id: str, query: str | None = None) -> dict[str, Any]:
        """Fetch the current JSON of a resource."""
        params: dict[str, Any] = {}
        if query:
            for pair in query.split(";"):
                key, _, value = pair.partition("=")
                if key:
                    params[key] = value
        response = await self._request(resource_id, params)
        return response.json()

    async def get_finished(
        self,
        resource_id: str,
        query: str | None = ONLY_MODEL,
    ) -> dict[str, Any]:
        """
        Poll a resource until it is finished.

        Raises:
            LoadError: If the resource ends up in the FAULTY state
        """
        resource = get_resource_id(resource_id).resource
        wait = self.settings.poll_interval
        while True:
            data = await self.get(resource, query)
            status = get_status(data)
            if status["code"] == FINISHED:
                logger.info(f"Resource {resource} is finished")
                return data
            if status["code"] == FAULTY:
                raise LoadError(
                    f"Resource {resource} is faulty: {status.get('message', '')}"
                )
            logger.debug(f"Resource {resource} status {status['code']}, polling in {wait}s")
            await asyncio.sleep(wait)
            wait = min(wait * 2, self.settings.max_poll_interval)

    async def download(self, path: str) -> bytes:
        """Download raw content (e.g. a batch prediction CSV)."""
        response = await self._request(path)
        return response.content
