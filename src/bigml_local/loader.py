"""
Resource loading for local predictors.

Resolves the JSON that backs a local model-like object from, in order:
1. The finished JSON itself (resolved synchronously)
2. A local file path
3. A storage directory holding ``<type>_<id>`` files
4. A pluggable cache (``get(key)``, sync or async)
5. The remote API, polling until the resource is finished
"""

import asyncio
import inspect
import json
import logging
import threading
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Optional, Protocol

from .config import Settings, get_settings
from .core.errors import ApiError, LoadError
from .core.http import BigMLApiClient
from .core.resource_ids import get_status, is_finished, try_resource_id

logger = logging.getLogger(__name__)


class CacheProtocol(Protocol):
    """Anything with a ``get(key)`` returning a resource (or an awaitable of one)."""

    def get(self, key: str) -> Any:
        ...


class MemoryCache:
    """Thread-safe in-memory resource cache keyed by resource id."""

    def __init__(self) -> None:
        self._cache: dict[str, Any] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._cache)


def _read_json(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise LoadError(f"Failed to read a JSON resource from {path}: {e}") from e


def _check_finished(data: Any, origin: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise LoadError(f"The resource in {origin} is not a JSON object")
    if not is_finished(data):
        status = get_status(data)
        raise LoadError(
            f"The resource in {origin} is not finished "
            f"(status {status['code']}: {status.get('message', '')})"
        )
    return data


class ResourceLoader:
    """
    Finds the finished JSON for a resource reference.

    Args:
        api: Client used for remote fetches (created per load when omitted)
        storage_dir: Directory of previously stored resources
        cache: Cache consulted before going remote
        settings: Connection settings
    """

    def __init__(
        self,
        api: Optional[BigMLApiClient] = None,
        storage_dir: Path | str | None = None,
        cache: Optional[CacheProtocol] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.api = api
        storage_dir = storage_dir or self.settings.storage_dir
        self.storage_dir = Path(storage_dir) if storage_dir else None
        self.cache = cache

    def resolve_local(self, reference: Any) -> dict[str, Any] | None:
        """
        Resolve a reference without I/O suspension.

        Returns:
            The finished JSON, or None when a cache/remote lookup is needed

        Raises:
            LoadError: If a local file is found but is unreadable or unfinished
        """
        if isinstance(reference, dict):
            return reference if is_finished(reference) else None
        if not isinstance(reference, (str, Path)):
            raise LoadError(f"Cannot load a resource from {reference!r}")

        path = Path(reference)
        try:
            found = path.is_file()
        except OSError:
            found = False
        if found:
            logger.debug(f"Loading resource from file {path}")
            return _check_finished(_read_json(path), path)

        resource_id = try_resource_id(str(reference))
        if resource_id is not None and self.storage_dir is not None:
            stored = self.storage_dir / resource_id.resource.replace("/", "_")
            if stored.is_file():
                logger.debug(f"Loading {resource_id.resource} from storage {stored}")
                return _check_finished(_read_json(stored), stored)
        return None

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BigMLApiClient]:
        """Yield the injected client, or a short-lived one."""
        if self.api is not None:
            yield self.api
            return
        async with BigMLApiClient(self.settings) as api:
            yield api

    async def load(self, reference: Any, api: Optional[BigMLApiClient] = None) -> dict[str, Any]:
        """
        Resolve a reference to its finished JSON.

        Raises:
            LoadError: If the resource cannot be found, is faulty or unfinished
        """
        data = self.resolve_local(reference)
        if data is not None:
            return data

        resource_id = try_resource_id(reference)
        if resource_id is None:
            raise LoadError(
                f"Cannot build a local resource from {reference!r}: "
                "it is neither a file nor a resource id"
            )

        if self.cache is not None:
            cached = self.cache.get(resource_id.resource)
            if inspect.isawaitable(cached):
                cached = await cached
            if isinstance(cached, (str, bytes)):
                try:
                    cached = json.loads(cached)
                except json.JSONDecodeError as e:
                    raise LoadError(f"Cached {resource_id.resource} is not valid JSON") from e
            if cached:
                logger.debug(f"Loading {resource_id.resource} from cache")
                return _check_finished(cached, "cache")

        logger.debug(f"Fetching {resource_id.resource} from the remote API")
        try:
            if api is not None:
                data = await api.get_finished(resource_id.resource)
            else:
                async with self.session() as session_api:
                    data = await session_api.get_finished(resource_id.resource)
        except ApiError as e:
            raise LoadError(f"Could not retrieve {resource_id.resource}: {e.message}") from e
        return _check_finished(data, resource_id.resource)

    async def load_many(self, references: Iterable[Any]) -> list[dict[str, Any]]:
        """Load several references concurrently, sharing one API session."""

        async with self.session() as api:
            return list(await asyncio.gather(*(self.load(ref, api=api) for ref in references)))
