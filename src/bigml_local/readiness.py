"""
Readiness state machine for local resources.

A local resource starts LOADING and settles exactly once, to READY or to
FAILED. Resources assembled from other resources (ensembles) pass through
PARTIAL once their own metadata is parsed and their members are in flight.
Operations requested before the resource settles are queued together with
their callback and replayed in registration order.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from .core.errors import BigMLLocalError, NotReadyError

logger = logging.getLogger(__name__)

Callback = Callable[[Optional[Exception], Any], Any]


class ReadyState(str, Enum):
    """Lifecycle of a local resource."""

    loading = "loading"
    partial = "partial"
    ready = "ready"
    failed = "failed"


class Readiness:
    """Single-fire ready/failed notification with a FIFO of pending operations."""

    def __init__(self) -> None:
        self.state = ReadyState.loading
        self.error: BigMLLocalError | None = None
        self._pending: list[tuple[Callable[[], Any], Optional[Callback], asyncio.Future]] = []
        self._waiters: list[asyncio.Future] = []

    @property
    def is_ready(self) -> bool:
        return self.state is ReadyState.ready

    @property
    def is_partial(self) -> bool:
        return self.state is ReadyState.partial

    @property
    def is_failed(self) -> bool:
        return self.state is ReadyState.failed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def defer(self, operation: Callable[[], Any], callback: Optional[Callback] = None) -> asyncio.Future:
        """
        Queue an operation until the resource settles.

        Returns:
            Future resolved with the operation result (or its error)

        Raises:
            NotReadyError: If there is no running event loop to settle in
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise NotReadyError(
                "The local resource is still loading and no event loop is running"
            ) from None
        future = loop.create_future()
        self._pending.append((operation, callback, future))
        return future

    async def wait(self) -> None:
        """Wait until the resource is ready, raising its load error if it fails."""
        if self.state is ReadyState.ready:
            return
        if self.state is ReadyState.failed:
            raise self.error
        future = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        await future

    def mark_partial(self) -> None:
        """Record that the metadata is known while the rest is still loading."""
        if self.state is not ReadyState.loading:
            raise RuntimeError(f"Resource cannot become partial from {self.state.value}")
        self.state = ReadyState.partial

    def mark_ready(self) -> None:
        self._settle(ReadyState.ready)
        for future in self._waiters:
            if not future.done():
                future.set_result(None)
        self._waiters.clear()
        self._flush()

    def mark_failed(self, error: BigMLLocalError) -> None:
        self._settle(ReadyState.failed)
        self.error = error
        for future in self._waiters:
            if not future.done():
                future.set_exception(error)
        self._waiters.clear()
        self._flush()

    def _settle(self, state: ReadyState) -> None:
        if self.state not in (ReadyState.loading, ReadyState.partial):
            raise RuntimeError(f"Resource already settled as {self.state.value}")
        self.state = state

    def _flush(self) -> None:
        pending, self._pending = self._pending, []
        if pending:
            logger.debug(f"Replaying {len(pending)} queued operations ({self.state.value})")
        for operation, callback, future in pending:
            if self.error is not None:
                error, result = self.error, None
            else:
                try:
                    error, result = None, operation()
                except Exception as e:
                    error, result = e, None
            if callback is not None:
                try:
                    callback(error, result)
                except Exception:
                    logger.exception("Callback of a queued operation raised")
            if future.done():
                continue
            if error is not None:
                future.set_exception(error)
                if callback is not None:
                    # delivered through the callback
                    future.exception()
            else:
                future.set_result(result)
