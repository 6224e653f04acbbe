"""Live subscription multiplexing.

The SubscriptionMultiplexer opens one live stream per data source (the posts
collection, the likes of one post, one author's profile, ...) and turns each
into a cancellable ``StreamHandle``. Every handle is pumped by its own task:

- events within one source arrive in backend order; sources are independent
- a transport failure ends only the failing handle, with an error event
- unsubscribing is idempotent and safe from inside the handle's own handler
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from vent_feed.backend.base import Backend, ChangeEvent, ChangeType, entity_key
from vent_feed.core.errors import FeedError
from vent_feed.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

_END = object()

EventHandler = Callable[["MuxEvent"], None]


@dataclass(frozen=True)
class MuxEvent:
    """Change event tagged with the source it arrived on.

    ``tombstone`` marks a deletion. ``payload`` still carries the last known
    entity so consumers can locate what was removed. Error events carry
    ``error`` and no payload.
    """

    source_key: str
    entity_id: str | None
    payload: Mapping[str, Any] | None = None
    tombstone: bool = False
    change: ChangeType | None = None
    error: BaseException | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_change(cls, source_key: str, change: ChangeEvent) -> MuxEvent:
        entity = dict(change.entity)
        return cls(
            source_key=source_key,
            entity_id=entity_key(change.collection, entity),
            payload=entity,
            tombstone=change.type == ChangeType.DELETED or bool(entity.get("deleted")),
            change=change.type,
        )

    @classmethod
    def failure(cls, source_key: str, error: BaseException) -> MuxEvent:
        return cls(source_key=source_key, entity_id=None, error=error)


@dataclass(frozen=True)
class ResubscribePolicy:
    """Exponential backoff for reopening a dropped live stream.

    ``max_attempts`` of zero disables resubscription entirely; the handle
    then ends after delivering its error event.
    """

    max_attempts: int = 0
    initial_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0

    @classmethod
    def from_settings(cls) -> ResubscribePolicy:
        return cls(
            max_attempts=settings.resubscribe_max_attempts,
            initial_delay=settings.resubscribe_initial_delay_seconds,
            max_delay=settings.resubscribe_max_delay_seconds,
        )

    def next_delay(self, attempt: int) -> float | None:
        """Return the delay before retry number ``attempt`` (0-based), or None."""
        if attempt >= self.max_attempts:
            return None
        return min(self.initial_delay * (self.multiplier ** attempt), self.max_delay)


@dataclass(eq=False)
class StreamHandle:
    """Cancellable handle over one live subscription.

    Without a handler the handle is an async iterator: the stream opens on
    first iteration, never restarts once finished, and stops yielding as
    soon as it is unsubscribed. With a handler, events are pushed to it.
    """

    source_key: str
    collection: str
    filters: Mapping[str, Any] | None = None
    handler: EventHandler | None = None
    cancelled: bool = False
    finished: bool = False
    last_error: BaseException | None = None
    _queue: asyncio.Queue[Any] = field(default_factory=asyncio.Queue, repr=False)
    _task: asyncio.Task[None] | None = field(default=None, repr=False)
    _starter: Callable[[StreamHandle], None] | None = field(default=None, repr=False)

    def __aiter__(self) -> StreamHandle:
        return self

    async def __anext__(self) -> MuxEvent:
        if self._task is None and not self.cancelled and self._starter is not None:
            self._starter(self)
        if self.cancelled or (self.finished and self._queue.empty()):
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END or self.cancelled:
            raise StopAsyncIteration
        return item

    def _deliver(self, event: MuxEvent) -> None:
        if self.cancelled:
            return
        if event.is_error:
            self.last_error = event.error
        if self.handler is None:
            self._queue.put_nowait(event)
            return
        try:
            self.handler(event)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.error(
                "Handler for %s failed on %s: %s", self.source_key, event.entity_id, e,
                exc_info=True,
            )

    def _finish(self) -> None:
        self.finished = True
        self._queue.put_nowait(_END)


class SubscriptionMultiplexer:
    """Manages a set of independent live subscriptions over one backend."""

    def __init__(self, backend: Backend, policy: ResubscribePolicy | None = None) -> None:
        self.backend = backend
        self.policy = policy or ResubscribePolicy.from_settings()
        self._handles: dict[str, StreamHandle] = {}

    def subscribe(
        self,
        source_key: str,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        *,
        handler: EventHandler | None = None,
    ) -> StreamHandle:
        """Open a live subscription identified by ``source_key``.

        Handler-driven subscriptions start pumping immediately; iterator
        subscriptions start on first iteration.
        """
        existing = self._handles.get(source_key)
        if existing is not None and not existing.cancelled:
            raise ValueError(f"Source {source_key!r} is already subscribed")

        handle = StreamHandle(
            source_key=source_key,
            collection=collection,
            filters=dict(filters) if filters else None,
            handler=handler,
            _starter=self._start,
        )
        self._handles[source_key] = handle
        if handler is not None:
            self._start(handle)
        logger.debug("Subscribed %s to %s %s", source_key, collection, filters or {})
        return handle

    def get(self, source_key: str) -> StreamHandle | None:
        handle = self._handles.get(source_key)
        if handle is None or handle.cancelled:
            return None
        return handle

    def source_keys(self) -> list[str]:
        return [key for key, handle in self._handles.items() if not handle.cancelled]

    def unsubscribe(self, handle: StreamHandle | None) -> None:
        """Release ``handle``. Safe to call repeatedly and from its own handler."""
        if handle is None or handle.cancelled:
            return
        handle.cancelled = True
        if self._handles.get(handle.source_key) is handle:
            del self._handles[handle.source_key]
        task = handle._task
        if task is not None and not task.done():
            task.cancel()
        handle._queue.put_nowait(_END)
        logger.debug("Unsubscribed %s", handle.source_key)

    def unsubscribe_key(self, source_key: str) -> None:
        self.unsubscribe(self._handles.get(source_key))

    async def close(self) -> None:
        """Unsubscribe every handle and wait for the pump tasks to finish."""
        handles = list(self._handles.values())
        tasks = [handle._task for handle in handles if handle._task is not None]
        for handle in handles:
            self.unsubscribe(handle)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _start(self, handle: StreamHandle) -> None:
        if handle._task is None:
            handle._task = asyncio.create_task(self._pump(handle), name=f"mux:{handle.source_key}")

    async def _pump(self, handle: StreamHandle) -> None:
        attempt = 0
        try:
            while not handle.cancelled:
                stream = self.backend.subscribe(handle.collection, handle.filters)
                try:
                    async for change in stream:
                        attempt = 0
                        if handle.cancelled:
                            return
                        handle._deliver(MuxEvent.from_change(handle.source_key, change))
                    # The backend ended the stream on its own, e.g. on shutdown.
                    return
                except (FeedError, OSError, ConnectionError, TimeoutError) as e:
                    logger.warning("Live stream %s failed: %s", handle.source_key, e)
                    handle._deliver(MuxEvent.failure(handle.source_key, e))
                finally:
                    aclose = getattr(stream, "aclose", None)
                    if aclose is not None:
                        await aclose()

                delay = self.policy.next_delay(attempt)
                if delay is None:
                    return
                attempt += 1
                logger.info(
                    "Resubscribing %s in %.2fs (attempt %d)", handle.source_key, delay, attempt
                )
                await asyncio.sleep(delay)
        finally:
            handle._finish()
