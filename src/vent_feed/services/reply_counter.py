"""Nested reply counting with per-post caching.

Reply trees have unbounded depth, so traversal keeps an explicit work list
instead of recursing, and hands control back to the event loop every few
nodes. Counts are cached per post and only recomputed after a reply in that
post's tree is created or deleted.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from vent_feed.backend.base import REPLIES, Backend
from vent_feed.core.settings import settings
from vent_feed.schemas import ReplyNode

# Configure logger for this module
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplyRoot:
    """Root of a reply subtree: a post, or one reply inside it."""

    post_id: str
    reply_id: str | None = None


ChildrenFetcher = Callable[[ReplyRoot], Awaitable[list[ReplyNode]]]


def backend_children_fetcher(backend: Backend) -> ChildrenFetcher:
    """Fetch one level of the tree per call through ``Backend.query``."""

    async def fetch(root: ReplyRoot) -> list[ReplyNode]:
        if root.reply_id is None:
            filters = {"post_id": root.post_id, "parent_reply_id": None}
        else:
            filters = {"post_id": root.post_id, "parent_reply_id": root.reply_id}
        rows = await backend.query(REPLIES, filters)
        return [ReplyNode.model_validate(row) for row in rows]

    return fetch


class ReplyCounter:
    """Counts descendants of a post or reply and caches per-post totals."""

    def __init__(self, fetch_children: ChildrenFetcher, yield_every: int | None = None) -> None:
        self._fetch_children = fetch_children
        self._yield_every = max(1, yield_every or settings.reply_count_yield_every)
        self._cache: dict[str, int] = {}
        self._generation: dict[str, int] = {}

    async def count_descendants(self, root: ReplyRoot) -> int:
        """Return the number of live replies below ``root``.

        Tombstoned replies are walked through, so their children still count,
        but they are not counted themselves.
        """
        total = 0
        visited = 0
        pending: deque[ReplyRoot] = deque([root])
        while pending:
            parent = pending.popleft()
            children = await self._fetch_children(parent)
            for child in children:
                if not child.deleted:
                    total += 1
                pending.append(ReplyRoot(post_id=root.post_id, reply_id=child.id))
                visited += 1
                if visited % self._yield_every == 0:
                    await asyncio.sleep(0)
        return total

    def cached(self, post_id: str) -> int | None:
        return self._cache.get(post_id)

    async def count_for_post(self, post_id: str) -> int:
        """Return the cached reply count for ``post_id``, computing it if needed."""
        while True:
            cached = self._cache.get(post_id)
            if cached is not None:
                return cached
            generation = self._generation.get(post_id, 0)
            total = await self.count_descendants(ReplyRoot(post_id=post_id))
            # Store only if no invalidation raced with the traversal.
            if self._generation.get(post_id, 0) == generation:
                self._cache[post_id] = total
                return total
            logger.debug("Reply count for %s invalidated mid-count; recounting", post_id)

    def invalidate(self, post_id: str) -> None:
        """Drop the cached count after a reply create/delete in ``post_id``'s tree."""
        self._cache.pop(post_id, None)
        self._generation[post_id] = self._generation.get(post_id, 0) + 1

    def forget(self, post_id: str) -> None:
        self._cache.pop(post_id, None)
        self._generation.pop(post_id, None)
