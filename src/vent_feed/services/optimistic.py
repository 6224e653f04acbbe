"""Optimistic like/unlike coordination.

A like shows up in the view before the backend has confirmed it. The
coordinator records the viewer's intent as an overlay on the aggregate view,
performs the durable write, and on a transient failure restores the overlay
that was in place before the attempt. Writes for one (post, viewer) pair are
serialized, and a repeated tap in the same direction while a write is in
flight is ignored.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from typing import Any

from vent_feed.backend.base import LIKES, Backend, WriteMode
from vent_feed.core.errors import ActionForbidden, NotFound, TransientIOFailure
from vent_feed.db.time import utcnow
from vent_feed.schemas import AggregateViewRecord
from vent_feed.services.aggregator import AggregateViewBuilder

# Configure logger for this module
logger = logging.getLogger(__name__)


def like_key(post_id: str, liker_id: str) -> str:
    return f"{post_id}:{liker_id}"


class OptimisticMutationCoordinator:
    """Applies like/unlike intents immediately and reconciles with the backend."""

    def __init__(self, backend: Backend, builder: AggregateViewBuilder) -> None:
        self.backend = backend
        self.builder = builder
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._intent: dict[str, bool] = {}
        self._waiters: dict[str, int] = {}
        # Overlay in place before the first pending attempt of each key.
        self._base: dict[str, bool | None] = {}
        self._latest: dict[str, int] = {}
        self._tokens = itertools.count()

    def pending(self, post_id: str, viewer_id: str) -> bool:
        return like_key(post_id, viewer_id) in self._intent

    async def like_attempt(self, post_id: str, viewer_id: str | None) -> bool:
        """Like ``post_id`` as ``viewer_id``.

        Returns False when the attempt was ignored as a duplicate, True once
        the write has completed. Raises ``ActionForbidden`` for signed-out
        viewers and self-likes, and re-raises ``TransientIOFailure`` after
        rolling the view back.
        """
        return await self._attempt(post_id, viewer_id, liked=True)

    async def unlike_attempt(self, post_id: str, viewer_id: str | None) -> bool:
        return await self._attempt(post_id, viewer_id, liked=False)

    async def toggle(self, post_id: str, viewer_id: str | None) -> bool:
        """Flip the viewer's current like state on ``post_id``."""
        record = self.builder.get(post_id)
        if record is None:
            raise NotFound(f"Post {post_id} is not in the feed")
        if record.is_liked_by_viewer:
            return await self.unlike_attempt(post_id, viewer_id)
        return await self.like_attempt(post_id, viewer_id)

    def _check(self, post_id: str, viewer_id: str | None) -> tuple[str, AggregateViewRecord]:
        if viewer_id is None:
            raise ActionForbidden("You must be logged in to like thoughts")
        if viewer_id != self.builder.viewer_id:
            raise ActionForbidden("Likes can only be changed by the signed-in viewer")
        record = self.builder.get(post_id)
        if record is None:
            raise NotFound(f"Post {post_id} is not in the feed")
        if record.post.author_id == viewer_id:
            raise ActionForbidden("You cannot like your own thought")
        return viewer_id, record

    async def _attempt(self, post_id: str, viewer_id: str | None, liked: bool) -> bool:
        viewer_id, record = self._check(post_id, viewer_id)
        key = like_key(post_id, viewer_id)

        if self._intent.get(key) == liked:
            logger.debug("Ignoring duplicate %s on %s", "like" if liked else "unlike", post_id)
            return False
        if key not in self._intent and record.is_liked_by_viewer == liked:
            return False

        if key not in self._waiters:
            self._base[key] = self.builder.overlay(post_id)
        token = next(self._tokens)
        self._latest[key] = token
        self._intent[key] = liked
        self._waiters[key] = self._waiters.get(key, 0) + 1
        self.builder.set_overlay(post_id, liked)

        try:
            async with self._locks[key]:
                if self._latest.get(key) != token:
                    # A later attempt owns the outcome and writes its own state.
                    return True
                try:
                    await self._write(post_id, viewer_id, liked)
                except TransientIOFailure as e:
                    logger.warning(
                        "%s of %s failed, rolling back: %s",
                        "Like" if liked else "Unlike", post_id, e,
                    )
                    if self._latest.get(key) == token:
                        self._intent.pop(key, None)
                        if post_id in self.builder:
                            self.builder.restore_overlay(post_id, self._base.get(key))
                    raise
            return True
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)
                self._latest.pop(key, None)
                self._base.pop(key, None)
                if key in self._intent:
                    del self._intent[key]
                    self.builder.release_overlay(post_id)

    async def _write(self, post_id: str, viewer_id: str, liked: bool) -> None:
        key = like_key(post_id, viewer_id)
        payload: dict[str, Any] = {"post_id": post_id, "liker_id": viewer_id}
        if liked:
            payload["created_at"] = utcnow()
            await self.backend.write(LIKES, key, payload, WriteMode.INSERT)
            return
        try:
            await self.backend.write(LIKES, key, payload, WriteMode.DELETE)
        except NotFound:
            logger.debug("Like %s was already gone", key)
