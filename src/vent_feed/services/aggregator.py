"""Aggregate view building for the feed.

The AggregateViewBuilder keeps one AggregateViewRecord per visible post and
folds every live stream into it:

- post events upsert or remove records
- like edges are tracked as a set per post, so duplicate or reordered
  deliveries converge on the same count
- profile events propagate to every record of that author through a
  reverse index
- reply events invalidate the cached reply count of their post

Records are rebuilt from this state and swapped whole after each event.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from vent_feed.backend.base import LIKES, REPLIES, USERS
from vent_feed.core.errors import FeedError, NotFound
from vent_feed.schemas import AggregateViewRecord, Post, UserProfile
from vent_feed.services.multiplexer import MuxEvent, SubscriptionMultiplexer
from vent_feed.services.reply_counter import ReplyCounter

# Configure logger for this module
logger = logging.getLogger(__name__)

RecordListener = Callable[[str], None]
ErrorListener = Callable[[str, BaseException], None]


def likes_source(post_id: str) -> str:
    return f"likes:{post_id}"


def replies_source(post_id: str) -> str:
    return f"replies:{post_id}"


def profile_source(author_id: str) -> str:
    return f"profile:{author_id}"


@dataclass
class _Overlay:
    """Optimistic like state of the viewer on one post.

    A settling overlay is dropped as soon as confirmed edges agree with it.
    """

    liked: bool
    settling: bool = False


class AggregateViewBuilder:
    """Maintains post id -> AggregateViewRecord for one viewer."""

    def __init__(
        self,
        viewer_id: str | None,
        multiplexer: SubscriptionMultiplexer | None = None,
        reply_counter: ReplyCounter | None = None,
    ) -> None:
        self.viewer_id = viewer_id
        self._mux = multiplexer
        self._reply_counter = reply_counter
        self._records: dict[str, AggregateViewRecord] = {}
        self._posts: dict[str, Post] = {}
        # Confirmed like edges, including edges for posts not seen yet.
        self._likers: dict[str, set[str]] = defaultdict(set)
        self._overlays: dict[str, _Overlay] = {}
        self._profiles: dict[str, UserProfile | None] = {}
        self._posts_by_author: dict[str, set[str]] = defaultdict(set)
        self._count_tasks: dict[str, asyncio.Task[None]] = {}
        self._recount: set[str] = set()
        self._listeners: list[RecordListener] = []
        self._error_listeners: list[ErrorListener] = []

    # --- Read side ------------------------------------------------------------------
    def get(self, post_id: str) -> AggregateViewRecord | None:
        return self._records.get(post_id)

    def records(self) -> list[AggregateViewRecord]:
        """Return records in canonical order: newest first, id as tie-break."""
        return sorted(
            self._records.values(),
            key=lambda record: (record.post.created_at, record.post.id),
            reverse=True,
        )

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, post_id: object) -> bool:
        return post_id in self._records

    def add_listener(self, listener: RecordListener) -> None:
        self._listeners.append(listener)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    # --- Posts ----------------------------------------------------------------------
    def apply_post(self, post: Post) -> None:
        """Upsert the record for ``post``; tombstoned posts are removed."""
        if post.deleted:
            self.remove_post(post.id)
            return

        previous = self._posts.get(post.id)
        if previous is not None and previous.author_id != post.author_id:
            self._unindex_author(previous.author_id, post.id)
        self._posts[post.id] = post
        self._posts_by_author[post.author_id].add(post.id)

        if previous is None:
            self._open_post_streams(post)
        self._rebuild(post.id)

    def remove_post(self, post_id: str) -> None:
        """Drop the record and every stream scoped to ``post_id``."""
        post = self._posts.pop(post_id, None)
        self._records.pop(post_id, None)
        self._likers.pop(post_id, None)
        self._overlays.pop(post_id, None)
        self._recount.discard(post_id)

        task = self._count_tasks.pop(post_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self._reply_counter is not None:
            self._reply_counter.forget(post_id)
        if self._mux is not None:
            self._mux.unsubscribe_key(likes_source(post_id))
            self._mux.unsubscribe_key(replies_source(post_id))
        if post is not None:
            self._unindex_author(post.author_id, post_id)
            logger.debug("Removed post %s from the view", post_id)
            self._notify(post_id)

    def handle_post_event(self, event: MuxEvent) -> None:
        if event.is_error:
            self._notify_error(event)
            return
        if event.tombstone:
            if event.entity_id is not None:
                self.remove_post(event.entity_id)
            return
        post = self._parse(Post, event)
        if post is not None:
            self.apply_post(post)

    # --- Likes ----------------------------------------------------------------------
    def apply_like(self, post_id: str, liker_id: str, exists: bool) -> None:
        """Record that the (post, liker) edge exists or not.

        Applying the same state twice is a no-op.
        """
        likers = self._likers[post_id]
        if exists:
            likers.add(liker_id)
        else:
            likers.discard(liker_id)
        if liker_id == self.viewer_id:
            self._settle_overlay(post_id)
        if post_id in self._posts:
            self._rebuild(post_id)

    def handle_like_event(self, event: MuxEvent) -> None:
        if event.is_error:
            self._notify_error(event)
            return
        payload = event.payload or {}
        post_id = payload.get("post_id")
        liker_id = payload.get("liker_id")
        if not post_id or not liker_id:
            logger.warning("Ignoring like event without post/liker: %s", event.entity_id)
            return
        self.apply_like(str(post_id), str(liker_id), exists=not event.tombstone)

    def like_count(self, post_id: str) -> int:
        """Confirmed edge count, ignoring optimistic state."""
        return len(self._likers.get(post_id, ()))

    # --- Optimistic overlay ---------------------------------------------------------
    def overlay(self, post_id: str) -> bool | None:
        state = self._overlays.get(post_id)
        return None if state is None else state.liked

    def set_overlay(self, post_id: str, liked: bool) -> None:
        self._overlays[post_id] = _Overlay(liked=liked)
        self._rebuild(post_id)

    def restore_overlay(self, post_id: str, liked: bool | None) -> None:
        """Put the overlay back to ``liked``; None removes it entirely."""
        if liked is None:
            self._overlays.pop(post_id, None)
        else:
            self._overlays[post_id] = _Overlay(liked=liked, settling=True)
            self._settle_overlay(post_id)
        self._rebuild(post_id)

    def release_overlay(self, post_id: str) -> None:
        """Let the overlay go once confirmed edges catch up with it."""
        state = self._overlays.get(post_id)
        if state is None:
            return
        state.settling = True
        self._settle_overlay(post_id)
        self._rebuild(post_id)

    def _settle_overlay(self, post_id: str) -> None:
        state = self._overlays.get(post_id)
        if state is None or not state.settling:
            return
        confirmed = self.viewer_id in self._likers.get(post_id, ())
        if confirmed == state.liked:
            del self._overlays[post_id]

    # --- Profiles -------------------------------------------------------------------
    def apply_profile(self, author_id: str, profile: UserProfile | None) -> None:
        """Cache ``profile`` and push it into every record by that author."""
        self._profiles[author_id] = profile
        for post_id in list(self._posts_by_author.get(author_id, ())):
            self._rebuild(post_id)

    def handle_profile_event(self, event: MuxEvent) -> None:
        if event.is_error:
            self._notify_error(event)
            return
        if event.tombstone:
            if event.entity_id is not None:
                self.apply_profile(event.entity_id, None)
            return
        profile = self._parse(UserProfile, event)
        if profile is not None:
            self.apply_profile(profile.id, profile)

    # --- Replies --------------------------------------------------------------------
    def handle_reply_event(self, event: MuxEvent) -> None:
        if event.is_error:
            self._notify_error(event)
            return
        post_id = (event.payload or {}).get("post_id")
        if post_id:
            self.invalidate_replies(str(post_id))

    def invalidate_replies(self, post_id: str) -> None:
        """Drop the cached reply count of ``post_id`` and schedule a recount."""
        if self._reply_counter is None:
            return
        self._reply_counter.invalidate(post_id)
        if post_id in self._posts:
            self._schedule_count(post_id)

    def apply_reply_count(self, post_id: str, count: int) -> None:
        record = self._records.get(post_id)
        if record is None or record.reply_count == count:
            return
        self._swap(record.model_copy(update={"reply_count": count}))

    def _schedule_count(self, post_id: str) -> None:
        counter = self._reply_counter
        if counter is None:
            return
        task = self._count_tasks.get(post_id)
        if task is not None and not task.done():
            # Coalesce bursts, such as the initial snapshot of a reply stream.
            self._recount.add(post_id)
            return
        self._count_tasks[post_id] = asyncio.create_task(
            self._count_replies(counter, post_id), name=f"reply-count:{post_id}"
        )

    async def _count_replies(self, counter: ReplyCounter, post_id: str) -> None:
        try:
            while True:
                self._recount.discard(post_id)
                count = await counter.count_for_post(post_id)
                if post_id not in self._recount:
                    break
            self.apply_reply_count(post_id, count)
        except NotFound:
            logger.info("Post %s vanished while counting replies; removing it", post_id)
            self.remove_post(post_id)
        except FeedError as e:
            logger.warning("Counting replies for %s failed: %s", post_id, e)
            self._emit_error(replies_source(post_id), e)
        finally:
            if self._count_tasks.get(post_id) is asyncio.current_task():
                del self._count_tasks[post_id]

    # --- Lifecycle ------------------------------------------------------------------
    async def close(self) -> None:
        tasks = [task for task in self._count_tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._count_tasks.clear()

    # --- Internals ------------------------------------------------------------------
    def _open_post_streams(self, post: Post) -> None:
        if self._mux is None:
            return
        if self._mux.get(likes_source(post.id)) is None:
            self._mux.subscribe(
                likes_source(post.id), LIKES, {"post_id": post.id},
                handler=self.handle_like_event,
            )
        if self._reply_counter is not None and self._mux.get(replies_source(post.id)) is None:
            self._mux.subscribe(
                replies_source(post.id), REPLIES, {"post_id": post.id},
                handler=self.handle_reply_event,
            )
        if self._mux.get(profile_source(post.author_id)) is None:
            self._mux.subscribe(
                profile_source(post.author_id), USERS, {"id": post.author_id},
                handler=self.handle_profile_event,
            )

    def _unindex_author(self, author_id: str, post_id: str) -> None:
        posts = self._posts_by_author.get(author_id)
        if posts is None:
            return
        posts.discard(post_id)
        if not posts:
            del self._posts_by_author[author_id]
            self._profiles.pop(author_id, None)
            if self._mux is not None:
                self._mux.unsubscribe_key(profile_source(author_id))

    def _rebuild(self, post_id: str) -> None:
        post = self._posts.get(post_id)
        if post is None:
            return

        likers = self._likers.get(post_id, set())
        confirmed = self.viewer_id is not None and self.viewer_id in likers
        overlay = self._overlays.get(post_id)
        liked = confirmed if overlay is None else overlay.liked
        like_count = len(likers)
        if liked and not confirmed:
            like_count += 1
        elif confirmed and not liked:
            like_count -= 1

        previous = self._records.get(post_id)
        if previous is not None:
            reply_count = previous.reply_count
        elif self._reply_counter is not None:
            reply_count = self._reply_counter.cached(post_id) or 0
        else:
            reply_count = 0

        self._swap(
            AggregateViewRecord(
                post=post,
                like_count=max(like_count, 0),
                is_liked_by_viewer=liked,
                reply_count=reply_count,
                author=self._profiles.get(post.author_id),
            )
        )

    def _swap(self, record: AggregateViewRecord) -> None:
        if self._records.get(record.post_id) == record:
            return
        self._records[record.post_id] = record
        self._notify(record.post_id)

    def _notify(self, post_id: str) -> None:
        for listener in list(self._listeners):
            listener(post_id)

    def _notify_error(self, event: MuxEvent) -> None:
        if event.error is not None:
            self._emit_error(event.source_key, event.error)

    def _emit_error(self, source_key: str, error: BaseException) -> None:
        for listener in list(self._error_listeners):
            listener(source_key, error)

    @staticmethod
    def _parse(model: Any, event: MuxEvent) -> Any:
        try:
            return model.model_validate(dict(event.payload or {}))
        except ValidationError as e:
            logger.warning(
                "Dropping malformed %s event %s: %s", event.source_key, event.entity_id, e
            )
            return None
