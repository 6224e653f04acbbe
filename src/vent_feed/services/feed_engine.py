"""Feed engine: the object a presentation layer talks to.

The engine wires the multiplexer, view builder, reply counter, optimistic
coordinator and projection together around an explicit viewer session and
backend. It exposes the displayed records, like/unlike actions, filter and
search setters, and per-operation loading and error signals.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import ValidationError

from vent_feed.backend.base import POSTS, Backend, Ordering, SortOrder
from vent_feed.core.errors import FeedError, TransientIOFailure
from vent_feed.core.session import ViewerSession
from vent_feed.schemas import CATEGORY_ALL, AggregateViewRecord, Category, Post
from vent_feed.services.aggregator import AggregateViewBuilder
from vent_feed.services.link_preview import LinkPreviewResolver
from vent_feed.services.multiplexer import ResubscribePolicy, SubscriptionMultiplexer
from vent_feed.services.notifications import NotificationFeed
from vent_feed.services.optimistic import OptimisticMutationCoordinator
from vent_feed.services.posts import PostService
from vent_feed.services.projection import normalize_category, project
from vent_feed.services.reply_counter import ReplyCounter, backend_children_fetcher

# Configure logger for this module
logger = logging.getLogger(__name__)

POSTS_SOURCE = "posts"
FEED_OPERATION = "feed"


@dataclass
class OperationStatus:
    """Loading flag and last error of one named operation."""

    loading: bool = False
    error: BaseException | None = None


class FeedEngine:
    """Live, filtered feed of aggregate view records for one viewer."""

    def __init__(
        self,
        session: ViewerSession,
        backend: Backend,
        *,
        policy: ResubscribePolicy | None = None,
        reply_counter: ReplyCounter | None = None,
    ) -> None:
        self.session = session
        self.backend = backend
        self.multiplexer = SubscriptionMultiplexer(backend, policy)
        self.reply_counter = reply_counter or ReplyCounter(backend_children_fetcher(backend))
        self.builder = AggregateViewBuilder(
            session.viewer_id, self.multiplexer, self.reply_counter
        )
        self.coordinator = OptimisticMutationCoordinator(backend, self.builder)
        self.posts = PostService(session, backend)
        self.link_previews = LinkPreviewResolver()
        self.notifications: NotificationFeed | None = None
        if session.authenticated:
            self.notifications = NotificationFeed(session, backend, self.multiplexer)

        self._category: str = CATEGORY_ALL
        self._search: str = ""
        self._visible: list[str] = []
        self._status: dict[str, OperationStatus] = {}
        self._listeners: list[Callable[[], None]] = []
        self._started = False

        self.builder.add_listener(self._on_record_changed)
        self.builder.add_error_listener(self._on_stream_error)

    # --- Lifecycle ------------------------------------------------------------------
    async def start(self) -> None:
        """Load the current feed, then follow it live."""
        if self._started:
            return
        self._started = True
        status = self._begin(FEED_OPERATION)
        try:
            rows = await self.backend.query(
                POSTS, {"deleted": False}, Ordering("created_at", SortOrder.DESC)
            )
            for row in rows:
                try:
                    self.builder.apply_post(Post.model_validate(row))
                except ValidationError as e:
                    logger.warning("Skipping malformed post %s: %s", row.get("id"), e)
        except TransientIOFailure as e:
            status.error = e
            self._started = False
            raise
        finally:
            status.loading = False
            self._refresh()

        self.multiplexer.subscribe(
            POSTS_SOURCE, POSTS, handler=self.builder.handle_post_event
        )
        if self.notifications is not None:
            self.notifications.start()
        logger.info("Feed started with %d posts", len(self.builder))

    async def close(self) -> None:
        await self.multiplexer.close()
        await self.builder.close()
        await self.link_previews.close()
        self._started = False

    async def __aenter__(self) -> FeedEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- View -----------------------------------------------------------------------
    @property
    def category(self) -> str:
        return self._category

    @property
    def search(self) -> str:
        return self._search

    def set_category(self, category: Category | str | None) -> None:
        self._category = normalize_category(category)
        self._refresh()

    def set_search(self, search: str | None) -> None:
        self._search = search or ""
        self._refresh()

    def visible_ids(self) -> list[str]:
        return list(self._visible)

    def records(self) -> list[AggregateViewRecord]:
        """Displayed records in feed order, after filter and search."""
        records = []
        for post_id in self._visible:
            record = self.builder.get(post_id)
            if record is not None:
                records.append(record)
        return records

    def all_records(self) -> list[AggregateViewRecord]:
        return self.builder.records()

    def records_by(self, author_id: str) -> list[AggregateViewRecord]:
        """Every record by ``author_id`` in feed order, ignoring filter and search."""
        records = self.builder.records()
        wanted = set(project(records, author_id=author_id))
        return [record for record in records if record.post.id in wanted]

    def get(self, post_id: str) -> AggregateViewRecord | None:
        return self.builder.get(post_id)

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    # --- Signals --------------------------------------------------------------------
    def status(self, operation: str) -> OperationStatus:
        return self._status.setdefault(operation, OperationStatus())

    @property
    def loading(self) -> bool:
        return self.status(FEED_OPERATION).loading

    @property
    def error(self) -> BaseException | None:
        return self.status(FEED_OPERATION).error

    # --- Actions --------------------------------------------------------------------
    async def like(self, post_id: str) -> bool:
        return await self._run(
            f"like:{post_id}", self.coordinator.like_attempt(post_id, self.session.viewer_id)
        )

    async def unlike(self, post_id: str) -> bool:
        return await self._run(
            f"like:{post_id}", self.coordinator.unlike_attempt(post_id, self.session.viewer_id)
        )

    async def toggle_like(self, post_id: str) -> bool:
        return await self._run(
            f"like:{post_id}", self.coordinator.toggle(post_id, self.session.viewer_id)
        )

    async def _run(self, operation: str, action: Awaitable[bool]) -> bool:
        status = self._begin(operation)
        try:
            return await action
        except FeedError as e:
            status.error = e
            raise
        finally:
            status.loading = False

    # --- Internals ------------------------------------------------------------------
    def _begin(self, operation: str) -> OperationStatus:
        status = self.status(operation)
        status.loading = True
        status.error = None
        return status

    def _refresh(self) -> None:
        self._visible = project(self.builder.records(), self._category, self._search)
        for listener in list(self._listeners):
            listener()

    def _on_record_changed(self, post_id: str) -> None:
        self._refresh()

    def _on_stream_error(self, source_key: str, error: BaseException) -> None:
        logger.warning("Live source %s reported an error: %s", source_key, error)
        operation = FEED_OPERATION if source_key == POSTS_SOURCE else source_key
        self.status(operation).error = error
        for listener in list(self._listeners):
            listener()
