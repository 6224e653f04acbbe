"""Live notification inbox for the signed-in viewer."""

from __future__ import annotations

import logging
from collections.abc import Callable

from pydantic import ValidationError

from vent_feed.backend.base import NOTIFICATIONS, Backend, WriteMode
from vent_feed.core.errors import ActionForbidden, NotFound
from vent_feed.core.session import ViewerSession
from vent_feed.schemas import Notification
from vent_feed.services.multiplexer import MuxEvent, StreamHandle, SubscriptionMultiplexer

# Configure logger for this module
logger = logging.getLogger(__name__)

INBOX_SOURCE = "notifications"


class NotificationFeed:
    """Keeps the viewer's notifications in sync, newest first.

    The backend creates notifications as a side effect of likes and replies;
    this feed only reads them and flips their read flag.
    """

    def __init__(
        self,
        session: ViewerSession,
        backend: Backend,
        multiplexer: SubscriptionMultiplexer,
    ) -> None:
        self.session = session
        self.backend = backend
        self._mux = multiplexer
        self._items: dict[str, Notification] = {}
        self._handle: StreamHandle | None = None
        self._listeners: list[Callable[[], None]] = []
        self.error: BaseException | None = None

    def start(self) -> None:
        recipient_id = self.session.require_viewer("see notifications")
        if self._handle is not None and not self._handle.cancelled:
            return
        self._handle = self._mux.subscribe(
            INBOX_SOURCE,
            NOTIFICATIONS,
            {"recipient_id": recipient_id},
            handler=self._on_event,
        )

    def stop(self) -> None:
        self._mux.unsubscribe(self._handle)
        self._handle = None

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def items(self) -> list[Notification]:
        return sorted(
            self._items.values(), key=lambda item: (item.created_at, item.id), reverse=True
        )

    @property
    def unread_count(self) -> int:
        return sum(1 for item in self._items.values() if not item.read)

    async def mark_read(self, notification_id: str) -> None:
        """Mark one notification read. Already-read notifications are left alone."""
        viewer_id = self.session.require_viewer("update notifications")
        item = self._items.get(notification_id)
        if item is None:
            raise NotFound(f"Notification {notification_id} does not exist")
        if item.recipient_id != viewer_id:
            raise ActionForbidden("Only the recipient can mark a notification as read")
        if item.read:
            return
        await self.backend.write(NOTIFICATIONS, notification_id, {"read": True}, WriteMode.UPDATE)
        self._apply(item.model_copy(update={"read": True}))

    async def mark_all_read(self) -> int:
        unread = [item.id for item in self._items.values() if not item.read]
        for notification_id in unread:
            await self.mark_read(notification_id)
        return len(unread)

    def _on_event(self, event: MuxEvent) -> None:
        if event.is_error:
            self.error = event.error
            self._notify()
            return
        if event.tombstone:
            if event.entity_id is not None and self._items.pop(event.entity_id, None):
                self._notify()
            return
        try:
            item = Notification.model_validate(dict(event.payload or {}))
        except ValidationError as e:
            logger.warning("Dropping malformed notification %s: %s", event.entity_id, e)
            return
        self._apply(item)

    def _apply(self, item: Notification) -> None:
        current = self._items.get(item.id)
        if current is not None and current.read and not item.read:
            # The read flag never goes back to unread.
            item = item.model_copy(update={"read": True})
        if current == item:
            return
        self._items[item.id] = item
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()
