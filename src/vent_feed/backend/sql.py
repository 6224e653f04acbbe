"""Embedded backend built on SQLAlchemy.

``SqlBackend`` stores entities through the ORM models in
``vent_feed.models`` and fans committed changes out to live subscribers
in-process. It also performs the side effects a hosted backend would run in
database triggers: creating like and reply notifications.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from vent_feed import models
from vent_feed.backend.base import (
    LIKES,
    NOTIFICATIONS,
    POSTS,
    REPLIES,
    USERS,
    ChangeEvent,
    ChangeType,
    Ordering,
    SortOrder,
    WriteMode,
    matches,
)
from vent_feed.core.errors import NotFound, TransientIOFailure, ValidationFailure
from vent_feed.core.settings import settings
from vent_feed.db.session import build_engine, build_session_factory, create_tables
from vent_feed.db.time import as_utc

# Configure logger for this module
logger = logging.getLogger(__name__)

_MODELS: dict[str, type[Any]] = {
    POSTS: models.Post,
    REPLIES: models.Reply,
    LIKES: models.PostLike,
    NOTIFICATIONS: models.Notification,
    USERS: models.User,
}

# Collections whose deletes leave a tombstone instead of removing the row.
_SOFT_DELETE = frozenset({POSTS, REPLIES})

_CLOSED = object()


@dataclass(eq=False)
class _Subscriber:
    filters: Mapping[str, Any] | None
    queue: asyncio.Queue[Any] = field(default_factory=asyncio.Queue)


def row_to_dict(row: Any) -> dict[str, Any]:
    """Convert an ORM row into a plain payload dictionary."""
    data: dict[str, Any] = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if column.key == "created_at" and value is not None:
            value = as_utc(value)
        data[column.key] = value
    return data


class SqlBackend:
    """``Backend`` implementation over a SQLAlchemy engine."""

    def __init__(
        self,
        engine: Engine | None = None,
        *,
        session_factory: sessionmaker[Session] | None = None,
        public_base_url: str | None = None,
        create_schema: bool = True,
    ) -> None:
        self.engine = engine or build_engine()
        self._session_factory = session_factory or build_session_factory(self.engine)
        self._public_base_url = (public_base_url or settings.public_blob_base_url).rstrip("/")
        self._subscribers: dict[str, set[_Subscriber]] = defaultdict(set)
        self._blobs: dict[str, bytes] = {}
        # Sessions may share one connection (in-memory SQLite), so access is serialized.
        self._db_lock = threading.Lock()
        self._closed = False
        if create_schema:
            create_tables(self.engine)

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        order: Ordering | None = None,
    ) -> list[dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._query_sync, collection, filters, order)
        except SQLAlchemyError as exc:
            logger.warning("Query on %s failed: %s", collection, exc)
            raise TransientIOFailure(f"Query on {collection} failed: {exc}") from exc

    def _query_sync(
        self,
        collection: str,
        filters: Mapping[str, Any] | None,
        order: Ordering | None,
    ) -> list[dict[str, Any]]:
        model = _model_for(collection)
        with self._db_lock, self._session_factory() as db:
            stmt = db.query(model)
            if filters:
                stmt = stmt.filter_by(**dict(filters))
            if order is not None:
                column = getattr(model, order.field)
                descending = order.direction == SortOrder.DESC
                stmt = stmt.order_by(column.desc() if descending else column.asc())
            return [row_to_dict(row) for row in stmt.all()]

    async def subscribe(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[ChangeEvent]:
        _model_for(collection)
        subscriber = _Subscriber(filters=dict(filters) if filters else None)
        # Register before the snapshot so nothing committed in between is lost;
        # consumers dedupe the overlap.
        self._subscribers[collection].add(subscriber)
        try:
            snapshot = await self.query(collection, filters)
            for entity in snapshot:
                yield ChangeEvent(type=ChangeType.CREATED, collection=collection, entity=entity)
            while True:
                item = await subscriber.queue.get()
                if item is _CLOSED:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self._subscribers[collection].discard(subscriber)

    async def write(
        self,
        collection: str,
        entity_id: str,
        payload: Mapping[str, Any],
        mode: WriteMode,
    ) -> None:
        if self._closed:
            raise TransientIOFailure("Backend is closed")
        try:
            events = await asyncio.to_thread(
                self._write_sync, collection, entity_id, dict(payload), mode
            )
        except SQLAlchemyError as exc:
            logger.warning("Write to %s/%s failed: %s", collection, entity_id, exc)
            raise TransientIOFailure(f"Write to {collection} failed: {exc}") from exc

        for event in events:
            self._publish(event)

    def _write_sync(
        self,
        collection: str,
        entity_id: str,
        payload: dict[str, Any],
        mode: WriteMode,
    ) -> list[ChangeEvent]:
        model = _model_for(collection)
        with self._db_lock, self._session_factory() as db:
            try:
                if mode == WriteMode.INSERT:
                    events = self._insert(db, collection, model, entity_id, payload)
                elif mode == WriteMode.UPDATE:
                    events = self._update(db, collection, model, entity_id, payload)
                else:
                    events = self._delete(db, collection, model, entity_id, payload)
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                if collection == USERS:
                    raise ValidationFailure("Username is already taken") from exc
                raise
            except SQLAlchemyError:
                db.rollback()
                raise
        return events

    def _insert(
        self,
        db: Session,
        collection: str,
        model: type[Any],
        entity_id: str,
        payload: dict[str, Any],
    ) -> list[ChangeEvent]:
        if collection == LIKES:
            existing = db.get(model, (payload["post_id"], payload["liker_id"]))
            if existing is not None:
                # Liking twice is a no-op, like an upsert keyed by liker.
                return []
        else:
            payload.setdefault("id", entity_id)

        row = model(**payload)
        db.add(row)
        db.flush()
        events = [
            ChangeEvent(type=ChangeType.CREATED, collection=collection, entity=row_to_dict(row))
        ]

        notification = self._notification_for(db, collection, row)
        if notification is not None:
            db.add(notification)
            db.flush()
            events.append(
                ChangeEvent(
                    type=ChangeType.CREATED,
                    collection=NOTIFICATIONS,
                    entity=row_to_dict(notification),
                )
            )
        return events

    def _update(
        self,
        db: Session,
        collection: str,
        model: type[Any],
        entity_id: str,
        payload: dict[str, Any],
    ) -> list[ChangeEvent]:
        row = db.get(model, _primary_key(collection, entity_id, payload))
        if row is None:
            raise NotFound(f"{collection}/{entity_id} does not exist")
        if collection == USERS and "username" in payload and payload["username"] != row.username:
            raise ValidationFailure("Usernames cannot be changed")
        if collection == NOTIFICATIONS and row.read and payload.get("read") is False:
            raise ValidationFailure("Read notifications cannot be marked unread")
        for key, value in payload.items():
            setattr(row, key, value)
        db.flush()
        return [
            ChangeEvent(type=ChangeType.UPDATED, collection=collection, entity=row_to_dict(row))
        ]

    def _delete(
        self,
        db: Session,
        collection: str,
        model: type[Any],
        entity_id: str,
        payload: dict[str, Any],
    ) -> list[ChangeEvent]:
        row = db.get(model, _primary_key(collection, entity_id, payload))
        if row is None:
            raise NotFound(f"{collection}/{entity_id} does not exist")
        if collection in _SOFT_DELETE:
            row.deleted = True
            db.flush()
        else:
            db.delete(row)
        return [
            ChangeEvent(type=ChangeType.DELETED, collection=collection, entity=row_to_dict(row))
        ]

    @staticmethod
    def _notification_for(db: Session, collection: str, row: Any) -> models.Notification | None:
        if collection == LIKES:
            sender_id, kind = row.liker_id, "like"
        elif collection == REPLIES:
            sender_id, kind = row.author_id, "reply"
        else:
            return None

        post = db.get(models.Post, row.post_id)
        if post is None or post.author_id == sender_id:
            return None
        return models.Notification(
            id=uuid.uuid4().hex,
            recipient_id=post.author_id,
            sender_id=sender_id,
            kind=kind,
            post_id=post.id,
            read=False,
        )

    def _publish(self, event: ChangeEvent) -> None:
        for subscriber in list(self._subscribers.get(event.collection, ())):
            if matches(event.entity, subscriber.filters):
                subscriber.queue.put_nowait(event)

    def fail_subscribers(self, collection: str, error: BaseException) -> None:
        """Terminate every live stream on ``collection`` with ``error``.

        Simulates a dropped realtime channel.
        """
        for subscriber in list(self._subscribers.get(collection, ())):
            subscriber.queue.put_nowait(error)

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscribers.get(collection, ()))

    async def upload_blob(self, data: bytes, destination_key: str) -> str:
        if not data:
            raise ValidationFailure("Cannot upload an empty blob")
        self._blobs[destination_key] = bytes(data)
        return f"{self._public_base_url}/{destination_key}"

    def get_blob(self, key: str) -> bytes:
        try:
            return self._blobs[key]
        except KeyError as exc:
            raise NotFound(f"Blob {key} does not exist") from exc

    async def close(self) -> None:
        self._closed = True
        for subscribers in self._subscribers.values():
            for subscriber in list(subscribers):
                subscriber.queue.put_nowait(_CLOSED)


def _model_for(collection: str) -> type[Any]:
    try:
        return _MODELS[collection]
    except KeyError as exc:
        raise ValueError(f"Unknown collection: {collection}") from exc


def _primary_key(collection: str, entity_id: str, payload: Mapping[str, Any]) -> Any:
    if collection == LIKES:
        if "post_id" in payload and "liker_id" in payload:
            return (payload["post_id"], payload["liker_id"])
        post_id, _, liker_id = entity_id.partition(":")
        return (post_id, liker_id)
    return entity_id
