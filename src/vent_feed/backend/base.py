"""Interface of the external backend the engine is built on.

The engine never talks to a storage SDK directly. It consumes one-shot
queries, live change streams, durable writes and blob uploads through the
``Backend`` protocol below, so any event-sourced service can sit behind it.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

# Collection names
POSTS = "posts"
LIKES = "likes"
REPLIES = "replies"
NOTIFICATIONS = "notifications"
USERS = "users"

COLLECTIONS = (POSTS, LIKES, REPLIES, NOTIFICATIONS, USERS)


class ChangeType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class WriteMode(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class Ordering:
    """Sort order for ``Backend.query``."""

    field: str
    direction: SortOrder = SortOrder.DESC


@dataclass(frozen=True)
class ChangeEvent:
    """Single change delivered by a live subscription."""

    type: ChangeType
    collection: str
    entity: Mapping[str, Any] = field(default_factory=dict)


def entity_key(collection: str, entity: Mapping[str, Any]) -> str:
    """Return the identity of an entity within its collection.

    Like edges have no id of their own; they are keyed by (post, liker).
    """
    if collection == LIKES:
        return f"{entity['post_id']}:{entity['liker_id']}"
    return str(entity["id"])


def matches(entity: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    """Return True when ``entity`` satisfies every equality filter."""
    if not filters:
        return True
    return all(entity.get(name) == value for name, value in filters.items())


@runtime_checkable
class Backend(Protocol):
    """Generic backend consumed by the feed engine."""

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        order: Ordering | None = None,
    ) -> list[dict[str, Any]]:
        """One-shot read of every entity matching ``filters``."""
        ...

    def subscribe(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[ChangeEvent]:
        """Open a live stream of changes for matching entities.

        The stream first replays the current matching entities as
        ``created`` events, then yields changes as they happen. Closing the
        iterator releases the subscription.
        """
        ...

    async def write(
        self,
        collection: str,
        entity_id: str,
        payload: Mapping[str, Any],
        mode: WriteMode,
    ) -> None:
        """Durably insert, update or delete one entity.

        Raises ``TransientIOFailure`` on transport errors and ``NotFound``
        when an update or delete targets a missing entity.
        """
        ...

    async def upload_blob(self, data: bytes, destination_key: str) -> str:
        """Store ``data`` and return its public URL."""
        ...

    async def close(self) -> None:
        ...
