# src/vent_feed/backend/__init__.py
"""Backend adapters consumed by the feed engine."""

from __future__ import annotations

from .base import (
    LIKES,
    NOTIFICATIONS,
    POSTS,
    REPLIES,
    USERS,
    Backend,
    ChangeEvent,
    ChangeType,
    Ordering,
    SortOrder,
    WriteMode,
)


def build_backend(access_token: str | None = None) -> Backend:
    """Return the backend selected by settings."""
    from vent_feed.core.settings import settings

    if settings.rest_enabled:
        from .rest import RestBackend

        return RestBackend(access_token=access_token)

    from .sql import SqlBackend

    return SqlBackend()


__all__ = [
    "LIKES", "NOTIFICATIONS", "POSTS", "REPLIES", "USERS",
    "Backend",
    "ChangeEvent", "ChangeType",
    "Ordering", "SortOrder",
    "WriteMode",
    "build_backend",
]
