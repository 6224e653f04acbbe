# src/vent_feed/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    blobs_router,
    feed_router,
    likes_router,
    notifications_router,
    posts_router,
    users_router,
)

__all__ = [
    "blobs_router",
    "feed_router",
    "likes_router",
    "notifications_router",
    "posts_router",
    "users_router",
]
