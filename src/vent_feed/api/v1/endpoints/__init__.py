# src/vent_feed/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .blobs import router as blobs_router
from .feed import router as feed_router
from .likes import router as likes_router
from .notifications import router as notifications_router
from .posts import router as posts_router
from .users import router as users_router

__all__ = [
    "blobs_router",
    "feed_router",
    "likes_router",
    "notifications_router",
    "posts_router",
    "users_router",
]
