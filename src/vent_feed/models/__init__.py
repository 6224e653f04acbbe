# src/vent_feed/models/__init__.py
"""SQLAlchemy models for the embedded backend."""

from .like import PostLike
from .notification import Notification
from .post import Post, Reply
from .user import User

__all__ = [
    "PostLike",
    "Notification",
    "Post", "Reply",
    "User",
]
