# src/vent_feed/schemas/__init__.py
"""Pydantic schemas for the vent feed engine."""

from .entities import (
    CATEGORY_ALL,
    Category,
    LikeEdge,
    Notification,
    NotificationKind,
    Post,
    ReplyNode,
    UserProfile,
)
from .view import (
    AggregateViewRecord,
    FeedItemOut,
    LinkPreviewOut,
    PostCreate,
    PublicProfile,
    ReplyCreate,
    UserCreate,
)

__all__ = [
    "CATEGORY_ALL", "Category",
    "LikeEdge",
    "Notification", "NotificationKind",
    "Post", "PostCreate",
    "ReplyNode", "ReplyCreate",
    "UserProfile", "UserCreate", "PublicProfile",
    "AggregateViewRecord",
    "FeedItemOut",
    "LinkPreviewOut",
]
