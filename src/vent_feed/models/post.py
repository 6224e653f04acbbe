# src/vent_feed/models/post.py
"""SQLAlchemy models for posts and replies."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vent_feed.db.session import Base
from vent_feed.db.time import utcnow


class Post(Base):
    """Top-level thought shared by a user.

    Deleting a post only sets ``deleted``; replies and notifications keep
    pointing at the tombstone.
    """

    __tablename__ = "posts"
    __table_args__ = (Index("ix_posts_created_at", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    author_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    deleted: Mapped[bool] = mapped_column(default=False, nullable=False)


class Reply(Base):
    """Reply node; ``parent_reply_id`` is NULL for direct replies to the post."""

    __tablename__ = "replies"
    __table_args__ = (
        Index("ix_replies_post_id", "post_id"),
        Index("ix_replies_parent_reply_id", "parent_reply_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    post_id: Mapped[str] = mapped_column(String(64), ForeignKey("posts.id"), nullable=False)
    parent_reply_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("replies.id"),
        nullable=True,
    )
    author_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    deleted: Mapped[bool] = mapped_column(default=False, nullable=False)
