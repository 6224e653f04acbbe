# src/vent_feed/models/like.py
"""Models capturing likes on posts."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from vent_feed.db.session import Base
from vent_feed.db.time import utcnow


class PostLike(Base):
    """Per-user like on a post."""

    __tablename__ = "likes"
    __table_args__ = (Index("ix_likes_post_id", "post_id"),)

    post_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("posts.id", ondelete="CASCADE"),
        primary_key=True,
    )
    liker_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id"),
        primary_key=True,
    )

    # Composite primary key prevents duplicate likes from the same user.

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
