# src/vent_feed/models/notification.py
"""SQLAlchemy model for reply and like notifications."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from vent_feed.db.session import Base
from vent_feed.db.time import utcnow


class Notification(Base):
    """Notification created as a side effect of a like or reply."""

    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_recipient_id", "recipient_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    recipient_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    # "reply" or "like"
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    post_id: Mapped[str] = mapped_column(String(64), ForeignKey("posts.id"), nullable=False)
    read: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
