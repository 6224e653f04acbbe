# src/vent_feed/models/user.py
"""SQLAlchemy model for author profiles."""

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vent_feed.db.session import Base


class User(Base):
    """Public profile of an author. Usernames never change once created."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    emoji: Mapped[str] = mapped_column(Text, nullable=False, default="\N{SLIGHTLY SMILING FACE}")
    public_profile: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Registered push token; delivery itself happens outside this service.
    push_token: Mapped[str | None] = mapped_column(Text, nullable=True)
