"""Pydantic schemas for the entities exchanged with the backend."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from vent_feed.db.time import utcnow

CATEGORY_ALL = "All"


class Category(str, Enum):
    """Fixed set of tags a thought can carry."""

    RANT = "Rant"
    JOY = "Joy"
    CONFESSION = "Confession"
    ADVICE = "Advice"
    RANDOM = "Random"
    LOVE = "Love"
    WORK = "Work"
    SCHOOL = "School"


class NotificationKind(str, Enum):
    REPLY = "reply"
    LIKE = "like"


class Post(BaseModel):
    """A top-level thought. Immutable apart from its tombstone flag."""

    id: str
    author_id: str
    body: str
    category: Category = Category.RANT
    created_at: datetime = Field(default_factory=utcnow)
    deleted: bool = False

    model_config = ConfigDict(from_attributes=True, frozen=True)


class LikeEdge(BaseModel):
    """Existence of a like by ``liker_id`` on ``post_id``."""

    post_id: str
    liker_id: str
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def key(self) -> tuple[str, str]:
        return (self.post_id, self.liker_id)


class ReplyNode(BaseModel):
    """A reply in the tree rooted at ``post_id``.

    Direct replies to the post have ``parent_reply_id`` set to None.
    """

    id: str
    post_id: str
    parent_reply_id: str | None = None
    author_id: str
    body: str
    created_at: datetime = Field(default_factory=utcnow)
    deleted: bool = False

    model_config = ConfigDict(from_attributes=True, frozen=True)


class Notification(BaseModel):
    id: str
    recipient_id: str
    sender_id: str
    kind: NotificationKind
    post_id: str
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True, frozen=True)


class UserProfile(BaseModel):
    """Public identity of an author.

    ``emoji`` is shown when no ``avatar_url`` has been uploaded.
    """

    id: str
    username: str
    avatar_url: str | None = None
    emoji: str = "\N{SLIGHTLY SMILING FACE}"
    public_profile: bool = True
    push_token: str | None = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def display_avatar(self) -> str:
        return self.avatar_url or self.emoji
