"""Derived view records and request payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from vent_feed.schemas.entities import Category, Post, UserProfile

FALLBACK_USERNAME = "anonymous"


class AggregateViewRecord(BaseModel):
    """Post combined with its live counters and resolved author profile.

    Records are frozen; the view builder swaps whole records so a reader
    never observes a half-applied update.
    """

    post: Post
    like_count: int = Field(default=0, ge=0)
    is_liked_by_viewer: bool = False
    reply_count: int = Field(default=0, ge=0)
    author: UserProfile | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def post_id(self) -> str:
        return self.post.id

    @property
    def author_username(self) -> str:
        """Username for display and search; placeholder until resolved."""
        if self.author is None:
            return FALLBACK_USERNAME
        return self.author.username

    @property
    def author_avatar(self) -> str:
        if self.author is None:
            return UserProfile.model_fields["emoji"].default
        return self.author.display_avatar


class PostCreate(BaseModel):
    """Schema for sharing a new thought."""

    body: str
    category: Category = Category.RANT


class ReplyCreate(BaseModel):
    """Schema for replying to a post or to another reply."""

    post_id: str
    body: str
    parent_reply_id: str | None = None


class FeedItemOut(BaseModel):
    """Flattened aggregate record returned by the API."""

    id: str
    author_id: str
    username: str
    avatar: str
    body: str
    category: Category
    created_at: datetime
    like_count: int
    is_liked_by_viewer: bool
    reply_count: int

    @classmethod
    def from_record(cls, record: AggregateViewRecord) -> FeedItemOut:
        return cls(
            id=record.post.id,
            author_id=record.post.author_id,
            username=record.author_username,
            avatar=record.author_avatar,
            body=record.post.body,
            category=record.post.category,
            created_at=record.post.created_at,
            like_count=record.like_count,
            is_liked_by_viewer=record.is_liked_by_viewer,
            reply_count=record.reply_count,
        )


class UserCreate(BaseModel):
    id: str
    username: str
    emoji: str | None = None


class LinkPreviewOut(BaseModel):
    type: str
    title: str
    thumbnail: str
    brand_color: str
    url: str


class PublicProfile(BaseModel):
    """Profile fields anyone allowed to see the profile may read."""

    id: str
    username: str
    avatar_url: str | None = None
    emoji: str
    public_profile: bool

    model_config = ConfigDict(from_attributes=True)
