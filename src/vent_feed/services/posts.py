"""Service-level helpers for sharing, replying to and deleting thoughts."""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from vent_feed.backend.base import POSTS, REPLIES, USERS, Backend, WriteMode
from vent_feed.core.errors import ActionForbidden, NotFound, ValidationFailure
from vent_feed.core.session import ViewerSession
from vent_feed.core.settings import settings
from vent_feed.db.time import utcnow
from vent_feed.schemas import Category, Post, PostCreate, ReplyCreate, ReplyNode, UserProfile

# Configure logger for this module
logger = logging.getLogger(__name__)


def validate_body(body: str, max_length: int, kind: str = "thought") -> str:
    """Return ``body`` stripped of surrounding whitespace.

    Raises:
        ValidationFailure: If the body is empty or longer than ``max_length``.
    """
    text = (body or "").strip()
    if not text:
        raise ValidationFailure(f"Please enter some text to share your {kind}.")
    if len(text) > max_length:
        raise ValidationFailure(f"A {kind} can be at most {max_length} characters long.")
    return text


def avatar_key(user_id: str, timestamp_ms: int | None = None) -> str:
    """Return the storage key for a new profile picture of ``user_id``."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{settings.avatar_bucket}/{user_id}_{timestamp_ms}.jpg"


class PostService:
    """Durable writes made on behalf of one viewer."""

    def __init__(self, session: ViewerSession, backend: Backend) -> None:
        self.session = session
        self.backend = backend

    async def create_post(self, data: PostCreate) -> Post:
        """Share a new thought under the viewer's identity.

        Args:
            data: Body and category submitted by the client.

        Returns:
            The post as written. The live posts stream will echo it.

        Raises:
            ActionForbidden: If no viewer is signed in.
            ValidationFailure: If the body is empty or too long.
        """
        author_id = self.session.require_viewer("share a thought")
        body = validate_body(data.body, settings.max_post_length)
        post = Post(
            id=uuid.uuid4().hex,
            author_id=author_id,
            body=body,
            category=data.category,
            created_at=utcnow(),
        )
        await self.backend.write(POSTS, post.id, _post_payload(post), WriteMode.INSERT)
        logger.info("Post %s shared in %s", post.id, post.category.value)
        return post

    async def create_reply(self, data: ReplyCreate) -> ReplyNode:
        """Reply to a post, or to another reply of the same post."""
        author_id = self.session.require_viewer("reply")
        body = validate_body(data.body, settings.max_reply_length, kind="reply")

        await self._get_live(POSTS, data.post_id)
        if data.parent_reply_id is not None:
            parent = await self._get_live(REPLIES, data.parent_reply_id)
            if parent["post_id"] != data.post_id:
                raise ValidationFailure("The parent reply belongs to a different thought.")

        reply = ReplyNode(
            id=uuid.uuid4().hex,
            post_id=data.post_id,
            parent_reply_id=data.parent_reply_id,
            author_id=author_id,
            body=body,
            created_at=utcnow(),
        )
        await self.backend.write(
            REPLIES, reply.id, reply.model_dump(mode="python"), WriteMode.INSERT
        )
        return reply

    async def delete_post(self, post_id: str) -> None:
        """Tombstone ``post_id``; only its author may do so."""
        await self._delete_owned(POSTS, post_id, "thought")

    async def delete_reply(self, reply_id: str) -> None:
        """Tombstone ``reply_id``. Its children stay in the tree."""
        await self._delete_owned(REPLIES, reply_id, "reply")

    async def upload_avatar(self, data: bytes) -> str:
        """Store a new profile picture and point the viewer's profile at it."""
        user_id = self.session.require_viewer("upload a profile picture")
        if not data:
            raise ValidationFailure("The selected image is empty.")
        url = await self.backend.upload_blob(data, avatar_key(user_id))
        await self.backend.write(USERS, user_id, {"avatar_url": url}, WriteMode.UPDATE)
        logger.info("Profile picture updated for %s", user_id)
        return url

    async def set_public_profile(self, public: bool) -> None:
        user_id = self.session.require_viewer("change profile visibility")
        await self.backend.write(USERS, user_id, {"public_profile": public}, WriteMode.UPDATE)

    async def register_push_token(self, token: str | None) -> None:
        user_id = self.session.require_viewer("enable notifications")
        await self.backend.write(USERS, user_id, {"push_token": token}, WriteMode.UPDATE)

    async def _get_live(self, collection: str, entity_id: str) -> dict[str, Any]:
        rows = await self.backend.query(collection, {"id": entity_id})
        if not rows or rows[0].get("deleted"):
            raise NotFound(f"{collection}/{entity_id} does not exist")
        return rows[0]

    async def _delete_owned(self, collection: str, entity_id: str, kind: str) -> None:
        viewer_id = self.session.require_viewer(f"delete a {kind}")
        row = await self._get_live(collection, entity_id)
        if row["author_id"] != viewer_id:
            raise ActionForbidden(f"You can only delete your own {kind}s")
        await self.backend.write(collection, entity_id, {}, WriteMode.DELETE)
        logger.info("%s %s deleted by its author", kind.capitalize(), entity_id)


async def register_user(
    backend: Backend,
    user_id: str,
    username: str,
    *,
    emoji: str | None = None,
) -> UserProfile:
    """Create the profile row for a newly signed-up user.

    Raises:
        ValidationFailure: If the username is blank or already taken.
    """
    name = (username or "").strip()
    if not name:
        raise ValidationFailure("Please choose a username.")
    existing = await backend.query(USERS, {"username": name})
    if existing:
        raise ValidationFailure("Username is already taken")

    profile = UserProfile(id=user_id, username=name)
    if emoji:
        profile = profile.model_copy(update={"emoji": emoji})
    await backend.write(USERS, user_id, profile.model_dump(), WriteMode.INSERT)
    return profile


async def get_visible_profile(
    backend: Backend, session: ViewerSession, user_id: str
) -> UserProfile:
    """Return the profile of ``user_id`` if the viewer may see it.

    Private profiles are only visible to their owner. Everyone else gets
    ``NotFound``, the same answer as for a user that does not exist.
    """
    rows = await backend.query(USERS, {"id": user_id})
    if not rows:
        raise NotFound(f"User {user_id} does not exist")
    profile = UserProfile.model_validate(rows[0])
    if not profile.public_profile and session.viewer_id != user_id:
        logger.debug("Hiding private profile %s from %s", user_id, session.viewer_id)
        raise NotFound(f"User {user_id} does not exist")
    return profile


def _post_payload(post: Post) -> dict[str, Any]:
    payload = post.model_dump(mode="python")
    payload["category"] = Category(post.category).value
    return payload
