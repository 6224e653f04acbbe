import pytest

from vent_feed.backend.base import NOTIFICATIONS, POSTS, REPLIES, USERS, WriteMode
from vent_feed.core.errors import ActionForbidden, NotFound, ValidationFailure
from vent_feed.core.session import ANONYMOUS_SESSION, ViewerSession
from vent_feed.schemas import Category, PostCreate, ReplyCreate
from vent_feed.services.posts import (
    PostService,
    avatar_key,
    get_visible_profile,
    register_user,
    validate_body,
)


def test_validate_body_strips_and_enforces_length():
    assert validate_body("  hi there \n", 10) == "hi there"
    with pytest.raises(ValidationFailure, match="enter some text"):
        validate_body("   ", 10)
    with pytest.raises(ValidationFailure, match="at most 3"):
        validate_body("four", 3)


def test_avatar_key_uses_bucket_user_and_timestamp():
    assert avatar_key("u1", 1700000000000) == "profile-picture/u1_1700000000000.jpg"


@pytest.mark.asyncio
async def test_create_post_writes_row_for_viewer(sql_backend):
    service = PostService(ViewerSession("alice"), sql_backend)

    post = await service.create_post(PostCreate(body="  rough day  ", category=Category.WORK))

    assert post.body == "rough day"
    rows = await sql_backend.query(POSTS, {"id": post.id})
    assert rows[0]["author_id"] == "alice"
    assert rows[0]["category"] == "Work"


@pytest.mark.asyncio
async def test_signed_out_viewer_cannot_post(sql_backend):
    service = PostService(ANONYMOUS_SESSION, sql_backend)

    with pytest.raises(ActionForbidden):
        await service.create_post(PostCreate(body="hello"))
    assert await sql_backend.query(POSTS) == []


@pytest.mark.asyncio
async def test_reply_to_reply_notifies_post_author(sql_backend):
    alice = PostService(ViewerSession("alice"), sql_backend)
    bob = PostService(ViewerSession("bob"), sql_backend)
    post = await alice.create_post(PostCreate(body="anyone else tired?"))

    first = await bob.create_reply(ReplyCreate(post_id=post.id, body="me"))
    second = await alice.create_reply(
        ReplyCreate(post_id=post.id, body="glad it's not just me", parent_reply_id=first.id)
    )

    assert second.parent_reply_id == first.id
    assert len(await sql_backend.query(REPLIES, {"post_id": post.id})) == 2
    notifications = await sql_backend.query(NOTIFICATIONS, {"recipient_id": "alice"})
    assert [(row["sender_id"], row["kind"]) for row in notifications] == [("bob", "reply")]


@pytest.mark.asyncio
async def test_reply_rejects_missing_post_and_foreign_parent(sql_backend):
    service = PostService(ViewerSession("bob"), sql_backend)
    with pytest.raises(NotFound):
        await service.create_reply(ReplyCreate(post_id="nope", body="hi"))

    alice = PostService(ViewerSession("alice"), sql_backend)
    first = await alice.create_post(PostCreate(body="one"))
    other = await alice.create_post(PostCreate(body="two"))
    reply = await service.create_reply(ReplyCreate(post_id=first.id, body="on one"))

    with pytest.raises(ValidationFailure):
        await service.create_reply(
            ReplyCreate(post_id=other.id, body="crossed", parent_reply_id=reply.id)
        )


@pytest.mark.asyncio
async def test_only_the_author_can_delete(sql_backend):
    alice = PostService(ViewerSession("alice"), sql_backend)
    post = await alice.create_post(PostCreate(body="temporary"))

    with pytest.raises(ActionForbidden):
        await PostService(ViewerSession("bob"), sql_backend).delete_post(post.id)

    await alice.delete_post(post.id)
    assert (await sql_backend.query(POSTS, {"id": post.id}))[0]["deleted"] is True
    with pytest.raises(NotFound):
        await alice.delete_post(post.id)


@pytest.mark.asyncio
async def test_deleted_reply_keeps_its_children(sql_backend):
    alice = PostService(ViewerSession("alice"), sql_backend)
    post = await alice.create_post(PostCreate(body="thread"))
    parent = await alice.create_reply(ReplyCreate(post_id=post.id, body="parent"))
    child = await alice.create_reply(
        ReplyCreate(post_id=post.id, body="child", parent_reply_id=parent.id)
    )

    await alice.delete_reply(parent.id)

    rows = {row["id"]: row for row in await sql_backend.query(REPLIES, {"post_id": post.id})}
    assert rows[parent.id]["deleted"] is True
    assert rows[child.id]["deleted"] is False


@pytest.mark.asyncio
async def test_upload_avatar_points_profile_at_blob(scripted_backend, mocker):
    mocker.patch("vent_feed.services.posts.avatar_key", return_value="profile-picture/u1_1.jpg")
    service = PostService(ViewerSession("u1"), scripted_backend)

    url = await service.upload_avatar(b"\xff\xd8")

    assert url == "http://blobs.test/avatar.jpg"
    scripted_backend.upload_blob.assert_awaited_once_with(b"\xff\xd8", "profile-picture/u1_1.jpg")
    scripted_backend.write.assert_awaited_once_with(
        USERS, "u1", {"avatar_url": url}, WriteMode.UPDATE
    )
    with pytest.raises(ValidationFailure):
        await service.upload_avatar(b"")


@pytest.mark.asyncio
async def test_profile_settings_are_written_for_viewer(scripted_backend):
    service = PostService(ViewerSession("u1"), scripted_backend)

    await service.set_public_profile(False)
    await service.register_push_token("ExponentPushToken[abc]")

    calls = [call.args for call in scripted_backend.write.await_args_list]
    assert calls == [
        (USERS, "u1", {"public_profile": False}, WriteMode.UPDATE),
        (USERS, "u1", {"push_token": "ExponentPushToken[abc]"}, WriteMode.UPDATE),
    ]


@pytest.mark.asyncio
async def test_register_user_rejects_taken_and_blank_names(sql_backend):
    profile = await register_user(sql_backend, "u1", " sky ", emoji="🌧")

    assert profile.username == "sky"
    assert profile.emoji == "🌧"
    with pytest.raises(ValidationFailure, match="taken"):
        await register_user(sql_backend, "u2", "sky")
    with pytest.raises(ValidationFailure):
        await register_user(sql_backend, "u3", "  ")


@pytest.mark.asyncio
async def test_private_profile_is_only_visible_to_its_owner(sql_backend):
    await register_user(sql_backend, "alice", "alice")
    await PostService(ViewerSession("alice"), sql_backend).set_public_profile(False)

    own = await get_visible_profile(sql_backend, ViewerSession("alice"), "alice")
    assert own.public_profile is False

    for session in (ViewerSession("bob"), ANONYMOUS_SESSION):
        with pytest.raises(NotFound):
            await get_visible_profile(sql_backend, session, "alice")
    with pytest.raises(NotFound):
        await get_visible_profile(sql_backend, ViewerSession("bob"), "nobody")
