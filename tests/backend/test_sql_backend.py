import asyncio

import pytest

from vent_feed.backend.base import (
    LIKES,
    NOTIFICATIONS,
    POSTS,
    REPLIES,
    USERS,
    ChangeType,
    Ordering,
    SortOrder,
    WriteMode,
)
from vent_feed.core.errors import NotFound, TransientIOFailure, ValidationFailure


async def _seed_post(backend, post_id="p1", author_id="alice", body="hello", **extra):
    payload = {"author_id": author_id, "body": body, "category": "Rant", **extra}
    await backend.write(POSTS, post_id, payload, WriteMode.INSERT)


async def _like(backend, post_id, liker_id):
    edge = {"post_id": post_id, "liker_id": liker_id}
    await backend.write(LIKES, f"{post_id}:{liker_id}", edge, WriteMode.INSERT)


async def _next(stream):
    return await anext(stream)


@pytest.mark.asyncio
async def test_insert_and_query_with_filters_and_order(sql_backend, post_factory):
    for index in range(3):
        post = post_factory(f"p{index}", minutes=index)
        payload = {**post.model_dump(), "category": post.category.value}
        await sql_backend.write(POSTS, post.id, payload, WriteMode.INSERT)

    rows = await sql_backend.query(POSTS, {"deleted": False}, Ordering("created_at"))
    assert [row["id"] for row in rows] == ["p2", "p1", "p0"]
    assert rows[0]["created_at"].tzinfo is not None

    rows = await sql_backend.query(POSTS, {"id": "p1"}, Ordering("created_at", SortOrder.ASC))
    assert [row["id"] for row in rows] == ["p1"]


@pytest.mark.asyncio
async def test_like_insert_is_idempotent_and_notifies_author(sql_backend):
    await _seed_post(sql_backend)
    edge = {"post_id": "p1", "liker_id": "bob"}
    await sql_backend.write(LIKES, "p1:bob", edge, WriteMode.INSERT)
    await sql_backend.write(LIKES, "p1:bob", edge, WriteMode.INSERT)

    assert len(await sql_backend.query(LIKES, {"post_id": "p1"})) == 1
    notifications = await sql_backend.query(NOTIFICATIONS, {"recipient_id": "alice"})
    assert [(row["sender_id"], row["kind"], row["read"]) for row in notifications] == [
        ("bob", "like", False)
    ]


@pytest.mark.asyncio
async def test_own_reply_does_not_notify(sql_backend):
    await _seed_post(sql_backend)
    reply = {"post_id": "p1", "author_id": "alice", "body": "me again"}
    await sql_backend.write(REPLIES, "r1", reply, WriteMode.INSERT)

    assert await sql_backend.query(NOTIFICATIONS) == []


@pytest.mark.asyncio
async def test_delete_post_leaves_tombstone(sql_backend):
    await _seed_post(sql_backend)
    await sql_backend.write(POSTS, "p1", {}, WriteMode.DELETE)

    rows = await sql_backend.query(POSTS, {"id": "p1"})
    assert rows[0]["deleted"] is True
    assert await sql_backend.query(POSTS, {"deleted": False}) == []


@pytest.mark.asyncio
async def test_delete_like_removes_edge_and_missing_edge_is_not_found(sql_backend):
    await _seed_post(sql_backend)
    await _like(sql_backend, "p1", "bob")
    await sql_backend.write(LIKES, "p1:bob", {}, WriteMode.DELETE)

    assert await sql_backend.query(LIKES) == []
    with pytest.raises(NotFound):
        await sql_backend.write(LIKES, "p1:bob", {}, WriteMode.DELETE)


@pytest.mark.asyncio
async def test_update_rules(sql_backend):
    with pytest.raises(NotFound):
        await sql_backend.write(USERS, "ghost", {"emoji": "👻"}, WriteMode.UPDATE)

    await sql_backend.write(USERS, "u1", {"username": "sky"}, WriteMode.INSERT)
    with pytest.raises(ValidationFailure):
        await sql_backend.write(USERS, "u1", {"username": "cloud"}, WriteMode.UPDATE)
    with pytest.raises(ValidationFailure):
        await sql_backend.write(USERS, "u2", {"username": "sky"}, WriteMode.INSERT)


@pytest.mark.asyncio
async def test_subscribe_replays_snapshot_then_streams_changes(sql_backend):
    await _seed_post(sql_backend, "p1")
    stream = sql_backend.subscribe(POSTS)

    first = await asyncio.wait_for(anext(stream), timeout=1)
    assert (first.type, first.entity["id"]) == (ChangeType.CREATED, "p1")

    await _seed_post(sql_backend, "p2")
    second = await asyncio.wait_for(anext(stream), timeout=1)
    assert (second.type, second.entity["id"]) == (ChangeType.CREATED, "p2")

    await sql_backend.write(POSTS, "p1", {}, WriteMode.DELETE)
    third = await asyncio.wait_for(anext(stream), timeout=1)
    assert third.type == ChangeType.DELETED
    assert third.entity["deleted"] is True

    await stream.aclose()
    assert sql_backend.subscriber_count(POSTS) == 0


@pytest.mark.asyncio
async def test_subscription_filters_and_failure(sql_backend):
    await _seed_post(sql_backend, "p1")
    await _seed_post(sql_backend, "p2")
    stream = sql_backend.subscribe(LIKES, {"post_id": "p2"})
    pending = asyncio.create_task(_next(stream))
    await asyncio.sleep(0.05)

    await _like(sql_backend, "p1", "bob")
    await _like(sql_backend, "p2", "bob")
    event = await asyncio.wait_for(pending, timeout=1)
    assert event.entity["post_id"] == "p2"

    sql_backend.fail_subscribers(LIKES, TransientIOFailure("dropped"))
    with pytest.raises(TransientIOFailure):
        await asyncio.wait_for(anext(stream), timeout=1)


@pytest.mark.asyncio
async def test_close_ends_open_streams(sql_backend):
    stream = sql_backend.subscribe(POSTS)

    async def drain():
        return [event async for event in stream]

    task = asyncio.create_task(drain())
    await asyncio.sleep(0.05)

    await sql_backend.close()

    assert await asyncio.wait_for(task, timeout=1) == []
    with pytest.raises(TransientIOFailure):
        await _seed_post(sql_backend, "late")


@pytest.mark.asyncio
async def test_blob_upload_round_trip(sql_backend):
    url = await sql_backend.upload_blob(b"\xff\xd8jpeg", "profile-picture/u1_1.jpg")

    assert url == "http://blobs.test/profile-picture/u1_1.jpg"
    assert sql_backend.get_blob("profile-picture/u1_1.jpg") == b"\xff\xd8jpeg"
    with pytest.raises(ValidationFailure):
        await sql_backend.upload_blob(b"", "empty.jpg")
    with pytest.raises(NotFound):
        sql_backend.get_blob("missing.jpg")
