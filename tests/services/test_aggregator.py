import random

import pytest

from vent_feed.backend.base import LIKES, POSTS, REPLIES, USERS, ChangeType
from vent_feed.core.errors import NotFound
from vent_feed.schemas import Category, ReplyNode, UserProfile
from vent_feed.services.aggregator import AggregateViewBuilder
from vent_feed.services.multiplexer import MuxEvent, ResubscribePolicy, SubscriptionMultiplexer
from vent_feed.services.reply_counter import ReplyCounter


def _like_event(post_id, liker_id, exists=True):
    return MuxEvent(
        source_key=f"likes:{post_id}",
        entity_id=f"{post_id}:{liker_id}",
        payload={"post_id": post_id, "liker_id": liker_id},
        tombstone=not exists,
        change=ChangeType.CREATED if exists else ChangeType.DELETED,
    )


def test_post_then_likes_builds_record(post_factory):
    builder = AggregateViewBuilder("viewer")
    builder.apply_post(post_factory("p1"))
    builder.apply_like("p1", "u1", True)
    builder.apply_like("p1", "viewer", True)

    record = builder.get("p1")
    assert record.like_count == 2
    assert record.is_liked_by_viewer is True
    assert record.author is None
    assert record.author_username == "anonymous"


def test_likes_before_post_are_buffered(post_factory):
    builder = AggregateViewBuilder("viewer")
    builder.apply_like("p1", "u1", True)
    builder.apply_like("p1", "u2", True)
    assert builder.get("p1") is None

    builder.apply_post(post_factory("p1"))

    assert builder.get("p1").like_count == 2


@pytest.mark.parametrize("seed", range(25))
def test_like_count_converges_under_reordering_and_duplicates(post_factory, seed):
    rng = random.Random(seed)
    likers = ["u1", "u2", "u3", "viewer"]
    events = []
    for _ in range(30):
        events.append((rng.choice(likers), rng.random() < 0.6))
    # Redeliver some events verbatim right after the first delivery.
    delivered = []
    for event in events:
        delivered.append(event)
        if rng.random() < 0.3:
            delivered.append(event)

    builder = AggregateViewBuilder("viewer")
    post_position = rng.randrange(len(delivered) + 1)
    for index, (liker, exists) in enumerate(delivered):
        if index == post_position:
            builder.apply_post(post_factory("p1"))
        builder.handle_like_event(_like_event("p1", liker, exists))
    if post_position == len(delivered):
        builder.apply_post(post_factory("p1"))

    final = {}
    for liker, exists in delivered:
        final[liker] = exists
    expected = sum(1 for exists in final.values() if exists)

    record = builder.get("p1")
    assert record.like_count == expected
    assert record.is_liked_by_viewer is final.get("viewer", False)


def test_duplicate_like_event_counts_once(post_factory):
    builder = AggregateViewBuilder("viewer")
    builder.apply_post(post_factory("p1"))
    for _ in range(3):
        builder.handle_like_event(_like_event("p1", "u1"))

    assert builder.get("p1").like_count == 1


def test_profile_update_propagates_to_every_post_by_author(post_factory):
    builder = AggregateViewBuilder("viewer")
    for index in range(3):
        builder.apply_post(post_factory(f"a{index}", author_id="alice", minutes=index))
    builder.apply_post(post_factory("b0", author_id="bob"))

    builder.apply_profile("alice", UserProfile(id="alice", username="alice", emoji="🌧"))
    builder.apply_profile(
        "alice", UserProfile(id="alice", username="alice", avatar_url="http://x/a.jpg")
    )

    for index in range(3):
        record = builder.get(f"a{index}")
        assert record.author.avatar_url == "http://x/a.jpg"
        assert record.author_avatar == "http://x/a.jpg"
    assert builder.get("b0").author is None


def test_profile_known_before_post_is_attached(post_factory):
    builder = AggregateViewBuilder("viewer")
    builder.apply_profile("alice", UserProfile(id="alice", username="alice"))
    builder.apply_post(post_factory("p1", author_id="alice"))

    assert builder.get("p1").author_username == "alice"


def test_tombstone_removes_record_and_notifies(post_factory):
    builder = AggregateViewBuilder("viewer")
    changed = []
    builder.add_listener(changed.append)
    builder.apply_post(post_factory("p1"))
    builder.handle_post_event(
        MuxEvent(
            source_key="posts",
            entity_id="p1",
            payload=post_factory("p1", deleted=True).model_dump(),
            tombstone=True,
        )
    )

    assert builder.get("p1") is None
    assert "p1" not in builder
    assert changed == ["p1", "p1"]


def test_records_are_newest_first(post_factory):
    builder = AggregateViewBuilder("viewer")
    builder.apply_post(post_factory("old", minutes=0))
    builder.apply_post(post_factory("new", minutes=5))
    builder.apply_post(post_factory("mid", minutes=2))

    assert [record.post.id for record in builder.records()] == ["new", "mid", "old"]


def test_malformed_event_does_not_block_other_posts(post_factory):
    builder = AggregateViewBuilder("viewer")
    builder.handle_post_event(
        MuxEvent(source_key="posts", entity_id="bad", payload={"id": "bad", "body": 3})
    )
    builder.handle_post_event(
        MuxEvent(source_key="posts", entity_id="p1", payload=post_factory("p1").model_dump())
    )

    assert builder.get("bad") is None
    assert builder.get("p1") is not None


def test_overlay_settles_once_confirmed(post_factory):
    builder = AggregateViewBuilder("viewer")
    builder.apply_post(post_factory("p1"))
    builder.set_overlay("p1", True)
    assert builder.get("p1").like_count == 1

    builder.release_overlay("p1")
    assert builder.overlay("p1") is True

    builder.apply_like("p1", "viewer", True)
    builder.apply_like("p1", "viewer", True)
    assert builder.overlay("p1") is None
    assert builder.get("p1").like_count == 1
    assert builder.get("p1").is_liked_by_viewer


@pytest.mark.asyncio
async def test_reply_events_refresh_cached_count(post_factory, settle_loop):
    replies = []

    async def fetch(root):
        return [node for node in replies if node.parent_reply_id == root.reply_id]

    builder = AggregateViewBuilder("viewer", reply_counter=ReplyCounter(fetch, yield_every=4))
    builder.apply_post(post_factory("p1"))
    assert builder.get("p1").reply_count == 0

    replies.append(ReplyNode(id="r1", post_id="p1", author_id="u1", body="hi"))
    replies.append(
        ReplyNode(id="r2", post_id="p1", parent_reply_id="r1", author_id="u2", body="hey")
    )
    builder.handle_reply_event(
        MuxEvent(source_key="replies:p1", entity_id="r2", payload=replies[1].model_dump())
    )
    await settle_loop()

    assert builder.get("p1").reply_count == 2


@pytest.mark.asyncio
async def test_not_found_while_counting_removes_post(post_factory, settle_loop):
    async def fetch(root):
        raise NotFound("post is gone")

    builder = AggregateViewBuilder("viewer", reply_counter=ReplyCounter(fetch))
    builder.apply_post(post_factory("p1"))
    builder.apply_post(post_factory("p2"))
    builder.invalidate_replies("p1")
    await settle_loop()

    assert builder.get("p1") is None
    assert builder.get("p2") is not None


@pytest.mark.asyncio
async def test_post_streams_open_and_close_with_the_post(
    scripted_backend, post_factory, settle_loop
):
    mux = SubscriptionMultiplexer(scripted_backend, ResubscribePolicy())
    counter = ReplyCounter(lambda root: _empty())
    builder = AggregateViewBuilder("viewer", mux, counter)

    builder.apply_post(post_factory("p1", author_id="alice"))
    builder.apply_post(post_factory("p2", author_id="alice"))
    await settle_loop()
    assert sorted(mux.source_keys()) == [
        "likes:p1", "likes:p2", "profile:alice", "replies:p1", "replies:p2",
    ]

    scripted_backend.push(LIKES, ChangeType.CREATED, {"post_id": "p1", "liker_id": "u1"})
    scripted_backend.push(
        USERS, ChangeType.UPDATED, {"id": "alice", "username": "alice", "emoji": "🔥"}
    )
    await settle_loop()
    assert builder.get("p1").like_count == 1
    assert builder.get("p2").author_avatar == "🔥"

    builder.remove_post("p1")
    await settle_loop()
    assert "likes:p1" not in mux.source_keys()
    assert "replies:p1" not in mux.source_keys()
    assert "profile:alice" in mux.source_keys()

    builder.apply_post(post_factory("p2", author_id="alice", deleted=True))
    await settle_loop()
    assert mux.source_keys() == []
    assert scripted_backend.open_streams(LIKES) == 0
    assert scripted_backend.open_streams(REPLIES) == 0
    assert scripted_backend.open_streams(USERS) == 0
    assert scripted_backend.open_streams(POSTS) == 0
    await builder.close()
    await mux.close()


async def _empty():
    return []


def test_category_is_kept_on_record(post_factory):
    builder = AggregateViewBuilder(None)
    builder.apply_post(post_factory("p1", category=Category.JOY))

    assert builder.get("p1").post.category is Category.JOY
    assert builder.get("p1").is_liked_by_viewer is False
