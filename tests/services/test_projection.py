import pytest

from vent_feed.schemas import CATEGORY_ALL, AggregateViewRecord, Category, UserProfile
from vent_feed.services.projection import project


def _record(post_factory, post_id, body, category, username=None, minutes=0):
    author = None
    if username is not None:
        author = UserProfile(id=f"user-{username}", username=username)
    return AggregateViewRecord(
        post=post_factory(post_id, body=body, category=category, minutes=minutes),
        author=author,
    )


@pytest.fixture
def records(post_factory):
    return [
        _record(post_factory, "r1", "hello world", Category.RANT, "Sky", minutes=3),
        _record(post_factory, "r2", "goodbye", Category.JOY, "HelloKitty", minutes=2),
        _record(post_factory, "r3", "Monday again", Category.WORK, None, minutes=1),
    ]


def test_search_matches_body_only_example(post_factory):
    records = [
        _record(post_factory, "first", "hello world", Category.RANT),
        _record(post_factory, "second", "goodbye", Category.JOY),
    ]

    assert project(records, CATEGORY_ALL, "hello") == ["first"]


def test_search_is_case_insensitive_over_body_or_username(records):
    assert project(records, CATEGORY_ALL, "HELLO") == ["r1", "r2"]
    assert project(records, CATEGORY_ALL, "sky") == ["r1"]
    assert project(records, CATEGORY_ALL, "anonym") == []


def test_category_filter_is_exact_and_all_passes_through(records):
    assert project(records, Category.JOY, "") == ["r2"]
    assert project(records, "Work", None) == ["r3"]
    assert project(records, CATEGORY_ALL, "") == ["r1", "r2", "r3"]
    assert project(records, Category.SCHOOL, "") == []


def test_filters_combine_and_preserve_input_order(records):
    reversed_records = list(reversed(records))

    assert project(reversed_records, CATEGORY_ALL, "o") == ["r3", "r2", "r1"]
    assert project(records, Category.RANT, "goodbye") == []


def test_projection_does_not_modify_records(records):
    snapshot = [record.model_copy() for record in records]
    project(records, Category.JOY, "good")

    assert records == snapshot


def test_unknown_category_is_rejected(records):
    with pytest.raises(ValueError):
        project(records, "Gardening", "")


def test_unresolved_author_placeholder_is_not_searched(post_factory):
    pending = _record(post_factory, "p1", "rough day", Category.RANT)

    assert pending.author_username == "anonymous"
    assert project([pending], CATEGORY_ALL, "anon") == []
    assert project([pending], CATEGORY_ALL, "rough") == ["p1"]


def test_author_filter_keeps_only_that_authors_records(post_factory):
    records = [
        AggregateViewRecord(post=post_factory("a1", author_id="alice", minutes=2)),
        AggregateViewRecord(post=post_factory("b1", author_id="bob", minutes=1)),
        AggregateViewRecord(post=post_factory("a2", author_id="alice", category=Category.JOY)),
    ]

    assert project(records, author_id="alice") == ["a1", "a2"]
    assert project(records, Category.JOY, author_id="alice") == ["a2"]
    assert project(records, author_id="nobody") == []
