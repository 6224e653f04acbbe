"""Category filter, author filter and text search over aggregate view records."""

from __future__ import annotations

from collections.abc import Iterable

from vent_feed.schemas import CATEGORY_ALL, AggregateViewRecord, Category


def normalize_category(category: Category | str | None) -> str:
    """Return the category value to filter on; ``All`` when unset."""
    if category is None:
        return CATEGORY_ALL
    if isinstance(category, Category):
        return category.value
    if category == CATEGORY_ALL:
        return category
    return Category(category).value


def matches_search(record: AggregateViewRecord, needle: str) -> bool:
    if not needle:
        return True
    if needle in record.post.body.lower():
        return True
    # Unresolved authors only have a display placeholder, which is not searchable.
    return record.author is not None and needle in record.author.username.lower()


def project(
    records: Iterable[AggregateViewRecord],
    category: Category | str | None = CATEGORY_ALL,
    search: str | None = "",
    *,
    author_id: str | None = None,
) -> list[str]:
    """Return the ids of records to display, in input order.

    A record passes when its category equals ``category`` (or the filter is
    ``All``) and ``search`` occurs case-insensitively in its body or author
    username. An empty search matches everything. When ``author_id`` is
    given, only that author's records pass. Records are not modified.
    """
    wanted = normalize_category(category)
    needle = (search or "").lower()
    return [
        record.post.id
        for record in records
        if (wanted == CATEGORY_ALL or record.post.category.value == wanted)
        and (author_id is None or record.post.author_id == author_id)
        and matches_search(record, needle)
    ]
