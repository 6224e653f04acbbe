# tests/conftest.py
from __future__ import annotations

import asyncio
import os
from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Generator, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.engine import Engine

os.environ.setdefault("VENT_BACKEND", "sql")

from vent_feed.backend.base import ChangeEvent, ChangeType, matches
from vent_feed.backend.sql import SqlBackend
from vent_feed.db.session import build_engine, create_tables, drop_tables
from vent_feed.schemas import Category, Post

TEST_DB_URL = "sqlite://"
BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class ScriptedBackend:
    """Backend double whose live streams are fed by the test."""

    def __init__(self) -> None:
        self.rows: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.opened: list[tuple[str, dict[str, Any] | None]] = []
        self._streams: dict[str, list[tuple[dict[str, Any] | None, asyncio.Queue[Any]]]] = (
            defaultdict(list)
        )
        self.write = AsyncMock()
        self.upload_blob = AsyncMock(return_value="http://blobs.test/avatar.jpg")
        self.close = AsyncMock()

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        order: Any = None,
    ) -> list[dict[str, Any]]:
        return [dict(row) for row in self.rows[collection] if matches(row, filters)]

    async def subscribe(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[ChangeEvent]:
        entry = (dict(filters) if filters else None, asyncio.Queue())
        self._streams[collection].append(entry)
        self.opened.append((collection, entry[0]))
        try:
            while True:
                item = await entry[1].get()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self._streams[collection].remove(entry)

    def open_streams(self, collection: str) -> int:
        return len(self._streams[collection])

    def push(self, collection: str, change: ChangeType, entity: Mapping[str, Any]) -> None:
        for filters, queue in list(self._streams[collection]):
            if matches(entity, filters):
                queue.put_nowait(ChangeEvent(type=change, collection=collection, entity=entity))

    def fail(self, collection: str, error: BaseException) -> None:
        for _, queue in list(self._streams[collection]):
            queue.put_nowait(error)


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run until the loop is idle."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_post(
    post_id: str,
    author_id: str = "author",
    body: str = "just venting",
    category: Category = Category.RANT,
    minutes: int = 0,
    deleted: bool = False,
) -> Post:
    return Post(
        id=post_id,
        author_id=author_id,
        body=body,
        category=category,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        deleted=deleted,
    )


@pytest.fixture()
def scripted_backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture()
def post_factory() -> Callable[..., Post]:
    return make_post


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = build_engine(TEST_DB_URL, echo=False)
    create_tables(engine)
    try:
        yield engine
    finally:
        drop_tables(engine)
        engine.dispose()


@pytest_asyncio.fixture()
async def sql_backend(engine: Engine) -> AsyncIterator[SqlBackend]:
    backend = SqlBackend(engine, public_base_url="http://blobs.test", create_schema=False)
    try:
        yield backend
    finally:
        await backend.close()


@pytest.fixture()
def settle_loop() -> Callable[..., Any]:
    return settle
