"""Tests for SummaryCache."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conftest import FakeStore
from mailsage.cache.summary import SummaryCache
from mailsage.errors import DuplicateSummaryError, StorageUnavailableError
from mailsage.storage.db import EmailDatabase
from mailsage.storage.store import EmailStore


@pytest.fixture
def cache(store: FakeStore) -> SummaryCache:
    return SummaryCache(store)


async def test_get_absent_is_none(cache: SummaryCache) -> None:
    assert await cache.get("t1") is None


async def test_put_then_get(cache: SummaryCache) -> None:
    await cache.put("t1", "Alice sent invoice #42; Bob paid it.")
    summary = await cache.get("t1")
    assert summary is not None
    assert summary.text == "Alice sent invoice #42; Bob paid it."


async def test_second_put_raises_and_keeps_first(cache: SummaryCache) -> None:
    await cache.put("t1", "first")
    with pytest.raises(DuplicateSummaryError) as excinfo:
        await cache.put("t1", "second")
    assert excinfo.value.thread_id == "t1"
    assert (await cache.get("t1")).text == "first"  # type: ignore[union-attr]


async def test_put_for_changed_thread_raises(cache: SummaryCache) -> None:
    # The store fixture holds two messages in t1.
    with pytest.raises(DuplicateSummaryError):
        await cache.put("t1", "built from one message", message_count=1)
    assert await cache.get("t1") is None

    await cache.put("t1", "built from both", message_count=2)
    assert (await cache.get("t1")).text == "built from both"  # type: ignore[union-attr]


async def test_overwrite(cache: SummaryCache) -> None:
    await cache.put("t1", "first")
    await cache.put("t1", "second", overwrite=True)
    assert (await cache.get("t1")).text == "second"  # type: ignore[union-attr]


async def test_invalidate(cache: SummaryCache) -> None:
    await cache.put("t1", "stale")
    assert await cache.invalidate("t1") is True
    assert await cache.invalidate("t1") is False
    assert await cache.get("t1") is None


async def test_storage_failure_propagates(cache: SummaryCache, store: FakeStore) -> None:
    store.fail_summary_write = True
    with pytest.raises(StorageUnavailableError):
        await cache.put("t1", "text")


async def test_racing_puts_on_sqlite_store_one_wins(tmp_path: Path) -> None:
    db = EmailDatabase(db_path=tmp_path / "race.db")
    cache = SummaryCache(EmailStore(MagicMock(), db))
    try:
        results = await asyncio.gather(
            *(cache.put("t1", f"summary {i}") for i in range(5)),
            return_exceptions=True,
        )
        successes = [r for r in results if r is None]
        duplicates = [r for r in results if isinstance(r, DuplicateSummaryError)]
        assert len(successes) == 1
        assert len(duplicates) == 4
        count = db._conn.execute("SELECT COUNT(*) FROM summaries").fetchone()[0]
        assert count == 1
    finally:
        db.close()
