"""SummaryCache — exactly-once storage of generated per-thread summaries."""

from __future__ import annotations

import logging
from typing import Protocol

from mailsage.errors import DuplicateSummaryError
from mailsage.storage.models import StoredSummary

logger = logging.getLogger(__name__)


class SummaryStore(Protocol):
    """The slice of EmailStore that the cache needs."""

    async def get_summary(self, thread_id: str) -> StoredSummary | None: ...

    async def put_summary(
        self,
        thread_id: str,
        text: str,
        overwrite: bool = False,
        message_count: int | None = None,
    ) -> bool: ...

    async def delete_summary(self, thread_id: str) -> bool: ...


class SummaryCache:
    """Looks up and records thread summaries; never generates anything itself.

    ``put`` is a single conditional write at the storage boundary, so two
    racing writers for the same thread cannot both succeed.
    """

    def __init__(self, store: SummaryStore) -> None:
        self._store = store

    async def get(self, thread_id: str) -> StoredSummary | None:
        return await self._store.get_summary(thread_id)

    async def put(
        self,
        thread_id: str,
        text: str,
        overwrite: bool = False,
        message_count: int | None = None,
    ) -> None:
        """Store text as the thread's summary.

        Pass message_count (the number of messages the summary was built
        from) to refuse the write if the thread has changed since.

        Raises:
            DuplicateSummaryError: if a summary exists and overwrite is False,
                or the thread no longer has message_count messages.
            StorageUnavailableError: if the store cannot be reached.
        """
        stored = await self._store.put_summary(
            thread_id, text, overwrite=overwrite, message_count=message_count
        )
        if not stored:
            raise DuplicateSummaryError(thread_id)
        logger.info("Cached summary for thread %s (%d chars)", thread_id, len(text))

    async def invalidate(self, thread_id: str) -> bool:
        """Drop a thread's summary so the next request regenerates it."""
        removed = await self._store.delete_summary(thread_id)
        if removed:
            logger.info("Invalidated summary for thread %s", thread_id)
        return removed
