"""EmailStore — async facade over EmailDatabase and EmailVectorStore.

This is the storage boundary the core talks to.  Backend failures
(``sqlite3.Error``, ChromaDB errors) are translated into
StorageUnavailableError here so nothing above this layer needs to know which
engine is underneath.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import replace

from mailsage.errors import StorageUnavailableError
from mailsage.storage.dates import normalize_date, timestamp
from mailsage.storage.db import EmailDatabase
from mailsage.storage.models import (
    EmailRef,
    EmailRow,
    LabelCount,
    RawEmail,
    StoredSummary,
    ThreadReference,
)
from mailsage.storage.vector_store import EmailVectorStore

logger = logging.getLogger(__name__)


class EmailStore:
    """Coordinates EmailDatabase and EmailVectorStore behind one async interface.

    Both stores are exposed as public attributes so CLI commands (reindex,
    load) can reach them without creating duplicate instances.

    Usage::

        store = EmailStore(vector_store, db)
        refs = await store.nearest_neighbors("invoice", k=10)
        threads = await store.get_threads_by_ids([r.thread_id for r in refs])
    """

    def __init__(self, vector_store: EmailVectorStore, db: EmailDatabase) -> None:
        self.vector_store = vector_store
        self.db = db

    def close(self) -> None:
        """Release underlying store resources."""
        self.vector_store.close()
        self.db.close()

    # ── Write ───────────────────────────────────────────────────────────────────

    async def add_email(self, email: RawEmail) -> bool:
        """Store and index an email.  Returns True if it was not stored before.

        The date is normalised to UTC ISO-8601 before it reaches either store.
        """
        email = replace(email, date=normalize_date(email.date))
        try:
            is_new = self.db.save(email)
        except sqlite3.Error as exc:
            raise StorageUnavailableError(f"Failed to save email {email.id}: {exc}") from exc
        try:
            await asyncio.to_thread(self.vector_store.upsert, email)
        except Exception as exc:  # noqa: BLE001
            raise StorageUnavailableError(f"Failed to index email {email.id}: {exc}") from exc
        return is_new

    # ── Retrieval ───────────────────────────────────────────────────────────────

    async def nearest_neighbors(self, query: str, k: int = 10) -> list[EmailRef]:
        """Return up to k EmailRefs, most similar first, ties broken by most recent.

        Embedding the query is CPU-bound, so the vector lookup runs off the
        event loop.
        """
        try:
            results = await asyncio.to_thread(self.vector_store.search, query, k)
        except Exception as exc:  # noqa: BLE001
            raise StorageUnavailableError(f"Vector search failed: {exc}") from exc

        refs = [
            EmailRef(
                email_id=r.email_id,
                thread_id=str(r.metadata.get("thread_id", "")),
                similarity_score=r.similarity,
                date=str(r.metadata.get("date") or "") or None,
            )
            for r in results
        ]
        # Two stable passes: recency first, then score, so equal scores stay newest-first.
        refs.sort(key=lambda ref: timestamp(ref.date), reverse=True)
        refs.sort(key=lambda ref: ref.similarity_score, reverse=True)
        return refs

    async def get_threads_by_ids(self, thread_ids: list[str]) -> list[ThreadReference]:
        return self._call(self.db.get_threads_by_ids, thread_ids)

    async def get_emails_by_ids(self, email_ids: list[str]) -> list[EmailRow]:
        return self._call(self.db.get_emails_by_ids, email_ids)

    async def get_thread_messages(self, thread_id: str) -> list[EmailRow]:
        return self._call(self.db.get_thread_messages, thread_id)

    async def get_recent_emails(
        self, limit: int = 50, offset: int = 0, label: str | None = None
    ) -> list[EmailRow]:
        return self._call(self.db.get_recent_emails, limit, offset, label)

    async def get_label_counts(self) -> list[LabelCount]:
        return self._call(self.db.get_label_counts)

    # ── Summaries ───────────────────────────────────────────────────────────────

    async def get_summary(self, thread_id: str) -> StoredSummary | None:
        return self._call(self.db.get_summary, thread_id)

    async def put_summary(
        self,
        thread_id: str,
        text: str,
        overwrite: bool = False,
        message_count: int | None = None,
    ) -> bool:
        """Conditional write; False means a summary already existed or the thread changed."""
        return self._call(self.db.put_summary, thread_id, text, overwrite, message_count)

    async def delete_summary(self, thread_id: str) -> bool:
        return self._call(self.db.delete_summary, thread_id)

    # ── Private ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _call(fn, *args):  # type: ignore[no-untyped-def]
        try:
            return fn(*args)
        except sqlite3.Error as exc:
            logger.debug("Storage call %s failed: %s", fn.__name__, exc)
            raise StorageUnavailableError(str(exc)) from exc

