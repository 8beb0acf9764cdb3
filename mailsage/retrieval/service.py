"""RetrievalService — nearest-neighbor search plus thread resolution.

Search and thread resolution are separate calls so the orchestrator can push
the lightweight reference list to the consumer before the slow generation
step starts.
"""

from __future__ import annotations

import logging
from typing import Protocol

from mailsage.errors import EmptyQueryError
from mailsage.storage.models import EmailRef, ThreadReference

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 10
DEFAULT_MIN_SIMILARITY = 0.3


class NeighborStore(Protocol):
    """The slice of EmailStore that retrieval needs."""

    async def nearest_neighbors(self, query: str, k: int = 10) -> list[EmailRef]: ...

    async def get_threads_by_ids(self, thread_ids: list[str]) -> list[ThreadReference]: ...


class RetrievalService:
    """Turns a query into ranked EmailRefs and ranked, deduplicated ThreadReferences.

    Usage::

        retrieval = RetrievalService(store, top_k=10, min_similarity=0.3)
        refs = await retrieval.search("invoice")
        threads = await retrieval.resolve_threads(refs)
    """

    def __init__(
        self,
        store: NeighborStore,
        top_k: int = DEFAULT_TOP_K,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ) -> None:
        if top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {top_k}")
        self._store = store
        self._top_k = top_k
        self._min_similarity = min_similarity

    async def search(self, query: str) -> list[EmailRef]:
        """Return neighbors that clear the similarity threshold, in store order.

        Raises:
            EmptyQueryError: if the query is empty after trimming.
            StorageUnavailableError: if the store cannot be reached.
        """
        query = validate_query(query)
        neighbors = await self._store.nearest_neighbors(query, k=self._top_k)
        refs = [r for r in neighbors if r.similarity_score >= self._min_similarity][: self._top_k]
        logger.info(
            "search query=%r neighbors=%d above_threshold=%d",
            query,
            len(neighbors),
            len(refs),
        )
        return refs

    async def resolve_threads(self, refs: list[EmailRef]) -> list[ThreadReference]:
        """Resolve refs to their threads, one entry per thread, in first-seen order.

        Threads the store no longer knows about are dropped.

        Raises:
            StorageUnavailableError: if the store cannot be reached.
        """
        thread_ids = list(dict.fromkeys(r.thread_id for r in refs))
        if not thread_ids:
            return []
        found = {t.thread_id: t for t in await self._store.get_threads_by_ids(thread_ids)}
        missing = [tid for tid in thread_ids if tid not in found]
        if missing:
            logger.warning("resolve_threads: %d thread(s) not in storage: %s", len(missing), missing)
        return [found[tid] for tid in thread_ids if tid in found]


def validate_query(query: str) -> str:
    """Return the trimmed query, or raise EmptyQueryError."""
    trimmed = (query or "").strip()
    if not trimmed:
        raise EmptyQueryError()
    return trimmed
