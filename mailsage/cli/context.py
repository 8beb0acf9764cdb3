"""AppContext — the object click passes to every command."""

from __future__ import annotations

from functools import cached_property

from mailsage.cache.summary import SummaryCache
from mailsage.config import Settings
from mailsage.generation.backend import AnthropicBackend, GenerationBackend
from mailsage.generation.pipeline import GenerationPipeline
from mailsage.orchestration.orchestrator import RequestOrchestrator
from mailsage.retrieval.service import RetrievalService
from mailsage.storage.db import EmailDatabase
from mailsage.storage.store import EmailStore
from mailsage.storage.vector_store import EmailVectorStore


class AppContext:
    """Holds the store and lazily builds the orchestrator.

    The generation backend is only created when a streaming command needs it,
    so storage-only commands (recent, thread, load, reindex) work without an
    API key.
    """

    def __init__(
        self,
        settings: Settings,
        store: EmailStore,
        backend: GenerationBackend | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self._backend = backend

    @classmethod
    def from_settings(cls, settings: Settings) -> AppContext:
        db = EmailDatabase(db_path=settings.db_path)
        vector_store = EmailVectorStore(persist_dir=settings.chroma_dir)
        return cls(settings, EmailStore(vector_store, db))

    def close(self) -> None:
        self.store.close()

    @cached_property
    def orchestrator(self) -> RequestOrchestrator:
        backend = self._backend or AnthropicBackend(
            model=self.settings.model,
            max_tokens=self.settings.max_tokens,
            api_key=self.settings.api_key or None,
        )
        return RequestOrchestrator(
            retrieval=RetrievalService(
                self.store,
                top_k=self.settings.top_k,
                min_similarity=self.settings.min_similarity,
            ),
            pipeline=GenerationPipeline(backend, self.store),
            cache=SummaryCache(self.store),
            threads=self.store,
        )
