"""Shared pytest fixtures: in-memory store, scripted backend, collecting sink."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator

import pytest

from mailsage.cache.summary import SummaryCache
from mailsage.errors import GenerationBackendError, StorageUnavailableError
from mailsage.generation.pipeline import GenerationPipeline
from mailsage.generation.types import Prompt
from mailsage.orchestration.events import ChunkEvent, SinkClosedError, StreamEvent
from mailsage.orchestration.orchestrator import RequestOrchestrator
from mailsage.retrieval.service import RetrievalService
from mailsage.storage.dates import normalize_date, timestamp
from mailsage.storage.models import (
    EmailRef,
    EmailRow,
    LabelCount,
    RawEmail,
    StoredSummary,
    ThreadReference,
)


def make_row(
    id: str = "e1",
    thread_id: str = "t1",
    sender: str = "alice@example.com",
    subject: str = "Invoice #42",
    body: str = "Please find the invoice attached.",
    date: str | None = "2026-02-27T09:00:00+00:00",
    labels: str = "[]",
) -> EmailRow:
    return EmailRow(
        id=id,
        thread_id=thread_id,
        sender=sender,
        recipient="me@example.com",
        subject=subject,
        snippet=body[:50],
        body=body,
        date=date,
        labels=labels,
        stored_at="2026-02-27 09:00:00",
    )


# ── Fakes ──────────────────────────────────────────────────────────────────────


class FakeStore:
    """In-memory EmailStore.  Every call yields to the event loop once."""

    def __init__(self) -> None:
        self.emails: dict[str, EmailRow] = {}
        self.neighbors: list[EmailRef] = []
        self.summaries: dict[str, StoredSummary] = {}
        self.neighbor_calls = 0
        self.put_calls = 0
        self.fail_search = False
        self.fail_threads = False
        self.fail_summary_read = False
        self.fail_summary_write = False

    def add(self, *rows: EmailRow) -> None:
        for row in rows:
            self.emails[row.id] = row

    async def add_email(self, email: RawEmail) -> bool:
        await asyncio.sleep(0)
        is_new = email.id not in self.emails
        self.add(
            make_row(
                id=email.id,
                thread_id=email.thread_id,
                sender=email.sender,
                subject=email.subject,
                body=email.body or email.snippet,
                date=normalize_date(email.date),
                labels=json.dumps(email.labels),
            )
        )
        if is_new:
            self.summaries.pop(email.thread_id, None)
        return is_new

    async def nearest_neighbors(self, query: str, k: int = 10) -> list[EmailRef]:
        await asyncio.sleep(0)
        self.neighbor_calls += 1
        if self.fail_search:
            raise StorageUnavailableError("vector index offline")
        return list(self.neighbors)[:k]

    async def get_threads_by_ids(self, thread_ids: list[str]) -> list[ThreadReference]:
        await asyncio.sleep(0)
        if self.fail_threads:
            raise StorageUnavailableError("database offline")
        result = []
        for tid in reversed(thread_ids):  # deliberately not in request order
            rows = [r for r in self.emails.values() if r.thread_id == tid]
            if not rows:
                continue
            participants: list[str] = []
            for r in rows:
                if r.sender not in participants:
                    participants.append(r.sender)
            result.append(
                ThreadReference(
                    thread_id=tid,
                    subject=rows[0].subject,
                    participants=tuple(participants),
                    message_count=len(rows),
                )
            )
        return result

    async def get_emails_by_ids(self, email_ids: list[str]) -> list[EmailRow]:
        await asyncio.sleep(0)
        return [self.emails[e] for e in email_ids if e in self.emails]

    async def get_thread_messages(self, thread_id: str) -> list[EmailRow]:
        await asyncio.sleep(0)
        rows = [r for r in self.emails.values() if r.thread_id == thread_id]
        return sorted(rows, key=lambda r: (r.date is None, timestamp(r.date)))

    async def get_recent_emails(
        self, limit: int = 50, offset: int = 0, label: str | None = None
    ) -> list[EmailRow]:
        await asyncio.sleep(0)
        rows = [
            r for r in self.emails.values() if label is None or label in json.loads(r.labels)
        ]
        rows.sort(key=lambda r: timestamp(r.date), reverse=True)
        return rows[offset : offset + limit]

    async def get_label_counts(self) -> list[LabelCount]:
        await asyncio.sleep(0)
        counts: dict[str, int] = {}
        for row in self.emails.values():
            for name in json.loads(row.labels):
                counts[name] = counts.get(name, 0) + 1
        return [
            LabelCount(name, n)
            for name, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        ]

    async def get_summary(self, thread_id: str) -> StoredSummary | None:
        await asyncio.sleep(0)
        if self.fail_summary_read:
            raise StorageUnavailableError("database offline")
        return self.summaries.get(thread_id)

    async def put_summary(
        self,
        thread_id: str,
        text: str,
        overwrite: bool = False,
        message_count: int | None = None,
    ) -> bool:
        await asyncio.sleep(0)
        self.put_calls += 1
        if self.fail_summary_write:
            raise StorageUnavailableError("database offline")
        # No await between check and write: atomic on the event loop.
        if thread_id in self.summaries and not overwrite:
            return False
        if message_count is not None:
            held = sum(1 for r in self.emails.values() if r.thread_id == thread_id)
            if held != message_count:
                return False
        self.summaries[thread_id] = StoredSummary(thread_id, text, "2026-02-27 10:00:00")
        return True

    async def delete_summary(self, thread_id: str) -> bool:
        await asyncio.sleep(0)
        return self.summaries.pop(thread_id, None) is not None


class ScriptedBackend:
    """GenerationBackend that replays a fixed chunk list.

    ``fail_at`` makes it raise GenerationBackendError before yielding that
    index.  ``pulled`` counts chunks actually handed out, and ``closed`` is
    set when the consumer closes the stream early.
    """

    def __init__(self, chunks: list[str] | None = None, fail_at: int | None = None) -> None:
        self.chunks = chunks if chunks is not None else ["Hello", " world"]
        self.fail_at = fail_at
        self.prompts: list[Prompt] = []
        self.pulled = 0
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: Prompt) -> AsyncGenerator[str, None]:
        self.prompts.append(prompt)
        try:
            for i, chunk in enumerate(self.chunks):
                await asyncio.sleep(0)
                if self.fail_at == i:
                    raise GenerationBackendError("backend exploded")
                self.pulled += 1
                yield chunk
            if self.fail_at is not None and self.fail_at >= len(self.chunks):
                raise GenerationBackendError("backend exploded")
        except GeneratorExit:
            self.closed = True
            raise


class CollectingSink:
    """StreamSink that records every event."""

    def __init__(self, close_after: int | None = None) -> None:
        self.events: list[StreamEvent] = []
        self._closed = False
        self._close_after = close_after

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise SinkClosedError("closed")
        self.events.append(event)
        if self._close_after is not None and len(self.events) >= self._close_after:
            self._closed = True

    @property
    def types(self) -> list[str]:
        return [e.type.value for e in self.events]

    @property
    def chunks(self) -> list[str]:
        return [e.text for e in self.events if isinstance(e, ChunkEvent)]


# ── Fixtures ───────────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> FakeStore:
    """Store seeded with the 'invoice' scenario: e1,e2 in t1 and e3 in t2."""
    s = FakeStore()
    s.add(
        make_row("e1", "t1", sender="alice@example.com", date="2026-02-20T09:00:00+00:00"),
        make_row("e2", "t1", sender="bob@example.com", subject="Re: Invoice #42",
                 body="Paid, thanks.", date="2026-02-21T09:00:00+00:00"),
        make_row("e3", "t2", sender="carol@example.com", subject="Invoice overdue",
                 body="Your invoice is overdue.", date="2026-02-22T09:00:00+00:00"),
    )
    s.neighbors = [
        EmailRef("e1", "t1", 0.9),
        EmailRef("e2", "t1", 0.8),
        EmailRef("e3", "t2", 0.7),
    ]
    return s


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def orchestrator(store: FakeStore, backend: ScriptedBackend) -> RequestOrchestrator:
    return RequestOrchestrator(
        retrieval=RetrievalService(store, top_k=10, min_similarity=0.3),
        pipeline=GenerationPipeline(backend, store),
        cache=SummaryCache(store),
        threads=store,
    )
