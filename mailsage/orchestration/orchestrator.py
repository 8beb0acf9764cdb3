"""RequestOrchestrator — runs search, summary, and compose requests end to end.

Each request walks a small state machine and writes its events to one sink:

    IDLE → RETRIEVING → (NO_RESULTS | REFERENCES_EMITTED) → GENERATING
         → COMPLETING → DONE

with FAILED and CANCELLED as terminal states reachable from anywhere.  Every
request that gets past input validation ends with exactly one DoneEvent, as
long as its sink is still open.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncGenerator
from contextlib import aclosing
from enum import Enum
from typing import Protocol

from mailsage.cache.summary import SummaryCache
from mailsage.errors import (
    DuplicateSummaryError,
    GenerationBackendError,
    MailsageError,
    StorageUnavailableError,
)
from mailsage.generation.pipeline import GenerationPipeline
from mailsage.generation.types import Compose, ComposeMode, SearchAnswer, Summarize
from mailsage.orchestration.cancellation import CancellationToken
from mailsage.orchestration.events import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    NoResultsEvent,
    ReferencesEvent,
    SinkClosedError,
    StreamEvent,
    StreamSink,
)
from mailsage.retrieval.service import RetrievalService, validate_query
from mailsage.storage.models import EmailRow

logger = logging.getLogger(__name__)

_UNEXPECTED_ERROR_MESSAGE = "Something went wrong while handling the request."


class RequestState(str, Enum):
    IDLE = "idle"
    RETRIEVING = "retrieving"
    NO_RESULTS = "no_results"
    REFERENCES_EMITTED = "references_emitted"
    GENERATING = "generating"
    COMPLETING = "completing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL = {RequestState.DONE, RequestState.FAILED, RequestState.CANCELLED}


class ThreadSource(Protocol):
    """Reads a thread's messages for summarisation."""

    async def get_thread_messages(self, thread_id: str) -> list[EmailRow]: ...


# ── Per-request run ────────────────────────────────────────────────────────────


class _Run:
    """State, sink, and cancellation token for one request."""

    def __init__(self, flow: str, subject: str, sink: StreamSink, token: CancellationToken) -> None:
        self.id = uuid.uuid4().hex[:8]
        self.flow = flow
        self.subject = subject
        self.sink = sink
        self.token = token
        self.state = RequestState.IDLE

    @property
    def stopped(self) -> bool:
        return self.token.cancelled or self.sink.closed

    def enter(self, state: RequestState) -> None:
        logger.debug("%s[%s] %s → %s", self.flow, self.id, self.state.value, state.value)
        self.state = state

    async def emit(self, event: StreamEvent) -> bool:
        """Send one event unless the request was stopped.  Returns False if not sent."""
        if self.stopped:
            return False
        try:
            await self.sink.send(event)
        except SinkClosedError:
            logger.info("%s[%s] consumer disconnected", self.flow, self.id)
            return False
        return True

    async def finish(self) -> RequestState:
        """Emit the completion marker and settle in DONE, or CANCELLED if stopped."""
        if self.stopped:
            self.enter(RequestState.CANCELLED)
            logger.info(
                "%s[%s] stopped for %r: %s",
                self.flow,
                self.id,
                self.subject,
                self.token.reason or "consumer closed",
            )
            await self._send_terminal(DoneEvent())
            return self.state
        if self.state != RequestState.NO_RESULTS:
            self.enter(RequestState.COMPLETING)
        await self._send_terminal(DoneEvent())
        self.enter(RequestState.DONE)
        return self.state

    async def fail(self, exc: Exception) -> RequestState:
        """Emit an error marker followed by the completion marker."""
        if isinstance(exc, MailsageError):
            message = exc.user_message()
            logger.error(
                "%s[%s] failed in %s for %r: %s",
                self.flow,
                self.id,
                self.state.value,
                self.subject,
                exc,
                exc_info=not isinstance(exc, (StorageUnavailableError, GenerationBackendError)),
            )
        else:
            message = _UNEXPECTED_ERROR_MESSAGE
            logger.error(
                "%s[%s] unexpected error in %s for %r: %s",
                self.flow,
                self.id,
                self.state.value,
                self.subject,
                exc,
                exc_info=True,
            )
        self.enter(RequestState.FAILED)
        await self._send_terminal(ErrorEvent(message), DoneEvent())
        return self.state

    async def _send_terminal(self, *events: StreamEvent) -> None:
        # Terminal markers go out even after cancellation, but never to a closed sink.
        for event in events:
            if self.sink.closed:
                return
            try:
                await self.sink.send(event)
            except SinkClosedError:
                return
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "%s[%s] could not deliver %s: %s",
                    self.flow,
                    self.id,
                    event.type.value,
                    exc,
                    exc_info=True,
                )
                return


# ── Orchestrator ───────────────────────────────────────────────────────────────


class RequestOrchestrator:
    """Sequences retrieval, caching, and generation for each incoming request.

    Requests are independent coroutines; concurrent requests share only the
    store and the pipeline.  A new search supersedes the previous in-flight
    search by cancelling its token.

    Usage::

        orchestrator = RequestOrchestrator(retrieval, pipeline, cache, store)
        await orchestrator.search("invoice from Acme", sink)
        await orchestrator.summarize("thread_1", sink)
        await orchestrator.compose("thank Bob for the demo", "write", sink)
    """

    def __init__(
        self,
        retrieval: RetrievalService,
        pipeline: GenerationPipeline,
        cache: SummaryCache,
        threads: ThreadSource,
    ) -> None:
        self._retrieval = retrieval
        self._pipeline = pipeline
        self._cache = cache
        self._threads = threads
        self._active_search: CancellationToken | None = None

    # ── Search ─────────────────────────────────────────────────────────────────

    async def search(
        self,
        query: str,
        sink: StreamSink,
        token: CancellationToken | None = None,
    ) -> RequestState:
        """Stream references, then a grounded answer, then done.

        Raises:
            EmptyQueryError: before anything is emitted, if the query is blank.
        """
        query = validate_query(query)
        token = token or CancellationToken()
        self._supersede_search(token)
        run = _Run("search", query, sink, token)
        try:
            run.enter(RequestState.RETRIEVING)
            refs = await self._retrieval.search(query)
            if not refs:
                run.enter(RequestState.NO_RESULTS)
                await run.emit(NoResultsEvent())
                return await run.finish()

            threads = await self._retrieval.resolve_threads(refs)
            if not await run.emit(ReferencesEvent(tuple(threads))):
                return await run.finish()
            run.enter(RequestState.REFERENCES_EMITTED)

            run.enter(RequestState.GENERATING)
            await self._pump(run, self._pipeline.stream(SearchAnswer(query, tuple(refs))))
            return await run.finish()
        except Exception as exc:  # noqa: BLE001
            return await run.fail(exc)
        finally:
            if self._active_search is token:
                self._active_search = None

    # ── Summary ────────────────────────────────────────────────────────────────

    async def summarize(
        self,
        thread_id: str,
        sink: StreamSink,
        token: CancellationToken | None = None,
    ) -> RequestState:
        """Stream the thread's cached summary, or generate, stream, and cache one."""
        run = _Run("summarize", thread_id, sink, token or CancellationToken())
        try:
            run.enter(RequestState.RETRIEVING)
            cached = await self._cache.get(thread_id)
            if cached is not None:
                logger.info("summarize[%s] cache hit for thread %s", run.id, thread_id)
                await run.emit(ChunkEvent(cached.text))
                return await run.finish()

            messages = await self._threads.get_thread_messages(thread_id)
            request = Summarize(thread_id, tuple(messages))

            run.enter(RequestState.GENERATING)
            text = await self._pump(run, self._pipeline.stream(request))
            if text == "":
                raise GenerationBackendError(f"Empty summary generated for thread {thread_id!r}")
            if text:
                await self._store_summary(thread_id, text, len(request.messages))
            return await run.finish()
        except Exception as exc:  # noqa: BLE001
            return await run.fail(exc)

    async def _store_summary(self, thread_id: str, text: str, message_count: int) -> None:
        try:
            await self._cache.put(thread_id, text, message_count=message_count)
        except DuplicateSummaryError:
            # Lost a race, or a new message arrived mid-generation.
            logger.debug(
                "Discarding summary for thread %s: already stored or thread changed", thread_id
            )
        except StorageUnavailableError as exc:
            logger.warning("Summary for thread %s delivered but not cached: %s", thread_id, exc)

    # ── Compose ────────────────────────────────────────────────────────────────

    async def compose(
        self,
        body: str,
        mode: ComposeMode | str,
        sink: StreamSink,
        token: CancellationToken | None = None,
    ) -> RequestState:
        """Stream a written or improved email body.

        Raises:
            InvalidComposeModeError: before anything is emitted, if mode is not write/improve.
        """
        request = Compose(body, mode)  # type: ignore[arg-type]
        run = _Run("compose", request.mode.value, sink, token or CancellationToken())
        try:
            run.enter(RequestState.GENERATING)
            await self._pump(run, self._pipeline.stream(request))
            return await run.finish()
        except Exception as exc:  # noqa: BLE001
            return await run.fail(exc)

    # ── Internal ───────────────────────────────────────────────────────────────

    def _supersede_search(self, token: CancellationToken) -> None:
        previous = self._active_search
        if previous is not None and previous is not token:
            previous.cancel("superseded by a newer search")
        self._active_search = token

    async def _pump(self, run: _Run, chunks: AsyncGenerator[str, None]) -> str | None:
        """Forward chunks to the sink in order.  Returns the full text, or None if stopped.

        The stop check happens before each pull, so a cancelled request never
        asks the backend for another chunk.
        """
        parts: list[str] = []
        async with aclosing(chunks) as stream:
            if run.stopped:
                return None
            async for chunk in stream:
                if not await run.emit(ChunkEvent(chunk)):
                    return None
                parts.append(chunk)
                if run.stopped:
                    return None
        return "".join(parts)
