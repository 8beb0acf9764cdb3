"""GenerationPipeline — prompt construction plus streamed generation for each flow."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import aclosing
from functools import partial
from typing import Protocol

from mailsage.errors import NoContextError
from mailsage.generation.backend import GenerationBackend
from mailsage.generation.prompts import (
    build_compose_prompt,
    build_search_prompt,
    build_summary_prompt,
)
from mailsage.generation.types import (
    Compose,
    GenerationRequest,
    Prompt,
    RequestKind,
    SearchAnswer,
    Summarize,
)
from mailsage.storage.models import EmailRow

logger = logging.getLogger(__name__)


class ContextReader(Protocol):
    """Reads full email rows for the refs a search answer is grounded on."""

    async def get_emails_by_ids(self, email_ids: list[str]) -> list[EmailRow]: ...


class GenerationPipeline:
    """Wraps a GenerationBackend with the three request flows.

    Each flow returns a lazy, single-use async iterator of non-empty text
    chunks.  The pipeline keeps no per-request state, so concurrent requests
    never affect each other.

    Usage::

        pipeline = GenerationPipeline(AnthropicBackend(), store)
        async for chunk in pipeline.stream(Compose("thank Bob", ComposeMode.WRITE)):
            print(chunk, end="")
    """

    def __init__(self, backend: GenerationBackend, context: ContextReader) -> None:
        self._backend = backend
        self._context = context
        self._flows: dict[RequestKind, Callable[..., AsyncGenerator[str, None]]] = {
            RequestKind.SEARCH_ANSWER: self.answer,
            RequestKind.SUMMARIZE: self.summarize,
            RequestKind.COMPOSE: self.compose,
        }

    def stream(self, request: GenerationRequest) -> AsyncGenerator[str, None]:
        """Dispatch a request to its flow by its kind tag."""
        return self._flows[request.kind](request)

    def answer(self, request: SearchAnswer) -> AsyncGenerator[str, None]:
        """Grounded answer over the emails behind request.context, in rank order."""
        return self._generate(partial(self._search_prompt, request))

    def summarize(self, request: Summarize) -> AsyncGenerator[str, None]:
        return self._generate(partial(self._summary_prompt, request))

    def compose(self, request: Compose) -> AsyncGenerator[str, None]:
        return self._generate(partial(self._compose_prompt, request))

    # ── Prompts ────────────────────────────────────────────────────────────────

    async def _search_prompt(self, request: SearchAnswer) -> Prompt:
        email_ids = list(dict.fromkeys(ref.email_id for ref in request.context))
        emails = await self._context.get_emails_by_ids(email_ids)
        if not emails:
            raise NoContextError(
                f"None of the {len(email_ids)} retrieved email(s) are in storage"
            )
        return build_search_prompt(request.query, emails)

    async def _summary_prompt(self, request: Summarize) -> Prompt:
        return build_summary_prompt(request.messages)

    async def _compose_prompt(self, request: Compose) -> Prompt:
        return build_compose_prompt(request.body, request.mode)

    async def _generate(
        self, build_prompt: Callable[[], Awaitable[Prompt]]
    ) -> AsyncGenerator[str, None]:
        # One generator per request owns the backend stream, so closing it
        # closes the backend stream immediately.
        prompt = await build_prompt()
        logger.debug("Generating from a %d-char prompt", len(prompt.system) + len(prompt.user))
        async with aclosing(self._backend.generate(prompt)) as chunks:
            async for chunk in chunks:
                if chunk:
                    yield chunk
