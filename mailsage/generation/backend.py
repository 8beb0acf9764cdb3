"""Text-generation backends: the protocol the pipeline consumes and the Claude implementation."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from typing import Protocol, runtime_checkable

import anthropic
from anthropic import AsyncAnthropic

from mailsage.errors import GenerationBackendError
from mailsage.generation.types import Prompt

logger = logging.getLogger(__name__)

_MODEL = "claude-sonnet-4-6"
_MAX_TOKENS = 1024


@runtime_checkable
class GenerationBackend(Protocol):
    """Anything that turns a prompt into a lazy stream of text fragments."""

    def generate(self, prompt: Prompt) -> AsyncGenerator[str, None]:
        """Yield text fragments in generation order.

        Implementations raise GenerationBackendError on failure, possibly
        after some fragments have already been yielded.
        """
        ...


class AnthropicBackend:
    """Streams text deltas from Claude via ``AsyncAnthropic.messages.stream``.

    Usage::

        backend = AnthropicBackend()
        async for text in backend.generate(prompt):
            ...
    """

    def __init__(
        self,
        model: str = _MODEL,
        max_tokens: int = _MAX_TOKENS,
        api_key: str | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._client = client or AsyncAnthropic(
            api_key=api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        )

    async def generate(self, prompt: Prompt) -> AsyncGenerator[str, None]:
        """Yield non-empty text deltas as Claude produces them.

        Raises:
            GenerationBackendError: on any Anthropic API failure, before or mid-stream.
        """
        try:
            async with self._client.messages.stream(
                model=self._model,
                max_tokens=self._max_tokens,
                system=prompt.system,
                messages=[{"role": "user", "content": prompt.user}],
            ) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except anthropic.APIError as exc:
            logger.debug("Claude streaming failed (model=%s): %s", self._model, exc)
            raise GenerationBackendError(str(exc)) from exc
