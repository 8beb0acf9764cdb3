"""Tests for AnthropicBackend — the Anthropic client is mocked."""

from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from mailsage.errors import GenerationBackendError
from mailsage.generation.backend import AnthropicBackend, GenerationBackend
from mailsage.generation.types import Prompt

PROMPT = Prompt(system="You summarise email threads.", user="Summarise this.")


class _FakeStream:
    """Stands in for the SDK's MessageStream: an async context manager with text_stream."""

    def __init__(self, texts: list[str], error: Exception | None = None) -> None:
        self._texts = texts
        self._error = error
        self.exited = False

    async def __aenter__(self) -> "_FakeStream":
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.exited = True

    @property
    def text_stream(self):  # type: ignore[no-untyped-def]
        return self._iter()

    async def _iter(self):  # type: ignore[no-untyped-def]
        for text in self._texts:
            yield text
        if self._error is not None:
            raise self._error


def _connection_error() -> anthropic.APIConnectionError:
    return anthropic.APIConnectionError(
        message="Connection error.",
        request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"),
    )


def _backend(stream: _FakeStream) -> tuple[AnthropicBackend, MagicMock]:
    client = MagicMock()
    client.messages.stream.return_value = stream
    return AnthropicBackend(model="claude-test", max_tokens=256, client=client), client


async def test_yields_text_deltas_in_order() -> None:
    backend, _ = _backend(_FakeStream(["Alice ", "", "paid."]))
    assert [t async for t in backend.generate(PROMPT)] == ["Alice ", "paid."]


async def test_passes_prompt_and_settings() -> None:
    backend, client = _backend(_FakeStream(["ok"]))
    [t async for t in backend.generate(PROMPT)]
    client.messages.stream.assert_called_once_with(
        model="claude-test",
        max_tokens=256,
        system="You summarise email threads.",
        messages=[{"role": "user", "content": "Summarise this."}],
    )


async def test_api_error_before_first_chunk() -> None:
    client = MagicMock()
    client.messages.stream.side_effect = _connection_error()
    backend = AnthropicBackend(client=client)
    with pytest.raises(GenerationBackendError):
        [t async for t in backend.generate(PROMPT)]


async def test_api_error_mid_stream_after_partial_output() -> None:
    backend, _ = _backend(_FakeStream(["partial"], error=_connection_error()))
    received: list[str] = []
    with pytest.raises(GenerationBackendError) as excinfo:
        async for text in backend.generate(PROMPT):
            received.append(text)
    assert received == ["partial"]
    assert isinstance(excinfo.value.__cause__, anthropic.APIConnectionError)


async def test_closing_early_exits_sdk_stream() -> None:
    stream = _FakeStream(["a", "b", "c"])
    backend, _ = _backend(stream)
    gen = backend.generate(PROMPT)
    assert await gen.__anext__() == "a"
    await gen.aclose()
    assert stream.exited is True


def test_satisfies_protocol() -> None:
    assert isinstance(AnthropicBackend(client=MagicMock()), GenerationBackend)
