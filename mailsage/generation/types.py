"""Generation request variants and the prompt shape sent to the backend."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

from mailsage.errors import InvalidComposeModeError, NoContextError, ThreadNotFoundError
from mailsage.storage.models import EmailRef, EmailRow


class RequestKind(str, Enum):
    """Tag that selects the generation flow for a request."""

    SEARCH_ANSWER = "search_answer"
    SUMMARIZE = "summarize"
    COMPOSE = "compose"


class ComposeMode(str, Enum):
    """How compose treats its input body."""

    WRITE = "write"      # body is a brief for a new email
    IMPROVE = "improve"  # body is existing text to revise

    @classmethod
    def parse(cls, value: object) -> ComposeMode:
        """Coerce a mode name, rejecting anything that is not write/improve."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidComposeModeError(
                f"Compose mode must be one of {[m.value for m in cls]}, got {value!r}"
            ) from None


# ── Request variants ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SearchAnswer:
    """Answer a query grounded in the retrieved emails."""

    kind: ClassVar[RequestKind] = RequestKind.SEARCH_ANSWER

    query: str
    context: tuple[EmailRef, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "context", tuple(self.context))
        if not self.context:
            raise NoContextError(
                f"SearchAnswer for {self.query!r} built with no retrieved context"
            )


@dataclass(frozen=True)
class Summarize:
    """Summarise one thread from its messages."""

    kind: ClassVar[RequestKind] = RequestKind.SUMMARIZE

    thread_id: str
    messages: tuple[EmailRow, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        if not self.messages:
            raise ThreadNotFoundError(f"Thread {self.thread_id!r} has no messages")


@dataclass(frozen=True)
class Compose:
    """Write a new email from a brief, or improve an existing draft."""

    kind: ClassVar[RequestKind] = RequestKind.COMPOSE

    body: str
    mode: ComposeMode

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", ComposeMode.parse(self.mode))


GenerationRequest = Union[SearchAnswer, Summarize, Compose]


# ── Prompt ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Prompt:
    """A system instruction plus a single user message."""

    system: str
    user: str
