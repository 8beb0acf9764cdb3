"""Error taxonomy shared by retrieval, caching, generation, and orchestration.

Every error is scoped to a single request.  ``public_message`` is what the
orchestrator puts in the terminal ``error`` event; ``None`` means the
exception text itself is safe to show verbatim.
"""


class MailsageError(Exception):
    """Base class for all request-scoped errors."""

    public_message: str | None = "Something went wrong while handling the request."

    def user_message(self) -> str:
        return self.public_message if self.public_message is not None else str(self)


class EmptyQueryError(MailsageError, ValueError):
    """Raised when a search query is empty or whitespace-only."""

    public_message = None

    def __init__(self, message: str = "Search query must not be empty.") -> None:
        super().__init__(message)


class StorageUnavailableError(MailsageError):
    """Raised when the email store cannot be reached.  Safe to retry."""

    public_message = "Email storage is currently unavailable. Please try again."


class ThreadNotFoundError(MailsageError):
    """Raised when a thread has no stored messages."""

    public_message = None


class NoContextError(MailsageError):
    """Raised when a search answer is requested without any retrieved context.

    The orchestrator short-circuits empty retrievals, so seeing this means a
    caller skipped that check.
    """


class GenerationBackendError(MailsageError):
    """Raised when the text-generation backend fails, possibly mid-stream."""

    public_message = "AI generation failed before the response was complete."


class DuplicateSummaryError(MailsageError):
    """Raised when a summary write loses: one already exists, or the thread changed under it."""

    def __init__(self, thread_id: str) -> None:
        super().__init__(
            f"Summary for thread {thread_id!r} not stored: one already exists "
            "or the thread has changed"
        )
        self.thread_id = thread_id


class InvalidComposeModeError(MailsageError, ValueError):
    """Raised when compose is called without a valid ``write``/``improve`` mode."""

    public_message = None
