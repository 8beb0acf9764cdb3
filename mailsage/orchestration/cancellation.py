"""Cooperative cancellation for in-flight requests."""

import asyncio


class CancellationToken:
    """Set once to ask a request to stop at its next suspension point.

    The orchestrator checks the token before every chunk pull and every
    emission; nothing is interrupted forcibly.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
