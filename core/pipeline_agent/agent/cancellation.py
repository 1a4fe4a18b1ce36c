"""Cancellation signal threaded through engine, dispatcher and executor calls."""

import asyncio

from pipeline_agent.errors import ExchangeCancelledError


class CancelSignal:
    """One-shot cancellation flag for a single exchange.

    Long-running collaborators may call :meth:`raise_if_cancelled` at their
    own suspension points, or await :meth:`wait` to race against it.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExchangeCancelledError(self._reason)

    async def wait(self) -> None:
        await self._event.wait()
