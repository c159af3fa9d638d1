"""Cooperative cancellation for aggregation sessions.

A CancelToken is owned by one session and passed explicitly into every page
fetch. Cancelling is permanent: a cancelled token never resets.
"""

from __future__ import annotations

import asyncio

from sweep.common.exceptions import FetchCancelled


class CancelToken:
    """One-shot cancellation flag backed by an asyncio.Event.

    ``cancel()`` is synchronous so a manager can cancel a session without
    awaiting anything. Coroutines can ``await token.wait()`` to race against
    cancellation.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    def raise_if_cancelled(self, page: int | None = None) -> None:
        """Raise FetchCancelled if the token has fired.

        Args:
            page: Page number to attach to the exception, if any.
        """
        if self._event.is_set():
            raise FetchCancelled(page)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "live"
        return f"<CancelToken {state}>"
