"""Page fetcher: one page through the cache, honoring cancellation."""

from __future__ import annotations

import asyncio
import logging

from sweep.common.cache import PageCache
from sweep.common.cancellation import CancelToken
from sweep.common.exceptions import FetchCancelled
from sweep.common.request_manager import Transport
from sweep.data_types import PageKey, RawPage

logger = logging.getLogger(__name__)


class PageFetcher:
    """Retrieves raw pages through a PageCache.

    A cache hit returns without touching the transport. A miss issues one
    transport call, raced against the caller's cancel token; if the token
    fires first the transport task is cancelled and FetchCancelled raised.

    Attributes:
        transport: The collaborator that performs the actual retrieval.
        cache: Shared page cache.
        network_calls: Number of transport calls issued so far.
    """

    def __init__(
        self, transport: Transport, cache: PageCache | None = None
    ) -> None:
        self.transport = transport
        self.cache = cache if cache is not None else PageCache()
        self.network_calls = 0

    async def fetch(self, page_key: PageKey, token: CancelToken) -> RawPage:
        """Return the raw payload for ``page_key``.

        Args:
            page_key: The page to fetch.
            token: The session's cancel token.

        Returns:
            The raw page payload.

        Raises:
            FetchCancelled: If the token is or becomes cancelled.
            NetworkError: If the transport fails.
        """
        token.raise_if_cancelled(page_key.page)

        cached = self.cache.get(page_key)
        if cached is not None:
            logger.debug(f"Page cache hit for {page_key.cache_key}")
            return cached

        self.network_calls += 1
        logger.debug(f"Fetching page {page_key.cache_key}")

        fetch_task = asyncio.ensure_future(self.transport.get(page_key))
        cancel_task = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait(
                {fetch_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            # Also reached when the caller itself is cancelled
            cancel_task.cancel()
            if not fetch_task.done():
                fetch_task.cancel()

        if not fetch_task.done() or fetch_task.cancelled():
            raise FetchCancelled(page_key.page)

        payload = fetch_task.result()
        self.cache.put(page_key, payload)
        return payload
