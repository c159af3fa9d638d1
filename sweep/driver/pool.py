"""Pagination worker pool.

This module contains the concurrent page-discovery algorithm. The total page
count is unknown, so workers keep claiming increasing page numbers until the
source looks exhausted:

1. A shared "next page" counter is claimed and incremented atomically.
2. A page with no records stops the worker that fetched it and bumps a
   shared empty-page counter; a page with records resets that counter.
3. Once the counter reaches the threshold (two by default) a global stop
   flag is raised and every worker stops after its in-flight fetch.
4. A transport failure abandons that page, waits a short backoff and stops
   the worker. Results gathered so far are kept.

Records are stored per page and returned sorted by page number, whatever
order the pages completed in.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sweep.common.cancellation import CancelToken
from sweep.common.exceptions import FetchCancelled, NetworkError
from sweep.data_types import CollectionKey, PageKey, Record
from sweep.fetcher import PageFetcher
from sweep.parsing import Parser

logger = logging.getLogger(__name__)


@dataclass
class PoolOutcome:
    """What a pool run produced.

    Attributes:
        records: Records from every non-empty page, in page order.
        pages_fetched: Pages whose payload was retrieved and parsed.
        failed_pages: Pages abandoned after a transport failure.
        empty_pages: Pages that parsed to zero records.
        stopped_by_empty_pages: True if the consecutive-empty threshold was hit.
    """

    records: list[Record] = field(default_factory=list)
    pages_fetched: int = 0
    failed_pages: list[int] = field(default_factory=list)
    empty_pages: list[int] = field(default_factory=list)
    stopped_by_empty_pages: bool = False


class PaginationWorkerPool:
    """Fetches pages from ``start_page`` onward with a fixed number of workers.

    Example usage:
        pool = PaginationWorkerPool(
            fetcher, parse_hospital_listing, "42", token, concurrency=3
        )
        outcome = await pool.run()
        # outcome.records holds pages 2.. in page order
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        parser: Parser,
        collection_key: CollectionKey,
        token: CancelToken,
        start_page: int = 2,
        concurrency: int = 3,
        empty_page_threshold: int = 2,
        error_backoff: float = 0.1,
        on_progress: Callable[[list[Record]], None] | None = None,
    ) -> None:
        """Initialize the pool.

        Args:
            fetcher: Page fetcher shared with the owning session.
            parser: Turns a raw payload into records; must not raise.
            collection_key: The collection being aggregated.
            token: Cancel token of the owning session.
            start_page: First page to claim.
            concurrency: Number of workers.
            empty_page_threshold: Consecutive empty pages that stop the pool.
            error_backoff: Seconds to wait after a transport failure.
            on_progress: Optional callback invoked with the page-ordered
                records accumulated so far after every non-empty page.
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        if start_page < 1:
            raise ValueError(f"start_page must be at least 1, got {start_page}")

        self.fetcher = fetcher
        self.parser = parser
        self.collection_key = collection_key
        self.token = token
        self.start_page = start_page
        self.concurrency = concurrency
        self.empty_page_threshold = empty_page_threshold
        self.error_backoff = error_backoff
        self.on_progress = on_progress

        # Shared worker state, only touched under self._lock
        self._lock = asyncio.Lock()
        self._next_page = start_page
        self._empty_count = 0
        self._stop = False
        self._pages: dict[int, list[Record]] = {}
        self._outcome = PoolOutcome()

    async def run(self) -> PoolOutcome:
        """Run all workers to completion and return what they gathered."""
        workers = [
            asyncio.create_task(self._worker(i))
            for i in range(self.concurrency)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        self._outcome.records = self._ordered_records()
        self._outcome.failed_pages.sort()
        self._outcome.empty_pages.sort()
        logger.debug(
            f"Pool for '{self.collection_key}' finished: "
            f"{self._outcome.pages_fetched} pages, "
            f"{len(self._outcome.records)} records, "
            f"failed pages {self._outcome.failed_pages}"
        )
        return self._outcome

    async def _claim(self) -> int | None:
        """Claim the next page number, or None if the pool should stop."""
        async with self._lock:
            if self._stop or self.token.cancelled:
                return None
            page = self._next_page
            self._next_page += 1
            return page

    async def _worker(self, worker_id: int) -> None:
        """Worker coroutine that claims and processes pages until told to stop.

        Args:
            worker_id: Identifier for this worker (for debugging).
        """
        while True:
            page = await self._claim()
            if page is None:
                break

            page_key = PageKey(self.collection_key, page)
            try:
                payload = await self.fetcher.fetch(page_key, self.token)
            except FetchCancelled:
                logger.debug(f"Worker {worker_id} cancelled on page {page}")
                break
            except NetworkError as e:
                logger.warning(
                    f"Abandoning page {page_key.cache_key}: {e}",
                    extra={"page": page, "worker_id": worker_id},
                )
                async with self._lock:
                    self._outcome.failed_pages.append(page)
                await asyncio.sleep(self.error_backoff)
                break

            records = self.parser(payload)

            async with self._lock:
                self._outcome.pages_fetched += 1
                if not records:
                    self._empty_count += 1
                    self._outcome.empty_pages.append(page)
                    if self._empty_count >= self.empty_page_threshold:
                        self._stop = True
                        self._outcome.stopped_by_empty_pages = True
                    snapshot = None
                else:
                    self._empty_count = 0
                    self._pages[page] = list(records)
                    snapshot = self._ordered_records()

            if snapshot is None:
                logger.debug(f"Worker {worker_id} saw empty page {page}")
                break

            if self.on_progress is not None:
                self.on_progress(snapshot)

    def _ordered_records(self) -> list[Record]:
        return [
            record
            for page in sorted(self._pages)
            for record in self._pages[page]
        ]
