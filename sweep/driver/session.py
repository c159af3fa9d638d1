"""Aggregation session: one end-to-end "load everything for key K" run.

The session fetches page 1 itself so a wholly empty collection fails fast
without starting any workers, then hands pages 2.. to the worker pool and
merges the two parts. It owns the cancel token every fetch is raced
against, and only commits to the collection cache if that token was never
cancelled.

State machine::

    CREATED -> FETCHING_FIRST_PAGE -> EMPTY
                                   -> POPULATING -> MERGING -> COMPLETED
    (any state before COMPLETED)   -> CANCELLED
    FETCHING_FIRST_PAGE            -> FAILED
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

from sweep.common.cache import CollectionCache
from sweep.common.cancellation import CancelToken
from sweep.common.exceptions import (
    AggregationFailed,
    FetchCancelled,
    NetworkError,
)
from sweep.config import AggregationConfig
from sweep.data_types import (
    AggregationProgress,
    AggregationResult,
    AggregationStatus,
    CollectionKey,
    PageKey,
    Record,
)
from sweep.driver.pool import PaginationWorkerPool
from sweep.driver.progress import ThrottledCallback, estimate_total
from sweep.fetcher import PageFetcher
from sweep.parsing import Parser

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[AggregationProgress], None]


class SessionState(Enum):
    CREATED = "created"
    FETCHING_FIRST_PAGE = "fetching_first_page"
    EMPTY = "empty"
    POPULATING = "populating"
    MERGING = "merging"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {
        SessionState.EMPTY,
        SessionState.COMPLETED,
        SessionState.CANCELLED,
        SessionState.FAILED,
    }
)


class AggregationSession:
    """Aggregates every page of one collection.

    A session runs once. Cancelling it (directly, or by a SessionManager
    superseding it) makes ``run()`` return a CANCELLED result and leaves the
    collection cache untouched.

    Attributes:
        collection_key: The collection being aggregated.
        token: Cancel token passed into every fetch.
        state: Current SessionState.
        first_page_records: Records parsed from page 1, held apart from the
            pool's accumulation until merge.
    """

    def __init__(
        self,
        collection_key: CollectionKey,
        fetcher: PageFetcher,
        parser: Parser,
        collection_cache: CollectionCache,
        config: AggregationConfig | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.collection_key = collection_key
        self.fetcher = fetcher
        self.parser = parser
        self.collection_cache = collection_cache
        self.config = config or AggregationConfig()
        self.on_progress = on_progress

        self.token = CancelToken()
        self.state = SessionState.CREATED
        self.first_page_records: list[Record] = []
        self.result: AggregationResult | None = None
        self._started_at: float | None = None
        self._progress: ThrottledCallback[list[Record]] | None = None

    def __repr__(self) -> str:
        return (
            f"<AggregationSession {self.collection_key!r} "
            f"{self.state.value}>"
        )

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def cancel(self, reason: str | None = None) -> None:
        """Cancel the session. Safe to call at any time, any number of times."""
        if not self.token.cancelled and not self.done:
            logger.info(
                f"Cancelling session for '{self.collection_key}'"
                + (f": {reason}" if reason else "")
            )
        self.token.cancel(reason)

    async def run(self) -> AggregationResult:
        """Aggregate the collection.

        Returns:
            COMPLETED result with every record in page order, EMPTY result if
            page 1 had no records, or CANCELLED result if the session was
            cancelled before it could commit.

        Raises:
            AggregationFailed: If page 1 could not be fetched.
            RuntimeError: If the session has already been run.
        """
        if self.state is not SessionState.CREATED:
            raise RuntimeError(f"{self!r} has already been run")

        self._started_at = time.monotonic()
        logger.info(f"Starting aggregation of '{self.collection_key}'")
        try:
            self.result = await self._run()
        except Exception:
            if self.state not in TERMINAL_STATES:
                self.state = SessionState.FAILED
            raise
        finally:
            if self._progress is not None:
                self._progress.cancel()
            # A finished session's token stays cancelled for good
            self.token.cancel("session finished")

        logger.info(
            f"Aggregation of '{self.collection_key}' {self.state.value}: "
            f"{len(self.result)} records from {self.result.pages_fetched} "
            f"pages in {self.result.elapsed:.2f}s"
        )
        return self.result

    async def _run(self) -> AggregationResult:
        self.state = SessionState.FETCHING_FIRST_PAGE
        try:
            payload = await self.fetcher.fetch(
                PageKey(self.collection_key, 1), self.token
            )
        except FetchCancelled:
            return self._cancelled(pages_fetched=0)
        except NetworkError as e:
            self.state = SessionState.FAILED
            logger.error(
                f"First page of '{self.collection_key}' failed: {e}",
                extra={"collection_key": self.collection_key},
            )
            raise AggregationFailed(
                self.collection_key, e, context={"page": 1}
            ) from e

        if self.token.cancelled:
            return self._cancelled(pages_fetched=1)

        first_page = self.parser(payload)
        if not first_page:
            self.state = SessionState.EMPTY
            result = AggregationResult(
                collection_key=self.collection_key,
                status=AggregationStatus.EMPTY,
                pages_fetched=1,
                elapsed=self._elapsed(),
            )
            self.collection_cache.put(result)
            return result

        self.state = SessionState.POPULATING
        self.first_page_records = first_page
        if self.on_progress is not None:
            self._progress = ThrottledCallback(
                self._report_progress, self.config.progress_interval
            )
            self._progress(first_page)

        pool = PaginationWorkerPool(
            fetcher=self.fetcher,
            parser=self.parser,
            collection_key=self.collection_key,
            token=self.token,
            start_page=self.config.start_page,
            concurrency=self.config.concurrency,
            empty_page_threshold=self.config.empty_page_threshold,
            error_backoff=self.config.error_backoff,
            on_progress=self._on_pool_progress,
        )
        outcome = await pool.run()

        if self.token.cancelled:
            return self._cancelled(pages_fetched=1 + outcome.pages_fetched)

        self.state = SessionState.MERGING
        result = AggregationResult(
            collection_key=self.collection_key,
            records=tuple(first_page) + tuple(outcome.records),
            status=AggregationStatus.COMPLETED,
            pages_fetched=1 + outcome.pages_fetched,
            failed_pages=tuple(outcome.failed_pages),
            elapsed=self._elapsed(),
        )
        if self.token.cancelled:
            return self._cancelled(pages_fetched=result.pages_fetched)

        self.collection_cache.put(result)
        if self._progress is not None:
            self._progress.flush()
        self.state = SessionState.COMPLETED
        return result

    def _on_pool_progress(self, pool_records: list[Record]) -> None:
        if self._progress is not None:
            self._progress(self.first_page_records + pool_records)

    def _report_progress(self, records: list[Record]) -> None:
        if self.on_progress is None:
            return
        self.on_progress(
            AggregationProgress(
                collection_key=self.collection_key,
                records=tuple(records),
                estimated_total=estimate_total(
                    len(self.first_page_records),
                    len(records),
                    multiplier=self.config.estimate_multiplier,
                    headroom=self.config.estimate_headroom,
                ),
            )
        )

    def _cancelled(self, pages_fetched: int) -> AggregationResult:
        self.state = SessionState.CANCELLED
        return AggregationResult(
            collection_key=self.collection_key,
            status=AggregationStatus.CANCELLED,
            pages_fetched=pages_fetched,
            elapsed=self._elapsed(),
        )

    def _elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at
