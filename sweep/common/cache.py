"""Process-wide memo caches for raw pages and aggregated collections.

Both caches are shared across sessions, so a live session may write while a
newer one reads. Each mapping is guarded by a threading.Lock.
"""

from __future__ import annotations

import logging
import threading

from sweep.data_types import (
    AggregationResult,
    CollectionKey,
    PageKey,
    RawPage,
)

logger = logging.getLogger(__name__)


class PageCache:
    """Maps PageKey to the raw payload fetched for it.

    The mapping is append-only: once a payload is stored for a key it is
    never overwritten. A second ``put`` for the same key is a no-op, which
    makes racing writers of identical payloads harmless.
    """

    def __init__(self) -> None:
        self._pages: dict[PageKey, RawPage] = {}
        self._lock = threading.Lock()

    def get(self, key: PageKey) -> RawPage | None:
        with self._lock:
            return self._pages.get(key)

    def put(self, key: PageKey, payload: RawPage) -> None:
        with self._lock:
            self._pages.setdefault(key, payload)

    def clear(self) -> None:
        with self._lock:
            self._pages.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._pages

    def __len__(self) -> int:
        with self._lock:
            return len(self._pages)


class CollectionCache:
    """Maps a collection key to its last complete AggregationResult.

    Entries are replaced wholesale. Cancelled results are rejected so a
    partial run can never shadow a complete one.
    """

    def __init__(self) -> None:
        self._results: dict[CollectionKey, AggregationResult] = {}
        self._lock = threading.Lock()

    def get(self, key: CollectionKey) -> AggregationResult | None:
        with self._lock:
            return self._results.get(key)

    def put(self, result: AggregationResult) -> None:
        """Store a complete result, replacing any previous entry.

        Raises:
            ValueError: If the result is not complete.
        """
        if not result.complete:
            raise ValueError(
                f"Refusing to cache {result.status.value} result for "
                f"collection '{result.collection_key}'"
            )
        with self._lock:
            self._results[result.collection_key] = result
        logger.debug(
            f"Cached {len(result)} records for collection "
            f"'{result.collection_key}'"
        )

    def invalidate(self, key: CollectionKey) -> bool:
        """Drop the entry for ``key``.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            return self._results.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._results

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)
