"""Session supersession manager and the public aggregation API.

A SessionManager holds at most one live AggregationSession. Starting a new
aggregation cancels whatever session is live, whatever its collection key,
so a stale run can never overwrite the caller's view of a newer one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any

from sweep.common.cache import CollectionCache, PageCache
from sweep.common.request_manager import AsyncRequestManager, Transport
from sweep.config import AggregationConfig, SourceConfig
from sweep.data_types import AggregationResult, CollectionKey
from sweep.driver.session import AggregationSession, ProgressCallback
from sweep.fetcher import PageFetcher
from sweep.parsing import Parser, parse_hospital_listing

logger = logging.getLogger(__name__)


class SessionManager:
    """Runs aggregations, one live session at a time.

    Example usage:
        async with SessionManager.from_source(
            SourceConfig(url_template="https://example.org/?page={page}&id={key}")
        ) as manager:
            result = await manager.aggregate("42")
            for record in result:
                print(record.name)
    """

    def __init__(
        self,
        transport: Transport,
        parser: Parser = parse_hospital_listing,
        config: AggregationConfig | None = None,
        page_cache: PageCache | None = None,
        collection_cache: CollectionCache | None = None,
        on_session_start: Callable[[CollectionKey], Awaitable[None]]
        | None = None,
        on_session_complete: Callable[
            [CollectionKey, str, Exception | None], Awaitable[None]
        ]
        | None = None,
        owns_transport: bool = False,
    ) -> None:
        """Initialize the manager.

        Args:
            transport: Retrieves raw pages. See sweep.common.request_manager.
            parser: Turns a raw page into records. Defaults to the hospital
                listing parser.
            config: Default tuning for every session.
            page_cache: Shared raw-page cache. A fresh one if not given.
            collection_cache: Shared aggregated-result cache. A fresh one if
                not given.
            on_session_start: Optional async callback invoked with the
                collection key when a session starts running.
            on_session_complete: Optional async callback invoked when a
                session ends. Receives the collection key, the status
                ("completed" | "empty" | "cancelled" | "failed") and the
                error (Exception | None).
            owns_transport: If True, the transport is closed when the
                manager is closed.
        """
        self.transport = transport
        self.parser = parser
        self.config = config or AggregationConfig()
        self.fetcher = PageFetcher(transport, page_cache)
        self.collection_cache = (
            collection_cache if collection_cache is not None else CollectionCache()
        )
        self.on_session_start = on_session_start
        self.on_session_complete = on_session_complete
        self._owns_transport = owns_transport

        self._lock = threading.Lock()
        self._current: AggregationSession | None = None

    @classmethod
    def from_source(
        cls, source: SourceConfig, **kwargs: Any
    ) -> SessionManager:
        """Build a manager with its own HTTP transport for ``source``."""
        return cls(
            AsyncRequestManager.from_config(source),
            owns_transport=True,
            **kwargs,
        )

    @property
    def page_cache(self) -> PageCache:
        return self.fetcher.cache

    @property
    def current(self) -> AggregationSession | None:
        """The live session, if any."""
        with self._lock:
            return self._current

    def start_session(
        self,
        collection_key: CollectionKey,
        concurrency: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> AggregationSession:
        """Create a session for ``collection_key``, superseding the live one.

        The previous session is cancelled unconditionally, even when its key
        equals the new one.

        Args:
            collection_key: The collection to aggregate.
            concurrency: Override for the number of pool workers.
            on_progress: Optional progress callback for this session.

        Returns:
            The new, not yet running, session.
        """
        config = self.config
        if concurrency is not None:
            config = replace(config, concurrency=concurrency)

        session = AggregationSession(
            collection_key=collection_key,
            fetcher=self.fetcher,
            parser=self.parser,
            collection_cache=self.collection_cache,
            config=config,
            on_progress=on_progress,
        )
        with self._lock:
            previous = self._current
            if previous is not None:
                previous.cancel(reason=f"superseded by '{collection_key}'")
            self._current = session
        return session

    async def aggregate(
        self,
        collection_key: CollectionKey,
        concurrency: int | None = None,
        on_progress: ProgressCallback | None = None,
        refresh: bool = False,
    ) -> AggregationResult:
        """Aggregate every record of ``collection_key``.

        Any live session is cancelled first. A complete cached result is
        returned without network calls unless ``refresh`` is set.

        Args:
            collection_key: The collection to aggregate.
            concurrency: Number of pool workers. Defaults to the manager's
                config (3 unless configured otherwise).
            on_progress: Optional callback receiving AggregationProgress
                snapshots, rate limited by the config's progress_interval.
            refresh: Ignore the collection cache and fetch again.

        Returns:
            The AggregationResult. Check ``status`` to tell a completed run
            from an empty collection or a superseded one.

        Raises:
            AggregationFailed: If page 1 could not be fetched.
        """
        if not refresh:
            cached = self.collection_cache.get(collection_key)
            if cached is not None:
                self.cancel(reason=f"cached result served for '{collection_key}'")
                logger.debug(f"Serving '{collection_key}' from collection cache")
                return replace(cached, from_cache=True)

        session = self.start_session(
            collection_key, concurrency=concurrency, on_progress=on_progress
        )

        if self.on_session_start:
            await self.on_session_start(collection_key)

        status = "failed"
        error: Exception | None = None
        try:
            result = await session.run()
            status = result.status.value
            return result
        except Exception as e:
            error = e
            raise
        finally:
            self._release(session)
            if self.on_session_complete:
                await self.on_session_complete(collection_key, status, error)

    def cancel(self, reason: str | None = None) -> None:
        """Cancel the live session, if any."""
        with self._lock:
            session = self._current
            self._current = None
        if session is not None:
            session.cancel(reason=reason)

    def invalidate(self, collection_key: CollectionKey) -> bool:
        """Forget the cached result for ``collection_key``."""
        return self.collection_cache.invalidate(collection_key)

    async def close(self) -> None:
        """Cancel the live session and close the transport if owned."""
        self.cancel(reason="manager closed")
        if self._owns_transport and isinstance(
            self.transport, AsyncRequestManager
        ):
            await self.transport.close()

    async def __aenter__(self) -> SessionManager:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _release(self, session: AggregationSession) -> None:
        with self._lock:
            if self._current is session:
                self._current = None
