"""Tests for PageFetcher.

Key behaviors tested:
- Cache hits never reach the transport
- A cancelled token stops a fetch before and during the transport call
- Transport failures propagate and leave the cache untouched
"""

import asyncio

import pytest

from sweep.common.cache import PageCache
from sweep.common.cancellation import CancelToken
from sweep.common.exceptions import FetchCancelled, NetworkError
from sweep.data_types import PageKey
from sweep.fetcher import PageFetcher
from tests.utils import FakeTransport, network_error, wait_for_request


class TestPageFetcherCaching:
    @pytest.mark.asyncio
    async def test_fetch_stores_payload_in_cache(
        self, page_cache: PageCache
    ) -> None:
        """A successful fetch shall store the payload before returning it."""
        transport = FakeTransport({"42": {1: 3}})
        fetcher = PageFetcher(transport, page_cache)

        payload = await fetcher.fetch(PageKey("42", 1), CancelToken())

        assert page_cache.get(PageKey("42", 1)) == payload
        assert "Hospital 42-1-3" in payload

    @pytest.mark.asyncio
    async def test_same_page_is_fetched_once(self) -> None:
        """Fetching the same PageKey twice shall make one network call."""
        transport = FakeTransport({"42": {1: 3}})
        fetcher = PageFetcher(transport)
        token = CancelToken()

        first = await fetcher.fetch(PageKey("42", 1), token)
        second = await fetcher.fetch(PageKey("42", 1), token)

        assert first == second
        assert transport.call_count == 1
        assert fetcher.network_calls == 1

    @pytest.mark.asyncio
    async def test_cache_is_shared_between_fetchers(
        self, page_cache: PageCache
    ) -> None:
        transport = FakeTransport({"42": {1: 3}})
        await PageFetcher(transport, page_cache).fetch(
            PageKey("42", 1), CancelToken()
        )
        await PageFetcher(transport, page_cache).fetch(
            PageKey("42", 1), CancelToken()
        )
        assert transport.call_count == 1


class TestPageFetcherCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_token_prevents_the_call(self) -> None:
        """A fetch with an already cancelled token shall not reach the transport."""
        transport = FakeTransport({"42": {1: 3}})
        fetcher = PageFetcher(transport)
        token = CancelToken()
        token.cancel()

        with pytest.raises(FetchCancelled):
            await fetcher.fetch(PageKey("42", 1), token)

        assert transport.call_count == 0

    @pytest.mark.asyncio
    async def test_cancelling_mid_flight_aborts_the_transport_call(
        self, page_cache: PageCache
    ) -> None:
        """Cancelling during a fetch shall abort the in-flight transport call."""
        gate = asyncio.Event()
        transport = FakeTransport({"42": {1: 3}}, gates={1: gate})
        fetcher = PageFetcher(transport, page_cache)
        token = CancelToken()

        task = asyncio.create_task(fetcher.fetch(PageKey("42", 1), token))
        await wait_for_request(transport, 1)
        token.cancel()

        with pytest.raises(FetchCancelled) as exc_info:
            await task

        assert exc_info.value.page == 1
        await asyncio.sleep(0)
        assert transport.cancelled_calls == 1
        assert PageKey("42", 1) not in page_cache

    @pytest.mark.asyncio
    async def test_cache_hit_still_honors_cancelled_token(
        self, page_cache: PageCache
    ) -> None:
        page_cache.put(PageKey("42", 1), "<html></html>")
        fetcher = PageFetcher(FakeTransport(), page_cache)
        token = CancelToken()
        token.cancel()

        with pytest.raises(FetchCancelled):
            await fetcher.fetch(PageKey("42", 1), token)


class TestPageFetcherErrors:
    @pytest.mark.asyncio
    async def test_network_error_propagates_and_is_not_cached(
        self, page_cache: PageCache
    ) -> None:
        transport = FakeTransport({"42": {1: network_error(1)}})
        fetcher = PageFetcher(transport, page_cache)

        with pytest.raises(NetworkError):
            await fetcher.fetch(PageKey("42", 1), CancelToken())

        assert PageKey("42", 1) not in page_cache

    @pytest.mark.asyncio
    async def test_failed_page_is_retried_on_next_fetch(self) -> None:
        """A failure is not cached, so a later fetch goes back to the network."""
        transport = FakeTransport({"42": {1: network_error(1)}})
        fetcher = PageFetcher(transport)

        with pytest.raises(NetworkError):
            await fetcher.fetch(PageKey("42", 1), CancelToken())
        transport.pages["42"][1] = 2
        payload = await fetcher.fetch(PageKey("42", 1), CancelToken())

        assert "Hospital 42-1-2" in payload
        assert transport.call_count == 2
