"""Test utilities for aggregation tests.

This module provides an in-memory Transport that serves generated listing
pages, counts every call, and can inject latency, failures and gates.
"""

from __future__ import annotations

import asyncio
from collections import Counter

from sweep.common.exceptions import NetworkError
from sweep.data_types import PageKey
from tests.mock_server import MockHospital, generate_listing_html

PageContent = int | Exception


def make_hospitals(key: str, page: int, count: int) -> list[MockHospital]:
    return [
        MockHospital(
            ordinal=(page - 1) * 100 + i,
            date="2024-01-01",
            name=f"Hospital {key}-{page}-{i}",
        )
        for i in range(1, count + 1)
    ]


def record_names(key: str, page: int, count: int) -> list[str]:
    """Names the FakeTransport generates for ``count`` records on ``page``."""
    return [f"Hospital {key}-{page}-{i}" for i in range(1, count + 1)]


class FakeTransport:
    """In-memory Transport serving listing pages.

    ``pages`` maps collection key -> page number -> either a record count or
    an exception to raise. Pages not listed are empty.
    ``gates`` are keyed by page number or by PageKey; a PageKey gate only
    holds that one collection.

    Example:
        transport = FakeTransport({"42": {1: 20, 2: 20, 3: NetworkError("boom")}})
        fetcher = PageFetcher(transport)

    Attributes:
        calls: Every PageKey requested, in call order.
        cancelled_calls: Calls whose task was cancelled mid-flight.
        max_in_flight: Highest number of concurrent calls observed.
    """

    def __init__(
        self,
        pages: dict[str, dict[int, PageContent]] | None = None,
        delays: dict[int, float] | None = None,
        default_delay: float = 0.0,
        gates: dict[int | PageKey, asyncio.Event] | None = None,
    ) -> None:
        self.pages = pages or {}
        self.delays = delays or {}
        self.default_delay = default_delay
        self.gates = gates or {}
        self.calls: list[PageKey] = []
        self.cancelled_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def pages_requested(self) -> list[int]:
        return [key.page for key in self.calls]

    def calls_per_page(self) -> Counter[PageKey]:
        return Counter(self.calls)

    async def get(self, page_key: PageKey) -> str:
        self.calls.append(page_key)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            gate = self.gates.get(page_key, self.gates.get(page_key.page))
            if gate is not None:
                await gate.wait()
            await asyncio.sleep(
                self.delays.get(page_key.page, self.default_delay)
            )
        except asyncio.CancelledError:
            self.cancelled_calls += 1
            raise
        finally:
            self.in_flight -= 1

        content = self.pages.get(page_key.collection_key, {}).get(page_key.page, 0)
        if isinstance(content, Exception):
            raise content
        return generate_listing_html(
            make_hospitals(page_key.collection_key, page_key.page, content)
        )


def network_error(page: int) -> NetworkError:
    return NetworkError(f"connection reset on page {page}", url=f"page/{page}")


async def wait_for_request(
    transport: FakeTransport, page: int | PageKey, timeout: float = 2.0
) -> None:
    """Wait until ``transport`` has received a request for ``page``.

    ``page`` is either a page number (any collection) or a PageKey.
    """

    async def poll() -> None:
        seen = transport.calls if isinstance(page, PageKey) else None
        while page not in (seen or transport.pages_requested):
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)
