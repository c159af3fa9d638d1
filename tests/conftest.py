"""Shared fixtures for aggregation tests."""

import asyncio
import socket
import threading
import time
from collections.abc import Generator
from contextlib import closing

import pytest
from aiohttp import web

from sweep.common.cache import CollectionCache, PageCache
from sweep.config import AggregationConfig
from tests.mock_server import PROVINCES, create_app


@pytest.fixture
def page_cache() -> PageCache:
    return PageCache()


@pytest.fixture
def collection_cache() -> CollectionCache:
    return CollectionCache()


@pytest.fixture
def fast_config() -> AggregationConfig:
    """Aggregation config with short delays for tests."""
    return AggregationConfig(error_backoff=0.01, progress_interval=0.0)


@pytest.fixture
def expected_hospital_count() -> int:
    """The number of hospitals in province "1" of the mock registry."""
    return len(PROVINCES["1"])


# =============================================================================
# aiohttp test server fixtures
# =============================================================================


def find_free_port() -> int:
    """Find a free port on localhost.

    Returns:
        An available port number.
    """
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


class AioHttpTestServer:
    """Wrapper to run aiohttp server in a background thread."""

    def __init__(self, app: web.Application, port: int) -> None:
        self.app = app
        self.port = port
        self.host = "127.0.0.1"
        self._loop: asyncio.AbstractEventLoop | None = None
        self._runner: web.AppRunner | None = None
        self._thread: threading.Thread | None = None
        self._started = threading.Event()

    @property
    def url(self) -> str:
        """Get the base URL of the server."""
        return f"http://{self.host}:{self.port}"

    def start(self) -> None:
        """Start the server in a background thread."""
        self._thread = threading.Thread(target=self._run_server, daemon=True)
        self._thread.start()
        if not self._started.wait(timeout=5.0):
            raise RuntimeError("Mock registry server did not start")
        # Give the site a moment to accept connections
        time.sleep(0.05)

    def _run_server(self) -> None:
        """Run the server in an asyncio event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        async def start() -> None:
            self._runner = web.AppRunner(self.app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.host, self.port)
            await site.start()

        self._loop.run_until_complete(start())
        self._started.set()
        self._loop.run_forever()

    def stop(self) -> None:
        """Stop the server and clean up resources."""
        if self._loop and self._runner:
            runner = self._runner

            async def cleanup() -> None:
                await runner.cleanup()

            future = asyncio.run_coroutine_threadsafe(cleanup(), self._loop)
            try:
                future.result(timeout=2.0)
            except Exception:
                pass  # Best effort cleanup

        if self._loop:
            self._loop.call_soon_threadsafe(self._loop.stop)

        if self._thread:
            self._thread.join(timeout=2.0)


@pytest.fixture
def registry_server() -> Generator[AioHttpTestServer, None, None]:
    """Create and start an aiohttp test server running the mock registry.

    Yields:
        AioHttpTestServer instance with the registry app running.
    """
    app = create_app()
    port = find_free_port()
    server = AioHttpTestServer(app, port)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def server_url(registry_server: AioHttpTestServer) -> str:
    """Get the base URL of the test server.

    Returns:
        The base URL string (e.g., "http://127.0.0.1:8080").
    """
    return registry_server.url


@pytest.fixture
def url_template(server_url: str) -> str:
    """Listing URL template for the mock registry."""
    return f"{server_url}/?page={{page}}&province_id={{key}}"
