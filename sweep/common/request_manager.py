"""Request manager for retrieving raw pages over HTTP.

This module provides AsyncRequestManager, which encapsulates the HTTP client
and the mapping from a PageKey to a URL.

The request manager is responsible for:
- Maintaining the HTTP client (httpx.AsyncClient)
- Building page URLs, optionally wrapped in a proxy URL
- Converting transport failures to NetworkError subclasses

Anything implementing the Transport protocol can stand in for it, which is
how tests inject in-memory sources.
"""

from __future__ import annotations

import logging
import ssl
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from sweep.common.exceptions import (
    HTMLResponseAssumptionException,
    NetworkError,
    RequestTimeoutException,
)
from sweep.config import SourceConfig
from sweep.data_types import PageKey, RawPage

logger = logging.getLogger(__name__)


def page_url(url_template: str, page_key: PageKey) -> str:
    """Fill ``url_template`` for ``page_key``, percent-encoding the key.

    Raises:
        ValueError: If the template has placeholders other than ``{key}``
            and ``{page}``.
    """
    try:
        return url_template.format(
            key=quote(str(page_key.collection_key), safe=""),
            page=page_key.page,
        )
    except (KeyError, IndexError) as e:
        raise ValueError(
            f"url_template has an unknown placeholder {e}: {url_template!r}"
        ) from e


class Transport(Protocol):
    """Retrieves the raw payload of one page.

    Implementations raise NetworkError (or a subclass) on failure. They are
    cancelled by having their awaiting task cancelled.
    """

    async def get(self, page_key: PageKey) -> RawPage: ...


class AsyncRequestManager:
    """Manages HTTP requests for page retrieval.

    This class encapsulates:

    - httpx.AsyncClient lifecycle
    - URL construction from a template
    - Error translation

    Example::

        manager = AsyncRequestManager(
            url_template="https://example.org/?page={page}&province_id={key}",
            timeout=30.0,
        )
        html = await manager.get(PageKey("42", 1))
    """

    def __init__(
        self,
        url_template: str,
        proxy_template: str | None = None,
        ssl_context: ssl.SSLContext | None = None,
        timeout: float | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the request manager.

        Args:
            url_template: Page URL with ``{key}`` and ``{page}`` placeholders.
            proxy_template: Optional proxy URL with a ``{url}`` placeholder.
                The page URL is percent-encoded into it.
            ssl_context: Optional SSL context for HTTPS connections.
            timeout: Request timeout in seconds. None means no timeout (default).
            http_transport: Optional httpx transport for the client, e.g.
                ``httpx.MockTransport`` in tests.
        """
        self.config = SourceConfig(
            url_template=url_template,
            proxy_template=proxy_template,
            timeout=timeout,
        )
        self.timeout = timeout

        if ssl_context:
            self._client = httpx.AsyncClient(
                verify=ssl_context, timeout=timeout, transport=http_transport
            )
        else:
            self._client = httpx.AsyncClient(
                timeout=timeout, transport=http_transport
            )

    @classmethod
    def from_config(cls, config: SourceConfig) -> AsyncRequestManager:
        return cls(
            url_template=config.url_template,
            proxy_template=config.proxy_template,
            timeout=config.timeout,
        )

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> AsyncRequestManager:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit - closes the client."""
        await self.close()

    def page_url(self, page_key: PageKey) -> str:
        """Return the source URL of ``page_key``, without any proxy."""
        return page_url(self.config.url_template, page_key)

    def build_url(self, page_key: PageKey) -> str:
        """Return the URL to request for ``page_key``.

        Args:
            page_key: The page to locate.

        Returns:
            The page URL, wrapped in the proxy URL when one is configured.
        """
        url = self.page_url(page_key)
        if self.config.proxy_template is not None:
            url = self.config.proxy_template.format(url=quote(url, safe=""))
        return url

    async def get(self, page_key: PageKey) -> RawPage:
        """Fetch one page and return its decoded text.

        Args:
            page_key: The page to fetch.

        Returns:
            The response body as text.

        Raises:
            HTMLResponseAssumptionException: If the server returns a non-2xx status.
            RequestTimeoutException: If the request times out.
            NetworkError: On any other transport failure.
        """
        url = self.build_url(page_key)

        try:
            http_response = await self._client.get(url)
        except httpx.TimeoutException as e:
            raise RequestTimeoutException(
                url=url,
                timeout_seconds=self.timeout,
            ) from e
        except httpx.RequestError as e:
            # Connection failures and undecodable bodies alike
            raise NetworkError(f"Request to {url} failed: {e}", url=url) from e

        if not http_response.is_success:
            raise HTMLResponseAssumptionException(
                status_code=http_response.status_code,
                expected_codes=[200],
                url=url,
            )

        return http_response.text
