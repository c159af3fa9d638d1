"""Exception types for aggregation errors.

Transient exceptions describe a single page fetch that went wrong. The
aggregation session decides whether such a failure is terminal (page 1) or
absorbed (every later page). Cancellation is a control signal rather than an
error and has its own type outside the transient hierarchy.
"""

from __future__ import annotations

from typing import Any

GENERIC_FAILURE_MESSAGE = (
    "Could not load the data. Please try again later."
)


class TransientException(Exception):
    """Base class for transient errors that might resolve on retry.

    Transient exceptions represent temporary failures like network issues,
    server errors, or timeouts. Retrying the request may succeed.
    """

    pass


class NetworkError(TransientException):
    """Raised when the transport fails to retrieve a page.

    Attributes:
        url: The URL that failed, if known.
        message: Human-readable error message.
    """

    def __init__(self, message: str, url: str = "") -> None:
        self.url = url
        self.message = message
        super().__init__(message)


class HTMLResponseAssumptionException(NetworkError):
    """Raised when the HTTP response has an unexpected status code.

    Attributes:
        status_code: The actual HTTP status code received.
        expected_codes: List of status codes that were expected.
    """

    def __init__(
        self,
        status_code: int,
        expected_codes: list[int],
        url: str,
    ) -> None:
        """Initialize the exception.

        Args:
            status_code: The actual status code received.
            expected_codes: List of expected status codes.
            url: The URL of the request.
        """
        self.status_code = status_code
        self.expected_codes = expected_codes

        expected_str = ", ".join(str(code) for code in expected_codes)
        super().__init__(
            f"HTTP {status_code} from {url} (expected one of: {expected_str})",
            url=url,
        )


class RequestTimeoutException(NetworkError):
    """Raised when a request times out.

    Attributes:
        timeout_seconds: The timeout duration in seconds.
    """

    def __init__(self, url: str, timeout_seconds: float | None) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Request to {url} timed out after {timeout_seconds}s", url=url
        )


class FetchCancelled(Exception):
    """Raised when a session's cancel token fires before or during a fetch.

    Not a failure: the session that owned the token has been superseded or
    cancelled by its caller.
    """

    def __init__(self, page: int | None = None) -> None:
        self.page = page
        message = (
            f"Fetch of page {page} cancelled"
            if page is not None
            else "Fetch cancelled"
        )
        super().__init__(message)


class AggregationFailed(Exception):
    """Raised when an aggregation cannot produce any result.

    Only a failure on the first page is terminal. The ``user_message`` is a
    generic retry-able message suitable for display; ``cause`` keeps the
    underlying transport error for logs.

    Attributes:
        collection_key: The collection whose aggregation failed.
        cause: The exception raised while fetching page 1.
        user_message: Generic message to present to an end user.
        context: Extra context for logging.
    """

    def __init__(
        self,
        collection_key: str,
        cause: Exception,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.collection_key = collection_key
        self.cause = cause
        self.user_message = GENERIC_FAILURE_MESSAGE
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [
            f"Aggregation of collection '{self.collection_key}' failed: "
            f"{self.cause}"
        ]
        if self.context:
            parts.append("Context:")
            for key, value in self.context.items():
                parts.append(f"  {key}: {value}")
        return "\n".join(parts)
