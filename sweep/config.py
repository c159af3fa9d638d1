"""Configuration for aggregation runs and HTTP sources.

AggregationConfig holds the tuning knobs of the worker pool and session.
SourceConfig describes where pages come from. Both are plain dataclasses;
the CLI maps its options onto them.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class AggregationConfig:
    """Tuning for one aggregation session.

    Attributes:
        concurrency: Number of pool workers fetching pages at once.
        start_page: First page handed to the pool. Page 1 is always fetched
            by the session itself before the pool starts.
        empty_page_threshold: Consecutive empty pages that mark the source
            as exhausted.
        error_backoff: Seconds a worker waits after a transport failure
            before it stops.
        progress_interval: Minimum seconds between progress callbacks.
        estimate_multiplier: Initial total estimate is the page-1 record
            count times this factor.
        estimate_headroom: The estimate is never below loaded plus this.
    """

    concurrency: int = 3
    start_page: int = 2
    empty_page_threshold: int = 2
    error_backoff: float = 0.1
    progress_interval: float = 0.3
    estimate_multiplier: int = 10
    estimate_headroom: int = 50

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(
                f"concurrency must be at least 1, got {self.concurrency}"
            )
        if self.start_page < 2:
            raise ValueError(
                f"start_page must be at least 2, got {self.start_page}"
            )
        if self.empty_page_threshold < 1:
            raise ValueError(
                "empty_page_threshold must be at least 1, "
                f"got {self.empty_page_threshold}"
            )
        if self.error_backoff < 0 or self.progress_interval < 0:
            raise ValueError("Delays must not be negative")


@dataclass
class SourceConfig:
    """Where and how pages are retrieved.

    Attributes:
        url_template: Page URL with ``{key}`` and ``{page}`` placeholders.
        proxy_template: Optional wrapper URL with a ``{url}`` placeholder;
            the page URL is percent-encoded into it.
        timeout: Request timeout in seconds. None means no timeout.
    """

    url_template: str
    proxy_template: str | None = None
    timeout: float | None = 30.0

    def __post_init__(self) -> None:
        if "{page}" not in self.url_template:
            raise ValueError(
                f"url_template must contain '{{page}}': {self.url_template!r}"
            )
        try:
            self.url_template.format(key="", page=1)
        except (KeyError, IndexError) as e:
            raise ValueError(
                f"url_template has an unknown placeholder {e}: "
                f"{self.url_template!r}"
            ) from e
        if self.proxy_template is not None and "{url}" not in self.proxy_template:
            raise ValueError(
                "proxy_template must contain '{url}': "
                f"{self.proxy_template!r}"
            )
