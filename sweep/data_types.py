"""Data types for the paginated aggregation engine.

This module defines the values passed between the page fetcher, the worker
pool, the aggregation session and its caller. They are designed to be:

1. Immutable - Dataclasses with frozen=True and frozen pydantic models
2. Hashable where they act as cache keys (PageKey)
3. Self-describing - results carry their own completeness status
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

CollectionKey = str
RawPage = str


@dataclass(frozen=True)
class PageKey:
    """Identifies one page of one collection.

    Attributes:
        collection_key: The logical data set the page belongs to.
        page: Page number, starting at 1.
    """

    collection_key: CollectionKey
    page: int

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError(f"Page numbers start at 1, got {self.page}")

    @property
    def cache_key(self) -> str:
        """Flat string form, e.g. ``"42-3"`` for page 3 of collection 42."""
        return f"{self.collection_key}-{self.page}"

    def next(self) -> PageKey:
        return PageKey(self.collection_key, self.page + 1)


class Record(BaseModel):
    """A registry entry parsed from one row of a listing page.

    Every field is a whitespace-stripped string. Optional references default
    to the empty string. A record without a name is invalid and never leaves
    the parser.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    ordinal: str = Field("", description="Row number as printed, e.g. '12'")
    date: str = Field("", description="Registration date as printed")
    logo: str = Field("", description="Image reference, may be empty")
    name: str = Field(..., min_length=1, description="Entity name")
    website: str = Field("", description="Link to the entity's site")
    decision: str = Field("", description="Link to the decision document")


class AggregationStatus(Enum):
    """Terminal outcome of an aggregation."""

    COMPLETED = "completed"
    EMPTY = "empty"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AggregationResult:
    """Ordered records for a collection, tagged with how the run ended.

    Attributes:
        collection_key: The collection that was aggregated.
        records: Records in page order, then document order within a page.
        status: COMPLETED, EMPTY (page 1 had no records) or CANCELLED.
        pages_fetched: Number of pages that yielded a payload, page 1 included.
        failed_pages: Pages abandoned after a transport failure.
        from_cache: True when served from the collection cache.
        elapsed: Wall-clock seconds the run took.
    """

    collection_key: CollectionKey
    records: tuple[Record, ...] = ()
    status: AggregationStatus = AggregationStatus.COMPLETED
    pages_fetched: int = 0
    failed_pages: tuple[int, ...] = ()
    from_cache: bool = False
    elapsed: float = 0.0

    @property
    def complete(self) -> bool:
        return self.status is not AggregationStatus.CANCELLED

    @property
    def is_empty(self) -> bool:
        return not self.records

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)


@dataclass(frozen=True)
class AggregationProgress:
    """Snapshot handed to progress callbacks while a session is populating.

    Attributes:
        collection_key: The collection being aggregated.
        records: Records loaded so far, page 1 first.
        estimated_total: Running estimate of the final record count. Always
            at least ``loaded``.
    """

    collection_key: CollectionKey
    records: tuple[Record, ...]
    estimated_total: int

    @property
    def loaded(self) -> int:
        return len(self.records)

    @property
    def fraction(self) -> float:
        if self.estimated_total <= 0:
            return 0.0
        return min(1.0, self.loaded / self.estimated_total)
