"""Callback helpers for aggregation output and progress.

Example::

    from sweep.driver.callbacks import print_progress, save_to_jsonl_file

    result = await manager.aggregate("42", on_progress=print_progress())
    with open("output.jsonl", "w") as f:
        save_to_jsonl_file(f)(result)
"""

import json
import sys
from collections.abc import Callable, Iterable
from typing import TextIO

from sweep.data_types import AggregationProgress, Record


def save_to_jsonl_file(
    file_handle: TextIO,
) -> Callable[[Iterable[Record]], int]:
    """Create a callback that writes records to a JSONL file.

    Args:
        file_handle: An open file handle to write JSON lines to.
            The caller is responsible for opening and closing the file.

    Returns:
        A callback that writes one JSON object per record and returns the
        number of records written.
    """

    def callback(records: Iterable[Record]) -> int:
        count = 0
        for record in records:
            json.dump(record.model_dump(), file_handle, ensure_ascii=False)
            file_handle.write("\n")
            count += 1
        file_handle.flush()
        return count

    return callback


def print_progress(
    prefix: str = "", stream: TextIO | None = None
) -> Callable[[AggregationProgress], None]:
    """Create a progress callback that prints "loaded/estimated" lines.

    Args:
        prefix: Optional prefix for each line.
        stream: Where to print. Defaults to stderr.

    Returns:
        A callback for SessionManager.aggregate's on_progress parameter.
    """

    def callback(progress: AggregationProgress) -> None:
        out = stream if stream is not None else sys.stderr
        print(
            f"{prefix}Loaded {progress.loaded}/{progress.estimated_total} "
            f"records ({progress.fraction:.0%})",
            file=out,
        )

    return callback


def collect_progress() -> tuple[
    Callable[[AggregationProgress], None], list[AggregationProgress]
]:
    """Create a progress callback that appends every snapshot to a list.

    Returns:
        A tuple of (callback_function, snapshots_list).
    """
    snapshots: list[AggregationProgress] = []

    def callback(progress: AggregationProgress) -> None:
        snapshots.append(progress)

    return callback, snapshots
