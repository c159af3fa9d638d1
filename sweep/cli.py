"""Sweep CLI: aggregate a paginated source from the command line.

Usage:
    sweep aggregate 42 --url-template 'https://example.org/?page={page}&province_id={key}'
    sweep aggregate 42 --url-template ... --proxy-template 'https://proxy/raw?url={url}'
    sweep aggregate 42 --url-template ... --workers 5 --output records.jsonl
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from sweep.common.exceptions import AggregationFailed
from sweep.common.request_manager import page_url
from sweep.config import AggregationConfig, SourceConfig
from sweep.data_types import AggregationResult, AggregationStatus, PageKey
from sweep.driver.callbacks import print_progress, save_to_jsonl_file
from sweep.driver.manager import SessionManager
from sweep.parsing import hospital_listing_parser


@click.group()
@click.version_option(package_name="sweep")
def cli() -> None:
    """Sweep: paginated-data aggregation CLI."""


@cli.command()
@click.argument("collection_key")
@click.option(
    "--url-template",
    required=True,
    help="Page URL with {key} and {page} placeholders.",
)
@click.option(
    "--proxy-template",
    default=None,
    help="Optional proxy URL with a {url} placeholder.",
)
@click.option(
    "--workers",
    type=int,
    default=3,
    show_default=True,
    help="Number of concurrent page fetches.",
)
@click.option(
    "--timeout",
    type=float,
    default=30.0,
    show_default=True,
    help="Request timeout in seconds.",
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False, writable=True),
    default=None,
    help="Write records to this JSONL file instead of stdout.",
)
@click.option(
    "--progress/--no-progress",
    default=False,
    help="Print progress to stderr while loading.",
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def aggregate(
    collection_key: str,
    url_template: str,
    proxy_template: str | None,
    workers: int,
    timeout: float,
    output: str | None,
    progress: bool,
    verbose: bool,
) -> None:
    """Fetch every page of COLLECTION_KEY and print its records as JSON lines.

    \b
    Examples:
        sweep aggregate 42 --url-template 'https://example.org/?page={page}&id={key}'
        sweep aggregate 42 --url-template ... --workers 5 --output out.jsonl
    """
    log_level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        source = SourceConfig(
            url_template=url_template,
            proxy_template=proxy_template,
            timeout=timeout,
        )
        config = AggregationConfig(concurrency=workers)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    try:
        result = asyncio.run(
            _run_aggregation(
                collection_key,
                source,
                config,
                progress,
            )
        )
    except AggregationFailed as e:
        raise click.ClickException(e.user_message) from e

    if result.status is AggregationStatus.EMPTY:
        click.echo("No records found.", err=True)
        return

    if output:
        with Path(output).open("w", encoding="utf-8") as f:
            written = save_to_jsonl_file(f)(result)
        click.echo(f"Wrote {written} records to {output}", err=True)
    else:
        save_to_jsonl_file(sys.stdout)(result)

    if result.failed_pages:
        click.echo(
            f"Warning: pages {list(result.failed_pages)} could not be loaded",
            err=True,
        )


async def _run_aggregation(
    collection_key: str,
    source: SourceConfig,
    config: AggregationConfig,
    show_progress: bool,
) -> AggregationResult:
    async with SessionManager.from_source(
        source,
        parser=hospital_listing_parser(
            page_url(source.url_template, PageKey(collection_key, 1))
        ),
        config=config,
    ) as manager:
        return await manager.aggregate(
            collection_key,
            on_progress=print_progress() if show_progress else None,
        )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
