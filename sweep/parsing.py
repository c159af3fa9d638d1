"""Page parsers: raw payload in, ordered records out.

A parser is any callable ``(payload) -> list[Record]``. It must never raise:
malformed rows are dropped, and a payload with no valid rows yields an empty
list, which the worker pool reads as "no records on this page".

``parse_hospital_listing`` understands the markup of the hospital registry
listing this package was first written against. Other sources plug in their
own parser.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import partial
from urllib.parse import urljoin

from lxml import etree, html
from pydantic import ValidationError

from sweep.data_types import RawPage, Record

logger = logging.getLogger(__name__)

Parser = Callable[[RawPage], list[Record]]

_UTF8_PARSER = html.HTMLParser(encoding="utf-8")


def _has_class(name: str) -> str:
    return f"contains(concat(' ', normalize-space(@class), ' '), ' {name} ')"


ROW_XPATH = (
    f"//div[{_has_class('table-benhvien')}]//table/tbody/tr"
)
ORDINAL_XPATH = f"./td[{_has_class('text-center')}]"
DATE_XPATH = f"./td//span[{_has_class('date')}]"
LOGO_XPATH = "./td//img/@src"
NAME_XPATH = f"./td//h3[{_has_class('name')}]"
WEBSITE_XPATH = f"./td//a[{_has_class('website')}]/@href"
DECISION_XPATH = f"./td//a[{_has_class('product-datasets__label')}]/@href"


def _first_text(row: html.HtmlElement, xpath: str) -> str:
    matches = row.xpath(xpath)
    return matches[0].text_content().strip() if matches else ""


def _first_attr(row: html.HtmlElement, xpath: str, base_url: str) -> str:
    matches = row.xpath(xpath)
    if not matches:
        return ""
    value = str(matches[0]).strip()
    if value and base_url:
        return urljoin(base_url, value)
    return value


def parse_hospital_listing(
    payload: RawPage, base_url: str = ""
) -> list[Record]:
    """Parse one listing page into records, in document order.

    Rows without a name are discarded. An empty or unparseable payload
    yields an empty list.

    Args:
        payload: Raw HTML of one listing page.
        base_url: If given, relative links are resolved against it.

    Returns:
        The valid records on the page.
    """
    if not payload or not payload.strip():
        return []

    try:
        # Bytes with a fixed encoding: lxml rejects str input carrying an
        # encoding declaration, and the payload is already decoded text
        doc = html.fromstring(payload.encode("utf-8"), parser=_UTF8_PARSER)
    except (etree.ParserError, ValueError) as e:
        logger.debug(f"Unparseable page payload: {e}")
        return []

    records: list[Record] = []
    for row in doc.xpath(ROW_XPATH):
        fields = {
            "ordinal": _first_text(row, ORDINAL_XPATH),
            "date": _first_text(row, DATE_XPATH),
            "logo": _first_attr(row, LOGO_XPATH, base_url),
            "name": _first_text(row, NAME_XPATH),
            "website": _first_attr(row, WEBSITE_XPATH, base_url),
            "decision": _first_attr(row, DECISION_XPATH, base_url),
        }
        try:
            records.append(Record.model_validate(fields))
        except ValidationError as e:
            logger.debug(
                f"Discarding invalid row: {e.error_count()} error(s)",
                extra={"failed_doc": fields},
            )
    return records


def hospital_listing_parser(base_url: str = "") -> Parser:
    """Return a parser bound to ``base_url`` for link resolution."""
    return partial(parse_hospital_listing, base_url=base_url)
