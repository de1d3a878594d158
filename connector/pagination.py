"""
Pagination drivers.

Two styles share one termination contract: stop on an empty page, on a
satisfied request, or on a hard page cap. Requests are issued strictly one
at a time. Errors propagate and discard whatever was accumulated.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from .const import DEFAULT_MAX_PAGES
from .models import CursorInfo


logger = logging.getLogger(__name__)


async def walk_cursor(
    fetch_page: Callable[[CursorInfo], Awaitable[Sequence[Any]]],
    cursor: CursorInfo,
    advance: Callable[[Sequence[Any], CursorInfo], Optional[CursorInfo]],
    is_satisfied: Optional[Callable[[List[Any]], bool]] = None,
    max_pages: int = DEFAULT_MAX_PAGES
) -> List[Any]:
    """
    Drive an end/limit cursor until the data runs out or the caller has enough.

    Args:
        fetch_page: Coroutine fetching one page for a cursor
        cursor: Initial cursor
        advance: Builds the next cursor from the page just fetched;
            returning None ends pagination
        is_satisfied: Predicate over everything accumulated so far
        max_pages: Hard cap on the number of requests

    Returns:
        Rows from every page, in fetch order
    """
    rows: List[Any] = []

    for page_number in range(1, max_pages + 1):
        page = await fetch_page(cursor)
        logger.debug("Page %d (end=%s, limit=%s): %d rows", page_number, cursor.end, cursor.limit, len(page))

        if not page:
            return rows

        rows.extend(page)

        if is_satisfied is not None and is_satisfied(rows):
            return rows

        # A short page means the backend has nothing further
        if cursor.limit is not None and len(page) < cursor.limit:
            return rows

        next_cursor = advance(page, cursor)
        if next_cursor is None or next_cursor.end == cursor.end:
            return rows
        cursor = next_cursor

    logger.warning(
        "Cursor pagination stopped at the %d page cap with %d rows; backend cursor may not be advancing",
        max_pages, len(rows)
    )
    return rows


async def paginate_offset(
    fetch_page: Callable[[int, int], Awaitable[Tuple[Sequence[Any], Optional[int]]]],
    page_size: int,
    max_pages: int = DEFAULT_MAX_PAGES
) -> List[Any]:
    """
    Drive a skip/limit listing to exhaustion.

    Args:
        fetch_page: Coroutine taking (skip, limit) and returning
            (items, total_count); total_count may be None
        page_size: Items requested per page
        max_pages: Hard cap on the number of requests

    Returns:
        Every item across all pages
    """
    if page_size < 1:
        raise ValueError("page_size must be at least 1")

    items: List[Any] = []
    skip = 0

    for _ in range(max_pages):
        page, total_count = await fetch_page(skip, page_size)
        logger.debug("Offset page skip=%d limit=%d: %d items (total=%s)", skip, page_size, len(page), total_count)

        if not page:
            return items

        items.extend(page)

        if total_count is not None and len(items) >= total_count:
            return items

        skip += page_size

    logger.warning("Offset pagination stopped at the %d page cap with %d items", max_pages, len(items))
    return items
