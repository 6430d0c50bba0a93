"""
Page/limit pagination for slot lists.

Pages are 1-based. limit falls back to the default when missing or not
positive and is capped at max_limit.
"""

from math import ceil
from typing import Sequence, TypeVar

T = TypeVar("T")


def parse_pagination(
    page: int | None,
    limit: int | None,
    default_limit: int = 50,
    max_limit: int = 200,
) -> tuple[int, int]:
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else default_limit
    return page, min(limit, max_limit)


def pagination_meta(total: int, page: int, limit: int) -> dict:
    total_pages = ceil(total / limit) if total else 0
    has_next = page < total_pages
    has_previous = page > 1
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "has_next_page": has_next,
        "has_previous_page": has_previous,
        "next_page": page + 1 if has_next else None,
        "previous_page": page - 1 if has_previous else None,
    }


def paginate(items: Sequence[T], page: int, limit: int) -> tuple[list[T], dict]:
    """Slice one page out of `items` and describe it."""
    offset = (page - 1) * limit
    return list(items[offset:offset + limit]), pagination_meta(len(items), page, limit)
