"""Offset/limit pagination and RFC 5988 ``Link`` headers."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Generic, Iterable, Sequence, TypeVar
from urllib.parse import urlencode

T = TypeVar("T")

_PAGING_KEYS = ("limit", "offset")


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


def paginate(items: Sequence[T], offset: int, limit: int) -> Page[T]:
    return Page(items=list(items[offset : offset + limit]), total=len(items), offset=offset, limit=limit)


def build_link_header(
    base_url: str,
    query_items: Iterable[tuple[str, str]],
    total: int,
    offset: int,
    limit: int,
) -> str:
    """Build the ``Link`` header for one page of a collection.

    ``first`` and ``last`` are always present; ``prev`` and ``next`` only
    when such a page exists. The header ends with ``count`` and
    ``per-page`` parameters.
    """
    kept = [(k, v) for k, v in query_items if k not in _PAGING_KEYS]

    def page_url(page_offset: int) -> str:
        query = urlencode(kept + [("limit", str(limit)), ("offset", str(page_offset))])
        return f"{base_url}?{query}"

    links = [f'<{page_url(0)}>; rel="first"']
    if offset > 0:
        links.append(f'<{page_url(max(0, offset - limit))}>; rel="prev"')
    if offset + limit < total:
        links.append(f'<{page_url(offset + limit)}>; rel="next"')
    last_offset = max(0, (math.ceil(total / limit) - 1) * limit) if limit > 0 else 0
    links.append(f'<{page_url(last_offset)}>; rel="last"')

    return ", ".join(links) + f', count="{total}", per-page="{limit}"'
