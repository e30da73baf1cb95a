"""Query options parsed once per request."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from regbridge.errors import InvalidRequest
from regbridge.protocol.filters import parse_filter
from regbridge.protocol.inline import parse_inline
from regbridge.protocol.sorting import SortDirective, parse_sort

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 1000


@dataclass(frozen=True)
class QueryOptions:
    filters: tuple[str, ...] = ()
    sort: Optional[SortDirective] = None
    inline: tuple[str, ...] = ()
    limit: int = DEFAULT_PAGE_LIMIT
    offset: int = 0
    collections: bool = True
    doc: bool = True
    epoch: Optional[int] = None
    noepoch: bool = False
    specversion: Optional[str] = None
    schema: bool = False
    limit_given: bool = False
    unknown: tuple[str, ...] = field(default=())

    @property
    def inline_all(self) -> bool:
        return "*" in self.inline

    def wants_inline(self, target: str) -> bool:
        return self.inline_all or target in self.inline


_KNOWN = {
    "filter", "sort", "inline", "limit", "offset", "collections", "doc",
    "epoch", "noepoch", "specversion", "schema",
}


def _flag(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("", "true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise InvalidRequest(f"Query parameter '{name}' must be 'true' or 'false'")


def _integer(value: str, name: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise InvalidRequest(f"Query parameter '{name}' must be an integer") from None


def parse_query_options(
    items: Iterable[tuple[str, str]],
    default_limit: int = DEFAULT_PAGE_LIMIT,
    max_limit: int = MAX_PAGE_LIMIT,
) -> QueryOptions:
    """Parse the request's query parameters.

    ``items`` is the multi-valued list of ``(name, value)`` pairs. Limits
    above ``max_limit`` are clamped.

    Raises:
        InvalidRequest: a malformed limit, offset, epoch, flag or filter.
    """
    filters: list[str] = []
    inline_values: list[str] = []
    values: dict[str, str] = {}
    unknown: list[str] = []

    for name, value in items:
        if name == "filter":
            parse_filter(value)
            if value.strip():
                filters.append(value)
        elif name == "inline":
            inline_values.append(value or "*")
        elif name in _KNOWN:
            values[name] = value
        else:
            unknown.append(name)

    limit = default_limit
    if "limit" in values:
        limit = _integer(values["limit"], "limit")
        if limit <= 0:
            raise InvalidRequest("Limit must be greater than 0")
        limit = min(limit, max_limit)

    offset = 0
    if "offset" in values:
        offset = _integer(values["offset"], "offset")
        if offset < 0:
            raise InvalidRequest("Offset must not be negative")

    epoch = None
    if "epoch" in values:
        epoch = _integer(values["epoch"], "epoch")

    return QueryOptions(
        filters=tuple(filters),
        sort=parse_sort(values.get("sort")),
        inline=tuple(parse_inline(inline_values)),
        limit=limit,
        offset=offset,
        collections=_flag(values["collections"], "collections") if "collections" in values else True,
        doc=_flag(values["doc"], "doc") if "doc" in values else True,
        epoch=epoch,
        noepoch=_flag(values["noepoch"], "noepoch") if "noepoch" in values else False,
        specversion=values.get("specversion") or None,
        schema=_flag(values["schema"], "schema") if "schema" in values else False,
        limit_given="limit" in values,
        unknown=tuple(unknown),
    )
