"""Sort directives (``sort=attr`` / ``sort=attr=desc``)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, TypeVar

from regbridge.protocol.entities import lookup
from regbridge.protocol.filters import as_document

T = TypeVar("T")


@dataclass(frozen=True)
class SortDirective:
    attribute: str
    descending: bool = False

    def __str__(self) -> str:
        return f"{self.attribute}={'desc' if self.descending else 'asc'}"


def parse_sort(text: Optional[str]) -> Optional[SortDirective]:
    """Parse ``attr[=asc|desc]``; anything but ``desc`` sorts ascending."""
    if not text or not text.strip():
        return None
    attribute, _, direction = text.strip().partition("=")
    attribute = attribute.strip()
    if not attribute:
        return None
    return SortDirective(attribute=attribute, descending=direction.strip().lower() == "desc")


def _sort_key(value: Any) -> tuple:
    # missing < numbers < strings < everything else
    if value is None:
        return (0,)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    if isinstance(value, str):
        return (2, value.lower())
    return (3, json.dumps(value, sort_keys=True, default=str).lower())


def apply_sort(
    directive: Optional[SortDirective],
    items: Iterable[T],
    document: Callable[[T], Any] = as_document,
) -> list[T]:
    """Stable sort of ``items`` by the directive's attribute.

    An attribute that no item carries leaves the order untouched.
    """
    items = list(items)
    if directive is None:
        return items
    values = [lookup(document(item), directive.attribute) for item in items]
    if all(v is None for v in values):
        return items
    order = sorted(range(len(items)), key=lambda i: _sort_key(values[i]), reverse=directive.descending)
    return [items[i] for i in order]
