"""Filter expressions.

A filter expression is a comma-separated list of attribute comparisons
that must all hold (``name=*json*,license=MIT``). Several ``filter``
query parameters are OR-ed. An expression with no comparison operator at
all is a plain-text keyword query.

Comparison rules:

- ``=`` is case-insensitive, ``*`` is a wildcard, ``=null`` matches
  absent attributes and ``=*`` matches present ones.
- ``!=`` and ``<>`` negate ``=``; absent attributes match.
- ``<``, ``<=``, ``>``, ``>=`` compare numerically when both sides are
  numbers and as case-insensitive strings otherwise. Absent attributes
  never match.
- A bare attribute inside a structured expression tests existence.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, TypeVar

import httpx

from regbridge.errors import InvalidRequest, RegistryError
from regbridge.protocol.entities import lookup

logger = logging.getLogger(__name__)

T = TypeVar("T")

OPERATORS = ("!=", "<>", ">=", "<=", "=", "<", ">")
_COMPARISON = re.compile(r"^(.*?)(!=|<>|>=|<=|=|<|>)(.*)$")
_HAS_OPERATOR = re.compile(r"[=<>]")


@dataclass(frozen=True)
class FilterExpression:
    attribute: str
    operator: str
    value: Optional[str] = None

    def matches(self, document: Any) -> bool:
        return compare_values(lookup(document, self.attribute), self.value, self.operator)


@dataclass(frozen=True)
class ParsedFilter:
    """One ``filter`` parameter: either structured clauses or a keyword."""

    clauses: tuple[FilterExpression, ...] = ()
    keyword: str = ""

    @property
    def is_plain_text(self) -> bool:
        return bool(self.keyword)

    @property
    def name_clauses(self) -> list[FilterExpression]:
        return [c for c in self.clauses if c.attribute.lower() == "name"]

    @property
    def other_clauses(self) -> list[FilterExpression]:
        return [c for c in self.clauses if c.attribute.lower() != "name"]

    def matches(self, document: Any) -> bool:
        if self.is_plain_text:
            name = lookup(document, "name")
            return name is not None and self.keyword.lower() in str(name).lower()
        return all(c.matches(document) for c in self.clauses)


def parse_filter(text: str) -> ParsedFilter:
    """Parse one filter expression.

    Raises:
        InvalidRequest: a clause has an empty attribute name.
    """
    text = (text or "").strip()
    if not text:
        return ParsedFilter()
    if not _HAS_OPERATOR.search(text) and "," not in text:
        return ParsedFilter(keyword=text)

    clauses = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        match = _COMPARISON.match(part)
        if match is None:
            clauses.append(FilterExpression(attribute=part, operator="exists"))
            continue
        attribute, operator, value = match.groups()
        attribute = attribute.strip()
        if not attribute:
            raise InvalidRequest(f"Filter clause '{part}' has no attribute name")
        clauses.append(FilterExpression(attribute=attribute, operator=operator, value=value.strip()))
    return ParsedFilter(clauses=tuple(clauses))


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value))
    except (TypeError, ValueError):
        return None


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _wildcard(pattern: str) -> re.Pattern[str]:
    return re.compile(
        "^" + ".*?".join(re.escape(p) for p in pattern.split("*")) + "$",
        re.IGNORECASE,
    )


def _equals(attr_value: Any, filter_value: str) -> bool:
    if isinstance(attr_value, list):
        return any(_equals(item, filter_value) for item in attr_value)
    if filter_value == "*":
        return True
    text = _stringify(attr_value)
    if "*" in filter_value:
        return bool(_wildcard(filter_value).match(text))
    return text.lower() == filter_value.lower()


def compare_values(attr_value: Any, filter_value: Optional[str], operator: str) -> bool:
    """Compare an attribute value against a filter value."""
    if operator == "exists":
        return attr_value is not None

    value = filter_value or ""
    if operator == "=":
        if value.lower() == "null":
            return attr_value is None
        if attr_value is None:
            return False
        return _equals(attr_value, value)

    if operator in ("!=", "<>"):
        if value.lower() == "null":
            return attr_value is not None
        if attr_value is None:
            return True
        return not _equals(attr_value, value)

    if attr_value is None or isinstance(attr_value, (dict, list)):
        return False

    left_num, right_num = _as_number(attr_value), _as_number(value)
    if left_num is not None and right_num is not None:
        left: Any = left_num
        right: Any = right_num
    else:
        left, right = _stringify(attr_value).lower(), value.lower()

    if operator == "<":
        return left < right
    if operator == "<=":
        return left <= right
    if operator == ">":
        return left > right
    if operator == ">=":
        return left >= right
    return False


def as_document(item: Any) -> Any:
    if hasattr(item, "to_document"):
        return item.to_document()
    if isinstance(item, str):
        return {"name": item}
    return item


def apply_filters(
    expressions: Sequence[str],
    items: Iterable[T],
    document: Callable[[T], Any] = as_document,
) -> list[T]:
    """Filter an in-memory sequence.

    Expressions are OR-ed; input order is preserved. No expressions
    returns the input unchanged.
    """
    items = list(items)
    parsed = [p for p in (parse_filter(e) for e in expressions) if p.clauses or p.keyword]
    if not parsed:
        return items
    docs = [document(item) for item in items]
    return [item for item, doc in zip(items, docs) if any(p.matches(doc) for p in parsed)]


# ── Upstream-backed filtering ────────────────────────────────────────

SearchFn = Callable[[str], Awaitable[list[str]]]
MetadataFn = Callable[[str], Awaitable[Optional[dict]]]


@dataclass
class FilterHit:
    name: str
    document: Optional[dict] = None


class FilterEngine:
    """Filters a large name-indexed collection.

    Names are matched first against the local name index (and the upstream
    search when one is available). Clauses on other attributes need each
    candidate's metadata, which is fetched for at most
    ``max_metadata_fetches`` candidates.
    """

    def __init__(
        self,
        search: Optional[SearchFn] = None,
        fetch_metadata: Optional[MetadataFn] = None,
        max_metadata_fetches: int = 20,
    ):
        self.search = search
        self.fetch_metadata = fetch_metadata
        self.max_metadata_fetches = max_metadata_fetches

    async def filter_names(self, expressions: Sequence[str], names: Sequence[str]) -> list[FilterHit]:
        parsed = [p for p in (parse_filter(e) for e in expressions) if p.clauses or p.keyword]
        if not parsed:
            return [FilterHit(name) for name in names]

        hits: list[FilterHit] = []
        seen: set[str] = set()
        for pf in parsed:
            for hit in await self._run_one(pf, names):
                key = hit.name.lower()
                if key not in seen:
                    seen.add(key)
                    hits.append(hit)
        return hits

    async def _run_one(self, pf: ParsedFilter, names: Sequence[str]) -> list[FilterHit]:
        if pf.is_plain_text:
            candidates = await self._search(pf.keyword)
            if candidates is None:
                candidates = [n for n in names if pf.keyword.lower() in n.lower()]
            return [FilterHit(n) for n in candidates]

        name_clauses = pf.name_clauses
        candidates = [n for n in names if all(c.matches({"name": n}) for c in name_clauses)]
        term = self._search_term(name_clauses)
        if term:
            remote = await self._search(term) or []
            known = {n.lower() for n in candidates}
            for name in remote:
                if name.lower() not in known and all(c.matches({"name": name}) for c in name_clauses):
                    candidates.append(name)
                    known.add(name.lower())

        others = pf.other_clauses
        if not others:
            return [FilterHit(n) for n in candidates]
        return await self._refine(candidates, others)

    @staticmethod
    def _search_term(name_clauses: list[FilterExpression]) -> str:
        for clause in name_clauses:
            if clause.operator == "=" and clause.value and clause.value.lower() != "null":
                term = clause.value.replace("*", "").strip()
                if term:
                    return term
        return ""

    async def _search(self, term: str) -> Optional[list[str]]:
        if self.search is None:
            return None
        try:
            return await self.search(term)
        except (RegistryError, httpx.HTTPError) as exc:
            logger.warning("Upstream search for %r failed: %s", term, exc)
            return None

    async def _refine(self, candidates: list[str], clauses: list[FilterExpression]) -> list[FilterHit]:
        if self.fetch_metadata is None:
            return []
        if len(candidates) > self.max_metadata_fetches:
            logger.info(
                "Metadata filter limited to %d of %d candidates",
                self.max_metadata_fetches,
                len(candidates),
            )
        hits = []
        for name in candidates[: self.max_metadata_fetches]:
            try:
                doc = await self.fetch_metadata(name)
            except (RegistryError, httpx.HTTPError) as exc:
                logger.debug("Dropping filter candidate %s: %s", name, exc)
                continue
            if doc is not None and all(c.matches(doc) for c in clauses):
                hits.append(FilterHit(name, doc))
        return hits
