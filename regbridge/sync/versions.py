"""Version comparison and version ranges.

Versions compare by their numeric dot components (missing components
are 0). A pre-release sorts below the release with the same numbers.
Two pre-releases with equal numbers compare equal regardless of their
labels.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import Iterable, Optional

_LEADING_DIGITS = re.compile(r"^(\d+)")
_VERSION_TOKEN = r"v?(\d[0-9A-Za-z.+-]*)"


@dataclass(frozen=True)
class ParsedVersion:
    numbers: tuple[int, ...]
    prerelease: str = ""

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)


def parse_version(text: str) -> ParsedVersion:
    text = text.strip().lstrip("vV").split("+", 1)[0]
    core, _, prerelease = text.partition("-")
    numbers = []
    for part in core.split("."):
        match = _LEADING_DIGITS.match(part)
        numbers.append(int(match.group(1)) if match else 0)
    return ParsedVersion(tuple(numbers), prerelease)


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as ``a`` is lower than, equal to or higher than ``b``."""
    pa, pb = parse_version(a), parse_version(b)
    width = max(len(pa.numbers), len(pb.numbers))
    na = pa.numbers + (0,) * (width - len(pa.numbers))
    nb = pb.numbers + (0,) * (width - len(pb.numbers))
    if na != nb:
        return -1 if na < nb else 1
    if pa.is_prerelease and not pb.is_prerelease:
        return -1
    if pb.is_prerelease and not pa.is_prerelease:
        return 1
    return 0


def is_prerelease(version: str) -> bool:
    return parse_version(version).is_prerelease


def sort_versions(versions: Iterable[str], descending: bool = False) -> list[str]:
    return sorted(versions, key=functools.cmp_to_key(compare_versions), reverse=descending)


def latest_version(versions: Iterable[str], include_prerelease: bool = False) -> Optional[str]:
    """Highest stable version; falls back to pre-releases when there is none."""
    ordered = sort_versions(versions, descending=True)
    if not include_prerelease:
        stable = [v for v in ordered if not is_prerelease(v)]
        if stable:
            return stable[0]
    return ordered[0] if ordered else None


# ── Ranges ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class VersionRange:
    """A declared dependency range, classified for resolution."""

    raw: str
    kind: str  # "exact", "minimum" or "other"
    version: str = ""
    inclusive: bool = True

    def allows(self, version: str) -> bool:
        if self.kind == "exact":
            return compare_versions(version, self.version) == 0
        if self.kind == "minimum":
            cmp = compare_versions(version, self.version)
            return cmp >= 0 if self.inclusive else cmp > 0
        return False


_EXACT_PATTERNS = (
    re.compile(rf"^\[\s*{_VERSION_TOKEN}\s*\]$"),
    re.compile(rf"^==?\s*{_VERSION_TOKEN}$"),
    re.compile(rf"^{_VERSION_TOKEN}$"),
)
_MINIMUM_PATTERNS = (
    (re.compile(rf"^>=\s*{_VERSION_TOKEN}$"), True),
    (re.compile(rf"^\[\s*{_VERSION_TOKEN}\s*,\s*\)$"), True),
    (re.compile(rf"^>\s*{_VERSION_TOKEN}$"), False),
    (re.compile(rf"^\(\s*{_VERSION_TOKEN}\s*,\s*\)$"), False),
)


def parse_range(raw: str) -> VersionRange:
    text = (raw or "").strip()
    for pattern in _EXACT_PATTERNS:
        match = pattern.match(text)
        if match:
            return VersionRange(raw=raw, kind="exact", version=match.group(1))
    for pattern, inclusive in _MINIMUM_PATTERNS:
        match = pattern.match(text)
        if match:
            return VersionRange(raw=raw, kind="minimum", version=match.group(1), inclusive=inclusive)
    return VersionRange(raw=raw, kind="other")
