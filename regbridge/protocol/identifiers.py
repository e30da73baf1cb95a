"""Canonical identifiers (xids), docs URLs and timestamps.

An xid is the slash-delimited path of an entity inside a registry:

    /                                           registry
    /{groupType}/{groupId}                      group
    /{groupType}/{groupId}/{resType}/{resId}    resource
    .../{resId}/meta                            resource meta
    .../{resId}/versions/{versionId}            version

Ids are sanitized before they become path segments, and the same
sanitization is applied when an incoming path is looked up.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Optional

from regbridge.errors import InvalidIdentifier

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.:-]")
_REPEATED_SLASHES = re.compile(r"/{2,}")
_SEGMENT = r"[A-Za-z0-9_.:-]+"
XID_PATTERN = re.compile(
    rf"^/(?:{_SEGMENT}/{_SEGMENT}(?:/{_SEGMENT}/{_SEGMENT}(?:/meta|/versions/{_SEGMENT})?)?)?$"
)

ENTITY_KINDS = ("registry", "group", "resource", "meta", "version")

# Number of path segments the parent path must have for each entity kind.
_PARENT_DEPTH = {"group": 1, "resource": 3, "meta": 4, "version": 5}


def sanitize_id(raw: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_.:-]`` with ``_``."""
    return _UNSAFE_CHARS.sub("_", str(raw))


def normalize_path(path: str) -> str:
    """Collapse repeated separators and drop a trailing slash."""
    path = _REPEATED_SLASHES.sub("/", path or "/")
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path if path.startswith("/") else "/" + path


def _segments(path: str) -> list[str]:
    return [p for p in normalize_path(path).split("/") if p]


def build_xid(entity_id: str, entity_type: str, parent_path: str = "") -> str:
    """Build the xid of an entity from its id and parent collection path.

    ``parent_path`` is the path of the collection holding the entity,
    e.g. ``/dotnetregistries/nuget.org/packages`` for a resource. For
    ``meta`` it is the resource xid and ``entity_id`` is ignored.

    Raises:
        InvalidIdentifier: unknown entity type or malformed parent path.
    """
    if entity_type == "registry":
        return "/"
    if entity_type not in _PARENT_DEPTH:
        raise InvalidIdentifier(f"Unknown entity type '{entity_type}'")

    parts = _segments(parent_path)
    if len(parts) != _PARENT_DEPTH[entity_type]:
        raise InvalidIdentifier(
            f"Parent path '{parent_path}' is not valid for a {entity_type}"
        )
    if any(_UNSAFE_CHARS.search(p) for p in parts):
        raise InvalidIdentifier(f"Parent path '{parent_path}' contains invalid characters")
    if entity_type == "version" and parts[4] != "versions":
        raise InvalidIdentifier(f"Parent path '{parent_path}' is not a versions collection")

    if entity_type == "meta":
        return "/" + "/".join(parts) + "/meta"

    safe_id = sanitize_id(entity_id)
    if not safe_id:
        raise InvalidIdentifier(f"Empty {entity_type} id")
    return "/" + "/".join(parts + [safe_id])


@dataclass(frozen=True)
class XidParts:
    """Components of a parsed xid."""

    group_type: str = ""
    group_id: str = ""
    resource_type: str = ""
    resource_id: str = ""
    version_id: str = ""
    meta: bool = False

    @property
    def kind(self) -> str:
        if self.version_id:
            return "version"
        if self.meta:
            return "meta"
        if self.resource_id:
            return "resource"
        if self.group_id:
            return "group"
        return "registry"


def is_valid_xid(xid: str) -> bool:
    return bool(XID_PATTERN.match(xid or ""))


def parse_xid(xid: str) -> XidParts:
    """Split an xid into its components.

    The path is normalized and each segment sanitized first, so a raw
    request path and the xid built from the same ids parse identically.
    """
    parts = [sanitize_id(p) for p in _segments(xid)]
    candidate = "/" + "/".join(parts)
    if not is_valid_xid(candidate):
        raise InvalidIdentifier(f"'{xid}' is not a valid entity identifier")

    padded = parts + [""] * (6 - len(parts))
    if len(parts) == 5:
        return XidParts(*padded[:4], meta=True)
    if len(parts) == 6:
        return XidParts(*padded[:4], version_id=padded[5])
    return XidParts(*padded[:4])


def docs_url(entity_type: str, xid: str, external: Optional[str] = None) -> Optional[str]:
    """Return the docs URL of an entity (relative unless ``external`` is given)."""
    if external:
        return external
    if entity_type == "resource":
        return f"{xid}/doc"
    return None


def absolutize_docs(document: Any, base_url: str) -> Any:
    """Rewrite every relative ``docs`` value in ``document`` against ``base_url``."""
    base = base_url.rstrip("/")
    if isinstance(document, dict):
        for key, value in document.items():
            if key == "docs" and isinstance(value, str) and value.startswith("/"):
                document[key] = base + value
            else:
                absolutize_docs(value, base_url)
    elif isinstance(document, list):
        for item in document:
            absolutize_docs(item, base_url)
    return document


# ── Timestamps ───────────────────────────────────────────────────────


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return to_iso(datetime.now(timezone.utc))


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, tolerating ``Z`` and >6 fractional digits."""
    text = value.strip().replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def http_date(value: str) -> str:
    """Format an ISO timestamp for ``Last-Modified``."""
    return format_datetime(parse_timestamp(value), usegmt=True)
