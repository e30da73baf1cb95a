"""Response headers: content type, ETag, epoch and warnings."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Iterable, Optional

from regbridge.protocol import SCHEMA_VERSION, SPEC_VERSION
from regbridge.protocol.identifiers import http_date

CONTENT_TYPE = f'application/json; charset=utf-8; schema="{SCHEMA_VERSION}"'


def serialize(document: Any) -> bytes:
    return json.dumps(document, ensure_ascii=False, separators=(",", ":"), default=str).encode("utf-8")


def generate_etag(document: Any) -> str:
    """Strong ETag derived from the serialized document."""
    body = document if isinstance(document, bytes) else serialize(document)
    return '"' + hashlib.sha256(body).hexdigest()[:32] + '"'


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """Whether an ``If-None-Match`` header matches ``etag``."""
    if not if_none_match:
        return False
    candidates = [c.strip() for c in if_none_match.split(",")]
    if "*" in candidates:
        return True
    bare = etag.removeprefix("W/")
    return any(c.removeprefix("W/") == bare for c in candidates)


def warning_header(messages: Iterable[str]) -> str:
    return ", ".join(f'299 - "{m.replace(chr(34), chr(39))}"' for m in messages)


def protocol_headers(document: Any, body: Optional[bytes] = None) -> dict[str, str]:
    """Headers every protocol response carries."""
    headers = {
        "Content-Type": CONTENT_TYPE,
        "X-XRegistry-SpecVersion": SPEC_VERSION,
        "ETag": generate_etag(body if body is not None else document),
        "Cache-Control": "no-cache",
    }
    if isinstance(document, dict):
        if isinstance(document.get("epoch"), int):
            headers["X-XRegistry-Epoch"] = str(document["epoch"])
        modified = document.get("modifiedat")
        if isinstance(modified, str) and modified:
            try:
                headers["Last-Modified"] = http_date(modified)
            except ValueError:
                pass
    return headers
