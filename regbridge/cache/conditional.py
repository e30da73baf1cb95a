"""ETag-based conditional fetching of upstream JSON.

Every successful response is stored with its ETag. The next fetch of the
same URL sends ``If-None-Match``; a ``304`` answer returns the stored
payload untouched. When the upstream cannot be reached the stored payload
is returned as ``Stale``. Entries never expire.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlencode

import httpx

from regbridge.cache.store import CacheStore
from regbridge.errors import EntityNotFound, UpstreamUnavailable

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    etag: Optional[str]
    payload: Any
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "etag": self.etag, "payload": self.payload, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            etag=data.get("etag"),
            payload=data.get("payload"),
            timestamp=data.get("timestamp", 0.0),
        )


@dataclass(frozen=True)
class Fresh:
    """The upstream answered; ``revalidated`` is set for a ``304``."""

    payload: Any
    etag: Optional[str] = None
    revalidated: bool = False


@dataclass(frozen=True)
class Stale:
    """The upstream failed; this is the last payload it served."""

    payload: Any
    error: str = ""


@dataclass(frozen=True)
class Miss:
    """The upstream says the URL does not exist."""

    status: int = 404


@dataclass(frozen=True)
class Failed:
    """The upstream failed and nothing is cached."""

    error: Exception


CacheResult = Union[Fresh, Stale, Miss, Failed]


def cache_key(url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Request URL with its query string sorted."""
    parsed = httpx.URL(url, params=params) if params else httpx.URL(url)
    items = sorted(parsed.params.multi_items())
    base = str(parsed).split("?", 1)[0]
    return f"{base}?{urlencode(items)}" if items else base


class ConditionalCache:
    """Conditional GETs against an upstream, backed by a ``CacheStore``."""

    def __init__(self, client: httpx.AsyncClient, store: CacheStore, timeout: float = 15.0):
        self.client = client
        self.store = store
        self.timeout = timeout

    def cached(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Optional[CacheEntry]:
        raw = self.store.get(cache_key(url, params))
        return CacheEntry.from_dict(raw) if raw else None

    async def _load(self, key: str) -> Optional[CacheEntry]:
        if self.store.blocking_io:
            raw = await asyncio.to_thread(self.store.get, key)
        else:
            raw = self.store.get(key)
        return CacheEntry.from_dict(raw) if raw else None

    async def _save(self, entry: CacheEntry) -> None:
        if self.store.blocking_io:
            await asyncio.to_thread(self.store.put, entry.key, entry.to_dict())
        else:
            self.store.put(entry.key, entry.to_dict())

    async def fetch(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> CacheResult:
        key = cache_key(url, params)
        entry = await self._load(key)

        request_headers = {"Accept": "application/json", **(headers or {})}
        if entry and entry.etag:
            request_headers["If-None-Match"] = entry.etag

        try:
            response = await self.client.get(
                url,
                params=params,
                headers=request_headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.RequestError as exc:
            logger.warning("Upstream request to %s failed: %s", key, exc)
            if entry is not None:
                return Stale(entry.payload, str(exc))
            return Failed(exc)

        if response.status_code == 304 and entry is not None:
            return Fresh(entry.payload, entry.etag, revalidated=True)

        if response.status_code in (404, 410):
            return Miss(response.status_code)

        if response.is_success:
            try:
                payload = response.json()
            except ValueError as exc:
                logger.warning("Upstream %s returned invalid JSON: %s", key, exc)
                if entry is not None:
                    return Stale(entry.payload, "invalid JSON")
                return Failed(exc)
            etag = response.headers.get("etag")
            await self._save(CacheEntry(key, etag, payload))
            return Fresh(payload, etag)

        error = httpx.HTTPStatusError(
            f"Upstream returned {response.status_code}", request=response.request, response=response
        )
        logger.warning("Upstream %s returned %d", key, response.status_code)
        if entry is not None:
            return Stale(entry.payload, str(error))
        return Failed(error)

    async def get(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Fetch and return the payload (fresh or stale).

        Raises:
            EntityNotFound: the upstream answered 404/410.
            UpstreamUnavailable: the upstream failed and nothing is cached.
        """
        result = await self.fetch(url, headers=headers, params=params, timeout=timeout)
        if isinstance(result, (Fresh, Stale)):
            return result.payload
        if isinstance(result, Miss):
            raise EntityNotFound(f"Upstream resource not found: {url}")
        raise UpstreamUnavailable(
            f"Upstream request failed: {result.error}",
            timeout=isinstance(result.error, httpx.TimeoutException),
        ) from result.error
