"""Incremental catalog synchronization.

The upstream catalog is a timestamp-ordered index of pages, each listing
package events with a ``commitTimeStamp``. A run walks the pages newer
than the stored cursor, collects the ids of "details" events (deletions
are ignored) into the known-name set, and moves the cursor forward to
the newest timestamp that was processed without a gap.

A page that fails to load is logged and skipped. The cursor never moves
past a failed page, so the next run picks it up again.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from regbridge.cache.store import CacheStore
from regbridge.errors import RegistryError
from regbridge.protocol.identifiers import parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)

CURSOR_KEY = "catalog-cursor"

FetchJson = Callable[[str], Awaitable[Any]]

_DETAILS_TYPES = ("nuget:PackageDetails", "PackageDetails")
_PAGE_TYPES = ("CatalogPage", "nuget:CatalogPage")


class SyncState(str, enum.Enum):
    IDLE = "idle"
    FETCHING_INDEX = "fetching_index"
    PROCESSING_PAGES = "processing_pages"


@dataclass
class CatalogCursor:
    timestamp: str
    names: set[str] = field(default_factory=set)
    last_run: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "names": sorted(self.names), "last_run": self.last_run}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CatalogCursor":
        return cls(
            timestamp=data["timestamp"],
            names=set(data.get("names", [])),
            last_run=data.get("last_run", ""),
        )


@dataclass
class SyncReport:
    started_at: str = ""
    finished_at: str = ""
    cursor_before: str = ""
    cursor_after: str = ""
    pages_seen: int = 0
    pages_processed: int = 0
    pages_failed: int = 0
    names_added: int = 0
    skipped: bool = False
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error and not self.pages_failed


@dataclass
class _PageOutcome:
    names: set[str] = field(default_factory=set)
    high_water: Optional[datetime] = None
    complete: bool = True
    pages: int = 0
    failed: int = 0


def _types(item: dict[str, Any]) -> list[str]:
    value = item.get("@type", [])
    return [value] if isinstance(value, str) else list(value)


def _timestamp(item: dict[str, Any]) -> Optional[datetime]:
    raw = item.get("commitTimeStamp")
    if not raw:
        return None
    try:
        return parse_timestamp(raw)
    except ValueError:
        return None


class CatalogSynchronizer:
    """Keeps the known-name set in step with the upstream catalog.

    Runs never overlap: a run requested while another is in progress is
    skipped and reported as such.
    """

    def __init__(
        self,
        fetch_json: FetchJson,
        index_url: str,
        store: CacheStore,
        lookback: timedelta = timedelta(hours=24),
        start_from: Optional[str] = None,
    ):
        self.fetch_json = fetch_json
        self.index_url = index_url
        self.store = store
        self.lookback = lookback
        self.start_from = start_from
        self.state = SyncState.IDLE
        self.last_report: Optional[SyncReport] = None
        self._lock = asyncio.Lock()
        self._cursor = self._load_cursor()

    def _load_cursor(self) -> CatalogCursor:
        stored = self.store.get(CURSOR_KEY)
        if stored:
            cursor = CatalogCursor.from_dict(stored)
            logger.info(
                "Resuming catalog sync from %s with %d known names",
                cursor.timestamp,
                len(cursor.names),
            )
            return cursor
        start = self.start_from or to_iso(datetime.now(timezone.utc) - self.lookback)
        return CatalogCursor(timestamp=start)

    @property
    def cursor(self) -> CatalogCursor:
        return self._cursor

    @property
    def known_names(self) -> set[str]:
        return self._cursor.names

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def _merge_names(self, names: set[str]) -> int:
        before = len(self._cursor.names)
        self._cursor.names.update(names)
        return len(self._cursor.names) - before

    async def run(self) -> SyncReport:
        if self._lock.locked():
            logger.info("Catalog sync already running; skipping trigger")
            return SyncReport(started_at=utc_now(), skipped=True)
        async with self._lock:
            try:
                report = await self._run()
            finally:
                self.state = SyncState.IDLE
            self.last_report = report
            return report

    async def _run(self) -> SyncReport:
        cursor_ts = parse_timestamp(self._cursor.timestamp)
        report = SyncReport(started_at=utc_now(), cursor_before=self._cursor.timestamp)

        self.state = SyncState.FETCHING_INDEX
        try:
            index = await self.fetch_json(self.index_url)
        except (RegistryError, httpx.HTTPError) as exc:
            logger.error("Could not fetch catalog index %s: %s", self.index_url, exc)
            report.error = str(exc)
            report.cursor_after = self._cursor.timestamp
            report.finished_at = utc_now()
            return report

        pages = [
            (ts, item)
            for item in index.get("items", [])
            if (ts := _timestamp(item)) is not None and ts > cursor_ts and item.get("@id")
        ]
        pages.sort(key=lambda pair: pair[0])
        report.pages_seen = len(pages)

        self.state = SyncState.PROCESSING_PAGES
        high_water = cursor_ts
        blocked = False
        names: set[str] = set()
        for ts, item in pages:
            outcome = await self._process_page(item["@id"], cursor_ts)
            names |= outcome.names
            report.pages_processed += outcome.pages
            report.pages_failed += outcome.failed
            if blocked:
                continue
            if outcome.high_water is not None:
                high_water = max(high_water, outcome.high_water)
            if outcome.complete:
                high_water = max(high_water, ts)
            else:
                blocked = True

        report.names_added = self._merge_names(names)
        if high_water > cursor_ts:
            self._cursor.timestamp = to_iso(high_water)
        self._cursor.last_run = report.started_at
        if self.store.blocking_io:
            await asyncio.to_thread(self.store.put, CURSOR_KEY, self._cursor.to_dict())
        else:
            self.store.put(CURSOR_KEY, self._cursor.to_dict())

        report.cursor_after = self._cursor.timestamp
        report.finished_at = utc_now()
        logger.info(
            "Catalog sync processed %d pages (%d failed), %d new names, cursor %s",
            report.pages_processed,
            report.pages_failed,
            report.names_added,
            report.cursor_after,
        )
        return report

    async def _process_page(self, url: str, cursor_ts: datetime) -> _PageOutcome:
        """Collect names from one page, descending into sub-pages."""
        try:
            page = await self.fetch_json(url)
        except (RegistryError, httpx.HTTPError) as exc:
            logger.warning("Catalog page %s failed: %s", url, exc)
            return _PageOutcome(complete=False, failed=1)

        outcome = _PageOutcome(pages=1)
        items = [(ts, item) for item in page.get("items", []) if (ts := _timestamp(item)) is not None]
        items.sort(key=lambda pair: pair[0])

        for ts, item in items:
            if ts <= cursor_ts:
                continue
            if any(t in _PAGE_TYPES for t in _types(item)):
                sub = await self._process_page(item["@id"], cursor_ts)
                outcome.names |= sub.names
                outcome.pages += sub.pages
                outcome.failed += sub.failed
                if not outcome.complete:
                    continue
                if sub.high_water is not None:
                    outcome.high_water = max(outcome.high_water or sub.high_water, sub.high_water)
                if sub.complete:
                    outcome.high_water = max(outcome.high_water or ts, ts)
                else:
                    outcome.complete = False
                continue

            if any(t in _DETAILS_TYPES for t in _types(item)):
                package_id = item.get("nuget:id")
                if package_id:
                    outcome.names.add(package_id)
            if outcome.complete:
                outcome.high_water = max(outcome.high_water or ts, ts)

        return outcome


class PeriodicSync:
    """Runs a synchronizer on start and then every ``interval`` seconds.

    The run is shielded, so cancelling whoever awaits ``trigger()`` never
    aborts a run in progress.
    """

    def __init__(
        self,
        synchronizer: CatalogSynchronizer,
        interval: float,
        on_report: Optional[Callable[[SyncReport], None]] = None,
    ):
        self.synchronizer = synchronizer
        self.interval = interval
        self.on_report = on_report
        self._task: Optional[asyncio.Task] = None
        self._runs: set[asyncio.Task] = set()

    def trigger(self) -> asyncio.Future:
        task = asyncio.ensure_future(self.synchronizer.run())
        self._runs.add(task)
        task.add_done_callback(self._finished)
        return asyncio.shield(task)

    def _finished(self, task: asyncio.Task) -> None:
        self._runs.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Catalog sync run failed", exc_info=exc)
        elif self.on_report is not None:
            self.on_report(task.result())

    async def _loop(self) -> None:
        while True:
            # failures are logged by _finished
            await asyncio.wait([self.trigger()])
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for task in list(self._runs):
            task.cancel()
