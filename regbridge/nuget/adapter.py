"""Wiring of the NuGet adapter: store, cache, client, sync and service."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

import httpx

from regbridge import __version__
from regbridge.cache.conditional import ConditionalCache
from regbridge.cache.store import CacheStore, open_store
from regbridge.config import Settings
from regbridge.nuget.client import NuGetClient
from regbridge.nuget.service import RegistryService
from regbridge.protocol.entities import EpochTracker
from regbridge.protocol.model import NUGET_LAYOUT
from regbridge.sync.catalog import CatalogSynchronizer, PeriodicSync, SyncReport
from regbridge.sync.resolver import DependencyResolver

logger = logging.getLogger(__name__)


class NuGetAdapter:
    """Everything one adapter process needs, built from ``Settings``."""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        store: Optional[CacheStore] = None,
        start_from: Optional[str] = None,
    ):
        self.settings = settings
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.upstream_timeout,
            headers={"User-Agent": f"regbridge/{__version__}"},
            follow_redirects=True,
        )
        self.store = store if store is not None else open_store(settings.cache_dir, settings.cache_backend)
        self.cache = ConditionalCache(self.http_client, self.store, timeout=settings.upstream_timeout)

        self.synchronizer = CatalogSynchronizer(
            fetch_json=self.cache.get,
            index_url=settings.nuget_catalog_index_url,
            store=self.store,
            lookback=timedelta(hours=settings.sync_lookback_hours),
            start_from=start_from,
        )
        self.client = NuGetClient.from_settings(
            self.cache, settings, known_names=lambda: self.synchronizer.known_names
        )
        self.resolver = DependencyResolver(
            self.client,
            resources_path=NUGET_LAYOUT.resources_path,
            timeout=settings.resolution_timeout,
            max_versions=settings.max_versions_scan,
        )
        self.service = RegistryService(
            self.client,
            self.synchronizer,
            self.resolver,
            layout=NUGET_LAYOUT,
            max_metadata_fetches=settings.max_metadata_fetches,
            tracker=EpochTracker(settings.max_tracked_entities),
        )
        self.periodic = PeriodicSync(
            self.synchronizer, settings.sync_interval_seconds, on_report=self._log_report
        )
        self._snapshot_task: Optional[asyncio.Task] = None

    @staticmethod
    def _log_report(report: SyncReport) -> None:
        logger.info(
            "Catalog sync finished",
            extra={
                "pages_processed": report.pages_processed,
                "pages_failed": report.pages_failed,
                "names_added": report.names_added,
                "cursor": report.cursor_after,
            },
        )

    async def _snapshot_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.snapshot_interval_seconds)
            self.snapshot()

    def snapshot(self) -> None:
        try:
            self.store.flush()
        except OSError as exc:
            logger.error("Cache snapshot failed: %s", exc)

    async def start(self) -> None:
        if self.settings.sync_enabled:
            self.periodic.start()
        self._snapshot_task = asyncio.create_task(self._snapshot_loop())

    async def stop(self) -> None:
        await self.periodic.stop()
        if self._snapshot_task is not None:
            self._snapshot_task.cancel()
            try:
                await self._snapshot_task
            except asyncio.CancelledError:
                pass
            self._snapshot_task = None
        self.snapshot()
        if self._owns_client:
            await self.http_client.aclose()
