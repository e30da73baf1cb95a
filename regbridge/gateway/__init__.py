"""Gateway that fronts several adapters as one registry.

Each adapter serves one or more group types. The gateway merges their
models, routes requests by group type and reports composite health.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from regbridge import __version__
from regbridge.config import Settings
from regbridge.gateway.downstreams import DownstreamConfig, DownstreamService, load_downstreams
from regbridge.gateway.health import HealthService
from regbridge.gateway.model import ModelService
from regbridge.gateway.proxy import ProxyService
from regbridge.protocol import SPEC_VERSION
from regbridge.protocol.inline import resolve_inline

logger = logging.getLogger(__name__)

GATEWAY_REGISTRY_ID = "regbridge-gateway"


class Gateway:
    def __init__(
        self,
        settings: Settings,
        downstreams: Optional[list[DownstreamConfig]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.proxy_timeout_seconds,
            headers={"User-Agent": f"regbridge-gateway/{__version__}"},
        )
        servers = downstreams if downstreams is not None else load_downstreams(settings)
        self.downstreams = DownstreamService(servers, self.http_client, settings.health_timeout_seconds)
        self.models = ModelService()
        self.health = HealthService(self.downstreams, self.models, settings)
        self.proxy = ProxyService(
            self.models, self.http_client, settings.base_url, timeout=settings.proxy_timeout_seconds
        )
        self._retry_task: Optional[asyncio.Task] = None

    async def refresh(self) -> bool:
        """Retry inactive adapters and rebuild the merged model."""
        await self.downstreams.retry_inactive()
        return self.models.rebuild(self.downstreams.states.values())

    async def _retry_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.retry_interval_seconds)
            try:
                await self.refresh()
            except httpx.HTTPError as exc:
                logger.error("Downstream retry failed: %s", exc)

    async def start(self) -> None:
        await self.downstreams.initialize(self.settings.startup_wait_seconds)
        self.models.rebuild(self.downstreams.states.values())
        self._retry_task = asyncio.create_task(self._retry_loop())

    async def stop(self) -> None:
        if self._retry_task is not None:
            self._retry_task.cancel()
            try:
                await self._retry_task
            except asyncio.CancelledError:
                pass
            self._retry_task = None
        if self._owns_client:
            await self.http_client.aclose()

    def _counts(self) -> dict[str, Any]:
        counts: dict[str, Any] = {}
        for state in self.downstreams.active():
            for key, value in (state.model or {}).items():
                if key.endswith("count"):
                    counts.setdefault(key, value)
        return counts

    async def root(self, base_url: str, inline: list[str]) -> tuple[dict[str, Any], list[str]]:
        """The merged registry root, with requested collections inlined."""
        base = base_url.rstrip("/")
        counts = self._counts()
        document: dict[str, Any] = {
            "specversion": SPEC_VERSION,
            "registryid": GATEWAY_REGISTRY_ID,
            "self": f"{base}/",
            "xid": "/",
            "epoch": self.models.epoch,
            "createdat": self.models.created_at,
            "modifiedat": self.models.modified_at,
            "modelurl": f"{base}/model",
            "capabilitiesurl": f"{base}/capabilities",
        }
        loaders: dict[str, Any] = {
            "model": lambda: self.models.model_document(base),
            "capabilities": lambda: self.models.capabilities_document(base),
        }
        for group_type in self.models.group_types:
            plural = self.models.plural(group_type)
            document[f"{plural}url"] = f"{base}/{plural}"
            document[f"{plural}count"] = counts.get(f"{plural}count", 1)
            loaders[plural] = self._group_loader(plural, base)
        return await resolve_inline(document, inline, loaders)

    def _group_loader(self, plural: str, base_url: str):
        async def load() -> dict[str, Any]:
            fetched = await self.proxy.fetch_json(f"/{plural}", base_url)
            if fetched is None:
                raise LookupError(f"Could not load /{plural}")
            return fetched

        return load
