"""Forwarding of protocol requests to the adapter serving their group type."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx

from regbridge.errors import ApiNotFound, UpstreamUnavailable
from regbridge.gateway.downstreams import DownstreamConfig
from regbridge.gateway.model import ModelService

logger = logging.getLogger(__name__)

BASE_URL_HEADER = "x-base-url"

# Headers that describe one hop and must not be forwarded.
HOP_BY_HOP = frozenset(
    {
        "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
        "te", "trailers", "transfer-encoding", "upgrade", "host", "content-length",
        "content-encoding",
    }
)


@dataclass
class ProxiedResponse:
    status_code: int
    headers: dict[str, str]
    content: bytes


def _clean(headers: Mapping[str, str]) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP}


class ProxyService:
    def __init__(self, models: ModelService, client: httpx.AsyncClient, base_url: str, timeout: float = 30.0):
        self.models = models
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def route(self, path: str) -> DownstreamConfig:
        group_type = path.strip("/").split("/", 1)[0]
        backend = self.models.backend_for(group_type)
        if backend is None:
            raise ApiNotFound(f"No registry serves '/{group_type}'", instance=path)
        return backend

    async def forward(
        self,
        method: str,
        path: str,
        query: str,
        headers: Mapping[str, str],
        body: Optional[bytes] = None,
        base_url: Optional[str] = None,
    ) -> ProxiedResponse:
        """Send the request to its adapter and relay the answer.

        Adapter error statuses are passed through unchanged; only a
        transport failure becomes an ``UpstreamUnavailable``.
        """
        backend = self.route(path)
        outgoing = _clean(headers)
        outgoing.pop("authorization", None)
        outgoing.pop("Authorization", None)
        outgoing.update(backend.headers())
        outgoing[BASE_URL_HEADER] = (base_url or self.base_url).rstrip("/")

        url = f"{backend.url}{path}" + (f"?{query}" if query else "")
        try:
            response = await self.client.request(
                method, url, headers=outgoing, content=body, timeout=self.timeout
            )
        except httpx.TimeoutException as exc:
            logger.error("Proxy to %s timed out: %s", backend.url, exc)
            raise UpstreamUnavailable(
                f"Registry server {backend.url} did not respond in time", timeout=True, instance=path
            ) from exc
        except httpx.RequestError as exc:
            logger.error("Proxy to %s failed: %s", backend.url, exc)
            raise UpstreamUnavailable(
                f"Registry server {backend.url} is not available", instance=path
            ) from exc

        return ProxiedResponse(
            status_code=response.status_code,
            headers=_clean(response.headers),
            content=response.content,
        )

    async def fetch_json(self, path: str, base_url: Optional[str] = None) -> Optional[dict]:
        """GET a document from the adapter serving ``path``; None on any failure."""
        try:
            proxied = await self.forward(
                "GET", path, "", {"accept": "application/json"}, base_url=base_url
            )
        except (ApiNotFound, UpstreamUnavailable) as exc:
            logger.warning("Could not fetch %s for inlining: %s", path, exc)
            return None
        if proxied.status_code != 200:
            return None
        try:
            return json.loads(proxied.content)
        except ValueError:
            return None
