"""Thin client for the NuGet v3 APIs, routed through the conditional cache."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from regbridge.cache.conditional import ConditionalCache, Fresh, Miss, Stale
from regbridge.config import Settings
from regbridge.errors import EntityNotFound, UpstreamUnavailable

logger = logging.getLogger(__name__)


class NuGetClient:
    """Search, registration, flat-container and catalog lookups."""

    def __init__(
        self,
        cache: ConditionalCache,
        search_url: str,
        registration_url: str,
        flat_container_url: str,
        catalog_index_url: str,
        known_names: Optional[Callable[[], set[str]]] = None,
    ):
        self.cache = cache
        self.search_url = search_url
        self.registration_url = registration_url.rstrip("/")
        self.flat_container_url = flat_container_url.rstrip("/")
        self.catalog_index_url = catalog_index_url
        self.known_names = known_names

    @classmethod
    def from_settings(cls, cache: ConditionalCache, settings: Settings, **kwargs: Any) -> "NuGetClient":
        return cls(
            cache,
            search_url=settings.nuget_search_url,
            registration_url=settings.nuget_registration_url,
            flat_container_url=settings.nuget_flat_container_url,
            catalog_index_url=settings.nuget_catalog_index_url,
            **kwargs,
        )

    # ── Search ───────────────────────────────────────────────────────

    async def search(self, query: str = "", take: int = 20, skip: int = 0, prerelease: bool = False) -> dict:
        params = {
            "q": query,
            "skip": str(skip),
            "take": str(take),
            "prerelease": "true" if prerelease else "false",
            "semVerLevel": "2.0.0",
        }
        return await self.cache.get(self.search_url, params=params)

    async def search_names(self, query: str, take: int = 20) -> list[str]:
        result = await self.search(query, take=take)
        return [hit["id"] for hit in result.get("data", []) if hit.get("id")]

    # ── Registration ─────────────────────────────────────────────────

    def _registration_index_url(self, package_id: str) -> str:
        return f"{self.registration_url}/{package_id.lower()}/index.json"

    async def registration_entries(self, package_id: str) -> list[dict]:
        """All catalog entries of a package, oldest first.

        Registration pages that are not inlined in the index are fetched.

        Raises:
            EntityNotFound: the package does not exist upstream.
        """
        try:
            index = await self.cache.get(self._registration_index_url(package_id))
        except EntityNotFound:
            raise EntityNotFound.for_entity("package", package_id) from None

        entries = []
        for page in index.get("items", []):
            leaves = page.get("items")
            if leaves is None and page.get("@id"):
                page_doc = await self.cache.get(page["@id"])
                leaves = page_doc.get("items", [])
            for leaf in leaves or []:
                entry = leaf.get("catalogEntry")
                if isinstance(entry, dict):
                    entries.append(entry)
        if not entries:
            raise EntityNotFound.for_entity("package", package_id)
        return entries

    async def version_exists(self, package_id: str, version: str) -> bool:
        url = f"{self.registration_url}/{package_id.lower()}/{version.lower()}.json"
        result = await self.cache.fetch(url)
        if isinstance(result, (Fresh, Stale)):
            return True
        if isinstance(result, Miss):
            return False
        raise UpstreamUnavailable(f"Could not check {package_id} {version}: {result.error}")

    # ── Flat container ───────────────────────────────────────────────

    async def list_versions(self, package_id: str) -> list[str]:
        url = f"{self.flat_container_url}/{package_id.lower()}/index.json"
        try:
            data = await self.cache.get(url)
        except EntityNotFound:
            return []
        return [str(v) for v in data.get("versions", [])]

    async def package_exists(self, package_id: str) -> bool:
        if self.known_names is not None and package_id in self.known_names():
            return True
        return bool(await self.list_versions(package_id))

    # ── Catalog ──────────────────────────────────────────────────────

    async def catalog_json(self, url: str) -> Any:
        return await self.cache.get(url)
