"""Registry service: assembles protocol documents for the NuGet adapter.

The service is independent of the web framework. Every public method
takes a ``RequestContext`` and returns a ``Reply``; the HTTP layer turns
the reply into a response with protocol headers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from regbridge.errors import EntityNotFound, InvalidIdentifier
from regbridge.nuget import convert
from regbridge.nuget.client import NuGetClient
from regbridge.protocol import SCHEMA_VERSION, SPEC_VERSION
from regbridge.protocol.entities import EpochTracker, Entity, Group, Resource, Version
from regbridge.protocol.filters import FilterEngine, FilterHit, apply_filters
from regbridge.protocol.flags import apply_flags, validate_document
from regbridge.protocol.identifiers import absolutize_docs, build_xid, parse_xid, sanitize_id
from regbridge.protocol.inline import resolve_inline
from regbridge.protocol.model import NUGET_LAYOUT, RegistryLayout, capabilities_document, model_document
from regbridge.protocol.pagination import build_link_header, paginate
from regbridge.protocol.query import QueryOptions
from regbridge.protocol.sorting import apply_sort
from regbridge.sync.catalog import CatalogSynchronizer
from regbridge.sync.resolver import DependencyResolver
from regbridge.sync.versions import compare_versions, parse_version

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    base_url: str
    options: QueryOptions = field(default_factory=QueryOptions)
    query_items: list[tuple[str, str]] = field(default_factory=list)
    path: str = "/"

    @property
    def collection_url(self) -> str:
        return self.base_url.rstrip("/") + self.path


@dataclass
class Reply:
    document: Any
    kind: str
    warnings: list[str] = field(default_factory=list)
    link: Optional[str] = None


class RegistryService:
    """Serves one group of NuGet packages through the registry protocol."""

    def __init__(
        self,
        client: NuGetClient,
        synchronizer: CatalogSynchronizer,
        resolver: DependencyResolver,
        layout: RegistryLayout = NUGET_LAYOUT,
        max_metadata_fetches: int = 20,
        tracker: Optional[EpochTracker] = None,
    ):
        self.client = client
        self.synchronizer = synchronizer
        self.resolver = resolver
        self.layout = layout
        self.max_metadata_fetches = max_metadata_fetches
        self.tracker = tracker if tracker is not None else EpochTracker()

    # ── Helpers ──────────────────────────────────────────────────────

    def _finish(self, ctx: RequestContext, document: Any, kind: str, warnings: list[str]) -> Any:
        if isinstance(document, dict):
            absolutize_docs(document, ctx.base_url)
            return apply_flags(document, ctx.options, kind, warnings)
        return document

    def _collection(self, ctx: RequestContext, docs: list[dict[str, Any]], id_attribute: str) -> Reply:
        """Filter, sort and paginate an in-memory collection of documents."""
        options = ctx.options
        selected = apply_filters(options.filters, docs, document=lambda d: d)
        selected = apply_sort(options.sort, selected, document=lambda d: d)
        page = paginate(selected, options.offset, options.limit)
        collection = {str(d[id_attribute]): d for d in page.items}
        warnings: list[str] = []
        return Reply(
            document=self._finish(ctx, collection, "collection", warnings),
            kind="collection",
            warnings=warnings,
            link=build_link_header(ctx.collection_url, ctx.query_items, page.total, page.offset, page.limit),
        )

    def _check_group(self, group_id: str) -> None:
        if sanitize_id(group_id).lower() != self.layout.group_id.lower():
            raise EntityNotFound.for_entity(
                self.layout.group_type_singular, group_id, instance=f"{self.layout.groups_path}/{group_id}"
            )

    def known_names(self) -> list[str]:
        return sorted(self.synchronizer.known_names, key=str.lower)

    def _group_entity(self) -> Group:
        layout = self.layout
        names = self.synchronizer.known_names
        group = Group(
            entity_id=layout.group_id,
            id_attribute=layout.group_id_attribute,
            xid=build_xid(layout.group_id, "group", layout.groups_path),
            name=layout.group_id,
            description="NuGet registry group",
            collections={layout.resource_type: len(names) if names else None},
        )
        return self.tracker.stamp(group)

    # ── Registry root, model, capabilities ───────────────────────────

    def _root_document(self, base_url: str) -> dict[str, Any]:
        layout = self.layout
        base = base_url.rstrip("/")
        content = {"registryid": layout.registry_id, "name": layout.registry_name, "groups": 1}
        state = self.tracker.observe("/", content)
        return {
            "specversion": SPEC_VERSION,
            "registryid": layout.registry_id,
            "self": f"{base}/",
            "xid": "/",
            "name": layout.registry_name,
            "description": layout.description,
            "epoch": state.epoch,
            "createdat": state.createdat,
            "modifiedat": state.modifiedat,
            "labels": {},
            "modelurl": f"{base}/model",
            "capabilitiesurl": f"{base}/capabilities",
            f"{layout.group_type}url": f"{base}{layout.groups_path}",
            f"{layout.group_type}count": 1,
        }

    async def root(self, ctx: RequestContext) -> Reply:
        document = self._root_document(ctx.base_url)
        loaders = {
            "model": lambda: model_document(self.layout, ctx.base_url),
            "capabilities": lambda: capabilities_document(self.layout, ctx.base_url),
            "schema": lambda: self._schema_summary(document),
            self.layout.group_type: lambda: self._groups_map(ctx.base_url),
        }
        document, warnings = await resolve_inline(document, list(ctx.options.inline), loaders)
        return Reply(self._finish(ctx, document, "registry", warnings), "registry", warnings)

    @staticmethod
    def _schema_summary(document: dict[str, Any]) -> dict[str, Any]:
        errors = validate_document(document, "registry")
        summary: dict[str, Any] = {"version": SCHEMA_VERSION, "valid": not errors}
        if errors:
            summary["errors"] = errors
        return summary

    async def model(self, ctx: RequestContext) -> Reply:
        return Reply(model_document(self.layout, ctx.base_url), "model")

    async def capabilities(self, ctx: RequestContext) -> Reply:
        return Reply(capabilities_document(self.layout, ctx.base_url), "capabilities")

    # ── Groups ───────────────────────────────────────────────────────

    def _groups_map(self, base_url: str) -> dict[str, Any]:
        group = self._group_entity()
        return {group.entity_id: group.to_document(base_url)}

    async def groups(self, ctx: RequestContext) -> Reply:
        group = self._group_entity()
        return self._collection(ctx, [group.to_document(ctx.base_url)], self.layout.group_id_attribute)

    async def group(self, ctx: RequestContext, group_id: str) -> Reply:
        self._check_group(group_id)
        group = self._group_entity()
        document = group.to_document(ctx.base_url)
        first_page = replace(ctx.options, filters=(), sort=None, offset=0)
        loaders = {
            self.layout.resource_type: lambda: self._resources_page(ctx.base_url, first_page),
        }
        document, warnings = await resolve_inline(document, list(ctx.options.inline), loaders)
        return Reply(self._finish(ctx, document, "group", warnings), "group", warnings)

    # ── Packages ─────────────────────────────────────────────────────

    async def load_resource(self, package_id: str) -> tuple[Resource, list[dict[str, Any]]]:
        entries = await self.client.registration_entries(package_id)
        resource = self.tracker.stamp(convert.package_resource(self.layout, entries))
        return resource, entries

    async def _select_packages(
        self, options: QueryOptions
    ) -> tuple[list[FilterHit], dict[str, Resource], Optional[int]]:
        """Candidate packages for a collection request.

        Returns the hits, the resources loaded while filtering and, when
        the upstream search supplied the page, its total hit count.
        """
        loaded: dict[str, Resource] = {}

        async def fetch_metadata(name: str) -> Optional[dict]:
            resource, _ = await self.load_resource(name)
            loaded[name] = resource
            return resource.to_document()

        async def search(term: str) -> list[str]:
            return await self.client.search_names(term, take=max(20, options.limit))

        names = self.known_names()
        if options.filters:
            engine = FilterEngine(search=search, fetch_metadata=fetch_metadata,
                                  max_metadata_fetches=self.max_metadata_fetches)
            return await engine.filter_names(options.filters, names), loaded, None
        if names:
            return [FilterHit(n) for n in names], loaded, None

        # Nothing synchronized yet: serve the upstream's default ranking.
        result = await self.client.search("", take=options.limit, skip=options.offset)
        hits = [FilterHit(hit["id"]) for hit in result.get("data", []) if hit.get("id")]
        return hits, loaded, int(result.get("totalHits", len(hits)))

    def _hit_document(self, hit: FilterHit) -> dict[str, Any]:
        return hit.document or {"name": hit.name, self.layout.resource_id_attribute: hit.name}

    async def _resources_page(self, base_url: str, options: QueryOptions) -> dict[str, Any]:
        hits, loaded, upstream_total = await self._select_packages(options)
        hits = apply_sort(options.sort, hits, document=self._hit_document)
        if upstream_total is None:
            hits = paginate(hits, options.offset, options.limit).items
        return self._render_hits(base_url, hits, loaded)

    def _render_hits(self, base_url: str, hits: list[FilterHit], loaded: dict[str, Resource]) -> dict[str, Any]:
        collection = {}
        for hit in hits:
            resource = loaded.get(hit.name) or self.tracker.apply(convert.package_summary(self.layout, hit.name))
            collection[resource.entity_id] = absolutize_docs(resource.to_document(base_url), base_url)
        return collection

    async def resources(self, ctx: RequestContext, group_id: str) -> Reply:
        self._check_group(group_id)
        options = ctx.options
        hits, loaded, upstream_total = await self._select_packages(options)
        hits = apply_sort(options.sort, hits, document=self._hit_document)

        if upstream_total is None:
            page = paginate(hits, options.offset, options.limit)
            total, page_hits = page.total, page.items
        else:
            total, page_hits = upstream_total, hits

        warnings: list[str] = []
        collection = self._render_hits(ctx.base_url, page_hits, loaded)
        return Reply(
            document=self._finish(ctx, collection, "collection", warnings),
            kind="collection",
            warnings=warnings,
            link=build_link_header(ctx.collection_url, ctx.query_items, total, options.offset, options.limit),
        )

    async def resource(self, ctx: RequestContext, group_id: str, package_id: str) -> Reply:
        self._check_group(group_id)
        resource, entries = await self.load_resource(package_id)
        document = resource.to_document(ctx.base_url)
        loaders = {
            "meta": lambda: resource.meta().to_document(ctx.base_url),
            "versions": lambda: self._versions_map(ctx.base_url, entries),
        }
        document, warnings = await resolve_inline(document, list(ctx.options.inline), loaders)
        return Reply(self._finish(ctx, document, "resource", warnings), "resource", warnings)

    async def meta(self, ctx: RequestContext, group_id: str, package_id: str) -> Reply:
        self._check_group(group_id)
        resource, _ = await self.load_resource(package_id)
        warnings: list[str] = []
        document = resource.meta().to_document(ctx.base_url)
        return Reply(self._finish(ctx, document, "meta", warnings), "meta", warnings)

    async def doc(self, ctx: RequestContext, group_id: str, package_id: str) -> Reply:
        """Documentation summary of a package."""
        self._check_group(group_id)
        resource, _ = await self.load_resource(package_id)
        base = ctx.base_url.rstrip("/")
        document = {
            self.layout.resource_id_attribute: resource.entity_id,
            "self": f"{base}{resource.xid}/doc",
            "name": resource.name,
            "description": resource.description,
            "homepage": resource.extensions.get("homepage"),
            "license": resource.extensions.get("license"),
            "gallery": f"https://www.nuget.org/packages/{resource.entity_id}",
        }
        return Reply({k: v for k, v in document.items() if v is not None}, "doc")

    # ── Versions ─────────────────────────────────────────────────────

    def _versions(self, entries: list[dict[str, Any]]) -> list[Version]:
        default_id = convert.default_version_id(entries)
        return [
            self.tracker.stamp(convert.package_version(self.layout, entry, default_id))
            for entry in entries
            if entry.get("id") and entry.get("version")
        ]

    def _versions_map(self, base_url: str, entries: list[dict[str, Any]]) -> dict[str, Any]:
        return {v.entity_id: v.to_document(base_url) for v in self._versions(entries)}

    async def versions(self, ctx: RequestContext, group_id: str, package_id: str) -> Reply:
        self._check_group(group_id)
        _, entries = await self.load_resource(package_id)
        docs = [v.to_document(ctx.base_url) for v in self._versions(entries)]
        return self._collection(ctx, docs, "versionid")

    async def load_version(self, package_id: str, version_id: str) -> Version:
        _, entries = await self.load_resource(package_id)
        wanted = parse_version(version_id)
        for version in self._versions(entries):
            if version.entity_id.lower() == version_id.lower():
                return version
        # NuGet normalizes versions, so 1.0 and 1.0.0 name the same release
        for version in self._versions(entries):
            parsed = parse_version(version.entity_id)
            if (
                compare_versions(version.entity_id, version_id) == 0
                and parsed.prerelease.lower() == wanted.prerelease.lower()
            ):
                return version
        raise EntityNotFound.for_entity("version", f"{package_id}@{version_id}")

    async def version(self, ctx: RequestContext, group_id: str, package_id: str, version_id: str) -> Reply:
        self._check_group(group_id)
        version = await self.load_version(package_id, version_id)
        version.dependencies = await self.resolver.resolve_all(version.dependencies)
        warnings: list[str] = []
        document = version.to_document(ctx.base_url)
        return Reply(self._finish(ctx, document, "version", warnings), "version", warnings)

    # ── Lookup by xid ────────────────────────────────────────────────

    async def lookup(self, xid: str) -> Entity:
        """Return the entity addressed by ``xid``."""
        parts = parse_xid(xid)
        kind = parts.kind
        if kind == "registry":
            raise InvalidIdentifier("The registry root is not an entity that can be looked up")
        if parts.group_type != self.layout.group_type:
            raise EntityNotFound(f"Unknown group type '{parts.group_type}'", instance=xid)
        self._check_group(parts.group_id)
        if kind == "group":
            return self._group_entity()
        if parts.resource_type != self.layout.resource_type:
            raise EntityNotFound(f"Unknown resource type '{parts.resource_type}'", instance=xid)
        if kind == "version":
            return await self.load_version(parts.resource_id, parts.version_id)
        resource, _ = await self.load_resource(parts.resource_id)
        return resource.meta() if kind == "meta" else resource
