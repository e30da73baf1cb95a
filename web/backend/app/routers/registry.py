"""Registry router -- read-only protocol endpoints of the NuGet adapter."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from regbridge.nuget.adapter import NuGetAdapter
from regbridge.nuget.service import Reply, RegistryService, RequestContext
from regbridge.protocol.identifiers import utc_now
from regbridge.protocol.model import NUGET_LAYOUT
from regbridge.protocol.query import parse_query_options

from web.backend.app.middleware.auth import require_api_key
from web.backend.app.middleware.xregistry import render, request_base_url
from web.backend.app.models.api import AdapterHealthResponse, SyncStatusResponse

router = APIRouter(tags=["registry"], dependencies=[Depends(require_api_key)])
meta_router = APIRouter(tags=["meta"])

GROUPS = NUGET_LAYOUT.groups_path
RESOURCES = f"{GROUPS}/{{group_id}}/{NUGET_LAYOUT.resource_type}"


def get_adapter(request: Request) -> NuGetAdapter:
    return request.app.state.adapter


def get_service(request: Request) -> RegistryService:
    return get_adapter(request).service


def get_context(request: Request) -> RequestContext:
    """Parse the query once per request into a ``RequestContext``."""
    settings = request.app.state.settings
    items = list(request.query_params.multi_items())
    return RequestContext(
        base_url=request_base_url(request, settings),
        options=parse_query_options(items, settings.default_page_limit, settings.max_page_limit),
        query_items=items,
        path=request.url.path,
    )


def _respond(request: Request, reply: Reply):
    return render(request, reply.document, reply.warnings, reply.link)


# ---------------------------------------------------------------------------
# Registry root, model and capabilities
# ---------------------------------------------------------------------------


@router.get("/", summary="Registry root")
async def registry_root(request: Request, ctx=Depends(get_context), service=Depends(get_service)):
    return _respond(request, await service.root(ctx))


@router.get("/model", summary="Registry model")
async def registry_model(request: Request, ctx=Depends(get_context), service=Depends(get_service)):
    return _respond(request, await service.model(ctx))


@router.get("/capabilities", summary="Registry capabilities")
async def registry_capabilities(request: Request, ctx=Depends(get_context), service=Depends(get_service)):
    return _respond(request, await service.capabilities(ctx))


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


@router.get(GROUPS, summary="List groups")
async def list_groups(request: Request, ctx=Depends(get_context), service=Depends(get_service)):
    return _respond(request, await service.groups(ctx))


@router.get(f"{GROUPS}/{{group_id}}", summary="Get a group")
async def get_group(group_id: str, request: Request, ctx=Depends(get_context), service=Depends(get_service)):
    return _respond(request, await service.group(ctx, group_id))


# ---------------------------------------------------------------------------
# Packages and versions
# ---------------------------------------------------------------------------


@router.get(RESOURCES, summary="List packages")
async def list_packages(group_id: str, request: Request, ctx=Depends(get_context), service=Depends(get_service)):
    return _respond(request, await service.resources(ctx, group_id))


@router.get(f"{RESOURCES}/{{package_id}}", summary="Get a package")
async def get_package(
    group_id: str, package_id: str, request: Request, ctx=Depends(get_context), service=Depends(get_service)
):
    return _respond(request, await service.resource(ctx, group_id, package_id))


@router.get(f"{RESOURCES}/{{package_id}}/meta", summary="Get package meta")
async def get_package_meta(
    group_id: str, package_id: str, request: Request, ctx=Depends(get_context), service=Depends(get_service)
):
    return _respond(request, await service.meta(ctx, group_id, package_id))


@router.get(f"{RESOURCES}/{{package_id}}/doc", summary="Get package documentation")
async def get_package_doc(
    group_id: str, package_id: str, request: Request, ctx=Depends(get_context), service=Depends(get_service)
):
    return _respond(request, await service.doc(ctx, group_id, package_id))


@router.get(f"{RESOURCES}/{{package_id}}/versions", summary="List package versions")
async def list_versions(
    group_id: str, package_id: str, request: Request, ctx=Depends(get_context), service=Depends(get_service)
):
    return _respond(request, await service.versions(ctx, group_id, package_id))


@router.get(f"{RESOURCES}/{{package_id}}/versions/{{version_id}}", summary="Get a package version")
async def get_version(
    group_id: str,
    package_id: str,
    version_id: str,
    request: Request,
    ctx=Depends(get_context),
    service=Depends(get_service),
):
    return _respond(request, await service.version(ctx, group_id, package_id, version_id))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@meta_router.get("/health", response_model=AdapterHealthResponse, summary="Adapter health")
async def health(adapter: NuGetAdapter = Depends(get_adapter)):
    synchronizer = adapter.synchronizer
    cursor = synchronizer.cursor
    return AdapterHealthResponse(
        status="healthy",
        timestamp=utc_now(),
        registry=NUGET_LAYOUT.registry_id,
        cache_entries=len(adapter.store),
        sync=SyncStatusResponse(
            state=synchronizer.state.value,
            running=synchronizer.running,
            cursor=cursor.timestamp,
            last_run=cursor.last_run or None,
            known_names=len(synchronizer.known_names),
        ),
    )
