"""Gateway router -- merged root, health, status and the proxy catch-all."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from regbridge.gateway import Gateway
from regbridge.protocol.inline import parse_inline

from web.backend.app.middleware.auth import require_api_key
from web.backend.app.middleware.xregistry import render, request_base_url
from web.backend.app.models.api import GatewayHealthResponse, GatewayStatusResponse

router = APIRouter(tags=["gateway"], dependencies=[Depends(require_api_key)])
meta_router = APIRouter(tags=["meta"])


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def _base_url(request: Request) -> str:
    return request_base_url(request, request.app.state.settings)


# ---------------------------------------------------------------------------
# Health and status
# ---------------------------------------------------------------------------


@meta_router.get("/health", response_model=GatewayHealthResponse, summary="Composite health")
async def health(gateway: Gateway = Depends(get_gateway)):
    """Always 200; unreachable adapters are reported, not raised."""
    return await gateway.health.health()


@meta_router.get("/status", response_model=GatewayStatusResponse, summary="Adapter status and routing")
async def status(gateway: Gateway = Depends(get_gateway)):
    return gateway.health.status()


# ---------------------------------------------------------------------------
# Merged registry documents
# ---------------------------------------------------------------------------


@router.get("/", summary="Merged registry root")
async def registry_root(request: Request, gateway: Gateway = Depends(get_gateway)):
    inline = parse_inline(request.query_params.getlist("inline"))
    document, warnings = await gateway.root(_base_url(request), inline)
    return render(request, document, warnings)


@router.get("/model", summary="Merged model")
async def registry_model(request: Request, gateway: Gateway = Depends(get_gateway)):
    return render(request, gateway.models.model_document(_base_url(request)))


@router.get("/capabilities", summary="Merged capabilities")
async def registry_capabilities(request: Request, gateway: Gateway = Depends(get_gateway)):
    return render(request, gateway.models.capabilities_document(_base_url(request)))


# ---------------------------------------------------------------------------
# Proxy
# ---------------------------------------------------------------------------


@router.api_route("/{path:path}", methods=["GET", "HEAD"], summary="Forward to the owning adapter")
async def proxy(path: str, request: Request, gateway: Gateway = Depends(get_gateway)):
    proxied = await gateway.proxy.forward(
        request.method,
        f"/{path}",
        request.url.query,
        request.headers,
        base_url=_base_url(request),
    )
    return Response(content=proxied.content, status_code=proxied.status_code, headers=proxied.headers)
