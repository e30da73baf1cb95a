"""Protocol middleware, exception handlers and response rendering.

Shared by the adapter app and the gateway app:

- ``$details`` suffixes and trailing slashes are removed before routing
- ``Accept`` negotiation answers 406 for clients that take no JSON
- bare ``OPTIONS`` requests get 204 and every response carries CORS headers
- one structured log record per request
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from regbridge.config import Settings
from regbridge.errors import ApiNotFound, InvalidRequest, NotAcceptable, RegistryError, ServerError
from regbridge.protocol import SCHEMA_VERSION
from regbridge.protocol.headers import etag_matches, protocol_headers, serialize, warning_header

logger = logging.getLogger("regbridge.http")

DETAILS_SUFFIX = "$details"
EXPOSED_HEADERS = [
    "ETag", "Link", "Warning", "Last-Modified",
    "X-XRegistry-Epoch", "X-XRegistry-SpecVersion", "X-XRegistry-Details",
]
ALLOWED_HEADERS = "Origin, X-Requested-With, Content-Type, Accept, Authorization, If-None-Match, If-Modified-Since"


def request_base_url(request: Request, settings: Settings) -> str:
    """Base URL used for self links: configured, forwarded by the gateway, or observed."""
    if settings.base_url:
        return settings.base_url.rstrip("/")
    forwarded = request.headers.get("x-base-url")
    if forwarded:
        return forwarded.rstrip("/")
    return str(request.base_url).rstrip("/")


def accepts_json(accept: Optional[str]) -> bool:
    if not accept:
        return True
    for media in (part.strip() for part in accept.split(",")):
        media_type = media.split(";", 1)[0].strip().lower()
        if media_type in ("*/*", "application/*", "application/json", "text/html"):
            return True
    return False


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def problem_response(error: RegistryError, instance: str = "", headers: Optional[dict[str, str]] = None) -> Response:
    return Response(
        content=serialize(error.to_problem(instance)),
        status_code=error.status,
        media_type="application/problem+json",
        headers=headers,
    )


def render(
    request: Request,
    document: Any,
    warnings: Iterable[str] = (),
    link: Optional[str] = None,
    status_code: int = 200,
) -> Response:
    """Serialize a protocol document with its headers; 304 when the ETag matches."""
    body = serialize(document)
    headers = protocol_headers(document, body)
    warnings = list(warnings)
    if warnings:
        headers["Warning"] = warning_header(warnings)
    if link:
        headers["Link"] = link

    if etag_matches(request.headers.get("if-none-match"), headers["ETag"]):
        headers.pop("Content-Type", None)
        return Response(status_code=304, headers=headers)
    return Response(content=body, status_code=status_code, headers=headers)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _rewrite_path(request: Request) -> bool:
    """Strip ``$details`` and trailing slashes in place; True when ``$details`` was present."""
    path = request.scope["path"]
    details = path.endswith(DETAILS_SUFFIX)
    if details:
        path = path[: -len(DETAILS_SUFFIX)]
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    if path != request.scope["path"]:
        request.scope["path"] = path
        request.scope["raw_path"] = path.encode("utf-8")
    return details


def install_protocol_middleware(app: FastAPI, settings: Settings) -> None:
    origin = "*" if "*" in settings.allowed_origins else ", ".join(settings.allowed_origins)

    @app.middleware("http")
    async def protocol_middleware(request: Request, call_next):
        started = time.perf_counter()
        details = _rewrite_path(request)

        if request.method == "OPTIONS":
            response = Response(status_code=204)
        elif not accepts_json(request.headers.get("accept")):
            response = problem_response(
                NotAcceptable(
                    f'Only application/json; schema="{SCHEMA_VERSION}" or application/json is supported',
                    accept=request.headers.get("accept"),
                ),
                instance=request.url.path,
            )
        else:
            response = await call_next(request)

        if details:
            response.headers["X-XRegistry-Details"] = "true"
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Methods", "GET, OPTIONS")
        response.headers.setdefault("Access-Control-Allow-Headers", ALLOWED_HEADERS)
        response.headers.setdefault("Access-Control-Expose-Headers", ", ".join(EXPOSED_HEADERS))

        logger.info(
            "%s %s %d",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "method": request.method,
                "path": request.url.path,
                "query": request.url.query,
                "status": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials="*" not in settings.allowed_origins,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError):
        if exc.status >= 500:
            logger.error("Request failed: %s", exc, extra={"path": request.url.path, "status": exc.status})
        headers = {"WWW-Authenticate": "Bearer"} if exc.status == 401 else None
        return problem_response(exc, instance=request.url.path, headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code in (404, 405):
            error: RegistryError = ApiNotFound(f"The API '{request.url.path}' is not supported")
        else:
            error = InvalidRequest(str(exc.detail))
        error.status = exc.status_code
        return problem_response(error, instance=request.url.path)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return problem_response(ServerError(str(exc) or type(exc).__name__), instance=request.url.path)
