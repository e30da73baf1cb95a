"""FastAPI application for the registry gateway.

Fronts several adapters as one registry:
- Merged root, model and capabilities
- Requests routed to the adapter that serves their group type
- Composite health and routing status
"""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

# Ensure the regbridge package is importable by adding the project root to sys.path.
_project_root = str(Path(__file__).resolve().parents[3])
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fastapi import FastAPI

from regbridge import __version__
from regbridge.config import Settings, get_settings
from regbridge.gateway import Gateway

from web.backend.app.middleware.xregistry import install_protocol_middleware, register_exception_handlers
from web.backend.app.routers import gateway as gateway_routes


def create_gateway_app(settings: Optional[Settings] = None, gateway: Optional[Gateway] = None) -> FastAPI:
    settings = settings or get_settings()
    gateway = gateway or Gateway(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await gateway.start()
        try:
            yield
        finally:
            await gateway.stop()

    app = FastAPI(
        title="regbridge gateway",
        description="Single registry endpoint over several registry adapters.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.gateway = gateway

    install_protocol_middleware(app, settings)
    register_exception_handlers(app)

    # The proxy catch-all is registered last so the fixed routes win.
    app.include_router(gateway_routes.meta_router)
    app.include_router(gateway_routes.router)
    return app
