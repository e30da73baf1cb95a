"""FastAPI application for the NuGet registry adapter.

Serves NuGet packages through the read-only registry protocol:
- Registry root, model and capabilities
- The ``nuget.org`` group and its packages, versions, meta and docs
- Adapter health and catalog synchronization status
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
from regbridge.nuget.adapter import NuGetAdapter

from web.backend.app.middleware.xregistry import install_protocol_middleware, register_exception_handlers
from web.backend.app.routers import registry


def create_app(settings: Optional[Settings] = None, adapter: Optional[NuGetAdapter] = None) -> FastAPI:
    """Build the adapter app. ``adapter`` is started and stopped with the app."""
    settings = settings or get_settings()
    adapter = adapter or NuGetAdapter(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await adapter.start()
        try:
            yield
        finally:
            await adapter.stop()

    app = FastAPI(
        title="regbridge NuGet adapter",
        description="Read-only registry protocol API over the NuGet v3 service.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.adapter = adapter

    # -----------------------------------------------------------------------
    # Middleware and error handling
    # -----------------------------------------------------------------------
    install_protocol_middleware(app, settings)
    register_exception_handlers(app)

    # -----------------------------------------------------------------------
    # Include routers
    # -----------------------------------------------------------------------
    app.include_router(registry.meta_router)
    app.include_router(registry.router)
    return app
