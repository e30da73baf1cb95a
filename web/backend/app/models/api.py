"""Pydantic models for the operational endpoints.

Protocol documents are rendered directly from the registry entities; only
``/health`` and ``/status`` have fixed shapes and are described here.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Adapter models
# ---------------------------------------------------------------------------


class SyncStatusResponse(BaseModel):
    """Mirrors regbridge.sync.catalog.CatalogCursor and the sync state."""

    state: str = "idle"
    running: bool = False
    cursor: Optional[str] = None
    last_run: Optional[str] = None
    known_names: int = 0


class AdapterHealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: str = ""
    registry: str = ""
    cache_entries: int = 0
    sync: SyncStatusResponse = Field(default_factory=SyncStatusResponse)


# ---------------------------------------------------------------------------
# Gateway models
# ---------------------------------------------------------------------------


class DownstreamHealthResponse(BaseModel):
    url: str
    healthy: bool = False
    active: bool = False
    lastAttempt: Optional[str] = None
    error: Optional[str] = None
    groups: list[str] = Field(default_factory=list)


class GatewayHealthResponse(BaseModel):
    status: str
    timestamp: str
    activeServers: int = 0
    totalServers: int = 0
    downstreams: list[DownstreamHealthResponse] = Field(default_factory=list)
    consolidatedGroups: list[str] = Field(default_factory=list)
    retryInterval: float = 0


class ServerStatusResponse(BaseModel):
    url: str
    active: bool = False
    lastAttempt: Optional[str] = None
    consecutiveFailures: int = 0
    error: Optional[str] = None
    hasModel: bool = False
    groups: list[str] = Field(default_factory=list)


class GatewayStatusResponse(BaseModel):
    timestamp: str
    epoch: int = 1
    servers: list[ServerStatusResponse] = Field(default_factory=list)
    groupMappings: dict[str, str] = Field(default_factory=dict)
    configuration: dict[str, Any] = Field(default_factory=dict)
