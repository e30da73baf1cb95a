"""Composite health and status of the gateway."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

from regbridge.config import Settings
from regbridge.gateway.downstreams import DownstreamService, ServerState
from regbridge.gateway.model import ModelService
from regbridge.protocol.identifiers import to_iso, utc_now


def _attempt(state: ServerState) -> Optional[str]:
    if not state.last_attempt:
        return None
    return to_iso(datetime.fromtimestamp(state.last_attempt, tz=timezone.utc))


class HealthService:
    def __init__(self, downstreams: DownstreamService, models: ModelService, settings: Settings):
        self.downstreams = downstreams
        self.models = models
        self.settings = settings

    def _groups_of(self, state: ServerState) -> list[str]:
        return [gt for gt, server in self.models.routes.items() if server.url == state.server.url]

    async def health(self) -> dict[str, Any]:
        """Per-adapter health. One unreachable adapter never fails the call."""
        states = list(self.downstreams.states.values())
        results = await asyncio.gather(*(self.downstreams.check_health(s.server) for s in states))
        active = self.downstreams.active()
        return {
            "status": "healthy" if active and all(results) else ("degraded" if active else "unhealthy"),
            "timestamp": utc_now(),
            "activeServers": len(active),
            "totalServers": len(states),
            "downstreams": [
                {
                    "url": state.server.url,
                    "healthy": healthy,
                    "active": state.active,
                    "lastAttempt": _attempt(state),
                    "error": state.error,
                    "groups": self._groups_of(state),
                }
                for state, healthy in zip(states, results)
            ],
            "consolidatedGroups": self.models.group_types,
            "retryInterval": self.settings.retry_interval_seconds,
        }

    def status(self) -> dict[str, Any]:
        return {
            "timestamp": utc_now(),
            "epoch": self.models.epoch,
            "servers": [
                {
                    "url": state.server.url,
                    "active": state.active,
                    "lastAttempt": _attempt(state),
                    "consecutiveFailures": state.consecutive_failures,
                    "error": state.error,
                    "hasModel": state.model is not None,
                    "groups": state.group_types,
                }
                for state in self.downstreams.states.values()
            ],
            "groupMappings": {gt: server.url for gt, server in self.models.routes.items()},
            "configuration": {
                "startupWaitSeconds": self.settings.startup_wait_seconds,
                "retryIntervalSeconds": self.settings.retry_interval_seconds,
                "healthTimeoutSeconds": self.settings.health_timeout_seconds,
                "proxyTimeoutSeconds": self.settings.proxy_timeout_seconds,
            },
        }
