"""Downstream adapters: configuration, probing and per-adapter state."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import httpx
import yaml

from regbridge.config import Settings

logger = logging.getLogger(__name__)

_MAX_BACKOFF = 10.0


@dataclass(frozen=True)
class DownstreamConfig:
    url: str
    api_key: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DownstreamConfig":
        url = str(data.get("url", "")).rstrip("/")
        if not url:
            raise ValueError("Downstream entry is missing 'url'")
        return cls(url=url, api_key=str(data.get("apiKey") or data.get("api_key") or ""))

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}


def parse_downstreams(text: str, source: str = "configuration") -> list[DownstreamConfig]:
    """Parse ``{"servers": [{"url": ..., "apiKey": ...}]}`` (JSON or YAML)."""
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid downstream {source}: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("servers", []), list):
        raise ValueError(f"Downstream {source} must contain a 'servers' list")
    return [DownstreamConfig.from_dict(entry) for entry in data.get("servers", [])]


def load_downstreams(settings: Settings) -> list[DownstreamConfig]:
    """Downstreams from ``DOWNSTREAMS_JSON``, else from the configured file."""
    if settings.downstreams_json:
        servers = parse_downstreams(settings.downstreams_json, "DOWNSTREAMS_JSON")
        logger.info("Loaded %d downstreams from DOWNSTREAMS_JSON", len(servers))
        return servers

    path = Path(settings.downstreams_file)
    if not path.exists():
        raise ValueError(f"Downstream configuration file not found: {path}")
    servers = parse_downstreams(path.read_text(), str(path))
    logger.info("Loaded %d downstreams from %s", len(servers), path)
    return servers


@dataclass
class ServerState:
    server: DownstreamConfig
    active: bool = False
    last_attempt: float = 0.0
    consecutive_failures: int = 0
    error: Optional[str] = None
    model: Optional[dict[str, Any]] = None
    capabilities: Optional[dict[str, Any]] = None
    root: dict[str, Any] = field(default_factory=dict)

    @property
    def group_types(self) -> list[str]:
        return list((self.model or {}).get("groups", {}) or {})


@dataclass
class ProbeResult:
    model: dict[str, Any]
    capabilities: dict[str, Any]
    root: dict[str, Any]


class DownstreamService:
    """Tracks which adapters are reachable and what they serve."""

    def __init__(
        self,
        downstreams: list[DownstreamConfig],
        client: httpx.AsyncClient,
        health_timeout: float = 10.0,
    ):
        self.client = client
        self.health_timeout = health_timeout
        self.states: dict[str, ServerState] = {d.url: ServerState(server=d) for d in downstreams}

    def active(self) -> list[ServerState]:
        return [s for s in self.states.values() if s.active]

    def inactive(self) -> list[ServerState]:
        return [s for s in self.states.values() if not s.active]

    async def _get_json(self, server: DownstreamConfig, path: str) -> Any:
        response = await self.client.get(
            f"{server.url}{path}", headers=server.headers(), timeout=self.health_timeout
        )
        response.raise_for_status()
        return response.json()

    async def probe(self, server: DownstreamConfig) -> Optional[ProbeResult]:
        """Fetch root, model and capabilities; None when any of them fails."""
        started = time.monotonic()
        try:
            root = await self._get_json(server, "/")
            model = await self._get_json(server, "/model")
            capabilities = await self._get_json(server, "/capabilities")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Downstream probe failed",
                extra={"server": server.url, "error": str(exc), "duration": time.monotonic() - started},
            )
            return None

        # Carry the adapter's collection counts along with its model.
        model = dict(model)
        for key, value in root.items():
            if key.endswith("count"):
                model[key] = value
        logger.info(
            "Downstream probe succeeded",
            extra={"server": server.url, "groups": list(model.get("groups", {}) or {})},
        )
        return ProbeResult(model=model, capabilities=capabilities, root=root)

    async def check_health(self, server: DownstreamConfig) -> bool:
        try:
            response = await self.client.get(
                f"{server.url}/health", headers=server.headers(), timeout=self.health_timeout
            )
        except httpx.HTTPError:
            return False
        return response.is_success

    def update(self, url: str, result: Optional[ProbeResult], error: str = "Connection failed") -> None:
        state = self.states[url]
        state.last_attempt = time.time()
        if result is not None:
            state.active = True
            state.model = result.model
            state.capabilities = result.capabilities
            state.root = result.root
            state.error = None
            state.consecutive_failures = 0
            logger.info("Downstream activated: %s", url)
            return

        state.consecutive_failures += 1
        state.error = error
        if state.active:
            state.active = False
            logger.warning(
                "Downstream deactivated: %s (%s, %d consecutive failures)",
                url,
                error,
                state.consecutive_failures,
            )

    async def _probe_and_update(self, state: ServerState, error: str) -> None:
        result = await self.probe(state.server)
        self.update(state.server.url, result, error)

    async def retry_inactive(self) -> bool:
        """Probe every inactive adapter; True when any became active."""
        pending = self.inactive()
        if not pending:
            return False
        logger.info("Retrying %d inactive downstreams", len(pending))
        await asyncio.gather(*(self._probe_and_update(s, "Retry failed") for s in pending))
        return any(s.active for s in pending)

    async def initialize(self, startup_wait: float = 60.0) -> None:
        """Probe all adapters, retrying with backoff until all are active
        or ``startup_wait`` seconds have passed."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + startup_wait
        delay = 0.5
        await asyncio.gather(
            *(self._probe_and_update(s, "Initial connection failed") for s in self.states.values())
        )
        while self.inactive():
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, _MAX_BACKOFF)
            await self.retry_inactive()

        logger.info(
            "Downstream initialization complete: %d of %d active",
            len(self.active()),
            len(self.states),
        )
