"""Merged model and capabilities across the active adapters."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from regbridge.gateway.downstreams import DownstreamConfig, ServerState
from regbridge.protocol.identifiers import utc_now

logger = logging.getLogger(__name__)


def _merge_list(left: Any, right: Any) -> Any:
    if isinstance(left, list) and isinstance(right, list):
        return left + [item for item in right if item not in left]
    return right if right is not None else left


class ModelService:
    """Unions adapter models and maps each group type to its adapter.

    When two adapters declare the same group type the first one wins and
    the collision is logged. The gateway epoch moves whenever the set of
    served group types changes.
    """

    def __init__(self):
        self.model: dict[str, Any] = {"groups": {}}
        self.capabilities: dict[str, Any] = {}
        self.routes: dict[str, DownstreamConfig] = {}
        self.epoch = 1
        self.created_at = utc_now()
        self.modified_at = self.created_at

    def rebuild(self, states: Iterable[ServerState]) -> bool:
        previous = set(self.routes)
        model: dict[str, Any] = {"groups": {}}
        capabilities: dict[str, Any] = {}
        routes: dict[str, DownstreamConfig] = {}

        for state in states:
            if not (state.active and state.model is not None and state.capabilities is not None):
                continue
            for key, value in state.model.items():
                if key != "groups" and not key.endswith("count"):
                    model.setdefault(key, value)
            for group_type, definition in (state.model.get("groups") or {}).items():
                if group_type in routes:
                    logger.warning(
                        "Group type collision: %s served by %s and %s; keeping %s",
                        group_type,
                        routes[group_type].url,
                        state.server.url,
                        routes[group_type].url,
                    )
                    continue
                routes[group_type] = state.server
                model["groups"][group_type] = definition

            caps = state.capabilities.get("capabilities", state.capabilities)
            for key, value in caps.items():
                capabilities[key] = _merge_list(capabilities.get(key), value)

        self.model = model
        self.capabilities = capabilities
        self.routes = routes

        changed = set(routes) != previous
        if changed:
            self.epoch += 1
            self.modified_at = utc_now()
            logger.info("Merged model updated; serving group types %s", sorted(routes))
        return changed

    def backend_for(self, group_type: str) -> Optional[DownstreamConfig]:
        return self.routes.get(group_type)

    @property
    def group_types(self) -> list[str]:
        return list(self.routes)

    def plural(self, group_type: str) -> str:
        definition = self.model["groups"].get(group_type) or {}
        return definition.get("plural", group_type)

    def model_document(self, base_url: str) -> dict[str, Any]:
        return {**self.model, "self": f"{base_url.rstrip('/')}/model"}

    def capabilities_document(self, base_url: str) -> dict[str, Any]:
        return {"self": f"{base_url.rstrip('/')}/capabilities", "capabilities": self.capabilities}
