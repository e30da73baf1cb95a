"""Dependency resolution: link declared dependencies to registry entities.

For each ``(name, range)`` the resolver tries, in order:

1. an exact pin, verified against the upstream per-version lookup;
2. an open lower bound, answered with the highest satisfying version
   from the dependency's (capped) version list;
3. the un-versioned package, when it is known to exist;
4. the raw range with no link.

Every step runs under a short timeout and a failing step only falls
through to the next one. One dependency never affects another.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Iterable, Optional, Protocol, TypeVar

import httpx

from regbridge.errors import RegistryError
from regbridge.protocol.entities import Dependency
from regbridge.protocol.identifiers import build_xid
from regbridge.sync.versions import is_prerelease, parse_range, sort_versions

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VersionSource(Protocol):
    """The upstream lookups the resolver needs."""

    async def version_exists(self, name: str, version: str) -> bool: ...

    async def list_versions(self, name: str) -> list[str]: ...

    async def package_exists(self, name: str) -> bool: ...


class DependencyResolver:
    def __init__(
        self,
        source: VersionSource,
        resources_path: str,
        timeout: float = 5.0,
        max_versions: int = 100,
    ):
        self.source = source
        self.resources_path = resources_path
        self.timeout = timeout
        self.max_versions = max_versions

    def package_link(self, name: str) -> str:
        return build_xid(name, "resource", self.resources_path)

    def version_link(self, name: str, version: str) -> str:
        return build_xid(version, "version", f"{self.package_link(name)}/versions")

    async def _step(self, label: str, call: Awaitable[T]) -> Optional[T]:
        try:
            return await asyncio.wait_for(call, self.timeout)
        except asyncio.TimeoutError:
            logger.debug("Dependency lookup %s timed out", label)
        except (RegistryError, httpx.HTTPError, ValueError) as exc:
            logger.debug("Dependency lookup %s failed: %s", label, exc)
        return None

    async def resolve(self, dependency: Dependency) -> Dependency:
        """Return a copy of ``dependency`` with the best link found."""
        name = dependency.name
        version_range = parse_range(dependency.range)
        result = Dependency(
            name=name,
            range=dependency.range,
            target_framework=dependency.target_framework,
        )

        if version_range.kind == "exact":
            exists = await self._step(
                f"{name}@{version_range.version}",
                self.source.version_exists(name, version_range.version),
            )
            if exists:
                result.resolved_version = version_range.version
                result.package = self.version_link(name, version_range.version)
                return result

        if version_range.kind == "minimum":
            versions = await self._step(f"{name} versions", self.source.list_versions(name))
            if versions:
                candidates = sort_versions(versions, descending=True)[: self.max_versions]
                satisfying = [v for v in candidates if version_range.allows(v)]
                stable = [v for v in satisfying if not is_prerelease(v)]
                chosen = (stable or satisfying or [None])[0]
                if chosen:
                    result.resolved_version = chosen
                    result.package = self.version_link(name, chosen)
                    return result

        if await self._step(f"{name} exists", self.source.package_exists(name)):
            result.package = self.package_link(name)

        return result

    async def resolve_all(self, dependencies: Iterable[Dependency]) -> list[Dependency]:
        """Resolve every dependency concurrently, preserving order."""
        declared = list(dependencies)
        results = await asyncio.gather(
            *(self.resolve(d) for d in declared), return_exceptions=True
        )
        resolved = []
        for original, outcome in zip(declared, results):
            if isinstance(outcome, BaseException):
                logger.warning("Resolving %s failed: %s", original.name, outcome)
                resolved.append(original)
            else:
                resolved.append(outcome)
        return resolved
