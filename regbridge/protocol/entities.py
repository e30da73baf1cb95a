"""Entity model: groups, resources, versions and resource meta.

All entities share one set of common attributes and render themselves
with ``to_document(base_url)``. Ecosystem-specific attributes live in the
``extensions`` map and are merged into the rendered document. Filtering
and sorting operate on the rendered document through ``lookup``.
"""

from __future__ import annotations

import hashlib
import json
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional

from regbridge.protocol.identifiers import utc_now

# Attributes that change on every render and must not affect the epoch.
_VOLATILE = ("epoch", "createdat", "modifiedat", "self")

DEFAULT_MAX_TRACKED = 50_000


def lookup(document: Any, path: str) -> Any:
    """Resolve a dotted attribute path (``labels.stage``) in a document.

    Returns ``None`` when any segment is missing.
    """
    current = document
    for part in path.split("."):
        if isinstance(current, dict):
            if part in current:
                current = current[part]
                continue
            # attribute names are case-insensitive
            lowered = {str(k).lower(): v for k, v in current.items()}
            if part.lower() not in lowered:
                return None
            current = lowered[part.lower()]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


@dataclass
class Dependency:
    """One declared dependency of a version, optionally resolved."""

    name: str
    range: str = ""
    resolved_version: Optional[str] = None
    package: Optional[str] = None
    target_framework: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.package is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "range": self.range}
        if self.resolved_version:
            data["resolved_version"] = self.resolved_version
        if self.package:
            data["package"] = self.package
        if self.target_framework:
            data["targetframework"] = self.target_framework
        return data


@dataclass
class Entity:
    """Common attributes of every registry entity."""

    kind: ClassVar[str] = "entity"

    entity_id: str
    id_attribute: str
    xid: str
    name: str = ""
    description: str = ""
    epoch: int = 1
    createdat: str = ""
    modifiedat: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    docs: Optional[str] = None
    extensions: dict[str, Any] = field(default_factory=dict)

    def self_url(self, base_url: str) -> str:
        return base_url.rstrip("/") + self.xid

    def common_attributes(self, base_url: str) -> dict[str, Any]:
        doc: dict[str, Any] = {
            self.id_attribute: self.entity_id,
            "self": self.self_url(base_url),
            "xid": self.xid,
            "name": self.name or self.entity_id,
        }
        if self.description:
            doc["description"] = self.description
        doc["epoch"] = self.epoch
        doc["createdat"] = self.createdat
        doc["modifiedat"] = self.modifiedat
        doc["labels"] = dict(self.labels)
        if self.docs:
            doc["docs"] = self.docs
        return doc

    def to_document(self, base_url: str = "") -> dict[str, Any]:
        doc = self.common_attributes(base_url)
        for key, value in self.extensions.items():
            doc.setdefault(key, value)
        return doc

    def lookup(self, path: str) -> Any:
        return lookup(self.to_document(), path)

    def content(self) -> dict[str, Any]:
        """The observable content used to decide whether the epoch moves."""
        doc = self.to_document()
        return {k: v for k, v in doc.items() if k not in _VOLATILE}


@dataclass
class Group(Entity):
    kind: ClassVar[str] = "group"

    # plural resource type -> number of resources (None when unknown)
    collections: dict[str, Optional[int]] = field(default_factory=dict)

    def to_document(self, base_url: str = "") -> dict[str, Any]:
        doc = super().to_document(base_url)
        for plural, count in self.collections.items():
            doc[f"{plural}url"] = f"{self.self_url(base_url)}/{plural}"
            if count is not None:
                doc[f"{plural}count"] = count
        return doc


@dataclass
class Resource(Entity):
    kind: ClassVar[str] = "resource"

    default_version_id: Optional[str] = None
    versions_count: Optional[int] = None

    def to_document(self, base_url: str = "") -> dict[str, Any]:
        doc = super().to_document(base_url)
        self_url = self.self_url(base_url)
        doc["metaurl"] = f"{self_url}/meta"
        doc["versionsurl"] = f"{self_url}/versions"
        if self.versions_count is not None:
            doc["versionscount"] = self.versions_count
        if self.default_version_id:
            doc["versionid"] = self.default_version_id
        return doc

    def meta(self) -> "Meta":
        return Meta(
            entity_id=self.entity_id,
            id_attribute=self.id_attribute,
            xid=f"{self.xid}/meta",
            epoch=self.epoch,
            createdat=self.createdat,
            modifiedat=self.modifiedat,
            default_version_id=self.default_version_id,
            versions_count=self.versions_count or 0,
            resource_xid=self.xid,
        )


@dataclass
class Meta(Entity):
    """Synthesized metadata of a resource."""

    kind: ClassVar[str] = "meta"

    default_version_id: Optional[str] = None
    versions_count: int = 0
    readonly: bool = True
    resource_xid: str = ""

    def to_document(self, base_url: str = "") -> dict[str, Any]:
        base = base_url.rstrip("/")
        doc: dict[str, Any] = {
            self.id_attribute: self.entity_id,
            "self": self.self_url(base_url),
            "xid": self.xid,
            "epoch": self.epoch,
            "createdat": self.createdat,
            "modifiedat": self.modifiedat,
            "readonly": self.readonly,
            "compatibility": "none",
            "versionscount": self.versions_count,
        }
        if self.default_version_id:
            doc["defaultversionid"] = self.default_version_id
            doc["defaultversionurl"] = (
                f"{base}{self.resource_xid}/versions/{self.default_version_id}"
            )
            doc["defaultversionsticky"] = False
        return doc


@dataclass
class Version(Entity):
    kind: ClassVar[str] = "version"

    resource_id: str = ""
    is_default: bool = False
    dependencies: list[Dependency] = field(default_factory=list)

    def to_document(self, base_url: str = "") -> dict[str, Any]:
        doc = super().to_document(base_url)
        doc["versionid"] = self.entity_id
        doc.setdefault("version", self.entity_id)
        doc["isdefault"] = self.is_default
        doc["dependencies"] = [d.to_dict() for d in self.dependencies]
        return doc


# ── Epoch bookkeeping ────────────────────────────────────────────────


def fingerprint(content: Any) -> str:
    payload = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class EpochState:
    epoch: int
    fingerprint: str
    createdat: str
    modifiedat: str


class EpochTracker:
    """Per-xid epoch counters.

    ``createdat`` is fixed at first observation. The epoch only moves (and
    ``modifiedat`` is touched) when an entity's observable content changes.

    Entities rendered from a name alone are not observed, but the time they
    were first seen is kept so their timestamps stay put across renders.
    Both maps hold at most ``max_entries`` xids; the least recently used
    xid is forgotten first and starts again at epoch 1 when seen next.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_TRACKED):
        if max_entries <= 0:
            raise ValueError("max_entries must be greater than 0")
        self.max_entries = max_entries
        self._states: OrderedDict[str, EpochState] = OrderedDict()
        self._first_seen: OrderedDict[str, str] = OrderedDict()

    def _remember(self, table: OrderedDict, xid: str, value: Any) -> None:
        table[xid] = value
        table.move_to_end(xid)
        while len(table) > self.max_entries:
            table.popitem(last=False)

    def observe(self, xid: str, content: Any) -> EpochState:
        digest = fingerprint(content)
        state = self._states.get(xid)
        if state is None:
            now = self._first_seen.pop(xid, None) or utc_now()
            state = EpochState(epoch=1, fingerprint=digest, createdat=now, modifiedat=now)
        elif state.fingerprint != digest:
            state.epoch += 1
            state.fingerprint = digest
            state.modifiedat = utc_now()
        self._remember(self._states, xid, state)
        return state

    def stamp(self, entity: Entity) -> Entity:
        """Apply the tracked epoch and timestamps to ``entity``.

        Timestamps supplied by the upstream take precedence over the
        tracker's own.
        """
        state = self.observe(entity.xid, entity.content())
        entity.epoch = state.epoch
        entity.createdat = entity.createdat or state.createdat
        entity.modifiedat = entity.modifiedat or state.modifiedat
        return entity

    def apply(self, entity: Entity) -> Entity:
        """Stamp ``entity`` from its last observation without recording a new one."""
        state = self._states.get(entity.xid)
        if state is not None:
            self._states.move_to_end(entity.xid)
            epoch, createdat, modifiedat = state.epoch, state.createdat, state.modifiedat
        else:
            seen = self._first_seen.get(entity.xid) or utc_now()
            self._remember(self._first_seen, entity.xid, seen)
            epoch, createdat, modifiedat = 1, seen, seen
        entity.epoch = epoch
        entity.createdat = entity.createdat or createdat
        entity.modifiedat = entity.modifiedat or modifiedat
        return entity

    def get(self, xid: str) -> Optional[EpochState]:
        return self._states.get(xid)

    def __len__(self) -> int:
        return len(self._states)
