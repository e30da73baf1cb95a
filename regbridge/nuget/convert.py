"""Conversion of NuGet registration data into registry entities."""

from __future__ import annotations

from typing import Any, Optional

from regbridge.protocol.entities import Dependency, Resource, Version
from regbridge.protocol.identifiers import build_xid, docs_url, parse_timestamp, to_iso
from regbridge.protocol.model import RegistryLayout
from regbridge.sync.versions import latest_version

# Unlisted packages report this as their publish date.
_UNLISTED_YEAR = 1900


def _as_list(value: Any, separator: str = ",") -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(separator) if part.strip()]


def _published(entry: dict[str, Any]) -> Optional[str]:
    raw = entry.get("published")
    if not raw:
        return None
    try:
        when = parse_timestamp(raw)
    except ValueError:
        return None
    return to_iso(when) if when.year > _UNLISTED_YEAR else None


def _license(entry: dict[str, Any]) -> Optional[str]:
    return entry.get("licenseExpression") or entry.get("licenseUrl") or None


def common_attributes(entry: dict[str, Any]) -> dict[str, Any]:
    """Normalized attributes shared by packages and their versions."""
    attrs: dict[str, Any] = {
        "authors": _as_list(entry.get("authors")),
        "tags": _as_list(entry.get("tags"), separator=" "),
    }
    license_ = _license(entry)
    if license_:
        attrs["license"] = license_
    if entry.get("projectUrl"):
        attrs["homepage"] = entry["projectUrl"]
    if entry.get("title"):
        attrs["title"] = entry["title"]
    if entry.get("iconUrl"):
        attrs["iconurl"] = entry["iconUrl"]
    return attrs


def declared_dependencies(entry: dict[str, Any]) -> list[Dependency]:
    """Flatten dependency groups, de-duplicated by (name, range)."""
    seen: set[tuple[str, str]] = set()
    result = []
    for group in entry.get("dependencyGroups") or []:
        framework = group.get("targetFramework") or None
        for dep in group.get("dependencies") or []:
            name = dep.get("id")
            if not name:
                continue
            range_ = dep.get("range") or ""
            key = (name.lower(), range_)
            if key in seen:
                continue
            seen.add(key)
            result.append(Dependency(name=name, range=range_, target_framework=framework))
    return result


def default_version_id(entries: list[dict[str, Any]]) -> Optional[str]:
    return latest_version([e["version"] for e in entries if e.get("version")])


def resource_xid(layout: RegistryLayout, package_id: str) -> str:
    return build_xid(package_id, "resource", layout.resources_path)


def package_summary(layout: RegistryLayout, package_id: str) -> Resource:
    """A package known only by name (from the index or a search hit)."""
    xid = resource_xid(layout, package_id)
    return Resource(
        entity_id=package_id,
        id_attribute=layout.resource_id_attribute,
        xid=xid,
        name=package_id,
        docs=docs_url("resource", xid),
    )


def package_resource(layout: RegistryLayout, entries: list[dict[str, Any]]) -> Resource:
    """The package resource, described by its default version."""
    default_id = default_version_id(entries)
    latest = next((e for e in entries if e.get("version") == default_id), entries[-1])
    package_id = latest.get("id") or entries[-1].get("id")
    xid = resource_xid(layout, package_id)

    published = [p for p in (_published(e) for e in entries) if p]
    extensions = common_attributes(latest)
    extensions["packagecontent"] = latest.get("packageContent")

    return Resource(
        entity_id=package_id,
        id_attribute=layout.resource_id_attribute,
        xid=xid,
        name=package_id,
        description=latest.get("description") or "",
        createdat=min(published) if published else "",
        modifiedat=max(published) if published else "",
        docs=docs_url("resource", xid),
        extensions={k: v for k, v in extensions.items() if v is not None},
        default_version_id=default_id,
        versions_count=len(entries),
    )


def package_version(
    layout: RegistryLayout,
    entry: dict[str, Any],
    default_id: Optional[str] = None,
) -> Version:
    package_id = entry["id"]
    version_id = entry["version"]
    parent = f"{resource_xid(layout, package_id)}/versions"
    published = _published(entry)

    extensions = common_attributes(entry)
    extensions["packagecontent"] = entry.get("packageContent")
    extensions["listed"] = entry.get("listed", published is not None)
    if entry.get("requireLicenseAcceptance") is not None:
        extensions["requirelicenseacceptance"] = entry["requireLicenseAcceptance"]

    return Version(
        entity_id=version_id,
        id_attribute="versionid",
        xid=build_xid(version_id, "version", parent),
        name=f"{package_id}@{version_id}",
        description=entry.get("description") or "",
        createdat=published or "",
        modifiedat=published or "",
        extensions={k: v for k, v in extensions.items() if v is not None},
        resource_id=package_id,
        is_default=version_id == default_id,
        dependencies=declared_dependencies(entry),
    )
