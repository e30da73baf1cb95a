"""Registry layout, model and capabilities documents.

A ``RegistryLayout`` names the group type, the single group and the
resource type an adapter serves. The model and capabilities documents
are derived from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from regbridge.protocol import SCHEMA_VERSION, SPEC_VERSION


@dataclass(frozen=True)
class RegistryLayout:
    registry_id: str
    registry_name: str
    group_type: str
    group_type_singular: str
    group_id: str
    resource_type: str
    resource_type_singular: str
    description: str = ""

    @property
    def groups_path(self) -> str:
        return f"/{self.group_type}"

    @property
    def group_path(self) -> str:
        return f"/{self.group_type}/{self.group_id}"

    @property
    def resources_path(self) -> str:
        return f"{self.group_path}/{self.resource_type}"

    @property
    def group_id_attribute(self) -> str:
        return f"{self.group_type_singular}id"

    @property
    def resource_id_attribute(self) -> str:
        return f"{self.resource_type_singular}id"


NUGET_LAYOUT = RegistryLayout(
    registry_id="nuget-wrapper",
    registry_name="NuGet xRegistry Wrapper",
    group_type="dotnetregistries",
    group_type_singular="dotnetregistry",
    group_id="nuget.org",
    resource_type="packages",
    resource_type_singular="package",
    description="xRegistry API wrapper for NuGet",
)

FLAGS = (
    "collections", "doc", "epoch", "filter", "inline", "limit",
    "noepoch", "offset", "schema", "sort", "specversion",
)


def _attr(name: str, type_: str, required: bool = False, **extra: Any) -> dict[str, Any]:
    attr: dict[str, Any] = {"name": name, "type": type_}
    if required:
        attr["required"] = True
    attr.update(extra)
    return attr


def model_document(layout: RegistryLayout, base_url: str = "") -> dict[str, Any]:
    """The model document describing the group and resource types."""
    base = base_url.rstrip("/")
    common = {
        "name": _attr("name", "string"),
        "description": _attr("description", "string"),
        "epoch": _attr("epoch", "uinteger", required=True),
        "createdat": _attr("createdat", "timestamp", required=True),
        "modifiedat": _attr("modifiedat", "timestamp", required=True),
        "labels": _attr("labels", "map", item={"type": "string"}),
        "docs": _attr("docs", "url"),
    }
    resource_attrs = {
        **common,
        "authors": _attr("authors", "array", item={"type": "string"}),
        "license": _attr("license", "string"),
        "homepage": _attr("homepage", "url"),
        "tags": _attr("tags", "array", item={"type": "string"}),
        "dependencies": _attr("dependencies", "array", item={"type": "object"}),
    }
    return {
        "self": f"{base}/model",
        "schemas": [SCHEMA_VERSION],
        "attributes": common,
        "groups": {
            layout.group_type: {
                "plural": layout.group_type,
                "singular": layout.group_type_singular,
                "attributes": common,
                "resources": {
                    layout.resource_type: {
                        "plural": layout.resource_type,
                        "singular": layout.resource_type_singular,
                        "maxversions": 0,
                        "setversionid": False,
                        "setdefaultversionsticky": False,
                        "hasdocument": False,
                        "attributes": resource_attrs,
                    }
                },
            }
        },
    }


def capabilities_document(layout: RegistryLayout, base_url: str = "") -> dict[str, Any]:
    base = base_url.rstrip("/")
    resources = f"{base}{layout.resources_path}"
    return {
        "self": f"{base}/capabilities",
        "capabilities": {
            "apis": [
                f"{base}/",
                f"{base}/capabilities",
                f"{base}/model",
                f"{base}{layout.groups_path}",
                f"{base}{layout.group_path}",
                resources,
                f"{resources}/:{layout.resource_type_singular}id",
                f"{resources}/:{layout.resource_type_singular}id/versions",
                f"{resources}/:{layout.resource_type_singular}id/versions/:versionid",
                f"{resources}/:{layout.resource_type_singular}id/meta",
                f"{resources}/:{layout.resource_type_singular}id/doc",
            ],
            "flags": list(FLAGS),
            "mutable": [],
            "pagination": True,
            "schemas": [SCHEMA_VERSION],
            "specversions": [SPEC_VERSION],
            "versionmodes": ["manual"],
        },
        "description": "This registry supports read-only operations and model discovery.",
    }
