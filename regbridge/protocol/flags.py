"""Presentation flags applied to an assembled response document.

``collections=false`` drops collection URLs, ``doc=false`` drops docs,
``noepoch=true`` drops the epoch, ``schema=true`` attaches a validation
summary. An unavailable ``epoch`` and an unsupported ``specversion`` are
reported as warnings rather than errors.
"""

from __future__ import annotations

import copy
from typing import Any

from regbridge.protocol import SCHEMA_VERSION, SPEC_VERSION, SUPPORTED_SPEC_VERSIONS
from regbridge.protocol.identifiers import is_valid_xid, parse_timestamp
from regbridge.protocol.query import QueryOptions

REQUIRED_FIELDS = {
    "registry": ("specversion", "registryid", "xid", "self", "epoch", "createdat", "modifiedat"),
    "group": ("xid", "self", "epoch", "createdat", "modifiedat", "name"),
    "resource": ("xid", "self", "epoch", "createdat", "modifiedat", "name"),
    "version": ("xid", "self", "epoch", "createdat", "modifiedat", "versionid"),
    "meta": ("xid", "self", "epoch", "createdat", "modifiedat", "readonly"),
}


def validate_document(document: dict[str, Any], kind: str) -> list[str]:
    """Check an entity document for required fields and well-formed values."""
    errors = [
        f"Missing required field: {name}"
        for name in REQUIRED_FIELDS.get(kind, ())
        if name not in document
    ]
    if "specversion" in document and document["specversion"] != SPEC_VERSION:
        errors.append(f"Invalid specversion: {document['specversion']}, expected: {SPEC_VERSION}")
    if "xid" in document and not is_valid_xid(str(document["xid"])):
        errors.append(f"Invalid xid format: {document['xid']}")
    for name in ("createdat", "modifiedat"):
        value = document.get(name)
        if value is None:
            continue
        try:
            parse_timestamp(str(value))
        except ValueError:
            errors.append(f"Invalid timestamp for {name}: {value}")
    return errors


def _strip_collection_urls(document: Any) -> None:
    if isinstance(document, dict):
        for key in [k for k in document if k.endswith("url") and not k.startswith("self")]:
            del document[key]
        for value in document.values():
            _strip_collection_urls(value)


def apply_flags(
    document: dict[str, Any],
    options: QueryOptions,
    kind: str,
    warnings: list[str],
) -> dict[str, Any]:
    """Apply presentation flags to ``document`` (a fresh copy is returned).

    ``kind`` is the entity kind of the document, or ``"collection"``.
    Warnings are appended to ``warnings``.
    """
    result = copy.deepcopy(document)

    if not options.collections:
        _strip_collection_urls(result)
    if not options.doc:
        result.pop("docs", None)

    if options.epoch is not None and kind != "collection":
        current = result.get("epoch")
        if current is not None and current != options.epoch:
            warnings.append(f"Requested epoch {options.epoch} is not available; returning epoch {current}")
    if options.noepoch:
        result.pop("epoch", None)

    if options.specversion and options.specversion not in SUPPORTED_SPEC_VERSIONS:
        warnings.append(
            f"Unsupported specversion {options.specversion}; responding with {SPEC_VERSION}"
        )

    if options.schema and kind != "collection":
        errors = validate_document(result, kind)
        schema: dict[str, Any] = {"valid": not errors, "version": SCHEMA_VERSION}
        if errors:
            schema["errors"] = errors
            warnings.append("Schema validation errors: " + "; ".join(errors))
        result["_schema"] = schema

    return result
