"""Tests for xids, docs URLs and timestamps."""

import pytest

from regbridge.errors import InvalidIdentifier
from regbridge.protocol.identifiers import (
    absolutize_docs,
    build_xid,
    docs_url,
    is_valid_xid,
    normalize_path,
    parse_timestamp,
    parse_xid,
    sanitize_id,
    to_iso,
)

PACKAGES = "/dotnetregistries/nuget.org/packages"


def test_sanitize_replaces_unsafe_characters():
    assert sanitize_id("Newtonsoft.Json") == "Newtonsoft.Json"
    assert sanitize_id("@scope/name") == "_scope_name"
    assert sanitize_id("a b") == "a_b"


def test_normalize_path():
    assert normalize_path("//a///b/") == "/a/b"
    assert normalize_path("") == "/"
    assert normalize_path("a/b") == "/a/b"


def test_build_xid_for_each_kind():
    assert build_xid("", "registry") == "/"
    assert build_xid("nuget.org", "group", "/dotnetregistries") == "/dotnetregistries/nuget.org"
    resource = build_xid("Newtonsoft.Json", "resource", PACKAGES)
    assert resource == f"{PACKAGES}/Newtonsoft.Json"
    assert build_xid("", "meta", resource) == f"{resource}/meta"
    assert build_xid("13.0.1", "version", f"{resource}/versions") == f"{resource}/versions/13.0.1"


def test_build_xid_rejects_bad_parent():
    with pytest.raises(InvalidIdentifier):
        build_xid("x", "resource", "/dotnetregistries")
    with pytest.raises(InvalidIdentifier):
        build_xid("1.0", "version", f"{PACKAGES}/x/other")
    with pytest.raises(InvalidIdentifier):
        build_xid("x", "widget", PACKAGES)


def test_build_xid_sanitizes_id():
    assert build_xid("my package", "resource", PACKAGES) == f"{PACKAGES}/my_package"


def test_xid_round_trip():
    resource = build_xid("Newtonsoft.Json", "resource", PACKAGES)
    version = build_xid("13.0.1", "version", f"{resource}/versions")

    parts = parse_xid(version)
    assert parts.kind == "version"
    assert parts.group_type == "dotnetregistries"
    assert parts.group_id == "nuget.org"
    assert parts.resource_type == "packages"
    assert parts.resource_id == "Newtonsoft.Json"
    assert parts.version_id == "13.0.1"

    assert parse_xid(resource).kind == "resource"
    assert parse_xid(f"{resource}/meta").kind == "meta"
    assert parse_xid("/dotnetregistries/nuget.org").kind == "group"
    assert parse_xid("/").kind == "registry"


def test_parse_xid_rejects_malformed():
    assert not is_valid_xid("/dotnetregistries")
    with pytest.raises(InvalidIdentifier):
        parse_xid("/dotnetregistries")
    with pytest.raises(InvalidIdentifier):
        parse_xid(f"{PACKAGES}/x/unknown")


def test_docs_url_and_absolutize():
    xid = f"{PACKAGES}/Newtonsoft.Json"
    assert docs_url("resource", xid) == f"{xid}/doc"
    assert docs_url("version", xid) is None
    assert docs_url("version", xid, "https://example.com/docs") == "https://example.com/docs"

    document = {"docs": f"{xid}/doc", "nested": [{"docs": "/x/doc"}, {"docs": "https://a/b"}]}
    absolutize_docs(document, "http://host/")
    assert document["docs"] == f"http://host{xid}/doc"
    assert document["nested"][0]["docs"] == "http://host/x/doc"
    assert document["nested"][1]["docs"] == "https://a/b"


def test_timestamps():
    parsed = parse_timestamp("2024-01-02T03:04:05.1234567Z")
    assert parsed.microsecond == 123456
    assert to_iso(parsed) == "2024-01-02T03:04:05.123456Z"
    assert parse_timestamp("2024-01-02T03:04:05").tzinfo is not None
