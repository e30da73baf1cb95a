"""Tests for query options, pagination, headers, inline expansion and flags."""

import asyncio

import pytest

from regbridge.errors import InvalidRequest
from regbridge.protocol import SPEC_VERSION
from regbridge.protocol.flags import apply_flags, validate_document
from regbridge.protocol.headers import etag_matches, generate_etag, protocol_headers, warning_header
from regbridge.protocol.inline import parse_inline, resolve_inline
from regbridge.protocol.pagination import build_link_header, paginate
from regbridge.protocol.query import QueryOptions, parse_query_options


# ── Query options ────────────────────────────────────────────────────


def test_query_defaults():
    options = parse_query_options([])
    assert options.limit == 50
    assert options.offset == 0
    assert options.collections and options.doc
    assert not options.limit_given


def test_query_parses_flags_and_multi_values():
    options = parse_query_options(
        [
            ("filter", "name=foo"),
            ("filter", "license=MIT"),
            ("inline", "model,capabilities"),
            ("inline", ""),
            ("sort", "name=desc"),
            ("limit", "5000"),
            ("offset", "10"),
            ("collections", "false"),
            ("noepoch", ""),
            ("epoch", "3"),
            ("unexpected", "1"),
        ],
        max_limit=1000,
    )
    assert options.filters == ("name=foo", "license=MIT")
    assert options.inline == ("model", "capabilities", "*")
    assert options.inline_all and options.wants_inline("versions")
    assert options.sort.attribute == "name" and options.sort.descending
    assert options.limit == 1000
    assert options.offset == 10
    assert not options.collections
    assert options.noepoch
    assert options.epoch == 3
    assert options.unknown == ("unexpected",)


@pytest.mark.parametrize(
    "items",
    [
        [("limit", "0")],
        [("limit", "abc")],
        [("offset", "-1")],
        [("doc", "maybe")],
        [("filter", "=x")],
    ],
)
def test_query_rejects_invalid_values(items):
    with pytest.raises(InvalidRequest):
        parse_query_options(items)


# ── Pagination ───────────────────────────────────────────────────────


def test_last_partial_page():
    page = paginate(list(range(125)), offset=100, limit=50)
    assert len(page.items) == 25
    assert page.total == 125
    assert not page.has_more

    link = build_link_header("http://h/packages", [("filter", "name=a*")], 125, 100, 50)
    assert '<http://h/packages?filter=name%3Da%2A&limit=50&offset=100>; rel="last"' in link
    assert '<http://h/packages?filter=name%3Da%2A&limit=50&offset=0>; rel="first"' in link
    assert 'rel="prev"' in link
    assert 'rel="next"' not in link
    assert link.endswith('count="125", per-page="50"')


def test_first_page_links():
    link = build_link_header("http://h/x", [("limit", "10"), ("offset", "0")], 25, 0, 10)
    assert 'rel="prev"' not in link
    assert "<http://h/x?limit=10&offset=10>; rel=\"next\"" in link
    assert "<http://h/x?limit=10&offset=20>; rel=\"last\"" in link


# ── Headers ──────────────────────────────────────────────────────────


def test_etag_is_stable_and_matches():
    etag = generate_etag({"a": 1})
    assert etag == generate_etag({"a": 1})
    assert etag != generate_etag({"a": 2})
    assert etag_matches(etag, etag)
    assert etag_matches(f'"other", W/{etag}', etag)
    assert etag_matches("*", etag)
    assert not etag_matches(None, etag)
    assert not etag_matches('"other"', etag)


def test_protocol_headers():
    headers = protocol_headers({"epoch": 4, "modifiedat": "2024-01-02T03:04:05Z"})
    assert headers["X-XRegistry-SpecVersion"] == SPEC_VERSION
    assert headers["X-XRegistry-Epoch"] == "4"
    assert headers["Cache-Control"] == "no-cache"
    assert headers["Last-Modified"] == "Tue, 02 Jan 2024 03:04:05 GMT"
    assert headers["Content-Type"].startswith("application/json")


def test_warning_header_format():
    assert warning_header(['bad "x"', "other"]) == "299 - \"bad 'x'\", 299 - \"other\""


# ── Inline ───────────────────────────────────────────────────────────


def test_parse_inline_deduplicates():
    assert parse_inline(["model,versions", "model"]) == ["model", "versions"]
    assert parse_inline(None) == []


def test_resolve_inline_with_failures():
    async def versions():
        return {"1.0": {"versionid": "1.0"}}

    def broken():
        raise RuntimeError("boom")

    loaders = {"versions": versions, "meta": broken, "model": lambda: {"groups": {}}}
    document, warnings = asyncio.run(resolve_inline({"a": 1}, ["versions", "meta", "unknown"], loaders))
    assert document["versions"] == {"1.0": {"versionid": "1.0"}}
    assert "meta" not in document and "model" not in document
    assert len(warnings) == 2


def test_resolve_inline_star_and_source_untouched():
    source = {"a": 1}
    document, warnings = asyncio.run(resolve_inline(source, ["*"], {"model": lambda: {}, "capabilities": lambda: {}}))
    assert set(document) == {"a", "model", "capabilities"}
    assert source == {"a": 1}
    assert warnings == []


# ── Flags ────────────────────────────────────────────────────────────

RESOURCE = {
    "xid": "/dotnetregistries/nuget.org/packages/foo",
    "self": "http://h/dotnetregistries/nuget.org/packages/foo",
    "epoch": 2,
    "createdat": "2024-01-01T00:00:00Z",
    "modifiedat": "2024-01-01T00:00:00Z",
    "name": "foo",
    "docs": "http://h/dotnetregistries/nuget.org/packages/foo/doc",
    "versionsurl": "http://h/dotnetregistries/nuget.org/packages/foo/versions",
    "meta": {"metaurl": "http://h/x/meta", "self": "http://h/x/meta"},
}


def test_flags_strip_and_warn():
    warnings = []
    options = QueryOptions(collections=False, doc=False, noepoch=True, epoch=1, specversion="0.5")
    result = apply_flags(RESOURCE, options, "resource", warnings)
    assert "versionsurl" not in result and "docs" not in result and "epoch" not in result
    assert result["self"] == RESOURCE["self"]
    assert "metaurl" not in result["meta"] and "self" in result["meta"]
    assert len(warnings) == 2
    # the input is never modified
    assert "versionsurl" in RESOURCE and "metaurl" in RESOURCE["meta"]


def test_schema_flag_reports_validity():
    warnings = []
    result = apply_flags(RESOURCE, QueryOptions(schema=True), "resource", warnings)
    assert result["_schema"]["valid"] is True
    assert warnings == []

    errors = validate_document({"xid": "bad"}, "version")
    assert "Missing required field: versionid" in errors
    assert "Invalid xid format: bad" in errors
