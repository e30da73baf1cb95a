"""End-to-end tests of the NuGet adapter app against a mocked NuGet upstream."""

import asyncio
import re

import httpx
from fastapi.testclient import TestClient

from regbridge.config import Settings
from regbridge.nuget.adapter import NuGetAdapter
from regbridge.protocol import SPEC_VERSION

from web.backend.app.main import create_app

REGISTRATION = "/v3/registration5-semver1"
PACKAGES = "/dotnetregistries/nuget.org/packages"
NEWTONSOFT = f"{PACKAGES}/Newtonsoft.Json"


def _entry(version: str, dependencies=()) -> dict:
    return {
        "@id": f"https://api.nuget.org{REGISTRATION}/newtonsoft.json/{version}.json",
        "id": "Newtonsoft.Json",
        "version": version,
        "description": "Json.NET is a popular high-performance JSON framework for .NET",
        "authors": "James Newton-King",
        "tags": "json",
        "licenseExpression": "MIT",
        "projectUrl": "https://www.newtonsoft.com/json",
        "published": "2023-03-08T07:42:54.647+00:00" if version == "13.0.3" else "2022-03-01T10:00:00+00:00",
        "dependencyGroups": [
            {"targetFramework": ".NETStandard2.0", "dependencies": list(dependencies)}
        ],
    }


REGISTRATION_INDEX = {
    "count": 1,
    "items": [
        {
            "@id": f"https://api.nuget.org{REGISTRATION}/newtonsoft.json/index.json#page/12.0.1/13.0.3",
            "items": [
                {"catalogEntry": _entry("12.0.1")},
                {
                    "catalogEntry": _entry(
                        "13.0.3",
                        [
                            {"id": "Microsoft.CSharp", "range": "[4.3.0, )"},
                            {"id": "System.ComponentModel.TypeConverter", "range": "[4.3.0]"},
                        ],
                    )
                },
            ],
        }
    ],
}

SEARCHABLE = ("Newtonsoft.Json", "Newtonsoft.Json.Bson", "Serilog")


def upstream(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if request.url.host == "azuresearch-usnc.nuget.org":
        query = request.url.params.get("q", "").lower()
        skip = int(request.url.params.get("skip", "0"))
        take = int(request.url.params.get("take", "20"))
        hits = [name for name in SEARCHABLE if query in name.lower()]
        page = hits[skip : skip + take]
        return httpx.Response(200, json={"totalHits": len(hits), "data": [{"id": h} for h in page]})
    if path == f"{REGISTRATION}/newtonsoft.json/index.json":
        return httpx.Response(200, json=REGISTRATION_INDEX, headers={"ETag": '"reg-1"'})
    if path == f"{REGISTRATION}/system.componentmodel.typeconverter/4.3.0.json":
        return httpx.Response(200, json={"catalogEntry": "..."})
    if path == "/v3-flatcontainer/microsoft.csharp/index.json":
        return httpx.Response(200, json={"versions": ["4.0.1", "4.3.0", "4.7.0", "4.8.0-preview"]})
    return httpx.Response(404)


def _settings(**overrides) -> Settings:
    return Settings(sync_enabled=False, **overrides)


def _client(**overrides) -> TestClient:
    settings = _settings(**overrides)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    adapter = NuGetAdapter(settings, http_client=http_client)
    return TestClient(create_app(settings, adapter))


# ── Root, model, capabilities ────────────────────────────────────────


def test_root_document():
    with _client() as client:
        response = client.get("/")
        assert response.status_code == 200
        body = response.json()
        assert body["specversion"] == SPEC_VERSION
        assert body["registryid"] == "nuget-wrapper"
        assert body["dotnetregistriesurl"] == "http://testserver/dotnetregistries"
        assert body["dotnetregistriescount"] == 1
        assert response.headers["x-xregistry-specversion"] == SPEC_VERSION
        assert response.headers["content-type"].startswith("application/json")
        assert response.headers["cache-control"] == "no-cache"
        assert "etag" in response.headers


def test_root_inline_model_and_unknown_target():
    with _client() as client:
        response = client.get("/?inline=model,nothing")
        body = response.json()
        assert "dotnetregistries" in body["model"]["groups"]
        assert "299" in response.headers["warning"]


def test_model_and_capabilities():
    with _client() as client:
        model = client.get("/model").json()
        assert model["groups"]["dotnetregistries"]["resources"]["packages"]["singular"] == "package"
        capabilities = client.get("/capabilities").json()["capabilities"]
        assert "filter" in capabilities["flags"]
        assert capabilities["pagination"] is True


def test_conditional_request_returns_304():
    with _client() as client:
        etag = client.get("/model").headers["etag"]
        response = client.get("/model", headers={"If-None-Match": etag})
        assert response.status_code == 304
        assert response.content == b""


# ── Groups ───────────────────────────────────────────────────────────


def test_groups_and_group():
    with _client() as client:
        groups = client.get("/dotnetregistries").json()
        assert list(groups) == ["nuget.org"]
        group = client.get("/dotnetregistries/nuget.org").json()
        assert group["packagesurl"] == f"http://testserver{PACKAGES}"
        assert client.get("/dotnetregistries/other").status_code == 404


# ── Packages ─────────────────────────────────────────────────────────


def test_filter_by_name_then_follow_self():
    with _client() as client:
        response = client.get(f"{PACKAGES}?filter=name=Newtonsoft.Json&limit=1")
        assert response.status_code == 200
        collection = response.json()
        assert list(collection) == ["Newtonsoft.Json"]
        assert 'count="1"' in response.headers["link"]

        entry = collection["Newtonsoft.Json"]
        resource = client.get(entry["self"]).json()
        assert resource["name"] == "Newtonsoft.Json"
        assert resource["packageid"] == "Newtonsoft.Json"
        assert resource["versionid"] == "13.0.3"
        assert resource["versionscount"] == 2
        assert resource["license"] == "MIT"
        assert resource["docs"] == f"http://testserver{NEWTONSOFT}/doc"


def test_unsatisfiable_filter_is_empty():
    with _client() as client:
        response = client.get(f"{PACKAGES}?filter=name=Does.Not.Exist")
        assert response.status_code == 200
        assert response.json() == {}


def test_listing_without_filter_uses_search():
    with _client() as client:
        response = client.get(f"{PACKAGES}?limit=2")
        assert list(response.json()) == ["Newtonsoft.Json", "Newtonsoft.Json.Bson"]
        assert 'count="3"' in response.headers["link"]
        assert 'rel="next"' in response.headers["link"]


def _next_link(response) -> str:
    match = re.search(r'<([^>]+)>; rel="next"', response.headers["link"])
    return match.group(1) if match else ""


def test_listing_pages_follow_next_links():
    with _client() as client:
        seen, url = [], f"{PACKAGES}?limit=1"
        for _ in range(len(SEARCHABLE) + 1):
            if not url:
                break
            response = client.get(url)
            assert response.status_code == 200
            assert 'count="3"' in response.headers["link"]
            seen.extend(response.json())
            url = _next_link(response)
        assert seen == list(SEARCHABLE)
        assert url == ""


def test_listing_answers_conditional_requests():
    with _client() as client:
        first = client.get(f"{PACKAGES}?limit=2")
        second = client.get(f"{PACKAGES}?limit=2")
        assert second.json() == first.json()
        assert second.headers["etag"] == first.headers["etag"]

        response = client.get(f"{PACKAGES}?limit=2", headers={"If-None-Match": first.headers["etag"]})
        assert response.status_code == 304


def test_resource_inline_versions_and_meta():
    with _client() as client:
        body = client.get(f"{NEWTONSOFT}?inline=versions,meta").json()
        assert set(body["versions"]) == {"12.0.1", "13.0.3"}
        assert body["meta"]["defaultversionid"] == "13.0.3"


def test_meta_and_doc():
    with _client() as client:
        meta = client.get(f"{NEWTONSOFT}/meta").json()
        assert meta["xid"] == f"{NEWTONSOFT}/meta"
        assert meta["readonly"] is True
        doc = client.get(f"{NEWTONSOFT}/doc").json()
        assert doc["homepage"] == "https://www.newtonsoft.com/json"


def test_versions_collection_sorted():
    with _client() as client:
        response = client.get(f"{NEWTONSOFT}/versions?sort=versionid=desc")
        assert list(response.json()) == ["13.0.3", "12.0.1"]
        assert 'rel="first"' in response.headers["link"]


def test_version_dependencies_are_resolved():
    with _client() as client:
        version = client.get(f"{NEWTONSOFT}/versions/13.0.3").json()
        assert version["isdefault"] is True
        dependencies = {d["name"]: d for d in version["dependencies"]}

        csharp = dependencies["Microsoft.CSharp"]
        assert csharp["resolved_version"] == "4.7.0"
        assert csharp["package"] == f"{PACKAGES}/Microsoft.CSharp/versions/4.7.0"
        assert csharp["targetframework"] == ".NETStandard2.0"

        converter = dependencies["System.ComponentModel.TypeConverter"]
        assert converter["package"] == f"{PACKAGES}/System.ComponentModel.TypeConverter/versions/4.3.0"


def test_unknown_package_and_version_are_problems():
    with _client() as client:
        response = client.get(f"{PACKAGES}/Missing.Package")
        assert response.status_code == 404
        problem = response.json()
        assert problem["type"].endswith("#not_found")
        assert problem["instance"] == f"{PACKAGES}/Missing.Package"

        assert client.get(f"{NEWTONSOFT}/versions/99.0.0").status_code == 404


# ── Request handling ─────────────────────────────────────────────────


def test_details_suffix_and_trailing_slash():
    with _client() as client:
        response = client.get(f"{NEWTONSOFT}$details")
        assert response.status_code == 200
        assert response.headers["x-xregistry-details"] == "true"
        assert response.json()["name"] == "Newtonsoft.Json"

        assert client.get("/dotnetregistries/").status_code == 200


def test_accept_negotiation_and_options():
    with _client() as client:
        assert client.get("/", headers={"Accept": "text/plain"}).status_code == 406
        assert client.get("/", headers={"Accept": "text/html"}).status_code == 200
        response = client.options("/model")
        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"


def test_invalid_query_and_unknown_api():
    with _client() as client:
        response = client.get(f"{PACKAGES}?limit=0")
        assert response.status_code == 400
        assert response.json()["type"].endswith("#invalid_data")

        response = client.get("/nothing/here/at/all")
        assert response.status_code == 404
        assert response.json()["type"].endswith("#api_not_found")


def test_flags_on_resource():
    with _client() as client:
        body = client.get(f"{NEWTONSOFT}?collections=false&doc=false&noepoch=true").json()
        assert "versionsurl" not in body and "metaurl" not in body
        assert "docs" not in body and "epoch" not in body


def test_api_key_required_except_health():
    with _client(api_key="secret") as client:
        assert client.get("/model").status_code == 401
        assert client.get("/model", headers={"Authorization": "Basic secret"}).status_code == 401
        assert client.get("/model", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert client.get("/model", headers={"Authorization": "Bearer secret"}).status_code == 200
        assert client.get("/health").status_code == 200


def test_health():
    with _client() as client:
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["registry"] == "nuget-wrapper"
        assert body["sync"]["running"] is False


# ── Service level ────────────────────────────────────────────────────


def test_lookup_by_own_xid_round_trips():
    settings = _settings()
    adapter = NuGetAdapter(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream)))

    async def run():
        resource, _ = await adapter.service.load_resource("Newtonsoft.Json")
        version = await adapter.service.load_version("Newtonsoft.Json", "13.0.3")
        found_resource = await adapter.service.lookup(resource.xid)
        found_version = await adapter.service.lookup(version.xid)
        found_meta = await adapter.service.lookup(resource.meta().xid)
        return resource, version, found_resource, found_version, found_meta

    resource, version, found_resource, found_version, found_meta = asyncio.run(run())
    assert found_resource.to_document() == resource.to_document()
    assert found_version.xid == version.xid
    assert found_version.entity_id == "13.0.3"
    assert found_meta.xid == f"{resource.xid}/meta"
    assert "Newtonsoft.Json" not in adapter.synchronizer.known_names


def test_upstream_revalidation_is_sent():
    seen = []

    def recording(request):
        seen.append(request.headers.get("if-none-match"))
        return upstream(request)

    adapter = NuGetAdapter(_settings(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(recording)))

    async def run():
        first = await adapter.client.registration_entries("Newtonsoft.Json")
        second = await adapter.client.registration_entries("Newtonsoft.Json")
        return first, second

    first, second = asyncio.run(run())
    assert first == second
    assert seen == [None, '"reg-1"']


def test_root_inline_schema():
    with _client() as client:
        body = client.get("/?inline=schema").json()
        assert body["schema"]["valid"] is True
        assert "warning" not in client.get("/?inline=schema").headers


def test_epoch_bookkeeping_bound_comes_from_settings():
    adapter = NuGetAdapter(
        _settings(max_tracked_entities=7),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream)),
    )
    assert adapter.service.tracker.max_entries == 7
    assert len(adapter.service.tracker) == 0
