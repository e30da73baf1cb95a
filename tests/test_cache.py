"""Tests for the stores and the conditional cache."""

import asyncio
import json
import tempfile
import threading
from pathlib import Path

import httpx
import pytest

from regbridge.cache import (
    ConditionalCache,
    FileStore,
    Fresh,
    MemoryStore,
    Miss,
    Stale,
    cache_key,
    open_store,
)
from regbridge.errors import EntityNotFound, UpstreamUnavailable

URL = "https://upstream.test/v3/registration/newtonsoft.json/index.json"


def _cache(handler, store=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ConditionalCache(client, store if store is not None else MemoryStore())


# ── Stores ───────────────────────────────────────────────────────────


def test_memory_store_snapshot_round_trip():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "snapshot.json"
        store = MemoryStore(path)
        store.put("a", {"x": 1})
        assert not path.exists()
        store.flush()
        assert json.loads(path.read_text()) == {"a": {"x": 1}}

        reloaded = MemoryStore(path)
        assert reloaded.get("a") == {"x": 1}
        assert "a" in reloaded
        assert len(reloaded) == 1


def test_memory_store_ignores_corrupt_snapshot():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "snapshot.json"
        path.write_text("{not json")
        assert len(MemoryStore(path)) == 0


def test_file_store():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = FileStore(tmpdir)
        store.put("https://a/b?x=1", {"v": 1})
        store.put("https://a/c", {"v": 2})
        assert store.get("https://a/b?x=1") == {"v": 1}
        assert store.get("missing") is None
        assert sorted(store.keys()) == ["https://a/b?x=1", "https://a/c"]


def test_open_store_backends():
    assert isinstance(open_store(""), MemoryStore)
    with tempfile.TemporaryDirectory() as tmpdir:
        assert isinstance(open_store(tmpdir, "file"), FileStore)
        snapshot = open_store(tmpdir, "snapshot")
        assert isinstance(snapshot, MemoryStore)
        assert snapshot.snapshot_path == Path(tmpdir) / "snapshot.json"
        with pytest.raises(ValueError):
            open_store(tmpdir, "redis")


def test_cache_key_sorts_query():
    assert cache_key("https://a/q", {"b": "2", "a": "1"}) == "https://a/q?a=1&b=2"
    assert cache_key("https://a/q?b=2&a=1") == "https://a/q?a=1&b=2"
    assert cache_key("https://a/q") == "https://a/q"


# ── Conditional fetches ──────────────────────────────────────────────


def test_revalidation_returns_identical_payload():
    requests = []

    def handler(request):
        requests.append(request)
        if request.headers.get("if-none-match") == '"v1"':
            return httpx.Response(304)
        return httpx.Response(200, json={"id": "Newtonsoft.Json", "items": [1, 2]}, headers={"ETag": '"v1"'})

    cache = _cache(handler)

    async def run():
        first = await cache.fetch(URL)
        second = await cache.fetch(URL)
        return first, second

    first, second = asyncio.run(run())
    assert isinstance(first, Fresh) and not first.revalidated
    assert isinstance(second, Fresh) and second.revalidated
    assert json.dumps(first.payload) == json.dumps(second.payload)
    assert "if-none-match" not in requests[0].headers
    assert requests[1].headers["if-none-match"] == '"v1"'


def test_upstream_failure_serves_stale():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(200, json={"ok": True}, headers={"ETag": '"e"'})
        raise httpx.ConnectError("unreachable", request=request)

    cache = _cache(handler)

    async def run():
        await cache.fetch(URL)
        return await cache.fetch(URL)

    result = asyncio.run(run())
    assert isinstance(result, Stale)
    assert result.payload == {"ok": True}


def test_server_error_serves_stale():
    responses = [httpx.Response(200, json={"n": 1}), httpx.Response(503)]
    cache = _cache(lambda request: responses.pop(0))

    async def run():
        await cache.get(URL)
        return await cache.get(URL)

    assert asyncio.run(run()) == {"n": 1}


def test_not_found_and_unavailable():
    def handler(request):
        if request.url.path.endswith("missing.json"):
            return httpx.Response(404)
        raise httpx.ConnectError("unreachable", request=request)

    cache = _cache(handler)
    assert isinstance(asyncio.run(cache.fetch("https://upstream.test/missing.json")), Miss)
    with pytest.raises(EntityNotFound):
        asyncio.run(cache.get("https://upstream.test/missing.json"))
    with pytest.raises(UpstreamUnavailable) as exc_info:
        asyncio.run(cache.get(URL))
    assert exc_info.value.status == 502


def test_timeout_maps_to_504():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(UpstreamUnavailable) as exc_info:
        asyncio.run(_cache(handler).get(URL))
    assert exc_info.value.status == 504


def test_entries_are_stored_by_sorted_key():
    store = MemoryStore()
    cache = _cache(lambda request: httpx.Response(200, json={"data": []}, headers={"ETag": '"s"'}), store)
    asyncio.run(cache.get("https://upstream.test/query", params={"take": "1", "q": "json"}))
    entry = cache.cached("https://upstream.test/query", params={"q": "json", "take": "1"})
    assert entry is not None
    assert entry.etag == '"s"'
    assert entry.payload == {"data": []}


class _ThreadRecordingStore(FileStore):
    def __init__(self, directory):
        super().__init__(directory)
        self.threads = []

    def get(self, key):
        self.threads.append(threading.get_ident())
        return super().get(key)

    def put(self, key, value):
        self.threads.append(threading.get_ident())
        super().put(key, value)


def test_file_store_io_runs_off_the_event_loop():
    def handler(request):
        if request.headers.get("if-none-match") == '"v1"':
            return httpx.Response(304)
        return httpx.Response(200, json={"id": "Newtonsoft.Json"}, headers={"ETag": '"v1"'})

    with tempfile.TemporaryDirectory() as tmpdir:
        store = _ThreadRecordingStore(tmpdir)
        cache = _cache(handler, store)

        async def run():
            loop_thread = threading.get_ident()
            first = await cache.fetch(URL)
            second = await cache.fetch(URL)
            return loop_thread, first, second

        loop_thread, first, second = asyncio.run(run())
        assert isinstance(first, Fresh) and isinstance(second, Fresh) and second.revalidated
        assert second.payload == {"id": "Newtonsoft.Json"}
        # get, put, get
        assert len(store.threads) == 3
        assert loop_thread not in store.threads
        assert FileStore(tmpdir).get(URL)["etag"] == '"v1"'
