"""Tests for version handling and dependency resolution."""

import asyncio

import httpx

from regbridge.errors import UpstreamUnavailable
from regbridge.protocol.entities import Dependency
from regbridge.sync.resolver import DependencyResolver
from regbridge.sync.versions import compare_versions, latest_version, parse_range, sort_versions

PACKAGES = "/dotnetregistries/nuget.org/packages"


class FakeSource:
    def __init__(self, versions, slow=(), broken=()):
        self.versions = versions
        self.slow = slow
        self.broken = broken

    async def version_exists(self, name, version):
        if name in self.broken:
            raise UpstreamUnavailable("down")
        return version in self.versions.get(name, [])

    async def list_versions(self, name):
        if name in self.slow:
            await asyncio.sleep(1)
        if name in self.broken:
            raise httpx.ConnectError("down")
        return list(self.versions.get(name, []))

    async def package_exists(self, name):
        if name in self.broken:
            raise UpstreamUnavailable("down")
        return name in self.versions


def _resolver(source, **kwargs):
    return DependencyResolver(source, resources_path=PACKAGES, **kwargs)


# ── Versions ─────────────────────────────────────────────────────────


def test_compare_versions():
    assert compare_versions("1.0", "1.0.0") == 0
    assert compare_versions("1.10.0", "1.9.0") == 1
    assert compare_versions("2.0.0-beta", "2.0.0") == -1
    # pre-releases with the same numbers are equal whatever their labels
    assert compare_versions("2.0.0-alpha", "2.0.0-beta") == 0


def test_sort_and_latest():
    versions = ["1.0.0", "13.0.1", "2.0.0", "14.0.0-beta1"]
    assert sort_versions(versions, descending=True) == ["14.0.0-beta1", "13.0.1", "2.0.0", "1.0.0"]
    assert latest_version(versions) == "13.0.1"
    assert latest_version(versions, include_prerelease=True) == "14.0.0-beta1"
    assert latest_version(["1.0.0-rc1"]) == "1.0.0-rc1"
    assert latest_version([]) is None


def test_parse_range_kinds():
    assert parse_range("[13.0.1]").kind == "exact"
    assert parse_range("13.0.1").version == "13.0.1"
    minimum = parse_range("[4.7.0, )")
    assert (minimum.kind, minimum.version, minimum.inclusive) == ("minimum", "4.7.0", True)
    assert parse_range(">=1.2").inclusive
    assert not parse_range("(1.2, )").inclusive
    assert parse_range("[1.0, 2.0)").kind == "other"
    assert parse_range("").kind == "other"


# ── Resolution ───────────────────────────────────────────────────────


def test_exact_pin_resolves_to_version_link():
    resolver = _resolver(FakeSource({"Newtonsoft.Json": ["13.0.1", "13.0.3"]}))
    result = asyncio.run(resolver.resolve(Dependency("Newtonsoft.Json", "[13.0.1]")))
    assert result.resolved_version == "13.0.1"
    assert result.package == f"{PACKAGES}/Newtonsoft.Json/versions/13.0.1"


def test_missing_pin_falls_back_to_package_link():
    resolver = _resolver(FakeSource({"Newtonsoft.Json": ["13.0.3"]}))
    result = asyncio.run(resolver.resolve(Dependency("Newtonsoft.Json", "[9.9.9]")))
    assert result.resolved_version is None
    assert result.package == f"{PACKAGES}/Newtonsoft.Json"
    assert result.range == "[9.9.9]"


def test_minimum_bound_prefers_highest_stable():
    source = FakeSource({"System.Memory": ["4.5.0", "4.6.0", "4.7.0-preview", "4.0.0"]})
    result = asyncio.run(_resolver(source).resolve(Dependency("System.Memory", "[4.5.0, )")))
    assert result.resolved_version == "4.6.0"
    assert result.package.endswith("/System.Memory/versions/4.6.0")


def test_minimum_bound_respects_scan_cap():
    source = FakeSource({"Lib": [f"1.{i}.0" for i in range(10)]})
    result = asyncio.run(_resolver(source, max_versions=3).resolve(Dependency("Lib", ">=1.8.0")))
    assert result.resolved_version == "1.9.0"


def test_unknown_package_keeps_raw_range():
    result = asyncio.run(_resolver(FakeSource({})).resolve(Dependency("Nope", "[1.0, 2.0)")))
    assert result.package is None
    assert result.range == "[1.0, 2.0)"


def test_failures_and_timeouts_are_isolated():
    source = FakeSource(
        {"Good": ["1.0.0"], "Slow": ["1.0.0"], "Broken": ["1.0.0"]},
        slow=("Slow",),
        broken=("Broken",),
    )
    resolver = _resolver(source, timeout=0.05)
    dependencies = [
        Dependency("Good", "[1.0.0]"),
        Dependency("Slow", ">=1.0.0"),
        Dependency("Broken", "[1.0.0]"),
    ]
    good, slow, broken = asyncio.run(resolver.resolve_all(dependencies))
    assert good.resolved_version == "1.0.0"
    # the version scan timed out, but the package is known
    assert slow.resolved_version is None and slow.package == f"{PACKAGES}/Slow"
    assert broken.package is None and broken.name == "Broken"
