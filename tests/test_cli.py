"""Tests for the regbridge CLI."""

import logging

import pytest
from click.testing import CliRunner

from regbridge import __version__
from regbridge.cache.store import open_store
from regbridge.cli import main
from regbridge.config import get_settings
from regbridge.sync.catalog import CURSOR_KEY, CatalogCursor


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    """Point settings at a temp cache and keep the CLI's logging setup contained."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    monkeypatch.setenv("CACHE_DIR", str(tmp_path))
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_cache_info_without_cursor(cli_env):
    result = CliRunner().invoke(main, ["cache-info"])
    assert result.exit_code == 0
    assert "none" in result.output


def test_cache_info_shows_stored_cursor(cli_env):
    store = open_store(str(cli_env))
    cursor = CatalogCursor("2024-01-03T00:00:00Z", {"Alpha", "Beta"}, "2024-01-03T01:00:00Z")
    store.put(CURSOR_KEY, cursor.to_dict())
    store.flush()

    result = CliRunner().invoke(main, ["cache-info"])
    assert result.exit_code == 0
    assert "2024-01-03T00:00:00Z" in result.output
    assert "snapshot" in result.output
