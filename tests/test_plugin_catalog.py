"""Tests for local plugin discovery and the Modrinth catalog client."""

from __future__ import annotations

import json
import zipfile
from unittest.mock import MagicMock

import pytest
import requests

from manager.models import ServerInfo
from manager.plugin_catalog import LocalPluginInventory, ModrinthCatalog, read_plugin_metadata


def make_jar(path, entries: dict):
    with zipfile.ZipFile(path, "w") as jar:
        for name, content in entries.items():
            jar.writestr(name, content)


class TestReadPluginMetadata:
    """Tests for read_plugin_metadata."""

    def test_plugin_yml(self, tmp_path) -> None:
        jar = tmp_path / "spark.jar"
        make_jar(jar, {"plugin.yml": "name: spark\nversion: '1.10.73'\nmain: me.lucko.spark.Main\n"})
        assert read_plugin_metadata(str(jar)) == ("spark", "1.10.73")

    def test_fabric_mod_json(self, tmp_path) -> None:
        jar = tmp_path / "lithium.jar"
        make_jar(jar, {"fabric.mod.json": json.dumps({"id": "lithium", "version": "0.12.1"})})
        assert read_plugin_metadata(str(jar)) == ("lithium", "0.12.1")

    def test_not_a_jar(self, tmp_path) -> None:
        jar = tmp_path / "broken.jar"
        jar.write_bytes(b"not a zip")
        assert read_plugin_metadata(str(jar)) == (None, None)


class TestLocalPluginInventory:
    @pytest.mark.asyncio
    async def test_lists_jars_only(self, tmp_path) -> None:
        plugins = tmp_path / "plugins"
        plugins.mkdir()
        make_jar(plugins / "spark-1.10.73.jar", {"plugin.yml": "name: spark\nversion: 1.10.73\n"})
        (plugins / "config.yml").write_text("x: 1", encoding="utf-8")

        found = await LocalPluginInventory().list_plugins(ServerInfo(id="default", directory=str(tmp_path)))
        assert [(p.filename, p.name, p.version) for p in found] == [("spark-1.10.73.jar", "spark", "1.10.73")]

    @pytest.mark.asyncio
    async def test_no_plugins_directory(self, tmp_path) -> None:
        server = ServerInfo(id="default", directory=str(tmp_path))
        assert await LocalPluginInventory().list_plugins(server) == []


class TestModrinthCatalog:
    """Tests for ModrinthCatalog with a mocked HTTP session."""

    @pytest.fixture
    def catalog(self) -> ModrinthCatalog:
        catalog = ModrinthCatalog(api_url="https://api.example.test/v2")
        catalog.session = MagicMock()
        return catalog

    def respond(self, catalog: ModrinthCatalog, payload, ok: bool = True):
        catalog.session.get.return_value = MagicMock(ok=ok, status_code=200 if ok else 500,
                                                     json=MagicMock(return_value=payload))

    @pytest.mark.asyncio
    async def test_find_project_prefers_exact_slug(self, catalog: ModrinthCatalog) -> None:
        self.respond(catalog, {"hits": [
            {"project_id": "AAA", "slug": "spark-addon", "title": "Spark Addon"},
            {"project_id": "BBB", "slug": "spark", "title": "spark"},
        ]})
        assert await catalog.find_project("Spark") == "BBB"

    @pytest.mark.asyncio
    async def test_find_project_falls_back_to_first_hit(self, catalog: ModrinthCatalog) -> None:
        self.respond(catalog, {"hits": [{"project_id": "AAA", "slug": "other", "title": "Other"}]})
        assert await catalog.find_project("spark") == "AAA"

    @pytest.mark.asyncio
    async def test_latest_version_filters_by_game_version(self, catalog: ModrinthCatalog) -> None:
        self.respond(catalog, [{"version_number": "1.11.0"}, {"version_number": "1.10.73"}])

        assert await catalog.latest_version("BBB", "1.20.4") == "1.11.0"
        url = catalog.session.get.call_args.args[0]
        params = catalog.session.get.call_args.kwargs["params"]
        assert url == "https://api.example.test/v2/project/BBB/version"
        assert json.loads(params["game_versions"]) == ["1.20.4"]

    @pytest.mark.asyncio
    async def test_http_error_means_no_result(self, catalog: ModrinthCatalog) -> None:
        self.respond(catalog, None, ok=False)
        assert await catalog.latest_version("BBB") is None
        assert await catalog.find_project("spark") is None

    @pytest.mark.asyncio
    async def test_network_error_means_no_result(self, catalog: ModrinthCatalog) -> None:
        catalog.session.get.side_effect = requests.ConnectionError("offline")
        assert await catalog.find_project("spark") is None

    @pytest.mark.asyncio
    async def test_non_json_body_means_no_result(self, catalog: ModrinthCatalog) -> None:
        response = MagicMock(ok=True, status_code=200)
        response.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        catalog.session.get.return_value = response

        assert await catalog.find_project("spark") is None
        assert await catalog.latest_version("BBB") is None

    @pytest.mark.asyncio
    async def test_hit_without_project_id(self, catalog: ModrinthCatalog) -> None:
        self.respond(catalog, {"hits": [{"slug": "spark", "title": "spark"}]})
        assert await catalog.find_project("spark") is None

    @pytest.mark.asyncio
    async def test_unexpected_payload_shapes(self, catalog: ModrinthCatalog) -> None:
        self.respond(catalog, ["not", "a", "search", "result"])
        assert await catalog.search("spark") == []

        self.respond(catalog, {"error": "not_found"})
        assert await catalog.latest_version("BBB") is None
