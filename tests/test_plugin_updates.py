"""Tests for plugin update checks."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import FakeCatalog, FakeInventory, RecordingNotifier, at
from manager.models import InstalledPlugin, NotificationKind, PluginUpdatePolicy, PluginUpdateState, ServerInfo
from manager.plugin_catalog import ModrinthCatalog
from manager.plugin_updates import PluginUpdateChecker, base_plugin_name, normalize_version, should_check
from manager.state_store import StateStore


class TestShouldCheck:
    def test_disabled(self) -> None:
        assert not should_check(PluginUpdatePolicy(enabled=False), PluginUpdateState(), at(2024, 1, 5))

    def test_never_checked(self) -> None:
        assert should_check(PluginUpdatePolicy(enabled=True), PluginUpdateState(), at(2024, 1, 5))

    def test_interval(self) -> None:
        now = at(2024, 1, 5, 12)
        policy = PluginUpdatePolicy(enabled=True, check_interval_hours=24)
        assert not should_check(policy, PluginUpdateState(last_check_time=now - timedelta(hours=23)), now)
        assert should_check(policy, PluginUpdateState(last_check_time=now - timedelta(hours=24)), now)


class TestNames:
    @pytest.mark.parametrize("raw,expected", [
        ("v1.2.3", "1.2.3"),
        ("V2.0", "2.0"),
        (" 1.0.0-SNAPSHOT ", "1.0.0-snapshot"),
    ])
    def test_normalize_version(self, raw: str, expected: str) -> None:
        assert normalize_version(raw) == expected

    @pytest.mark.parametrize("filename,expected", [
        ("spark-1.10.73-paper.jar", "spark"),
        ("EssentialsX-2.20.1.jar", "essentialsx"),
        ("worldedit_7.2.15.jar", "worldedit"),
        ("Vault.jar", "vault"),
        ("Dynmap-3.7.jar.disabled", "dynmap"),
    ])
    def test_base_plugin_name(self, filename: str, expected: str) -> None:
        assert base_plugin_name(filename) == expected


class TestPluginUpdateChecker:
    """Tests for PluginUpdateChecker."""

    @pytest.fixture
    def inventory(self) -> FakeInventory:
        return FakeInventory([
            InstalledPlugin("spark-1.10.73-paper.jar", "spark", "1.10.73"),
            InstalledPlugin("EssentialsX-2.20.1.jar", "EssentialsX", "2.20.1"),
            InstalledPlugin("Mystery.jar", None, None),
            InstalledPlugin("Custom-1.0.jar", "Custom", "1.0"),
        ])

    @pytest.fixture
    def catalog(self) -> FakeCatalog:
        return FakeCatalog(
            projects={"spark": "l6YH9Als", "EssentialsX": "hXiIvTyT"},
            versions={"l6YH9Als": "v1.10.73", "hXiIvTyT": "2.21.0"},
        )

    def checker(self, inventory, catalog, store, notifier) -> PluginUpdateChecker:
        return PluginUpdateChecker(inventory, catalog, store, notifier)

    @pytest.mark.asyncio
    async def test_reports_only_real_updates(self, inventory: FakeInventory, catalog: FakeCatalog,
                                             store: StateStore, notifier: RecordingNotifier,
                                             server: ServerInfo) -> None:
        now = at(2024, 1, 5, 12)
        results = await self.checker(inventory, catalog, store, notifier).check(
            server, PluginUpdatePolicy(enabled=True), now)

        by_name = {r.plugin_name: r for r in results}
        assert set(by_name) == {"spark", "EssentialsX", "Custom"}
        assert not by_name["spark"].update_available
        assert by_name["EssentialsX"].update_available
        assert by_name["EssentialsX"].latest_version == "2.21.0"
        assert by_name["Custom"].catalog_ref is None
        assert not by_name["Custom"].update_available

        state = store.get_plugin_update_state(server.id)
        assert state.last_check_time == now
        assert len(state.updates) == 3

        assert notifier.kinds() == [NotificationKind.PLUGIN_UPDATE]
        assert notifier.sent[0][2]["updates"] == [
            {"name": "EssentialsX", "current_version": "2.20.1", "latest_version": "2.21.0"},
        ]

    @pytest.mark.asyncio
    async def test_exclusions_skip_catalog_lookup(self, inventory: FakeInventory, catalog: FakeCatalog,
                                                  store: StateStore, notifier: RecordingNotifier,
                                                  server: ServerInfo) -> None:
        policy = PluginUpdatePolicy(enabled=True, exclude_plugins=["EssentialsX"])
        await self.checker(inventory, catalog, store, notifier).check(server, policy, at(2024, 1, 5))

        assert "EssentialsX" not in catalog.lookups
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_notification_can_be_disabled(self, inventory: FakeInventory, catalog: FakeCatalog,
                                                store: StateStore, notifier: RecordingNotifier,
                                                server: ServerInfo) -> None:
        policy = PluginUpdatePolicy(enabled=True, notify_on_update=False)
        results = await self.checker(inventory, catalog, store, notifier).check(server, policy, at(2024, 1, 5))

        assert any(r.update_available for r in results)
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_unparsable_catalog_reply_still_records_check(self, inventory: FakeInventory,
                                                                store: StateStore, notifier: RecordingNotifier,
                                                                server: ServerInfo) -> None:
        catalog = ModrinthCatalog(api_url="https://api.example.test/v2")
        catalog.session = MagicMock()
        response = MagicMock(ok=True, status_code=200)
        response.json.side_effect = ValueError("Expecting value")
        catalog.session.get.return_value = response
        now = at(2024, 1, 5, 12)
        policy = PluginUpdatePolicy(enabled=True)

        results = await self.checker(inventory, catalog, store, notifier).check(server, policy, now)

        assert not any(r.update_available for r in results)
        assert store.get_plugin_update_state(server.id).last_check_time == now
        assert not should_check(policy, store.get_plugin_update_state(server.id), now + timedelta(minutes=1))
        assert notifier.sent == []
