import re
from datetime import datetime, timedelta
from typing import List

from manager.interfaces import Notifier, PluginCatalog, PluginInventory
from manager.models import (
    NotificationKind, PluginUpdateInfo, PluginUpdatePolicy, PluginUpdateState, ServerInfo,
)
from manager.state_store import StateStore
from manager.utils import LoggerSetup


def should_check(policy: PluginUpdatePolicy, state: PluginUpdateState, now: datetime) -> bool:
    if not policy.enabled:
        return False
    if state.last_check_time is None:
        return True
    return now - state.last_check_time >= timedelta(hours=policy.check_interval_hours)


def normalize_version(version: str) -> str:
    return re.sub(r'^v', '', version.strip(), flags=re.IGNORECASE).lower()


def base_plugin_name(filename: str) -> str:
    """``spark-1.10.73-paper.jar`` -> ``spark``."""
    name = re.sub(r'\.jar(\.disabled)?$', '', filename)
    name = re.sub(r'-[\d.]+(-[a-zA-Z0-9]+)?$', '', name)
    name = re.sub(r'_[\d.]+(-[a-zA-Z0-9]+)?$', '', name)
    name = re.sub(r'[\d.]+$', '', name)
    return name.lower()


class PluginUpdateChecker:
    def __init__(self, inventory: PluginInventory, catalog: PluginCatalog,
                 store: StateStore, notifier: Notifier):
        self.inventory = inventory
        self.catalog = catalog
        self.store = store
        self.notifier = notifier
        self.logger = LoggerSetup.setup('plugins')

    async def check(self, server: ServerInfo, policy: PluginUpdatePolicy,
                    now: datetime) -> List[PluginUpdateInfo]:
        self.logger.info(f"[{server.id}] Checking plugin updates for {server.name}")
        excluded = {name.lower() for name in policy.exclude_plugins}
        updates = []

        for plugin in await self.inventory.list_plugins(server):
            base_name = base_plugin_name(plugin.filename)
            if base_name in excluded:
                continue
            if not plugin.version:
                self.logger.debug(f"[{server.id}] Could not determine version for {plugin.filename}")
                continue

            name = plugin.name or base_name
            info = PluginUpdateInfo(
                plugin_name=name,
                current_version=plugin.version,
                latest_version=plugin.version,
                last_checked=now,
            )
            updates.append(info)

            info.catalog_ref = await self.catalog.find_project(name)
            if info.catalog_ref is None:
                self.logger.debug(f"[{server.id}] No catalog match for {name}")
                continue

            latest = await self.catalog.latest_version(info.catalog_ref, server.version)
            if not latest:
                self.logger.debug(f"[{server.id}] No compatible version found for {name}")
                continue

            info.latest_version = latest
            info.update_available = normalize_version(latest) != normalize_version(plugin.version)
            if info.update_available:
                self.logger.info(f"[{server.id}] Update available for {name}: {plugin.version} -> {latest}")

        self.store.save_plugin_update_state(server.id, PluginUpdateState(last_check_time=now, updates=updates))

        available = [u for u in updates if u.update_available]
        if available and policy.notify_on_update:
            await self.notifier.notify(server.id, NotificationKind.PLUGIN_UPDATE, {
                'server_name': server.name,
                'updates': [
                    {'name': u.plugin_name, 'current_version': u.current_version,
                     'latest_version': u.latest_version}
                    for u in available
                ],
            })

        self.logger.info(f"[{server.id}] Plugin check complete: {len(available)} updates available")
        return updates
