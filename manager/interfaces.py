"""Collaborator contracts consumed by the automation engine.

The engine never imports a concrete controller, backup service or notifier;
``manager.main`` wires the local implementations in and tests pass fakes.
"""
from typing import List, Optional, Protocol

from manager.models import (
    BackupInfo, BackupKind, InstalledPlugin, NotificationKind, ServerInfo, ServerStatus,
)


class ServerRegistry(Protocol):
    def list_servers(self) -> List[ServerInfo]: ...

    def get_server(self, server_id: str) -> Optional[ServerInfo]: ...


class ContainerController(Protocol):
    async def get_status(self, server: ServerInfo) -> ServerStatus: ...

    async def start(self, server: ServerInfo) -> None: ...

    async def stop(self, server: ServerInfo) -> None: ...

    async def restart(self, server: ServerInfo) -> None: ...


class BackupService(Protocol):
    async def create_backup(self, server: ServerInfo, kind: BackupKind) -> BackupInfo: ...

    async def list_backups(self, server: ServerInfo) -> List[BackupInfo]: ...

    async def delete_backup(self, server: ServerInfo, backup_id: str) -> bool: ...


class Notifier(Protocol):
    async def notify(self, server_id: str, kind: NotificationKind, payload: dict) -> bool:
        """Fire and forget; implementations log failures and return False."""
        ...


class PluginInventory(Protocol):
    async def list_plugins(self, server: ServerInfo) -> List[InstalledPlugin]: ...


class PluginCatalog(Protocol):
    async def find_project(self, plugin_name: str) -> Optional[str]: ...

    async def latest_version(self, catalog_ref: str, game_version: Optional[str] = None) -> Optional[str]: ...
