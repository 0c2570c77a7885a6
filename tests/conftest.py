"""Shared test fixtures and fakes for the automation engine."""

from __future__ import annotations

import os
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

import pytest

os.environ.setdefault("MCSM_LOG_TO_FILE", "0")

from manager.models import (
    BackupInfo, BackupKind, InstalledPlugin, NotificationKind, ServerInfo, ServerStatus,
)
from manager.state_store import StateStore
from manager.stop_intent import StopIntentRegistry

TOKYO = ZoneInfo("Asia/Tokyo")
SERVER_ID = "3f2b8c1e-5d4a-4b6f-9a7e-1c2d3e4f5a6b"
OTHER_SERVER_ID = "9a8b7c6d-1e2f-4a3b-8c4d-5e6f7a8b9c0d"


def at(year, month, day, hour=0, minute=0, second=0) -> datetime:
    """Aware datetime in Asia/Tokyo (the default schedule timezone)."""
    return datetime(year, month, day, hour, minute, second, tzinfo=TOKYO)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeContainers:
    def __init__(self, running: bool = False):
        self.statuses: dict[str, ServerStatus] = {}
        self.default_running = running
        self.calls: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()

    def set_status(self, server_id: str, status: ServerStatus):
        self.statuses[server_id] = status

    async def get_status(self, server: ServerInfo) -> ServerStatus:
        if "status" in self.fail_on:
            raise RuntimeError("status unavailable")
        return self.statuses.get(server.id, ServerStatus(running=self.default_running))

    async def _record(self, action: str, server: ServerInfo, running: bool):
        self.calls.append((action, server.id))
        if action in self.fail_on:
            raise RuntimeError(f"{action} failed")
        self.statuses[server.id] = ServerStatus(running=running)

    async def start(self, server: ServerInfo):
        await self._record("start", server, True)

    async def stop(self, server: ServerInfo):
        await self._record("stop", server, False)

    async def restart(self, server: ServerInfo):
        await self._record("restart", server, True)


class FakeBackups:
    def __init__(self):
        self.backups: dict[str, list[BackupInfo]] = {}
        self.created: list[tuple[str, BackupKind]] = []
        self.deleted: list[str] = []
        self.fail_create = False
        self.fail_delete: set[str] = set()

    async def create_backup(self, server: ServerInfo, kind: BackupKind) -> BackupInfo:
        if self.fail_create:
            raise OSError("disk full")
        self.created.append((server.id, kind))
        backup = BackupInfo(
            id=f"backup-{len(self.created)}",
            filename=f"backup-{len(self.created)}.tar.gz",
            size=1024,
            created_at=datetime.now().astimezone(),
            kind=kind,
        )
        self.backups.setdefault(server.id, []).append(backup)
        return backup

    async def list_backups(self, server: ServerInfo) -> list[BackupInfo]:
        return list(self.backups.get(server.id, []))

    async def delete_backup(self, server: ServerInfo, backup_id: str) -> bool:
        if backup_id in self.fail_delete:
            raise OSError("permission denied")
        self.deleted.append(backup_id)
        self.backups[server.id] = [b for b in self.backups.get(server.id, []) if b.id != backup_id]
        return True


class RecordingNotifier:
    def __init__(self):
        self.sent: list[tuple[str, NotificationKind, dict]] = []

    async def notify(self, server_id: str, kind: NotificationKind, payload: dict) -> bool:
        self.sent.append((server_id, kind, payload))
        return True

    def kinds(self) -> list[NotificationKind]:
        return [kind for _, kind, _ in self.sent]


class FakeRegistry:
    def __init__(self, *servers: ServerInfo):
        self.servers = list(servers)

    def list_servers(self) -> list[ServerInfo]:
        return list(self.servers)

    def get_server(self, server_id: str) -> Optional[ServerInfo]:
        return next((s for s in self.servers if s.id == server_id), None)


class FakeInventory:
    def __init__(self, plugins: Optional[list[InstalledPlugin]] = None):
        self.plugins = plugins or []

    async def list_plugins(self, server: ServerInfo) -> list[InstalledPlugin]:
        return list(self.plugins)


class FakeCatalog:
    def __init__(self, projects: Optional[dict[str, str]] = None,
                 versions: Optional[dict[str, str]] = None):
        self.projects = projects or {}
        self.versions = versions or {}
        self.lookups: list[str] = []

    async def find_project(self, plugin_name: str) -> Optional[str]:
        self.lookups.append(plugin_name)
        return self.projects.get(plugin_name)

    async def latest_version(self, catalog_ref: str, game_version: Optional[str] = None) -> Optional[str]:
        return self.versions.get(catalog_ref)


@pytest.fixture
def server() -> ServerInfo:
    return ServerInfo(id=SERVER_ID, name="Survival", version="1.20.4")


@pytest.fixture
def other_server() -> ServerInfo:
    return ServerInfo(id=OTHER_SERVER_ID, name="Creative", version="1.20.4")


@pytest.fixture
def store(tmp_path) -> StateStore:
    return StateStore(str(tmp_path))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stop_intents(clock) -> StopIntentRegistry:
    return StopIntentRegistry(ttl=60, clock=clock)


@pytest.fixture
def containers() -> FakeContainers:
    return FakeContainers()


@pytest.fixture
def backups() -> FakeBackups:
    return FakeBackups()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
