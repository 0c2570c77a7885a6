import json
import os
import re
from typing import List, Optional

from manager.config import ManagerConfig
from manager.models import (
    AutomationSettings, BackupState, HealthState, PluginUpdateState, ServerInfo, WeeklySchedule,
)
from manager.utils import LoggerSetup

_UUID_V4 = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$', re.IGNORECASE
)

_LOAD_ERRORS = (OSError, ValueError, TypeError, AttributeError, KeyError)


def validate_server_id(server_id: str) -> str:
    if server_id == ManagerConfig.SERVER_ID_DEFAULT or (
        isinstance(server_id, str) and _UUID_V4.match(server_id)
    ):
        return server_id
    raise ValueError(f"Invalid server id: {server_id!r}")


class StateStore:
    """Per-server JSON records under ``<data_dir>/servers/<id>/``.

    Each kind of record lives in its own file. A missing file yields the
    defaults silently; a corrupt one yields the defaults with a warning.
    """

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = data_dir or ManagerConfig.DATA_DIR
        self.logger = LoggerSetup.setup('store')

    def path(self, server_id: str, filename: str) -> str:
        validate_server_id(server_id)
        return os.path.join(self.data_dir, ManagerConfig.SERVERS_DIR_NAME, server_id, filename)

    def _load(self, server_id: str, filename: str, factory):
        path = self.path(server_id, filename)
        if not os.path.exists(path):
            return factory()
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return factory.from_dict(json.load(f))
        except _LOAD_ERRORS as e:
            self.logger.warning(f"[{server_id}] Unreadable {filename}, using defaults: {e}")
            return factory()

    def _save(self, server_id: str, filename: str, record):
        path = self.path(server_id, filename)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(record.to_dict(), f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)

    def get_schedule(self, server_id: str) -> WeeklySchedule:
        return self._load(server_id, ManagerConfig.FILE_SCHEDULE, WeeklySchedule)

    def save_schedule(self, server_id: str, schedule: WeeklySchedule):
        self._save(server_id, ManagerConfig.FILE_SCHEDULE, schedule)

    def get_settings(self, server_id: str) -> AutomationSettings:
        return self._load(server_id, ManagerConfig.FILE_AUTOMATION, AutomationSettings)

    def save_settings(self, server_id: str, settings: AutomationSettings):
        self._save(server_id, ManagerConfig.FILE_AUTOMATION, settings)

    def get_backup_state(self, server_id: str) -> BackupState:
        return self._load(server_id, ManagerConfig.FILE_BACKUP_STATE, BackupState)

    def save_backup_state(self, server_id: str, state: BackupState):
        self._save(server_id, ManagerConfig.FILE_BACKUP_STATE, state)

    def get_health_state(self, server_id: str) -> HealthState:
        return self._load(server_id, ManagerConfig.FILE_HEALTH_STATE, HealthState)

    def save_health_state(self, server_id: str, state: HealthState):
        self._save(server_id, ManagerConfig.FILE_HEALTH_STATE, state)

    def get_plugin_update_state(self, server_id: str) -> PluginUpdateState:
        return self._load(server_id, ManagerConfig.FILE_PLUGIN_UPDATES, PluginUpdateState)

    def save_plugin_update_state(self, server_id: str, state: PluginUpdateState):
        self._save(server_id, ManagerConfig.FILE_PLUGIN_UPDATES, state)


class JsonServerRegistry:
    """Reads the server list from ``<data_dir>/config.json``."""

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = data_dir or ManagerConfig.DATA_DIR
        self.logger = LoggerSetup.setup('store')

    def list_servers(self) -> List[ServerInfo]:
        path = os.path.join(self.data_dir, ManagerConfig.REGISTRY_FILE)
        if not os.path.exists(path):
            return []
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return [ServerInfo.from_dict(entry) for entry in data.get('servers', [])]
        except _LOAD_ERRORS as e:
            self.logger.error(f"Failed to read server registry {path}: {e}")
            return []

    def get_server(self, server_id: str) -> Optional[ServerInfo]:
        for server in self.list_servers():
            if server.id == server_id:
                return server
        return None
