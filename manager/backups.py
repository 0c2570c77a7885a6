import asyncio
import os
import tarfile
from datetime import datetime, timezone
from typing import List

from manager.config import ManagerConfig
from manager.models import BackupInfo, BackupKind, ServerInfo
from manager.utils import LoggerSetup

ARCHIVE_SUFFIX = '.tar.gz'


class LocalBackupService:
    """tar.gz archives under ``<backups_dir>/<server id>/``."""

    def __init__(self, backups_dir: str = None):
        self.backups_dir = backups_dir or ManagerConfig.backups_dir()
        self.logger = LoggerSetup.setup('backup')

    def _server_dir(self, server: ServerInfo) -> str:
        return os.path.join(self.backups_dir, server.id)

    def _info(self, path: str) -> BackupInfo:
        filename = os.path.basename(path)
        stats = os.stat(path)
        return BackupInfo(
            id=filename[:-len(ARCHIVE_SUFFIX)],
            filename=filename,
            size=stats.st_size,
            created_at=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
            kind=BackupKind.FULL if filename.startswith('backup-full-') else BackupKind.WORLD,
        )

    def _archive(self, server: ServerInfo, kind: BackupKind, path: str):
        with tarfile.open(path, 'w:gz') as tar:
            if kind == BackupKind.FULL:
                for entry in sorted(os.listdir(server.directory)):
                    tar.add(os.path.join(server.directory, entry), arcname=entry)
                return
            added = False
            for name in ManagerConfig.WORLD_DIRECTORIES:
                world = os.path.join(server.directory, name)
                if os.path.isdir(world):
                    tar.add(world, arcname=name)
                    added = True
            if not added:
                raise FileNotFoundError(f"No world directory found in {server.directory}")

    async def create_backup(self, server: ServerInfo, kind: BackupKind) -> BackupInfo:
        if not server.directory or not os.path.isdir(server.directory):
            raise FileNotFoundError(f"Server directory not found: {server.directory}")

        target_dir = self._server_dir(server)
        os.makedirs(target_dir, exist_ok=True)
        timestamp = datetime.now().strftime('%Y%m%d-%H%M%S')
        prefix = 'backup-full' if kind == BackupKind.FULL else 'backup'
        path = os.path.join(target_dir, f"{prefix}-{timestamp}{ARCHIVE_SUFFIX}")

        try:
            await asyncio.to_thread(self._archive, server, kind, path)
        except Exception:
            if os.path.exists(path):
                os.remove(path)
            raise
        return self._info(path)

    async def list_backups(self, server: ServerInfo) -> List[BackupInfo]:
        target_dir = self._server_dir(server)
        if not os.path.isdir(target_dir):
            return []
        backups = [
            self._info(os.path.join(target_dir, f))
            for f in os.listdir(target_dir) if f.endswith(ARCHIVE_SUFFIX)
        ]
        return sorted(backups, key=lambda b: b.created_at, reverse=True)

    async def delete_backup(self, server: ServerInfo, backup_id: str) -> bool:
        if os.sep in backup_id or backup_id.startswith('.'):
            return False
        path = os.path.join(self._server_dir(server), f"{backup_id}{ARCHIVE_SUFFIX}")
        if not os.path.exists(path):
            return False
        os.remove(path)
        return True
