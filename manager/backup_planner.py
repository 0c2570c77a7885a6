"""Recurring backup decisions, execution bookkeeping and retention."""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from manager.config import ManagerConfig
from manager.interfaces import BackupService, Notifier
from manager.models import (
    BackupInfo, BackupKind, BackupPlan, BackupState, NotificationKind, Retention, ServerInfo,
)
from manager.schedule_window import MINUTES_PER_DAY, minute_of_day, parse_time, weekday_of
from manager.state_store import StateStore
from manager.utils import LoggerSetup


def _scheduled_minutes(plan: BackupPlan) -> int:
    value = plan.daily_time if plan.schedule_type == 'daily' else plan.weekly_time
    minutes = parse_time(value)
    # 24:00 is a window sentinel, not a time a backup can fire at
    return -1 if minutes == MINUTES_PER_DAY else minutes


def min_spacing(plan: BackupPlan) -> timedelta:
    if plan.schedule_type == 'daily':
        return ManagerConfig.DAILY_BACKUP_MIN_SPACING
    return ManagerConfig.WEEKLY_BACKUP_MIN_SPACING


def should_run_scheduled(plan: BackupPlan, state: BackupState, now: datetime) -> bool:
    if not plan.enabled or plan.schedule_type not in ('daily', 'weekly'):
        return False

    scheduled = _scheduled_minutes(plan)
    if scheduled == -1:
        return False
    if plan.schedule_type == 'weekly' and weekday_of(now) != plan.weekly_day:
        return False

    # Ticks may run late but never early
    late_by = minute_of_day(now) - scheduled
    if late_by < 0 or late_by > ManagerConfig.BACKUP_TIME_TOLERANCE:
        return False

    if state.last_backup_time is not None:
        if now - state.last_backup_time < min_spacing(plan):
            return False

    return True


def next_run_time(plan: BackupPlan, now: datetime) -> Optional[datetime]:
    if not plan.enabled or plan.schedule_type not in ('daily', 'weekly'):
        return None

    scheduled = _scheduled_minutes(plan)
    if scheduled == -1:
        return None

    current = minute_of_day(now)
    if plan.schedule_type == 'daily':
        days_ahead = 1 if current >= scheduled else 0
    else:
        days_ahead = (plan.weekly_day - weekday_of(now)) % 7
        if days_ahead == 0 and current >= scheduled:
            days_ahead = 7

    target = (now + timedelta(days=days_ahead)).replace(
        hour=scheduled // 60, minute=scheduled % 60, second=0, microsecond=0)
    return _relocalize(target, now)


def _relocalize(target: datetime, now: datetime) -> datetime:
    """Re-resolve a fixed system-local offset (from ``datetime.now().astimezone()``)
    for the target date, so a DST change in between keeps the wall-clock time."""
    if isinstance(now.tzinfo, timezone) and now.utcoffset() == now.astimezone().utcoffset():
        return target.replace(tzinfo=None).astimezone()
    return target


def select_expired(backups: List[BackupInfo], retention: Retention, now: datetime) -> List[BackupInfo]:
    """Backups beyond ``max_count`` by recency, plus any older than ``max_age_days``."""
    max_age = timedelta(days=retention.max_age_days)
    newest_first = sorted(backups, key=lambda b: b.created_at, reverse=True)
    return [
        backup for index, backup in enumerate(newest_first)
        if index >= retention.max_count or now - backup.created_at > max_age
    ]


class BackupRunner:
    def __init__(self, backups: BackupService, store: StateStore, notifier: Notifier):
        self.backups = backups
        self.store = store
        self.notifier = notifier
        self.logger = LoggerSetup.setup('backup')

    async def _create(self, server: ServerInfo, kind: BackupKind) -> Optional[BackupInfo]:
        try:
            backup = await self.backups.create_backup(server, kind)
            self.logger.info(f"[{server.id}] Backup completed: {backup.filename}")
            return backup
        except Exception as e:
            self.logger.error(f"[{server.id}] Backup failed: {e}")
            return None

    async def _notify(self, server: ServerInfo, kind: BackupKind, backup: Optional[BackupInfo]):
        await self.notifier.notify(server.id, NotificationKind.BACKUP_COMPLETE, {
            'server_name': server.name,
            'backup_type': kind.value,
            'size': backup.size if backup else None,
            'success': backup is not None,
        })

    async def run_scheduled(self, server: ServerInfo, plan: BackupPlan, now: datetime) -> Optional[BackupInfo]:
        self.logger.info(f"[{server.id}] Running scheduled {plan.backup_type.value} backup")
        backup = await self._create(server, plan.backup_type)

        state = self.store.get_backup_state(server.id)
        state.last_backup_time = now
        state.last_backup_type = plan.backup_type
        state.last_backup_success = backup is not None
        state.next_scheduled_backup = next_run_time(plan, now)
        self.store.save_backup_state(server.id, state)

        await self._notify(server, plan.backup_type, backup)

        if backup is not None:
            await self.cleanup(server, plan.retention, now)
        return backup

    async def run_event(self, server: ServerInfo, plan: BackupPlan, event: str,
                        now: datetime) -> Optional[BackupInfo]:
        """Backup triggered by a start/stop; skips the time-of-day gate."""
        if event == 'start' and not plan.backup_on_start:
            return None
        if event == 'stop' and not plan.backup_on_stop:
            return None

        self.logger.info(f"[{server.id}] Running {event} backup")
        backup = await self._create(server, plan.backup_type)

        state = self.store.get_backup_state(server.id)
        state.last_backup_time = now
        state.last_backup_type = plan.backup_type
        state.last_backup_success = backup is not None
        self.store.save_backup_state(server.id, state)

        if event == 'stop':
            await self._notify(server, plan.backup_type, backup)
        return backup

    async def run_manual(self, server: ServerInfo, kind: BackupKind, now: datetime) -> Optional[BackupInfo]:
        backup = await self._create(server, kind)

        state = self.store.get_backup_state(server.id)
        state.last_backup_time = now
        state.last_backup_type = BackupKind.MANUAL
        state.last_backup_success = backup is not None
        self.store.save_backup_state(server.id, state)
        return backup

    async def cleanup(self, server: ServerInfo, retention: Retention, now: datetime) -> int:
        try:
            existing = await self.backups.list_backups(server)
        except Exception as e:
            self.logger.error(f"[{server.id}] Could not list backups for cleanup: {e}")
            return 0

        deleted = 0
        for backup in select_expired(existing, retention, now):
            try:
                if await self.backups.delete_backup(server, backup.id):
                    deleted += 1
                    self.logger.info(f"[{server.id}] Deleted old backup: {backup.filename}")
                else:
                    self.logger.warning(f"[{server.id}] Backup not deleted: {backup.filename}")
            except Exception as e:
                self.logger.error(f"[{server.id}] Failed to delete backup {backup.filename}: {e}")

        if deleted:
            self.logger.info(f"[{server.id}] Cleaned up {deleted} old backups")
        return deleted
