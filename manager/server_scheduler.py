import asyncio
from datetime import datetime
from typing import Callable, Dict, Optional

import schedule

from manager.backup_planner import BackupRunner, should_run_scheduled
from manager.config import ManagerConfig
from manager.interfaces import (
    BackupService, ContainerController, Notifier, PluginCatalog, PluginInventory, ServerRegistry,
)
from manager.models import Action, AutomationSettings, BackupKind, NotificationKind, ServerInfo
from manager.plugin_updates import PluginUpdateChecker, should_check
from manager.server_monitor import HealthMonitor
from manager.state_store import StateStore
from manager.stop_intent import StopIntentRegistry
from manager.uptime import UptimeScheduler
from manager.utils import LoggerSetup


def local_now() -> datetime:
    return datetime.now().astimezone()


class AutomationScheduler:
    """Runs one automation tick per minute across every registered server.

    Servers are processed one after another; each sub-check (uptime, backup,
    health, plugin updates) is isolated so a failure is logged and the rest
    of the tick carries on.
    """

    def __init__(self, registry: ServerRegistry, store: StateStore,
                 containers: ContainerController, backups: BackupService,
                 notifier: Notifier, inventory: PluginInventory, catalog: PluginCatalog,
                 clock: Callable[[], datetime] = local_now,
                 stop_intents: Optional[StopIntentRegistry] = None):
        self.registry = registry
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.logger = LoggerSetup.setup('scheduler')

        self.stop_intents = stop_intents if stop_intents is not None else StopIntentRegistry()
        self.last_health_check: Dict[str, datetime] = {}

        self.uptime = UptimeScheduler(containers, store, self.stop_intents,
                                      on_start=self.on_server_start, on_stop=self.on_server_stop)
        self.backup_runner = BackupRunner(backups, store, notifier)
        self.health = HealthMonitor(containers, store, notifier, self.stop_intents)
        self.plugin_checker = PluginUpdateChecker(inventory, catalog, store, notifier)

        self.scheduler = schedule.Scheduler()
        self._tick_lock = asyncio.Lock()
        self._tick_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------ lifecycle

    async def run(self):
        self.logger.info(f"Starting automation scheduler (interval: {ManagerConfig.TICK_INTERVAL}s)")
        self._stop_event.clear()

        self._launch_tick()
        self.scheduler.every(ManagerConfig.TICK_INTERVAL).seconds.do(self._launch_tick)

        try:
            while not self._stop_event.is_set():
                self.scheduler.run_pending()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=ManagerConfig.LOOP_POLL)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.scheduler.clear()
            if self._tick_task is not None and not self._tick_task.done():
                self.logger.info("Waiting for the running tick to finish")
                await self._tick_task
            self.logger.info("Automation scheduler stopped")

    def stop(self):
        self._stop_event.set()

    @property
    def running_tick(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def _launch_tick(self):
        if self.running_tick:
            self.logger.warning("Previous tick still running, skipping this one")
            return
        self._tick_task = asyncio.create_task(self.tick())

    # ------------------------------------------------------------ tick

    async def tick(self, now: Optional[datetime] = None):
        async with self._tick_lock:
            now = now or self.clock()
            try:
                servers = self.registry.list_servers()
            except Exception as e:
                self.logger.error(f"Error listing servers: {e}")
                return

            for server in servers:
                try:
                    await self.process_server(server, now)
                except Exception as e:
                    self.logger.error(f"[{server.id}] Error processing server: {e}")

    async def process_server(self, server: ServerInfo, now: datetime):
        settings = self.store.get_settings(server.id)

        action = await self._guarded(server, 'uptime', self.uptime.reconcile(server, now))
        await self._guarded(server, 'backup', self._check_backup(server, settings, now))
        if action == Action.STOP:
            # backups above may outlast the stop-intent ttl
            self.stop_intents.mark(server.id)
        await self._guarded(server, 'health', self._check_health(server, settings, now))
        await self._guarded(server, 'plugins', self._check_plugins(server, settings, now))

    async def _guarded(self, server: ServerInfo, subsystem: str, work):
        try:
            return await work
        except Exception as e:
            self.logger.exception(f"[{server.id}] {subsystem} check failed: {e}")
            return None

    async def _check_backup(self, server: ServerInfo, settings: AutomationSettings, now: datetime):
        plan = settings.backup
        if not plan.enabled:
            return
        state = self.store.get_backup_state(server.id)
        if should_run_scheduled(plan, state, now):
            self.logger.info(f"[{server.id}] Running scheduled backup")
            await self.backup_runner.run_scheduled(server, plan, now)

    async def _check_health(self, server: ServerInfo, settings: AutomationSettings, now: datetime):
        policy = settings.health_check
        if not policy.enabled:
            return
        last = self.last_health_check.get(server.id)
        if last is not None and (now - last).total_seconds() < policy.check_interval_seconds:
            return
        await self.health.check(server, policy, now)
        self.last_health_check[server.id] = now

    async def _check_plugins(self, server: ServerInfo, settings: AutomationSettings, now: datetime):
        policy = settings.plugin_update
        if not policy.enabled:
            return
        state = self.store.get_plugin_update_state(server.id)
        if should_check(policy, state, now):
            self.logger.info(f"[{server.id}] Running plugin update check")
            await self.plugin_checker.check(server, policy, now)

    # ------------------------------------------------------------ hooks

    def mark_stopping(self, server_id: str):
        """Call before an operator-initiated stop so it is not taken for a crash."""
        self.stop_intents.mark(server_id)

    def forget_server(self, server_id: str):
        """Drop in-memory state for a deleted server."""
        self.last_health_check.pop(server_id, None)
        self.stop_intents.discard(server_id)

    async def on_server_start(self, server: ServerInfo, now: Optional[datetime] = None):
        now = now or self.clock()
        self.logger.info(f"[{server.id}] Server start event for {server.name}")
        await self.notifier.notify(server.id, NotificationKind.SERVER_START, {'server_name': server.name})
        settings = self.store.get_settings(server.id)
        await self.backup_runner.run_event(server, settings.backup, 'start', now)

    async def on_server_stop(self, server: ServerInfo, now: Optional[datetime] = None):
        now = now or self.clock()
        self.logger.info(f"[{server.id}] Server stop event for {server.name}")
        settings = self.store.get_settings(server.id)
        await self.backup_runner.run_event(server, settings.backup, 'stop', now)
        await self.notifier.notify(server.id, NotificationKind.SERVER_STOP, {'server_name': server.name})

    async def backup_now(self, server: ServerInfo, kind: BackupKind = BackupKind.WORLD):
        return await self.backup_runner.run_manual(server, kind, self.clock())
