from datetime import datetime
from typing import Awaitable, Callable, Optional

from manager.interfaces import ContainerController
from manager.models import Action, ServerInfo
from manager.schedule_window import is_within_window
from manager.state_store import StateStore
from manager.stop_intent import StopIntentRegistry
from manager.utils import LoggerSetup

Hook = Callable[[ServerInfo, datetime], Awaitable[None]]


class UptimeScheduler:
    """Starts or stops a server so that it runs exactly inside its weekly windows."""

    def __init__(self, containers: ContainerController, store: StateStore,
                 stop_intents: StopIntentRegistry,
                 on_start: Optional[Hook] = None, on_stop: Optional[Hook] = None):
        self.containers = containers
        self.store = store
        self.stop_intents = stop_intents
        self.on_start = on_start
        self.on_stop = on_stop
        self.logger = LoggerSetup.setup('uptime')

    async def reconcile(self, server: ServerInfo, now: datetime) -> Action:
        schedule = self.store.get_schedule(server.id)
        if not schedule.enabled:
            return Action.NONE

        should_run = is_within_window(schedule, now)
        status = await self.containers.get_status(server)

        if should_run and not status.running:
            action = Action.START
        elif not should_run and status.running:
            action = Action.STOP
        else:
            return Action.NONE

        if action == Action.START:
            self.logger.info(f"[{server.id}] Starting server {server.name} (inside uptime window)")
            try:
                await self.containers.start(server)
            except Exception as e:
                self.logger.error(f"[{server.id}] Scheduled start failed: {e}")
                return action
            if self.on_start:
                await self.on_start(server, now)
        else:
            self.logger.info(f"[{server.id}] Stopping server {server.name} (outside uptime window)")
            self.stop_intents.mark(server.id)
            try:
                await self.containers.stop(server)
            except Exception as e:
                self.logger.error(f"[{server.id}] Scheduled stop failed: {e}")
                return action
            self.stop_intents.mark(server.id)
            if self.on_stop:
                try:
                    await self.on_stop(server, now)
                finally:
                    self.stop_intents.mark(server.id)

        return action
