import asyncio
import signal
from typing import Optional

from manager.backups import LocalBackupService
from manager.config import ManagerConfig
from manager.local_server import LocalServerController
from manager.plugin_catalog import LocalPluginInventory, ModrinthCatalog
from manager.server_scheduler import AutomationScheduler
from manager.state_store import JsonServerRegistry, StateStore
from manager.utils import DiscordWebhook, LoggerSetup

class Application:
    def __init__(self, data_dir: Optional[str] = None):
        self.logger = LoggerSetup.setup('main')
        self.data_dir = data_dir or ManagerConfig.DATA_DIR
        self.scheduler: Optional[AutomationScheduler] = None

    def build(self) -> AutomationScheduler:
        store = StateStore(self.data_dir)
        notifier = DiscordWebhook(lambda server_id: store.get_settings(server_id).discord)
        return AutomationScheduler(
            registry=JsonServerRegistry(self.data_dir),
            store=store,
            containers=LocalServerController(),
            backups=LocalBackupService(),
            notifier=notifier,
            inventory=LocalPluginInventory(),
            catalog=ModrinthCatalog(),
        )

    async def start(self):
        try:
            self.scheduler = self.build()
            self.logger.info(f"Data directory: {self.data_dir}")
            self._install_signal_handlers()
            await self.scheduler.run()
        except Exception as e:
            self.logger.error(f"Application error: {e}")
            raise

    def stop(self):
        if self.scheduler:
            self.logger.info("Shutdown requested")
            self.scheduler.stop()

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                # Windows event loops; Ctrl+C surfaces as KeyboardInterrupt instead
                pass

async def main():
    app = Application()
    try:
        await app.start()
    except KeyboardInterrupt:
        print("\nShutdown requested...")
    except Exception as e:
        print(f"\nUnexpected error: {e}")

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
