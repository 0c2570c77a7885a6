import asyncio
import os
import subprocess
from typing import Dict, Optional

import psutil

from manager.config import ManagerConfig
from manager.models import ServerInfo, ServerStatus
from manager.utils import LoggerSetup, RconManager


class LocalServerController:
    """Controls Minecraft servers running as local java processes.

    A server's process is the java process whose working directory is the
    server directory. Console access goes through RCON.
    """

    def __init__(self):
        self.logger = LoggerSetup.setup('server')
        self._rcon: Dict[str, RconManager] = {}

    def _rcon_for(self, server: ServerInfo) -> RconManager:
        rcon = self._rcon.get(server.id)
        if rcon is None:
            rcon = RconManager(server.rcon_host, server.rcon_password, server.rcon_port)
            self._rcon[server.id] = rcon
        return rcon

    def _get_java_process(self, server: ServerInfo) -> Optional[psutil.Process]:
        if not server.directory:
            return None
        directory = os.path.realpath(server.directory)
        for proc in psutil.process_iter(['pid', 'name']):
            try:
                if 'java' in (proc.info['name'] or '').lower() and os.path.realpath(proc.cwd()) == directory:
                    return proc
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return None

    async def get_status(self, server: ServerInfo) -> ServerStatus:
        status = ServerStatus()
        proc = await asyncio.to_thread(self._get_java_process, server)
        if not proc:
            return status

        status.running = True
        try:
            status.memory_used = proc.memory_info().rss
            status.memory_total = psutil.virtual_memory().total
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            self.logger.error(f"[{server.id}] Status collection failed: {e}")

        # mcrcon installs a SIGALRM handler, so it has to run on the main thread
        status.tps = self._rcon_for(server).query_tps()
        return status

    async def start(self, server: ServerInfo):
        if not server.start_command or not server.directory:
            raise RuntimeError(f"Server {server.id} has no start command or directory")

        if await asyncio.to_thread(self._get_java_process, server):
            self.logger.info(f"[{server.id}] Server already running")
            return

        self.logger.info(f"[{server.id}] Starting Minecraft server...")
        subprocess.Popen(server.start_command, cwd=server.directory,
                         stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

        for _ in range(ManagerConfig.START_TIMEOUT // 10):
            await asyncio.sleep(10)
            if await asyncio.to_thread(self._get_java_process, server) is not None:
                self.logger.info(f"[{server.id}] Server process is up")
                return

        raise RuntimeError(f"Server {server.id} failed to start within {ManagerConfig.START_TIMEOUT}s")

    async def stop(self, server: ServerInfo):
        proc = await asyncio.to_thread(self._get_java_process, server)
        if proc is None:
            return

        self.logger.info(f"[{server.id}] Sending stop command")
        rcon = self._rcon_for(server)
        rcon.send_command("stop")
        rcon.close()

        try:
            await asyncio.to_thread(proc.wait, ManagerConfig.STOP_TIMEOUT)
        except psutil.TimeoutExpired:
            self.logger.warning(f"[{server.id}] Server did not stop in time, killing process")
            proc.kill()
        except psutil.NoSuchProcess:
            pass

    async def restart(self, server: ServerInfo):
        await self.stop(server)
        await self.start(server)
