import asyncio
import logging
import os
import re
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import urlparse

import mcrcon
import requests

from manager.config import ManagerConfig
from manager.models import DiscordSettings, NotificationKind


class LoggerSetup:
    @staticmethod
    def setup(name):
        logger = logging.getLogger(name)
        if logger.handlers:
            return logger
        logger.setLevel(logging.INFO)

        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        handlers = [logging.StreamHandler()]
        if ManagerConfig.LOG_TO_FILE:
            os.makedirs(ManagerConfig.LOG_DIR, exist_ok=True)
            handlers.append(logging.FileHandler(
                os.path.join(ManagerConfig.LOG_DIR, f'{name}_{datetime.now():%Y%m%d}.log'),
                encoding='utf-8'
            ))

        for handler in handlers:
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        return logger


def format_size(size: Optional[int]) -> str:
    if size is None:
        return '-'
    value = float(size)
    for unit in ('B', 'KB', 'MB', 'GB'):
        if value < 1024:
            return f"{value:.1f} {unit}" if unit != 'B' else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} TB"


_COLOR_CODE = re.compile(r'§.')
_PAPER_TPS = re.compile(r'TPS from last ([\w\s,]+):\s*\*?([\d.]+)\s*,\s*\*?([\d.]+)\s*,\s*\*?([\d.]+)(?:\s*,\s*\*?([\d.]+))?')
_FORGE_TPS = re.compile(r'Overall:.*Mean TPS:\s*([\d.]+)')


def parse_tps(response: Optional[str]) -> Optional[float]:
    """1-minute TPS from a Paper/Spigot ``tps`` or Forge ``forge tps`` reply."""
    if not response:
        return None
    text = _COLOR_CODE.sub('', response)

    match = _PAPER_TPS.search(text)
    if match:
        # Paper 1.20+ reports 5s, 1m, 5m, 15m; older builds report 1m, 5m, 15m
        value = match.group(3) if match.group(1).strip().startswith('5s') else match.group(2)
        return float(value)

    match = _FORGE_TPS.search(text)
    if match:
        return float(match.group(1))
    return None


class RconManager:
    def __init__(self, host, password, port):
        self.host = host
        self.password = password
        self.port = port
        self.rcon = None
        self.connected = False
        self.logger = LoggerSetup.setup('rcon')

    def _connect(self):
        try:
            self.rcon = mcrcon.MCRcon(self.host, self.password, self.port, timeout=ManagerConfig.RCON_TIMEOUT)
            self.rcon.connect()
            self.connected = True
            self.logger.info(f"RCON connection established ({self.host}:{self.port})")
        except Exception as e:
            self.logger.error(f"RCON connection failed ({self.host}:{self.port}): {e}")
            self.rcon = None
            self.connected = False

    def send_command(self, command: str) -> Optional[str]:
        if not self.connected:
            self._connect()

        try:
            if self.connected and self.rcon:
                return self.rcon.command(command)
        except Exception as e:
            self.logger.error(f"RCON command failed: {e}")
            self.close()
        return None

    def query_tps(self) -> Optional[float]:
        tps = parse_tps(self.send_command("tps"))
        if tps is None:
            tps = parse_tps(self.send_command("forge tps"))
        return tps

    def close(self):
        if self.rcon:
            try:
                self.rcon.disconnect()
            except Exception as e:
                self.logger.debug(f"RCON disconnect failed: {e}")
        self.rcon = None
        self.connected = False


def is_valid_webhook_url(url: str) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return (
        parsed.scheme == 'https'
        and parsed.hostname in ('discord.com', 'discordapp.com')
        and parsed.path.startswith('/api/webhooks/')
    )


_KIND_FLAGS = {
    NotificationKind.SERVER_START: 'notify_on_start',
    NotificationKind.SERVER_STOP: 'notify_on_stop',
    NotificationKind.SERVER_CRASH: 'notify_on_crash',
    NotificationKind.HEALTH_ALERT: 'notify_on_alert',
    NotificationKind.AUTO_RESTART: 'notify_on_alert',
    NotificationKind.BACKUP_COMPLETE: 'notify_on_backup',
    NotificationKind.PLUGIN_UPDATE: 'notify_on_plugin_update',
}


class DiscordWebhook:
    """Notifier that posts one embed per event to a server's Discord webhook."""

    def __init__(self, settings_provider: Callable[[str], DiscordSettings]):
        self.settings_provider = settings_provider
        self.logger = LoggerSetup.setup('discord')

    def is_enabled(self, settings: DiscordSettings, kind: NotificationKind) -> bool:
        if not settings.enabled or not settings.webhook_url:
            return False
        return getattr(settings, _KIND_FLAGS[kind], False)

    async def notify(self, server_id: str, kind: NotificationKind, payload: dict) -> bool:
        try:
            settings = self.settings_provider(server_id)
            if not self.is_enabled(settings, kind):
                return False
            embed = self.build_embed(server_id, kind, payload)
            if embed is None:
                return False
            return await self.send_embed(settings, embed)
        except Exception as e:
            self.logger.error(f"[{server_id}] Error sending Discord {kind.value} notification: {e}")
            return False

    async def send_embed(self, settings: DiscordSettings, embed: dict) -> bool:
        if not is_valid_webhook_url(settings.webhook_url):
            self.logger.warning("Invalid Discord webhook URL rejected")
            return False

        url = settings.webhook_url
        if settings.thread_id:
            url = f"{url}?thread_id={settings.thread_id}"
        embed.setdefault('timestamp', datetime.now().astimezone().isoformat())

        response = await asyncio.to_thread(
            requests.post, url, json={"embeds": [embed]}, timeout=ManagerConfig.DISCORD_TIMEOUT
        )
        if not response.ok:
            self.logger.error(f"Discord webhook send failed: {response.status_code}")
            return False
        self.logger.info(f"Discord webhook sent: {embed['title']}")
        return True

    def build_embed(self, server_id: str, kind: NotificationKind, payload: dict) -> Optional[dict]:
        name = payload.get('server_name', server_id)
        footer = {"text": f"Server ID: {server_id}"}

        if kind == NotificationKind.SERVER_START:
            return {"title": ManagerConfig.DISCORD_SERVER_START, "description": f"**{name}** is now running",
                    "color": ManagerConfig.DISCORD_COLOR_SUCCESS, "footer": footer}

        if kind == NotificationKind.SERVER_STOP:
            return {"title": ManagerConfig.DISCORD_SERVER_STOP, "description": f"**{name}** has stopped",
                    "color": ManagerConfig.DISCORD_COLOR_INFO, "footer": footer}

        if kind == NotificationKind.SERVER_CRASH:
            embed = {"title": ManagerConfig.DISCORD_SERVER_CRASH,
                     "description": f"**{name}** may have crashed",
                     "color": ManagerConfig.DISCORD_COLOR_ERROR, "footer": footer}
            if payload.get('reason'):
                embed["fields"] = [{"name": "Reason", "value": payload['reason'], "inline": False}]
            return embed

        if kind == NotificationKind.HEALTH_ALERT:
            is_tps = payload.get('metric') == 'tps'
            critical = payload.get('severity') == 'critical'
            unit = '' if is_tps else '%'
            return {
                "title": ManagerConfig.DISCORD_HEALTH_ALERT.format(
                    icon='🚨' if critical else '⚠️', metric='TPS' if is_tps else 'Memory'),
                "description": f"Performance degradation detected on **{name}**",
                "color": ManagerConfig.DISCORD_COLOR_ERROR if critical else ManagerConfig.DISCORD_COLOR_WARNING,
                "fields": [
                    {"name": "Current TPS" if is_tps else "Memory usage",
                     "value": f"{payload.get('value', 0):.1f}{unit}", "inline": True},
                    {"name": "Threshold", "value": f"{payload.get('threshold')}{unit}", "inline": True},
                    {"name": "Severity", "value": 'critical' if critical else 'warning', "inline": True},
                ] + ([{"name": "Details", "value": payload['reason'], "inline": False}]
                     if payload.get('reason') else []),
                "footer": footer,
            }

        if kind == NotificationKind.AUTO_RESTART:
            return {"title": ManagerConfig.DISCORD_AUTO_RESTART,
                    "description": f"**{name}** was restarted automatically",
                    "color": ManagerConfig.DISCORD_COLOR_WARNING,
                    "fields": [{"name": "Reason", "value": payload.get('reason', '-'), "inline": False}],
                    "footer": footer}

        if kind == NotificationKind.BACKUP_COMPLETE:
            fields = [{"name": "Backup type", "value": payload.get('backup_type', '-'), "inline": True}]
            if payload.get('success'):
                fields.append({"name": "Size", "value": format_size(payload.get('size')), "inline": True})
                return {"title": ManagerConfig.DISCORD_BACKUP_COMPLETE,
                        "description": f"Backup of **{name}** finished",
                        "color": ManagerConfig.DISCORD_COLOR_SUCCESS, "fields": fields, "footer": footer}
            return {"title": ManagerConfig.DISCORD_BACKUP_FAILED,
                    "description": f"Backup of **{name}** failed",
                    "color": ManagerConfig.DISCORD_COLOR_ERROR, "fields": fields, "footer": footer}

        if kind == NotificationKind.PLUGIN_UPDATE:
            updates = payload.get('updates') or []
            if not updates:
                return None
            lines = "\n".join(
                f"• **{u['name']}**: {u['current_version']} → {u['latest_version']}"
                for u in updates[:ManagerConfig.MAX_LISTED_UPDATES]
            )
            return {"title": ManagerConfig.DISCORD_PLUGIN_UPDATE,
                    "description": f"{len(updates)} plugin update(s) found for **{name}**",
                    "color": ManagerConfig.DISCORD_COLOR_INFO,
                    "fields": [{"name": "Updatable plugins", "value": lines, "inline": False}],
                    "footer": footer}

        return None
