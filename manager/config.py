import os
from datetime import timedelta

class ManagerConfig:
    # Paths
    DATA_DIR = os.environ.get('MCSM_DATA_DIR', os.path.join(os.getcwd(), 'data'))
    SERVERS_DIR_NAME = 'servers'
    BACKUPS_DIR_NAME = 'backups'
    REGISTRY_FILE = 'config.json'

    # Per-server persisted files
    FILE_SCHEDULE = 'schedule.json'
    FILE_AUTOMATION = 'automation.json'
    FILE_BACKUP_STATE = 'backup-state.json'
    FILE_HEALTH_STATE = 'health-state.json'
    FILE_PLUGIN_UPDATES = 'plugin-updates.json'

    # Logging
    LOG_DIR = os.environ.get('MCSM_LOG_DIR', 'logs')
    LOG_TO_FILE = os.environ.get('MCSM_LOG_TO_FILE', '1') != '0'

    # Tick Settings
    TICK_INTERVAL = 60       # Seconds between automation ticks
    LOOP_POLL = 1            # Seconds between schedule.run_pending() calls

    # Stop intent marker lifetime (seconds)
    STOP_INTENT_TTL = 60

    # Health Settings
    CRASH_DETECTION_WINDOW = timedelta(minutes=5)
    TPS_CRITICAL_RATIO = 0.5
    MEMORY_CRITICAL_PERCENT = 95.0

    # Backup Settings
    DAILY_BACKUP_MIN_SPACING = timedelta(hours=23)
    WEEKLY_BACKUP_MIN_SPACING = timedelta(days=6)
    BACKUP_TIME_TOLERANCE = 1  # minutes
    WORLD_DIRECTORIES = ['world', 'world_nether', 'world_the_end']

    # Plugin Update Settings
    MODRINTH_API_URL = 'https://api.modrinth.com/v2'
    MODRINTH_TIMEOUT = 10
    PLUGIN_SERVER_LOADERS = ['paper', 'spigot', 'bukkit', 'purpur', 'folia']
    USER_AGENT = 'mc-server-manager/1.0'
    MAX_LISTED_UPDATES = 10

    # Local Server Settings
    RCON_HOST = '127.0.0.1'
    RCON_PORT = 25575
    RCON_TIMEOUT = 2         # Seconds per RCON connect or command
    START_TIMEOUT = 300      # Seconds to wait for the java process to appear
    STOP_TIMEOUT = 30        # Seconds to wait after "stop" before killing
    SERVER_ID_DEFAULT = 'default'

    # Discord Webhook Settings
    DISCORD_TIMEOUT = 10
    DISCORD_COLOR_SUCCESS = 0x22C55E
    DISCORD_COLOR_INFO = 0x3B82F6
    DISCORD_COLOR_WARNING = 0xF59E0B
    DISCORD_COLOR_ERROR = 0xEF4444

    # Discord Message Templates
    DISCORD_SERVER_START = "🟢 Server started"
    DISCORD_SERVER_STOP = "🔴 Server stopped"
    DISCORD_SERVER_CRASH = "💥 Possible server crash detected"
    DISCORD_HEALTH_ALERT = "{icon} {metric} alert"
    DISCORD_AUTO_RESTART = "🔄 Server restarted automatically"
    DISCORD_BACKUP_COMPLETE = "💾 Backup complete"
    DISCORD_BACKUP_FAILED = "❌ Backup failed"
    DISCORD_PLUGIN_UPDATE = "📦 Plugin updates available"

    @classmethod
    def backups_dir(cls) -> str:
        return os.path.join(cls.DATA_DIR, cls.BACKUPS_DIR_NAME)
