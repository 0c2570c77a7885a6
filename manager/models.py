from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from manager.config import ManagerConfig


class Action(str, Enum):
    NONE = "none"
    START = "start"
    STOP = "stop"


class HealthStatus(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class BackupKind(str, Enum):
    WORLD = "world"
    FULL = "full"
    MANUAL = "manual"


class NotificationKind(str, Enum):
    SERVER_START = "server_start"
    SERVER_STOP = "server_stop"
    SERVER_CRASH = "server_crash"
    HEALTH_ALERT = "health_alert"
    AUTO_RESTART = "auto_restart"
    BACKUP_COMPLETE = "backup_complete"
    PLUGIN_UPDATE = "plugin_update"


def parse_timestamp(value) -> Optional[datetime]:
    """ISO-8601 string -> aware datetime, None for anything unparseable."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.astimezone()
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.astimezone()


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _known(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


# ---------------------------------------------------------------- settings

@dataclass
class DayWindow:
    enabled: bool = False
    start: str = "20:00"
    end: str = "23:00"

    @classmethod
    def from_dict(cls, data: dict) -> "DayWindow":
        return cls(**_known(cls, data or {}))


def _default_windows() -> Dict[int, DayWindow]:
    return {day: DayWindow() for day in range(7)}


@dataclass
class WeeklySchedule:
    """Uptime windows keyed by weekday, 0 = Sunday ... 6 = Saturday."""
    enabled: bool = False
    timezone: str = "Asia/Tokyo"
    windows: Dict[int, DayWindow] = field(default_factory=_default_windows)

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "timezone": self.timezone,
            "windows": {str(day): asdict(window) for day, window in self.windows.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeeklySchedule":
        windows = _default_windows()
        for day, window in (data.get("windows") or {}).items():
            windows[int(day)] = DayWindow.from_dict(window)
        return cls(
            enabled=bool(data.get("enabled", False)),
            timezone=data.get("timezone", "Asia/Tokyo"),
            windows=windows,
        )


@dataclass
class Retention:
    max_count: int = 7
    max_age_days: int = 30


@dataclass
class BackupPlan:
    enabled: bool = False
    schedule_type: str = "daily"  # daily | weekly
    daily_time: str = "04:00"
    weekly_day: int = 0
    weekly_time: str = "04:00"
    backup_on_start: bool = False
    backup_on_stop: bool = True
    retention: Retention = field(default_factory=Retention)
    backup_type: BackupKind = BackupKind.WORLD

    def to_dict(self) -> dict:
        data = asdict(self)
        data["backup_type"] = self.backup_type.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BackupPlan":
        values = _known(cls, data or {})
        values["retention"] = Retention(**_known(Retention, values.get("retention") or {}))
        values["backup_type"] = BackupKind(values.get("backup_type", BackupKind.WORLD.value))
        return cls(**values)


@dataclass
class HealthPolicy:
    enabled: bool = False
    check_interval_seconds: int = 60
    tps_threshold: float = 15.0
    memory_threshold_percent: float = 90.0
    consecutive_failures: int = 3
    auto_restart: bool = False
    restart_cooldown_minutes: int = 10
    crash_detection: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "HealthPolicy":
        return cls(**_known(cls, data or {}))


@dataclass
class PluginUpdatePolicy:
    enabled: bool = False
    check_interval_hours: float = 24
    auto_install: bool = False
    notify_on_update: bool = True
    exclude_plugins: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "PluginUpdatePolicy":
        return cls(**_known(cls, data or {}))


@dataclass
class DiscordSettings:
    enabled: bool = False
    webhook_url: str = ""
    thread_id: str = ""
    notify_on_start: bool = True
    notify_on_stop: bool = True
    notify_on_crash: bool = True
    notify_on_alert: bool = True
    notify_on_backup: bool = True
    notify_on_plugin_update: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "DiscordSettings":
        return cls(**_known(cls, data or {}))


@dataclass
class AutomationSettings:
    discord: DiscordSettings = field(default_factory=DiscordSettings)
    backup: BackupPlan = field(default_factory=BackupPlan)
    plugin_update: PluginUpdatePolicy = field(default_factory=PluginUpdatePolicy)
    health_check: HealthPolicy = field(default_factory=HealthPolicy)

    def to_dict(self) -> dict:
        return {
            "discord": asdict(self.discord),
            "backup": self.backup.to_dict(),
            "plugin_update": asdict(self.plugin_update),
            "health_check": asdict(self.health_check),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AutomationSettings":
        return cls(
            discord=DiscordSettings.from_dict(data.get("discord")),
            backup=BackupPlan.from_dict(data.get("backup")),
            plugin_update=PluginUpdatePolicy.from_dict(data.get("plugin_update")),
            health_check=HealthPolicy.from_dict(data.get("health_check")),
        )


# ---------------------------------------------------------------- state

@dataclass
class BackupState:
    last_backup_time: Optional[datetime] = None
    last_backup_type: Optional[BackupKind] = None
    last_backup_success: bool = False
    next_scheduled_backup: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "last_backup_time": format_timestamp(self.last_backup_time),
            "last_backup_type": self.last_backup_type.value if self.last_backup_type else None,
            "last_backup_success": self.last_backup_success,
            "next_scheduled_backup": format_timestamp(self.next_scheduled_backup),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BackupState":
        kind = data.get("last_backup_type")
        return cls(
            last_backup_time=parse_timestamp(data.get("last_backup_time")),
            last_backup_type=BackupKind(kind) if kind else None,
            last_backup_success=bool(data.get("last_backup_success", False)),
            next_scheduled_backup=parse_timestamp(data.get("next_scheduled_backup")),
        )


@dataclass
class HealthState:
    last_check_time: Optional[datetime] = None
    consecutive_failures: int = 0
    last_restart_time: Optional[datetime] = None
    current_status: HealthStatus = HealthStatus.UNKNOWN
    last_tps: Optional[float] = None
    last_memory_percent: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "last_check_time": format_timestamp(self.last_check_time),
            "consecutive_failures": self.consecutive_failures,
            "last_restart_time": format_timestamp(self.last_restart_time),
            "current_status": self.current_status.value,
            "last_tps": self.last_tps,
            "last_memory_percent": self.last_memory_percent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HealthState":
        return cls(
            last_check_time=parse_timestamp(data.get("last_check_time")),
            consecutive_failures=int(data.get("consecutive_failures") or 0),
            last_restart_time=parse_timestamp(data.get("last_restart_time")),
            current_status=HealthStatus(data.get("current_status") or HealthStatus.UNKNOWN.value),
            last_tps=data.get("last_tps"),
            last_memory_percent=data.get("last_memory_percent"),
        )


@dataclass
class PluginUpdateInfo:
    plugin_name: str
    current_version: str
    latest_version: str
    update_available: bool = False
    catalog_ref: Optional[str] = None
    last_checked: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_checked"] = format_timestamp(self.last_checked)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PluginUpdateInfo":
        values = _known(cls, data)
        values["last_checked"] = parse_timestamp(values.get("last_checked"))
        return cls(**values)


@dataclass
class PluginUpdateState:
    last_check_time: Optional[datetime] = None
    updates: List[PluginUpdateInfo] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "last_check_time": format_timestamp(self.last_check_time),
            "updates": [update.to_dict() for update in self.updates],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PluginUpdateState":
        return cls(
            last_check_time=parse_timestamp(data.get("last_check_time")),
            updates=[PluginUpdateInfo.from_dict(u) for u in data.get("updates") or []],
        )


# ---------------------------------------------------------------- collaborator records

@dataclass
class ServerInfo:
    id: str
    name: str = ''
    version: Optional[str] = None
    directory: Optional[str] = None
    start_command: List[str] = field(default_factory=list)
    rcon_host: str = ManagerConfig.RCON_HOST
    rcon_port: int = ManagerConfig.RCON_PORT
    rcon_password: str = ''

    def __post_init__(self):
        if not self.name:
            self.name = self.id

    @classmethod
    def from_dict(cls, data: dict) -> "ServerInfo":
        return cls(**_known(cls, data))


@dataclass
class ServerStatus:
    running: bool = False
    tps: Optional[float] = None
    memory_used: Optional[float] = None   # bytes
    memory_total: Optional[float] = None  # bytes
    players: List[str] = None

    def __post_init__(self):
        if self.players is None:
            self.players = []

    @property
    def memory_percent(self) -> Optional[float]:
        if self.memory_used is None or not self.memory_total:
            return None
        return self.memory_used / self.memory_total * 100


@dataclass
class BackupInfo:
    id: str
    filename: str
    size: int
    created_at: datetime
    kind: BackupKind = BackupKind.WORLD


@dataclass
class InstalledPlugin:
    filename: str
    name: Optional[str] = None
    version: Optional[str] = None
