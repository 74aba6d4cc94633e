from .core import (
    CacheSettings,
    DatabaseSettings,
    LeaderboardSettings,
    LoggingSettings,
    Settings,
    StreakSettings,
    WorkerSettings,
    get_settings,
    load_settings,
    reset_settings,
    sanitize_dict,
)

__all__ = [
    "CacheSettings",
    "DatabaseSettings",
    "LeaderboardSettings",
    "LoggingSettings",
    "Settings",
    "StreakSettings",
    "WorkerSettings",
    "get_settings",
    "load_settings",
    "reset_settings",
    "sanitize_dict",
]
