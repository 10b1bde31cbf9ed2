"""Конфигурация приложения."""
import os
from functools import lru_cache


def _flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


@lru_cache
def get_config():
    return type("Config", (), {
        "database_path": os.environ.get("DATABASE_PATH", "morris.db"),
        "move_validation": _flag("MOVE_VALIDATION"),
        "allowed_origins": os.environ.get("ALLOWED_ORIGINS", "*").split(","),
        "room_retention_hours": int(os.environ.get("ROOM_RETENTION_HOURS", "24")),
        "cleanup_interval_seconds": int(os.environ.get("CLEANUP_INTERVAL_SECONDS", "3600")),
        "port": int(os.environ.get("PORT", "3001")),
    })()
