from __future__ import annotations

import os
from typing import Any

SQLITE_DEFAULT_URL = "sqlite+aiosqlite:///./matchday.db"


def build_database_url(
    *,
    user: str,
    password: str | None,
    host: str,
    port: str,
    name: str,
) -> str:
    auth = f"{user}:{password}" if password else f"{user}"
    return f"postgresql+asyncpg://{auth}@{host}:{port}/{name}"


def build_sqlite_url(path: str) -> str:
    return f"sqlite+aiosqlite:///{os.path.abspath(path)}"


def ensure_config_database_url(db: Any) -> dict[str, Any]:
    """Compose ``db.url`` from its parts when no explicit URL is configured.

    ``DATABASE_URL`` is honoured as a fallback so the service runs in
    environments that only export the conventional variable.
    """
    if db is None:
        return {"composed": False, "reason": "missing_config"}

    if getattr(db, "url", None):
        return {"composed": False, "url_already_set": True}

    env_url = os.getenv("DATABASE_URL")
    if env_url:
        setattr(db, "url", env_url)
        return {"composed": False, "reason": "env_fallback"}

    host = getattr(db, "host", None) or "127.0.0.1"
    port = str(getattr(db, "port", None) or 5432)
    user = getattr(db, "user", None)
    pwd = getattr(db, "password", None) or ""
    name = getattr(db, "name", None)
    if user and name:
        url = build_database_url(
            user=user,
            password=pwd,
            host=host,
            port=port,
            name=name,
        )
        setattr(db, "url", url)
        return {"composed": True}

    setattr(db, "url", SQLITE_DEFAULT_URL)
    return {"composed": False, "reason": "missing_fields"}


__all__ = [
    "SQLITE_DEFAULT_URL",
    "build_database_url",
    "build_sqlite_url",
    "ensure_config_database_url",
]
