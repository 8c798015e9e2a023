"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    service_token: str | None
    seed_default_users: bool
    ref_id_prefix: str
    working_year_start_month: int
    access_link_default_expiry_hours: int
    audit_recent_activity_days: int
    audit_recent_activity_limit: int
    notification_list_limit: int
    notification_max_attempts: int
    list_page_limit: int


@lru_cache()
def get_settings() -> Settings:
    """Build settings once per process; tests derive variants with `replace`."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Transport Logistics Coordination"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/logistics.db")),
        service_token=os.getenv("SERVICE_TOKEN") or None,
        seed_default_users=_env_bool("SEED_DEFAULT_USERS", True),
        ref_id_prefix=os.getenv("REF_ID_PREFIX", "IFL"),
        working_year_start_month=_env_int("WORKING_YEAR_START_MONTH", 4),
        access_link_default_expiry_hours=_env_int("ACCESS_LINK_EXPIRY_HOURS", 72),
        audit_recent_activity_days=_env_int("AUDIT_RECENT_ACTIVITY_DAYS", 7),
        audit_recent_activity_limit=_env_int("AUDIT_RECENT_ACTIVITY_LIMIT", 50),
        notification_list_limit=_env_int("NOTIFICATION_LIST_LIMIT", 50),
        notification_max_attempts=_env_int("NOTIFICATION_MAX_ATTEMPTS", 3),
        list_page_limit=_env_int("LIST_PAGE_LIMIT", 100),
    )
