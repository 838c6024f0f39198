from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PLANNER_DB_PATH: path to the sqlite db file. Default './data/planner.db'
    - LOG_LEVEL: root logging level (default: INFO)
    - LOG_FILE: optional path of a log file
    - SERVICE_LOGGING: 'false' to silence per-operation service logging (default: true)
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - BULK_MAX_IDS: maximum number of ids accepted by bulk task operations (default: 100)
    - MAX_FILE_SIZE_BYTES: maximum attachment size (default: 50 MiB)
    - MAX_FILES_PER_TASK: maximum attachments per task (default: 20)
    - TOP_TAGS_LIMIT: number of tags reported by tag statistics (default: 10)
    """

    sqlite_db_path: str = "./data/planner.db"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    enable_service_logging: bool = True
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    bulk_max_ids: int = 100
    max_file_size: int = 50 * 1024 * 1024
    max_files_per_task: int = 20
    top_tags_limit: int = 10


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_bool(value: str, default: bool = False) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str, default: int) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    log_file = os.getenv("LOG_FILE") or None
    return Settings(
        sqlite_db_path=_get_env("PLANNER_DB_PATH", "./data/planner.db").strip(),
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
        log_file=log_file,
        enable_service_logging=_parse_bool(_get_env("SERVICE_LOGGING", "true"), True),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        bulk_max_ids=_parse_int(_get_env("BULK_MAX_IDS", "100"), 100),
        max_file_size=_parse_int(_get_env("MAX_FILE_SIZE_BYTES", str(50 * 1024 * 1024)), 50 * 1024 * 1024),
        max_files_per_task=_parse_int(_get_env("MAX_FILES_PER_TASK", "20"), 20),
        top_tags_limit=_parse_int(_get_env("TOP_TAGS_LIMIT", "10"), 10),
    )
