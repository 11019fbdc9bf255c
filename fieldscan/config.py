"""Runtime configuration read from ``FIELDSCAN_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(slots=True)
class Settings:
    """Settings shared by the services wired in ``pipeline.FieldScan``."""

    api_base_url: str = "http://localhost:3000/api"
    request_timeout: float = 20.0
    max_retries: int = 3
    db_path: Path = field(default_factory=lambda: Path("fieldscan.db"))
    acceptance_threshold: float = 0.5
    cache_ttl_seconds: int = 86400
    connectivity_interval: float = 15.0
    performed_by: str = "FieldScan"
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "Settings":
        log_file = os.getenv("FIELDSCAN_LOG_FILE")
        return cls(
            api_base_url=os.getenv("FIELDSCAN_API_BASE_URL", "http://localhost:3000/api").rstrip("/"),
            request_timeout=_env_float("FIELDSCAN_REQUEST_TIMEOUT", 20.0),
            max_retries=_env_int("FIELDSCAN_MAX_RETRIES", 3),
            db_path=Path(os.getenv("FIELDSCAN_DB_PATH", "fieldscan.db")).expanduser(),
            acceptance_threshold=_env_float("FIELDSCAN_ACCEPTANCE_THRESHOLD", 0.5),
            cache_ttl_seconds=_env_int("FIELDSCAN_CACHE_TTL", 86400),
            connectivity_interval=_env_float("FIELDSCAN_CONNECTIVITY_INTERVAL", 15.0),
            performed_by=os.getenv("FIELDSCAN_PERFORMED_BY", "FieldScan"),
            log_level=os.getenv("FIELDSCAN_LOG_LEVEL", "INFO").upper(),
            log_file=Path(log_file).expanduser() if log_file else None,
        )
