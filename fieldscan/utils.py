"""Utilities supporting FieldScan modules."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List

from .models import ChecklistResult


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3


def utcnow() -> datetime:
    return datetime.utcnow()


def serialize_results(results: Iterable[ChecklistResult]) -> str:
    """Serialize checklist results to the JSON blob stored in the queue."""

    return json.dumps([result.to_dict() for result in results], ensure_ascii=False)


def deserialize_results(blob: str) -> List[ChecklistResult]:
    return [ChecklistResult.from_dict(item) for item in json.loads(blob)]


def configure_logging(level: str | int = logging.INFO, *, log_file: Path | None = None) -> None:
    """Console logging plus an optional rotating log file."""

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(log_file),
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    for name in ("httpx", "httpcore", "PIL"):
        logging.getLogger(name).setLevel(logging.WARNING)
