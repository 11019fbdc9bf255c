"""SQLite-backed checklist cache and pending-submission queue."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import closing
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, List

from .models import CachedChecklist, Checkpoint, EquipmentCodeInfo, PendingSubmission, Submission
from .utils import serialize_results, utcnow

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 24 * 60 * 60

Clock = Callable[[], datetime]


class OfflineStore:
    """Persist cached checklists and queued submissions.

    Every statement runs under one lock so the store is the single writer
    for all persisted state.
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        *,
        clock: Clock = utcnow,
        ttl_seconds: int = CACHE_TTL_SECONDS,
    ) -> None:
        self.db_path = str(db_path)
        self.clock = clock
        self.ttl = timedelta(seconds=ttl_seconds)
        self._lock = threading.RLock()
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS cached_checklists (
                    code TEXT PRIMARY KEY,
                    tips TEXT NOT NULL,
                    cached_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS cached_checkpoints (
                    code TEXT NOT NULL REFERENCES cached_checklists(code) ON DELETE CASCADE,
                    position INTEGER NOT NULL,
                    checkpoint_id INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    description TEXT,
                    type TEXT NOT NULL,
                    criticality TEXT,
                    can_auto_fetch INTEGER,
                    PRIMARY KEY (code, position)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_submissions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    code TEXT NOT NULL,
                    performed_by TEXT NOT NULL,
                    results TEXT NOT NULL,
                    notes TEXT,
                    queued_at TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS cached_equipment_codes (
                    code TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    category TEXT,
                    description TEXT,
                    checkpoint_count INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            self.conn.commit()

    # Checklist cache

    def cache_checklist(self, code: str, checkpoints: Iterable[Checkpoint], tips: Iterable[str] | None = None) -> None:
        """Replace the cached checklist for ``code`` and stamp it with now."""

        cached_at = self.clock().isoformat()
        rows = [
            (
                code,
                position,
                checkpoint.id,
                checkpoint.text,
                checkpoint.description,
                checkpoint.type,
                checkpoint.criticality,
                None if checkpoint.can_auto_fetch is None else int(checkpoint.can_auto_fetch),
            )
            for position, checkpoint in enumerate(checkpoints)
        ]
        # Header and checkpoints are replaced in one transaction.
        with self._lock, self.conn, closing(self.conn.cursor()) as cur:
            cur.execute("DELETE FROM cached_checkpoints WHERE code = ?", (code,))
            cur.execute(
                """
                INSERT INTO cached_checklists (code, tips, cached_at)
                VALUES (?, ?, ?)
                ON CONFLICT(code) DO UPDATE SET
                    tips=excluded.tips,
                    cached_at=excluded.cached_at
                """,
                (code, json.dumps(list(tips or []), ensure_ascii=False), cached_at),
            )
            cur.executemany(
                """
                INSERT INTO cached_checkpoints
                    (code, position, checkpoint_id, text, description, type, criticality, can_auto_fetch)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        logger.debug("Cached %d checkpoints for %s", len(rows), code)

    def get_cached_checklist(self, code: str) -> CachedChecklist | None:
        """Return the cached checklist while it is younger than the TTL.

        Stale rows are reported as a miss and left in place.
        """

        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute("SELECT * FROM cached_checklists WHERE code = ?", (code,))
            header = cur.fetchone()
            if header is None:
                return None
            cached_at = datetime.fromisoformat(header["cached_at"])
            if self.clock() - cached_at >= self.ttl:
                return None
            cur.execute(
                "SELECT * FROM cached_checkpoints WHERE code = ? ORDER BY position",
                (code,),
            )
            rows = cur.fetchall()
        return CachedChecklist(
            code=code,
            checkpoints=[self._row_to_checkpoint(row) for row in rows],
            tips=json.loads(header["tips"]),
            cached_at=cached_at,
        )

    def cached_checklist_count(self, code: str | None = None) -> int:
        with self._lock, closing(self.conn.cursor()) as cur:
            if code is None:
                cur.execute("SELECT COUNT(*) FROM cached_checklists")
            else:
                cur.execute("SELECT COUNT(*) FROM cached_checklists WHERE code = ?", (code,))
            return int(cur.fetchone()[0])

    def evict_expired(self) -> int:
        now = self.clock()
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute("SELECT code, cached_at FROM cached_checklists")
            codes = [
                row["code"]
                for row in cur.fetchall()
                if now - datetime.fromisoformat(row["cached_at"]) >= self.ttl
            ]
            for code in codes:
                cur.execute("DELETE FROM cached_checkpoints WHERE code = ?", (code,))
                cur.execute("DELETE FROM cached_checklists WHERE code = ?", (code,))
            self.conn.commit()
        if codes:
            logger.info("Evicted %d expired checklists", len(codes))
        return len(codes)

    @staticmethod
    def _row_to_checkpoint(row: sqlite3.Row) -> Checkpoint:
        can_auto_fetch = row["can_auto_fetch"]
        return Checkpoint(
            id=row["checkpoint_id"],
            text=row["text"],
            type=row["type"],
            description=row["description"],
            criticality=row["criticality"],
            can_auto_fetch=None if can_auto_fetch is None else bool(can_auto_fetch),
        )

    # Pending submissions

    def enqueue(self, submission: Submission) -> PendingSubmission:
        queued_at = self.clock()
        blob = serialize_results(submission.results)
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                INSERT INTO pending_submissions (code, performed_by, results, notes, queued_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (submission.code, submission.performed_by, blob, submission.notes, queued_at.isoformat()),
            )
            self.conn.commit()
            pending_id = int(cur.lastrowid)
        logger.info("Queued submission %d for %s", pending_id, submission.code)
        return PendingSubmission(
            id=pending_id,
            code=submission.code,
            performed_by=submission.performed_by,
            results_blob=blob,
            queued_at=queued_at,
            notes=submission.notes,
        )

    def pending(self) -> List[PendingSubmission]:
        """Queued submissions in enqueue order."""

        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute("SELECT * FROM pending_submissions ORDER BY id")
            rows = cur.fetchall()
        return [self._row_to_pending(row) for row in rows]

    def remove(self, pending_id: int) -> bool:
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute("DELETE FROM pending_submissions WHERE id = ?", (pending_id,))
            self.conn.commit()
            return cur.rowcount > 0

    def mark_failed(self, pending_id: int, error: str) -> None:
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute(
                "UPDATE pending_submissions SET attempts = attempts + 1, last_error = ? WHERE id = ?",
                (error, pending_id),
            )
            self.conn.commit()

    def count_pending(self) -> int:
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute("SELECT COUNT(*) FROM pending_submissions")
            return int(cur.fetchone()[0])

    def clear_pending(self) -> int:
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute("DELETE FROM pending_submissions")
            self.conn.commit()
            return cur.rowcount

    @staticmethod
    def _row_to_pending(row: sqlite3.Row) -> PendingSubmission:
        return PendingSubmission(
            id=row["id"],
            code=row["code"],
            performed_by=row["performed_by"],
            results_blob=row["results"],
            queued_at=datetime.fromisoformat(row["queued_at"]),
            notes=row["notes"],
            attempts=row["attempts"],
            last_error=row["last_error"],
        )

    # Equipment codes for offline browsing

    def cache_equipment_codes(self, codes: Iterable[EquipmentCodeInfo]) -> None:
        payload = [
            (info.code, info.name, info.category, info.description, info.checkpoint_count)
            for info in codes
        ]
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute("DELETE FROM cached_equipment_codes")
            cur.executemany(
                """
                INSERT OR REPLACE INTO cached_equipment_codes
                    (code, name, category, description, checkpoint_count)
                VALUES (?, ?, ?, ?, ?)
                """,
                payload,
            )
            self.conn.commit()

    def get_cached_equipment_codes(self) -> List[EquipmentCodeInfo]:
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute("SELECT * FROM cached_equipment_codes ORDER BY code")
            rows = cur.fetchall()
        return [
            EquipmentCodeInfo(
                code=row["code"],
                name=row["name"],
                category=row["category"],
                description=row["description"],
                checkpoint_count=row["checkpoint_count"],
            )
            for row in rows
        ]

    def close(self) -> None:
        with self._lock:
            self.conn.close()
