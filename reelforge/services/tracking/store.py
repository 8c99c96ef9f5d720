"""Persistent SQLite-backed store of observed video job records.

Job records survive server restarts; the polling fallback reads them back
while the live change feed is unavailable.
"""
from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

# Columns a job record may carry, in table order.
RECORD_FIELDS = (
    "id", "run_id", "project_id", "status", "stage_name", "progress",
    "started_at", "error_code", "error_message", "video_url", "engine_used",
)


class JobStore:
    """SQLite-backed job record store.

    Creates the database and table on first use.  Thread-safe via the
    ``check_same_thread=False`` SQLite flag; each operation opens its own
    connection, so render worker threads and API handlers can share a store.
    """

    _CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS video_jobs (
        id            TEXT PRIMARY KEY,
        run_id        TEXT NOT NULL DEFAULT '',
        project_id    TEXT NOT NULL DEFAULT '',
        status        TEXT NOT NULL DEFAULT 'queued',
        stage_name    TEXT NOT NULL DEFAULT '',
        progress      REAL NOT NULL DEFAULT 0.0,
        started_at    REAL,
        error_code    TEXT,
        error_message TEXT,
        video_url     TEXT,
        engine_used   TEXT,
        updated_at    REAL NOT NULL
    )
    """
    _CREATE_INDEX = "CREATE INDEX IF NOT EXISTS idx_video_jobs_run ON video_jobs (run_id)"

    def __init__(self, db_path: str = "data/jobs.db"):
        self._db_path = str(db_path)
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    # ── private ──────────────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(self._CREATE_TABLE)
            conn.execute(self._CREATE_INDEX)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Dict[str, Any]:
        return {key: row[key] for key in RECORD_FIELDS + ("updated_at",)}

    # ── public ───────────────────────────────────────────────────────────────

    def upsert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or merge a job record; fields absent from ``record`` are kept.

        Raises:
            ValueError: If the record has no ``id``.
        """
        if not record.get("id"):
            raise ValueError("Job record needs an 'id'")
        existing = self.get(record["id"]) or {}
        merged = {key: existing.get(key) for key in RECORD_FIELDS}
        merged.update({k: v for k, v in record.items() if k in RECORD_FIELDS and v is not None})
        merged["started_at"] = existing.get("started_at") or merged.get("started_at")
        if record.get("status") and record["status"] != "failed":
            merged["error_code"] = merged["error_message"] = None
        now = time.time()
        with self._connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO video_jobs
                   (id, run_id, project_id, status, stage_name, progress, started_at,
                    error_code, error_message, video_url, engine_used, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    merged["id"],
                    merged.get("run_id") or "",
                    merged.get("project_id") or "",
                    merged.get("status") or "queued",
                    merged.get("stage_name") or "",
                    float(merged.get("progress") or 0.0),
                    merged.get("started_at"),
                    merged.get("error_code"),
                    merged.get("error_message"),
                    merged.get("video_url"),
                    merged.get("engine_used"),
                    now,
                ),
            )
        return self.get(merged["id"])

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Return one record, or None if not found."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM video_jobs WHERE id=?", (job_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def list_for_run(self, run_id: str) -> List[Dict[str, Any]]:
        """Return all records of a run, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM video_jobs WHERE run_id=? ORDER BY started_at, id", (run_id,)
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def list_updated_since(self, run_id: str, since: float) -> List[Dict[str, Any]]:
        """Return the records of a run changed after ``since`` (epoch seconds)."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM video_jobs WHERE run_id=? AND updated_at>? ORDER BY updated_at",
                (run_id, since),
            ).fetchall()
        return [self._row_to_record(r) for r in rows]
