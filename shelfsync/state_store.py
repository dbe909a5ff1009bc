from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_at TEXT NOT NULL,
    trigger TEXT NOT NULL,
    status TEXT NOT NULL,
    message TEXT,
    duration_ms INTEGER NOT NULL DEFAULT 0,
    created INTEGER NOT NULL DEFAULT 0,
    updated INTEGER NOT NULL DEFAULT 0,
    unchanged INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS audit_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER,
    created_at TEXT NOT NULL,
    calendar_id TEXT NOT NULL,
    uid TEXT NOT NULL,
    action TEXT NOT NULL,
    details_json TEXT NOT NULL
);
"""

AUDIT_INSERT_COLUMNS = "run_id, created_at, calendar_id, uid, action, details_json"
AUDIT_COLUMNS = f"id, {AUDIT_INSERT_COLUMNS}"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _audit_row(row: sqlite3.Row) -> dict[str, Any]:
    item = dict(row)
    item["details"] = json.loads(item.pop("details_json") or "{}")
    return item


class StateStore:
    """Run history and per-loan audit trail kept in one SQLite file."""

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        with self._lock, self._connect() as conn:
            conn.executescript(SCHEMA_SQL)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor

    def _fetch(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock, self._connect() as conn:
            return conn.execute(sql, params).fetchall()

    def start_sync_run(self, *, trigger: str) -> int:
        cursor = self._execute(
            "INSERT INTO sync_runs(run_at, trigger, status, message) VALUES (?, ?, 'running', 'running')",
            (_utc_now(), trigger),
        )
        return int(cursor.lastrowid)

    def finish_sync_run(
        self,
        *,
        run_id: int,
        status: str,
        message: str,
        duration_ms: int,
        created: int,
        updated: int,
        unchanged: int,
    ) -> None:
        self._execute(
            """
            UPDATE sync_runs
            SET status = ?, message = ?, duration_ms = ?, created = ?, updated = ?, unchanged = ?
            WHERE id = ?
            """,
            (status, message, int(duration_ms), int(created), int(updated), int(unchanged), int(run_id)),
        )

    def recent_sync_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        rows = self._fetch("SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?", (max(1, limit),))
        return [dict(row) for row in rows]

    def get_sync_run(self, run_id: int) -> dict[str, Any] | None:
        rows = self._fetch("SELECT * FROM sync_runs WHERE id = ?", (int(run_id),))
        return dict(rows[0]) if rows else None

    def record_audit_event(
        self,
        *,
        calendar_id: str,
        uid: str,
        action: str,
        details: dict[str, Any],
        run_id: int | None = None,
    ) -> None:
        self._execute(
            f"INSERT INTO audit_events({AUDIT_INSERT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            (run_id, _utc_now(), calendar_id, uid, action, json.dumps(details, ensure_ascii=False)),
        )

    def recent_audit_events(self, limit: int = 100, run_id: int | None = None) -> list[dict[str, Any]]:
        if run_id is None:
            rows = self._fetch(
                f"SELECT {AUDIT_COLUMNS} FROM audit_events ORDER BY id DESC LIMIT ?",
                (max(1, limit),),
            )
        else:
            rows = self._fetch(
                f"SELECT {AUDIT_COLUMNS} FROM audit_events WHERE run_id = ? ORDER BY id DESC LIMIT ?",
                (int(run_id), max(1, limit)),
            )
        return [_audit_row(row) for row in rows]
