"""SQLite implementation of the state repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from .models import StateRecord
from .repository import StateRepository


class SQLiteStateRepository(StateRepository):
    """Persist execution state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_states (
                execution_id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                current_step_id TEXT,
                updated_at TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _to_record(row: sqlite3.Row) -> StateRecord:
        return StateRecord(
            execution_id=row["execution_id"],
            status=row["status"],
            current_step_id=row["current_step_id"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
            data=json.loads(row["data"]),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def save_state(self, record: StateRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO execution_states
                (execution_id, status, current_step_id, updated_at, data)
            VALUES (?, ?, ?, ?, ?)
            """,
            record.execution_id,
            record.status,
            record.current_step_id,
            record.updated_at.isoformat(),
            json.dumps(record.data, default=str),
        )

    async def load_state(self, execution_id: str) -> StateRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT execution_id, status, current_step_id, updated_at, data FROM execution_states WHERE execution_id = ?",
            execution_id,
        )
        return self._to_record(row) if row else None

    async def delete_state(self, execution_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute,
            "DELETE FROM execution_states WHERE execution_id = ?",
            execution_id,
        )
        return deleted > 0

    async def list_states(self) -> list[StateRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT execution_id, status, current_step_id, updated_at, data FROM execution_states ORDER BY updated_at",
        )
        return [self._to_record(row) for row in rows]

    def close(self) -> None:
        self._conn.close()
