from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping

from site_trawler.domain import SavedState

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS source_state (
    source_id TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL UNIQUE,
    started_at TEXT NOT NULL,
    finished_at TEXT NOT NULL,
    result_count INTEGER NOT NULL,
    failure_count INTEGER NOT NULL
);
"""


class SQLiteStore:
    """Saved state per source, keyed by source id and stored as JSON."""

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.connection = sqlite3.connect(self.db_path)
        self.connection.row_factory = sqlite3.Row

    def close(self) -> None:
        self.connection.close()

    def initialize(self) -> None:
        with self.connection:
            self.connection.executescript(SCHEMA_SQL)

    def load_saved_states(self) -> dict[str, SavedState]:
        rows = self.connection.execute("SELECT source_id, payload FROM source_state").fetchall()
        states: dict[str, SavedState] = {}
        for row in rows:
            try:
                payload = json.loads(row["payload"])
            except ValueError as exc:
                raise RuntimeError(f"Could not read saved state for {row['source_id']}: {exc}") from exc
            states[str(row["source_id"])] = SavedState.from_dict(payload)
        return states

    def save_states(
        self,
        states: Mapping[str, SavedState],
        updated_at: datetime | None = None,
    ) -> None:
        if not states:
            return
        timestamp = (updated_at or datetime.now(timezone.utc)).isoformat()
        with self.connection:
            self.connection.executemany(
                """
                INSERT INTO source_state (source_id, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(source_id) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                [
                    (source_id, json.dumps(state.to_dict(), ensure_ascii=False), timestamp)
                    for source_id, state in states.items()
                ],
            )

    def record_run(
        self,
        *,
        run_id: str,
        started_at: datetime,
        finished_at: datetime,
        result_count: int,
        failure_count: int,
    ) -> None:
        with self.connection:
            self.connection.execute(
                """
                INSERT INTO runs (
                    run_id, started_at, finished_at, result_count, failure_count
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (run_id, started_at.isoformat(), finished_at.isoformat(), result_count, failure_count),
            )

    def run_count(self) -> int:
        row = self.connection.execute("SELECT COUNT(*) AS c FROM runs").fetchone()
        return int(row["c"])
