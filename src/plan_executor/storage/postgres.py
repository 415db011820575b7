"""PostgreSQL-backed key-value storage with automatic table migration."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from typing import Any


class PostgresKeyValueStore:
    """Persist session state values as JSONB rows keyed by namespaced key."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("PLAN_EXECUTOR_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS session_state (
                    state_key TEXT PRIMARY KEY,
                    value_json JSONB NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_session_state_updated_at
                ON session_state(updated_at DESC)
                """)
            conn.commit()

    def get(self, key: str) -> Any | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT value_json FROM session_state WHERE state_key = %s",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return self._parse_json(row["value_json"])

    def set(self, key: str, value: Any) -> None:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO session_state (state_key, value_json, updated_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (state_key)
                DO UPDATE SET value_json = EXCLUDED.value_json,
                              updated_at = EXCLUDED.updated_at
                """,
                (key, self._json_wrapper(value), now),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM session_state WHERE state_key = %s", (key,))
            conn.commit()

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json(raw: Any) -> Any:
        if isinstance(raw, str):
            return json.loads(raw)
        return raw
