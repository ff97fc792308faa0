"""SQLite-based repository implementations.

This module provides SQLite storage for scenarios and progress records,
laid out like the hosted tables (simulation_scenarios,
user_simulation_progress) with JSON serialization for nested fields.
"""

import json
import sqlite3
import uuid
from contextlib import closing
from pathlib import Path
from typing import Any, Optional

from prepsim.models.progress import utc_now

from .file_repo import slugify
from .repository import ProgressRepository, ScenarioRepository


def dict_factory(cursor: sqlite3.Cursor, row: tuple) -> dict:
    """Convert sqlite3 row to dict."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


class _SQLiteRepository:
    """Connection handling shared by the SQLite repositories.

    A connection is opened per call so repositories can be used from the
    progress writer's worker thread.
    """

    def __init__(self, database_uri: str = "instance/prepsim.db"):
        """Initialize repository.

        Args:
            database_uri: Path to SQLite database file
        """
        self.database_path = Path(database_uri)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database_path)
        conn.row_factory = dict_factory
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class SQLiteScenarioRepository(_SQLiteRepository, ScenarioRepository):
    """SQLite-based scenario repository."""

    def _init_db(self) -> None:
        """Initialize database schema."""
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS simulation_scenarios (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    disaster_type TEXT NOT NULL DEFAULT 'general',
                    scenario_data TEXT NOT NULL,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)
            conn.commit()

    def list_scenarios(self) -> list[dict]:
        """Return metadata for all available scenarios."""
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, title, description, disaster_type FROM simulation_scenarios ORDER BY title"
            )
            rows = cursor.fetchall()
        return rows

    def get_scenario(self, scenario_id: str) -> Optional[dict]:
        """Load complete scenario by ID."""
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM simulation_scenarios WHERE id = ?", (scenario_id,))
            row = cursor.fetchone()

        if row is None:
            return None

        row["scenario_data"] = json.loads(row["scenario_data"])
        return row

    def save_scenario(self, scenario: dict) -> str:
        """Save scenario, return ID."""
        title = scenario.get("title")
        if not title:
            raise ValueError("Scenario must have a 'title' field")

        scenario_id = scenario.get("id") or slugify(title)
        # Flat authored files carry startStep/steps at the top level
        scenario_data = scenario.get("scenario_data") or {
            "startStep": scenario.get("startStep"),
            "steps": scenario.get("steps", {}),
        }
        now = utc_now().isoformat()

        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO simulation_scenarios
                    (id, title, description, disaster_type, scenario_data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    disaster_type = excluded.disaster_type,
                    scenario_data = excluded.scenario_data,
                    updated_at = excluded.updated_at
            """, (
                scenario_id,
                title,
                scenario.get("description", ""),
                scenario.get("disaster_type", "general"),
                json.dumps(scenario_data),
                now,
                now,
            ))
            conn.commit()
        return scenario_id

    def delete_scenario(self, scenario_id: str) -> bool:
        """Delete scenario."""
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM simulation_scenarios WHERE id = ?", (scenario_id,))
            deleted = cursor.rowcount > 0
            conn.commit()
        return deleted


# Columns holding JSON text
_JSON_COLUMNS = ("choices_made",)
_MUTABLE_COLUMNS = (
    "current_step",
    "choices_made",
    "score",
    "completed",
    "completed_at",
    "superseded_at",
)


def _decode_progress(row: dict) -> dict:
    row["choices_made"] = json.loads(row["choices_made"] or "[]")
    row["completed"] = bool(row["completed"])
    return row


class SQLiteProgressRepository(_SQLiteRepository, ProgressRepository):
    """SQLite-based progress repository."""

    def _init_db(self) -> None:
        """Initialize database schema."""
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS user_simulation_progress (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    scenario_id TEXT NOT NULL,
                    current_step TEXT NOT NULL,
                    choices_made TEXT NOT NULL DEFAULT '[]',
                    score INTEGER DEFAULT 0,
                    completed INTEGER NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    started_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    superseded_at TEXT
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_progress_user_scenario "
                "ON user_simulation_progress(user_id, scenario_id)"
            )
            conn.commit()

    def find_active_progress(self, user_id: str, scenario_id: str) -> Optional[dict]:
        """Find the active record for a user and scenario."""
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM user_simulation_progress
                WHERE user_id = ? AND scenario_id = ?
                    AND completed = 0 AND superseded_at IS NULL
                ORDER BY started_at DESC
                LIMIT 1
            """, (user_id, scenario_id))
            row = cursor.fetchone()
        return _decode_progress(row) if row else None

    def create_progress(self, user_id: str, scenario_id: str, current_step_id: str) -> dict:
        """Insert a fresh record and return it."""
        progress_id = str(uuid.uuid4())
        now = utc_now().isoformat()

        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO user_simulation_progress
                    (id, user_id, scenario_id, current_step, choices_made, score,
                     completed, started_at, updated_at)
                VALUES (?, ?, ?, ?, '[]', 0, 0, ?, ?)
            """, (progress_id, user_id, scenario_id, current_step_id, now, now))
            conn.commit()
        return self.get_progress(progress_id)

    def update_progress(self, progress_id: str, fields: dict[str, Any]) -> None:
        """Replace the given fields of a record."""
        columns = [key for key in fields if key in _MUTABLE_COLUMNS]
        values = []
        for key in columns:
            value = fields[key]
            if key in _JSON_COLUMNS:
                value = json.dumps(value)
            elif key == "completed":
                value = int(bool(value))
            values.append(value)

        assignments = ", ".join(f"{column} = ?" for column in columns + ["updated_at"])
        values.append(utc_now().isoformat())
        values.append(progress_id)

        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE user_simulation_progress SET {assignments} WHERE id = ?",
                values,
            )
            updated = cursor.rowcount > 0
            conn.commit()

        if not updated:
            raise KeyError(f"Progress record not found: {progress_id}")

    def get_progress(self, progress_id: str) -> Optional[dict]:
        """Load a record by ID."""
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM user_simulation_progress WHERE id = ?", (progress_id,))
            row = cursor.fetchone()
        return _decode_progress(row) if row else None

    def list_progress(
        self,
        user_id: Optional[str] = None,
        scenario_id: Optional[str] = None,
    ) -> list[dict]:
        """List records, newest first, optionally filtered."""
        clauses = []
        params = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if scenario_id is not None:
            clauses.append("scenario_id = ?")
            params.append(scenario_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT * FROM user_simulation_progress {where} ORDER BY started_at DESC",
                params,
            )
            rows = cursor.fetchall()
        return [_decode_progress(row) for row in rows]

    def delete_progress(self, progress_id: str) -> bool:
        """Delete a record."""
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM user_simulation_progress WHERE id = ?", (progress_id,))
            deleted = cursor.rowcount > 0
            conn.commit()
        return deleted
