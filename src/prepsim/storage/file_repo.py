"""File-based repository implementations using JSON files.

This module provides JSON file-based storage for scenarios and progress
records. Scenarios are stored in the scenarios/ directory, progress records
in progress/.
"""

import json
import logging
import re
import uuid
from pathlib import Path
from typing import Any, Optional

from prepsim.models.progress import utc_now

from .repository import ProgressRepository, ScenarioRepository

logger = logging.getLogger(__name__)


def slugify(text: str) -> str:
    """Convert text to URL-friendly slug.

    Args:
        text: Text to convert

    Returns:
        Lowercase, hyphenated slug

    Examples:
        >>> slugify("Flood Evacuation")
        'flood-evacuation'
        >>> slugify("Earthquake: Stay Safe!")
        'earthquake-stay-safe'
    """
    text = text.lower()
    text = re.sub(r"[\s_]+", "-", text)
    text = re.sub(r"[^a-z0-9-]", "", text)
    text = re.sub(r"-+", "-", text)
    return text.strip("-")


def _write_json(path: Path, data: dict) -> None:
    # Write then rename so a concurrent reader never sees a half-written file
    tmp_path = path.with_suffix(".json.tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    tmp_path.replace(path)


class FileScenarioRepository(ScenarioRepository):
    """JSON file-based scenario repository.

    Stores scenarios as individual JSON files in the scenarios directory.
    Scenario IDs are file stems (e.g., 'flood-evacuation.json').
    """

    def __init__(self, scenarios_path: str | Path = "scenarios"):
        """Initialize repository.

        Args:
            scenarios_path: Path to scenarios directory
        """
        self.scenarios_path = Path(scenarios_path)
        self.scenarios_path.mkdir(parents=True, exist_ok=True)

    def _get_scenario_path(self, scenario_id: str) -> Path:
        return self.scenarios_path / f"{scenario_id}.json"

    def list_scenarios(self) -> list[dict]:
        """Return metadata for all available scenarios.

        Files that are not valid JSON objects are skipped with a warning.
        """
        scenarios = []
        for path in self.scenarios_path.glob("*.json"):
            with open(path, encoding="utf-8") as f:
                try:
                    data = json.load(f)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping unreadable scenario file {path}: {e}")
                    continue
                if not isinstance(data, dict):
                    logger.warning(f"Skipping scenario file {path}: not a JSON object")
                    continue
                scenarios.append({
                    "id": path.stem,
                    "title": data.get("title", path.stem),
                    "description": data.get("description", ""),
                    "disaster_type": data.get("disaster_type", "general"),
                })
        return sorted(scenarios, key=lambda x: x["title"])

    def get_scenario(self, scenario_id: str) -> Optional[dict]:
        """Load complete scenario by ID."""
        path = self._get_scenario_path(scenario_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
            data["id"] = scenario_id
            return data

    def save_scenario(self, scenario: dict) -> str:
        """Save scenario, return ID."""
        title = scenario.get("title")
        if not title:
            raise ValueError("Scenario must have a 'title' field")

        scenario_id = scenario.get("id") or slugify(title)
        now = utc_now().isoformat()
        existing = self.get_scenario(scenario_id)

        scenario_with_meta = {
            **scenario,
            "id": scenario_id,
            "created_at": existing.get("created_at", now) if existing else now,
            "updated_at": now,
        }
        _write_json(self._get_scenario_path(scenario_id), scenario_with_meta)
        return scenario_id

    def delete_scenario(self, scenario_id: str) -> bool:
        """Delete scenario."""
        path = self._get_scenario_path(scenario_id)
        if path.exists():
            path.unlink()
            return True
        return False


class FileProgressRepository(ProgressRepository):
    """JSON file-based progress repository.

    Stores progress records as individual JSON files in the progress
    directory. Record IDs are UUIDs.
    """

    def __init__(self, progress_path: str | Path = "progress"):
        """Initialize repository.

        Args:
            progress_path: Path to progress directory
        """
        self.progress_path = Path(progress_path)
        self.progress_path.mkdir(parents=True, exist_ok=True)

    def _get_progress_path(self, progress_id: str) -> Path:
        return self.progress_path / f"{progress_id}.json"

    def _iter_records(self):
        for path in self.progress_path.glob("*.json"):
            with open(path, encoding="utf-8") as f:
                yield json.load(f)

    def find_active_progress(self, user_id: str, scenario_id: str) -> Optional[dict]:
        """Find the active record for a user and scenario."""
        active = [
            record
            for record in self._iter_records()
            if record.get("user_id") == user_id
            and record.get("scenario_id") == scenario_id
            and not record.get("completed")
            and record.get("superseded_at") is None
        ]
        if not active:
            return None
        return max(active, key=lambda x: x.get("started_at", ""))

    def create_progress(self, user_id: str, scenario_id: str, current_step_id: str) -> dict:
        """Insert a fresh record and return it."""
        progress_id = str(uuid.uuid4())
        now = utc_now().isoformat()
        record = {
            "id": progress_id,
            "user_id": user_id,
            "scenario_id": scenario_id,
            "current_step": current_step_id,
            "choices_made": [],
            "score": 0,
            "completed": False,
            "completed_at": None,
            "started_at": now,
            "updated_at": now,
            "superseded_at": None,
        }
        _write_json(self._get_progress_path(progress_id), record)
        return record

    def update_progress(self, progress_id: str, fields: dict[str, Any]) -> None:
        """Replace the given fields of a record."""
        record = self.get_progress(progress_id)
        if record is None:
            raise KeyError(f"Progress record not found: {progress_id}")

        # id and ownership never change
        fields = {k: v for k, v in fields.items() if k not in ("id", "user_id", "scenario_id")}
        record.update(fields)
        record["updated_at"] = utc_now().isoformat()
        _write_json(self._get_progress_path(progress_id), record)

    def get_progress(self, progress_id: str) -> Optional[dict]:
        """Load a record by ID."""
        path = self._get_progress_path(progress_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def list_progress(
        self,
        user_id: Optional[str] = None,
        scenario_id: Optional[str] = None,
    ) -> list[dict]:
        """List records, newest first, optionally filtered."""
        records = []
        for record in self._iter_records():
            if user_id is not None and record.get("user_id") != user_id:
                continue
            if scenario_id is not None and record.get("scenario_id") != scenario_id:
                continue
            records.append(record)
        return sorted(records, key=lambda x: x.get("started_at", ""), reverse=True)

    def delete_progress(self, progress_id: str) -> bool:
        """Delete a record."""
        path = self._get_progress_path(progress_id)
        if path.exists():
            path.unlink()
            return True
        return False
