"""Abstract repository interfaces for prepsim storage.

This module defines the abstract base classes for the scenario store and the
progress store. Both file-based (JSON) and SQLite backends implement these
interfaces, so the engine and the CLI use storage without knowing which
backend is active.

Repositories exchange plain dicts in the stored row shape; parsing into
models happens in the engine.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class ScenarioRepository(ABC):
    """Abstract base class for scenario storage. Read-only to the engine."""

    @abstractmethod
    def list_scenarios(self) -> list[dict]:
        """Return metadata for all available scenarios.

        Returns:
            List of dicts containing: {id, title, description, disaster_type},
            sorted by title
        """
        pass

    @abstractmethod
    def get_scenario(self, scenario_id: str) -> Optional[dict]:
        """Load complete scenario by ID.

        Args:
            scenario_id: Unique identifier for the scenario

        Returns:
            Scenario row dict ({id, title, description, disaster_type,
            scenario_data}), or None if not found
        """
        pass

    @abstractmethod
    def save_scenario(self, scenario: dict) -> str:
        """Save scenario, return ID.

        Scenario must have a 'title' field. If no 'id' is given the ID is the
        slugified title (e.g., 'Flood Evacuation' -> 'flood-evacuation').

        Args:
            scenario: Scenario row dict with required 'title' field

        Returns:
            ID of saved scenario

        Raises:
            ValueError: If scenario lacks a 'title' field
        """
        pass

    @abstractmethod
    def delete_scenario(self, scenario_id: str) -> bool:
        """Delete scenario.

        Args:
            scenario_id: ID of scenario to delete

        Returns:
            True if deleted, False if not found
        """
        pass


class ProgressRepository(ABC):
    """Abstract base class for progress record storage.

    Holds one record per (user, scenario) walk. At most one record per pair
    is active (neither completed nor superseded) at a time.
    """

    @abstractmethod
    def find_active_progress(self, user_id: str, scenario_id: str) -> Optional[dict]:
        """Find the active record for a user and scenario.

        Args:
            user_id: Owner of the record
            scenario_id: Scenario being played

        Returns:
            Progress row dict, or None if the user has no active walk
        """
        pass

    @abstractmethod
    def create_progress(self, user_id: str, scenario_id: str, current_step_id: str) -> dict:
        """Insert a fresh record and return it with its assigned id.

        The record starts with an empty choice log, score 0 and
        completed False.

        Args:
            user_id: Owner of the record
            scenario_id: Scenario being played
            current_step_id: Step the walk starts on

        Returns:
            The created progress row dict
        """
        pass

    @abstractmethod
    def update_progress(self, progress_id: str, fields: dict[str, Any]) -> None:
        """Replace the given fields of a record.

        Args:
            progress_id: ID of the record to update
            fields: Column name -> new value

        Raises:
            KeyError: If no record has this ID
        """
        pass

    @abstractmethod
    def get_progress(self, progress_id: str) -> Optional[dict]:
        """Load a record by ID.

        Returns:
            Progress row dict, or None if not found
        """
        pass

    @abstractmethod
    def list_progress(
        self,
        user_id: Optional[str] = None,
        scenario_id: Optional[str] = None,
    ) -> list[dict]:
        """List records, newest first, optionally filtered.

        Args:
            user_id: Optional owner to filter by
            scenario_id: Optional scenario to filter by

        Returns:
            List of progress row dicts
        """
        pass

    @abstractmethod
    def delete_progress(self, progress_id: str) -> bool:
        """Delete a record.

        Returns:
            True if deleted, False if not found
        """
        pass
