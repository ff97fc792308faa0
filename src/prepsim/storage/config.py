"""Storage configuration for prepsim.

This module provides configuration for storage backends and factory functions
to create appropriate repository instances based on configuration.
"""

import os
from enum import Enum

from .file_repo import FileProgressRepository, FileScenarioRepository
from .repository import ProgressRepository, ScenarioRepository
from .sqlite_repo import SQLiteProgressRepository, SQLiteScenarioRepository


class StorageBackend(Enum):
    """Available storage backends."""

    FILE = "file"
    SQLITE = "sqlite"


# Default configuration (can be overridden via environment variables)
DEFAULT_STORAGE_BACKEND = StorageBackend.FILE
DEFAULT_SCENARIOS_PATH = "scenarios"
DEFAULT_PROGRESS_PATH = "progress"
DEFAULT_DATABASE_URI = "instance/prepsim.db"
DEFAULT_FEEDBACK_DELAY = 2.0


def _setting(name: str, default: str) -> str:
    return os.environ.get(f"PREPSIM_{name}", default)


def get_storage_backend() -> StorageBackend:
    """Get configured storage backend from environment.

    Returns:
        StorageBackend enum value
    """
    backend_str = _setting("STORAGE_BACKEND", DEFAULT_STORAGE_BACKEND.value).lower()
    try:
        return StorageBackend(backend_str)
    except ValueError:
        return DEFAULT_STORAGE_BACKEND


def get_scenarios_path() -> str:
    """Get configured scenarios path from environment."""
    return _setting("SCENARIOS_PATH", DEFAULT_SCENARIOS_PATH)


def get_progress_path() -> str:
    """Get configured progress path from environment."""
    return _setting("PROGRESS_PATH", DEFAULT_PROGRESS_PATH)


def get_database_uri() -> str:
    """Get configured database URI from environment."""
    return _setting("DATABASE_URI", DEFAULT_DATABASE_URI)


def get_feedback_delay() -> float:
    """Get the feedback display delay in seconds from environment.

    Raises:
        ValueError: If PREPSIM_FEEDBACK_DELAY is not a non-negative number
    """
    raw = _setting("FEEDBACK_DELAY", "")
    if not raw:
        return DEFAULT_FEEDBACK_DELAY
    delay = float(raw)
    if delay < 0:
        raise ValueError(f"PREPSIM_FEEDBACK_DELAY must be >= 0, got {raw}")
    return delay


def get_scenario_repository(
    backend: StorageBackend | None = None,
) -> ScenarioRepository:
    """Factory function to create scenario repository.

    Args:
        backend: Storage backend to use. If None, uses environment config.

    Returns:
        ScenarioRepository instance
    """
    if backend is None:
        backend = get_storage_backend()

    if backend == StorageBackend.SQLITE:
        return SQLiteScenarioRepository(get_database_uri())
    return FileScenarioRepository(get_scenarios_path())


def get_progress_repository(
    backend: StorageBackend | None = None,
) -> ProgressRepository:
    """Factory function to create progress repository.

    Args:
        backend: Storage backend to use. If None, uses environment config.

    Returns:
        ProgressRepository instance
    """
    if backend is None:
        backend = get_storage_backend()

    if backend == StorageBackend.SQLITE:
        return SQLiteProgressRepository(get_database_uri())
    return FileProgressRepository(get_progress_path())
