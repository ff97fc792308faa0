"""Storage module for prepsim.

This module provides repository interfaces and implementations for
persisting scenarios and progress records.

Usage:
    from prepsim.storage import get_scenario_repository, get_progress_repository

    # Get repository using configured backend (from environment)
    scenarios = get_scenario_repository()
    progress = get_progress_repository()

    # Or specify backend explicitly
    from prepsim.storage import StorageBackend
    scenarios = get_scenario_repository(StorageBackend.SQLITE)

Configuration via environment variables:
    PREPSIM_STORAGE_BACKEND: "file" or "sqlite" (default: "file")
    PREPSIM_SCENARIOS_PATH: Path to scenarios directory (default: "scenarios")
    PREPSIM_PROGRESS_PATH: Path to progress directory (default: "progress")
    PREPSIM_DATABASE_URI: SQLite database path (default: "instance/prepsim.db")
    PREPSIM_FEEDBACK_DELAY: Seconds feedback stays on screen (default: 2.0)
"""

from .config import (
    StorageBackend,
    get_database_uri,
    get_feedback_delay,
    get_progress_path,
    get_progress_repository,
    get_scenario_repository,
    get_scenarios_path,
    get_storage_backend,
)
from .file_repo import FileProgressRepository, FileScenarioRepository, slugify
from .repository import ProgressRepository, ScenarioRepository
from .sqlite_repo import SQLiteProgressRepository, SQLiteScenarioRepository

__all__ = [
    # Abstract interfaces
    "ScenarioRepository",
    "ProgressRepository",
    # File implementations
    "FileScenarioRepository",
    "FileProgressRepository",
    # SQLite implementations
    "SQLiteScenarioRepository",
    "SQLiteProgressRepository",
    # Configuration
    "StorageBackend",
    "get_storage_backend",
    "get_scenarios_path",
    "get_progress_path",
    "get_database_uri",
    "get_feedback_delay",
    # Factory functions
    "get_scenario_repository",
    "get_progress_repository",
    "slugify",
]
