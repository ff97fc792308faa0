"""Shared pytest fixtures and markers for all tests."""

from typing import Any, Callable, Optional

import pytest

from prepsim.engine import ProgressWriter, SimulationEngine
from prepsim.storage import FileProgressRepository, FileScenarioRepository, ProgressRepository


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


# =============================================================================
# Test doubles
# =============================================================================


class ManualScheduler:
    """Scheduler that records timers and fires them on demand."""

    def __init__(self) -> None:
        self.timers: list[tuple[float, Callable[[], None]]] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> None:
        self.timers.append((delay, callback))

    def fire_all(self) -> None:
        timers, self.timers = self.timers, []
        for _, callback in timers:
            callback()


class FlakyProgressRepository(ProgressRepository):
    """Delegating progress store whose updates and creates can be made to fail."""

    def __init__(self, inner: ProgressRepository) -> None:
        self.inner = inner
        self.fail_updates = False
        self.fail_creates = False
        self.fail_reads = False
        self.create_calls = 0

    def find_active_progress(self, user_id: str, scenario_id: str) -> Optional[dict]:
        if self.fail_reads:
            raise ConnectionError("progress store unreachable")
        return self.inner.find_active_progress(user_id, scenario_id)

    def create_progress(self, user_id: str, scenario_id: str, current_step_id: str) -> dict:
        self.create_calls += 1
        if self.fail_creates:
            raise ConnectionError("progress store unreachable")
        return self.inner.create_progress(user_id, scenario_id, current_step_id)

    def update_progress(self, progress_id: str, fields: dict[str, Any]) -> None:
        if self.fail_updates:
            raise ConnectionError("progress store unreachable")
        self.inner.update_progress(progress_id, fields)

    def get_progress(self, progress_id: str) -> Optional[dict]:
        return self.inner.get_progress(progress_id)

    def list_progress(self, user_id=None, scenario_id=None) -> list[dict]:
        return self.inner.list_progress(user_id=user_id, scenario_id=scenario_id)

    def delete_progress(self, progress_id: str) -> bool:
        return self.inner.delete_progress(progress_id)


# =============================================================================
# Scenario fixtures
# =============================================================================


@pytest.fixture
def s1_scenario() -> dict:
    """Two-step scenario: s1 --c1 (+10)--> s2 (end)."""
    return {
        "id": "S1",
        "title": "Scenario One",
        "description": "Smallest complete walk",
        "disaster_type": "earthquake",
        "startStep": "s1",
        "steps": {
            "s1": {
                "title": "Shaking starts",
                "description": "The floor is moving.",
                "choices": [
                    {
                        "id": "c1",
                        "text": "Drop, cover and hold on",
                        "nextStep": "s2",
                        "points": 10,
                        "feedback": "Well done.",
                    }
                ],
            },
            "s2": {
                "title": "Safe",
                "description": "The shaking has stopped.",
                "isEnd": True,
                "finalScore": True,
            },
        },
    }


@pytest.fixture
def branching_scenario() -> dict:
    """Scenario with two paths of different length and negative points."""
    return {
        "id": "flood",
        "title": "Flood Drill",
        "description": "Water is rising",
        "disaster_type": "flood",
        "startStep": "warning",
        "steps": {
            "warning": {
                "title": "Warning",
                "choices": [
                    {"id": "pack", "text": "Pack a kit", "nextStep": "road", "points": 10,
                     "feedback": "Good."},
                    {"id": "wait", "text": "Wait", "nextStep": "rising", "points": -10,
                     "feedback": "Too slow."},
                ],
            },
            "road": {
                "title": "Flooded road",
                "choices": [
                    {"id": "turn", "text": "Turn around", "nextStep": "shelter", "points": 10},
                    {"id": "drive", "text": "Drive through", "nextStep": "shelter", "points": -10},
                ],
            },
            "rising": {
                "title": "Water rising",
                "choices": [
                    {"id": "roof", "text": "Go upstairs", "nextStep": "shelter", "points": 5},
                ],
            },
            "shelter": {"title": "Shelter", "isEnd": True},
        },
    }


@pytest.fixture
def scenario_repo(tmp_path, s1_scenario, branching_scenario) -> FileScenarioRepository:
    """File scenario store holding S1 and the flood drill."""
    repo = FileScenarioRepository(tmp_path / "scenarios")
    repo.save_scenario(s1_scenario)
    repo.save_scenario(branching_scenario)
    return repo


@pytest.fixture
def progress_repo(tmp_path) -> FileProgressRepository:
    """Empty file progress store."""
    return FileProgressRepository(tmp_path / "progress")


@pytest.fixture
def flaky_progress_repo(progress_repo) -> FlakyProgressRepository:
    """Progress store that fails on demand."""
    return FlakyProgressRepository(progress_repo)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def make_engine(scenario_repo, progress_repo):
    """Build engines with an inline writer so writes land before assertions."""

    def _make(
        progress: Optional[ProgressRepository] = None,
        scheduler: Optional[ManualScheduler] = None,
        on_error=None,
    ) -> SimulationEngine:
        repo = progress if progress is not None else progress_repo
        return SimulationEngine(
            scenario_repo=scenario_repo,
            progress_repo=repo,
            writer=ProgressWriter(repo, on_error=on_error, immediate=True),
            scheduler=scheduler,
            feedback_delay=2.0,
        )

    return _make
