"""Scenario catalogue and per-user progress summary.

Splits the scenario list the way the simulations page shows it:

- completed: the user finished the scenario at least once
- in_progress: the user has an active (resumable) walk
- available: the user has not finished it yet (includes in-progress ones)

Average score is taken over completed scenarios, using the best completed
score per scenario.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from prepsim.errors import PersistenceError
from prepsim.storage.repository import ProgressRepository, ScenarioRepository


@dataclass(frozen=True)
class ScenarioSummary:
    """Catalogue entry for one scenario, from one user's point of view."""

    id: str
    title: str
    description: str
    disaster_type: str
    completed: bool = False
    in_progress: bool = False
    best_score: Optional[int] = None
    attempts: int = 0


@dataclass
class ProgressSummary:
    """Catalogue split for one user."""

    available: list[ScenarioSummary] = field(default_factory=list)
    in_progress: list[ScenarioSummary] = field(default_factory=list)
    completed: list[ScenarioSummary] = field(default_factory=list)

    @property
    def average_score(self) -> int:
        """Mean of best completed scores, rounded; 0 with nothing completed."""
        scores = [s.best_score for s in self.completed if s.best_score is not None]
        if not scores:
            return 0
        return round(sum(scores) / len(scores))


def list_scenarios(scenario_repo: ScenarioRepository) -> list[ScenarioSummary]:
    """Return catalogue entries for every stored scenario, by title.

    Raises:
        PersistenceError: If the scenario store cannot be read
    """
    try:
        rows = scenario_repo.list_scenarios()
    except Exception as e:
        raise PersistenceError("list", f"scenario store failed: {e}") from e
    return [
        ScenarioSummary(
            id=meta["id"],
            title=meta.get("title") or meta["id"],
            description=meta.get("description", ""),
            disaster_type=meta.get("disaster_type", "general"),
        )
        for meta in rows
    ]


def summarize_user_progress(
    scenario_repo: ScenarioRepository,
    progress_repo: ProgressRepository,
    user_id: str,
) -> ProgressSummary:
    """Split the catalogue into available / in progress / completed for a user.

    Args:
        scenario_repo: Scenario store
        progress_repo: Progress store
        user_id: User to summarise

    Returns:
        ProgressSummary

    Raises:
        PersistenceError: If either store cannot be read
    """
    try:
        records = progress_repo.list_progress(user_id=user_id)
    except Exception as e:
        raise PersistenceError("list", str(e)) from e
    by_scenario: dict[str, list[dict]] = {}
    for record in records:
        by_scenario.setdefault(record["scenario_id"], []).append(record)

    summary = ProgressSummary()
    for entry in list_scenarios(scenario_repo):
        scenario_records = by_scenario.get(entry.id, [])
        completed_scores = [r.get("score") or 0 for r in scenario_records if r.get("completed")]
        active = any(
            not r.get("completed") and r.get("superseded_at") is None for r in scenario_records
        )
        item = ScenarioSummary(
            id=entry.id,
            title=entry.title,
            description=entry.description,
            disaster_type=entry.disaster_type,
            completed=bool(completed_scores),
            in_progress=active,
            best_score=max(completed_scores) if completed_scores else None,
            attempts=len(scenario_records),
        )
        if item.completed:
            summary.completed.append(item)
        else:
            summary.available.append(item)
        if item.in_progress:
            summary.in_progress.append(item)
    return summary
