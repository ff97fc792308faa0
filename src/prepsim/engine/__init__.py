"""Simulation engine module for prepsim.

This module contains the simulation logic:
- simulation_engine: Step-graph walk, scoring, restart and state machine
- persistence: Best-effort, ordered progress writes
- catalogue: Scenario list and per-user progress summary

Usage:
    from prepsim.engine import create_engine
    from prepsim.storage import get_progress_repository, get_scenario_repository

    engine = create_engine(get_scenario_repository(), get_progress_repository())
    view = engine.load_scenario("earthquake-at-school", user_id="u1")

    outcome = engine.apply_choice(view.choices[0])
    print(outcome.feedback.text)
    view = engine.complete_transition()

    if view.is_terminal:
        print(f"Final score: {view.score}")
"""

from prepsim.engine.catalogue import (
    ProgressSummary,
    ScenarioSummary,
    list_scenarios,
    summarize_user_progress,
)
from prepsim.engine.persistence import ProgressHandle, ProgressWriter
from prepsim.engine.simulation_engine import (
    ChoiceOutcome,
    EngineState,
    Feedback,
    Scheduler,
    SimulationEngine,
    SimulationSnapshot,
    create_engine,
)

__all__ = [
    # Engine
    "SimulationEngine",
    "EngineState",
    "SimulationSnapshot",
    "Feedback",
    "ChoiceOutcome",
    "Scheduler",
    "create_engine",
    # Persistence
    "ProgressWriter",
    "ProgressHandle",
    # Catalogue
    "ScenarioSummary",
    "ProgressSummary",
    "list_scenarios",
    "summarize_user_progress",
]
