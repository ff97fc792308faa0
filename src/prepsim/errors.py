"""Exception hierarchy for prepsim.

Every error raised by the engine derives from ``SimulationError`` so a
presentation layer can catch the family in one place and branch on the
concrete type to pick a message.
"""

from __future__ import annotations


class SimulationError(Exception):
    """Base class for all simulation errors."""


class ScenarioNotFound(SimulationError):
    """The requested scenario id is absent from the scenario store."""

    def __init__(self, scenario_id: str) -> None:
        super().__init__(f"Scenario not found: {scenario_id}")
        self.scenario_id = scenario_id


class InvalidStep(SimulationError):
    """A step id is missing from the scenario, or a step is malformed.

    This is a content-integrity defect in the authored scenario. It is never
    skipped silently, since a user would be left on a step with nothing to
    choose.
    """

    def __init__(self, step_id: str, reason: str = "step is not defined") -> None:
        super().__init__(f"Invalid step '{step_id}': {reason}")
        self.step_id = step_id
        self.reason = reason


class PersistenceError(SimulationError):
    """A progress store call failed.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"Failed to {operation} progress: {message}")
        self.operation = operation


class Unauthenticated(SimulationError):
    """No user id is available for the current session."""

    def __init__(self) -> None:
        super().__init__("A signed-in user is required to play a simulation")


class SimulationStateError(SimulationError):
    """An operation is not allowed in the engine's current state."""

    def __init__(self, message: str, state: object = None) -> None:
        super().__init__(message)
        self.state = state


class InvalidChoice(SimulationStateError):
    """The choice does not belong to the current step."""

    def __init__(self, choice_id: str, step_id: str) -> None:
        super().__init__(f"Choice '{choice_id}' is not available on step '{step_id}'")
        self.choice_id = choice_id
        self.step_id = step_id
