"""prepsim data models.

This module exports the scenario graph and progress record structures.
"""

from .progress import ChoiceLogEntry, ProgressRecord, progress_fields, utc_now
from .scenario import (
    Choice,
    ChoicePoint,
    Scenario,
    Step,
    TerminalStep,
    parse_step,
    step_to_dict,
)

__all__ = [
    # Scenario graph
    "Scenario",
    "Step",
    "ChoicePoint",
    "TerminalStep",
    "Choice",
    "parse_step",
    "step_to_dict",
    # Progress
    "ProgressRecord",
    "ChoiceLogEntry",
    "progress_fields",
    "utc_now",
]
