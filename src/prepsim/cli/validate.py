"""Scenario file validation for content authors.

Usage:
    prepsim --validate scenarios/flood-evacuation.json scenarios/*.json
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from prepsim.errors import InvalidStep
from prepsim.models.scenario import Scenario


@dataclass
class ValidationResult:
    """Outcome of validating one scenario file."""

    path: str
    scenario: Optional[Scenario] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors


def find_unreachable_steps(scenario: Scenario) -> list[str]:
    """Return step ids that no walk from the start step can reach."""
    seen = {scenario.start_step_id}
    frontier = [scenario.start_step_id]
    while frontier:
        step = scenario.steps[frontier.pop()]
        for choice in step.choices:
            if choice.next_step_id not in seen:
                seen.add(choice.next_step_id)
                frontier.append(choice.next_step_id)
    return [step_id for step_id in scenario.steps if step_id not in seen]


def validate_scenario_file(path: str | Path) -> ValidationResult:
    """Parse a scenario file and check its step graph.

    Broken structure (bad JSON, undefined steps, terminal/choice mix-ups) is
    an error. Unreachable steps and a graph with no end step are warnings.
    """
    path = Path(path)
    result = ValidationResult(path=str(path))
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        result.errors.append(f"cannot read file: {e}")
        return result
    except json.JSONDecodeError as e:
        result.errors.append(f"invalid JSON: {e}")
        return result

    if not isinstance(data, dict):
        result.errors.append("top level must be a JSON object")
        return result

    try:
        scenario = Scenario.from_dict({**data, "id": data.get("id") or path.stem})
    except InvalidStep as e:
        result.errors.append(str(e))
        return result

    result.scenario = scenario
    if not scenario.title:
        result.warnings.append("scenario has no title")
    for step_id in find_unreachable_steps(scenario):
        result.warnings.append(f"step '{step_id}' is unreachable from '{scenario.start_step_id}'")
    if not any(step.is_terminal for step in scenario.steps.values()):
        result.warnings.append("scenario has no end step")
    return result


def format_result(result: ValidationResult) -> str:
    """Format a single result for display."""
    status = "PASS" if result.passed else "FAIL"
    lines = [f"{status} {result.path}"]
    if result.scenario is not None:
        lines.append(f"  {result.scenario.title} ({len(result.scenario.steps)} steps)")
    for error in result.errors:
        lines.append(f"  [ERROR] {error}")
    for warning in result.warnings:
        lines.append(f"  [WARNING] {warning}")
    return "\n".join(lines)


def validate_scenario_files(paths: Iterable[str | Path]) -> int:
    """Validate files and print a report.

    Returns:
        Process exit code: 0 if every file passed, 1 otherwise
    """
    results = [validate_scenario_file(path) for path in paths]
    for result in results:
        print(format_result(result))
    failed = sum(1 for r in results if not r.passed)
    print(f"\n{len(results) - failed}/{len(results)} scenario files passed")
    return 1 if failed else 0
