"""Scenario models for prepsim.

A scenario is an authored, immutable graph of steps. Each step is either a
choice point (one or more choices, each pointing at another step) or a
terminal step that ends the simulation.

Authored JSON keeps the flat shape content authors write::

    {
        "startStep": "intro",
        "steps": {
            "intro": {"title": ..., "description": ..., "choices": [...]},
            "end": {"title": ..., "description": ..., "isEnd": true}
        }
    }

and is parsed into the tagged ``ChoicePoint | TerminalStep`` variant so a
terminal step carrying choices cannot be represented.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from prepsim.errors import InvalidStep


class Choice(BaseModel):
    """An edge from one step to another.

    Attributes:
        id: Identifier, unique within the owning step
        text: Prompt shown to the user
        next_step_id: Step to transition to
        points: Signed delta applied to the running score
        feedback: Text shown after selection, before the transition
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    text: str
    next_step_id: str = Field(alias="nextStep")
    points: int = 0
    feedback: str = ""


class ChoicePoint(BaseModel):
    """A step offering at least one choice."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["choice"] = "choice"
    title: str
    description: str = ""
    image: str | None = None
    choices: tuple[Choice, ...] = Field(min_length=1)

    @field_validator("choices")
    @classmethod
    def unique_choice_ids(cls, v: tuple[Choice, ...]) -> tuple[Choice, ...]:
        seen: set[str] = set()
        for choice in v:
            if choice.id in seen:
                raise ValueError(f"duplicate choice id '{choice.id}'")
            seen.add(choice.id)
        return v

    @property
    def is_terminal(self) -> bool:
        return False

    def get_choice(self, choice_id: str) -> Choice | None:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        return None


class TerminalStep(BaseModel):
    """A step that ends the simulation. Has no choices."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["terminal"] = "terminal"
    title: str
    description: str = ""
    image: str | None = None
    final_score: bool = False

    @property
    def is_terminal(self) -> bool:
        return True

    @property
    def choices(self) -> tuple[Choice, ...]:
        return ()

    def get_choice(self, choice_id: str) -> Choice | None:
        return None


Step = Annotated[Union[ChoicePoint, TerminalStep], Field(discriminator="kind")]


def parse_step(step_id: str, data: dict[str, Any]) -> ChoicePoint | TerminalStep:
    """Parse an authored step dict into its tagged variant.

    Raises:
        InvalidStep: If the step is malformed, a terminal step carries
            choices, or a non-terminal step has none
    """
    if not isinstance(data, dict):
        raise InvalidStep(step_id, "step must be an object")

    if "kind" in data:
        kind = data["kind"]
    else:
        kind = "terminal" if data.get("isEnd") else "choice"

    try:
        if kind == "terminal":
            if data.get("choices"):
                raise InvalidStep(step_id, "terminal step must not have choices")
            return TerminalStep(
                title=data.get("title", ""),
                description=data.get("description", ""),
                image=data.get("image"),
                final_score=bool(data.get("finalScore", data.get("final_score", False))),
            )
        if not data.get("choices"):
            raise InvalidStep(step_id, "non-terminal step has no choices")
        return ChoicePoint(
            title=data.get("title", ""),
            description=data.get("description", ""),
            image=data.get("image"),
            choices=tuple(_parse_choice(c) for c in data["choices"]),
        )
    except ValidationError as e:
        raise InvalidStep(step_id, str(e)) from e


def _parse_choice(data: dict[str, Any]) -> Choice:
    if not isinstance(data, dict):
        return Choice.model_validate(data)
    # Stored data may use either the authored key or the field name
    if "next_step_id" in data and "nextStep" not in data:
        data = {**data, "nextStep": data["next_step_id"]}
    return Choice.model_validate(data)


def step_to_dict(step: ChoicePoint | TerminalStep) -> dict[str, Any]:
    """Serialize a step back into the authored JSON shape."""
    result: dict[str, Any] = {"title": step.title, "description": step.description}
    if step.image is not None:
        result["image"] = step.image
    if isinstance(step, TerminalStep):
        result["choices"] = []
        result["isEnd"] = True
        if step.final_score:
            result["finalScore"] = True
    else:
        result["choices"] = [c.model_dump(by_alias=True) for c in step.choices]
    return result


class Scenario(BaseModel):
    """Complete scenario definition.

    Steps keep their authored order; traversal follows the graph, the order
    only feeds the progress estimate.

    Attributes:
        id: Unique scenario identifier
        title: Display title
        description: Short summary shown in the catalogue
        disaster_type: Disaster category (earthquake, flood, fire, ...)
        start_step_id: Initial step, must be a key of ``steps``
        steps: Step identifier -> step
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    description: str = ""
    disaster_type: str = "general"
    start_step_id: str
    steps: dict[str, Step]

    @model_validator(mode="after")
    def check_graph(self) -> Scenario:
        """Reject a missing start step and dangling choice targets."""
        if self.start_step_id not in self.steps:
            raise InvalidStep(self.start_step_id, "start step is not defined")
        for step_id, step in self.steps.items():
            for choice in step.choices:
                if choice.next_step_id not in self.steps:
                    raise InvalidStep(
                        choice.next_step_id,
                        f"choice '{choice.id}' of step '{step_id}' points at an undefined step",
                    )
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scenario:
        """Build a scenario from a stored row or a flat authored dict.

        Accepts ``{id, title, ..., scenario_data: {startStep, steps}}`` as well
        as ``{id, title, ..., startStep, steps}``.

        Raises:
            InvalidStep: On any content-integrity problem
        """
        body = data.get("scenario_data") or data
        if not isinstance(body, dict):
            raise InvalidStep("", "scenario_data must be an object")
        raw_steps = body.get("steps")
        start = body.get("startStep", body.get("start_step_id"))
        if not isinstance(raw_steps, dict) or not raw_steps:
            raise InvalidStep(str(start), "scenario has no steps")
        if not start:
            raise InvalidStep("", "scenario has no start step")

        steps = {step_id: parse_step(step_id, step) for step_id, step in raw_steps.items()}
        try:
            return cls(
                id=str(data.get("id", "")),
                title=data.get("title") or data.get("name", ""),
                description=data.get("description", ""),
                disaster_type=data.get("disaster_type", "general"),
                start_step_id=start,
                steps=steps,
            )
        except ValidationError as e:
            raise InvalidStep(start, str(e)) from e

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the stored row shape."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "disaster_type": self.disaster_type,
            "scenario_data": {
                "startStep": self.start_step_id,
                "steps": {step_id: step_to_dict(step) for step_id, step in self.steps.items()},
            },
        }

    def get_step(self, step_id: str) -> ChoicePoint | TerminalStep:
        """Resolve a step by id.

        Raises:
            InvalidStep: If the step does not exist
        """
        step = self.steps.get(step_id)
        if step is None:
            raise InvalidStep(step_id, f"step is not defined in scenario '{self.id}'")
        return step

    def progress_fraction(self, step_id: str) -> float:
        """Approximate progress for a step, in [0, 1].

        Position of the step among the declared steps, 1-based, over the step
        count. Terminal steps always report 1.0.
        """
        step = self.steps.get(step_id)
        if step is None:
            return 0.0
        if step.is_terminal:
            return 1.0
        keys = list(self.steps)
        return (keys.index(step_id) + 1) / len(keys)
