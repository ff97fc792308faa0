"""Progress models for prepsim.

One ``ProgressRecord`` exists per (user, scenario) walk. The record is
persisted with the column names of the progress table::

    {id, user_id, scenario_id, current_step, choices_made, score,
     completed, completed_at, started_at, updated_at, superseded_at}

Invariants:
- score == sum(entry.points for entry in choice_log)
- completed never goes back to False; completed_at is set iff completed
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class ChoiceLogEntry(BaseModel):
    """One choice made during a walk. Append-only."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    step_id: str = Field(alias="stepId")
    choice_id: str = Field(alias="choiceId")
    points: int
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ProgressRecord(BaseModel):
    """Persisted, resumable state of one user's walk through one scenario.

    Attributes:
        id: Assigned by the progress store on creation
        user_id: Owner, immutable after creation
        scenario_id: Scenario being played, immutable after creation
        current_step_id: Step the user is currently at
        choice_log: Ordered log of choices made
        score: Running score
        completed: True once a terminal step has been reached
        completed_at: When the walk completed
        started_at: When the record was created
        updated_at: Last write time
        superseded_at: Set when a restart replaced this record before it
            completed
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str
    scenario_id: str
    current_step_id: str = Field(alias="current_step")
    choice_log: list[ChoiceLogEntry] = Field(default_factory=list, alias="choices_made")
    score: int = 0
    completed: bool = False
    completed_at: datetime | None = None
    started_at: datetime | None = None
    updated_at: datetime | None = None
    superseded_at: datetime | None = None

    @model_validator(mode="after")
    def check_completion(self) -> ProgressRecord:
        if self.completed_at is not None and not self.completed:
            raise ValueError("completed_at is set on a record that is not completed")
        return self

    @property
    def is_active(self) -> bool:
        """Active records can still be resumed."""
        return not self.completed and self.superseded_at is None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressRecord:
        """Build a record from a stored row.

        A row whose score disagrees with its choice log (e.g. a partial write
        from an older client) is repaired from the log, which is append-only
        and therefore authoritative.
        """
        data = dict(data)
        data["id"] = str(data["id"])
        if data.get("score") is None:
            data["score"] = 0
        record = cls.model_validate(data)
        log_total = sum(entry.points for entry in record.choice_log)
        if record.score != log_total:
            logger.warning(
                f"Progress {record.id}: stored score {record.score} does not match "
                f"choice log total {log_total}; using the log"
            )
            record.score = log_total
        return record

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the stored row shape."""
        return self.model_dump(by_alias=True, mode="json")


def progress_fields(
    current_step_id: str,
    choice_log: list[ChoiceLogEntry],
    score: int,
    completed: bool,
    completed_at: datetime | None,
) -> dict[str, Any]:
    """Build the full-record update written after every choice.

    Updates always replace the whole mutable part of the record; the store
    does no arithmetic of its own.
    """
    return {
        "current_step": current_step_id,
        "choices_made": [entry.to_dict() for entry in choice_log],
        "score": score,
        "completed": completed,
        "completed_at": completed_at.isoformat() if completed_at else None,
    }
