"""Core simulation engine for prepsim.

This module implements the SimulationEngine class, which drives one user
through one scenario's step graph, keeps score and history, and mirrors that
state into the progress store.

State machine:
    LOADING          -> AWAITING_CHOICE | TERMINAL     (load_scenario)
    AWAITING_CHOICE  -> SHOWING_FEEDBACK               (apply_choice)
    SHOWING_FEEDBACK -> AWAITING_CHOICE | TERMINAL     (complete_transition)
    any loaded state -> AWAITING_CHOICE | TERMINAL     (restart)

The in-memory state is authoritative. Progress writes are queued on a
ProgressWriter and may land later, or fail, without rolling back what the
player sees.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from prepsim.engine.persistence import ProgressHandle, ProgressWriter
from prepsim.errors import (
    InvalidChoice,
    InvalidStep,
    PersistenceError,
    ScenarioNotFound,
    SimulationStateError,
    Unauthenticated,
)
from prepsim.models.progress import ChoiceLogEntry, ProgressRecord, progress_fields, utc_now
from prepsim.models.scenario import Choice, ChoicePoint, Scenario, TerminalStep
from prepsim.storage.config import get_feedback_delay
from prepsim.storage.repository import ProgressRepository, ScenarioRepository

logger = logging.getLogger(__name__)

# (delay_seconds, callback) -> timer handle
Scheduler = Callable[[float, Callable[[], None]], Any]


class EngineState(Enum):
    """Where the engine is in the walk."""

    LOADING = "loading"
    AWAITING_CHOICE = "awaiting_choice"
    SHOWING_FEEDBACK = "showing_feedback"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class Feedback:
    """Feedback for the choice just made, shown before the step advances.

    Attributes:
        step_id: Step the choice was made on
        choice_id: The choice made
        text: Feedback text authored on the choice
        points: Point delta the choice applied
        next_step_id: Step the walk moves to once feedback is dismissed
    """

    step_id: str
    choice_id: str
    text: str
    points: int
    next_step_id: str

    @property
    def is_positive(self) -> bool:
        return self.points > 0


@dataclass(frozen=True)
class SimulationSnapshot:
    """Read-only view of the engine for rendering.

    Attributes:
        scenario_id: Loaded scenario ("" while nothing is loaded)
        scenario_title: Display title of the scenario
        state: Current engine state
        current_step_id: Visible step
        current_step: Visible step object (None while nothing is loaded)
        score: Running score
        is_terminal: True once the visible step ends the walk
        feedback_pending: True while feedback is on screen
        last_feedback: Feedback being shown, if any
        progress: Approximate progress in [0, 1]
        choice_count: Number of choices made in this walk
        completed: True once the walk has reached (or is moving to) an end
    """

    scenario_id: str
    scenario_title: str
    state: EngineState
    current_step_id: str
    current_step: Optional[Union[ChoicePoint, TerminalStep]]
    score: int
    is_terminal: bool
    feedback_pending: bool
    last_feedback: Optional[Feedback]
    progress: float
    choice_count: int
    completed: bool

    @property
    def choices(self) -> tuple[Choice, ...]:
        """Choices the user may select right now."""
        if self.state is not EngineState.AWAITING_CHOICE or self.current_step is None:
            return ()
        return self.current_step.choices


@dataclass(frozen=True)
class ChoiceOutcome:
    """Result of apply_choice().

    Attributes:
        feedback: Feedback to display during the pause
        snapshot: Engine snapshot while feedback is showing
        write: Pending progress write; may be awaited or ignored
    """

    feedback: Feedback
    snapshot: SimulationSnapshot
    write: Future


class SimulationEngine:
    """Drives a single user through one scenario.

    Attributes:
        scenario: Loaded scenario (None until load_scenario succeeds)
        user_id: User playing the scenario
        state: Current EngineState
        feedback_delay: Seconds feedback stays visible before the transition
    """

    def __init__(
        self,
        scenario_repo: ScenarioRepository,
        progress_repo: ProgressRepository,
        writer: Optional[ProgressWriter] = None,
        scheduler: Optional[Scheduler] = None,
        feedback_delay: Optional[float] = None,
        clock: Callable[[], Any] = utc_now,
    ) -> None:
        """Initialize the engine.

        Args:
            scenario_repo: Scenario store
            progress_repo: Progress store
            writer: Queue for progress writes (default: background writer
                over progress_repo)
            scheduler: Runs a callback after a delay; used for the feedback
                pause. Without one, callers finish the pause themselves via
                complete_transition().
            feedback_delay: Seconds of feedback display (default: from
                PREPSIM_FEEDBACK_DELAY, 2.0)
            clock: Returns the current aware UTC datetime
        """
        self._scenario_repo = scenario_repo
        self._progress_repo = progress_repo
        self._writer = writer if writer is not None else ProgressWriter(progress_repo)
        self._scheduler = scheduler
        self.feedback_delay = get_feedback_delay() if feedback_delay is None else feedback_delay
        self._clock = clock

        self.scenario: Optional[Scenario] = None
        self.user_id: Optional[str] = None
        self.state = EngineState.LOADING

        self._handle: Optional[ProgressHandle] = None
        self._current_step_id = ""
        self._choice_log: list[ChoiceLogEntry] = []
        self._score = 0
        self._completed = False
        self._completed_at = None
        self._pending_step_id: Optional[str] = None
        self._last_feedback: Optional[Feedback] = None

        # Bumped whenever a scheduled transition must no longer fire
        self._generation = 0
        self._observers: list[Callable[[SimulationSnapshot], None]] = []

    # =========================================================================
    # Observation
    # =========================================================================

    def subscribe(self, callback: Callable[[SimulationSnapshot], None]) -> Callable[[], None]:
        """Call ``callback`` with a fresh snapshot on every state change.

        Returns:
            Function that removes the subscription
        """
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _emit(self) -> SimulationSnapshot:
        snapshot = self.snapshot()
        for observer in list(self._observers):
            observer(snapshot)
        return snapshot

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def writer(self) -> ProgressWriter:
        return self._writer

    @property
    def score(self) -> int:
        return self._score

    @property
    def choice_log(self) -> tuple[ChoiceLogEntry, ...]:
        return tuple(self._choice_log)

    @property
    def current_step_id(self) -> str:
        return self._current_step_id

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def progress_id(self) -> Optional[str]:
        """Id of the record this walk writes to, once it exists."""
        return self._handle.progress_id if self._handle else None

    def snapshot(self) -> SimulationSnapshot:
        """Return a read-only view for rendering."""
        if self.scenario is None:
            return SimulationSnapshot(
                scenario_id="",
                scenario_title="",
                state=self.state,
                current_step_id="",
                current_step=None,
                score=0,
                is_terminal=False,
                feedback_pending=False,
                last_feedback=None,
                progress=0.0,
                choice_count=0,
                completed=False,
            )

        step = self.scenario.steps.get(self._current_step_id)
        return SimulationSnapshot(
            scenario_id=self.scenario.id,
            scenario_title=self.scenario.title,
            state=self.state,
            current_step_id=self._current_step_id,
            current_step=step,
            score=self._score,
            is_terminal=self.state is EngineState.TERMINAL,
            feedback_pending=self.state is EngineState.SHOWING_FEEDBACK,
            last_feedback=self._last_feedback,
            progress=self.scenario.progress_fraction(self._current_step_id),
            choice_count=len(self._choice_log),
            completed=self._completed,
        )

    # =========================================================================
    # Operations
    # =========================================================================

    def load_scenario(self, scenario_id: str, user_id: Optional[str]) -> SimulationSnapshot:
        """Load a scenario and resume or start the user's walk.

        Args:
            scenario_id: Scenario to play
            user_id: Signed-in user; the caller vouches for it

        Returns:
            Snapshot of the resolved current step

        Raises:
            Unauthenticated: If user_id is empty
            ScenarioNotFound: If the scenario does not exist
            InvalidStep: If the scenario content is broken or the stored
                current step is not part of it
            PersistenceError: If the scenario or progress store cannot be
                read, or the first record cannot be created
        """
        if not user_id:
            raise Unauthenticated()

        self._generation += 1
        self.state = EngineState.LOADING
        # Writes queued by an earlier walk on this engine must land first
        self._writer.flush()

        try:
            row = self._scenario_repo.get_scenario(scenario_id)
        except (ValueError, TypeError) as e:
            # Undecodable or non-object content; JSONDecodeError is a ValueError
            raise InvalidStep("", f"scenario '{scenario_id}' cannot be decoded: {e}") from e
        except Exception as e:
            raise PersistenceError("load", f"scenario store failed: {e}") from e
        if row is None:
            raise ScenarioNotFound(scenario_id)
        if not isinstance(row, dict):
            raise InvalidStep("", f"scenario '{scenario_id}' is not an object")
        scenario = Scenario.from_dict({**row, "id": scenario_id})
        start_is_terminal = scenario.get_step(scenario.start_step_id).is_terminal

        try:
            existing = self._progress_repo.find_active_progress(user_id, scenario_id)
            if existing is None and start_is_terminal:
                # Nothing to play; reuse the record that already finished it
                finished = self._progress_repo.list_progress(
                    user_id=user_id, scenario_id=scenario_id
                )
                existing = finished[0] if finished else None
            if existing is not None:
                record = ProgressRecord.from_dict(existing)
                logger.info(f"Resuming progress {record.id} for {user_id}/{scenario_id}")
            else:
                created = self._progress_repo.create_progress(
                    user_id, scenario_id, scenario.start_step_id
                )
                record = ProgressRecord.from_dict(created)
                logger.info(f"Created progress {record.id} for {user_id}/{scenario_id}")
        except ValidationError as e:
            raise PersistenceError("load", f"stored progress is malformed: {e}") from e
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError("load", str(e)) from e

        step = scenario.get_step(record.current_step_id)

        self.scenario = scenario
        self.user_id = user_id
        self._handle = ProgressHandle(record.id)
        self._current_step_id = record.current_step_id
        self._choice_log = list(record.choice_log)
        self._score = record.score
        self._completed = record.completed
        self._completed_at = record.completed_at
        self._pending_step_id = None
        self._last_feedback = None

        if step.is_terminal:
            self.state = EngineState.TERMINAL
            if not self._completed:
                # Resumed on an end step that was never marked completed
                logger.warning(f"Progress {record.id} sits on end step '{step.title}'; marking completed")
                self._completed = True
                self._completed_at = self._clock()
                self._writer.submit_update(self._handle, self._progress_fields())
        else:
            self.state = EngineState.AWAITING_CHOICE

        return self._emit()

    def apply_choice(self, choice: Union[Choice, str]) -> ChoiceOutcome:
        """Apply one of the current step's choices.

        Records the choice, updates the score, queues the progress write and
        shows feedback. The visible step advances when the feedback pause
        ends (see complete_transition).

        Args:
            choice: The Choice, or its id

        Returns:
            ChoiceOutcome with the feedback and the pending write

        Raises:
            SimulationStateError: If the engine is not awaiting a choice
                (nothing loaded, feedback showing, or walk finished)
            InvalidChoice: If the choice is not on the current step
            InvalidStep: If the choice leads to an undefined step
        """
        if self.state is not EngineState.AWAITING_CHOICE:
            raise SimulationStateError(
                f"Cannot apply a choice while {self.state.value}", self.state
            )

        choice_id = choice.id if isinstance(choice, Choice) else choice
        step = self.scenario.get_step(self._current_step_id)
        selected = step.get_choice(choice_id)
        if selected is None:
            raise InvalidChoice(choice_id, self._current_step_id)
        target = self.scenario.get_step(selected.next_step_id)

        now = self._clock()
        self._choice_log.append(
            ChoiceLogEntry(
                step_id=self._current_step_id,
                choice_id=selected.id,
                points=selected.points,
                timestamp=now,
            )
        )
        self._score += selected.points
        if target.is_terminal:
            self._completed = True
            self._completed_at = now

        self._pending_step_id = selected.next_step_id
        feedback = Feedback(
            step_id=self._current_step_id,
            choice_id=selected.id,
            text=selected.feedback,
            points=selected.points,
            next_step_id=selected.next_step_id,
        )
        self._last_feedback = feedback
        self.state = EngineState.SHOWING_FEEDBACK
        logger.debug(
            f"{self.user_id}/{self.scenario.id}: {feedback.step_id} -> {feedback.choice_id} "
            f"({feedback.points:+d}, score {self._score})"
        )

        write = self._writer.submit_update(
            self._handle, self._progress_fields(current_step_id=selected.next_step_id)
        )
        snapshot = self._emit()
        self._schedule_transition()
        return ChoiceOutcome(feedback=feedback, snapshot=snapshot, write=write)

    def complete_transition(self) -> SimulationSnapshot:
        """End the feedback pause and show the chosen step.

        Raises:
            SimulationStateError: If no feedback is showing
        """
        if self.state is not EngineState.SHOWING_FEEDBACK:
            raise SimulationStateError("No transition is pending", self.state)

        self._generation += 1
        self._current_step_id = self._pending_step_id
        self._pending_step_id = None
        self._last_feedback = None
        step = self.scenario.get_step(self._current_step_id)
        self.state = EngineState.TERMINAL if step.is_terminal else EngineState.AWAITING_CHOICE
        return self._emit()

    def restart(self) -> SimulationSnapshot:
        """Start a fresh walk from the start step.

        The previous record is kept as history. An unfinished one is marked
        superseded, and a new record is created for the fresh walk. A walk
        with no choices made yet is simply reused. A scenario whose start step
        is an end step keeps its single completed record.

        Raises:
            SimulationStateError: If no scenario is loaded
        """
        if self.scenario is None or self.state is EngineState.LOADING:
            raise SimulationStateError("No scenario is loaded", self.state)

        self._generation += 1
        start = self.scenario.get_step(self.scenario.start_step_id)
        if start.is_terminal:
            # A walk that ends where it starts has nothing to replay
            self._pending_step_id = None
            self._last_feedback = None
            self.state = EngineState.TERMINAL
            return self._emit()

        untouched = not self._choice_log and not self._completed

        if not untouched:
            previous = self._handle
            if not self._completed:
                self._writer.submit_update(previous, {"superseded_at": self._clock().isoformat()})
            self._handle = ProgressHandle()
            self._writer.submit_create(
                self._handle, self.user_id, self.scenario.id, self.scenario.start_step_id
            )
            logger.info(f"Restarting {self.user_id}/{self.scenario.id} (previous {previous})")

        self._current_step_id = self.scenario.start_step_id
        self._choice_log = []
        self._score = 0
        self._completed = False
        self._completed_at = None
        self._pending_step_id = None
        self._last_feedback = None

        self.state = EngineState.AWAITING_CHOICE
        return self._emit()

    def close(self) -> list[Future]:
        """Detach from the presentation layer.

        Cancels any pending transition and drops observers. In-flight writes
        keep running; they are returned so the caller may await them.
        """
        self._generation += 1
        self._observers.clear()
        return self._writer.pending

    # =========================================================================
    # Internals
    # =========================================================================

    def _progress_fields(self, current_step_id: Optional[str] = None) -> dict[str, Any]:
        return progress_fields(
            current_step_id=current_step_id or self._current_step_id,
            choice_log=self._choice_log,
            score=self._score,
            completed=self._completed,
            completed_at=self._completed_at,
        )

    def _schedule_transition(self) -> None:
        if self._scheduler is None:
            return
        generation = self._generation

        def fire() -> None:
            if generation == self._generation and self.state is EngineState.SHOWING_FEEDBACK:
                self.complete_transition()

        self._scheduler(self.feedback_delay, fire)


def create_engine(
    scenario_repo: ScenarioRepository,
    progress_repo: ProgressRepository,
    scheduler: Optional[Scheduler] = None,
    feedback_delay: Optional[float] = None,
    on_persistence_error: Optional[Callable[[PersistenceError], None]] = None,
) -> SimulationEngine:
    """Create an engine with a background progress writer.

    Args:
        scenario_repo: Scenario store
        progress_repo: Progress store
        scheduler: Timer used for the feedback pause
        feedback_delay: Seconds of feedback display
        on_persistence_error: Called (from the writer thread) when a
            progress write fails

    Returns:
        Initialized SimulationEngine
    """
    writer = ProgressWriter(progress_repo, on_error=on_persistence_error)
    return SimulationEngine(
        scenario_repo=scenario_repo,
        progress_repo=progress_repo,
        writer=writer,
        scheduler=scheduler,
        feedback_delay=feedback_delay,
    )
