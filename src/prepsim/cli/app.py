"""Prepsim CLI Application.

A Textual-based terminal interface for playing disaster-preparedness drills:
- Scenario list with the user's progress summary
- Simulation screen with step, choices, feedback and completion panels
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from typing import Callable, Optional

from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Vertical, VerticalScroll
from textual.screen import Screen
from textual.widgets import Footer, Header, OptionList, ProgressBar, Rule, Static
from textual.widgets.option_list import Option

from prepsim.cli.validate import validate_scenario_files
from prepsim.engine import (
    SimulationEngine,
    SimulationSnapshot,
    create_engine,
    summarize_user_progress,
)
from prepsim.errors import PersistenceError, SimulationError
from prepsim.identity import EnvironmentIdentity, IdentityProvider, StaticIdentity
from prepsim.storage import (
    ProgressRepository,
    ScenarioRepository,
    get_progress_repository,
    get_scenario_repository,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Theme and Styles
# =============================================================================

CSS = """
Screen {
    background: $surface;
}

#scenario-menu {
    align: center middle;
    width: 100%;
    height: 100%;
}

.menu-container {
    width: 72;
    height: auto;
    border: solid green;
    padding: 1 2;
}

.menu-title {
    text-align: center;
    text-style: bold;
    color: $success;
    margin-bottom: 1;
}

#progress-stats {
    text-align: center;
    color: $text-muted;
}

#status-bar {
    dock: top;
    height: 1;
    background: $primary-darken-2;
    color: $text;
    padding: 0 1;
}

#progress-bar {
    width: 100%;
    margin: 0 1;
}

#step-panel {
    min-height: 6;
    height: auto;
    max-height: 16;
    border: solid $primary;
    padding: 1 1;
}

.panel-title {
    text-style: bold;
    color: $secondary;
    margin-bottom: 1;
}

#feedback-panel {
    height: auto;
    border: heavy $warning;
    background: $surface-lighten-1;
    padding: 1;
}

#feedback-panel.positive {
    border: heavy $success;
}

#feedback-header {
    text-style: bold;
}

#feedback-text {
    margin-top: 1;
    text-style: italic;
}

#completion-panel {
    height: auto;
    border: double $success;
    padding: 1 2;
}

#completion-score {
    text-align: center;
    text-style: bold;
    color: $success;
}

OptionList {
    height: auto;
    max-height: 12;
}
"""


# =============================================================================
# Screens
# =============================================================================


class ScenarioListScreen(Screen):
    """Scenario catalogue with the user's progress summary."""

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("g", "refresh", "Refresh"),
    ]

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Container(id="scenario-menu"):
            with Vertical(classes="menu-container"):
                yield Static("DISASTER PREPAREDNESS DRILLS", classes="menu-title")
                yield Static("", id="progress-stats")
                yield Rule()
                yield OptionList(id="scenario-list")
        yield Footer()

    def on_mount(self) -> None:
        self.refresh_catalogue()

    def on_screen_resume(self) -> None:
        self.refresh_catalogue()

    def refresh_catalogue(self) -> None:
        """Reload scenarios and the user's progress summary."""
        app: PrepsimApp = self.app  # type: ignore[assignment]
        option_list = self.query_one("#scenario-list", OptionList)
        stats = self.query_one("#progress-stats", Static)
        option_list.clear_options()

        user_id = app.user_id
        try:
            summary = summarize_user_progress(app.scenario_repo, app.progress_repo, user_id or "")
        except SimulationError as e:
            logger.error(f"Could not load the scenario list: {e}")
            stats.update("Could not load scenarios")
            self.notify(str(e), title="Cannot list scenarios", severity="error")
            return
        entries = sorted(summary.available + summary.completed, key=lambda s: s.title)

        for entry in entries:
            if entry.completed:
                marker = f"- completed, best {entry.best_score}"
            elif entry.in_progress:
                marker = "- in progress"
            else:
                marker = ""
            label = f"{entry.title} ({entry.disaster_type})" + (f" {marker}" if marker else "")
            option_list.add_option(Option(label, id=entry.id))

        if not entries:
            stats.update("No scenarios found")
        elif user_id is None:
            stats.update("Not signed in: start with --user NAME or set PREPSIM_USER_ID")
        else:
            stats.update(
                f"Available: {len(summary.available)}    "
                f"In progress: {len(summary.in_progress)}    "
                f"Completed: {len(summary.completed)}    "
                f"Average score: {summary.average_score}"
            )

    @on(OptionList.OptionSelected, "#scenario-list")
    def scenario_selected(self, event: OptionList.OptionSelected) -> None:
        app: PrepsimApp = self.app  # type: ignore[assignment]
        if app.user_id is None:
            self.notify("Sign in to start a simulation", severity="error")
            return
        app.push_screen(SimulationScreen(str(event.option.id)))

    def action_refresh(self) -> None:
        self.refresh_catalogue()

    def action_quit(self) -> None:
        self.app.exit()


class SimulationScreen(Screen):
    """Walks the signed-in user through one scenario."""

    BINDINGS = [
        Binding("escape", "exit_simulation", "Exit"),
        Binding("r", "restart", "Restart"),
        Binding("1", "select_choice(0)", "Choice 1", show=False),
        Binding("2", "select_choice(1)", "Choice 2", show=False),
        Binding("3", "select_choice(2)", "Choice 3", show=False),
        Binding("4", "select_choice(3)", "Choice 4", show=False),
        Binding("5", "select_choice(4)", "Choice 5", show=False),
        Binding("6", "select_choice(5)", "Choice 6", show=False),
        Binding("7", "select_choice(6)", "Choice 7", show=False),
        Binding("8", "select_choice(7)", "Choice 8", show=False),
        Binding("9", "select_choice(8)", "Choice 9", show=False),
    ]

    def __init__(self, scenario_id: str) -> None:
        super().__init__()
        self.scenario_id = scenario_id
        self.engine: Optional[SimulationEngine] = None
        self._loaded = False
        self._closed = False
        self._unsubscribe = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("Loading...", id="status-bar", markup=False)
        yield ProgressBar(total=100, show_eta=False, id="progress-bar")
        with VerticalScroll(id="step-panel"):
            yield Static("", id="step-title", classes="panel-title", markup=False)
            yield Static("", id="step-description", markup=False)
        with Vertical(id="feedback-panel"):
            yield Static("", id="feedback-header")
            yield Static("", id="feedback-text", markup=False)
        with Vertical(id="completion-panel"):
            yield Static("Simulation Complete!", classes="menu-title")
            yield Static("", id="completion-score")
            yield Static("Press r to try again or escape to return", id="completion-hint")
        yield Static("CHOICES (1-9 to select)", classes="panel-title", id="choices-title")
        yield OptionList(id="choice-list")
        yield Footer()

    def on_mount(self) -> None:
        """Create the engine and load the scenario."""
        app: PrepsimApp = self.app  # type: ignore[assignment]
        self.query_one("#feedback-panel").display = False
        self.query_one("#completion-panel").display = False
        self.engine = create_engine(
            app.scenario_repo,
            app.progress_repo,
            scheduler=self.schedule_transition,
            feedback_delay=app.feedback_delay,
            on_persistence_error=app.report_persistence_error,
        )
        self.load_simulation(app.user_id)

    def schedule_transition(self, delay: float, callback: Callable[[], None]) -> None:
        """Run the end of a feedback pause; a zero delay runs on the next tick."""
        if delay <= 0:
            self.call_later(callback)
        else:
            self.set_timer(delay, callback)

    @work(thread=True)
    def load_simulation(self, user_id: Optional[str]) -> None:
        """Resolve or create the user's progress off the event loop."""
        try:
            self.engine.load_scenario(self.scenario_id, user_id)
        except SimulationError as e:
            logger.error(f"Could not load {self.scenario_id}: {e}")
            self.app.call_from_thread(self._load_failed, str(e))
            return
        self.app.call_from_thread(self._loaded_ok)

    def _loaded_ok(self) -> None:
        if self._closed:
            return
        self._loaded = True
        self._unsubscribe = self.engine.subscribe(self.render_snapshot)
        self.render_snapshot(self.engine.snapshot())

    def _load_failed(self, message: str) -> None:
        if self._closed:
            return
        self.notify(message, title="Cannot start simulation", severity="error")
        self._leave()

    def render_snapshot(self, snapshot: SimulationSnapshot) -> None:
        """Update every panel from an engine snapshot."""
        percent = round(snapshot.progress * 100)
        self.query_one("#status-bar", Static).update(
            f"{snapshot.scenario_title} | Score: {snapshot.score} | Progress: {percent}%"
        )
        self.query_one("#progress-bar", ProgressBar).update(progress=percent)

        step = snapshot.current_step
        self.query_one("#step-title", Static).update(step.title if step else "")
        self.query_one("#step-description", Static).update(step.description if step else "")

        feedback_panel = self.query_one("#feedback-panel", Vertical)
        feedback = snapshot.last_feedback
        feedback_panel.display = snapshot.feedback_pending and feedback is not None
        if feedback is not None:
            feedback_panel.set_class(feedback.is_positive, "positive")
            heading = "Good Choice!" if feedback.is_positive else "Learn & Improve"
            self.query_one("#feedback-header", Static).update(f"{heading}  {feedback.points:+d} points")
            self.query_one("#feedback-text", Static).update(feedback.text)

        self.query_one("#completion-panel").display = snapshot.is_terminal
        if snapshot.is_terminal:
            self.query_one("#completion-score", Static).update(f"Final Score: {snapshot.score}")

        choice_list = self.query_one("#choice-list", OptionList)
        choice_list.clear_options()
        for i, choice in enumerate(snapshot.choices, 1):
            choice_list.add_option(Option(f"{i}. {choice.text}", id=choice.id))
        has_choices = bool(snapshot.choices)
        choice_list.display = has_choices
        self.query_one("#choices-title").display = has_choices

    @on(OptionList.OptionSelected, "#choice-list")
    def choice_selected(self, event: OptionList.OptionSelected) -> None:
        self._select_choice(event.option_index)

    def action_select_choice(self, index: int) -> None:
        self._select_choice(index)

    def _select_choice(self, index: int) -> None:
        if not self._loaded:
            return
        choices = self.engine.snapshot().choices
        # Empty while feedback is showing, so repeated keys are ignored
        if not 0 <= index < len(choices):
            return
        self.engine.apply_choice(choices[index])

    def action_restart(self) -> None:
        if not self._loaded:
            return
        self.engine.restart()
        self.notify("Simulation restarted")

    def action_exit_simulation(self) -> None:
        self._leave()

    def _leave(self) -> None:
        self._closed = True
        if self.engine is not None:
            if self._unsubscribe is not None:
                self._unsubscribe()
            pending = self.engine.close()
            if pending:
                logger.info(f"Leaving {self.scenario_id} with {len(pending)} progress write(s) in flight")
            self.engine.writer.shutdown(wait=False)
        self.app.pop_screen()


# =============================================================================
# Main Application
# =============================================================================


class PrepsimApp(App):
    """Main prepsim CLI application."""

    TITLE = "Prepsim"
    SUB_TITLE = "Disaster Preparedness Drills"
    CSS = CSS

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit", show=True, priority=True),
    ]

    def __init__(
        self,
        scenario_repo: Optional[ScenarioRepository] = None,
        progress_repo: Optional[ProgressRepository] = None,
        identity: Optional[IdentityProvider] = None,
        feedback_delay: Optional[float] = None,
    ) -> None:
        super().__init__()
        self.scenario_repo = scenario_repo if scenario_repo is not None else get_scenario_repository()
        self.progress_repo = progress_repo if progress_repo is not None else get_progress_repository()
        self.identity = identity if identity is not None else EnvironmentIdentity()
        self.feedback_delay = feedback_delay

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.current_user_id()

    def on_mount(self) -> None:
        """Show the scenario list when the app starts."""
        self.push_screen(ScenarioListScreen())

    def report_persistence_error(self, error: PersistenceError) -> None:
        """Surface a failed progress write.

        Usually called from the writer thread, but a write that fails before
        its callback is attached reports on the thread that submitted it.
        """
        if threading.get_ident() == self._thread_id:
            self.notify(str(error), title="Progress not saved", severity="warning")
            return
        try:
            self.call_from_thread(
                self.notify, str(error), title="Progress not saved", severity="warning"
            )
        except RuntimeError:
            # App already gone; the writer has logged the failure
            logger.warning(f"Dropped persistence notification: {error}")


def configure_logging() -> None:
    """Log to PREPSIM_LOG_FILE when set; Textual owns the terminal otherwise."""
    log_file = os.environ.get("PREPSIM_LOG_FILE")
    if not log_file:
        return
    logging.basicConfig(
        filename=log_file,
        level=os.environ.get("PREPSIM_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the CLI application.

    For debugging with Textual devtools:
        1. In one terminal: textual console
        2. In another terminal: textual run --dev src/prepsim/cli/app.py
    """
    parser = argparse.ArgumentParser(description="Disaster preparedness drills in the terminal")
    parser.add_argument("--user", help="User id to play as (default: $PREPSIM_USER_ID)")
    parser.add_argument(
        "--validate",
        nargs="+",
        metavar="PATH",
        help="Validate scenario JSON files and exit",
    )
    args = parser.parse_args(argv)

    configure_logging()

    if args.validate:
        sys.exit(validate_scenario_files(args.validate))

    identity = StaticIdentity(args.user) if args.user else EnvironmentIdentity()
    app = PrepsimApp(identity=identity)
    app.run()


if __name__ == "__main__":
    main()
