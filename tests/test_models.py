"""Tests for scenario and progress models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from prepsim.errors import InvalidStep
from prepsim.models import (
    ChoiceLogEntry,
    ChoicePoint,
    ProgressRecord,
    Scenario,
    TerminalStep,
    parse_step,
    progress_fields,
)


# =============================================================================
# Step parsing
# =============================================================================


class TestParseStep:
    """Authored step dicts become tagged variants."""

    def test_choice_point(self):
        step = parse_step("a", {
            "title": "A",
            "choices": [{"id": "x", "text": "X", "nextStep": "b", "points": 3}],
        })
        assert isinstance(step, ChoicePoint)
        assert not step.is_terminal
        assert step.choices[0].next_step_id == "b"
        assert step.choices[0].points == 3

    def test_end_flag_gives_terminal_step(self):
        step = parse_step("end", {"title": "End", "isEnd": True, "finalScore": True})
        assert isinstance(step, TerminalStep)
        assert step.is_terminal
        assert step.final_score is True
        assert step.choices == ()

    def test_terminal_with_choices_rejected(self):
        with pytest.raises(InvalidStep, match="must not have choices"):
            parse_step("end", {
                "title": "End",
                "isEnd": True,
                "choices": [{"id": "x", "text": "X", "nextStep": "a"}],
            })

    def test_non_terminal_without_choices_rejected(self):
        with pytest.raises(InvalidStep, match="no choices") as exc_info:
            parse_step("dead-end", {"title": "Nowhere", "choices": []})
        assert exc_info.value.step_id == "dead-end"

    def test_duplicate_choice_ids_rejected(self):
        with pytest.raises(InvalidStep, match="duplicate choice id"):
            parse_step("a", {
                "title": "A",
                "choices": [
                    {"id": "x", "text": "X", "nextStep": "b"},
                    {"id": "x", "text": "Y", "nextStep": "b"},
                ],
            })

    def test_choice_missing_target_rejected(self):
        with pytest.raises(InvalidStep):
            parse_step("a", {"title": "A", "choices": [{"id": "x", "text": "X"}]})

    def test_snake_case_target_accepted(self):
        step = parse_step("a", {
            "title": "A",
            "choices": [{"id": "x", "text": "X", "next_step_id": "b"}],
        })
        assert step.choices[0].next_step_id == "b"

    def test_get_choice(self):
        step = parse_step("a", {
            "title": "A",
            "choices": [{"id": "x", "text": "X", "nextStep": "b"}],
        })
        assert step.get_choice("x").text == "X"
        assert step.get_choice("nope") is None

    def test_non_object_step_rejected(self):
        with pytest.raises(InvalidStep, match="must be an object") as exc_info:
            parse_step("a", "oops")
        assert exc_info.value.step_id == "a"

    def test_non_object_choice_rejected(self):
        with pytest.raises(InvalidStep):
            parse_step("a", {"title": "A", "choices": ["oops"]})


# =============================================================================
# Scenario
# =============================================================================


class TestScenario:
    """Tests for Scenario parsing and graph checks."""

    def test_from_flat_dict(self, s1_scenario):
        scenario = Scenario.from_dict(s1_scenario)
        assert scenario.id == "S1"
        assert scenario.title == "Scenario One"
        assert scenario.disaster_type == "earthquake"
        assert scenario.start_step_id == "s1"
        assert list(scenario.steps) == ["s1", "s2"]

    def test_from_row_shape(self, s1_scenario):
        row = Scenario.from_dict(s1_scenario).to_dict()
        assert "scenario_data" in row
        again = Scenario.from_dict(row)
        assert again == Scenario.from_dict(s1_scenario)

    def test_missing_start_step_rejected(self, s1_scenario):
        s1_scenario["startStep"] = "missing"
        with pytest.raises(InvalidStep) as exc_info:
            Scenario.from_dict(s1_scenario)
        assert exc_info.value.step_id == "missing"

    def test_dangling_choice_target_rejected(self, s1_scenario):
        s1_scenario["steps"]["s1"]["choices"][0]["nextStep"] = "s9"
        with pytest.raises(InvalidStep, match="undefined step"):
            Scenario.from_dict(s1_scenario)

    def test_non_object_step_in_scenario_rejected(self):
        with pytest.raises(InvalidStep) as exc_info:
            Scenario.from_dict({"id": "x", "startStep": "a", "steps": {"a": "oops"}})
        assert exc_info.value.step_id == "a"

    def test_no_steps_rejected(self):
        with pytest.raises(InvalidStep, match="no steps"):
            Scenario.from_dict({"id": "x", "title": "X", "startStep": "a", "steps": {}})

    def test_get_step_unknown_raises(self, s1_scenario):
        scenario = Scenario.from_dict(s1_scenario)
        with pytest.raises(InvalidStep):
            scenario.get_step("nope")

    def test_progress_fraction(self, branching_scenario):
        scenario = Scenario.from_dict(branching_scenario)
        assert scenario.progress_fraction("warning") == pytest.approx(1 / 4)
        assert scenario.progress_fraction("rising") == pytest.approx(3 / 4)
        assert scenario.progress_fraction("shelter") == 1.0
        assert scenario.progress_fraction("unknown") == 0.0

    def test_scenario_is_immutable(self, s1_scenario):
        scenario = Scenario.from_dict(s1_scenario)
        with pytest.raises(ValidationError):
            scenario.title = "Changed"


# =============================================================================
# Progress
# =============================================================================


def _row(**overrides) -> dict:
    row = {
        "id": "p1",
        "user_id": "u1",
        "scenario_id": "S1",
        "current_step": "s1",
        "choices_made": [],
        "score": 0,
        "completed": False,
        "completed_at": None,
        "started_at": "2024-05-01T10:00:00+00:00",
        "updated_at": "2024-05-01T10:00:00+00:00",
    }
    row.update(overrides)
    return row


class TestProgressRecord:
    """Tests for ProgressRecord row conversion and invariants."""

    def test_from_row(self):
        record = ProgressRecord.from_dict(_row(
            current_step="s2",
            choices_made=[{"stepId": "s1", "choiceId": "c1", "points": 10,
                           "timestamp": "2024-05-01T10:01:00+00:00"}],
            score=10,
        ))
        assert record.current_step_id == "s2"
        assert record.choice_log[0].choice_id == "c1"
        assert record.score == 10
        assert record.is_active

    def test_numeric_id_is_stringified(self):
        assert ProgressRecord.from_dict(_row(id=42)).id == "42"

    def test_null_score_treated_as_zero(self):
        assert ProgressRecord.from_dict(_row(score=None)).score == 0

    def test_score_repaired_from_log(self):
        record = ProgressRecord.from_dict(_row(
            choices_made=[{"stepId": "s1", "choiceId": "c1", "points": 10,
                           "timestamp": "2024-05-01T10:01:00+00:00"}],
            score=3,
        ))
        assert record.score == 10

    def test_completed_at_without_completed_rejected(self):
        with pytest.raises(ValidationError):
            ProgressRecord.from_dict(_row(completed_at="2024-05-01T10:05:00+00:00"))

    def test_superseded_record_not_active(self):
        record = ProgressRecord.from_dict(_row(superseded_at="2024-05-01T10:05:00+00:00"))
        assert not record.is_active

    def test_to_dict_uses_column_names(self):
        data = ProgressRecord.from_dict(_row()).to_dict()
        assert data["current_step"] == "s1"
        assert data["choices_made"] == []


class TestProgressFields:
    """Tests for the full-record update payload."""

    def test_payload(self):
        when = datetime(2024, 5, 1, 10, 1, tzinfo=timezone.utc)
        entry = ChoiceLogEntry(step_id="s1", choice_id="c1", points=10, timestamp=when)
        fields = progress_fields("s2", [entry], 10, True, when)
        assert fields["current_step"] == "s2"
        assert fields["score"] == 10
        assert fields["completed"] is True
        assert fields["completed_at"] == "2024-05-01T10:01:00+00:00"
        logged = fields["choices_made"][0]
        assert (logged["stepId"], logged["choiceId"], logged["points"]) == ("s1", "c1", 10)
        assert logged["timestamp"].startswith("2024-05-01T10:01:00")

    def test_incomplete_has_no_completed_at(self):
        fields = progress_fields("s1", [], 0, False, None)
        assert fields["completed_at"] is None
