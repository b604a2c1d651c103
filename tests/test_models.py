"""Tests for the habit model, form validation and row layout."""
from __future__ import annotations

import re
from datetime import date, datetime

import pytest

from core.exceptions import ValidationError
from models import Habit, HabitCategory, HabitType, generate_habit_id, validate_form
from services.sheet_layout import (
    COLUMN_COUNT,
    COLUMNS,
    HEADER,
    LAST_COLUMN,
    column_letter,
    habit_to_row,
    row_to_habit
)

MARCH = date(2025, 3, 1)


def make_habit(**overrides) -> Habit:
    fields = dict(id="habit_1", name="Drink water", habit_type=HabitType.GOOD, goal=8,
                  created_date=date(2025, 3, 1))
    fields.update(overrides)
    return Habit(**fields)


class TestHabit:
    def test_only_selected_target_is_kept(self):
        good = Habit(id="g", name="Run", habit_type="good", goal=5, limit=3)
        bad = Habit(id="b", name="Smoke", habit_type="bad", goal=5, limit=3)
        assert (good.goal, good.limit, good.target) == (5, None, 5)
        assert (bad.goal, bad.limit, bad.target) == (None, 3, 3)

    @pytest.mark.parametrize("habit_type, goal, limit, value, expected", [
        ("good", 8, None, 8, True),
        ("good", 8, None, 7, False),
        ("good", None, None, 1, True),
        ("good", None, None, 0, False),
        ("bad", None, 2, 2, True),
        ("bad", None, 2, 3, False),
        ("bad", None, None, 0, True),
        ("bad", None, None, 1, False),
    ])
    def test_completion_rule(self, habit_type, goal, limit, value, expected):
        habit = Habit(id="h", name="h", habit_type=habit_type, goal=goal, limit=limit)
        assert habit.is_value_completed(value) is expected

    def test_track_sets_date_and_completion(self):
        habit = make_habit()
        tracking = habit.track(10, 9, month=MARCH, now=datetime(2025, 3, 10, 8, 0))
        assert tracking.date == "2025-03-10"
        assert tracking.completed is True
        assert habit.daily_tracking[10] is tracking

    @pytest.mark.parametrize("day", [0, 32])
    def test_track_rejects_out_of_range_day(self, day):
        with pytest.raises(ValidationError):
            make_habit().track(day, 1, month=MARCH)

    def test_track_rejects_day_missing_from_month(self):
        with pytest.raises(ValidationError):
            make_habit().track(30, 1, month=date(2025, 2, 1))

    def test_streaks(self):
        habit = make_habit(longest_streak=1)
        for day, value in [(1, 8), (2, 8), (3, 8), (4, 0), (5, 8), (6, 8)]:
            habit.track(day, value, month=MARCH)
        habit.recalculate_streaks(today=6)
        assert habit.current_streak == 2
        assert habit.longest_streak == 3

        habit.recalculate_streaks(today=7)
        assert habit.current_streak == 0

    def test_dict_roundtrip(self):
        habit = make_habit(tags=["health"], subtasks=["glass 1"], category="health")
        habit.track(3, 8, month=MARCH)
        assert Habit.from_dict(habit.to_dict()) == habit

    def test_generated_id_format(self):
        assert re.match(r"^habit_\d{13}_[0-9a-z]{9}$", generate_habit_id())


class TestFormValidation:
    def test_camel_case_form(self):
        form = validate_form({"name": "  Read  ", "habitType": "good", "goal": 8.0,
                              "difficultyLevel": 2, "startTime": "07:30", "isQuantifiable": True})
        assert form.name == "Read"
        assert form.goal == 8
        assert form.difficulty_level == 2
        assert form.start_time == "07:30"
        assert form.is_quantifiable is True

    @pytest.mark.parametrize("form", [
        {"name": ""},
        {"name": "x" * 101},
        {"name": "ok", "difficultyLevel": 6},
        {"name": "ok", "goal": 0},
        {"name": "ok", "limit": -1},
        {"name": "ok", "startTime": "25:99"},
        {"name": "ok", "tags": [str(i) for i in range(11)]},
        {"name": "ok", "habitType": "neutral"},
    ])
    def test_invalid_forms(self, form):
        with pytest.raises(ValidationError) as excinfo:
            validate_form(form)
        assert excinfo.value.errors


class TestRowLayout:
    def test_header_shape(self):
        assert COLUMN_COUNT == 50
        assert LAST_COLUMN == "AX"
        assert HEADER[0] == "id"
        assert HEADER[COLUMNS["1"]:COLUMNS["31"] + 1] == [str(d) for d in range(1, 32)]
        assert HEADER[-1] == "emoji"

    @pytest.mark.parametrize("index, letter", [(0, "A"), (25, "Z"), (26, "AA"), (49, "AX")])
    def test_column_letter(self, index, letter):
        assert column_letter(index) == letter

    def test_habit_to_row(self):
        habit = make_habit(tags=["a", "b"], is_archived=True, emoji="💧")
        habit.track(2, 5, month=MARCH)
        row = habit_to_row(habit)

        assert len(row) == COLUMN_COUNT
        assert row[COLUMNS["name"]] == "Drink water"
        assert row[COLUMNS["goal"]] == "8"
        assert row[COLUMNS["limit"]] == ""
        assert row[COLUMNS["2"]] == "5"
        assert row[COLUMNS["1"]] == ""
        assert row[COLUMNS["tags"]] == '["a", "b"]'
        assert row[COLUMNS["isArchived"]] == "TRUE"
        assert row[COLUMNS["emoji"]] == "💧"

    def test_row_roundtrip_is_stable(self):
        habit = make_habit(category=HabitCategory.HEALTH, subtasks=["one", "two"], unit="glasses")
        habit.track(1, 8, month=MARCH)
        habit.track(2, 3, month=MARCH)

        parsed = row_to_habit(habit_to_row(habit), MARCH)

        assert habit_to_row(parsed) == habit_to_row(habit)
        assert parsed.daily_tracking[1].completed is True
        assert parsed.daily_tracking[2].completed is False
        assert parsed.daily_tracking[2].date == "2025-03-02"

    def test_short_row_and_defaults(self):
        habit = row_to_habit(["h1", "Walk"], MARCH)
        assert habit.habit_type is HabitType.GOOD
        assert habit.color_code == "#3b82f6"
        assert habit.category is HabitCategory.OTHER
        assert habit.daily_tracking == {}
        assert habit.created_date == MARCH

    def test_blank_id_row_is_skipped(self):
        assert row_to_habit(["", "Ghost"], MARCH) is None
        assert row_to_habit([], MARCH) is None

    def test_comma_separated_tags_from_older_rows(self):
        row = habit_to_row(make_habit())
        row[COLUMNS["tags"]] = "x, y"
        assert row_to_habit(row, MARCH).tags == ["x", "y"]

    def test_tag_with_comma_survives_roundtrip(self):
        habit = make_habit(tags=["a,b", "Здоровье"])
        row = habit_to_row(habit)
        assert row[COLUMNS["tags"]] == '["a,b", "Здоровье"]'
        assert row_to_habit(row, MARCH).tags == ["a,b", "Здоровье"]
