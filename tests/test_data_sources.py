"""
Log editing and normalisation of stored / imported JSON.
"""
import math

import pytest

from health_coach.catalog import CORE_EXERCISE_IDS, DEFAULT_EXERCISE_CATALOG, DEFAULT_PRESETS, exercise_label
from health_coach.data_sources import (
    MealItem,
    WeeklyMeasurement,
    WorkoutSet,
    add_meal_item,
    create_empty_log,
    log_from_dict,
    log_to_dict,
    meal_from_preset,
    normalize_exercise_catalog,
    normalize_weekly_measurements,
    remove_meal_item,
    state_from_dict,
    state_to_dict,
    upsert_workout_set,
    weekly_from_dict,
)

NOW = "2026-03-15T10:00:00+00:00"


class TestUpsertWorkoutSet:

    def test_new_exercise_is_appended(self):
        log = create_empty_log("2026-03-10")
        log = upsert_workout_set(log, WorkoutSet("jalon", 3, 10, 50))
        log = upsert_workout_set(log, WorkoutSet("remo", 3, 12, 40))
        assert [item.exercise_id for item in log.workout_sets] == ["jalon", "remo"]

    def test_same_exercise_updates_in_place(self):
        log = create_empty_log("2026-03-10")
        log = upsert_workout_set(log, WorkoutSet("jalon", 3, 10, 50))
        log = upsert_workout_set(log, WorkoutSet("remo", 3, 12, 40))
        log = upsert_workout_set(log, WorkoutSet("jalon", 4, 8, 55, rir=2))
        assert len(log.workout_sets) == 2
        first = log.workout_sets[0]
        assert (first.exercise_id, first.sets, first.reps, first.weight_kg, first.rir) == ("jalon", 4, 8, 55, 2)

    def test_legacy_exercise_field_matches(self):
        log = log_from_dict({
            "date": "2026-03-10",
            "workout": [{"id": "s1", "sets": [{"exercise": "remo", "sets": 3, "reps": 10, "weightKg": 40}]}],
        })
        log = upsert_workout_set(log, WorkoutSet("remo", 4, 10, 42))
        assert len(log.workout_sets) == 1
        assert log.workout_sets[0].weight_kg == 42
        assert log.workout_sets[0].exercise_id == "remo"

    def test_creates_session_when_missing(self):
        log = log_from_dict({"date": "2026-03-10"})
        assert log.workout == []
        log = upsert_workout_set(log, WorkoutSet("jalon", 3, 10, 50))
        assert len(log.workout) == 1


class TestMealEditing:

    def test_adherence_is_recomputed(self):
        log = create_empty_log("2026-03-10")
        assert log.adherence.nutrition_percent == 0
        assert log.adherence.kpi_flags == ["missing_desayuno", "missing_comida", "missing_cena"]
        log = add_meal_item(log, MealItem(id="m1", day_id="", meal="comida", p=40))
        assert log.meals[0].day_id == log.id
        assert log.adherence.kpi_flags == ["missing_desayuno", "missing_cena"]
        log = remove_meal_item(log, "m1")
        assert log.meals == []
        assert log.adherence.nutrition_percent == 0

    def test_unknown_slot_rejected(self):
        with pytest.raises(ValueError):
            add_meal_item(create_empty_log("2026-03-10"), MealItem(id="m", day_id="", meal="merienda"))

    def test_preset_scaling(self):
        rice = next(preset for preset in DEFAULT_PRESETS if preset.id == "preset_rice")
        item = meal_from_preset(rice, 200, "comida", "day-1")
        assert (item.p, item.f, item.c, item.kcal) == (5.4, 0.6, 56.4, 260)
        assert item.source == "preset"


class TestParsing:

    def test_non_numeric_fields_become_absent(self):
        log = log_from_dict({
            "date": "2026-03-10",
            "weightKg": "72.4",
            "waistCm": math.nan,
            "steps": True,
            "lumbarPain": 12,
        })
        assert log.weight_kg is None
        assert log.waist_cm is None
        assert log.steps is None
        assert log.lumbar_pain == 10

    def test_malformed_nested_items_are_dropped(self):
        log = log_from_dict({
            "date": "2026-03-10",
            "meals": [None, "cena", {"id": "m1", "meal": "cena", "p": 30}],
            "workout": [None, {"id": "s1", "sets": [7, {"exerciseId": "jalon", "sets": 3, "reps": 10, "weightKg": 50}]}],
        })
        assert [meal.id for meal in log.meals] == ["m1"]
        assert [item.exercise_id for item in log.workout_sets] == ["jalon"]

    def test_malformed_top_level_rows_are_dropped(self):
        state = state_from_dict({
            "logs": [None, {"date": 20260310}, {"id": "ok", "date": "2026-03-10", "meals": "oops"}],
            "weeklyMeasurements": "not a list",
            "presets": [None],
            "exerciseCatalog": [3],
        }, NOW)
        assert [log.id for log in state.logs] == ["ok"]
        assert state.logs[0].meals == []
        assert state.weekly_measurements == []
        assert state.presets == DEFAULT_PRESETS
        assert len(state.exercise_catalog) == len(DEFAULT_EXERCISE_CATALOG)

    def test_log_round_trip_keeps_camel_case_keys(self):
        raw = {
            "id": "l1",
            "date": "2026-03-10",
            "dayType": "gym",
            "weightKg": 72.4,
            "lumbarPain": 3,
            "meals": [{"id": "m1", "dayId": "l1", "meal": "cena", "grams": 150, "p": 30, "f": 5,
                       "c": 40, "kcal": 330, "source": "manual"}],
            "workout": [{"id": "s1", "dayId": "l1", "sets": [{"exerciseId": "jalon", "sets": 3,
                                                              "reps": 10, "weightKg": 50}]}],
        }
        out = log_to_dict(log_from_dict(raw))
        assert out["dayType"] == "gym"
        assert out["meals"][0]["kcal"] == 330
        assert out["workout"][0]["sets"][0] == {"exerciseId": "jalon", "sets": 3, "reps": 10, "weightKg": 50}
        assert out["adherence"]["kpiFlags"] == ["missing_desayuno", "missing_comida"]

    def test_catalog_keeps_defaults_and_adds_unknown_once(self):
        catalog = normalize_exercise_catalog([
            {"id": "jalon", "name": "Other name"},
            {"id": "dominadas", "name": "Dominadas"},
            {"id": "dominadas", "name": "Dominadas 2"},
            {"id": "", "name": "nameless"},
        ])
        assert len(catalog) == len(DEFAULT_EXERCISE_CATALOG) + 1
        assert catalog[0].name == "Jalon al pecho"
        assert catalog[-1].name == "Dominadas"

    def test_core_exercises_are_closed_set(self):
        assert CORE_EXERCISE_IDS == ("jalon", "remo", "laterales", "press_inclinado")
        assert exercise_label("press_inclinado") == "Press inclinado"
        assert exercise_label("prensa") == "Prensa"
        assert exercise_label("unknown") == "unknown"


class TestWeeklyDedup:
    """At most one weekly measurement per week start; the later write wins."""

    def test_later_write_wins(self):
        rows = [
            WeeklyMeasurement(id="a", week_start="2026-03-02", waist_cm=90.0),
            WeeklyMeasurement(id="b", week_start="2026-03-09", waist_cm=89.0),
            WeeklyMeasurement(id="c", week_start="2026-03-02", waist_cm=88.0),
        ]
        result = normalize_weekly_measurements(rows)
        assert [row.id for row in result] == ["b", "c"]

    def test_rows_without_week_start_dropped(self):
        rows = [weekly_from_dict({"waistCm": 90}), weekly_from_dict({"weekStart": "2026-03-02"})]
        assert [row.week_start for row in normalize_weekly_measurements(rows)] == ["2026-03-02"]

    def test_state_load_dedups_and_sorts_descending(self):
        state = state_from_dict({
            "weeklyMeasurements": [
                {"id": "a", "weekStart": "2026-02-23", "avgWeightKg": 73.0},
                {"id": "b", "weekStart": "2026-03-09", "avgWeightKg": 72.0},
                {"id": "c", "weekStart": "2026-02-23", "avgWeightKg": 72.8},
            ],
        }, NOW)
        assert [(row.id, row.avg_weight_kg) for row in state.weekly_measurements] == [("b", 72.0), ("c", 72.8)]


class TestState:

    def test_defaults_for_empty_input(self):
        state = state_from_dict(None, NOW, "device-1")
        assert state.logs == []
        assert state.presets == DEFAULT_PRESETS
        assert state.meta.device_id == "device-1"
        assert state.created_at == NOW

    def test_logs_dedup_by_date(self):
        state = state_from_dict({"logs": [
            {"id": "1", "date": "2026-03-11"},
            {"id": "2", "date": "2026-03-10"},
            {"id": "3", "date": "2026-03-11", "weightKg": 72.0},
        ]}, NOW)
        assert [(log.id, log.date) for log in state.logs] == [("2", "2026-03-10"), ("3", "2026-03-11")]

    def test_round_trip(self):
        state = state_from_dict({
            "logs": [{"id": "1", "date": "2026-03-10", "weightKg": 72.0}],
            "weeklyMeasurements": [{"id": "w", "weekStart": "2026-03-09", "chestCm": 101.5}],
            "draftByWeek": {"2026-03-09": {"id": "d", "waistCm": 88}},
            "settings": {"notificationsEnabled": True},
        }, NOW)
        again = state_from_dict(state_to_dict(state), NOW)
        assert again.logs == state.logs
        assert again.weekly_measurements == state.weekly_measurements
        assert again.draft_by_week["2026-03-09"].waist_cm == 88
        assert again.settings.notifications_enabled is True
