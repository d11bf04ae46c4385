"""
CSV export, weekly JSON export and backup import.
"""
import csv
import io
import json
from datetime import datetime, timezone

import pytest

from health_coach.catalog import DEFAULT_EXERCISE_CATALOG, DEFAULT_PRESETS, ExerciseCatalogItem
from health_coach.data_sources import (
    DailyLog,
    MealItem,
    WeeklyMeasurement,
    WorkoutSession,
    WorkoutSet,
    state_from_dict,
)
from health_coach.exporters import (
    CSV_HEADER,
    escape_csv_value,
    export_weekly_json,
    merge_import,
    to_csv,
    to_tagged_csv,
    week_bounds,
)

NOW = "2026-03-15T10:00:00+00:00"


def _log(day: str, meals=(), sets=(), **kwargs) -> DailyLog:
    return DailyLog(
        id=f"log-{day}",
        date=day,
        meals=list(meals),
        workout=[WorkoutSession(id="s", day_id=f"log-{day}", sets=list(sets))],
        **kwargs,
    )


class TestWeekBounds:

    @pytest.mark.parametrize("reference", ["2026-03-09", "2026-03-12", "2026-03-15"])
    def test_monday_to_sunday(self, reference):
        assert week_bounds(reference) == ("2026-03-09", "2026-03-15")

    def test_week_across_year_end(self):
        assert week_bounds("2027-01-01") == ("2026-12-28", "2027-01-03")


class TestCsv:

    def test_escape(self):
        assert escape_csv_value("plain") == "plain"
        assert escape_csv_value("a,b") == '"a,b"'
        assert escape_csv_value('say "hi"') == '"say ""hi"""'
        assert escape_csv_value("two\nlines") == '"two\nlines"'
        assert escape_csv_value(None) == ""

    def test_header_is_fixed(self):
        lines = to_csv([], "2026-03-09", "2026-03-15").split("\n")
        assert lines == [",".join(CSV_HEADER)]
        assert CSV_HEADER[0] == "fecha" and CSV_HEADER[-1] == "rir"

    def test_two_meals_one_set_gives_two_rows(self):
        log = _log(
            "2026-03-10",
            day_type="gym",
            weight_kg=72.4,
            meals=[
                MealItem(id="m1", day_id="x", meal="desayuno", grams=100, p=20, f=10, c=50, kcal=390, notes="Avena"),
                MealItem(id="m2", day_id="x", meal="comida", grams=150, p=40, f=5, c=0, kcal=210),
            ],
            sets=[WorkoutSet("jalon", 3, 10, 50, rir=2)],
        )
        lines = to_csv([log], "2026-03-09", "2026-03-15").split("\n")
        assert len(lines) == 3
        first = lines[1].split(",")
        second = lines[2].split(",")
        assert first[:5] == ["2026-03-10", "gym", "72.4", "", "0"]
        assert first[16:22] == ["desayuno: Avena", "100", "20", "10", "50", "390"]
        assert first[22:] == ["jalon", "3", "10", "50", "2"]
        assert second[16] == "comida: "
        assert second[20] == ""
        assert second[22:] == ["", "", "", "", ""]

    def test_empty_log_still_gets_one_row(self):
        lines = to_csv([_log("2026-03-10")], "2026-03-09", "2026-03-15").split("\n")
        assert len(lines) == 2
        assert lines[1].split(",")[16:] == [""] * 11

    def test_logs_outside_window_skipped(self):
        logs = [_log("2026-03-08"), _log("2026-03-09"), _log("2026-03-16")]
        lines = to_csv(logs, "2026-03-09", "2026-03-15").split("\n")
        assert [line.split(",")[0] for line in lines[1:]] == ["2026-03-09"]

    def test_weekly_measurement_columns_joined_by_week(self):
        weeks = [WeeklyMeasurement(id="w", week_start="2026-03-09", avg_weight_kg=72.2, chest_cm=101.0)]
        row = to_csv([_log("2026-03-11")], "2026-03-09", "2026-03-15", weeks).split("\n")[1].split(",")
        assert row[7] == "72.2"
        assert row[12] == "101"

    def test_notes_with_commas_are_quoted(self):
        meal = MealItem(id="m", day_id="x", meal="cena", notes="arroz, pollo")
        line = to_csv([_log("2026-03-10", meals=[meal])], "2026-03-09", "2026-03-15").split("\n")[1]
        assert '"cena: arroz, pollo"' in line

    def test_tagged_rows_keep_meals_and_sets_apart(self):
        log = _log(
            "2026-03-10",
            meals=[MealItem(id="m1", day_id="x", meal="desayuno", p=20)],
            sets=[WorkoutSet("jalon", 3, 10, 50), WorkoutSet("remo", 3, 12, 40)],
        )
        lines = to_tagged_csv([log], "2026-03-09", "2026-03-15").split("\n")
        assert [line.split(",")[2] for line in lines[1:]] == ["meal", "set", "set"]
        assert [line.split(",")[3] for line in lines[2:]] == ["Jalon al pecho", "Remo cable / maquina"]

    def test_tagged_rows_use_custom_catalog_names(self):
        custom = list(DEFAULT_EXERCISE_CATALOG) + [ExerciseCatalogItem(id="remo_t", name="Remo T")]
        log = _log("2026-03-10", sets=[WorkoutSet("remo_t", 3, 10, 40)])
        line = to_tagged_csv([log], "2026-03-09", "2026-03-15", custom).split("\n")[1]
        assert line.split(",")[3] == "Remo T"

    def test_quoted_fields_round_trip_through_csv_reader(self):
        meal = MealItem(id="m", day_id="x", meal="cena", notes='pollo "asado",\ncon arroz')
        text = to_csv([_log("2026-03-10", meals=[meal])], "2026-03-09", "2026-03-15")
        rows = list(csv.reader(io.StringIO(text)))
        assert len(rows) == 2
        assert rows[1][16] == 'cena: pollo "asado",\ncon arroz'


class TestWeeklyExport:

    def _state(self):
        return state_from_dict({
            "version": 4,
            "logs": [
                {"id": "a", "date": "2026-03-08"},
                {"id": "b", "date": "2026-03-09"},
                {"id": "c", "date": "2026-03-15"},
            ],
            "weeklyMeasurements": [
                {"id": "w1", "weekStart": "2026-03-02"},
                {"id": "w2", "weekStart": "2026-03-09", "waistCm": 88},
            ],
            "draftByDate": {"2026-03-12": {"id": "d1"}, "2026-03-20": {"id": "d2"}},
        }, NOW, "device-1")

    def test_payload_limited_to_week(self):
        result = export_weekly_json(
            self._state(), "2026-03-11", generated_at=datetime(2026, 3, 15, 10, tzinfo=timezone.utc),
            timezone_name="Europe/Madrid",
        )
        assert (result.week_start, result.week_end) == ("2026-03-09", "2026-03-15")
        assert result.file_name == "health-tracker-semana-2026-03-09.json"
        assert [log["id"] for log in result.payload["logs"]] == ["b", "c"]
        assert [row["id"] for row in result.payload["weeklyMeasurements"]] == ["w2"]
        assert list(result.payload["draftByDate"]) == ["2026-03-12"]
        meta = result.payload["exportMeta"]
        assert meta["weekStart"] == "2026-03-09"
        assert meta["timeZone"] == "Europe/Madrid"
        assert meta["generatedAt"].startswith("2026-03-15T10:00:00")
        assert len(result.payload["exerciseCatalog"]) == len(DEFAULT_EXERCISE_CATALOG)
        assert json.loads(result.content) == result.payload

    def test_export_can_be_imported_back(self):
        exported = export_weekly_json(self._state(), "2026-03-11").payload
        empty = state_from_dict(None, NOW)
        merged = merge_import(empty, exported)
        assert [log.date for log in merged.logs] == ["2026-03-09", "2026-03-15"]
        assert [row.week_start for row in merged.weekly_measurements] == ["2026-03-09"]


class TestMergeImport:

    def test_imported_records_replace_same_keys(self):
        state = state_from_dict({
            "logs": [{"id": "old", "date": "2026-03-10", "weightKg": 73.0}],
            "weeklyMeasurements": [{"id": "w-old", "weekStart": "2026-03-09", "waistCm": 90}],
        }, NOW)
        merged = merge_import(state, {
            "logs": [{"id": "new", "date": "2026-03-10", "weightKg": 72.0}, {"id": "n2", "date": "2026-03-11"}],
            "weeklyMeasurements": [{"id": "w-new", "weekStart": "2026-03-09", "waistCm": 89}, {"waistCm": 1}],
        })
        assert [(log.id, log.weight_kg) for log in merged.logs] == [("new", 72.0), ("n2", None)]
        assert [(row.id, row.waist_cm) for row in merged.weekly_measurements] == [("w-new", 89)]

    def test_presets_and_catalog_only_added_when_new(self):
        state = state_from_dict(None, NOW)
        merged = merge_import(state, {
            "presets": [
                {"id": "preset_egg", "name": "Other egg", "pPer100g": 1},
                {"id": "preset_yogurt", "name": "Yogur", "pPer100g": 10, "kcalPer100g": 60},
            ],
            "exerciseCatalog": [{"id": "jalon", "name": "x"}, {"id": "remo_t", "name": "Remo T"}],
        })
        assert len(merged.presets) == len(DEFAULT_PRESETS) + 1
        assert merged.presets[0].name == "Huevo entero"
        assert merged.exercise_catalog[-1].id == "remo_t"

    def test_rejects_non_object(self):
        with pytest.raises(ValueError):
            merge_import(state_from_dict(None, NOW), ["not", "an", "object"])
