from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .catalog import ExerciseCatalogItem, exercise_label
from .data_sources import (
    AppState,
    DailyLog,
    WeeklyMeasurement,
    catalog_item_to_dict,
    log_from_dict,
    log_to_dict,
    logs_from_dicts,
    mapping_rows,
    meta_to_dict,
    normalize_exercise_catalog,
    normalize_logs,
    normalize_weekly_measurements,
    preset_to_dict,
    presets_from_dicts,
    weekly_from_dict,
    weekly_to_dict,
)
from .metrics import is_in_range

logger = logging.getLogger(__name__)

APP_VERSION = "health-tracker-pwa-v1.1"

CSV_HEADER = [
    "fecha",
    "tipo_dia",
    "pesoKg",
    "cinturaCm",
    "dolor_lumbar",
    "sueño_h",
    "pasos",
    "peso_medida_kg",
    "cintura_medida_cm",
    "dolor_lumbar_medida",
    "sueño_medida_h",
    "pasos_medida",
    "pecho_cm",
    "hombros_cm",
    "brazo_cm",
    "cadera_cm",
    "comida",
    "gramos",
    "proteinas",
    "grasas",
    "carbos",
    "kcal",
    "ejercicio",
    "sets",
    "reps",
    "kg",
    "rir",
]

TAGGED_CSV_HEADER = ["fecha", "tipo_dia", "tipo", "nombre", "gramos", "proteinas", "grasas", "carbos", "kcal",
                     "sets", "reps", "kg", "rir"]


def week_start(value: str) -> str:
    day = date.fromisoformat(value)
    return (day - timedelta(days=day.weekday())).isoformat()


def week_bounds(reference: str) -> Tuple[str, str]:
    """Monday-to-Sunday week containing ``reference``."""

    start = week_start(reference)
    end = (date.fromisoformat(start) + timedelta(days=6)).isoformat()
    return start, end


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def _csv_text(header: List[str], rows: Iterable[List[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    # no trailing newline after the last row
    return buffer.getvalue()[:-1]


def escape_csv_value(value: Optional[str]) -> str:
    """Quote a single field only when it holds a comma, a quote or a line break."""
    if not value:
        return ""
    return _csv_text([value], [])


def _num(value: Optional[float]) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _truthy_num(value: Optional[float]) -> str:
    # zero reads as "not filled in" for log and meal numbers
    return _num(value) if value else ""


def _measurement_columns(row: Optional[WeeklyMeasurement]) -> List[str]:
    if row is None:
        return [""] * 9
    return [
        _num(row.avg_weight_kg),
        _num(row.waist_cm),
        _num(row.avg_lumbar_pain),
        _num(row.sleep_hours),
        _num(row.steps),
        _num(row.chest_cm),
        _num(row.shoulders_cm),
        _num(row.arm_cm),
        _num(row.hips_cm),
    ]


def _log_rows(log: DailyLog, measurement: Optional[WeeklyMeasurement]) -> List[List[str]]:
    head = [
        log.date,
        log.day_type,
        _truthy_num(log.weight_kg),
        _truthy_num(log.waist_cm),
        str(log.lumbar_pain),
        _truthy_num(log.sleep_hours),
        _truthy_num(log.steps),
    ] + _measurement_columns(measurement)

    sets = log.workout_sets
    rows = []
    # meals and sets are unrelated; they are zipped by position only
    for idx in range(max(len(log.meals), len(sets), 1)):
        meal = log.meals[idx] if idx < len(log.meals) else None
        item = sets[idx] if idx < len(sets) else None
        meal_cols = (
            [f"{meal.meal}: {meal.notes or ''}", _truthy_num(meal.grams), _truthy_num(meal.p),
             _truthy_num(meal.f), _truthy_num(meal.c), _truthy_num(meal.kcal)]
            if meal
            else [""] * 6
        )
        set_cols = (
            [item.key, _num(item.sets), _num(item.reps), _num(item.weight_kg), _num(item.rir)]
            if item
            else [""] * 5
        )
        rows.append(head + meal_cols + set_cols)
    return rows


def to_csv(
    logs: Iterable[DailyLog],
    start: str,
    end: str,
    weekly_measurements: Iterable[WeeklyMeasurement] = (),
) -> str:
    """Denormalised CSV of the logs dated within ``[start, end]``."""

    by_week = {row.week_start: row for row in weekly_measurements}
    rows = []
    for log in logs:
        if is_in_range(log.date, start, end):
            rows.extend(_log_rows(log, by_week.get(week_start(log.date))))
    return _csv_text(CSV_HEADER, rows)


def to_tagged_csv(
    logs: Iterable[DailyLog],
    start: str,
    end: str,
    catalog: Optional[List[ExerciseCatalogItem]] = None,
) -> str:
    """One row per meal item and per workout set, tagged by kind."""

    rows = []
    for log in logs:
        if not is_in_range(log.date, start, end):
            continue
        for meal in log.meals:
            rows.append([log.date, log.day_type, "meal", f"{meal.meal}: {meal.notes or ''}", _num(meal.grams),
                         _num(meal.p), _num(meal.f), _num(meal.c), _num(meal.kcal), "", "", "", ""])
        for item in log.workout_sets:
            rows.append([log.date, log.day_type, "set", exercise_label(item.key, catalog), "", "", "", "", "",
                         _num(item.sets), _num(item.reps), _num(item.weight_kg), _num(item.rir)])
    return _csv_text(TAGGED_CSV_HEADER, rows)


# ---------------------------------------------------------------------------
# Weekly JSON export / import
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WeekExport:
    file_name: str
    content: str
    week_start: str
    week_end: str
    payload: Dict[str, Any]


def export_weekly_json(
    state: AppState,
    reference: str,
    generated_at: Optional[datetime] = None,
    timezone_name: str = "UTC",
) -> WeekExport:
    start, end = week_bounds(reference)
    generated_at = generated_at or datetime.now(timezone.utc)

    payload = {
        "exportMeta": {
            "appVersion": APP_VERSION,
            "generatedAt": generated_at.isoformat(),
            "weekStart": start,
            "weekEnd": end,
            "timeZone": timezone_name,
            "schemaVersion": state.version,
        },
        "logs": [log_to_dict(log) for log in state.logs if is_in_range(log.date, start, end)],
        "weeklyMeasurements": [
            weekly_to_dict(row) for row in state.weekly_measurements if is_in_range(row.week_start, start, end)
        ],
        "draftByDate": {
            key: log_to_dict(value) for key, value in state.draft_by_date.items() if is_in_range(key, start, end)
        },
        "draftByWeek": {
            key: weekly_to_dict(value) for key, value in state.draft_by_week.items() if is_in_range(key, start, end)
        },
        "presets": [preset_to_dict(preset) for preset in state.presets],
        "exerciseCatalog": [catalog_item_to_dict(item) for item in state.exercise_catalog],
        "settings": {"notificationsEnabled": state.settings.notifications_enabled},
        "meta": meta_to_dict(state.meta),
    }

    return WeekExport(
        file_name=f"health-tracker-semana-{start}.json",
        content=json.dumps(payload, indent=2, ensure_ascii=False),
        week_start=start,
        week_end=end,
        payload=payload,
    )


def merge_import(state: AppState, payload: Mapping[str, Any]) -> AppState:
    """Merge an exported payload into ``state``.

    Logs (by date) and weekly measurements (by week start) from the payload
    replace stored ones. Presets and catalog items are only added when new.
    """

    if not isinstance(payload, Mapping):
        raise ValueError("Import payload must be a JSON object")

    incoming_logs = logs_from_dicts(mapping_rows(payload.get("logs")))
    incoming_weekly = [weekly_from_dict(row) for row in mapping_rows(payload.get("weeklyMeasurements"))]
    skipped = len(incoming_weekly) - len([row for row in incoming_weekly if row.week_start])
    if skipped:
        logger.warning("Skipping %d weekly measurement(s) without weekStart", skipped)

    presets = list(state.presets)
    known_presets = {preset.id for preset in presets}
    for preset in presets_from_dicts(mapping_rows(payload.get("presets"))):
        if preset.id not in known_presets:
            presets.append(preset)
            known_presets.add(preset.id)

    catalog = normalize_exercise_catalog(
        [catalog_item_to_dict(item) for item in state.exercise_catalog] + mapping_rows(payload.get("exerciseCatalog"))
    )

    drafts = dict(state.draft_by_date)
    raw_drafts = payload.get("draftByDate")
    if isinstance(raw_drafts, Mapping):
        for key, value in raw_drafts.items():
            if isinstance(value, Mapping):
                drafts[key] = log_from_dict({**value, "date": value.get("date") or key})

    week_drafts = dict(state.draft_by_week)
    raw_week_drafts = payload.get("draftByWeek")
    if isinstance(raw_week_drafts, Mapping):
        for key, value in raw_week_drafts.items():
            if isinstance(value, Mapping):
                week_drafts[key] = replace(weekly_from_dict(value), week_start=key)

    logger.info(
        "Imported %d log(s) and %d weekly measurement(s)", len(incoming_logs), len(incoming_weekly) - skipped
    )
    return replace(
        state,
        logs=normalize_logs(list(state.logs) + incoming_logs),
        weekly_measurements=normalize_weekly_measurements(list(state.weekly_measurements) + incoming_weekly),
        presets=presets,
        exercise_catalog=catalog,
        draft_by_date=drafts,
        draft_by_week=week_drafts,
    )
