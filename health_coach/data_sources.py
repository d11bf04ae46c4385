from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .catalog import DEFAULT_EXERCISE_CATALOG, DEFAULT_PRESETS, ExerciseCatalogItem, FoodPreset

MEAL_NAMES = ("desayuno", "comida", "cena")
DAY_TYPES = ("gym", "nogym")
SCHEMA_VERSION = 4


def uid() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class MealItem:
    id: str
    day_id: str
    meal: str
    p: float = 0.0
    f: float = 0.0
    c: float = 0.0
    kcal: float = 0.0
    source: str = "manual"
    grams: float = 0.0
    preset_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class WorkoutSet:
    exercise_id: str
    sets: float
    reps: float
    weight_kg: float
    rir: Optional[float] = None
    exercise: Optional[str] = None

    @property
    def key(self) -> str:
        """Exercise id, falling back to the legacy ``exercise`` field."""
        return self.exercise_id or self.exercise or ""

    @property
    def load(self) -> float:
        return self.sets * self.reps * self.weight_kg


@dataclass(frozen=True)
class WorkoutSession:
    id: str
    day_id: str
    sets: List[WorkoutSet] = field(default_factory=list)
    duration_min: Optional[float] = None


@dataclass(frozen=True)
class Adherence:
    nutrition_percent: int = 0
    kpi_flags: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DailyLog:
    id: str
    date: str
    day_type: str = "nogym"
    lumbar_pain: int = 0
    weight_kg: Optional[float] = None
    waist_cm: Optional[float] = None
    sleep_hours: Optional[float] = None
    steps: Optional[float] = None
    note: Optional[str] = None
    meals: List[MealItem] = field(default_factory=list)
    workout: List[WorkoutSession] = field(default_factory=list)
    adherence: Adherence = field(default_factory=Adherence)

    @property
    def workout_sets(self) -> List[WorkoutSet]:
        return [item for session in self.workout for item in session.sets]


@dataclass(frozen=True)
class WeeklyMeasurement:
    id: str
    week_start: str
    avg_weight_kg: Optional[float] = None
    waist_cm: Optional[float] = None
    avg_lumbar_pain: Optional[float] = None
    steps: Optional[float] = None
    sleep_hours: Optional[float] = None
    chest_cm: Optional[float] = None
    shoulders_cm: Optional[float] = None
    arm_cm: Optional[float] = None
    hips_cm: Optional[float] = None


@dataclass(frozen=True)
class AppSettings:
    notifications_enabled: bool = False


@dataclass(frozen=True)
class SaveMeta:
    last_saved_at: int
    schema_version: int = SCHEMA_VERSION
    device_id: Optional[str] = None
    last_saved_with_fallback: Optional[bool] = None


@dataclass(frozen=True)
class AppState:
    created_at: str
    updated_at: str
    meta: SaveMeta
    logs: List[DailyLog] = field(default_factory=list)
    weekly_measurements: List[WeeklyMeasurement] = field(default_factory=list)
    presets: List[FoodPreset] = field(default_factory=lambda: list(DEFAULT_PRESETS))
    exercise_catalog: List[ExerciseCatalogItem] = field(
        default_factory=lambda: list(DEFAULT_EXERCISE_CATALOG)
    )
    draft_by_date: Dict[str, DailyLog] = field(default_factory=dict)
    draft_by_week: Dict[str, WeeklyMeasurement] = field(default_factory=dict)
    settings: AppSettings = field(default_factory=AppSettings)
    version: int = SCHEMA_VERSION


# ---------------------------------------------------------------------------
# Log editing
# ---------------------------------------------------------------------------


def create_empty_session(day_id: str) -> WorkoutSession:
    return WorkoutSession(id=uid(), day_id=day_id)


def create_empty_log(log_date: str) -> DailyLog:
    log_id = uid()
    return with_adherence(DailyLog(id=log_id, date=log_date, workout=[create_empty_session(log_id)]))


def with_adherence(log: DailyLog) -> DailyLog:
    """Return ``log`` with its adherence recomputed from meals and day type."""

    from .metrics import day_adherence

    return replace(log, adherence=day_adherence(log))


def upsert_workout_set(log: DailyLog, workout_set: WorkoutSet) -> DailyLog:
    """Insert or update the day's entry for ``workout_set``'s exercise.

    A day holds at most one set entry per exercise; a second entry for the same
    exercise replaces the stored numbers in place and keeps its position.
    """

    session = log.workout[0] if log.workout else create_empty_session(log.id)
    key = workout_set.key
    sets = list(session.sets)
    for idx, existing in enumerate(sets):
        if existing.key == key:
            sets[idx] = replace(
                existing,
                exercise_id=key,
                sets=workout_set.sets,
                reps=workout_set.reps,
                weight_kg=workout_set.weight_kg,
                rir=workout_set.rir,
            )
            break
    else:
        sets.append(replace(workout_set, exercise_id=key, exercise=None))

    workout = [replace(session, sets=sets)] + list(log.workout[1:])
    return with_adherence(replace(log, workout=workout))


def add_meal_item(log: DailyLog, item: MealItem) -> DailyLog:
    if item.meal not in MEAL_NAMES:
        raise ValueError(f"Unknown meal slot {item.meal!r}")
    return with_adherence(replace(log, meals=list(log.meals) + [replace(item, day_id=log.id)]))


def remove_meal_item(log: DailyLog, item_id: str) -> DailyLog:
    return with_adherence(replace(log, meals=[meal for meal in log.meals if meal.id != item_id]))


def meal_from_preset(preset: FoodPreset, grams: float, meal: str, day_id: str) -> MealItem:
    factor = grams / 100.0
    return MealItem(
        id=uid(),
        day_id=day_id,
        meal=meal,
        p=round(preset.p_per_100g * factor, 1),
        f=round(preset.f_per_100g * factor, 1),
        c=round(preset.c_per_100g * factor, 1),
        kcal=round(preset.kcal_per_100g * factor),
        source="preset",
        grams=grams,
        preset_id=preset.id,
        notes=preset.name,
    )


# ---------------------------------------------------------------------------
# Parsing stored / imported JSON
# ---------------------------------------------------------------------------


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _clean_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _pain(value: Any) -> int:
    number = _to_float(value)
    if number is None:
        return 0
    return int(max(0, min(10, number)))


def meal_from_dict(row: Mapping[str, Any], day_id: str) -> MealItem:
    return MealItem(
        id=row.get("id") or uid(),
        day_id=row.get("dayId") or day_id,
        meal=row.get("meal") if row.get("meal") in MEAL_NAMES else "desayuno",
        p=_to_float(row.get("p")) or 0.0,
        f=_to_float(row.get("f")) or 0.0,
        c=_to_float(row.get("c")) or 0.0,
        kcal=_to_float(row.get("kcal")) or 0.0,
        source="preset" if row.get("source") == "preset" else "manual",
        grams=_to_float(row.get("grams")) or 0.0,
        preset_id=_clean_text(row.get("presetId")),
        notes=_clean_text(row.get("notes")),
    )


def workout_set_from_dict(row: Mapping[str, Any]) -> WorkoutSet:
    return WorkoutSet(
        exercise_id=row.get("exerciseId") or "",
        sets=_to_float(row.get("sets")) or 0,
        reps=_to_float(row.get("reps")) or 0,
        weight_kg=_to_float(row.get("weightKg")) or 0,
        rir=_to_float(row.get("rir")),
        exercise=_clean_text(row.get("exercise")),
    )


def mapping_rows(value: Any) -> List[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def log_from_dict(row: Mapping[str, Any]) -> DailyLog:
    log_id = row.get("id") or uid()
    sessions = []
    for raw in mapping_rows(row.get("workout")):
        sessions.append(
            WorkoutSession(
                id=raw.get("id") or uid(),
                day_id=raw.get("dayId") or log_id,
                sets=[workout_set_from_dict(item) for item in mapping_rows(raw.get("sets"))],
                duration_min=_to_float(raw.get("durationMin")),
            )
        )
    log = DailyLog(
        id=log_id,
        date=row["date"],
        day_type=row["dayType"] if row.get("dayType") in DAY_TYPES else "nogym",
        lumbar_pain=_pain(row.get("lumbarPain")),
        weight_kg=_to_float(row.get("weightKg")),
        waist_cm=_to_float(row.get("waistCm")),
        sleep_hours=_to_float(row.get("sleepHours")),
        steps=_to_float(row.get("steps")),
        note=_clean_text(row.get("note")),
        meals=[meal_from_dict(item, log_id) for item in mapping_rows(row.get("meals"))],
        workout=sessions,
    )
    return with_adherence(log)


def weekly_from_dict(row: Mapping[str, Any]) -> WeeklyMeasurement:
    return WeeklyMeasurement(
        id=row.get("id") or uid(),
        week_start=row.get("weekStart") or "",
        avg_weight_kg=_to_float(row.get("avgWeightKg")),
        waist_cm=_to_float(row.get("waistCm")),
        avg_lumbar_pain=_to_float(row.get("avgLumbarPain")),
        steps=_to_float(row.get("steps")),
        sleep_hours=_to_float(row.get("sleepHours")),
        chest_cm=_to_float(row.get("chestCm")),
        shoulders_cm=_to_float(row.get("shouldersCm")),
        arm_cm=_to_float(row.get("armCm")),
        hips_cm=_to_float(row.get("hipsCm")),
    )


def normalize_weekly_measurements(rows: Iterable[WeeklyMeasurement]) -> List[WeeklyMeasurement]:
    """One record per week start, later writes win, newest week first."""

    by_week: Dict[str, WeeklyMeasurement] = {}
    for row in rows:
        if not row.week_start:
            continue
        by_week[row.week_start] = row
    return sorted(by_week.values(), key=lambda item: item.week_start, reverse=True)


def normalize_logs(rows: Iterable[DailyLog]) -> List[DailyLog]:
    by_date: Dict[str, DailyLog] = {}
    for row in rows:
        if not row.date:
            continue
        by_date[row.date] = row
    return sorted(by_date.values(), key=lambda item: item.date)


def normalize_exercise_catalog(raw: Iterable[Mapping[str, Any]]) -> List[ExerciseCatalogItem]:
    merged = list(DEFAULT_EXERCISE_CATALOG)
    known = {item.id for item in merged}
    for item in raw:
        if not item.get("id") or not item.get("name"):
            continue
        if item["id"] in known:
            continue
        merged.append(
            ExerciseCatalogItem(
                id=item["id"],
                name=item["name"],
                is_core=bool(item.get("isCore")),
                core_id=item.get("coreId"),
            )
        )
        known.add(item["id"])
    return merged


def _preset_from_dict(row: Mapping[str, Any]) -> FoodPreset:
    return FoodPreset(
        id=row["id"],
        name=row["name"],
        p_per_100g=_to_float(row.get("pPer100g")) or 0.0,
        f_per_100g=_to_float(row.get("fPer100g")) or 0.0,
        c_per_100g=_to_float(row.get("cPer100g")) or 0.0,
        kcal_per_100g=_to_float(row.get("kcalPer100g")) or 0.0,
    )


def presets_from_dicts(rows: Iterable[Mapping[str, Any]]) -> List[FoodPreset]:
    return [_preset_from_dict(row) for row in rows if row.get("id") and row.get("name")]


def logs_from_dicts(rows: Iterable[Mapping[str, Any]]) -> List[DailyLog]:
    return [log_from_dict(row) for row in rows if isinstance(row.get("date"), str) and row["date"]]


def state_from_dict(data: Optional[Mapping[str, Any]], now_iso: str, device_id: Optional[str] = None) -> AppState:
    data = data or {}
    raw_meta = data.get("meta") if isinstance(data.get("meta"), Mapping) else {}
    last_saved = _to_float(raw_meta.get("lastSavedAt"))
    meta = SaveMeta(
        last_saved_at=int(last_saved) if last_saved is not None else int(time.time() * 1000),
        device_id=raw_meta.get("deviceId") or device_id,
        last_saved_with_fallback=raw_meta.get("lastSavedWithFallback"),
    )

    presets = presets_from_dicts(mapping_rows(data.get("presets")))
    raw_drafts = data.get("draftByDate") if isinstance(data.get("draftByDate"), Mapping) else {}
    raw_week_drafts = data.get("draftByWeek") if isinstance(data.get("draftByWeek"), Mapping) else {}
    raw_settings = data.get("settings") if isinstance(data.get("settings"), Mapping) else {}

    return AppState(
        created_at=data.get("createdAt") if isinstance(data.get("createdAt"), str) else now_iso,
        updated_at=data.get("updatedAt") if isinstance(data.get("updatedAt"), str) else now_iso,
        meta=meta,
        logs=normalize_logs(logs_from_dicts(mapping_rows(data.get("logs")))),
        weekly_measurements=normalize_weekly_measurements(
            weekly_from_dict(row) for row in mapping_rows(data.get("weeklyMeasurements"))
        ),
        presets=presets or list(DEFAULT_PRESETS),
        exercise_catalog=normalize_exercise_catalog(mapping_rows(data.get("exerciseCatalog"))),
        draft_by_date={
            key: log_from_dict({**value, "date": value.get("date") or key})
            for key, value in raw_drafts.items()
            if isinstance(value, Mapping)
        },
        draft_by_week={
            key: replace(weekly_from_dict(value), week_start=key)
            for key, value in raw_week_drafts.items()
            if isinstance(value, Mapping)
        },
        settings=AppSettings(notifications_enabled=bool(raw_settings.get("notificationsEnabled"))),
    )


# ---------------------------------------------------------------------------
# Serialising back to the stored JSON shape
# ---------------------------------------------------------------------------


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def meal_to_dict(item: MealItem) -> Dict[str, Any]:
    return _compact(
        {
            "id": item.id,
            "dayId": item.day_id,
            "meal": item.meal,
            "presetId": item.preset_id,
            "grams": item.grams,
            "p": item.p,
            "f": item.f,
            "c": item.c,
            "kcal": item.kcal,
            "source": item.source,
            "notes": item.notes,
        }
    )


def workout_set_to_dict(item: WorkoutSet) -> Dict[str, Any]:
    return _compact(
        {
            "exerciseId": item.exercise_id,
            "sets": item.sets,
            "reps": item.reps,
            "weightKg": item.weight_kg,
            "rir": item.rir,
            "exercise": item.exercise,
        }
    )


def log_to_dict(log: DailyLog) -> Dict[str, Any]:
    return _compact(
        {
            "id": log.id,
            "date": log.date,
            "dayType": log.day_type,
            "weightKg": log.weight_kg,
            "waistCm": log.waist_cm,
            "lumbarPain": log.lumbar_pain,
            "sleepHours": log.sleep_hours,
            "steps": log.steps,
            "note": log.note,
            "meals": [meal_to_dict(item) for item in log.meals],
            "workout": [
                _compact(
                    {
                        "id": session.id,
                        "dayId": session.day_id,
                        "durationMin": session.duration_min,
                        "sets": [workout_set_to_dict(item) for item in session.sets],
                    }
                )
                for session in log.workout
            ],
            "adherence": {
                "nutritionPercent": log.adherence.nutrition_percent,
                "kpiFlags": list(log.adherence.kpi_flags),
            },
        }
    )


def weekly_to_dict(row: WeeklyMeasurement) -> Dict[str, Any]:
    return _compact(
        {
            "id": row.id,
            "weekStart": row.week_start,
            "avgWeightKg": row.avg_weight_kg,
            "waistCm": row.waist_cm,
            "avgLumbarPain": row.avg_lumbar_pain,
            "steps": row.steps,
            "sleepHours": row.sleep_hours,
            "chestCm": row.chest_cm,
            "shouldersCm": row.shoulders_cm,
            "armCm": row.arm_cm,
            "hipsCm": row.hips_cm,
        }
    )


def preset_to_dict(preset: FoodPreset) -> Dict[str, Any]:
    return {
        "id": preset.id,
        "name": preset.name,
        "pPer100g": preset.p_per_100g,
        "fPer100g": preset.f_per_100g,
        "cPer100g": preset.c_per_100g,
        "kcalPer100g": preset.kcal_per_100g,
    }


def catalog_item_to_dict(item: ExerciseCatalogItem) -> Dict[str, Any]:
    return _compact({"id": item.id, "name": item.name, "isCore": item.is_core, "coreId": item.core_id})


def meta_to_dict(meta: SaveMeta) -> Dict[str, Any]:
    return _compact(
        {
            "lastSavedAt": meta.last_saved_at,
            "schemaVersion": meta.schema_version,
            "deviceId": meta.device_id,
            "lastSavedWithFallback": meta.last_saved_with_fallback,
        }
    )


def state_to_dict(state: AppState) -> Dict[str, Any]:
    return {
        "createdAt": state.created_at,
        "updatedAt": state.updated_at,
        "version": state.version,
        "logs": [log_to_dict(log) for log in state.logs],
        "presets": [preset_to_dict(preset) for preset in state.presets],
        "exerciseCatalog": [catalog_item_to_dict(item) for item in state.exercise_catalog],
        "draftByDate": {key: log_to_dict(value) for key, value in state.draft_by_date.items()},
        "weeklyMeasurements": [weekly_to_dict(row) for row in state.weekly_measurements],
        "draftByWeek": {key: weekly_to_dict(value) for key, value in state.draft_by_week.items()},
        "settings": {"notificationsEnabled": state.settings.notifications_enabled},
        "meta": meta_to_dict(state.meta),
    }
