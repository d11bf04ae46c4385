from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from .catalog import CORE_EXERCISE_IDS
from .data_sources import MEAL_NAMES, Adherence, DailyLog, WeeklyMeasurement
from .settings import DAY_TARGETS, MEAL_TARGETS, MacroTargets

MEAL_WEIGHT = 0.35
MACRO_WEIGHT = 0.65
MACRO_WEIGHTS = {"p": 0.45, "f": 0.20, "c": 0.20, "kcal": 0.15}


def _mean(values: Sequence[Optional[float]]) -> Optional[float]:
    filtered = [value for value in values if value is not None]
    if not filtered:
        return None
    return sum(filtered) / len(filtered)


def _delta(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if current is None or previous is None:
        return None
    return current - previous


def _clamp(value: float, min_value: float, max_value: float) -> float:
    return max(min_value, min(max_value, value))


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def round_half_up(value: float) -> int:
    """Round .5 upwards, the way the stored percentages were always rounded."""
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Totals & adherence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DailyTotals:
    p: float = 0.0
    f: float = 0.0
    c: float = 0.0
    kcal: float = 0.0


def daily_totals(log: DailyLog) -> DailyTotals:
    p = f = c = kcal = 0.0
    for meal in log.meals:
        p += meal.p
        f += meal.f
        c += meal.c
        kcal += meal.kcal
    return DailyTotals(p=p, f=f, c=c, kcal=kcal)


def _closeness(actual: float, target: float) -> float:
    if target <= 0:
        return 0.0
    return _clamp(1 - abs(actual - target) / target, 0.0, 1.0)


def macro_score(totals: DailyTotals, target: MacroTargets) -> float:
    return (
        MACRO_WEIGHTS["p"] * _closeness(totals.p, target.protein_g)
        + MACRO_WEIGHTS["f"] * _closeness(totals.f, target.fat_g)
        + MACRO_WEIGHTS["c"] * _closeness(totals.c, target.carbs_g)
        + MACRO_WEIGHTS["kcal"] * _closeness(totals.kcal, target.kcal)
    )


def day_adherence(log: DailyLog, targets: Dict[str, MacroTargets] = DAY_TARGETS) -> Adherence:
    """Blend meal completeness with closeness to the day type's macro targets."""

    eaten = {meal.meal for meal in log.meals}
    flags = [f"missing_{slot}" for slot in MEAL_NAMES if slot not in eaten]
    meal_score = (len(MEAL_NAMES) - len(flags)) / len(MEAL_NAMES)

    target = targets.get(log.day_type, targets["nogym"])
    score = MEAL_WEIGHT * meal_score + MACRO_WEIGHT * macro_score(daily_totals(log), target)
    percent = int(_clamp(round_half_up(100 * score), 0, 100))
    return Adherence(nutrition_percent=percent, kpi_flags=flags)


def meal_target_for(day_type: str, meal: str) -> MacroTargets:
    if meal not in MEAL_NAMES:
        raise ValueError(f"Unknown meal slot {meal!r}")
    return MEAL_TARGETS.get(day_type, MEAL_TARGETS["nogym"])[meal]


def meal_totals(log: DailyLog, meal: str) -> DailyTotals:
    return daily_totals(replace(log, meals=[item for item in log.meals if item.meal == meal]))


def average_adherence(logs: Sequence[DailyLog]) -> int:
    if not logs:
        return 0
    total = sum(day_adherence(log).nutrition_percent for log in logs)
    return round_half_up(total / len(logs))


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DateRange:
    start: str
    end: str


def shift_date(value: str, days: int) -> str:
    return (date.fromisoformat(value) + timedelta(days=days)).isoformat()


def date_range(days: int, reference: str) -> DateRange:
    """Trailing ``days``-long inclusive window ending on ``reference``."""
    return DateRange(start=shift_date(reference, -(days - 1)), end=reference)


def previous_range(days: int, reference: str) -> DateRange:
    return date_range(days, shift_date(reference, -days))


def is_in_range(value: str, start: str, end: str) -> bool:
    # ISO dates order correctly as strings
    return start <= value <= end


def filter_logs(logs: Iterable[DailyLog], window: DateRange) -> List[DailyLog]:
    return [log for log in logs if is_in_range(log.date, window.start, window.end)]


def filter_weekly(rows: Iterable[WeeklyMeasurement], window: DateRange) -> List[WeeklyMeasurement]:
    return [row for row in rows if is_in_range(row.week_start, window.start, window.end)]


# ---------------------------------------------------------------------------
# Weekly-over-daily resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Resolved:
    """A metric value plus the tier that supplied it (``weekly``/``daily``)."""

    value: Optional[float]
    source: Optional[str]


NOTHING = Resolved(value=None, source=None)


def _values(rows: Iterable[object], attr: str) -> List[float]:
    values = []
    for row in rows:
        value = getattr(row, attr, None)
        if _is_number(value):
            values.append(value)
    return values


def resolve_latest(
    weekly_rows: Sequence[WeeklyMeasurement],
    daily_rows: Sequence[DailyLog],
    weekly_field: str,
    daily_field: str,
) -> Resolved:
    weekly = _values(sorted(weekly_rows, key=lambda row: row.week_start, reverse=True), weekly_field)
    if weekly:
        return Resolved(weekly[0], "weekly")
    daily = _values(sorted(daily_rows, key=lambda row: row.date, reverse=True), daily_field)
    if daily:
        return Resolved(daily[0], "daily")
    return NOTHING


def resolve_average(
    weekly_rows: Sequence[WeeklyMeasurement],
    daily_rows: Sequence[DailyLog],
    weekly_field: str,
    daily_field: str,
) -> Resolved:
    """Mean of the weekly values when any exist, otherwise of the daily ones.

    The source switch is per metric: weekly and daily values are never mixed.
    """

    weekly = _values(weekly_rows, weekly_field)
    if weekly:
        return Resolved(round(_mean(weekly), 2), "weekly")
    daily = _values(daily_rows, daily_field)
    if daily:
        return Resolved(round(_mean(daily), 2), "daily")
    return NOTHING


def trend(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    delta = _delta(current, previous)
    return None if delta is None else round(delta, 2)


# ---------------------------------------------------------------------------
# Performance index
# ---------------------------------------------------------------------------


def best_load(logs: Iterable[DailyLog], exercise: str) -> float:
    """Heaviest ``sets * reps * kg`` for ``exercise`` on any day of ``logs``."""

    best = 0.0
    for log in logs:
        for item in log.workout_sets:
            if item.key == exercise:
                best = max(best, item.load)
    return best


def performance_index(logs: Sequence[DailyLog], reference: str, days: int = 7) -> float:
    current = filter_logs(logs, date_range(days, reference))
    previous = filter_logs(logs, previous_range(days, reference))

    diffs = []
    for exercise in CORE_EXERCISE_IDS:
        now = best_load(current, exercise)
        before = best_load(previous, exercise)
        diffs.append((now - before) / before if now and before else 0.0)
    return round(sum(diffs) / len(diffs), 3)


# ---------------------------------------------------------------------------
# Pain spikes
# ---------------------------------------------------------------------------


def weekly_pain_spike(rows: Iterable[WeeklyMeasurement], threshold: float = 7) -> bool:
    return any(row.avg_lumbar_pain is not None and row.avg_lumbar_pain >= threshold for row in rows)


def consecutive_pain_spike(logs: Iterable[DailyLog], threshold: float = 7, min_streak: int = 3) -> bool:
    run = 0
    last_date: Optional[str] = None
    for log in sorted(logs, key=lambda item: item.date):
        if log.lumbar_pain >= threshold:
            if last_date is not None and shift_date(last_date, 1) == log.date:
                run += 1
            else:
                run = 1
            if run >= min_streak:
                return True
        else:
            run = 0
        last_date = log.date
    return False


def has_pain_spike(
    weekly_rows: Iterable[WeeklyMeasurement],
    daily_rows: Iterable[DailyLog],
    threshold: float = 7,
    min_streak: int = 3,
) -> bool:
    return weekly_pain_spike(weekly_rows, threshold) or consecutive_pain_spike(daily_rows, threshold, min_streak)
