from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .data_sources import AppState, DailyLog, WeeklyMeasurement
from .metrics import (
    average_adherence,
    date_range,
    filter_logs,
    filter_weekly,
    has_pain_spike,
    performance_index,
    previous_range,
    resolve_average,
    resolve_latest,
    trend,
)
from .settings import CoachSettings

DECISION_WINDOW_DAYS = 14

NONE = "none"
DOWN_150_KCAL = "down150kcal"
UP_125_KCAL = "up125kcal"
DELOAD = "deload"

REASONS = {
    DELOAD: (
        "Dolor lumbar alto (semanal o diario). Aplicar deload 30-40% de volumen 1 semana "
        "y sustituciones seguras."
    ),
    DOWN_150_KCAL: "No baja cintura ni peso, adherencia >=80. Sugerencia: -150 kcal o +2000 pasos por dia.",
    UP_125_KCAL: (
        "Pérdida de >0.6kg/semana o descenso de rendimiento. "
        "Sugerencia: +100/125 kcal en días de gimnasio."
    ),
    NONE: "Sin ajuste automatico en esta quincena.",
}


@dataclass(frozen=True)
class Decision:
    decision: str
    reason: str


@dataclass(frozen=True)
class WindowKpis:
    days: int
    avg_weight: Optional[float]
    waist: Optional[float]
    waist_trend: Optional[float]
    lumbar: float
    adherence: int


@dataclass(frozen=True)
class WeeklyKpis(WindowKpis):
    """7-day KPIs, with how many raw data points fed the weight and waist figures."""

    weight_points: int
    waist_points: int


@dataclass(frozen=True)
class BiweeklyKpis(WindowKpis):
    perf_index: float
    decision: str
    reason: str


@dataclass(frozen=True)
class KpiSummary:
    reference_date: str
    kpis7: WeeklyKpis
    kpis14: BiweeklyKpis


def _not_improved(current: Optional[float], previous: Optional[float]) -> bool:
    if current is None or previous is None:
        return False
    return current >= previous


def decide(
    logs: Sequence[DailyLog],
    weekly: Sequence[WeeklyMeasurement],
    reference: str,
    coach: Optional[CoachSettings] = None,
) -> Decision:
    """Biweekly nutrition/training adjustment. Rules are checked in order, first match wins."""

    coach = coach or CoachSettings()
    window = date_range(DECISION_WINDOW_DAYS, reference)
    prior = previous_range(DECISION_WINDOW_DAYS, reference)
    rows, prev_rows = filter_logs(logs, window), filter_logs(logs, prior)
    weeks, prev_weeks = filter_weekly(weekly, window), filter_weekly(weekly, prior)

    if has_pain_spike(weeks, rows, coach.pain_threshold, coach.pain_streak_days):
        return Decision(DELOAD, REASONS[DELOAD])

    waist = resolve_latest(weeks, rows, "waist_cm", "waist_cm").value
    prev_waist = resolve_latest(prev_weeks, prev_rows, "waist_cm", "waist_cm").value
    weight = resolve_average(weeks, rows, "avg_weight_kg", "weight_kg").value
    prev_weight = resolve_average(prev_weeks, prev_rows, "avg_weight_kg", "weight_kg").value
    adherence = average_adherence(rows)

    if (
        _not_improved(waist, prev_waist)
        and _not_improved(weight, prev_weight)
        and adherence >= coach.adherence_threshold
    ):
        return Decision(DOWN_150_KCAL, REASONS[DOWN_150_KCAL])

    weight_drop = round(prev_weight - weight, 2) if weight is not None and prev_weight is not None else 0.0
    if weight_drop > coach.weight_drop_kg or performance_index(logs, reference) < coach.perf_drop_threshold:
        return Decision(UP_125_KCAL, REASONS[UP_125_KCAL])

    return Decision(NONE, REASONS[NONE])


def _window_fields(
    logs: Sequence[DailyLog],
    weekly: Sequence[WeeklyMeasurement],
    days: int,
    reference: str,
) -> dict:
    window = date_range(days, reference)
    prior = previous_range(days, reference)
    rows, prev_rows = filter_logs(logs, window), filter_logs(logs, prior)
    weeks, prev_weeks = filter_weekly(weekly, window), filter_weekly(weekly, prior)

    waist = resolve_latest(weeks, rows, "waist_cm", "waist_cm").value
    prev_waist = resolve_latest(prev_weeks, prev_rows, "waist_cm", "waist_cm").value
    lumbar = resolve_average(weeks, rows, "avg_lumbar_pain", "lumbar_pain").value

    return {
        "days": days,
        "avg_weight": resolve_average(weeks, rows, "avg_weight_kg", "weight_kg").value,
        "waist": waist,
        "waist_trend": trend(waist, prev_waist),
        "lumbar": lumbar if lumbar is not None else 0,
        "adherence": average_adherence(rows),
    }


def weekly_kpis(logs: Sequence[DailyLog], weekly: Sequence[WeeklyMeasurement], reference: str) -> WeeklyKpis:
    window = date_range(7, reference)
    rows, weeks = filter_logs(logs, window), filter_weekly(weekly, window)
    return WeeklyKpis(
        **_window_fields(logs, weekly, 7, reference),
        weight_points=sum(1 for row in weeks if row.avg_weight_kg is not None)
        + sum(1 for row in rows if row.weight_kg is not None),
        waist_points=sum(1 for row in weeks if row.waist_cm is not None)
        + sum(1 for row in rows if row.waist_cm is not None),
    )


def calculate_kpis(
    logs: Sequence[DailyLog],
    weekly: Sequence[WeeklyMeasurement],
    reference: str,
    coach: Optional[CoachSettings] = None,
) -> KpiSummary:
    decision = decide(logs, weekly, reference, coach)
    kpis14 = BiweeklyKpis(
        **_window_fields(logs, weekly, DECISION_WINDOW_DAYS, reference),
        perf_index=performance_index(logs, reference),
        decision=decision.decision,
        reason=decision.reason,
    )
    return KpiSummary(
        reference_date=reference,
        kpis7=weekly_kpis(logs, weekly, reference),
        kpis14=kpis14,
    )


def summarize(state: AppState, reference: str, coach: Optional[CoachSettings] = None) -> KpiSummary:
    return calculate_kpis(state.logs, state.weekly_measurements, reference, coach)
