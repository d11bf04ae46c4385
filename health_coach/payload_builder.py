from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Optional

from .decision import KpiSummary, WindowKpis
from .settings import tz

DECISION_LABELS = {
    "none": "Sin cambios",
    "down150kcal": "-150 kcal",
    "up125kcal": "+125 kcal",
    "deload": "Deload",
}


def _fmt_number(value: Optional[float], unit: str, precision: int = 1) -> str:
    if value is None:
        return "—"
    if precision == 0:
        return f"{value:.0f}{unit}"
    return f"{value:.{precision}f}{unit}"


def _fmt_delta(value: Optional[float], unit: str = "", precision: int = 1) -> str:
    if value is None:
        return "—"
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.{precision}f}{unit}"


def _window_block(kpis: WindowKpis) -> Dict[str, Any]:
    return {
        "avg_weight": _fmt_number(kpis.avg_weight, " kg", 2),
        "waist": _fmt_number(kpis.waist, " cm"),
        "waist_trend": _fmt_delta(kpis.waist_trend, " cm", 2),
        "lumbar": _fmt_number(kpis.lumbar, "/10"),
        "adherence": f"{kpis.adherence}%",
    }


def build_payload(summary: KpiSummary, generated_at: datetime, timezone_name: str) -> Dict[str, Any]:
    generated_local = generated_at.astimezone(tz(timezone_name))
    kpis14 = summary.kpis14

    weekly = _window_block(summary.kpis7)
    weekly["weight_points"] = summary.kpis7.weight_points
    weekly["waist_points"] = summary.kpis7.waist_points

    biweekly = _window_block(kpis14)
    biweekly["perf_index"] = _fmt_delta(kpis14.perf_index * 100, "%")

    return {
        "generated_at": generated_local.strftime("%Y-%m-%d %H:%M"),
        "reference_date": summary.reference_date,
        "week": weekly,
        "fortnight": biweekly,
        "decision": {
            "code": kpis14.decision,
            "label": DECISION_LABELS.get(kpis14.decision, kpis14.decision),
            "reason": kpis14.reason,
        },
    }


def payload_hash(payload: Dict[str, Any]) -> str:
    # generated_at changes every run; it must not defeat the dedupe
    stable = {key: value for key, value in payload.items() if key != "generated_at"}
    encoded = json.dumps(stable, sort_keys=True).encode("utf-8")
    return hashlib.sha1(encoded).hexdigest()
