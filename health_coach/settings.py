from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class MacroTargets:
    """Daily macro and calorie goals used for adherence calculations."""

    kcal: float
    protein_g: float
    fat_g: float
    carbs_g: float


DAY_TARGETS: Dict[str, MacroTargets] = {
    "gym": MacroTargets(kcal=2200, protein_g=150, fat_g=60, carbs_g=250),
    "nogym": MacroTargets(kcal=2000, protein_g=150, fat_g=70, carbs_g=170),
}

# Per-meal goals by day type, keyed by meal slot
MEAL_TARGETS: Dict[str, Dict[str, MacroTargets]] = {
    "gym": {
        "desayuno": MacroTargets(kcal=650, protein_g=45, fat_g=20, carbs_g=70),
        "comida": MacroTargets(kcal=700, protein_g=45, fat_g=20, carbs_g=80),
        "cena": MacroTargets(kcal=850, protein_g=60, fat_g=20, carbs_g=100),
    },
    "nogym": {
        "desayuno": MacroTargets(kcal=650, protein_g=50, fat_g=25, carbs_g=50),
        "comida": MacroTargets(kcal=750, protein_g=50, fat_g=25, carbs_g=60),
        "cena": MacroTargets(kcal=600, protein_g=50, fat_g=20, carbs_g=60),
    },
}


@dataclass(frozen=True)
class CoachSettings:
    """Thresholds of the biweekly decision rules."""

    pain_threshold: float = 7
    pain_streak_days: int = 3
    adherence_threshold: float = 80
    weight_drop_kg: float = 0.6
    perf_drop_threshold: float = -0.05


@dataclass(frozen=True)
class Settings:
    state_path: Path
    fallback_path: Path
    export_dir: Path
    timezone: str
    webhook_url: Optional[str]
    save_debounce_ms: int
    coach: CoachSettings = field(default_factory=CoachSettings)


def _to_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Unable to parse float from {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = _to_float(os.getenv(name))
    return default if value is None else value


def load_settings() -> Settings:
    """Load configuration from environment variables."""

    state_path = Path(
        os.getenv("HEALTH_STATE_PATH", "~/.local/share/health_coach/state.json")
    ).expanduser()
    fallback_path = Path(
        os.getenv("HEALTH_FALLBACK_PATH", "~/.cache/health_coach/state.json")
    ).expanduser()
    export_dir = Path(os.getenv("HEALTH_EXPORT_DIR", ".")).expanduser()

    defaults = CoachSettings()
    coach = CoachSettings(
        pain_threshold=_env_float("PAIN_THRESHOLD", defaults.pain_threshold),
        pain_streak_days=int(_env_float("PAIN_STREAK_DAYS", defaults.pain_streak_days)),
        adherence_threshold=_env_float("ADHERENCE_THRESHOLD", defaults.adherence_threshold),
        weight_drop_kg=_env_float("WEIGHT_DROP_KG", defaults.weight_drop_kg),
        perf_drop_threshold=_env_float("PERF_DROP_THRESHOLD", defaults.perf_drop_threshold),
    )

    return Settings(
        state_path=state_path,
        fallback_path=fallback_path,
        export_dir=export_dir,
        timezone=os.getenv("LOCAL_TIMEZONE", "Europe/Madrid"),
        webhook_url=os.getenv("HEALTH_WEBHOOK_URL") or None,
        save_debounce_ms=int(_env_float("SAVE_DEBOUNCE_MS", 500)),
        coach=coach,
    )


def tz(timezone_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def today(timezone_name: str) -> str:
    """Local calendar date in ``timezone_name`` as ``YYYY-MM-DD``."""

    return datetime.now(tz(timezone_name)).date().isoformat()


def parse_date(value: str) -> str:
    """Validate a ``YYYY-MM-DD`` string and return it unchanged."""

    try:
        return date.fromisoformat(value).isoformat()
    except ValueError as exc:
        raise ValueError(f"Expected a YYYY-MM-DD date, got {value!r}") from exc
