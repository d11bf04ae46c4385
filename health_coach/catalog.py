from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ExerciseCatalogItem:
    id: str
    name: str
    is_core: bool = False
    core_id: Optional[str] = None


@dataclass(frozen=True)
class FoodPreset:
    id: str
    name: str
    p_per_100g: float
    f_per_100g: float
    c_per_100g: float
    kcal_per_100g: float


# Exercises tracked by the performance index. Closed set.
CORE_EXERCISE_LABELS: Dict[str, str] = {
    "jalon": "Jalon al pecho",
    "remo": "Remo cable / maquina",
    "laterales": "Elevaciones laterales",
    "press_inclinado": "Press inclinado",
}

CORE_EXERCISE_IDS: Tuple[str, ...] = ("jalon", "remo", "laterales", "press_inclinado")

DEFAULT_EXERCISE_CATALOG: List[ExerciseCatalogItem] = [
    *(ExerciseCatalogItem(key, CORE_EXERCISE_LABELS[key], True, key) for key in CORE_EXERCISE_IDS),
    ExerciseCatalogItem("press_pecho_maquina", "Press pecho máquina"),
    ExerciseCatalogItem("prensa", "Prensa"),
    ExerciseCatalogItem("pallof", "Pallof press"),
    ExerciseCatalogItem("hip_thrust", "Hip thrust"),
    ExerciseCatalogItem("extension_cuadriceps", "Extensión cuádriceps"),
    ExerciseCatalogItem("face_pulls", "Face pulls"),
    ExerciseCatalogItem("dead_bug", "Dead bug"),
    ExerciseCatalogItem("hack_squat", "Hack squat"),
    ExerciseCatalogItem("abductores", "Abductores"),
    ExerciseCatalogItem("curl_femoral", "Curl femoral"),
    ExerciseCatalogItem("rkc", "RKC 20-40s"),
    ExerciseCatalogItem("farmer_carry", "Farmer carry"),
]

DEFAULT_PRESETS: List[FoodPreset] = [
    FoodPreset("preset_egg", "Huevo entero", 12.6, 10.0, 1.1, 143),
    FoodPreset("preset_chicken", "Pechuga pollo cocida", 31.0, 3.6, 0, 165),
    FoodPreset("preset_rice", "Arroz blanco cocido", 2.7, 0.3, 28.2, 130),
    FoodPreset("preset_oats", "Avena", 16.9, 6.9, 66.3, 389),
    FoodPreset("preset_whey", "Proteina whey (1 scoop)", 80, 6, 8, 400),
    FoodPreset("preset_olive_oil", "Aceite de oliva", 0, 100, 0, 884),
]


def exercise_label(key: str, catalog: Optional[List[ExerciseCatalogItem]] = None) -> str:
    if not key:
        return ""
    if key in CORE_EXERCISE_LABELS:
        return CORE_EXERCISE_LABELS[key]
    for item in catalog or DEFAULT_EXERCISE_CATALOG:
        if item.id == key:
            return item.name
    return key
