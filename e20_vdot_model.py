"""
Engine E20: VDOT / race-performance model
Race result -> oxygen-cost-equivalent fitness index, training paces, equivalent times.
Refs: Daniels & Gilbert 1979 (oxygen cost of running), Daniels' Running Formula 3rd ed.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Optional, Tuple

from config import AthleteConfig, RACE_DISTANCES, format_time
from data_tools import DataTools, RacePerformance
from engine_core import Confidence

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════
# STAŁE MODELU
# ═══════════════════════════════════════════════════════════════
VO2_A = 0.000104      # v^2
VO2_B = 0.182258      # v
VO2_C = -4.60

# (max race minutes, fraction of VO2max sustainable)
PCT_VO2MAX_STEPS = [
    (2.5, 1.00),
    (6.0, 0.998),
    (12.0, 0.99),
    (30.0, 0.96),
    (60.0, 0.93),
    (120.0, 0.89),
    (180.0, 0.86),
]
PCT_VO2MAX_FLOOR = 0.85

TRAINING_PACE_PCT = {
    "easy": (0.59, 0.74),
    "marathon": 0.84,
    "threshold": 0.88,
    "interval": 1.00,
    "repetition": 1.10,
}

EQUIVALENT_DISTANCES = {
    "5K": RACE_DISTANCES["5K"],
    "10K": RACE_DISTANCES["10K"],
    "HALF_MARATHON": RACE_DISTANCES["HALF_MARATHON"],
    "MARATHON": RACE_DISTANCES["MARATHON"],
}

VDOT_MIN, VDOT_MAX = 25.0, 90.0
MIN_DISTANCE_M, MAX_DISTANCE_M = 800.0, 100000.0

AGE_DECLINE_START = 35
AGE_DECLINE_PER_YEAR = 0.005
FEMALE_BONUS_SHORT = 0.015    # <= 5 km
FEMALE_BONUS_LONG = 0.03      # >= marathon

RECENCY_DAYS = [(30, Confidence.VERY_HIGH), (90, Confidence.HIGH), (180, Confidence.MEDIUM)]


# ═══════════════════════════════════════════════════════════════
# WARSTWA 1: formuły
# ═══════════════════════════════════════════════════════════════
def calculate_vo2(velocity_m_min: float) -> float:
    """Oxygen cost (ml/kg/min) of running at velocity in m/min."""
    v = velocity_m_min
    return VO2_C + VO2_B * v + VO2_A * v * v


def velocity_at_vo2(target_vo2: float) -> float:
    """Inverse of calculate_vo2: positive root of a v^2 + b v + c = 0."""
    c = VO2_C - target_vo2
    disc = VO2_B * VO2_B - 4 * VO2_A * c
    if disc < 0:
        raise ValueError(f"No running velocity for VO2 {target_vo2}")
    return (-VO2_B + math.sqrt(disc)) / (2 * VO2_A)


def percent_vo2max(time_minutes: float) -> float:
    for limit, pct in PCT_VO2MAX_STEPS:
        if time_minutes <= limit:
            return pct
    return PCT_VO2MAX_FLOOR


def vdot_from_race(distance_meters: float, time_minutes: float) -> float:
    if not (MIN_DISTANCE_M <= distance_meters <= MAX_DISTANCE_M):
        raise ValueError(f"Unsupported race distance: {distance_meters} m")
    if time_minutes <= 0:
        raise ValueError("Race time must be positive")
    v = distance_meters / time_minutes
    return round(calculate_vo2(v) / percent_vo2max(time_minutes), 1)


def speed_at_vdot_fraction(vdot: float, fraction: float) -> float:
    """km/h at a fraction of VDOT."""
    return velocity_at_vo2(vdot * fraction) * 60 / 1000


def training_paces(vdot: float) -> Dict[str, Dict]:
    out = {}
    for name, pct in TRAINING_PACE_PCT.items():
        if isinstance(pct, tuple):
            slow = speed_at_vdot_fraction(vdot, pct[0])
            fast = speed_at_vdot_fraction(vdot, pct[1])
            out[name] = {
                "min_kmh": round(slow, 2), "max_kmh": round(fast, 2),
                "pace": f"{DataTools.kmh_to_pace(slow)[:-3]}-{DataTools.kmh_to_pace(fast)}",
                "pct_vdot": pct,
            }
        else:
            kmh = speed_at_vdot_fraction(vdot, pct)
            out[name] = {"kmh": round(kmh, 2), "pace": DataTools.kmh_to_pace(kmh), "pct_vdot": pct}
    return out


def predict_time_minutes(vdot: float, distance_meters: float) -> float:
    """Race time at 100% VDOT, then refined with the percent sustainable for that time."""
    t = distance_meters / velocity_at_vo2(vdot)
    return distance_meters / velocity_at_vo2(vdot * percent_vo2max(t))


def equivalent_times(vdot: float) -> Dict[str, Dict]:
    out = {}
    for label, d in EQUIVALENT_DISTANCES.items():
        t = predict_time_minutes(vdot, d)
        out[label] = {"minutes": round(t, 2), "time": format_time(t * 60)}
    return out


# ═══════════════════════════════════════════════════════════════
# WARSTWA 2: korekty
# ═══════════════════════════════════════════════════════════════
def female_economy_bonus(distance_meters: float) -> float:
    short, long_ = EQUIVALENT_DISTANCES["5K"], EQUIVALENT_DISTANCES["MARATHON"]
    if distance_meters <= short:
        return FEMALE_BONUS_SHORT
    if distance_meters >= long_:
        return FEMALE_BONUS_LONG
    frac = (distance_meters - short) / (long_ - short)
    return FEMALE_BONUS_SHORT + frac * (FEMALE_BONUS_LONG - FEMALE_BONUS_SHORT)


def recency_confidence(age_in_days: Optional[int]) -> Confidence:
    if age_in_days is None:
        return Confidence.MEDIUM
    for limit, conf in RECENCY_DAYS:
        if age_in_days <= limit:
            return conf
    return Confidence.LOW


def _is_female(gender) -> bool:
    return str(gender or "").strip().lower() in ("female", "f", "woman", "k")


@dataclass(frozen=True)
class VDOTResult:
    vdot: float
    training_paces: Dict[str, Dict]
    equivalent_times: Dict[str, Dict]
    confidence: Confidence
    age_in_days: Optional[int]
    adjustments: Dict = field(default_factory=lambda: {
        "gender_adjusted": False, "age_adjusted": False, "original_vdot": None})

    @property
    def marathon_kmh(self) -> float:
        return self.training_paces["marathon"]["kmh"]

    @property
    def threshold_kmh(self) -> float:
        return self.training_paces["threshold"]["kmh"]


# ═══════════════════════════════════════════════════════════════
# WARSTWA 3: Engine
# ═══════════════════════════════════════════════════════════════
class Engine_E20_VDOT:
    """E20 — VDOT from a race result, with age/gender correction and recency confidence."""

    @staticmethod
    def adjust(vdot: float, distance_meters: float, age: Optional[int] = None,
               gender: Optional[str] = None) -> Tuple[float, Dict]:
        adj = {"gender_adjusted": False, "age_adjusted": False, "original_vdot": None}
        out = vdot
        if age is not None and age > AGE_DECLINE_START:
            out *= 1 - AGE_DECLINE_PER_YEAR * (age - AGE_DECLINE_START)
            adj["age_adjusted"] = True
        if _is_female(gender):
            out *= 1 + female_economy_bonus(distance_meters)
            adj["gender_adjusted"] = True
        if adj["age_adjusted"] or adj["gender_adjusted"]:
            adj["original_vdot"] = vdot
        return out, adj

    @classmethod
    def run(cls, race: RacePerformance, athlete: Optional[AthleteConfig] = None,
            as_of: Optional[date] = None) -> VDOTResult:
        raw = vdot_from_race(race.distance_meters, race.minutes)

        age = race.age if race.age is not None else getattr(athlete, "age", None)
        gender = race.gender if race.gender is not None else getattr(athlete, "gender", None)
        vdot, adj = cls.adjust(raw, race.distance_meters, age, gender)
        vdot = round(min(VDOT_MAX, max(VDOT_MIN, vdot)), 1)

        age_in_days = None
        if race.date is not None:
            age_in_days = max(0, ((as_of or date.today()) - race.date).days)
        conf = recency_confidence(age_in_days)

        logger.debug("E20: %.0f m in %.1f min -> VDOT %.1f (raw %.1f), %s",
                     race.distance_meters, race.minutes, vdot, raw, conf.value)
        return VDOTResult(
            vdot=vdot,
            training_paces=training_paces(vdot),
            equivalent_times=equivalent_times(vdot),
            confidence=conf,
            age_in_days=age_in_days,
            adjustments=adj,
        )
