"""
Engine E23: Target-time threshold estimator
Fallback path when there is no lactate test and no race history:
  - goal race time only         -> LT2/LT1 from race-to-threshold factors (LOW)
  - personal best + goal        -> current LT2/LT1 from the PB, goal validated
                                   against realistic improvement rates
  - time trial                  -> VDOT threshold pace (MEDIUM)
  - HR-drift run                -> steady pace scaled by observed drift

Zones built here are provisional; every estimate carries a field-test schedule.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from config import RACE_DISTANCES, format_time, parse_time_str, resolve_distance
from data_tools import DataTools
from e20_vdot_model import TRAINING_PACE_PCT, calculate_vo2, speed_at_vdot_fraction, vdot_from_race
from engine_core import Confidence

logger = logging.getLogger(__name__)


class RunnerLevel(Enum):
    ELITE = "ELITE"
    ADVANCED = "ADVANCED"
    RECREATIONAL = "RECREATIONAL"
    BEGINNER = "BEGINNER"


class AthleteCategory(Enum):
    BEGINNER = "BEGINNER"
    RECREATIONAL = "RECREATIONAL"
    ADVANCED = "ADVANCED"


# LT2 pace (min/km) = race pace x factor
RACE_TO_LT2_FACTOR = {
    "5K": {RunnerLevel.ELITE: 1.06, RunnerLevel.ADVANCED: 1.07,
           RunnerLevel.RECREATIONAL: 1.08, RunnerLevel.BEGINNER: 1.10},
    "10K": {RunnerLevel.ELITE: 1.02, RunnerLevel.ADVANCED: 1.03,
            RunnerLevel.RECREATIONAL: 1.04, RunnerLevel.BEGINNER: 1.05},
    "HALF_MARATHON": {RunnerLevel.ELITE: 0.98, RunnerLevel.ADVANCED: 0.99,
                      RunnerLevel.RECREATIONAL: 1.00, RunnerLevel.BEGINNER: 1.01},
    "MARATHON": {RunnerLevel.ELITE: 0.95, RunnerLevel.ADVANCED: 0.94,
                 RunnerLevel.RECREATIONAL: 0.92, RunnerLevel.BEGINNER: 0.90},
}
LT1_PACE_FACTOR = 1.11

RACE_CONDITION_ADJ = {"fast": 0.02, "normal": 0.0, "slow": -0.02}

# realistic improvement % by distance and training block length
# (BEGINNER, RECREATIONAL, ADVANCED)
IMPROVEMENT_BENCHMARKS = {
    "5K": {8: (5.0, 3.0, 1.5), 12: (7.0, 4.0, 2.0), 16: (9.0, 5.0, 2.5), 24: (12.0, 7.0, 3.5)},
    "10K": {8: (4.5, 2.5, 1.2), 12: (6.5, 3.5, 1.8), 16: (8.0, 4.5, 2.2), 24: (11.0, 6.0, 3.0)},
    "HALF_MARATHON": {8: (4.0, 2.0, 1.0), 12: (6.0, 3.0, 1.5), 16: (7.5, 4.0, 2.0), 24: (10.0, 5.5, 2.8)},
    "MARATHON": {8: (3.0, 1.5, 0.8), 12: (5.0, 2.5, 1.2), 16: (7.0, 3.5, 1.8), 24: (9.0, 5.0, 2.5)},
}
MAX_BENCHMARK_MULTIPLIER = 1.2

CATEGORY_TO_LEVEL = {
    AthleteCategory.BEGINNER: RunnerLevel.BEGINNER,
    AthleteCategory.RECREATIONAL: RunnerLevel.RECREATIONAL,
    AthleteCategory.ADVANCED: RunnerLevel.ADVANCED,
}

CONSERVATISM_ADJUSTMENTS = {
    "zone_width": "narrower (+/-2% instead of +/-4% around each target pace)",
    "starting_volume_pct": -15,
    "weekly_progression_pct": 5,
    "standard_progression_pct": "8-10",
}

# HR drift on a steady run: (drift % below, pace multiplier, confidence)
HR_DRIFT_BANDS = [
    (5.0, 1.00, Confidence.MEDIUM),      # easy, well under LT1
    (10.0, 0.90, Confidence.HIGH),       # around the aerobic threshold
]
HR_DRIFT_ABOVE = (0.85, Confidence.MEDIUM)
HR_DRIFT_MIN_MINUTES = 30


@dataclass
class TrainingHistory:
    years_running: float = 0.0
    weekly_km: float = 0.0
    consistency: float = 0.5          # fraction of planned weeks completed, last 6 months


@dataclass
class ThresholdEstimate:
    method: str
    confidence: Confidence
    lt1: Dict
    lt2: Dict
    warnings: List[str] = field(default_factory=list)
    validation_protocol: Dict[str, Dict] = field(default_factory=dict)
    conservatism_adjustments: Dict = field(default_factory=dict)
    goal: Optional[Dict] = None
    vdot: Optional[float] = None


@dataclass
class GoalValidationError:
    """Returned instead of an estimate: the goal must be re-negotiated, not trained for."""
    error: str
    message: str
    requested_improvement_pct: float
    realistic_improvement_pct: float
    max_allowed_pct: float
    suggested_goal_time: str
    category: AthleteCategory


# ═══════════════════════════════════════════════════════════════
# HELPERY
# ═══════════════════════════════════════════════════════════════
def distance_key(distance: Union[str, float, int]) -> str:
    """Race label or metres -> key of the factor tables. Other distances raise ValueError."""
    meters = resolve_distance(distance)
    for key in RACE_TO_LT2_FACTOR:
        if abs(RACE_DISTANCES[key] - meters) < 1.0:
            return key
    raise ValueError(f"No threshold factors for distance {distance!r}")


def _as_seconds(t) -> float:
    secs = parse_time_str(t)
    if secs is None or secs <= 0:
        raise ValueError(f"Invalid race time: {t!r}")
    return float(secs)


def _marker(pace_min_km: float) -> Dict:
    kmh = 60.0 / pace_min_km
    return {"pace_min_km": round(pace_min_km, 3), "kmh": round(kmh, 2), "pace": DataTools.kmh_to_pace(kmh)}


def thresholds_from_race(key: str, seconds: float, level: RunnerLevel) -> Tuple[Dict, Dict]:
    race_pace = seconds / 60.0 / (RACE_DISTANCES[key] / 1000.0)
    lt2_pace = race_pace * RACE_TO_LT2_FACTOR[key][level]
    return _marker(lt2_pace * LT1_PACE_FACTOR), _marker(lt2_pace)


def categorize_athlete(history: TrainingHistory) -> AthleteCategory:
    if history.years_running < 2 or history.weekly_km < 25:
        return AthleteCategory.BEGINNER
    if history.years_running >= 5 and history.weekly_km >= 60 and history.consistency >= 0.8:
        return AthleteCategory.ADVANCED
    return AthleteCategory.RECREATIONAL


def realistic_improvement_pct(key: str, weeks: int, category: AthleteCategory) -> float:
    table = IMPROVEMENT_BENCHMARKS[key]
    col = list(AthleteCategory).index(category)
    brackets = sorted(table)
    if weeks < brackets[0]:
        return round(table[brackets[0]][col] * weeks / brackets[0], 2)
    usable = [b for b in brackets if b <= weeks]
    return table[usable[-1]][col]


# loose goal patterns, first match wins
_LOOSE_GOAL_PATTERNS = [
    (re.compile(r"sub[- ]?(\d+)[- ]?(hour)?[- ]?marathon", re.I), "MARATHON"),
    (re.compile(r"(\d+):?(\d{2})?[- ]?marathon", re.I), "MARATHON"),
    (re.compile(r"break[- ]?(\d+)[- ]?(?:min(?:ute)?s?)?[- ]?5k", re.I), "5K"),
    (re.compile(r"sub[- ]?(\d+)[- ]?(?:min(?:ute)?s?)?[- ]?5k", re.I), "5K"),
    (re.compile(r"(\d+):(\d{2})[- ]?5k", re.I), "5K"),
    (re.compile(r"break[- ]?(\d+)[- ]?(?:min(?:ute)?s?)?[- ]?10k", re.I), "10K"),
    (re.compile(r"sub[- ]?(\d+)[- ]?(?:min(?:ute)?s?)?[- ]?10k", re.I), "10K"),
    (re.compile(r"(\d+):(\d{2})[- ]?10k", re.I), "10K"),
    (re.compile(r"sub[- ]?(\d)[- ]?(hour)?[- ]?half", re.I), "HALF_MARATHON"),
    (re.compile(r"(\d+):(\d{2})[- ]?half", re.I), "HALF_MARATHON"),
]
_LONG = ("MARATHON", "HALF_MARATHON")


def parse_loose_goal(text: str) -> Optional[Tuple[str, float]]:
    """ "sub-4 marathon" -> ("MARATHON", 14400.0). Hours for long races, minutes otherwise."""
    for rx, key in _LOOSE_GOAL_PATTERNS:
        m = rx.search(text or "")
        if not m:
            continue
        groups = m.groups()
        first = int(groups[0])
        second = groups[1] if len(groups) > 1 else None
        if second is not None and second.isdigit():
            secs = first * 3600 + int(second) * 60 if key in _LONG else first * 60 + int(second)
        else:
            secs = first * 3600 if key in _LONG else first * 60
        return key, float(secs)
    return None


# ═══════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════
class Engine_E23_TargetTime:
    """E23 — thresholds without measured data. Always provisional, always field-tested."""

    TARGET_TIME_PROTOCOL = {
        "week_2": {
            "test": "30-min time trial (average HR of last 20 min = LT2 HR)",
            "purpose": "Replace estimated LT2 with a field value",
            "critical": True,
            "action_if_failed": "Stop threshold work; rebuild all zones from the time-trial result",
        },
        "week_6": {
            "test": "5K or 10K race / time trial",
            "purpose": "Confirm zones after the first build block",
            "critical": False,
            "action_if_failed": "Shift all zones by the observed pace error (cap +/-3%)",
        },
        "week_10": {
            "test": "Lactate step test (preferred) or half-marathon effort",
            "purpose": "Calibrate race-specific paces",
            "critical": False,
            "action_if_failed": "Revise goal time before the specific phase",
        },
    }

    PB_PROTOCOL = {
        "week_4": {
            "test": "5K time trial",
            "purpose": "Verify current thresholds from the PB",
            "critical": True,
            "action_if_failed": "Re-derive thresholds from the time trial",
        },
        "week_8": {
            "test": "10K race or 30-min time trial",
            "purpose": "Check progress against the improvement curve",
            "critical": False,
            "action_if_failed": "Extend the block or relax the goal",
        },
        "week_12": {
            "test": "Goal-pace session (e.g. 3 x 3 km at goal pace)",
            "purpose": "Confirm goal pace is sustainable",
            "critical": True,
            "action_if_failed": "Race at the last validated pace, not the goal",
        },
        "final": {
            "test": "Goal race",
            "purpose": "Outcome",
            "critical": False,
            "action_if_failed": "Use the result as the new PB",
        },
    }

    FIELD_TEST_PROTOCOL = {
        "week_3": {
            "test": "5K time trial",
            "purpose": "Confirm the estimated LT2",
            "critical": True,
            "action_if_failed": "Rebuild all zones from the time-trial result",
        },
        "week_8": {
            "test": "Lactate step test (preferred) or 10K race",
            "purpose": "Replace the estimate with measured thresholds",
            "critical": False,
            "action_if_failed": "Shift all zones by the observed pace error",
        },
    }

    @classmethod
    def from_target_time(cls, distance, target_time,
                         level: RunnerLevel = RunnerLevel.RECREATIONAL) -> ThresholdEstimate:
        key = distance_key(distance)
        seconds = _as_seconds(target_time)
        lt1, lt2 = thresholds_from_race(key, seconds, level)
        logger.debug("E23: target %s %s (%s) -> LT2 %.2f km/h", key, format_time(seconds), level.value, lt2["kmh"])

        return ThresholdEstimate(
            method="TARGET_TIME",
            confidence=Confidence.LOW,
            lt1=lt1,
            lt2=lt2,
            warnings=[
                "CRITICAL: Thresholds estimated from a target time only. "
                "A field test within 2 weeks is mandatory.",
                f"Assumed runner level {level.value}; a wrong level shifts every zone.",
            ],
            validation_protocol={k: dict(v) for k, v in cls.TARGET_TIME_PROTOCOL.items()},
            conservatism_adjustments=dict(CONSERVATISM_ADJUSTMENTS),
            goal={"distance": key, "time": format_time(seconds), "seconds": seconds},
        )

    @classmethod
    def from_loose_goal(cls, text: str,
                        level: RunnerLevel = RunnerLevel.RECREATIONAL) -> ThresholdEstimate:
        parsed = parse_loose_goal(text)
        if parsed is None:
            raise ValueError(f"Cannot read a race goal from {text!r}")
        key, seconds = parsed
        return cls.from_target_time(key, seconds, level)

    @classmethod
    def from_time_trial(cls, distance, time) -> ThresholdEstimate:
        """Solo time trial -> VDOT -> threshold pace. Less reliable than a race: MEDIUM."""
        meters = resolve_distance(distance)
        seconds = _as_seconds(time)
        vdot = vdot_from_race(meters, seconds / 60.0)
        lt2_pace = 60.0 / speed_at_vdot_fraction(vdot, TRAINING_PACE_PCT["threshold"])
        logger.debug("E23: time trial %.0f m in %s -> VDOT %.1f", meters, format_time(seconds), vdot)

        return ThresholdEstimate(
            method="TIME_TRIAL",
            confidence=Confidence.MEDIUM,
            lt1=_marker(lt2_pace * LT1_PACE_FACTOR),
            lt2=_marker(lt2_pace),
            warnings=["Time trials run solo usually understate race ability; "
                      "re-test or race within 3 weeks."],
            validation_protocol={k: dict(v) for k, v in cls.FIELD_TEST_PROTOCOL.items()},
            goal={"distance": meters, "time": format_time(seconds), "seconds": seconds},
            vdot=vdot,
        )

    @classmethod
    def from_hr_drift(cls, drift_pct: float, avg_pace_min_km: float, duration_min: float,
                      avg_hr: Optional[int] = None) -> ThresholdEstimate:
        """
        Steady run at constant pace. Drift below 5% means the pace was easy,
        5-10% sits around the aerobic threshold, more than 10% is above it.
        The pace scaled by the drift band is taken as LT2 pace.
        """
        if drift_pct is None or drift_pct < 0:
            raise ValueError(f"Invalid HR drift: {drift_pct!r}")
        if not avg_pace_min_km or avg_pace_min_km <= 0 or not duration_min or duration_min <= 0:
            raise ValueError("HR drift test needs a positive average pace and duration")

        multiplier, conf = HR_DRIFT_ABOVE
        for limit, mult, band_conf in HR_DRIFT_BANDS:
            if drift_pct < limit:
                multiplier, conf = mult, band_conf
                break

        lt2_pace = avg_pace_min_km * multiplier
        vdot = round(calculate_vo2(60.0 / lt2_pace * 1000 / 60) / TRAINING_PACE_PCT["threshold"], 1)

        warnings = ["Thresholds estimated from an HR drift test; confirm with a time trial."]
        if duration_min < HR_DRIFT_MIN_MINUTES:
            warnings.append(f"Drift test of {duration_min:.0f} min is shorter than "
                            f"{HR_DRIFT_MIN_MINUTES} min; drift is likely underestimated.")
        logger.debug("E23: HR drift %.1f%% at %.2f min/km -> LT2 pace %.2f", drift_pct,
                     avg_pace_min_km, lt2_pace)

        return ThresholdEstimate(
            method="HR_DRIFT",
            confidence=conf,
            lt1=_marker(lt2_pace * LT1_PACE_FACTOR),
            lt2=_marker(lt2_pace),
            warnings=warnings,
            validation_protocol={k: dict(v) for k, v in cls.FIELD_TEST_PROTOCOL.items()},
            goal={"drift_pct": drift_pct, "avg_pace_min_km": avg_pace_min_km,
                  "duration_min": duration_min, "avg_hr": avg_hr},
            vdot=vdot,
        )

    @classmethod
    def from_personal_best(cls, distance, pb_time, goal_time, weeks: int,
                           history: Optional[TrainingHistory] = None,
                           race_conditions: str = "normal"):
        """ThresholdEstimate for the current state, or GoalValidationError when the goal is unrealistic."""
        key = distance_key(distance)
        history = history or TrainingHistory()
        pb = _as_seconds(pb_time)
        goal = _as_seconds(goal_time)
        if weeks <= 0:
            raise ValueError("Training block must be at least one week")

        cond = str(race_conditions or "normal").strip().lower()
        if cond not in RACE_CONDITION_ADJ:
            raise ValueError(f"Unknown race conditions: {race_conditions!r}")
        # fast course flatters the PB: true ability is slower
        pb_adj = pb * (1 + RACE_CONDITION_ADJ[cond])

        category = categorize_athlete(history)
        requested = (pb_adj - goal) / pb_adj * 100
        realistic = realistic_improvement_pct(key, weeks, category)
        max_allowed = realistic * MAX_BENCHMARK_MULTIPLIER

        if requested > max_allowed:
            suggested = pb_adj * (1 - realistic / 100)
            logger.info("E23: goal rejected, %.1f%% requested vs %.1f%% realistic (%s, %d wk)",
                        requested, realistic, category.value, weeks)
            return GoalValidationError(
                error="UNREALISTIC_GOAL",
                message=(f"A {requested:.1f}% improvement in {weeks} weeks exceeds the realistic "
                         f"{realistic:.1f}% for a {category.value.lower()} athlete."),
                requested_improvement_pct=round(requested, 2),
                realistic_improvement_pct=realistic,
                max_allowed_pct=round(max_allowed, 2),
                suggested_goal_time=format_time(suggested),
                category=category,
            )

        level = CATEGORY_TO_LEVEL[category]
        lt1, lt2 = thresholds_from_race(key, pb_adj, level)
        _, goal_lt2 = thresholds_from_race(key, goal, level)

        warnings = []
        if cond != "normal":
            warnings.append(f"PB adjusted {RACE_CONDITION_ADJ[cond] * 100:+.0f}% for {cond} race conditions.")
        if requested <= 0:
            warnings.append("Goal is not faster than the personal best.")
        elif requested > realistic:
            warnings.append(f"Ambitious goal: {requested:.1f}% vs realistic {realistic:.1f}%.")

        return ThresholdEstimate(
            method="PERSONAL_BEST",
            confidence=Confidence.MEDIUM,
            lt1=lt1,
            lt2=lt2,
            warnings=warnings,
            validation_protocol={k: dict(v) for k, v in cls.PB_PROTOCOL.items()},
            goal={
                "distance": key,
                "time": format_time(goal),
                "improvement_pct": round(requested, 2),
                "realistic_pct": realistic,
                "category": category.value,
                "target_lt2": goal_lt2,       # progress tracking only
            },
        )
