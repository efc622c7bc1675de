# ==========================================
# 1. IMPORTS & CONFIGURATION
# ==========================================
import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Union, Dict

logger = logging.getLogger(__name__)


@dataclass
class ThresholdConfig:
    # --- PREPROCESSING ---
    startle_margin: float = 0.2          # mmol/L above stage 2 -> anxiety reading

    # --- PROFILE CLASSIFIER ---
    baseline_fraction: float = 0.4       # first 40% of stages form the baseline
    min_baseline_points: int = 2
    min_classify_points: int = 4
    default_baseline: float = 1.5
    elite_baseline_max: float = 1.5
    elite_slope_max: float = 0.05
    standard_baseline_max: float = 2.5
    standard_slope_max: float = 0.15

    # --- DETECTORS ---
    delta_by_profile: Dict[str, float] = field(default_factory=lambda: {
        "ELITE_FLAT": 0.3,
        "STANDARD": 0.5,
        "RECREATIONAL": 1.0,
    })
    loglog_min_points: int = 5
    loglog_min_slope_gain: float = 0.0   # accept iff slope2 - slope1 > gain
    loglog_high_ratio: float = 2.0
    loglog_medium_ratio: float = 1.3
    baseline_plus_min_points: int = 4
    agreement_window: float = 1.5        # intensity units

    # --- D-MAX ---
    dmax_min_r2: float = 0.90
    dmax_grid_points: int = 1000
    dmax_edge_margin: float = 0.05

    # --- PACE SELECTOR ---
    marathon_factor: float = 0.90        # MP = LT2 speed x factor
    hr_match_tolerance: int = 2          # bpm
    obla_lactate: float = 4.0
    obla_tolerance: float = 0.2
    manual_lactate_low: float = 1.5
    manual_lactate_high: float = 8.0
    mp_min_kmh: float = 8.0
    mp_max_kmh: float = 25.0
    hard_default_kmh: float = 12.0
    consistency_max_mismatch_pct: float = 15.0

    def delta_for(self, profile_type) -> float:
        key = getattr(profile_type, "value", profile_type)
        return self.delta_by_profile[key]


DEFAULT_CONFIG = ThresholdConfig()


@dataclass
class AthleteConfig:
    # --- DANE ZAWODNIKA ---
    athlete_name: str = "Unknown Athlete"
    athlete_id: str = "ID_000"
    age: Optional[int] = None
    gender: str = "male"                 # "male" / "female"
    weekly_km: Optional[float] = None
    training_age: Optional[float] = None  # years of structured training
    resting_hr: Optional[int] = None
    max_hr: Optional[int] = None
    vo2max: Optional[float] = None       # ml/kg/min, lab value if known

    # --- KONTEKST ---
    notes: str = ""

    @property
    def is_female(self) -> bool:
        return str(self.gender).strip().lower() in ("female", "f", "woman", "k")


# --- DYSTANSE ---
RACE_DISTANCES = {
    "5K": 5000.0,
    "10K": 10000.0,
    "15K": 15000.0,
    "20K": 20000.0,
    "HALF_MARATHON": 21097.5,
    "30K": 30000.0,
    "MARATHON": 42195.0,
}

DISTANCE_ALIASES = {
    "5KM": "5K", "10KM": "10K", "HALF": "HALF_MARATHON", "HM": "HALF_MARATHON",
    "21K": "HALF_MARATHON", "FULL": "MARATHON", "42K": "MARATHON",
}


def resolve_distance(distance: Union[str, float, int]) -> float:
    """Race label or metres -> metres. Unknown labels raise ValueError."""
    if isinstance(distance, (int, float)):
        return float(distance)
    key = str(distance).strip().upper().replace(" ", "_")
    key = DISTANCE_ALIASES.get(key, key)
    if key not in RACE_DISTANCES:
        raise ValueError(f"Unsupported race distance: {distance!r}")
    return RACE_DISTANCES[key]


# --- HELPERY CZASU ---
def parse_time_str(x):
    """
    "h:mm:ss" / "mm:ss" -> seconds; a bare number string is minutes.
    Numbers pass through as seconds. Unparseable input raises ValueError.
    """
    if x is None:
        return None
    if isinstance(x, (int, float)):
        return float(x)
    s = str(x).strip()
    parts = s.split(":")
    try:
        if len(parts) == 2:   # mm:ss
            return int(parts[0]) * 60 + float(parts[1])
        if len(parts) == 3:   # hh:mm:ss
            return int(parts[0]) * 3600 + int(parts[1]) * 60 + float(parts[2])
        return float(s) * 60  # minutes
    except ValueError:
        raise ValueError(f"Invalid time format: {x!r}") from None


def format_time(seconds: float) -> str:
    seconds = max(0.0, float(seconds))
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    if h > 0:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


# --- LOGGING ---
LOG_LEVEL_ENV = "PACE_ENGINE_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Union[str, int, None] = None) -> None:
    """Single stream handler on the root logger; level from env if not given."""
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "WARNING")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING
    root = logging.getLogger()
    if not any(getattr(h, "_pace_engine", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._pace_engine = True
        root.addHandler(handler)
    root.setLevel(level)
    logger.debug("logging configured at %s", logging.getLevelName(level))
