# ==========================================
# 2. DATA TOOLS — input records & unit conversions
# ==========================================
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

import numpy as np
import pandas as pd

from config import parse_time_str

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LactateDataPoint:
    """One stage of a step test. intensity: km/h, W or sec/km depending on modality."""
    intensity: float
    lactate: float
    heart_rate: int = 0


@dataclass
class TestStage:
    __test__ = False                 # not a pytest class

    lactate: float
    heart_rate: int = 0
    speed: Optional[float] = None    # km/h
    power: Optional[float] = None    # W
    pace: Optional[float] = None     # sec/km

    @property
    def intensity(self) -> float:
        for v in (self.speed, self.power, self.pace):
            if v is not None and v > 0:
                return float(v)
        return 0.0


@dataclass
class ThresholdCalculationRecord:
    """Prior LT2 calculation stored with the test (method tag may be missing)."""
    method: Optional[str] = None     # "DMAX", "MOD_DMAX", "FIXED_4MMOL", "MANUAL", ...
    lt2_lactate: Optional[float] = None


@dataclass
class AnaerobicThresholdSummary:
    value: float
    unit: str = "km/h"               # "km/h" | "min/km" | "watt"
    heart_rate: Optional[int] = None


@dataclass
class LactateTestRecord:
    stages: List[TestStage] = field(default_factory=list)
    threshold_calculation: Optional[ThresholdCalculationRecord] = None
    anaerobic_threshold: Optional[AnaerobicThresholdSummary] = None
    max_hr: Optional[int] = None
    test_date: Optional[date] = None
    manual_lt1_stage: Optional[int] = None   # stage index set by a coach
    manual_lt2_stage: Optional[int] = None


@dataclass
class RacePerformance:
    distance_meters: float
    time_seconds: Optional[float] = None
    time_minutes: Optional[float] = None
    date: Optional[date] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    conditions: str = "normal"       # "fast" | "normal" | "slow"

    def __post_init__(self):
        if self.time_seconds is None and self.time_minutes is None:
            raise ValueError("RacePerformance needs time_seconds or time_minutes")
        if self.minutes <= 0 or self.distance_meters <= 0:
            raise ValueError("RacePerformance distance and time must be positive")

    @property
    def minutes(self) -> float:
        if self.time_minutes is not None:
            return float(self.time_minutes)
        return float(self.time_seconds) / 60.0


@dataclass
class LegacyZoneBand:
    """Zone band recorded by an older zone calculator, speeds in km/h."""
    zone: int
    min_kmh: float
    max_kmh: float

    @property
    def midpoint(self) -> float:
        return (self.min_kmh + self.max_kmh) / 2.0


class DataTools:
    """Unit conversions and stage-table loading — all methods as @staticmethod."""

    STAGE_ALIASES = {
        "Speed_kmh": ["Speed_kmh", "Speed", "Speed_km_h", "speed", "speed_kmh", "v", "predkosc"],
        "Power_W": ["Power_W", "Power", "Watt", "power", "power_w", "watts", "moc"],
        "Pace_sec_km": ["Pace_sec_km", "Pace", "pace", "pace_min_km", "tempo"],
        "Lactate_mmol": ["Lactate_mmol", "Lactate_mmolL", "La", "lactate", "la", "bla", "lactate_mmol"],
        "HR_bpm": ["HR_bpm", "HR", "HeartRate", "Heart Rate", "hr", "heart_rate", "tetno"],
    }

    @staticmethod
    def _parse_num(val) -> float:
        if val is None or (isinstance(val, str) and val.strip() == ""):
            return np.nan
        if isinstance(val, (int, float, np.integer, np.floating)):
            return float(val)
        s = str(val).strip().replace(",", ".")
        if ":" in s:
            try:
                return float(parse_time_str(s))
            except ValueError:
                return np.nan
        try:
            return float(s)
        except ValueError:
            return np.nan

    @staticmethod
    def canonicalize_stages(df: pd.DataFrame) -> pd.DataFrame:
        """
        Standardizes stage-table column names to Speed_kmh / Power_W / Pace_sec_km /
        Lactate_mmol / HR_bpm and casts them to numbers. Pace "m:ss" -> seconds.
        """
        df_new = df.copy()
        df_new.columns = [str(c).strip() for c in df_new.columns]

        for target, candidates in DataTools.STAGE_ALIASES.items():
            for c in candidates:
                if c in df_new.columns:
                    df_new[target] = df_new[c]
                    break

        for col in DataTools.STAGE_ALIASES:
            if col in df_new.columns:
                df_new[col] = df_new[col].apply(DataTools._parse_num)

        if "Lactate_mmol" in df_new.columns:
            df_new = df_new.dropna(subset=["Lactate_mmol"]).reset_index(drop=True)
        return df_new

    @staticmethod
    def stages_from_frame(df: pd.DataFrame) -> List[TestStage]:
        df_c = DataTools.canonicalize_stages(df)
        if "Lactate_mmol" not in df_c.columns:
            raise ValueError("Stage table has no lactate column")

        def _opt(row, col):
            if col not in row.index or pd.isna(row[col]):
                return None
            return float(row[col])

        stages = []
        for _, row in df_c.iterrows():
            hr = _opt(row, "HR_bpm")
            stages.append(TestStage(
                lactate=float(row["Lactate_mmol"]),
                heart_rate=int(round(hr)) if hr is not None else 0,
                speed=_opt(row, "Speed_kmh"),
                power=_opt(row, "Power_W"),
                pace=_opt(row, "Pace_sec_km"),
            ))
        return stages

    @staticmethod
    def load_stages_csv(path, max_hr: Optional[int] = None, **record_kwargs) -> LactateTestRecord:
        try:
            df = pd.read_csv(path)
            if len(df.columns) == 1:
                raise ValueError("single column")
        except ValueError:
            df = pd.read_csv(path, sep=";")
        stages = DataTools.stages_from_frame(df)
        logger.debug("loaded %d stages from %s", len(stages), path)
        return LactateTestRecord(stages=stages, max_hr=max_hr, **record_kwargs)

    @staticmethod
    def convert_to_lactate_data(stages: List[TestStage]) -> List[LactateDataPoint]:
        """Stages -> detector series; intensity from speed, then power, then pace."""
        out = []
        for st in stages:
            x = st.intensity
            if x > 0:
                out.append(LactateDataPoint(intensity=x, lactate=float(st.lactate),
                                            heart_rate=int(st.heart_rate or 0)))
        return out

    @staticmethod
    def find_stage_by_hr(stages: List[TestStage], heart_rate, tolerance: int = 2) -> Optional[TestStage]:
        """Closest stage whose HR is within ±tolerance bpm, else None."""
        if not heart_rate:
            return None
        best, best_diff = None, None
        for st in stages:
            if not st.heart_rate:
                continue
            diff = abs(st.heart_rate - heart_rate)
            if diff <= tolerance and (best_diff is None or diff < best_diff):
                best, best_diff = st, diff
        return best

    # --- PACE ---

    @staticmethod
    def kmh_to_pace(speed_kmh) -> str:
        if not speed_kmh or speed_kmh <= 0:
            return ""
        pace_min = 60 / speed_kmh
        m = int(pace_min)
        s = int(round((pace_min - m) * 60))
        if s == 60:
            m, s = m + 1, 0
        return f"{m}:{s:02d}/km"

    @staticmethod
    def pace_to_kmh(pace) -> float:
        """ "4:30" or "4:30/km" or minutes-per-km float -> km/h."""
        if isinstance(pace, str):
            s = pace.strip().replace("/km", "")
            parts = s.split(":")
            if len(parts) == 2:
                minutes = int(parts[0]) + float(parts[1]) / 60
            else:
                minutes = float(s)
        else:
            minutes = float(pace)
        if minutes <= 0:
            return 0.0
        return 60.0 / minutes

    @staticmethod
    def threshold_to_kmh(summary: Optional[AnaerobicThresholdSummary]) -> float:
        """Anaerobic-threshold summary -> km/h. Power has no pace equivalent: 0."""
        if summary is None or summary.value is None:
            return 0.0
        unit = str(summary.unit).strip().lower()
        if unit in ("km/h", "kmh", "kph"):
            return float(summary.value)
        if unit in ("min/km", "minkm"):
            return DataTools.pace_to_kmh(summary.value)
        if unit in ("watt", "w", "watts"):
            logger.debug("anaerobic threshold in watts has no pace equivalent")
            return 0.0
        raise ValueError(f"Unknown threshold unit: {summary.unit!r}")
