# E21 v1.0 — Athlete Classifier (standalone module)
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from config import AthleteConfig
from engine_core import Confidence, Engine_E05_LactateProfile, LactateProfile, MetabolicType

logger = logging.getLogger(__name__)


class AthleteLevel(Enum):
    ELITE = "ELITE"
    ADVANCED = "ADVANCED"
    INTERMEDIATE = "INTERMEDIATE"
    RECREATIONAL = "RECREATIONAL"


@dataclass(frozen=True)
class AthleteClassification:
    level: AthleteLevel
    compression_factor: float          # marathon pace as fraction of LT2 speed
    lt2_pct_vo2max: float
    metabolic_type: MetabolicType
    confidence: Confidence
    vdot: Optional[float] = None
    training_recommendations: Dict = field(default_factory=dict)
    data_quality: Dict = field(default_factory=dict)
    adjustments: Dict = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


class Engine_E21_AthleteClassifier:
    """E21 v1.0 — Athlete level, MP/LT2 compression and metabolic type.
    Hierarchy of evidence: race VDOT > lactate profile > training profile.
    Female economy and masters fibre-type shift compress the profile further."""

    # (min VDOT, level, compression factor, LT2 %VO2max)
    VDOT_LEVELS = [
        (65, AthleteLevel.ELITE, 0.96, 88),
        (55, AthleteLevel.ADVANCED, 0.88, 85),
        (45, AthleteLevel.INTERMEDIATE, 0.85, 80),
    ]
    RECREATIONAL_DEFAULTS = (AthleteLevel.RECREATIONAL, 0.78, 72)

    GENDER_ADJ_PCT = {
        AthleteLevel.ELITE: 2.0,
        AthleteLevel.ADVANCED: 2.5,
        AthleteLevel.INTERMEDIATE: 3.0,
        AthleteLevel.RECREATIONAL: 2.5,
    }

    WEEKLY_KM_RANGE = {
        AthleteLevel.ELITE: (100, 150),
        AthleteLevel.ADVANCED: (70, 110),
        AthleteLevel.INTERMEDIATE: (50, 80),
        AthleteLevel.RECREATIONAL: (30, 60),
    }

    # ─── SEKCJA 1: ŹRÓDŁA KLASYFIKACJI ───

    @classmethod
    def classify_from_vdot(cls, vdot: float):
        for min_vdot, level, cf, lt2 in cls.VDOT_LEVELS:
            if vdot >= min_vdot:
                return level, cf, lt2
        return cls.RECREATIONAL_DEFAULTS

    @staticmethod
    def classify_from_lactate(profile: LactateProfile, weekly_km: float, years_running: float):
        level = {"ELITE": AthleteLevel.ELITE, "SUB_ELITE": AthleteLevel.ADVANCED}.get(
            profile.athlete_level, AthleteLevel.RECREATIONAL)

        volume_score = min(weekly_km / 100, 1.0) * 30
        experience_score = min(years_running / 5, 1.0) * 20
        score = volume_score + experience_score
        if score >= 40 and level == AthleteLevel.RECREATIONAL:
            level = AthleteLevel.ADVANCED
        elif score >= 45 and level == AthleteLevel.ADVANCED:
            level = AthleteLevel.ELITE

        ratio = profile.lt2_ratio
        if ratio > 0.45:
            cf = 0.96 if level == AthleteLevel.ELITE else 0.90
        elif ratio > 0.35:
            cf = 0.92 if level == AthleteLevel.ELITE else 0.86
        else:
            cf = 0.82   # expanded, middle-distance profile
        return level, cf, 82

    @staticmethod
    def classify_from_profile(weekly_km: float, years_running: float, vo2max: Optional[float]):
        score = 0
        if weekly_km > 100: score += 30
        elif weekly_km > 70: score += 20
        elif weekly_km > 40: score += 10

        if years_running >= 5: score += 20
        elif years_running >= 3: score += 10

        if vo2max:
            if vo2max > 65: score += 25
            elif vo2max > 55: score += 15
            elif vo2max > 45: score += 5

        if score >= 70:
            return AthleteLevel.ELITE, 0.96, 88
        if score >= 45:
            return AthleteLevel.ADVANCED, 0.88, 85
        if score >= 25:
            return AthleteLevel.INTERMEDIATE, 0.85, 80
        return Engine_E21_AthleteClassifier.RECREATIONAL_DEFAULTS

    # ─── SEKCJA 2: KOREKTY ───

    @classmethod
    def gender_adjustment_pct(cls, is_female: bool, level: AthleteLevel) -> float:
        return cls.GENDER_ADJ_PCT[level] if is_female else 0.0

    @staticmethod
    def age_adjustment_pct(age: Optional[int]) -> float:
        if age is None or age <= 35:
            return 0.0
        if age >= 50:
            return 4.0
        if age >= 40:
            return 2.5
        return 1.0

    @staticmethod
    def estimate_metabolic_type(level: AthleteLevel, cf: float) -> MetabolicType:
        if cf >= 0.94:
            return MetabolicType.SLOW_TWITCH if level == AthleteLevel.ELITE else MetabolicType.FAST_TWITCH_ENDURANCE
        if cf <= 0.84:
            return MetabolicType.FAST_TWITCH_POWER
        return MetabolicType.MIXED

    @classmethod
    def training_recommendations(cls, level: AthleteLevel, metabolic: MetabolicType,
                                 age: Optional[int]) -> Dict:
        rec = Engine_E05_LactateProfile.training_recommendations(metabolic)
        km_min, km_max = cls.WEEKLY_KM_RANGE[level]
        if age is not None and age >= 50:
            rec["recovery_days"] += 1
            rec["taper_weeks"] += 1
            km_max *= 0.85
        elif age is not None and age >= 40:
            rec["recovery_days"] += 0.5
            km_max *= 0.90
        rec["recovery_days"] = int(round(rec["recovery_days"]))
        rec["weekly_km"] = {"min": int(round(km_min)), "max": int(round(km_max))}
        return rec

    @staticmethod
    def assess_data_quality(vdot_result, lactate_profile, athlete: AthleteConfig) -> Dict:
        has_race = vdot_result is not None
        has_recent = has_race and (vdot_result.age_in_days is None or vdot_result.age_in_days <= 90)
        checks = [has_race, lactate_profile is not None, athlete.vo2max is not None,
                  athlete.max_hr is not None, athlete.weekly_km is not None, athlete.age is not None]
        return {
            "has_recent_race": has_recent,
            "has_lactate_test": lactate_profile is not None,
            "has_vo2max": athlete.vo2max is not None,
            "completeness": round(sum(checks) / len(checks) * 100),
        }

    # ─── SEKCJA 3: RUN ───

    @classmethod
    def run(cls, vdot_result=None, lactate_profile: Optional[LactateProfile] = None,
            athlete: Optional[AthleteConfig] = None) -> AthleteClassification:
        athlete = athlete or AthleteConfig()
        weekly_km = athlete.weekly_km or 0.0
        years = athlete.training_age or 0.0
        warnings: List[str] = []
        vdot = None

        if vdot_result is not None:
            vdot = vdot_result.vdot
            level, cf, lt2_pct = cls.classify_from_vdot(vdot)
            conf = vdot_result.confidence
            if vdot_result.age_in_days is not None and vdot_result.age_in_days > 180:
                warnings.append(f"Race data is {vdot_result.age_in_days} days old. "
                                "Consider a recent race for better accuracy.")
        elif lactate_profile is not None:
            level, cf, lt2_pct = cls.classify_from_lactate(lactate_profile, weekly_km, years)
            conf = Confidence.HIGH
            warnings.append("No recent race data - classification based on lactate test.")
        else:
            level, cf, lt2_pct = cls.classify_from_profile(weekly_km, years, athlete.vo2max)
            conf = Confidence.LOW
            warnings.append("No race or lactate test data - using profile estimation.")
            warnings.append("CRITICAL: Verify training paces in first 2 weeks and adjust if needed.")

        original_cf = cf
        gender_pct = cls.gender_adjustment_pct(athlete.is_female, level)
        if gender_pct > 0:
            cf = round(cf * (1 + gender_pct / 100), 3)
            warnings.append(f"Female athlete: compression factor +{gender_pct:.1f}% (running economy).")

        age_pct = cls.age_adjustment_pct(athlete.age)
        if age_pct > 0:
            cf = round(cf * (1 + age_pct / 100), 3)
            lt2_pct = round(lt2_pct + age_pct / 2)
            warnings.append(f"Masters athlete ({athlete.age} years): compression factor +{age_pct:.1f}%.")

        if lactate_profile is not None:
            metabolic = lactate_profile.metabolic_type
        else:
            metabolic = cls.estimate_metabolic_type(level, cf)

        logger.debug("E21: level=%s cf=%.3f metabolic=%s", level.value, cf, metabolic.value)
        return AthleteClassification(
            level=level,
            compression_factor=cf,
            lt2_pct_vo2max=lt2_pct,
            metabolic_type=metabolic,
            confidence=conf,
            vdot=vdot,
            training_recommendations=cls.training_recommendations(level, metabolic, athlete.age),
            data_quality=cls.assess_data_quality(vdot_result, lactate_profile, athlete),
            adjustments={
                "gender_pct": gender_pct,
                "age_pct": age_pct,
                "original_compression_factor": original_cf if (gender_pct or age_pct) else None,
            },
            warnings=warnings,
        )
