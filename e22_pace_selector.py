"""
Engine E22: Priority-based pace selector
Picks the most trustworthy marathon/threshold pace from whatever evidence exists
and derives three parallel zone systems (Daniels, Canova, Norwegian) plus HR zones.

Priority chain (first successful tier wins):
  1. LACTATE_TEST_DMAX       lab LT2 (D-max / calculated)   VERY_HIGH
  2. RACE_RESULT_VDOT        most recent race via VDOT       HIGH
     LACTATE_TEST_DMAX       LT2 detected on the stages      <= HIGH
  3. MANUAL_LT2              coach-entered LT2               MEDIUM
  4. DEFAULT_OBLA_LT2        4.0 mmol/L default LT2          LOW
  5. LEGACY_TRAINING_ZONES   zone-2 midpoint                 LOW
  6. HARD_DEFAULT            12.0 km/h                       VERY_LOW
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Optional, Tuple

from config import AthleteConfig, ThresholdConfig, DEFAULT_CONFIG
from data_tools import (DataTools, LactateTestRecord, LegacyZoneBand, RacePerformance, TestStage)
from e20_vdot_model import Engine_E20_VDOT, VDOTResult, calculate_vo2, training_paces
from e21_athlete_classifier import AthleteClassification, AthleteLevel, Engine_E21_AthleteClassifier
from engine_core import Confidence, Engine_E05_LactateProfile, LactateProfile, ThresholdResult

logger = logging.getLogger(__name__)


class PaceSource(Enum):
    LACTATE_TEST_DMAX = "LACTATE_TEST_DMAX"
    RACE_RESULT_VDOT = "RACE_RESULT_VDOT"
    MANUAL_LT2 = "MANUAL_LT2"
    DEFAULT_OBLA_LT2 = "DEFAULT_OBLA_LT2"
    LEGACY_TRAINING_ZONES = "LEGACY_TRAINING_ZONES"
    HARD_DEFAULT = "HARD_DEFAULT"


class LT2Source(Enum):
    DMAX = "DMAX"
    CALCULATED = "CALCULATED"
    MANUAL = "MANUAL"
    DEFAULT = "DEFAULT"


METHOD_TAGS = {
    "DMAX": LT2Source.DMAX,
    "MOD_DMAX": LT2Source.DMAX,
    "FIXED_4MMOL": LT2Source.DEFAULT,
    "OBLA": LT2Source.DEFAULT,
    "MANUAL": LT2Source.MANUAL,
}

MARATHON_PCT_VDOT = 0.84


# ═══════════════════════════════════════════════════════════════
# WARSTWA 1: wejście / kandydaci
# ═══════════════════════════════════════════════════════════════
@dataclass
class PaceInputs:
    athlete: AthleteConfig = field(default_factory=AthleteConfig)
    lactate_test: Optional[LactateTestRecord] = None
    races: List[RacePerformance] = field(default_factory=list)
    manual_lt2_kmh: Optional[float] = None        # coach override
    legacy_zones: List[LegacyZoneBand] = field(default_factory=list)
    as_of: Optional[date] = None
    lab_lt2: Optional[ThresholdResult] = None     # LT2 detected on the stages, km/h
    cfg: ThresholdConfig = field(default_factory=lambda: DEFAULT_CONFIG)


@dataclass(frozen=True)
class PaceCandidate:
    source: PaceSource
    marathon_kmh: float
    confidence: Confidence
    lt2_kmh: Optional[float] = None
    vdot_result: Optional[VDOTResult] = None
    warnings: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PaceValue:
    kmh: float
    pace: str

    @classmethod
    def of(cls, kmh: float) -> "PaceValue":
        return cls(round(kmh, 2), DataTools.kmh_to_pace(kmh))


@dataclass(frozen=True)
class PaceRange:
    min_kmh: float
    max_kmh: float
    min_pace: str
    max_pace: str

    @classmethod
    def of(cls, min_kmh: float, max_kmh: float) -> "PaceRange":
        return cls(round(min_kmh, 2), round(max_kmh, 2),
                   DataTools.kmh_to_pace(min_kmh), DataTools.kmh_to_pace(max_kmh))


@dataclass(frozen=True)
class PaceSelectionResult:
    primary_source: PaceSource
    secondary_source: Optional[PaceSource]
    confidence: Confidence
    athlete_classification: AthleteClassification
    vdot_result: Optional[VDOTResult]
    lactate_profile: Optional[LactateProfile]
    lt2_source: Optional[LT2Source]
    easy_pace: PaceRange
    marathon_pace: PaceValue
    threshold_pace: PaceValue
    interval_pace: PaceValue
    repetition_pace: PaceValue
    zones: Dict
    validation_results: Dict
    warnings: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()


# ═══════════════════════════════════════════════════════════════
# WARSTWA 2: LT2 z testu laboratoryjnego
# ═══════════════════════════════════════════════════════════════
def _hr_matched_stage(test: LactateTestRecord, cfg: ThresholdConfig) -> Optional[TestStage]:
    at = test.anaerobic_threshold
    if at is None or not at.heart_rate:
        return None
    return DataTools.find_stage_by_hr(test.stages, at.heart_rate, cfg.hr_match_tolerance)


def resolve_lab_lt2_kmh(test: Optional[LactateTestRecord], cfg: ThresholdConfig = DEFAULT_CONFIG) -> float:
    """LT2 speed from the stored threshold; HR-matched stage when the value is unusable. 0 = none."""
    if test is None or test.anaerobic_threshold is None:
        return 0.0
    kmh = DataTools.threshold_to_kmh(test.anaerobic_threshold)
    if kmh > 0:
        return kmh
    stage = _hr_matched_stage(test, cfg)
    if stage is not None and stage.speed:
        logger.debug("E22: LT2 from HR-matched stage %.1f km/h @ %d bpm", stage.speed, stage.heart_rate)
        return float(stage.speed)
    return 0.0


def classify_lt2_source(test: Optional[LactateTestRecord],
                        cfg: ThresholdConfig = DEFAULT_CONFIG) -> Optional[LT2Source]:
    """
    Where did the stored LT2 come from?
    Explicit method tag wins; otherwise the LT2 lactate decides: ~4.0 is the
    OBLA default, values outside 1.5-8.0 look hand-entered, the rest is calculated.
    """
    if test is None:
        return None
    calc = test.threshold_calculation
    if calc is not None and calc.method:
        return METHOD_TAGS.get(str(calc.method).strip().upper(), LT2Source.CALCULATED)

    lactate = calc.lt2_lactate if calc is not None else None
    if lactate is None:
        stage = _hr_matched_stage(test, cfg)
        lactate = stage.lactate if stage is not None else None

    if lactate is None:
        return LT2Source.CALCULATED if test.anaerobic_threshold is not None else None
    if abs(lactate - cfg.obla_lactate) <= cfg.obla_tolerance + 1e-9:
        return LT2Source.DEFAULT
    if lactate < cfg.manual_lactate_low or lactate > cfg.manual_lactate_high:
        return LT2Source.MANUAL
    return LT2Source.CALCULATED


def most_recent_race(races: List[RacePerformance]) -> Optional[RacePerformance]:
    if not races:
        return None
    return max(races, key=lambda r: r.date or date.min)


# ═══════════════════════════════════════════════════════════════
# WARSTWA 3: strategie łańcucha priorytetów
# ═══════════════════════════════════════════════════════════════
class PaceStrategy:
    source: PaceSource

    def try_apply(self, inputs: PaceInputs) -> Optional[PaceCandidate]:
        raise NotImplementedError


class LactateTestDmaxStrategy(PaceStrategy):
    source = PaceSource.LACTATE_TEST_DMAX

    def try_apply(self, inputs):
        cfg = inputs.cfg
        test = inputs.lactate_test
        if classify_lt2_source(test, cfg) not in (LT2Source.DMAX, LT2Source.CALCULATED):
            return None
        lt2 = resolve_lab_lt2_kmh(test, cfg)
        if lt2 <= 0:
            return None
        return PaceCandidate(self.source, lt2 * cfg.marathon_factor, Confidence.VERY_HIGH, lt2_kmh=lt2)


class RaceResultVdotStrategy(PaceStrategy):
    source = PaceSource.RACE_RESULT_VDOT

    def try_apply(self, inputs):
        cfg = inputs.cfg
        race = most_recent_race(inputs.races)
        if race is None:
            return None
        try:
            vdot = Engine_E20_VDOT.run(race, inputs.athlete, as_of=inputs.as_of)
        except ValueError as e:
            logger.warning("E22: race result skipped: %s", e)
            return None
        mp = vdot.marathon_kmh
        if not (cfg.mp_min_kmh <= mp <= cfg.mp_max_kmh):
            logger.warning("E22: race MP %.2f km/h outside %.0f-%.0f", mp, cfg.mp_min_kmh, cfg.mp_max_kmh)
            return None
        warnings = []
        if inputs.lactate_test is not None:
            warnings.append("Lactate test present but its LT2 is not usable for pace selection; "
                            "using race result instead.")
        if vdot.age_in_days is not None and vdot.age_in_days > 90:
            warnings.append(f"Race data is {vdot.age_in_days} days old. Consider updating with a recent performance.")
        return PaceCandidate(self.source, mp, Confidence.HIGH, vdot_result=vdot, warnings=tuple(warnings))


class DetectedLT2Strategy(PaceStrategy):
    """LT2 found on the stage series itself (ensemble + D-max). No stored threshold needed."""
    source = PaceSource.LACTATE_TEST_DMAX

    def try_apply(self, inputs):
        cfg = inputs.cfg
        lab = inputs.lab_lt2
        if lab is None or not lab.intensity or lab.intensity <= 0:
            return None
        tag = METHOD_TAGS.get(str(lab.method).strip().upper(), LT2Source.CALCULATED)
        if tag not in (LT2Source.DMAX, LT2Source.CALCULATED):
            return None
        mp = lab.intensity * cfg.marathon_factor
        if not (cfg.mp_min_kmh <= mp <= cfg.mp_max_kmh):
            return None
        return PaceCandidate(self.source, mp, lab.confidence.capped(Confidence.HIGH), lt2_kmh=lab.intensity,
                             warnings=(f"LT2 detected from the test stages ({lab.method}); "
                                       f"no stored threshold on the test record.",))


class ManualLT2Strategy(PaceStrategy):
    source = PaceSource.MANUAL_LT2

    def try_apply(self, inputs):
        cfg = inputs.cfg
        lt2 = inputs.manual_lt2_kmh or 0.0
        if lt2 <= 0 and classify_lt2_source(inputs.lactate_test, cfg) == LT2Source.MANUAL:
            lt2 = resolve_lab_lt2_kmh(inputs.lactate_test, cfg)
        if lt2 <= 0:
            return None
        return PaceCandidate(self.source, lt2 * cfg.marathon_factor, Confidence.MEDIUM, lt2_kmh=lt2)


class DefaultOblaStrategy(PaceStrategy):
    source = PaceSource.DEFAULT_OBLA_LT2

    WARNINGS = (
        "LT2 looks like the default 4.0 mmol/L (OBLA) value, not an individual threshold.",
        "High-lactate producers often sit well above 4.0 mmol/L at LT2; paces may be too slow.",
        "Re-analyse the test with D-max or enter a coach-verified LT2.",
    )

    def try_apply(self, inputs):
        cfg = inputs.cfg
        if classify_lt2_source(inputs.lactate_test, cfg) != LT2Source.DEFAULT:
            return None
        lt2 = resolve_lab_lt2_kmh(inputs.lactate_test, cfg)
        if lt2 <= 0:
            return None
        return PaceCandidate(self.source, lt2 * cfg.marathon_factor, Confidence.LOW,
                             lt2_kmh=lt2, warnings=self.WARNINGS)


class LegacyZonesStrategy(PaceStrategy):
    source = PaceSource.LEGACY_TRAINING_ZONES

    def try_apply(self, inputs):
        zone2 = next((z for z in inputs.legacy_zones if z.zone == 2), None)
        if zone2 is None or zone2.midpoint <= 0:
            return None
        return PaceCandidate(self.source, zone2.midpoint, Confidence.LOW,
                             warnings=("Using legacy training zones - less precise than test or race data.",))


class HardDefaultStrategy(PaceStrategy):
    source = PaceSource.HARD_DEFAULT

    def try_apply(self, inputs):
        kmh = inputs.cfg.hard_default_kmh
        return PaceCandidate(self.source, kmh, Confidence.VERY_LOW,
                             errors=(f"No usable threshold source; default marathon pace "
                                     f"{kmh} km/h ({DataTools.kmh_to_pace(kmh)}) applied.",))


PRIORITY_CHAIN: Tuple[PaceStrategy, ...] = (
    LactateTestDmaxStrategy(),
    RaceResultVdotStrategy(),
    DetectedLT2Strategy(),
    ManualLT2Strategy(),
    DefaultOblaStrategy(),
    LegacyZonesStrategy(),
    HardDefaultStrategy(),
)


def select_primary(inputs: PaceInputs,
                   chain: Tuple[PaceStrategy, ...] = PRIORITY_CHAIN) -> Tuple[PaceCandidate, Optional[PaceSource]]:
    """Winner = first tier that applies; secondary = next later tier that applies (hard default excluded)."""
    for idx, strategy in enumerate(chain):
        winner = strategy.try_apply(inputs)
        if winner is not None:
            break
    else:
        raise ValueError("Priority chain produced no pace")

    secondary = None
    for strategy in chain[idx + 1:]:
        if strategy.source == PaceSource.HARD_DEFAULT:
            continue
        if strategy.try_apply(inputs) is not None:
            secondary = strategy.source
            break
    return winner, secondary


# ═══════════════════════════════════════════════════════════════
# WARSTWA 4: strefy
# ═══════════════════════════════════════════════════════════════
def _hr(max_hr, pct):
    return int(round(max_hr * pct)) if max_hr else None


def build_daniels_zones(paces: Dict[str, object], lt2_hr: Optional[int], max_hr: Optional[int]) -> Dict:
    easy: PaceRange = paces["easy"]
    return {
        "easy": {**asdict(easy), "hr_min": _hr(max_hr, 0.65), "hr_max": _hr(max_hr, 0.78)},
        "marathon": {**asdict(paces["marathon"]), "hr": _hr(max_hr, 0.84)},
        "threshold": {**asdict(paces["threshold"]), "hr": lt2_hr or _hr(max_hr, 0.88)},
        "interval": {**asdict(paces["interval"]), "hr": _hr(max_hr, 0.98)},
        "repetition": {**asdict(paces["repetition"]), "hr": _hr(max_hr, 0.98)},
    }


def build_canova_zones(mp: float, tp: float, level: AthleteLevel,
                       lt2_hr: Optional[int], max_hr: Optional[int]) -> Dict:
    """Percent-of-marathon-pace bands."""
    five_k = {AthleteLevel.ELITE: 1.08, AthleteLevel.ADVANCED: 1.10}.get(level, 1.12)
    one_k = {AthleteLevel.ELITE: 1.15, AthleteLevel.ADVANCED: 1.17}.get(level, 1.20)

    def _z(kmh, pct, hr):
        return {**asdict(PaceValue.of(kmh)), "pct_of_mp": pct, "hr": hr}

    return {
        "fundamental": _z(mp * 0.88, 88, _hr(max_hr, 0.75)),
        "progressive": {**asdict(PaceRange.of(mp * 0.95, mp * 1.02)), "pct_of_mp": "95-102",
                        "hr": _hr(max_hr, 0.82)},
        "marathon": _z(mp, 100, _hr(max_hr, 0.84)),
        "specific": _z(mp * 1.04, 104, _hr(max_hr, 0.87)),
        "threshold": _z(tp, int(round(tp / mp * 100)), lt2_hr or _hr(max_hr, 0.88)),
        "five_k": _z(mp * five_k, int(round(five_k * 100)), _hr(max_hr, 0.94)),
        "one_k": _z(mp * one_k, int(round(one_k * 100)), _hr(max_hr, 0.98)),
    }


def build_norwegian_zones(tp: float, level: AthleteLevel, lt2_lactate: Optional[float],
                          lt2_hr: Optional[int], max_hr: Optional[int]) -> Dict:
    """Green / threshold / red, labelled by lactate rather than pace."""
    green_max = tp * (0.80 if level == AthleteLevel.ELITE else 0.85)
    green_min = green_max * 0.75
    return {
        "green": {**asdict(PaceRange.of(green_min, green_max)), "lactate": "<2.0 mmol/L",
                  "hr": _hr(max_hr, 0.75)},
        "threshold": {**asdict(PaceValue.of(tp)),
                      "lactate": f"{lt2_lactate:.1f} mmol/L" if lt2_lactate else "2.0-3.0 mmol/L",
                      "hr": lt2_hr or _hr(max_hr, 0.88)},
        "red": {**asdict(PaceRange.of(tp * 1.05, tp * 1.20)), "lactate": ">3.0 mmol/L",
                "hr": _hr(max_hr, 0.95)},
    }


HRMAX_BANDS = [(0.50, 0.60, "Very easy / recovery"), (0.60, 0.70, "Easy / aerobic base"),
               (0.70, 0.80, "Moderate / tempo"), (0.80, 0.90, "Hard / threshold"),
               (0.90, 1.00, "Maximum / VO2max")]
# Karvonen: fractions of heart-rate reserve
HRR_BANDS = [(0.50, 0.60, "Very easy / recovery"), (0.60, 0.75, "Easy / aerobic base"),
             (0.80, 0.88, "Tempo / threshold"), (0.88, 0.95, "Interval / VO2max"),
             (0.95, 1.00, "Repetition / speed")]


def build_hr_zones(max_hr: int, resting_hr: Optional[int] = None) -> Dict:
    """%HRmax bands; heart-rate-reserve bands when a plausible resting HR is known."""
    if resting_hr and 0 < resting_hr < max_hr:
        reserve = max_hr - resting_hr

        def bpm(pct):
            return int(round(resting_hr + reserve * pct))
        bands = HRR_BANDS
    else:
        def bpm(pct):
            return _hr(max_hr, pct)
        bands = HRMAX_BANDS
    return {f"zone{i}": {"min_hr": bpm(lo), "max_hr": bpm(hi), "description": d}
            for i, (lo, hi, d) in enumerate(bands, start=1)}


def _read_only(obj):
    """Nested dicts -> MappingProxyType views."""
    if isinstance(obj, dict):
        return MappingProxyType({k: _read_only(v) for k, v in obj.items()})
    return obj


# ═══════════════════════════════════════════════════════════════
# WARSTWA 5: Engine
# ═══════════════════════════════════════════════════════════════
class Engine_E22_PaceSelector:
    """E22 — marathon/threshold pace from the priority chain, zones, consistency check."""

    DEFAULT_MAX_HR = 190

    @staticmethod
    def _core_paces(winner: PaceCandidate) -> Dict[str, object]:
        if winner.vdot_result is not None:
            tp = winner.vdot_result.training_paces
        else:
            # VDOT implied by the chosen marathon pace
            implied = calculate_vo2(winner.marathon_kmh * 1000 / 60) / MARATHON_PCT_VDOT
            tp = training_paces(implied)
        threshold = winner.lt2_kmh if winner.lt2_kmh else tp["threshold"]["kmh"]
        return {
            "easy": PaceRange.of(tp["easy"]["min_kmh"], tp["easy"]["max_kmh"]),
            "marathon": PaceValue.of(winner.marathon_kmh),
            "threshold": PaceValue.of(threshold),
            "interval": PaceValue.of(tp["interval"]["kmh"]),
            "repetition": PaceValue.of(tp["repetition"]["kmh"]),
        }

    @staticmethod
    def validate_consistency(vdot_result: Optional[VDOTResult], lt2_kmh: Optional[float],
                             classification: AthleteClassification, cfg: ThresholdConfig) -> Dict:
        mp_ok, tp_ok, mismatch = True, True, None
        if vdot_result is not None and lt2_kmh:
            vdot_mp = vdot_result.marathon_kmh
            lactate_mp = lt2_kmh * classification.compression_factor
            mismatch = round(abs(vdot_mp - lactate_mp) / vdot_mp * 100, 1)
            mp_ok = mismatch <= cfg.consistency_max_mismatch_pct
            vdot_tp = vdot_result.threshold_kmh
            tp_ok = abs(vdot_tp - lt2_kmh) / vdot_tp * 100 <= cfg.consistency_max_mismatch_pct
        return {
            "marathon_pace_consistent": mp_ok,
            "threshold_pace_consistent": tp_ok,
            "mismatch_percent": mismatch,
        }

    @classmethod
    def run(cls, inputs: PaceInputs) -> PaceSelectionResult:
        cfg = inputs.cfg
        athlete = inputs.athlete
        test = inputs.lactate_test
        warnings: List[str] = []
        errors: List[str] = []

        race = most_recent_race(inputs.races)
        vdot_result = None
        if race is not None:
            try:
                vdot_result = Engine_E20_VDOT.run(race, athlete, as_of=inputs.as_of)
            except ValueError as e:
                warnings.append(f"Race result not usable for VDOT: {e}")

        lactate_profile = None
        has_speed = False
        if test is not None and len(test.stages) >= Engine_E05_LactateProfile.MIN_POINTS:
            points = DataTools.convert_to_lactate_data(test.stages)
            has_speed = all(st.speed for st in test.stages)
            lactate_profile = Engine_E05_LactateProfile.run(
                points, max_hr=test.max_hr or athlete.max_hr,
                manual_lt1=test.manual_lt1_stage, manual_lt2=test.manual_lt2_stage, cfg=cfg)
            warnings.extend(lactate_profile.warnings)

        classification = Engine_E21_AthleteClassifier.run(vdot_result, lactate_profile, athlete)
        lt2_source = classify_lt2_source(test, cfg)

        winner, secondary = select_primary(inputs)
        logger.info("E22: primary=%s mp=%.2f km/h conf=%s secondary=%s", winner.source.value,
                    winner.marathon_kmh, winner.confidence.value,
                    secondary.value if secondary else None)
        warnings.extend(winner.warnings)
        errors.extend(winner.errors)

        paces = cls._core_paces(winner)

        lab_lt2 = resolve_lab_lt2_kmh(test, cfg) or None
        if lab_lt2 is None and inputs.lab_lt2 is not None and has_speed:
            lab_lt2 = inputs.lab_lt2.intensity
        if lab_lt2 is None and lactate_profile is not None and has_speed:
            lab_lt2 = lactate_profile.lt2.intensity
        consistency = cls.validate_consistency(vdot_result, lab_lt2, classification, cfg)
        if not consistency["marathon_pace_consistent"]:
            warnings.append(f"Marathon pace mismatch between sources "
                            f"({consistency['mismatch_percent']:.1f}%). Review data quality.")

        max_hr = athlete.max_hr or (test.max_hr if test else None)
        lt2_hr = None
        if lactate_profile is not None and lactate_profile.lt2.heart_rate:
            lt2_hr = lactate_profile.lt2.heart_rate
        elif test is not None and test.anaerobic_threshold is not None:
            lt2_hr = test.anaerobic_threshold.heart_rate
        lt2_lactate = lactate_profile.lt2.lactate if lactate_profile is not None else None

        mp = paces["marathon"].kmh
        tp = paces["threshold"].kmh
        zones = {
            "daniels": build_daniels_zones(paces, lt2_hr, max_hr),
            "canova": build_canova_zones(mp, tp, classification.level, lt2_hr, max_hr),
            "norwegian": build_norwegian_zones(tp, classification.level, lt2_lactate, lt2_hr, max_hr),
            "hr_based": build_hr_zones(max_hr or cls.DEFAULT_MAX_HR, athlete.resting_hr),
        }

        validation = {
            "sources_available": {
                "vdot": vdot_result is not None,
                "lactate": lactate_profile is not None,
                "hr_data": lt2_hr is not None,
                "profile": True,
            },
            "consistency_checks": consistency,
            "data_quality": {
                "vdot_confidence": vdot_result.confidence.value if vdot_result else None,
                "lactate_confidence": lactate_profile.confidence.value if lactate_profile else None,
                "dmax_r2": lactate_profile.dmax_r2 if lactate_profile else None,
            },
        }

        return PaceSelectionResult(
            primary_source=winner.source,
            secondary_source=secondary,
            confidence=winner.confidence,
            athlete_classification=classification,
            vdot_result=vdot_result,
            lactate_profile=lactate_profile,
            lt2_source=lt2_source,
            easy_pace=paces["easy"],
            marathon_pace=paces["marathon"],
            threshold_pace=paces["threshold"],
            interval_pace=paces["interval"],
            repetition_pace=paces["repetition"],
            zones=_read_only(zones),
            validation_results=_read_only(validation),
            warnings=tuple(warnings),
            errors=tuple(errors),
        )
