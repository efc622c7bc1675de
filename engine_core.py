import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Dict, List, Tuple, Sequence

import numpy as np
from scipy.stats import linregress

from config import ThresholdConfig, DEFAULT_CONFIG
from data_tools import LactateDataPoint

logger = logging.getLogger(__name__)


class InsufficientDataError(ValueError):
    """Series too short for an analysis the caller explicitly requested."""


# ==========================================
# SHARED TYPES
# ==========================================

class ProfileType(Enum):
    ELITE_FLAT = "ELITE_FLAT"
    STANDARD = "STANDARD"
    RECREATIONAL = "RECREATIONAL"


class Confidence(Enum):
    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_ORDER.index(self)

    def capped(self, ceiling: "Confidence") -> "Confidence":
        """min(self, ceiling) — never raises the level."""
        return self if self.rank <= ceiling.rank else ceiling


_CONFIDENCE_ORDER = [Confidence.VERY_LOW, Confidence.LOW, Confidence.MEDIUM,
                     Confidence.HIGH, Confidence.VERY_HIGH]


@dataclass(frozen=True)
class AthleteProfile:
    type: ProfileType
    baseline_avg: float
    baseline_slope: float
    max_lactate: float
    lactate_range: float


@dataclass(frozen=True)
class ThresholdResult:
    intensity: float
    lactate: float
    heart_rate: int
    method: str
    confidence: Confidence
    profile_type: ProfileType

    def downgraded(self, ceiling: Confidence) -> "ThresholdResult":
        return replace(self, confidence=self.confidence.capped(ceiling))

    def to_dict(self) -> Dict:
        return {
            "intensity": self.intensity,
            "lactate": self.lactate,
            "heart_rate": self.heart_rate,
            "method": self.method,
            "confidence": self.confidence.value,
            "profile_type": self.profile_type.value,
        }


@dataclass
class EnsembleResult:
    lt1: Optional[ThresholdResult]
    lt2: Optional[ThresholdResult]
    profile: AthleteProfile
    methods: Dict[str, object] = field(default_factory=lambda: {
        "log_log": None, "baseline_plus": None, "dmax": None})
    diagnostics: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        def _d(r):
            return r.to_dict() if r is not None else None
        return {
            "lt1": _d(self.lt1),
            "lt2": _d(self.lt2),
            "profile": {
                "type": self.profile.type.value,
                "baseline_avg": round(self.profile.baseline_avg, 3),
                "baseline_slope": round(self.profile.baseline_slope, 4),
                "max_lactate": self.profile.max_lactate,
                "lactate_range": self.profile.lactate_range,
            },
            "methods": {k: _d(v) for k, v in self.methods.items()},
            "diagnostics": list(self.diagnostics),
        }


# ==========================================
# ENGINE E01 — CURVE PREPROCESSOR
# ==========================================

class Engine_E01_CurvePreprocessor:
    """
    E01: artifact filtering of a raw step-test series.

    Startle filter: an anxiety-elevated first reading (stage 1 lactate more
    than `startle_margin` above stage 2) takes stage 2's lactate. Intensity and
    HR of stage 1 are kept, so the output has the same length as the input.
    """

    MIN_POINTS = 3

    @classmethod
    def run(cls, points: Sequence[LactateDataPoint],
            cfg: Optional[ThresholdConfig] = None) -> List[LactateDataPoint]:
        cfg = cfg or DEFAULT_CONFIG
        out = list(points)
        if len(out) < cls.MIN_POINTS:
            return out

        first, second = out[0], out[1]
        if first.lactate > second.lactate + cfg.startle_margin:
            logger.debug("E01: startle reading %.2f -> %.2f mmol/L", first.lactate, second.lactate)
            out[0] = replace(first, lactate=second.lactate)
        return out


# ==========================================
# ENGINE E02 — PROFILE CLASSIFIER
# ==========================================

class Engine_E02_ProfileClassifier:
    """E02: ELITE_FLAT / STANDARD / RECREATIONAL from baseline level and slope."""

    @staticmethod
    def robust_baseline(points: Sequence[LactateDataPoint],
                        cfg: Optional[ThresholdConfig] = None) -> Tuple[float, float]:
        """
        (baseline, slope) from the first `baseline_fraction` of stages.
        Baseline = mean without the single highest value of the subset.
        """
        cfg = cfg or DEFAULT_CONFIG
        n = len(points)
        k = max(cfg.min_baseline_points, int(np.floor(n * cfg.baseline_fraction)))
        subset = list(points[:k])

        la = np.array([p.lactate for p in subset], dtype=float)
        if len(la) > 1:
            trimmed = np.delete(la, int(np.argmax(la)))
        else:
            trimmed = la
        baseline = float(trimmed.mean())

        dx = subset[-1].intensity - subset[0].intensity
        slope = (subset[-1].lactate - subset[0].lactate) / dx if dx != 0 else 0.0
        return baseline, float(slope)

    @classmethod
    def run(cls, points: Sequence[LactateDataPoint],
            cfg: Optional[ThresholdConfig] = None) -> AthleteProfile:
        cfg = cfg or DEFAULT_CONFIG

        if len(points) < cfg.min_classify_points:
            baseline = points[0].lactate if points else cfg.default_baseline
            max_la = max((p.lactate for p in points), default=baseline)
            return AthleteProfile(ProfileType.STANDARD, float(baseline), 0.0, float(max_la), 0.0)

        baseline, slope = cls.robust_baseline(points, cfg)
        la = np.array([p.lactate for p in points], dtype=float)

        if baseline < cfg.elite_baseline_max and abs(slope) < cfg.elite_slope_max:
            ptype = ProfileType.ELITE_FLAT
        elif baseline < cfg.standard_baseline_max and abs(slope) < cfg.standard_slope_max:
            ptype = ProfileType.STANDARD
        else:
            ptype = ProfileType.RECREATIONAL

        logger.debug("E02: baseline=%.2f slope=%.3f -> %s", baseline, slope, ptype.value)
        return AthleteProfile(
            type=ptype,
            baseline_avg=baseline,
            baseline_slope=slope,
            max_lactate=float(la.max()),
            lactate_range=float(la.max() - baseline),
        )


# ==========================================
# ENGINE E03 — THRESHOLD DETECTION ENSEMBLE
# ==========================================
#
# RESEARCH BASIS:
# ───────────────────────────────────────────
# LT1 detectors:
#   1. Log-Log breakpoint        (Beaver 1985) — primary for flat curves
#   2. Baseline + adaptive delta (Berg 1990, Zoladz 1995)
# LT2:
#   3. Dmax                      (Cheng 1992) — slot filled by E04
#
# Elite curves can stay near 1 mmol/L for most of the test; a fixed +0.5
# delta then fires late or never, so delta shrinks with the profile.
# ───────────────────────────────────────────

class Engine_E03_ThresholdEnsemble:
    """
    E03: two independent LT1 detectors + profile-aware reconciliation.

    Input: cleaned series (E01) — the profile (E02) is computed here.
    Output: EnsembleResult with lt1, the raw method outputs and a decision trace.
    """

    # ─── SEKCJA 1: LOG-LOG ───

    @staticmethod
    def _method_log_log(points: Sequence[LactateDataPoint], profile: AthleteProfile,
                        cfg: ThresholdConfig, diag: List[str]) -> Optional[ThresholdResult]:
        """
        Segmented regression on ln(La) vs ln(intensity).
        Both segments share the breakpoint; the split with minimal total SSE wins.
        """
        valid = [p for p in points if p.intensity > 0 and p.lactate > 0]
        if len(valid) < cfg.loglog_min_points:
            diag.append(f"log-log: {len(valid)} valid points < {cfg.loglog_min_points}")
            return None

        log_x = np.log([p.intensity for p in valid])
        log_y = np.log([p.lactate for p in valid])
        n = len(log_x)

        best_sse = np.inf
        best = None
        for bp_idx in range(2, n - 2):  # min 2 points on each side
            x1, y1 = log_x[:bp_idx + 1], log_y[:bp_idx + 1]
            x2, y2 = log_x[bp_idx:], log_y[bp_idx:]
            try:
                s1 = linregress(x1, y1)
                s2 = linregress(x2, y2)
            except ValueError:
                continue  # identical x values in a segment

            sse1 = np.sum((y1 - (s1.slope * x1 + s1.intercept)) ** 2)
            sse2 = np.sum((y2 - (s2.slope * x2 + s2.intercept)) ** 2)
            total_sse = sse1 + sse2
            if np.isfinite(total_sse) and total_sse < best_sse:
                best_sse = total_sse
                best = (bp_idx, float(s1.slope), float(s2.slope))

        if best is None:
            diag.append("log-log: no finite breakpoint fit")
            return None

        bp_idx, slope1, slope2 = best
        ratio = slope2 / max(0.01, abs(slope1))
        diag.append(f"log-log: breakpoint={bp_idx} slope1={slope1:.4f} slope2={slope2:.4f} "
                    f"ratio={ratio:.2f} sse={best_sse:.4f}")

        if slope2 - slope1 <= cfg.loglog_min_slope_gain:
            diag.append("log-log: no slope increase, rejected")
            return None

        if ratio > cfg.loglog_high_ratio:
            conf = Confidence.HIGH
        elif ratio > cfg.loglog_medium_ratio:
            conf = Confidence.MEDIUM
        else:
            conf = Confidence.LOW

        p = valid[bp_idx]
        return ThresholdResult(p.intensity, p.lactate, p.heart_rate, "LOG_LOG", conf, profile.type)

    # ─── SEKCJA 2: BASELINE + ADAPTIVE DELTA ───

    @staticmethod
    def _method_baseline_plus(points: Sequence[LactateDataPoint], profile: AthleteProfile,
                              cfg: ThresholdConfig, diag: List[str]) -> Optional[ThresholdResult]:
        """
        First pair of consecutive stages above baseline + delta; the stage before
        the pair is reported (pre-rise point). No crossing -> closest stage, LOW.
        """
        if len(points) < cfg.baseline_plus_min_points:
            diag.append(f"baseline-plus: {len(points)} points < {cfg.baseline_plus_min_points}")
            return None

        baseline, _ = Engine_E02_ProfileClassifier.robust_baseline(points, cfg)
        delta = cfg.delta_for(profile.type)
        threshold = baseline + delta
        method = f"BASELINE_PLUS_{delta}"

        for i in range(len(points) - 1):
            if points[i].lactate > threshold and points[i + 1].lactate > threshold:
                p = points[max(0, i - 1)]
                conf = Confidence.MEDIUM if profile.type == ProfileType.ELITE_FLAT else Confidence.HIGH
                diag.append(f"baseline-plus: {threshold:.2f} mmol/L crossed at stage {i}, "
                            f"reporting stage {max(0, i - 1)}")
                return ThresholdResult(p.intensity, p.lactate, p.heart_rate, method, conf, profile.type)

        closest = min(points, key=lambda q: abs(q.lactate - threshold))
        diag.append(f"baseline-plus: {threshold:.2f} mmol/L never crossed, closest stage estimated")
        return ThresholdResult(closest.intensity, closest.lactate, closest.heart_rate,
                               f"{method}_ESTIMATED", Confidence.LOW, profile.type)

    # ─── SEKCJA 3: RECONCILIATION ───

    @staticmethod
    def _reconcile(log_log: Optional[ThresholdResult], baseline_plus: Optional[ThresholdResult],
                   profile: AthleteProfile, cfg: ThresholdConfig,
                   diag: List[str]) -> Optional[ThresholdResult]:
        if profile.type != ProfileType.ELITE_FLAT:
            if baseline_plus is not None:
                diag.append("ensemble: non-elite profile, using baseline-plus")
                return baseline_plus
            if log_log is not None:
                diag.append("ensemble: baseline-plus unavailable, falling back to log-log")
            return log_log

        if log_log is None or baseline_plus is None:
            diag.append("ensemble: elite profile with a single detector result")
            return log_log or baseline_plus

        divergence = abs(log_log.intensity - baseline_plus.intensity)
        if divergence <= cfg.agreement_window:
            diag.append(f"ensemble: methods agree (|d|={divergence:.2f}), using log-log")
            return log_log

        lower = log_log if log_log.intensity < baseline_plus.intensity else baseline_plus
        diag.append(f"ensemble: methods diverge (|d|={divergence:.2f}), "
                    f"using conservative {lower.method}")
        return lower.downgraded(Confidence.MEDIUM)

    @classmethod
    def run(cls, points: Sequence[LactateDataPoint],
            cfg: Optional[ThresholdConfig] = None) -> EnsembleResult:
        cfg = cfg or DEFAULT_CONFIG
        diag: List[str] = []

        cleaned = Engine_E01_CurvePreprocessor.run(points, cfg)
        profile = Engine_E02_ProfileClassifier.run(cleaned, cfg)
        diag.append(f"profile: {profile.type.value} baseline={profile.baseline_avg:.2f} "
                    f"slope={profile.baseline_slope:.3f}")

        log_log = cls._method_log_log(cleaned, profile, cfg, diag)
        baseline_plus = cls._method_baseline_plus(cleaned, profile, cfg, diag)
        lt1 = cls._reconcile(log_log, baseline_plus, profile, cfg, diag)
        if lt1 is None:
            logger.warning("E03: no LT1 detected (%d points)", len(cleaned))

        return EnsembleResult(
            lt1=lt1,
            lt2=None,
            profile=profile,
            methods={"log_log": log_log, "baseline_plus": baseline_plus, "dmax": None},
            diagnostics=diag,
        )

    @staticmethod
    def merge_dmax(result: EnsembleResult, dmax: Optional["DmaxResult"],
                   cfg: Optional[ThresholdConfig] = None) -> EnsembleResult:
        """
        Fills the D-max slot and LT2 from an externally computed D-max result.
        An elite divergence pick at or above D-max LT2 cannot be LT1: LOW.
        """
        cfg = cfg or DEFAULT_CONFIG
        if dmax is None:
            return replace(result, diagnostics=result.diagnostics + ["dmax: not available"])

        diag = list(result.diagnostics)
        lt2 = ThresholdResult(dmax.intensity, dmax.lactate, dmax.heart_rate, dmax.method,
                              dmax.confidence, result.profile.type)
        lt1 = result.lt1
        log_log = result.methods.get("log_log")
        baseline_plus = result.methods.get("baseline_plus")
        diverged = (result.profile.type == ProfileType.ELITE_FLAT
                    and log_log is not None and baseline_plus is not None
                    and abs(log_log.intensity - baseline_plus.intensity) > cfg.agreement_window)
        if lt1 is not None and diverged and lt1.intensity >= lt2.intensity:
            lt1 = lt1.downgraded(Confidence.LOW)
            diag.append(f"dmax: LT1 {result.lt1.intensity:.2f} not below LT2 "
                        f"{lt2.intensity:.2f}, LT1 downgraded to LOW")
        diag.append(f"dmax: LT2 {lt2.intensity:.2f} @ {lt2.lactate:.2f} mmol/L ({dmax.method})")

        methods = dict(result.methods)
        methods["dmax"] = lt2
        return replace(result, lt1=lt1, lt2=lt2, methods=methods, diagnostics=diag)


# ==========================================
# ENGINE E04 — DMAX (LT2)
# ==========================================
#
# References:
#   - Cheng et al. 1992: 3rd order polynomial, max perpendicular distance
#   - Bishop et al. 1998: ModDmax start = point before first +0.4 rise
# ───────────────────────────────────────────

@dataclass(frozen=True)
class DmaxResult:
    intensity: float
    lactate: float
    heart_rate: int
    method: str                      # "DMAX" | "MOD_DMAX" | "FIXED_4MMOL"
    confidence: Confidence
    r2: float
    coefficients: Tuple[float, ...] = ()
    max_distance: float = 0.0
    fallback_used: bool = False
    warning: Optional[str] = None


class Engine_E04_Dmax:
    """
    E04: D-max / Modified D-max on the lactate curve.
    Poor cubic fit (r2 < dmax_min_r2) -> linear OBLA 4.0 mmol/L crossing.
    """

    MIN_POINTS = 4
    BISHOP_RISE = 0.4

    @staticmethod
    def _fit_polynomial(x: np.ndarray, y: np.ndarray, degree: int = 3) -> Optional[np.ndarray]:
        if len(x) < degree + 1:
            return None
        try:
            return np.polyfit(x, y, degree)
        except (np.linalg.LinAlgError, ValueError):
            return None

    @staticmethod
    def _calc_r2(x: np.ndarray, y: np.ndarray, coeffs: np.ndarray) -> float:
        y_pred = np.polyval(coeffs, x)
        ss_res = float(np.sum((y - y_pred) ** 2))
        ss_tot = float(np.sum((y - np.mean(y)) ** 2))
        if ss_tot == 0:
            return 0.0
        return 1.0 - ss_res / ss_tot

    @staticmethod
    def _perpendicular_distance(px, py, x1, y1, x2, y2):
        """|((y2-y1)*px - (x2-x1)*py + x2*y1 - y2*x1)| / sqrt((y2-y1)^2 + (x2-x1)^2)"""
        num = np.abs((y2 - y1) * px - (x2 - x1) * py + x2 * y1 - y2 * x1)
        den = np.sqrt((y2 - y1) ** 2 + (x2 - x1) ** 2)
        if den == 0:
            return np.zeros_like(np.asarray(px, dtype=float))
        return num / den

    @staticmethod
    def _confidence(r2: float, distance: float, lactate_range: float, cfg: ThresholdConfig) -> Confidence:
        if r2 < cfg.dmax_min_r2 or lactate_range <= 0:
            return Confidence.LOW
        relative = distance / lactate_range
        if relative < 0.05:
            return Confidence.LOW   # curve too linear
        if r2 >= 0.95 and relative >= 0.1:
            return Confidence.HIGH
        return Confidence.MEDIUM

    @staticmethod
    def _fixed_4mmol(x, y, hr, r2, coeffs, cfg: ThresholdConfig) -> Optional[DmaxResult]:
        target = cfg.obla_lactate
        for i in range(1, len(y)):
            if y[i] >= target and y[i - 1] < target:
                ratio = (target - y[i - 1]) / (y[i] - y[i - 1])
                xi = x[i - 1] + ratio * (x[i] - x[i - 1])
                hri = hr[i - 1] + ratio * (hr[i] - hr[i - 1])
                return DmaxResult(
                    intensity=round(float(xi), 2), lactate=target, heart_rate=int(round(hri)),
                    method="FIXED_4MMOL", confidence=Confidence.LOW, r2=round(r2, 4),
                    coefficients=tuple(float(c) for c in coeffs) if coeffs is not None else (),
                    fallback_used=True,
                    warning=f"Poor polynomial fit (R2={r2:.2f}). Using {target} mmol/L threshold instead.",
                )
        logger.warning("E04: poor fit and lactate never reaches %.1f mmol/L", target)
        return None

    @classmethod
    def run(cls, points: Sequence[LactateDataPoint], modified: bool = False,
            cfg: Optional[ThresholdConfig] = None) -> Optional[DmaxResult]:
        cfg = cfg or DEFAULT_CONFIG
        if len(points) < cls.MIN_POINTS:
            raise InsufficientDataError(f"D-max requires minimum {cls.MIN_POINTS} test stages")

        x = np.array([p.intensity for p in points], dtype=float)
        y = np.array([p.lactate for p in points], dtype=float)
        hr = np.array([p.heart_rate for p in points], dtype=float)

        coeffs = cls._fit_polynomial(x, y, degree=3)
        r2 = cls._calc_r2(x, y, coeffs) if coeffs is not None else 0.0
        if coeffs is None or r2 < cfg.dmax_min_r2:
            logger.debug("E04: r2=%.3f below %.2f, OBLA fallback", r2, cfg.dmax_min_r2)
            return cls._fixed_4mmol(x, y, hr, r2, coeffs, cfg)

        start_idx = 0
        if modified:
            baseline, _ = Engine_E02_ProfileClassifier.robust_baseline(points, cfg)
            rise = np.nonzero(y >= baseline + cls.BISHOP_RISE)[0]
            if len(rise) == 0:
                start_idx = len(y) // 2
            else:
                start_idx = max(0, int(rise[0]) - 1)
            start_idx = min(start_idx, len(y) - 2)

        # Chord from the start point to the last measured point
        x1, y1 = x[start_idx], y[start_idx]
        x2, y2 = x[-1], y[-1]

        x_fine = np.linspace(x1, x2, cfg.dmax_grid_points)
        y_fine = np.polyval(coeffs, x_fine)
        distances = cls._perpendicular_distance(x_fine, y_fine, x1, y1, x2, y2)

        # Ignore first and last 5% of the grid (edge artifacts)
        margin = max(int(len(distances) * cfg.dmax_edge_margin), 1)
        idx = margin + int(np.argmax(distances[margin:len(distances) - margin]))

        dmax_x = float(x_fine[idx])
        dmax_hr = float(np.interp(dmax_x, x, hr)) if hr.any() else 0.0
        distance = float(distances[idx])
        conf = cls._confidence(r2, distance, float(y.max() - y.min()), cfg)

        return DmaxResult(
            intensity=round(dmax_x, 2),
            lactate=round(float(y_fine[idx]), 2),
            heart_rate=int(round(dmax_hr)),
            method="MOD_DMAX" if modified else "DMAX",
            confidence=conf,
            r2=round(r2, 4),
            coefficients=tuple(float(c) for c in coeffs),
            max_distance=round(distance, 4),
        )


# ==========================================
# ENGINE E05 — LACTATE PROFILE (metabolic type)
# ==========================================

class CurvePattern(Enum):
    ASCENDING = "ASCENDING"
    PLATEAU = "PLATEAU"
    IRREGULAR = "IRREGULAR"


class MetabolicType(Enum):
    FAST_TWITCH_ENDURANCE = "FAST_TWITCH_ENDURANCE"
    FAST_TWITCH_POWER = "FAST_TWITCH_POWER"
    SLOW_TWITCH = "SLOW_TWITCH"
    MIXED = "MIXED"


@dataclass(frozen=True)
class LactateMarker:
    intensity: float
    lactate: float
    heart_rate: int
    lactate_pct_of_max: float
    method: str
    confidence: Confidence


@dataclass(frozen=True)
class LactateProfile:
    lt1: LactateMarker
    lt2: LactateMarker
    max_lactate: float
    lt1_ratio: float
    lt2_ratio: float
    curve_pattern: CurvePattern
    metabolic_type: MetabolicType
    athlete_level: str               # "ELITE" | "SUB_ELITE" | "RECREATIONAL"
    confidence: Confidence
    dmax_r2: Optional[float] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class Engine_E05_LactateProfile:
    """
    E05: LT2 as an individual fraction of max lactate, plus metabolic typing.

    The ratio reflects glycolytic capacity: a compressed curve (LT2 near half of
    a high max) is a fast-twitch endurance athlete, an expanded one (LT2 ~20% of
    max) a middle-distance power profile. D-max r2 is kept as a quality metric.
    """

    MIN_POINTS = 4
    LT1_FRACTION_OF_LT2 = 0.45

    RECOMMENDATIONS = {
        MetabolicType.FAST_TWITCH_ENDURANCE: {
            "interval_type": "EXTENSIVE", "recovery_days": 4, "taper_weeks": 3, "volume_tolerance": "MEDIUM",
            "description": "High glycolytic capacity. Extensive intervals (longer reps, moderate pace) "
                           "to suppress VLamax; 3-4 days between hard sessions; longer taper.",
        },
        MetabolicType.FAST_TWITCH_POWER: {
            "interval_type": "INTENSIVE", "recovery_days": 3, "taper_weeks": 2, "volume_tolerance": "MEDIUM",
            "description": "Large anaerobic reserve. Handles intensive short fast reps; moderate recovery needs.",
        },
        MetabolicType.SLOW_TWITCH: {
            "interval_type": "INTENSIVE", "recovery_days": 2, "taper_weeks": 2, "volume_tolerance": "HIGH",
            "description": "Low glycolytic capacity. Handles intensive intervals and high volume; recovers quickly.",
        },
        MetabolicType.MIXED: {
            "interval_type": "MIXED", "recovery_days": 3, "taper_weeks": 2, "volume_tolerance": "MEDIUM",
            "description": "Mixed profile. Varied interval types, 3 days between hard sessions.",
        },
    }

    @staticmethod
    def detect_curve_pattern(points: Sequence[LactateDataPoint]) -> CurvePattern:
        la = [p.lactate for p in points]
        last3 = la[-3:]
        rising = all(b > a for a, b in zip(last3, last3[1:]))
        if rising and la[-1] - la[-2] > 1.0:
            return CurvePattern.ASCENDING
        if abs(la[-1] - la[-2]) < 0.5:
            return CurvePattern.PLATEAU
        if any(b < a for a, b in zip(la, la[1:])):
            return CurvePattern.IRREGULAR
        return CurvePattern.ASCENDING

    @staticmethod
    def estimate_lt2_ratio(max_lactate: float, pattern: CurvePattern) -> float:
        if pattern == CurvePattern.ASCENDING:
            # still rising at exhaustion: a high max here is a compressed profile
            if max_lactate >= 15:
                return 0.50
            if max_lactate >= 10:
                return 0.45
            return 0.40
        if max_lactate < 10:
            return 0.45   # elite marathoner
        if max_lactate > 18:
            return 0.22   # 800 m profile
        if max_lactate >= 15:
            return 0.50   # fast-twitch marathoner
        if 11 <= max_lactate <= 14:
            return 0.33   # sub-elite
        return 0.44

    @staticmethod
    def detect_metabolic_type(max_lactate: float, lt2_ratio: float) -> MetabolicType:
        if max_lactate > 15:
            if lt2_ratio > 0.40:
                return MetabolicType.FAST_TWITCH_ENDURANCE
            return MetabolicType.FAST_TWITCH_POWER
        if max_lactate < 10:
            return MetabolicType.SLOW_TWITCH
        return MetabolicType.MIXED

    @staticmethod
    def detect_athlete_level(max_lactate: float, lt2_ratio: float, pattern: CurvePattern) -> str:
        if max_lactate < 10 and lt2_ratio > 0.35:
            return "ELITE"
        if max_lactate > 18 and lt2_ratio < 0.30:
            return "ELITE"
        if 15 <= max_lactate <= 20 and lt2_ratio > 0.45:
            return "ELITE"
        if 11 <= max_lactate <= 14 and pattern != CurvePattern.IRREGULAR:
            return "SUB_ELITE"
        return "RECREATIONAL"

    @staticmethod
    def _nearest(points: Sequence[LactateDataPoint], target: float) -> LactateDataPoint:
        return min(points, key=lambda p: abs(p.lactate - target))

    @staticmethod
    def _marker(p: LactateDataPoint, max_la: float, method: str, conf: Confidence) -> LactateMarker:
        return LactateMarker(p.intensity, p.lactate, p.heart_rate,
                             round(p.lactate / max_la * 100, 1) if max_la > 0 else 0.0, method, conf)

    @classmethod
    def _fallback(cls, points: Sequence[LactateDataPoint], max_hr: Optional[int]) -> LactateProfile:
        max_la = max((p.lactate for p in points), default=4.0)
        last = points[-1] if points else None
        hr_ref = max_hr or 0
        lt2_speed = last.intensity if last else 12.0
        lt1 = LactateMarker(round(lt2_speed * 0.85, 2) if last else 10.0, 2.0, int(round(hr_ref * 0.75)),
                            round(2.0 / max_la * 100, 1), "FIXED_2MMOL", Confidence.LOW)
        lt2 = LactateMarker(lt2_speed, 4.0, int(round(hr_ref * 0.85)),
                            round(4.0 / max_la * 100, 1), "FIXED_4MMOL", Confidence.LOW)
        return LactateProfile(
            lt1=lt1, lt2=lt2, max_lactate=max_la,
            lt1_ratio=2.0 / max_la, lt2_ratio=4.0 / max_la,
            curve_pattern=CurvePattern.IRREGULAR, metabolic_type=MetabolicType.MIXED,
            athlete_level="RECREATIONAL", confidence=Confidence.LOW,
            warnings=["Insufficient data - using conservative defaults"],
            errors=[f"CRITICAL: Insufficient test stages (<{cls.MIN_POINTS})."],
        )

    @classmethod
    def run(cls, points: Sequence[LactateDataPoint], max_hr: Optional[int] = None,
            manual_lt1: Optional[int] = None, manual_lt2: Optional[int] = None,
            cfg: Optional[ThresholdConfig] = None) -> LactateProfile:
        cfg = cfg or DEFAULT_CONFIG
        points = list(points)
        if len(points) < cls.MIN_POINTS:
            logger.warning("E05: %d stages, fallback profile", len(points))
            return cls._fallback(points, max_hr)

        warnings: List[str] = []
        max_la = max(p.lactate for p in points)
        pattern = cls.detect_curve_pattern(points)

        try:
            dmax = Engine_E04_Dmax.run(points, cfg=cfg)
        except InsufficientDataError:
            dmax = None
        dmax_r2 = dmax.r2 if dmax is not None else None

        manual_ok = (manual_lt1 is not None and manual_lt2 is not None
                     and 0 <= manual_lt1 < len(points) and 0 <= manual_lt2 < len(points))
        if manual_ok:
            lt1_p, lt2_p = points[manual_lt1], points[manual_lt2]
            lt1 = cls._marker(lt1_p, max_la, "MANUAL", Confidence.HIGH)
            lt2 = cls._marker(lt2_p, max_la, "MANUAL", Confidence.HIGH)
            warnings.append("Coach manually selected thresholds")
        else:
            if manual_lt1 is not None or manual_lt2 is not None:
                warnings.append("Manual threshold stages not found - falling back to automatic detection")
            ratio = cls.estimate_lt2_ratio(max_la, pattern)
            lt2_p = cls._nearest(points, max_la * ratio)
            lt1_p = cls._nearest(points, lt2_p.lactate * cls.LT1_FRACTION_OF_LT2)
            lt2 = cls._marker(lt2_p, max_la, "RATIO", Confidence.HIGH)
            lt1 = cls._marker(lt1_p, max_la, "RATIO", Confidence.MEDIUM)

        lt2_ratio = lt2_p.lactate / max_la if max_la > 0 else 0.0
        metabolic = cls.detect_metabolic_type(max_la, lt2_ratio)

        if max_la > 15:
            warnings.append(f"High max lactate ({max_la:.1f} mmol/L) indicates a fast-twitch profile.")
        elif max_la < 10:
            warnings.append(f"Low max lactate ({max_la:.1f} mmol/L) indicates a slow-twitch profile.")
        if pattern == CurvePattern.ASCENDING:
            warnings.append("Lactate still ascending at test end - LT2 may be underestimated.")
        elif pattern == CurvePattern.IRREGULAR:
            warnings.append("Irregular lactate curve - test reliability questionable.")
        if dmax_r2 is not None and dmax_r2 < cfg.dmax_min_r2:
            warnings.append(f"Cubic fit marginal (R2={dmax_r2:.3f}).")

        return LactateProfile(
            lt1=lt1, lt2=lt2, max_lactate=max_la,
            lt1_ratio=lt1_p.lactate / max_la if max_la > 0 else 0.0,
            lt2_ratio=lt2_ratio,
            curve_pattern=pattern,
            metabolic_type=metabolic,
            athlete_level=cls.detect_athlete_level(max_la, lt2_ratio, pattern),
            confidence=Confidence.HIGH,
            dmax_r2=dmax_r2,
            warnings=warnings,
        )

    @classmethod
    def training_recommendations(cls, metabolic_type: MetabolicType) -> Dict:
        return dict(cls.RECOMMENDATIONS[metabolic_type])
