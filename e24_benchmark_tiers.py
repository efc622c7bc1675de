# E24 v1.0 — Benchmark tiers (standalone module)
# Tier classification of a single test result against reference bands.
# Each band is one explicit variant: power, time, pace or calories.
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class BenchmarkTier(Enum):
    ELITE = "ELITE"
    ADVANCED = "ADVANCED"
    INTERMEDIATE = "INTERMEDIATE"
    BEGINNER = "BEGINNER"


TIER_PERCENTILES = {
    BenchmarkTier.ELITE: (95.0, 100.0),
    BenchmarkTier.ADVANCED: (75.0, 95.0),
    BenchmarkTier.INTERMEDIATE: (50.0, 75.0),
    BenchmarkTier.BEGINNER: (0.0, 50.0),
}
TIER_ORDER = [BenchmarkTier.ELITE, BenchmarkTier.ADVANCED, BenchmarkTier.INTERMEDIATE, BenchmarkTier.BEGINNER]


@dataclass(frozen=True)
class PowerThreshold:
    """Watts, higher is better. max_w None = open-ended top band."""
    min_w: float
    max_w: Optional[float] = None


@dataclass(frozen=True)
class TimeThreshold:
    """Seconds, lower is better."""
    min_s: float
    max_s: float


@dataclass(frozen=True)
class PaceThreshold:
    """Seconds per unit distance, lower is better."""
    min_s: float
    max_s: float


@dataclass(frozen=True)
class CalorieThreshold:
    min_kcal: float
    max_kcal: Optional[float] = None


BenchmarkThreshold = Union[PowerThreshold, TimeThreshold, PaceThreshold, CalorieThreshold]


@dataclass(frozen=True)
class TierBenchmark:
    tier: BenchmarkTier
    threshold: BenchmarkThreshold
    description: str = ""


@dataclass(frozen=True)
class TierClassification:
    tier: BenchmarkTier
    percentile: float
    description: str = ""


def _bounds(threshold: BenchmarkThreshold) -> Tuple[float, Optional[float], bool]:
    """(low, high, lower_is_better) for any variant."""
    if isinstance(threshold, PowerThreshold):
        return threshold.min_w, threshold.max_w, False
    if isinstance(threshold, CalorieThreshold):
        return threshold.min_kcal, threshold.max_kcal, False
    if isinstance(threshold, (TimeThreshold, PaceThreshold)):
        return threshold.min_s, threshold.max_s, True
    raise TypeError(f"Unknown benchmark threshold: {type(threshold).__name__}")


def meets_threshold(value: float, threshold: BenchmarkThreshold) -> bool:
    low, high, lower_is_better = _bounds(threshold)
    if lower_is_better:
        return value <= high
    return value >= low


def calculate_percentile_within_tier(value: float, tier: BenchmarkTier,
                                     threshold: BenchmarkThreshold) -> float:
    """Linear position of value inside the band, mapped onto the tier's percentile range (clamped)."""
    p_min, p_max = TIER_PERCENTILES[tier]
    low, high, lower_is_better = _bounds(threshold)

    if high is None or high <= low:
        frac = 1.0 if value >= low else 0.0
    elif lower_is_better:
        frac = (high - value) / (high - low)
    else:
        frac = (value - low) / (high - low)
    frac = min(1.0, max(0.0, frac))
    return round(p_min + frac * (p_max - p_min), 1)


class Engine_E24_BenchmarkTiers:
    """E24 — best tier a result satisfies, plus its percentile inside that tier."""

    @staticmethod
    def classify_result(value: float, benchmarks: List[TierBenchmark]) -> TierClassification:
        by_tier: Dict[BenchmarkTier, TierBenchmark] = {b.tier: b for b in benchmarks}
        for tier in TIER_ORDER:
            bench = by_tier.get(tier)
            if bench is not None and meets_threshold(value, bench.threshold):
                pct = calculate_percentile_within_tier(value, tier, bench.threshold)
                logger.debug("E24: %.2f -> %s (p%.1f)", value, tier.value, pct)
                return TierClassification(tier, pct, bench.description)

        bench = by_tier.get(BenchmarkTier.BEGINNER)
        if bench is None:
            return TierClassification(BenchmarkTier.BEGINNER, TIER_PERCENTILES[BenchmarkTier.BEGINNER][0])
        return TierClassification(
            BenchmarkTier.BEGINNER,
            calculate_percentile_within_tier(value, BenchmarkTier.BEGINNER, bench.threshold),
            bench.description,
        )
