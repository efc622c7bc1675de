"""
Tests for benchmark tier classification
"""
import pytest

from e24_benchmark_tiers import (
    BenchmarkTier,
    CalorieThreshold,
    Engine_E24_BenchmarkTiers,
    PaceThreshold,
    PowerThreshold,
    TIER_PERCENTILES,
    TierBenchmark,
    TimeThreshold,
    calculate_percentile_within_tier,
    meets_threshold,
)

ROWER_2K = [
    TierBenchmark(BenchmarkTier.ELITE, TimeThreshold(0, 390), "sub 6:30"),
    TierBenchmark(BenchmarkTier.ADVANCED, TimeThreshold(390, 420), "6:30-7:00"),
    TierBenchmark(BenchmarkTier.INTERMEDIATE, TimeThreshold(420, 480), "7:00-8:00"),
    TierBenchmark(BenchmarkTier.BEGINNER, TimeThreshold(480, 600), "8:00-10:00"),
]

FTP = [
    TierBenchmark(BenchmarkTier.ELITE, PowerThreshold(350)),
    TierBenchmark(BenchmarkTier.ADVANCED, PowerThreshold(280, 350)),
    TierBenchmark(BenchmarkTier.INTERMEDIATE, PowerThreshold(220, 280)),
    TierBenchmark(BenchmarkTier.BEGINNER, PowerThreshold(0, 220)),
]


class TestPercentileWithinTier:
    """Linear placement inside one band"""

    @pytest.mark.parametrize("value, pct", [(390, 95.0), (420, 75.0), (405, 85.0)])
    def test_time_lower_is_better(self, value, pct):
        assert calculate_percentile_within_tier(value, BenchmarkTier.ADVANCED, TimeThreshold(390, 420)) == pct

    def test_power_higher_is_better(self):
        assert calculate_percentile_within_tier(315, BenchmarkTier.ADVANCED, PowerThreshold(280, 350)) == 85.0

    def test_open_ended_band(self):
        assert calculate_percentile_within_tier(400, BenchmarkTier.ELITE, PowerThreshold(350)) == 100.0
        assert calculate_percentile_within_tier(300, BenchmarkTier.ELITE, PowerThreshold(350)) == 95.0

    def test_stays_inside_tier_range(self):
        for tier, (lo, hi) in TIER_PERCENTILES.items():
            for value in (0, 250, 400, 1000):
                for thr in (TimeThreshold(390, 420), PowerThreshold(280, 350), PaceThreshold(240, 300),
                            CalorieThreshold(50, 80)):
                    assert lo <= calculate_percentile_within_tier(value, tier, thr) <= hi

    def test_unknown_variant(self):
        with pytest.raises(TypeError):
            calculate_percentile_within_tier(1.0, BenchmarkTier.ELITE, (1, 2))


class TestMeetsThreshold:
    """Tier entry condition"""

    def test_directions(self):
        assert meets_threshold(400, TimeThreshold(390, 420))
        assert not meets_threshold(430, TimeThreshold(390, 420))
        assert meets_threshold(300, PowerThreshold(280, 350))
        assert not meets_threshold(270, PowerThreshold(280, 350))
        assert meets_threshold(260, PaceThreshold(240, 300))
        assert meets_threshold(90, CalorieThreshold(80))


class TestClassifyResult:
    """Best tier wins"""

    def test_rower_advanced(self):
        res = Engine_E24_BenchmarkTiers.classify_result(400, ROWER_2K)
        assert res.tier == BenchmarkTier.ADVANCED
        assert res.percentile == 88.3
        assert res.description == "6:30-7:00"

    def test_rower_elite(self):
        res = Engine_E24_BenchmarkTiers.classify_result(380, ROWER_2K)
        assert res.tier == BenchmarkTier.ELITE

    def test_below_every_band(self):
        res = Engine_E24_BenchmarkTiers.classify_result(700, ROWER_2K)
        assert res.tier == BenchmarkTier.BEGINNER
        assert res.percentile == 0.0

    def test_power_bands(self):
        assert Engine_E24_BenchmarkTiers.classify_result(360, FTP).tier == BenchmarkTier.ELITE
        res = Engine_E24_BenchmarkTiers.classify_result(250, FTP)
        assert res.tier == BenchmarkTier.INTERMEDIATE
        assert res.percentile == 62.5

    def test_no_beginner_band(self):
        res = Engine_E24_BenchmarkTiers.classify_result(700, ROWER_2K[:1])
        assert res.tier == BenchmarkTier.BEGINNER
        assert res.percentile == 0.0
