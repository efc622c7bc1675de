"""
Tests for configuration helpers, input records and unit conversions
"""
import logging

import pytest

from config import (DEFAULT_CONFIG, AthleteConfig, ThresholdConfig, configure_logging, format_time,
                    parse_time_str, resolve_distance)
from data_tools import (AnaerobicThresholdSummary, DataTools, LegacyZoneBand, RacePerformance,
                        TestStage)
from engine_core import ProfileType


class TestConfig:
    """Config defaults and helpers"""

    def test_delta_by_profile(self):
        assert DEFAULT_CONFIG.delta_for(ProfileType.ELITE_FLAT) == 0.3
        assert DEFAULT_CONFIG.delta_for("RECREATIONAL") == 1.0

    def test_configs_independent(self):
        a, b = ThresholdConfig(), ThresholdConfig()
        a.delta_by_profile["STANDARD"] = 0.7
        assert b.delta_by_profile["STANDARD"] == 0.5

    def test_female_flag(self):
        assert AthleteConfig(gender="F").is_female
        assert not AthleteConfig().is_female

    @pytest.mark.parametrize("given, meters", [
        ("5K", 5000.0), ("half", 21097.5), ("HM", 21097.5), ("42k", 42195.0), (15000, 15000.0),
    ])
    def test_resolve_distance(self, given, meters):
        assert resolve_distance(given) == meters

    def test_unknown_distance(self):
        with pytest.raises(ValueError):
            resolve_distance("ultra")

    @pytest.mark.parametrize("given, seconds", [
        ("3:30:00", 12600), ("45:00", 2700), ("88", 5280), (300, 300), (None, None),
    ])
    def test_parse_time(self, given, seconds):
        assert parse_time_str(given) == seconds

    def test_parse_time_invalid(self):
        with pytest.raises(ValueError):
            parse_time_str("soon")

    def test_format_time(self):
        assert format_time(12600) == "3:30:00"
        assert format_time(1199) == "19:59"

    def test_configure_logging_once(self):
        root = logging.getLogger()
        configure_logging("DEBUG")
        configure_logging("INFO")
        ours = [h for h in root.handlers if getattr(h, "_pace_engine", False)]
        assert len(ours) == 1
        assert root.level == logging.INFO
        for h in ours:
            root.removeHandler(h)


class TestRecords:
    """Input record validation"""

    def test_race_needs_time(self):
        with pytest.raises(ValueError):
            RacePerformance(5000)

    def test_race_positive(self):
        with pytest.raises(ValueError):
            RacePerformance(5000, time_seconds=0)
        with pytest.raises(ValueError):
            RacePerformance(0, time_minutes=20)

    def test_race_minutes(self):
        assert RacePerformance(5000, time_seconds=1200).minutes == 20.0

    def test_stage_intensity_order(self):
        assert TestStage(2.0, speed=12.0, power=250.0).intensity == 12.0
        assert TestStage(2.0, power=250.0).intensity == 250.0
        assert TestStage(2.0).intensity == 0.0

    def test_legacy_midpoint(self):
        assert LegacyZoneBand(2, 10.0, 11.0).midpoint == 10.5


class TestConversions:
    """Pace / speed / threshold units"""

    @pytest.mark.parametrize("kmh, pace", [(12, "5:00/km"), (15, "4:00/km"), (10, "6:00/km"), (0, "")])
    def test_kmh_to_pace(self, kmh, pace):
        assert DataTools.kmh_to_pace(kmh) == pace

    @pytest.mark.parametrize("pace, kmh", [("4:00", 15.0), ("5:00/km", 12.0), (6.0, 10.0), (0, 0.0)])
    def test_pace_to_kmh(self, pace, kmh):
        assert DataTools.pace_to_kmh(pace) == pytest.approx(kmh)

    def test_threshold_units(self):
        assert DataTools.threshold_to_kmh(AnaerobicThresholdSummary(14.5)) == 14.5
        assert DataTools.threshold_to_kmh(AnaerobicThresholdSummary("4:00", "min/km")) == pytest.approx(15.0)
        assert DataTools.threshold_to_kmh(AnaerobicThresholdSummary(300, "watt")) == 0.0
        assert DataTools.threshold_to_kmh(None) == 0.0
        with pytest.raises(ValueError):
            DataTools.threshold_to_kmh(AnaerobicThresholdSummary(10, "furlong/h"))

    def test_find_stage_by_hr(self, scenario_stages):
        assert DataTools.find_stage_by_hr(scenario_stages, 166).speed == 12.0
        assert DataTools.find_stage_by_hr(scenario_stages, 174).speed == 13.0
        assert DataTools.find_stage_by_hr(scenario_stages, 170) is None
        assert DataTools.find_stage_by_hr(scenario_stages, None) is None

    def test_convert_skips_zero_intensity(self):
        stages = [TestStage(1.2, 120), TestStage(1.5, 130, speed=9.0)]
        pts = DataTools.convert_to_lactate_data(stages)
        assert len(pts) == 1
        assert pts[0].intensity == 9.0
        assert pts[0].heart_rate == 130


class TestCsvLoading:
    """Stage tables from CSV"""

    def test_comma_separated(self, tmp_path):
        path = tmp_path / "test.csv"
        path.write_text("Speed,HR,La\n9,135,1.5\n10,145,2.0\n11,155,3.5\n12,165,6.8\n")
        rec = DataTools.load_stages_csv(path, max_hr=194)
        assert len(rec.stages) == 4
        assert rec.max_hr == 194
        assert rec.stages[2].speed == 11.0
        assert rec.stages[2].heart_rate == 155
        assert rec.stages[3].lactate == pytest.approx(6.8)

    def test_semicolon_decimal_comma(self, tmp_path):
        path = tmp_path / "test_pl.csv"
        path.write_text("predkosc;tetno;La\n9;135;1,5\n10;145;2,0\n11;155;3,5\n")
        rec = DataTools.load_stages_csv(path)
        assert [s.lactate for s in rec.stages] == pytest.approx([1.5, 2.0, 3.5])
        assert rec.stages[0].speed == 9.0

    def test_pace_column(self, tmp_path):
        path = tmp_path / "pace.csv"
        path.write_text("Pace,La\n6:00,1.4\n5:00,2.5\n")
        rec = DataTools.load_stages_csv(path)
        assert rec.stages[0].pace == 360.0
        assert rec.stages[0].speed is None

    def test_rows_without_lactate_dropped(self, tmp_path):
        path = tmp_path / "gaps.csv"
        path.write_text("Speed,La\n9,1.5\n10,\n11,3.0\n")
        rec = DataTools.load_stages_csv(path)
        assert [s.speed for s in rec.stages] == [9.0, 11.0]

    def test_no_lactate_column(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("Speed,HR\n9,135\n10,145\n")
        with pytest.raises(ValueError):
            DataTools.load_stages_csv(path)
