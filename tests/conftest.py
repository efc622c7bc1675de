"""
Shared fixtures: the reference step test (7 stages, max lactate 20.3) and a
half-marathon result of 88 min for a 30-year-old male.
"""
from datetime import date

import pytest

from config import AthleteConfig
from data_tools import DataTools, LactateDataPoint, LactateTestRecord, RacePerformance, TestStage

# (speed km/h, HR bpm, lactate mmol/L)
SCENARIO_STAGES = [
    (9, 135, 1.5),
    (10, 145, 2.0),
    (11, 155, 3.5),
    (12, 165, 6.8),
    (13, 175, 10.2),
    (14, 185, 15.5),
    (15, 192, 20.3),
]

AS_OF = date(2026, 10, 1)


def make_points(pairs, hr=0):
    """[(intensity, lactate), ...] -> LactateDataPoint list."""
    return [LactateDataPoint(float(x), float(la), hr) for x, la in pairs]


@pytest.fixture
def scenario_stages():
    return [TestStage(lactate=la, heart_rate=hr, speed=float(v)) for v, hr, la in SCENARIO_STAGES]


@pytest.fixture
def scenario_points(scenario_stages):
    return DataTools.convert_to_lactate_data(scenario_stages)


@pytest.fixture
def scenario_test(scenario_stages):
    return LactateTestRecord(stages=scenario_stages, max_hr=194)


@pytest.fixture
def hm_race():
    return RacePerformance(distance_meters=21097.5, time_minutes=88, date=date(2026, 9, 1),
                           age=30, gender="male")


@pytest.fixture
def athlete():
    return AthleteConfig(athlete_name="Test Runner", age=30, gender="male", max_hr=194)


@pytest.fixture
def as_of():
    return AS_OF
