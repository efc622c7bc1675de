"""
Tests for the orchestrator: engine wiring, QC log and output tables
"""
import pytest

from config import AthleteConfig
from data_tools import LactateTestRecord, RacePerformance, TestStage
from e23_target_time import TrainingHistory
from orchestrator import ENGINE_IDS, TargetGoal, ThresholdOrchestrator
from tests.conftest import SCENARIO_STAGES


class TestScenarioPipeline:
    """Step test + recent half marathon"""

    @pytest.fixture
    def out(self, athlete, scenario_test, hm_race, as_of):
        return ThresholdOrchestrator(athlete).process(test=scenario_test, races=[hm_race], as_of=as_of)

    def test_qc_pass(self, out):
        qc = out["outputs"]["qc_log"]
        assert qc["status"] == "PASS"
        assert set(qc["engines_executed_ok"]) == {"E03", "E04", "E05", "E20", "E21", "E22"}
        assert qc["engines_not_run"] == ["E23"]
        assert not out["raw_results"]["_qc_log"]["engine_errors"]

    def test_parameter_table(self, out):
        tab = out["outputs"]["tabela_parametrow"]
        assert tab["pace_source"] == "RACE_RESULT_VDOT"
        assert tab["pace_secondary_source"] == "LACTATE_TEST_DMAX"
        assert 13.3 <= tab["mp_kmh"] <= 14.1
        assert tab["mp_pace"].endswith("/km")
        assert tab["vdot"] == pytest.approx(50.6, abs=0.3)
        assert tab["metabolic_type"] == "FAST_TWITCH_ENDURANCE"
        assert tab["thr_lt2_method"] in ("DMAX", "MOD_DMAX")
        assert tab["estimate_method"] is None

    def test_flags(self, out):
        flags = out["outputs"]["tabela_flag"]
        assert not flags["flag_no_race"]
        assert not flags["flag_hard_default"]
        assert flags["flag_pace_mismatch"]
        assert not flags["flag_estimate_only"]
        assert not flags["flag_partial_engines"]

    def test_meta(self, out):
        meta = out["outputs"]["orch_meta"]
        assert meta["athlete_id"] == "ID_000"
        assert meta["timestamp_utc"].endswith("Z")


class TestStepTestOnly:
    """Stages only: the LT2 detected on them sets the pace"""

    def test_detected_lt2_drives_pace(self, athlete, scenario_test):
        out = ThresholdOrchestrator(athlete).process(test=scenario_test)
        tab = out["outputs"]["tabela_parametrow"]
        assert tab["thr_lt2_method"] in ("DMAX", "MOD_DMAX")
        assert tab["pace_source"] == "LACTATE_TEST_DMAX"
        assert tab["mp_kmh"] == pytest.approx(tab["thr_lt2_intensity"] * 0.9, abs=0.01)
        assert tab["tp_kmh"] == pytest.approx(tab["thr_lt2_intensity"], abs=0.01)
        assert not out["outputs"]["tabela_flag"]["flag_hard_default"]


class TestEstimatePath:
    """No test and no race: goal-based estimate plus hard-default pace"""

    def test_target_time(self):
        out = ThresholdOrchestrator().process(target=TargetGoal("MARATHON", "3:30:00"))
        raw = out["raw_results"]
        assert raw["E23"]["status"] == "OK"
        assert raw["E23"]["value"].lt2["kmh"] == pytest.approx(13.10, abs=0.02)
        tab = out["outputs"]["tabela_parametrow"]
        assert tab["estimate_method"] == "TARGET_TIME"
        assert tab["pace_source"] == "HARD_DEFAULT"
        flags = out["outputs"]["tabela_flag"]
        assert flags["flag_hard_default"]
        assert flags["flag_estimate_only"]
        assert flags["flag_no_race"]
        assert set(out["outputs"]["qc_log"]["engines_not_run"]) == {"E03", "E04", "E05", "E20"}

    def test_unrealistic_pb_goal(self):
        goal = TargetGoal("HALF_MARATHON", "1:01:36", pb_time="1:28:00", weeks=12,
                          history=TrainingHistory(3, 40, 0.7))
        out = ThresholdOrchestrator().process(target=goal)
        assert out["outputs"]["tabela_parametrow"]["estimate_error"] == "UNREALISTIC_GOAL"
        assert out["outputs"]["tabela_parametrow"]["estimate_method"] is None

    def test_target_ignored_with_race(self, hm_race, as_of):
        out = ThresholdOrchestrator().process(races=[hm_race], target=TargetGoal("5K", "20:00"), as_of=as_of)
        assert "E23" not in out["raw_results"]


class TestFailureHandling:
    """Engine errors are recorded, not raised"""

    def test_unsupported_race_partial(self):
        """E20 rejects a 400 m race; the pace selector still answers"""
        out = ThresholdOrchestrator().process(races=[RacePerformance(400, time_minutes=1.0)])
        qc = out["outputs"]["qc_log"]
        assert qc["status"] == "PARTIAL"
        assert qc["engines_failed"] == ["E20"]
        assert "E22" in qc["engines_executed_ok"]
        assert out["raw_results"]["E20"]["status"] == "ERROR"
        assert out["outputs"]["tabela_flag"]["flag_partial_engines"]
        errors = out["raw_results"]["_qc_log"]["engine_errors"]
        assert [e["engine"] for e in errors] == ["E20"]
        assert "ValueError" in errors[0]["error"]
        sel = out["raw_results"]["E22"]["value"]
        assert sel.primary_source.value == "HARD_DEFAULT"
        assert any("Race result not usable" in w for w in sel.warnings)

    def test_short_test_limited(self):
        stages = [TestStage(la, hr, speed=float(v)) for v, hr, la in SCENARIO_STAGES[:3]]
        out = ThresholdOrchestrator().process(test=LactateTestRecord(stages=stages))
        assert out["raw_results"]["E04"]["status"] == "INSUFFICIENT_DATA"
        qc = out["outputs"]["qc_log"]
        assert "E04" in qc["engines_limited"]
        assert qc["status"] == "PASS"
        assert out["outputs"]["tabela_flag"]["flag_missing_lt2"]

    def test_safe_run(self):
        orch = ThresholdOrchestrator()

        def boom():
            raise RuntimeError("broken engine")

        res = orch._safe_run("E99", boom)
        assert res == {"status": "ERROR", "reason": "RuntimeError: broken engine"}
        assert orch._qc_log["engine_errors"][0]["engine"] == "E99"
        assert "Traceback" in orch._qc_log["engine_errors"][0]["traceback"]

        assert orch._safe_run("E98", lambda: 42) == {"status": "OK", "value": 42}
        assert orch._safe_run("E97", lambda: {"x": 1}) == {"x": 1, "status": "OK"}
        assert orch._qc_log["engines_executed_ok"] == ["E98", "E97"]

    def test_every_engine_accounted(self):
        qc = ThresholdOrchestrator().process()["outputs"]["qc_log"]
        buckets = qc["engines_executed_ok"] + qc["engines_failed"] + qc["engines_limited"] + qc["engines_not_run"]
        assert sorted(buckets) == sorted(ENGINE_IDS)


class TestProcessFile:
    """CSV entry point"""

    def test_missing_file(self, tmp_path):
        out = ThresholdOrchestrator().process_file(str(tmp_path / "nope.csv"))
        assert "fatal_error" in out

    def test_csv_pipeline(self, tmp_path):
        path = tmp_path / "step.csv"
        rows = "\n".join(f"{v},{hr},{la}" for v, hr, la in SCENARIO_STAGES)
        path.write_text("Speed,HR,La\n" + rows + "\n")
        out = ThresholdOrchestrator(AthleteConfig(max_hr=194)).process_file(str(path))
        assert out["outputs"]["qc_log"]["status"] == "PASS"
        assert out["raw_results"]["E05"]["value"].max_lactate == pytest.approx(20.3)
        assert out["outputs"]["tabela_flag"]["flag_no_race"]
