# ==========================================
# 5. ORCHESTRATOR (THRESHOLDS -> PACES)
# ==========================================
import logging
import traceback
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import pandas as pd

from config import AthleteConfig, ThresholdConfig, DEFAULT_CONFIG
from data_tools import DataTools, LactateTestRecord, LegacyZoneBand, RacePerformance
from e20_vdot_model import Engine_E20_VDOT
from e21_athlete_classifier import Engine_E21_AthleteClassifier
from e22_pace_selector import Engine_E22_PaceSelector, PaceInputs, PaceSource, most_recent_race
from e23_target_time import Engine_E23_TargetTime, RunnerLevel, TrainingHistory
from engine_core import (Engine_E03_ThresholdEnsemble, Engine_E04_Dmax, Engine_E05_LactateProfile)

logger = logging.getLogger(__name__)

ENGINE_IDS = ["E03", "E04", "E05", "E20", "E21", "E22", "E23"]


@dataclass
class TargetGoal:
    """Goal for the no-data path. pb_time set -> personal-best route."""
    distance: str
    time: Any
    level: RunnerLevel = RunnerLevel.RECREATIONAL
    pb_time: Any = None
    weeks: int = 12
    history: TrainingHistory = field(default_factory=TrainingHistory)
    race_conditions: str = "normal"


class ThresholdOrchestrator:
    def __init__(self, athlete: Optional[AthleteConfig] = None, cfg: Optional[ThresholdConfig] = None):
        self.athlete = athlete or AthleteConfig()
        self.cfg = cfg or DEFAULT_CONFIG
        self.results: Dict[str, Dict] = {}
        self._qc_log = {"engines_executed_ok": [], "engine_errors": []}

    # ---------- helpers ----------
    def _safe_run(self, engine_id: str, fn, *args, **kwargs) -> Dict:
        try:
            out = fn(*args, **kwargs)
        except Exception as e:
            err_msg = f"{type(e).__name__}: {e}"
            self._qc_log["engine_errors"].append({
                "engine": engine_id, "error": err_msg, "traceback": traceback.format_exc()
            })
            logger.warning("%s ERROR: %s", engine_id, err_msg)
            return {"status": "ERROR", "reason": err_msg}
        self._qc_log["engines_executed_ok"].append(engine_id)
        if isinstance(out, dict):
            out.setdefault("status", "OK")
            return out
        return {"status": "OK", "value": out}

    def _value(self, engine_id: str):
        block = self.results.get(engine_id) or {}
        return block.get("value") if block.get("status") == "OK" else None

    # ---------- pipeline ----------
    def process(self, test: Optional[LactateTestRecord] = None,
                races: Optional[List[RacePerformance]] = None,
                manual_lt2_kmh: Optional[float] = None,
                legacy_zones: Optional[List[LegacyZoneBand]] = None,
                target: Optional[TargetGoal] = None,
                as_of: Optional[date] = None) -> Dict[str, Any]:
        self.results = {}
        self._qc_log = {"engines_executed_ok": [], "engine_errors": []}
        races = list(races or [])
        cfg = self.cfg

        points = DataTools.convert_to_lactate_data(test.stages) if test is not None else []
        max_hr = (test.max_hr if test is not None else None) or self.athlete.max_hr

        # E03-E05: lab test
        if points:
            self.results["E03"] = self._safe_run("E03", Engine_E03_ThresholdEnsemble.run, points, cfg)
            if len(points) >= Engine_E04_Dmax.MIN_POINTS:
                self.results["E04"] = self._safe_run("E04", Engine_E04_Dmax.run, points, False, cfg)
            else:
                self.results["E04"] = {"status": "INSUFFICIENT_DATA",
                                       "reason": f"{len(points)} stages < {Engine_E04_Dmax.MIN_POINTS}"}
            ensemble = self._value("E03")
            if ensemble is not None:
                self.results["E03"]["value"] = Engine_E03_ThresholdEnsemble.merge_dmax(
                    ensemble, self._value("E04"), cfg)
            self.results["E05"] = self._safe_run(
                "E05", Engine_E05_LactateProfile.run, points, max_hr,
                test.manual_lt1_stage, test.manual_lt2_stage, cfg)

        # E20: race
        race = most_recent_race(races)
        if race is not None:
            self.results["E20"] = self._safe_run("E20", Engine_E20_VDOT.run, race, self.athlete, as_of)

        self.results["E21"] = self._safe_run(
            "E21", Engine_E21_AthleteClassifier.run, self._value("E20"), self._value("E05"), self.athlete)

        # detected LT2 feeds the pace chain only when the stages are speeds
        ens = self._value("E03")
        lab_lt2 = None
        if ens is not None and all(st.speed for st in test.stages):
            lab_lt2 = ens.lt2

        inputs = PaceInputs(
            athlete=self.athlete,
            lactate_test=test,
            races=races,
            manual_lt2_kmh=manual_lt2_kmh,
            legacy_zones=list(legacy_zones or []),
            as_of=as_of,
            lab_lt2=lab_lt2,
            cfg=cfg,
        )
        self.results["E22"] = self._safe_run("E22", Engine_E22_PaceSelector.run, inputs)

        # E23: only without measured data
        if not points and race is None and target is not None:
            if target.pb_time is not None:
                self.results["E23"] = self._safe_run(
                    "E23", Engine_E23_TargetTime.from_personal_best, target.distance, target.pb_time,
                    target.time, target.weeks, target.history, target.race_conditions)
            else:
                self.results["E23"] = self._safe_run(
                    "E23", Engine_E23_TargetTime.from_target_time, target.distance, target.time, target.level)

        outputs = self.build_outputs()
        return {
            "outputs": outputs,
            "raw_results": {**self.results, "_qc_log": self._qc_log},
        }

    def process_file(self, filename: str, **kwargs) -> Dict[str, Any]:
        """Stage-table CSV -> full pipeline. Unreadable file -> fatal_error."""
        logger.info("START PIPELINE: %s", filename)
        try:
            test = DataTools.load_stages_csv(filename, max_hr=self.athlete.max_hr)
        except (OSError, ValueError, pd.errors.ParserError) as e:
            logger.error("Import failed: %s", e)
            return {"fatal_error": str(e)}
        return self.process(test=test, **kwargs)

    # ---------- outputs ----------
    def build_outputs(self) -> Dict[str, Any]:
        executed_ok, failed, limited, not_run = [], [], [], []
        for eid in ENGINE_IDS:
            block = self.results.get(eid)
            if block is None:
                not_run.append(eid)
                continue
            st = str(block.get("status", "UNKNOWN")).upper()
            if st == "OK":
                executed_ok.append(eid)
            elif st in {"LIMITED", "NO_DATA", "INSUFFICIENT_DATA"}:
                limited.append(eid)
            else:
                failed.append(eid)

        orch_meta = {
            "orchestrator_version": "ORCH_v1",
            "athlete_id": self.athlete.athlete_id,
            "timestamp_utc": pd.Timestamp.now(tz="UTC").strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        qc_log = {
            "status": "PASS" if not failed else "PARTIAL",
            "engines_executed_ok": executed_ok,
            "engines_failed": failed,
            "engines_limited": limited,
            "engines_not_run": not_run,
        }

        ens = self._value("E03")
        lt1 = ens.lt1 if ens is not None else None
        lt2 = ens.lt2 if ens is not None else None
        vdot = self._value("E20")
        cls_ = self._value("E21")
        sel = self._value("E22")
        est = self._value("E23")

        tabela_parametrow = {
            # progi
            "thr_lt1_intensity": lt1.intensity if lt1 else None,
            "thr_lt1_lactate": lt1.lactate if lt1 else None,
            "thr_lt1_hr_bpm": lt1.heart_rate if lt1 else None,
            "thr_lt1_method": lt1.method if lt1 else None,
            "thr_lt1_confidence": lt1.confidence.value if lt1 else None,
            "thr_lt2_intensity": lt2.intensity if lt2 else None,
            "thr_lt2_lactate": lt2.lactate if lt2 else None,
            "thr_lt2_hr_bpm": lt2.heart_rate if lt2 else None,
            "thr_lt2_method": lt2.method if lt2 else None,
            "profile_type": ens.profile.type.value if ens is not None else None,

            # wyścig
            "vdot": vdot.vdot if vdot else None,
            "vdot_confidence": vdot.confidence.value if vdot else None,

            # klasyfikacja
            "athlete_level": cls_.level.value if cls_ else None,
            "metabolic_type": cls_.metabolic_type.value if cls_ else None,
            "compression_factor": cls_.compression_factor if cls_ else None,

            # tempa
            "pace_source": sel.primary_source.value if sel else None,
            "pace_secondary_source": sel.secondary_source.value if sel and sel.secondary_source else None,
            "pace_confidence": sel.confidence.value if sel else None,
            "mp_kmh": sel.marathon_pace.kmh if sel else None,
            "mp_pace": sel.marathon_pace.pace if sel else None,
            "tp_kmh": sel.threshold_pace.kmh if sel else None,
            "tp_pace": sel.threshold_pace.pace if sel else None,

            # estymacja
            "estimate_method": getattr(est, "method", None),
            "estimate_error": getattr(est, "error", None),
        }

        consistency = (sel.validation_results.get("consistency_checks", {}) if sel else {})
        tabela_flag = {
            "flag_missing_lt1": lt1 is None,
            "flag_missing_lt2": lt2 is None,
            "flag_no_race": vdot is None,
            "flag_hard_default": bool(sel and sel.primary_source == PaceSource.HARD_DEFAULT),
            "flag_pace_mismatch": not consistency.get("marathon_pace_consistent", True),
            "flag_estimate_only": est is not None,
            "flag_partial_engines": bool(failed),
        }

        return {
            "orch_meta": orch_meta,
            "qc_log": qc_log,
            "tabela_parametrow": tabela_parametrow,
            "tabela_flag": tabela_flag,
        }
