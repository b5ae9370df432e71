#!/usr/bin/env python3
"""
batch_orchestrator.py - Population-level adherence runs

Fans per-patient calculations out over a thread pool and aggregates a run
summary. A failing patient (insufficient data, invalid input) is recorded
and the run continues.

Concurrency model:
- Per-patient work is pure; workers only return results
- Results are collected in the submitting thread
- Patients are submitted in chunks of batch_size; a cancel Event is checked
  between chunks so in-flight work finishes and nothing new is scheduled
- Output is ordered by patient_id, so reruns are bit-identical

Version: 1.0.0
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date
from itertools import islice
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple
import contextvars
import logging
import threading
import time

from adherence_config import AdherenceConfig
from adherence_engine import PATIENT_FAILED, PATIENT_SUCCESS, AdherenceEngine
from common.date_utils import DateLike, validate_as_of_date
from common.types import BatchSummaryRecord, ReasonCode
from fragility_classifier import FragilityTier
from governance.hashing import hash_canonical_json_short
from priority_scorer import UrgencyLevel

__version__ = "1.0.0"

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """
    Runs the adherence engine across a patient population.

    Usage:
        orchestrator = BatchOrchestrator(AdherenceEngine(config))
        summary = orchestrator.run(population, as_of_date=date(2025, 11, 1))
        print(summary["success_count"], summary["error_count"])
    """

    VERSION = __version__

    def __init__(
        self,
        engine: Optional[AdherenceEngine] = None,
        max_workers: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        self.engine = engine or AdherenceEngine(AdherenceConfig())
        config = self.engine.config
        self.max_workers = max_workers or config.max_workers
        self.batch_size = batch_size or config.batch_size

    def run(
        self,
        population: Iterable[Mapping[str, Any]],
        as_of_date: DateLike,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchSummaryRecord:
        """
        Calculate adherence for every patient in the population.

        Args:
            population: Iterable of PatientRecord dicts
            as_of_date: Calculation date (REQUIRED for determinism)
            cancel_event: Optional Event; once set, no further chunks are
                scheduled and unscheduled patients are counted as skipped

        Returns:
            BatchSummaryRecord dict
        """
        as_of = validate_as_of_date(as_of_date)
        started = time.monotonic()

        collected: List[Tuple[str, int, Dict[str, Any]]] = []
        cancelled = False
        skipped = 0
        index = 0
        patients: Iterator[Mapping[str, Any]] = iter(population)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            while True:
                chunk = list(islice(patients, self.batch_size))
                if not chunk:
                    break
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    skipped = len(chunk) + sum(1 for _ in patients)
                    logger.warning(f"Batch cancelled; {skipped} patient(s) not scheduled")
                    break

                future_map = {}
                for patient in chunk:
                    # Carry the run ID into the worker thread
                    ctx = contextvars.copy_context()
                    future = executor.submit(ctx.run, self.engine.calculate_patient, patient, as_of)
                    future_map[future] = (index, patient)
                    index += 1

                for future in as_completed(future_map):
                    position, patient = future_map[future]
                    result = self._collect(future, patient)
                    collected.append((result["patient_id"], position, result))

        collected.sort(key=lambda item: (item[0], item[1]))
        per_patient = [result for _, _, result in collected]

        return self._build_summary(
            per_patient,
            as_of=as_of,
            cancelled=cancelled,
            skipped=skipped,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    def _collect(self, future, patient: Any) -> Dict[str, Any]:
        patient_id = str(patient.get("patient_id") or "") if isinstance(patient, Mapping) else ""
        try:
            result = future.result()
        except Exception as exc:
            # Keep the run alive; the failure is reported with the patient
            logger.exception(f"Unexpected failure calculating patient {patient_id or '-'}")
            result = {
                "patient_id": patient_id,
                "status": PATIENT_FAILED,
                "measures": [],
                "summary": {
                    "worst_tier": None,
                    "lowest_pdc": None,
                    "highest_priority_score": None,
                    "measures_computed": 0,
                },
                "errors": [f"{type(exc).__name__}: {exc}"],
            }

        if result["status"] != PATIENT_SUCCESS:
            logger.warning(f"Patient {result['patient_id'] or '-'} failed: {'; '.join(result['errors'])}")
        return result

    def _build_summary(
        self,
        per_patient: List[Dict[str, Any]],
        as_of: date,
        cancelled: bool,
        skipped: int,
        duration_ms: int,
    ) -> BatchSummaryRecord:
        tier_distribution = {tier.value: 0 for tier in FragilityTier}
        urgency_distribution = {level.value: 0 for level in UrgencyLevel}
        for result in per_patient:
            for measure in result["measures"]:
                if measure["reason_code"] != ReasonCode.SUCCESS.value:
                    continue
                tier_distribution[measure["fragility"]["tier"]] += 1
                urgency_distribution[measure["fragility"]["urgency_level"]] += 1

        success_count = sum(1 for r in per_patient if r["status"] == PATIENT_SUCCESS)
        summary: BatchSummaryRecord = {
            "as_of_date": as_of.isoformat(),
            "total_patients": len(per_patient) + skipped,
            "success_count": success_count,
            "error_count": len(per_patient) - success_count,
            "skipped_count": skipped,
            "cancelled": cancelled,
            "per_patient_results": per_patient,
            "duration_ms": duration_ms,
            "tier_distribution": tier_distribution,
            "urgency_distribution": urgency_distribution,
            "content_hash": hash_canonical_json_short({
                "as_of_date": as_of.isoformat(),
                "per_patient_results": per_patient,
            }),
            "parameters_hash": self.engine.config.parameters_hash,
            "module_version": self.VERSION,
        }

        logger.info(
            f"Adherence batch {as_of.isoformat()}: {summary['total_patients']} patients, "
            f"{success_count} ok, {summary['error_count']} failed, {skipped} skipped "
            f"in {duration_ms}ms (content_hash={summary['content_hash']})"
        )
        return summary
