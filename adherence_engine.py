#!/usr/bin/env python3
"""
adherence_engine.py - Per-patient PDC adherence pipeline

Runs the full calculation for one patient-measure:
    fills -> coverage merge -> treatment period -> gap budget
          -> projections -> fragility tier -> priority score
and aggregates a patient's measures (MAC / MAD / MAH) into a summary.

Design Philosophy:
- DETERMINISTIC: as_of_date is required; no wall-clock reads
- PURE: the engine holds only its immutable config; safe to share across threads
- FAIL LOUDLY: insufficient data and invalid input are explicit reason codes,
  never a numeric zero
- DECIMAL-ONLY: percentages and delay budgets are Decimals

Result dicts carry:
- reason_code: SUCCESS, INSUFFICIENT_DATA, INVALID_INPUT
- adherence / fragility: metric dicts (None unless SUCCESS)
- hash: deterministic content hash of inputs and outputs

Version: 1.0.0
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging

from adherence_config import AdherenceConfig
from adherence_projector import AdherenceResult, project_adherence
from common.date_utils import normalize_date
from common.input_validation import (
    AdherenceError,
    InsufficientDataError,
    InvalidInputError,
    parse_fill_event,
    parse_flag,
    validate_concurrent_measure_count,
    validate_fill_dates,
    validate_refills_remaining,
    validate_typical_days_supply,
)
from common.types import (
    FillEvent,
    Measure,
    PatientRecord,
    PatientResultRecord,
    PatientSummaryRecord,
    ReasonCode,
)
from coverage_merger import sort_fills
from fragility_classifier import FragilityTier, TierDecision, classify, worst_tier
from governance.hashing import hash_canonical_json_short
from priority_scorer import PriorityContext, PriorityResult, UrgencyLevel, score_priority
from treatment_period import resolve_treatment_period

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

BUDGET_QUANTUM = Decimal("0.01")

PATIENT_SUCCESS = "SUCCESS"
PATIENT_FAILED = "FAILED"


@dataclass(frozen=True)
class FragilityResult:
    """Tier, outreach guidance and priority for one patient-measure."""
    tier: FragilityTier
    tier_level: int
    delay_budget_per_refill: Decimal
    contact_window: str
    action: str
    priority_score: int
    urgency_level: UrgencyLevel
    flags: Dict[str, bool]
    bonuses: Dict[str, int]

    @classmethod
    def build(cls, decision: TierDecision, priority: PriorityResult) -> 'FragilityResult':
        flags = dict(priority.flags)
        flags["is_compliant"] = decision.tier is FragilityTier.COMPLIANT
        flags["is_unsalvageable"] = decision.tier is FragilityTier.T5_UNSALVAGEABLE
        flags["is_tightened"] = decision.is_tightened
        return cls(
            tier=decision.tier,
            tier_level=decision.tier.level,
            delay_budget_per_refill=decision.delay_budget_per_refill,
            contact_window=decision.tier.contact_window,
            action=decision.tier.action,
            priority_score=priority.priority_score,
            urgency_level=priority.urgency_level,
            flags=flags,
            bonuses=priority.bonuses.to_dict(),
        )

    def to_dict(self) -> Dict[str, Any]:
        budget = self.delay_budget_per_refill
        if budget.is_finite():
            budget = budget.quantize(BUDGET_QUANTUM, rounding=ROUND_HALF_UP)
        return {
            "tier": self.tier.value,
            "tier_level": self.tier_level,
            "delay_budget_per_refill": budget,
            "contact_window": self.contact_window,
            "action": self.action,
            "priority_score": self.priority_score,
            "urgency_level": self.urgency_level.value,
            "flags": dict(sorted(self.flags.items())),
            "bonuses": dict(self.bonuses),
        }


class AdherenceEngine:
    """
    PDC adherence and fragility engine.

    Usage:
        engine = AdherenceEngine(AdherenceConfig())
        result = engine.calculate_measure(
            fills=[{"fill_date": "2025-01-01", "days_supply": 30},
                   {"fill_date": "2025-02-01", "days_supply": 30}],
            as_of_date=date(2025, 3, 15),
            measure="MAH",
        )
        print(result["reason_code"])                # SUCCESS
        print(result["fragility"]["tier"])          # F1_IMMINENT ... COMPLIANT
    """

    VERSION = __version__

    def __init__(
        self,
        config: Optional[AdherenceConfig] = None,
        medication_measure_map: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            config: Engine configuration (defaults to the golden-standard values)
            medication_measure_map: Optional medication_code -> measure map used
                to classify flat fill lists that carry no explicit measure
        """
        self.config = config or AdherenceConfig()
        self.medication_measure_map = {
            str(code): Measure.parse(measure)
            for code, measure in (medication_measure_map or {}).items()
        }

    # =========================================================================
    # SINGLE PATIENT-MEASURE
    # =========================================================================

    def calculate_measure(
        self,
        fills: Sequence[Mapping[str, Any]],
        as_of_date: date,
        measure: Optional[str] = None,
        patient_id: Optional[str] = None,
        refills_remaining: Optional[int] = None,
        typical_days_supply: Optional[int] = None,
        concurrent_measure_count: int = 1,
        is_first_measurement_period: bool = False,
        period_end: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Calculate adherence, fragility and priority for one patient-measure.

        Args:
            fills: Raw fill records ({fill_date, days_supply[, medication_code]})
            as_of_date: Calculation date (REQUIRED for determinism)
            measure: Measure code (MAC, MAD, MAH) for labelling
            patient_id: Patient identifier for labelling and hashing
            refills_remaining: Delay-budget denominator; defaults to the
                projected refills needed
            typical_days_supply: Days per refill; estimated from history if None
            concurrent_measure_count: Measures tracked for this patient
            is_first_measurement_period: New-patient flag
            period_end: Optional rolling window end (defaults to Dec 31)

        Returns:
            Dict containing:
            - reason_code: str (SUCCESS, INSUFFICIENT_DATA, INVALID_INPUT)
            - adherence: Dict or None
            - fragility: Dict or None
            - details: str or None
            - hash: str or None
        """
        measure_code = self._measure_label(measure)
        inputs = {
            "patient_id": patient_id,
            "measure": measure_code,
            "as_of_date": as_of_date.isoformat(),
            "refills_remaining": refills_remaining,
            "typical_days_supply": typical_days_supply,
            "concurrent_measure_count": concurrent_measure_count,
            "is_first_measurement_period": is_first_measurement_period,
            "period_end": period_end.isoformat() if period_end else None,
        }

        try:
            concurrent_measure_count = validate_concurrent_measure_count(concurrent_measure_count)
            is_first_measurement_period = parse_flag(
                is_first_measurement_period, "is_first_measurement_period"
            )
            inputs["concurrent_measure_count"] = concurrent_measure_count
            inputs["is_first_measurement_period"] = is_first_measurement_period
            events = [parse_fill_event(r, self.config.default_days_supply) for r in fills]
            adherence, fragility = self._compute(
                events,
                as_of_date=as_of_date,
                refills_remaining=refills_remaining,
                typical_days_supply=typical_days_supply,
                concurrent_measure_count=concurrent_measure_count,
                is_first_measurement_period=is_first_measurement_period,
                period_end=period_end,
            )
        except InsufficientDataError as e:
            return self._create_error_result(inputs, ReasonCode.INSUFFICIENT_DATA, str(e))
        except InvalidInputError as e:
            return self._create_error_result(inputs, ReasonCode.INVALID_INPUT, str(e))

        inputs["fills"] = [
            {"fill_date": ev.fill_date.isoformat(), "days_supply": ev.days_supply}
            for ev in sort_fills(events)
        ]
        adherence_dict = adherence.to_dict()
        fragility_dict = fragility.to_dict()
        content_hash = hash_canonical_json_short({
            "inputs": inputs,
            "adherence": adherence_dict,
            "fragility": fragility_dict,
            "module_version": self.VERSION,
        })

        logger.debug(
            f"{patient_id or '-'}/{measure_code or '-'}: tier={fragility.tier.value} "
            f"score={fragility.priority_score}"
        )

        return {
            "patient_id": patient_id,
            "measure": measure_code,
            "reason_code": ReasonCode.SUCCESS.value,
            "adherence": adherence_dict,
            "fragility": fragility_dict,
            "details": None,
            "hash": content_hash,
            "module_version": self.VERSION,
        }

    def _compute(
        self,
        events: List[FillEvent],
        as_of_date: date,
        refills_remaining: Optional[int],
        typical_days_supply: Optional[int],
        concurrent_measure_count: int,
        is_first_measurement_period: bool,
        period_end: Optional[date],
    ) -> Tuple[AdherenceResult, FragilityResult]:
        """Pipeline core; raises InsufficientDataError / InvalidInputError."""
        config = self.config

        if not events:
            raise InsufficientDataError("No fills recorded")

        validate_fill_dates(events, config.min_fill_date, as_of_date)
        refills = validate_refills_remaining(refills_remaining)
        typical = validate_typical_days_supply(typical_days_supply)

        measurement_year = (
            period_end.year if period_end is not None
            else config.resolve_measurement_year(as_of_date)
        )
        period, in_window = resolve_treatment_period(sort_fills(events), measurement_year, period_end)

        if len(in_window) < config.min_fills_for_measurement:
            raise InsufficientDataError(
                f"{len(in_window)} fill(s) in window; at least "
                f"{config.min_fills_for_measurement} required"
            )

        adherence = project_adherence(in_window, period, as_of_date, config, typical)

        if refills is None:
            refills = adherence.refills_needed

        decision = classify(adherence, refills, as_of_date, config)
        priority = score_priority(
            decision.tier,
            PriorityContext(
                days_to_runout=adherence.days_to_runout,
                as_of_date=as_of_date,
                concurrent_measure_count=concurrent_measure_count,
                is_first_measurement_period=is_first_measurement_period,
            ),
            config,
        )
        return adherence, FragilityResult.build(decision, priority)

    def _create_error_result(
        self,
        inputs: Dict[str, Any],
        reason_code: ReasonCode,
        details: str,
    ) -> Dict[str, Any]:
        """Create result for a patient-measure that could not be computed."""
        logger.debug(
            f"{inputs.get('patient_id') or '-'}/{inputs.get('measure') or '-'}: "
            f"{reason_code.value} ({details})"
        )
        return {
            "patient_id": inputs.get("patient_id"),
            "measure": inputs.get("measure"),
            "reason_code": reason_code.value,
            "adherence": None,
            "fragility": None,
            "details": details,
            "hash": None,
            "module_version": self.VERSION,
        }

    @staticmethod
    def _measure_label(measure: Optional[Any]) -> Optional[str]:
        if measure is None:
            return None
        try:
            return Measure.parse(measure).value
        except ValueError:
            return str(measure)

    # =========================================================================
    # PATIENT (MULTI-MEASURE)
    # =========================================================================

    def calculate_patient(
        self,
        patient: PatientRecord,
        as_of_date: date,
    ) -> PatientResultRecord:
        """
        Calculate every tracked measure for a patient and summarize.

        The patient succeeds only when every measure computes. Measure-level
        failures are listed in ``errors`` and never abort sibling measures.

        Args:
            patient: PatientRecord with ``measures`` or a flat ``fills`` list
            as_of_date: Calculation date

        Returns:
            PatientResultRecord dict
        """
        patient_id = ""
        errors: List[str] = []
        measure_results: List[Dict[str, Any]] = []

        try:
            if not isinstance(patient, Mapping):
                raise InvalidInputError("patient record must be an object")
            patient_id = str(patient.get("patient_id") or "")
            if not patient_id:
                raise InvalidInputError("patient_id is required")
            measures = self._group_measures(patient)
            period_end = self._patient_period_end(patient)
            concurrent = patient.get("concurrent_measure_count")
            if concurrent is None:
                concurrent = len(measures)
            concurrent = validate_concurrent_measure_count(concurrent)
            is_new = parse_flag(patient.get("is_first_measurement_period"), "is_first_measurement_period")
        except AdherenceError as e:
            return self._patient_result(patient_id, [], [str(e)])

        for measure, record in measures.items():
            fills = record.get("fills") or []
            result = self.calculate_measure(
                fills=fills,
                as_of_date=as_of_date,
                measure=measure,
                patient_id=patient_id,
                refills_remaining=record.get("refills_remaining"),
                typical_days_supply=record.get("typical_days_supply"),
                concurrent_measure_count=concurrent,
                is_first_measurement_period=is_new,
                period_end=period_end,
            )
            if self.config.include_medication_level:
                result["medications"] = self._calculate_medications(
                    fills, as_of_date, measure, patient_id, record,
                    concurrent, is_new, period_end,
                )
            if result["reason_code"] != ReasonCode.SUCCESS.value:
                errors.append(f"{measure}: {result['reason_code']} - {result['details']}")
            measure_results.append(result)

        return self._patient_result(patient_id, measure_results, errors)

    def _calculate_medications(
        self,
        fills: Sequence[Mapping[str, Any]],
        as_of_date: date,
        measure: str,
        patient_id: str,
        record: Mapping[str, Any],
        concurrent: int,
        is_new: bool,
        period_end: Optional[date],
    ) -> List[Dict[str, Any]]:
        """Medication-level breakdown; fills without a medication_code are skipped."""
        by_code: Dict[str, List[Mapping[str, Any]]] = {}
        for fill in fills:
            code = fill.get("medication_code") if isinstance(fill, Mapping) else None
            if code is None or not str(code).strip():
                continue
            by_code.setdefault(str(code).strip(), []).append(fill)

        medications = []
        for code in sorted(by_code):
            result = self.calculate_measure(
                fills=by_code[code],
                as_of_date=as_of_date,
                measure=measure,
                patient_id=patient_id,
                typical_days_supply=record.get("typical_days_supply"),
                concurrent_measure_count=concurrent,
                is_first_measurement_period=is_new,
                period_end=period_end,
            )
            result["medication_code"] = code
            medications.append(result)
        return medications

    def _group_measures(self, patient: Mapping[str, Any]) -> "OrderedDict[str, Dict[str, Any]]":
        """
        Normalize a patient record into {measure_code: MeasureRecord}.

        Raises:
            InvalidInputError: Unknown or duplicated measure codes, or no fill data.
            InsufficientDataError: Flat fills that map to no measure.
        """
        grouped: Dict[str, Dict[str, Any]] = {}

        if patient.get("measures") is not None:
            for record in patient["measures"]:
                if not isinstance(record, Mapping):
                    raise InvalidInputError("measure record must be an object")
                try:
                    code = Measure.parse(record.get("measure")).value
                except ValueError as e:
                    raise InvalidInputError(f"Unknown measure {record.get('measure')!r}") from e
                if code in grouped:
                    raise InvalidInputError(f"Measure {code} listed more than once")
                grouped[code] = dict(record, measure=code)
        elif patient.get("fills") is not None:
            skipped = 0
            for fill in patient["fills"]:
                code = self._classify_fill(fill)
                if code is None:
                    skipped += 1
                    continue
                grouped.setdefault(code, {"measure": code, "fills": []})["fills"].append(fill)
            if skipped:
                logger.debug(f"Skipped {skipped} fill(s) with no adherence measure")
            if not grouped:
                raise InsufficientDataError("No fills map to a tracked adherence measure")
        else:
            raise InvalidInputError("Patient record has neither 'measures' nor 'fills'")

        if not grouped:
            raise InsufficientDataError("No measures tracked")
        return OrderedDict(sorted(grouped.items()))

    def _classify_fill(self, fill: Mapping[str, Any]) -> Optional[str]:
        if not isinstance(fill, Mapping):
            raise InvalidInputError("fill record must be an object")
        raw = fill.get("measure")
        if raw:
            try:
                return Measure.parse(raw).value
            except ValueError as e:
                raise InvalidInputError(f"Unknown measure {raw!r}") from e
        code = fill.get("medication_code")
        if code is not None and str(code).strip() in self.medication_measure_map:
            return self.medication_measure_map[str(code).strip()].value
        return None

    @staticmethod
    def _patient_period_end(patient: Mapping[str, Any]) -> Optional[date]:
        raw = patient.get("period_end")
        if raw is None:
            return None
        try:
            return normalize_date(raw)
        except (ValueError, TypeError) as e:
            raise InvalidInputError(f"Invalid period_end {raw!r}: {e}") from e

    def _patient_result(
        self,
        patient_id: str,
        measure_results: List[Dict[str, Any]],
        errors: List[str],
    ) -> PatientResultRecord:
        computed = [r for r in measure_results if r["reason_code"] == ReasonCode.SUCCESS.value]
        status = PATIENT_SUCCESS if computed and not errors else PATIENT_FAILED
        return {
            "patient_id": patient_id,
            "status": status,
            "measures": measure_results,
            "summary": summarize_measures(computed),
            "errors": errors,
        }


def summarize_measures(computed: Sequence[Mapping[str, Any]]) -> PatientSummaryRecord:
    """
    Patient summary across successfully computed measures.

    worst_tier follows outreach urgency (F1 first, COMPLIANT last).
    """
    if not computed:
        return {
            "worst_tier": None,
            "lowest_pdc": None,
            "highest_priority_score": None,
            "measures_computed": 0,
        }
    return {
        "worst_tier": worst_tier(FragilityTier(r["fragility"]["tier"]) for r in computed).value,
        "lowest_pdc": min(r["adherence"]["pdc"] for r in computed),
        "highest_priority_score": max(r["fragility"]["priority_score"] for r in computed),
        "measures_computed": len(computed),
    }
