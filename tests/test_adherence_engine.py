#!/usr/bin/env python3
"""
Unit tests for adherence_engine.py

Tests the per-patient pipeline:
- SUCCESS results for worked examples (F1, COMPLIANT, T5)
- INSUFFICIENT_DATA and INVALID_INPUT reason codes
- Deterministic hashing
- Multi-measure patients, flat fill lists and medication-level breakdowns
"""

from datetime import date
from decimal import Decimal

import pytest

from adherence_config import AdherenceConfig
from adherence_engine import PATIENT_FAILED, PATIENT_SUCCESS, AdherenceEngine, summarize_measures
from conftest import monthly_fills

QUARTERLY_FILLS = [
    {"fill_date": f"2025-{month:02d}-01", "days_supply": 90} for month in (1, 4, 7, 10)
]
LAPSED_FILLS = monthly_fills(1, 2)


# ============================================================================
# SINGLE MEASURE
# ============================================================================

class TestCalculateMeasure:
    """Tests for AdherenceEngine.calculate_measure()."""

    def test_on_time_fills_out_of_supply(self, engine, on_time_fills, as_of_date):
        result = engine.calculate_measure(on_time_fills, as_of_date, measure="MAH", patient_id="P001")

        assert result["reason_code"] == "SUCCESS"
        assert result["measure"] == "MAH"
        adherence = result["adherence"]
        assert adherence["pdc"] == Decimal("41.37")
        assert adherence["covered_days"] == 151
        assert adherence["gap_days_remaining"] == -141
        assert adherence["refills_needed"] == 7
        assert adherence["days_to_runout"] == 0

        fragility = result["fragility"]
        assert fragility["tier"] == "F1_IMMINENT"
        assert fragility["tier_level"] == 1
        assert fragility["delay_budget_per_refill"] == Decimal("-20.14")
        assert fragility["contact_window"] == "24 hours"
        assert fragility["priority_score"] == 130
        assert fragility["urgency_level"] == "HIGH"
        assert fragility["flags"]["is_out_of_supply"] is True
        assert fragility["flags"]["is_year_end_window"] is False

    def test_compliant(self, engine, final_quarter_date):
        result = engine.calculate_measure(QUARTERLY_FILLS, final_quarter_date, measure="MAC")

        fragility = result["fragility"]
        assert fragility["tier"] == "COMPLIANT"
        assert fragility["priority_score"] == 0
        assert fragility["urgency_level"] == "LOW"
        assert fragility["delay_budget_per_refill"] == Decimal("68.00")
        assert fragility["flags"]["is_compliant"] is True
        assert fragility["flags"]["is_year_end_window"] is True
        assert result["adherence"]["pdc_status_quo"] == Decimal("100.00")

    def test_unsalvageable(self, engine, final_quarter_date):
        result = engine.calculate_measure(LAPSED_FILLS, final_quarter_date, measure="MAD")

        fragility = result["fragility"]
        assert fragility["tier"] == "T5_UNSALVAGEABLE"
        assert fragility["tier_level"] == 0
        assert fragility["priority_score"] == 0
        assert all(v == 0 for v in fragility["bonuses"].values())
        assert fragility["flags"]["is_unsalvageable"] is True
        assert fragility["flags"]["is_out_of_supply"] is True
        assert result["adherence"]["pdc_perfect"] == Decimal("29.32")

    def test_explicit_refills_remaining(self, engine, on_time_fills, as_of_date):
        result = engine.calculate_measure(on_time_fills, as_of_date, refills_remaining=0)
        assert result["fragility"]["delay_budget_per_refill"] == Decimal("-Infinity")
        assert result["fragility"]["tier"] == "F1_IMMINENT"

    def test_rolling_period_end(self, engine, on_time_fills, as_of_date):
        result = engine.calculate_measure(on_time_fills, as_of_date, period_end=date(2025, 6, 30))
        assert result["adherence"]["treatment_days"] == 181
        assert result["adherence"]["measurement_period"]["end"] == "2025-06-30"
        assert result["fragility"]["tier"] == "COMPLIANT"

    def test_measurement_year_override(self, on_time_fills):
        engine = AdherenceEngine(AdherenceConfig(measurement_year=2025))
        result = engine.calculate_measure(on_time_fills, date(2026, 1, 15))
        assert result["reason_code"] == "SUCCESS"
        assert result["adherence"]["days_to_period_end"] == 0

    def test_days_supply_defaulted(self, engine, as_of_date):
        fills = [
            {"fill_date": "2025-01-01", "days_supply": 0},
            {"fill_date": "2025-02-01", "days_supply": None},
            {"fill_date": "2025-03-01"},
        ]
        result = engine.calculate_measure(fills, as_of_date)
        assert result["reason_code"] == "SUCCESS"
        assert result["adherence"]["estimated_days_per_refill"] == 30


class TestReasonCodes:
    """Tests for non-SUCCESS outcomes."""

    def test_no_fills(self, engine, as_of_date):
        result = engine.calculate_measure([], as_of_date, measure="MAH")
        assert result["reason_code"] == "INSUFFICIENT_DATA"
        assert result["adherence"] is None
        assert result["fragility"] is None
        assert result["hash"] is None
        assert result["details"]

    def test_single_fill(self, engine, as_of_date):
        result = engine.calculate_measure([{"fill_date": "2025-05-10", "days_supply": 30}], as_of_date)
        assert result["reason_code"] == "INSUFFICIENT_DATA"

    def test_prior_year_fills_only(self, engine, as_of_date):
        result = engine.calculate_measure(monthly_fills(1, 3, year=2024), as_of_date)
        assert result["reason_code"] == "INSUFFICIENT_DATA"

    def test_fill_after_as_of_date(self, engine, as_of_date):
        fills = monthly_fills(1, 3) + [{"fill_date": "2025-06-15", "days_supply": 30}]
        result = engine.calculate_measure(fills, as_of_date)
        assert result["reason_code"] == "INVALID_INPUT"

    def test_fill_before_minimum_date(self, engine, as_of_date):
        fills = monthly_fills(1, 3) + [{"fill_date": "1985-01-01", "days_supply": 30}]
        assert engine.calculate_measure(fills, as_of_date)["reason_code"] == "INVALID_INPUT"

    def test_unparseable_date(self, engine, as_of_date):
        fills = monthly_fills(1, 3) + [{"fill_date": "not-a-date", "days_supply": 30}]
        assert engine.calculate_measure(fills, as_of_date)["reason_code"] == "INVALID_INPUT"

    def test_negative_refills(self, engine, on_time_fills, as_of_date):
        result = engine.calculate_measure(on_time_fills, as_of_date, refills_remaining=-1)
        assert result["reason_code"] == "INVALID_INPUT"

    def test_zero_typical_supply(self, engine, on_time_fills, as_of_date):
        result = engine.calculate_measure(on_time_fills, as_of_date, typical_days_supply=0)
        assert result["reason_code"] == "INVALID_INPUT"

    def test_fractional_typical_supply(self, engine, on_time_fills, as_of_date):
        result = engine.calculate_measure(on_time_fills, as_of_date, typical_days_supply=2.7)
        assert result["reason_code"] == "INVALID_INPUT"
        assert "whole number" in result["details"]

    def test_string_concurrent_count(self, engine, on_time_fills, as_of_date):
        result = engine.calculate_measure(on_time_fills, as_of_date, concurrent_measure_count="2")
        assert result["reason_code"] == "INVALID_INPUT"

    def test_non_object_fill(self, engine, as_of_date):
        result = engine.calculate_measure(monthly_fills(1, 3) + [None], as_of_date)
        assert result["reason_code"] == "INVALID_INPUT"


class TestDeterminism:
    """Same inputs, same hash."""

    def test_hash_stable(self, on_time_fills, as_of_date):
        a = AdherenceEngine().calculate_measure(on_time_fills, as_of_date, measure="MAH", patient_id="P1")
        b = AdherenceEngine().calculate_measure(on_time_fills, as_of_date, measure="MAH", patient_id="P1")
        assert a == b
        assert len(a["hash"]) == 16

    def test_fill_order_does_not_change_result(self, engine, on_time_fills, as_of_date):
        a = engine.calculate_measure(on_time_fills, as_of_date)
        b = engine.calculate_measure(list(reversed(on_time_fills)), as_of_date)
        assert a["hash"] == b["hash"]

    def test_hash_changes_with_as_of_date(self, engine, on_time_fills):
        a = engine.calculate_measure(on_time_fills, date(2025, 6, 1))
        b = engine.calculate_measure(on_time_fills, date(2025, 6, 2))
        assert a["hash"] != b["hash"]


# ============================================================================
# PATIENT
# ============================================================================

class TestCalculatePatient:
    """Tests for AdherenceEngine.calculate_patient()."""

    def test_multi_measure_new_patient(self, engine, sample_population, as_of_date):
        result = engine.calculate_patient(sample_population[1], as_of_date)

        assert result["status"] == PATIENT_SUCCESS
        assert [m["measure"] for m in result["measures"]] == ["MAC", "MAD"]
        for measure in result["measures"]:
            assert measure["fragility"]["tier"] == "F1_IMMINENT"
            assert measure["fragility"]["priority_score"] == 155
            assert measure["fragility"]["urgency_level"] == "EXTREME"
            assert measure["fragility"]["bonuses"]["multi_measure"] == 15
            assert measure["fragility"]["bonuses"]["new_patient"] == 10

        summary = result["summary"]
        assert summary["worst_tier"] == "F1_IMMINENT"
        assert summary["lowest_pdc"] == Decimal("24.11")
        assert summary["highest_priority_score"] == 155
        assert summary["measures_computed"] == 2

    def test_failed_measure_fails_patient(self, engine, sample_population, as_of_date):
        result = engine.calculate_patient(sample_population[2], as_of_date)
        assert result["status"] == PATIENT_FAILED
        assert result["summary"]["measures_computed"] == 0
        assert result["errors"][0].startswith("MAD: INSUFFICIENT_DATA")

    def test_partial_failure_keeps_computed_measures(self, engine, as_of_date):
        patient = {
            "patient_id": "P9",
            "measures": [
                {"measure": "MAH", "fills": monthly_fills(1, 5, days_supply=31)},
                {"measure": "MAC", "fills": []},
            ],
        }
        result = engine.calculate_patient(patient, as_of_date)
        assert result["status"] == PATIENT_FAILED
        assert result["summary"]["measures_computed"] == 1
        assert len(result["errors"]) == 1

    def test_concurrent_count_override(self, engine, on_time_fills, as_of_date):
        patient = {
            "patient_id": "P1",
            "concurrent_measure_count": 3,
            "measures": [{"measure": "MAH", "fills": on_time_fills}],
        }
        result = engine.calculate_patient(patient, as_of_date)
        assert result["measures"][0]["fragility"]["bonuses"]["multi_measure"] == 15

    @pytest.mark.parametrize("value", ["2", 0, 1.5, True])
    def test_invalid_concurrent_count(self, engine, on_time_fills, as_of_date, value):
        patient = {
            "patient_id": "P1",
            "concurrent_measure_count": value,
            "measures": [{"measure": "MAH", "fills": on_time_fills}],
        }
        result = engine.calculate_patient(patient, as_of_date)
        assert result["status"] == PATIENT_FAILED
        assert result["measures"] == []
        assert "concurrent_measure_count" in result["errors"][0]

    @pytest.mark.parametrize("value,bonus", [
        ("false", 0),
        ("no", 0),
        (False, 0),
        (None, 0),
        ("true", 10),
        (True, 10),
    ])
    def test_first_period_flag_parsed(self, engine, on_time_fills, as_of_date, value, bonus):
        patient = {
            "patient_id": "P1",
            "is_first_measurement_period": value,
            "measures": [{"measure": "MAH", "fills": on_time_fills}],
        }
        result = engine.calculate_patient(patient, as_of_date)
        assert result["measures"][0]["fragility"]["bonuses"]["new_patient"] == bonus

    def test_invalid_first_period_flag(self, engine, on_time_fills, as_of_date):
        patient = {
            "patient_id": "P1",
            "is_first_measurement_period": "maybe",
            "measures": [{"measure": "MAH", "fills": on_time_fills}],
        }
        result = engine.calculate_patient(patient, as_of_date)
        assert result["status"] == PATIENT_FAILED
        assert "is_first_measurement_period" in result["errors"][0]

    @pytest.mark.parametrize("patient", [None, "P1", ["P1"]])
    def test_non_object_patient(self, engine, as_of_date, patient):
        result = engine.calculate_patient(patient, as_of_date)
        assert result["status"] == PATIENT_FAILED
        assert result["patient_id"] == ""
        assert result["errors"] == ["patient record must be an object"]

    def test_non_object_measure_record(self, engine, as_of_date):
        result = engine.calculate_patient({"patient_id": "P1", "measures": ["MAH"]}, as_of_date)
        assert result["status"] == PATIENT_FAILED
        assert result["errors"] == ["measure record must be an object"]

    def test_non_object_flat_fill(self, engine, as_of_date):
        fills = [dict(f, measure="MAH") for f in monthly_fills(1, 3)] + ["2025-04-01"]
        result = engine.calculate_patient({"patient_id": "P1", "fills": fills}, as_of_date)
        assert result["status"] == PATIENT_FAILED
        assert result["errors"] == ["fill record must be an object"]

    def test_flat_fills_grouped_by_measure(self, engine, as_of_date):
        fills = [dict(f, measure="mah") for f in monthly_fills(1, 3)]
        fills += [dict(f, measure="MAD") for f in monthly_fills(2, 3)]
        result = engine.calculate_patient({"patient_id": "P1", "fills": fills}, as_of_date)
        assert [m["measure"] for m in result["measures"]] == ["MAD", "MAH"]
        assert result["status"] == PATIENT_SUCCESS

    def test_flat_fills_mapped_by_medication(self, as_of_date):
        engine = AdherenceEngine(medication_measure_map={"LISINOPRIL": "MAH"})
        fills = monthly_fills(1, 3, medication_code="LISINOPRIL")
        fills += monthly_fills(1, 3, medication_code="IBUPROFEN")
        result = engine.calculate_patient({"patient_id": "P1", "fills": fills}, as_of_date)
        assert [m["measure"] for m in result["measures"]] == ["MAH"]
        assert result["measures"][0]["adherence"]["fill_count"] == 3

    def test_flat_fills_without_measure(self, engine, as_of_date):
        result = engine.calculate_patient({"patient_id": "P1", "fills": monthly_fills(1, 3)}, as_of_date)
        assert result["status"] == PATIENT_FAILED
        assert result["measures"] == []

    def test_unknown_measure(self, engine, as_of_date):
        patient = {"patient_id": "P1", "measures": [{"measure": "STATIN", "fills": monthly_fills(1, 3)}]}
        result = engine.calculate_patient(patient, as_of_date)
        assert result["status"] == PATIENT_FAILED
        assert "STATIN" in result["errors"][0]

    def test_missing_patient_id(self, engine, on_time_fills, as_of_date):
        result = engine.calculate_patient({"measures": [{"measure": "MAH", "fills": on_time_fills}]}, as_of_date)
        assert result["status"] == PATIENT_FAILED

    def test_patient_period_end(self, engine, on_time_fills, as_of_date):
        patient = {
            "patient_id": "P1",
            "period_end": "2025-06-30",
            "measures": [{"measure": "MAH", "fills": on_time_fills}],
        }
        result = engine.calculate_patient(patient, as_of_date)
        assert result["measures"][0]["fragility"]["tier"] == "COMPLIANT"


class TestMedicationLevel:
    """Tests for the per-medication breakdown."""

    def test_breakdown_sorted_by_code(self, engine, as_of_date):
        fills = monthly_fills(1, 3, medication_code="LISINOPRIL") + monthly_fills(4, 2, medication_code="AMLODIPINE")
        patient = {"patient_id": "P1", "measures": [{"measure": "MAH", "fills": fills}]}

        measure = engine.calculate_patient(patient, as_of_date)["measures"][0]

        assert measure["adherence"]["fill_count"] == 5
        assert [m["medication_code"] for m in measure["medications"]] == ["AMLODIPINE", "LISINOPRIL"]
        assert measure["medications"][0]["adherence"]["measurement_period"]["start"] == "2025-04-01"

    def test_medication_failure_does_not_fail_patient(self, engine, as_of_date):
        fills = monthly_fills(1, 4, medication_code="LISINOPRIL") + [
            {"fill_date": "2025-05-01", "days_supply": 30, "medication_code": "AMLODIPINE"}
        ]
        patient = {"patient_id": "P1", "measures": [{"measure": "MAH", "fills": fills}]}

        result = engine.calculate_patient(patient, as_of_date)

        assert result["status"] == PATIENT_SUCCESS
        codes = {m["medication_code"]: m["reason_code"] for m in result["measures"][0]["medications"]}
        assert codes == {"AMLODIPINE": "INSUFFICIENT_DATA", "LISINOPRIL": "SUCCESS"}

    def test_disabled(self, on_time_fills, as_of_date):
        engine = AdherenceEngine(AdherenceConfig(include_medication_level=False))
        patient = {"patient_id": "P1", "measures": [{"measure": "MAH", "fills": on_time_fills}]}
        assert "medications" not in engine.calculate_patient(patient, as_of_date)["measures"][0]


class TestSummarizeMeasures:
    """Tests for summarize_measures()."""

    def test_empty(self):
        assert summarize_measures([]) == {
            "worst_tier": None,
            "lowest_pdc": None,
            "highest_priority_score": None,
            "measures_computed": 0,
        }

    def test_worst_tier_and_extremes(self, engine, on_time_fills, as_of_date, final_quarter_date):
        computed = [
            engine.calculate_measure(QUARTERLY_FILLS, final_quarter_date),
            engine.calculate_measure(LAPSED_FILLS, final_quarter_date),
        ]
        summary = summarize_measures(computed)
        assert summary["worst_tier"] == "T5_UNSALVAGEABLE"
        assert summary["lowest_pdc"] == Decimal("16.44")
        assert summary["highest_priority_score"] == 0
