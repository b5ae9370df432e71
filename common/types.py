"""
Shared type definitions for the adherence engine.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Union
from typing_extensions import TypedDict, NotRequired


# =============================================================================
# TYPE ALIASES
# =============================================================================

PatientId = str
MedicationCode = str
DateString = str  # Format: YYYY-MM-DD


# =============================================================================
# ENUMS
# =============================================================================

class Measure(str, Enum):
    """Medication adherence measures tracked per patient."""
    MAC = "MAC"  # Cholesterol (statins)
    MAD = "MAD"  # Diabetes medications
    MAH = "MAH"  # Hypertension (RAS antagonists)

    @classmethod
    def parse(cls, value: Union[str, "Measure"]) -> "Measure":
        if isinstance(value, Measure):
            return value
        return cls(str(value).strip().upper())


class ReasonCode(str, Enum):
    """Outcome of a single patient-measure calculation."""
    SUCCESS = "SUCCESS"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    INVALID_INPUT = "INVALID_INPUT"


# =============================================================================
# FILL EVENTS
# =============================================================================

@dataclass(frozen=True)
class FillEvent:
    """
    A single pharmacy fill.

    days_supply is already corrected (missing/zero/negative -> default) by the
    time a FillEvent exists; see common.input_validation.parse_fill_event.
    """
    fill_date: date
    days_supply: int
    medication_code: Optional[MedicationCode] = None
    measure: Optional[Measure] = None


# =============================================================================
# INPUT RECORD TYPES
# =============================================================================

class FillRecord(TypedDict, total=False):
    """Raw fill as supplied by the caller (JSON population or CSV export row)."""
    fill_date: Union[str, date]
    days_supply: Union[int, float, str, None]
    medication_code: NotRequired[Optional[str]]
    measure: NotRequired[Optional[str]]


class MeasureRecord(TypedDict, total=False):
    """One tracked measure for a patient."""
    measure: str
    fills: List[FillRecord]
    refills_remaining: NotRequired[Optional[int]]
    typical_days_supply: NotRequired[Optional[int]]


class PatientRecord(TypedDict, total=False):
    """
    Patient input for batch runs.

    Either ``measures`` (explicit per-measure fill lists) or ``fills`` (flat
    list carrying a ``measure`` key per fill) must be present.
    """
    patient_id: PatientId
    measures: NotRequired[List[MeasureRecord]]
    fills: NotRequired[List[FillRecord]]
    is_first_measurement_period: NotRequired[bool]
    concurrent_measure_count: NotRequired[Optional[int]]
    period_end: NotRequired[Optional[str]]


# =============================================================================
# OUTPUT RECORD TYPES
# =============================================================================

class PatientSummaryRecord(TypedDict):
    """Aggregated view across a patient's measures."""
    worst_tier: Optional[str]
    lowest_pdc: Optional[Decimal]
    highest_priority_score: Optional[int]
    measures_computed: int


class PatientResultRecord(TypedDict):
    """Per-patient entry in a batch run."""
    patient_id: PatientId
    status: str
    measures: List[Dict[str, object]]
    summary: PatientSummaryRecord
    errors: List[str]


class BatchSummaryRecord(TypedDict):
    """Result of a batch orchestrator run."""
    as_of_date: str
    total_patients: int
    success_count: int
    error_count: int
    skipped_count: int
    cancelled: bool
    per_patient_results: List[PatientResultRecord]
    duration_ms: int
    tier_distribution: Dict[str, int]
    urgency_distribution: Dict[str, int]
    content_hash: str
    parameters_hash: str
    module_version: str
