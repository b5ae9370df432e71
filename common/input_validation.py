"""
common/input_validation.py - Adherence Input Validation Layer

Validates and normalizes fill-event data before any calculation consumes it.

Design Philosophy:
- Fail-loud: invalid patient-measure records raise InvalidInputError
- Only one silent correction: days_supply missing/zero/negative -> default
- Insufficient data is a distinct outcome, never a numeric zero

Usage:
    from common.input_validation import (
        parse_fill_event,
        validate_fill_dates,
        validate_refills_remaining,
        validate_population,
        InvalidInputError,
        InsufficientDataError,
    )

    fills = [parse_fill_event(r, default_days_supply=30) for r in raw_fills]
    validate_fill_dates(fills, min_fill_date=date(1990, 1, 1), as_of_date=as_of)

Version: 1.0.0
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from common.date_utils import normalize_date
from common.types import FillEvent, Measure

logger = logging.getLogger(__name__)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class AdherenceError(Exception):
    """Base class for adherence engine errors."""
    pass


class InsufficientDataError(AdherenceError):
    """Raised when adherence cannot be measured (no fills, no in-window fill)."""
    pass


class InvalidInputError(AdherenceError):
    """Raised when a patient-measure record is malformed or out of range."""
    pass


class ConfigurationError(AdherenceError):
    """Raised when engine configuration is invalid. Fatal at the entry point."""
    pass


# ============================================================================
# FILL PARSING
# ============================================================================

def coerce_days_supply(value: Any, default: int) -> int:
    """
    Coerce a raw days_supply value to a positive int.

    Missing, zero, negative, or non-numeric values become ``default``. This is
    the only sanctioned silent correction in the engine.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    if not number.is_finite() or number <= 0:
        return default
    return int(number)


def parse_fill_event(
    record: Mapping[str, Any],
    default_days_supply: int,
) -> FillEvent:
    """
    Build a FillEvent from a raw fill record.

    Raises:
        InvalidInputError: If fill_date is missing or unparseable, or the
            measure code is unknown.
    """
    raw_date = record.get("fill_date")
    if raw_date is None or (isinstance(raw_date, float) and math.isnan(raw_date)):
        raise InvalidInputError("fill_date is required on every fill")
    try:
        fill_date = normalize_date(raw_date)
    except (ValueError, TypeError) as e:
        raise InvalidInputError(f"Invalid fill_date {raw_date!r}: {e}") from e

    measure = None
    raw_measure = record.get("measure")
    if raw_measure:
        try:
            measure = Measure.parse(raw_measure)
        except ValueError as e:
            raise InvalidInputError(f"Unknown measure {raw_measure!r}") from e

    medication_code = record.get("medication_code")
    if medication_code is not None:
        medication_code = str(medication_code).strip() or None

    return FillEvent(
        fill_date=fill_date,
        days_supply=coerce_days_supply(record.get("days_supply"), default_days_supply),
        medication_code=medication_code,
        measure=measure,
    )


def validate_fill_dates(
    fills: Iterable[FillEvent],
    min_fill_date: date,
    as_of_date: date,
) -> None:
    """
    Reject fills dated outside the sane range [min_fill_date, as_of_date].

    Raises:
        InvalidInputError: On the first out-of-range fill.
    """
    for fill in fills:
        if fill.fill_date < min_fill_date:
            raise InvalidInputError(
                f"Fill date {fill.fill_date.isoformat()} precedes minimum "
                f"{min_fill_date.isoformat()}"
            )
        if fill.fill_date > as_of_date:
            raise InvalidInputError(
                f"Fill date {fill.fill_date.isoformat()} is after as_of_date "
                f"{as_of_date.isoformat()}"
            )


def validate_refills_remaining(value: Any) -> Optional[int]:
    """
    Validate a caller-supplied refills_remaining.

    None means "not supplied" and is passed through.

    Raises:
        InvalidInputError: If negative or not an integer.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f"refills_remaining must be an integer, got {value!r}")
    try:
        refills = int(value)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"refills_remaining must be an integer, got {value!r}") from e
    if refills != value and not isinstance(value, str):
        raise InvalidInputError(f"refills_remaining must be a whole number, got {value!r}")
    if refills < 0:
        raise InvalidInputError(f"refills_remaining cannot be negative, got {refills}")
    return refills


def validate_typical_days_supply(value: Any) -> Optional[int]:
    """Validate an explicit typical days supply (None passes through)."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f"typical_days_supply must be an integer, got {value!r}")
    try:
        days = int(value)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"typical_days_supply must be an integer, got {value!r}") from e
    if days != value and not isinstance(value, str):
        raise InvalidInputError(f"typical_days_supply must be a whole number, got {value!r}")
    if days <= 0:
        raise InvalidInputError(f"typical_days_supply must be positive, got {days}")
    return days


def validate_concurrent_measure_count(value: Any) -> int:
    """
    Validate the number of measures tracked concurrently for a patient.

    Raises:
        InvalidInputError: If not a positive whole number.
    """
    if isinstance(value, bool) or not isinstance(value, (int, Decimal)):
        raise InvalidInputError(f"concurrent_measure_count must be an integer, got {value!r}")
    try:
        count = int(value)
    except (ValueError, OverflowError) as e:
        raise InvalidInputError(f"concurrent_measure_count must be an integer, got {value!r}") from e
    if count != value:
        raise InvalidInputError(f"concurrent_measure_count must be a whole number, got {value!r}")
    if count < 1:
        raise InvalidInputError(f"concurrent_measure_count must be at least 1, got {count}")
    return count


def parse_flag(value: Any, name: str) -> bool:
    """
    Parse a boolean input flag strictly.

    Accepts real booleans and the CSV spellings true/false, yes/no, 1/0.
    None and empty strings mean False.

    Raises:
        InvalidInputError: For any other value.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "t", "yes", "y", "1"):
            return True
        if text in ("false", "f", "no", "n", "0", ""):
            return False
    raise InvalidInputError(f"{name} must be a boolean, got {value!r}")


# ============================================================================
# POPULATION PRE-FLIGHT
# ============================================================================

@dataclass
class ValidationResult:
    """Aggregated pre-flight validation result for a population."""
    passed: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    invalid_patients: Dict[str, List[str]] = field(default_factory=dict)
    stats: Dict[str, int] = field(default_factory=dict)

    def summary(self) -> str:
        """Generate human-readable summary."""
        lines = [f"Validation {'PASSED' if self.passed else 'FAILED'}"]
        for key in sorted(self.stats):
            lines.append(f"  {key}: {self.stats[key]}")
        if self.errors:
            lines.append(f"Errors ({len(self.errors)}):")
            lines.extend(f"  - {e}" for e in self.errors[:10])
            if len(self.errors) > 10:
                lines.append(f"  ... and {len(self.errors) - 10} more")
        if self.warnings:
            lines.append(f"Warnings ({len(self.warnings)}):")
            lines.extend(f"  - {w}" for w in self.warnings[:10])
        return "\n".join(lines)


def validate_population(population: List[Mapping[str, Any]]) -> ValidationResult:
    """
    Structural pre-flight check of a patient population.

    Record-level problems (bad dates, negative refills) are reported as
    warnings because the batch isolates them per patient. Only structural
    issues that make a record unaddressable (missing or duplicate patient_id)
    fail the check.
    """
    result = ValidationResult(passed=True)
    seen: Dict[str, int] = {}
    total_fills = 0

    for index, patient in enumerate(population):
        if not isinstance(patient, Mapping):
            result.errors.append(f"Record {index} is not an object")
            continue
        patient_id = patient.get("patient_id")
        if not patient_id:
            result.errors.append(f"Record {index} has no patient_id")
            continue
        patient_id = str(patient_id)
        seen[patient_id] = seen.get(patient_id, 0) + 1

        problems: List[str] = []
        measures = patient.get("measures")
        fills = patient.get("fills")
        if measures is None and fills is None:
            problems.append("no 'measures' or 'fills'")
        for measure in measures or []:
            if not isinstance(measure, Mapping):
                problems.append("measure record is not an object")
                continue
            total_fills += len(measure.get("fills") or [])
            refills = measure.get("refills_remaining")
            if refills is not None and isinstance(refills, (int, float)) and refills < 0:
                problems.append(f"negative refills_remaining for {measure.get('measure')}")
        total_fills += len(fills or [])

        if problems:
            result.invalid_patients[patient_id] = problems
            result.warnings.extend(f"{patient_id}: {p}" for p in problems)

    duplicates = sorted(pid for pid, count in seen.items() if count > 1)
    for pid in duplicates:
        result.errors.append(f"Duplicate patient_id: {pid}")

    result.stats = {
        "patients": len(population),
        "unique_patients": len(seen),
        "fills": total_fills,
        "patients_with_warnings": len(result.invalid_patients),
    }
    result.passed = not result.errors

    if not result.passed:
        logger.warning(f"Population pre-flight failed with {len(result.errors)} error(s)")
    return result
