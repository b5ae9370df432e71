#!/usr/bin/env python3
"""
treatment_period.py - Treatment Period Resolver and Gap Budget Calculator

The treatment period runs from the index fill (first fill on or after the
window's January 1) through December 31 of the measurement year, or through
a caller-supplied period end for rolling windows. Both ends are inclusive.

Gap budget (golden standard):
    gap_days_used      = treatment_days - covered_days
    gap_days_allowed   = floor(treatment_days x 0.20)
    gap_days_remaining = gap_days_allowed - gap_days_used   (may be negative)

Version: 1.0.0
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_FLOOR
from typing import List, Optional, Sequence, Tuple

from common.date_utils import inclusive_day_count, year_end, year_start
from common.input_validation import InsufficientDataError
from common.types import FillEvent


@dataclass(frozen=True)
class TreatmentPeriod:
    """Inclusive measurement window for one patient-measure."""
    start: date
    end: date

    @property
    def days(self) -> int:
        return inclusive_day_count(self.start, self.end)

    def to_dict(self):
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class GapBudget:
    """Allowed, used and remaining gap days for a treatment period."""
    gap_days_used: int
    gap_days_allowed: int
    gap_days_remaining: int


def resolve_treatment_period(
    sorted_fills: Sequence[FillEvent],
    measurement_year: int,
    period_end: Optional[date] = None,
) -> Tuple[TreatmentPeriod, List[FillEvent]]:
    """
    Resolve the treatment period and the fills that fall inside it.

    Args:
        sorted_fills: Fills sorted ascending by fill_date
        measurement_year: Calendar year of the window
        period_end: Optional rolling window end; defaults to Dec 31 of
            measurement_year

    Returns:
        (TreatmentPeriod, in-window fills in date order)

    Raises:
        InsufficientDataError: If no fill falls within the window.
    """
    window_start = year_start(measurement_year)
    end = period_end if period_end is not None else year_end(measurement_year)

    in_window = [f for f in sorted_fills if window_start <= f.fill_date <= end]
    if not in_window:
        raise InsufficientDataError(
            f"No fills between {window_start.isoformat()} and {end.isoformat()}"
        )

    return TreatmentPeriod(start=in_window[0].fill_date, end=end), in_window


def calculate_gap_budget(
    treatment_days: int,
    covered_days: int,
    allowance_fraction: Decimal = Decimal("0.20"),
) -> GapBudget:
    """Gap-day budget for a treatment period; "allowed" is floored."""
    used = treatment_days - covered_days
    allowed = int((Decimal(treatment_days) * allowance_fraction).to_integral_value(rounding=ROUND_FLOOR))
    return GapBudget(
        gap_days_used=used,
        gap_days_allowed=allowed,
        gap_days_remaining=allowed - used,
    )
