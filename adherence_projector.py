#!/usr/bin/env python3
"""
adherence_projector.py - Current PDC, forward projections, runout and refills

Formulas (golden standard, all percentages capped at 100):
    pdc              = covered / treatment x 100
    pdc_status_quo   = (covered + min(current_supply, days_to_period_end)) / treatment x 100
    pdc_perfect      = (covered + days_to_period_end) / treatment x 100
    days_to_runout   = (last_fill_date + days_supply) - as_of_date      (may be negative)
    current_supply   = max(0, days_to_runout)
    days_to_period_end = max(0, (period_end - as_of_date) + 1)          (includes today)
    refills_needed   = ceil(max(0, days_to_period_end - current_supply) / typical_days_supply)

Percentages are carried as exact Decimals; rounding happens only when a
result is serialized, so tier thresholds are compared on unrounded values.

Version: 1.0.0
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from typing import Any, Dict, Optional, Sequence
import logging

from adherence_config import AdherenceConfig
from common.date_utils import days_between
from common.input_validation import InvalidInputError
from common.types import FillEvent
from coverage_merger import calculate_covered_days
from treatment_period import TreatmentPeriod, calculate_gap_budget

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ZERO = Decimal("0")
PCT_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class AdherenceResult:
    """PDC metrics and projections for one patient-measure (or medication)."""
    pdc: Decimal
    covered_days: int
    treatment_days: int
    gap_days_used: int
    gap_days_allowed: int
    gap_days_remaining: int
    pdc_status_quo: Decimal
    pdc_perfect: Decimal
    days_to_runout: int
    current_supply_days: int
    refills_needed: int
    last_fill_date: date
    fill_count: int
    measurement_period: TreatmentPeriod
    days_to_period_end: int
    coverage_shortfall: int
    estimated_days_per_refill: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pdc": quantize_pct(self.pdc),
            "covered_days": self.covered_days,
            "treatment_days": self.treatment_days,
            "gap_days_used": self.gap_days_used,
            "gap_days_allowed": self.gap_days_allowed,
            "gap_days_remaining": self.gap_days_remaining,
            "pdc_status_quo": quantize_pct(self.pdc_status_quo),
            "pdc_perfect": quantize_pct(self.pdc_perfect),
            "days_to_runout": self.days_to_runout,
            "current_supply_days": self.current_supply_days,
            "refills_needed": self.refills_needed,
            "last_fill_date": self.last_fill_date.isoformat(),
            "fill_count": self.fill_count,
            "measurement_period": self.measurement_period.to_dict(),
            "days_to_period_end": self.days_to_period_end,
            "coverage_shortfall": self.coverage_shortfall,
            "estimated_days_per_refill": self.estimated_days_per_refill,
        }


def quantize_pct(value: Decimal) -> Decimal:
    return value.quantize(PCT_QUANTUM, rounding=ROUND_HALF_UP)


# =============================================================================
# BUILDING BLOCKS
# =============================================================================

def calculate_percentage(days: int, treatment_days: int) -> Decimal:
    """days / treatment_days as a percentage clamped to [0, 100]."""
    if treatment_days <= 0:
        return ZERO
    pct = Decimal(days) * HUNDRED / Decimal(treatment_days)
    return max(ZERO, min(pct, HUNDRED))


def calculate_days_to_period_end(period_end: date, as_of_date: date) -> int:
    return max(0, days_between(as_of_date, period_end) + 1)


def calculate_days_to_runout(last_fill: FillEvent, as_of_date: date) -> int:
    runout_date = last_fill.fill_date + timedelta(days=last_fill.days_supply)
    return days_between(as_of_date, runout_date)


def calculate_coverage_shortfall(days_to_period_end: int, current_supply_days: int) -> int:
    """Days short of the period end if no further fill happens."""
    return max(0, days_to_period_end - current_supply_days)


def calculate_refills_needed(
    days_to_period_end: int,
    current_supply_days: int,
    typical_days_supply: int,
) -> int:
    """
    Refills needed to cover through the period end.

    Ceiling of days-needed over typical supply; any positive shortfall needs
    at least one refill.

    Raises:
        InvalidInputError: If typical_days_supply is not positive.
    """
    if typical_days_supply <= 0:
        raise InvalidInputError(f"typical_days_supply must be positive, got {typical_days_supply}")
    shortfall = calculate_coverage_shortfall(days_to_period_end, current_supply_days)
    if shortfall == 0:
        return 0
    refills = int((Decimal(shortfall) / Decimal(typical_days_supply)).to_integral_value(rounding=ROUND_CEILING))
    return max(1, refills)


def estimate_days_per_refill(fills: Sequence[FillEvent], default_days_supply: int) -> int:
    """
    Rounded average days_supply across the fill history.

    Falls back to the default when there are no fills.
    """
    if not fills:
        return default_days_supply
    total = sum(f.days_supply for f in fills)
    average = (Decimal(total) / Decimal(len(fills))).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(average) if average > 0 else default_days_supply


# =============================================================================
# PROJECTION
# =============================================================================

def project_adherence(
    fills: Sequence[FillEvent],
    period: TreatmentPeriod,
    as_of_date: date,
    config: AdherenceConfig,
    typical_days_supply: Optional[int] = None,
) -> AdherenceResult:
    """
    Compute current PDC and projections for in-window fills.

    Args:
        fills: In-window fills sorted by date (non-empty)
        period: Resolved treatment period
        as_of_date: Calculation date
        config: Engine configuration
        typical_days_supply: Days per refill; estimated from history when None

    Returns:
        AdherenceResult
    """
    treatment_days = period.days
    covered = calculate_covered_days(fills, period.end, period_start=period.start)
    gap = calculate_gap_budget(treatment_days, covered, config.gap_allowance_fraction)

    last_fill = fills[-1]
    days_to_period_end = calculate_days_to_period_end(period.end, as_of_date)
    days_to_runout = calculate_days_to_runout(last_fill, as_of_date)
    current_supply = max(0, days_to_runout)

    if typical_days_supply is None:
        typical_days_supply = estimate_days_per_refill(fills, config.default_days_supply)

    result = AdherenceResult(
        pdc=calculate_percentage(covered, treatment_days),
        covered_days=covered,
        treatment_days=treatment_days,
        gap_days_used=gap.gap_days_used,
        gap_days_allowed=gap.gap_days_allowed,
        gap_days_remaining=gap.gap_days_remaining,
        pdc_status_quo=calculate_percentage(
            covered + min(current_supply, days_to_period_end), treatment_days
        ),
        pdc_perfect=calculate_percentage(covered + days_to_period_end, treatment_days),
        days_to_runout=days_to_runout,
        current_supply_days=current_supply,
        refills_needed=calculate_refills_needed(days_to_period_end, current_supply, typical_days_supply),
        last_fill_date=last_fill.fill_date,
        fill_count=len(fills),
        measurement_period=period,
        days_to_period_end=days_to_period_end,
        coverage_shortfall=calculate_coverage_shortfall(days_to_period_end, current_supply),
        estimated_days_per_refill=typical_days_supply,
    )

    logger.debug(
        f"PDC {quantize_pct(result.pdc)} covered={covered}/{treatment_days} "
        f"gap_remaining={gap.gap_days_remaining} refills_needed={result.refills_needed}"
    )
    return result
