#!/usr/bin/env python3
"""
coverage_merger.py - Interval Coverage Merger

Turns raw fill events into a count of distinct covered days. Each calendar
day is counted at most once even when prescriptions overlap (early refills,
concurrent strengths).

Algorithm (running pointer, exact):
1. Sort fills by fill_date ascending
2. covered_until starts at the first fill date
3. For each fill ending at fill_date + days_supply:
   - fill starts after covered_until: add the full days_supply
   - fill ends after covered_until: add only the extension
   - otherwise: fully overlapped, add 0
4. Cap at the treatment-period length (first fill through period end, inclusive)

Examples:
    [Jan 1 x30, Feb 1 x28]  -> 58  (no overlap)
    [Jan 1 x30, Jan 15 x30] -> 44  (16 overlapping days)
    [Jan 1 x60, Jan 15 x15] -> 60  (fully contained)

Version: 1.0.0
"""

from datetime import date, timedelta
from typing import List, Optional, Sequence
import logging

from common.date_utils import inclusive_day_count
from common.types import FillEvent

logger = logging.getLogger(__name__)


def sort_fills(fills: Sequence[FillEvent]) -> List[FillEvent]:
    """Stable ascending sort by fill date."""
    return sorted(fills, key=lambda f: f.fill_date)


def calculate_covered_days(
    fills: Sequence[FillEvent],
    period_end: date,
    period_start: Optional[date] = None,
) -> int:
    """
    Count distinct covered days for a set of fills.

    Args:
        fills: Fill events in any order (days_supply already corrected)
        period_end: Last day of the treatment period
        period_start: First day of the treatment period. Defaults to the
            earliest fill date.

    Returns:
        Covered days, 0 for an empty list, never more than the treatment
        period length.
    """
    if not fills:
        return 0

    ordered = sort_fills(fills)
    covered_days = 0
    covered_until = ordered[0].fill_date

    for fill in ordered:
        fill_end = fill.fill_date + timedelta(days=fill.days_supply)
        if fill.fill_date > covered_until:
            covered_days += fill.days_supply
            covered_until = fill_end
        elif fill_end > covered_until:
            covered_days += (fill_end - covered_until).days
            covered_until = fill_end

    start = period_start if period_start is not None else ordered[0].fill_date
    treatment_days = max(0, inclusive_day_count(start, period_end))
    if covered_days > treatment_days:
        logger.debug(f"Capping covered days {covered_days} at treatment period {treatment_days}")
    return min(covered_days, treatment_days)
