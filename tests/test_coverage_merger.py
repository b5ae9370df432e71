#!/usr/bin/env python3
"""
Unit tests for coverage_merger.py

Tests distinct covered-day counting:
- Non-overlapping, overlapping and fully contained fills
- Input order independence
- Treatment-period cap
"""

from datetime import date

from common.types import FillEvent
from coverage_merger import calculate_covered_days, sort_fills


def fill(d: date, days: int) -> FillEvent:
    return FillEvent(fill_date=d, days_supply=days)


YEAR_END = date(2025, 12, 31)


# ============================================================================
# COVERED DAYS
# ============================================================================

class TestCalculateCoveredDays:
    """Tests for calculate_covered_days()."""

    def test_no_overlap(self):
        fills = [fill(date(2025, 1, 1), 30), fill(date(2025, 2, 1), 28)]
        assert calculate_covered_days(fills, YEAR_END) == 58

    def test_partial_overlap_counts_extension_only(self):
        """Jan 15 refill overlaps 16 days of the Jan 1 supply."""
        fills = [fill(date(2025, 1, 1), 30), fill(date(2025, 1, 15), 30)]
        assert calculate_covered_days(fills, YEAR_END) == 44

    def test_fully_contained_fill_adds_nothing(self):
        fills = [fill(date(2025, 1, 1), 60), fill(date(2025, 1, 15), 15)]
        assert calculate_covered_days(fills, YEAR_END) == 60

    def test_adjacent_fill_is_not_overlap(self):
        """A fill on the exact runout day extends coverage by its full supply."""
        fills = [fill(date(2025, 1, 1), 31), fill(date(2025, 2, 1), 28)]
        assert calculate_covered_days(fills, YEAR_END) == 59

    def test_input_order_does_not_matter(self):
        fills = [fill(date(2025, 1, 15), 30), fill(date(2025, 1, 1), 30)]
        assert calculate_covered_days(fills, YEAR_END) == 44

    def test_empty_fills(self):
        assert calculate_covered_days([], YEAR_END) == 0

    def test_capped_at_treatment_period(self):
        """Dec 1 + 60 days runs past Dec 31; only 31 days are in the period."""
        fills = [fill(date(2025, 12, 1), 60)]
        assert calculate_covered_days(fills, YEAR_END) == 31

    def test_cap_uses_explicit_period_start(self):
        fills = [fill(date(2025, 12, 1), 60)]
        assert calculate_covered_days(fills, YEAR_END, period_start=date(2025, 12, 22)) == 10

    def test_never_exceeds_treatment_days(self):
        fills = [fill(date(2025, 1, 1), 90) for _ in range(3)] + [fill(date(2025, 3, 1), 400)]
        covered = calculate_covered_days(fills, YEAR_END)
        assert 0 <= covered <= 365

    def test_gap_between_fills(self):
        fills = [fill(date(2025, 1, 1), 30), fill(date(2025, 3, 1), 30)]
        assert calculate_covered_days(fills, YEAR_END) == 60


# ============================================================================
# SORTING / MERGING
# ============================================================================

class TestSortFills:
    """Tests for sort_fills()."""

    def test_sorts_ascending(self):
        fills = [fill(date(2025, 3, 1), 30), fill(date(2025, 1, 1), 30)]
        assert [f.fill_date for f in sort_fills(fills)] == [date(2025, 1, 1), date(2025, 3, 1)]

    def test_stable_for_equal_dates(self):
        first = FillEvent(date(2025, 1, 1), 30, medication_code="A")
        second = FillEvent(date(2025, 1, 1), 90, medication_code="B")
        assert sort_fills([first, second]) == [first, second]
