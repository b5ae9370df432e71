#!/usr/bin/env python3
"""
fragility_classifier.py - Fragility tier state machine

Maps a patient-measure's projections to exactly one of seven tiers. The
evaluation order is load-bearing:

1. pdc_status_quo >= target            -> COMPLIANT
2. pdc_perfect < target                -> T5_UNSALVAGEABLE
3. delay budget = gap_days_remaining / refills_remaining
       <= 2  F1_IMMINENT
       <= 5  F2_FRAGILE
       <= 10 F3_MODERATE
       <= 20 F4_COMFORTABLE
       else  F5_SAFE
   With refills_remaining <= 0 the budget is +Infinity when gap days remain
   and -Infinity otherwise.
4. Year-end tightening: fewer than 60 days left in the year and at most 5
   gap days remaining promotes F2-F5 one step toward F1.

Version: 1.0.0
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Tuple
import logging

from adherence_config import AdherenceConfig
from adherence_projector import AdherenceResult
from common.date_utils import days_to_year_end

logger = logging.getLogger(__name__)

POSITIVE_INFINITY = Decimal("Infinity")
NEGATIVE_INFINITY = Decimal("-Infinity")


class FragilityTier(str, Enum):
    COMPLIANT = "COMPLIANT"
    F1_IMMINENT = "F1_IMMINENT"
    F2_FRAGILE = "F2_FRAGILE"
    F3_MODERATE = "F3_MODERATE"
    F4_COMFORTABLE = "F4_COMFORTABLE"
    F5_SAFE = "F5_SAFE"
    T5_UNSALVAGEABLE = "T5_UNSALVAGEABLE"

    @property
    def level(self) -> int:
        return TIER_LEVELS[self]

    @property
    def contact_window(self) -> str:
        return TIER_TABLE[self][0]

    @property
    def action(self) -> str:
        return TIER_TABLE[self][1]


# Ordinal used in reports: T5 lowest, COMPLIANT highest
TIER_LEVELS: Dict[FragilityTier, int] = {
    FragilityTier.T5_UNSALVAGEABLE: 0,
    FragilityTier.F1_IMMINENT: 1,
    FragilityTier.F2_FRAGILE: 2,
    FragilityTier.F3_MODERATE: 3,
    FragilityTier.F4_COMFORTABLE: 4,
    FragilityTier.F5_SAFE: 5,
    FragilityTier.COMPLIANT: 6,
}

# (contact_window, action)
TIER_TABLE: Dict[FragilityTier, Tuple[str, str]] = {
    FragilityTier.F1_IMMINENT: ("24 hours", "Immediate outreach required"),
    FragilityTier.F2_FRAGILE: ("48 hours", "Urgent outreach recommended"),
    FragilityTier.F3_MODERATE: ("1 week", "Standard outreach"),
    FragilityTier.F4_COMFORTABLE: ("2 weeks", "Monitor and schedule"),
    FragilityTier.F5_SAFE: ("Monthly", "Routine monitoring"),
    FragilityTier.COMPLIANT: ("Monitor only", "No action needed - monitor only"),
    FragilityTier.T5_UNSALVAGEABLE: ("Special handling required", "Special handling - cannot reach 80%"),
}

# Outreach order when picking a patient's worst tier across measures
URGENCY_ORDER: Tuple[FragilityTier, ...] = (
    FragilityTier.F1_IMMINENT,
    FragilityTier.F2_FRAGILE,
    FragilityTier.F3_MODERATE,
    FragilityTier.F4_COMFORTABLE,
    FragilityTier.F5_SAFE,
    FragilityTier.T5_UNSALVAGEABLE,
    FragilityTier.COMPLIANT,
)

_PROMOTION: Dict[FragilityTier, FragilityTier] = {
    FragilityTier.F2_FRAGILE: FragilityTier.F1_IMMINENT,
    FragilityTier.F3_MODERATE: FragilityTier.F2_FRAGILE,
    FragilityTier.F4_COMFORTABLE: FragilityTier.F3_MODERATE,
    FragilityTier.F5_SAFE: FragilityTier.F4_COMFORTABLE,
}


@dataclass(frozen=True)
class TierDecision:
    """Outcome of the state machine before priority scoring."""
    tier: FragilityTier
    delay_budget_per_refill: Decimal
    is_tightened: bool
    days_to_year_end: int


def calculate_delay_budget(gap_days_remaining: int, refills_remaining: int) -> Decimal:
    """Gap days available per remaining refill (signed infinity with no refills)."""
    if refills_remaining <= 0:
        return POSITIVE_INFINITY if gap_days_remaining > 0 else NEGATIVE_INFINITY
    return Decimal(gap_days_remaining) / Decimal(refills_remaining)


def tier_from_delay_budget(
    delay_budget: Decimal,
    thresholds: Tuple[int, int, int, int] = (2, 5, 10, 20),
) -> FragilityTier:
    f1, f2, f3, f4 = thresholds
    if delay_budget <= f1:
        return FragilityTier.F1_IMMINENT
    if delay_budget <= f2:
        return FragilityTier.F2_FRAGILE
    if delay_budget <= f3:
        return FragilityTier.F3_MODERATE
    if delay_budget <= f4:
        return FragilityTier.F4_COMFORTABLE
    return FragilityTier.F5_SAFE


def apply_year_end_tightening(
    tier: FragilityTier,
    days_remaining_in_year: int,
    gap_days_remaining: int,
    config: AdherenceConfig,
) -> Tuple[FragilityTier, bool]:
    """
    Promote one step toward F1 late in the year when little slack is left.

    COMPLIANT, T5_UNSALVAGEABLE and F1_IMMINENT are returned unchanged.
    """
    promoted = _PROMOTION.get(tier)
    if promoted is None:
        return tier, False
    if days_remaining_in_year < config.year_end_window_days and gap_days_remaining <= config.year_end_gap_days:
        return promoted, True
    return tier, False


def classify(
    adherence: AdherenceResult,
    refills_remaining: int,
    as_of_date: date,
    config: AdherenceConfig,
) -> TierDecision:
    """
    Run the tier state machine.

    Args:
        adherence: Projections for the patient-measure
        refills_remaining: Delay-budget denominator
        as_of_date: Calculation date (drives year-end tightening)
        config: Engine configuration

    Returns:
        TierDecision
    """
    delay_budget = calculate_delay_budget(adherence.gap_days_remaining, refills_remaining)
    remaining_in_year = days_to_year_end(as_of_date)

    if adherence.pdc_status_quo >= config.pdc_target:
        tier, tightened = FragilityTier.COMPLIANT, False
    elif adherence.pdc_perfect < config.pdc_target:
        tier, tightened = FragilityTier.T5_UNSALVAGEABLE, False
    else:
        base_tier = tier_from_delay_budget(delay_budget, config.delay_budget_thresholds)
        tier, tightened = apply_year_end_tightening(
            base_tier, remaining_in_year, adherence.gap_days_remaining, config
        )
        if tightened:
            logger.debug(f"Year-end tightening promoted {base_tier.value} -> {tier.value}")

    return TierDecision(
        tier=tier,
        delay_budget_per_refill=delay_budget,
        is_tightened=tightened,
        days_to_year_end=remaining_in_year,
    )


def worst_tier(tiers) -> FragilityTier:
    """Most urgent tier in URGENCY_ORDER; raises ValueError on empty input."""
    ranked = sorted(tiers, key=URGENCY_ORDER.index)
    if not ranked:
        raise ValueError("worst_tier() requires at least one tier")
    return ranked[0]
