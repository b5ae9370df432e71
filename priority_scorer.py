#!/usr/bin/env python3
"""
priority_scorer.py - Outreach priority score and urgency bucket

score = tier base + bonuses
    base:   F1 100, F2 80, F3 60, F4 40, F5 20, COMPLIANT 0, T5 0
    +30     out of supply (days_to_runout <= 0)
    +25     as-of date in the final calendar quarter
    +15     two or more measures tracked concurrently
    +10     patient's first measurement period

COMPLIANT and T5_UNSALVAGEABLE always score 0; their flags are still
reported so downstream views can explain the context.

urgency: >= 150 EXTREME, >= 100 HIGH, >= 50 MODERATE, else LOW

Scores are not capped: F1 with all four bonuses reaches 180, above the
155 of the commonly cited F1 + out of supply + multi-measure + new patient.

Version: 1.0.0
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict

from adherence_config import AdherenceConfig
from common.date_utils import is_final_quarter
from fragility_classifier import FragilityTier

_ZERO_SCORE_TIERS = frozenset({FragilityTier.COMPLIANT, FragilityTier.T5_UNSALVAGEABLE})


class UrgencyLevel(str, Enum):
    EXTREME = "EXTREME"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"


@dataclass(frozen=True)
class PriorityContext:
    """Contextual facts that feed the bonuses."""
    days_to_runout: int
    as_of_date: date
    concurrent_measure_count: int
    is_first_measurement_period: bool


@dataclass(frozen=True)
class PriorityBonuses:
    base: int
    out_of_supply: int
    year_end: int
    multi_measure: int
    new_patient: int

    @property
    def total(self) -> int:
        return self.base + self.out_of_supply + self.year_end + self.multi_measure + self.new_patient

    def to_dict(self) -> Dict[str, int]:
        return {
            "base": self.base,
            "out_of_supply": self.out_of_supply,
            "year_end": self.year_end,
            "multi_measure": self.multi_measure,
            "new_patient": self.new_patient,
        }


@dataclass(frozen=True)
class PriorityResult:
    priority_score: int
    urgency_level: UrgencyLevel
    bonuses: PriorityBonuses
    flags: Dict[str, bool]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority_score": self.priority_score,
            "urgency_level": self.urgency_level.value,
            "bonuses": self.bonuses.to_dict(),
            "flags": dict(sorted(self.flags.items())),
        }


def determine_urgency_level(priority_score: int, config: AdherenceConfig) -> UrgencyLevel:
    extreme, high, moderate = config.urgency_thresholds
    if priority_score >= extreme:
        return UrgencyLevel.EXTREME
    if priority_score >= high:
        return UrgencyLevel.HIGH
    if priority_score >= moderate:
        return UrgencyLevel.MODERATE
    return UrgencyLevel.LOW


def context_flags(context: PriorityContext, config: AdherenceConfig) -> Dict[str, bool]:
    """The four bonus conditions, independent of tier."""
    return {
        "is_out_of_supply": context.days_to_runout <= 0,
        "is_year_end_window": is_final_quarter(context.as_of_date, config.final_quarter_start_month),
        "is_multi_measure": context.concurrent_measure_count >= config.multi_measure_min_count,
        "is_new_patient": bool(context.is_first_measurement_period),
    }


def score_priority(
    tier: FragilityTier,
    context: PriorityContext,
    config: AdherenceConfig,
) -> PriorityResult:
    """
    Compute priority score, urgency and bonus breakdown for a tier.

    Args:
        tier: Final fragility tier (after tightening)
        context: Runout, date and patient context
        config: Engine configuration (base scores, bonus weights, cut-offs)

    Returns:
        PriorityResult
    """
    flags = context_flags(context, config)

    if tier in _ZERO_SCORE_TIERS:
        bonuses = PriorityBonuses(base=0, out_of_supply=0, year_end=0, multi_measure=0, new_patient=0)
    else:
        bonuses = PriorityBonuses(
            base=config.tier_base_scores[tier.value],
            out_of_supply=config.bonus_out_of_supply if flags["is_out_of_supply"] else 0,
            year_end=config.bonus_year_end if flags["is_year_end_window"] else 0,
            multi_measure=config.bonus_multi_measure if flags["is_multi_measure"] else 0,
            new_patient=config.bonus_new_patient if flags["is_new_patient"] else 0,
        )

    score = bonuses.total
    return PriorityResult(
        priority_score=score,
        urgency_level=determine_urgency_level(score, config),
        bonuses=bonuses,
        flags=flags,
    )
