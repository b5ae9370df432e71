#!/usr/bin/env python3
"""
adherence_config.py - Immutable configuration for the PDC adherence engine

Every threshold, weight and window used by the engine is a named field of
AdherenceConfig. The config is passed explicitly into every entry point;
there is no module-level mutable state.

Defaults reproduce the golden-standard formula:
- PDC target 80%, gap allowance 20% of treatment days
- Delay-budget tiers at 2 / 5 / 10 / 20 days per refill
- Year-end tightening inside 60 days when 5 or fewer gap days remain
- Tier base scores 100 / 80 / 60 / 40 / 20, bonuses +30 / +25 / +15 / +10
- Urgency cut-offs 150 / 100 / 50

Archived parameter sets live in params_archive/ and are loaded with
load_adherence_config(); the returned parameters_hash identifies the
effective configuration in every run summary.

Version: 1.0.0
"""

from dataclasses import dataclass, field, fields, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union
import logging

from common.date_utils import normalize_date
from common.input_validation import ConfigurationError
from governance.params_loader import ParamsLoadError, compute_parameters_hash, load_params

logger = logging.getLogger(__name__)

DEFAULT_PARAMS_VERSION = "adherence_v1"

TIER_NAMES: Tuple[str, ...] = (
    "COMPLIANT",
    "F1_IMMINENT",
    "F2_FRAGILE",
    "F3_MODERATE",
    "F4_COMFORTABLE",
    "F5_SAFE",
    "T5_UNSALVAGEABLE",
)

DEFAULT_TIER_BASE_SCORES: Dict[str, int] = {
    "F1_IMMINENT": 100,
    "F2_FRAGILE": 80,
    "F3_MODERATE": 60,
    "F4_COMFORTABLE": 40,
    "F5_SAFE": 20,
    "COMPLIANT": 0,
    "T5_UNSALVAGEABLE": 0,
}


@dataclass(frozen=True)
class AdherenceConfig:
    """Thresholds, weights and run settings for one adherence calculation."""

    # PDC / gap budget
    pdc_target: Decimal = Decimal("80")
    gap_allowance_fraction: Decimal = Decimal("0.20")
    default_days_supply: int = 30
    min_fills_for_measurement: int = 2

    # Fragility tiers (days of delay per refill; upper bounds for F1..F4)
    delay_budget_thresholds: Tuple[int, int, int, int] = (2, 5, 10, 20)
    year_end_window_days: int = 60
    year_end_gap_days: int = 5

    # Priority scoring
    tier_base_scores: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_TIER_BASE_SCORES))
    )
    bonus_out_of_supply: int = 30
    bonus_year_end: int = 25
    bonus_multi_measure: int = 15
    bonus_new_patient: int = 10
    final_quarter_start_month: int = 10
    multi_measure_min_count: int = 2
    # EXTREME, HIGH, MODERATE lower bounds
    urgency_thresholds: Tuple[int, int, int] = (150, 100, 50)

    # Measurement window; None means the as-of date's calendar year
    measurement_year: Optional[int] = None
    min_fill_date: date = date(1990, 1, 1)

    # Output / batch
    include_medication_level: bool = True
    max_workers: int = 4
    batch_size: int = 10

    def __post_init__(self):
        # Normalize field types so dict- and kwarg-built configs compare equal
        object.__setattr__(self, "pdc_target", _to_decimal("pdc_target", self.pdc_target))
        object.__setattr__(
            self, "gap_allowance_fraction",
            _to_decimal("gap_allowance_fraction", self.gap_allowance_fraction),
        )
        object.__setattr__(
            self, "delay_budget_thresholds",
            _to_int_tuple("delay_budget_thresholds", self.delay_budget_thresholds, 4),
        )
        object.__setattr__(
            self, "urgency_thresholds",
            _to_int_tuple("urgency_thresholds", self.urgency_thresholds, 3),
        )
        object.__setattr__(
            self, "tier_base_scores",
            MappingProxyType({str(k): int(v) for k, v in dict(self.tier_base_scores).items()}),
        )
        try:
            object.__setattr__(self, "min_fill_date", normalize_date(self.min_fill_date))
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid min_fill_date: {e}") from e
        self.validate()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """
        Check internal consistency.

        Raises:
            ConfigurationError: On the first inconsistency found.
        """
        if not (Decimal("0") < self.pdc_target <= Decimal("100")):
            raise ConfigurationError(f"pdc_target must be in (0, 100], got {self.pdc_target}")
        if not (Decimal("0") < self.gap_allowance_fraction < Decimal("1")):
            raise ConfigurationError(
                f"gap_allowance_fraction must be in (0, 1), got {self.gap_allowance_fraction}"
            )
        if self.default_days_supply <= 0:
            raise ConfigurationError("default_days_supply must be positive")
        if self.min_fills_for_measurement < 1:
            raise ConfigurationError("min_fills_for_measurement must be at least 1")

        thresholds = self.delay_budget_thresholds
        if thresholds[0] < 0 or any(a >= b for a, b in zip(thresholds, thresholds[1:])):
            raise ConfigurationError(
                f"delay_budget_thresholds must be non-negative and strictly increasing, got {thresholds}"
            )
        urgency = self.urgency_thresholds
        if urgency[-1] < 0 or any(a <= b for a, b in zip(urgency, urgency[1:])):
            raise ConfigurationError(
                f"urgency_thresholds must be non-negative and strictly decreasing, got {urgency}"
            )

        if self.year_end_window_days < 0 or self.year_end_gap_days < 0:
            raise ConfigurationError("year-end tightening windows cannot be negative")

        missing = set(TIER_NAMES) - set(self.tier_base_scores)
        unknown = set(self.tier_base_scores) - set(TIER_NAMES)
        if missing or unknown:
            raise ConfigurationError(
                f"tier_base_scores must cover exactly {list(TIER_NAMES)} "
                f"(missing={sorted(missing)}, unknown={sorted(unknown)})"
            )
        if self.tier_base_scores["COMPLIANT"] != 0 or self.tier_base_scores["T5_UNSALVAGEABLE"] != 0:
            raise ConfigurationError("COMPLIANT and T5_UNSALVAGEABLE base scores must be 0")

        for name in ("bonus_out_of_supply", "bonus_year_end", "bonus_multi_measure", "bonus_new_patient"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative")

        if not (1 <= self.final_quarter_start_month <= 12):
            raise ConfigurationError("final_quarter_start_month must be 1-12")
        if self.multi_measure_min_count < 1:
            raise ConfigurationError("multi_measure_min_count must be at least 1")
        if self.measurement_year is not None and not (1900 <= self.measurement_year <= 9999):
            raise ConfigurationError(f"measurement_year out of range: {self.measurement_year}")
        if self.max_workers < 1 or self.batch_size < 1:
            raise ConfigurationError("max_workers and batch_size must be at least 1")

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'AdherenceConfig':
        """
        Build a config from a plain dict (params archive or overrides).

        Keys starting with an underscore are treated as annotations and
        ignored. Any other unknown key is a ConfigurationError.
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in config_dict.items() if not k.startswith("_")}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")
        try:
            return cls(**values)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (Decimals as strings)."""
        return {
            "pdc_target": str(self.pdc_target),
            "gap_allowance_fraction": str(self.gap_allowance_fraction),
            "default_days_supply": self.default_days_supply,
            "min_fills_for_measurement": self.min_fills_for_measurement,
            "delay_budget_thresholds": list(self.delay_budget_thresholds),
            "year_end_window_days": self.year_end_window_days,
            "year_end_gap_days": self.year_end_gap_days,
            "tier_base_scores": dict(self.tier_base_scores),
            "bonus_out_of_supply": self.bonus_out_of_supply,
            "bonus_year_end": self.bonus_year_end,
            "bonus_multi_measure": self.bonus_multi_measure,
            "bonus_new_patient": self.bonus_new_patient,
            "final_quarter_start_month": self.final_quarter_start_month,
            "multi_measure_min_count": self.multi_measure_min_count,
            "urgency_thresholds": list(self.urgency_thresholds),
            "measurement_year": self.measurement_year,
            "min_fill_date": self.min_fill_date.isoformat(),
            "include_medication_level": self.include_medication_level,
            "max_workers": self.max_workers,
            "batch_size": self.batch_size,
        }

    def with_overrides(self, **overrides: Any) -> 'AdherenceConfig':
        """Return a copy with some fields replaced (what-if runs)."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")
        return replace(self, **overrides)

    @property
    def parameters_hash(self) -> str:
        """Short canonical hash of the effective configuration."""
        return compute_parameters_hash(self.to_dict())

    def resolve_measurement_year(self, as_of_date: date) -> int:
        return self.measurement_year if self.measurement_year is not None else as_of_date.year


def _to_decimal(name: str, value: Any) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ConfigurationError(f"{name} must be numeric, got {value!r}") from e
    if not result.is_finite():
        raise ConfigurationError(f"{name} must be finite, got {value!r}")
    return result


def _to_int_tuple(name: str, value: Any, length: int) -> Tuple[int, ...]:
    try:
        result = tuple(int(v) for v in value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a sequence of integers, got {value!r}") from e
    if len(result) != length:
        raise ConfigurationError(f"{name} must have {length} entries, got {len(result)}")
    return result


def load_adherence_config(
    params_version: str = DEFAULT_PARAMS_VERSION,
    params_dir: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> Tuple[AdherenceConfig, str]:
    """
    Load an archived parameter set and apply overrides.

    Returns:
        Tuple of (config, parameters_hash of the effective config)

    Raises:
        ConfigurationError: If the archive is missing, malformed, or inconsistent.
    """
    try:
        params, archive_hash = load_params(params_version, params_dir)
    except ParamsLoadError as e:
        raise ConfigurationError(str(e)) from e

    config = AdherenceConfig.from_dict(params)
    if overrides:
        config = config.with_overrides(**overrides)

    logger.info(
        f"Loaded adherence params {params_version} "
        f"(archive hash {archive_hash}, effective hash {config.parameters_hash})"
    )
    return config, config.parameters_hash


__all__ = [
    "AdherenceConfig",
    "DEFAULT_PARAMS_VERSION",
    "DEFAULT_TIER_BASE_SCORES",
    "TIER_NAMES",
    "load_adherence_config",
]
