"""
common - Shared utilities for the adherence engine.

Provides:
- date_utils: Date normalization and calendar helpers
- types: Shared enums, FillEvent, and record TypedDicts
- input_validation: Fill parsing, range checks, engine exceptions
- logging_config: Logging setup with PHI redaction and run ID correlation
"""

from common.date_utils import (
    normalize_date,
    to_date_string,
    validate_as_of_date,
    days_to_year_end,
    is_final_quarter,
)
from common.types import FillEvent, Measure, ReasonCode
from common.input_validation import (
    AdherenceError,
    ConfigurationError,
    InsufficientDataError,
    InvalidInputError,
    parse_fill_event,
    validate_fill_dates,
    validate_population,
)

__all__ = [
    "normalize_date",
    "to_date_string",
    "validate_as_of_date",
    "days_to_year_end",
    "is_final_quarter",
    "FillEvent",
    "Measure",
    "ReasonCode",
    "AdherenceError",
    "ConfigurationError",
    "InsufficientDataError",
    "InvalidInputError",
    "parse_fill_event",
    "validate_fill_dates",
    "validate_population",
]
