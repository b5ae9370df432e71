#!/usr/bin/env python3
"""
Shared test fixtures for the adherence engine test suite.

Provides reusable fixtures for:
- Standard as_of_dates for deterministic tests
- Default engine configuration and engine instances
- Sample fills and patient populations
"""

import json
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, List

import pytest

# Add parent to path for module imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from adherence_config import AdherenceConfig
from adherence_engine import AdherenceEngine


# ============================================================================
# STANDARD DATES
# ============================================================================

@pytest.fixture
def as_of_date() -> date:
    """Mid-year as_of_date (outside the final quarter)."""
    return date(2025, 6, 1)


@pytest.fixture
def as_of_date_str() -> str:
    """Standard as_of_date as string for CLI tests."""
    return "2025-06-01"


@pytest.fixture
def final_quarter_date() -> date:
    """As-of date inside the final quarter and the year-end window."""
    return date(2025, 11, 15)


# ============================================================================
# CONFIG / ENGINE
# ============================================================================

@pytest.fixture
def config() -> AdherenceConfig:
    return AdherenceConfig()


@pytest.fixture
def engine(config) -> AdherenceEngine:
    return AdherenceEngine(config)


# ============================================================================
# SAMPLE FILLS
# ============================================================================

def monthly_fills(start_month: int, count: int, year: int = 2025, days_supply: int = 30,
                  day: int = 1, medication_code: str = None) -> List[Dict[str, Any]]:
    """One fill on ``day`` of each month starting at start_month."""
    fills = []
    for offset in range(count):
        fill = {"fill_date": date(year, start_month + offset, day).isoformat(), "days_supply": days_supply}
        if medication_code:
            fill["medication_code"] = medication_code
        fills.append(fill)
    return fills


@pytest.fixture
def on_time_fills() -> List[Dict[str, Any]]:
    """Fills on the first of Jan-May; covered through May 31, out of supply on June 1."""
    return monthly_fills(1, 5, days_supply=31)


@pytest.fixture
def sample_population() -> List[Dict[str, Any]]:
    """Three patients: on-time single measure, lapsed new multi-measure, single fill."""
    return [
        {
            "patient_id": "P001",
            "measures": [{"measure": "MAH", "fills": monthly_fills(1, 5, days_supply=31)}],
        },
        {
            "patient_id": "P002",
            "is_first_measurement_period": True,
            "measures": [
                {"measure": "MAC", "fills": monthly_fills(1, 3)},
                {"measure": "MAD", "fills": monthly_fills(2, 4)},
            ],
        },
        {
            "patient_id": "P003",
            "measures": [{"measure": "MAD", "fills": [{"fill_date": "2025-05-10", "days_supply": 30}]}],
        },
    ]


@pytest.fixture
def population_json(tmp_path, sample_population) -> Path:
    path = tmp_path / "population.json"
    path.write_text(json.dumps(sample_population), encoding="utf-8")
    return path
