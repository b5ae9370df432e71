#!/usr/bin/env python3
"""
population_loader.py - Load patient populations for batch adherence runs

Two input shapes are supported:

1. Population JSON: a list of PatientRecord dicts, or {"patients": [...]}
2. Flat fill export CSV (one row per pharmacy fill):
       patient_id, measure, fill_date, days_supply
       [, medication_code, refills_remaining, is_first_measurement_period]
   Rows are grouped into one PatientRecord per patient_id with one
   MeasureRecord per measure, ordered by patient_id then measure.

Values are passed through as strings where the engine already validates them,
so bad dates or negative refills surface as per-patient INVALID_INPUT results
rather than aborting the load.

Usage:
    from population_loader import load_population
    population = load_population(Path("fills_2025.csv"))
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("patient_id", "measure", "fill_date", "days_supply")
OPTIONAL_COLUMNS = ("medication_code", "refills_remaining", "is_first_measurement_period")

_TRUE_STRINGS = frozenset({"1", "true", "t", "yes", "y"})


class PopulationLoadError(Exception):
    """Input population file is missing or structurally unusable."""
    pass


def _clean(value: Any) -> Optional[Any]:
    """NaN/empty -> None, strings stripped."""
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _to_int_or_raw(value: Any) -> Optional[Any]:
    """Integral text ("2", "2.0") -> int; anything else passes through for validation."""
    value = _clean(value)
    if value is None:
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return value
    if number.is_finite() and number == number.to_integral_value():
        return int(number)
    return value


def _to_bool(value: Any) -> bool:
    value = _clean(value)
    if value is None:
        return False
    return str(value).lower() in _TRUE_STRINGS


def load_population_json(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    Load a population JSON file.

    Raises:
        PopulationLoadError: Missing file, invalid JSON, or wrong shape.
    """
    path = Path(path)
    if not path.exists():
        raise PopulationLoadError(f"Population file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise PopulationLoadError(f"Invalid JSON in {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("patients")
    if not isinstance(data, list) or not all(isinstance(p, dict) for p in data):
        raise PopulationLoadError(
            f"{path} must contain a list of patient objects or {{\"patients\": [...]}}"
        )
    logger.info(f"Loaded {len(data)} patients from {path.name}")
    return data


def load_fill_export_csv(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    Load a flat fill export and group it into patient records.

    Raises:
        PopulationLoadError: Missing file or required columns.
    """
    path = Path(path)
    if not path.exists():
        raise PopulationLoadError(f"Fill export not found: {path}")

    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=True)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise PopulationLoadError(f"Could not parse {path}: {e}") from e

    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise PopulationLoadError(f"{path.name} is missing required columns: {missing}")
    for column in OPTIONAL_COLUMNS:
        if column not in df.columns:
            df[column] = None

    df["patient_id"] = df["patient_id"].str.strip()
    df["measure"] = df["measure"].str.strip().str.upper()
    blank_ids = df["patient_id"].isna() | (df["patient_id"] == "")
    if blank_ids.any():
        logger.warning(f"Dropping {int(blank_ids.sum())} fill row(s) with no patient_id")
        df = df[~blank_ids]

    # Stable ordering so reloads produce identical populations
    df = df.sort_values(["patient_id", "measure", "fill_date"], kind="mergesort", na_position="last")

    population: List[Dict[str, Any]] = []
    for patient_id, patient_df in df.groupby("patient_id", sort=True):
        measures = []
        for measure, measure_df in patient_df.groupby("measure", sort=True, dropna=False):
            rows = measure_df.to_dict("records")
            fills = []
            for row in rows:
                fill = {
                    "fill_date": _clean(row["fill_date"]),
                    "days_supply": _clean(row["days_supply"]),
                }
                code = _clean(row.get("medication_code"))
                if code is not None:
                    fill["medication_code"] = code
                fills.append(fill)

            refills = next(
                (_to_int_or_raw(r["refills_remaining"]) for r in rows
                 if _clean(r.get("refills_remaining")) is not None),
                None,
            )
            record: Dict[str, Any] = {"measure": _clean(measure), "fills": fills}
            if refills is not None:
                record["refills_remaining"] = refills
            measures.append(record)

        population.append({
            "patient_id": patient_id,
            "measures": measures,
            "is_first_measurement_period": any(
                _to_bool(v) for v in patient_df["is_first_measurement_period"]
            ),
        })

    logger.info(f"Loaded {len(df)} fills for {len(population)} patients from {path.name}")
    return population


def load_population(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Load a population by file extension (.json or .csv)."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".json":
        return load_population_json(path)
    if suffix == ".csv":
        return load_fill_export_csv(path)
    raise PopulationLoadError(f"Unsupported population file type: {path.suffix or '(none)'}")
