#!/usr/bin/env python3
"""
Unit tests for population_loader.py

Tests:
- Population JSON (list and {"patients": [...]} shapes)
- Flat fill export CSV grouping, ordering and optional columns
- Load errors
"""

import json
from datetime import date

import pytest

from population_loader import (
    PopulationLoadError,
    load_fill_export_csv,
    load_population,
    load_population_json,
)

CSV_HEADER = "patient_id,measure,fill_date,days_supply,medication_code,refills_remaining,is_first_measurement_period\n"


@pytest.fixture
def fill_export(tmp_path):
    path = tmp_path / "fills.csv"
    path.write_text(
        CSV_HEADER
        + "P002,mad,2025-02-01,30,METFORMIN,,yes\n"
        + "P001,MAH,2025-02-01,30,LISINOPRIL,2.0,\n"
        + "P001,MAH,2025-01-01,30,LISINOPRIL,,\n"
        + "P001,MAC,2025-01-05,90,,,\n"
        + ",MAH,2025-01-01,30,,,\n"
        + "P002,MAD,2025-03-01,,METFORMIN,,\n",
        encoding="utf-8",
    )
    return path


class TestLoadPopulationJson:
    def test_list(self, population_json):
        population = load_population_json(population_json)
        assert [p["patient_id"] for p in population] == ["P001", "P002", "P003"]

    def test_patients_wrapper(self, tmp_path, sample_population):
        path = tmp_path / "wrapped.json"
        path.write_text(json.dumps({"patients": sample_population}), encoding="utf-8")
        assert len(load_population_json(path)) == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(PopulationLoadError, match="not found"):
            load_population_json(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("[{", encoding="utf-8")
        with pytest.raises(PopulationLoadError):
            load_population_json(path)

    def test_wrong_shape(self, tmp_path):
        path = tmp_path / "shape.json"
        path.write_text(json.dumps({"rows": []}), encoding="utf-8")
        with pytest.raises(PopulationLoadError):
            load_population_json(path)


class TestLoadFillExportCsv:
    """Tests for load_fill_export_csv()."""

    def test_grouped_by_patient_and_measure(self, fill_export):
        population = load_fill_export_csv(fill_export)

        assert [p["patient_id"] for p in population] == ["P001", "P002"]
        p001 = population[0]
        assert [m["measure"] for m in p001["measures"]] == ["MAC", "MAH"]
        mah = p001["measures"][1]
        assert [f["fill_date"] for f in mah["fills"]] == ["2025-01-01", "2025-02-01"]
        assert mah["fills"][0]["medication_code"] == "LISINOPRIL"
        assert mah["refills_remaining"] == 2
        assert "medication_code" not in p001["measures"][0]["fills"][0]

    def test_measure_codes_normalized(self, fill_export):
        p002 = load_fill_export_csv(fill_export)[1]
        assert [m["measure"] for m in p002["measures"]] == ["MAD"]
        assert len(p002["measures"][0]["fills"]) == 2

    def test_missing_days_supply_left_for_engine(self, fill_export):
        p002 = load_fill_export_csv(fill_export)[1]
        assert p002["measures"][0]["fills"][1]["days_supply"] is None

    def test_first_period_flag(self, fill_export):
        population = load_fill_export_csv(fill_export)
        assert population[0]["is_first_measurement_period"] is False
        assert population[1]["is_first_measurement_period"] is True

    def test_required_columns_only(self, tmp_path):
        path = tmp_path / "minimal.csv"
        path.write_text("patient_id,measure,fill_date,days_supply\nP1,MAH,2025-01-01,30\n", encoding="utf-8")
        population = load_fill_export_csv(path)
        assert population[0]["measures"][0]["fills"] == [{"fill_date": "2025-01-01", "days_supply": "30"}]
        assert "refills_remaining" not in population[0]["measures"][0]

    def test_missing_required_column(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("patient_id,fill_date\nP1,2025-01-01\n", encoding="utf-8")
        with pytest.raises(PopulationLoadError, match="missing required columns"):
            load_fill_export_csv(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("", encoding="utf-8")
        with pytest.raises(PopulationLoadError):
            load_fill_export_csv(path)

    def test_deterministic(self, fill_export):
        assert load_fill_export_csv(fill_export) == load_fill_export_csv(fill_export)


class TestLoadPopulation:
    def test_dispatch_json(self, population_json):
        assert len(load_population(population_json)) == 3

    def test_dispatch_csv(self, fill_export):
        assert len(load_population(fill_export)) == 2

    def test_unsupported_suffix(self, tmp_path):
        with pytest.raises(PopulationLoadError, match="Unsupported"):
            load_population(tmp_path / "population.xlsx")

    def test_csv_population_runs_through_engine(self, fill_export, engine):
        result = engine.calculate_patient(load_population(fill_export)[0], date(2025, 6, 1))
        by_measure = {m["measure"]: m["reason_code"] for m in result["measures"]}
        assert by_measure == {"MAC": "INSUFFICIENT_DATA", "MAH": "SUCCESS"}
