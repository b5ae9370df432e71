#!/usr/bin/env python3
"""
Tests for run_adherence.py (batch entry point)

Tests:
- End-to-end batch run with governance metadata
- Deterministic run_id and output bytes
- Exit codes: 0 success, 1 input error, 2 configuration error
- Dry-run validation
"""

import json
import logging

import pytest

from run_adherence import main, run_adherence_batch


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestRunAdherenceBatch:
    """Tests for run_adherence_batch()."""

    def test_report(self, population_json, as_of_date_str):
        report = run_adherence_batch(as_of_date_str, population_json)

        assert report["success_count"] == 2
        assert report["error_count"] == 1
        assert len(report["run_id"]) == 16
        assert report["parameters"]["pdc_target"] == "80"
        assert report["population_hash"]

    def test_run_id_deterministic(self, population_json, as_of_date_str):
        a = run_adherence_batch(as_of_date_str, population_json)
        b = run_adherence_batch(as_of_date_str, population_json)
        assert a["run_id"] == b["run_id"]
        assert a["content_hash"] == b["content_hash"]

    def test_measurement_year_changes_run_id(self, population_json, as_of_date_str):
        a = run_adherence_batch(as_of_date_str, population_json)
        b = run_adherence_batch(as_of_date_str, population_json, measurement_year=2024)
        assert a["run_id"] != b["run_id"]
        assert b["success_count"] == 0

    def test_writes_canonical_output(self, population_json, as_of_date_str, tmp_path):
        output = tmp_path / "out" / "adherence.json"
        report = run_adherence_batch(as_of_date_str, population_json, output_path=output)

        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["_governance"]["run_id"] == report["run_id"]
        assert data["_governance"]["input_lineage"][0]["path"] == "population.json"
        p001 = data["per_patient_results"][0]
        assert p001["measures"][0]["adherence"]["pdc"] == "41.37"


class TestMain:
    """Tests for the CLI exit codes."""

    def test_success(self, population_json, as_of_date_str, tmp_path):
        output = tmp_path / "adherence.json"
        code = main(["--as-of-date", as_of_date_str, "--input", str(population_json), "--output", str(output)])
        assert code == 0
        assert output.exists()

    def test_byte_identical_reruns(self, population_json, as_of_date_str, tmp_path):
        first, second = tmp_path / "a.json", tmp_path / "b.json"
        for output in (first, second):
            main(["--as-of-date", as_of_date_str, "--input", str(population_json), "--output", str(output)])
        first_data = json.loads(first.read_text(encoding="utf-8"))
        second_data = json.loads(second.read_text(encoding="utf-8"))
        first_data.pop("duration_ms")
        second_data.pop("duration_ms")
        assert first_data == second_data

    def test_missing_input(self, as_of_date_str, tmp_path):
        code = main([
            "--as-of-date", as_of_date_str,
            "--input", str(tmp_path / "missing.json"),
            "--output", str(tmp_path / "out.json"),
        ])
        assert code == 1

    def test_invalid_as_of_date(self, population_json, tmp_path):
        code = main(["--as-of-date", "June 1", "--input", str(population_json), "--output", str(tmp_path / "o.json")])
        assert code == 1

    def test_missing_params_version(self, population_json, as_of_date_str, tmp_path):
        code = main([
            "--as-of-date", as_of_date_str,
            "--input", str(population_json),
            "--output", str(tmp_path / "out.json"),
            "--params-version", "adherence_v99",
        ])
        assert code == 2

    def test_invalid_override(self, population_json, as_of_date_str, tmp_path):
        code = main([
            "--as-of-date", as_of_date_str,
            "--input", str(population_json),
            "--output", str(tmp_path / "out.json"),
            "--max-workers", "0",
        ])
        assert code == 2

    def test_output_required_without_dry_run(self, population_json, as_of_date_str):
        with pytest.raises(SystemExit):
            main(["--as-of-date", as_of_date_str, "--input", str(population_json)])

    def test_log_file(self, population_json, as_of_date_str, tmp_path):
        log_file = tmp_path / "run.log"
        main([
            "--as-of-date", as_of_date_str,
            "--input", str(population_json),
            "--output", str(tmp_path / "out.json"),
            "--log-file", str(log_file),
        ])
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "ADHERENCE SUMMARY" in log_file.read_text(encoding="utf-8")


class TestDryRun:
    def test_valid_population(self, population_json, as_of_date_str):
        assert main(["--as-of-date", as_of_date_str, "--input", str(population_json), "--dry-run"]) == 0

    def test_duplicate_patients(self, tmp_path, sample_population, as_of_date_str):
        path = tmp_path / "dupes.json"
        path.write_text(json.dumps(sample_population + sample_population[:1]), encoding="utf-8")
        assert main(["--as-of-date", as_of_date_str, "--input", str(path), "--dry-run"]) == 1

    def test_missing_params(self, population_json, as_of_date_str):
        code = main([
            "--as-of-date", as_of_date_str, "--input", str(population_json),
            "--dry-run", "--params-version", "nope",
        ])
        assert code == 2
