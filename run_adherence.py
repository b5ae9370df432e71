#!/usr/bin/env python3
"""
run_adherence.py - Deterministic PDC adherence batch run

Loads a patient population, runs the adherence engine for every patient and
tracked measure, and writes a canonical JSON report with governance metadata.

DETERMINISM GUARANTEES:
- as_of_date is REQUIRED (no today() defaults)
- Parameters come from a versioned archive and are hashed into the run_id
- Stable patient ordering and canonical serialization on all outputs

Usage:
    python run_adherence.py --as-of-date 2025-11-01 --input fills_2025.csv --output adherence.json
    python run_adherence.py --as-of-date 2025-11-01 --input population.json --dry-run

Exit codes:
    0  success
    1  input error (missing/unreadable population, failed pre-flight)
    2  configuration error (missing/invalid params archive or overrides)
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from adherence_config import DEFAULT_PARAMS_VERSION, load_adherence_config
from adherence_engine import AdherenceEngine
from batch_orchestrator import BatchOrchestrator
from common.date_utils import to_date_string, validate_as_of_date
from common.input_validation import ConfigurationError, validate_population
from common.logging_config import LogContext, setup_logging
from governance.hashing import hash_canonical_json_short
from governance.output_writer import build_input_lineage, write_canonical_output
from governance.run_id import compute_run_id
from population_loader import PopulationLoadError, load_population

__version__ = "1.0.0"

logger = logging.getLogger(__name__)


def run_adherence_batch(
    as_of_date: str,
    input_path: Path,
    output_path: Optional[Path] = None,
    params_version: str = DEFAULT_PARAMS_VERSION,
    params_dir: Optional[Path] = None,
    measurement_year: Optional[int] = None,
    max_workers: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Run the full batch and optionally write the report.

    Returns:
        Report dict (batch summary plus run_id and parameters)

    Raises:
        ConfigurationError: Invalid parameters archive or overrides
        PopulationLoadError: Unreadable population
        ValueError: Invalid as_of_date
    """
    as_of = validate_as_of_date(as_of_date)
    overrides: Dict[str, Any] = {}
    if measurement_year is not None:
        overrides["measurement_year"] = measurement_year
    if max_workers is not None:
        overrides["max_workers"] = max_workers

    config, parameters_hash = load_adherence_config(params_version, params_dir, **overrides)
    population = load_population(input_path)
    population_hash = hash_canonical_json_short(population)

    run_id = compute_run_id(
        as_of_date=as_of.isoformat(),
        parameters_hash=parameters_hash,
        population_hash=population_hash,
        engine_version=AdherenceEngine.VERSION,
    )

    with LogContext(run_id):
        logger.info(f"Run {run_id}: {len(population)} patients as of {as_of.isoformat()}")
        orchestrator = BatchOrchestrator(AdherenceEngine(config))
        summary = orchestrator.run(population, as_of)

        report: Dict[str, Any] = dict(summary)
        report["run_id"] = run_id
        report["population_hash"] = population_hash
        report["parameters"] = config.to_dict()

        if output_path is not None:
            written = write_canonical_output(
                data=report,
                output_path=output_path,
                run_id=run_id,
                params_version=params_version,
                parameters_hash=parameters_hash,
                engine_version=AdherenceEngine.VERSION,
                input_lineage=build_input_lineage([input_path], as_of.isoformat()),
            )
            logger.info(f"Wrote {written['path']} (sha256 {written['sha256'][:16]})")

    return report


def dry_run(input_path: Path, params_version: str, params_dir: Optional[Path]) -> int:
    """Validate params and population without calculating."""
    config, parameters_hash = load_adherence_config(params_version, params_dir)
    population = load_population(input_path)
    validation = validate_population(population)

    logger.info("=" * 60)
    logger.info("DRY-RUN VALIDATION RESULTS")
    logger.info("=" * 60)
    logger.info(f"Params version:   {params_version} ({parameters_hash})")
    logger.info(f"Population hash:  {hash_canonical_json_short(population)}")
    for line in validation.summary().splitlines():
        logger.info(line)
    logger.info("=" * 60)
    return 0 if validation.passed else 1


def _log_summary(report: Dict[str, Any]) -> None:
    logger.info("=" * 60)
    logger.info(f"ADHERENCE SUMMARY ({report['as_of_date']})")
    logger.info("=" * 60)
    logger.info(f"Patients:        {report['total_patients']}")
    logger.info(f"Succeeded:       {report['success_count']}")
    logger.info(f"Failed:          {report['error_count']}")
    for tier, count in report["tier_distribution"].items():
        if count:
            logger.info(f"  {tier:<18} {count}")
    logger.info(f"Content hash:    {report['content_hash']}")
    logger.info("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="PDC medication adherence batch calculation (deterministic)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_adherence.py --as-of-date 2025-11-01 --input fills_2025.csv --output adherence.json
  python run_adherence.py --as-of-date 2025-11-01 --input population.json --dry-run
  python run_adherence.py --as-of-date 2026-01-15 --input fills.csv --output out.json --measurement-year 2025
        """,
    )
    parser.add_argument(
        "--as-of-date",
        required=True,
        help="Calculation date (YYYY-MM-DD). REQUIRED - no defaults to prevent nondeterminism.",
    )
    parser.add_argument(
        "--input",
        type=Path,
        required=True,
        help="Population JSON or flat fill export CSV",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output JSON file path (not required for --dry-run)",
    )
    parser.add_argument(
        "--params-version",
        default=DEFAULT_PARAMS_VERSION,
        help=f"Parameters archive version (default: {DEFAULT_PARAMS_VERSION})",
    )
    parser.add_argument(
        "--params-dir",
        type=Path,
        default=None,
        help="Parameters archive directory (default: ./params_archive)",
    )
    parser.add_argument(
        "--measurement-year",
        type=int,
        default=None,
        help="Measurement year (default: the as-of date's year)",
    )
    parser.add_argument("--max-workers", type=int, default=None, help="Worker threads")
    parser.add_argument("--log-file", type=Path, default=None, help="Rotating log file")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate params and population, print hashes and exit.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args(argv)

    if not args.dry_run and args.output is None:
        parser.error("--output is required unless --dry-run is specified")

    setup_logging(log_file=args.log_file)

    try:
        if args.dry_run:
            validate_as_of_date(args.as_of_date)
            return dry_run(args.input, args.params_version, args.params_dir)

        report = run_adherence_batch(
            as_of_date=to_date_string(validate_as_of_date(args.as_of_date)),
            input_path=args.input,
            output_path=args.output,
            params_version=args.params_version,
            params_dir=args.params_dir,
            measurement_year=args.measurement_year,
            max_workers=args.max_workers,
        )
        _log_summary(report)
        return 0

    except ConfigurationError as e:
        logger.error(f"CONFIGURATION ERROR: {e}")
        return 2
    except (ValueError, PopulationLoadError) as e:
        logger.error(f"INPUT ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
