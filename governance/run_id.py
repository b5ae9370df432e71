"""
Deterministic Run ID Generation

Computes a stable run_id based on:
- as_of_date
- parameters_hash
- population_hash
- engine_version

Same inputs always produce the same run_id.
No timestamps, no UUIDs, no randomness.
"""

from governance.hashing import hash_canonical_json_short


def compute_run_id(
    as_of_date: str,
    parameters_hash: str,
    population_hash: str,
    engine_version: str,
    length: int = 16,
) -> str:
    """
    Compute deterministic run ID.

    Args:
        as_of_date: Calculation date (YYYY-MM-DD format)
        parameters_hash: Truncated hash of the engine configuration
        population_hash: Hash of the canonical patient population
        engine_version: Version of the adherence engine
        length: Length of returned hash (default 16)

    Returns:
        Truncated hex digest (run_id)
    """
    run_identity = {
        "as_of": as_of_date,
        "engine_version": engine_version,
        "parameters_hash": parameters_hash,
        "population_hash": population_hash,
    }
    return hash_canonical_json_short(run_identity, length=length)
