"""
Canonical Output Writer with Governance Metadata

Wraps output writing to ensure:
1. All outputs include governance metadata
2. All outputs use canonical JSON serialization
3. Output hashes are computed and returned
"""

from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from governance.canonical_json import canonical_dumps
from governance.hashing import hash_bytes, hash_file

SCHEMA_VERSION = "adherence_output_v1"
TOOL_NAME = "pdc-adherence-engine"


def inject_governance_metadata(
    data: Dict[str, Any],
    run_id: str,
    params_version: str,
    parameters_hash: str,
    engine_version: str,
    input_lineage: List[Dict[str, str]],
) -> Dict[str, Any]:
    """
    Inject governance metadata into output data.

    Args:
        data: Output data dict
        run_id: Deterministic run identifier
        params_version: Parameters archive version (e.g., "adherence_v1")
        parameters_hash: Hash of parameters
        engine_version: Adherence engine version
        input_lineage: List of input file metadata

    Returns:
        New dict with a leading ``_governance`` block
    """
    governance = {
        "generation_metadata": {
            "engine_version": engine_version,
            "tool_name": TOOL_NAME,
        },
        "input_lineage": sorted(input_lineage, key=lambda x: x.get("path", "")),
        "parameters_hash": parameters_hash,
        "params_version": params_version,
        "run_id": run_id,
        "schema_version": SCHEMA_VERSION,
    }

    result: Dict[str, Any] = {"_governance": governance}
    result.update(data)
    return result


def write_canonical_output(
    data: Dict[str, Any],
    output_path: Union[str, Path],
    run_id: str,
    params_version: str,
    parameters_hash: str,
    engine_version: str,
    input_lineage: List[Dict[str, str]],
) -> Dict[str, str]:
    """
    Write output with governance metadata and canonical formatting.

    Returns:
        Dict with path and sha256 hash of written file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    enriched = inject_governance_metadata(
        data=data,
        run_id=run_id,
        params_version=params_version,
        parameters_hash=parameters_hash,
        engine_version=engine_version,
        input_lineage=input_lineage,
    )
    content = canonical_dumps(enriched)

    with open(output_path, 'w', encoding='utf-8') as f:
        f.write(content)

    return {
        "path": str(output_path),
        "sha256": hash_bytes(content.encode('utf-8')),
    }


def build_input_lineage(
    input_files: List[Union[str, Path]],
    as_of_date: str,
) -> List[Dict[str, str]]:
    """Build sorted lineage records for the input files that exist."""
    lineage = []
    for path in input_files:
        path = Path(path)
        if path.exists():
            lineage.append({
                "as_of_date": as_of_date,
                "path": path.name,
                "sha256": hash_file(path),
            })
    return sorted(lineage, key=lambda x: x["path"])
