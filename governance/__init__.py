"""
Governance Module - Audit, Lineage, and Deterministic Output

Provides:
- Canonical JSON serialization for byte-identical outputs
- SHA256 hashing for files and JSON objects
- Deterministic run_id generation
- Parameters archive loading
- Canonical output writing with governance metadata

All operations are deterministic: same inputs produce identical outputs.
No timestamps, no UUIDs, no network calls.
"""

from governance.hashing import (
    hash_file,
    hash_bytes,
    hash_canonical_json,
    hash_canonical_json_short,
)
from governance.canonical_json import canonical_dumps
from governance.run_id import compute_run_id
from governance.params_loader import (
    load_params,
    compute_parameters_hash,
    ParamsLoadError,
)
from governance.output_writer import (
    inject_governance_metadata,
    write_canonical_output,
    build_input_lineage,
)

__all__ = [
    # Hashing
    "hash_file",
    "hash_bytes",
    "hash_canonical_json",
    "hash_canonical_json_short",
    # Canonical JSON
    "canonical_dumps",
    # Run ID
    "compute_run_id",
    # Params
    "load_params",
    "compute_parameters_hash",
    "ParamsLoadError",
    # Output
    "inject_governance_metadata",
    "write_canonical_output",
    "build_input_lineage",
]
