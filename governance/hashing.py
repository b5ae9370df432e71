"""
Cryptographic Hashing for Governance

Provides SHA256-based hashing for:
- Input files (population JSON, fill exports)
- Canonical JSON objects (results, parameters, populations)

All hashes are returned as lowercase hex strings.
"""

import hashlib
from pathlib import Path
from typing import Any, Union

from governance.canonical_json import canonical_dumps


def hash_bytes(data: bytes) -> str:
    """Compute SHA256 hash of raw bytes (64 hex characters)."""
    return hashlib.sha256(data).hexdigest()


def hash_file(path: Union[str, Path]) -> str:
    """
    Compute SHA256 hash of file contents.

    Raises:
        FileNotFoundError: If file does not exist
    """
    return hash_bytes(Path(path).read_bytes())


def hash_canonical_json(obj: Any) -> str:
    """
    Compute SHA256 hash of the compact canonical JSON representation.

    Raises:
        ValueError: If obj contains NaN
        TypeError: If obj contains non-serializable types
    """
    canonical = canonical_dumps(obj, indent=None)
    return hash_bytes(canonical.encode('utf-8'))


def hash_canonical_json_short(obj: Any, length: int = 16) -> str:
    """
    Compute truncated SHA256 hash of canonical JSON representation.

    Args:
        obj: Object to serialize and hash
        length: Number of hex characters to return (max 64)

    Returns:
        Truncated lowercase hex digest
    """
    return hash_canonical_json(obj)[:length]
