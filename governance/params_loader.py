"""
Parameters Archive Loader

Loads adherence engine parameters from versioned archive files.
Computes parameters_hash for audit trail.

Fail-closed: missing or invalid params file stops the run.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple, Union

from governance.hashing import hash_canonical_json_short

logger = logging.getLogger(__name__)

# Default params archive directory (relative to repo root)
DEFAULT_PARAMS_DIR = "params_archive"

MAX_PARAMS_FILE_BYTES = 1024 * 1024


class ParamsLoadError(Exception):
    """Error loading parameters from archive."""
    pass


def get_params_path(
    params_version: str,
    params_dir: Optional[Union[str, Path]] = None,
) -> Path:
    """
    Get path to parameters file for a version.

    Args:
        params_version: Version string (e.g., "adherence_v1")
        params_dir: Optional override for params directory

    Returns:
        Path to params file
    """
    if params_dir is None:
        params_dir = Path(__file__).parent.parent / DEFAULT_PARAMS_DIR
    return Path(params_dir) / f"{params_version}.json"


def load_params(
    params_version: str,
    params_dir: Optional[Union[str, Path]] = None,
) -> Tuple[Dict[str, Any], str]:
    """
    Load parameters from archive.

    Args:
        params_version: Version string (e.g., "adherence_v1")
        params_dir: Optional override for params directory

    Returns:
        Tuple of (params_dict, parameters_hash)

    Raises:
        ParamsLoadError: If params file missing or invalid
    """
    params_path = get_params_path(params_version, params_dir)

    if not params_path.exists():
        raise ParamsLoadError(
            f"Parameters file not found: {params_path}. "
            f"Create {params_path} with engine parameters for version '{params_version}'."
        )

    if params_path.is_symlink():
        raise ParamsLoadError(
            f"Parameters file is a symbolic link (security risk): {params_path}"
        )

    if params_path.stat().st_size > MAX_PARAMS_FILE_BYTES:
        raise ParamsLoadError(f"Parameters file too large: {params_path}")

    try:
        with open(params_path, 'r', encoding='utf-8') as f:
            params = json.load(f)
    except json.JSONDecodeError as e:
        raise ParamsLoadError(f"Invalid JSON in {params_path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ParamsLoadError(f"Invalid encoding in {params_path}: {e}") from e
    except OSError as e:
        raise ParamsLoadError(f"Error reading {params_path}: {e}") from e

    if not isinstance(params, dict):
        raise ParamsLoadError(f"Parameters must be a JSON object, got {type(params).__name__}")

    params_hash = compute_parameters_hash(params)
    logger.debug(f"Loaded parameters {params_version} from {params_path} (hash: {params_hash})")
    return params, params_hash


def compute_parameters_hash(params: Dict[str, Any], length: int = 16) -> str:
    """Truncated canonical hash of a parameters dict."""
    return hash_canonical_json_short(params, length=length)
