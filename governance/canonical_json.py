"""
Canonical JSON Serialization

Produces byte-identical JSON output for identical input data structures.

Rules:
1. All dict keys sorted recursively
2. Decimals serialized as their exact string form ("85.71")
3. Infinite Decimals serialized as "Infinity" / "-Infinity"; NaN is forbidden
4. Floats converted to stable fixed-precision representation; NaN/Inf forbidden
5. Dates serialized as ISO strings, Enums as their value, dataclasses as dicts
6. Lists are NOT reordered (caller must sort semantic lists)
7. Output ends with trailing newline
"""

import dataclasses
import json
import math
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class CanonicalJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that produces deterministic, canonical output.

    - Sorts dict keys
    - Keeps Decimals exact by emitting strings
    - Rejects NaN
    """

    # Maximum decimal places for float formatting
    FLOAT_PRECISION = 10

    def encode(self, o: Any) -> str:
        """Override to ensure top-level sorting."""
        return super().encode(self._canonicalize(o))

    def _canonicalize(self, obj: Any) -> Any:
        """Recursively canonicalize data structures."""
        if isinstance(obj, dict):
            return {str(self._canonicalize_key(k)): self._canonicalize(v)
                    for k, v in sorted(obj.items(), key=lambda kv: str(self._canonicalize_key(kv[0])))}
        elif isinstance(obj, (list, tuple)):
            # Do NOT sort lists - caller must handle semantic ordering
            return [self._canonicalize(item) for item in obj]
        elif isinstance(obj, Enum):
            return self._canonicalize(obj.value)
        elif isinstance(obj, bool) or obj is None:
            return obj
        elif isinstance(obj, float):
            return self._format_float(obj)
        elif isinstance(obj, Decimal):
            return self._format_decimal(obj)
        elif isinstance(obj, date):
            return obj.isoformat()
        elif dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return self._canonicalize(dataclasses.asdict(obj))
        return obj

    @staticmethod
    def _canonicalize_key(key: Any) -> Any:
        if isinstance(key, Enum):
            return key.value
        if isinstance(key, date):
            return key.isoformat()
        return key

    def _format_float(self, value: float) -> Any:
        """Format float with stable representation."""
        if math.isnan(value):
            raise ValueError("NaN values are not allowed in canonical JSON")
        if math.isinf(value):
            raise ValueError("Infinity values are not allowed in canonical JSON")

        if value == 0.0:
            return 0

        if value == int(value) and abs(value) < 2**53:
            return int(value)

        formatted = f"{value:.{self.FLOAT_PRECISION}f}"
        if '.' in formatted:
            formatted = formatted.rstrip('0')
            if formatted.endswith('.'):
                formatted += '0'
        return float(formatted)

    def _format_decimal(self, value: Decimal) -> str:
        """Format Decimal as its exact string form."""
        if value.is_nan():
            raise ValueError("NaN values are not allowed in canonical JSON")
        if value.is_infinite():
            return "-Infinity" if value.is_signed() else "Infinity"
        return str(value)

    def default(self, o: Any) -> Any:
        """Handle types not natively supported by JSON."""
        canonical = self._canonicalize(o)
        if canonical is not o:
            return canonical
        raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


def canonical_dumps(
    obj: Any,
    indent: Optional[int] = 2,
    ensure_ascii: bool = False,
) -> str:
    """
    Serialize object to canonical JSON string.

    Args:
        obj: Object to serialize
        indent: Indentation level (None for compact)
        ensure_ascii: If True, escape non-ASCII characters

    Returns:
        Canonical JSON string with trailing newline

    Raises:
        ValueError: If obj contains NaN (or float Inf)
        TypeError: If obj contains non-serializable types
    """
    result = json.dumps(
        obj,
        cls=CanonicalJSONEncoder,
        indent=indent,
        sort_keys=True,
        ensure_ascii=ensure_ascii,
        separators=(',', ': ') if indent else (',', ':'),
    )
    return result + '\n'
