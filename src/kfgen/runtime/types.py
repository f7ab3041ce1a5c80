"""Numeric and JSON helpers shared by generated models and the runtime.

Provider numbers may carry arbitrary precision, so generated models type
them as :data:`Number` (a :class:`decimal.Decimal`) and everything that
crosses a process boundary goes through :func:`dumps_wire` /
:func:`loads_wire`, which never round-trip a value through ``float``
unless that is exact.
"""

from __future__ import annotations

import json
import math
from decimal import Decimal
from typing import Annotated, Any, Union

from pydantic import PlainSerializer

JSONNumber = Union[int, float, str]

# Integers beyond int64 do not survive the API server; they travel as strings.
_INT64_LIMIT = 2**63


def _number_to_json(value: Decimal) -> JSONNumber:
    return to_jsonable(value)


Number = Annotated[Decimal, PlainSerializer(_number_to_json, when_used="json")]
"""Lossless numeric type used by generated API models."""


def to_jsonable(value: Any) -> Any:
    """Convert *value* into plain JSON types.

    Integral decimals within the signed 64-bit range become ``int``; other
    decimals become ``float`` only when the float converts back to the same
    decimal, and are kept as strings otherwise.
    """
    if isinstance(value, Decimal):
        if not value.is_finite():
            return str(value)
        if -_INT64_LIMIT <= value < _INT64_LIMIT and value == value.to_integral_value():
            return int(value)
        as_float = float(value)
        if math.isfinite(as_float) and Decimal(repr(as_float)) == value:
            return as_float
        return str(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def dumps_wire(value: Any) -> str:
    """Serialize *value* as JSON with lossless number handling."""
    return json.dumps(to_jsonable(value), ensure_ascii=False)


def loads_wire(text: Union[str, bytes]) -> Any:
    """Parse JSON, decoding every non-integer number as :class:`Decimal`."""
    return json.loads(text, parse_float=Decimal)


def canonical_json(value: Any) -> str:
    """Key-sorted, whitespace-free JSON used for hashing."""
    return json.dumps(to_jsonable(value), sort_keys=True, separators=(",", ":"))
