"""Stable identity digest for a dimension mapping.

Canonical form, which must stay fixed so stored hashes remain valid:

* entries sorted by key in code-point order;
* each entry rendered as ``<json key>=<tag>:<token>``, entries joined by ``;``;
* tags: ``s`` string (JSON-encoded, ASCII-escaped), ``b`` boolean
  (``true``/``false``), ``n`` number in plain decimal notation with trailing
  zeros stripped (``1``, ``1.0`` and ``1.00`` agree; ``-0`` is ``0``);
* the UTF-8 bytes of that string are hashed with SHA-256.

The empty mapping canonicalizes to the empty string, so its hash is the
SHA-256 of ``b""`` (``EMPTY_DIMENSIONS_HASH``).
"""

import hashlib
import json
import math
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from metricstore.errors import FieldError, ValidationError

EMPTY_DIMENSIONS_HASH = hashlib.sha256(b"").hexdigest()

_ENTRY_SEPARATOR = ";"


def _number_token(value: int | float) -> str:
    if isinstance(value, int):
        return str(value)
    number = Decimal(repr(value))
    if number == 0:
        return "0"
    return format(number.normalize(), "f")


def canonical_value(value: Any) -> str:
    """Return the typed canonical token for a scalar dimension value.

    Raises TypeError/ValueError for values that cannot be canonicalized;
    callers should run ``check_dimensions`` first.
    """
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "b:true" if value else "b:false"
    if isinstance(value, str):
        return "s:" + json.dumps(value)
    if isinstance(value, int):
        return "n:" + _number_token(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"non-finite number {value!r}")
        return "n:" + _number_token(value)
    raise TypeError(f"unsupported dimension value type {type(value).__name__}")


def check_dimensions(dimensions: Any, field: str = "dimensions") -> list[FieldError]:
    """Return every problem with a dimension mapping, without raising."""
    if not isinstance(dimensions, Mapping):
        return [
            FieldError(field, "type", "dimensions must be a mapping of string keys to scalar values")
        ]

    errors: list[FieldError] = []
    for key, value in dimensions.items():
        if not isinstance(key, str):
            errors.append(
                FieldError(field, "key_type", f"dimension key {key!r} must be a string")
            )
            continue
        name = f"{field}.{key}"
        if not key:
            errors.append(FieldError(field, "empty_key", "dimension keys must not be empty"))
        elif isinstance(value, (Mapping, list, tuple, set, frozenset)):
            errors.append(
                FieldError(name, "nested", "nested structures are not supported as dimension values")
            )
        elif value is None:
            errors.append(FieldError(name, "null", "dimension values must not be null"))
        elif isinstance(value, float) and not math.isfinite(value):
            errors.append(FieldError(name, "non_finite", "dimension values must be finite numbers"))
        elif not isinstance(value, (str, bool, int, float)):
            errors.append(
                FieldError(
                    name,
                    "value_type",
                    f"unsupported dimension value type {type(value).__name__}; "
                    "use string, number or boolean",
                )
            )
    return errors


def canonicalize(dimensions: Mapping[str, Any]) -> str:
    """Return the canonical string form of a dimension mapping."""
    errors = check_dimensions(dimensions)
    if errors:
        raise ValidationError(errors)
    return _ENTRY_SEPARATOR.join(
        f"{json.dumps(key)}={canonical_value(dimensions[key])}"
        for key in sorted(dimensions)
    )


def hash_dimensions(dimensions: Mapping[str, Any] | None) -> str:
    """Return the SHA-256 hex digest identifying a dimension mapping.

    ``None`` is treated as the empty mapping.
    """
    canonical = canonicalize(dimensions if dimensions is not None else {})
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def matches_filter(dimensions: Mapping[str, Any], dimension_filter: Mapping[str, Any]) -> bool:
    """True when every filter key is present in ``dimensions`` with an equal value.

    Equality is type-aware: ``"1"`` does not match ``1``.
    """
    for key, wanted in dimension_filter.items():
        if key not in dimensions:
            return False
        if canonical_value(dimensions[key]) != canonical_value(wanted):
            return False
    return True
