"""Input validation for recording a snapshot.

Collects every field error rather than stopping at the first, so a caller
sees the whole picture in one ValidationError.

Values carry at most MAX_FRACTIONAL_DIGITS fractional digits. Longer ones,
such as float sums or computed ratios, are rounded half-even rather than
refused; only integer-digit overflow is an error.
"""

from datetime import datetime
from decimal import ROUND_HALF_EVEN, Context, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from metricstore.errors import FieldError
from metricstore.services.dimension_hash import check_dimensions
from metricstore.services.granularity import Granularity, as_utc, matches_granularity

MAX_FRACTIONAL_DIGITS = 10
MAX_INTEGER_DIGITS = 18
MAX_STATUS_MESSAGE_LENGTH = 500

_SCALE = Decimal(1).scaleb(-MAX_FRACTIONAL_DIGITS)
# Room for a carry into a new integer digit
_ROUNDING_CONTEXT = Context(prec=MAX_INTEGER_DIGITS + MAX_FRACTIONAL_DIGITS + 1)


class CollectionStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    PARTIAL = "partial"


def to_decimal(value: Any) -> Decimal:
    """Convert a numeric input to Decimal without going through binary float rounding."""
    if isinstance(value, bool):
        raise InvalidOperation("booleans are not numeric values")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, (int, str)):
        return Decimal(value)
    raise InvalidOperation(f"unsupported value type {type(value).__name__}")


def integer_digits(number: Decimal) -> int:
    _, digits, exponent = number.as_tuple()
    return max(0, len(digits) + exponent)


def round_value(number: Decimal) -> Decimal:
    """Round a finite value to MAX_FRACTIONAL_DIGITS places with ROUND_HALF_EVEN.

    Values that already fit are returned unchanged, trailing zeros included.
    """
    if number.as_tuple().exponent >= -MAX_FRACTIONAL_DIGITS:
        return number
    return number.quantize(_SCALE, rounding=ROUND_HALF_EVEN, context=_ROUNDING_CONTEXT)


def _check_value(value: Any) -> list[FieldError]:
    try:
        number = to_decimal(value)
    except (InvalidOperation, ValueError):
        return [FieldError("value", "type", "value must be a decimal number")]

    if not number.is_finite():
        return [FieldError("value", "finite", "value must be a finite number")]

    if integer_digits(number) <= MAX_INTEGER_DIGITS:
        number = round_value(number)
    if integer_digits(number) > MAX_INTEGER_DIGITS:
        return [
            FieldError(
                "value",
                "precision",
                f"value has more than {MAX_INTEGER_DIGITS} integer digits",
            )
        ]
    return []


def _check_period(
    period_start: Any, period_end: Any, granularity: Any
) -> list[FieldError]:
    errors: list[FieldError] = []
    known_granularity = isinstance(granularity, str) and granularity in {
        g.value for g in Granularity
    }
    if not known_granularity:
        allowed = ", ".join(g.value for g in Granularity)
        errors.append(
            FieldError("granularity", "enum", f"granularity must be one of: {allowed}")
        )

    if not isinstance(period_start, datetime):
        errors.append(FieldError("period_start", "type", "period_start must be a datetime"))
    if not isinstance(period_end, datetime):
        errors.append(FieldError("period_end", "type", "period_end must be a datetime"))
    if not isinstance(period_start, datetime) or not isinstance(period_end, datetime):
        return errors

    start, end = as_utc(period_start), as_utc(period_end)
    if start >= end:
        errors.append(
            FieldError(
                "period_end",
                "after_period_start",
                "period_end must be strictly after period_start",
            )
        )
        return errors

    if known_granularity and not matches_granularity(granularity, start, end):
        errors.append(
            FieldError(
                "granularity",
                "width_mismatch",
                f"period [{start.isoformat()}, {end.isoformat()}) is not one {granularity} wide",
            )
        )
    return errors


def validate_snapshot_input(
    *,
    period_start: Any,
    period_end: Any,
    granularity: Any,
    dimensions: Any,
    value: Any,
    collection_status: Any,
    duration_ms: Any,
    status_message: Any = None,
    definition_version: Any = None,
) -> list[FieldError]:
    """Return all field errors for a record_snapshot call. Empty means valid."""
    if isinstance(granularity, Granularity):
        granularity = granularity.value
    if isinstance(collection_status, CollectionStatus):
        collection_status = collection_status.value

    errors = _check_period(period_start, period_end, granularity)
    errors.extend(check_dimensions(dimensions))
    errors.extend(_check_value(value))

    statuses = {s.value for s in CollectionStatus}
    if not isinstance(collection_status, str) or collection_status not in statuses:
        errors.append(
            FieldError(
                "collection_status",
                "enum",
                f"collection_status must be one of: {', '.join(sorted(statuses))}",
            )
        )
    elif collection_status != CollectionStatus.SUCCESS.value and not status_message:
        errors.append(
            FieldError(
                "status_message",
                "required",
                f"status_message is required when collection_status is {collection_status}",
            )
        )

    if status_message is not None:
        if not isinstance(status_message, str):
            errors.append(FieldError("status_message", "type", "status_message must be text"))
        elif len(status_message) > MAX_STATUS_MESSAGE_LENGTH:
            errors.append(
                FieldError(
                    "status_message",
                    "max_length",
                    f"status_message must be at most {MAX_STATUS_MESSAGE_LENGTH} characters",
                )
            )

    if isinstance(duration_ms, bool) or not isinstance(duration_ms, int):
        errors.append(FieldError("duration_ms", "type", "duration_ms must be an integer"))
    elif duration_ms < 0:
        errors.append(FieldError("duration_ms", "non_negative", "duration_ms must be >= 0"))

    if definition_version is not None:
        if isinstance(definition_version, bool) or not isinstance(definition_version, int):
            errors.append(
                FieldError("definition_version", "type", "definition_version must be an integer")
            )
        elif definition_version < 1:
            errors.append(
                FieldError("definition_version", "positive", "definition_version must be >= 1")
            )

    return errors
