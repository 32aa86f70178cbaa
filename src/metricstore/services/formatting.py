"""Display formatting for metric values."""

from decimal import ROUND_HALF_UP, Decimal


def format_value(
    value: Decimal,
    decimal_places: int = 2,
    prefix: str | None = None,
    suffix: str | None = None,
) -> str:
    """Render ``value`` with a fixed number of decimals plus optional prefix/suffix.

    Rounds half-up on the exact decimal, e.g. ``format_value(Decimal("2.675"), 2, "R$ ")``
    gives ``"R$ 2.68"``.
    """
    places = max(0, decimal_places)
    quantum = Decimal(1).scaleb(-places)
    text = format(value.quantize(quantum, rounding=ROUND_HALF_UP), "f")
    return f"{prefix or ''}{text}{suffix or ''}"
