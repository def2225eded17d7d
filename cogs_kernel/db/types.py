"""
Module: cogs_kernel.db.types
Responsibility: Annotated type aliases and conversion helpers for quantity and
    cost columns.  Centralizes precision so every model and service uses the
    same column definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    CRITICAL: No floats for quantities or costs.  to_decimal() converts floats
    through their shortest repr so 2.5 becomes Decimal("2.5"), never the
    binary expansion.

Failure modes:
    - TypeError when a value is not numeric.
    - decimal.InvalidOperation on malformed numeric strings.
"""

from decimal import Decimal
from typing import Annotated, Any

from sqlalchemy import BigInteger, Numeric, String

# Quantities and costs: 38 digits total, 9 decimal places
Quantity = Annotated[Decimal, Numeric(38, 9)]
Money = Annotated[Decimal, Numeric(38, 9)]

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for descriptions
LongText = Annotated[str, String(4000)]

QUANTITY_DECIMAL_PLACES = 9


def to_decimal(value: Any) -> Decimal:
    """
    Convert a numeric input to Decimal.

    Preconditions: value is Decimal, int, float or a numeric string.
    Postconditions: Returns a Decimal.  Booleans are rejected.

    Raises:
        TypeError: If value is not a supported numeric type.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Boolean is not a valid quantity or cost")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, str):
        return Decimal(value.strip())
    raise TypeError(f"Cannot convert {type(value).__name__} to Decimal")


def to_optional_decimal(value: Any) -> Decimal | None:
    """Convert to Decimal, passing None through."""
    if value is None:
        return None
    return to_decimal(value)
