"""
Module: apurement_kernel.db.types
Responsibility: Precision constants and utility functions for quantity
    columns.  Centralizes precision, rounding, tolerance and numeric parsing
    so that every model, service and selector uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Quantities are Decimal with three decimal places (tonnes).
    - round_quantity() is the ONLY sanctioned rounding function for derived
      quantities; it rounds half away from zero (ROUND_HALF_UP on Decimal).
    - QUANTITY_TOLERANCE (0.0001) is the only epsilon used when comparing a
      consumed total against an SA quota.
    - No floats: parse_quantity() converts every accepted input to Decimal
      through its string form.

Failure modes:
    - InvalidQuantityError from parse_quantity() on non-numeric, NaN,
      infinite, non-positive or out-of-range input; from round_quantity() on
      a value with more digits than the decimal context can quantize.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from uuid import UUID

from apurement_kernel.exceptions import InvalidQuantityError


QUANTITY_DECIMAL_PLACES = 3
QUANTITY_TOLERANCE = Decimal("0.0001")
DEFAULT_ROUNDING = ROUND_HALF_UP

# Numeric(18, 3) leaves 15 integer digits
MAX_QUANTITY = Decimal(10) ** 15

ZERO = Decimal("0")


def round_quantity(
    value: Decimal,
    decimal_places: int = QUANTITY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a derived quantity to the ledger precision.

    Applied once per derived value; stored values are never re-rounded on
    read.

    Args:
        value: Decimal to round.
        decimal_places: Number of decimal places (default 3).
        rounding: Decimal rounding mode (default ROUND_HALF_UP).

    Returns:
        Rounded Decimal.

    Raises:
        InvalidQuantityError: If the value has too many digits to be held
            at that precision.
    """
    quantizer = Decimal(10) ** -decimal_places
    try:
        return value.quantize(quantizer, rounding=rounding)
    except InvalidOperation:
        raise InvalidQuantityError(value) from None


def to_decimal(value: object) -> Decimal:
    """
    Convert a stored or user-supplied numeric value to Decimal.

    None maps to zero.  Floats go through ``str()`` so that ``0.1`` becomes
    ``Decimal("0.1")`` and not its binary expansion.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def parse_quantity(value: object, field: str = "quantity") -> Decimal:
    """
    Parse a quantity that must be a finite number strictly greater than zero.

    Args:
        value: Decimal, int, float or numeric string.
        field: Field name used in the error message.

    Returns:
        The value as a Decimal (not rounded).

    Raises:
        InvalidQuantityError: If the value is missing, non-numeric, NaN,
            infinite, <= 0, or too large for a Numeric(18, 3) column.
    """
    if value is None or isinstance(value, bool):
        raise InvalidQuantityError(value, field)
    try:
        result = to_decimal(value.strip() if isinstance(value, str) else value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidQuantityError(value, field) from None
    if not result.is_finite() or result <= ZERO or result >= MAX_QUANTITY:
        raise InvalidQuantityError(value, field)
    return result


def as_uuid(value: object) -> UUID | None:
    """
    Coerce an identifier to UUID.

    Returns None for values that cannot name a row (None, malformed
    strings), so that lookups report NOT_FOUND rather than crash.
    """
    if isinstance(value, UUID):
        return value
    if value is None:
        return None
    try:
        return UUID(str(value).strip())
    except ValueError:
        return None
