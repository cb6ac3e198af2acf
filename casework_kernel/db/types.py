"""
Annotated column types and amount helpers shared by models and services.

No floats anywhere: every amount enters the kernel through ``to_amount``,
which accepts Decimal, int or a numeric string and rejects everything else.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated, Any

from sqlalchemy import Numeric, String

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# SHA-256 hex digest
PayloadHash = Annotated[str, String(64)]

ShortCode = Annotated[str, String(50)]
Name = Annotated[str, String(200)]
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 9
ZERO = Decimal("0")


def to_amount(value: Any) -> Decimal:
    """
    Coerce ``value`` to a Decimal amount.

    Floats are refused outright; ``Decimal(0.1)`` silently carries binary
    noise into the ledger.

    Raises:
        TypeError: If ``value`` is a float, bool or otherwise non-numeric type.
        ValueError: If a string does not parse as a finite number.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Amounts must be Decimal, int or str, got {type(value).__name__}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"Not a number: {value!r}") from exc
    else:
        raise TypeError(f"Amounts must be Decimal, int or str, got {type(value).__name__}")
    if not result.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return result


def round_money(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Quantize ``value`` to the stored precision (ROUND_HALF_UP)."""
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=ROUND_HALF_UP)
