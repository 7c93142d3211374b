"""
Module: billing_kernel.db.types
Responsibility: Annotated column aliases and the money helpers every model
    and service uses, so precision and rounding are defined in one place.
Architecture position: Kernel > DB.  May be imported by any layer.

Invariants enforced:
    - Monetary amounts carry MONEY_DECIMAL_PLACES (2) decimal places.
    - round_money() is the only sanctioned rounding function for amounts.
    - No floats anywhere: amounts are Decimal end to end.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated
from uuid import uuid4

from sqlalchemy import LargeBinary, Numeric

# Monetary amount, 2 decimal places
Money = Annotated[Decimal, Numeric(18, 2)]

# Ownership percentage (e.g. 33.3333)
Percent = Annotated[Decimal, Numeric(9, 4)]

# Opaque optimistic-concurrency token
VersionToken = Annotated[bytes, LargeBinary(16)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    """
    Coerce an int, str or Decimal into a two-place Decimal.

    Floats are refused; they cannot represent amounts exactly.
    """
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats")
    return round_money(Decimal(value))


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given decimal places (half-up by default).

    This is the only rounding function used for amounts.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def new_version_token(current: bytes | None = None) -> bytes:
    """Generate a fresh optimistic-concurrency token (16 random bytes)."""
    return uuid4().bytes
