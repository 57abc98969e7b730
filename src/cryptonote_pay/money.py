"""Fixed-point conversion between atomic units and display amounts."""
from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal
from typing import Union

from .config import DEFAULT_DIVISIBILITY


def to_decimal(units: int, divisibility: int = DEFAULT_DIVISIBILITY) -> Decimal:
    """Atomic units -> display amount, e.g. ``123456789`` -> ``0.123456789``.

    Exact: the result always carries ``divisibility`` decimal places.
    """
    return Decimal(int(units)).scaleb(-divisibility)


def to_units(
    amount: Union[Decimal, str, int],
    divisibility: int = DEFAULT_DIVISIBILITY,
) -> int:
    """Display amount -> atomic units, rounding half-even below one unit."""
    if isinstance(amount, float):
        raise TypeError("float amounts are not accepted; pass a Decimal or str")
    scaled = Decimal(amount).scaleb(divisibility)
    return int(scaled.to_integral_value(rounding=ROUND_HALF_EVEN))


def format_amount(units: int, divisibility: int = DEFAULT_DIVISIBILITY) -> str:
    """Decimal string with trailing zeros kept, for RPC and payment links."""
    return f"{to_decimal(units, divisibility):f}"
