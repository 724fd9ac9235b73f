"""Rounding of monetary amounts to the currency's minor unit.

Percentages, proportional allocations and tax rates produce fractional
amounts; they are rounded once, per line, with the configured policy.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal

_ROUNDING_MODES = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "floor": ROUND_FLOOR,
}


def round_amount(value: Decimal | int | float, policy: str = "half_up") -> int:
    """Round ``value`` to an integer amount using ``policy``."""
    if policy not in _ROUNDING_MODES:
        raise ValueError(f"Unknown rounding policy: {policy}")
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=_ROUNDING_MODES[policy]))


def percentage_of(amount: int, percent: float | int, policy: str = "half_up") -> int:
    """Return ``percent`` % of ``amount`` rounded with ``policy``."""
    return round_amount(Decimal(amount) * Decimal(str(percent)) / Decimal(100), policy)
