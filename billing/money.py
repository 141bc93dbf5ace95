"""Cents and hours arithmetic.

Money is integer cents. Hours are Decimal. Multiplying the two yields a
Decimal number of cents that is rounded half-up to a whole cent.
"""

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Iterable

_QUARTER = Decimal("0.25")


def round_to_quarter_hour(hours: Decimal) -> Decimal:
    """Round hours up to the next quarter hour (1.1 -> 1.25, 2.0 -> 2.0)."""
    quarters = (hours / _QUARTER).to_integral_value(rounding=ROUND_CEILING)
    return quarters * _QUARTER


def sum_hours(entries: Iterable, quarter_hour: bool = True) -> Decimal:
    """Total hours across time entries, optionally rounding each entry first."""
    total = Decimal("0")
    for entry in entries:
        hours = entry.hours
        if quarter_hour:
            hours = round_to_quarter_hour(hours)
        total += hours
    return total


def cents_for_hours(hours: Decimal, rate_cents: int) -> int:
    """Price hours at an hourly rate, rounded to the nearest cent."""
    return int((hours * rate_cents).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_bps(amount_cents: int, bps: int) -> int:
    """Basis-point share of an amount, rounded to the nearest cent."""
    return int((Decimal(amount_cents) * bps / 10000).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(amount_cents: int) -> str:
    """Render cents for log lines and descriptions (-1050 -> '-$10.50')."""
    sign = "-" if amount_cents < 0 else ""
    dollars, cents = divmod(abs(amount_cents), 100)
    return f"{sign}${dollars:,}.{cents:02d}"
