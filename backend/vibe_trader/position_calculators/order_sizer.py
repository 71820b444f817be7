"""Order quantity rounding and minimum-notional adjustment."""

import logging
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal

logger = logging.getLogger(__name__)


def _quantum(precision: int) -> Decimal:
    return Decimal(1).scaleb(-precision)


def round_quantity(quantity: float, precision: int) -> float:
    """Round a quantity to the venue's precision (half-up, like toFixed)."""
    return float(Decimal(str(quantity)).quantize(_quantum(precision), rounding=ROUND_HALF_UP))


def format_quantity(quantity: float, precision: int) -> str:
    """Render a quantity with exactly ``precision`` decimals for the wire."""
    return f"{round_quantity(quantity, precision):.{precision}f}"


def adjust_for_min_notional(quantity: float, price: float, precision: int, min_notional: float) -> float:
    """
    Round a market-order quantity and lift it over the venue's notional floor.

    If the rounded quantity's notional falls below ``min_notional``, the
    quantity becomes ``ceil(min_notional / price)`` at ``precision``. Rounding
    up guarantees the adjusted notional is at least the floor.

    Args:
        quantity: Desired base-asset quantity
        price: Current price used to value the order
        precision: Quantity decimals accepted by the venue
        min_notional: Minimum order notional in USD

    Returns:
        Quantity rounded to precision, adjusted upwards if needed
    """
    rounded = round_quantity(quantity, precision)
    notional = rounded * price
    logger.info(f"Initial notional: ${notional:.2f} (quantity: {rounded})")

    if price <= 0 or notional >= min_notional:
        return rounded

    required = Decimal(str(min_notional)) / Decimal(str(price))
    adjusted = float(required.quantize(_quantum(precision), rounding=ROUND_CEILING))
    logger.info(
        f"Adjusted to meet ${min_notional:.2f} minimum: {adjusted} (notional: ${adjusted * price:.2f})"
    )
    return adjusted
