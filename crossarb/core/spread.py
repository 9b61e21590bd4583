"""Fee-adjusted spread between two venues."""

from decimal import Decimal, DivisionByZero, InvalidOperation, Overflow, Underflow, localcontext
from typing import Any

from ..utils import to_decimal

# Returned when no spread can be computed.
NO_OPPORTUNITY = Decimal(-100)

DEFAULT_FEE_RATE = Decimal("0.001")

_ONE = Decimal(1)
_HUNDRED = Decimal(100)


def calculate_spread(sell_price: Any, buy_price: Any, fee_rate: Any = DEFAULT_FEE_RATE) -> Decimal:
    """Percentage profit of buying at ``buy_price`` and selling at ``sell_price``.

    The fee is taken off the sell side and added to the buy side:
    ``((sell * (1 - fee)) / (buy * (1 + fee)) - 1) * 100``.

    Returns :data:`NO_OPPORTUNITY` for missing, non-numeric, zero or negative
    prices, for a fee rate outside ``[0, 1)`` and for price ratios outside
    the Decimal exponent range. Never raises.
    """
    sell = to_decimal(sell_price)
    buy = to_decimal(buy_price)
    fee = to_decimal(fee_rate)
    if sell is None or buy is None or sell <= 0 or buy <= 0:
        return NO_OPPORTUNITY
    if fee is None or fee < 0 or fee >= 1:
        return NO_OPPORTUNITY

    with localcontext() as ctx:
        # Out-of-range results come back as Infinity/NaN instead of raising
        for signal in (Overflow, Underflow, InvalidOperation, DivisionByZero):
            ctx.traps[signal] = False
        sell_after_fee = sell - sell * fee
        buy_after_fee = buy + buy * fee
        spread = (sell_after_fee / buy_after_fee - _ONE) * _HUNDRED

    if not spread.is_finite():
        return NO_OPPORTUNITY
    return spread
