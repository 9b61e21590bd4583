"""Utility functions for the arbitrage engine."""

import time
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a price or quantity to Decimal, or None if it is not a finite number.

    Floats go through ``str`` so that ``30150.5`` becomes ``Decimal("30150.5")``
    rather than its binary expansion.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            return None
    if not result.is_finite():
        return None
    return result


def now_seconds() -> float:
    """Current wall-clock time in epoch seconds."""
    return time.time()


def format_usdt(amount: Decimal) -> str:
    """Format a quote-currency amount with appropriate precision."""
    amount = float(amount)
    if abs(amount) >= 1000:
        return f"${amount:.0f}"
    elif abs(amount) >= 100:
        return f"${amount:.1f}"
    elif abs(amount) >= 10:
        return f"${amount:.2f}"
    else:
        return f"${amount:.4f}"


def format_percent(value: Decimal) -> str:
    """Format a percentage that is already scaled by 100."""
    return f"{float(value):.4f}%"


def format_duration(seconds: float) -> str:
    """Format duration in human readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"
