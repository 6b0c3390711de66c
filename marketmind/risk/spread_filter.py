"""Spread filter — converts quotes to pips and gates entries on spread."""


def spread_in_pips(bid: float, ask: float, pip_value: float = 0.0001) -> float:
    """Return the bid/ask spread in pips (rounded to 0.1 pip)."""
    return round(abs(ask - bid) / pip_value, 1)


def is_spread_acceptable(spread_pips: float, max_spread_pips: float) -> bool:
    """Return ``True`` if the current spread is within the acceptable limit.

    Args:
        spread_pips: Current spread in pips.
        max_spread_pips: Maximum allowed spread in pips.

    Returns:
        ``True`` if spread ≤ ``max_spread_pips``, else ``False``.
    """
    return spread_pips <= max_spread_pips
