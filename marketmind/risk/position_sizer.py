"""Position sizing — pure math, no I/O.

Calculates the volume to trade based on account equity, risk percentage
and stop-loss distance, then fits it to the instrument's volume grid.
"""

from decimal import Decimal


def calculate_position_size(
    equity: float,
    risk_pct: float,
    stop_distance: float,
    contract_size: float = 1.0,
) -> float:
    """Calculate the raw position size.

    Formula::

        risk_amount = equity × (risk_pct / 100)
        size        = risk_amount / (stop_distance × contract_size)

    Args:
        equity: Current account equity (e.g. 10_000.0).
        risk_pct: Percentage of equity to risk per trade (e.g. 2.0 for 2 %).
        stop_distance: |entry − stop| in price units (e.g. 0.0050).
        contract_size: Instrument units per unit of volume.  1.0 for
            unit-based brokers, 100 000 for standard FX lots.

    Returns:
        Raw position size in volume units (always positive).

    Raises:
        ValueError: If any input is non-positive.
    """
    if equity <= 0:
        raise ValueError(f"equity must be positive, got {equity}")
    if risk_pct <= 0:
        raise ValueError(f"risk_pct must be positive, got {risk_pct}")
    if stop_distance <= 0:
        raise ValueError(f"stop_distance must be positive, got {stop_distance}")
    if contract_size <= 0:
        raise ValueError(f"contract_size must be positive, got {contract_size}")

    risk_amount = equity * (risk_pct / 100.0)
    return risk_amount / (stop_distance * contract_size)


def _step_decimals(step: float) -> int:
    exponent = Decimal(str(step)).normalize().as_tuple().exponent
    return max(0, -int(exponent))


def normalize_volume(
    size: float,
    volume_min: float,
    volume_max: float,
    volume_step: float,
) -> float:
    """Round *size* to the nearest *volume_step* and clamp it to
    ``[volume_min, volume_max]``.

    >>> normalize_volume(7.3, 0.01, 5.0, 0.01)
    5.0
    >>> normalize_volume(1.23456, 0.01, 5.0, 0.01)
    1.23
    """
    if volume_step <= 0:
        raise ValueError(f"volume_step must be positive, got {volume_step}")

    stepped = round(size / volume_step) * volume_step
    clamped = max(volume_min, min(volume_max, stepped))
    return round(clamped, _step_decimals(volume_step))
