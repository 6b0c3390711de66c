"""Entry signal generation — pure functions, no I/O.

Given the current price and a ``StructureSnapshot``, each structure
category proposes at most one candidate (the first structure that matches
wins).  Categories are evaluated independently, so one cycle can yield up
to three candidates.  A candidate survives only if it passes
``is_valid_signal``.
"""

from typing import Optional

from marketmind.strategy.models import (
    BUY,
    SELL,
    Bar,
    FairValueGap,
    LiquidityZone,
    OrderBlock,
    StrategySignal,
)
from marketmind.strategy.structures import OB_ZONE_TOLERANCE, StructureSnapshot


MIN_CONFIDENCE = 0.5
MIN_REWARD_RISK = 1.5

OB_STOP_BUFFER = 0.2
OB_TARGET_MULTIPLE = 2.0

GRAB_BREAK_PCT = 0.001
GRAB_STOP_PCT = 0.002
GRAB_TARGET_MULTIPLE = 1.5

FVG_CONFIDENCE = 0.75
FVG_STOP_BUFFER = 0.5
FVG_TARGET_MULTIPLE = 2.0


def reward_risk(entry: float, stop_loss: float, take_profit: float) -> Optional[float]:
    """``|target − entry| / |entry − stop|``, or ``None`` for a zero stop distance."""
    risk = abs(entry - stop_loss)
    if risk == 0:
        return None
    return abs(take_profit - entry) / risk


def is_valid_signal(
    signal: StrategySignal,
    min_confidence: float = MIN_CONFIDENCE,
    min_reward_risk: float = MIN_REWARD_RISK,
) -> bool:
    """Quality gate applied to every candidate.

    Requires a symbol, confidence ≥ *min_confidence*, reward:risk ≥
    *min_reward_risk*, and stop/target on the correct sides of entry.
    """
    if not signal.symbol or signal.confidence < min_confidence:
        return False

    if signal.action == BUY:
        if not signal.stop_loss < signal.entry < signal.take_profit:
            return False
    elif signal.action == SELL:
        if not signal.take_profit < signal.entry < signal.stop_loss:
            return False
    else:
        return False

    rr = reward_risk(signal.entry, signal.stop_loss, signal.take_profit)
    return rr is not None and rr >= min_reward_risk


# ── Candidate builders ───────────────────────────────────────────────────


def check_order_block_entry(
    price: float,
    order_blocks: tuple[OrderBlock, ...],
) -> Optional[dict]:
    """Price inside (or within 10 % of) an untested block → trade with it."""
    for block in order_blocks:
        if block.tested:
            continue

        tolerance = block.range * OB_ZONE_TOLERANCE
        if not block.low - tolerance <= price <= block.high + tolerance:
            continue

        if block.direction == "bullish":
            return {
                "action": BUY,
                "confidence": block.strength / 100,
                "stop_loss": block.low - block.range * OB_STOP_BUFFER,
                "take_profit": price + abs(price - block.low) * OB_TARGET_MULTIPLE,
                "reason": f"Bullish order block {block.low:.5f}-{block.high:.5f}",
            }
        return {
            "action": SELL,
            "confidence": block.strength / 100,
            "stop_loss": block.high + block.range * OB_STOP_BUFFER,
            "take_profit": price - abs(block.high - price) * OB_TARGET_MULTIPLE,
            "reason": f"Bearish order block {block.low:.5f}-{block.high:.5f}",
        }
    return None


def check_liquidity_grab(
    price: float,
    last_bar: Bar,
    zones: tuple[LiquidityZone, ...],
) -> Optional[dict]:
    """Price swept beyond a zone and the last bar closed back against the
    sweep → fade the breakout."""
    for zone in zones:
        tolerance = zone.level * GRAB_BREAK_PCT

        if (
            zone.kind == "resistance"
            and price > zone.level + tolerance
            and last_bar.close < last_bar.open
        ):
            return {
                "action": SELL,
                "confidence": zone.strength / 100,
                "stop_loss": zone.level + zone.level * GRAB_STOP_PCT,
                "take_profit": price - (price - zone.level) * GRAB_TARGET_MULTIPLE,
                "reason": f"Liquidity grab above resistance {zone.level:.5f}",
            }

        if (
            zone.kind == "support"
            and price < zone.level - tolerance
            and last_bar.close > last_bar.open
        ):
            return {
                "action": BUY,
                "confidence": zone.strength / 100,
                "stop_loss": zone.level - zone.level * GRAB_STOP_PCT,
                "take_profit": price + (zone.level - price) * GRAB_TARGET_MULTIPLE,
                "reason": f"Liquidity grab below support {zone.level:.5f}",
            }
    return None


def check_fair_value_gap_fill(
    price: float,
    gaps: tuple[FairValueGap, ...],
) -> Optional[dict]:
    """Price re-entered an unfilled gap → trade in the gap's direction."""
    for gap in gaps:
        if gap.filled or not gap.contains(price):
            continue

        if gap.direction == "bullish":
            return {
                "action": BUY,
                "confidence": FVG_CONFIDENCE,
                "stop_loss": gap.bottom - gap.width * FVG_STOP_BUFFER,
                "take_profit": price + gap.width * FVG_TARGET_MULTIPLE,
                "reason": f"Bullish FVG fill {gap.bottom:.5f}-{gap.top:.5f}",
            }
        return {
            "action": SELL,
            "confidence": FVG_CONFIDENCE,
            "stop_loss": gap.top + gap.width * FVG_STOP_BUFFER,
            "take_profit": price - gap.width * FVG_TARGET_MULTIPLE,
            "reason": f"Bearish FVG fill {gap.bottom:.5f}-{gap.top:.5f}",
        }
    return None


def generate_signals(
    symbol: str,
    price: float,
    last_bar: Bar,
    snapshot: StructureSnapshot,
    strategy: str,
    timestamp: float,
    min_confidence: float = MIN_CONFIDENCE,
    min_reward_risk: float = MIN_REWARD_RISK,
) -> list[StrategySignal]:
    """Evaluate all three categories and return the valid candidates in
    category order: order block, liquidity grab, fair value gap."""
    candidates = (
        check_order_block_entry(price, snapshot.order_blocks),
        check_liquidity_grab(price, last_bar, snapshot.liquidity_zones),
        check_fair_value_gap_fill(price, snapshot.fair_value_gaps),
    )

    signals: list[StrategySignal] = []
    for candidate in candidates:
        if candidate is None:
            continue
        signal = StrategySignal(
            symbol=symbol,
            entry=price,
            strategy=strategy,
            timestamp=timestamp,
            **candidate,
        )
        if is_valid_signal(signal, min_confidence, min_reward_risk):
            signals.append(signal)
    return signals
