"""Market structure detection — order blocks, liquidity zones and fair
value gaps.

The detection functions are pure: the same bar window always yields the
same structures.  ``PatternDetector`` wraps them for one (strategy, symbol)
pair, recomputing everything from the current window each cycle and
publishing the result as a single immutable ``StructureSnapshot``.  The
only state it carries between cycles is which gaps were filled and which
blocks were tested, so those do not re-trigger.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from marketmind.strategy.models import Bar, FairValueGap, LiquidityZone, OrderBlock


MIN_BARS = 50
MAX_ORDER_BLOCKS = 10

# Order blocks
OB_FIRST_INDEX = 10
OB_LOOKAHEAD = 3
OB_MIN_CONFIRMATIONS = 2
OB_MIN_WICK_BODY_RATIO = 0.5
OB_HIGH_VOLUME = 1000
OB_ZONE_TOLERANCE = 0.1

# Liquidity zones
PIVOT_WINDOW = 3
TOUCH_TOLERANCE_PCT = 0.001
STRENGTH_PER_TOUCH = 25


# ── Order blocks ─────────────────────────────────────────────────────────


def _body(bar: Bar) -> float:
    return abs(bar.close - bar.open)


def _lower_wick(bar: Bar) -> float:
    return min(bar.open, bar.close) - bar.low


def _upper_wick(bar: Bar) -> float:
    return bar.high - max(bar.open, bar.close)


def _is_bullish_order_block(bars: list[Bar], index: int) -> bool:
    """Bullish candle with a lower wick ≥ half its body, followed by at
    least two closes above its high within the next three bars."""
    bar = bars[index]
    if bar.close <= bar.open:
        return False
    if _lower_wick(bar) < _body(bar) * OB_MIN_WICK_BODY_RATIO:
        return False
    following = bars[index + 1:index + 1 + OB_LOOKAHEAD]
    return sum(1 for b in following if b.close > bar.high) >= OB_MIN_CONFIRMATIONS


def _is_bearish_order_block(bars: list[Bar], index: int) -> bool:
    """Mirror of ``_is_bullish_order_block``: upper wick, closes below the low."""
    bar = bars[index]
    if bar.close >= bar.open:
        return False
    if _upper_wick(bar) < _body(bar) * OB_MIN_WICK_BODY_RATIO:
        return False
    following = bars[index + 1:index + 1 + OB_LOOKAHEAD]
    return sum(1 for b in following if b.close < bar.low) >= OB_MIN_CONFIRMATIONS


def order_block_strength(bars: list[Bar], index: int, direction: str) -> float:
    """Score an order block on volume, wick size and recency (0–100).

    ``strength = volume bonus + wick/body × 30 + recency × 20``
    """
    bar = bars[index]
    strength = 20.0 if bar.volume > OB_HIGH_VOLUME else 10.0

    body = _body(bar)
    wick = _lower_wick(bar) if direction == "bullish" else _upper_wick(bar)
    if body > 0:
        strength += (wick / body) * 30

    recency = (len(bars) - index) / len(bars)
    strength += recency * 20

    return min(strength, 100.0)


def _has_been_retested(bars: list[Bar], index: int, high: float, low: float) -> bool:
    """True if a completed bar after the confirmation window traded back
    into the block's range.  The latest bar is excluded."""
    for bar in bars[index + OB_LOOKAHEAD + 1:len(bars) - 1]:
        if bar.low <= high and bar.high >= low:
            return True
    return False


def detect_order_blocks(
    bars: list[Bar],
    limit: int = MAX_ORDER_BLOCKS,
) -> list[OrderBlock]:
    """Detect order blocks and keep the *limit* strongest.

    Ties on strength are broken in favour of the more recent block.
    """
    blocks: list[OrderBlock] = []
    for i in range(OB_FIRST_INDEX, len(bars) - 5):
        bar = bars[i]
        for direction, matches in (
            ("bullish", _is_bullish_order_block),
            ("bearish", _is_bearish_order_block),
        ):
            if not matches(bars, i):
                continue
            blocks.append(
                OrderBlock(
                    direction=direction,
                    high=bar.high,
                    low=bar.low,
                    index=i,
                    time=bar.time,
                    strength=order_block_strength(bars, i, direction),
                    tested=_has_been_retested(bars, i, bar.high, bar.low),
                )
            )

    blocks.sort(key=lambda b: (b.strength, b.index), reverse=True)
    return blocks[:limit]


# ── Liquidity zones ──────────────────────────────────────────────────────


def _find_pivot_highs(bars: list[Bar], window: int = PIVOT_WINDOW) -> list[int]:
    """Indices of bars whose high strictly exceeds the *window* highs on
    each side."""
    pivots: list[int] = []
    for i in range(window, len(bars) - window):
        high = bars[i].high
        is_pivot = True
        for j in range(1, window + 1):
            if bars[i - j].high >= high or bars[i + j].high >= high:
                is_pivot = False
                break
        if is_pivot:
            pivots.append(i)
    return pivots


def _find_pivot_lows(bars: list[Bar], window: int = PIVOT_WINDOW) -> list[int]:
    """Indices of bars whose low is strictly below the *window* lows on
    each side."""
    pivots: list[int] = []
    for i in range(window, len(bars) - window):
        low = bars[i].low
        is_pivot = True
        for j in range(1, window + 1):
            if bars[i - j].low <= low or bars[i + j].low <= low:
                is_pivot = False
                break
        if is_pivot:
            pivots.append(i)
    return pivots


def count_touches(bars: list[Bar], index: int, level: float) -> int:
    """Count bars after *index* whose high or low comes within 0.1 % of *level*."""
    tolerance = level * TOUCH_TOLERANCE_PCT
    return sum(
        1 for bar in bars[index + 1:]
        if abs(bar.high - level) < tolerance or abs(bar.low - level) < tolerance
    )


def detect_liquidity_zones(
    bars: list[Bar],
    window: int = PIVOT_WINDOW,
) -> list[LiquidityZone]:
    """Build resistance zones from pivot highs and support zones from
    pivot lows.  Resistances come first, each group in bar order."""
    zones: list[LiquidityZone] = []
    for kind, pivots, price_of in (
        ("resistance", _find_pivot_highs(bars, window), lambda b: b.high),
        ("support", _find_pivot_lows(bars, window), lambda b: b.low),
    ):
        for i in pivots:
            level = price_of(bars[i])
            touches = count_touches(bars, i, level)
            zones.append(
                LiquidityZone(
                    kind=kind,
                    level=level,
                    index=i,
                    strength=float(min(touches * STRENGTH_PER_TOUCH, 100)),
                    touch_count=touches,
                )
            )
    return zones


# ── Fair value gaps ──────────────────────────────────────────────────────


def _gap_already_filled(bars: list[Bar], gap: FairValueGap) -> bool:
    """True if a completed bar after the gap traded into it.  The latest
    bar is excluded so the current re-entry can still trigger."""
    for bar in bars[gap.index + 2:len(bars) - 1]:
        if gap.direction == "bullish" and bar.low <= gap.top:
            return True
        if gap.direction == "bearish" and bar.high >= gap.bottom:
            return True
    return False


def detect_fair_value_gaps(bars: list[Bar]) -> list[FairValueGap]:
    """Detect three-bar gaps in bar order.

    Bullish: ``bars[i-1].high < bars[i+1].low`` with a bullish middle bar.
    Bearish: ``bars[i-1].low > bars[i+1].high`` with a bearish middle bar.
    """
    gaps: list[FairValueGap] = []
    for i in range(1, len(bars) - 1):
        prev, current, nxt = bars[i - 1], bars[i], bars[i + 1]

        gap = None
        if prev.high < nxt.low and current.close > current.open:
            gap = FairValueGap("bullish", top=nxt.low, bottom=prev.high,
                               index=i, time=current.time)
        elif prev.low > nxt.high and current.close < current.open:
            gap = FairValueGap("bearish", top=prev.low, bottom=nxt.high,
                               index=i, time=current.time)

        if gap is not None:
            if _gap_already_filled(bars, gap):
                gap = replace(gap, filled=True)
            gaps.append(gap)
    return gaps


# ── Stateful detector ────────────────────────────────────────────────────


@dataclass(frozen=True)
class StructureSnapshot:
    """All structures derived from one bar window."""

    order_blocks: tuple[OrderBlock, ...] = ()
    liquidity_zones: tuple[LiquidityZone, ...] = ()
    fair_value_gaps: tuple[FairValueGap, ...] = ()
    bar_count: int = 0


def _block_key(block: OrderBlock) -> tuple:
    return (block.direction, block.time, block.high, block.low)


def _gap_key(gap: FairValueGap) -> tuple:
    return (gap.direction, gap.time, gap.top, gap.bottom)


class PatternDetector:
    """Recomputes structures for one symbol each cycle.

    Args:
        min_bars: Windows shorter than this are declined.
        max_order_blocks: Number of order blocks retained per cycle.
    """

    def __init__(
        self,
        min_bars: int = MIN_BARS,
        max_order_blocks: int = MAX_ORDER_BLOCKS,
    ) -> None:
        self._min_bars = min_bars
        self._max_order_blocks = max_order_blocks
        self._snapshot = StructureSnapshot()
        self._filled_gaps: set[tuple] = set()
        self._tested_blocks: set[tuple] = set()

    @property
    def snapshot(self) -> StructureSnapshot:
        return self._snapshot

    def update(self, bars: list[Bar]) -> bool:
        """Recompute every structure set from *bars*.

        Returns ``False`` (and publishes an empty snapshot) when the window
        holds fewer than ``min_bars`` bars.
        """
        if len(bars) < self._min_bars:
            self._snapshot = StructureSnapshot(bar_count=len(bars))
            return False

        # Forget remembered structures that have scrolled out of the window
        window_times = {b.time for b in bars}
        self._filled_gaps = {k for k in self._filled_gaps if k[1] in window_times}
        self._tested_blocks = {k for k in self._tested_blocks if k[1] in window_times}

        blocks = [
            replace(b, tested=True) if _block_key(b) in self._tested_blocks else b
            for b in detect_order_blocks(bars, self._max_order_blocks)
        ]
        gaps = [
            replace(g, filled=True) if _gap_key(g) in self._filled_gaps else g
            for g in detect_fair_value_gaps(bars)
        ]

        self._snapshot = StructureSnapshot(
            order_blocks=tuple(blocks),
            liquidity_zones=tuple(detect_liquidity_zones(bars)),
            fair_value_gaps=tuple(gaps),
            bar_count=len(bars),
        )
        return True

    def register_price(self, price: float) -> None:
        """Record that price has visited *price*.

        Unfilled gaps containing it become filled and untested blocks whose
        entry zone contains it become tested, both for the rest of their
        life in the window.
        """
        snap = self._snapshot
        blocks = []
        for block in snap.order_blocks:
            tolerance = block.range * OB_ZONE_TOLERANCE
            if not block.tested and block.low - tolerance <= price <= block.high + tolerance:
                self._tested_blocks.add(_block_key(block))
                block = replace(block, tested=True)
            blocks.append(block)

        gaps = []
        for gap in snap.fair_value_gaps:
            if not gap.filled and gap.contains(price):
                self._filled_gaps.add(_gap_key(gap))
                gap = replace(gap, filled=True)
            gaps.append(gap)

        self._snapshot = replace(
            snap, order_blocks=tuple(blocks), fair_value_gaps=tuple(gaps),
        )
