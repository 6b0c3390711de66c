"""Smart Money Concepts strategy.

Trades institutional footprints on the M15 chart: retests of order
blocks, liquidity grabs beyond pivot levels, and fills of fair value
gaps.
"""

import logging
import time
from typing import Optional

from marketmind.strategy.models import Bar, StrategySignal, Tick
from marketmind.strategy.signals import generate_signals
from marketmind.strategy.structures import PatternDetector

logger = logging.getLogger("marketmind")


class SMCStrategy:
    """Order block / liquidity / FVG strategy.

    Implements ``StrategyProtocol``.  Keeps one ``PatternDetector`` per
    symbol so remembered fills never leak between instruments.
    """

    def __init__(
        self,
        name: str = "SMC",
        timeframe: str = "M15",
        symbols: Optional[list[str]] = None,
    ) -> None:
        self.name = name
        self.timeframe = timeframe
        self.symbols = symbols or ["EUR_USD", "GBP_USD", "USD_CAD", "AUD_USD"]
        self.last_insight: dict = {}
        self._active = False
        self._detectors: dict[str, PatternDetector] = {}

    @property
    def is_active(self) -> bool:
        return self._active

    def activate(self) -> None:
        self._active = True
        logger.info("Strategy %s activated", self.name)

    def deactivate(self) -> None:
        self._active = False
        logger.info("Strategy %s deactivated", self.name)

    def detector(self, symbol: str) -> PatternDetector:
        """Return (creating on first use) the detector for *symbol*."""
        if symbol not in self._detectors:
            self._detectors[symbol] = PatternDetector()
        return self._detectors[symbol]

    def analyze(
        self,
        symbol: str,
        bars: list[Bar],
        tick: Tick,
    ) -> list[StrategySignal]:
        """Recompute structures for *symbol* and return valid candidates.

        Also populates ``self.last_insight`` with the analysis summary.
        """
        insight: dict = {"strategy": self.name, "symbol": symbol, "bars": len(bars)}

        if not self._active:
            insight["result"] = "inactive"
            self.last_insight = insight
            return []

        detector = self.detector(symbol)
        if not detector.update(bars):
            logger.debug("%s: insufficient data for %s (%d bars)",
                         self.name, symbol, len(bars))
            insight["result"] = "insufficient_data"
            self.last_insight = insight
            return []

        snapshot = detector.snapshot
        price = tick.bid
        signals = generate_signals(
            symbol=symbol,
            price=price,
            last_bar=bars[-1],
            snapshot=snapshot,
            strategy=self.name,
            timestamp=time.time(),
        )
        # Structures touched by this price must not trigger again
        detector.register_price(price)

        insight.update({
            "price": price,
            "order_blocks": len(snapshot.order_blocks),
            "liquidity_zones": len(snapshot.liquidity_zones),
            "fair_value_gaps": sum(1 for g in snapshot.fair_value_gaps if not g.filled),
            "signals": [s.reason for s in signals],
            "result": "signal_found" if signals else "no_signal",
        })
        self.last_insight = insight
        return signals
