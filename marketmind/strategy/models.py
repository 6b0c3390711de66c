"""Strategy data models — bars, ticks, detected structures and signals."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Bar:
    """A single OHLCV price bar."""

    time: str
    open: float
    high: float
    low: float
    close: float
    volume: int


@dataclass(frozen=True)
class Tick:
    """Latest quote for a symbol.  ``spread`` is expressed in pips."""

    symbol: str
    bid: float
    ask: float
    spread: float
    volume: int
    timestamp: str


@dataclass(frozen=True)
class OrderBlock:
    """A rejected candle followed by continuation in its direction."""

    direction: str  # "bullish" or "bearish"
    high: float
    low: float
    index: int
    time: str
    strength: float  # 0–100
    tested: bool = False

    @property
    def range(self) -> float:
        return self.high - self.low


@dataclass(frozen=True)
class LiquidityZone:
    """A pivot level likely to hold resting orders."""

    kind: str  # "support" or "resistance"
    level: float
    index: int
    strength: float  # 0–100
    touch_count: int


@dataclass(frozen=True)
class FairValueGap:
    """A three-bar imbalance between bar[i-1] and bar[i+1]."""

    direction: str  # "bullish" or "bearish"
    top: float
    bottom: float
    index: int
    time: str
    filled: bool = False

    @property
    def width(self) -> float:
        return self.top - self.bottom

    def contains(self, price: float) -> bool:
        return self.bottom <= price <= self.top


# ── Signals ──────────────────────────────────────────────────────────────

BUY = "BUY"
SELL = "SELL"
CLOSE = "CLOSE"


@dataclass(frozen=True)
class StrategySignal:
    """A candidate trade produced by a strategy for one symbol."""

    symbol: str
    action: str  # BUY, SELL or CLOSE
    confidence: float
    entry: float
    stop_loss: float
    take_profit: float
    strategy: str
    timestamp: float
    reason: str = ""

    @property
    def risk_distance(self) -> float:
        return abs(self.entry - self.stop_loss)

    @property
    def reward_distance(self) -> float:
        return abs(self.take_profit - self.entry)

    @property
    def reward_risk(self) -> Optional[float]:
        """Reward:risk ratio, or ``None`` when the stop sits on the entry."""
        if self.risk_distance == 0:
            return None
        return self.reward_distance / self.risk_distance


# ── Instrument metadata ──────────────────────────────────────────────────

INSTRUMENT_PIP_VALUES: dict[str, float] = {
    "EUR_USD": 0.0001,
    "GBP_USD": 0.0001,
    "USD_JPY": 0.01,
    "USD_CHF": 0.0001,
    "AUD_USD": 0.0001,
    "NZD_USD": 0.0001,
    "USD_CAD": 0.0001,
    "XAU_USD": 0.01,
    "XAG_USD": 0.001,
}


def pip_size(symbol: str) -> float:
    """Return the pip size for *symbol*, defaulting to 0.0001."""
    return INSTRUMENT_PIP_VALUES.get(symbol, 0.0001)
