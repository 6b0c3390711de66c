"""Per-strategy performance statistics from resolved trades."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TradeRecord:
    """One resolved trade attributed to a strategy."""

    strategy: str
    symbol: str
    profit: float
    entry: float = 0.0
    duration_seconds: float = 0.0
    close_time: float = 0.0


@dataclass(frozen=True)
class StrategyPerformance:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0  # percent
    profit_factor: Optional[float] = None
    max_drawdown: float = 0.0
    net_profit: float = 0.0

    def as_dict(self) -> dict:
        return {
            "total_trades": self.total_trades,
            "win_rate": self.win_rate,
            "profit_factor": self.profit_factor,
            "max_drawdown": self.max_drawdown,
        }


def calculate_performance(profits: list[float]) -> StrategyPerformance:
    """Summarise a profit series.

    Profit factor is gross profit / gross loss (``None`` without losses);
    max drawdown is the largest peak-to-trough decline of the cumulative
    profit curve, as a positive number.
    """
    if not profits:
        return StrategyPerformance()

    winners = [p for p in profits if p > 0]
    losers = [p for p in profits if p <= 0]

    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    profit_factor = gross_profit / gross_loss if gross_loss > 0 else None

    return StrategyPerformance(
        total_trades=len(profits),
        winning_trades=len(winners),
        losing_trades=len(losers),
        win_rate=round(len(winners) / len(profits) * 100, 2),
        profit_factor=round(profit_factor, 4) if profit_factor is not None else None,
        max_drawdown=round(_max_drawdown(profits), 2),
        net_profit=round(sum(profits), 2),
    )


def _max_drawdown(profits: list[float]) -> float:
    cumulative = 0.0
    peak = 0.0
    max_dd = 0.0
    for p in profits:
        cumulative += p
        if cumulative > peak:
            peak = cumulative
        dd = peak - cumulative
        if dd > max_dd:
            max_dd = dd
    return max_dd


class PerformanceTracker:
    """Accumulates ``TradeRecord`` objects per strategy."""

    def __init__(self, strategies: Optional[list[str]] = None) -> None:
        self._trades: dict[str, list[TradeRecord]] = {
            name: [] for name in strategies or []
        }

    def record(self, trade: TradeRecord) -> None:
        self._trades.setdefault(trade.strategy, []).append(trade)

    def trades(self, strategy: str) -> list[TradeRecord]:
        return list(self._trades.get(strategy, []))

    def performance(self, strategy: str) -> StrategyPerformance:
        return calculate_performance([t.profit for t in self.trades(strategy)])

    def summary(self) -> dict[str, dict]:
        return {name: self.performance(name).as_dict() for name in self._trades}
