"""Risk data models — configuration and validation results."""

from dataclasses import dataclass
from typing import Optional

from marketmind.strategy.models import StrategySignal


@dataclass(frozen=True)
class RiskParameters:
    """Account-level risk limits.  Percentages are e.g. 2.0 for 2 %."""

    max_risk_per_trade_pct: float = 2.0
    max_daily_loss_pct: float = 6.0
    max_open_positions: int = 5
    min_risk_reward: float = 1.5
    max_spread_pips: float = 3.0
    news_filter_enabled: bool = True


@dataclass(frozen=True)
class TradeValidationResult:
    """Verdict of the risk validator for one candidate signal."""

    valid: bool
    reason: str
    adjusted_signal: Optional[StrategySignal] = None
    position_size: Optional[float] = None
