"""Pre-trade risk validation.

Runs an ordered chain of checks against a candidate signal and returns a
``TradeValidationResult``.  The first failing check short-circuits; a
passing chain yields the sized, possibly target-adjusted signal.

Order of checks:

1. Trading block (daily loss limit already hit today).
2. Daily loss against the day-start balance.
3. Open position count.
4. Spread.
5. Position size.
6. Reward:risk floor (target extended, stop untouched).
"""

import dataclasses
import logging
from datetime import date, datetime, timezone
from typing import Optional

from marketmind.broker.base import ExecutionGateway, MarketDataFeed
from marketmind.risk.daily_limit import DailyRiskState
from marketmind.risk.models import RiskParameters, TradeValidationResult
from marketmind.risk.position_sizer import calculate_position_size, normalize_volume
from marketmind.risk.spread_filter import is_spread_acceptable
from marketmind.strategy.models import BUY, StrategySignal

logger = logging.getLogger("marketmind.risk")

BLOCKED_REASON = "Trading blocked due to daily loss limit"


def _reject(reason: str) -> TradeValidationResult:
    return TradeValidationResult(valid=False, reason=reason)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def extend_target(signal: StrategySignal, min_risk_reward: float) -> StrategySignal:
    """Move the target so reward:risk is at least *min_risk_reward*.

    The stop is never altered.  Signals already meeting the floor are
    returned unchanged.
    """
    rr = signal.reward_risk
    if rr is None or rr >= min_risk_reward:
        return signal

    distance = signal.risk_distance * min_risk_reward
    if signal.action == BUY:
        target = signal.entry + distance
    else:
        target = signal.entry - distance
    return dataclasses.replace(signal, take_profit=target)


class RiskValidator:
    """Validates signals against account-level limits.

    Args:
        feed: Market data feed (ticks, symbol metadata).
        gateway: Execution gateway (account, positions).
        params: Risk limits.
        daily_state: Shared daily loss state.  A fresh one is created when
            omitted.
    """

    def __init__(
        self,
        feed: MarketDataFeed,
        gateway: ExecutionGateway,
        params: Optional[RiskParameters] = None,
        daily_state: Optional[DailyRiskState] = None,
    ) -> None:
        self._feed = feed
        self._gateway = gateway
        self.params = params or RiskParameters()
        self.daily_state = daily_state or DailyRiskState()

    # ── Daily tracking ───────────────────────────────────────────────────

    async def initialize_daily_tracking(self, trading_day: Optional[date] = None) -> bool:
        """Capture the day-start balance.  Returns ``False`` on failure."""
        try:
            account = await self._gateway.account_snapshot()
        except Exception as exc:
            logger.error("Failed to initialise daily tracking: %s", exc)
            return False
        self.daily_state.reset(account.balance, trading_day or _utc_today())
        logger.info("Daily tracking initialised, start balance %.2f", account.balance)
        return True

    async def reset_daily_tracking(self, trading_day: Optional[date] = None) -> bool:
        """Start a new trading day.  Lifts any trading block."""
        was_blocked = self.daily_state.trading_blocked
        ok = await self.initialize_daily_tracking(trading_day)
        if ok and was_blocked:
            logger.info("New trading day, daily loss block lifted")
        return ok

    async def update_daily_pl(self) -> None:
        try:
            account = await self._gateway.account_snapshot()
        except Exception as exc:
            logger.warning("Could not refresh daily P&L: %s", exc)
            return
        self.daily_state.update_balance(account.balance)

    async def risk_status(self) -> dict:
        state = self.daily_state
        status = {
            "daily_pl": round(state.daily_pl, 2),
            "daily_loss_pct": round(state.daily_loss_pct, 2),
            "open_positions": None,
            "max_positions": self.params.max_open_positions,
            "trading_blocked": state.trading_blocked,
            "total_exposure": None,
            "account_equity": None,
        }
        try:
            account = await self._gateway.account_snapshot()
            positions = await self._gateway.open_positions()
        except Exception as exc:
            logger.warning("Risk status incomplete: %s", exc)
            return status

        status["open_positions"] = len(positions)
        status["total_exposure"] = round(sum(abs(p.profit) for p in positions), 2)
        status["account_equity"] = account.equity
        return status

    # ── Validation ───────────────────────────────────────────────────────

    async def validate(self, signal: StrategySignal) -> TradeValidationResult:
        """Run every check in order.  Never raises."""
        try:
            result = await self._validate(signal)
        except Exception as exc:
            logger.error("Validation error for %s: %s", signal.symbol, exc)
            result = _reject(f"Validation error: {exc}")

        if not result.valid:
            logger.info("Rejected %s %s: %s", signal.action, signal.symbol, result.reason)
        return result

    async def _validate(self, signal: StrategySignal) -> TradeValidationResult:
        params = self.params
        state = self.daily_state

        # 1 ── Sticky block
        if state.trading_blocked:
            return _reject(BLOCKED_REASON)

        # 2 ── Daily loss
        try:
            account = await self._gateway.account_snapshot()
        except Exception as exc:
            logger.warning("Account snapshot failed: %s", exc)
            return _reject("Cannot retrieve account information")

        if not state.initialized:
            state.reset(account.balance, _utc_today())

        reason = state.check_daily_loss(account.balance, params.max_daily_loss_pct)
        if reason:
            logger.warning(reason)
            return _reject(reason)

        # 3 ── Position count
        positions = await self._gateway.open_positions()
        if len(positions) >= params.max_open_positions:
            return _reject(
                f"Maximum positions reached: {len(positions)}/{params.max_open_positions}"
            )

        # 4 ── Spread
        tick = await self._feed.latest_tick(signal.symbol)
        if tick is None:
            return _reject("Cannot retrieve market data for spread check")
        if not is_spread_acceptable(tick.spread, params.max_spread_pips):
            return _reject(
                f"Spread too wide: {tick.spread:.1f} > {params.max_spread_pips:.1f} pips"
            )

        # 5 ── Position size
        info = await self._feed.symbol_info(signal.symbol)
        if info is None:
            return _reject(f"Cannot retrieve symbol info for {signal.symbol}")
        try:
            raw = calculate_position_size(
                account.equity,
                params.max_risk_per_trade_pct,
                signal.risk_distance,
                info.contract_size,
            )
        except ValueError as exc:
            logger.debug("Sizing failed for %s: %s", signal.symbol, exc)
            return _reject("Unable to calculate valid position size")

        size = normalize_volume(raw, info.volume_min, info.volume_max, info.volume_step)
        if size <= 0:
            return _reject("Unable to calculate valid position size")

        # 6 ── Reward:risk floor
        adjusted = extend_target(signal, params.min_risk_reward)
        if adjusted is not signal:
            logger.info(
                "Target for %s extended to %.5f for %.1f:1 reward:risk",
                signal.symbol, adjusted.take_profit, params.min_risk_reward,
            )

        return TradeValidationResult(
            valid=True,
            reason="Trade validated",
            adjusted_signal=adjusted,
            position_size=size,
        )
