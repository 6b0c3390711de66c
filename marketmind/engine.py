"""MarketMind — decision engine (orchestration).

Connects strategies, the learning arbiter, risk validation and the broker
into two periodic cycles:

- **analysis**: per symbol, gather strategy candidates → arbiter picks
  one → risk validation → market order.
- **monitoring**: day rollover, open-position risk management, daily P&L
  refresh, and resolution of closed trades into learning feedback.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from marketmind.broker.base import ExecutionGateway, MarketDataFeed
from marketmind.learning.arbiter import LearningArbiter
from marketmind.learning.performance import PerformanceTracker, TradeRecord
from marketmind.risk.daily_limit import DailyRiskState
from marketmind.risk.models import RiskParameters
from marketmind.risk.position_manager import PositionRiskManager
from marketmind.risk.validator import RiskValidator
from marketmind.scheduler import CycleScheduler
from marketmind.strategy.models import CLOSE, Bar, StrategySignal
from marketmind.strategy.registry import StrategyRegistry
from marketmind.strategy.structures import MIN_BARS

logger = logging.getLogger("marketmind")

DEFAULT_SYMBOLS = ("EUR_USD", "GBP_USD", "USD_CAD", "AUD_USD")
DEFAULT_BAR_COUNT = 100
RESOLVED_HISTORY_LIMIT = 500


@dataclass(frozen=True)
class TradeOutcome:
    """Realized result of an executed signal."""

    ticket: str
    profit: float
    win: bool
    resolved_at: float


@dataclass
class SignalHistoryEntry:
    """An executed signal awaiting (or holding) its outcome."""

    signal: StrategySignal
    ticket: str
    size: float
    issued_at: float
    outcome: Optional[TradeOutcome] = None

    @property
    def resolved(self) -> bool:
        return self.outcome is not None


class MarketMindEngine:
    """Owns the cycles and every collaborator the cycles use.

    Args:
        feed: Market data source.
        gateway: Order routing and account state.
        registry: Strategies to run.
        params: Risk limits.  Used to build the validator and position
            manager when those are not supplied.
        arbiter: Signal arbiter; a fresh one when omitted.
        validator: Risk validator; built from *params* when omitted.
        position_manager: Position risk manager; built from *params* and
            the validator's daily state when omitted.
        performance: Per-strategy trade statistics.
        default_symbols: Symbols seeded on start when none are monitored.
        bar_count: Bars requested per analysis.
        analysis_interval: Seconds between analysis cycles.
        monitor_interval: Seconds between monitoring cycles.
        history_limit: Resolved signals kept for inspection.
    """

    def __init__(
        self,
        feed: MarketDataFeed,
        gateway: ExecutionGateway,
        registry: StrategyRegistry,
        params: Optional[RiskParameters] = None,
        arbiter: Optional[LearningArbiter] = None,
        validator: Optional[RiskValidator] = None,
        position_manager: Optional[PositionRiskManager] = None,
        performance: Optional[PerformanceTracker] = None,
        default_symbols: tuple[str, ...] = DEFAULT_SYMBOLS,
        bar_count: int = DEFAULT_BAR_COUNT,
        analysis_interval: float = 15.0,
        monitor_interval: float = 30.0,
        history_limit: int = RESOLVED_HISTORY_LIMIT,
    ) -> None:
        self._feed = feed
        self._gateway = gateway
        self._registry = registry
        self._params = params or RiskParameters()
        self._arbiter = arbiter or LearningArbiter()
        self._validator = validator or RiskValidator(
            feed, gateway, self._params, DailyRiskState(),
        )
        self._position_manager = position_manager or PositionRiskManager(
            gateway, self._validator.params, self._validator.daily_state,
        )
        self._performance = performance or PerformanceTracker(registry.names)
        self._default_symbols = tuple(s.upper() for s in default_symbols)
        self._bar_count = bar_count
        self._analysis_interval = analysis_interval
        self._monitor_interval = monitor_interval

        self._symbols: dict[str, None] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: list[SignalHistoryEntry] = []
        self._resolved: deque[SignalHistoryEntry] = deque(maxlen=history_limit)
        self._total_signals = 0
        self._last_profit: dict[str, float] = {}
        self._scheduler: Optional[CycleScheduler] = None
        self._running = False

    # ── Accessors ────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def monitored_symbols(self) -> list[str]:
        return list(self._symbols)

    @property
    def signal_history(self) -> list[SignalHistoryEntry]:
        """Recently resolved entries followed by those awaiting an outcome."""
        return [*self._resolved, *self._pending]

    @property
    def arbiter(self) -> LearningArbiter:
        return self._arbiter

    @property
    def validator(self) -> RiskValidator:
        return self._validator

    @property
    def registry(self) -> StrategyRegistry:
        return self._registry

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> bool:
        """Check the feed, then schedule both cycles.

        Returns ``False`` (and schedules nothing) if the feed is not ready.
        """
        if self._running:
            return True

        try:
            ready = await self._feed.ensure_ready()
        except Exception as exc:
            logger.error("Market data feed failed to initialise: %s", exc)
            return False
        if not ready:
            logger.error("Market data feed not ready, engine not started")
            return False

        await self._validator.initialize_daily_tracking(self._utc_today())
        self._registry.activate_all()

        if not self._symbols:
            for symbol in self._default_symbols:
                self.add_symbol(symbol)

        self._scheduler = CycleScheduler()
        self._scheduler.add("analysis", self.run_analysis_cycle, self._analysis_interval)
        self._scheduler.add("monitoring", self.run_monitoring_cycle, self._monitor_interval)
        self._scheduler.start()
        self._running = True

        logger.info(
            "MarketMind started: %d strateg(ies), symbols %s",
            len(self._registry.active()), ", ".join(self._symbols),
        )
        return True

    async def stop(self) -> None:
        """Cancel both cycles, wait for them, and deactivate strategies."""
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None
        self._registry.deactivate_all()
        self._running = False
        logger.info("MarketMind stopped")

    def add_symbol(self, symbol: str) -> str:
        symbol = symbol.upper()
        if symbol not in self._symbols:
            self._symbols[symbol] = None
            logger.info("Added symbol %s", symbol)
        return symbol

    def remove_symbol(self, symbol: str) -> bool:
        symbol = symbol.upper()
        if symbol in self._symbols:
            del self._symbols[symbol]
            lock = self._locks.get(symbol)
            if lock is not None and not lock.locked():
                del self._locks[symbol]
            logger.info("Removed symbol %s", symbol)
            return True
        return False

    # ── Analysis ─────────────────────────────────────────────────────────

    def _lock(self, symbol: str) -> asyncio.Lock:
        if symbol not in self._locks:
            self._locks[symbol] = asyncio.Lock()
        return self._locks[symbol]

    async def run_analysis_cycle(self) -> dict:
        """Analyze every monitored symbol concurrently."""
        symbols = list(self._symbols)
        results = await asyncio.gather(*(self.analyze_symbol(s) for s in symbols))
        return {"action": "analysis", "results": dict(zip(symbols, results))}

    async def analyze_symbol(self, symbol: str) -> dict:
        """Run one analysis for *symbol*, holding its lock throughout."""
        symbol = symbol.upper()
        async with self._lock(symbol):
            try:
                return await self._analyze(symbol)
            except Exception as exc:
                logger.error("Error analyzing %s: %s", symbol, exc)
                return {"action": "error", "symbol": symbol, "reason": str(exc)}

    async def _analyze(self, symbol: str) -> dict:
        tick = await self._feed.latest_tick(symbol)
        if tick is None:
            logger.warning("No market data for %s", symbol)
            return {"action": "skipped", "symbol": symbol, "reason": "no_tick"}

        strategies = self._registry.active()
        if not strategies:
            return {"action": "skipped", "symbol": symbol, "reason": "no_active_strategies"}

        bars_by_timeframe: dict[str, list[Bar]] = {}
        candidates: list[StrategySignal] = []
        for strategy in strategies:
            if strategy.timeframe not in bars_by_timeframe:
                bars_by_timeframe[strategy.timeframe] = await self._feed.bar_history(
                    symbol, strategy.timeframe, self._bar_count,
                )
            bars = bars_by_timeframe[strategy.timeframe]
            if len(bars) < MIN_BARS:
                logger.debug("Insufficient data for %s %s: %d bars",
                             symbol, strategy.timeframe, len(bars))
                continue
            candidates.extend(strategy.analyze(symbol, bars, tick))

        if not any(len(b) >= MIN_BARS for b in bars_by_timeframe.values()):
            return {"action": "skipped", "symbol": symbol, "reason": "insufficient_data"}
        if not candidates:
            return {"action": "skipped", "symbol": symbol, "reason": "no_signal"}

        context_bars = next(iter(bars_by_timeframe.values()))
        signal = self._arbiter.select_best_signal(candidates, context_bars)
        logger.info("Selected %s %s from %s (confidence %.2f)",
                    signal.action, symbol, signal.strategy, signal.confidence)

        if signal.action == CLOSE:
            return await self._close_symbol(symbol)

        verdict = await self._validator.validate(signal)
        if not verdict.valid:
            return {"action": "rejected", "symbol": symbol, "reason": verdict.reason}

        order_signal = verdict.adjusted_signal
        order = await self._gateway.submit_market_order(order_signal, verdict.position_size)
        if not order.success:
            logger.error("Order failed for %s: %s", symbol, order.error)
            return {"action": "error", "symbol": symbol, "reason": order.error or "order_failed"}

        self._total_signals += 1
        self._pending.append(SignalHistoryEntry(
            signal=order_signal,
            ticket=order.ticket,
            size=verdict.position_size,
            issued_at=time.time(),
        ))
        logger.info(
            "Executed %s %s size %s @ %.5f SL %.5f TP %.5f (ticket %s)",
            order_signal.action, symbol, verdict.position_size, order_signal.entry,
            order_signal.stop_loss, order_signal.take_profit, order.ticket,
        )
        return {
            "action": "order_placed",
            "symbol": symbol,
            "ticket": order.ticket,
            "direction": order_signal.action,
            "size": verdict.position_size,
            "entry": order_signal.entry,
            "sl": order_signal.stop_loss,
            "tp": order_signal.take_profit,
            "strategy": order_signal.strategy,
            "reason": order_signal.reason,
        }

    async def _close_symbol(self, symbol: str) -> dict:
        positions = await self._gateway.open_positions()
        closed: list[str] = []
        for position in positions:
            if position.symbol != symbol:
                continue
            result = await self._gateway.close_position(position.ticket)
            if result.success:
                closed.append(position.ticket)
            else:
                logger.warning("Close failed for %s: %s", position.ticket, result.error)
        logger.info("Closed %d position(s) on %s", len(closed), symbol)
        return {"action": "closed", "symbol": symbol, "tickets": closed}

    # ── Monitoring ───────────────────────────────────────────────────────

    @staticmethod
    def _utc_today(utc_now: Optional[datetime] = None) -> date:
        return (utc_now or datetime.now(timezone.utc)).date()

    async def run_monitoring_cycle(self, utc_now: Optional[datetime] = None) -> dict:
        """Run one monitoring pass.

        Args:
            utc_now: Current UTC datetime.  Defaults to ``datetime.now(UTC)``.
        """
        today = self._utc_today(utc_now)
        trading_day = self._validator.daily_state.trading_day
        if trading_day is not None and today != trading_day:
            logger.info("UTC day rolled over to %s", today.isoformat())
            await self._validator.reset_daily_tracking(today)

        try:
            actions = await self._position_manager.monitor_positions()
        except Exception as exc:
            logger.error("Position monitoring failed: %s", exc)
            actions = []

        await self._validator.update_daily_pl()

        try:
            resolved = await self.resolve_outcomes()
        except Exception as exc:
            logger.error("Outcome resolution failed: %s", exc)
            resolved = []

        return {"action": "monitored", "positions": actions, "resolved": len(resolved)}

    async def resolve_outcomes(self) -> list[SignalHistoryEntry]:
        """Resolve executed signals whose positions have closed.

        Entries whose trade the gateway still reports as open stay pending
        until a later cycle.
        """
        pending = list(self._pending)
        if not pending:
            self._last_profit.clear()
            return []

        positions = await self._gateway.open_positions()
        live = {p.ticket for p in positions}
        pending_tickets = {e.ticket for e in pending}
        for position in positions:
            if position.ticket in pending_tickets:
                self._last_profit[position.ticket] = position.profit

        resolved: list[SignalHistoryEntry] = []
        for entry in pending:
            if entry.ticket in live:
                continue
            profit = await self._realized_profit(entry.ticket)
            if profit is None:
                continue
            self._apply_outcome(entry, profit)
            self._resolved.append(entry)
            resolved.append(entry)

        # Entries appended by the analysis cycle during the awaits above stay
        self._pending = [e for e in self._pending if not e.resolved]
        waiting = {e.ticket for e in self._pending}
        self._last_profit = {
            t: p for t, p in self._last_profit.items() if t in waiting
        }
        return resolved

    async def _realized_profit(self, ticket: str) -> Optional[float]:
        closed_trade = getattr(self._gateway, "closed_trade", None)
        if closed_trade is None:
            return self._last_profit.pop(ticket, 0.0)
        try:
            trade = await closed_trade(ticket)
        except Exception as exc:
            logger.warning("Could not fetch closed trade %s: %s", ticket, exc)
            return None
        if trade is None:
            logger.debug("Trade %s not closed yet at the broker", ticket)
            return None
        self._last_profit.pop(ticket, None)
        return trade.profit

    def _apply_outcome(self, entry: SignalHistoryEntry, profit: float) -> None:
        now = time.time()
        win = profit > 0
        signal = entry.signal
        entry.outcome = TradeOutcome(
            ticket=entry.ticket, profit=profit, win=win, resolved_at=now,
        )
        self._performance.record(TradeRecord(
            strategy=signal.strategy,
            symbol=signal.symbol,
            profit=profit,
            entry=signal.entry,
            duration_seconds=now - entry.issued_at,
            close_time=now,
        ))
        self._arbiter.update_from_outcome(signal.strategy, signal.symbol, win)
        logger.info("Trade %s %s closed: %.2f (%s)",
                    entry.ticket, signal.symbol, profit, "win" if win else "loss")

    # ── Reporting ────────────────────────────────────────────────────────

    async def status(self) -> dict:
        return {
            "running": self._running,
            "active_strategies": [s.name for s in self._registry.active()],
            "monitored_symbols": self.monitored_symbols,
            "total_signals_issued": self._total_signals,
            "pending_outcomes": len(self._pending),
            "learning_progress": self._arbiter.learning_progress(),
            "risk": await self._validator.risk_status(),
        }

    def strategy_performance(self) -> dict[str, dict]:
        return {
            name: self._performance.performance(name).as_dict()
            for name in self._registry.names
        }
