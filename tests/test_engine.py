"""Tests for the decision engine orchestration.

Verifies end-to-end flow: tick + bars → strategy candidates → arbiter →
risk validation → order, plus monitoring, outcome feedback and lifecycle.
Uses mock collaborators to avoid real OANDA calls.
"""

import asyncio
from datetime import date, datetime, timezone

import pytest

from marketmind.broker.models import (
    AccountSnapshot,
    ClosedTrade,
    OrderResult,
    Position,
    SymbolInfo,
)
from marketmind.engine import MarketMindEngine
from marketmind.learning.arbiter import LearningArbiter
from marketmind.risk.models import RiskParameters
from marketmind.strategy.models import BUY, CLOSE, Bar, StrategySignal, Tick
from marketmind.strategy.registry import StrategyRegistry
from marketmind.strategy.smc import SMCStrategy


# ── Helpers ──────────────────────────────────────────────────────────────


def _bar(i: int, o: float, h: float, l: float, c: float) -> Bar:
    return Bar(f"2025-01-10T{i // 4:02d}:{(i % 4) * 15:02d}:00Z", o, h, l, c, 500)


def _flat(i: int, price: float) -> Bar:
    return _bar(i, price, price + 0.0005, price - 0.0005, price)


def _bullish_order_block_bars(n: int = 100) -> list[Bar]:
    bars: list[Bar] = [_flat(i, 1.1000) for i in range(40)]
    bars.append(_bar(40, 1.1000, 1.1012, 1.0980, 1.1010))
    bars.append(_bar(41, 1.1010, 1.1022, 1.1008, 1.1020))
    bars.append(_bar(42, 1.1020, 1.1032, 1.1018, 1.1030))
    bars.extend(_flat(i, 1.1030) for i in range(43, n))
    return bars


class MockFeed:
    def __init__(self, bars: list[Bar] | None = None, bid: float = 1.1006) -> None:
        self.bars = bars if bars is not None else _bullish_order_block_bars()
        self.bid = bid
        self.ready = True
        self.bar_requests: list[tuple] = []

    async def ensure_ready(self):
        return self.ready

    async def latest_tick(self, symbol):
        if self.bid is None:
            return None
        return Tick(symbol, self.bid, self.bid + 0.0001, 1.0, 100, "t")

    async def bar_history(self, symbol, timeframe, count):
        self.bar_requests.append((symbol, timeframe, count))
        return list(self.bars[-count:])

    async def symbol_info(self, symbol):
        return SymbolInfo(symbol, 0.0001, 1, 100_000_000, 1)


class MockGateway:
    def __init__(self, balance: float = 10_000.0) -> None:
        self.balance = balance
        self.positions: list[Position] = []
        self.orders: list[tuple] = []
        self.closed: list[str] = []
        self._next_ticket = 1

    async def account_snapshot(self):
        return AccountSnapshot(self.balance, self.balance)

    async def open_positions(self):
        return list(self.positions)

    async def submit_market_order(self, signal, size):
        ticket = str(self._next_ticket)
        self._next_ticket += 1
        self.orders.append((signal, size))
        self.positions.append(Position(
            ticket, signal.symbol, signal.action, size, signal.entry,
            signal.entry, 0.0, signal.stop_loss, signal.take_profit,
        ))
        return OrderResult(True, ticket)

    async def modify_position(self, ticket, stop_loss, take_profit):
        return OrderResult(True, ticket)

    async def close_position(self, ticket):
        self.closed.append(ticket)
        self.positions = [p for p in self.positions if p.ticket != ticket]
        return OrderResult(True, ticket)


class ClosingGateway(MockGateway):
    """Gateway that reports realized P&L of closed trades."""

    def __init__(self, realized: float, **kwargs) -> None:
        super().__init__(**kwargs)
        self.realized = realized

    async def closed_trade(self, ticket):
        return ClosedTrade(ticket, self.realized)


class ScriptedStrategy:
    def __init__(self, name: str, signals: list[StrategySignal], timeframe: str = "M15") -> None:
        self.name = name
        self.timeframe = timeframe
        self.symbols = ["EUR_USD"]
        self.signals = signals
        self.last_insight: dict = {}
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    def activate(self) -> None:
        self._active = True

    def deactivate(self) -> None:
        self._active = False

    def analyze(self, symbol, bars, tick):
        return [s for s in self.signals if s.symbol == symbol]


def _engine(feed=None, gateway=None, strategies=None, **kwargs) -> MarketMindEngine:
    registry = StrategyRegistry(strategies if strategies is not None else [SMCStrategy()])
    registry.activate_all()
    return MarketMindEngine(
        feed=feed or MockFeed(),
        gateway=gateway or MockGateway(),
        registry=registry,
        **kwargs,
    )


# ── Analysis ─────────────────────────────────────────────────────────────


class TestAnalysis:
    @pytest.mark.asyncio
    async def test_order_block_trade_placed(self):
        gateway = MockGateway()
        engine = _engine(gateway=gateway)
        result = await engine.analyze_symbol("eur_usd")
        assert result["action"] == "order_placed"
        assert result["symbol"] == "EUR_USD"
        assert result["direction"] == BUY
        assert result["strategy"] == "SMC"
        signal, size = gateway.orders[0]
        assert signal.reward_risk >= 1.5
        assert size > 0
        assert len(engine.signal_history) == 1
        assert engine.signal_history[0].ticket == result["ticket"]

    @pytest.mark.asyncio
    async def test_requests_strategy_timeframe_and_bar_count(self):
        feed = MockFeed()
        await _engine(feed=feed).analyze_symbol("EUR_USD")
        assert feed.bar_requests == [("EUR_USD", "M15", 100)]

    @pytest.mark.asyncio
    async def test_no_tick_skips(self):
        engine = _engine(feed=MockFeed(bid=None))
        result = await engine.analyze_symbol("EUR_USD")
        assert result == {"action": "skipped", "symbol": "EUR_USD", "reason": "no_tick"}

    @pytest.mark.asyncio
    async def test_short_history_skips(self):
        engine = _engine(feed=MockFeed(bars=_bullish_order_block_bars()[:49]))
        result = await engine.analyze_symbol("EUR_USD")
        assert result["reason"] == "insufficient_data"

    @pytest.mark.asyncio
    async def test_no_signal_skips(self):
        flat = [_flat(i, 1.1000) for i in range(100)]
        result = await _engine(feed=MockFeed(bars=flat)).analyze_symbol("EUR_USD")
        assert result["reason"] == "no_signal"

    @pytest.mark.asyncio
    async def test_rejected_signal_not_recorded(self):
        gateway = MockGateway()
        engine = _engine(gateway=gateway, params=RiskParameters(max_spread_pips=0.5))
        result = await engine.analyze_symbol("EUR_USD")
        assert result["action"] == "rejected"
        assert "Spread" in result["reason"]
        assert gateway.orders == []
        assert engine.signal_history == []

    @pytest.mark.asyncio
    async def test_arbiter_picks_between_strategies(self):
        weak = StrategySignal("EUR_USD", BUY, 0.6, 1.1006, 1.0990, 1.1050, "Weak", 0.0)
        strong = StrategySignal("EUR_USD", BUY, 0.9, 1.1006, 1.0990, 1.1050, "Strong", 0.0)
        gateway = MockGateway()
        engine = _engine(
            gateway=gateway,
            strategies=[ScriptedStrategy("Weak", [weak]), ScriptedStrategy("Strong", [strong])],
        )
        result = await engine.analyze_symbol("EUR_USD")
        assert result["strategy"] == "Strong"

    @pytest.mark.asyncio
    async def test_close_signal_closes_symbol_positions(self):
        close = StrategySignal("EUR_USD", CLOSE, 0.9, 1.1006, 1.1006, 1.1006, "Exit", 0.0)
        gateway = MockGateway()
        gateway.positions = [
            Position("7", "EUR_USD", BUY, 1000, 1.1, 1.1, 0.0, 1.09, 1.12),
            Position("8", "GBP_USD", BUY, 1000, 1.3, 1.3, 0.0, 1.29, 1.32),
        ]
        engine = _engine(gateway=gateway, strategies=[ScriptedStrategy("Exit", [close])])
        result = await engine.analyze_symbol("EUR_USD")
        assert result == {"action": "closed", "symbol": "EUR_USD", "tickets": ["7"]}
        assert gateway.closed == ["7"]

    @pytest.mark.asyncio
    async def test_collaborator_error_contained(self):
        class BrokenFeed(MockFeed):
            async def bar_history(self, symbol, timeframe, count):
                raise ConnectionError("feed down")

        result = await _engine(feed=BrokenFeed()).analyze_symbol("EUR_USD")
        assert result["action"] == "error"
        assert "feed down" in result["reason"]

    @pytest.mark.asyncio
    async def test_analysis_cycle_covers_all_symbols(self):
        engine = _engine()
        engine.add_symbol("EUR_USD")
        engine.add_symbol("GBP_USD")
        cycle = await engine.run_analysis_cycle()
        assert set(cycle["results"]) == {"EUR_USD", "GBP_USD"}
        assert all(r["action"] == "order_placed" for r in cycle["results"].values())

    @pytest.mark.asyncio
    async def test_same_symbol_serialised(self):
        """Concurrent analyses of one symbol never both trade the same block."""
        gateway = MockGateway()
        engine = _engine(gateway=gateway)
        results = await asyncio.gather(
            engine.analyze_symbol("EUR_USD"), engine.analyze_symbol("EUR_USD"),
        )
        assert sorted(r["action"] for r in results) == ["order_placed", "skipped"]
        assert len(gateway.orders) == 1


# ── Monitoring and learning feedback ─────────────────────────────────────


class TestMonitoring:
    @pytest.mark.asyncio
    async def test_closed_trade_profit_updates_learning(self):
        gateway = ClosingGateway(realized=50.0)
        engine = _engine(gateway=gateway)
        await engine.analyze_symbol("EUR_USD")
        gateway.positions = []

        result = await engine.run_monitoring_cycle()
        assert result["resolved"] == 1
        assert engine.arbiter.strategy_weight("SMC") == pytest.approx(1.05)
        assert engine.arbiter.symbol_weight("SMC", "EUR_USD") == pytest.approx(1.03)
        perf = engine.strategy_performance()["SMC"]
        assert perf["total_trades"] == 1
        assert perf["win_rate"] == 100.0
        assert engine.signal_history[0].outcome.win is True

    @pytest.mark.asyncio
    async def test_last_seen_profit_used_without_closed_trade(self):
        gateway = MockGateway()
        engine = _engine(gateway=gateway)
        await engine.analyze_symbol("EUR_USD")
        position = gateway.positions[0]
        gateway.positions = [Position(
            position.ticket, position.symbol, position.direction, position.volume,
            position.open_price, 1.0990, -20.0, position.stop_loss, position.take_profit,
        )]
        await engine.run_monitoring_cycle()
        assert engine.signal_history[0].outcome is None

        gateway.positions = []
        await engine.run_monitoring_cycle()
        outcome = engine.signal_history[0].outcome
        assert outcome.profit == -20.0
        assert outcome.win is False
        assert engine.arbiter.strategy_weight("SMC") == pytest.approx(0.98)

    @pytest.mark.asyncio
    async def test_outcome_resolved_once(self):
        gateway = ClosingGateway(realized=10.0)
        engine = _engine(gateway=gateway)
        await engine.analyze_symbol("EUR_USD")
        gateway.positions = []
        await engine.run_monitoring_cycle()
        await engine.run_monitoring_cycle()
        assert engine.arbiter.learning_progress()["total_updates"] == 1

    @pytest.mark.asyncio
    async def test_day_rollover_resets_daily_tracking(self):
        gateway = MockGateway(balance=9_000.0)
        engine = _engine(gateway=gateway)
        state = engine.validator.daily_state
        state.reset(10_000.0, date(2025, 1, 10))
        state.trading_blocked = True

        await engine.run_monitoring_cycle(datetime(2025, 1, 10, 23, 0, tzinfo=timezone.utc))
        assert state.trading_blocked is True

        await engine.run_monitoring_cycle(datetime(2025, 1, 11, 0, 1, tzinfo=timezone.utc))
        assert state.trading_blocked is False
        assert state.day_start_balance == 9_000.0
        assert state.trading_day == date(2025, 1, 11)

    @pytest.mark.asyncio
    async def test_trade_open_at_broker_stays_pending(self):
        class ReportingGateway(MockGateway):
            def __init__(self) -> None:
                super().__init__()
                self.closed_trades: dict[str, ClosedTrade] = {}

            async def closed_trade(self, ticket):
                return self.closed_trades.get(ticket)

        gateway = ReportingGateway()
        engine = _engine(gateway=gateway)
        result = await engine.analyze_symbol("EUR_USD")
        gateway.positions = []

        assert (await engine.run_monitoring_cycle())["resolved"] == 0
        assert engine.signal_history[0].outcome is None
        assert engine.arbiter.learning_progress()["total_updates"] == 0

        gateway.closed_trades[result["ticket"]] = ClosedTrade(result["ticket"], 25.0)
        assert (await engine.run_monitoring_cycle())["resolved"] == 1
        assert engine.signal_history[0].outcome.profit == 25.0
        assert engine.arbiter.strategy_weight("SMC") == pytest.approx(1.05)

    @pytest.mark.asyncio
    async def test_closed_trade_lookup_failure_retried(self):
        class FlakyGateway(ClosingGateway):
            def __init__(self) -> None:
                super().__init__(realized=-15.0)
                self.fail = True

            async def closed_trade(self, ticket):
                if self.fail:
                    raise ConnectionError("broker down")
                return await super().closed_trade(ticket)

        gateway = FlakyGateway()
        engine = _engine(gateway=gateway)
        await engine.analyze_symbol("EUR_USD")
        gateway.positions = []

        assert await engine.resolve_outcomes() == []
        gateway.fail = False
        resolved = await engine.resolve_outcomes()
        assert [e.outcome.profit for e in resolved] == [-15.0]

    @pytest.mark.asyncio
    async def test_only_engine_tickets_remembered(self):
        """Manual trades opening and closing around ours leave no residue."""
        gateway = MockGateway()
        engine = _engine(gateway=gateway)
        await engine.analyze_symbol("EUR_USD")
        own = gateway.positions[0]

        for i in range(200):
            manual = Position(f"m{i}", "GBP_USD", BUY, 1000, 1.3, 1.3, 1.0, 1.29, 1.32)
            gateway.positions = [own, manual]
            await engine.resolve_outcomes()
        assert set(engine._last_profit) == {own.ticket}

        gateway.positions = []
        await engine.resolve_outcomes()
        assert engine._last_profit == {}

    @pytest.mark.asyncio
    async def test_resolved_history_is_bounded(self):
        signal = StrategySignal("EUR_USD", BUY, 0.9, 1.1006, 1.0990, 1.1050, "Scripted", 0.0)
        gateway = ClosingGateway(realized=5.0)
        engine = _engine(
            gateway=gateway,
            strategies=[ScriptedStrategy("Scripted", [signal])],
            history_limit=2,
        )
        for _ in range(3):
            assert (await engine.analyze_symbol("EUR_USD"))["action"] == "order_placed"
            gateway.positions = []
            await engine.resolve_outcomes()

        history = engine.signal_history
        assert [e.ticket for e in history] == ["2", "3"]
        assert all(e.resolved for e in history)
        status = await engine.status()
        assert status["total_signals_issued"] == 3
        assert status["pending_outcomes"] == 0


# ── Lifecycle and reporting ──────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_fails_when_feed_not_ready(self):
        feed = MockFeed()
        feed.ready = False
        engine = _engine(feed=feed)
        assert await engine.start() is False
        assert engine.running is False
        assert engine.monitored_symbols == []

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        registry = StrategyRegistry([SMCStrategy()])
        engine = MarketMindEngine(
            MockFeed(bars=[]), MockGateway(), registry,
            analysis_interval=60, monitor_interval=60,
        )
        assert await engine.start() is True
        assert engine.running is True
        assert engine.monitored_symbols == ["EUR_USD", "GBP_USD", "USD_CAD", "AUD_USD"]
        assert [s.name for s in registry.active()] == ["SMC"]
        assert engine.validator.daily_state.day_start_balance == 10_000.0

        await engine.stop()
        assert engine.running is False
        assert registry.active() == []

    def test_symbols_normalised(self):
        engine = _engine()
        assert engine.add_symbol("usd_jpy") == "USD_JPY"
        engine.add_symbol("USD_JPY")
        assert engine.monitored_symbols == ["USD_JPY"]
        assert engine.remove_symbol("usd_jpy") is True
        assert engine.remove_symbol("usd_jpy") is False

    @pytest.mark.asyncio
    async def test_removed_symbol_releases_lock(self):
        engine = _engine()
        engine.add_symbol("EUR_USD")
        await engine.analyze_symbol("EUR_USD")
        assert "EUR_USD" in engine._locks
        engine.remove_symbol("EUR_USD")
        assert "EUR_USD" not in engine._locks

    @pytest.mark.asyncio
    async def test_status(self):
        engine = _engine(arbiter=LearningArbiter())
        engine.add_symbol("EUR_USD")
        await engine.analyze_symbol("EUR_USD")
        status = await engine.status()
        assert status["running"] is False
        assert status["active_strategies"] == ["SMC"]
        assert status["monitored_symbols"] == ["EUR_USD"]
        assert status["total_signals_issued"] == 1
        assert status["pending_outcomes"] == 1
        assert status["learning_progress"]["total_updates"] == 0
        assert status["risk"]["open_positions"] == 1

    def test_strategy_performance_lists_every_strategy(self):
        engine = _engine()
        assert engine.strategy_performance() == {
            "SMC": {
                "total_trades": 0,
                "win_rate": 0.0,
                "profit_factor": None,
                "max_drawdown": 0.0,
            }
        }
