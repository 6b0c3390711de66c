"""Tests for marketmind.learning — arbiter selection, weight feedback and
performance statistics."""

import random

import pytest

from marketmind.learning.arbiter import MAX_WEIGHT, MIN_WEIGHT, LearningArbiter
from marketmind.learning.performance import (
    PerformanceTracker,
    TradeRecord,
    calculate_performance,
)
from marketmind.strategy.models import BUY, StrategySignal


def _signal(strategy: str, confidence: float, symbol: str = "EUR_USD") -> StrategySignal:
    return StrategySignal(
        symbol=symbol, action=BUY, confidence=confidence,
        entry=1.1000, stop_loss=1.0950, take_profit=1.1100,
        strategy=strategy, timestamp=0.0,
    )


# ── Selection ────────────────────────────────────────────────────────────


class TestSelection:
    def test_empty(self):
        assert LearningArbiter().select_best_signal([]) is None

    def test_single_candidate_returned(self):
        only = _signal("A", 0.1)
        assert LearningArbiter().select_best_signal([only]) is only

    def test_highest_score_wins(self):
        arbiter = LearningArbiter()
        low, high = _signal("A", 0.6), _signal("B", 0.9)
        assert arbiter.select_best_signal([low, high]) is high

    def test_weights_change_the_winner(self):
        arbiter = LearningArbiter(initial_weights={"A": 2.0, "B": 1.0})
        a, b = _signal("A", 0.6), _signal("B", 0.9)
        assert arbiter.select_best_signal([a, b]) is a

    def test_tie_keeps_first_seen(self):
        """0.6 × 1.2 and 0.9 × 0.8 both score 0.72 → first candidate."""
        arbiter = LearningArbiter(initial_weights={"A": 1.2, "B": 0.8})
        a, b = _signal("A", 0.6), _signal("B", 0.9)
        assert arbiter.select_best_signal([a, b]) is a

    def test_market_condition_factor(self):
        seen = []

        def factor(bars):
            seen.append(bars)
            return 0.5

        arbiter = LearningArbiter(market_condition=factor)
        a, b = _signal("A", 0.6), _signal("B", 0.9)
        assert arbiter.select_best_signal([a, b], bars=[]) is b
        assert seen == [[]]
        assert arbiter.score(a, 0.5) == pytest.approx(0.3)

    def test_initial_weights_clamped(self):
        arbiter = LearningArbiter(initial_weights={"A": 5.0, "B": 0.0})
        assert arbiter.strategy_weight("A") == MAX_WEIGHT
        assert arbiter.strategy_weight("B") == MIN_WEIGHT


# ── Feedback ─────────────────────────────────────────────────────────────


class TestFeedback:
    def test_win_steps(self):
        arbiter = LearningArbiter()
        arbiter.update_from_outcome("SMC", "EUR_USD", win=True)
        assert arbiter.strategy_weight("SMC") == pytest.approx(1.05)
        assert arbiter.symbol_weight("SMC", "EUR_USD") == pytest.approx(1.03)

    def test_loss_steps(self):
        arbiter = LearningArbiter()
        arbiter.update_from_outcome("SMC", "EUR_USD", win=False)
        assert arbiter.strategy_weight("SMC") == pytest.approx(0.98)
        assert arbiter.symbol_weight("SMC", "EUR_USD") == pytest.approx(0.99)

    def test_symbol_weights_are_per_symbol(self):
        arbiter = LearningArbiter()
        arbiter.update_from_outcome("SMC", "EUR_USD", win=True)
        assert arbiter.symbol_weight("SMC", "GBP_USD") == 1.0

    def test_weights_stay_in_bounds(self):
        arbiter = LearningArbiter()
        rng = random.Random(7)
        for _ in range(2000):
            arbiter.update_from_outcome("SMC", "EUR_USD", win=rng.random() < 0.5)
            assert MIN_WEIGHT <= arbiter.strategy_weight("SMC") <= MAX_WEIGHT
            assert MIN_WEIGHT <= arbiter.symbol_weight("SMC", "EUR_USD") <= MAX_WEIGHT

    def test_long_streaks_hit_the_bounds(self):
        arbiter = LearningArbiter()
        for _ in range(100):
            arbiter.update_from_outcome("SMC", "EUR_USD", win=True)
        assert arbiter.strategy_weight("SMC") == MAX_WEIGHT
        for _ in range(200):
            arbiter.update_from_outcome("SMC", "EUR_USD", win=False)
        assert arbiter.strategy_weight("SMC") == MIN_WEIGHT

    def test_learning_progress(self):
        arbiter = LearningArbiter()
        assert arbiter.learning_progress()["last_update"] is None
        arbiter.update_from_outcome("SMC", "EUR_USD", win=True)
        arbiter.update_from_outcome("SMC", "EUR_USD", win=False)
        progress = arbiter.learning_progress()
        assert progress["total_updates"] == 2
        assert progress["wins"] == 1
        assert progress["losses"] == 1
        assert progress["last_update"] is not None

    def test_weights_snapshot(self):
        arbiter = LearningArbiter()
        arbiter.update_from_outcome("SMC", "EUR_USD", win=True)
        weights = arbiter.weights()
        assert weights["strategies"]["SMC"] == pytest.approx(1.05)
        assert weights["symbols"]["EUR_USD:SMC"] == pytest.approx(1.03)


# ── Performance ──────────────────────────────────────────────────────────


class TestPerformance:
    def test_empty(self):
        perf = calculate_performance([])
        assert perf.total_trades == 0
        assert perf.profit_factor is None

    def test_stats(self):
        perf = calculate_performance([100.0, -50.0, 200.0, -100.0, -50.0])
        assert perf.total_trades == 5
        assert perf.winning_trades == 2
        assert perf.losing_trades == 3
        assert perf.win_rate == 40.0
        assert perf.profit_factor == pytest.approx(1.5)
        assert perf.net_profit == pytest.approx(100.0)
        # Peak 250 after trade 3, trough 100 after trade 5
        assert perf.max_drawdown == pytest.approx(150.0)

    def test_no_losses_has_no_profit_factor(self):
        assert calculate_performance([10.0, 20.0]).profit_factor is None

    def test_tracker_summary(self):
        tracker = PerformanceTracker(["SMC", "Other"])
        tracker.record(TradeRecord("SMC", "EUR_USD", 30.0))
        tracker.record(TradeRecord("SMC", "EUR_USD", -10.0))
        summary = tracker.summary()
        assert summary["SMC"] == {
            "total_trades": 2,
            "win_rate": 50.0,
            "profit_factor": 3.0,
            "max_drawdown": 10.0,
        }
        assert summary["Other"]["total_trades"] == 0

    def test_tracker_trades_are_a_copy(self):
        tracker = PerformanceTracker()
        tracker.record(TradeRecord("SMC", "EUR_USD", 30.0))
        tracker.trades("SMC").clear()
        assert len(tracker.trades("SMC")) == 1
        assert tracker.trades("Other") == []
