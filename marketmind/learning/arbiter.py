"""Learning arbiter — picks one signal among competing strategies and
adapts strategy weights from realized outcomes.

Score::

    confidence × strategy_weight × symbol_weight × market_condition_factor

Feedback steps are asymmetric: a win adds more than a loss removes, so a
single losing trade cannot collapse a strategy's standing.  Every weight is
clamped to ``[MIN_WEIGHT, MAX_WEIGHT]`` at the point of mutation.
"""

import logging
import math
import time
from typing import Callable, Optional

from marketmind.strategy.models import Bar, StrategySignal

logger = logging.getLogger("marketmind.learning")

MIN_WEIGHT = 0.1
MAX_WEIGHT = 2.0
DEFAULT_WEIGHT = 1.0

STRATEGY_WIN_STEP = 0.05
STRATEGY_LOSS_STEP = -0.02
SYMBOL_WIN_STEP = 0.03
SYMBOL_LOSS_STEP = -0.01


def clamp_weight(value: float) -> float:
    return max(MIN_WEIGHT, min(MAX_WEIGHT, value))


def neutral_market_condition(bars: list[Bar]) -> float:
    """Default market-condition factor: no adjustment."""
    return 1.0


class LearningArbiter:
    """Owns the strategy and (symbol, strategy) weight maps.

    Args:
        initial_weights: Optional starting strategy weights (clamped).
        market_condition: Callable mapping the bar window to a score
            multiplier.  Defaults to a constant 1.0.
    """

    def __init__(
        self,
        initial_weights: Optional[dict[str, float]] = None,
        market_condition: Callable[[list[Bar]], float] = neutral_market_condition,
    ) -> None:
        self._strategy_weights: dict[str, float] = {
            name: clamp_weight(w) for name, w in (initial_weights or {}).items()
        }
        self._symbol_weights: dict[tuple[str, str], float] = {}
        self._market_condition = market_condition
        self._updates = 0
        self._wins = 0
        self._losses = 0
        self._last_update: Optional[float] = None

    # ── Queries ──────────────────────────────────────────────────────────

    def strategy_weight(self, strategy: str) -> float:
        return self._strategy_weights.get(strategy, DEFAULT_WEIGHT)

    def symbol_weight(self, strategy: str, symbol: str) -> float:
        return self._symbol_weights.get((symbol, strategy), DEFAULT_WEIGHT)

    def score(
        self,
        signal: StrategySignal,
        market_factor: float = 1.0,
    ) -> float:
        return (
            signal.confidence
            * self.strategy_weight(signal.strategy)
            * self.symbol_weight(signal.strategy, signal.symbol)
            * market_factor
        )

    def select_best_signal(
        self,
        signals: list[StrategySignal],
        bars: Optional[list[Bar]] = None,
    ) -> Optional[StrategySignal]:
        """Return the highest-scoring signal.

        A lone candidate is returned without scoring.  Ties (within float
        tolerance) keep the first-seen candidate.
        """
        if not signals:
            return None
        if len(signals) == 1:
            return signals[0]

        market_factor = self._market_condition(bars or [])
        best: Optional[StrategySignal] = None
        best_score = 0.0
        for signal in signals:
            score = self.score(signal, market_factor)
            logger.debug("Score %s %s %s: %.4f",
                         signal.strategy, signal.symbol, signal.action, score)
            if best is None or (
                score > best_score and not math.isclose(score, best_score)
            ):
                best = signal
                best_score = score
        return best

    def weights(self) -> dict:
        """Snapshot of both weight maps."""
        return {
            "strategies": dict(self._strategy_weights),
            "symbols": {
                f"{symbol}:{strategy}": w
                for (symbol, strategy), w in self._symbol_weights.items()
            },
        }

    def learning_progress(self) -> dict:
        return {
            "total_updates": self._updates,
            "wins": self._wins,
            "losses": self._losses,
            "last_update": self._last_update,
        }

    # ── Mutation ─────────────────────────────────────────────────────────

    def update_from_outcome(self, strategy: str, symbol: str, win: bool) -> None:
        """Apply one realized outcome to both weight maps.

        Contains no await, so outcomes are applied one at a time.
        """
        new_strategy = clamp_weight(
            self.strategy_weight(strategy)
            + (STRATEGY_WIN_STEP if win else STRATEGY_LOSS_STEP)
        )
        new_symbol = clamp_weight(
            self.symbol_weight(strategy, symbol)
            + (SYMBOL_WIN_STEP if win else SYMBOL_LOSS_STEP)
        )
        self._strategy_weights[strategy] = new_strategy
        self._symbol_weights[(symbol, strategy)] = new_symbol

        self._updates += 1
        if win:
            self._wins += 1
        else:
            self._losses += 1
        self._last_update = time.time()

        logger.info(
            "Learning update: %s weight %.2f, %s weight %.2f",
            strategy, new_strategy, symbol, new_symbol,
        )
