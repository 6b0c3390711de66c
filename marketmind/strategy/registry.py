"""Strategy registry — maps strategy keys to classes and holds the named
instances the engine runs."""

import logging
from typing import Optional

from marketmind.strategy.base import StrategyProtocol
from marketmind.strategy.smc import SMCStrategy

logger = logging.getLogger("marketmind")


STRATEGY_REGISTRY: dict[str, type] = {
    "smc": SMCStrategy,
}


def get_strategy(name: str, **kwargs) -> StrategyProtocol:
    """Look up and instantiate a strategy by registry key.

    Keyword arguments are passed to the strategy constructor.

    Raises ``KeyError`` if the strategy name is not registered.
    """
    if name not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return STRATEGY_REGISTRY[name](**kwargs)


class StrategyRegistry:
    """Named strategy instances, each independently activatable.

    Iteration order is registration order, which is also the order in
    which candidates reach the arbiter.
    """

    def __init__(self, strategies: Optional[list[StrategyProtocol]] = None) -> None:
        self._strategies: dict[str, StrategyProtocol] = {}
        for strategy in strategies or []:
            self.register(strategy)

    @classmethod
    def from_keys(cls, keys: list[str], **kwargs) -> "StrategyRegistry":
        return cls([get_strategy(k, **kwargs) for k in keys])

    def register(self, strategy: StrategyProtocol) -> None:
        if strategy.name in self._strategies:
            raise ValueError(f"Strategy '{strategy.name}' already registered")
        self._strategies[strategy.name] = strategy
        logger.info("Registered strategy '%s' (%s)", strategy.name, strategy.timeframe)

    def get(self, name: str) -> Optional[StrategyProtocol]:
        return self._strategies.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._strategies.keys())

    def __iter__(self):
        return iter(self._strategies.values())

    def __len__(self) -> int:
        return len(self._strategies)

    def active(self) -> list[StrategyProtocol]:
        return [s for s in self._strategies.values() if s.is_active]

    def activate_all(self) -> None:
        for strategy in self._strategies.values():
            strategy.activate()

    def deactivate_all(self) -> None:
        for strategy in self._strategies.values():
            strategy.deactivate()
