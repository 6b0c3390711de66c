"""Strategy protocol.

Defines the interface that all strategies must implement.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from marketmind.strategy.models import Bar, StrategySignal, Tick


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all trading strategies must satisfy."""

    name: str
    timeframe: str
    symbols: list[str]
    last_insight: dict

    @property
    def is_active(self) -> bool:
        ...

    def activate(self) -> None:
        ...

    def deactivate(self) -> None:
        ...

    def analyze(
        self, symbol: str, bars: list[Bar], tick: Tick,
    ) -> list[StrategySignal]:
        """Detect structures and return zero or more validated candidates."""
        ...
