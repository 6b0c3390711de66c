"""Collaborator protocols — the capabilities the engine consumes.

The engine never talks to a concrete broker.  Anything that satisfies
these protocols (``OandaClient``, a paper broker, a test double) can be
injected.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from marketmind.broker.models import (
    AccountSnapshot,
    OrderResult,
    Position,
    SymbolInfo,
)
from marketmind.strategy.models import Bar, StrategySignal, Tick


@runtime_checkable
class MarketDataFeed(Protocol):
    """Source of quotes, bar history and instrument metadata."""

    async def ensure_ready(self) -> bool:
        """Return ``True`` once the feed can serve requests."""
        ...

    async def latest_tick(self, symbol: str) -> Optional[Tick]:
        ...

    async def bar_history(
        self, symbol: str, timeframe: str, count: int,
    ) -> list[Bar]:
        """Return up to *count* bars, oldest first."""
        ...

    async def symbol_info(self, symbol: str) -> Optional[SymbolInfo]:
        ...


@runtime_checkable
class ExecutionGateway(Protocol):
    """Order routing and account state.

    Gateways may additionally expose ``closed_trade(ticket)`` returning a
    ``ClosedTrade``; the engine uses it when present to resolve outcomes.
    """

    async def open_positions(self) -> list[Position]:
        ...

    async def account_snapshot(self) -> AccountSnapshot:
        ...

    async def submit_market_order(
        self, signal: StrategySignal, size: float,
    ) -> OrderResult:
        ...

    async def modify_position(
        self, ticket: str, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        ...

    async def close_position(self, ticket: str) -> OrderResult:
        ...
