"""Broker data models — account, position and order types exchanged with
the execution gateway."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AccountSnapshot:
    """Balance and equity of the trading account."""

    balance: float
    equity: float
    currency: str = "USD"


@dataclass(frozen=True)
class Position:
    """An open position as reported by the gateway.

    ``profit`` is the unrealized P&L in account currency; prices are in
    instrument price units.
    """

    ticket: str
    symbol: str
    direction: str  # "BUY" or "SELL"
    volume: float
    open_price: float
    current_price: float
    profit: float
    stop_loss: float
    take_profit: float
    open_time: str = ""

    @property
    def is_long(self) -> bool:
        return self.direction == "BUY"

    @property
    def profit_distance(self) -> float:
        """Unrealized profit in price units, positive when winning."""
        if self.is_long:
            return self.current_price - self.open_price
        return self.open_price - self.current_price


@dataclass(frozen=True)
class OrderResult:
    """Outcome of an order, modification or close request."""

    success: bool
    ticket: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SymbolInfo:
    """Volume constraints for an instrument.

    ``contract_size`` converts one unit of volume into instrument units.
    Unit-based brokers (OANDA) use 1.0; lot-based brokers use e.g. 100 000.
    """

    symbol: str
    pip_size: float
    volume_min: float
    volume_max: float
    volume_step: float
    contract_size: float = 1.0


@dataclass(frozen=True)
class ClosedTrade:
    """Realized result of a closed position."""

    ticket: str
    profit: float
    close_time: str = ""
