"""Open-position risk management.

Rules, evaluated per position against the same snapshot:
  - At 1.5× the original stop distance in profit → move SL to entry.
  - Loss ≥ 2× the per-trade risk budget of the day → close immediately.
  - Optional trailing policy → move SL to whatever it returns.
"""

import logging
import math
from typing import Optional, Protocol, runtime_checkable

from marketmind.broker.base import ExecutionGateway
from marketmind.broker.models import Position
from marketmind.risk.daily_limit import DailyRiskState
from marketmind.risk.models import RiskParameters

logger = logging.getLogger("marketmind.risk")

BREAK_EVEN_MULTIPLE = 1.5
EMERGENCY_LOSS_MULTIPLE = 2.0


@runtime_checkable
class TrailingStopPolicy(Protocol):
    """Decides a new stop for an open position, or ``None`` to leave it."""

    def new_stop(self, position: Position) -> Optional[float]:
        ...


def _stop_at_or_beyond_entry(position: Position) -> bool:
    if math.isclose(position.stop_loss, position.open_price):
        return True
    if position.is_long:
        return position.stop_loss > position.open_price
    return position.stop_loss < position.open_price


class PositionRiskManager:
    """Applies break-even, emergency-close and trailing rules.

    Args:
        gateway: Execution gateway used to read and adjust positions.
        params: Risk limits (``max_risk_per_trade_pct`` drives the
            emergency threshold).
        daily_state: Shared daily state; its day-start balance is the base
            of the emergency threshold.
        trailing: Optional trailing-stop policy.
    """

    def __init__(
        self,
        gateway: ExecutionGateway,
        params: RiskParameters,
        daily_state: DailyRiskState,
        trailing: Optional[TrailingStopPolicy] = None,
    ) -> None:
        self._gateway = gateway
        self._params = params
        self._daily_state = daily_state
        self._trailing = trailing
        self._initial_risk: dict[str, float] = {}
        self._break_even_done: set[str] = set()

    # ── Rules ────────────────────────────────────────────────────────────

    def initial_risk(self, position: Position) -> float:
        """Stop distance of *position* as first seen, in price units."""
        if position.ticket not in self._initial_risk:
            risk = abs(position.open_price - position.stop_loss) if position.stop_loss else 0.0
            self._initial_risk[position.ticket] = risk
        return self._initial_risk[position.ticket]

    def should_move_to_break_even(self, position: Position) -> bool:
        risk = self.initial_risk(position)
        if risk <= 0 or position.ticket in self._break_even_done:
            return False
        if _stop_at_or_beyond_entry(position):
            return False
        return position.profit_distance >= BREAK_EVEN_MULTIPLE * risk

    def emergency_loss_threshold(self) -> float:
        return (
            EMERGENCY_LOSS_MULTIPLE
            * self._daily_state.day_start_balance
            * self._params.max_risk_per_trade_pct
            / 100.0
        )

    def should_emergency_close(self, position: Position) -> bool:
        threshold = self.emergency_loss_threshold()
        if threshold <= 0 or position.profit >= 0:
            return False
        return abs(position.profit) >= threshold

    # ── Monitoring ───────────────────────────────────────────────────────

    async def monitor_positions(self) -> list[dict]:
        """Evaluate every open position once.  Returns the actions taken."""
        positions = await self._gateway.open_positions()
        actions: list[dict] = []
        for position in positions:
            try:
                actions.extend(await self._manage(position))
            except Exception as exc:
                logger.error("Error managing position %s: %s", position.ticket, exc)
        self.forget_closed({p.ticket for p in positions})
        return actions

    async def _manage(self, position: Position) -> list[dict]:
        move_to_break_even = self.should_move_to_break_even(position)
        emergency_close = self.should_emergency_close(position)
        actions: list[dict] = []

        if move_to_break_even:
            result = await self._gateway.modify_position(
                position.ticket, position.open_price, position.take_profit,
            )
            if result.success:
                self._break_even_done.add(position.ticket)
                logger.info("Moved %s %s to break-even at %.5f",
                            position.symbol, position.ticket, position.open_price)
                actions.append({
                    "action": "break_even",
                    "ticket": position.ticket,
                    "symbol": position.symbol,
                    "stop_loss": position.open_price,
                })
            else:
                logger.warning("Break-even move failed for %s: %s",
                               position.ticket, result.error)

        if emergency_close:
            result = await self._gateway.close_position(position.ticket)
            if result.success:
                logger.warning("Emergency close %s %s, loss %.2f",
                               position.symbol, position.ticket, position.profit)
                actions.append({
                    "action": "emergency_close",
                    "ticket": position.ticket,
                    "symbol": position.symbol,
                    "profit": position.profit,
                })
            else:
                logger.error("Emergency close failed for %s: %s",
                             position.ticket, result.error)
            return actions

        if self._trailing is not None and not move_to_break_even:
            new_stop = self._trailing.new_stop(position)
            if new_stop is not None and not math.isclose(new_stop, position.stop_loss):
                result = await self._gateway.modify_position(
                    position.ticket, new_stop, position.take_profit,
                )
                if result.success:
                    logger.info("Trailed %s stop to %.5f", position.ticket, new_stop)
                    actions.append({
                        "action": "trail",
                        "ticket": position.ticket,
                        "symbol": position.symbol,
                        "stop_loss": new_stop,
                    })

        return actions

    def forget_closed(self, live_tickets: set[str]) -> None:
        """Drop remembered state for tickets no longer open."""
        for ticket in list(self._initial_risk):
            if ticket not in live_tickets:
                del self._initial_risk[ticket]
        self._break_even_done &= live_tickets
