"""Daily loss tracking and trading block — pure math, no I/O.

Tracks the balance at the start of the trading day.  Once the day's loss
reaches the configured percentage, trading is blocked until the next
explicit reset; a later recovery does not lift the block.
"""

from datetime import date
from typing import Optional


class DailyRiskState:
    """Day-start balance, running P&L and the sticky trading block.

    Args:
        day_start_balance: Balance at the start of the trading day.
        trading_day: UTC date the state belongs to.
    """

    def __init__(
        self,
        day_start_balance: float = 0.0,
        trading_day: Optional[date] = None,
    ) -> None:
        self.day_start_balance: float = day_start_balance
        self.daily_pl: float = 0.0
        self.trading_blocked: bool = False
        self.trading_day: Optional[date] = trading_day

    # ── Mutation ─────────────────────────────────────────────────────────

    def reset(self, balance: float, trading_day: Optional[date] = None) -> None:
        """Start a new trading day at *balance*.  Clears the block."""
        self.day_start_balance = balance
        self.daily_pl = 0.0
        self.trading_blocked = False
        self.trading_day = trading_day

    def update_balance(self, balance: float) -> None:
        """Refresh the day's P&L from the latest balance."""
        self.daily_pl = balance - self.day_start_balance

    def check_daily_loss(self, balance: float, max_daily_loss_pct: float) -> Optional[str]:
        """Block trading if the day's loss has reached the limit.

        Returns a rejection reason when blocked by this check, else ``None``.
        """
        max_loss = self.max_daily_loss(max_daily_loss_pct)
        current_loss = self.day_start_balance - balance
        if current_loss >= max_loss:
            self.trading_blocked = True
            return (
                f"Daily loss limit reached: {current_loss:.2f} / {max_loss:.2f}"
            )
        return None

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def initialized(self) -> bool:
        return self.day_start_balance > 0

    def max_daily_loss(self, max_daily_loss_pct: float) -> float:
        """Maximum tolerated loss for the day, in account currency."""
        return self.day_start_balance * max_daily_loss_pct / 100.0

    @property
    def daily_loss_pct(self) -> float:
        """Day P&L as a percentage of the day-start balance."""
        if self.day_start_balance <= 0:
            return 0.0
        return self.daily_pl / self.day_start_balance * 100.0
