"""OANDA v20 REST API async client.

Implements both ``MarketDataFeed`` and ``ExecutionGateway``: pricing,
candles, instrument metadata, account queries, order placement and
per-trade management.  Every OANDA trade is one ``Position`` whose ticket
is the trade ID.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

import httpx

from marketmind.broker.models import (
    AccountSnapshot,
    ClosedTrade,
    OrderResult,
    Position,
    SymbolInfo,
)
from marketmind.config import Config
from marketmind.risk.spread_filter import spread_in_pips
from marketmind.strategy.models import BUY, SELL, Bar, StrategySignal, Tick, pip_size

logger = logging.getLogger("marketmind.broker")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


def _format_units(size: float, action: str) -> str:
    units = format(Decimal(str(size)).normalize(), "f")
    return f"-{units}" if action == SELL else units


class OandaClient:
    """Async client wrapping OANDA v20 REST API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.oanda_base_url
        self._account_id = config.oanda_account_id
        self._headers = {
            "Authorization": f"Bearer {config.oanda_api_token}",
            "Content-Type": "application/json",
        }
        self._instruments: dict[str, SymbolInfo] = {}
        self._display_precision: dict[str, int] = {}
        self._ticket_symbols: dict[str, str] = {}

    @property
    def _account_url(self) -> str:
        return f"{self._base_url}/v3/accounts/{self._account_id}"

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=30.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "OANDA %s %s returned %d, retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "OANDA %s %s transport error (%s), retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    # ── MarketDataFeed ───────────────────────────────────────────────────

    async def ensure_ready(self) -> bool:
        """Ready once the account summary can be fetched."""
        try:
            await self.account_snapshot()
        except httpx.HTTPError as exc:
            logger.error("OANDA not reachable: %s", exc)
            return False
        return True

    async def _prices(self, symbols: list[str]) -> dict[str, dict]:
        url = f"{self._account_url}/pricing"
        params = {"instruments": ",".join(symbols)}
        resp = await self._request_with_retry("get", url, params=params)
        return {p["instrument"]: p for p in resp.json().get("prices", [])}

    async def latest_tick(self, symbol: str) -> Optional[Tick]:
        price = (await self._prices([symbol])).get(symbol)
        if not price or not price.get("bids") or not price.get("asks"):
            return None
        bid = float(price["bids"][0]["price"])
        ask = float(price["asks"][0]["price"])
        return Tick(
            symbol=symbol,
            bid=bid,
            ask=ask,
            spread=spread_in_pips(bid, ask, pip_size(symbol)),
            volume=int(price["bids"][0].get("liquidity", 0)),
            timestamp=price.get("time", ""),
        )

    async def bar_history(self, symbol: str, timeframe: str, count: int) -> list[Bar]:
        """Fetch mid-price candles, ordered oldest-first.

        Args:
            symbol: e.g. ``"EUR_USD"``
            timeframe: OANDA granularity, e.g. ``"M15"``
            count: number of candles to request (max 5000)
        """
        url = f"{self._base_url}/v3/instruments/{symbol}/candles"
        params = {
            "granularity": timeframe,
            "count": count,
            "price": "M",  # mid prices
        }

        resp = await self._request_with_retry("get", url, params=params)

        bars: list[Bar] = []
        for c in resp.json().get("candles", []):
            mid = c["mid"]
            bars.append(
                Bar(
                    time=c["time"],
                    open=float(mid["o"]),
                    high=float(mid["h"]),
                    low=float(mid["l"]),
                    close=float(mid["c"]),
                    volume=int(c["volume"]),
                )
            )
        return bars

    async def symbol_info(self, symbol: str) -> Optional[SymbolInfo]:
        """Trade-size constraints for *symbol*, cached after the first call."""
        if symbol in self._instruments:
            return self._instruments[symbol]

        url = f"{self._account_url}/instruments"
        resp = await self._request_with_retry(
            "get", url, params={"instruments": symbol},
        )
        instruments = resp.json().get("instruments", [])
        if not instruments:
            return None

        inst = instruments[0]
        info = SymbolInfo(
            symbol=symbol,
            pip_size=10.0 ** int(inst.get("pipLocation", -4)),
            volume_min=float(inst.get("minimumTradeSize", "1")),
            volume_max=float(inst.get("maximumOrderUnits", "100000000")),
            volume_step=10.0 ** -int(inst.get("tradeUnitsPrecision", 0)),
        )
        self._instruments[symbol] = info
        self._display_precision[symbol] = int(inst.get("displayPrecision", 5))
        return info

    def _price_precision(self, symbol: str) -> int:
        if symbol in self._display_precision:
            return self._display_precision[symbol]
        exponent = Decimal(str(pip_size(symbol))).normalize().as_tuple().exponent
        return -int(exponent) + 1

    # ── ExecutionGateway ─────────────────────────────────────────────────

    async def account_snapshot(self) -> AccountSnapshot:
        """Query OANDA for account balance and equity."""
        url = f"{self._account_url}/summary"

        resp = await self._request_with_retry("get", url)

        acct = resp.json()["account"]
        return AccountSnapshot(
            balance=float(acct["balance"]),
            equity=float(acct["NAV"]),
            currency=acct.get("currency", "USD"),
        )

    async def open_positions(self) -> list[Position]:
        """Return every open trade, priced at the current closing side."""
        url = f"{self._account_url}/openTrades"

        resp = await self._request_with_retry("get", url)
        raw_trades = resp.json().get("trades", [])
        self._ticket_symbols = {t["id"]: t["instrument"] for t in raw_trades}
        if not raw_trades:
            return []

        prices = await self._prices(sorted({t["instrument"] for t in raw_trades}))

        positions: list[Position] = []
        for t in raw_trades:
            units = float(t["currentUnits"])
            direction = BUY if units > 0 else SELL
            open_price = float(t["price"])
            current = open_price
            quote = prices.get(t["instrument"])
            if quote:
                side = "bids" if direction == BUY else "asks"
                if quote.get(side):
                    current = float(quote[side][0]["price"])
            positions.append(
                Position(
                    ticket=t["id"],
                    symbol=t["instrument"],
                    direction=direction,
                    volume=abs(units),
                    open_price=open_price,
                    current_price=current,
                    profit=float(t.get("unrealizedPL", "0")),
                    stop_loss=float(t.get("stopLossOrder", {}).get("price", 0)),
                    take_profit=float(t.get("takeProfitOrder", {}).get("price", 0)),
                    open_time=t.get("openTime", ""),
                )
            )
        return positions

    async def submit_market_order(self, signal: StrategySignal, size: float) -> OrderResult:
        """Place a market order with stop-loss and take-profit on fill."""
        url = f"{self._account_url}/orders"
        prec = self._price_precision(signal.symbol)
        body = {
            "order": {
                "type": "MARKET",
                "instrument": signal.symbol,
                "units": _format_units(size, signal.action),
                "stopLossOnFill": {
                    "price": f"{signal.stop_loss:.{prec}f}",
                },
                "takeProfitOnFill": {
                    "price": f"{signal.take_profit:.{prec}f}",
                },
            }
        }

        try:
            resp = await self._request_with_retry("post", url, json=body)
        except httpx.HTTPError as exc:
            logger.error("Order for %s failed: %s", signal.symbol, exc)
            return OrderResult(success=False, error=str(exc))

        data = resp.json()
        fill = data.get("orderFillTransaction")
        if not fill or "tradeOpened" not in fill:
            cancel = data.get("orderCancelTransaction", {})
            reason = cancel.get("reason", "order not filled")
            return OrderResult(success=False, error=reason)
        ticket = fill["tradeOpened"]["tradeID"]
        self._ticket_symbols[ticket] = signal.symbol
        return OrderResult(success=True, ticket=ticket)

    async def modify_position(
        self, ticket: str, stop_loss: float, take_profit: float,
    ) -> OrderResult:
        """Replace the stop-loss and take-profit on an open trade."""
        url = f"{self._account_url}/trades/{ticket}/orders"
        symbol = self._ticket_symbols.get(ticket)
        prec = self._price_precision(symbol) if symbol else 5
        body = {
            "stopLoss": {"price": f"{stop_loss:.{prec}f}"},
            "takeProfit": {"price": f"{take_profit:.{prec}f}"},
        }
        try:
            await self._request_with_retry("put", url, json=body)
        except httpx.HTTPError as exc:
            return OrderResult(success=False, ticket=ticket, error=str(exc))
        return OrderResult(success=True, ticket=ticket)

    async def close_position(self, ticket: str) -> OrderResult:
        """Close all units of one trade."""
        url = f"{self._account_url}/trades/{ticket}/close"
        try:
            await self._request_with_retry("put", url, json={"units": "ALL"})
        except httpx.HTTPError as exc:
            return OrderResult(success=False, ticket=ticket, error=str(exc))
        self._ticket_symbols.pop(ticket, None)
        return OrderResult(success=True, ticket=ticket)

    async def closed_trade(self, ticket: str) -> Optional[ClosedTrade]:
        """Realized P&L of *ticket*, or ``None`` while it is still open."""
        url = f"{self._account_url}/trades/{ticket}"

        resp = await self._request_with_retry("get", url)

        trade = resp.json().get("trade", {})
        if trade.get("state") != "CLOSED":
            return None
        return ClosedTrade(
            ticket=ticket,
            profit=float(trade.get("realizedPL", "0")),
            close_time=trade.get("closeTime", ""),
        )
