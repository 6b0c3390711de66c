"""Internal API routers — /status, /performance, /risk, /signals and
/symbols endpoints.

No business logic.  Delegates to the engine stored on ``app.state.engine``
by ``create_app``.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

logger = logging.getLogger("marketmind.api")
router = APIRouter()


def _engine(request: Request):
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not configured")
    return engine


@router.get("/status")
async def get_status(request: Request):
    """Engine state, monitored symbols, learning progress and risk."""
    return await _engine(request).status()


@router.get("/performance")
async def get_performance(request: Request):
    """Per-strategy trade statistics plus current arbiter weights."""
    engine = _engine(request)
    return {
        "strategies": engine.strategy_performance(),
        "weights": engine.arbiter.weights(),
    }


@router.get("/risk")
async def get_risk(request: Request):
    return await _engine(request).validator.risk_status()


@router.post("/symbols/{symbol}")
async def add_symbol(symbol: str, request: Request):
    engine = _engine(request)
    added = engine.add_symbol(symbol)
    return {"symbol": added, "monitored_symbols": engine.monitored_symbols}


@router.delete("/symbols/{symbol}")
async def remove_symbol(symbol: str, request: Request):
    engine = _engine(request)
    if not engine.remove_symbol(symbol):
        raise HTTPException(status_code=404, detail=f"Symbol {symbol.upper()} not monitored")
    return {"symbol": symbol.upper(), "monitored_symbols": engine.monitored_symbols}


@router.get("/signals")
async def get_signals(request: Request):
    """Executed signals: recently resolved ones, then those still open."""
    signals = []
    for entry in _engine(request).signal_history:
        outcome = entry.outcome
        signals.append({
            "ticket": entry.ticket,
            "symbol": entry.signal.symbol,
            "action": entry.signal.action,
            "strategy": entry.signal.strategy,
            "size": entry.size,
            "entry": entry.signal.entry,
            "sl": entry.signal.stop_loss,
            "tp": entry.signal.take_profit,
            "issued_at": entry.issued_at,
            "profit": outcome.profit if outcome else None,
            "win": outcome.win if outcome else None,
        })
    return {"signals": signals}
