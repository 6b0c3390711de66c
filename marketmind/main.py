"""MarketMind — application entry point.

Builds the FastAPI internal server around an engine and provides the CLI
entry point for paper and live modes.
"""

import logging

from fastapi import FastAPI

from marketmind.api.routers import router

logger = logging.getLogger("marketmind")


def create_app(engine=None) -> FastAPI:
    """Return the internal API bound to *engine*."""
    app = FastAPI(title="MarketMind Internal API", version="0.1.0")
    app.state.engine = engine
    app.include_router(router)

    @app.get("/health")
    async def health():
        """Liveness check; reports whether the engine loop is running."""
        running = bool(engine is not None and engine.running)
        return {"status": "ok", "engine_running": running}

    return app


def warn_if_live(mode: str) -> bool:
    """Log a prominent warning when running in live mode.

    Returns ``True`` if *mode* is ``"live"``.
    """
    if mode == "live":
        logger.warning(
            "LIVE TRADING MODE: real money at risk! Starting in 5 seconds..."
        )
        return True
    return False


def build_engine(config, symbols=None):
    """Wire the OANDA adapter, strategies and engine from *config*."""
    from marketmind.broker.oanda_client import OandaClient
    from marketmind.engine import MarketMindEngine
    from marketmind.strategy.registry import StrategyRegistry

    client = OandaClient(config)
    symbols = tuple(symbols or config.symbols)
    registry = StrategyRegistry.from_keys(
        list(config.strategies),
        timeframe=config.timeframe,
        symbols=list(symbols),
    )
    return MarketMindEngine(
        feed=client,
        gateway=client,
        registry=registry,
        params=config.risk_parameters(),
        default_symbols=symbols,
        bar_count=config.bar_count,
        analysis_interval=config.analysis_interval_seconds,
        monitor_interval=config.monitor_interval_seconds,
    )


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and run the engine (and API server)."""
    import argparse
    import asyncio
    import time

    from marketmind.config import load_config, parse_symbols

    parser = argparse.ArgumentParser(description="MarketMind decision engine")
    parser.add_argument(
        "--mode",
        choices=["paper", "live"],
        default="paper",
        help="Trading mode (default: paper)",
    )
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the engine without the API server",
    )
    parser.add_argument(
        "--symbols",
        help="Comma-separated symbols to monitor (default: SYMBOLS from .env)",
    )
    args = parser.parse_args()

    config = load_config()

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode == "live" and config.oanda_environment != "live":
        logger.warning("--mode live with OANDA_ENVIRONMENT=%s; orders go to %s",
                       config.oanda_environment, config.oanda_base_url)
    if warn_if_live(args.mode):
        time.sleep(5)

    symbols = parse_symbols(args.symbols) if args.symbols else None
    engine = build_engine(config, symbols)

    try:
        asyncio.run(_run(engine, config, serve_api=not args.engine_only))
    except KeyboardInterrupt:
        logger.info("Shutdown signal received.")


async def _run(engine, config, serve_api: bool = True) -> None:
    """Start the engine, then serve the API (or idle) until interrupted."""
    import asyncio
    import uvicorn

    if not await engine.start():
        logger.error("MarketMind failed to start.")
        return

    try:
        if serve_api:
            uvi_config = uvicorn.Config(
                create_app(engine),
                host="0.0.0.0",
                port=config.api_port,
                log_level=config.log_level.lower(),
            )
            server = uvicorn.Server(uvi_config)
            logger.info("API available at http://localhost:%d", config.api_port)
            await server.serve()
        else:
            while engine.running:
                await asyncio.sleep(1)
    finally:
        await engine.stop()
        logger.info("MarketMind stopped.")


if __name__ == "__main__":
    _run_cli()
