"""MarketMind — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from marketmind.risk.models import RiskParameters


_REQUIRED_VARS = [
    "OANDA_ACCOUNT_ID",
    "OANDA_API_TOKEN",
    "OANDA_ENVIRONMENT",
]

DEFAULT_SYMBOLS = "EUR_USD,GBP_USD,USD_CAD,AUD_USD"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    oanda_account_id: str
    oanda_api_token: str
    oanda_environment: str  # "practice" or "live"
    symbols: tuple[str, ...]
    timeframe: str
    bar_count: int
    analysis_interval_seconds: float
    monitor_interval_seconds: float
    risk_per_trade_pct: float
    max_daily_loss_pct: float
    max_open_positions: int
    min_risk_reward: float
    max_spread_pips: float
    news_filter_enabled: bool
    log_level: str
    api_port: int
    strategies: tuple[str, ...] = ("smc",)

    @property
    def oanda_base_url(self) -> str:
        """Return the OANDA v20 API base URL based on environment."""
        if self.oanda_environment == "live":
            return "https://api-fxtrade.oanda.com"
        return "https://api-fxpractice.oanda.com"

    def risk_parameters(self) -> RiskParameters:
        return RiskParameters(
            max_risk_per_trade_pct=self.risk_per_trade_pct,
            max_daily_loss_pct=self.max_daily_loss_pct,
            max_open_positions=self.max_open_positions,
            min_risk_reward=self.min_risk_reward,
            max_spread_pips=self.max_spread_pips,
            news_filter_enabled=self.news_filter_enabled,
        )


def parse_symbols(raw: str) -> tuple[str, ...]:
    """Split a comma-separated symbol list, upper-cased, blanks dropped."""
    return tuple(s.strip().upper() for s in raw.split(",") if s.strip())


def parse_strategy_keys(raw: str) -> tuple[str, ...]:
    """Split a comma-separated list of strategy registry keys."""
    return tuple(k.strip().lower() for k in raw.split(",") if k.strip())


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in _TRUTHY


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        oanda_account_id=os.environ["OANDA_ACCOUNT_ID"],
        oanda_api_token=os.environ["OANDA_API_TOKEN"],
        oanda_environment=os.environ.get("OANDA_ENVIRONMENT", "practice"),
        symbols=parse_symbols(os.environ.get("SYMBOLS", DEFAULT_SYMBOLS)),
        timeframe=os.environ.get("TIMEFRAME", "M15"),
        bar_count=int(os.environ.get("BAR_COUNT", "100")),
        analysis_interval_seconds=float(os.environ.get("ANALYSIS_INTERVAL_SECONDS", "15")),
        monitor_interval_seconds=float(os.environ.get("MONITOR_INTERVAL_SECONDS", "30")),
        risk_per_trade_pct=float(os.environ.get("RISK_PER_TRADE_PCT", "2.0")),
        max_daily_loss_pct=float(os.environ.get("MAX_DAILY_LOSS_PCT", "6.0")),
        max_open_positions=int(os.environ.get("MAX_OPEN_POSITIONS", "5")),
        min_risk_reward=float(os.environ.get("MIN_RISK_REWARD", "1.5")),
        max_spread_pips=float(os.environ.get("MAX_SPREAD_PIPS", "3.0")),
        news_filter_enabled=_env_bool("NEWS_FILTER_ENABLED", "true"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
        strategies=parse_strategy_keys(os.environ.get("STRATEGIES", "smc")),
    )
