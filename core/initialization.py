"""
core/initialization.py
----------------------
Loads configuration from .env, builds the per-currency sell tables, and wires
all runtime components with simple dependency-injection (DI) overrides.
"""

from __future__ import annotations

import os
import logging
from typing import Dict, Optional

from dotenv import load_dotenv

from modules.lot_ledger import LotLedger, default_ledger_path
from modules.market_data import MarketDataClient, RateLimiter
from modules.okx_client import OKXClient
from modules.risk_manager import RiskManager
from modules.sell_decision import SellDecisionEngine
from modules.strategy.technical import TechnicalStrategy
from modules.trade_recorder import TradeRecorder
from modules.trading_bot import TradingBot
from utils.config_manager import ConfigManager


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_configuration(env_path: str = "config.env") -> Dict:
    """
    Load settings from an .env-style file and return a structured config dict.
    """
    log = logging.getLogger(__name__)
    load_dotenv(dotenv_path=env_path)

    # Per-currency sell tables from env like MIN_SELL_SIZE_ETH=0.001
    min_sell_sizes: Dict[str, float] = {}
    sell_precision: Dict[str, int] = {}
    for key, val in os.environ.items():
        if key.startswith("MIN_SELL_SIZE_"):
            min_sell_sizes[key.replace("MIN_SELL_SIZE_", "").upper()] = float(val)
        elif key.startswith("SELL_PRECISION_"):
            sell_precision[key.replace("SELL_PRECISION_", "").upper()] = int(val)
    log.debug("MIN_SELL_SIZES overrides: %s", min_sell_sizes)
    log.debug("SELL_PRECISION overrides: %s", sell_precision)

    threshold = _env_float("PRICE_CHANGE_THRESHOLD", 0.01)
    conf: Dict[str, object] = {
        "OKX_API": {
            "api_key": os.getenv("OKX_API_KEY"),
            "secret_key": os.getenv("OKX_SECRET_KEY"),
            "passphrase": os.getenv("OKX_PASSPHRASE"),
            "base_url": os.getenv("OKX_BASE_URL", "https://www.okx.com"),
            "api_version": os.getenv("OKX_API_VERSION", "api/v5"),
            "demo": _env_bool("OKX_DEMO"),
        },
        "TRADING": {
            "symbol": os.getenv("TRADING_SYMBOL", "BTC-USDT").upper(),
            "price_change_threshold": threshold,
            "profit_target_percent": _env_float("PROFIT_TARGET_PERCENT", threshold),
            "check_interval": _env_int("CHECK_INTERVAL_SECONDS", 30),
            "min_order_size": _env_float("MIN_ORDER_SIZE", 10.0),
            "max_usdt_to_use": _env_float("MAX_USDT_TO_USE", None),
            "fee_rate": _env_float("FEE_RATE", 0.001),
            "candle_bar": os.getenv("CANDLE_BAR", "5m"),
            "candle_limit": _env_int("CANDLE_HISTORY_LIMIT", 100),
        },
        "FEATURES": {
            "technical_analysis": _env_bool("ENABLE_TECHNICAL_ANALYSIS"),
            "risk_management": _env_bool("ENABLE_RISK_MANAGEMENT"),
            "stop_loss": _env_bool("ENABLE_STOP_LOSS"),
            "order_book_analysis": _env_bool("ENABLE_ORDER_BOOK_ANALYSIS"),
        },
        "RISK": {
            "stop_loss_percent": _env_float("STOP_LOSS_PERCENTAGE", 0.02),
            "take_profit_percent": _env_float("TAKE_PROFIT_PERCENTAGE", 0.03),
            "max_daily_loss": _env_float("MAX_DAILY_LOSS", 5.0),
            "max_daily_trades": _env_int("MAX_DAILY_TRADES", 20),
            "position_size_percent": _env_float("POSITION_SIZE_PERCENTAGE", 0.8),
            "trailing_stop_percent": _env_float("TRAILING_STOP_PERCENTAGE", 0.015),
            "min_volume_24h": _env_float("MIN_VOLUME_THRESHOLD", 1_000_000),
            "max_spread_percent": _env_float("MAX_SPREAD_PERCENTAGE", 0.001),
        },
        "INDICATORS": {
            "rsi_period": _env_int("RSI_PERIOD", 14),
            "rsi_oversold": _env_float("RSI_OVERSOLD", 30),
            "rsi_overbought": _env_float("RSI_OVERBOUGHT", 70),
            "ma_short": _env_int("MA_SHORT_PERIOD", 10),
            "ma_long": _env_int("MA_LONG_PERIOD", 21),
            "bollinger_period": _env_int("BOLLINGER_PERIOD", 20),
            "bollinger_std": _env_float("BOLLINGER_STDDEV", 2),
        },
        "STORAGE": {
            "data_dir": os.getenv("DATA_DIR", "data"),
            "journal_path": os.getenv("TRANSACTIONS_FILE", "logs/transactions.csv"),
            "human_log_path": os.getenv("TRADES_LOG_FILE", "logs/trades.log"),
            "recovery_policy": os.getenv("LEDGER_RECOVERY_POLICY", "fail_fast").lower(),
        },
        "MIN_SELL_SIZES": min_sell_sizes,
        "SELL_PRECISION": sell_precision,
        "RATE_LIMIT": {
            "max_requests": _env_int("RATE_LIMIT_MAX_REQUESTS", 20),
            "window": _env_float("RATE_LIMIT_WINDOW_SECONDS", 2.0),
        },
    }

    log.debug("Parsed TRADING: %s", conf["TRADING"])
    log.debug("Parsed FEATURES: %s", conf["FEATURES"])

    return conf


def initialize_components(
    config: Dict,
    overrides: Optional[Dict[str, object]] = None,
    logger: Optional[logging.Logger] = None,
    ) -> Dict[str, object]:
    """
    Construct and wire together all runtime components (supports DI via overrides).

    Keys you can override:
    {"exchange", "market_data", "ledger", "recorder", "engine",
     "strategy", "risk_manager", "bot"}
    """
    overrides = overrides or {}
    cfg = ConfigManager(config)
    logger = logger or logging.getLogger(__name__)

    # 1) Exchange client (signed, blocking)
    exchange = overrides.get("exchange")
    if exchange is None:
        creds = cfg.get_okx_credentials()
        exchange = OKXClient(
            api_key=creds.get("api_key") or "",
            secret_key=creds.get("secret_key") or "",
            passphrase=creds.get("passphrase") or "",
            base_url=cfg.get_base_url(),
            api_version=creds.get("api_version", "api/v5"),
            demo=cfg.is_demo(),
        )

    # 2) Public market data (async)
    market_data = overrides.get("market_data")
    if market_data is None:
        limits = cfg.get("RATE_LIMIT", {}) or {}
        market_data = MarketDataClient(
            base_url=cfg.get_base_url(),
            rate_limiter=RateLimiter(
                max_requests=int(limits.get("max_requests", 20)),
                window=float(limits.get("window", 2.0)),
            ),
        )

    # 3) Lot ledger – loading applies the configured recovery policy
    symbol = cfg.get_symbol()
    ledger = overrides.get("ledger")
    if ledger is None:
        ledger = LotLedger.load(
            symbol,
            default_ledger_path(symbol, cfg.get_data_dir()),
            fee_rate=cfg.get_fee_rate(),
            recovery_policy=cfg.get_recovery_policy(),
        )

    # 4) Journal
    recorder = overrides.get("recorder")
    if recorder is None:
        journal_path, human_log_path = cfg.get_journal_paths()
        recorder = TradeRecorder(journal_path, human_log_path)

    # 5) Decision engine, strategy and risk manager
    engine = overrides.get("engine") or SellDecisionEngine(ledger)

    strategy = overrides.get("strategy")
    if strategy is None and cfg.feature_enabled("technical_analysis"):
        strategy = TechnicalStrategy(**cfg.get_indicator_settings())

    risk_manager = overrides.get("risk_manager")
    if risk_manager is None and (cfg.feature_enabled("risk_management") or cfg.feature_enabled("stop_loss")):
        risk_manager = RiskManager.from_config(cfg.get_risk_settings())

    # 6) Bot
    bot = overrides.get("bot") or TradingBot(
        cfg,
        exchange=exchange,
        ledger=ledger,
        recorder=recorder,
        market_data=market_data,
        engine=engine,
        strategy=strategy,
        risk_manager=risk_manager,
    )

    logger.info("✅ Exchange client initialized (demo=%s).", cfg.is_demo())
    logger.info("✅ Ledger loaded: %d open lot(s) for %s.", len(ledger), symbol)
    logger.info("✅ Strategy initialized: %s", strategy.__class__.__name__ if strategy else "price-threshold only")
    logger.info("✅ Risk manager %s.", "enabled" if risk_manager else "disabled")

    return {
        "exchange": exchange,
        "market_data": market_data,
        "ledger": ledger,
        "recorder": recorder,
        "engine": engine,
        "strategy": strategy,
        "risk_manager": risk_manager,
        "bot": bot,
    }
