from typing import Any, Dict, Optional, Tuple

from modules.lot_ledger import RecoveryPolicy

# quantity floor and decimal places for market sells, per base currency
DEFAULT_MIN_SELL_SIZES: Dict[str, float] = {"BTC": 0.00001, "ETH": 0.001, "SOL": 0.01, "DEFAULT": 0.1}
DEFAULT_SELL_PRECISION: Dict[str, int] = {"BTC": 8, "ETH": 5, "SOL": 4, "DEFAULT": 3}


class ConfigManager:
    def __init__(self, config: Dict[str, Any]):
        self.config = config

    def get(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def _section(self, name: str) -> Dict[str, Any]:
        return self.config.get(name) or {}

    # ---- exchange ------------------------------------------------------ #
    def get_okx_credentials(self) -> Dict[str, Any]:
        return self._section("OKX_API")

    def get_base_url(self) -> str:
        return self._section("OKX_API").get("base_url") or "https://www.okx.com"

    def is_demo(self) -> bool:
        return bool(self._section("OKX_API").get("demo", False))

    # ---- trading ------------------------------------------------------- #
    def get_symbol(self) -> str:
        return (self._section("TRADING").get("symbol") or "BTC-USDT").upper()

    def get_currencies(self) -> Tuple[str, str]:
        base, _, quote = self.get_symbol().partition("-")
        return base, quote or "USDT"

    def get_price_change_threshold(self) -> float:
        return float(self._section("TRADING").get("price_change_threshold", 0.01))

    def get_profit_target(self) -> float:
        trading = self._section("TRADING")
        target = trading.get("profit_target_percent")
        return float(target) if target is not None else self.get_price_change_threshold()

    def get_check_interval(self) -> int:
        return int(self._section("TRADING").get("check_interval", 30))

    def get_min_order_size(self) -> float:
        return float(self._section("TRADING").get("min_order_size", 10))

    def get_max_usdt_to_use(self) -> Optional[float]:
        value = self._section("TRADING").get("max_usdt_to_use")
        return float(value) if value else None

    def get_fee_rate(self) -> float:
        return float(self._section("TRADING").get("fee_rate", 0.001))

    def get_candle_settings(self) -> Tuple[str, int]:
        trading = self._section("TRADING")
        return trading.get("candle_bar", "5m"), int(trading.get("candle_limit", 100))

    # ---- features / risk / indicators ---------------------------------- #
    def feature_enabled(self, name: str) -> bool:
        return bool(self._section("FEATURES").get(name, False))

    def get_risk_settings(self) -> Dict[str, Any]:
        return self._section("RISK")

    def get_indicator_settings(self) -> Dict[str, Any]:
        return self._section("INDICATORS")

    # ---- storage ------------------------------------------------------- #
    def get_data_dir(self) -> str:
        return self._section("STORAGE").get("data_dir", "data")

    def get_journal_paths(self) -> Tuple[str, str]:
        storage = self._section("STORAGE")
        return (
            storage.get("journal_path", "logs/transactions.csv"),
            storage.get("human_log_path", "logs/trades.log"),
        )

    def get_recovery_policy(self) -> RecoveryPolicy:
        raw = str(self._section("STORAGE").get("recovery_policy", RecoveryPolicy.FAIL_FAST.value))
        return RecoveryPolicy(raw.lower())

    # ---- sell sizing --------------------------------------------------- #
    def get_min_sell_size(self, currency: str) -> float:
        sizes = {**DEFAULT_MIN_SELL_SIZES, **(self.config.get("MIN_SELL_SIZES") or {})}
        return float(sizes.get(currency.upper(), sizes["DEFAULT"]))

    def get_sell_precision(self, currency: str) -> int:
        precision = {**DEFAULT_SELL_PRECISION, **(self.config.get("SELL_PRECISION") or {})}
        return int(precision.get(currency.upper(), precision["DEFAULT"]))
