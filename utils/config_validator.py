from modules.lot_ledger import RecoveryPolicy


def validate_config(config: dict, require_credentials: bool = True):
    required_keys = ["OKX_API", "TRADING", "STORAGE"]

    missing = [k for k in required_keys if k not in config or not config[k]]
    if missing:
        raise ValueError(f"Missing required configuration keys: {missing}")

    if require_credentials:
        api = config["OKX_API"]
        missing_creds = [k for k in ("api_key", "secret_key", "passphrase") if not api.get(k)]
        if missing_creds:
            raise ValueError(f"Missing OKX credentials: {missing_creds}")

    trading = config["TRADING"]
    symbol = trading.get("symbol")
    if not isinstance(symbol, str) or "-" not in symbol:
        raise ValueError(f"TRADING.symbol must look like BASE-QUOTE, got {symbol!r}")

    for key in ("price_change_threshold", "min_order_size", "fee_rate"):
        value = trading.get(key)
        if not isinstance(value, (int, float)) or value < 0:
            raise TypeError(f"TRADING.{key} must be a non-negative number.")

    if not isinstance(trading.get("check_interval"), int) or trading["check_interval"] <= 0:
        raise TypeError("TRADING.check_interval must be a positive integer.")

    policy = config["STORAGE"].get("recovery_policy", RecoveryPolicy.FAIL_FAST.value)
    if policy not in {p.value for p in RecoveryPolicy}:
        raise ValueError(f"STORAGE.recovery_policy must be one of {[p.value for p in RecoveryPolicy]}")

    for key in ("MIN_SELL_SIZES", "SELL_PRECISION"):
        if not isinstance(config.get(key, {}), dict):
            raise TypeError(f"{key} must be a dictionary.")
