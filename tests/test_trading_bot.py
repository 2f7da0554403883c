import csv
import logging

import pytest
from unittest.mock import AsyncMock, MagicMock

from modules.errors import ExchangeError, LedgerPersistenceError
from modules.okx_client import Balance, OrderFill, OrderResult
from modules.risk_manager import RiskManager
from modules.trading_bot import BotState, TradingBot, lot_size_precision, sell_amount_for
from utils.config_manager import ConfigManager

# ------------------------- Fixtures ------------------------- #


def make_config(**features):
    return ConfigManager({
        "TRADING": {
            "symbol": "BTC-USDT",
            "price_change_threshold": 0.01,
            "profit_target_percent": 0.015,
            "check_interval": 0,
            "min_order_size": 10,
            "fee_rate": 0.001,
        },
        "FEATURES": features,
        "STORAGE": {},
    })


@pytest.fixture
def exchange():
    ex = MagicMock()
    ex.get_price.return_value = 100.0
    ex.get_balances.return_value = {"BTC": Balance(0.0, 0.0), "USDT": Balance(1000.0, 1000.0)}
    ex.place_order.return_value = OrderResult(success=True, order_id="ord-1", code="0")
    ex.get_order.return_value = None
    ex.get_instrument_info.return_value = None
    return ex


@pytest.fixture
def bot(exchange, ledger, recorder):
    return TradingBot(make_config(), exchange=exchange, ledger=ledger, recorder=recorder)


def journal(recorder):
    if not recorder.journal_path.exists():
        return []
    with open(recorder.journal_path, newline="") as fh:
        return list(csv.DictReader(fh))


def holding(exchange, base):
    exchange.get_balances.return_value = {"BTC": Balance(base, base), "USDT": Balance(5.0, 5.0)}

# ------------------------- Tests ------------------------- #


def test_sell_amount_for_precision():
    assert sell_amount_for(1.0, 0.00001, 8) == (0.99, True)
    assert sell_amount_for(0.123456, 0.001, 5) == (0.12222, True)
    assert sell_amount_for(0.005, 0.01, 4) == (0.0049, False)
    assert sell_amount_for(0.0, 0.1, 3) == (0.0, False)


@pytest.mark.asyncio
async def test_first_cycle_only_observes(bot, exchange):
    state = await bot.run_cycle(BotState())

    assert state.last_price == 100.0
    assert state.cycle_count == 1
    assert state.quote_balance == 1000.0
    exchange.place_order.assert_not_called()


@pytest.mark.asyncio
async def test_price_failure_skips_cycle(bot, exchange):
    exchange.get_price.side_effect = ExchangeError("timeout")

    state = await bot.run_cycle(BotState(last_price=100.0))

    assert state.cycle_count == 1
    assert state.last_price == 100.0
    exchange.get_balances.assert_not_called()


@pytest.mark.asyncio
async def test_balance_failure_skips_cycle(bot, exchange):
    exchange.get_balances.side_effect = ExchangeError("HTTP 500")

    state = await bot.run_cycle(BotState(last_price=105.0))

    assert state.last_price == 105.0
    exchange.place_order.assert_not_called()


@pytest.mark.asyncio
async def test_buy_on_drop_adds_lot_and_journals(bot, exchange, ledger, recorder):
    exchange.get_price.return_value = 98.0
    exchange.get_order.return_value = OrderFill("ord-1", "filled", 98.5, 10.0, 0.01, "BTC")

    state = await bot.run_cycle(BotState(last_price=100.0))

    exchange.place_order.assert_called_once_with("BTC-USDT", "buy", 990)
    lot = ledger.head()
    assert lot.buy_price == 98.5
    assert lot.quantity == 10.0
    assert lot.order_id == "ord-1"
    assert state.last_buy_price == 98.5
    rows = journal(recorder)
    assert [(r["Action"], r["Status"], r["Order_ID"]) for r in rows] == [("BUY", "SUCCESS", "ord-1")]


@pytest.mark.asyncio
async def test_buy_without_fill_details_uses_estimate(bot, exchange, ledger):
    exchange.get_price.return_value = 98.0

    await bot.run_cycle(BotState(last_price=100.0))

    assert ledger.head().buy_price == 98.0
    assert ledger.head().quantity == pytest.approx(990 / 98.0)


@pytest.mark.asyncio
async def test_rejected_buy_never_touches_ledger(bot, exchange, ledger, recorder):
    exchange.get_price.return_value = 98.0
    exchange.place_order.return_value = OrderResult(success=False, code="51008", message="Insufficient balance")

    state = await bot.run_cycle(BotState(last_price=100.0))

    assert len(ledger) == 0
    assert state.last_buy_price is None
    assert [(r["Action"], r["Status"]) for r in journal(recorder)] == [("BUY", "FAILED")]


@pytest.mark.asyncio
async def test_buy_below_min_order_size(bot, exchange, ledger):
    exchange.get_price.return_value = 98.0
    exchange.get_balances.return_value = {"USDT": Balance(8.0, 8.0)}

    await bot.run_cycle(BotState(last_price=100.0))

    exchange.place_order.assert_not_called()


@pytest.mark.asyncio
async def test_max_usdt_caps_buy(exchange, ledger, recorder):
    config = make_config()
    config.config["TRADING"]["max_usdt_to_use"] = 100
    capped = TradingBot(config, exchange=exchange, ledger=ledger, recorder=recorder)
    exchange.get_price.return_value = 98.0

    await capped.run_cycle(BotState(last_price=100.0))

    exchange.place_order.assert_called_once_with("BTC-USDT", "buy", 99)


@pytest.mark.asyncio
async def test_profitable_sell_consumes_fifo(bot, exchange, ledger, recorder):
    ledger.add_lot(100.0, 1.0)
    holding(exchange, 1.0)
    exchange.get_price.return_value = 110.0
    exchange.place_order.return_value = OrderResult(success=True, order_id="sell-1", code="0")
    exchange.get_order.return_value = OrderFill("sell-1", "filled", 110.0, 0.99, 0.1, "USDT")

    state = await bot.run_cycle(BotState(last_price=110.0, last_buy_price=100.0))

    exchange.place_order.assert_called_once_with("BTC-USDT", "sell", 0.99)
    assert ledger.head().quantity == pytest.approx(0.01)
    row = journal(recorder)[-1]
    assert row["Action"] == "SELL"
    assert row["Status"] == "SUCCESS"
    expected = (110.0 * 0.99 - 110.0 * 0.99 * 0.001) - (100.0 * 0.99 + 0.1 * 0.99)
    assert float(row["Profit"]) == pytest.approx(expected, abs=1e-6)
    assert state.last_buy_price == 100.0


@pytest.mark.asyncio
async def test_hold_below_break_even(bot, exchange, ledger, caplog):
    ledger.add_lot(100.0, 1.0)
    holding(exchange, 1.0)
    exchange.get_price.return_value = 100.1

    with caplog.at_level(logging.INFO):
        await bot.run_cycle(BotState(last_price=100.1))

    exchange.place_order.assert_not_called()
    assert "HODL" in caplog.text


@pytest.mark.asyncio
async def test_failed_sell_never_consumes(bot, exchange, ledger, recorder):
    ledger.add_lot(100.0, 1.0)
    holding(exchange, 1.0)
    exchange.get_price.return_value = 110.0
    exchange.place_order.side_effect = ExchangeError("Network error")

    await bot.run_cycle(BotState(last_price=110.0))

    assert ledger.head().quantity == 1.0
    assert [(r["Action"], r["Status"]) for r in journal(recorder)] == [("SELL", "FAILED")]


@pytest.mark.asyncio
async def test_sell_below_minimum_size(bot, exchange, ledger, recorder):
    ledger.add_lot(100.0, 0.000005)
    holding(exchange, 0.000005)
    exchange.get_price.return_value = 110.0

    await bot.run_cycle(BotState(last_price=110.0))

    exchange.place_order.assert_not_called()
    assert len(ledger) == 1
    assert journal(recorder)[-1]["Status"] == "FAILED_MIN_SIZE"


@pytest.mark.asyncio
async def test_sell_clamped_to_ledger(bot, exchange, ledger, recorder, caplog):
    ledger.add_lot(100.0, 0.5)
    holding(exchange, 2.0)
    exchange.get_price.return_value = 110.0
    exchange.get_order.return_value = OrderFill("ord-1", "filled", 110.0, 1.98, 0.2, "USDT")

    with caplog.at_level(logging.WARNING):
        await bot.run_cycle(BotState(last_price=110.0))

    assert len(ledger) == 0
    assert "not tracked by the ledger" in caplog.text
    row = journal(recorder)[-1]
    assert float(row["Amount"]) == pytest.approx(1.98)
    assert row["Profit"] != ""


@pytest.mark.asyncio
async def test_stop_loss_sell_is_journalled(exchange, ledger, recorder):
    risk = RiskManager(stop_loss_percent=0.02)
    stop_bot = TradingBot(make_config(stop_loss=True), exchange=exchange, ledger=ledger,
                          recorder=recorder, risk_manager=risk)
    ledger.add_lot(100.0, 1.0)
    holding(exchange, 1.0)
    exchange.get_price.return_value = 97.0

    await stop_bot.run_cycle(BotState(last_price=97.5))

    exchange.place_order.assert_called_once_with("BTC-USDT", "sell", 0.99)
    row = journal(recorder)[-1]
    assert row["Action"] == "SELL_STOP_LOSS"
    assert float(row["Profit"]) < 0


@pytest.mark.asyncio
async def test_risk_gate_avoid_skips_trading(exchange, ledger, recorder):
    risk = RiskManager(max_daily_trades=0)
    market = MagicMock()
    snapshot = MagicMock(price=98.0, volume_quote_24h=5_000_000, spread_percent=0.01,
                         price_change_percent_24h=0.0)
    market.fetch_ticker = AsyncMock(return_value=snapshot)
    gated = TradingBot(make_config(risk_management=True), exchange=exchange, ledger=ledger,
                       recorder=recorder, market_data=market, risk_manager=risk)

    state = await gated.run_cycle(BotState(last_price=100.0))

    exchange.place_order.assert_not_called()
    assert state.last_price == 98.0


@pytest.mark.asyncio
async def test_persistence_failure_stops_run(bot, caplog):
    bot.run_cycle = AsyncMock(side_effect=LedgerPersistenceError("disk full"))

    with pytest.raises(LedgerPersistenceError):
        await bot.run(max_cycles=3)

    assert bot.run_cycle.await_count == 1


@pytest.mark.asyncio
async def test_ordinary_errors_are_survived(bot):
    bot.run_cycle = AsyncMock(side_effect=[RuntimeError("boom"), BotState(cycle_count=2)])

    state = await bot.run(max_cycles=2)

    assert bot.run_cycle.await_count == 2
    assert state.cycle_count == 2


@pytest.mark.asyncio
async def test_startup_warns_on_ledger_mismatch(bot, exchange, ledger, caplog):
    ledger.add_lot(100.0, 1.0)
    holding(exchange, 0.5)

    with caplog.at_level(logging.WARNING):
        await bot.startup_check()

    assert "exchange reports" in caplog.text


def test_lot_size_precision():
    assert lot_size_precision(0.00000001) == 8
    assert lot_size_precision(0.0001) == 4
    assert lot_size_precision(1.0) == 0
    assert lot_size_precision(10.0) == 0
    assert lot_size_precision(0.0) is None


@pytest.mark.asyncio
async def test_instrument_rules_tighten_sell_sizing(bot, exchange, ledger, recorder):
    exchange.get_instrument_info.return_value = {
        "symbol": "BTC-USDT", "min_size": 0.0001, "lot_size": 0.000001, "tick_size": 0.1,
    }

    await bot.startup_check()

    exchange.get_instrument_info.assert_called_once_with("BTC-USDT")
    assert bot.min_sell_size == 0.0001
    assert bot.sell_precision == 6

    # 0.00005 * 0.99 is above the configured 0.00001 but below the exchange minimum
    ledger.add_lot(100.0, 0.00005)
    holding(exchange, 0.00005)
    exchange.get_price.return_value = 110.0

    await bot.run_cycle(BotState(last_price=110.0))

    exchange.place_order.assert_not_called()
    assert journal(recorder)[-1]["Status"] == "FAILED_MIN_SIZE"


@pytest.mark.asyncio
async def test_instrument_rules_never_loosen_config(bot, exchange):
    exchange.get_instrument_info.return_value = {"min_size": 0.000001, "lot_size": 0.0000000001}

    await bot.startup_check()

    assert bot.min_sell_size == 0.00001
    assert bot.sell_precision == 8


@pytest.mark.asyncio
async def test_instrument_rules_unavailable_keep_config(bot, exchange, caplog):
    exchange.get_instrument_info.side_effect = ExchangeError("HTTP 503")

    with caplog.at_level(logging.WARNING):
        await bot.startup_check()

    assert bot.min_sell_size == 0.00001
    assert "Instrument rules unavailable" in caplog.text
