import csv
import logging
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from models.trade_record import TradeRecord
from modules.trade_recorder import CSV_HEADER, TradeRecorder

TS = datetime(2024, 5, 1, 12, 30, 45, tzinfo=timezone.utc)


def _rows(recorder):
    with open(recorder.journal_path, newline="") as fh:
        return list(csv.reader(fh))


# ------------------------- Tests ------------------------- #


def test_first_record_writes_header_once(recorder):
    recorder.record(TradeRecord(type="BUY", symbol="BTC-USDT", price=100.0, quantity=2.0, timestamp=TS))
    recorder.record(TradeRecord(type="BUY", symbol="BTC-USDT", price=101.0, quantity=1.0, timestamp=TS))

    rows = _rows(recorder)
    assert rows[0] == CSV_HEADER
    assert len(rows) == 3


def test_buy_row_layout(recorder):
    recorder.record(TradeRecord(
        type="buy", symbol="BTC-USDT", price=100.0, quantity=2.0, order_id="abc", timestamp=TS,
    ))

    row = dict(zip(CSV_HEADER, _rows(recorder)[1]))
    assert row["Date"] == "2024-05-01"
    assert row["Time"] == "12:30:45"
    assert row["Action"] == "BUY"
    assert row["Amount"] == "2.00000000"
    assert row["Price"] == "100.00000000"
    assert row["Total_Value"] == "200.00"
    assert row["Order_ID"] == "abc"
    assert row["Status"] == "SUCCESS"
    assert row["Profit"] == ""


def test_sell_with_profit(recorder):
    recorder.record(TradeRecord(
        type="SELL", symbol="BTC-USDT", price=110.0, quantity=1.0,
        profit=9.79, profit_percent=9.79, timestamp=TS,
    ))

    row = dict(zip(CSV_HEADER, _rows(recorder)[1]))
    assert row["Profit"] == "9.79000000"
    assert row["Profit_Pct"] == "9.79"
    assert "Profit: +9.79000000 (+9.79%)" in recorder.human_log_path.read_text()


def test_sell_without_profit_is_still_written(recorder, caplog):
    with caplog.at_level(logging.WARNING):
        recorder.record({"type": "SELL", "symbol": "BTC-USDT", "price": 110.0, "quantity": 1.0})

    row = dict(zip(CSV_HEADER, _rows(recorder)[1]))
    assert row["Action"] == "SELL"
    assert row["Profit"] == ""
    assert row["Profit_Pct"] == ""
    assert "without profit" in caplog.text


def test_stop_loss_sell_action(recorder):
    rec = recorder.record(TradeRecord(
        type="SELL", symbol="BTC-USDT", price=95.0, quantity=1.0, stop_loss=True, profit=-5.3,
    ))

    assert rec.action == "SELL_STOP_LOSS"
    assert dict(zip(CSV_HEADER, _rows(recorder)[1]))["Action"] == "SELL_STOP_LOSS"
    assert "TRIGGERED BY STOP LOSS" in recorder.human_log_path.read_text()


def test_failed_order_defaults_order_id(recorder):
    rec = recorder.record({"type": "BUY", "symbol": "BTC-USDT", "price": 100.0, "quantity": 0.1,
                           "order_id": None, "status": "failed"})

    assert rec.order_id == "N/A"
    assert rec.status == "FAILED"


@pytest.mark.parametrize("bad", [
    {"symbol": "BTC-USDT", "price": 1.0, "quantity": 1.0},
    {"type": "HOLD", "symbol": "BTC-USDT", "price": 1.0, "quantity": 1.0},
    {"type": "BUY", "symbol": "BTC-USDT", "price": -1.0, "quantity": 1.0},
    {"type": "BUY", "symbol": "BTC-USDT", "price": 1.0, "quantity": 1.0, "status": "MAYBE"},
])
def test_invalid_entries_are_rejected(recorder, bad):
    with pytest.raises(ValidationError):
        recorder.record(bad)
    assert not recorder.journal_path.exists()


def test_rows_survive_new_recorder(recorder):
    recorder.record(TradeRecord(type="BUY", symbol="BTC-USDT", price=100.0, quantity=2.0))

    reopened = TradeRecorder(recorder.journal_path, recorder.human_log_path)
    reopened.record(TradeRecord(type="SELL", symbol="BTC-USDT", price=110.0, quantity=2.0, profit=19.58))

    history = reopened.history()
    assert list(history["Action"]) == ["BUY", "SELL"]
    assert history["Profit"].iloc[1] == pytest.approx(19.58)


def test_history_empty(tmp_path):
    history = TradeRecorder(tmp_path / "none.csv", None).history()
    assert history.empty
    assert list(history.columns) == CSV_HEADER


def test_profit_report(recorder):
    recorder.record(TradeRecord(type="BUY", symbol="BTC-USDT", price=100.0, quantity=2.0))
    recorder.record(TradeRecord(type="SELL", symbol="BTC-USDT", price=110.0, quantity=1.0, profit=9.79))
    recorder.record(TradeRecord(type="SELL", symbol="BTC-USDT", price=95.0, quantity=1.0,
                                stop_loss=True, profit=-5.3))
    recorder.record(TradeRecord(type="SELL", symbol="BTC-USDT", price=95.0, quantity=0.0001,
                                status="FAILED_MIN_SIZE"))

    report = recorder.profit_report()

    assert report["buy_count"] == 1
    assert report["sell_count"] == 2
    assert report["stop_loss_count"] == 1
    assert report["failed_count"] == 1
    assert report["buy_value"] == pytest.approx(200.0)
    assert report["sell_value"] == pytest.approx(205.0)
    assert report["gross_profit"] == pytest.approx(5.0)
    assert report["realized_profit"] == pytest.approx(4.49)
    assert report["estimated_fees"] == pytest.approx(0.405)
