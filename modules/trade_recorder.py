"""
trade_recorder.py
-----------------
Append-only trade journal.

Two files are written for every order attempt:

* ``transactions.csv`` – machine journal, one CSV row per record, header
  ``Date,Time,Trading_Symbol,Action,Amount,Price,Total_Value,Order_ID,Status,Profit,Profit_Pct``
* ``trades.log``       – operator-friendly line with the profit annotation.

Each row is flushed and fsync'ed before record() returns so a fill is on
disk even if the process dies right after.  Past rows are never rewritten.
"""

from __future__ import annotations

import csv
import io
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import pandas as pd

from models.trade_record import TradeRecord
from modules.cost_basis import DEFAULT_FEE_RATE

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Date", "Time", "Trading_Symbol", "Action", "Amount", "Price",
    "Total_Value", "Order_ID", "Status", "Profit", "Profit_Pct",
]


def _fmt(value: Optional[float], places: int) -> str:
    return "" if value is None else f"{value:.{places}f}"


class TradeRecorder:
    def __init__(
        self,
        journal_path: Union[str, Path] = "logs/transactions.csv",
        human_log_path: Optional[Union[str, Path]] = "logs/trades.log",
    ) -> None:
        self.journal_path = Path(journal_path)
        self.human_log_path = Path(human_log_path) if human_log_path else None

    # ------------------------------------------------------------------ #
    # Writing
    # ------------------------------------------------------------------ #
    def record(self, entry: Union[TradeRecord, Mapping[str, Any]]) -> TradeRecord:
        """Append ``entry`` to both journals.

        Mappings are validated into a TradeRecord first (pydantic raises
        ValidationError for a missing type/symbol/price/quantity).  A SELL
        without profit fields is written with blank profit columns.
        """
        rec = entry if isinstance(entry, TradeRecord) else TradeRecord(**dict(entry))

        if rec.type == "SELL" and rec.status == "SUCCESS" and rec.profit is None:
            logger.warning("SELL %s %s recorded without profit figures", rec.quantity, rec.symbol)

        self._append(self.journal_path, self._csv_row(rec), header=True)
        if self.human_log_path is not None:
            self._append(self.human_log_path, self._human_line(rec))

        logger.info("📝 Journal: %s %s %s @ %.8f [%s]", rec.action, rec.quantity, rec.symbol, rec.price, rec.status)
        return rec

    def _append(self, path: Path, text: str, header: bool = False) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        needs_header = header and (not path.exists() or path.stat().st_size == 0)
        with open(path, "a", encoding="utf-8", newline="") as fh:
            if needs_header:
                fh.write(",".join(CSV_HEADER) + "\n")
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())

    @staticmethod
    def _csv_row(rec: TradeRecord) -> str:
        buf = io.StringIO()
        csv.writer(buf, lineterminator="\n").writerow([
            rec.timestamp.strftime("%Y-%m-%d"),
            rec.timestamp.strftime("%H:%M:%S"),
            rec.symbol,
            rec.action,
            f"{rec.quantity:.8f}",
            f"{rec.price:.8f}",
            f"{rec.value:.2f}",
            rec.order_id,
            rec.status,
            _fmt(rec.profit, 8),
            _fmt(rec.profit_percent, 2),
        ])
        return buf.getvalue()

    @staticmethod
    def _human_line(rec: TradeRecord) -> str:
        label = "📈 BUY" if rec.type == "BUY" else ("🛑 SELL (STOP LOSS)" if rec.stop_loss else "📉 SELL")
        line = (
            f"{rec.timestamp.isoformat()} | {label} | {rec.symbol} | Price: {rec.price:.8f} | "
            f"Amount: {rec.quantity:.8f} | Value: {rec.value:.2f} | Order: {rec.order_id} | {rec.status}"
        )
        if rec.profit is not None:
            line += f" | Profit: {rec.profit:+.8f}"
            if rec.profit_percent is not None:
                line += f" ({rec.profit_percent:+.2f}%)"
        if rec.stop_loss:
            line += " | ⚠️ TRIGGERED BY STOP LOSS"
        return line + "\n"

    # ------------------------------------------------------------------ #
    # Reading
    # ------------------------------------------------------------------ #
    def history(self) -> pd.DataFrame:
        """Machine journal as a DataFrame (empty with the header columns if absent)."""
        if not self.journal_path.exists() or self.journal_path.stat().st_size == 0:
            return pd.DataFrame(columns=CSV_HEADER)
        df = pd.read_csv(self.journal_path, dtype={"Order_ID": str}, keep_default_na=False)
        for col in ("Amount", "Price", "Total_Value", "Profit", "Profit_Pct"):
            df[col] = pd.to_numeric(df[col], errors="coerce")
        return df

    def profit_report(self, fee_rate: float = DEFAULT_FEE_RATE) -> Dict[str, float]:
        """Totals over successful fills, for reconciling against the exchange."""
        df = self.history()
        ok = df[df["Status"] == "SUCCESS"]
        buys = ok[ok["Action"] == "BUY"]
        sells = ok[ok["Action"].str.startswith("SELL", na=False)]

        buy_value = float(buys["Total_Value"].sum())
        sell_value = float(sells["Total_Value"].sum())
        return {
            "buy_count": int(len(buys)),
            "sell_count": int(len(sells)),
            "stop_loss_count": int((sells["Action"] == "SELL_STOP_LOSS").sum()),
            "quantity_bought": float(buys["Amount"].sum()),
            "quantity_sold": float(sells["Amount"].sum()),
            "buy_value": buy_value,
            "sell_value": sell_value,
            "gross_profit": sell_value - buy_value,
            "estimated_fees": (buy_value + sell_value) * fee_rate,
            "realized_profit": float(sells["Profit"].sum(skipna=True)),
            "failed_count": int((df["Status"] != "SUCCESS").sum()),
        }
