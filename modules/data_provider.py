"""
data_provider.py
-----------------

Normalises raw OKX ``/market/candles`` responses into Pandas DataFrames.

OKX returns ``data`` as a list of string arrays, newest candle first::

    [ts_ms, open, high, low, close, vol, volCcy, volCcyQuote, confirm]

The provider sorts rows oldest-first and casts them so indicator code can
rely on the column names below.  A malformed payload produces an empty
DataFrame rather than an exception; callers check ``df.empty``.
"""

from __future__ import annotations

from typing import Any, Dict, List

import pandas as pd


class DataProvider:
    """Convert raw candle JSON into a typed DataFrame.

    Columns: ``timestamp`` (int ms), ``open``, ``high``, ``low``, ``close``,
    ``volume`` (base), ``volume_quote``.
    """

    columns: List[str] = ["timestamp", "open", "high", "low", "close", "volume", "volume_quote"]

    def create_dataframe_from_candles(self, data: Any) -> pd.DataFrame:
        """Return a DataFrame from a candle envelope (or its bare ``data`` list)."""
        raw = data.get("data") if isinstance(data, dict) else data
        if not isinstance(raw, list) or not raw:
            return pd.DataFrame(columns=self.columns)

        rows: List[Dict[str, Any]] = []
        for candle in raw:
            try:
                rows.append({
                    "timestamp": int(candle[0]),
                    "open": float(candle[1]),
                    "high": float(candle[2]),
                    "low": float(candle[3]),
                    "close": float(candle[4]),
                    "volume": float(candle[5]),
                    "volume_quote": float(candle[6]) if len(candle) > 6 else 0.0,
                })
            except (TypeError, ValueError, IndexError, KeyError):
                # skip malformed rows
                continue

        df = pd.DataFrame(rows, columns=self.columns)
        if df.empty:
            return df
        return df.sort_values("timestamp").drop_duplicates("timestamp").reset_index(drop=True)

