import numpy as np
import pandas as pd


class IndicatorCalculator:
    """Chainable indicator columns over an OHLCV DataFrame.

    Every ``calculate_*`` method adds columns to ``self.df`` and returns
    ``self``; ``latest()`` returns the last row as a plain dict.
    """

    RENAME_MAP = {
        "open": "open_price",
        "high": "high_price",
        "low": "low_price",
        "close": "close_price",
    }

    def _normalize_columns(self):
        self.df.rename(columns=self.RENAME_MAP, inplace=True)

    def __init__(self, df=None, *, rsi_period=14, ma_short=10, ma_long=21,
                 bollinger_period=20, bollinger_std=2, max_rows=500):
        self.df = df.copy() if df is not None else pd.DataFrame()
        self._normalize_columns()
        self.rsi_period = rsi_period
        self.ma_short = ma_short
        self.ma_long = ma_long
        self.bollinger_period = bollinger_period
        self.bollinger_std = bollinger_std
        self.max_rows = max_rows

    def update(self, new_row: dict):
        row = pd.DataFrame([new_row]).rename(columns=self.RENAME_MAP)
        self.df = pd.concat([self.df, row], ignore_index=True)
        if len(self.df) > self.max_rows:
            self.df = self.df.iloc[-self.max_rows:].reset_index(drop=True)

        return self.run_all()

    def run_all(self):
        if self.df.empty:
            return self
        return (
            self.calculate_sma()
                .calculate_bollinger()
                .calculate_rsi()
                .calculate_macd()
                .calculate_volatility()
                .calculate_volume_ratio()
        )

    def calculate_sma(self):
        close = self.df['close_price']
        self.df['sma_short'] = close.rolling(window=self.ma_short).mean()
        self.df['sma_long'] = close.rolling(window=self.ma_long).mean()
        return self

    def calculate_bollinger(self):
        close = self.df['close_price']
        period = self.bollinger_period
        # population std over the window
        self.df['boll_sma'] = close.rolling(window=period).mean()
        self.df['boll_std'] = close.rolling(window=period).std(ddof=0)
        self.df['boll_upper'] = self.df['boll_sma'] + self.bollinger_std * self.df['boll_std']
        self.df['boll_lower'] = self.df['boll_sma'] - self.bollinger_std * self.df['boll_std']
        return self

    def calculate_rsi(self):
        delta = self.df['close_price'].diff()
        gain = delta.clip(lower=0)
        loss = -delta.clip(upper=0)
        avg_gain = gain.rolling(window=self.rsi_period).mean()
        avg_loss = loss.rolling(window=self.rsi_period).mean()
        rs = avg_gain / avg_loss.replace(0, np.nan)
        rsi = 100 - (100 / (1 + rs))
        # no losses in the window: 100, flat window: neutral
        rsi = rsi.mask((avg_loss == 0) & (avg_gain > 0), 100.0)
        rsi = rsi.mask((avg_loss == 0) & (avg_gain == 0), 50.0)
        self.df['rsi'] = rsi
        return self

    def calculate_macd(self, fast=12, slow=26, signal=9):
        ema_fast = self.df['close_price'].ewm(span=fast, adjust=False).mean()
        ema_slow = self.df['close_price'].ewm(span=slow, adjust=False).mean()
        self.df['macd'] = ema_fast - ema_slow
        self.df['macd_signal'] = self.df['macd'].ewm(span=signal, adjust=False).mean()
        self.df['macd_hist'] = self.df['macd'] - self.df['macd_signal']
        return self

    def calculate_volatility(self, period=20):
        """Annualised (x sqrt(252)) std of simple returns."""
        returns = self.df['close_price'].pct_change()
        self.df['volatility'] = returns.rolling(window=period).std(ddof=0) * np.sqrt(252)
        return self

    def calculate_volume_ratio(self, period=20):
        avg = self.df['volume'].rolling(window=period, min_periods=1).mean()
        self.df['volume_avg'] = avg
        self.df['volume_ratio'] = self.df['volume'] / avg.replace(0, np.nan)

        # price/volume change correlation over the whole window
        price_changes = self.df['close_price'].pct_change()
        volume_changes = self.df['volume'].pct_change().replace([np.inf, -np.inf], np.nan)
        corr = price_changes.corr(volume_changes)
        self.df['price_volume_corr'] = 0.0 if pd.isna(corr) else float(corr)
        return self

    def latest(self) -> dict:
        if self.df.empty:
            return {}
        row = self.df.iloc[-1]
        return {k: (None if pd.isna(v) else v) for k, v in row.items()}

    def get_df(self):
        return self.df
