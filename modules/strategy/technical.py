"""
strategy/technical.py
---------------------
Score-based technical read of the market:

• RSI oversold / overbought           ±2
• short MA vs long MA with price      ±1
• price outside the Bollinger bands   ±1
• high volume correlated with price   ±1 (direction from 24h change)
• order-book bid share > 0.6 / < 0.4  ±1, tight spread +0.5
• 24h change beyond ±2 %              ±0.5

The side leading by more than 1 point sets BUY/SELL, by more than 2 the
STRONG_ variant. Confidence is the total score over 6, capped at 100 %.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from modules.indicator import IndicatorCalculator
from .base import BaseStrategy

MIN_CANDLES = 30


@dataclass
class OrderBookAnalysis:
    bid_volume: float
    ask_volume: float
    volume_ratio: float  # bid share of total depth, 0..1
    spread: float
    spread_percent: float


@dataclass
class TechnicalSignal:
    signal: str = "HOLD"
    confidence: float = 0.0  # 0..100
    bullish_score: float = 0.0
    bearish_score: float = 0.0
    factors: List[str] = field(default_factory=list)
    indicators: Dict[str, Any] = field(default_factory=dict)
    order_book: Optional[OrderBookAnalysis] = None

    @property
    def is_buy(self) -> bool:
        return self.signal in ("BUY", "STRONG_BUY")

    @property
    def is_sell(self) -> bool:
        return self.signal in ("SELL", "STRONG_SELL")


def analyze_order_book(order_book: Any, current_price: float) -> Optional[OrderBookAnalysis]:
    if order_book is None or not order_book.bids or not order_book.asks or current_price <= 0:
        return None
    bid_volume = sum(size for _, size in order_book.bids)
    ask_volume = sum(size for _, size in order_book.asks)
    total = bid_volume + ask_volume
    spread = order_book.asks[0][0] - order_book.bids[0][0]
    return OrderBookAnalysis(
        bid_volume=bid_volume,
        ask_volume=ask_volume,
        volume_ratio=bid_volume / total if total > 0 else 0.5,
        spread=spread,
        spread_percent=spread / current_price * 100,
    )


class TechnicalStrategy(BaseStrategy):
    def __init__(
        self,
        rsi_period: int = 14,
        rsi_oversold: float = 30,
        rsi_overbought: float = 70,
        ma_short: int = 10,
        ma_long: int = 21,
        bollinger_period: int = 20,
        bollinger_std: float = 2,
    ):
        self.rsi_period = rsi_period
        self.rsi_oversold = rsi_oversold
        self.rsi_overbought = rsi_overbought
        self.ma_short = ma_short
        self.ma_long = ma_long
        self.bollinger_period = bollinger_period
        self.bollinger_std = bollinger_std

    def generate_signal(
        self,
        df: pd.DataFrame,
        snapshot: Any,
        order_book: Optional[Any] = None,
    ) -> TechnicalSignal:
        if snapshot is None or df is None or len(df) < MIN_CANDLES:
            return TechnicalSignal(factors=["Insufficient data"])

        calc = IndicatorCalculator(
            df,
            rsi_period=self.rsi_period,
            ma_short=self.ma_short,
            ma_long=self.ma_long,
            bollinger_period=self.bollinger_period,
            bollinger_std=self.bollinger_std,
        ).run_all()
        ind = calc.latest()
        price = snapshot.price
        change_24h = snapshot.price_change_percent_24h

        bullish = 0.0
        bearish = 0.0
        factors: List[str] = []

        rsi = ind.get("rsi")
        if rsi is None:
            rsi = 50.0
        if rsi < self.rsi_oversold:
            bullish += 2
            factors.append(f"RSI oversold ({rsi:.1f})")
        elif rsi > self.rsi_overbought:
            bearish += 2
            factors.append(f"RSI overbought ({rsi:.1f})")

        sma_short, sma_long = ind.get("sma_short"), ind.get("sma_long")
        if sma_short is not None and sma_long is not None:
            if sma_short > sma_long and price > sma_short:
                bullish += 1
                factors.append("Price above short MA, uptrend")
            elif sma_short < sma_long and price < sma_short:
                bearish += 1
                factors.append("Price below short MA, downtrend")

        upper, lower = ind.get("boll_upper"), ind.get("boll_lower")
        if upper is not None and lower is not None:
            if price < lower:
                bullish += 1
                factors.append("Price below lower Bollinger Band")
            elif price > upper:
                bearish += 1
                factors.append("Price above upper Bollinger Band")

        volume_ratio = ind.get("volume_ratio")
        if volume_ratio is not None and volume_ratio > 1.5 and (ind.get("price_volume_corr") or 0) > 0.3:
            if change_24h > 0:
                bullish += 1
                factors.append("High volume with positive price correlation")
            else:
                bearish += 1
                factors.append("High volume with negative price correlation")

        book = analyze_order_book(order_book, price)
        if book is not None:
            if book.volume_ratio > 0.6:
                bullish += 1
                factors.append("Strong buying pressure in order book")
            elif book.volume_ratio < 0.4:
                bearish += 1
                factors.append("Strong selling pressure in order book")
            if book.spread_percent < 0.1:
                bullish += 0.5

        if change_24h > 2:
            bullish += 0.5
            factors.append("Strong 24h positive momentum")
        elif change_24h < -2:
            bearish += 0.5
            factors.append("Strong 24h negative momentum")

        signal = "HOLD"
        if bullish > bearish + 1:
            signal = "STRONG_BUY" if bullish > bearish + 2 else "BUY"
        elif bearish > bullish + 1:
            signal = "STRONG_SELL" if bearish > bullish + 2 else "SELL"

        return TechnicalSignal(
            signal=signal,
            confidence=min((bullish + bearish) / 6, 1.0) * 100,
            bullish_score=bullish,
            bearish_score=bearish,
            factors=factors,
            indicators={
                "rsi": rsi,
                "sma_short": sma_short,
                "sma_long": sma_long,
                "boll_upper": upper,
                "boll_lower": lower,
                "volatility": ind.get("volatility"),
                "volume_ratio": volume_ratio,
            },
            order_book=book,
        )
