"""
risk_manager.py
---------------
Guard rails around the buy/sell loop: daily trade and loss limits, position
sizing, stop-loss / take-profit / trailing-stop checks on a long entry and a
market-conditions score rolled up into ``assess_risk``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional


@dataclass
class DailyStats:
    trades: int = 0
    profit: float = 0.0
    loss: float = 0.0
    day: date = field(default_factory=date.today)


@dataclass
class LimitCheck:
    allowed: bool
    reason: str


@dataclass
class TriggerCheck:
    triggered: bool
    reason: str
    percent: float = 0.0
    stop_price: Optional[float] = None


@dataclass
class PositionSize:
    recommended_size: float  # quote currency
    risk_amount: float
    risk_percent: float


@dataclass
class MarketValidation:
    valid: bool
    score: float
    issues: List[str]
    recommendation: str


@dataclass
class RiskAssessment:
    risk_score: float
    risk_level: str  # LOW | MEDIUM | HIGH | EXTREME
    recommended_action: str  # PROCEED | PROCEED_WITH_CAUTION | AVOID
    factors: List[str]
    market_validation: MarketValidation


class RiskManager:
    def __init__(
        self,
        stop_loss_percent: float = 0.02,
        take_profit_percent: float = 0.03,
        max_daily_loss: float = 5.0,
        max_daily_trades: int = 20,
        position_size_percent: float = 0.8,
        trailing_stop_percent: float = 0.015,
        min_volume_24h: float = 1_000_000,
        max_spread_percent: float = 0.001,
        *,
        today: Callable[[], date] = date.today,
        logger: Optional[logging.Logger] = None,
    ):
        self.stop_loss_percent = stop_loss_percent
        self.take_profit_percent = take_profit_percent
        self.max_daily_loss = max_daily_loss
        self.max_daily_trades = max_daily_trades
        self.position_size_percent = position_size_percent
        self.trailing_stop_percent = trailing_stop_percent
        self.min_volume_24h = min_volume_24h
        self.max_spread_percent = max_spread_percent
        self._today = today
        self.logger = logger or logging.getLogger(__name__)

        self.daily_stats = DailyStats(day=self._today())
        self.trailing_stops: Dict[str, Dict[str, Optional[float]]] = {}

    @classmethod
    def from_config(cls, risk: Dict[str, Any], **kwargs) -> "RiskManager":
        return cls(
            stop_loss_percent=risk.get("stop_loss_percent", 0.02),
            take_profit_percent=risk.get("take_profit_percent", 0.03),
            max_daily_loss=risk.get("max_daily_loss", 5.0),
            max_daily_trades=risk.get("max_daily_trades", 20),
            position_size_percent=risk.get("position_size_percent", 0.8),
            trailing_stop_percent=risk.get("trailing_stop_percent", 0.015),
            min_volume_24h=risk.get("min_volume_24h", 1_000_000),
            max_spread_percent=risk.get("max_spread_percent", 0.001),
            **kwargs,
        )

    # ------------------------------------------------------------------ #
    # daily limits
    # ------------------------------------------------------------------ #
    def check_daily_reset(self) -> None:
        today = self._today()
        if self.daily_stats.day != today:
            self.daily_stats = DailyStats(day=today)
            self.logger.info("📅 Daily statistics reset for new trading day")

    def check_daily_limits(self) -> LimitCheck:
        self.check_daily_reset()
        if self.daily_stats.trades >= self.max_daily_trades:
            return LimitCheck(False, f"Daily trade limit reached ({self.max_daily_trades})")
        if self.daily_stats.loss >= self.max_daily_loss:
            return LimitCheck(False, f"Daily loss limit reached (${self.max_daily_loss})")
        return LimitCheck(True, "Within daily limits")

    def record_trade(self, symbol: str, side: str, amount: float, pnl: float = 0.0) -> None:
        self.check_daily_reset()
        self.daily_stats.trades += 1
        if pnl > 0:
            self.daily_stats.profit += pnl
        else:
            self.daily_stats.loss += abs(pnl)
        self.logger.info("📊 Trade recorded: %s %s %s, P&L: $%.2f", side, amount, symbol, pnl)
        self.logger.info(
            "📈 Daily stats: %d trades, $%.2f profit, $%.2f loss",
            self.daily_stats.trades, self.daily_stats.profit, self.daily_stats.loss,
        )

    # ------------------------------------------------------------------ #
    # sizing
    # ------------------------------------------------------------------ #
    def calculate_position_size(
        self,
        available_capital: float,
        current_price: float,
        stop_loss_price: Optional[float] = None,
    ) -> PositionSize:
        """Percentage of capital, capped by risking 1 % of capital against the stop."""
        size = available_capital * self.position_size_percent
        if not stop_loss_price or stop_loss_price <= 0 or current_price <= 0:
            return PositionSize(recommended_size=size, risk_amount=0.0, risk_percent=0.0)

        risk_per_unit = abs(current_price - stop_loss_price)
        if risk_per_unit > 0:
            risk_based_units = (available_capital * 0.01) / risk_per_unit
            size = min(size, risk_based_units * current_price)
        return PositionSize(
            recommended_size=size,
            risk_amount=risk_per_unit * (size / current_price),
            risk_percent=risk_per_unit / current_price * 100,
        )

    # ------------------------------------------------------------------ #
    # exits for a long entry
    # ------------------------------------------------------------------ #
    def check_stop_loss(self, current_price: float, entry_price: Optional[float]) -> TriggerCheck:
        if not entry_price or entry_price <= 0:
            return TriggerCheck(False, "No entry price set")
        loss = (entry_price - current_price) / entry_price
        if loss >= self.stop_loss_percent:
            return TriggerCheck(True, f"Stop loss triggered: {loss * 100:.2f}% loss", loss * 100)
        return TriggerCheck(False, f"Current loss: {loss * 100:.2f}%", loss * 100)

    def check_take_profit(self, current_price: float, entry_price: Optional[float]) -> TriggerCheck:
        if not entry_price or entry_price <= 0:
            return TriggerCheck(False, "No entry price set")
        gain = (current_price - entry_price) / entry_price
        if gain >= self.take_profit_percent:
            return TriggerCheck(True, f"Take profit triggered: {gain * 100:.2f}% profit", gain * 100)
        return TriggerCheck(False, f"Current profit: {gain * 100:.2f}%", gain * 100)

    def update_trailing_stop(self, symbol: str, current_price: float) -> TriggerCheck:
        """Ratchet the stop under the highest price seen; the stop arms on the first new high."""
        trailing = self.trailing_stops.setdefault(
            symbol, {"highest_price": current_price, "stop_price": None}
        )
        if current_price > trailing["highest_price"]:
            trailing["highest_price"] = current_price
            trailing["stop_price"] = current_price * (1 - self.trailing_stop_percent)

        stop = trailing["stop_price"]
        if stop is not None and current_price <= stop:
            return TriggerCheck(True, f"Trailing stop triggered at ${stop:.4f}", stop_price=stop)
        return TriggerCheck(False, "Trailing stop not hit", stop_price=stop)

    def reset_trailing_stop(self, symbol: str) -> None:
        self.trailing_stops.pop(symbol, None)

    # ------------------------------------------------------------------ #
    # market conditions
    # ------------------------------------------------------------------ #
    def validate_market_conditions(self, snapshot: Any, order_book: Any = None) -> MarketValidation:
        issues: List[str] = []
        score = 100.0

        if snapshot.volume_quote_24h < self.min_volume_24h:
            issues.append(f"Low 24h volume: ${snapshot.volume_quote_24h:,.0f}")
            score -= 30
        if snapshot.spread_percent > self.max_spread_percent * 100:
            issues.append(f"High spread: {snapshot.spread_percent:.3f}%")
            score -= 20

        if order_book is not None:
            if order_book.spread_percent > self.max_spread_percent * 100:
                issues.append(f"Order book spread too high: {order_book.spread_percent:.3f}%")
                score -= 15
            if order_book.volume_ratio > 0.8 or order_book.volume_ratio < 0.2:
                issues.append(f"Unbalanced order book: {order_book.volume_ratio * 100:.1f}% buy pressure")
                score -= 10

        change = abs(snapshot.price_change_percent_24h)
        if change > 15:
            issues.append(f"Extreme volatility: {change:.2f}% in 24h")
            score -= 25

        if score >= 80:
            recommendation = "Excellent conditions"
        elif score >= 60:
            recommendation = "Good conditions"
        elif score >= 40:
            recommendation = "Acceptable conditions"
        else:
            recommendation = "Poor conditions"
        return MarketValidation(score >= 50, score, issues, recommendation)

    def assess_risk(
        self,
        snapshot: Any,
        *,
        order_book: Any = None,
        technical_signal: Any = None,
        available_capital: float = 0.0,
        position_value: float = 0.0,
    ) -> RiskAssessment:
        limits = self.check_daily_limits()
        market = self.validate_market_conditions(snapshot, order_book)

        score = 0.0
        factors: List[str] = []
        if not limits.allowed:
            score += 100
            factors.append(limits.reason)

        score += (100 - market.score) * 0.3
        factors.extend(market.issues)

        if technical_signal is not None and technical_signal.confidence < 60:
            score += (60 - technical_signal.confidence) * 0.5
            factors.append(f"Low signal confidence: {technical_signal.confidence:.1f}%")

        if available_capital > 0:
            concentration = position_value / available_capital * 100
            if concentration > 80:
                score += (concentration - 80) * 2
                factors.append(f"High position concentration: {concentration:.1f}%")

        if score < 20:
            level = "LOW"
        elif score < 50:
            level = "MEDIUM"
        elif score < 80:
            level = "HIGH"
        else:
            level = "EXTREME"

        if score < 30:
            action = "PROCEED"
        elif score < 70:
            action = "PROCEED_WITH_CAUTION"
        else:
            action = "AVOID"

        return RiskAssessment(min(score, 100.0), level, action, factors, market)
