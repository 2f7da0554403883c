"""
trading_bot.py
--------------
Polling loop for one spot pair.  Each cycle reads the price and balances,
optionally asks the technical strategy and risk manager, then buys on a
price drop or sells when the lot ledger says the FIFO head is profitable.

The ledger is only touched after the exchange confirms an order; every
order attempt, filled or failed, is journalled by the TradeRecorder.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from models.lot import EPSILON
from models.trade_record import TradeRecord
from modules.errors import ExchangeError, LedgerPersistenceError
from modules.lot_ledger import LotLedger
from modules.market_data import MarketDataClient, MarketSnapshot
from modules.okx_client import OKXClient, OrderFill
from modules.risk_manager import RiskManager
from modules.sell_decision import SellDecisionEngine
from modules.strategy.technical import TechnicalSignal, TechnicalStrategy
from modules.trade_recorder import TradeRecorder
from utils.config_manager import ConfigManager


@dataclass(frozen=True)
class BotState:
    """Everything the loop carries from one cycle to the next."""
    last_price: Optional[float] = None
    last_buy_price: Optional[float] = None
    base_balance: float = 0.0
    quote_balance: float = 0.0
    cycle_count: int = 0


def sell_amount_for(balance: float, min_size: float, precision: int) -> Tuple[float, bool]:
    """99 % of ``balance`` floored to ``precision`` decimals, and whether it meets ``min_size``."""
    factor = 10 ** precision
    amount = math.floor(balance * 0.99 * factor) / factor
    amount = min(amount, balance)
    return amount, amount >= min_size and amount > 0


def lot_size_precision(lot_size: float) -> Optional[int]:
    """Decimal places allowed by an exchange lot size (0.0001 -> 4, 1 -> 0)."""
    if not lot_size or lot_size <= 0:
        return None
    try:
        exponent = Decimal(str(lot_size)).normalize().as_tuple().exponent
    except InvalidOperation:
        return None
    return max(0, -exponent)


class TradingBot:
    def __init__(
        self,
        config: ConfigManager,
        *,
        exchange: OKXClient,
        ledger: LotLedger,
        recorder: TradeRecorder,
        market_data: Optional[MarketDataClient] = None,
        engine: Optional[SellDecisionEngine] = None,
        strategy: Optional[TechnicalStrategy] = None,
        risk_manager: Optional[RiskManager] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.config = config

        self.symbol = config.get_symbol()
        self.base_currency, self.quote_currency = config.get_currencies()
        self.threshold = config.get_price_change_threshold()
        self.profit_target = config.get_profit_target()
        self.interval = config.get_check_interval()
        self.min_order_size = config.get_min_order_size()
        self.max_usdt_to_use = config.get_max_usdt_to_use()
        self.candle_bar, self.candle_limit = config.get_candle_settings()
        self.min_sell_size = config.get_min_sell_size(self.base_currency)
        self.sell_precision = config.get_sell_precision(self.base_currency)

        self.use_technical = config.feature_enabled("technical_analysis")
        self.use_order_book = config.feature_enabled("order_book_analysis")
        self.use_risk = config.feature_enabled("risk_management")
        self.use_stop_loss = config.feature_enabled("stop_loss")

        self.exchange = exchange
        self.ledger = ledger
        self.recorder = recorder
        self.market_data = market_data
        self.engine = engine or SellDecisionEngine(ledger)
        self.strategy = strategy
        self.risk_manager = risk_manager

        head = ledger.head()
        self.state = BotState(last_buy_price=head.buy_price if head else None)

    # -------------------------------------------------------------------- #
    # exchange access (requests is blocking)
    # -------------------------------------------------------------------- #
    async def _call(self, fn, *args, **kwargs):
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def _snapshot(self) -> Tuple[Optional[float], Optional[MarketSnapshot]]:
        if self.market_data is not None:
            snapshot = await self.market_data.fetch_ticker(self.symbol)
            if snapshot is not None:
                return snapshot.price, snapshot
        try:
            return await self._call(self.exchange.get_price, self.symbol), None
        except ExchangeError as exc:
            self.logger.error("❌ Price fetch failed for %s: %s", self.symbol, exc)
            return None, None

    async def _balances(self) -> Optional[Tuple[float, float]]:
        try:
            balances = await self._call(self.exchange.get_balances)
        except ExchangeError as exc:
            self.logger.error("❌ Balance fetch failed: %s", exc)
            return None
        base = balances.get(self.base_currency)
        quote = balances.get(self.quote_currency)
        return (base.available if base else 0.0, quote.available if quote else 0.0)

    async def _fill(self, order_id: Optional[str]) -> Optional[OrderFill]:
        if not order_id:
            return None
        try:
            fill = await self._call(self.exchange.get_order, self.symbol, order_id)
        except ExchangeError as exc:
            self.logger.warning("Could not fetch fill for %s: %s", order_id, exc)
            return None
        return fill if fill is not None and fill.is_filled else None

    def available_quote(self, quote_balance: float) -> float:
        if not self.max_usdt_to_use:
            return quote_balance
        return min(quote_balance, self.max_usdt_to_use)

    # -------------------------------------------------------------------- #
    # cycle
    # -------------------------------------------------------------------- #
    async def run_cycle(self, state: BotState) -> BotState:
        """Run one poll and return the state for the next one."""
        state = replace(state, cycle_count=state.cycle_count + 1)

        price, snapshot = await self._snapshot()
        if not price:
            return state

        balances = await self._balances()
        if balances is None:
            return state
        base_balance, quote_balance = balances
        state = replace(state, base_balance=base_balance, quote_balance=quote_balance)
        available = self.available_quote(quote_balance)

        change = (price - state.last_price) / state.last_price if state.last_price else 0.0
        self.logger.info(
            "%s: $%.4f | %s: %.6f | Available %s: $%.2f | Price change: %.4f%% | Threshold: ±%.4f%%",
            self.symbol, price, self.base_currency, base_balance,
            self.quote_currency, available, change * 100, self.threshold * 100,
        )

        signal, book = await self._technical(snapshot)

        if self.use_risk and self.risk_manager is not None and snapshot is not None:
            assessment = self.risk_manager.assess_risk(
                snapshot,
                order_book=book,
                technical_signal=signal,
                available_capital=available,
                position_value=base_balance * price,
            )
            if assessment.recommended_action == "AVOID":
                self.logger.warning(
                    "⛔ Risk %s (%.1f) – skipping cycle: %s",
                    assessment.risk_level, assessment.risk_score, "; ".join(assessment.factors),
                )
                return replace(state, last_price=price)

        if self.use_stop_loss and self.risk_manager is not None and base_balance > 0:
            exited = await self._check_exits(state, price)
            if exited is not None:
                return replace(exited, last_price=price)

        buy_on_drop = change <= -self.threshold and state.last_price is not None
        buy_on_signal = signal is not None and signal.is_buy and signal.confidence > 60

        if (buy_on_drop or buy_on_signal) and available >= self.min_order_size:
            reasons = []
            if buy_on_drop:
                reasons.append(f"Price drop: {abs(change) * 100:.4f}%")
            if buy_on_signal:
                reasons.append(f"Technical signal: {signal.signal} ({signal.confidence:.1f}%)")
            state = await self._buy(state, price, available, " + ".join(reasons))
        elif base_balance > 0:
            state = await self._maybe_sell(state, price, signal)

        return replace(state, last_price=price)

    async def _technical(self, snapshot: Optional[MarketSnapshot]):
        if not self.use_technical or self.strategy is None or self.market_data is None or snapshot is None:
            return None, None
        candles = await self.market_data.fetch_candles(self.symbol, self.candle_bar, self.candle_limit)
        order_book = None
        if self.use_order_book:
            order_book = await self.market_data.fetch_order_book(self.symbol)
        signal: TechnicalSignal = self.strategy.generate_signal(candles, snapshot, order_book)
        self.logger.info(
            "📈 Technical: %s (%.1f%%) bull %.1f / bear %.1f %s",
            signal.signal, signal.confidence, signal.bullish_score, signal.bearish_score, signal.factors,
        )
        return signal, signal.order_book

    async def _check_exits(self, state: BotState, price: float) -> Optional[BotState]:
        head = self.ledger.head()
        if head is None:
            return None
        rm = self.risk_manager

        stop = rm.check_stop_loss(price, head.buy_price)
        if stop.triggered:
            self.logger.warning("🛑 %s", stop.reason)
            return await self._sell(state, price, stop.reason, stop_loss=True)

        take = rm.check_take_profit(price, head.buy_price)
        if take.triggered:
            self.logger.info("🎯 %s", take.reason)
            return await self._sell(state, price, take.reason)

        trailing = rm.update_trailing_stop(self.symbol, price)
        if trailing.triggered:
            self.logger.warning("📉 %s", trailing.reason)
            return await self._sell(state, price, trailing.reason, stop_loss=True)
        return None

    async def _maybe_sell(self, state: BotState, price: float, signal: Optional[TechnicalSignal]) -> BotState:
        decision = self.engine.should_sell(price, self.profit_target)
        strong_sell = signal is not None and signal.is_sell and signal.confidence > 80

        if decision.should_sell or strong_sell:
            reason = decision.reason if decision.should_sell else (
                f"Technical signal: {signal.signal} ({signal.confidence:.1f}%)"
            )
            self.logger.info("📈 SELL SIGNAL: %s", reason)
            return await self._sell(state, price, reason)

        if decision.at_loss:
            self.logger.info("🔒 HODL: %s", decision.reason)
        else:
            self.logger.info("⏳ Waiting: %s", decision.reason)
        return state

    # -------------------------------------------------------------------- #
    # orders
    # -------------------------------------------------------------------- #
    def _journal(self, **fields: Any) -> None:
        self.recorder.record(TradeRecord(symbol=self.symbol, **fields))

    async def _buy(self, state: BotState, price: float, available: float, reason: str) -> BotState:
        amount = math.floor(available * 0.99)
        if self.use_risk and self.risk_manager is not None:
            stop_price = price * (1 - self.risk_manager.stop_loss_percent)
            amount = math.floor(self.risk_manager.calculate_position_size(available, price, stop_price).recommended_size)
        if amount < self.min_order_size:
            self.logger.warning("💸 Buy amount $%s is below minimum order size $%s", amount, self.min_order_size)
            return state

        self.logger.warning("🔻 BUY SIGNAL: %s – buying $%s of %s at ~$%.4f", reason, amount, self.base_currency, price)
        estimate = amount / price
        try:
            result = await self._call(self.exchange.place_order, self.symbol, "buy", amount)
        except ExchangeError as exc:
            self.logger.error("❌ BUY failed: %s", exc)
            self._journal(type="BUY", price=price, quantity=estimate, total_value=amount, status="FAILED")
            return state
        if not result.success:
            self._journal(type="BUY", price=price, quantity=estimate, total_value=amount,
                          order_id=result.order_id, status="FAILED")
            return state

        fill = await self._fill(result.order_id)
        fill_price = fill.avg_price if fill and fill.avg_price > 0 else price
        quantity = fill.filled_size if fill else estimate

        try:
            self.ledger.add_lot(fill_price, quantity, order_id=result.order_id)
        except LedgerPersistenceError:
            # the fill still reaches the journal before the bot stops
            self._journal(type="BUY", price=fill_price, quantity=quantity,
                          total_value=fill_price * quantity, order_id=result.order_id)
            raise
        self._journal(type="BUY", price=fill_price, quantity=quantity,
                      total_value=fill_price * quantity, order_id=result.order_id)

        if self.risk_manager is not None:
            self.risk_manager.record_trade(self.symbol, "BUY", quantity)
        return replace(state, last_buy_price=fill_price)

    async def _sell(self, state: BotState, price: float, reason: str, *, stop_loss: bool = False) -> BotState:
        amount, ok = sell_amount_for(
            state.base_balance,
            self.min_sell_size,
            self.sell_precision,
        )
        if not ok:
            self.logger.warning(
                "⚠️ Cannot sell: amount %s %s is below minimum %s",
                amount, self.base_currency, self.min_sell_size,
            )
            self._journal(type="SELL", price=price, quantity=amount, stop_loss=stop_loss, status="FAILED_MIN_SIZE")
            return state

        self.logger.info("💰 SELLING %s %s at ~$%.4f (%s)", amount, self.base_currency, price, reason)
        try:
            result = await self._call(self.exchange.place_order, self.symbol, "sell", amount)
        except ExchangeError as exc:
            self.logger.error("❌ SELL failed: %s", exc)
            self._journal(type="SELL", price=price, quantity=amount, stop_loss=stop_loss, status="FAILED")
            return state
        if not result.success:
            self._journal(type="SELL", price=price, quantity=amount, stop_loss=stop_loss,
                          order_id=result.order_id, status="FAILED")
            return state

        fill = await self._fill(result.order_id)
        fill_price = fill.avg_price if fill and fill.avg_price > 0 else price
        quantity = fill.filled_size if fill else amount

        profit = profit_percent = None
        tracked = min(quantity, self.ledger.sellable_quantity())
        if tracked > EPSILON:
            try:
                consumed = self.ledger.consume(tracked, fill_price, order_id=result.order_id)
            except LedgerPersistenceError:
                self._journal(type="SELL", price=fill_price, quantity=quantity, stop_loss=stop_loss,
                              order_id=result.order_id)
                raise
            profit = consumed.total_realized_profit
            profit_percent = consumed.realized_profit_percent
        if quantity - tracked > EPSILON:
            self.logger.warning(
                "Sold %.8f %s not tracked by the ledger; no profit recorded for it",
                quantity - tracked, self.base_currency,
            )

        self._journal(type="SELL", price=fill_price, quantity=quantity, total_value=fill_price * quantity,
                      order_id=result.order_id, stop_loss=stop_loss,
                      profit=profit, profit_percent=profit_percent)

        if self.risk_manager is not None:
            self.risk_manager.record_trade(self.symbol, "SELL", quantity, profit or 0.0)
        head = self.ledger.head()
        if head is None and self.risk_manager is not None:
            self.risk_manager.reset_trailing_stop(self.symbol)
        return replace(state, last_buy_price=head.buy_price if head else None)

    # -------------------------------------------------------------------- #
    # lifecycle
    # -------------------------------------------------------------------- #
    async def apply_instrument_rules(self) -> None:
        """Tighten the configured sell size/precision to the exchange's minSz/lotSz."""
        try:
            info = await self._call(self.exchange.get_instrument_info, self.symbol)
        except ExchangeError as exc:
            self.logger.warning("Instrument rules unavailable for %s: %s", self.symbol, exc)
            return
        if not info:
            return

        min_size = info.get("min_size") or 0.0
        if min_size > self.min_sell_size:
            self.logger.info(
                "📏 %s minimum sell size raised %s -> %s (exchange minSz)",
                self.base_currency, self.min_sell_size, min_size,
            )
            self.min_sell_size = min_size

        precision = lot_size_precision(info.get("lot_size") or 0.0)
        if precision is not None and precision < self.sell_precision:
            self.logger.info(
                "📏 %s sell precision lowered %s -> %s (exchange lotSz)",
                self.base_currency, self.sell_precision, precision,
            )
            self.sell_precision = precision

    async def startup_check(self) -> None:
        """Log the ledger against the exchange balance before the first cycle."""
        await self.apply_instrument_rules()
        summary = self.ledger.summary()
        self.logger.info(
            "📊 Ledger %s: %d lot(s), %.8f %s, avg cost $%.4f",
            self.symbol, summary.lot_count, summary.total_quantity,
            self.base_currency, summary.average_buy_price,
        )
        balances = await self._balances()
        if balances is None:
            return
        if summary.total_quantity > balances[0] + EPSILON:
            self.logger.warning(
                "⚠️ Ledger holds %.8f %s but exchange reports %.8f available",
                summary.total_quantity, self.base_currency, balances[0],
            )

    async def run(self, max_cycles: Optional[int] = None) -> BotState:
        self.logger.info(
            "✅ TradingBot started – %s every %ss, threshold %.4f%%, target %.4f%%",
            self.symbol, self.interval, self.threshold * 100, self.profit_target * 100,
        )
        await self.startup_check()
        try:
            while max_cycles is None or self.state.cycle_count < max_cycles:
                try:
                    self.state = await self.run_cycle(self.state)
                except LedgerPersistenceError:
                    self.logger.critical("💥 Ledger could not be saved – stopping")
                    raise
                except Exception as exc:
                    self.logger.exception("Error in trading cycle: %s", exc)
                    self.state = replace(self.state, cycle_count=self.state.cycle_count + 1)
                if max_cycles is not None and self.state.cycle_count >= max_cycles:
                    break
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            self.logger.info("Trading loop cancelled – shutting down")
        finally:
            if self.market_data is not None:
                self.market_data.log_metrics()
                await self.market_data.close()
        return self.state
