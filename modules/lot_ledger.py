"""
lot_ledger.py
-------------
Durable FIFO queue of open purchase lots for exactly one trading pair.

Every mutation (add / consume / clear) is written to disk before the call
returns.  Writes go to a sibling temp file that is fsync'ed and then renamed
over the ledger, so a crash mid-write leaves either the old or the new file,
never a truncated one.

Single writer per file is a hard requirement: two processes sharing one
ledger path would lose updates.  Use one file per symbol (the default path
already embeds the symbol) and one bot instance per symbol.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from models.lot import (
    EPSILON,
    ConsumptionRecord,
    ConsumptionResult,
    Lot,
    LotStatus,
    PositionSummary,
    new_lot_id,
    utc_now_iso,
)
from modules.cost_basis import DEFAULT_FEE_RATE, break_even_price, lot_profit
from modules.errors import (
    CorruptLedgerError,
    InsufficientInventoryError,
    InvalidArgumentError,
    LedgerPersistenceError,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class RecoveryPolicy(str, Enum):
    """What load() does with an unreadable or foreign ledger file."""
    FAIL_FAST = "fail_fast"
    RESET_TO_EMPTY = "reset_to_empty"


def default_ledger_path(symbol: str, data_dir: PathLike = "data") -> Path:
    return Path(data_dir) / f"positions_{symbol.upper()}.json"


def _require_positive(name: str, value: Any) -> float:
    try:
        val = float(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"{name} must be a number, got {value!r}") from None
    if not val > 0:  # also rejects NaN
        raise InvalidArgumentError(f"{name} must be positive, got {value!r}")
    return val


def _iso_timestamp(value: Any) -> str:
    if value is None:
        return utc_now_iso()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    if isinstance(value, str) and value:
        return value
    raise InvalidArgumentError(f"timestamp must be an ISO string or datetime, got {value!r}")


class LotLedger:
    """Open lots for one symbol, oldest first."""

    def __init__(
        self,
        symbol: str,
        path: Optional[PathLike] = None,
        *,
        fee_rate: float = DEFAULT_FEE_RATE,
        recovery_policy: RecoveryPolicy = RecoveryPolicy.RESET_TO_EMPTY,
        lots: Optional[List[Lot]] = None,
    ) -> None:
        self.symbol = symbol
        self.path = Path(path) if path is not None else default_ledger_path(symbol)
        self.fee_rate = fee_rate
        self.recovery_policy = RecoveryPolicy(recovery_policy)
        self._lots: List[Lot] = list(lots or [])

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #
    @classmethod
    def load(
        cls,
        symbol: str,
        path: Optional[PathLike] = None,
        *,
        fee_rate: float = DEFAULT_FEE_RATE,
        recovery_policy: RecoveryPolicy = RecoveryPolicy.RESET_TO_EMPTY,
    ) -> "LotLedger":
        """Read the persisted ledger for ``symbol``.

        A missing file yields an empty ledger under either policy.  A file
        that cannot be parsed, or that belongs to another symbol, raises
        CorruptLedgerError under FAIL_FAST; under RESET_TO_EMPTY it is moved
        aside to ``<name>.corrupt-<stamp>`` and the ledger starts empty.
        """
        ledger = cls(symbol, path, fee_rate=fee_rate, recovery_policy=recovery_policy)
        if not ledger.path.exists():
            logger.info("📄 No ledger file at %s – starting with no open lots", ledger.path)
            return ledger

        try:
            ledger._lots = ledger._read()
        except (CorruptLedgerError, LedgerPersistenceError) as exc:
            if ledger.recovery_policy is RecoveryPolicy.FAIL_FAST:
                raise
            logger.warning("⚠️ %s – resetting %s ledger to empty", exc, symbol)
            ledger._quarantine()
            ledger._lots = []
            return ledger

        logger.info("📁 Loaded %d open lots for %s from %s", len(ledger._lots), symbol, ledger.path)
        return ledger

    def _read(self) -> List[Lot]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                parsed = json.load(fh)
        except ValueError as exc:
            # JSONDecodeError and UnicodeDecodeError
            raise CorruptLedgerError(f"ledger {self.path} is not valid JSON: {exc}") from exc
        except OSError as exc:
            raise LedgerPersistenceError(f"cannot read ledger {self.path}: {exc}") from exc

        if not isinstance(parsed, dict) or not isinstance(parsed.get("positions"), list):
            raise CorruptLedgerError(f"ledger {self.path} has no positions list")
        if parsed.get("symbol") != self.symbol:
            raise CorruptLedgerError(
                f"ledger {self.path} belongs to {parsed.get('symbol')!r}, not {self.symbol!r}"
            )

        lots = []
        for raw in parsed["positions"]:
            try:
                lot = Lot.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                raise CorruptLedgerError(f"ledger {self.path} has a malformed lot: {exc}") from exc
            if lot.is_open and lot.quantity > EPSILON:
                lots.append(lot)
        return lots

    def _quarantine(self) -> None:
        stamp = utc_now_iso().replace(":", "").replace("-", "")
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            os.replace(self.path, backup)
            logger.warning("Corrupt ledger kept as %s", backup)
        except OSError as exc:
            logger.error("Could not move corrupt ledger %s aside: %s", self.path, exc)

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #
    def _payload(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "lastUpdated": utc_now_iso(),
            "positions": [lot.to_dict() for lot in self._lots],
        }

    def save(self) -> None:
        """Atomically replace the ledger file; raises LedgerPersistenceError."""
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._payload(), fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as exc:
            raise LedgerPersistenceError(f"cannot write ledger {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        logger.debug("💾 Saved %d lots to %s", len(self._lots), self.path)

    def _commit(self, snapshot: List[Lot]) -> None:
        """Persist, or restore ``snapshot`` in memory and re-raise."""
        try:
            self.save()
        except Exception:
            self._lots = snapshot
            logger.error("❌ Ledger write failed for %s – in-memory state rolled back", self.symbol)
            raise

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    def add_lot(
        self,
        price: float,
        quantity: float,
        order_id: Optional[str] = None,
        timestamp: Optional[Union[str, datetime]] = None,
    ) -> Lot:
        """Append a new lot at the tail of the FIFO queue and persist it.

        ``timestamp`` may be an ISO string or a datetime (naive means UTC).
        """
        price = _require_positive("price", price)
        quantity = _require_positive("quantity", quantity)
        timestamp = _iso_timestamp(timestamp)

        fees = price * quantity * self.fee_rate
        lot = Lot(
            id=new_lot_id(),
            buy_price=price,
            quantity=quantity,
            original_quantity=quantity,
            fees=fees,
            break_even_price=break_even_price(price, self.fee_rate),
            total_cost=price * quantity + fees,
            timestamp=timestamp,
            order_id=order_id,
        )

        snapshot = copy.deepcopy(self._lots)
        self._lots.append(lot)
        self._commit(snapshot)

        logger.info(
            "🟢 NEW LOT %s: bought %s @ %.8f (break-even %.8f)",
            self.symbol, quantity, price, lot.break_even_price,
        )
        return lot

    def consume(
        self,
        quantity: float,
        sell_price: float,
        order_id: Optional[str] = None,
    ) -> ConsumptionResult:
        """Allocate a sell of ``quantity`` against the oldest lots first.

        Raises InsufficientInventoryError, without touching any lot, when
        more is requested than is open.
        """
        quantity = _require_positive("quantity", quantity)
        sell_price = _require_positive("sell_price", sell_price)

        available = self.sellable_quantity()
        if quantity > available + EPSILON:
            raise InsufficientInventoryError(quantity, available)

        snapshot = copy.deepcopy(self._lots)
        remaining = quantity
        records: List[ConsumptionRecord] = []

        for lot in self._lots:
            if remaining <= EPSILON:
                break
            if not lot.is_open:
                continue
            take = min(remaining, lot.quantity)
            profit = lot_profit(lot, sell_price, self.fee_rate, take)
            lot.reduce(take)
            remaining -= take
            records.append(
                ConsumptionRecord(
                    lot_id=lot.id,
                    quantity_sold=take,
                    sell_price=sell_price,
                    profit=profit,
                    buy_price=lot.buy_price,
                    sell_order_id=order_id,
                    lot_closed=lot.status is LotStatus.CLOSED,
                )
            )

        self._lots = [lot for lot in self._lots if lot.is_open]
        self._commit(snapshot)

        result = ConsumptionResult(
            consumed_lots=records,
            total_realized_profit=sum(r.profit for r in records),
            remaining_open_lot_count=len(self._lots),
        )
        log = logger.info if result.total_realized_profit >= 0 else logger.warning
        log(
            "🔴 LOTS SOLD %s: %s @ %.8f across %d lot(s) | profit %+.8f",
            self.symbol, quantity, sell_price, len(records), result.total_realized_profit,
        )
        return result

    def clear(self) -> None:
        """Drop every lot.  Manual recovery only."""
        snapshot = copy.deepcopy(self._lots)
        self._lots = []
        self._commit(snapshot)
        logger.warning("🗑️ All %s lots cleared", self.symbol)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    @property
    def lots(self) -> List[Lot]:
        """Copies of the open lots, oldest first."""
        return [copy.copy(lot) for lot in self._lots if lot.is_open]

    def head(self) -> Optional[Lot]:
        for lot in self._lots:
            if lot.is_open:
                return copy.copy(lot)
        return None

    def sellable_quantity(self) -> float:
        return sum(lot.quantity for lot in self._lots if lot.is_open)

    def summary(self, current_price: Optional[float] = None) -> PositionSummary:
        open_lots = [lot for lot in self._lots if lot.is_open]
        if not open_lots:
            return PositionSummary()

        total_qty = sum(lot.quantity for lot in open_lots)
        basis = sum(lot.open_cost_basis for lot in open_lots)
        summary = PositionSummary(
            lot_count=len(open_lots),
            total_quantity=total_qty,
            total_cost=sum(lot.total_cost for lot in open_lots),
            open_cost_basis=basis,
            average_buy_price=basis / total_qty if total_qty > 0 else 0.0,
        )
        if current_price:
            summary.current_value = total_qty * current_price
            summary.unrealized_pl = summary.current_value - basis
            summary.unrealized_pl_percent = summary.unrealized_pl / basis * 100 if basis else 0.0
        return summary

    def export(self) -> Dict[str, Any]:
        """Backup snapshot of the ledger and its summary."""
        return {
            "symbol": self.symbol,
            "exportTimestamp": utc_now_iso(),
            "positions": [lot.to_dict() for lot in self._lots],
            "summary": self.summary().to_dict(),
        }

    def __len__(self) -> int:
        return sum(1 for lot in self._lots if lot.is_open)
