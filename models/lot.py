# --------------------------------------------------------------------
# models/lot.py
# One purchase fill's remaining inventory plus the plain result objects
# the ledger hands back to its caller.  Shared by LotLedger, the
# cost-basis helpers, SellDecisionEngine and TradingBot.
# --------------------------------------------------------------------
from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

EPSILON = 1e-6


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_lot_id() -> str:
    """Millisecond stamp + random suffix, sortable by creation time."""
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class LotStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class Lot:
    id: str
    buy_price: float
    quantity: float
    original_quantity: float
    fees: float
    break_even_price: float
    total_cost: float
    timestamp: str
    order_id: Optional[str] = None
    status: LotStatus = LotStatus.OPEN

    @property
    def is_open(self) -> bool:
        return self.status is LotStatus.OPEN

    @property
    def open_cost_basis(self) -> float:
        """Cost of the quantity still held, buy fee prorated."""
        if self.original_quantity <= 0:
            return 0.0
        share = self.quantity / self.original_quantity
        return self.buy_price * self.quantity + self.fees * share

    def reduce(self, qty: float) -> None:
        self.quantity -= qty
        if self.quantity <= EPSILON:
            self.quantity = 0.0
            self.status = LotStatus.CLOSED

    # ------------------------------------------------------------------ #
    # (de)serialisation – camelCase keys on disk
    # ------------------------------------------------------------------ #
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "buyPrice": self.buy_price,
            "quantity": self.quantity,
            "originalQuantity": self.original_quantity,
            "orderId": self.order_id,
            "timestamp": self.timestamp,
            "fees": self.fees,
            "status": self.status.value,
            "breakEvenPrice": self.break_even_price,
            "totalCost": self.total_cost,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Lot":
        """Build a Lot from its on-disk form.

        Files written before ``originalQuantity`` was stored are upgraded by
        recovering it from ``totalCost - fees = buyPrice * originalQuantity``.
        Raises KeyError/TypeError/ValueError on malformed input.
        """
        buy_price = float(raw["buyPrice"])
        quantity = float(raw["quantity"])
        fees = float(raw["fees"])
        total_cost = float(raw["totalCost"])
        original = raw.get("originalQuantity")
        if original is None:
            original = (total_cost - fees) / buy_price if buy_price > 0 else quantity
        original = max(float(original), quantity)

        if buy_price <= 0 or quantity < 0:
            raise ValueError(f"invalid lot values in {raw.get('id')!r}")

        return cls(
            id=str(raw["id"]),
            buy_price=buy_price,
            quantity=quantity,
            original_quantity=original,
            fees=fees,
            break_even_price=float(raw["breakEvenPrice"]),
            total_cost=total_cost,
            timestamp=str(raw["timestamp"]),
            order_id=raw.get("orderId"),
            status=LotStatus(raw.get("status", "open")),
        )


@dataclass
class ConsumptionRecord:
    """One FIFO allocation of a sell against a single lot."""
    lot_id: str
    quantity_sold: float
    sell_price: float
    profit: float
    buy_price: float
    sell_order_id: Optional[str] = None
    sell_timestamp: str = field(default_factory=utc_now_iso)
    lot_closed: bool = False


@dataclass
class ConsumptionResult:
    consumed_lots: List[ConsumptionRecord]
    total_realized_profit: float
    remaining_open_lot_count: int

    @property
    def quantity_sold(self) -> float:
        return sum(r.quantity_sold for r in self.consumed_lots)

    @property
    def cost_basis_sold(self) -> float:
        return sum(r.quantity_sold * r.buy_price for r in self.consumed_lots)

    @property
    def realized_profit_percent(self) -> Optional[float]:
        basis = self.cost_basis_sold
        if basis <= 0:
            return None
        return self.total_realized_profit / basis * 100


@dataclass
class PositionSummary:
    lot_count: int = 0
    total_quantity: float = 0.0
    total_cost: float = 0.0
    open_cost_basis: float = 0.0
    average_buy_price: float = 0.0
    current_value: Optional[float] = None
    unrealized_pl: Optional[float] = None
    unrealized_pl_percent: Optional[float] = None

    @property
    def total_positions(self) -> int:
        return self.lot_count

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProfitTarget:
    break_even_price: float
    target_price: float
    potential_profit_estimate: float
    lot: Optional[Lot] = None
