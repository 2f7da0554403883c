"""
cost_basis.py
-------------
Pure break-even / profit arithmetic over Lot data.  Nothing here mutates a
lot or touches the disk.

Fee model: the exchange charges ``fee_rate`` on the notional of every fill,
so a round trip pays it twice.  A lot's recorded ``fees`` is the buy-side fee
for its *original* quantity; selling part of a lot charges that share of it.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence

from models.lot import EPSILON, Lot, ProfitTarget

DEFAULT_FEE_RATE = 0.001  # 0.1 % taker fee

TargetFn = Callable[[Sequence[Lot], float, float, Optional[float]], Optional[ProfitTarget]]


def break_even_price(buy_price: float, fee_rate: float = DEFAULT_FEE_RATE) -> float:
    """Buy fee already paid plus the sell fee still to come."""
    return buy_price * (1 + 2 * fee_rate)


def lot_profit(
    lot: Lot,
    sell_price: float,
    fee_rate: float = DEFAULT_FEE_RATE,
    quantity_sold: Optional[float] = None,
) -> float:
    """Realised profit of selling ``quantity_sold`` (default: all that is left) of ``lot``."""
    qty = lot.quantity if quantity_sold is None else quantity_sold
    sell_fees = sell_price * qty * fee_rate
    sell_proceeds = sell_price * qty - sell_fees
    prorated_buy_fees = lot.fees * qty / lot.original_quantity if lot.original_quantity > 0 else 0.0
    cost_basis = lot.buy_price * qty + prorated_buy_fees
    return sell_proceeds - cost_basis


def minimum_profitable_target(
    oldest_open_lot: Lot,
    target_profit_percentage: float,
    fee_rate: float = DEFAULT_FEE_RATE,
) -> ProfitTarget:
    """Break-even and target price of a single lot.

    ``potential_profit_estimate`` is what selling the lot's remaining
    quantity at exactly the target would realise.
    """
    be = oldest_open_lot.break_even_price
    target = be * (1 + target_profit_percentage)
    return ProfitTarget(
        break_even_price=be,
        target_price=target,
        potential_profit_estimate=lot_profit(oldest_open_lot, target, fee_rate),
        lot=oldest_open_lot,
    )


# ---------------------------------------------------------------------- #
# Target strategies used by SellDecisionEngine
# ---------------------------------------------------------------------- #
def _open(lots: Iterable[Lot]):
    return [lot for lot in lots if lot.is_open and lot.quantity > EPSILON]


def fifo_head_target(
    lots: Sequence[Lot],
    target_profit_percentage: float,
    fee_rate: float = DEFAULT_FEE_RATE,
    quantity: Optional[float] = None,
) -> Optional[ProfitTarget]:
    """Target of the oldest open lot only; ``quantity`` is ignored."""
    open_lots = _open(lots)
    if not open_lots:
        return None
    return minimum_profitable_target(open_lots[0], target_profit_percentage, fee_rate)


def blended_target(
    lots: Sequence[Lot],
    target_profit_percentage: float,
    fee_rate: float = DEFAULT_FEE_RATE,
    quantity: Optional[float] = None,
) -> Optional[ProfitTarget]:
    """Quantity-weighted break-even over the lots a sale of ``quantity`` would drain.

    With ``quantity=None`` every open lot is blended.  The returned ``lot`` is
    the FIFO head so callers can still report which lot is sold first.
    """
    open_lots = _open(lots)
    if not open_lots:
        return None

    remaining = sum(lot.quantity for lot in open_lots) if quantity is None else quantity
    allocations = []
    for lot in open_lots:
        if remaining <= EPSILON:
            break
        take = min(remaining, lot.quantity)
        allocations.append((lot, take))
        remaining -= take

    blended_qty = sum(q for _, q in allocations)
    if blended_qty <= EPSILON:
        return None

    be = sum(lot.break_even_price * q for lot, q in allocations) / blended_qty
    target = be * (1 + target_profit_percentage)
    estimate = sum(lot_profit(lot, target, fee_rate, q) for lot, q in allocations)
    return ProfitTarget(
        break_even_price=be,
        target_price=target,
        potential_profit_estimate=estimate,
        lot=open_lots[0],
    )
