"""
sell_decision.py
----------------
Decides SELL / HOLD / wait-for-better for the current price against the
ledger's open lots.  Read-only: the ledger is only consumed by the caller
after the exchange confirms a fill.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from models.lot import ProfitTarget
from modules.cost_basis import TargetFn, fifo_head_target, lot_profit
from modules.lot_ledger import LotLedger


class DecisionState(str, Enum):
    NO_POSITION = "NO_POSITION"
    BELOW_BREAK_EVEN = "BELOW_BREAK_EVEN"
    BETWEEN_BREAK_EVEN_AND_TARGET = "BETWEEN_BREAK_EVEN_AND_TARGET"
    AT_OR_ABOVE_TARGET = "AT_OR_ABOVE_TARGET"


@dataclass(frozen=True)
class SellDecision:
    should_sell: bool
    reason: str
    state: DecisionState
    estimated_profit: Optional[float] = None
    at_loss: bool = False
    wait_for_better: bool = False
    target: Optional[ProfitTarget] = None


class SellDecisionEngine:
    """Compare a price with the profitability target of the open lots.

    ``target_fn`` picks the lot(s) the target is computed from; the default
    looks only at the FIFO head.  ``modules.cost_basis.blended_target`` is the
    alternative that blends every lot a full sale would drain.
    """

    def __init__(self, ledger: LotLedger, target_fn: TargetFn = fifo_head_target) -> None:
        self.ledger = ledger
        self.target_fn = target_fn

    def should_sell(self, current_price: float, target_profit_percentage: float) -> SellDecision:
        target = self.target_fn(self.ledger.lots, target_profit_percentage, self.ledger.fee_rate, None)
        if target is None or target.lot is None:
            return SellDecision(
                should_sell=False,
                reason="no open positions",
                state=DecisionState.NO_POSITION,
            )

        estimated = lot_profit(target.lot, current_price, self.ledger.fee_rate)

        if current_price >= target.target_price:
            return SellDecision(
                should_sell=True,
                reason=f"Price {current_price:.4f} reached target {target.target_price:.4f}",
                state=DecisionState.AT_OR_ABOVE_TARGET,
                estimated_profit=estimated,
                target=target,
            )
        if current_price >= target.break_even_price:
            return SellDecision(
                should_sell=False,
                reason=(
                    f"Price {current_price:.4f} above break-even {target.break_even_price:.4f} "
                    f"but below target {target.target_price:.4f}"
                ),
                state=DecisionState.BETWEEN_BREAK_EVEN_AND_TARGET,
                estimated_profit=estimated,
                wait_for_better=True,
                target=target,
            )
        return SellDecision(
            should_sell=False,
            reason=(
                f"Price {current_price:.4f} below break-even {target.break_even_price:.4f} "
                f"- selling now would be at a loss"
            ),
            state=DecisionState.BELOW_BREAK_EVEN,
            estimated_profit=estimated,
            at_loss=True,
            target=target,
        )
