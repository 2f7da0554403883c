# --------------------------------------------------------------------
# models/trade_record.py
# One immutable journal entry per order attempt (fill or failure).
# Validated with pydantic so a malformed entry is rejected at the
# recorder boundary instead of producing a half-written CSV row.
# --------------------------------------------------------------------
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

TradeType = Literal["BUY", "SELL"]
TradeStatus = Literal["SUCCESS", "FAILED", "FAILED_MIN_SIZE"]


class TradeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: TradeType
    symbol: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    quantity: float = Field(..., ge=0)
    total_value: Optional[float] = None
    order_id: str = "N/A"
    status: TradeStatus = "SUCCESS"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stop_loss: bool = False
    profit: Optional[float] = None
    profit_percent: Optional[float] = None

    @field_validator("type", "status", mode="before")
    @classmethod
    def upper(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("order_id", mode="before")
    @classmethod
    def default_order_id(cls, v):
        return "N/A" if v in (None, "") else str(v)

    @field_validator("timestamp")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    @property
    def action(self) -> str:
        """BUY, SELL or SELL_STOP_LOSS as written to the journal."""
        if self.type == "SELL" and self.stop_loss:
            return "SELL_STOP_LOSS"
        return self.type

    @property
    def value(self) -> float:
        if self.total_value is not None:
            return self.total_value
        return self.price * self.quantity
