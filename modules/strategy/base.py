"""
strategy/base.py
----------------
Interface shared by the advisory signal strategies.

A strategy looks at OHLCV candles, the latest ticker snapshot and, when
order-book analysis is on, the current book.  Its signal never places an
order by itself; the bot loop weighs it against the ledger.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import pandas as pd


class BaseStrategy(ABC):

    @abstractmethod
    def generate_signal(
        self,
        df: pd.DataFrame,
        snapshot: Any,
        order_book: Optional[Any] = None,
    ) -> Any:
        """Return a signal for the candles in ``df``.

        Short or empty input yields a HOLD signal rather than an exception.
        """
        raise NotImplementedError
