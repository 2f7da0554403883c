"""
errors.py
---------
Exception hierarchy shared by the ledger, the exchange client and the bot
loop.  Ledger/calculator code raises these and never swallows them; the bot
loop decides which ones are survivable.
"""

from __future__ import annotations


class TradingBotError(Exception):
    """Root of every error raised by this package."""


# ------------------------------------------------------------------ #
# Ledger
# ------------------------------------------------------------------ #
class LedgerError(TradingBotError):
    pass


class InvalidArgumentError(LedgerError, ValueError):
    """Non-positive price/quantity or otherwise unusable input."""


class InsufficientInventoryError(LedgerError):
    """A consume() asked for more than the ledger holds open."""

    def __init__(self, requested: float, available: float) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            f"cannot consume {requested} - only {available} open in ledger"
        )


class LedgerPersistenceError(LedgerError):
    """Reading or writing the ledger file failed after a mutation."""


class CorruptLedgerError(LedgerError):
    """Persisted ledger is unreadable or tagged for another symbol."""


# ------------------------------------------------------------------ #
# Exchange
# ------------------------------------------------------------------ #
class ExchangeError(TradingBotError):
    """HTTP, network or exchange-level (non-zero code) failure."""

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)
