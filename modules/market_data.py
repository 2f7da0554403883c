"""
market_data.py
--------------
Async fetcher for OKX public market data (ticker, candles, order book).
Public endpoints need no signature, so this sits on aiohttp while the
signed account/order calls live in ``modules.okx_client``.

A failed request is counted in ``metrics`` and logged; the method returns
None and the bot skips that part of the cycle.
"""

from __future__ import annotations

import asyncio
import logging
import statistics
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
import pandas as pd

from modules.data_provider import DataProvider


# ---------------------------- rate limiter -------------------------------- #
class RateLimiter:
    """Sliding-window limiter: at most ``max_requests`` per ``window`` seconds."""

    def __init__(self, max_requests: int, window: float = 2.0) -> None:
        self.max_requests = max_requests
        self.window = window
        self.timestamps: deque[float] = deque()

    async def acquire(self) -> None:
        now = time.monotonic()
        while self.timestamps and now - self.timestamps[0] > self.window:
            self.timestamps.popleft()
        if len(self.timestamps) >= self.max_requests:
            await asyncio.sleep(self.window - (now - self.timestamps[0]))
            self.timestamps.popleft()
        self.timestamps.append(time.monotonic())


# ----------------------------- snapshots ---------------------------------- #
@dataclass
class MarketSnapshot:
    symbol: str
    price: float
    open_24h: float
    high_24h: float
    low_24h: float
    volume_24h: float
    volume_quote_24h: float
    bid: float
    ask: float
    timestamp: int

    @property
    def price_change_percent_24h(self) -> float:
        if self.open_24h <= 0:
            return 0.0
        return (self.price - self.open_24h) / self.open_24h * 100

    @property
    def spread_percent(self) -> float:
        if self.price <= 0 or self.ask <= 0 or self.bid <= 0:
            return 0.0
        return (self.ask - self.bid) / self.price * 100


@dataclass
class OrderBook:
    symbol: str
    bids: List[tuple]  # (price, size), best first
    asks: List[tuple]
    timestamp: int


# ----------------------------- client ------------------------------------- #
class MarketDataClient:
    """Asynchronous reader for OKX public REST market data."""

    def __init__(
        self,
        base_url: str = "https://www.okx.com",
        logger: Optional[logging.Logger] = None,
        *,
        data_provider: Optional[DataProvider] = None,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.logger = logger or logging.getLogger(__name__)
        self.data_provider = data_provider or DataProvider()
        self.rate_limiter = rate_limiter or RateLimiter(max_requests=20, window=2.0)
        self.timeout = timeout
        self._session = session

        self.metrics = {
            "requests_sent": 0,
            "errors": 0,
            "latencies": [],
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    # -------------------------------------------------------------------- #
    async def _get(self, endpoint: str, params: Dict[str, Any]) -> Optional[List[Any]]:
        """GET a public endpoint and return its ``data`` list, or None on failure."""
        await self.rate_limiter.acquire()
        session = await self._get_session()
        url = f"{self.base_url}/api/v5{endpoint}"
        try:
            t0 = time.time()
            async with session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                self.metrics["requests_sent"] += 1
                if resp.status != 200:
                    raise aiohttp.ClientResponseError(
                        resp.request_info, resp.history, status=resp.status, message=f"HTTP {resp.status}"
                    )
                payload = await resp.json()
                self.metrics["latencies"].append(time.time() - t0)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            self.metrics["errors"] += 1
            self.logger.warning("Request failed %s %s: %s", endpoint, params, exc)
            return None

        if str(payload.get("code")) != "0":
            self.metrics["errors"] += 1
            self.logger.warning("OKX error on %s: %s (code %s)", endpoint, payload.get("msg"), payload.get("code"))
            return None
        return payload.get("data") or []

    async def fetch_ticker(self, symbol: str) -> Optional[MarketSnapshot]:
        data = await self._get("/market/ticker", {"instId": symbol})
        if not data:
            return None
        t = data[0]
        try:
            return MarketSnapshot(
                symbol=t["instId"],
                price=float(t["last"]),
                open_24h=float(t.get("open24h") or 0),
                high_24h=float(t.get("high24h") or 0),
                low_24h=float(t.get("low24h") or 0),
                volume_24h=float(t.get("vol24h") or 0),
                volume_quote_24h=float(t.get("volCcy24h") or 0),
                bid=float(t.get("bidPx") or 0),
                ask=float(t.get("askPx") or 0),
                timestamp=int(t.get("ts") or 0),
            )
        except (KeyError, TypeError, ValueError) as exc:
            self.metrics["errors"] += 1
            self.logger.warning("Malformed ticker for %s: %s", symbol, exc)
            return None

    async def fetch_candles(self, symbol: str, bar: str = "1m", limit: int = 100) -> pd.DataFrame:
        data = await self._get("/market/candles", {"instId": symbol, "bar": bar, "limit": limit})
        return self.data_provider.create_dataframe_from_candles(data or [])

    async def fetch_order_book(self, symbol: str, depth: int = 20) -> Optional[OrderBook]:
        data = await self._get("/market/books", {"instId": symbol, "sz": depth})
        if not data:
            return None
        book = data[0]
        try:
            return OrderBook(
                symbol=symbol,
                bids=[(float(b[0]), float(b[1])) for b in book.get("bids", [])],
                asks=[(float(a[0]), float(a[1])) for a in book.get("asks", [])],
                timestamp=int(book.get("ts") or 0),
            )
        except (TypeError, ValueError, IndexError) as exc:
            self.metrics["errors"] += 1
            self.logger.warning("Malformed order book for %s: %s", symbol, exc)
            return None

    def log_metrics(self) -> None:
        avg = statistics.mean(self.metrics["latencies"]) if self.metrics["latencies"] else 0
        self.logger.info(
            "📊 Requests: %s | Errors: %s | Avg latency: %.3fs",
            self.metrics["requests_sent"],
            self.metrics["errors"],
            avg,
        )
