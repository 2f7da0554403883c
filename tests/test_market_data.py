import asyncio
import logging

import aiohttp
import pandas as pd
import pytest
from unittest.mock import AsyncMock, MagicMock

from modules.data_provider import DataProvider
from modules.market_data import MarketDataClient, MarketSnapshot, RateLimiter

# ------------------------- Fixtures ------------------------- #

CANDLES = [
    ["1700000120000", "102", "103", "101", "102.5", "12", "1230", "1230", "1"],
    ["1700000060000", "101", "102", "100", "102", "10", "1020", "1020", "1"],
    ["1700000000000", "100", "101", "99", "101", "8", "808", "808", "1"],
]


@pytest.fixture
def mock_session():
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    return session


def _respond(session, payload, status=200):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    session.get.return_value.__aenter__.return_value = response
    return response


@pytest.fixture
def client(mock_session):
    return MarketDataClient(
        base_url="https://mock.okx.com",
        logger=logging.getLogger("test.market_data"),
        session=mock_session,
        rate_limiter=RateLimiter(max_requests=100, window=1.0),
    )

# ------------------------- Tests ------------------------- #

@pytest.mark.asyncio
async def test_rate_limiter():
    limiter = RateLimiter(max_requests=2, window=0.3)

    # First two should pass quickly
    start = asyncio.get_event_loop().time()
    await limiter.acquire()
    await limiter.acquire()
    assert asyncio.get_event_loop().time() - start < 0.1

    # Third waits for the window to slide
    start = asyncio.get_event_loop().time()
    await limiter.acquire()
    assert asyncio.get_event_loop().time() - start >= 0.2


@pytest.mark.asyncio
async def test_fetch_ticker(client, mock_session):
    _respond(mock_session, {"code": "0", "data": [{
        "instId": "BTC-USDT", "last": "105", "open24h": "100", "high24h": "106", "low24h": "99",
        "vol24h": "1200", "volCcy24h": "125000000", "bidPx": "104.9", "askPx": "105.1", "ts": "1700000000000",
    }]})

    snapshot = await client.fetch_ticker("BTC-USDT")

    assert isinstance(snapshot, MarketSnapshot)
    assert snapshot.price == 105.0
    assert snapshot.price_change_percent_24h == pytest.approx(5.0)
    assert snapshot.spread_percent == pytest.approx(0.2 / 105 * 100)
    assert client.metrics["requests_sent"] == 1
    url = mock_session.get.call_args[0][0]
    assert url == "https://mock.okx.com/api/v5/market/ticker"
    assert mock_session.get.call_args[1]["params"] == {"instId": "BTC-USDT"}


@pytest.mark.asyncio
async def test_fetch_failure_counts_error(client, mock_session):
    mock_session.get.side_effect = aiohttp.ClientError("Mock error")

    assert await client.fetch_ticker("BTC-USDT") is None
    assert client.metrics["errors"] == 1


@pytest.mark.asyncio
async def test_http_status_error(client, mock_session):
    _respond(mock_session, {}, status=503)

    assert await client.fetch_ticker("BTC-USDT") is None
    assert client.metrics["errors"] == 1


@pytest.mark.asyncio
async def test_exchange_error_code(client, mock_session):
    _respond(mock_session, {"code": "51001", "msg": "Instrument ID does not exist", "data": []})

    assert await client.fetch_ticker("NOPE-USDT") is None
    assert client.metrics["errors"] == 1


@pytest.mark.asyncio
async def test_fetch_candles_sorted(client, mock_session):
    _respond(mock_session, {"code": "0", "data": CANDLES})

    df = await client.fetch_candles("BTC-USDT", "1m", 3)

    assert list(df["timestamp"]) == [1700000000000, 1700000060000, 1700000120000]
    assert list(df["close"]) == [101.0, 102.0, 102.5]
    assert mock_session.get.call_args[1]["params"] == {"instId": "BTC-USDT", "bar": "1m", "limit": 3}


@pytest.mark.asyncio
async def test_fetch_order_book(client, mock_session):
    _respond(mock_session, {"code": "0", "data": [{
        "bids": [["104.9", "2", "0", "1"], ["104.8", "1", "0", "1"]],
        "asks": [["105.1", "1.5", "0", "1"]],
        "ts": "1700000000000",
    }]})

    book = await client.fetch_order_book("BTC-USDT", depth=5)

    assert book.bids == [(104.9, 2.0), (104.8, 1.0)]
    assert book.asks == [(105.1, 1.5)]


@pytest.mark.asyncio
async def test_close_owned_session(client, mock_session):
    await client.close()
    mock_session.close.assert_awaited_once()


def test_data_provider_skips_bad_rows():
    df = DataProvider().create_dataframe_from_candles({"data": CANDLES + [["bad"], None]})

    assert len(df) == 3
    assert df["volume"].iloc[0] == 8.0


def test_data_provider_empty():
    df = DataProvider().create_dataframe_from_candles({"code": "0", "data": []})

    assert isinstance(df, pd.DataFrame)
    assert df.empty
    assert list(df.columns) == DataProvider.columns


def test_log_metrics(client, caplog):
    client.metrics = {
        "requests_sent": 10,
        "errors": 2,
        "latencies": [0.1, 0.2, 0.3],
    }

    with caplog.at_level(logging.INFO):
        client.log_metrics()

    assert "Requests: 10" in caplog.text
    assert "Errors: 2" in caplog.text
    assert "Avg latency" in caplog.text
