import asyncio
import json

import pytest

from core.deriv_ws import DerivClient, timeframe_to_granularity
from core.errors import InputValidationError, UpstreamFetchError
from utils.pydantic_models import DerivConfig


class FakeSocket:
    """Replays canned messages after the request is sent."""

    def __init__(self, messages):
        self.messages = messages
        self.sent = []

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._replay()

    async def _replay(self):
        for message in self.messages:
            yield message if isinstance(message, str) else json.dumps(message)


def fake_connect(socket, calls=None):
    def connect(url, **kwargs):
        if calls is not None:
            calls.append((url, kwargs))
        return socket
    return connect


def test_timeframe_mapping():
    assert timeframe_to_granularity("1m") == 60
    assert timeframe_to_granularity("5m") == 300
    assert timeframe_to_granularity("15M") == 900
    assert timeframe_to_granularity("1H") == 3600
    assert timeframe_to_granularity("4h") == 14400
    assert timeframe_to_granularity("1D") == 86400


def test_timeframe_unknown_unit_falls_back_to_one_minute():
    assert timeframe_to_granularity("1W") == 60
    assert timeframe_to_granularity("30") == 60
    assert timeframe_to_granularity("tick") == 60


def test_timeframe_invalid_labels():
    for label in ("", "   ", None, "xH", "h", "0m", "-5m", "1.5h"):
        with pytest.raises(InputValidationError):
            timeframe_to_granularity(label)


def test_fetch_candles_sends_request_and_sorts():
    socket = FakeSocket([
        {"msg_type": "ping"},
        "not json",
        {"msg_type": "candles", "candles": [
            {"epoch": 1700000120, "open": 1.2, "high": 1.3, "low": 1.1, "close": 1.25},
            {"epoch": 1700000000, "open": 1.0, "high": 1.1, "low": 0.9, "close": 1.05},
            {"epoch": 1700000060, "open": 1.05, "high": 1.2, "low": 1.0, "close": 1.2},
        ]},
    ])
    calls = []
    client = DerivClient(DerivConfig(app_id="42"), connect=fake_connect(socket, calls))

    candles = asyncio.run(client.fetch_candles("frxEURUSD", 3600, 3))

    assert [c.timestamp for c in candles] == [1700000000, 1700000060, 1700000120]
    assert candles[0].volume == 0.0
    assert socket.sent == [{
        "ticks_history": "frxEURUSD",
        "end": "latest",
        "count": 3,
        "style": "candles",
        "granularity": 3600,
    }]
    assert calls[0][0] == "wss://ws.binaryws.com/websockets/v3?app_id=42"


def test_fetch_candles_default_count():
    socket = FakeSocket([{"msg_type": "candles", "candles": [
        {"epoch": 1, "open": 1, "high": 1, "low": 1, "close": 1},
    ]}])
    client = DerivClient(DerivConfig(candle_count=250), connect=fake_connect(socket))
    asyncio.run(client.fetch_candles("R_100", 60))
    assert socket.sent[0]["count"] == 250


def test_fetch_candles_error_envelope():
    socket = FakeSocket([{"msg_type": "candles", "error": {"code": "InvalidSymbol", "message": "Unknown symbol."}}])
    client = DerivClient(DerivConfig(), connect=fake_connect(socket))
    with pytest.raises(UpstreamFetchError) as exc_info:
        asyncio.run(client.fetch_candles("nope", 60, 10))
    assert exc_info.value.message == "Unknown symbol."


def test_fetch_candles_empty_list():
    socket = FakeSocket([{"msg_type": "candles", "candles": []}])
    client = DerivClient(DerivConfig(), connect=fake_connect(socket))
    with pytest.raises(UpstreamFetchError) as exc_info:
        asyncio.run(client.fetch_candles("R_50", 60, 10))
    assert exc_info.value.message == "No candle data returned for R_50."


def test_connection_closed_before_response():
    socket = FakeSocket([{"msg_type": "ping"}])
    client = DerivClient(DerivConfig(), connect=fake_connect(socket))
    with pytest.raises(UpstreamFetchError):
        asyncio.run(client.fetch_candles("R_50", 60, 10))


def test_transport_failure_is_a_fetch_error():
    def refuse(url, **kwargs):
        raise OSError("connection refused")

    client = DerivClient(DerivConfig(), connect=refuse)
    with pytest.raises(UpstreamFetchError) as exc_info:
        asyncio.run(client.fetch_candles("R_50", 60, 10))
    assert "connection refused" in exc_info.value.message


def test_fetch_assets_filters_and_sorts():
    socket = FakeSocket([{"msg_type": "active_symbols", "active_symbols": [
        {"symbol": "frxUSDJPY", "display_name": "USD/JPY", "market": "forex"},
        {"symbol": "cryBTCUSD", "display_name": "BTC/USD", "market": "cryptocurrency"},
        {"symbol": "R_100", "display_name": "Volatility 100 Index", "market": "synthetic_index"},
        {"symbol": "frxAUDUSD", "display_name": "AUD/USD", "market": "forex"},
        {"symbol": "OTC_NDX", "display_name": "US Tech 100", "market": "indices"},
    ]}])
    client = DerivClient(DerivConfig(), connect=fake_connect(socket))

    assets = asyncio.run(client.fetch_assets())

    assert [a.symbol for a in assets] == ["frxAUDUSD", "OTC_NDX", "frxUSDJPY", "R_100"]
    assert socket.sent == [{"active_symbols": "brief", "product_type": "basic"}]
