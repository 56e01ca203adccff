from fastapi.testclient import TestClient

from api.server import create_app
from core.errors import (
    ExtractionError,
    ExtractionFailure,
    InputValidationError,
    UpstreamCompletionError,
    UpstreamFetchError,
)
from utils.pydantic_models import (
    AnalysisResult,
    AssetInfo,
    MarketData,
    Recommendation,
)


class StubAnalyzer:
    """Returns a canned result, or raises the configured error."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def analyze(self, instrument, timeframe):
        self.calls.append((instrument, timeframe))
        instrument = (instrument or "").strip()
        timeframe = (timeframe or "").strip()
        if not instrument or not timeframe:
            raise InputValidationError("Asset and timeframe are required.")
        if self.error:
            raise self.error
        return AnalysisResult(
            analysis=Recommendation(entryPoint=1.1, stopLoss=1.09, takeProfit=1.12, direction="long"),
            market_data=MarketData(
                instrument=instrument,
                timeframe=timeframe,
                granularity=3600,
                candles=[{"timestamp": 1700000000, "open": 1.0, "high": 1.2, "low": 0.9,
                          "close": 1.1, "volume": 0.0, "rsi": None}],
            ),
        )


class StubAssets:
    def __init__(self, error=None):
        self.error = error

    async def fetch_assets(self):
        if self.error:
            raise self.error
        return [AssetInfo(symbol="frxEURUSD", display_name="EUR/USD", market="forex")]


def client_for(analyzer=None, assets=None):
    app = create_app(analyzer or StubAnalyzer(), asset_source=assets)
    return TestClient(app, raise_server_exceptions=False)


def test_health():
    response = client_for().get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_analyze_success():
    analyzer = StubAnalyzer()
    response = client_for(analyzer).post("/api/analyze", json={"asset": "frxEURUSD", "timeframe": "1H"})

    assert response.status_code == 200
    body = response.json()
    assert body["analysis"] == {"entryPoint": 1.1, "stopLoss": 1.09, "takeProfit": 1.12, "direction": "long"}
    assert body["marketData"]["instrument"] == "frxEURUSD"
    assert body["marketData"]["candles"][0]["rsi"] is None
    assert analyzer.calls == [("frxEURUSD", "1H")]


def test_analyze_missing_fields():
    client = client_for()
    for payload in ({}, {"asset": "frxEURUSD"}, {"timeframe": "1H"}, {"asset": " ", "timeframe": "1H"}):
        response = client.post("/api/analyze", json=payload)
        assert response.status_code == 400
        assert response.json() == {"error": "Asset and timeframe are required.", "kind": "validation"}


def test_analyze_without_body():
    response = client_for().post("/api/analyze")
    assert response.status_code == 400
    assert response.json()["kind"] == "validation"


def test_error_mapping():
    cases = [
        (UpstreamFetchError("No candle data returned for R_50."), 502, "upstream_fetch"),
        (UpstreamCompletionError("Gemini API request failed with status 500", 500), 502, "upstream_completion"),
        (ExtractionError(ExtractionFailure.INVALID_JSON, "AI response contains malformed JSON"), 502, "extraction"),
    ]
    for error, status, kind in cases:
        response = client_for(StubAnalyzer(error=error)).post(
            "/api/analyze", json={"asset": "R_50", "timeframe": "1m"}
        )
        assert response.status_code == status
        assert response.json()["kind"] == kind
        assert response.json()["error"] == error.message

    extraction = client_for(StubAnalyzer(error=cases[2][0])).post(
        "/api/analyze", json={"asset": "R_50", "timeframe": "1m"}
    )
    assert extraction.json()["reason"] == "invalid_json"


def test_unexpected_error_is_internal():
    response = client_for(StubAnalyzer(error=RuntimeError("bug"))).post(
        "/api/analyze", json={"asset": "R_50", "timeframe": "1m"}
    )
    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error", "kind": "internal"}


def test_request_id_is_echoed():
    response = client_for().get("/health", headers={"x-request-id": "abc123"})
    assert response.headers["x-request-id"] == "abc123"
    assert client_for().get("/health").headers["x-request-id"]


def test_assets():
    response = client_for(assets=StubAssets()).get("/api/assets")
    assert response.status_code == 200
    assert response.json() == {"assets": [{"symbol": "frxEURUSD", "display_name": "EUR/USD", "market": "forex"}]}

    failing = client_for(assets=StubAssets(error=UpstreamFetchError("WebSocket error: refused")))
    response = failing.get("/api/assets")
    assert response.status_code == 502
    assert response.json()["kind"] == "upstream_fetch"
