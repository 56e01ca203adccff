import asyncio
import json
import re
from typing import Any, Callable, Dict, List, Optional

import websockets
from pydantic import ValidationError

from core.errors import InputValidationError, UpstreamFetchError
from utils.logging_config import LoggerMixin, log_upstream_event
from utils.pydantic_models import AssetInfo, Candle, DerivConfig

TIMEFRAME_UNITS = {"m": 60, "h": 3600, "d": 86400}
DEFAULT_GRANULARITY = 60
ASSET_MARKETS = ("forex", "indices", "synthetic_index")

_COUNT_RE = re.compile(r"[0-9]+")


def timeframe_to_granularity(label: str) -> int:
    """Convert a label such as ``5m``, ``1H`` or ``1D`` to seconds.

    Unknown or missing unit letters fall back to 60 seconds.
    """
    if label is None or not label.strip():
        raise InputValidationError("Timeframe is required.")
    label = label.strip()
    unit = label[-1].lower()
    if unit not in TIMEFRAME_UNITS:
        return DEFAULT_GRANULARITY

    count = label[:-1]
    if not _COUNT_RE.fullmatch(count) or int(count) == 0:
        raise InputValidationError(f"Invalid timeframe '{label}'.")
    return int(count) * TIMEFRAME_UNITS[unit]


class DerivClient(LoggerMixin):
    """
    Deriv websocket API client. Each call opens one connection, sends one
    request and waits for the matching response message.
    """

    def __init__(self, config: DerivConfig, connect: Callable = websockets.connect):
        super().__init__()
        self.config = config
        self._connect = connect

        self.logger.info("Deriv client initialized", endpoint=config.ws_url, app_id=config.app_id)

    async def _exchange(self, payload: Dict[str, Any], expected_msg_type: str) -> Dict[str, Any]:
        async with self._connect(
            self.config.endpoint,
            ping_interval=20,
            ping_timeout=10,
            close_timeout=10,
        ) as ws:
            await ws.send(json.dumps(payload))
            async for message in ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError as e:
                    self.logger.warning("Failed to decode message", error=str(e))
                    continue

                if not isinstance(data, dict):
                    continue
                if data.get("error"):
                    error = data["error"]
                    message_text = error.get("message") if isinstance(error, dict) else str(error)
                    raise UpstreamFetchError(message_text or "Deriv API returned an error")
                if data.get("msg_type") == expected_msg_type:
                    return data

        raise UpstreamFetchError(f"Deriv connection closed before a '{expected_msg_type}' response arrived")

    async def _request(self, payload: Dict[str, Any], expected_msg_type: str) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(
                self._exchange(payload, expected_msg_type),
                timeout=self.config.timeout_sec,
            )
        except asyncio.TimeoutError as e:
            self.logger.error("Deriv request timed out", msg_type=expected_msg_type,
                              timeout_sec=self.config.timeout_sec)
            raise UpstreamFetchError(
                f"Deriv API did not answer within {self.config.timeout_sec:g}s"
            ) from e
        except (websockets.exceptions.WebSocketException, OSError) as e:
            self.logger.error("Deriv websocket error", error_type=type(e).__name__, error=str(e))
            raise UpstreamFetchError(f"WebSocket error: {e}") from e

    async def fetch_candles(self, symbol: str, granularity: int,
                            count: Optional[int] = None) -> List[Candle]:
        """Fetch the latest ``count`` candles, sorted by timestamp."""
        count = count or self.config.candle_count
        payload = {
            "ticks_history": symbol,
            "end": "latest",
            "count": count,
            "style": "candles",
            "granularity": granularity,
        }
        self.logger.info(
            "Fetching candles",
            **log_upstream_event("deriv", symbol=symbol, granularity=granularity, count=count),
        )

        data = await self._request(payload, "candles")
        raw_candles = data.get("candles")
        if not raw_candles:
            raise UpstreamFetchError(f"No candle data returned for {symbol}.")

        try:
            candles = [Candle.model_validate(c) for c in raw_candles]
        except ValidationError as e:
            raise UpstreamFetchError(f"Malformed candle data returned for {symbol}: {e.error_count()} errors") from e

        candles.sort(key=lambda c: c.timestamp)
        self.logger.info("Candles received", symbol=symbol, count=len(candles),
                         first_ts=candles[0].timestamp, last_ts=candles[-1].timestamp)
        return candles

    async def fetch_assets(self) -> List[AssetInfo]:
        """Active forex, index and synthetic-index symbols, sorted by display name."""
        data = await self._request({"active_symbols": "brief", "product_type": "basic"}, "active_symbols")
        symbols = data.get("active_symbols") or []

        assets = [
            AssetInfo(symbol=s["symbol"], display_name=s.get("display_name") or s["symbol"], market=s["market"])
            for s in symbols
            if isinstance(s, dict) and s.get("market") in ASSET_MARKETS and s.get("symbol")
        ]
        assets.sort(key=lambda a: a.display_name.lower())
        self.logger.info("Assets loaded", count=len(assets))
        return assets
