#!/usr/bin/env python3
"""
Quick check of Deriv websocket connectivity: lists assets and fetches candles.

Usage: python scripts/deriv_smoketest.py [SYMBOL] [TIMEFRAME]
"""
import asyncio
import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv

from core.deriv_ws import DerivClient, timeframe_to_granularity
from core.errors import AnalysisError
from utils.pydantic_models import AppConfig


async def run_smoketest(symbol: str, timeframe: str) -> int:
    load_dotenv()
    config = AppConfig.load_from_env()
    client = DerivClient(config.deriv)

    print(f"🔌 Connecting to {config.deriv.endpoint}")
    try:
        assets = await client.fetch_assets()
        print(f"✅ {len(assets)} assets, e.g. {[a.symbol for a in assets[:5]]}")

        granularity = timeframe_to_granularity(timeframe)
        candles = await client.fetch_candles(symbol, granularity, 20)
        last = candles[-1]
        print(f"✅ {len(candles)} candles for {symbol} @ {granularity}s")
        print(f"  Last: t={last.timestamp} O={last.open} H={last.high} L={last.low} C={last.close}")
    except AnalysisError as e:
        print(f"❌ {e.kind}: {e.message}")
        return 1

    print("\n🎉 All checks passed!")
    return 0


if __name__ == "__main__":
    args = sys.argv[1:]
    sym = args[0] if args else "frxEURUSD"
    tf = args[1] if len(args) > 1 else "1H"
    raise SystemExit(asyncio.run(run_smoketest(sym, tf)))
