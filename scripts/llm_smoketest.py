#!/usr/bin/env python3
"""
Simple smoketest for the completion path used by the analyzer.

What it does:
- Loads .env to get the provider and its API key (no hard-coded keys)
- Uses the same LLMCoordinator and model as the server
- Sends a minimal JSON-only prompt to verify reachability/auth/model
- Runs the reply through the recommendation extractor
- Prints the extracted levels or the exact error encountered
"""

import asyncio
import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv

from analyzers.response_extractor import extract_recommendation
from core.errors import AnalysisError
from core.llm_coordinator import LLMCoordinator
from utils.pydantic_models import AppConfig

PROMPT = (
    "Return ONLY one JSON object with keys entryPoint, stopLoss, takeProfit, rationale, "
    "confidenceScore. Now reply with: "
    '{"entryPoint":1.1,"stopLoss":1.09,"takeProfit":1.115,"rationale":"smoke","confidenceScore":5}'
)


async def run_smoketest() -> int:
    load_dotenv()  # Ensure .env is loaded when running outside systemd

    config = AppConfig.load_from_env()
    print(f"[smoketest] provider={config.llm.provider.value} model={config.llm.resolved_model} "
          f"key present: {bool(config.llm.api_key)}")

    if not config.llm.api_key:
        print("[smoketest] ERROR: no API key configured for the selected provider.")
        return 2

    coordinator = LLMCoordinator(config.llm)
    try:
        text = await coordinator.complete(PROMPT)
        print(f"[smoketest] raw reply: {text[:200]!r}")
        rec = extract_recommendation(text)
    except AnalysisError as e:
        print(f"[smoketest] ERROR kind={e.kind} message={e.message}")
        return 1

    print(f"OK: entry={rec.entryPoint} stop={rec.stopLoss} take={rec.takeProfit}")
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(run_smoketest())
    raise SystemExit(exit_code)
