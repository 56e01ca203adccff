import json
from typing import Any, Dict, List, Optional, Sequence

from utils.pydantic_models import (
    EconomicEvent,
    IndicatorKind,
    IndicatorSpec,
    PromptTemplate,
)

MAX_PROMPT_WINDOW = 200

# Keys the reply must contain, in the order they are declared to the model
OUTPUT_SCHEMA = {
    "entryPoint": "number, the price at which to enter the trade",
    "stopLoss": "number, the price at which to exit at a loss",
    "takeProfit": "number, the price at which to exit at a profit",
    "rationale": "string, one concise sentence explaining the trade",
    "confidenceScore": "integer from 1 (low) to 10 (high)",
}

TEMPLATES: Dict[PromptTemplate, Dict[str, Any]] = {
    PromptTemplate.STRATEGIST: {
        "role": "You are an expert trading strategist AI. Your task is to generate a precise trade "
                "recommendation for {instrument} on the {timeframe} timeframe based on the provided market data.",
        "steps": [
            "Trend: Identify the primary trend using the moving averages and ADX.",
            "Momentum: Evaluate RSI and the stochastic oscillator for overbought/oversold conditions "
            "and MACD for crossovers.",
            "Volatility: Analyze price action relative to the Bollinger Bands (breakouts, squeezes) and ATR.",
            "Risk: Assess whether upcoming economic events pose a significant risk to the trade.",
            "Synthesize: Based on the confluence of these factors, determine an optimal trade setup.",
        ],
    },
    PromptTemplate.SCALPER: {
        "role": "You are a disciplined intraday scalper. Find the best short-term trade for {instrument} "
                "on the {timeframe} timeframe using only the provided market data.",
        "steps": [
            "Context: Note the short-term trend from the fast moving averages.",
            "Mean reversion: Look for price stretched to a Bollinger Band with RSI or stochastic at an extreme.",
            "Continuation: Prefer momentum entries only when MACD and ADX confirm the move.",
            "Stops: Keep the stop-loss tight, within roughly one ATR of the entry.",
            "Synthesize: Choose the single highest-probability setup.",
        ],
    },
    PromptTemplate.SWING_TRADER: {
        "role": "You are a patient swing trader. Plan a multi-session trade for {instrument} "
                "on the {timeframe} timeframe based on the provided market data.",
        "steps": [
            "Structure: Identify the dominant trend and its strength using the moving averages and ADX.",
            "Pullbacks: Look for retracements toward the moving averages or the middle Bollinger Band.",
            "Momentum: Confirm the resumption of the trend with MACD and RSI.",
            "Risk: Place the stop-loss beyond the recent swing and account for upcoming events.",
            "Synthesize: Determine an entry, stop-loss and take-profit for the swing.",
        ],
    },
}

_KIND_NOTES = {
    IndicatorKind.SMA: "simple moving average of closes",
    IndicatorKind.EMA: "exponential moving average of closes",
    IndicatorKind.RSI: "relative strength index, 0-100",
    IndicatorKind.MACD: "object with macd, signal and histogram",
    IndicatorKind.BOLLINGER: "object with upper, middle and lower band",
    IndicatorKind.STOCHASTIC: "object with %K (k) and %D (d), 0-100",
    IndicatorKind.ADX: "object with adx, +DI (pdi) and -DI (mdi)",
    IndicatorKind.ATR: "average true range",
}


def _indicator_lines(specs: Sequence[IndicatorSpec]) -> List[str]:
    return [
        f"    * **{spec.name}**: {spec.describe()}, {_KIND_NOTES[spec.kind]}"
        for spec in specs
    ]


def _schema_lines() -> List[str]:
    return [f'    * "{key}": {description}' for key, description in OUTPUT_SCHEMA.items()]


def build_prompt(
    instrument: str,
    timeframe_label: str,
    enriched_candles: Sequence[Dict[str, Any]],
    template: PromptTemplate = PromptTemplate.STRATEGIST,
    *,
    indicator_specs: Sequence[IndicatorSpec] = (),
    events: Optional[Sequence[EconomicEvent]] = None,
    window: int = 50,
    min_reward_risk: float = 1.5,
) -> str:
    """Render the instruction text and the trailing window of enriched candles."""
    window = max(1, min(window, MAX_PROMPT_WINDOW))
    tail = list(enriched_candles[-window:])
    spec = TEMPLATES[template]

    lines = [
        spec["role"].format(instrument=instrument, timeframe=timeframe_label),
        "",
        "**Market Data:**",
        f"1.  **Recent Candles with indicators (last {len(tail)}, oldest first):** "
        f"{json.dumps(tail, separators=(',', ':'))}",
        "    Indicator values are null where there is not enough history yet.",
    ]
    section = 2
    if indicator_specs:
        lines.append(f"{section}.  **Indicators attached to each candle:**")
        lines.extend(_indicator_lines(indicator_specs))
        section += 1
    if events is not None:
        lines.append(
            f"{section}.  **Upcoming High-Impact Events (Next 24h):** "
            f"{json.dumps([e.model_dump() for e in events], separators=(',', ':'))}"
        )

    lines.append("")
    lines.append("**Analysis & Instructions:**")
    lines.extend(f"{i}.  {step}" for i, step in enumerate(spec["steps"], start=1))
    lines.append(
        f"The reward-to-risk ratio must be at least {min_reward_risk:g}:1, i.e. the distance from "
        f"entryPoint to takeProfit must be at least {min_reward_risk:g} times the distance from "
        "entryPoint to stopLoss."
    )

    lines.append("")
    lines.append("**Output Format:**")
    lines.append(
        "Return ONLY a single, minified JSON object with no markdown, no code fences and no text "
        f"before or after it. The JSON object must have exactly these keys: "
        f"{', '.join(json.dumps(key) for key in OUTPUT_SCHEMA)}."
    )
    lines.extend(_schema_lines())

    return "\n".join(lines)
