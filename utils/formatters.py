from typing import Any, Dict, List, Optional, Sequence

from utils.pydantic_models import AnalysisResult, IndicatorSpec, Recommendation


def format_recommendation(rec: Recommendation) -> Dict[str, Any]:
    """Format Recommendation for structured logging."""
    risk = abs(rec.entryPoint - rec.stopLoss)
    reward = abs(rec.takeProfit - rec.entryPoint)
    return {
        "entry_point": rec.entryPoint,
        "stop_loss": rec.stopLoss,
        "take_profit": rec.takeProfit,
        "reward_risk": round(reward / risk, 2) if risk > 0 else None,
        "confidence_score": rec.confidenceScore,
        "has_rationale": bool(rec.rationale),
        "extra_keys": sorted(rec.model_extra or {}),
    }


def format_indicator_coverage(enriched_candles: Sequence[Dict[str, Any]],
                              specs: Sequence[IndicatorSpec]) -> Dict[str, Any]:
    """How many candles carry a value for each indicator."""
    coverage = {
        spec.name: sum(1 for row in enriched_candles if row.get(spec.name) is not None)
        for spec in specs
    }
    return {
        "candles": len(enriched_candles),
        "coverage": coverage,
        "empty_indicators": [name for name, count in coverage.items() if count == 0],
    }


def format_analysis_result(result: AnalysisResult,
                           stages: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Format AnalysisResult for structured logging."""
    candles: List[Dict[str, Any]] = result.market_data.candles
    return {
        "instrument": result.market_data.instrument,
        "timeframe": result.market_data.timeframe,
        "granularity": result.market_data.granularity,
        "candle_count": len(candles),
        "last_close": candles[-1]["close"] if candles else None,
        "recommendation": format_recommendation(result.analysis),
        "pipeline": stages,
    }
