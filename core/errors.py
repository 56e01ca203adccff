from enum import Enum
from typing import Any, Dict, Optional


class ExtractionFailure(str, Enum):
    """Why a structured recommendation could not be recovered from LLM text."""
    NO_JSON_REGION = "no_json_region"
    INVALID_JSON = "invalid_json"
    SCHEMA_MISMATCH = "schema_mismatch"


class AnalysisError(Exception):
    """Base class for every failure that terminates an analysis request."""

    kind = "analysis"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "kind": self.kind}


class InputValidationError(AnalysisError):
    """The request itself is unusable (missing asset or timeframe, bad label)."""
    kind = "validation"


class UpstreamFetchError(AnalysisError):
    """The candle source was unreachable, returned an error, or returned no candles."""
    kind = "upstream_fetch"


class UpstreamCompletionError(AnalysisError):
    """The completion service failed or answered with an unexpected envelope."""
    kind = "upstream_completion"

    def __init__(self, message: str, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status_code = status_code


class ExtractionError(AnalysisError):
    """The completion text did not contain a usable recommendation."""
    kind = "extraction"

    def __init__(self, reason: ExtractionFailure, message: str,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason.value
        return data
