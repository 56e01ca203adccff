import math
import os
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class IndicatorKind(str, Enum):
    SMA = "sma"
    EMA = "ema"
    RSI = "rsi"
    MACD = "macd"
    BOLLINGER = "bollinger"
    STOCHASTIC = "stochastic"
    ADX = "adx"
    ATR = "atr"


class PromptTemplate(str, Enum):
    STRATEGIST = "strategist"
    SCALPER = "scalper"
    SWING_TRADER = "swing_trader"


class LLMProvider(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


# Market data models
class Candle(BaseModel):
    """One OHLC(V) bar. Deriv calls the timestamp ``epoch``."""
    timestamp: int = Field(validation_alias=AliasChoices("timestamp", "epoch"))
    open: float
    high: float
    low: float
    close: float
    volume: float = Field(default=0.0, ge=0.0)

    @field_validator('volume', mode='before')
    @classmethod
    def default_volume(cls, v):
        return 0.0 if v is None else v


# Per-kind parameter defaults and presentation precision
_KIND_DEFAULTS: Dict[IndicatorKind, Dict[str, Any]] = {
    IndicatorKind.SMA: {"period": 20, "precision": 4},
    IndicatorKind.EMA: {"period": 20, "precision": 4},
    IndicatorKind.RSI: {"period": 14, "precision": 2},
    IndicatorKind.MACD: {"fast_period": 12, "slow_period": 26, "signal_period": 9, "precision": 5},
    IndicatorKind.BOLLINGER: {"period": 20, "std_dev": 2.0, "precision": 4},
    IndicatorKind.STOCHASTIC: {"period": 14, "signal_period": 3, "precision": 2},
    IndicatorKind.ADX: {"period": 14, "precision": 2},
    IndicatorKind.ATR: {"period": 14, "precision": 4},
}


class IndicatorSpec(BaseModel):
    """One configured indicator: algorithm, parameters and output key."""
    name: str = Field(min_length=1)
    kind: IndicatorKind
    period: Optional[int] = Field(default=None, ge=1)
    fast_period: Optional[int] = Field(default=None, ge=1)
    slow_period: Optional[int] = Field(default=None, ge=1)
    signal_period: Optional[int] = Field(default=None, ge=1)
    std_dev: Optional[float] = Field(default=None, gt=0)
    precision: Optional[int] = Field(default=None, ge=0, le=10)

    @field_validator('name')
    @classmethod
    def not_a_candle_field(cls, v):
        if v in Candle.model_fields:
            raise ValueError(f"indicator name '{v}' collides with a candle field")
        return v

    @model_validator(mode='after')
    def apply_kind_defaults(self):
        for field_name, value in _KIND_DEFAULTS[self.kind].items():
            if getattr(self, field_name) is None:
                setattr(self, field_name, value)
        if self.kind == IndicatorKind.MACD and self.fast_period >= self.slow_period:
            raise ValueError("MACD fast period must be shorter than the slow period")
        return self

    def describe(self) -> str:
        """Short human label used in prompts, e.g. ``MACD(12,26,9)``."""
        if self.kind == IndicatorKind.MACD:
            return f"MACD({self.fast_period},{self.slow_period},{self.signal_period})"
        if self.kind == IndicatorKind.BOLLINGER:
            return f"Bollinger Bands({self.period},{self.std_dev:g})"
        if self.kind == IndicatorKind.STOCHASTIC:
            return f"Stochastic({self.period},{self.signal_period})"
        return f"{self.kind.value.upper()}({self.period})"


def default_indicator_specs() -> List[IndicatorSpec]:
    return [
        IndicatorSpec(name="sma50", kind=IndicatorKind.SMA, period=50),
        IndicatorSpec(name="ema20", kind=IndicatorKind.EMA, period=20),
        IndicatorSpec(name="rsi", kind=IndicatorKind.RSI, period=14),
        IndicatorSpec(name="macd", kind=IndicatorKind.MACD),
        IndicatorSpec(name="bollingerBands", kind=IndicatorKind.BOLLINGER),
        IndicatorSpec(name="stochastic", kind=IndicatorKind.STOCHASTIC),
        IndicatorSpec(name="adx", kind=IndicatorKind.ADX),
        IndicatorSpec(name="atr", kind=IndicatorKind.ATR),
    ]


class Recommendation(BaseModel):
    """Trade levels recovered from the LLM reply. Unknown keys are kept as-is."""
    model_config = ConfigDict(extra="allow")

    entryPoint: float = Field(allow_inf_nan=False)
    stopLoss: float = Field(allow_inf_nan=False)
    takeProfit: float = Field(allow_inf_nan=False)
    rationale: Optional[str] = None
    confidenceScore: Optional[int] = Field(default=None, ge=1, le=10)

    @field_validator('entryPoint', 'stopLoss', 'takeProfit', mode='before')
    @classmethod
    def coerce_price(cls, v):
        if isinstance(v, bool):
            raise ValueError("expected a number, got a boolean")
        if isinstance(v, str):
            v = v.strip()
        return v

    @field_validator('confidenceScore', mode='before')
    @classmethod
    def coerce_confidence(cls, v):
        if isinstance(v, bool):
            raise ValueError("expected an integer, got a boolean")
        if isinstance(v, str):
            v = v.strip()
        if isinstance(v, float) and math.isfinite(v) and v.is_integer():
            return int(v)
        return v

    def to_response(self) -> Dict[str, Any]:
        """Serialize without optional keys the model never sent."""
        return self.model_dump(exclude_unset=True)


class MarketData(BaseModel):
    instrument: str
    timeframe: str
    granularity: int
    candles: List[Dict[str, Any]]


class AnalysisResult(BaseModel):
    analysis: Recommendation
    market_data: MarketData

    def to_response(self) -> Dict[str, Any]:
        return {
            "analysis": self.analysis.to_response(),
            "marketData": self.market_data.model_dump(),
        }


class AssetInfo(BaseModel):
    symbol: str
    display_name: str
    market: str


class EconomicEvent(BaseModel):
    event: str
    country: str
    time: Optional[str] = None


# Configuration Models
class DerivConfig(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    app_id: str = "1089"
    ws_url: str = "wss://ws.binaryws.com/websockets/v3"
    candle_count: int = Field(default=500, ge=1, le=5000)
    timeout_sec: float = Field(default=15.0, gt=0)

    @property
    def endpoint(self) -> str:
        return f"{self.ws_url}?app_id={self.app_id}"


_DEFAULT_MODELS = {
    LLMProvider.GEMINI: "gemini-1.5-flash-latest",
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.ANTHROPIC: "claude-3-5-sonnet-latest",
}


class LLMConfig(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    provider: LLMProvider = LLMProvider.GEMINI
    api_key: str = ""
    model: Optional[str] = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout_sec: float = Field(default=60.0, gt=0)
    max_output_tokens: int = Field(default=1024, ge=16)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)

    @property
    def resolved_model(self) -> str:
        return self.model or _DEFAULT_MODELS[self.provider]


class FinnhubConfig(BaseModel):
    api_key: Optional[str] = None
    base_url: str = "https://finnhub.io/api/v1"
    timeout_sec: float = Field(default=10.0, gt=0)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


class AnalysisConfig(BaseModel):
    prompt_window: int = Field(default=50, ge=1, le=200)
    template: PromptTemplate = PromptTemplate.STRATEGIST
    min_reward_risk: float = Field(default=1.5, gt=0)
    indicators: List[IndicatorSpec] = Field(default_factory=default_indicator_specs)

    @field_validator('indicators')
    @classmethod
    def unique_names(cls, v):
        names = [spec.name for spec in v]
        if len(names) != len(set(names)):
            raise ValueError("indicator names must be unique")
        return v


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)


class AppConfig(BaseModel):
    deriv: DerivConfig = Field(default_factory=DerivConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    finnhub: FinnhubConfig = Field(default_factory=FinnhubConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def load_from_env(cls) -> 'AppConfig':
        """Load configuration from environment variables."""
        provider = LLMProvider(os.getenv("LLM_PROVIDER", "gemini").strip().lower())
        key_var = {
            LLMProvider.GEMINI: "GEMINI_API_KEY",
            LLMProvider.OPENAI: "OPENAI_API_KEY",
            LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
        }[provider]

        indicators_path = os.getenv("INDICATORS_CONFIG")
        analysis = AnalysisConfig(
            prompt_window=int(os.getenv("PROMPT_WINDOW", "50")),
            template=PromptTemplate(os.getenv("PROMPT_TEMPLATE", "strategist").strip().lower()),
            min_reward_risk=float(os.getenv("MIN_REWARD_RISK", "1.5")),
            indicators=load_indicator_specs(indicators_path) if indicators_path else default_indicator_specs(),
        )

        return cls(
            deriv=DerivConfig(
                app_id=os.getenv("DERIV_APP_ID", "1089"),
                ws_url=os.getenv("DERIV_WS_URL", "wss://ws.binaryws.com/websockets/v3"),
                candle_count=int(os.getenv("DERIV_CANDLE_COUNT", "500")),
                timeout_sec=float(os.getenv("DERIV_TIMEOUT_SEC", "15")),
            ),
            llm=LLMConfig(
                provider=provider,
                api_key=os.getenv(key_var, ""),
                model=os.getenv("LLM_MODEL") or None,
                gemini_base_url=os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"),
                timeout_sec=float(os.getenv("LLM_TIMEOUT_SEC", "60")),
                max_output_tokens=int(os.getenv("LLM_MAX_OUTPUT_TOKENS", "1024")),
                temperature=float(os.getenv("LLM_TEMPERATURE", "0.2")),
            ),
            finnhub=FinnhubConfig(
                api_key=os.getenv("FINNHUB_API_KEY") or None,
            ),
            analysis=analysis,
            server=ServerConfig(
                host=os.getenv("HOST", "0.0.0.0"),
                port=int(os.getenv("PORT", "3000")),
            ),
        )


# Utility functions
def load_yaml_config(file_path: str) -> Dict[str, Any]:
    """Load a YAML configuration file; an empty file yields an empty dict."""
    with open(file_path, 'r') as f:
        config = yaml.safe_load(f)
    return config or {}


def load_indicator_specs(file_path: str) -> List[IndicatorSpec]:
    """Read the ``indicators:`` list of a YAML file into validated specs."""
    config = load_yaml_config(file_path)
    entries = config.get("indicators")
    if not isinstance(entries, list) or not entries:
        raise ValueError(f"{file_path} must define a non-empty 'indicators' list")
    return [IndicatorSpec(**entry) for entry in entries]
