"""
LLM-Powered Technical Analysis
Fetches candles, enriches them with indicators, asks the LLM for trade levels
and extracts a structured recommendation.
"""
import asyncio
from typing import List, Optional

from analyzers.indicators import enrich_candles
from analyzers.prompt_builder import build_prompt
from analyzers.response_extractor import extract_recommendation
from core.deriv_ws import timeframe_to_granularity
from core.errors import AnalysisError, ExtractionError, InputValidationError, UpstreamFetchError
from core.state_machine import AnalysisStage, AnalysisStateMachine
from utils.formatters import format_analysis_result, format_indicator_coverage
from utils.logging_config import LoggerMixin, log_analysis_event
from utils.pydantic_models import AnalysisConfig, AnalysisResult, EconomicEvent, MarketData


class TechnicalAnalyzer(LoggerMixin):
    """
    Runs one analysis per call. Collaborators are duck-typed:

    - ``candle_source.fetch_candles(symbol, granularity, count)`` -> list of Candle
    - ``completion_client.complete(prompt)`` -> str
    - ``event_calendar.upcoming_events()`` -> list of EconomicEvent (optional)

    No state is kept between calls, so concurrent analyses are independent.
    """

    def __init__(self, candle_source, completion_client, config: AnalysisConfig,
                 candle_count: int = 500, event_calendar=None):
        super().__init__()
        self.candle_source = candle_source
        self.completion_client = completion_client
        self.config = config
        self.candle_count = candle_count
        self.event_calendar = event_calendar

        self.logger.info(
            "Technical analyzer initialized",
            indicators=[spec.name for spec in config.indicators],
            template=config.template.value,
            prompt_window=config.prompt_window,
            candle_count=candle_count,
            events_enabled=event_calendar is not None,
        )

    async def analyze(self, instrument: str, timeframe: str) -> AnalysisResult:
        """Run the full pipeline or raise the ``AnalysisError`` that stopped it."""
        instrument = (instrument or "").strip()
        timeframe = (timeframe or "").strip()
        if not instrument or not timeframe:
            raise InputValidationError("Asset and timeframe are required.")
        granularity = timeframe_to_granularity(timeframe)

        machine = AnalysisStateMachine()
        log = self.logger.bind(instrument=instrument, timeframe=timeframe)
        log.info("Starting analysis", **log_analysis_event("analysis_start", instrument, timeframe,
                                                           granularity=granularity))

        try:
            machine.transition_to(AnalysisStage.FETCHING_CANDLES)
            candles = await self.candle_source.fetch_candles(instrument, granularity, self.candle_count)
            if not candles:
                raise UpstreamFetchError(f"No candle data returned for {instrument}.")

            machine.transition_to(AnalysisStage.COMPUTING_INDICATORS)
            enriched = enrich_candles(candles, self.config.indicators)
            log.debug("Indicators computed", **format_indicator_coverage(enriched, self.config.indicators))

            machine.transition_to(AnalysisStage.BUILDING_PROMPT)
            events = await self._load_events()
            prompt = build_prompt(
                instrument,
                timeframe,
                enriched,
                self.config.template,
                indicator_specs=self.config.indicators,
                events=events,
                window=self.config.prompt_window,
                min_reward_risk=self.config.min_reward_risk,
            )

            machine.transition_to(AnalysisStage.AWAITING_COMPLETION)
            raw_text = await self.completion_client.complete(prompt)

            machine.transition_to(AnalysisStage.EXTRACTING_RESPONSE)
            try:
                recommendation = extract_recommendation(raw_text)
            except ExtractionError as e:
                log.warning("Could not extract recommendation", reason=e.reason.value,
                            error=e.message, raw_text=raw_text)
                raise

            machine.transition_to(AnalysisStage.DONE)

        except AnalysisError as e:
            failed_stage = machine.current_stage
            machine.fail(e.message)
            log.error("Analysis failed", **log_analysis_event(
                "analysis_failed", instrument, timeframe,
                stage=failed_stage.value, kind=e.kind, error=e.message,
            ))
            raise
        except asyncio.CancelledError:
            machine.fail("cancelled")
            log.info("Analysis cancelled", stage=machine.get_last_transition().from_stage.value)
            raise
        except Exception:
            failed_stage = machine.current_stage
            machine.fail("unexpected error")
            log.exception("Unexpected analysis error", stage=failed_stage.value)
            raise

        result = AnalysisResult(
            analysis=recommendation,
            market_data=MarketData(
                instrument=instrument,
                timeframe=timeframe,
                granularity=granularity,
                candles=enriched,
            ),
        )
        log.info("Analysis completed", **format_analysis_result(result, machine.to_dict()))
        return result

    async def _load_events(self) -> Optional[List[EconomicEvent]]:
        if self.event_calendar is None:
            return None
        return await self.event_calendar.upcoming_events()
