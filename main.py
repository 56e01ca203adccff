#!/usr/bin/env python3
"""
AI Candle Analyst
Main entry point: wires the Deriv candle source, the LLM completion client and
the analyzer into the HTTP API and serves it.
"""

from dotenv import load_dotenv
import uvicorn

from api.server import create_app
from analyzers.technical_analysis import TechnicalAnalyzer
from core.deriv_ws import DerivClient
from core.event_calendar import EventCalendar
from core.llm_coordinator import LLMCoordinator
from utils.logging_config import init_logging, get_logger
from utils.pydantic_models import AppConfig


def build_app(config: AppConfig):
    """Construct every component from configuration and return the FastAPI app."""
    deriv_client = DerivClient(config.deriv)
    llm_coordinator = LLMCoordinator(config.llm)
    event_calendar = EventCalendar(config.finnhub) if config.finnhub.enabled else None

    analyzer = TechnicalAnalyzer(
        candle_source=deriv_client,
        completion_client=llm_coordinator,
        config=config.analysis,
        candle_count=config.deriv.candle_count,
        event_calendar=event_calendar,
    )
    return create_app(analyzer, asset_source=deriv_client)


def main():
    """Main entry point."""
    # Load environment variables
    load_dotenv()

    # Initialize logging
    init_logging()
    logger = get_logger("main")

    config = AppConfig.load_from_env()
    if not config.llm.api_key:
        logger.warning("No API key configured for the LLM provider; analyses will fail",
                       provider=config.llm.provider.value)

    app = build_app(config)
    logger.info("Starting analysis server", host=config.server.host, port=config.server.port)
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_config=None)


if __name__ == "__main__":
    main()
