from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from analyzers.technical_analysis import TechnicalAnalyzer
from core.errors import AnalysisError
from utils.logging_config import bind_request_trace, get_logger

STATUS_BY_KIND = {
    "validation": 400,
    "upstream_fetch": 502,
    "upstream_completion": 502,
    "extraction": 502,
}


class AnalyzeRequest(BaseModel):
    asset: Optional[str] = None
    timeframe: Optional[str] = None


def create_app(analyzer: TechnicalAnalyzer, asset_source=None) -> FastAPI:
    """Build the HTTP app around an analyzer and an optional asset lister."""
    app = FastAPI(title="AI Candle Analyst", version="1.0.0")
    app.state.analyzer = analyzer
    app.state.asset_source = asset_source
    logger = get_logger("api")

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):
        trace_id = bind_request_trace(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["x-request-id"] = trace_id
        return response

    @app.exception_handler(AnalysisError)
    async def analysis_error_handler(request: Request, exc: AnalysisError):
        status = STATUS_BY_KIND.get(exc.kind, 500)
        logger.warning("Request failed", path=request.url.path, kind=exc.kind,
                       error=exc.message, http_status=status)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
        return JSONResponse(status_code=500, content={"error": "Internal server error", "kind": "internal"})

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/analyze")
    async def analyze(body: Optional[AnalyzeRequest] = None):
        body = body or AnalyzeRequest()
        result = await app.state.analyzer.analyze(body.asset, body.timeframe)
        return result.to_response()

    @app.get("/api/assets")
    async def assets():
        if app.state.asset_source is None:
            return {"assets": []}
        listed = await app.state.asset_source.fetch_assets()
        return {"assets": [asset.model_dump() for asset in listed]}

    return app
