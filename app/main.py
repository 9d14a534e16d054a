from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.errors import MarketDataError
from app.schemas.data import ErrorResponse
from app.services.market_data import MarketDataService

from prometheus_fastapi_instrumentator import Instrumentator
from app.core.logging_config import setup_logging, get_logger

settings = get_settings()

# Setup Structured Logging
setup_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
logger = get_logger("main")

app = FastAPI(title=settings.PROJECT_NAME)

# Instrument Prometheus
Instrumentator().instrument(app).expose(app)

@app.on_event("startup")
async def startup_event():
    app.state.market_service = MarketDataService.from_settings(settings)
    logger.info("startup_event", upstream=settings.COINPAPRIKA_BASE_URL, warmup=settings.WARMUP_ON_STARTUP)
    if settings.WARMUP_ON_STARTUP:
        await app.state.market_service.warmup(settings.BASE_CURRENCY)

@app.on_event("shutdown")
async def shutdown_event():
    service = getattr(app.state, "market_service", None)
    if service is not None:
        await service.close()

@app.exception_handler(MarketDataError)
async def market_data_error_handler(request: Request, exc: MarketDataError):
    if exc.status_code >= 500:
        logger.warning("request_failed", path=request.url.path, status=exc.status_code, error=exc.message)
    body = ErrorResponse(error_code=exc.error_code, message=exc.message, detail=exc.details)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

app.include_router(api_router)
