import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mealgen.api.v1.router import api_v1_router
from mealgen.core.config import settings, validate_settings_for_production
from mealgen.core.logging import setup_logging
from mealgen.core.metrics import PrometheusMiddleware, metrics_response
from mealgen.core.middleware import RequestLoggingMiddleware
from mealgen.core.sentry import init_sentry
from mealgen.gateway.orchestrator import GenerationOrchestrator

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    app.state.orchestrator = GenerationOrchestrator.from_settings()
    configured = [p for p, key in settings.provider_api_keys().items() if key]
    if configured:
        logger.info("Starting meal generation gateway with providers: %s", ", ".join(configured))
    else:
        logger.warning("No provider API keys configured; every request will fail with no-credentials")

    yield

    # Shutdown
    logger.info("Meal generation gateway shut down")


app = FastAPI(
    title="Meal Generation Gateway",
    description="Multi-provider meal planning and ingredient recognition",
    version="0.3.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(PrometheusMiddleware)

# CORS: parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router)


@app.get("/health")
async def health(request: Request):
    orchestrator = getattr(request.app.state, "orchestrator", None)
    status = orchestrator.status() if orchestrator is not None else {"available": {}, "rate_limited": []}
    return {
        "status": "ok",
        "providers_available": status["available"],
        "providers_cooling_down": len(status["rate_limited"]),
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
