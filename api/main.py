"""
FastAPI application initialization
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from api.middleware import ErrorEnvelopeMiddleware, RateLimitMiddleware, RequestContextMiddleware
from api.routes import dashboard, health, ingestion, products, review
from core.config import settings
from core.database import async_session_maker
from core.exceptions import IngestionException
from core.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


def _build_scheduler():
    from api.dependencies import get_ai_client, get_normalizer, get_runner, get_scraper
    from ingestion.scheduler import IngestionScheduler

    def runner_factory(session):
        ai_client = get_ai_client(settings)
        normalizer = get_normalizer(ai_client, settings)
        scraper = get_scraper(ai_client, settings, None)
        return get_runner(session, normalizer, scraper, settings, None)

    return IngestionScheduler(
        runner_factory,
        interval_minutes=settings.SCHEDULER_INTERVAL_MINUTES,
        session_factory=async_session_maker,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown"""
    logger.info("Starting Padlock ingestion API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = _build_scheduler()
        scheduler.start()

    yield

    logger.info("Shutting down Padlock ingestion API")
    if scheduler is not None:
        scheduler.stop()


# Create FastAPI app
app = FastAPI(
    title="Padlock Product Ingestion API",
    description="Insurance product ingestion, normalization and catalog quality service",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Added innermost first; CORS wraps everything, including the 500 envelope
app.add_middleware(ErrorEnvelopeMiddleware)
app.add_middleware(RateLimitMiddleware, limit_per_minute=settings.RATE_LIMIT_PER_MINUTE)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Error envelope: {"error": str, "details": object | null}
# ============================================================================

@app.exception_handler(IngestionException)
async def ingestion_exception_handler(request: Request, exc: IngestionException):
    if exc.status_code >= 500:
        logger.error(
            f"{request.method} {request.url.path} failed: {exc.message}",
            extra={"error_context": exc.to_dict()}
        )
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "details": jsonable_encoder(exc.context) or None},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": {"errors": errors}},
    )


# Include routers
app.include_router(health.router)
app.include_router(ingestion.router)
app.include_router(products.router)
app.include_router(dashboard.router)
app.include_router(review.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Padlock Product Ingestion API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "ingestion": "/data-ingestion",
            "scheduled": "/scheduled-ingestion",
            "dashboard": "/dashboard"
        }
    }
