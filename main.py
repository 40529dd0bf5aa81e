"""
FastAPI application entry point.

Sets up logging, the workout composer (built once per process in the
lifespan and shared through app.state), error handlers and routers.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from routers import workout_composition
from core.config import settings
from core.cache import close_redis_client, get_redis_client
from core.database import Base, check_db_connection, engine
from core.logging import setup_logging
from core.exceptions import APIException
from services.workout_composition.factory import create_workout_composer
import models  # noqa: F401  registers tables on Base.metadata
import logging
import time

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    app.state.workout_composer = create_workout_composer(settings, get_redis_client())
    logger.info(
        f"Workout composer ready: provider={settings.GENERATIVE_PROVIDER} "
        f"generation_enabled={settings.GENERATION_ENABLED}"
    )
    yield
    await close_redis_client()


# Create FastAPI app
app = FastAPI(
    title="Workout Composition API",
    description="Personalized daily strength workouts: blueprint, generation, validation and local fallback",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information."""
    start_time = time.time()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            f"Request failed: {request.method} {request.url.path}",
            exc_info=True,
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                }
            }
        )
        raise

    process_time = time.time() - start_time
    logger.info(
        f"Response: {request.method} {request.url.path} - {response.status_code}",
        extra={
            "extra_fields": {
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "process_time_ms": round(process_time * 1000, 2),
            }
        }
    )
    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    logger.warning(
        f"API error {exc.status_code} {exc.error_code}: {exc.detail}",
        extra={
            "extra_fields": {
                "path": request.url.path,
                "error_code": exc.error_code,
            }
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.error_code, "message": exc.detail}},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={
            "extra_fields": {
                "method": request.method,
                "path": request.url.path,
            }
        }
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
    )


@app.get("/health")
async def health():
    """
    Simple health check for load balancers and uptime monitors.

    Returns:
        - 200: Core systems operational
        - 503: Database unavailable
    """
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "database": "unavailable",
            }
        )

    return {
        "status": "healthy",
        "timestamp": time.time(),
    }


app.include_router(workout_composition.router)
