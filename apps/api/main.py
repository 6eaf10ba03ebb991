"""
Assessment Evaluation API.

Wires the assessment router, CORS, request timing logs and the error
handlers that turn domain exceptions into JSON bodies with an error_code.
Tables are created on startup; the pipeline itself is built lazily on the
first request (see routers.assessments.get_pipeline).
"""
import logging
import time

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.cache import get_redis_client
from core.config import settings
from core.database import Base, check_db_connection, engine
from core.exceptions import APIException, AssessmentNotFound
from core.logging import setup_logging
from routers import assessments

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Assessment Evaluation API",
    description="Integrity, movement and benchmark evaluation of athletic-performance videos",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)


@app.on_event("startup")
async def create_tables():
    """Create the assessment, consent and access-log tables if missing."""
    import models  # noqa: F401  registers the tables on Base.metadata

    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.warning(f"Could not create assessment tables, database unavailable? {e}")


def _cors_origins():
    if settings.DEBUG:
        return ["*"]
    if settings.CORS_ORIGINS:
        return [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    return ["http://localhost:3000", "http://127.0.0.1:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One log line per request with status and duration."""
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.error(f"{request.method} {request.url.path} raised", exc_info=True)
        raise

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms} ms)",
        extra={"extra_fields": {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "process_time_ms": elapsed_ms,
            "client_ip": request.client.host if request.client else None,
        }},
    )
    response.headers["X-Process-Time"] = str(elapsed_ms / 1000)
    return response


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
        headers=exc.headers,
    )


@app.exception_handler(AssessmentNotFound)
async def assessment_not_found_handler(request: Request, exc: AssessmentNotFound):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc), "error_code": "NOT_FOUND"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {exc}",
        exc_info=True,
        extra={"extra_fields": {"method": request.method, "path": request.url.path}},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
async def health():
    """
    Readiness check.

    503 when the database is unreachable. Redis only feeds cross-process
    progress polling, so its absence is reported but not fatal.
    """
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unavailable"},
        )
    return {
        "status": "healthy",
        "database": "ok",
        "redis": "ok" if get_redis_client() is not None else "unavailable",
        "timestamp": time.time(),
    }


@app.get("/ping")
async def ping():
    """Liveness probe, no dependencies checked."""
    return {"pong": True}


app.include_router(assessments.router)
