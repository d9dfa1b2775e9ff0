# ============================================================
# schoolcash/main.py
#
# The entry point of the cash desk service.
#
# What this file does:
# - Creates the FastAPI app instance
# - Adds CORS middleware (the dashboard calls us from the browser)
# - Registers all routes under /api/v1
# - Adds a /health endpoint for Docker healthchecks
# - Adds global error handlers for clean error responses
# ============================================================

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging
import time

from schoolcash.core.config import settings
from schoolcash.core.backend import SchoolAPI
from schoolcash.api.deps import close_school_api, get_school_api
from schoolcash.schemas.common import ErrorResponse
from schoolcash.api.v1.router import api_router

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.is_production else logging.DEBUG,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

# Never leak the backend bearer token from low-level HTTP debug logs.
if settings.is_production and not settings.HTTP_CLIENT_DEBUG_LOGS:
    for noisy_logger in ("httpx", "httpcore", "hpack"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


# ── Startup / Shutdown ───────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Runs on startup and shutdown."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"School backend: {settings.SCHOOL_API_BASE_URL}")

    yield

    await close_school_api()
    logger.info(f"Shutting down {settings.APP_NAME}")


# ── Create App ───────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Cash desk for school fee collection: balances, discounts, "
        "payment method splits and transaction/payment commits."
    ),
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    lifespan=lifespan,
)


# ── CORS Middleware ──────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request timing middleware ────────────────────────────────
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Logs how long each request takes."""
    start = time.time()
    response = await call_next(request)
    duration = (time.time() - start) * 1000
    logger.info(f"{request.method} {request.url.path} → {response.status_code} ({duration:.1f}ms)")
    return response


# ── Global error handlers ────────────────────────────────────
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Pydantic validation failures come back in the standard error shape."""
    errors = []
    for error in exc.errors():
        field = " → ".join(str(e) for e in error["loc"])
        errors.append(f"{field}: {error['msg']}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(message="Validation error", detail=errors).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """404 / 502 raised by the routers, in the same shape as everything else."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=str(exc.detail)).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_error_handler(request: Request, exc: Exception):
    """Catch-all for unexpected errors. Never expose stack traces."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(message="An unexpected error occurred. Please try again.").model_dump(exclude_none=True),
    )


# ── Routes ───────────────────────────────────────────────────
app.include_router(api_router, prefix=settings.API_PREFIX)


# ── Health check ─────────────────────────────────────────────
@app.get("/health", tags=["Health"])
async def health_check(api: SchoolAPI = Depends(get_school_api)):
    """
    Returns 200 when the school backend answers, 503 otherwise.
    """
    backend_ok = await api.check_connection()
    if backend_ok:
        return {"status": "healthy", "version": settings.APP_VERSION}
    return JSONResponse(
        status_code=503,
        content={"status": "unhealthy", "reason": "school_backend_unreachable"},
    )


@app.get("/", tags=["Health"])
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
